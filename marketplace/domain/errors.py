"""
Error taxonomy shared by every service.

Each error carries a stable ``code`` and a user-facing ``user_message``;
the API layer maps them onto HTTP responses.
"""

from __future__ import annotations


class MarketplaceError(Exception):
    code = "MARKETPLACE_ERROR"
    user_message = "Something went wrong"


class NotFound(MarketplaceError):
    """The request (or driver) does not exist."""

    code = "NOT_FOUND"
    user_message = "This request is no longer available"


class AlreadyTaken(MarketplaceError):
    """Lost the claim race. Final for this attempt, never retried."""

    code = "ALREADY_TAKEN"
    user_message = "This request was just taken by another driver"


class IllegalTransition(MarketplaceError):
    """Raised when a status change violates the state machine."""

    code = "ILLEGAL_TRANSITION"
    user_message = "Please refresh and try again"

    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(f"Cannot transition from {current} to {target}")


class RequestNotEditable(MarketplaceError):
    code = "REQUEST_NOT_EDITABLE"
    user_message = "Please refresh and try again"


class PermissionDenied(MarketplaceError):
    """Location access revoked on the device. Non-retryable."""

    code = "PERMISSION_DENIED"
    user_message = "Location access was denied"


class Transient(MarketplaceError):
    """Network / store hiccup that survived the bounded retries."""

    code = "TRANSIENT"
    user_message = "Temporarily unavailable, please retry"
