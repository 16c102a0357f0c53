"""
Read-validate-write transactions with retry on optimistic conflict.

``run_transaction`` is the store's ``runTransaction(fn)``: *fn* receives a
fresh ``AsyncSession`` inside ``session.begin()``, reads what it needs,
validates, and writes.  When the commit loses a race (``StaleDataError``
from the version check, or a lock/serialisation failure reported by the
driver) the whole function is re-run against freshly read state.  Domain
errors raised by *fn* roll back and propagate untouched.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from marketplace.config import settings
from marketplace.domain.errors import Transient

logger = logging.getLogger(__name__)

T = TypeVar("T")

_CONFLICTS = (StaleDataError, OperationalError)


async def run_transaction(
    session_factory: async_sessionmaker[AsyncSession],
    fn: Callable[[AsyncSession], Awaitable[T]],
    *,
    max_attempts: int = settings.transaction_max_attempts,
) -> T:
    last_error: Exception | None = None
    for attempt in range(1, max_attempts + 1):
        async with session_factory() as session:
            try:
                async with session.begin():
                    return await fn(session)
            except _CONFLICTS as exc:
                last_error = exc
                logger.debug(
                    "Transaction conflict (attempt %d/%d): %s",
                    attempt,
                    max_attempts,
                    exc,
                )
    raise Transient(
        f"Transaction still conflicting after {max_attempts} attempts"
    ) from last_error
