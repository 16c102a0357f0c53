"""
Visibility & Dispatch Filter
============================

Decides which open requests one driver is allowed to see.

1. **Gate**          -- the driver must be online *and* approved; otherwise
   nothing is visible.
2. **Targeted**      -- a request pinned to this driver is always eligible,
   whatever the distance (a direct offer bypasses proximity).
3. **Open market**   -- an unpinned request is eligible only when its pickup
   is within the dispatch radius (default 5 km) of the driver.  A driver
   without a known location sees no open-market requests.
4. **Ranking**       -- targeted requests first (oldest first), then open
   market by distance, nearest first.  The single-slot UI shows the head.

Requests pinned to another driver and requests this driver already
declined are never returned.

The store-side query is narrowed with H3 cells (``search_cells``) before
this filter runs; the haversine check below remains the authority.

Complexity
----------
O(n log n) for n open requests of the driver's vehicle type.
"""

from __future__ import annotations

import math
from collections.abc import Collection, Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import h3

from .distance import distance_km, within
from .entities import Coordinate, DriverPresence, RideRequest
from .enums import RequestStatus

DEFAULT_RADIUS_KM = 5.0

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class Candidate:
    request: RideRequest
    targeted: bool
    distance_km: Optional[float] = None


def pickup_cell(lat: float, lng: float, resolution: int = 7) -> str:
    """Map a geo-point to an H3 hexagonal cell index.  O(1)."""
    return h3.latlng_to_cell(lat, lng, resolution)


def search_cells(
    location: Coordinate, radius_km: float, resolution: int = 7
) -> set[str]:
    """
    H3 cells whose area may hold a point within *radius_km* of *location*.

    A pickup within the radius has its cell centre at most
    ``radius + 2 x edge`` away from the driver's cell centre, and cells
    ``k`` rings apart are at least ``1.5 x edge x k`` apart, so
    ``k = ceil((radius + 2e) / 1.5e)`` rings suffice.  One extra ring
    absorbs the projection distortion of real cells.
    """
    edge = h3.average_hexagon_edge_length(resolution, unit="km")
    k = math.ceil((radius_km + 2 * edge) / (1.5 * edge)) + 1
    origin = h3.latlng_to_cell(location.lat, location.lng, resolution)
    return set(h3.grid_disk(origin, k))


def _age_key(request: RideRequest) -> tuple[datetime, int]:
    return (request.created_at or _EPOCH, request.id or 0)


def eligible_requests(
    driver: DriverPresence,
    open_requests: Iterable[RideRequest],
    radius_km: float = DEFAULT_RADIUS_KM,
    declined: Collection[int] = (),
) -> list[Candidate]:
    """Return the ranked candidate list for *driver*.  Pure function."""
    if not driver.is_dispatchable:
        return []

    targeted: list[Candidate] = []
    open_market: list[Candidate] = []
    here = driver.current_location

    for request in open_requests:
        if request.status != RequestStatus.SEARCHING:
            continue
        if request.vehicle_type != driver.vehicle_type:
            continue
        if request.id in declined:
            continue

        dist = distance_km(here, request.pickup) if here is not None else None

        if request.target_driver_id == driver.id:
            targeted.append(Candidate(request, True, dist))
        elif request.target_driver_id is None:
            if here is not None and within(here, request.pickup, radius_km):
                open_market.append(Candidate(request, False, dist))

    targeted.sort(key=lambda c: _age_key(c.request))
    open_market.sort(key=lambda c: (c.distance_km, _age_key(c.request)))
    return targeted + open_market
