"""Geometry and time helpers shared by the test modules."""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone

from marketplace.domain.entities import Coordinate

# Bengaluru, Cubbon Park (approx)
CENTER = Coordinate(12.9716, 77.5946)
KM_PER_DEG_LAT = 6371.0 * math.pi / 180


def north_of(origin: Coordinate, km: float) -> Coordinate:
    """A point *km* due north of *origin*."""
    return Coordinate(origin.lat + km / KM_PER_DEG_LAT, origin.lng)


class FrozenClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)
