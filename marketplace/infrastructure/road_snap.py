"""
Road snapping via the Google Roads ``nearestRoads`` endpoint.

Best-effort by contract: any failure (HTTP error, timeout, unexpected
payload) hands back the raw coordinate.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from marketplace.config import settings
from marketplace.domain.entities import Coordinate

logger = logging.getLogger(__name__)


class RoadSnapper:
    def __init__(
        self,
        api_key: str = settings.roads_api_key,
        url: str = settings.roads_api_url,
        timeout: float = settings.road_snap_timeout_seconds,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.url = url
        self.timeout = timeout
        self._client = client

    async def snap(self, location: Coordinate) -> Coordinate:
        params = {"points": f"{location.lat},{location.lng}", "key": self.api_key}
        try:
            if self._client is not None:
                resp = await self._client.get(self.url, params=params, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await client.get(self.url, params=params)
            resp.raise_for_status()
            points = resp.json().get("snappedPoints") or []
            if not points:
                return location
            snapped = points[0]["location"]
            return Coordinate(float(snapped["latitude"]), float(snapped["longitude"]))
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as exc:
            logger.warning("Road snap failed, keeping raw fix: %s", exc)
            return location
