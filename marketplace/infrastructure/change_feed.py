"""
Change notifications over Redis pub/sub.

Every committed write on a request publishes a small notice on
``marketplace:requests:<VEHICLE_TYPE>``; presence writes publish on
``marketplace:drivers:<driver_id>``.  Notices are hints, not data:
subscribers re-read the store on each one.  Delivery is at-least-once at
best, so a lost notice only delays a refresh until the next one.
"""

from __future__ import annotations

import json
import logging
from typing import AsyncIterator, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from marketplace.domain.entities import RideRequest
from marketplace.domain.enums import VehicleType

logger = logging.getLogger(__name__)


def requests_channel(vehicle_type: VehicleType) -> str:
    return f"marketplace:requests:{VehicleType(vehicle_type).value}"


def driver_channel(driver_id: int) -> str:
    return f"marketplace:drivers:{driver_id}"


class ChangeFeed:
    def __init__(self, client: aioredis.Redis):
        self.redis = client

    async def _publish(self, channel: str, notice: dict) -> None:
        try:
            await self.redis.publish(channel, json.dumps(notice))
        except RedisError:
            # the write is already committed; subscribers catch up on the next notice
            logger.warning("Could not publish change notice on %s", channel, exc_info=True)

    async def request_changed(self, request: RideRequest) -> None:
        await self._publish(
            requests_channel(request.vehicle_type),
            {
                "kind": "request",
                "request_id": request.id,
                "version": request.version,
                "status": request.status.value,
                "vehicle_type": request.vehicle_type.value,
            },
        )

    async def driver_changed(self, driver_id: int) -> None:
        await self._publish(
            driver_channel(driver_id), {"kind": "driver", "driver_id": driver_id}
        )

    async def listen(
        self, vehicle_type: VehicleType, driver_id: Optional[int] = None
    ) -> AsyncIterator[dict]:
        """Yield decoded notices for one vehicle type (and one driver)."""
        channels = [requests_channel(vehicle_type)]
        if driver_id is not None:
            channels.append(driver_channel(driver_id))

        pubsub = self.redis.pubsub()
        await pubsub.subscribe(*channels)
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    yield json.loads(message["data"])
                except (TypeError, ValueError):
                    logger.warning("Dropping malformed change notice: %r", message)
        finally:
            await pubsub.unsubscribe(*channels)
            await pubsub.aclose()
