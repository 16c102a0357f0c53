"""
Settlement ledger.

Credits a driver's wallet and completed-trip counter.  It never opens its
own transaction: the caller passes the session that also writes the
COMPLETED status, so both land in one commit or neither does.
"""

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import DriverModel
from marketplace.domain.errors import NotFound


class SettlementLedger:
    async def credit(
        self, session: AsyncSession, driver_id: int, amount: float
    ) -> None:
        result = await session.execute(
            update(DriverModel)
            .where(DriverModel.id == driver_id)
            .values(
                wallet_balance=DriverModel.wallet_balance + amount,
                completed_trips=DriverModel.completed_trips + 1,
            )
        )
        if result.rowcount == 0:
            raise NotFound(f"Driver {driver_id} not found for settlement")
