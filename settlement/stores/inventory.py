"""SQLAlchemy-backed inventory store."""
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.database.models import SellableItem, utcnow


class SqlInventoryStore:
    """Stock counters per sellable item."""

    async def find_by_id(self, db: AsyncSession, item_id: int) -> Optional[SellableItem]:
        stmt = (
            select(SellableItem)
            .where(SellableItem.id == item_id)
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def decrement_stock(self, db: AsyncSession, item_id: int, quantity: int) -> bool:
        """
        Atomically take ``quantity`` units from an item's stock.

        The guard lives in the UPDATE itself, so stock never goes negative
        even without a prior read.

        Returns:
            bool: False when the item is missing or stock is insufficient
        """
        if quantity <= 0:
            return False

        stmt = (
            update(SellableItem)
            .where(SellableItem.id == item_id, SellableItem.stock >= quantity)
            .values(stock=SellableItem.stock - quantity, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        return result.rowcount == 1
