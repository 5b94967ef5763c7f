"""SQLAlchemy-backed line-item store."""
from typing import List, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.database.models import CheckoutRecord, LineItem, utcnow


class SqlLineItemStore:
    """Line items and checkout records used to work out what to decrement."""

    async def find_linked_by_order(self, db: AsyncSession, order_id: int) -> List[LineItem]:
        result = await db.execute(
            select(LineItem).where(LineItem.order_id == order_id).order_by(LineItem.id)
        )
        return list(result.scalars().all())

    async def find_by_checkout_record(
        self, db: AsyncSession, order_id: int
    ) -> Optional[CheckoutRecord]:
        """Latest checkout record for the order that names an item."""
        result = await db.execute(
            select(CheckoutRecord)
            .where(CheckoutRecord.order_id == order_id, CheckoutRecord.item_id.is_not(None))
            .order_by(CheckoutRecord.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def find_unlinked_by_user(self, db: AsyncSession, user_id: int) -> List[LineItem]:
        """
        Lock and return the user's unlinked selection.

        A concurrent settlement that claimed the rows first makes them drop
        out of the result once its lock is released.
        """
        result = await db.execute(
            select(LineItem)
            .where(LineItem.user_id == user_id, LineItem.order_id.is_(None))
            .order_by(LineItem.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def link_to_order(
        self, db: AsyncSession, line_item_ids: Sequence[int], order_id: int
    ) -> int:
        """
        Link still-unlinked line items to an order.

        Returns:
            int: Number of items linked
        """
        if not line_item_ids:
            return 0
        stmt = (
            update(LineItem)
            .where(LineItem.id.in_(list(line_item_ids)), LineItem.order_id.is_(None))
            .values(order_id=order_id, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        return result.rowcount
