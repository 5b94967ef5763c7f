"""SQLAlchemy-backed voucher store."""
from typing import Optional

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.database.models import OrderVoucher, Voucher, utcnow


class SqlVoucherStore:
    """Voucher redemption counters and the order association."""

    async def find_for_order(self, db: AsyncSession, order_id: int) -> Optional[OrderVoucher]:
        result = await db.execute(select(OrderVoucher).where(OrderVoucher.order_id == order_id))
        return result.scalar_one_or_none()

    async def lock_by_id(self, db: AsyncSession, voucher_id: int) -> Optional[Voucher]:
        stmt = (
            select(Voucher)
            .where(Voucher.id == voucher_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def increment_usage(self, db: AsyncSession, voucher_id: int) -> bool:
        """
        Count one redemption, refusing to pass the usage limit.

        Returns:
            bool: False when the voucher is missing or already at its limit
        """
        stmt = (
            update(Voucher)
            .where(
                Voucher.id == voucher_id,
                or_(Voucher.usage_limit.is_(None), Voucher.usage_count < Voucher.usage_limit),
            )
            .values(usage_count=Voucher.usage_count + 1, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        return result.rowcount == 1
