"""SQLAlchemy-backed order store."""
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.database.models import (
    TERMINAL_STATUSES,
    Order,
    OrderEvent,
    OrderStatus,
    utcnow,
)

logger = structlog.get_logger(__name__)


class SqlOrderStore:
    """Order persistence, including the row lock taken at the start of settlement."""

    async def lock_by_id(self, db: AsyncSession, order_id: int) -> Optional[Order]:
        """
        Lock an order row for the rest of the transaction.

        ``populate_existing`` makes sure the returned object reflects the
        committed row, not a copy loaded before the lock was granted.
        """
        stmt = (
            select(Order)
            .where(Order.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def find_by_id(self, db: AsyncSession, order_id: int) -> Optional[Order]:
        result = await db.execute(select(Order).where(Order.id == order_id))
        return result.scalar_one_or_none()

    async def find_by_payment_id(
        self, db: AsyncSession, gateway_payment_id: str
    ) -> Optional[Order]:
        result = await db.execute(
            select(Order).where(Order.gateway_payment_id == gateway_payment_id)
        )
        return result.scalar_one_or_none()

    async def find_by_correlation_id(
        self, db: AsyncSession, correlation_id: str
    ) -> Optional[Order]:
        # Retried payments may reuse a correlation id; the newest order wins
        result = await db.execute(
            select(Order)
            .where(Order.correlation_id == correlation_id)
            .order_by(Order.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def update_status(
        self,
        db: AsyncSession,
        order: Order,
        status: OrderStatus,
        *,
        gateway_payment_id: Optional[str] = None,
        paid_at: Optional[datetime] = None,
        payer_email: Optional[str] = None,
        payment_method: Optional[str] = None,
        payment_channel: Optional[str] = None,
    ) -> None:
        """
        Write a new status (and payment details on ``paid``) to a locked order.

        Args:
            db: Unit-of-work session holding the order lock
            order: Locked order
            status: Status to persist
        """
        now = utcnow()
        order.status = status.value
        order.updated_at = now
        if status is OrderStatus.PAID:
            order.completed_at = now
            order.paid_at = paid_at or now
            if gateway_payment_id and not order.gateway_payment_id:
                order.gateway_payment_id = gateway_payment_id
            order.payer_email = payer_email or order.payer_email
            order.payment_method = payment_method or order.payment_method
            order.payment_channel = payment_channel or order.payment_channel
        await db.flush()

    async def mark_failed(
        self, db: AsyncSession, order_id: int, status: OrderStatus
    ) -> bool:
        """
        Record a failure status on an order that has not reached a terminal status.

        Returns:
            bool: True if the row was updated
        """
        stmt = (
            update(Order)
            .where(
                Order.id == order_id,
                Order.status.notin_([s.value for s in TERMINAL_STATUSES]),
            )
            .values(status=status.value, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        return result.rowcount == 1

    async def record_event(
        self,
        db: AsyncSession,
        order_id: int,
        event_type: str,
        *,
        old_status: Optional[str] = None,
        new_status: Optional[str] = None,
        settlement_id: Optional[str] = None,
        event_data: Optional[Dict[str, Any]] = None,
        note: Optional[str] = None,
    ) -> None:
        """Append an audit row for the order."""
        db.add(
            OrderEvent(
                order_id=order_id,
                event_type=event_type,
                old_status=old_status,
                new_status=new_status,
                settlement_id=settlement_id,
                event_data=event_data,
                note=note,
                created_at=utcnow(),
            )
        )

    async def snapshot_candidates(
        self, db: AsyncSession, limit: int
    ) -> List[Dict[str, Any]]:
        """Most recent orders and their known identifiers, for resolution diagnostics."""
        stmt = (
            select(
                Order.id,
                Order.gateway_payment_id,
                Order.correlation_id,
                Order.status,
            )
            .order_by(Order.created_at.desc(), Order.id.desc())
            .limit(limit)
        )
        result = await db.execute(stmt)
        return [
            {
                "id": row.id,
                "gateway_payment_id": row.gateway_payment_id,
                "correlation_id": row.correlation_id,
                "status": row.status,
            }
            for row in result
        ]
