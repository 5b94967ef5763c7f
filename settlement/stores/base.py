"""
Store interfaces consumed by the settlement core.

Every mutating method takes the unit-of-work session as a required argument,
so stock, voucher and order-status writes cannot happen outside a session
the caller controls.
"""
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Sequence

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.database.models import (
    CheckoutRecord,
    LineItem,
    Order,
    OrderStatus,
    OrderVoucher,
    SellableItem,
    Voucher,
)
from settlement.exceptions import StoreUnavailable


class OrderStore(Protocol):
    async def lock_by_id(self, db: AsyncSession, order_id: int) -> Optional[Order]: ...

    async def find_by_id(self, db: AsyncSession, order_id: int) -> Optional[Order]: ...

    async def find_by_payment_id(
        self, db: AsyncSession, gateway_payment_id: str
    ) -> Optional[Order]: ...

    async def find_by_correlation_id(
        self, db: AsyncSession, correlation_id: str
    ) -> Optional[Order]: ...

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
    ) -> None: ...

    async def mark_failed(
        self, db: AsyncSession, order_id: int, status: OrderStatus
    ) -> bool: ...

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
    ) -> None: ...

    async def snapshot_candidates(
        self, db: AsyncSession, limit: int
    ) -> List[Dict[str, Any]]: ...


class InventoryStore(Protocol):
    async def find_by_id(self, db: AsyncSession, item_id: int) -> Optional[SellableItem]: ...

    async def decrement_stock(self, db: AsyncSession, item_id: int, quantity: int) -> bool: ...


class VoucherStore(Protocol):
    async def find_for_order(self, db: AsyncSession, order_id: int) -> Optional[OrderVoucher]: ...

    async def lock_by_id(self, db: AsyncSession, voucher_id: int) -> Optional[Voucher]: ...

    async def increment_usage(self, db: AsyncSession, voucher_id: int) -> bool: ...


class LineItemStore(Protocol):
    async def find_linked_by_order(self, db: AsyncSession, order_id: int) -> List[LineItem]: ...

    async def find_by_checkout_record(
        self, db: AsyncSession, order_id: int
    ) -> Optional[CheckoutRecord]: ...

    async def find_unlinked_by_user(self, db: AsyncSession, user_id: int) -> List[LineItem]: ...

    async def link_to_order(
        self, db: AsyncSession, line_item_ids: Sequence[int], order_id: int
    ) -> int: ...


TRANSIENT_ERRORS = (OperationalError, InterfaceError, PoolTimeoutError)

# serialization_failure, deadlock_detected, lock_not_available, query_canceled
TRANSIENT_SQLSTATES = frozenset({"40001", "40P01", "55P03", "57014"})


def is_transient(error: Exception) -> bool:
    """Whether a database error is worth a gateway redelivery."""
    if isinstance(error, TRANSIENT_ERRORS):
        return True
    if not isinstance(error, DBAPIError):
        return False
    if error.connection_invalidated:
        return True
    orig = error.orig
    code = (
        getattr(orig, "sqlstate", None)
        or getattr(orig, "pgcode", None)
        or getattr(getattr(orig, "__cause__", None), "sqlstate", None)
    )
    return code in TRANSIENT_SQLSTATES


@asynccontextmanager
async def translate_store_errors(operation: str) -> AsyncIterator[None]:
    """
    Re-raise transient database failures as ``StoreUnavailable``.

    Connection loss, lock timeouts, deadlocks and pool exhaustion are
    translated; integrity errors propagate unchanged.
    """
    try:
        yield
    except (PoolTimeoutError, DBAPIError) as e:
        if not is_transient(e):
            raise
        raise StoreUnavailable(f"Store unavailable during {operation}: {e}") from e
