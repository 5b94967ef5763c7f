"""Database package for the settlement core."""
from .connection import (
    build_engine,
    build_session_factory,
    close_db,
    get_engine,
    get_session_factory,
    init_db,
    session_scope,
)
from .models import (
    TERMINAL_STATUSES,
    Base,
    CheckoutRecord,
    LineItem,
    Order,
    OrderEvent,
    OrderStatus,
    OrderVoucher,
    SellableItem,
    Voucher,
)

__all__ = [
    "Base",
    "CheckoutRecord",
    "LineItem",
    "Order",
    "OrderEvent",
    "OrderStatus",
    "OrderVoucher",
    "SellableItem",
    "TERMINAL_STATUSES",
    "Voucher",
    "build_engine",
    "build_session_factory",
    "close_db",
    "get_engine",
    "get_session_factory",
    "init_db",
    "session_scope",
]
