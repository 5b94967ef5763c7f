"""Data-store interfaces and their SQLAlchemy implementations."""
from .base import (
    InventoryStore,
    LineItemStore,
    OrderStore,
    VoucherStore,
    translate_store_errors,
)
from .inventory import SqlInventoryStore
from .line_items import SqlLineItemStore
from .orders import SqlOrderStore
from .vouchers import SqlVoucherStore

__all__ = [
    "InventoryStore",
    "LineItemStore",
    "OrderStore",
    "VoucherStore",
    "SqlInventoryStore",
    "SqlLineItemStore",
    "SqlOrderStore",
    "SqlVoucherStore",
    "translate_store_errors",
]
