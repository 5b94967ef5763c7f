"""Settlement business logic: order resolution, line items and reconciliation."""
from .coordinator import ReconciliationCoordinator, SettlementOutcome, SettlementResult
from .events import LoggingNotifier, OrderSettled, SettlementNotifier
from .line_items import LineItemResolver, ResolvedLineItems, StockDecrement
from .resolver import OrderResolver, ResolvedOrder
from .status import map_gateway_status, next_status

__all__ = [
    "LineItemResolver",
    "LoggingNotifier",
    "OrderResolver",
    "OrderSettled",
    "ReconciliationCoordinator",
    "ResolvedLineItems",
    "ResolvedOrder",
    "SettlementNotifier",
    "SettlementOutcome",
    "SettlementResult",
    "StockDecrement",
    "map_gateway_status",
    "next_status",
]
