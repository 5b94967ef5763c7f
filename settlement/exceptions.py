"""
Settlement error taxonomy.

Fatal conditions raised inside a unit of work always surface after the
rollback has completed, so callers never observe partial state.
"""
from typing import Any, Dict, List, Optional, Sequence


class SettlementError(Exception):
    """Base exception for settlement processing errors."""

    pass


class MalformedNotification(SettlementError):
    """Raised when a notification lacks required fields. No store access happens."""

    def __init__(self, message: str, errors: Optional[Sequence[Any]] = None):
        super().__init__(message)
        self.errors = list(errors or [])


class OrderNotResolved(SettlementError):
    """
    Raised when no resolver strategy maps a notification to an order.

    Carries every attempted strategy and a snapshot of candidate orders,
    since misrouted notifications are mostly diagnosed from this error alone.
    """

    def __init__(
        self,
        gateway_payment_id: Optional[str],
        correlation_id: Optional[str],
        attempted_strategies: List[Dict[str, Any]],
        candidates: Optional[List[Dict[str, Any]]] = None,
    ):
        self.gateway_payment_id = gateway_payment_id
        self.correlation_id = correlation_id
        self.attempted_strategies = attempted_strategies
        self.candidates = candidates or []
        attempts = ", ".join(
            f"{a['strategy']}={a.get('extracted_order_id') or a['result']}"
            for a in attempted_strategies
        )
        super().__init__(
            f"Order not found for notification. "
            f"Correlation ID: {correlation_id}, Payment ID: {gateway_payment_id}, "
            f"attempted: [{attempts}], candidates inspected: {len(self.candidates)}"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "gateway_payment_id": self.gateway_payment_id,
            "correlation_id": self.correlation_id,
            "attempted_strategies": self.attempted_strategies,
            "candidates": self.candidates,
        }


class InsufficientStock(SettlementError):
    """Raised when a sellable item cannot cover the requested quantity."""

    def __init__(self, item_id: int, requested: int, available: Optional[int]):
        self.item_id = item_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for item {item_id}: "
            f"requested {requested}, available {available}"
        )


class VoucherLimitExceeded(SettlementError):
    """Raised when redeeming a voucher would exceed its usage limit."""

    def __init__(
        self,
        voucher_id: int,
        usage_count: Optional[int],
        usage_limit: Optional[int],
        order_id: Optional[int] = None,
    ):
        self.voucher_id = voucher_id
        self.usage_count = usage_count
        self.usage_limit = usage_limit
        self.order_id = order_id
        super().__init__(
            f"Voucher {voucher_id} usage limit reached ({usage_count}/{usage_limit})"
        )


class StoreUnavailable(SettlementError):
    """
    Raised for transient store failures (connection loss, lock timeout, deadlock).

    The caller should answer the gateway so that it redelivers later.
    """

    pass


class LineItemsClaimed(StoreUnavailable):
    """
    Raised when part of a working selection was linked to another order first.

    The unit of work is rolled back; a redelivery resolves line items afresh.
    """

    def __init__(self, order_id: int, expected: int, linked: int):
        self.order_id = order_id
        self.expected = expected
        self.linked = linked
        super().__init__(
            f"Working selection for order {order_id} was claimed concurrently: "
            f"linked {linked} of {expected} line items"
        )
