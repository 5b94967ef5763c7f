"""Translation of gateway-reported statuses onto the order status lattice."""
from typing import Optional

from settlement.database.models import OrderStatus

PAID_GATEWAY_STATUSES = frozenset({"PAID", "SETTLED", "SUCCESS"})
CANCELLED_GATEWAY_STATUSES = frozenset({"EXPIRED"})


def map_gateway_status(gateway_status: Optional[str]) -> OrderStatus:
    """
    Map a gateway status to the internal lattice.

    Paid-equivalent statuses map to ``paid`` and expiry maps to ``cancelled``.
    Anything else is a pending state and maps to ``awaiting_payment``.
    """
    normalized = (gateway_status or "").strip().upper()
    if normalized in PAID_GATEWAY_STATUSES:
        return OrderStatus.PAID
    if normalized in CANCELLED_GATEWAY_STATUSES:
        return OrderStatus.CANCELLED
    return OrderStatus.AWAITING_PAYMENT


def next_status(current: OrderStatus, reported: OrderStatus) -> OrderStatus:
    """
    Status to persist when ``reported`` arrives for an order in ``current``.

    Transitions only move forward; a pending report never drags an order
    back from a later position.
    """
    if current.is_terminal:
        return current
    if reported.rank < current.rank:
        return current
    return reported
