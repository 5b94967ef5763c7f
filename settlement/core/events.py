"""
Post-commit "order settled" signal.

Invoicing, QR and email collaborators subscribe through ``SettlementNotifier``.
They are invoked only after the unit of work has committed and never take
part in it.
"""
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Protocol

import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class OrderSettled:
    """Signal emitted after a committed terminal transition."""

    order_id: int
    status: str
    previous_status: str
    settlement_id: str
    gateway_payment_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class SettlementNotifier(Protocol):
    async def order_settled(self, event: OrderSettled) -> None: ...


class LoggingNotifier:
    """
    Default notifier that just logs the signal.

    Replace with the invoicing/notification collaborator.
    """

    async def order_settled(self, event: OrderSettled) -> None:
        logger.info("order_settled_signal", **event.to_dict())
