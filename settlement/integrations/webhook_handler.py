"""
Gateway notification handler.

Implements:
- Payload validation
- Gateway dashboard test payload short-circuit
- Order resolution in a short read session
- Settlement through the reconciliation coordinator
"""
import time
from typing import Any, Dict, Mapping, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from settlement.config import get_settings
from settlement.core.coordinator import (
    ReconciliationCoordinator,
    SettlementOutcome,
    SettlementResult,
)
from settlement.core.resolver import OrderResolver
from settlement.database.connection import get_session_factory, session_scope
from settlement.exceptions import MalformedNotification, OrderNotResolved, StoreUnavailable
from settlement.monitoring.metrics import metrics
from settlement.schemas import GatewayNotification

logger = structlog.get_logger(__name__)


class WebhookHandler:
    """
    Entry point for inbound gateway notifications.

    Resolution runs in its own session and commits nothing; the settlement
    itself runs in the coordinator's unit of work. Redelivery of the same
    notification is safe because idempotency is checked under the order
    row lock.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        resolver: Optional[OrderResolver] = None,
        coordinator: Optional[ReconciliationCoordinator] = None,
    ):
        """
        Initialize webhook handler.

        Args:
            session_factory: Session factory shared with the coordinator
            resolver: Order resolver
            coordinator: Reconciliation coordinator
        """
        self.settings = get_settings()
        self.session_factory = session_factory or get_session_factory()
        self.resolver = resolver or OrderResolver()
        self.coordinator = coordinator or ReconciliationCoordinator(
            session_factory=self.session_factory
        )
        self.test_correlation_ids = frozenset(self.settings.gateway_test_correlation_ids)

        logger.info("webhook_handler_initialized")

    async def handle(self, payload: Mapping[str, Any]) -> SettlementResult:
        """
        Handle one gateway notification.

        Args:
            payload: Raw notification body

        Returns:
            SettlementResult: Settlement outcome

        Raises:
            MalformedNotification: Required fields missing (no store access)
            OrderNotResolved: No order matches the notification
            InsufficientStock: Settlement rolled back
            VoucherLimitExceeded: Settlement rolled back, order marked
            StoreUnavailable: Transient failure, safe to redeliver
        """
        start_time = time.time()
        try:
            notification = GatewayNotification.parse_payload(payload)
        except MalformedNotification as e:
            metrics.record_notification("malformed", time.time() - start_time)
            logger.warning("notification_rejected", error=str(e))
            raise

        logger.info("notification_received", **notification.log_fields())

        if notification.correlation_id in self.test_correlation_ids:
            metrics.record_notification(
                SettlementOutcome.TEST_PAYLOAD.value, time.time() - start_time
            )
            logger.info("notification_test_payload", **notification.log_fields())
            return SettlementResult(
                outcome=SettlementOutcome.TEST_PAYLOAD,
                order_id=None,
                status=None,
                message="Gateway test notification acknowledged",
            )

        try:
            async with session_scope(self.session_factory) as db:
                resolved = await self.resolver.resolve(
                    db, notification.gateway_payment_id, notification.correlation_id
                )
        except (OrderNotResolved, StoreUnavailable) as e:
            outcome = "unresolved" if isinstance(e, OrderNotResolved) else "store_unavailable"
            metrics.record_notification(outcome, time.time() - start_time)
            raise

        return await self.coordinator.settle(resolved.order_id, notification)

    async def handle_to_dict(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        """Handle a notification and return the result as a plain dict."""
        result = await self.handle(payload)
        return result.to_dict()
