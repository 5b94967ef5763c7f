"""
Reconciliation coordinator with row locking and idempotency.

Settles one order for one gateway notification inside a single unit of work:
1. Lock the order row
2. Check idempotency (already paid -> no-op success)
3. Pre-check the voucher limit under a voucher row lock
4. Map the gateway status onto the order lattice
5. On paid: resolve line items, decrement stock, count the voucher redemption
6. Commit, or roll everything back on any fatal failure
7. After a voucher-limit rollback, mark the order voucher_limit_failed in a
   separate write
"""
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from settlement.config import get_settings
from settlement.core.events import LoggingNotifier, OrderSettled, SettlementNotifier
from settlement.core.line_items import LineItemResolver, ResolvedLineItems
from settlement.core.status import map_gateway_status, next_status
from settlement.database.connection import get_session_factory, session_scope
from settlement.database.models import Order, OrderStatus, Voucher
from settlement.exceptions import (
    InsufficientStock,
    LineItemsClaimed,
    OrderNotResolved,
    StoreUnavailable,
    VoucherLimitExceeded,
)
from settlement.monitoring.metrics import metrics
from settlement.schemas import GatewayNotification
from settlement.stores import (
    InventoryStore,
    LineItemStore,
    OrderStore,
    SqlInventoryStore,
    SqlLineItemStore,
    SqlOrderStore,
    SqlVoucherStore,
    VoucherStore,
    translate_store_errors,
)

logger = structlog.get_logger(__name__)


class SettlementOutcome(str, Enum):
    """How a notification was applied."""

    SETTLED = "settled"
    CANCELLED = "cancelled"
    PENDING = "pending"
    ALREADY_SETTLED = "already_settled"
    IGNORED = "ignored"
    TEST_PAYLOAD = "test_payload"


SIGNALLED_OUTCOMES = frozenset({SettlementOutcome.SETTLED, SettlementOutcome.CANCELLED})


@dataclass
class SettlementResult:
    """Result of applying one notification to one order."""

    outcome: SettlementOutcome
    order_id: Optional[int]
    status: Optional[str]
    previous_status: Optional[str] = None
    settlement_id: Optional[str] = None
    line_item_source: Optional[str] = None
    decremented: List[Dict[str, int]] = field(default_factory=list)
    voucher_id: Optional[int] = None
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "order_id": self.order_id,
            "status": self.status,
            "previous_status": self.previous_status,
            "settlement_id": self.settlement_id,
            "line_item_source": self.line_item_source,
            "decremented": self.decremented,
            "voucher_id": self.voucher_id,
            "message": self.message,
        }


class ReconciliationCoordinator:
    """
    Applies gateway notifications to orders atomically.

    All collaborators are injected at construction; the coordinator holds no
    per-notification state, so one instance can serve concurrent requests.
    Cross-request coordination is left entirely to the database locks.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        order_store: Optional[OrderStore] = None,
        inventory_store: Optional[InventoryStore] = None,
        voucher_store: Optional[VoucherStore] = None,
        line_item_store: Optional[LineItemStore] = None,
        line_item_resolver: Optional[LineItemResolver] = None,
        notifier: Optional[SettlementNotifier] = None,
        lock_timeout_ms: Optional[int] = None,
    ):
        """
        Initialize the coordinator.

        Args:
            session_factory: Factory for unit-of-work sessions
            order_store: Order store
            inventory_store: Sellable-item store
            voucher_store: Voucher store
            line_item_store: Line-item store (links the working selection)
            line_item_resolver: Line-item resolver (built from the stores if omitted)
            notifier: Post-commit collaborator for the order-settled signal
            lock_timeout_ms: Row-lock wait limit (PostgreSQL only)
        """
        settings = get_settings()
        self.session_factory = session_factory or get_session_factory()
        self.order_store = order_store or SqlOrderStore()
        self.inventory_store = inventory_store or SqlInventoryStore()
        self.voucher_store = voucher_store or SqlVoucherStore()
        self.line_item_store = line_item_store or SqlLineItemStore()
        self.line_item_resolver = line_item_resolver or LineItemResolver(
            line_item_store=self.line_item_store, inventory_store=self.inventory_store
        )
        self.notifier = notifier or LoggingNotifier()
        self.lock_timeout_ms = (
            lock_timeout_ms if lock_timeout_ms is not None else settings.lock_timeout_ms
        )

        logger.info("reconciliation_coordinator_initialized")

    async def settle(
        self, order_id: int, notification: GatewayNotification
    ) -> SettlementResult:
        """
        Apply a notification to a resolved order.

        Args:
            order_id: Internal order id from the order resolver
            notification: Validated gateway notification

        Returns:
            SettlementResult: Outcome of the unit of work

        Raises:
            InsufficientStock: Stock could not cover a line item (rolled back)
            VoucherLimitExceeded: Voucher is at its limit (rolled back, order marked)
            OrderNotResolved: The order disappeared between resolution and locking
            StoreUnavailable: Transient store failure (rolled back)
        """
        settlement_id = str(uuid.uuid4())
        target = map_gateway_status(notification.status)
        start_time = time.time()

        with structlog.contextvars.bound_contextvars(
            settlement_id=settlement_id, order_id=order_id
        ):
            logger.info(
                "settlement_started",
                target_status=target.value,
                **notification.log_fields(),
            )

            try:
                async with translate_store_errors("settlement"):
                    async with session_scope(self.session_factory) as db:
                        result = await self._apply(
                            db, order_id, notification, target, settlement_id
                        )
            except VoucherLimitExceeded as e:
                e.order_id = order_id
                metrics.record_rollback("voucher_limit")
                logger.error(
                    "settlement_rolled_back",
                    reason="voucher_limit",
                    voucher_id=e.voucher_id,
                    usage_count=e.usage_count,
                    usage_limit=e.usage_limit,
                )
                await self._mark_voucher_limit_failed(order_id, settlement_id, e)
                metrics.record_notification("voucher_limit_failed", time.time() - start_time)
                raise
            except InsufficientStock as e:
                metrics.record_rollback("insufficient_stock")
                metrics.record_notification("insufficient_stock", time.time() - start_time)
                logger.error(
                    "settlement_rolled_back",
                    reason="insufficient_stock",
                    item_id=e.item_id,
                    requested=e.requested,
                    available=e.available,
                )
                raise
            except StoreUnavailable as e:
                reason = (
                    "line_items_claimed" if isinstance(e, LineItemsClaimed) else "store_unavailable"
                )
                metrics.record_rollback(reason)
                metrics.record_notification(reason, time.time() - start_time)
                logger.error("settlement_rolled_back", reason=reason, error=str(e))
                raise
            except OrderNotResolved:
                metrics.record_notification("unresolved", time.time() - start_time)
                raise

            metrics.record_notification(result.outcome.value, time.time() - start_time)
            logger.info("settlement_committed", **result.to_dict())

            if result.outcome in SIGNALLED_OUTCOMES:
                await self._emit_settled(result, notification)

            return result

    async def _apply(
        self,
        db: AsyncSession,
        order_id: int,
        notification: GatewayNotification,
        target: OrderStatus,
        settlement_id: str,
    ) -> SettlementResult:
        """Body of the unit of work. Raising here rolls everything back."""
        await self._set_lock_timeout(db)

        # Step 1: Lock
        order = await self.order_store.lock_by_id(db, order_id)
        if order is None:
            raise OrderNotResolved(
                gateway_payment_id=notification.gateway_payment_id,
                correlation_id=notification.correlation_id,
                attempted_strategies=[
                    {"strategy": "lock_by_id", "result": "order_missing", "extracted_order_id": order_id}
                ],
            )
        current = order.order_status

        # Step 2: Idempotency
        if current is OrderStatus.PAID:
            logger.info("settlement_already_settled", status=current.value)
            return SettlementResult(
                outcome=SettlementOutcome.ALREADY_SETTLED,
                order_id=order.id,
                status=current.value,
                previous_status=current.value,
                settlement_id=settlement_id,
                message="Order already paid - duplicate notification ignored",
            )
        if current.is_terminal:
            logger.warning(
                "settlement_ignored_terminal_order",
                status=current.value,
                target_status=target.value,
                note="order is final; manual intervention needed if payment was captured",
            )
            return SettlementResult(
                outcome=SettlementOutcome.IGNORED,
                order_id=order.id,
                status=current.value,
                previous_status=current.value,
                settlement_id=settlement_id,
                message=f"Order already {current.value} - notification ignored",
            )

        self._check_amount(order, notification)

        if target is OrderStatus.PAID:
            return await self._settle_paid(db, order, notification, settlement_id)

        # Step 4: Non-paid mapping, no side effects
        new_status = next_status(current, target)
        if new_status is not current:
            await self.order_store.update_status(db, order, new_status)
            await self.order_store.record_event(
                db,
                order.id,
                "order.status_changed",
                old_status=current.value,
                new_status=new_status.value,
                settlement_id=settlement_id,
                event_data=notification.log_fields(),
            )

        outcome = (
            SettlementOutcome.CANCELLED
            if new_status is OrderStatus.CANCELLED
            else SettlementOutcome.PENDING
        )
        return SettlementResult(
            outcome=outcome,
            order_id=order.id,
            status=new_status.value,
            previous_status=current.value,
            settlement_id=settlement_id,
            message=f"Order status is {new_status.value}",
        )

    async def _settle_paid(
        self,
        db: AsyncSession,
        order: Order,
        notification: GatewayNotification,
        settlement_id: str,
    ) -> SettlementResult:
        previous = order.order_status

        # Step 3: Voucher pre-check before any inventory change
        voucher = await self._lock_voucher(db, order)
        if voucher is not None and not voucher.has_capacity:
            raise VoucherLimitExceeded(
                voucher_id=voucher.id,
                usage_count=voucher.usage_count,
                usage_limit=voucher.usage_limit,
                order_id=order.id,
            )

        # Step 5: Line items and stock
        resolved = await self.line_item_resolver.resolve(db, order)
        if not resolved:
            logger.warning("settlement_without_line_items", source=resolved.source)
        await self._decrement_stock(db, resolved)

        if resolved.line_item_ids_to_link:
            expected = len(resolved.line_item_ids_to_link)
            linked = await self._link_line_items(db, resolved, order.id)
            if linked != expected:
                raise LineItemsClaimed(order_id=order.id, expected=expected, linked=linked)
            logger.info("working_selection_linked", linked=linked)

        # Final voucher check closes the window left after the pre-check
        if voucher is not None:
            if not await self.voucher_store.increment_usage(db, voucher.id):
                current = await self.voucher_store.lock_by_id(db, voucher.id)
                raise VoucherLimitExceeded(
                    voucher_id=voucher.id,
                    usage_count=current.usage_count if current else None,
                    usage_limit=current.usage_limit if current else None,
                    order_id=order.id,
                )

        await self.order_store.update_status(
            db,
            order,
            OrderStatus.PAID,
            gateway_payment_id=notification.gateway_payment_id,
            paid_at=notification.paid_at,
            payer_email=notification.payer_email,
            payment_method=notification.payment_method,
            payment_channel=notification.payment_channel,
        )
        decremented = [{"item_id": d.item_id, "quantity": d.quantity} for d in resolved.decrements]
        await self.order_store.record_event(
            db,
            order.id,
            "order.paid",
            old_status=previous.value,
            new_status=OrderStatus.PAID.value,
            settlement_id=settlement_id,
            event_data={
                **notification.log_fields(),
                "line_item_source": resolved.source,
                "decremented": decremented,
                "voucher_id": voucher.id if voucher else None,
            },
        )

        # Counted here; a later commit failure leaves these slightly high
        metrics.record_stock_decrement(resolved.total_units)
        if voucher is not None:
            metrics.record_voucher_redemption()

        return SettlementResult(
            outcome=SettlementOutcome.SETTLED,
            order_id=order.id,
            status=OrderStatus.PAID.value,
            previous_status=previous.value,
            settlement_id=settlement_id,
            line_item_source=resolved.source,
            decremented=decremented,
            voucher_id=voucher.id if voucher else None,
            message="Order paid",
        )

    async def _lock_voucher(self, db: AsyncSession, order: Order) -> Optional[Voucher]:
        association = await self.voucher_store.find_for_order(db, order.id)
        if association is None:
            return None
        voucher = await self.voucher_store.lock_by_id(db, association.voucher_id)
        if voucher is None:
            logger.warning("order_voucher_missing", voucher_id=association.voucher_id)
        return voucher

    async def _decrement_stock(self, db: AsyncSession, resolved: ResolvedLineItems) -> None:
        for decrement in resolved.decrements:
            ok = await self.inventory_store.decrement_stock(
                db, decrement.item_id, decrement.quantity
            )
            if not ok:
                item = await self.inventory_store.find_by_id(db, decrement.item_id)
                raise InsufficientStock(
                    item_id=decrement.item_id,
                    requested=decrement.quantity,
                    available=item.stock if item else None,
                )

    async def _link_line_items(
        self, db: AsyncSession, resolved: ResolvedLineItems, order_id: int
    ) -> int:
        return await self.line_item_store.link_to_order(
            db, resolved.line_item_ids_to_link, order_id
        )

    async def _set_lock_timeout(self, db: AsyncSession) -> None:
        if self.lock_timeout_ms <= 0:
            return
        if db.get_bind().dialect.name != "postgresql":
            return
        await db.execute(text(f"SET LOCAL lock_timeout = '{int(self.lock_timeout_ms)}ms'"))

    @staticmethod
    def _check_amount(order: Order, notification: GatewayNotification) -> None:
        reported = notification.paid_amount or notification.amount
        if reported is not None and reported != order.total_amount:
            logger.warning(
                "notification_amount_mismatch",
                order_total=order.total_amount,
                reported_amount=reported,
            )

    async def _mark_voucher_limit_failed(
        self, order_id: int, settlement_id: str, error: VoucherLimitExceeded
    ) -> None:
        """
        Record the voucher-limit failure on the order after the rollback.

        Runs in its own short transaction; failing to write it does not
        replace the original error.
        """
        try:
            async with session_scope(self.session_factory) as db:
                marked = await self.order_store.mark_failed(
                    db, order_id, OrderStatus.VOUCHER_LIMIT_FAILED
                )
                if marked:
                    await self.order_store.record_event(
                        db,
                        order_id,
                        "order.voucher_limit_failed",
                        new_status=OrderStatus.VOUCHER_LIMIT_FAILED.value,
                        settlement_id=settlement_id,
                        event_data={
                            "voucher_id": error.voucher_id,
                            "usage_count": error.usage_count,
                            "usage_limit": error.usage_limit,
                        },
                    )
            logger.warning("order_marked_voucher_limit_failed", marked=marked)
        except SQLAlchemyError as e:
            logger.error("voucher_limit_failure_mark_failed", error=str(e))

    async def _emit_settled(
        self, result: SettlementResult, notification: GatewayNotification
    ) -> None:
        event = OrderSettled(
            order_id=result.order_id,
            status=result.status,
            previous_status=result.previous_status,
            settlement_id=result.settlement_id,
            gateway_payment_id=notification.gateway_payment_id,
        )
        try:
            await self.notifier.order_settled(event)
        except Exception as e:
            # Settlement is already committed
            metrics.record_notifier_failure()
            logger.error("post_commit_notifier_failed", error=str(e), exc_info=True)
