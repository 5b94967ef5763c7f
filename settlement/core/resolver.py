"""
Order resolution for inbound gateway notifications.

Maps a notification's gateway payment id and free-form correlation string
to an internal order id. Strategies run in order and the first match wins:

1. Exact lookup by stored gateway payment id
2. Correlation templates, each a pure ``str -> Optional[int]`` matcher:
   ``{prefix}_{orderId}_{timestamp}``, ``{prefix}_{orderId}``,
   ``{prefix}_{orderId}_{anySuffix}``, ``invoice_{inner}`` where ``inner``
   embeds ``{prefix}_{orderId}``, and a bare numeric id
3. Exact lookup by stored correlation id (only when no template matched)
"""
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.config import get_settings
from settlement.exceptions import OrderNotResolved
from settlement.monitoring.metrics import metrics
from settlement.stores import OrderStore, SqlOrderStore, translate_store_errors

logger = structlog.get_logger(__name__)

CorrelationMatcher = Callable[[str], Optional[int]]


@dataclass(frozen=True)
class ResolvedOrder:
    """Outcome of a successful resolution."""

    order_id: int
    strategy: str


# Order ids are Integer primary keys
MAX_ORDER_ID = 2**31 - 1


def _to_order_id(value: str) -> Optional[int]:
    order_id = int(value)
    return order_id if 0 < order_id <= MAX_ORDER_ID else None


def build_correlation_matchers(prefix: str) -> List[Tuple[str, CorrelationMatcher]]:
    """
    Build the ordered correlation-template matchers for ``prefix``.

    Args:
        prefix: Prefix used when correlation strings were generated

    Returns:
        List of (strategy name, matcher) pairs in evaluation order
    """
    p = re.escape(prefix)
    with_timestamp = re.compile(rf"^{p}_(\d+)_(\d+)$")
    plain = re.compile(rf"^{p}_(\d+)$")
    any_suffix = re.compile(rf"^{p}_(\d+)_(.+)$")
    invoice_wrapped = re.compile(r"^invoice_(.+)$")
    embedded = re.compile(rf"{p}_(\d+)")
    bare_numeric = re.compile(r"^(\d+)$")

    def match_with_timestamp(value: str) -> Optional[int]:
        m = with_timestamp.match(value)
        return _to_order_id(m.group(1)) if m else None

    def match_plain(value: str) -> Optional[int]:
        m = plain.match(value)
        return _to_order_id(m.group(1)) if m else None

    def match_any_suffix(value: str) -> Optional[int]:
        m = any_suffix.match(value)
        return _to_order_id(m.group(1)) if m else None

    def match_invoice_wrapped(value: str) -> Optional[int]:
        m = invoice_wrapped.match(value)
        if not m:
            return None
        inner = embedded.search(m.group(1))
        return _to_order_id(inner.group(1)) if inner else None

    def match_bare_numeric(value: str) -> Optional[int]:
        m = bare_numeric.match(value)
        return _to_order_id(m.group(1)) if m else None

    return [
        ("prefix_id_timestamp", match_with_timestamp),
        ("prefix_id", match_plain),
        ("prefix_id_suffix", match_any_suffix),
        ("invoice_wrapped", match_invoice_wrapped),
        ("bare_numeric", match_bare_numeric),
    ]


def extract_order_id(
    correlation_id: Optional[str],
    matchers: Sequence[Tuple[str, CorrelationMatcher]],
) -> Tuple[Optional[int], Optional[str], List[Dict[str, Any]]]:
    """
    Run matchers over a correlation string until one extracts an id.

    Returns:
        (order id, strategy name, attempts) where id and name are None if nothing matched
    """
    attempts: List[Dict[str, Any]] = []
    value = (correlation_id or "").strip()
    for name, matcher in matchers:
        order_id = matcher(value) if value else None
        if order_id is not None:
            attempts.append({"strategy": name, "result": "matched", "extracted_order_id": order_id})
            return order_id, name, attempts
        attempts.append({"strategy": name, "result": "no_match"})
    return None, None, attempts


class OrderResolver:
    """
    Resolves notifications to orders using an ordered chain of strategies.
    """

    def __init__(
        self,
        order_store: Optional[OrderStore] = None,
        correlation_prefix: Optional[str] = None,
        diagnostic_snapshot_limit: Optional[int] = None,
    ):
        """
        Initialize the resolver.

        Args:
            order_store: Order store (defaults to the SQLAlchemy store)
            correlation_prefix: Prefix of generated correlation strings
            diagnostic_snapshot_limit: Candidate orders listed on failure
        """
        settings = get_settings()
        self.order_store = order_store or SqlOrderStore()
        self.correlation_prefix = correlation_prefix or settings.correlation_prefix
        self.diagnostic_snapshot_limit = (
            diagnostic_snapshot_limit
            if diagnostic_snapshot_limit is not None
            else settings.diagnostic_snapshot_limit
        )
        self.matchers = build_correlation_matchers(self.correlation_prefix)

    async def resolve(
        self,
        db: AsyncSession,
        gateway_payment_id: Optional[str],
        correlation_id: Optional[str],
    ) -> ResolvedOrder:
        """
        Resolve a notification to an internal order id.

        Args:
            db: Database session used for lookups
            gateway_payment_id: Payment id reported by the gateway
            correlation_id: Correlation string echoed by the gateway

        Returns:
            ResolvedOrder: Order id and the strategy that found it

        Raises:
            OrderNotResolved: If every strategy is exhausted
            StoreUnavailable: On transient store failures
        """
        async with translate_store_errors("order resolution"):
            return await self._resolve(db, gateway_payment_id, correlation_id)

    async def _resolve(
        self,
        db: AsyncSession,
        gateway_payment_id: Optional[str],
        correlation_id: Optional[str],
    ) -> ResolvedOrder:
        attempts: List[Dict[str, Any]] = []

        if gateway_payment_id:
            order = await self.order_store.find_by_payment_id(db, gateway_payment_id)
            if order is not None:
                return self._resolved(order.id, "gateway_payment_id", correlation_id)
        attempts.append({"strategy": "gateway_payment_id", "result": "no_match"})

        order_id, strategy, template_attempts = extract_order_id(correlation_id, self.matchers)
        attempts.extend(template_attempts)

        if order_id is not None and strategy is not None:
            order = await self.order_store.find_by_id(db, order_id)
            if order is not None:
                return self._resolved(order.id, strategy, correlation_id)
            attempts[-1]["result"] = "order_missing"
            logger.warning(
                "order_resolution_extracted_id_missing",
                strategy=strategy,
                extracted_order_id=order_id,
                correlation_id=correlation_id,
            )
        elif correlation_id:
            order = await self.order_store.find_by_correlation_id(db, correlation_id)
            if order is not None:
                return self._resolved(order.id, "stored_correlation_id", correlation_id)
            attempts.append({"strategy": "stored_correlation_id", "result": "no_match"})

        candidates = await self.order_store.snapshot_candidates(
            db, self.diagnostic_snapshot_limit
        )
        metrics.record_order_resolution("unresolved")
        error = OrderNotResolved(
            gateway_payment_id=gateway_payment_id,
            correlation_id=correlation_id,
            attempted_strategies=attempts,
            candidates=candidates,
        )
        logger.error("order_resolution_failed", **error.to_dict())
        raise error

    def _resolved(
        self, order_id: int, strategy: str, correlation_id: Optional[str]
    ) -> ResolvedOrder:
        metrics.record_order_resolution(strategy)
        logger.info(
            "order_resolved",
            order_id=order_id,
            strategy=strategy,
            correlation_id=correlation_id,
        )
        return ResolvedOrder(order_id=order_id, strategy=strategy)
