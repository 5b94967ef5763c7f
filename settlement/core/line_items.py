"""
Line-item resolution for orders that are being settled.

Produces the (sellable item, quantity) pairs whose stock a paid order
consumes. Sources are tried in order and the first non-empty one wins:

1. ``linked`` - line items linked to the order at checkout (normal path)
2. ``checkout_record`` - the checkout record's item and explicit quantity
3. ``working_selection`` - the user's current unlinked selection (risky:
   the selection may have changed since checkout)
4. ``quantity_inference`` - the order's primary item, with quantity
   inferred as total / unit price (lossy once discounts apply)
"""
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional, Tuple

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.config import get_settings
from settlement.database.models import Order
from settlement.monitoring.metrics import metrics
from settlement.stores import (
    InventoryStore,
    LineItemStore,
    SqlInventoryStore,
    SqlLineItemStore,
)

logger = structlog.get_logger(__name__)

SOURCE_LINKED = "linked"
SOURCE_CHECKOUT_RECORD = "checkout_record"
SOURCE_WORKING_SELECTION = "working_selection"
SOURCE_QUANTITY_INFERENCE = "quantity_inference"
SOURCE_NONE = "none"


@dataclass(frozen=True)
class StockDecrement:
    """Units of one sellable item a settlement must take from stock."""

    item_id: int
    quantity: int


@dataclass
class ResolvedLineItems:
    """Decrements to apply plus where they came from."""

    source: str
    decrements: List[StockDecrement] = field(default_factory=list)
    # Unlinked line items that should be linked to the order on settlement
    line_item_ids_to_link: List[int] = field(default_factory=list)

    @property
    def total_units(self) -> int:
        return sum(d.quantity for d in self.decrements)

    def __bool__(self) -> bool:
        return bool(self.decrements)


def merge_decrements(pairs: List[Tuple[int, int]]) -> List[StockDecrement]:
    """
    Merge quantities per item and order by item id.

    Concurrent settlements touching the same items then take row locks in
    the same order.
    """
    merged: Dict[int, int] = {}
    for item_id, quantity in pairs:
        if quantity <= 0:
            continue
        merged[item_id] = merged.get(item_id, 0) + quantity
    return [StockDecrement(item_id=i, quantity=q) for i, q in sorted(merged.items())]


def infer_quantity(total_amount: int, unit_price: int) -> Optional[int]:
    """
    Infer units bought from an order total (legacy single-item orders).

    Rounds to the nearest whole unit (half up) with a floor of one. Returns
    None when the unit price is not positive.
    """
    if unit_price <= 0:
        return None
    units = (Decimal(total_amount) / Decimal(unit_price)).quantize(
        Decimal(1), rounding=ROUND_HALF_UP
    )
    return max(1, int(units))


class LineItemResolver:
    """Resolves an order to the stock decrements its payment authorizes."""

    def __init__(
        self,
        line_item_store: Optional[LineItemStore] = None,
        inventory_store: Optional[InventoryStore] = None,
        allow_working_selection: Optional[bool] = None,
        allow_quantity_inference: Optional[bool] = None,
    ):
        settings = get_settings()
        self.line_item_store = line_item_store or SqlLineItemStore()
        self.inventory_store = inventory_store or SqlInventoryStore()
        self.allow_working_selection = (
            settings.allow_working_selection_fallback
            if allow_working_selection is None
            else allow_working_selection
        )
        self.allow_quantity_inference = (
            settings.allow_quantity_inference_fallback
            if allow_quantity_inference is None
            else allow_quantity_inference
        )

    async def resolve(self, db: AsyncSession, order: Order) -> ResolvedLineItems:
        """
        Resolve the decrements for ``order``.

        Args:
            db: Unit-of-work session
            order: Locked order being settled

        Returns:
            ResolvedLineItems: Possibly empty when no source yields anything
        """
        resolved = (
            await self._from_linked(db, order)
            or await self._from_checkout_record(db, order)
            or await self._from_working_selection(db, order)
            or await self._from_quantity_inference(db, order)
            or ResolvedLineItems(source=SOURCE_NONE)
        )

        metrics.record_line_item_resolution(resolved.source)
        logger.info(
            "line_items_resolved",
            order_id=order.id,
            source=resolved.source,
            items=[(d.item_id, d.quantity) for d in resolved.decrements],
        )
        return resolved

    async def _from_linked(self, db: AsyncSession, order: Order) -> ResolvedLineItems:
        items = await self.line_item_store.find_linked_by_order(db, order.id)
        return ResolvedLineItems(
            source=SOURCE_LINKED,
            decrements=merge_decrements([(i.item_id, i.quantity) for i in items]),
        )

    async def _from_checkout_record(
        self, db: AsyncSession, order: Order
    ) -> ResolvedLineItems:
        record = await self.line_item_store.find_by_checkout_record(db, order.id)
        if record is None or record.item_id is None:
            return ResolvedLineItems(source=SOURCE_CHECKOUT_RECORD)

        item = await self.inventory_store.find_by_id(db, record.item_id)
        if item is None:
            logger.warning(
                "checkout_record_item_missing",
                order_id=order.id,
                checkout_record_id=record.id,
                item_id=record.item_id,
            )
            return ResolvedLineItems(source=SOURCE_CHECKOUT_RECORD)

        return ResolvedLineItems(
            source=SOURCE_CHECKOUT_RECORD,
            decrements=merge_decrements([(item.id, record.quantity or 1)]),
        )

    async def _from_working_selection(
        self, db: AsyncSession, order: Order
    ) -> ResolvedLineItems:
        if not self.allow_working_selection:
            return ResolvedLineItems(source=SOURCE_WORKING_SELECTION)

        items = await self.line_item_store.find_unlinked_by_user(db, order.user_id)
        if not items:
            return ResolvedLineItems(source=SOURCE_WORKING_SELECTION)

        logger.warning(
            "line_items_from_working_selection",
            order_id=order.id,
            user_id=order.user_id,
            line_item_ids=[i.id for i in items],
            note="selection may have changed since checkout",
        )
        return ResolvedLineItems(
            source=SOURCE_WORKING_SELECTION,
            decrements=merge_decrements([(i.item_id, i.quantity) for i in items]),
            line_item_ids_to_link=[i.id for i in items],
        )

    async def _from_quantity_inference(
        self, db: AsyncSession, order: Order
    ) -> ResolvedLineItems:
        if not self.allow_quantity_inference or order.primary_item_id is None:
            return ResolvedLineItems(source=SOURCE_QUANTITY_INFERENCE)

        item = await self.inventory_store.find_by_id(db, order.primary_item_id)
        if item is None:
            logger.warning(
                "primary_item_missing",
                order_id=order.id,
                item_id=order.primary_item_id,
            )
            return ResolvedLineItems(source=SOURCE_QUANTITY_INFERENCE)

        quantity = infer_quantity(order.total_amount, item.unit_price)
        if quantity is None:
            logger.warning(
                "quantity_inference_skipped",
                order_id=order.id,
                item_id=item.id,
                unit_price=item.unit_price,
            )
            return ResolvedLineItems(source=SOURCE_QUANTITY_INFERENCE)

        logger.warning(
            "line_items_from_quantity_inference",
            order_id=order.id,
            item_id=item.id,
            total_amount=order.total_amount,
            unit_price=item.unit_price,
            inferred_quantity=quantity,
        )
        return ResolvedLineItems(
            source=SOURCE_QUANTITY_INFERENCE,
            decrements=[StockDecrement(item_id=item.id, quantity=quantity)],
        )
