"""
Tests for line-item resolution and its fallback chain.
"""
import pytest

from settlement.core.line_items import (
    SOURCE_CHECKOUT_RECORD,
    SOURCE_LINKED,
    SOURCE_NONE,
    SOURCE_QUANTITY_INFERENCE,
    SOURCE_WORKING_SELECTION,
    LineItemResolver,
    StockDecrement,
    infer_quantity,
    merge_decrements,
)
from settlement.database.models import Order


class TestHelpers:
    """Test suite for pure line-item helpers."""

    @pytest.mark.unit
    def test_merge_decrements_sums_and_orders_by_item(self) -> None:
        merged = merge_decrements([(7, 1), (3, 2), (7, 2), (5, 0)])
        assert merged == [StockDecrement(item_id=3, quantity=2), StockDecrement(item_id=7, quantity=3)]

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "total, unit_price, expected",
        [
            (150000, 50000, 3),
            (125000, 50000, 3),  # 2.5 rounds half up
            (120000, 50000, 2),
            (10000, 50000, 1),  # floor of one
            (0, 50000, 1),
        ],
    )
    def test_infer_quantity(self, total: int, unit_price: int, expected: int) -> None:
        assert infer_quantity(total, unit_price) == expected

    @pytest.mark.unit
    def test_infer_quantity_needs_positive_price(self) -> None:
        assert infer_quantity(100000, 0) is None


class TestLineItemResolver:
    """Test suite for the fallback chain against the store."""

    @pytest.fixture
    def resolver(self) -> LineItemResolver:
        return LineItemResolver(allow_working_selection=True, allow_quantity_inference=True)

    async def _resolve(self, resolver: LineItemResolver, session_factory: any, order_id: int) -> any:
        async with session_factory() as db:
            order = await db.get(Order, order_id)
            return await resolver.resolve(db, order)

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_linked_items_first(self, resolver: LineItemResolver, seed: any, session_factory: any) -> None:
        a = await seed.item(name="A")
        b = await seed.item(name="B")
        order = await seed.order(primary_item_id=a.id)
        await seed.line_item(b, 1, order_id=order.id)
        await seed.line_item(a, 2, order_id=order.id)
        await seed.checkout_record(order, a, quantity=9)
        await seed.line_item(a, 4)  # unlinked working selection

        resolved = await self._resolve(resolver, session_factory, order.id)

        assert resolved.source == SOURCE_LINKED
        assert resolved.decrements == [
            StockDecrement(item_id=a.id, quantity=2),
            StockDecrement(item_id=b.id, quantity=1),
        ]
        assert resolved.line_item_ids_to_link == []

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_checkout_record(self, resolver: LineItemResolver, seed: any, session_factory: any) -> None:
        item = await seed.item()
        order = await seed.order()
        await seed.checkout_record(order, None)
        await seed.checkout_record(order, item, quantity=3)
        await seed.line_item(item, 1)

        resolved = await self._resolve(resolver, session_factory, order.id)

        assert resolved.source == SOURCE_CHECKOUT_RECORD
        assert resolved.decrements == [StockDecrement(item_id=item.id, quantity=3)]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_working_selection(self, resolver: LineItemResolver, seed: any, session_factory: any) -> None:
        item = await seed.item()
        order = await seed.order(user_id=5)
        first = await seed.line_item(item, 1, user_id=5)
        second = await seed.line_item(item, 2, user_id=5)
        await seed.line_item(item, 8, user_id=6)

        resolved = await self._resolve(resolver, session_factory, order.id)

        assert resolved.source == SOURCE_WORKING_SELECTION
        assert resolved.decrements == [StockDecrement(item_id=item.id, quantity=3)]
        assert resolved.line_item_ids_to_link == [first.id, second.id]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_working_selection_disabled(self, seed: any, session_factory: any) -> None:
        item = await seed.item()
        order = await seed.order(user_id=5)
        await seed.line_item(item, 1, user_id=5)
        resolver = LineItemResolver(allow_working_selection=False, allow_quantity_inference=False)

        resolved = await self._resolve(resolver, session_factory, order.id)

        assert resolved.source == SOURCE_NONE
        assert not resolved

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_quantity_inference(self, resolver: LineItemResolver, seed: any, session_factory: any) -> None:
        item = await seed.item(unit_price=50000)
        order = await seed.order(total_amount=150000, primary_item_id=item.id)

        resolved = await self._resolve(resolver, session_factory, order.id)

        assert resolved.source == SOURCE_QUANTITY_INFERENCE
        assert resolved.decrements == [StockDecrement(item_id=item.id, quantity=3)]
        assert resolved.total_units == 3

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_nothing_found(self, resolver: LineItemResolver, seed: any, session_factory: any) -> None:
        order = await seed.order()

        resolved = await self._resolve(resolver, session_factory, order.id)

        assert resolved.source == SOURCE_NONE
        assert resolved.decrements == []
