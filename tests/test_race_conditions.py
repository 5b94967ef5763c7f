"""
Race condition tests for concurrent notification deliveries.

Tests idempotency, stock floors and voucher ceilings under concurrent load.
"""
import asyncio
from typing import List

import pytest

from settlement.core.coordinator import SettlementOutcome, SettlementResult
from settlement.exceptions import InsufficientStock, VoucherLimitExceeded


class TestRaceConditions:
    """Test suite for race condition scenarios."""

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_concurrent_redelivery_settles_once(self, handler: any, seed: any, make_payload: any, notifier: any) -> None:
        """
        Test concurrent deliveries of the same notification.

        Only one delivery may decrement stock or count the voucher.
        """
        item = await seed.item(stock=20)
        order = await seed.order()
        await seed.line_item(item, 3, order_id=order.id)
        voucher = await seed.voucher(usage_limit=50)
        await seed.attach_voucher(order, voucher)

        payload = make_payload(f"purchase_{order.id}_1718000000000")
        results = await asyncio.gather(*[handler.handle(dict(payload)) for _ in range(10)])

        outcomes = [r.outcome for r in results]
        assert outcomes.count(SettlementOutcome.SETTLED) == 1
        assert outcomes.count(SettlementOutcome.ALREADY_SETTLED) == 9
        assert (await seed.get_order(order.id)).status == "paid"
        assert (await seed.get_item(item.id)).stock == 17
        assert (await seed.get_voucher(voucher.id)).usage_count == 1
        assert len(notifier.events) == 1

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_shared_voucher_ceiling(self, coordinator: any, seed: any) -> None:
        """
        Test concurrent settlement of orders sharing one capped voucher.

        Exactly ``usage_limit`` orders succeed; the rest are marked failed.
        """
        voucher = await seed.voucher(usage_limit=3)
        orders = []
        for i in range(8):
            order = await seed.order(user_id=100 + i)
            await seed.attach_voucher(order, voucher)
            orders.append(order)

        from settlement.schemas import GatewayNotification

        async def settle(order_id: int) -> SettlementResult:
            return await coordinator.settle(
                order_id,
                GatewayNotification(
                    gateway_payment_id=f"inv_{order_id}",
                    correlation_id=f"purchase_{order_id}",
                    status="PAID",
                ),
            )

        results = await asyncio.gather(*[settle(o.id) for o in orders], return_exceptions=True)

        settled = [r for r in results if isinstance(r, SettlementResult)]
        rejected = [r for r in results if isinstance(r, VoucherLimitExceeded)]
        assert len(settled) == 3
        assert len(rejected) == 5
        assert (await seed.get_voucher(voucher.id)).usage_count == 3

        statuses: List[str] = [(await seed.get_order(o.id)).status for o in orders]
        assert statuses.count("paid") == 3
        assert statuses.count("voucher_limit_failed") == 5

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_stock_never_negative(self, coordinator: any, seed: any) -> None:
        """
        Test concurrent settlement of orders competing for scarce stock.
        """
        item = await seed.item(stock=5)
        orders = []
        for i in range(6):
            order = await seed.order(user_id=200 + i)
            await seed.line_item(item, 2, user_id=200 + i, order_id=order.id)
            orders.append(order)

        from settlement.schemas import GatewayNotification

        results = await asyncio.gather(
            *[
                coordinator.settle(
                    o.id,
                    GatewayNotification(
                        gateway_payment_id=f"inv_{o.id}",
                        correlation_id=f"purchase_{o.id}",
                        status="PAID",
                    ),
                )
                for o in orders
            ],
            return_exceptions=True,
        )

        settled = [r for r in results if isinstance(r, SettlementResult)]
        short = [r for r in results if isinstance(r, InsufficientStock)]
        assert len(settled) == 2
        assert len(short) == 4
        assert (await seed.get_item(item.id)).stock == 1
