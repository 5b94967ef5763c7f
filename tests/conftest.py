"""
Pytest configuration and fixtures.

Every test that touches the store gets its own SQLite database file, so
concurrent settlements really contend for the database write lock.
"""
from typing import Any, AsyncGenerator, Dict, List, Optional

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from settlement.config import Settings
from settlement.core.coordinator import ReconciliationCoordinator
from settlement.core.events import OrderSettled
from settlement.core.line_items import LineItemResolver
from settlement.core.resolver import OrderResolver
from settlement.database.connection import build_engine, build_session_factory, init_db
from settlement.database.models import (
    CheckoutRecord,
    LineItem,
    Order,
    OrderEvent,
    OrderStatus,
    OrderVoucher,
    SellableItem,
    Voucher,
)
from settlement.integrations.webhook_handler import WebhookHandler


@pytest.fixture
def test_settings(tmp_path: Any) -> Settings:
    """Create test settings pointing at a throwaway database file."""
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path}/settlement_test.db",
        database_busy_timeout_seconds=30.0,
        app_name="settlement-core-test",
        app_env="test",
        log_level="DEBUG",
    )


@pytest_asyncio.fixture
async def engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine, Any]:
    """Create test engine with all tables."""
    engine = build_engine(test_settings)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return build_session_factory(engine)


class Seeder:
    """Inserts fixture rows, each in its own committed transaction."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def _add(self, obj: Any) -> Any:
        async with self.session_factory() as db:
            db.add(obj)
            await db.commit()
            return obj

    async def item(self, name: str = "Festival ticket", unit_price: int = 50000, stock: int = 10) -> SellableItem:
        return await self._add(SellableItem(name=name, unit_price=unit_price, stock=stock))

    async def order(
        self,
        user_id: int = 1,
        total_amount: int = 100000,
        status: OrderStatus = OrderStatus.AWAITING_PAYMENT,
        correlation_id: Optional[str] = None,
        gateway_payment_id: Optional[str] = None,
        primary_item_id: Optional[int] = None,
    ) -> Order:
        return await self._add(
            Order(
                user_id=user_id,
                total_amount=total_amount,
                status=status.value,
                correlation_id=correlation_id,
                gateway_payment_id=gateway_payment_id,
                primary_item_id=primary_item_id,
            )
        )

    async def line_item(
        self, item: SellableItem, quantity: int, user_id: int = 1, order_id: Optional[int] = None
    ) -> LineItem:
        return await self._add(
            LineItem(
                user_id=user_id,
                item_id=item.id,
                order_id=order_id,
                quantity=quantity,
                unit_price=item.unit_price,
            )
        )

    async def checkout_record(
        self, order: Order, item: Optional[SellableItem], quantity: int = 1
    ) -> CheckoutRecord:
        return await self._add(
            CheckoutRecord(
                order_id=order.id,
                item_id=item.id if item else None,
                quantity=quantity,
                full_name="Test Buyer",
                city="Jakarta",
            )
        )

    async def voucher(self, code: str = "PROMO10", usage_limit: Optional[int] = 1, usage_count: int = 0) -> Voucher:
        return await self._add(
            Voucher(
                code=code,
                discount_type="percentage",
                discount_value=10,
                usage_count=usage_count,
                usage_limit=usage_limit,
            )
        )

    async def attach_voucher(self, order: Order, voucher: Voucher) -> OrderVoucher:
        return await self._add(
            OrderVoucher(order_id=order.id, voucher_id=voucher.id, discount_amount=10000)
        )

    async def get_order(self, order_id: int) -> Order:
        async with self.session_factory() as db:
            return await db.get(Order, order_id)

    async def get_item(self, item_id: int) -> SellableItem:
        async with self.session_factory() as db:
            return await db.get(SellableItem, item_id)

    async def get_voucher(self, voucher_id: int) -> Voucher:
        async with self.session_factory() as db:
            return await db.get(Voucher, voucher_id)

    async def get_line_item(self, line_item_id: int) -> LineItem:
        async with self.session_factory() as db:
            return await db.get(LineItem, line_item_id)

    async def events(self, order_id: int) -> List[OrderEvent]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(OrderEvent).where(OrderEvent.order_id == order_id).order_by(OrderEvent.id)
            )
            return list(result.scalars().all())


@pytest_asyncio.fixture
async def seed(session_factory: async_sessionmaker[AsyncSession]) -> Seeder:
    """Row factory for the test database."""
    return Seeder(session_factory)


class RecordingNotifier:
    """Notifier that keeps every signal it receives."""

    def __init__(self) -> None:
        self.events: List[OrderSettled] = []

    async def order_settled(self, event: OrderSettled) -> None:
        self.events.append(event)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def coordinator(
    session_factory: async_sessionmaker[AsyncSession], notifier: RecordingNotifier
) -> ReconciliationCoordinator:
    """Coordinator with all fallbacks enabled and a recording notifier."""
    return ReconciliationCoordinator(
        session_factory=session_factory,
        line_item_resolver=LineItemResolver(
            allow_working_selection=True, allow_quantity_inference=True
        ),
        notifier=notifier,
    )


@pytest.fixture
def handler(
    session_factory: async_sessionmaker[AsyncSession],
    coordinator: ReconciliationCoordinator,
) -> WebhookHandler:
    return WebhookHandler(
        session_factory=session_factory,
        resolver=OrderResolver(correlation_prefix="purchase", diagnostic_snapshot_limit=10),
        coordinator=coordinator,
    )


@pytest.fixture
def make_payload() -> Any:
    """Build a gateway notification body."""

    def _make(
        correlation_id: str,
        status: str = "PAID",
        gateway_payment_id: str = "inv_test_001",
        **extra: Any,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": gateway_payment_id,
            "external_id": correlation_id,
            "status": status,
        }
        payload.update(extra)
        return payload

    return _make
