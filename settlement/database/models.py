"""SQLAlchemy database models for the settlement core."""
import enum
from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# SQLite only auto-increments INTEGER PRIMARY KEY columns
BigIntegerPK = BigInteger().with_variant(Integer, "sqlite")


def utcnow() -> datetime:
    """Timezone-aware current time used for all timestamp columns."""
    return datetime.now(timezone.utc)


class OrderStatus(str, enum.Enum):
    """Persisted order status vocabulary."""

    CREATED = "created"
    AWAITING_PAYMENT = "awaiting_payment"
    PAID = "paid"
    CANCELLED = "cancelled"
    VOUCHER_LIMIT_FAILED = "voucher_limit_failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def rank(self) -> int:
        """Position along the lattice; terminal statuses share the top rank."""
        if self is OrderStatus.CREATED:
            return 0
        if self is OrderStatus.AWAITING_PAYMENT:
            return 1
        return 2


TERMINAL_STATUSES = frozenset(
    {OrderStatus.PAID, OrderStatus.CANCELLED, OrderStatus.VOUCHER_LIMIT_FAILED}
)

_STATUS_SQL_LIST = ", ".join(f"'{s.value}'" for s in OrderStatus)


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class SellableItem(Base):
    """
    Sellable items table.

    Stock is only mutated by the reconciliation coordinator while an order
    settles; the check constraint is the last line against negative stock.
    """

    __tablename__ = "sellable_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    unit_price: Mapped[int] = mapped_column(BigInteger, nullable=False)
    stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint("stock >= 0", name="non_negative_stock"),
        CheckConstraint("unit_price >= 0", name="non_negative_unit_price"),
    )

    def __repr__(self) -> str:
        return f"<SellableItem(id={self.id}, name={self.name!r}, stock={self.stock})>"


class Order(Base):
    """
    Orders table.

    Status moves monotonically: created -> awaiting_payment -> one of the
    terminal statuses. The correlation id is the string handed to the
    payment gateway and echoed back in its notifications.
    """

    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    total_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=OrderStatus.CREATED.value, index=True
    )
    correlation_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    gateway_payment_id: Mapped[str | None] = mapped_column(
        String(255), nullable=True, unique=True
    )
    # Single-item ("buy now") orders record the item directly
    primary_item_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("sellable_items.id"), nullable=True
    )
    payer_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payment_method: Mapped[str | None] = mapped_column(String(64), nullable=True)
    payment_channel: Mapped[str | None] = mapped_column(String(64), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        CheckConstraint("total_amount >= 0", name="non_negative_total"),
        CheckConstraint(f"status IN ({_STATUS_SQL_LIST})", name="valid_order_status"),
        Index("idx_orders_user_status", "user_id", "status"),
    )

    @property
    def order_status(self) -> OrderStatus:
        return OrderStatus(self.status)

    def __repr__(self) -> str:
        return (
            f"<Order(id={self.id}, user_id={self.user_id}, "
            f"total={self.total_amount}, status={self.status})>"
        )


class LineItem(Base):
    """
    Line items table (the user's working selection).

    ``order_id`` stays NULL until checkout links the item to an order.
    """

    __tablename__ = "line_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    item_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("sellable_items.id"), nullable=False
    )
    order_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("orders.id"), nullable=True, index=True
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint("quantity > 0", name="positive_quantity"),
        Index("idx_line_items_user_unlinked", "user_id", "order_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<LineItem(id={self.id}, item_id={self.item_id}, "
            f"quantity={self.quantity}, order_id={self.order_id})>"
        )


class CheckoutRecord(Base):
    """
    Checkout (shipping) records table.

    Captured at checkout time together with the explicit quantity, so a
    single-item order can be settled even when no line items were linked.
    """

    __tablename__ = "checkout_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("orders.id"), nullable=False, index=True
    )
    item_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("sellable_items.id"), nullable=True
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    address_line1: Mapped[str | None] = mapped_column(String(255), nullable=True)
    city: Mapped[str | None] = mapped_column(String(128), nullable=True)
    postal_code: Mapped[str | None] = mapped_column(String(32), nullable=True)
    country: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (CheckConstraint("quantity > 0", name="positive_checkout_quantity"),)

    def __repr__(self) -> str:
        return (
            f"<CheckoutRecord(id={self.id}, order_id={self.order_id}, "
            f"item_id={self.item_id}, quantity={self.quantity})>"
        )


class Voucher(Base):
    """
    Promotional vouchers table.

    ``usage_limit`` NULL means unlimited redemptions.
    """

    __tablename__ = "vouchers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    discount_type: Mapped[str] = mapped_column(String(16), nullable=False, default="percentage")
    discount_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    usage_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint("usage_count >= 0", name="non_negative_usage"),
        CheckConstraint(
            "usage_limit IS NULL OR usage_count <= usage_limit", name="usage_within_limit"
        ),
        CheckConstraint("discount_type IN ('percentage', 'fixed')", name="valid_discount_type"),
    )

    @property
    def has_capacity(self) -> bool:
        return self.usage_limit is None or self.usage_count < self.usage_limit

    def __repr__(self) -> str:
        return (
            f"<Voucher(id={self.id}, code={self.code!r}, "
            f"usage={self.usage_count}/{self.usage_limit})>"
        )


class OrderVoucher(Base):
    """
    Order-voucher association table.

    Written at order creation; at most one voucher per order. The discount
    amount is locked in when the voucher is applied.
    """

    __tablename__ = "order_vouchers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("orders.id"), nullable=False, unique=True
    )
    voucher_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("vouchers.id"), nullable=False, index=True
    )
    discount_amount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    def __repr__(self) -> str:
        return f"<OrderVoucher(order_id={self.order_id}, voucher_id={self.voucher_id})>"


class OrderEvent(Base):
    """
    Order events audit trail table.

    Written inside the settlement unit of work, so rolled-back attempts
    leave no row behind. Immutable once written.
    """

    __tablename__ = "order_events"

    id: Mapped[int] = mapped_column(BigIntegerPK, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    old_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    new_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    settlement_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    event_data: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )

    def __repr__(self) -> str:
        return (
            f"<OrderEvent(id={self.id}, order_id={self.order_id}, "
            f"type={self.event_type})>"
        )
