# src/infrastructure/db/models.py

from sqlalchemy import (
    JSON,
    Boolean,
    String,
    Integer,
    Numeric,
    DateTime,
    Enum,
    Text,
    Index,
    UniqueConstraint,
    CheckConstraint,
    ForeignKey,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from datetime import datetime
from decimal import Decimal
from uuid import uuid4

from src.infrastructure.db.session import Base
from src.domain.pricing import DiscountType
from src.domain.state_machine import OrderStatus, TicketStatus


def _uuid() -> str:
    return str(uuid4())


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


Money = Numeric(10, 2)


class Event(Base):
    """
    Read-mostly projection of the event directory. The engine only
    reads it, apart from the attendee counter.
    """

    __tablename__ = "events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    current_attendees: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    settings: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    ticket_types: Mapped[list["TicketType"]] = relationship(back_populates="event")

    __table_args__ = (
        CheckConstraint("current_attendees >= 0", name="ck_event_attendees_nonnegative"),
    )


class TicketType(Base):
    """
    The only contended row in the engine. The two counters move only
    inside transactions that hold this row's lock.
    """

    __tablename__ = "ticket_types"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    event_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("events.id"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="TRY")
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    sold_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reserved_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    min_per_order: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    max_per_order: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    sale_start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    sale_end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    event: Mapped[Event] = relationship(back_populates="ticket_types")

    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_ticket_type_price_nonnegative"),
        CheckConstraint("capacity >= 0", name="ck_ticket_type_capacity_nonnegative"),
        CheckConstraint("sold_count >= 0", name="ck_ticket_type_sold_nonnegative"),
        CheckConstraint("reserved_count >= 0", name="ck_ticket_type_reserved_nonnegative"),
        CheckConstraint(
            "sold_count + reserved_count <= capacity",
            name="ck_ticket_type_capacity",
        ),
    )

    @property
    def available(self) -> int:
        return self.capacity - self.sold_count - self.reserved_count


class DiscountCode(Base):
    __tablename__ = "discount_codes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    event_id: Mapped[str] = mapped_column(String(36), ForeignKey("events.id"), nullable=False)
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    type: Mapped[DiscountType] = mapped_column(
        Enum(DiscountType, name="discount_type", values_callable=_enum_values),
        nullable=False,
    )
    value: Mapped[Decimal] = mapped_column(Money, nullable=False)
    max_uses: Mapped[int | None] = mapped_column(Integer, nullable=True)
    used_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    min_purchase_amount: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    max_discount_amount: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("event_id", "code", name="uq_discount_code_event_code"),
        CheckConstraint("value > 0", name="ck_discount_value_positive"),
        CheckConstraint("used_count >= 0", name="ck_discount_used_nonnegative"),
    )


class Order(Base):
    """
    Order header. expires_at is set only while the order is pending.
    """

    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    event_id: Mapped[str] = mapped_column(String(36), ForeignKey("events.id"), nullable=False)
    order_number: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[OrderStatus] = mapped_column(
        Enum(OrderStatus, name="order_status", values_callable=_enum_values),
        nullable=False,
        default=OrderStatus.PENDING,
    )
    subtotal: Mapped[Decimal] = mapped_column(Money, nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    service_fee: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="TRY")
    discount_code_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("discount_codes.id"),
        nullable=True,
    )
    payment_method: Mapped[str | None] = mapped_column(String(50), nullable=True)
    payment_provider: Mapped[str | None] = mapped_column(String(50), nullable=True)
    payment_provider_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    items: Mapped[list["OrderItem"]] = relationship(
        back_populates="order",
        order_by="OrderItem.ticket_type_id",
    )
    tickets: Mapped[list["Ticket"]] = relationship(
        back_populates="order",
        order_by="Ticket.id",
    )
    discount_code: Mapped[DiscountCode | None] = relationship()

    __table_args__ = (
        UniqueConstraint("order_number", name="uq_order_number"),
        Index("ix_orders_status_expires_at", "status", "expires_at"),
        Index("ix_orders_event_status", "event_id", "status"),
    )

    @property
    def ticket_count(self) -> int:
        return sum(item.quantity for item in self.items)


class OrderItem(Base):
    """
    One cart line. unit_price is a snapshot of TicketType.price at
    reservation time and is never rewritten.
    """

    __tablename__ = "order_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    order_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("orders.id"),
        nullable=False,
        index=True,
    )
    ticket_type_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("ticket_types.id"),
        nullable=False,
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Money, nullable=False)

    order: Mapped[Order] = relationship(back_populates="items")
    ticket_type: Mapped[TicketType] = relationship()

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_item_quantity_positive"),
    )


class Ticket(Base):
    """One row per seat: the unit of inventory, check-in, transfer and refund."""

    __tablename__ = "tickets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    order_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("orders.id"),
        nullable=False,
        index=True,
    )
    order_item_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("order_items.id"),
        nullable=False,
    )
    event_id: Mapped[str] = mapped_column(String(36), ForeignKey("events.id"), nullable=False)
    ticket_type_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("ticket_types.id"),
        nullable=False,
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    status: Mapped[TicketStatus] = mapped_column(
        Enum(TicketStatus, name="ticket_status", values_callable=_enum_values),
        nullable=False,
        default=TicketStatus.RESERVED,
    )
    qr_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    checked_in_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    checked_in_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    transferred_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    original_owner_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    refund_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    order: Mapped[Order] = relationship(back_populates="tickets")
    ticket_type: Mapped[TicketType] = relationship()
    event: Mapped[Event] = relationship()

    __table_args__ = (
        UniqueConstraint("qr_code", name="uq_ticket_qr_code"),
        Index("ix_tickets_event_status", "event_id", "status"),
    )
