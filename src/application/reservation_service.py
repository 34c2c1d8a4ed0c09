# src/application/reservation_service.py

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from typing import Iterable

from sqlalchemy.orm import Session

from src.config import ORDER_CURRENCY, ORDER_EXPIRATION_MINUTES, SERVICE_FEE_PERCENT
from src.domain.clock import as_utc, utc_now
from src.domain.exceptions import (
    BadRequestError,
    DiscountCodeError,
    ForbiddenError,
    InsufficientInventoryError,
    NotFoundError,
)
from src.domain.identifiers import generate_order_number
from src.domain.pricing import PriceLine, price_order, round_money
from src.infrastructure.db.models import Event, Order, TicketType
from src.infrastructure.db.transaction import unit_of_work
from src.infrastructure.repositories.discount_code_repository import DiscountCodeRepository
from src.infrastructure.repositories.event_repository import EventRepository
from src.infrastructure.repositories.order_repository import OrderRepository
from src.infrastructure.repositories.ticket_type_repository import TicketTypeRepository

logger = logging.getLogger(__name__)

_ORDER_NUMBER_ATTEMPTS = 5


@dataclass(frozen=True)
class CartItem:
    ticket_type_id: str
    quantity: int


def merge_cart(cart: Iterable[CartItem]) -> list[CartItem]:
    """Collapse repeated ticket types into one line, keeping first-seen order."""
    quantities: dict[str, int] = {}
    for item in cart:
        if item.quantity < 1:
            raise BadRequestError("Quantity must be at least 1")
        quantities[item.ticket_type_id] = quantities.get(item.ticket_type_id, 0) + item.quantity
    return [CartItem(ticket_type_id=key, quantity=qty) for key, qty in quantities.items()]


class ReservationService:
    """
    Turns a cart into a pending order with RESERVED tickets.

    The whole reservation is one serializable transaction: every
    referenced ticket type is locked up front, validated, priced and
    incremented under that lock, so concurrent buyers of the same
    ticket type are serialized and capacity can never be oversold.
    """

    def __init__(self, db: Session):
        self.db = db
        self.event_repository = EventRepository(db)
        self.ticket_type_repository = TicketTypeRepository(db)
        self.discount_code_repository = DiscountCodeRepository(db)
        self.order_repository = OrderRepository(db)

    def reserve(
        self,
        user_id: str,
        event_id: str,
        cart: Iterable[CartItem],
        discount_code: str | None = None,
        now: datetime | None = None,
    ) -> Order:
        now = as_utc(now) or utc_now()
        items = merge_cart(cart)
        if not items:
            raise BadRequestError("At least one item is required")

        with unit_of_work(self.db, serializable=True):
            event = self.event_repository.get_by_id(event_id)
            self._ensure_event_on_sale(event, now)

            ticket_types = self.ticket_type_repository.lock_for_items(items)
            for item in items:
                self._validate_item(event_id, ticket_types[item.ticket_type_id], item.quantity, now)

            lines = [
                PriceLine(unit_price=ticket_types[item.ticket_type_id].price, quantity=item.quantity)
                for item in items
            ]

            discount = None
            rule = None
            if discount_code:
                discount = self.discount_code_repository.lock_by_event_and_code(
                    event_id,
                    discount_code.strip(),
                )
                if not discount:
                    raise DiscountCodeError("Invalid discount code")
                rule = self.discount_code_repository.to_rule(discount)

            breakdown = price_order(lines, now, rule, SERVICE_FEE_PERCENT)

            order = self.order_repository.create_order(
                user_id=user_id,
                event_id=event_id,
                order_number=self._new_order_number(now),
                subtotal=breakdown.subtotal,
                discount_amount=breakdown.discount_amount,
                service_fee=breakdown.service_fee,
                amount=breakdown.total,
                currency=ORDER_CURRENCY,
                discount_code_id=discount.id if discount else None,
                expires_at=now + timedelta(minutes=ORDER_EXPIRATION_MINUTES),
            )

            for item, line in zip(items, lines):
                ticket_type = ticket_types[item.ticket_type_id]
                self.order_repository.add_item_with_tickets(
                    order=order,
                    ticket_type_id=ticket_type.id,
                    quantity=item.quantity,
                    unit_price=round_money(ticket_type.price),
                    total_price=line.total,
                )
                self.ticket_type_repository.reserve(ticket_type, item.quantity)

            if discount:
                self.discount_code_repository.increment_usage(discount)

            self.db.flush()

        logger.info(
            "Reserved order %s for user %s on event %s (%s tickets, total %s %s)",
            order.order_number,
            user_id,
            event_id,
            sum(item.quantity for item in items),
            order.amount,
            order.currency,
        )
        return order

    @staticmethod
    def _ensure_event_on_sale(event: Event | None, now: datetime) -> None:
        if not event or event.deleted_at is not None:
            raise NotFoundError("Event not found")

        if event.status != "published":
            raise ForbiddenError("Event is not available for ticket sales")

        if as_utc(event.start_date) <= now:
            raise ForbiddenError("Event has already started")

    @staticmethod
    def _validate_item(
        event_id: str,
        ticket_type: TicketType,
        quantity: int,
        now: datetime,
    ) -> None:
        if ticket_type.event_id != event_id:
            raise BadRequestError("Ticket type does not belong to this event")

        if not ticket_type.is_active:
            raise BadRequestError(f'Ticket type "{ticket_type.name}" is not available')

        sale_start = as_utc(ticket_type.sale_start_date)
        if sale_start is not None and sale_start > now:
            raise BadRequestError(f'Sales for "{ticket_type.name}" have not started yet')

        sale_end = as_utc(ticket_type.sale_end_date)
        if sale_end is not None and sale_end < now:
            raise BadRequestError(f'Sales for "{ticket_type.name}" have ended')

        if quantity < ticket_type.min_per_order:
            raise BadRequestError(
                f'Minimum {ticket_type.min_per_order} tickets required for "{ticket_type.name}"'
            )
        if quantity > ticket_type.max_per_order:
            raise BadRequestError(
                f'Maximum {ticket_type.max_per_order} tickets allowed for "{ticket_type.name}"'
            )

        if quantity > ticket_type.available:
            raise InsufficientInventoryError(ticket_type.name, ticket_type.available)

    def _new_order_number(self, now: datetime) -> str:
        for _ in range(_ORDER_NUMBER_ATTEMPTS):
            order_number = generate_order_number(now)
            if not self.order_repository.order_number_exists(order_number):
                return order_number
        # The unique constraint still guards the insert.
        return generate_order_number(now)
