# src/application/refund_service.py

from dataclasses import dataclass
from datetime import datetime
import logging

from sqlalchemy.orm import Session

from src.domain.clock import as_utc, utc_now
from src.domain.state_machine import (
    OrderStateMachine,
    OrderStatus,
    TicketStateMachine,
    TicketStatus,
)
from src.infrastructure.db.models import Order
from src.infrastructure.db.transaction import unit_of_work
from src.infrastructure.payments.payment_provider import PaymentProvider
from src.infrastructure.repositories.event_repository import EventRepository
from src.infrastructure.repositories.order_repository import OrderRepository
from src.infrastructure.repositories.ticket_type_repository import TicketTypeRepository

logger = logging.getLogger(__name__)


@dataclass
class RefundResult:
    order: Order
    # None when no payment gateway was asked to reverse the charge.
    payment_refunded: bool | None = None


class RefundService:
    """
    Organizer-initiated reversal of a confirmed order.

    Only local state is reconciled inside the transaction: sold
    counters, ticket status and the attendee count. Reversing the
    money is delegated to ``refund_gateway`` after the commit; its
    outcome is reported but never rolls inventory back.
    """

    def __init__(self, db: Session, refund_gateway: PaymentProvider | None = None):
        self.db = db
        self.refund_gateway = refund_gateway
        self.order_repository = OrderRepository(db)
        self.ticket_type_repository = TicketTypeRepository(db)
        self.event_repository = EventRepository(db)

    def refund(
        self,
        order_id: str,
        reason: str,
        event_id: str | None = None,
        now: datetime | None = None,
    ) -> RefundResult:
        now = as_utc(now) or utc_now()

        with unit_of_work(self.db):
            if event_id is not None:
                self.event_repository.get_active(event_id)

            order = self.order_repository.lock_by_id(order_id, event_id=event_id)
            OrderStateMachine.validate_transition(order.status, OrderStatus.REFUNDED)

            ticket_types = self.ticket_type_repository.lock_for_items(order.items)

            order.status = OrderStatus.REFUNDED
            order.refunded_at = now

            for ticket in order.tickets:
                TicketStateMachine.validate_transition(ticket.status, TicketStatus.REFUNDED)
                ticket.status = TicketStatus.REFUNDED
                ticket.refunded_at = now
                ticket.refund_reason = reason

            for item in order.items:
                self.ticket_type_repository.release_sold(
                    ticket_types[item.ticket_type_id],
                    item.quantity,
                )

            self.event_repository.adjust_attendees(order.event_id, -order.ticket_count)

        logger.info("Refunded order %s: %s", order.order_number, reason)

        return RefundResult(order=order, payment_refunded=self._reverse_payment(order))

    def _reverse_payment(self, order: Order) -> bool | None:
        if self.refund_gateway is None or not order.payment_provider_id:
            return None

        try:
            refunded = self.refund_gateway.refund_payment(order.payment_provider_id, order.amount)
        except Exception:
            logger.exception(
                "Payment reversal failed for order %s; local refund stands",
                order.order_number,
            )
            return False

        if not refunded:
            logger.warning("Payment provider declined reversal for order %s", order.order_number)
        return refunded
