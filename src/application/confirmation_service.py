# src/application/confirmation_service.py

from dataclasses import dataclass
from datetime import datetime
import logging

from sqlalchemy.orm import Session

from src.config import QR_CODE_PREFIX
from src.domain.clock import as_utc, utc_now
from src.domain.exceptions import OrderExpiredError
from src.domain.identifiers import generate_ticket_qr_code
from src.domain.state_machine import (
    OrderStateMachine,
    OrderStatus,
    TicketStateMachine,
    TicketStatus,
)
from src.infrastructure.chat import ChatService
from src.infrastructure.db.models import Order, Ticket
from src.infrastructure.db.transaction import unit_of_work
from src.infrastructure.repositories.event_repository import EventRepository
from src.infrastructure.repositories.order_repository import OrderRepository
from src.infrastructure.repositories.ticket_type_repository import TicketTypeRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentConfirmation:
    """A payment the provider has already verified."""

    provider: str
    provider_payment_id: str
    method: str = "card"


@dataclass
class ConfirmationResult:
    order: Order
    tickets: list[Ticket]
    chat_enrollment_allowed: bool


class ConfirmationService:
    """
    Moves a pending order to confirmed after a positive payment.

    The order row is locked and re-read before anything changes, so a
    repeated call (client retry, duplicate webhook) finds the order no
    longer pending and fails with a conflict without touching counters.
    """

    def __init__(self, db: Session):
        self.db = db
        self.order_repository = OrderRepository(db)
        self.ticket_type_repository = TicketTypeRepository(db)
        self.event_repository = EventRepository(db)

    def confirm(
        self,
        order_id: str,
        confirmation: PaymentConfirmation,
        user_id: str | None = None,
        now: datetime | None = None,
    ) -> ConfirmationResult:
        now = as_utc(now) or utc_now()

        with unit_of_work(self.db):
            order = self.order_repository.lock_by_id(order_id, user_id=user_id)
            OrderStateMachine.validate_transition(order.status, OrderStatus.CONFIRMED)

            expires_at = as_utc(order.expires_at)
            if expires_at is not None and expires_at < now:
                raise OrderExpiredError("Order has expired")

            ticket_types = self.ticket_type_repository.lock_for_items(order.items)

            order.status = OrderStatus.CONFIRMED
            order.confirmed_at = now
            order.expires_at = None
            order.payment_method = confirmation.method
            order.payment_provider = confirmation.provider
            order.payment_provider_id = confirmation.provider_payment_id

            for ticket in order.tickets:
                TicketStateMachine.validate_transition(ticket.status, TicketStatus.CONFIRMED)
                ticket.qr_code = generate_ticket_qr_code(ticket.id, QR_CODE_PREFIX)
                ticket.status = TicketStatus.CONFIRMED

            for item in order.items:
                self.ticket_type_repository.commit_sold(
                    ticket_types[item.ticket_type_id],
                    item.quantity,
                )

            self.event_repository.adjust_attendees(order.event_id, order.ticket_count)
            chat_allowed = self.event_repository.allows_chat(order.event_id)
            tickets = list(order.tickets)

        logger.info(
            "Confirmed order %s (%s tickets, payment %s/%s)",
            order.order_number,
            len(tickets),
            confirmation.provider,
            confirmation.provider_payment_id,
        )
        return ConfirmationResult(
            order=order,
            tickets=tickets,
            chat_enrollment_allowed=chat_allowed,
        )


def enroll_buyer_in_event_chat(chat: ChatService, user_id: str, event_id: str) -> None:
    """
    Post-commit side effect. Runs detached from the purchase and
    never propagates a failure back to it.
    """
    try:
        chat.add_participant_to_event_chat(user_id, event_id)
    except Exception:
        logger.warning(
            "Failed to add user %s to event %s chat",
            user_id,
            event_id,
            exc_info=True,
        )
        return
    logger.info("User %s added to event %s chat", user_id, event_id)
