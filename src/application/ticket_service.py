# src/application/ticket_service.py

from dataclasses import dataclass
from datetime import datetime
import logging
import math

from sqlalchemy.orm import Session

from src.application.order_query_service import MAX_PAGE_SIZE
from src.config import QR_CODE_PREFIX
from src.domain.clock import as_utc, utc_now
from src.domain.exceptions import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
)
from src.domain.identifiers import is_valid_qr_format, verify_ticket_qr_code
from src.domain.state_machine import TicketStatus
from src.infrastructure.db.models import Ticket
from src.infrastructure.db.transaction import unit_of_work
from src.infrastructure.repositories.ticket_repository import TicketRepository

logger = logging.getLogger(__name__)

_PAST_TENSE = {"transfer": "transferred", "refund": "refunded"}


@dataclass
class TicketPage:
    items: list[Ticket]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    @property
    def has_more(self) -> bool:
        return self.page < self.total_pages


class TicketService:
    """Holder-side operations on confirmed tickets."""

    def __init__(self, db: Session):
        self.db = db
        self.ticket_repository = TicketRepository(db)

    def transfer(
        self,
        user_id: str,
        ticket_id: str,
        recipient_user_id: str,
        now: datetime | None = None,
    ) -> Ticket:
        """
        Hand a confirmed ticket to another user. Ownership changes,
        status does not.
        """
        now = as_utc(now) or utc_now()

        if recipient_user_id == user_id:
            raise BadRequestError("Cannot transfer ticket to yourself")

        with unit_of_work(self.db):
            ticket = self.ticket_repository.lock_by_id(ticket_id, user_id)
            self._ensure_holder_can_act(ticket, now, verb="transfer")

            if ticket.transferred_at is not None:
                raise ForbiddenError("This ticket has already been transferred")

            if ticket.refund_reason:
                raise ForbiddenError("Tickets with pending refund requests cannot be transferred")

            ticket.original_owner_id = user_id
            ticket.user_id = recipient_user_id
            ticket.transferred_at = now

        logger.info("Ticket %s transferred from %s to %s", ticket_id, user_id, recipient_user_id)
        return ticket

    def request_refund(
        self,
        user_id: str,
        ticket_id: str,
        reason: str,
        now: datetime | None = None,
    ) -> Ticket:
        """
        Record the buyer's refund request. The ticket stays CONFIRMED
        until the organizer refunds the order.
        """
        now = as_utc(now) or utc_now()

        with unit_of_work(self.db):
            ticket = self.ticket_repository.lock_by_id(ticket_id, user_id)
            self._ensure_holder_can_act(ticket, now, verb="refund")

            if ticket.transferred_at is not None:
                raise ForbiddenError("Transferred tickets cannot be refunded")

            ticket.refund_reason = reason

        logger.info("Refund requested for ticket %s", ticket_id)
        return ticket

    def get_ticket(self, user_id: str, ticket_id: str) -> Ticket:
        ticket = self.ticket_repository.get_for_holder(ticket_id, user_id)
        if not ticket:
            raise NotFoundError("Ticket not found")
        return ticket

    def list_user_tickets(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 10,
        status: TicketStatus | None = None,
        upcoming: bool = False,
        now: datetime | None = None,
    ) -> TicketPage:
        """Tickets currently held by ``user_id``, soonest event first."""
        now = as_utc(now) or utc_now()
        page = max(page, 1)
        limit = max(1, min(limit, MAX_PAGE_SIZE))

        items, total = self.ticket_repository.list_for_holder(
            user_id,
            page,
            limit,
            status=status,
            starting_after=now if upcoming else None,
        )
        return TicketPage(items=items, page=page, limit=limit, total=total)

    def verify_qr(self, qr_code: str) -> Ticket:
        if not is_valid_qr_format(qr_code, QR_CODE_PREFIX):
            raise BadRequestError("Malformed ticket code")

        ticket = self.ticket_repository.get_by_qr_code(qr_code)
        if not ticket:
            raise NotFoundError("Ticket not found")

        if not verify_ticket_qr_code(ticket.id, qr_code, QR_CODE_PREFIX):
            raise ForbiddenError("Ticket code checksum mismatch")

        return ticket

    @staticmethod
    def _ensure_holder_can_act(ticket: Ticket, now: datetime, verb: str) -> None:
        if ticket.status != TicketStatus.CONFIRMED:
            raise ConflictError(f"Only confirmed tickets can be {_PAST_TENSE[verb]}")

        if ticket.checked_in_at is not None:
            raise ForbiddenError(f"Checked-in tickets cannot be {_PAST_TENSE[verb]}")

        if as_utc(ticket.event.start_date) < now:
            raise ForbiddenError(f"Cannot {verb} ticket for past events")
