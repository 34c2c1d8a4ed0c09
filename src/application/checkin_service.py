# src/application/checkin_service.py

from dataclasses import dataclass, field
from datetime import datetime
import logging

from sqlalchemy.orm import Session

from src.application.order_query_service import MAX_PAGE_SIZE
from src.application.ticket_service import TicketPage
from src.config import QR_CODE_PREFIX
from src.domain.clock import as_utc, utc_now
from src.domain.exceptions import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    TicketingError,
)
from src.domain.identifiers import is_valid_qr_format, verify_ticket_qr_code
from src.domain.state_machine import TicketStatus
from src.infrastructure.db.models import Ticket
from src.infrastructure.db.transaction import unit_of_work
from src.infrastructure.repositories.event_repository import EventRepository
from src.infrastructure.repositories.ticket_repository import TicketRepository

logger = logging.getLogger(__name__)

MAX_BULK_CODES = 100


@dataclass
class AttendeePage(TicketPage):
    checked_in_count: int = 0
    confirmed_count: int = 0

    @property
    def not_checked_in_count(self) -> int:
        return self.confirmed_count - self.checked_in_count


@dataclass
class CheckinOutcome:
    code: str
    success: bool
    ticket_id: str | None
    message: str


@dataclass
class BulkCheckinResult:
    results: list[CheckinOutcome] = field(default_factory=list)

    @property
    def successful(self) -> int:
        return sum(1 for outcome in self.results if outcome.success)

    @property
    def failed(self) -> int:
        return len(self.results) - self.successful


class CheckinService:
    """
    Organizer-side entry control for an event.

    Only CONFIRMED tickets of the event itself can be admitted, and each
    ticket is admitted once. A check-in can be undone to correct a
    mistaken scan; once undone the ticket is again transferable.
    """

    def __init__(self, db: Session):
        self.db = db
        self.ticket_repository = TicketRepository(db)
        self.event_repository = EventRepository(db)

    def check_in(
        self,
        event_id: str,
        code: str | None = None,
        ticket_id: str | None = None,
        staff_id: str | None = None,
        now: datetime | None = None,
    ) -> Ticket:
        now = as_utc(now) or utc_now()

        if not code and not ticket_id:
            raise BadRequestError("Either a ticket code or a ticket id is required")

        if code and not ticket_id and not is_valid_qr_format(code, QR_CODE_PREFIX):
            raise BadRequestError("Malformed ticket code")

        with unit_of_work(self.db):
            self.event_repository.get_active(event_id)
            ticket = self.ticket_repository.lock_for_event(
                event_id,
                ticket_id=ticket_id,
                qr_code=code,
            )

            if not ticket_id and not verify_ticket_qr_code(ticket.id, code, QR_CODE_PREFIX):
                raise ForbiddenError("Ticket code checksum mismatch")

            if ticket.status != TicketStatus.CONFIRMED:
                raise ConflictError(
                    f"Ticket cannot be checked in - status is {ticket.status.value}"
                )

            if ticket.checked_in_at is not None:
                raise ConflictError(
                    f"Ticket already checked in at {as_utc(ticket.checked_in_at).isoformat()}"
                )

            ticket.checked_in_at = now
            ticket.checked_in_by = staff_id

        logger.info("Checked in ticket %s for event %s", ticket.id, event_id)
        return ticket

    def bulk_check_in(
        self,
        event_id: str,
        codes: list[str],
        staff_id: str | None = None,
        now: datetime | None = None,
    ) -> BulkCheckinResult:
        """
        Admit each code in its own transaction. A rejected code is
        reported in the result and does not stop the rest.
        """
        if len(codes) > MAX_BULK_CODES:
            raise BadRequestError(f"At most {MAX_BULK_CODES} codes per request")

        self.event_repository.get_active(event_id)

        result = BulkCheckinResult()
        for code in codes:
            try:
                ticket = self.check_in(event_id, code=code, staff_id=staff_id, now=now)
            except TicketingError as exc:
                result.results.append(
                    CheckinOutcome(code=code, success=False, ticket_id=None, message=exc.message)
                )
                continue

            result.results.append(
                CheckinOutcome(
                    code=code,
                    success=True,
                    ticket_id=ticket.id,
                    message="Check-in successful",
                )
            )

        logger.info(
            "Bulk check-in for event %s: %s admitted, %s rejected",
            event_id,
            result.successful,
            result.failed,
        )
        return result

    def undo_check_in(self, event_id: str, ticket_id: str) -> Ticket:
        with unit_of_work(self.db):
            self.event_repository.get_active(event_id)
            ticket = self.ticket_repository.lock_for_event(event_id, ticket_id=ticket_id)

            if ticket.checked_in_at is None:
                raise BadRequestError("Ticket is not checked in")

            ticket.checked_in_at = None
            ticket.checked_in_by = None

        logger.info("Check-in undone for ticket %s", ticket_id)
        return ticket

    def list_attendees(
        self,
        event_id: str,
        page: int = 1,
        limit: int = 20,
        checked_in: bool | None = None,
        ticket_type_id: str | None = None,
    ) -> AttendeePage:
        self.event_repository.get_active(event_id)

        page = max(page, 1)
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        items, total = self.ticket_repository.list_attendees(
            event_id,
            page,
            limit,
            checked_in=checked_in,
            ticket_type_id=ticket_type_id,
        )
        confirmed, admitted = self.ticket_repository.checkin_counts(event_id)

        return AttendeePage(
            items=items,
            page=page,
            limit=limit,
            total=total,
            checked_in_count=admitted,
            confirmed_count=confirmed,
        )

