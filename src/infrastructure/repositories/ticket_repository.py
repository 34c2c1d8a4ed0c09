# src/infrastructure/repositories/ticket_repository.py

from datetime import datetime

from sqlalchemy.orm import Session
from sqlalchemy import func, select

from src.infrastructure.db.models import Event, Ticket
from src.domain.exceptions import NotFoundError
from src.domain.state_machine import TicketStatus


class TicketRepository:

    def __init__(self, db: Session):
        self.db = db

    def lock_by_id(self, ticket_id: str, user_id: str) -> Ticket:
        stmt = (
            select(Ticket)
            .where(Ticket.id == ticket_id)
            .where(Ticket.user_id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        ticket = self.db.execute(stmt).scalar_one_or_none()

        if not ticket:
            raise NotFoundError("Ticket not found")

        return ticket

    def lock_for_event(
        self,
        event_id: str,
        ticket_id: str | None = None,
        qr_code: str | None = None,
    ) -> Ticket:
        """
        Gate-side lookup: the ticket must belong to ``event_id``.
        Matches on the id when given, otherwise on the QR code.
        """
        stmt = select(Ticket).where(Ticket.event_id == event_id)
        if ticket_id is not None:
            stmt = stmt.where(Ticket.id == ticket_id)
        else:
            stmt = stmt.where(Ticket.qr_code == qr_code)

        stmt = stmt.with_for_update().execution_options(populate_existing=True)
        ticket = self.db.execute(stmt).scalar_one_or_none()

        if not ticket:
            raise NotFoundError("Ticket not found")

        return ticket

    def get_by_qr_code(self, qr_code: str) -> Ticket | None:
        stmt = select(Ticket).where(Ticket.qr_code == qr_code)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_for_holder(self, ticket_id: str, user_id: str) -> Ticket | None:
        stmt = select(Ticket).where(Ticket.id == ticket_id).where(Ticket.user_id == user_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def list_for_holder(
        self,
        user_id: str,
        page: int,
        limit: int,
        status: TicketStatus | None = None,
        starting_after: datetime | None = None,
    ) -> tuple[list[Ticket], int]:
        filters = [Ticket.user_id == user_id]
        if status is not None:
            filters.append(Ticket.status == status)
        if starting_after is not None:
            filters.append(Event.start_date >= starting_after)

        total = self.db.execute(
            select(func.count()).select_from(Ticket).join(Event).where(*filters)
        ).scalar_one()

        stmt = (
            select(Ticket)
            .join(Event)
            .where(*filters)
            .order_by(Event.start_date, Ticket.created_at.desc(), Ticket.id)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars().all()), total

    def list_attendees(
        self,
        event_id: str,
        page: int,
        limit: int,
        checked_in: bool | None = None,
        ticket_type_id: str | None = None,
    ) -> tuple[list[Ticket], int]:
        """Confirmed tickets of an event, most recent check-ins first."""
        filters = [Ticket.event_id == event_id, Ticket.status == TicketStatus.CONFIRMED]
        if checked_in is True:
            filters.append(Ticket.checked_in_at.is_not(None))
        elif checked_in is False:
            filters.append(Ticket.checked_in_at.is_(None))
        if ticket_type_id is not None:
            filters.append(Ticket.ticket_type_id == ticket_type_id)

        total = self.db.execute(
            select(func.count()).select_from(Ticket).where(*filters)
        ).scalar_one()

        stmt = (
            select(Ticket)
            .where(*filters)
            .order_by(
                Ticket.checked_in_at.desc().nulls_last(),
                Ticket.created_at.desc(),
                Ticket.id,
            )
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars().all()), total

    def checkin_counts(self, event_id: str) -> tuple[int, int]:
        """(confirmed, checked in) for the whole event."""
        stmt = (
            select(func.count(), func.count(Ticket.checked_in_at))
            .where(Ticket.event_id == event_id)
            .where(Ticket.status == TicketStatus.CONFIRMED)
        )
        confirmed, checked_in = self.db.execute(stmt).one()
        return confirmed, checked_in
