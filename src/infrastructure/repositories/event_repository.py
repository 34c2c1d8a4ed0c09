# src/infrastructure/repositories/event_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import select, update

from src.infrastructure.db.models import Event
from src.domain.exceptions import NotFoundError


class EventRepository:
    """Event directory lookups plus the attendee counter."""

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, event_id: str) -> Event | None:
        stmt = select(Event).where(Event.id == event_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_active(self, event_id: str) -> Event:
        """The event, unless it is missing or soft-deleted."""
        stmt = select(Event).where(Event.id == event_id).where(Event.deleted_at.is_(None))
        event = self.db.execute(stmt).scalar_one_or_none()

        if not event:
            raise NotFoundError("Event not found")

        return event

    def allows_chat(self, event_id: str) -> bool:
        event = self.get_by_id(event_id)
        if not event:
            return False
        settings = event.settings or {}
        return settings.get("allow_chat") is not False

    def adjust_attendees(self, event_id: str, delta: int) -> None:
        # Single-statement increment; no read-modify-write on the event row.
        stmt = (
            update(Event)
            .where(Event.id == event_id)
            .values(current_attendees=Event.current_attendees + delta)
            .execution_options(synchronize_session=False)
        )
        self.db.execute(stmt)
