# src/infrastructure/repositories/ticket_type_repository.py

from typing import Iterable

from sqlalchemy.orm import Session
from sqlalchemy import select

from src.infrastructure.db.models import TicketType
from src.domain.exceptions import NotFoundError


class TicketTypeRepository:

    def __init__(self, db: Session):
        self.db = db

    def lock_many(self, ticket_type_ids: Iterable[str]) -> dict[str, TicketType]:
        """
        SELECT ... FOR UPDATE over every id in one statement.
        Rows are locked in ascending id order so two carts that
        overlap in different orders cannot deadlock each other.
        """
        ids = sorted(set(ticket_type_ids))
        if not ids:
            return {}

        stmt = (
            select(TicketType)
            .where(TicketType.id.in_(ids))
            .order_by(TicketType.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        rows = self.db.execute(stmt).scalars().all()
        return {row.id: row for row in rows}

    def lock_for_items(self, items) -> dict[str, TicketType]:
        locked = self.lock_many(item.ticket_type_id for item in items)
        missing = {item.ticket_type_id for item in items} - set(locked)
        if missing:
            raise NotFoundError(f"Ticket type {sorted(missing)[0]} not found")
        return locked

    def reserve(self, ticket_type: TicketType, quantity: int) -> None:
        ticket_type.reserved_count += quantity

    def release_reserved(self, ticket_type: TicketType, quantity: int) -> None:
        ticket_type.reserved_count = max(ticket_type.reserved_count - quantity, 0)

    def commit_sold(self, ticket_type: TicketType, quantity: int) -> None:
        ticket_type.reserved_count = max(ticket_type.reserved_count - quantity, 0)
        ticket_type.sold_count += quantity

    def release_sold(self, ticket_type: TicketType, quantity: int) -> None:
        ticket_type.sold_count = max(ticket_type.sold_count - quantity, 0)
