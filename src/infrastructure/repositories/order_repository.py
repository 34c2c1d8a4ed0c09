# src/infrastructure/repositories/order_repository.py

from datetime import datetime

from sqlalchemy.orm import Session
from sqlalchemy import func, select

from src.infrastructure.db.models import Order, OrderItem, Ticket
from src.domain.exceptions import NotFoundError
from src.domain.state_machine import OrderStatus, TicketStatus


class OrderRepository:

    def __init__(self, db: Session):
        self.db = db

    def _select(self, order_id: str, user_id: str | None, event_id: str | None):
        stmt = select(Order).where(Order.id == order_id)
        if user_id is not None:
            stmt = stmt.where(Order.user_id == user_id)
        if event_id is not None:
            stmt = stmt.where(Order.event_id == event_id)
        return stmt

    def get_by_id(
        self,
        order_id: str,
        user_id: str | None = None,
        event_id: str | None = None,
    ) -> Order | None:
        return self.db.execute(self._select(order_id, user_id, event_id)).scalar_one_or_none()

    def lock_by_id(
        self,
        order_id: str,
        user_id: str | None = None,
        event_id: str | None = None,
    ) -> Order:
        """
        SELECT ... FOR UPDATE on the order header. Confirm, cancel,
        expire and refund all take this lock before touching counters.
        """
        stmt = (
            self._select(order_id, user_id, event_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        order = self.db.execute(stmt).scalar_one_or_none()

        if not order:
            raise NotFoundError("Order not found")

        return order

    def order_number_exists(self, order_number: str) -> bool:
        stmt = select(Order.id).where(Order.order_number == order_number)
        return self.db.execute(stmt).first() is not None

    def create_order(self, **fields) -> Order:
        # Empty collections up front so items and tickets added below
        # stay loaded on the returned order.
        order = Order(status=OrderStatus.PENDING, items=[], tickets=[], **fields)
        self.db.add(order)
        self.db.flush()
        return order

    def add_item_with_tickets(
        self,
        order: Order,
        ticket_type_id: str,
        quantity: int,
        unit_price,
        total_price,
    ) -> OrderItem:
        item = OrderItem(
            order=order,
            ticket_type_id=ticket_type_id,
            quantity=quantity,
            unit_price=unit_price,
            total_price=total_price,
        )
        self.db.add(item)
        self.db.flush()

        for _ in range(quantity):
            self.db.add(
                Ticket(
                    order=order,
                    order_item_id=item.id,
                    event_id=order.event_id,
                    ticket_type_id=ticket_type_id,
                    user_id=order.user_id,
                    status=TicketStatus.RESERVED,
                )
            )
        return item

    def list_expired_pending_ids(self, now: datetime, limit: int) -> list[str]:
        stmt = (
            select(Order.id)
            .where(Order.status == OrderStatus.PENDING)
            .where(Order.expires_at.is_not(None))
            .where(Order.expires_at < now)
            .order_by(Order.expires_at)
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars().all())

    def list_page(
        self,
        page: int,
        limit: int,
        user_id: str | None = None,
        event_id: str | None = None,
        status: OrderStatus | None = None,
    ) -> tuple[list[Order], int]:
        filters = []
        if user_id is not None:
            filters.append(Order.user_id == user_id)
        if event_id is not None:
            filters.append(Order.event_id == event_id)
        if status is not None:
            filters.append(Order.status == status)

        total = self.db.execute(
            select(func.count()).select_from(Order).where(*filters)
        ).scalar_one()

        stmt = (
            select(Order)
            .where(*filters)
            .order_by(Order.created_at.desc(), Order.id)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars().all()), total
