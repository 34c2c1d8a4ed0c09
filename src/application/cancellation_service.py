# src/application/cancellation_service.py

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
from src.infrastructure.repositories.discount_code_repository import DiscountCodeRepository
from src.infrastructure.repositories.order_repository import OrderRepository
from src.infrastructure.repositories.ticket_type_repository import TicketTypeRepository

logger = logging.getLogger(__name__)


class CancellationService:
    """
    Releases a pending reservation: the buyer cancelling it, the
    payment failing, or the reaper expiring it all end here.
    """

    def __init__(self, db: Session):
        self.db = db
        self.order_repository = OrderRepository(db)
        self.ticket_type_repository = TicketTypeRepository(db)
        self.discount_code_repository = DiscountCodeRepository(db)

    def cancel(
        self,
        order_id: str,
        user_id: str | None = None,
        now: datetime | None = None,
    ) -> Order:
        now = as_utc(now) or utc_now()

        with unit_of_work(self.db):
            order = self.order_repository.lock_by_id(order_id, user_id=user_id)
            self._release(order, OrderStatus.CANCELLED, now)

        logger.info("Cancelled order %s", order.order_number)
        return order

    def fail(
        self,
        order_id: str,
        user_id: str | None = None,
        now: datetime | None = None,
    ) -> Order:
        now = as_utc(now) or utc_now()

        with unit_of_work(self.db):
            order = self.order_repository.lock_by_id(order_id, user_id=user_id)
            self._release(order, OrderStatus.FAILED, now)

        logger.info("Payment failed for order %s, reservation released", order.order_number)
        return order

    def expire(self, order_id: str, now: datetime | None = None) -> bool:
        """
        Cancel the order if it is still pending and past its deadline.
        Returns False when it was confirmed, cancelled or extended
        since the sweep selected it.
        """
        now = as_utc(now) or utc_now()

        with unit_of_work(self.db):
            order = self.order_repository.lock_by_id(order_id)
            expires_at = as_utc(order.expires_at)
            if order.status != OrderStatus.PENDING or expires_at is None or expires_at >= now:
                return False
            self._release(order, OrderStatus.CANCELLED, now)

        logger.info("Expired order %s", order.order_number)
        return True

    def _release(self, order: Order, to_status: OrderStatus, now: datetime) -> None:
        OrderStateMachine.validate_transition(order.status, to_status)

        ticket_types = self.ticket_type_repository.lock_for_items(order.items)

        order.status = to_status
        order.cancelled_at = now
        order.expires_at = None

        for ticket in order.tickets:
            TicketStateMachine.validate_transition(ticket.status, TicketStatus.CANCELLED)
            ticket.status = TicketStatus.CANCELLED

        for item in order.items:
            self.ticket_type_repository.release_reserved(
                ticket_types[item.ticket_type_id],
                item.quantity,
            )

        if order.discount_code_id:
            discount = self.discount_code_repository.lock_by_id(order.discount_code_id)
            if discount:
                self.discount_code_repository.decrement_usage(discount)
