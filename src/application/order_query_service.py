from dataclasses import dataclass
import math

from sqlalchemy.orm import Session

from src.domain.exceptions import NotFoundError
from src.domain.state_machine import OrderStatus
from src.infrastructure.db.models import Order
from src.infrastructure.repositories.order_repository import OrderRepository

MAX_PAGE_SIZE = 50


@dataclass
class OrderPage:
    items: list[Order]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    @property
    def has_more(self) -> bool:
        return self.page < self.total_pages


class OrderQueryService:
    """Read-only views used by order history and organizer dashboards."""

    def __init__(self, db: Session):
        self.db = db
        self.order_repository = OrderRepository(db)

    def get_order(
        self,
        order_id: str,
        user_id: str | None = None,
        event_id: str | None = None,
    ) -> Order:
        order = self.order_repository.get_by_id(order_id, user_id=user_id, event_id=event_id)
        if not order:
            raise NotFoundError("Order not found")
        return order

    def list_user_orders(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 10,
        status: OrderStatus | None = None,
    ) -> OrderPage:
        return self._page(page, limit, user_id=user_id, status=status)

    def list_event_orders(
        self,
        event_id: str,
        page: int = 1,
        limit: int = 10,
        status: OrderStatus | None = None,
    ) -> OrderPage:
        return self._page(page, limit, event_id=event_id, status=status)

    def _page(self, page: int, limit: int, **filters) -> OrderPage:
        page = max(page, 1)
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        items, total = self.order_repository.list_page(page, limit, **filters)
        return OrderPage(items=items, page=page, limit=limit, total=total)
