# src/application/payment_service.py

from datetime import datetime
import logging

from sqlalchemy.orm import Session

from src.application.cancellation_service import CancellationService
from src.application.confirmation_service import (
    ConfirmationResult,
    ConfirmationService,
    PaymentConfirmation,
)
from src.domain.clock import as_utc, utc_now
from src.domain.exceptions import (
    ConflictError,
    NotFoundError,
    OrderExpiredError,
    PaymentVerificationError,
)
from src.domain.state_machine import OrderStatus
from src.infrastructure.db.models import Order
from src.infrastructure.payments.payment_provider import PaymentIntent, PaymentProvider
from src.infrastructure.repositories.order_repository import OrderRepository

logger = logging.getLogger(__name__)


class PaymentService:
    """Glue between the payment collaborator and the order handlers."""

    def __init__(self, db: Session, provider: PaymentProvider):
        self.db = db
        self.provider = provider
        self.order_repository = OrderRepository(db)

    def create_payment_intent(
        self,
        user_id: str,
        order_id: str,
        user_email: str | None = None,
        now: datetime | None = None,
    ) -> PaymentIntent:
        now = as_utc(now) or utc_now()

        order = self.order_repository.get_by_id(order_id, user_id=user_id)
        if not order:
            raise NotFoundError("Order not found")

        if order.status != OrderStatus.PENDING:
            raise ConflictError(
                f"Cannot create payment for order with status: {order.status.value}"
            )

        expires_at = as_utc(order.expires_at)
        if expires_at is not None and expires_at < now:
            raise OrderExpiredError("Order has expired")

        return self.provider.create_intent(
            order_id=order.id,
            order_number=order.order_number,
            amount=order.amount,
            currency=order.currency,
            user_id=user_id,
            user_email=user_email,
        )

    def confirm_order_payment(
        self,
        user_id: str,
        order_id: str,
        intent_id: str,
        client_secret: str,
        method: str = "card",
        now: datetime | None = None,
    ) -> ConfirmationResult:
        intent = self.provider.get_intent(intent_id)
        intent_order_id = intent.metadata.get("order_id") if intent else None
        if intent_order_id is not None and intent_order_id != order_id:
            raise ConflictError("Payment intent does not belong to this order")

        if not self.provider.confirm_payment(intent_id, client_secret):
            logger.warning("Payment verification failed for order %s", order_id)
            raise PaymentVerificationError("Payment verification failed")

        return ConfirmationService(self.db).confirm(
            order_id,
            PaymentConfirmation(
                provider=self.provider.name,
                provider_payment_id=intent_id,
                method=method,
            ),
            user_id=user_id,
            now=now,
        )

    def fail_order_payment(
        self,
        order_id: str,
        user_id: str | None = None,
        now: datetime | None = None,
    ) -> Order:
        return CancellationService(self.db).fail(order_id, user_id=user_id, now=now)
