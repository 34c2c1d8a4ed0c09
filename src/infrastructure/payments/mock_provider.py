# src/infrastructure/payments/mock_provider.py

from datetime import datetime, timezone
from decimal import Decimal
import logging
import threading
from uuid import uuid4

from src.infrastructure.payments.payment_provider import PaymentIntent, PaymentProvider

logger = logging.getLogger(__name__)


class MockPaymentProvider(PaymentProvider):
    """
    In-memory provider for development and tests.
    Do not enable in production.
    """

    name = "mock"

    def __init__(self):
        self._intents: dict[str, PaymentIntent] = {}
        self._lock = threading.Lock()
        self.refunds: list[tuple[str, Decimal | None]] = []

    def create_intent(
        self,
        order_id: str,
        order_number: str,
        amount: Decimal,
        currency: str,
        user_id: str,
        user_email: str | None,
    ) -> PaymentIntent:
        intent = PaymentIntent(
            intent_id=str(uuid4()),
            client_secret=f"mock_secret_{uuid4()}",
            amount=amount,
            currency=currency,
            metadata={
                "order_id": order_id,
                "order_number": order_number,
                "user_id": user_id,
                "user_email": user_email,
                "created_at": datetime.now(timezone.utc).isoformat(),
            },
        )
        with self._lock:
            self._intents[intent.intent_id] = intent

        logger.info("Mock payment intent %s created for order %s", intent.intent_id, order_number)
        return intent

    def confirm_payment(self, intent_id: str, client_secret: str) -> bool:
        with self._lock:
            intent = self._intents.get(intent_id)

            if not intent:
                logger.info("Mock payment intent not found: %s", intent_id)
                return False

            if intent.status == "failed" or client_secret != intent.client_secret:
                logger.info("Mock payment rejected for intent %s", intent_id)
                return False

            intent.status = "completed"

        logger.info("Mock payment confirmed for intent %s", intent_id)
        return True

    def get_intent(self, intent_id: str) -> PaymentIntent | None:
        with self._lock:
            return self._intents.get(intent_id)

    def refund_payment(self, payment_id: str, amount: Decimal | None = None) -> bool:
        with self._lock:
            self.refunds.append((payment_id, amount))
        logger.info("Mock refund processed for payment %s, amount %s", payment_id, amount or "full")
        return True

    def simulate_failure(self, intent_id: str) -> bool:
        with self._lock:
            intent = self._intents.get(intent_id)
            if not intent:
                return False
            intent.status = "failed"
            return True
