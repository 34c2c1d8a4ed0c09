# src/infrastructure/payments/payment_provider.py

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any


@dataclass
class PaymentIntent:
    intent_id: str
    client_secret: str
    amount: Decimal
    currency: str
    status: str = "pending"
    metadata: dict[str, Any] = field(default_factory=dict)


class PaymentProvider(ABC):
    """
    Contract the engine consumes. Inventory is mutated only after
    confirm_payment has returned True.
    """

    name = "abstract"

    @abstractmethod
    def create_intent(
        self,
        order_id: str,
        order_number: str,
        amount: Decimal,
        currency: str,
        user_id: str,
        user_email: str | None,
    ) -> PaymentIntent:
        ...

    @abstractmethod
    def confirm_payment(self, intent_id: str, client_secret: str) -> bool:
        ...

    @abstractmethod
    def get_intent(self, intent_id: str) -> PaymentIntent | None:
        ...

    @abstractmethod
    def refund_payment(self, payment_id: str, amount: Decimal | None = None) -> bool:
        ...
