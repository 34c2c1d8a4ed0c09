# src/infrastructure/payments/razorpay_provider.py

from decimal import Decimal
import logging

import razorpay

from src.domain.pricing import round_money
from src.infrastructure.payments.payment_provider import PaymentIntent, PaymentProvider

logger = logging.getLogger(__name__)


def _to_minor_units(amount: Decimal) -> int:
    return int(round_money(amount) * 100)


class RazorpayPaymentProvider(PaymentProvider):
    """
    Razorpay orders as payment intents.

    create_intent returns the Razorpay order id as intent_id and the
    public key id as client_secret (what the checkout widget needs).
    confirm_payment expects the checkout result as client_secret,
    formatted "<razorpay_payment_id>|<razorpay_signature>".
    """

    name = "razorpay"

    def __init__(self, key_id: str, key_secret: str, client: razorpay.Client | None = None):
        if not key_id or not key_secret:
            raise ValueError(
                "Razorpay keys not configured. Set RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET."
            )
        self.key_id = key_id
        self.client = client or razorpay.Client(auth=(key_id, key_secret))

    def create_intent(
        self,
        order_id: str,
        order_number: str,
        amount: Decimal,
        currency: str,
        user_id: str,
        user_email: str | None,
    ) -> PaymentIntent:
        order = self.client.order.create(
            {
                "amount": _to_minor_units(amount),
                "currency": currency,
                "receipt": order_number,
                "notes": {
                    "order_id": order_id,
                    "user_id": user_id,
                    "user_email": user_email or "",
                },
            }
        )
        return PaymentIntent(
            intent_id=order.get("id"),
            client_secret=self.key_id,
            amount=amount,
            currency=currency,
            status=order.get("status", "created"),
            metadata={"order_id": order_id, "order_number": order_number, "user_id": user_id},
        )

    def confirm_payment(self, intent_id: str, client_secret: str) -> bool:
        payment_id, _, signature = (client_secret or "").partition("|")
        if not payment_id or not signature:
            return False

        try:
            self.client.utility.verify_payment_signature(
                {
                    "razorpay_order_id": intent_id,
                    "razorpay_payment_id": payment_id,
                    "razorpay_signature": signature,
                }
            )
        except razorpay.errors.SignatureVerificationError:
            logger.warning("Invalid Razorpay signature for order %s", intent_id)
            return False
        return True

    def get_intent(self, intent_id: str) -> PaymentIntent | None:
        try:
            order = self.client.order.fetch(intent_id)
        except razorpay.errors.BadRequestError:
            return None
        return PaymentIntent(
            intent_id=order["id"],
            client_secret=self.key_id,
            amount=Decimal(order["amount"]) / 100,
            currency=order["currency"],
            status=order.get("status", "created"),
            metadata=dict(order.get("notes") or {}),
        )

    def refund_payment(self, payment_id: str, amount: Decimal | None = None) -> bool:
        """
        payment_id may be a Razorpay payment id or the order id the
        engine stored at confirmation; captured payments of an order
        are refunded in turn.
        """
        payment_ids = [payment_id]
        if payment_id.startswith("order_"):
            payments = self.client.order.payments(payment_id).get("items", [])
            payment_ids = [p["id"] for p in payments if p.get("status") == "captured"]
            if not payment_ids:
                logger.warning("No captured Razorpay payment for order %s", payment_id)
                return False

        data = {} if amount is None else {"amount": _to_minor_units(amount)}
        for item in payment_ids:
            self.client.payment.refund(item, data)
            logger.info("Razorpay refund requested for payment %s", item)
        return True
