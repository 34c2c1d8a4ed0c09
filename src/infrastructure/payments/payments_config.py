import logging
import threading

from src.config import PAYMENT_PROVIDER, RAZORPAY_KEY_ID, RAZORPAY_KEY_SECRET
from src.infrastructure.payments.mock_provider import MockPaymentProvider
from src.infrastructure.payments.payment_provider import PaymentProvider
from src.infrastructure.payments.razorpay_provider import RazorpayPaymentProvider

logger = logging.getLogger(__name__)

_provider: PaymentProvider | None = None
_provider_lock = threading.Lock()


def _build_provider(name: str) -> PaymentProvider:
    if name == "razorpay":
        return RazorpayPaymentProvider(RAZORPAY_KEY_ID, RAZORPAY_KEY_SECRET)
    if name != "mock":
        logger.warning("Unknown payment provider %s, falling back to mock", name)
    return MockPaymentProvider()


def get_payment_provider() -> PaymentProvider:
    global _provider
    with _provider_lock:
        if _provider is None:
            _provider = _build_provider(PAYMENT_PROVIDER)
        return _provider
