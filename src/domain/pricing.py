# src/domain/pricing.py

"""
Order pricing.

Pure functions over immutable inputs: nothing here reads the clock
or the store on its own, so every figure on an order can be recomputed
from the price snapshot, the discount code state and a timestamp.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Iterable

from src.domain.clock import as_utc
from src.domain.exceptions import DiscountCodeError

DEFAULT_SERVICE_FEE_PERCENT = Decimal("0.05")

_CENT = Decimal("0.01")
_ZERO = Decimal("0")


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    AMOUNT = "amount"


@dataclass(frozen=True)
class PriceLine:
    unit_price: Decimal
    quantity: int

    @property
    def total(self) -> Decimal:
        return round_money(Decimal(self.unit_price) * self.quantity)


@dataclass(frozen=True)
class DiscountRule:
    """Snapshot of a discount code taken while its row is locked."""

    code: str
    type: DiscountType
    value: Decimal
    is_active: bool = True
    used_count: int = 0
    max_uses: int | None = None
    min_purchase_amount: Decimal | None = None
    max_discount_amount: Decimal | None = None
    expires_at: datetime | None = None


@dataclass(frozen=True)
class PriceBreakdown:
    subtotal: Decimal
    discount_amount: Decimal
    service_fee: Decimal
    total: Decimal


def round_money(value) -> Decimal:
    return Decimal(value).quantize(_CENT, rounding=ROUND_HALF_UP)


def calculate_subtotal(lines: Iterable[PriceLine]) -> Decimal:
    return round_money(sum((line.total for line in lines), _ZERO))


def validate_discount(rule: DiscountRule, subtotal: Decimal, now: datetime) -> None:
    """
    Raises DiscountCodeError when the code cannot be applied
    to this subtotal at this moment.
    """
    if not rule.is_active:
        raise DiscountCodeError("Discount code is not active")

    expires_at = as_utc(rule.expires_at)
    if expires_at is not None and expires_at < as_utc(now):
        raise DiscountCodeError("Discount code has expired")

    if rule.max_uses is not None and rule.used_count >= rule.max_uses:
        raise DiscountCodeError("Discount code usage limit reached")

    min_purchase = rule.min_purchase_amount or _ZERO
    if subtotal < min_purchase:
        raise DiscountCodeError(
            f"Minimum purchase amount of {round_money(min_purchase)} required for this discount"
        )


def calculate_discount(rule: DiscountRule, subtotal: Decimal) -> Decimal:
    value = Decimal(rule.value)

    if rule.type == DiscountType.PERCENTAGE:
        discount = subtotal * value / Decimal(100)
        if rule.max_discount_amount is not None:
            discount = min(discount, Decimal(rule.max_discount_amount))
    else:
        discount = value

    # Never discount below zero.
    discount = min(discount, subtotal)
    return round_money(discount)


def calculate_service_fee(
    subtotal: Decimal,
    discount_amount: Decimal,
    fee_percent: Decimal = DEFAULT_SERVICE_FEE_PERCENT,
) -> Decimal:
    return round_money((subtotal - discount_amount) * Decimal(fee_percent))


def price_order(
    lines: Iterable[PriceLine],
    now: datetime,
    rule: DiscountRule | None = None,
    fee_percent: Decimal = DEFAULT_SERVICE_FEE_PERCENT,
) -> PriceBreakdown:
    subtotal = calculate_subtotal(lines)

    discount_amount = _ZERO
    if rule is not None:
        validate_discount(rule, subtotal, now)
        discount_amount = calculate_discount(rule, subtotal)

    service_fee = calculate_service_fee(subtotal, discount_amount, fee_percent)
    total = round_money(subtotal - discount_amount + service_fee)

    return PriceBreakdown(
        subtotal=subtotal,
        discount_amount=round_money(discount_amount),
        service_fee=service_fee,
        total=total,
    )
