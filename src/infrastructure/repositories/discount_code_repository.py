# src/infrastructure/repositories/discount_code_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import select

from src.infrastructure.db.models import DiscountCode
from src.domain.pricing import DiscountRule


class DiscountCodeRepository:

    def __init__(self, db: Session):
        self.db = db

    def lock_by_event_and_code(self, event_id: str, code: str) -> DiscountCode | None:
        stmt = (
            select(DiscountCode)
            .where(DiscountCode.event_id == event_id)
            .where(DiscountCode.code == code)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def lock_by_id(self, discount_code_id: str) -> DiscountCode | None:
        stmt = (
            select(DiscountCode)
            .where(DiscountCode.id == discount_code_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def increment_usage(self, discount_code: DiscountCode) -> None:
        discount_code.used_count += 1

    def decrement_usage(self, discount_code: DiscountCode) -> None:
        discount_code.used_count = max(discount_code.used_count - 1, 0)

    @staticmethod
    def to_rule(discount_code: DiscountCode) -> DiscountRule:
        return DiscountRule(
            code=discount_code.code,
            type=discount_code.type,
            value=discount_code.value,
            is_active=discount_code.is_active,
            used_count=discount_code.used_count,
            max_uses=discount_code.max_uses,
            min_purchase_amount=discount_code.min_purchase_amount,
            max_discount_amount=discount_code.max_discount_amount,
            expires_at=discount_code.expires_at,
        )
