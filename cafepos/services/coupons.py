"""
Coupon validation.

Coupons are authored elsewhere; this side only answers "does this code apply
to a bill of this size right now" and counts redemptions on checkout.
"""

from decimal import Decimal
from typing import Protocol

from sqlalchemy.orm import Session

from cafepos.errors import ValidationError
from cafepos.models.core import Coupon
from cafepos.services.billing import Discount, to_decimal
from cafepos.util.logging import get_logger
from cafepos.util.time import as_utc, utcnow

logger = get_logger(__name__)


class CouponValidator(Protocol):
    def validate(self, code: str, subtotal: Decimal) -> Discount: ...

    def redeem(self, code: str) -> None: ...


class DbCouponValidator:
    def __init__(self, db: Session):
        self._db = db

    def _find(self, code: str) -> Coupon | None:
        return self._db.query(Coupon).filter(Coupon.code == code.strip().upper()).first()

    def validate(self, code: str, subtotal: Decimal) -> Discount:
        if not code or not code.strip():
            raise ValidationError("coupon code is required")
        coupon = self._find(code)
        if not coupon:
            raise ValidationError("invalid coupon code")
        if not coupon.is_active:
            raise ValidationError("coupon is inactive")
        now = utcnow()
        if (coupon.valid_from and now < as_utc(coupon.valid_from)) or \
           (coupon.valid_until and now > as_utc(coupon.valid_until)):
            raise ValidationError("coupon is expired")
        if coupon.usage_limit is not None and coupon.usage_count >= coupon.usage_limit:
            raise ValidationError("coupon usage limit reached")
        if to_decimal(subtotal) < to_decimal(coupon.min_order_amount):
            raise ValidationError(f"minimum order amount of {coupon.min_order_amount} required")
        return Discount(coupon.discount_type, coupon.discount_value, coupon.max_discount_amount)

    def redeem(self, code: str) -> None:
        coupon = self._find(code)
        if coupon:
            coupon.usage_count = (coupon.usage_count or 0) + 1
            logger.info("Coupon redeemed", code=coupon.code, usage_count=coupon.usage_count)
