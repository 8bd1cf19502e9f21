"""
Coupon filtering and validation over WooCommerce coupons.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from shared.errors import NotFoundError, ValidationError


class CouponQuote(BaseModel):
    code: str
    type: str
    amount: float
    discountAmount: float
    description: str = ""
    free_shipping: bool = False
    minimum_amount: float = 0.0
    maximum_amount: Optional[float] = None


def _to_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value) if value not in (None, "") else default
    except (TypeError, ValueError):
        return default


def _parse_datetime(value: str) -> Optional[datetime]:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_active(coupon: Dict[str, Any], now: Optional[datetime] = None) -> bool:
    """Not expired, and under its usage limit when it has one."""
    now = now or datetime.now(timezone.utc)

    expires = coupon.get("date_expires_gmt") or coupon.get("date_expires")
    if expires:
        expires_at = _parse_datetime(expires)
        if expires_at is not None and expires_at < now:
            return False

    usage_limit = coupon.get("usage_limit")
    if usage_limit and coupon.get("usage_count", 0) >= usage_limit:
        return False

    return True


def active_coupons(coupons: List[Dict[str, Any]], now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    return [coupon for coupon in coupons if is_active(coupon, now)]


def validate_coupon(coupon: Optional[Dict[str, Any]], subtotal: float) -> CouponQuote:
    """Compute the discount a coupon grants on ``subtotal``."""
    if coupon is None or not is_active(coupon):
        raise NotFoundError("Invalid coupon code")

    minimum = _to_float(coupon.get("minimum_amount"))
    maximum = _to_float(coupon.get("maximum_amount")) or None
    amount = _to_float(coupon.get("amount"))
    discount_type = coupon.get("discount_type", "fixed_cart")

    if minimum > 0 and subtotal < minimum:
        raise ValidationError(
            f"Minimum order amount is {minimum:g}",
            details={"minimum_amount": minimum},
        )

    if discount_type == "percent":
        discount = subtotal * amount / 100
        if maximum and discount > maximum:
            discount = maximum
    elif discount_type in ("fixed_cart", "fixed_product"):
        discount = min(amount, subtotal)
    else:
        discount = 0.0

    return CouponQuote(
        code=coupon.get("code", ""),
        type=discount_type,
        amount=amount,
        discountAmount=round(discount, 2),
        description=coupon.get("description") or "",
        free_shipping=bool(coupon.get("free_shipping")),
        minimum_amount=minimum,
        maximum_amount=maximum,
    )
