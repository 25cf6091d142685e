"""
Coupon eligibility evaluation.

``evaluate`` decides whether a coupon applies to a subtotal at a given moment
and how much it takes off. It is a pure function: ineligibility is a normal
result carrying a reason, never an exception, and no usage counters are
touched. Any object exposing ``code``, ``discount_rate``, ``min_subtotal``,
``is_active``, ``expires_at`` (and optionally ``deleted_at``) can be evaluated,
so the persisted ``Coupon`` and the ``CouponSummary`` returned to clients go
through the same rules.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from storefront.money import MoneyLike, ZERO, clamp_non_negative, format_money, round2, to_money


class IneligibleReason(str, Enum):
    NOT_FOUND = "NotFound"
    INACTIVE = "Inactive"
    EXPIRED = "Expired"
    BELOW_MINIMUM = "BelowMinimum"


INVALID_CODE_MESSAGE = "Invalid coupon code."
EXPIRED_MESSAGE = "Coupon has expired."


@dataclass(frozen=True)
class CouponEvaluation:
    eligible: bool
    discount_amount: Decimal = ZERO
    reason: Optional[IneligibleReason] = None


def canonical_code(code: Optional[str]) -> str:
    """Codes are matched case-insensitively, stored upper-case."""
    return str(code or "").strip().upper()


def as_utc(moment: Optional[datetime]) -> Optional[datetime]:
    if moment is None:
        return None
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def _rejected(reason: IneligibleReason) -> CouponEvaluation:
    return CouponEvaluation(eligible=False, discount_amount=ZERO, reason=reason)


def evaluate(coupon: Any, subtotal: MoneyLike, now: Optional[datetime] = None) -> CouponEvaluation:
    """
    Check a coupon against a subtotal.

    Checks run in order and the first failure is reported: existence,
    active flag, expiry, minimum subtotal.

    Args:
        coupon: Coupon record, or None when the code matched nothing
        subtotal: Pre-discount, pre-shipping, pre-tax subtotal
        now: Evaluation time (defaults to current UTC time)

    Returns:
        CouponEvaluation with the discount amount when eligible
    """
    subtotal = clamp_non_negative(subtotal)

    if coupon is None or getattr(coupon, "deleted_at", None) is not None:
        return _rejected(IneligibleReason.NOT_FOUND)

    if not coupon.is_active:
        return _rejected(IneligibleReason.INACTIVE)

    now = as_utc(now) or datetime.now(timezone.utc)
    expires_at = as_utc(coupon.expires_at)
    if expires_at is not None and expires_at < now:
        return _rejected(IneligibleReason.EXPIRED)

    if subtotal < to_money(coupon.min_subtotal or 0):
        return _rejected(IneligibleReason.BELOW_MINIMUM)

    discount = round2(subtotal * to_money(coupon.discount_rate) / Decimal(100))
    return CouponEvaluation(eligible=True, discount_amount=min(discount, subtotal))


def ineligibility_message(evaluation: CouponEvaluation, coupon: Any = None,
                          subtotal: MoneyLike = 0) -> Optional[str]:
    """User-facing message for a rejected coupon; None when eligible."""
    if evaluation.eligible:
        return None
    if evaluation.reason == IneligibleReason.EXPIRED:
        return EXPIRED_MESSAGE
    if evaluation.reason == IneligibleReason.BELOW_MINIMUM and coupon is not None:
        minimum = round2(coupon.min_subtotal or 0)
        missing = minimum - clamp_non_negative(subtotal)
        return (
            f"Minimum subtotal is {format_money(minimum)}. "
            f"Add {format_money(missing)} more to use this coupon."
        )
    # Inactive deliberately reads like NotFound
    return INVALID_CODE_MESSAGE
