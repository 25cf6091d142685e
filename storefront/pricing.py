"""
Order total calculation shared by cart preview, the validate endpoint's
clients and checkout.

Sequence: subtotal -> coupon discount -> discounted subtotal -> shipping ->
tax -> total. Shipping is decided on the discounted subtotal, so a coupon can
move an order across the free-shipping line in either direction.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from storefront.coupons import CouponEvaluation, evaluate
from storefront.models import CartSnapshot, OrderTotals
from storefront.money import ZERO, clamp_non_negative, round2

FREE_SHIPPING_THRESHOLD = Decimal("100")
FLAT_SHIPPING = Decimal("15.00")
TAX_RATE = Decimal("0.08")


@dataclass(frozen=True)
class PricedCart:
    totals: OrderTotals
    evaluation: Optional[CouponEvaluation] = None

    @property
    def coupon_applied(self) -> bool:
        return self.evaluation is not None and self.evaluation.eligible


def shipping_for(discounted_subtotal: Decimal) -> Decimal:
    if discounted_subtotal > FREE_SHIPPING_THRESHOLD:
        return ZERO
    return FLAT_SHIPPING


def price_cart(cart: CartSnapshot, coupon: Any = None, now: Optional[datetime] = None) -> PricedCart:
    """
    Compute order totals and the coupon decision they were based on.

    Args:
        cart: Current cart snapshot
        coupon: Coupon record to try, or None
        now: Time used for the expiry check

    Returns:
        PricedCart; evaluation is None when no coupon was supplied
    """
    subtotal = cart.subtotal

    evaluation = None
    discount = ZERO
    if coupon is not None:
        evaluation = evaluate(coupon, subtotal, now)
        if evaluation.eligible:
            discount = evaluation.discount_amount

    discounted_subtotal = clamp_non_negative(subtotal - discount)
    shipping = shipping_for(discounted_subtotal)
    tax = round2((discounted_subtotal + shipping) * TAX_RATE)
    total = round2(discounted_subtotal + shipping + tax)

    totals = OrderTotals(
        subtotal=subtotal,
        discount_amount=round2(discount),
        discounted_subtotal=discounted_subtotal,
        shipping=shipping,
        tax=tax,
        total=total,
    )
    return PricedCart(totals=totals, evaluation=evaluation)


def compute_totals(cart: CartSnapshot, coupon: Any = None, now: Optional[datetime] = None) -> OrderTotals:
    return price_cart(cart, coupon, now).totals


def free_shipping_gap(totals: OrderTotals) -> Decimal:
    """Amount to add before shipping becomes free (threshold is exclusive)."""
    if totals.shipping == ZERO:
        return ZERO
    return round2(FREE_SHIPPING_THRESHOLD - totals.discounted_subtotal + Decimal("0.01"))
