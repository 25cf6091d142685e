"""
Checkout service: re-prices the authoritative cart when an order is created.
"""
import uuid
import json
import logging
from datetime import datetime
from typing import List, Optional

from storefront.cart_service import CartService, hash_cart_id
from storefront.config import Config
from storefront.coupon_service import CouponService
from storefront.coupons import IneligibleReason, canonical_code
from storefront.models import CartSnapshot, CheckoutRequest, CheckoutResponse, OrderTotals, utcnow
from storefront.money import round2
from storefront.pricing import price_cart
from storefront.exceptions import CartNotFoundError, ValidationError

logger = logging.getLogger(__name__)


def find_adjustments(request: CheckoutRequest, cart: CartSnapshot, totals: OrderTotals) -> List[str]:
    """Names of client-sent values that disagree with the server's numbers"""
    adjustments = []

    if request.items is not None:
        client_lines = {(i.product_id, i.quantity, round2(i.unit_price)) for i in request.items}
        server_lines = {(i.product_id, i.quantity, round2(i.unit_price)) for i in cart.items}
        if client_lines != server_lines:
            adjustments.append("items")

    if request.client_totals is not None:
        for field, client_value in request.client_totals.model_dump().items():
            if client_value is not None and round2(client_value) != getattr(totals, field):
                adjustments.append(field)

    return adjustments


class CheckoutService:
    """Service for checkout operations"""

    def __init__(self, cart_service: CartService = None, coupon_service: CouponService = None, redis=None):
        self.cart_service = cart_service or CartService(redis)
        self.coupon_service = coupon_service or CouponService(redis)
        self.redis = self.cart_service.redis

    def create_checkout_session(
        self,
        cart_id: str,
        request: CheckoutRequest,
        user_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> CheckoutResponse:
        """
        Create an order from the stored cart:
        1. Load the authoritative cart
        2. Re-fetch and re-evaluate the coupon hint
        3. Recompute totals, ignoring client-sent prices and totals
        4. Persist the order record
        5. Clear the cart

        Args:
            cart_id: Cart identifier
            request: Checkout body (coupon_code is only a hint)
            user_id: User identifier (optional)
            now: Time used for the coupon expiry check

        Returns:
            CheckoutResponse with the server-computed totals
        """
        try:
            cart = self.cart_service.get_cart(cart_id)
        except CartNotFoundError:
            raise ValidationError(f"Cart {cart_id} not found or already checked out")

        if not cart.items:
            raise ValidationError("Cannot checkout empty cart")

        code = canonical_code(request.coupon_code)
        coupon = self.coupon_service.find_by_code(code) if code else None
        priced = price_cart(cart, coupon, now)
        totals = priced.totals

        coupon_status = None
        applied_code = None
        applied_rate = None
        if priced.coupon_applied:
            applied_code = coupon.code
            applied_rate = coupon.discount_rate
        elif code:
            coupon_status = priced.evaluation.reason if priced.evaluation else IneligibleReason.NOT_FOUND
            logger.info(f"Checkout dropped coupon hint {code}: {coupon_status.value}")

        adjustments = find_adjustments(request, cart, totals)
        if adjustments:
            logger.warning(
                f"Checkout for cart {hash_cart_id(cart_id)} corrected client values: {adjustments}"
            )

        order_id = str(uuid.uuid4())
        order_data = {
            "order_id": order_id,
            "cart_id": cart_id,
            "user_id": user_id,
            "items": [item.model_dump(mode="json") for item in cart.items],
            "delivery_address": request.delivery_address.model_dump(),
            "coupon_code": applied_code,
            "coupon_discount_rate": float(applied_rate) if applied_rate is not None else None,
            "totals": totals.model_dump(mode="json"),
            "created_at": utcnow().isoformat(),
        }
        self.redis.set(f"order:{order_id}", json.dumps(order_data), ex=Config.ORDER_TTL_SECONDS)
        logger.info(f"Order created: {order_id}, Total: ${totals.total}")

        self.cart_service.clear_cart(cart_id)

        return CheckoutResponse(
            order_id=order_id,
            cart_id=cart_id,
            items=cart.items,
            totals=totals,
            coupon_code=applied_code,
            coupon_discount_rate=applied_rate,
            coupon_status=coupon_status,
            adjustments=adjustments,
            message="Order placed successfully. Cart has been cleared.",
        )
