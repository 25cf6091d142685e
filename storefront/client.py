"""
Client-side coupon handling for storefront frontends.

``CouponSession`` holds one shopper's cart view. The code remembered in the
``appliedCoupon`` cache is only a prefill hint: every cart change re-asks the
server and recomputes totals with the shared calculator. Responses to
superseded requests are dropped by sequence number, and a failed request
never clears a coupon the server has not rejected.
"""
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, MutableMapping, Optional

import httpx
from pydantic import ValidationError as ModelValidationError

from storefront.coupons import canonical_code
from storefront.exceptions import CouponNetworkError
from storefront.models import (
    APPLIED_COUPON_VERSION,
    AppliedCoupon,
    CartItem,
    CartSnapshot,
    CouponSummary,
    CouponValidateResponse,
    OrderTotals,
    QuoteRequest,
    QuoteResponse,
)
from storefront.pricing import compute_totals, free_shipping_gap

logger = logging.getLogger(__name__)

APPLIED_COUPON_KEY = "appliedCoupon"
NETWORK_WARNING = "Could not validate coupon, please try again"


class PricingApiClient:
    """Client for the pricing endpoints of the storefront API."""

    def __init__(self, base_url: str = "", timeout: float = 5.0, http: Optional[httpx.Client] = None) -> None:
        """
        Args:
            base_url: API root, e.g. https://shop.example.com/api
            timeout: Request timeout in seconds
            http: Preconfigured httpx client (base_url/timeout are then ignored)
        """
        self.client = http or httpx.Client(base_url=base_url, timeout=timeout)

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = self.client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise CouponNetworkError(f"{method} {path} failed: {e}")
        if response.status_code >= 500:
            raise CouponNetworkError(f"{method} {path} returned {response.status_code}")
        return response

    def validate_coupon(self, code: str, subtotal: Decimal) -> CouponValidateResponse:
        """
        Ask the server whether a code applies to a subtotal.

        Raises:
            CouponNetworkError: transport failure, timeout, 5xx or unreadable body
        """
        response = self._request(
            "GET", "/coupons/validate", params={"code": code, "subtotal": str(subtotal)}
        )
        try:
            return CouponValidateResponse.model_validate(response.json())
        except (ValueError, ModelValidationError) as e:
            # 4xx without our body shape is still an infrastructure problem
            raise CouponNetworkError(f"Unexpected validate response ({response.status_code}): {e}")

    def quote(self, items: List[CartItem], coupon_code: Optional[str] = None) -> QuoteResponse:
        """Server-side totals preview for an item list"""
        body = QuoteRequest(items=items, coupon_code=coupon_code).model_dump(mode="json")
        response = self._request("POST", "/pricing/quote", json=body)
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise CouponNetworkError(f"Quote request rejected: {e}")
        return QuoteResponse.model_validate(response.json())

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "PricingApiClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class AppliedCouponCache:
    """The ``appliedCoupon`` entry in a browser-storage-like string mapping."""

    def __init__(self, storage: MutableMapping[str, str], key: str = APPLIED_COUPON_KEY) -> None:
        self.storage = storage
        self.key = key

    def load(self) -> Optional[AppliedCoupon]:
        raw = self.storage.get(self.key)
        if raw is None:
            return None
        try:
            entry = AppliedCoupon.model_validate(json.loads(raw))
        except (ValueError, ModelValidationError):
            logger.info("Discarding unreadable applied coupon entry")
            self.clear()
            return None
        if entry.version != APPLIED_COUPON_VERSION:
            logger.info(f"Discarding applied coupon entry with version {entry.version}")
            self.clear()
            return None
        return entry

    def save(self, entry: AppliedCoupon) -> None:
        self.storage[self.key] = entry.model_dump_json()

    def clear(self) -> None:
        self.storage.pop(self.key, None)


@dataclass(frozen=True)
class CartView:
    """What the order summary shows"""
    totals: OrderTotals
    coupon: Optional[CouponSummary] = None
    message: Optional[str] = None
    warning: Optional[str] = None
    free_shipping_gap: Decimal = Decimal("0.00")


class CouponSession:
    """Pricing state for one shopper's cart."""

    def __init__(self, api: PricingApiClient, cache: AppliedCouponCache,
                 cart: Optional[CartSnapshot] = None) -> None:
        self.api = api
        self.cache = cache
        self.cart = cart or CartSnapshot()
        self.confirmed: Optional[CouponSummary] = None
        self.message: Optional[str] = None
        self.warning: Optional[str] = None
        self._sequence = 0

    def begin_validation(self) -> int:
        """Start a validate round trip; earlier tickets become stale."""
        self._sequence += 1
        return self._sequence

    def is_current(self, ticket: int) -> bool:
        return ticket == self._sequence

    def finish_validation(self, ticket: int, code: str, response: CouponValidateResponse) -> bool:
        """
        Apply a validate response unless a newer request was started.

        Returns:
            False if the response was stale and discarded
        """
        if not self.is_current(ticket):
            logger.debug(f"Discarding stale validation for {code} (ticket {ticket} < {self._sequence})")
            return False

        self.warning = None
        if response.valid and response.coupon is not None:
            self.confirmed = response.coupon
            self.message = response.message
            self.cache.save(AppliedCoupon(
                code=response.coupon.code,
                discount_rate=response.coupon.discount_rate,
                discount_amount=response.discount_amount or Decimal("0"),
            ))
        else:
            self.confirmed = None
            self.message = response.message
            self.cache.clear()
        return True

    def fail_validation(self, ticket: int, error: CouponNetworkError) -> bool:
        """Record a failed round trip; the cached coupon is kept."""
        if not self.is_current(ticket):
            return False
        logger.warning(f"Coupon validation failed: {error}")
        self.confirmed = None
        self.warning = NETWORK_WARNING
        return True

    def _validate(self, code: str) -> None:
        ticket = self.begin_validation()
        try:
            response = self.api.validate_coupon(code, self.cart.subtotal)
        except CouponNetworkError as e:
            self.fail_validation(ticket, e)
            return
        self.finish_validation(ticket, code, response)

    def apply(self, code: str, now: Optional[datetime] = None) -> CartView:
        """Explicit "Apply" from the shopper"""
        code = canonical_code(code)
        if not code:
            self.message = "Coupon code is required."
            return self.view(now)
        self._validate(code)
        return self.view(now)

    def refresh(self, now: Optional[datetime] = None) -> CartView:
        """Revalidate the cached coupon, if any, against the current cart"""
        self.confirmed = None
        cached = self.cache.load()
        if cached is not None:
            self._validate(cached.code)
        return self.view(now)

    def update_cart(self, cart: CartSnapshot, now: Optional[datetime] = None) -> CartView:
        """Any add/remove/quantity change goes through here"""
        self.cart = cart
        return self.refresh(now)

    def remove_coupon(self, now: Optional[datetime] = None) -> CartView:
        self.begin_validation()
        self.confirmed = None
        self.message = None
        self.warning = None
        self.cache.clear()
        return self.view(now)

    def view(self, now: Optional[datetime] = None) -> CartView:
        """Totals for display, computed from the server-confirmed coupon only"""
        totals = compute_totals(self.cart, self.confirmed, now)
        return CartView(
            totals=totals,
            coupon=self.confirmed if totals.discount_amount > 0 else None,
            message=self.message,
            warning=self.warning,
            free_shipping_gap=free_shipping_gap(totals),
        )
