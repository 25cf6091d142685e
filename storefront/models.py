"""
Pydantic models for carts, coupons, pricing, and checkout.
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, field_validator

from storefront.config import Config
from storefront.coupons import IneligibleReason, as_utc, canonical_code
from storefront.money import ZERO, clamp_non_negative, to_money

# Decimals in memory, JSON numbers on the wire
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]

APPLIED_COUPON_VERSION = 1


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _validate_code(value: str) -> str:
    code = canonical_code(value)
    if not code:
        raise ValueError("Coupon code is required")
    if len(code) > Config.COUPON_CODE_MAX_LENGTH:
        raise ValueError(f"Coupon code must be at most {Config.COUPON_CODE_MAX_LENGTH} characters")
    if any(ch.isspace() for ch in code):
        raise ValueError("Coupon code cannot contain whitespace")
    return code


class CartItem(BaseModel):
    """Cart line"""
    product_id: str = Field(..., min_length=1, description="Product identifier")
    unit_price: Money = Field(..., ge=0, le=Config.MAX_MONEY, description="Price per unit at time of add")
    quantity: int = Field(..., ge=1, le=Config.MAX_QUANTITY_PER_ITEM, description="Item quantity")


def _unique_products(items: List[CartItem]) -> List[CartItem]:
    seen = set()
    for item in items:
        if item.product_id in seen:
            raise ValueError(f"Duplicate product in cart: {item.product_id}")
        seen.add(item.product_id)
    return items


class CartSnapshot(BaseModel):
    """Cart contents at request time; the subtotal is always derived from items"""
    cart_id: Optional[str] = Field(None, description="Cart identifier")
    items: List[CartItem] = Field(default_factory=list)

    @field_validator("items")
    @classmethod
    def validate_unique_products(cls, v: List[CartItem]) -> List[CartItem]:
        return _unique_products(v)

    @property
    def subtotal(self) -> Decimal:
        total = sum((to_money(item.unit_price) * item.quantity for item in self.items), ZERO)
        return clamp_non_negative(total)

    @property
    def total_items(self) -> int:
        return sum(item.quantity for item in self.items)


class Coupon(BaseModel):
    """Persisted coupon record"""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    code: str
    discount_rate: Money = Field(..., ge=1, le=90, description="Percent off subtotal")
    min_subtotal: Money = Field(Decimal("0"), ge=0, le=Config.MAX_MONEY, description="Subtotal floor for eligibility")
    expires_at: Optional[datetime] = None
    is_active: bool = True
    deleted_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("code")
    @classmethod
    def validate_code(cls, v: str) -> str:
        return _validate_code(v)

    @field_validator("expires_at", "deleted_at", "created_at", "updated_at")
    @classmethod
    def validate_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v)


class CouponCreate(BaseModel):
    """Admin request body for a new coupon"""
    code: str
    discount_rate: Decimal = Field(..., ge=1, le=90)
    min_subtotal: Decimal = Field(Decimal("0"), ge=0, le=Config.MAX_MONEY)
    expires_at: Optional[datetime] = None
    is_active: bool = True

    @field_validator("code")
    @classmethod
    def validate_code(cls, v: str) -> str:
        return _validate_code(v)


class CouponUpdate(BaseModel):
    """Admin PATCH body; only fields that are sent change"""
    code: Optional[str] = None
    discount_rate: Optional[Decimal] = Field(None, ge=1, le=90)
    min_subtotal: Optional[Decimal] = Field(None, ge=0, le=Config.MAX_MONEY)
    expires_at: Optional[datetime] = None
    is_active: Optional[bool] = None

    @field_validator("code")
    @classmethod
    def validate_code(cls, v: Optional[str]) -> Optional[str]:
        return None if v is None else _validate_code(v)

    def changes(self) -> Dict:
        """Explicitly-sent fields; null is only meaningful for expires_at"""
        data = self.model_dump(exclude_unset=True)
        return {k: v for k, v in data.items() if v is not None or k == "expires_at"}


class CouponSummary(BaseModel):
    """Coupon fields exposed to shoppers"""
    code: str
    discount_rate: Money
    min_subtotal: Money = Decimal("0")
    is_active: bool = True
    expires_at: Optional[datetime] = None

    @classmethod
    def from_coupon(cls, coupon: Coupon) -> "CouponSummary":
        return cls(
            code=coupon.code,
            discount_rate=coupon.discount_rate,
            min_subtotal=coupon.min_subtotal,
            is_active=coupon.is_active,
            expires_at=coupon.expires_at,
        )


class AvailableCoupon(BaseModel):
    code: str
    discount_rate: Money


class CouponValidateResponse(BaseModel):
    """Response of GET /coupons/validate"""
    valid: bool
    coupon: Optional[CouponSummary] = None
    discount_amount: Optional[Money] = None
    message: Optional[str] = None
    reason: Optional[IneligibleReason] = None


class OrderTotals(BaseModel):
    """Computed totals; total = discounted_subtotal + shipping + tax"""
    model_config = ConfigDict(frozen=True)

    subtotal: Money
    discount_amount: Money
    discounted_subtotal: Money
    shipping: Money
    tax: Money
    total: Money


class AppliedCoupon(BaseModel):
    """Client-side cached coupon; a prefill hint, never trusted for pricing"""
    code: str
    discount_rate: Money
    discount_amount: Money
    version: int = APPLIED_COUPON_VERSION


class QuoteRequest(BaseModel):
    items: List[CartItem] = Field(default_factory=list)
    coupon_code: Optional[str] = None

    @field_validator("items")
    @classmethod
    def validate_unique_products(cls, v: List[CartItem]) -> List[CartItem]:
        return _unique_products(v)


class QuoteResponse(BaseModel):
    totals: OrderTotals
    coupon_code: Optional[str] = None
    coupon_applied: bool = False
    coupon_reason: Optional[IneligibleReason] = None
    message: Optional[str] = None
    free_shipping_gap: Money = ZERO


class CartItemRequest(BaseModel):
    """Request model for adding cart items"""
    product_id: str = Field(..., min_length=1, description="Product identifier")
    quantity: int = Field(..., ge=1, description="Item quantity")
    unit_price: Decimal = Field(..., ge=0, le=Config.MAX_MONEY, description="Product price")


class QuantityUpdateRequest(BaseModel):
    quantity: int = Field(..., ge=0, description="New quantity; 0 removes the item")


class CartResponse(BaseModel):
    """Response model for cart retrieval"""
    cart_id: str
    items: List[CartItem] = Field(default_factory=list)
    total_items: int = 0
    subtotal: Money = ZERO


class DeliveryAddress(BaseModel):
    full_name: str = Field(..., min_length=1)
    line1: str = Field(..., min_length=1)
    line2: Optional[str] = None
    city: str = Field(..., min_length=1)
    postal_code: str = Field(..., min_length=1)
    country: str = Field(..., min_length=2)
    phone: Optional[str] = None


class ClientTotals(BaseModel):
    """Totals the client displayed; informational only"""
    subtotal: Optional[Decimal] = Field(None, ge=-Config.MAX_MONEY, le=Config.MAX_MONEY)
    discount_amount: Optional[Decimal] = Field(None, ge=-Config.MAX_MONEY, le=Config.MAX_MONEY)
    discounted_subtotal: Optional[Decimal] = Field(None, ge=-Config.MAX_MONEY, le=Config.MAX_MONEY)
    shipping: Optional[Decimal] = Field(None, ge=-Config.MAX_MONEY, le=Config.MAX_MONEY)
    tax: Optional[Decimal] = Field(None, ge=-Config.MAX_MONEY, le=Config.MAX_MONEY)
    total: Optional[Decimal] = Field(None, ge=-Config.MAX_MONEY, le=Config.MAX_MONEY)


class CheckoutRequest(BaseModel):
    """Body of POST /orders/create-checkout-session"""
    items: Optional[List[CartItem]] = Field(None, description="Client view of the cart, ignored for pricing")
    delivery_address: DeliveryAddress
    coupon_code: Optional[str] = Field(None, description="Unvalidated coupon hint")
    client_totals: Optional[ClientTotals] = None


class CheckoutResponse(BaseModel):
    """Response model for checkout"""
    order_id: str
    cart_id: str
    items: List[CartItem]
    totals: OrderTotals
    coupon_code: Optional[str] = None
    coupon_discount_rate: Optional[Money] = None
    coupon_status: Optional[IneligibleReason] = None
    adjustments: List[str] = Field(default_factory=list)
    message: str
