"""
FastAPI application for storefront pricing: coupons, cart totals and checkout.
"""
import time
import secrets
import logging
from decimal import Decimal
from functools import lru_cache
from typing import List, Optional
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Header, Query
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from redis.exceptions import RedisError

from storefront.config import Config
from storefront.models import (
    AvailableCoupon,
    CartItemRequest,
    CartResponse,
    CartSnapshot,
    CheckoutRequest,
    CheckoutResponse,
    Coupon,
    CouponCreate,
    CouponUpdate,
    CouponValidateResponse,
    QuantityUpdateRequest,
    QuoteRequest,
    QuoteResponse,
)
from storefront.cart_service import CartService
from storefront.checkout_service import CheckoutService
from storefront.coupon_service import CouponService
from storefront.coupons import IneligibleReason, canonical_code, ineligibility_message
from storefront.pricing import free_shipping_gap, price_cart
from storefront.exceptions import (
    CartNotFoundError,
    CouponNotFoundError,
    DuplicateCouponError,
    ValidationError,
    LimitExceededError,
    ProductNotFoundError,
    RedisConnectionError
)
from storefront.middleware import RequestLoggingMiddleware
from storefront.redis_client import get_redis_client

logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Storefront Pricing API",
    description="Coupon validation, cart totals and checkout pricing",
    version="1.0.0"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=Config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)


# Services are created on first use so importing the app needs no Redis
@lru_cache(maxsize=None)
def get_coupon_service() -> CouponService:
    return CouponService()


@lru_cache(maxsize=None)
def get_cart_service() -> CartService:
    return CartService()


def get_checkout_service(
    cart_service: CartService = Depends(get_cart_service),
    coupon_service: CouponService = Depends(get_coupon_service)
) -> CheckoutService:
    return CheckoutService(cart_service=cart_service, coupon_service=coupon_service)


def require_cart_id(cart_id: str = Header(..., alias="X-Cart-ID", description="Cart identifier")) -> str:
    if not cart_id or not cart_id.strip():
        raise HTTPException(status_code=400, detail="Cart ID is required")
    return cart_id.strip()


def require_admin(api_key: Optional[str] = Header(None, alias="x-api-key")) -> None:
    """Admin API key check"""
    if not Config.ADMIN_API_KEY or not api_key or not secrets.compare_digest(api_key, Config.ADMIN_API_KEY):
        raise HTTPException(status_code=401, detail="Invalid API key")


def build_quote(cart: CartSnapshot, coupon_code: Optional[str], coupon_service: CouponService) -> QuoteResponse:
    """Price a cart with an optional coupon code and explain the coupon outcome"""
    code = canonical_code(coupon_code)
    coupon = coupon_service.find_by_code(code) if code else None
    priced = price_cart(cart, coupon)

    reason = None
    message = None
    if code and not priced.coupon_applied:
        reason = priced.evaluation.reason if priced.evaluation else IneligibleReason.NOT_FOUND
        if priced.evaluation:
            message = ineligibility_message(priced.evaluation, coupon, cart.subtotal)
        else:
            message = "Invalid coupon code."

    return QuoteResponse(
        totals=priced.totals,
        coupon_code=coupon.code if priced.coupon_applied else None,
        coupon_applied=priced.coupon_applied,
        coupon_reason=reason,
        message=message,
        free_shipping_gap=free_shipping_gap(priced.totals),
    )


# Health check endpoint for load balancers
@app.get("/health")
async def health_check():
    """
    Always returns HTTP 200 if the application is running.
    Reports Redis connectivity without failing on it.
    """
    redis_status = "healthy"
    redis_latency_ms = None

    try:
        redis_client = get_redis_client()
        ping_start = time.time()
        if not redis_client.ping():
            redis_status = "unhealthy"
        redis_latency_ms = round((time.time() - ping_start) * 1000, 2)
    except (RedisConnectionError, RedisError) as e:
        logger.warning(f"Health check could not reach Redis: {e}")
        redis_status = "unhealthy"

    return JSONResponse(
        status_code=200,
        content={
            "status": "healthy",
            "service": "pricing-api",
            "redis": {
                "status": redis_status,
                "latency_ms": redis_latency_ms
            },
            "timestamp": time.time()
        }
    )


# Coupon endpoints
@app.get("/coupons", response_model=List[AvailableCoupon])
def list_available_coupons(coupon_service: CouponService = Depends(get_coupon_service)):
    """Active, unexpired coupons (code and rate only)"""
    return coupon_service.list_available()


@app.get("/coupons/validate", response_model=CouponValidateResponse, response_model_exclude_none=True)
def validate_coupon(
    code: str = Query("", description="Coupon code, case-insensitive"),
    subtotal: Decimal = Query(Decimal("0"), ge=0, le=Config.MAX_MONEY, description="Current cart subtotal"),
    coupon_service: CouponService = Depends(get_coupon_service)
):
    """
    Validate a coupon code against a subtotal.
    Called on explicit apply and on every subtotal change; safe to retry.
    """
    try:
        return coupon_service.validate_code(code, subtotal)
    except ValidationError as e:
        return JSONResponse(status_code=400, content={"valid": False, "message": e.message})


@app.post("/pricing/quote", response_model=QuoteResponse)
def quote(
    request: QuoteRequest,
    coupon_service: CouponService = Depends(get_coupon_service)
):
    """Stateless totals preview for an item list"""
    return build_quote(CartSnapshot(items=request.items), request.coupon_code, coupon_service)


# Cart endpoints
@app.post("/cart/items", response_model=dict)
def add_cart_item(
    request: CartItemRequest,
    cart_id: str = Depends(require_cart_id),
    user_id: Optional[str] = Header(None, alias="X-User-ID", description="User identifier"),
    cart_service: CartService = Depends(get_cart_service)
):
    """Add an item, or add to its quantity if already in the cart"""
    item = cart_service.add_item(
        cart_id=cart_id,
        product_id=request.product_id,
        quantity=request.quantity,
        unit_price=request.unit_price,
        is_guest=user_id is None
    )
    return {
        "success": True,
        "message": "Item added to cart",
        "product_id": item.product_id,
        "quantity": item.quantity
    }


@app.get("/cart", response_model=CartResponse)
def get_cart(
    cart_id: str = Depends(require_cart_id),
    cart_service: CartService = Depends(get_cart_service)
):
    """Get cart contents; a cart that does not exist yet is returned empty"""
    try:
        cart = cart_service.get_cart(cart_id)
    except CartNotFoundError:
        cart = CartSnapshot(cart_id=cart_id)

    return CartResponse(
        cart_id=cart_id,
        items=cart.items,
        total_items=cart.total_items,
        subtotal=cart.subtotal
    )


@app.get("/cart/totals", response_model=QuoteResponse)
def get_cart_totals(
    coupon_code: Optional[str] = Query(None, description="Coupon code to try"),
    cart_id: str = Depends(require_cart_id),
    cart_service: CartService = Depends(get_cart_service),
    coupon_service: CouponService = Depends(get_coupon_service)
):
    """Totals for the stored cart, recomputed on every call"""
    try:
        cart = cart_service.get_cart(cart_id)
    except CartNotFoundError:
        cart = CartSnapshot(cart_id=cart_id)
    return build_quote(cart, coupon_code, coupon_service)


@app.patch("/cart/items/{product_id}", response_model=dict)
def update_cart_item(
    product_id: str,
    request: QuantityUpdateRequest,
    cart_id: str = Depends(require_cart_id),
    user_id: Optional[str] = Header(None, alias="X-User-ID", description="User identifier"),
    cart_service: CartService = Depends(get_cart_service)
):
    """Set an item's quantity; 0 removes it"""
    kept = cart_service.update_quantity(cart_id, product_id, request.quantity, is_guest=user_id is None)
    return {
        "success": True,
        "message": "Quantity updated" if kept else "Item removed from cart",
        "product_id": product_id,
        "quantity": request.quantity
    }


@app.delete("/cart/items/{product_id}", response_model=dict)
def remove_cart_item(
    product_id: str,
    cart_id: str = Depends(require_cart_id),
    user_id: Optional[str] = Header(None, alias="X-User-ID", description="User identifier"),
    cart_service: CartService = Depends(get_cart_service)
):
    """Remove item from cart"""
    if not cart_service.remove_item(cart_id, product_id, is_guest=user_id is None):
        raise HTTPException(status_code=404, detail="Product not found in cart")

    return {
        "success": True,
        "message": "Item removed from cart",
        "product_id": product_id
    }


# Checkout
@app.post("/orders/create-checkout-session", response_model=CheckoutResponse)
def create_checkout_session(
    request: CheckoutRequest,
    cart_id: str = Depends(require_cart_id),
    user_id: Optional[str] = Header(None, alias="X-User-ID", description="User identifier"),
    checkout_service: CheckoutService = Depends(get_checkout_service)
):
    """
    Create an order from the stored cart.
    Coupon code is re-validated and totals recomputed server-side.
    """
    return checkout_service.create_checkout_session(cart_id=cart_id, request=request, user_id=user_id)


# Admin coupon endpoints
admin = APIRouter(prefix="/admin/coupons", tags=["admin"], dependencies=[Depends(require_admin)])


@admin.get("", response_model=List[Coupon])
def admin_list_coupons(
    include_deleted: bool = Query(False),
    coupon_service: CouponService = Depends(get_coupon_service)
):
    return coupon_service.list_coupons(include_deleted=include_deleted)


@admin.post("", response_model=Coupon, status_code=201)
def admin_create_coupon(
    request: CouponCreate,
    coupon_service: CouponService = Depends(get_coupon_service)
):
    return coupon_service.create_coupon(request)


@admin.get("/{coupon_id}", response_model=Coupon)
def admin_get_coupon(coupon_id: str, coupon_service: CouponService = Depends(get_coupon_service)):
    return coupon_service.get_coupon(coupon_id)


@admin.patch("/{coupon_id}", response_model=Coupon)
def admin_update_coupon(
    coupon_id: str,
    request: CouponUpdate,
    coupon_service: CouponService = Depends(get_coupon_service)
):
    return coupon_service.update_coupon(coupon_id, request)


@admin.post("/{coupon_id}/toggle-active", response_model=Coupon)
def admin_toggle_coupon(coupon_id: str, coupon_service: CouponService = Depends(get_coupon_service)):
    return coupon_service.toggle_active(coupon_id)


@admin.delete("/{coupon_id}", response_model=Coupon)
def admin_delete_coupon(
    coupon_id: str,
    hard: bool = Query(False, description="Remove permanently instead of deactivating"),
    coupon_service: CouponService = Depends(get_coupon_service)
):
    return coupon_service.delete_coupon(coupon_id, hard=hard)


app.include_router(admin)


# Error handlers
@app.exception_handler(ValidationError)
async def validation_error_handler(request, exc):
    return JSONResponse(
        status_code=400,
        content={"error": "Validation error", "message": str(exc)}
    )


@app.exception_handler(LimitExceededError)
async def limit_exceeded_handler(request, exc):
    return JSONResponse(
        status_code=400,
        content={"error": "Limit exceeded", "message": str(exc)}
    )


@app.exception_handler(CartNotFoundError)
async def cart_not_found_handler(request, exc):
    return JSONResponse(
        status_code=404,
        content={"error": "Cart not found", "message": str(exc)}
    )


@app.exception_handler(ProductNotFoundError)
async def product_not_found_handler(request, exc):
    return JSONResponse(
        status_code=404,
        content={"error": "Product not found", "message": str(exc)}
    )


@app.exception_handler(CouponNotFoundError)
async def coupon_not_found_handler(request, exc):
    return JSONResponse(
        status_code=404,
        content={"error": "Coupon not found", "message": str(exc)}
    )


@app.exception_handler(DuplicateCouponError)
async def duplicate_coupon_handler(request, exc):
    return JSONResponse(
        status_code=409,
        content={"error": "Duplicate coupon", "message": str(exc)}
    )


@app.exception_handler(RedisConnectionError)
async def redis_error_handler(request, exc):
    logger.error(f"Redis unavailable: {exc}")
    return JSONResponse(
        status_code=503,
        content={"error": "Service unavailable", "message": "Redis connection failed"}
    )


# Generic exception handler for unhandled errors
@app.exception_handler(Exception)
async def generic_exception_handler(request, exc):
    logger.error(
        f"Unhandled exception: {type(exc).__name__}: {exc}",
        exc_info=True
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "message": str(exc),
            "type": type(exc).__name__
        }
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=Config.APP_PORT)
