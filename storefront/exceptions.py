"""
Custom exceptions for the storefront pricing service.
"""


class StorefrontException(Exception):
    """Base exception for storefront operations"""
    pass


class CartNotFoundError(StorefrontException):
    """Raised when a cart does not exist"""
    def __init__(self, cart_id: str):
        self.cart_id = cart_id
        super().__init__(f"Cart not found: {cart_id}")


class ProductNotFoundError(StorefrontException):
    """Raised when a product is not found in cart"""
    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found in cart: {product_id}")


class ValidationError(StorefrontException):
    """Raised when validation fails"""
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class LimitExceededError(StorefrontException):
    """Raised when cart limits are exceeded"""
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class RedisConnectionError(StorefrontException):
    """Raised when Redis connection fails"""
    pass


class CouponNotFoundError(StorefrontException):
    """Raised when an admin operation targets a missing coupon"""
    def __init__(self, coupon_id: str):
        self.coupon_id = coupon_id
        super().__init__(f"Coupon not found: {coupon_id}")


class DuplicateCouponError(StorefrontException):
    """Raised when a coupon code is already taken"""
    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Coupon code already exists: {code}")


class CouponNetworkError(StorefrontException):
    """Raised by the pricing client when the validate call cannot complete"""
    pass
