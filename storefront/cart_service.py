"""
Cart service for the authoritative server-side cart stored in Redis.

A cart is two hashes sharing a TTL:
``cart:{cart_id}`` maps product_id -> quantity and
``cart:{cart_id}:prices`` maps product_id -> unit price.
Quantities change only through HINCRBY or a single HSET, so concurrent
requests on one cart never overwrite each other's increments.
"""
import hashlib
import logging
from decimal import Decimal, InvalidOperation
from typing import List

from storefront.redis_client import get_redis_client
from storefront.config import Config
from storefront.models import CartItem, CartSnapshot
from storefront.exceptions import (
    CartNotFoundError,
    ValidationError,
    LimitExceededError,
    ProductNotFoundError
)

logger = logging.getLogger(__name__)


def hash_cart_id(cart_id: str) -> str:
    """Hash cart ID for logging (no PII)"""
    return hashlib.sha256(cart_id.encode()).hexdigest()[:8]


class CartService:
    """Service for cart operations"""

    def __init__(self, redis=None):
        self.redis = redis if redis is not None else get_redis_client()

    def _get_cart_key(self, cart_id: str) -> str:
        """Generate Redis key for cart quantities"""
        return f"cart:{cart_id}"

    def _get_prices_key(self, cart_id: str) -> str:
        return f"cart:{cart_id}:prices"

    def _get_ttl(self, is_guest: bool = False) -> int:
        """Get TTL for cart based on type"""
        if is_guest:
            return Config.GUEST_CART_TTL_SECONDS
        return Config.CART_TTL_SECONDS

    def _check_quantity(self, quantity: int) -> None:
        if quantity > Config.MAX_QUANTITY_PER_ITEM:
            raise LimitExceededError(
                f"Quantity {quantity} exceeds maximum {Config.MAX_QUANTITY_PER_ITEM}"
            )

    def _refresh_ttl(self, cart_id: str, ttl: int) -> None:
        self.redis.expire(self._get_cart_key(cart_id), ttl)
        self.redis.expire(self._get_prices_key(cart_id), ttl)

    def _undo_increment(self, cart_key: str, product_id: str, quantity: int) -> None:
        """Take back an increment that broke a limit"""
        remaining = self.redis.hincrby(cart_key, product_id, -quantity)
        if remaining <= 0:
            self.redis.hdel(cart_key, product_id)

    def add_item(
        self,
        cart_id: str,
        product_id: str,
        quantity: int,
        unit_price: Decimal,
        is_guest: bool = False
    ) -> CartItem:
        """
        Add an item to the cart, or add to its quantity if already present.
        The unit price is refreshed to the latest one supplied.

        Returns:
            The resulting cart line
        """
        if quantity <= 0:
            raise ValidationError("Quantity must be greater than 0")
        if unit_price < 0:
            raise ValidationError("Unit price cannot be negative")
        self._check_quantity(quantity)

        cart_key = self._get_cart_key(cart_id)
        new_qty = self.redis.hincrby(cart_key, product_id, quantity)

        if new_qty > Config.MAX_QUANTITY_PER_ITEM:
            self._undo_increment(cart_key, product_id, quantity)
            raise LimitExceededError(
                f"Quantity {new_qty} exceeds maximum {Config.MAX_QUANTITY_PER_ITEM}"
            )

        # A line that did not exist before counts against the item limit
        if new_qty == quantity and self.redis.hlen(cart_key) > Config.MAX_ITEMS_PER_CART:
            self._undo_increment(cart_key, product_id, quantity)
            raise LimitExceededError(f"Cart exceeds maximum items {Config.MAX_ITEMS_PER_CART}")

        self.redis.hset(self._get_prices_key(cart_id), product_id, str(unit_price))
        self._refresh_ttl(cart_id, self._get_ttl(is_guest))
        logger.info(f"Cart {hash_cart_id(cart_id)}: {product_id} quantity +{quantity} -> {new_qty}")
        return CartItem(product_id=product_id, unit_price=unit_price, quantity=new_qty)

    def update_quantity(
        self,
        cart_id: str,
        product_id: str,
        quantity: int,
        is_guest: bool = False
    ) -> bool:
        """
        Set an item's quantity; 0 removes the item.

        Returns:
            True if the item is still in the cart
        """
        if quantity < 0:
            raise ValidationError("Quantity cannot be negative")
        self._check_quantity(quantity)

        if quantity == 0:
            if not self.remove_item(cart_id, product_id, is_guest):
                raise ProductNotFoundError(product_id)
            return False

        cart_key = self._get_cart_key(cart_id)
        if self.redis.hset(cart_key, product_id, quantity):
            # HSET created the field: the line was not in the cart
            self.redis.hdel(cart_key, product_id)
            raise ProductNotFoundError(product_id)

        self._refresh_ttl(cart_id, self._get_ttl(is_guest))
        return True

    def remove_item(self, cart_id: str, product_id: str, is_guest: bool = False) -> bool:
        """Remove item from cart"""
        cart_key = self._get_cart_key(cart_id)

        deleted = self.redis.hdel(cart_key, product_id)
        self.redis.hdel(self._get_prices_key(cart_id), product_id)

        if deleted > 0:
            # Refresh TTL if cart still has items
            if self.redis.hlen(cart_key) > 0:
                self._refresh_ttl(cart_id, self._get_ttl(is_guest))
            else:
                self.clear_cart(cart_id)
            return True

        return False

    def get_cart(self, cart_id: str) -> CartSnapshot:
        """Get cart contents"""
        cart_key = self._get_cart_key(cart_id)

        if not self.redis.exists(cart_key):
            raise CartNotFoundError(cart_id)

        prices = self.redis.hgetall(self._get_prices_key(cart_id))
        items: List[CartItem] = []
        for product_id, quantity in sorted(self.redis.hgetall(cart_key).items()):
            try:
                items.append(CartItem(
                    product_id=product_id,
                    quantity=int(quantity),
                    unit_price=Decimal(str(prices[product_id]))
                ))
            except (KeyError, ValueError, InvalidOperation) as e:
                # Skip invalid items
                logger.warning(f"Failed to parse cart item {product_id} in cart {hash_cart_id(cart_id)}: {e}")
                continue

        return CartSnapshot(cart_id=cart_id, items=items)

    def clear_cart(self, cart_id: str) -> bool:
        """Clear all items from cart"""
        deleted = self.redis.delete(self._get_cart_key(cart_id), self._get_prices_key(cart_id))
        return deleted > 0
