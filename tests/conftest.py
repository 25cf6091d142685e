from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from storefront.cart_service import CartService
from storefront.config import Config
from storefront.coupon_service import CouponService
from storefront.main import app, get_cart_service, get_coupon_service
from storefront.models import CartItem, CartSnapshot, CouponCreate

ADMIN_KEY = "test-admin-key"
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class InMemoryRedis:
    """Dict-backed stand-in for storefront.redis_client.RedisClient"""

    def __init__(self):
        self.strings = {}
        self.hashes = {}
        self.ttls = {}

    def get(self, key):
        return self.strings.get(key)

    def set(self, key, value, ex=None):
        self.strings[key] = value
        if ex is not None:
            self.ttls[key] = ex
        return True

    def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.strings.pop(key, None) is not None or self.hashes.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    def exists(self, *keys):
        return sum(1 for key in keys if key in self.strings or key in self.hashes)

    def expire(self, key, time):
        if key not in self.strings and key not in self.hashes:
            return False
        self.ttls[key] = time
        return True

    def hget(self, key, field):
        return self.hashes.get(key, {}).get(field)

    def hset(self, key, field, value):
        bucket = self.hashes.setdefault(key, {})
        is_new = field not in bucket
        bucket[field] = value
        return int(is_new)

    def hsetnx(self, key, field, value):
        bucket = self.hashes.setdefault(key, {})
        if field in bucket:
            return False
        bucket[field] = value
        return True

    def hincrby(self, key, field, amount=1):
        bucket = self.hashes.setdefault(key, {})
        value = int(bucket.get(field, 0)) + amount
        bucket[field] = str(value)
        return value

    def hdel(self, key, *fields):
        bucket = self.hashes.get(key, {})
        removed = sum(1 for field in fields if bucket.pop(field, None) is not None)
        if key in self.hashes and not bucket:
            del self.hashes[key]
        return removed

    def hgetall(self, key):
        return dict(self.hashes.get(key, {}))

    def hlen(self, key):
        return len(self.hashes.get(key, {}))

    def ping(self):
        return True


def make_cart(*lines, cart_id=None):
    """make_cart(("p1", "60.00", 1), ...)"""
    return CartSnapshot(
        cart_id=cart_id,
        items=[CartItem(product_id=p, unit_price=Decimal(str(price)), quantity=q) for p, price, q in lines],
    )


@pytest.fixture
def redis():
    return InMemoryRedis()


@pytest.fixture
def coupon_service(redis):
    return CouponService(redis)


@pytest.fixture
def cart_service(redis):
    return CartService(redis)


@pytest.fixture
def welcome10(coupon_service):
    return coupon_service.create_coupon(CouponCreate(code="welcome10", discount_rate=Decimal("10")))


@pytest.fixture
def api(coupon_service, cart_service, monkeypatch):
    monkeypatch.setattr(Config, "ADMIN_API_KEY", ADMIN_KEY)
    app.dependency_overrides[get_coupon_service] = lambda: coupon_service
    app.dependency_overrides[get_cart_service] = lambda: cart_service
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers():
    return {"x-api-key": ADMIN_KEY}


@pytest.fixture
def yesterday():
    return datetime.now(timezone.utc) - timedelta(days=1)


@pytest.fixture
def tomorrow():
    return datetime.now(timezone.utc) + timedelta(days=1)
