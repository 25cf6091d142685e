"""
Coupon service: Redis persistence, admin CRUD, and code validation.

Records live in the ``coupons`` hash (id -> JSON). The ``coupon_codes`` hash
maps canonical code -> id; HSETNX on it is what keeps codes unique.
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import ValidationError as ModelValidationError

from storefront.coupons import as_utc, canonical_code, evaluate, ineligibility_message
from storefront.exceptions import CouponNotFoundError, DuplicateCouponError, ValidationError
from storefront.models import (
    AvailableCoupon,
    Coupon,
    CouponCreate,
    CouponSummary,
    CouponUpdate,
    CouponValidateResponse,
    utcnow,
)
from storefront.money import MoneyLike, clamp_non_negative
from storefront.redis_client import get_redis_client

logger = logging.getLogger(__name__)

COUPONS_KEY = "coupons"
COUPON_CODES_KEY = "coupon_codes"


class CouponService:
    """Service for coupon operations"""

    def __init__(self, redis=None):
        self.redis = redis if redis is not None else get_redis_client()

    def _save(self, coupon: Coupon) -> None:
        self.redis.hset(COUPONS_KEY, coupon.id, coupon.model_dump_json())

    def _load(self, coupon_id: str) -> Optional[Coupon]:
        raw = self.redis.hget(COUPONS_KEY, coupon_id)
        if raw is None:
            return None
        return Coupon.model_validate_json(raw)

    def get_coupon(self, coupon_id: str, include_deleted: bool = False) -> Coupon:
        coupon = self._load(coupon_id)
        if coupon is None or (coupon.deleted_at is not None and not include_deleted):
            raise CouponNotFoundError(coupon_id)
        return coupon

    def find_by_code(self, code: Optional[str]) -> Optional[Coupon]:
        """Look up a coupon by code, case-insensitively. Soft-deleted records are returned as-is."""
        code = canonical_code(code)
        if not code:
            return None
        coupon_id = self.redis.hget(COUPON_CODES_KEY, code)
        if coupon_id is None:
            return None
        return self._load(coupon_id)

    def list_coupons(self, include_deleted: bool = False) -> List[Coupon]:
        coupons = [Coupon.model_validate_json(raw) for raw in self.redis.hgetall(COUPONS_KEY).values()]
        if not include_deleted:
            coupons = [c for c in coupons if c.deleted_at is None]
        return sorted(coupons, key=lambda c: c.created_at, reverse=True)

    def list_available(self, now: Optional[datetime] = None) -> List[AvailableCoupon]:
        """Active, unexpired coupons for the public listing"""
        now = as_utc(now) or datetime.now(timezone.utc)
        return [
            AvailableCoupon(code=c.code, discount_rate=c.discount_rate)
            for c in self.list_coupons()
            if c.is_active and (c.expires_at is None or c.expires_at > now)
        ]

    def create_coupon(self, data: CouponCreate) -> Coupon:
        coupon = Coupon(**data.model_dump())
        if not self.redis.hsetnx(COUPON_CODES_KEY, coupon.code, coupon.id):
            raise DuplicateCouponError(coupon.code)
        self._save(coupon)
        logger.info(f"Coupon created: {coupon.code} ({coupon.discount_rate}% off)")
        return coupon

    def update_coupon(self, coupon_id: str, changes: CouponUpdate) -> Coupon:
        coupon = self.get_coupon(coupon_id)
        data = changes.changes()
        if not data:
            return coupon

        try:
            updated = Coupon.model_validate({**coupon.model_dump(), **data, "updated_at": utcnow()})
        except ModelValidationError as e:
            raise ValidationError(f"Invalid coupon update: {e.errors()[0]['msg']}")

        if updated.code != coupon.code:
            if not self.redis.hsetnx(COUPON_CODES_KEY, updated.code, coupon.id):
                raise DuplicateCouponError(updated.code)
            self.redis.hdel(COUPON_CODES_KEY, coupon.code)

        self._save(updated)
        logger.info(f"Coupon updated: {updated.code} fields={sorted(data)}")
        return updated

    def toggle_active(self, coupon_id: str) -> Coupon:
        coupon = self.get_coupon(coupon_id)
        return self.update_coupon(coupon_id, CouponUpdate(is_active=not coupon.is_active))

    def delete_coupon(self, coupon_id: str, hard: bool = False) -> Coupon:
        """
        Delete a coupon.

        Soft delete deactivates the record and keeps its code reserved.
        Hard delete removes the record and frees the code.
        """
        coupon = self.get_coupon(coupon_id, include_deleted=hard)

        if hard:
            self.redis.hdel(COUPONS_KEY, coupon.id)
            if self.redis.hget(COUPON_CODES_KEY, coupon.code) == coupon.id:
                self.redis.hdel(COUPON_CODES_KEY, coupon.code)
            logger.info(f"Coupon hard-deleted: {coupon.code}")
            return coupon

        now = utcnow()
        deleted = coupon.model_copy(update={"is_active": False, "deleted_at": now, "updated_at": now})
        self._save(deleted)
        logger.info(f"Coupon soft-deleted: {coupon.code}")
        return deleted

    def validate_code(
        self,
        code: Optional[str],
        subtotal: MoneyLike,
        now: Optional[datetime] = None
    ) -> CouponValidateResponse:
        """
        Validate a coupon code against a subtotal.

        Rejections come back as ``valid=False`` with a reason and message;
        only a missing code raises.
        """
        code = canonical_code(code)
        if not code:
            raise ValidationError("Coupon code is required.")

        subtotal = clamp_non_negative(subtotal)
        coupon = self.find_by_code(code)
        evaluation = evaluate(coupon, subtotal, now)

        if not evaluation.eligible:
            logger.info(f"Coupon rejected: code={code} reason={evaluation.reason.value}")
            return CouponValidateResponse(
                valid=False,
                reason=evaluation.reason,
                message=ineligibility_message(evaluation, coupon, subtotal),
            )

        return CouponValidateResponse(
            valid=True,
            coupon=CouponSummary.from_coupon(coupon),
            discount_amount=evaluation.discount_amount,
            message=f"{coupon.code} applied: {coupon.discount_rate.normalize():f}% off",
        )
