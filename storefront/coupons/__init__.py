"""
Module 'coupons' (feature-first): règles pures, accès données, cas d'usage et endpoints.
"""

from .rules import normalize_code, compute_discount
from .service import CouponValidation, validate_coupon, record_coupon_usage, create_coupon

__all__ = [
    "normalize_code",
    "compute_discount",
    "CouponValidation",
    "validate_coupon",
    "record_coupon_usage",
    "create_coupon",
]
