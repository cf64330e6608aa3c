"""
Endpoints coupons.
- POST /api/v1/coupons/validate: validation sans effet de bord (anonyme autorisé).
- POST /api/v1/coupons: création administrative (require_admin).
"""
from typing import Any, Dict, List, Optional
import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from storefront import config
from storefront.utils.security import optional_user, require_admin
from . import service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/coupons", tags=["Coupons"])


class ValidateCouponRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    code: str = Field(min_length=1)
    subtotal_cents: int = Field(alias="subtotalCents", gt=0)
    exam_ids: List[str] = Field(default_factory=list, alias="examIds")
    categories: List[str] = Field(default_factory=list)


class CreateCouponRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    code: str
    provider_coupon_id: str = Field(alias="providerCouponId")
    kind: str
    value: float
    description: str = ""
    max_discount_cents: Optional[int] = Field(default=None, alias="maxDiscountCents")
    min_purchase_cents: int = Field(default=0, alias="minPurchaseCents")
    valid_from: Optional[str] = Field(default=None, alias="validFrom")
    valid_until: Optional[str] = Field(default=None, alias="validUntil")
    usage_limit: Optional[int] = Field(default=None, alias="usageLimit")
    per_user_limit: int = Field(default=1, alias="perUserLimit")
    categories: List[str] = Field(default_factory=list)
    excluded_exam_ids: List[str] = Field(default_factory=list, alias="excludedExamIds")
    active: bool = True


# module storefront.coupons.views
@router.post("/validate")
def validate_coupon(body: ValidateCouponRequest, user: Optional[Dict[str, Any]] = Depends(optional_user)):
    """
    Valide un code pour le panier courant.
    - Retour 200 {valid, code, discountCents, providerCouponReference, message} dans tous les cas
      (un coupon refusé n'est pas une erreur HTTP).
    """
    user_id = (user or {}).get("id") or config.GUEST_USER_ID
    result = service.validate_coupon(
        body.code,
        body.subtotal_cents,
        user_id=user_id,
        exam_ids=body.exam_ids,
        categories=body.categories,
    )
    return result.to_dict()


@router.post("", status_code=201)
def create_coupon(body: CreateCouponRequest, admin: Dict[str, Any] = Depends(require_admin)):
    """Création d'un coupon (400 définition invalide, 409 code existant)."""
    coupon = service.create_coupon(body.model_dump())
    logger.info("coupons.views.create by=%s code=%s", admin.get("id"), coupon.get("code"))
    return {"success": True, "coupon": coupon}
