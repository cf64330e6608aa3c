"""
Endpoints droits d'accès (utilisateur authentifié).
- GET /api/v1/purchases: examens achetés, plus récents d'abord
- GET /api/v1/purchases/{exam_id}/access: accès actif et non expiré
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends

from storefront.utils.security import require_user
from . import service

router = APIRouter(prefix="/api/v1/purchases", tags=["Purchases"])

# module storefront.purchases.views
@router.get("")
def list_purchases(user: Dict[str, Any] = Depends(require_user)):
    return {"purchases": service.list_purchases(user["id"])}

@router.get("/{exam_id}/access")
def exam_access(exam_id: str, user: Dict[str, Any] = Depends(require_user)):
    return {"examId": exam_id, "hasAccess": service.has_access(user["id"], exam_id)}
