"""
Cas d'usage 'coupons': validation (sans effet de bord), enregistrement d'usage après paiement,
création administrative.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional
import logging

from fastapi import HTTPException

from storefront import config
from . import repository
from . import rules

logger = logging.getLogger(__name__)


class CouponValidation:
    """Résultat de validation: jamais levé comme exception, toujours renvoyé au client."""

    def __init__(
        self,
        valid: bool,
        message: str,
        code: str = "",
        discount_cents: int = 0,
        provider_coupon_id: Optional[str] = None,
    ):
        self.valid = valid
        self.message = message
        self.code = code
        self.discount_cents = discount_cents
        self.provider_coupon_id = provider_coupon_id

    @classmethod
    def invalid(cls, message: str, code: str = "") -> "CouponValidation":
        return cls(False, message, code=code)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "code": self.code,
            "discountCents": self.discount_cents,
            "providerCouponReference": self.provider_coupon_id,
            "message": self.message,
        }


def _is_guest(user_id: Optional[str]) -> bool:
    return not user_id or user_id == config.GUEST_USER_ID

def validate_coupon(
    code: str,
    subtotal_cents: int,
    user_id: Optional[str] = None,
    exam_ids: Iterable[str] = (),
    categories: Iterable[str] = (),
    now: Optional[datetime] = None,
) -> CouponValidation:
    """
    Valide un code contre les règles stockées et le sous-total du panier.
    Ordre (la première erreur gagne): existence, actif, fenêtre de validité, minimum d'achat,
    limite globale, limite par utilisateur, catégories / examens exclus, puis calcul de la remise.
    La remise doit rester strictement inférieure au sous-total: une commande gratuite est refusée.
    Aucun effet de bord: l'usage est enregistré après paiement (record_coupon_usage).
    """
    code = rules.normalize_code(code)
    if not code:
        return CouponValidation.invalid("Code coupon manquant")
    if subtotal_cents <= 0:
        return CouponValidation.invalid("Montant du panier invalide", code)
    now = now or datetime.now(timezone.utc)
    exam_ids = [str(e) for e in exam_ids or [] if e]
    categories = [c for c in categories or [] if c]

    try:
        coupon = repository.get_coupon(code)
        if not coupon:
            return CouponValidation.invalid("Code coupon invalide", code)
        if not coupon.get("active"):
            return CouponValidation.invalid("Ce coupon n'est plus actif", code)

        window_error = rules.check_window(coupon, now)
        if window_error:
            return CouponValidation.invalid(window_error, code)

        min_purchase = coupon.get("min_purchase_cents") or 0
        if subtotal_cents < min_purchase:
            return CouponValidation.invalid(
                f"Montant minimum d'achat de {rules.format_amount(min_purchase)} requis", code
            )

        usage_limit = coupon.get("usage_limit")
        if usage_limit is not None and (coupon.get("used_count") or 0) >= usage_limit:
            return CouponValidation.invalid("Limite d'utilisation du coupon atteinte", code)

        per_user_limit = coupon.get("per_user_limit")
        if per_user_limit and not _is_guest(user_id):
            if repository.count_user_usages(user_id, code) >= per_user_limit:
                return CouponValidation.invalid("Vous avez atteint la limite d'utilisation de ce coupon", code)

        if coupon.get("categories") and exam_ids and not categories:
            categories = repository.get_exam_categories(exam_ids)
        scope_error = rules.check_scope(coupon, exam_ids, categories)
        if scope_error:
            return CouponValidation.invalid(scope_error, code)

        discount = rules.compute_discount(coupon, subtotal_cents)
        if discount >= subtotal_cents:
            return CouponValidation.invalid("Ce coupon ne peut pas couvrir la totalité de la commande", code)
    except Exception:
        logger.exception("coupons.validate_coupon failed code=%s user_id=%s", code, user_id)
        return CouponValidation.invalid("Erreur lors de la validation du coupon", code)

    return CouponValidation(
        True,
        f"Coupon appliqué ! Vous économisez {rules.format_amount(discount)}",
        code=code,
        discount_cents=discount,
        provider_coupon_id=coupon.get("provider_coupon_id"),
    )

def record_coupon_usage(code: str, user_id: Optional[str], session_id: str) -> bool:
    """
    Enregistre l'usage d'un coupon après confirmation du paiement.
    - Invité: rien n'est persisté.
    - Ligne coupon_usages unique par (coupon, session): used_count n'est incrémenté qu'à la création.
    - Ne lève jamais: un échec est journalisé et n'invalide pas la vérification du paiement.
    """
    code = rules.normalize_code(code)
    if not code or _is_guest(user_id):
        return False
    try:
        created = repository.insert_usage(user_id=user_id, code=code, session_id=session_id)
        if created:
            repository.increment_usage(code)
        logger.info("coupons.record_usage code=%s user_id=%s session_id=%s created=%s", code, user_id, session_id, created)
        return created
    except Exception:
        logger.exception("coupons.record_usage failed code=%s user_id=%s session_id=%s", code, user_id, session_id)
        return False

def create_coupon(data: Dict[str, Any]) -> Dict[str, Any]:
    """Création administrative: valide la définition puis insère (409 si le code existe)."""
    error = rules.validate_definition(data)
    if error:
        raise HTTPException(status_code=400, detail=error)
    code = rules.normalize_code(data.get("code"))
    if repository.get_coupon(code):
        raise HTTPException(status_code=409, detail="Ce code coupon existe déjà")

    row = {
        "code": code,
        "provider_coupon_id": data.get("provider_coupon_id"),
        "kind": data.get("kind"),
        "value": data.get("value"),
        "description": data.get("description") or "",
        "max_discount_cents": data.get("max_discount_cents"),
        "min_purchase_cents": data.get("min_purchase_cents") or 0,
        "valid_from": data.get("valid_from"),
        "valid_until": data.get("valid_until"),
        "usage_limit": data.get("usage_limit"),
        "used_count": 0,
        "per_user_limit": data.get("per_user_limit", 1),
        "categories": list(data.get("categories") or []),
        "excluded_exam_ids": [str(e) for e in data.get("excluded_exam_ids") or []],
        "active": bool(data.get("active", True)),
    }
    created = repository.insert_coupon(row)
    logger.info("coupons.create code=%s kind=%s", code, row["kind"])
    return created or row

def create_welcome_coupon(provider_coupon_id: str) -> Dict[str, Any]:
    """Coupon de bienvenue WELCOME50: 50 %, une utilisation par utilisateur, sans limite globale."""
    return create_coupon({
        "code": "WELCOME50",
        "provider_coupon_id": provider_coupon_id,
        "kind": rules.PERCENTAGE,
        "value": 50,
        "description": "50% de réduction sur votre premier achat",
        "per_user_limit": 1,
    })
