"""
Règles coupon pures (pas de DB, pas de Stripe).
Montants en centimes; `value` vaut un pourcentage (kind=percentage) ou des centimes (kind=fixed).
"""
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

PERCENTAGE = "percentage"
FIXED = "fixed"
COUPON_KINDS = (PERCENTAGE, FIXED)

# module storefront.coupons.rules
def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()

def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Convertit une date Supabase (ISO 8601, éventuellement suffixée 'Z') en datetime UTC.
    Retourne None si absente ou illisible.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt

def format_amount(cents: int) -> str:
    return f"{cents / 100:.2f}"

def compute_discount(coupon: Dict[str, Any], subtotal_cents: int) -> int:
    """
    Calcule la remise en centimes.
    - percentage: subtotal × value / 100 (arrondi au centime), plafonné par max_discount_cents
    - fixed: min(value, subtotal)
    La borne stricte (remise < subtotal) est vérifiée par l'appelant.
    """
    kind = coupon.get("kind")
    value = coupon.get("value") or 0
    if kind == PERCENTAGE:
        discount = int(round(subtotal_cents * float(value) / 100))
        max_discount = coupon.get("max_discount_cents")
        if max_discount is not None and discount > int(max_discount):
            discount = int(max_discount)
    elif kind == FIXED:
        discount = min(int(value), subtotal_cents)
    else:
        discount = 0
    return max(discount, 0)

def check_window(coupon: Dict[str, Any], now: datetime) -> Optional[str]:
    valid_from = parse_timestamp(coupon.get("valid_from"))
    if valid_from and valid_from > now:
        return "Ce coupon n'est pas encore actif"
    valid_until = parse_timestamp(coupon.get("valid_until"))
    if valid_until and valid_until < now:
        return "Ce coupon a expiré"
    return None

def check_scope(
    coupon: Dict[str, Any],
    exam_ids: Iterable[str] = (),
    categories: Iterable[str] = (),
) -> Optional[str]:
    """
    Restrictions d'articles: catégories autorisées puis examens exclus.
    Sans contexte d'article, aucune restriction n'est appliquée.
    """
    allowed = set(coupon.get("categories") or [])
    cats = [c for c in categories if c]
    if allowed and any(c not in allowed for c in cats):
        return "Ce coupon n'est pas valable pour cette catégorie d'examen"
    excluded = set(coupon.get("excluded_exam_ids") or [])
    if excluded and any(str(e) in excluded for e in exam_ids):
        return "Ce coupon ne peut pas être utilisé pour cet examen"
    return None

def validate_definition(data: Dict[str, Any]) -> Optional[str]:
    """Contrôle d'un coupon à la création (retourne un message d'erreur ou None)."""
    if not normalize_code(data.get("code")) or not data.get("provider_coupon_id"):
        return "Champs obligatoires manquants (code, provider_coupon_id)"
    kind = data.get("kind")
    if kind not in COUPON_KINDS:
        return "Type de coupon invalide"
    value = data.get("value")
    if value is None:
        return "Champs obligatoires manquants (value)"
    if kind == PERCENTAGE and not (0 <= float(value) <= 100):
        return "Le pourcentage doit être compris entre 0 et 100"
    if kind == FIXED and float(value) < 0:
        return "Le montant fixe ne peut pas être négatif"
    return None
