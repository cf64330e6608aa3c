"""
Désérialisation des métadonnées Stripe (userId, itemsJson, coupon).
"""
import json
import logging
from typing import Any, Dict, List, Optional

from storefront import config

logger = logging.getLogger(__name__)

# module storefront.payments.metadata
def _parse_items(raw: Optional[str]) -> Optional[List[Dict[str, Any]]]:
    """
    itemsJson -> [{id, name, quantity}]; None si absent ou illisible
    (l'appelant peut alors se rabattre sur la session locale).
    """
    if not raw:
        return None
    try:
        items = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("payments.metadata itemsJson unreadable")
        return None
    return items if isinstance(items, list) else None

def id_of(value: Any) -> Optional[str]:
    # Champ Stripe "expandable": id (str) ou objet complet
    if isinstance(value, dict):
        return value.get("id")
    return value or None

def user_id_from(obj: Dict[str, Any]) -> str:
    """client_reference_id prioritaire, puis metadata.userId, sinon invité."""
    meta = (obj or {}).get("metadata") or {}
    return (obj or {}).get("client_reference_id") or meta.get("userId") or config.GUEST_USER_ID

def extract_session_context(session: Dict[str, Any]) -> Dict[str, Any]:
    """
    Extrait d'une session Checkout (webhook ou lecture directe):
    user_id, items, items_truncated, coupon_code, discount_cents, payment_intent_id, customer.
    """
    session = session or {}
    meta = session.get("metadata") or {}
    details = session.get("customer_details") or {}
    coupon_code = meta.get("couponCode") if meta.get("couponApplied") == "true" else None
    try:
        discount_cents = int(meta.get("discountCents") or 0)
    except ValueError:
        discount_cents = 0
    return {
        "session_id": session.get("id"),
        "user_id": user_id_from(session),
        "items": _parse_items(meta.get("itemsJson")),
        "items_truncated": meta.get("itemsTruncated") == "true",
        "coupon_code": coupon_code or None,
        "discount_cents": discount_cents,
        "payment_intent_id": id_of(session.get("payment_intent")),
        "customer": {"email": details.get("email"), "name": details.get("name")},
    }

def extract_event(event: Dict[str, Any]) -> tuple:
    """(type, data.object) d'un événement Stripe vérifié."""
    event = event or {}
    return event.get("type") or "", ((event.get("data") or {}).get("object") or {})
