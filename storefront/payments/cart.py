"""
Logique panier pure (pas de Stripe, pas de DB).
Montants en centimes; un panier soumis au checkout n'est plus modifié.
"""
import json
import logging
from typing import Any, Dict, List, Optional

from fastapi import HTTPException

from storefront import config

logger = logging.getLogger(__name__)

# Limites Stripe sur les metadata: 50 clés, valeurs de 500 caractères
METADATA_MAX_KEYS = 50
METADATA_VALUE_MAX = 500
RESERVED_METADATA_KEYS = {
    "userId", "itemsJson", "itemsTruncated", "couponCode", "couponApplied", "discountCents", "subtotalCents",
}

# module storefront.payments.cart
def _to_int(value: Any) -> Optional[int]:
    """Entier strict: booléens et nombres non entiers (1999.99, "1.7") refusés, jamais tronqués."""
    if isinstance(value, bool):
        return None
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None

def parse_line_items(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Normalise un panier brut [{id, name, description?, amount, quantity}, ...].
    - amount (alias unitPriceCents): prix unitaire en centimes, >= 0
    - quantity: entier >= 1
    - Soulève HTTPException(400) si le panier est vide ou si une ligne est invalide.
    """
    if not items:
        raise HTTPException(status_code=400, detail="Aucun article fourni")
    parsed: List[Dict[str, Any]] = []
    for it in items:
        if not isinstance(it, dict):
            raise HTTPException(status_code=400, detail="Article invalide")
        item_id = str(it.get("id") or it.get("itemId") or "").strip()
        unit_amount = _to_int(it.get("amount", it.get("unitPriceCents")))
        quantity = _to_int(it.get("quantity", 1))
        if not item_id:
            raise HTTPException(status_code=400, detail="Identifiant d'article manquant")
        if unit_amount is None or unit_amount < 0:
            raise HTTPException(status_code=400, detail=f"Prix invalide pour l'article {item_id}")
        if quantity is None or quantity < 1:
            raise HTTPException(status_code=400, detail=f"Quantité invalide pour l'article {item_id}")
        parsed.append({
            "id": item_id,
            "name": str(it.get("name") or it.get("title") or "Examen"),
            "description": str(it.get("description") or ""),
            "unit_amount": unit_amount,
            "quantity": quantity,
        })
    return parsed

def subtotal_cents(line_items: List[Dict[str, Any]]) -> int:
    return sum(li["unit_amount"] * li["quantity"] for li in line_items)

def compute_totals(line_items: List[Dict[str, Any]], discount_cents: int = 0) -> Dict[str, int]:
    """
    Agrège le panier: subtotal, remise, total = subtotal - remise.
    Un total négatif est ramené à 0 et journalisé comme anomalie.
    """
    subtotal = subtotal_cents(line_items)
    discount = max(int(discount_cents or 0), 0)
    total = subtotal - discount
    if total < 0:
        logger.warning("payments.cart negative total clamped subtotal=%s discount=%s", subtotal, discount)
        total = 0
    return {"subtotal_cents": subtotal, "discount_cents": discount, "total_cents": total}

def to_stripe_line_items(
    line_items: List[Dict[str, Any]],
    totals: Dict[str, int],
    currency: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """
    Construit les line_items Stripe (price_data, unit_amount en centimes).
    Stripe refuse les montants négatifs: avec une remise, le panier est présenté en une
    seule ligne au montant total afin que le total affiché par Stripe corresponde.
    """
    currency = currency or config.STRIPE_CURRENCY
    if totals["discount_cents"] <= 0:
        return [
            {
                "quantity": li["quantity"],
                "price_data": {
                    "currency": currency,
                    "unit_amount": li["unit_amount"],
                    "product_data": {
                        "name": li["name"],
                        "description": li["description"] or "Préparation à l'examen",
                        "metadata": {"item_id": li["id"]},
                    },
                },
            }
            for li in line_items
        ]
    names = ", ".join(li["name"] for li in line_items)
    description = (
        f"{names} (remise de {totals['discount_cents'] / 100:.2f} incluse)"
    )[:METADATA_VALUE_MAX]
    return [{
        "quantity": 1,
        "price_data": {
            "currency": currency,
            "unit_amount": totals["total_cents"],
            "product_data": {"name": "Commande", "description": description},
        },
    }]

def items_json(line_items: List[Dict[str, Any]]) -> Optional[str]:
    """
    Sérialise [{id, name, quantity}] dans la limite de 500 caractères.
    Supprime d'abord les noms; retourne None si le panier reste trop volumineux
    (la réconciliation relit alors la session locale).
    """
    full = json.dumps([{"id": li["id"], "name": li["name"], "quantity": li["quantity"]} for li in line_items])
    if len(full) <= METADATA_VALUE_MAX:
        return full
    compact = json.dumps([{"id": li["id"], "quantity": li["quantity"]} for li in line_items])
    if len(compact) <= METADATA_VALUE_MAX:
        return compact
    return None

def make_metadata(
    user_id: str,
    line_items: List[Dict[str, Any]],
    totals: Dict[str, int],
    coupon_code: Optional[str] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> Dict[str, str]:
    """
    Métadonnées Stripe associées à la session et au payment intent.
    - userId: identifiant propriétaire ou sentinelle "guest"
    - itemsJson: articles achetés (source de la réconciliation)
    - couponCode / couponApplied: usage à enregistrer après paiement
    - extra: métadonnées client, converties en chaînes et tronquées
    """
    meta: Dict[str, str] = {}
    for key, value in (extra or {}).items():
        if value is None or key in RESERVED_METADATA_KEYS or len(meta) >= METADATA_MAX_KEYS - 8:
            continue
        meta[str(key)[:40]] = str(value)[:METADATA_VALUE_MAX]

    meta["userId"] = user_id or config.GUEST_USER_ID
    meta["subtotalCents"] = str(totals["subtotal_cents"])
    meta["discountCents"] = str(totals["discount_cents"])
    meta["couponApplied"] = "true" if coupon_code else "false"
    if coupon_code:
        meta["couponCode"] = coupon_code
    serialized = items_json(line_items)
    if serialized is not None:
        meta["itemsJson"] = serialized
    else:
        meta["itemsTruncated"] = "true"
    return meta
