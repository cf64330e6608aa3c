"""
Réconciliation des achats: convertit un paiement confirmé en droits d'accès, une seule fois.

Appelée par les deux chemins concurrents (webhook Stripe et vérification client):
- garde invité: aucun droit persisté pour "guest"
- droits clés par (user_id, exam_id, session_id), écrits en une requête atomique
  de type "créer si absent": une re-livraison ne crée aucun doublon
- puis tenue des statuts: session "completed" (monotone), paiement "succeeded" (merge)
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
import logging

from storefront import config
from storefront.payments import repository as payments_repo
from storefront.payments.errors import ReconciliationError
from storefront.coupons.rules import parse_timestamp
from . import repository

logger = logging.getLogger(__name__)

STATUS_ACTIVE = "active"

def _is_guest(user_id: Optional[str]) -> bool:
    return not user_id or user_id == config.GUEST_USER_ID

def _items_from_local_session(user_id: str, session_id: str) -> List[Dict[str, Any]]:
    row = payments_repo.get_checkout_session(user_id, session_id) or {}
    return [
        {"id": li.get("id"), "name": li.get("name"), "quantity": li.get("quantity", 1)}
        for li in (row.get("line_items") or [])
    ]

def build_entitlements(
    user_id: str,
    session_id: str,
    items: List[Dict[str, Any]],
    payment_intent_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    """
    Construit une ligne purchased_exams par examen distinct.
    - Entrée sans identifiant: ignorée (journalisée)
    - Même examen présent plusieurs fois: quantités cumulées sur une seule ligne
    - expires_at = purchased_at + ENTITLEMENT_VALIDITY_DAYS
    """
    now = now or datetime.now(timezone.utc)
    expires = now + timedelta(days=config.ENTITLEMENT_VALIDITY_DAYS)
    rows: Dict[str, Dict[str, Any]] = {}
    for item in items or []:
        exam_id = str((item or {}).get("id") or "").strip()
        if not exam_id:
            logger.warning("purchases.reconcile item without id skipped session_id=%s user_id=%s", session_id, user_id)
            continue
        try:
            quantity = max(int(item.get("quantity") or 1), 1)
        except (TypeError, ValueError):
            quantity = 1
        if exam_id in rows:
            rows[exam_id]["quantity"] += quantity
            continue
        rows[exam_id] = {
            "user_id": user_id,
            "exam_id": exam_id,
            "exam_name": item.get("name") or "",
            "quantity": quantity,
            "session_id": session_id,
            "payment_intent_id": payment_intent_id,
            "status": STATUS_ACTIVE,
            "purchased_at": now.isoformat(),
            "expires_at": expires.isoformat(),
        }
    return list(rows.values())

def reconcile_purchase(
    *,
    session_id: str,
    user_id: Optional[str],
    items: Optional[List[Dict[str, Any]]],
    payment_intent_id: Optional[str] = None,
    payment: Optional[Dict[str, Any]] = None,
    items_truncated: bool = False,
) -> Dict[str, Any]:
    """
    Accorde les droits d'une session payée, au plus une fois.
    - items None: relit les articles de la session locale (metadata absente ou tronquée)
    - payment: champs complémentaires pour l'enregistrement de paiement (amount_cents, currency)
    - items_truncated: itemsJson absent car trop volumineux; sans session locale, rien n'est accordable
    Retour: {"status": "skipped"|"granted"|"already_granted", "created": n, "entitlements": [...]}
    Lève ReconciliationError (après journalisation) si une écriture échoue; aucun droit
    partiel n'est laissé puisque l'insertion des droits est une requête unique.
    """
    if _is_guest(user_id):
        logger.info("purchases.reconcile guest checkout completed session_id=%s", session_id)
        return {"status": "skipped", "created": 0, "entitlements": []}

    try:
        if items is None:
            items = _items_from_local_session(user_id, session_id)
        rows = build_entitlements(user_id, session_id, items, payment_intent_id)
        if not rows:
            if items_truncated:
                logger.error(
                    "purchases.reconcile items metadata truncated and no local session, cannot grant session_id=%s user_id=%s",
                    session_id, user_id,
                )
                raise ReconciliationError(
                    "Articles de la session indisponibles (panier tronqué dans les métadonnées)",
                    details="itemsTruncated",
                )
            logger.error("purchases.reconcile nothing to grant session_id=%s user_id=%s", session_id, user_id)
            raise ReconciliationError("Aucun article à accorder pour cette session")

        existing = repository.list_by_session(session_id, user_id=user_id)
        known = {r.get("exam_id") for r in existing}
        missing = [r for r in rows if r["exam_id"] not in known]
        created = repository.insert_entitlements(missing) if missing else []

        transitioned = payments_repo.mark_session_completed(
            user_id,
            session_id,
            {"payment_intent_id": payment_intent_id, "payment_status": "paid"},
        )
        if payment_intent_id:
            payments_repo.mark_payment_succeeded(payment_intent_id, {"user_id": user_id, **(payment or {})})
    except ReconciliationError:
        raise
    except Exception as e:
        logger.exception("purchases.reconcile failed session_id=%s user_id=%s", session_id, user_id)
        raise ReconciliationError("Échec de l'enregistrement de l'achat", details=str(e)) from e

    logger.info(
        "purchases.reconcile session_id=%s user_id=%s created=%s existing=%s session_transition=%s",
        session_id, user_id, len(created), len(existing), transitioned,
    )
    entitlements = existing + created
    return {
        "status": "granted" if created else "already_granted",
        "created": len(created),
        "entitlements": entitlements,
    }

def list_purchases(user_id: str) -> List[Dict[str, Any]]:
    return repository.list_user_purchases(user_id)

def has_access(user_id: str, exam_id: str, now: Optional[datetime] = None) -> bool:
    """Accès si au moins un droit actif et non expiré pour cet examen."""
    now = now or datetime.now(timezone.utc)
    for row in repository.list_user_exam_purchases(user_id, exam_id):
        expires_at = parse_timestamp(row.get("expires_at"))
        if row.get("status") == STATUS_ACTIVE and expires_at and expires_at > now:
            return True
    return False
