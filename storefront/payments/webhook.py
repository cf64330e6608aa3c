"""
Webhook Stripe: authentification puis aiguillage des événements.

- construct_event (StripeClient) vérifie la signature sur le corps brut; une SignatureError
  arrête tout traitement avant la moindre écriture.
- Les handlers sont idempotents (droits clés par session, statut monotone, upsert merge):
  une re-livraison Stripe ou la course avec verify_session ne crée aucun doublon.
- Un échec de traitement est journalisé puis acquitté: seul un défaut de signature
  ou de payload produit une réponse d'erreur.
"""
from typing import Any, Callable, Dict
import logging

from storefront import config
from storefront.coupons import service as coupons_service
from storefront.purchases import service as purchases_service
from . import metadata as meta
from . import repository
from . import service
from .stripe_client import StripeClient

logger = logging.getLogger(__name__)

# module storefront.payments.webhook
def on_checkout_completed(session: Dict[str, Any]) -> Dict[str, Any]:
    """checkout.session.completed / async_payment_succeeded: réconciliation si payée."""
    ctx = meta.extract_session_context(session)
    if service.map_payment_status(session) != service.STATUS_SUCCESS:
        logger.info(
            "payments.webhook session not paid yet session_id=%s user_id=%s payment_status=%s",
            ctx["session_id"], ctx["user_id"], session.get("payment_status"),
        )
        return {"status": "pending"}
    result = purchases_service.reconcile_purchase(
        session_id=ctx["session_id"],
        user_id=ctx["user_id"],
        items=ctx["items"],
        payment_intent_id=ctx["payment_intent_id"],
        payment={"amount_cents": session.get("amount_total"), "currency": session.get("currency")},
        items_truncated=ctx["items_truncated"],
    )
    if ctx["coupon_code"] and result["status"] != "skipped":
        coupons_service.record_coupon_usage(ctx["coupon_code"], ctx["user_id"], ctx["session_id"])
    return {"status": result["status"], "created": result["created"]}

def on_checkout_expired(session: Dict[str, Any]) -> Dict[str, Any]:
    user_id = meta.user_id_from(session)
    if user_id == config.GUEST_USER_ID:
        return {"status": "skipped"}
    changed = repository.mark_session_expired(user_id, session.get("id"))
    logger.info("payments.webhook session expired session_id=%s user_id=%s changed=%s", session.get("id"), user_id, changed)
    return {"status": "expired" if changed else "unchanged"}

def on_payment_succeeded(intent: Dict[str, Any]) -> Dict[str, Any]:
    return {"status": "recorded" if service.record_payment_succeeded(intent) else "skipped"}

def on_payment_failed(intent: Dict[str, Any]) -> Dict[str, Any]:
    return {"status": "recorded" if service.record_payment_failed(intent) else "skipped"}

EVENT_HANDLERS: Dict[str, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
    "checkout.session.completed": on_checkout_completed,
    "checkout.session.async_payment_succeeded": on_checkout_completed,
    "checkout.session.expired": on_checkout_expired,
    "payment_intent.succeeded": on_payment_succeeded,
    "payment_intent.payment_failed": on_payment_failed,
}

def dispatch_event(event: Dict[str, Any]) -> Dict[str, Any]:
    """
    Aiguille un événement déjà vérifié vers son handler.
    - Type inconnu: journalisé, acquitté ({"status": "ignored"})
    - Exception du handler: journalisée avec l'identifiant d'événement, acquittée ({"status": "error"})
    """
    event_type, obj = meta.extract_event(event)
    handler = EVENT_HANDLERS.get(event_type)
    if handler is None:
        logger.info("payments.webhook unhandled event type=%s id=%s", event_type, (event or {}).get("id"))
        return {"type": event_type, "status": "ignored"}
    try:
        outcome = handler(obj)
    except Exception:
        logger.exception(
            "payments.webhook handler failed type=%s id=%s object_id=%s",
            event_type, (event or {}).get("id"), obj.get("id"),
        )
        return {"type": event_type, "status": "error"}
    logger.info("payments.webhook type=%s id=%s outcome=%s", event_type, (event or {}).get("id"), outcome)
    return {"type": event_type, **outcome}

def handle_webhook(stripe: StripeClient, payload: bytes, signature: str | None) -> Dict[str, Any]:
    """Vérifie la signature (SignatureError propagée) puis aiguille l'événement."""
    event = stripe.construct_event(payload, signature)
    return dispatch_event(event)
