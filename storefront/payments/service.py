"""
Cas d'usage 'payments': orchestre cart, coupons, stripe_client, repository et réconciliation.
- create_checkout_session: panier -> session Stripe (+ ligne locale "created")
- verify_session: vérification au retour du client (chemin concurrent du webhook)
- check_payment_status / get_session_details: lectures Stripe enrichies de l'état local
- record_payment_succeeded / record_payment_failed: tenue des enregistrements de paiement
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging

from fastapi import HTTPException

from storefront import config
from storefront.coupons import service as coupons_service
from storefront.purchases import repository as purchases_repo
from storefront.purchases import service as purchases_service
from . import cart
from . import metadata as meta
from . import repository
from .stripe_client import StripeClient

logger = logging.getLogger(__name__)

STATUS_SUCCESS = "success"
STATUS_PENDING = "pending"
STATUS_FAILED = "failed"

def _is_guest(user_id: Optional[str]) -> bool:
    return not user_id or user_id == config.GUEST_USER_ID

def _major(cents: Any) -> float:
    return round((cents or 0) / 100, 2)

def _epoch_iso(ts: Any) -> Optional[str]:
    if not ts:
        return None
    return datetime.fromtimestamp(int(ts), tz=timezone.utc).isoformat()

def _check_owner(owner_id: str, current_user: Optional[Dict[str, Any]]) -> None:
    """Un utilisateur authentifié ne peut pas consulter la session d'un autre utilisateur."""
    if not current_user or _is_guest(owner_id):
        return
    if current_user.get("id") != owner_id:
        raise HTTPException(status_code=403, detail="Session appartenant à un autre utilisateur")

# module storefront.payments.service
def create_checkout_session(
    stripe: StripeClient,
    body: Dict[str, Any],
    user: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Crée une session Checkout à partir du panier soumis.
    Étapes:
      1) Normaliser le panier (cart.parse_line_items), 400 si invalide
      2) Revalider le coupon côté serveur: sa remise remplace toute valeur client
      3) Calculer subtotal / remise / total (cart.compute_totals)
      4) Appeler Stripe; en cas d'échec aucune ligne locale n'est créée
      5) Persister la session locale "created" (utilisateur authentifié uniquement)
    Retour: {url, sessionId, subtotalCents, discountCents, totalCents}
    """
    body = body or {}
    line_items = cart.parse_line_items(body.get("items") or [])
    user_id = (user or {}).get("id") or config.GUEST_USER_ID
    subtotal = cart.subtotal_cents(line_items)

    coupon_code = (body.get("couponCode") or "").strip() or None
    requested_discount = body.get("discountCents", body.get("discount")) or 0
    discount = 0
    if coupon_code:
        result = coupons_service.validate_coupon(
            coupon_code,
            subtotal,
            user_id=user_id,
            exam_ids=[li["id"] for li in line_items],
        )
        if not result.valid:
            raise HTTPException(status_code=400, detail=result.message)
        coupon_code = result.code
        discount = result.discount_cents
    elif requested_discount:
        raise HTTPException(status_code=400, detail="Remise non autorisée sans coupon")

    totals = cart.compute_totals(line_items, discount)
    metadata = cart.make_metadata(user_id, line_items, totals, coupon_code, extra=body.get("metadata"))
    customer_email = body.get("customerEmail") or (user or {}).get("email")
    success_url, cancel_url = config.checkout_urls()

    session = stripe.create_checkout_session(
        line_items=cart.to_stripe_line_items(line_items, totals),
        success_url=success_url,
        cancel_url=cancel_url,
        metadata=metadata,
        client_reference_id=user_id,
        customer_email=customer_email,
    )
    session_id = session.get("id")
    if not session_id or not session.get("url"):
        raise HTTPException(status_code=502, detail="Session Stripe non créée")

    if not _is_guest(user_id):
        repository.insert_checkout_session({
            "session_id": session_id,
            "user_id": user_id,
            "line_items": [
                {"id": li["id"], "name": li["name"], "unit_amount": li["unit_amount"], "quantity": li["quantity"]}
                for li in line_items
            ],
            "subtotal_cents": totals["subtotal_cents"],
            "discount_cents": totals["discount_cents"],
            "total_cents": totals["total_cents"],
            "currency": config.STRIPE_CURRENCY,
            "coupon_code": coupon_code,
            "customer_email": customer_email,
            "customer_name": body.get("customerName"),
        })
    logger.info(
        "payments.checkout session_id=%s user_id=%s items=%s total=%s coupon=%s",
        session_id, user_id, len(line_items), totals["total_cents"], coupon_code,
    )
    return {
        "url": session.get("url"),
        "sessionId": session_id,
        "subtotalCents": totals["subtotal_cents"],
        "discountCents": totals["discount_cents"],
        "totalCents": totals["total_cents"],
    }

def map_payment_status(session: Dict[str, Any]) -> str:
    """
    Statut Stripe -> {success, pending, failed}.
    - payment_status paid / no_payment_required: success
    - session expirée: failed
    - session ouverte, ou complète mais non payée (paiement asynchrone): pending
    """
    payment_status = session.get("payment_status")
    status = session.get("status")
    if payment_status in ("paid", "no_payment_required"):
        return STATUS_SUCCESS
    if status == "expired":
        return STATUS_FAILED
    if status == "open" or (status == "complete" and payment_status == "unpaid"):
        return STATUS_PENDING
    return STATUS_FAILED

def _order_view(row: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not row:
        return None
    return {
        "items": row.get("line_items") or [],
        "totalAmount": _major(row.get("total_cents")),
        "discount": _major(row.get("discount_cents")),
        "status": row.get("status"),
        "createdAt": row.get("created_at"),
        "completedAt": row.get("completed_at"),
    }

def _payment_fields(intent: Any) -> Dict[str, Any]:
    """Champs de paiement issus d'un payment intent développé (expand)."""
    if not isinstance(intent, dict):
        return {}
    methods = intent.get("payment_method_types") or []
    return {
        "amount_cents": intent.get("amount"),
        "currency": intent.get("currency"),
        "payment_method": methods[0] if methods else None,
        "created_at": _epoch_iso(intent.get("created")),
    }

def verify_session(
    stripe: StripeClient,
    session_id: str,
    current_user: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Vérifie une session au retour de Stripe et accorde les droits si payée.
    - Chemin rapide: droits déjà présents pour cette session -> succès sans appel Stripe
    - Sinon: lecture Stripe, mapping du statut, réconciliation synchrone si succès,
      puis enregistrement de l'usage du coupon (un échec est journalisé, jamais bloquant)
    - Erreurs Stripe: PaymentProviderError / ProviderNotFoundError (réessayables)
    - Échec de réconciliation: ReconciliationError propagée (le client peut réessayer)
    """
    if not session_id:
        raise HTTPException(status_code=400, detail="Identifiant de session manquant")

    scope_user = None if not current_user else current_user.get("id")
    existing = purchases_repo.list_by_session(session_id, user_id=scope_user)
    if existing:
        owner_id = existing[0].get("user_id")
        _check_owner(owner_id, current_user)
        order = repository.get_checkout_session(owner_id, session_id)
        logger.info("payments.verify cached session_id=%s user_id=%s", session_id, owner_id)
        return {
            "success": True,
            "status": STATUS_SUCCESS,
            "cached": True,
            "sessionId": session_id,
            "paymentStatus": "paid",
            "customer": {
                "email": (order or {}).get("customer_email"),
                "name": (order or {}).get("customer_name"),
            },
            "amount": _major((order or {}).get("total_cents")),
            "discount": _major((order or {}).get("discount_cents")),
            "order": _order_view(order),
            "purchases": existing,
        }

    session = stripe.retrieve_session(session_id, expand=["payment_intent"])
    ctx = meta.extract_session_context(session)
    owner_id = ctx["user_id"]
    _check_owner(owner_id, current_user)
    status = map_payment_status(session)

    purchases: List[Dict[str, Any]] = []
    if status == STATUS_SUCCESS:
        result = purchases_service.reconcile_purchase(
            session_id=session_id,
            user_id=owner_id,
            items=ctx["items"],
            payment_intent_id=ctx["payment_intent_id"],
            payment=_payment_fields(session.get("payment_intent")),
            items_truncated=ctx["items_truncated"],
        )
        purchases = result["entitlements"]
        if ctx["coupon_code"]:
            coupons_service.record_coupon_usage(ctx["coupon_code"], owner_id, session_id)

    order = None if _is_guest(owner_id) else repository.get_checkout_session(owner_id, session_id)
    logger.info("payments.verify session_id=%s user_id=%s status=%s", session_id, owner_id, status)
    return {
        "success": status == STATUS_SUCCESS,
        "status": status,
        "cached": False,
        "sessionId": session.get("id") or session_id,
        "paymentStatus": session.get("payment_status"),
        "customer": ctx["customer"],
        "amount": _major(session.get("amount_total")),
        "discount": _major(ctx["discount_cents"]),
        "order": _order_view(order),
        "purchases": purchases,
    }

def check_payment_status(stripe: StripeClient, payment_intent_id: str) -> Dict[str, Any]:
    """Statut Stripe d'un payment intent, complété par l'enregistrement local s'il existe."""
    if not payment_intent_id:
        raise HTTPException(status_code=400, detail="Identifiant de paiement manquant")
    intent = stripe.retrieve_payment_intent(payment_intent_id)
    user_id = meta.user_id_from({"metadata": intent.get("metadata")})
    record = None if _is_guest(user_id) else repository.get_payment(payment_intent_id, user_id=user_id)
    return {
        "id": intent.get("id"),
        "status": intent.get("status"),
        "amount": _major(intent.get("amount")),
        "currency": intent.get("currency"),
        "created": _epoch_iso(intent.get("created")),
        "dbRecord": {
            "status": record.get("status"),
            "createdAt": record.get("created_at"),
            "succeededAt": record.get("succeeded_at"),
            "failedAt": record.get("failed_at"),
        } if record else None,
    }

def _format_line_items(session: Dict[str, Any]) -> List[Dict[str, Any]]:
    formatted = []
    for item in ((session.get("line_items") or {}).get("data") or []):
        price = item.get("price") or {}
        product = price.get("product") if isinstance(price.get("product"), dict) else {}
        formatted.append({
            "id": product.get("id") or price.get("id"),
            "name": product.get("name") or item.get("description") or "Produit inconnu",
            "description": product.get("description") or "",
            "amount": _major(item.get("amount_total")),
            "quantity": item.get("quantity"),
            "currency": item.get("currency"),
        })
    return formatted

def get_session_details(
    stripe: StripeClient,
    session_id: str,
    current_user: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Détail enrichi d'une session: articles, client, payment intent
    et miroir local (dbRecord, avec purchasedExams si payée).
    """
    if not session_id:
        raise HTTPException(status_code=400, detail="Identifiant de session manquant")
    session = stripe.retrieve_session(
        session_id,
        expand=["line_items", "line_items.data.price.product", "payment_intent", "customer"],
    )
    owner_id = meta.user_id_from(session)
    _check_owner(owner_id, current_user)

    db_record = None
    if not _is_guest(owner_id):
        row = repository.get_checkout_session(owner_id, session_id)
        db_record = dict(row) if row else None
        if session.get("payment_status") == "paid":
            purchased = purchases_repo.list_by_session(session_id, user_id=owner_id)
            if purchased:
                db_record = db_record or {}
                db_record["purchasedExams"] = purchased

    customer = session.get("customer") if isinstance(session.get("customer"), dict) else {}
    details = session.get("customer_details") or {}
    intent = session.get("payment_intent")
    return {
        "id": session.get("id"),
        "paymentStatus": session.get("payment_status"),
        "paymentIntentId": meta.id_of(intent),
        "amountTotal": _major(session.get("amount_total")),
        "currency": session.get("currency"),
        "customer": {
            "id": customer.get("id"),
            "email": details.get("email") or customer.get("email"),
            "name": details.get("name") or customer.get("name"),
        },
        "lineItems": _format_line_items(session),
        "created": _epoch_iso(session.get("created")),
        "status": session.get("status"),
        "url": session.get("url"),
        "dbRecord": db_record,
    }

def record_payment_succeeded(intent: Dict[str, Any]) -> bool:
    """Paiement réussi (statut terminal, merge des colonnes); invité: journalisé uniquement."""
    user_id = meta.user_id_from({"metadata": intent.get("metadata")})
    if _is_guest(user_id):
        logger.info("payments.intent guest payment succeeded payment_intent_id=%s", intent.get("id"))
        return False
    changed = repository.mark_payment_succeeded(intent.get("id"), {"user_id": user_id, **_payment_fields(intent)})
    logger.info(
        "payments.intent succeeded payment_intent_id=%s user_id=%s transition=%s", intent.get("id"), user_id, changed
    )
    return True

def record_payment_failed(intent: Dict[str, Any]) -> bool:
    """Paiement échoué avec le message d'erreur Stripe lisible; un paiement déjà réussi n'est jamais rétrogradé."""
    user_id = meta.user_id_from({"metadata": intent.get("metadata")})
    if _is_guest(user_id):
        logger.info("payments.intent guest payment failed payment_intent_id=%s", intent.get("id"))
        return False
    error = (intent.get("last_payment_error") or {}).get("message") or "Paiement refusé"
    written = repository.mark_payment_failed(
        intent.get("id"), {"user_id": user_id, "error": error, **_payment_fields(intent)}
    )
    if written:
        logger.info("payments.intent failed payment_intent_id=%s user_id=%s", intent.get("id"), user_id)
    else:
        logger.warning("payments.intent failure ignored, already succeeded payment_intent_id=%s user_id=%s", intent.get("id"), user_id)
    return True

def stripe_config_report(with_key_suffix: bool = False) -> Dict[str, Any]:
    """État de la configuration Stripe sans jamais exposer les valeurs (suffixe optionnel pour l'admin)."""
    report: Dict[str, Any] = {
        "stripeSecretConfigured": bool(config.STRIPE_SECRET_KEY),
        "webhookSecretConfigured": bool(config.STRIPE_WEBHOOK_SECRET),
        "appUrl": config.APP_URL or None,
    }
    if with_key_suffix:
        report["stripeKeyLastFour"] = f"...{config.STRIPE_SECRET_KEY[-4:]}" if config.STRIPE_SECRET_KEY else None
        report["webhookKeyLastFour"] = f"...{config.STRIPE_WEBHOOK_SECRET[-4:]}" if config.STRIPE_WEBHOOK_SECRET else None
    return report
