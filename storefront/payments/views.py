"""
Endpoints paiements.

Chemins historiques à la racine (/createCheckoutSession, /verifySession, /checkPaymentStatus,
/getSession, /stripeWebhook, /checkConfig) et alias REST sous /api/v1/payments.
Une seule implémentation: chaque handler est enregistré sur les deux routers.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from storefront.utils.security import optional_user, require_admin
from storefront.utils.rate_limit import optional_rate_limit
from . import service
from . import webhook
from .errors import PaymentProviderError, ProviderNotFoundError, ReconciliationError, SignatureError
from .stripe_client import StripeClient, get_stripe_client

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Payments"])
api_router = APIRouter(prefix="/api/v1/payments", tags=["Payments API"])
admin_router = APIRouter(prefix="/api/v1/admin", tags=["Admin"])

# module storefront.payments.views
@router.post("/createCheckoutSession", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
@api_router.post("/checkout", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
async def create_checkout_session(
    request: Request,
    user: Optional[Dict[str, Any]] = Depends(optional_user),
    stripe: StripeClient = Depends(get_stripe_client),
):
    """
    Crée une session Checkout Stripe (utilisateur authentifié ou invité).
    - Entrée JSON: {items: [{id, name, description?, amount, quantity}], customerEmail, customerName,
      couponCode?, discountCents?, metadata}
    - Sécurité: optional_user + rate limit (10 req / 60s)
    - Retour 200 {url, sessionId, subtotalCents, discountCents, totalCents}
    - Erreurs: 400 panier/coupon invalide, 502 échec Stripe (aucune ligne locale créée)
    """
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="JSON invalide")
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="JSON invalide")
    return await run_in_threadpool(service.create_checkout_session, stripe, body, user)


def _verify_error(status_code: int, error: str, details: Optional[str] = None) -> JSONResponse:
    content: Dict[str, Any] = {"success": False, "error": error}
    if details:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)


@router.get("/verifySession")
@api_router.get("/verify")
def verify_session(
    sessionId: Optional[str] = None,
    session_id: Optional[str] = None,
    user: Optional[Dict[str, Any]] = Depends(optional_user),
    stripe: StripeClient = Depends(get_stripe_client),
):
    """
    Vérifie le paiement au retour de Stripe (sessionId ou session_id en query).
    - 200: {success, status, sessionId, paymentStatus, customer, amount, discount, order, purchases}
    - Erreurs au format {success: false, error}: 400 id manquant, 403 session d'un autre
      utilisateur, 404 session inconnue, 502 Stripe indisponible, 500 réconciliation échouée
    """
    sid = sessionId or session_id
    try:
        return service.verify_session(stripe, sid, current_user=user)
    except HTTPException as e:
        return _verify_error(e.status_code, str(e.detail))
    except ProviderNotFoundError as e:
        return _verify_error(404, "Session introuvable", e.details)
    except PaymentProviderError as e:
        return _verify_error(502, e.message, e.details)
    except ReconciliationError as e:
        logger.error("payments.verify reconciliation failed session_id=%s", sid)
        return _verify_error(500, e.message, e.details)


@router.get("/checkPaymentStatus")
@api_router.get("/status")
def check_payment_status(
    paymentIntentId: Optional[str] = None,
    payment_intent_id: Optional[str] = None,
    stripe: StripeClient = Depends(get_stripe_client),
):
    """Statut d'un payment intent: {id, status, amount, currency, created, dbRecord}."""
    return service.check_payment_status(stripe, paymentIntentId or payment_intent_id)


@router.get("/getSession")
@api_router.get("/session")
def get_session(
    sessionId: Optional[str] = None,
    session_id: Optional[str] = None,
    user: Optional[Dict[str, Any]] = Depends(optional_user),
    stripe: StripeClient = Depends(get_stripe_client),
):
    """Détail enrichi d'une session (articles, client, miroir local)."""
    return service.get_session_details(stripe, sessionId or session_id, current_user=user)


@router.post("/stripeWebhook")
@api_router.post("/webhook")
async def stripe_webhook(request: Request, stripe: StripeClient = Depends(get_stripe_client)):
    """
    Webhook Stripe (corps brut requis pour la signature).
    - 400 {error}: signature absente/invalide ou payload illisible, aucun traitement
    - 200 {received: true}: événement traité ou échec journalisé (acquitté)
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature")
    try:
        outcome = await run_in_threadpool(webhook.handle_webhook, stripe, payload, signature)
    except SignatureError as e:
        logger.warning("payments.webhook rejected: %s", e.message)
        return JSONResponse(status_code=400, content={"error": e.message})
    return {"received": True, "type": outcome.get("type"), "status": outcome.get("status")}


@router.get("/checkConfig")
def check_config():
    """Indique quelles clés sont configurées (jamais leurs valeurs)."""
    return {
        "status": "success",
        "message": "Vérification de la configuration terminée",
        "config": service.stripe_config_report(),
    }


@admin_router.get("/stripe-config")
def stripe_config(admin: Dict[str, Any] = Depends(require_admin)):
    """Configuration Stripe pour l'admin: indicateurs et quatre derniers caractères des clés."""
    return service.stripe_config_report(with_key_suffix=True)
