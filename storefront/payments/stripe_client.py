"""
Adaptateur Stripe: centralise les appels et la configuration Stripe.

Le client est construit une seule fois au démarrage (lifespan) à partir de la
configuration, puis partagé en lecture seule via app.state.stripe. La clé API est
passée à chaque appel: aucun état global (stripe.api_key) n'est modifié.
"""
import logging
from typing import Any, Dict, Iterable, Optional

import stripe
from fastapi import Request

from storefront import config
from .errors import PaymentProviderError, ProviderNotFoundError, SignatureError

logger = logging.getLogger(__name__)

# module storefront.payments.stripe_client
def _plain(obj: Any) -> Any:
    """Convertit récursivement un StripeObject en dict/list Python (JSON-sérialisable)."""
    if not isinstance(obj, (dict, list)) and callable(getattr(obj, "to_dict", None)):
        obj = obj.to_dict()
    if isinstance(obj, dict):
        return {k: _plain(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_plain(v) for v in obj]
    return obj

def _provider_error(action: str, e: Exception) -> PaymentProviderError:
    msg = getattr(e, "user_message", None) or str(e) or "Erreur Stripe"
    if isinstance(e, stripe.InvalidRequestError) and getattr(e, "code", None) == "resource_missing":
        return ProviderNotFoundError(f"{action}: ressource introuvable", details=msg)
    return PaymentProviderError(f"{action}: échec de l'appel Stripe", details=msg)


class StripeClient:
    """
    Client Stripe explicite (créé au démarrage, jamais muté ensuite).
    - create_checkout_session: crée une session Checkout (mode payment)
    - retrieve_session / retrieve_payment_intent: lecture de l'état de référence
    - construct_event: vérifie la signature d'un webhook sur le corps brut
    Les erreurs SDK sont traduites en PaymentProviderError / ProviderNotFoundError / SignatureError.
    """

    def __init__(self, api_key: str, webhook_secret: str, api_version: Optional[str] = None):
        self._api_key = api_key
        self._webhook_secret = webhook_secret
        self._api_version = api_version or None

    @classmethod
    def from_config(cls) -> "StripeClient":
        return cls(
            api_key=config.STRIPE_SECRET_KEY,
            webhook_secret=config.STRIPE_WEBHOOK_SECRET,
            api_version=config.STRIPE_API_VERSION,
        )

    @property
    def configured(self) -> bool:
        return bool(self._api_key and self._webhook_secret)

    def _opts(self) -> Dict[str, Any]:
        opts: Dict[str, Any] = {"api_key": self._api_key}
        if self._api_version:
            opts["stripe_version"] = self._api_version
        return opts

    def create_checkout_session(
        self,
        *,
        line_items: list,
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
        client_reference_id: str,
        customer_email: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Crée une session Stripe Checkout.
        Retour: dict session (ex: {"id": "cs_test_...", "url": "https://..."})
        """
        params: Dict[str, Any] = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": line_items,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "client_reference_id": client_reference_id,
            "metadata": metadata,
            "payment_intent_data": {"metadata": metadata},
        }
        if customer_email:
            params["customer_email"] = customer_email
        try:
            session = stripe.checkout.Session.create(**params, **self._opts())
        except stripe.StripeError as e:
            raise _provider_error("Création de session", e) from e
        return _plain(session)

    def retrieve_session(self, session_id: str, expand: Iterable[str] = ()) -> Dict[str, Any]:
        """Récupère une session Checkout (payment_status, metadata, montants...)."""
        try:
            session = stripe.checkout.Session.retrieve(session_id, expand=list(expand), **self._opts())
        except stripe.StripeError as e:
            raise _provider_error("Lecture de session", e) from e
        return _plain(session)

    def retrieve_payment_intent(self, payment_intent_id: str) -> Dict[str, Any]:
        try:
            intent = stripe.PaymentIntent.retrieve(payment_intent_id, **self._opts())
        except stripe.StripeError as e:
            raise _provider_error("Lecture du paiement", e) from e
        return _plain(intent)

    def construct_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Valide la signature (Stripe-Signature) sur le corps brut puis parse l'événement.
        - signature absente ou invalide -> SignatureError
        - payload non JSON -> SignatureError (payload malformé)
        """
        if not signature:
            raise SignatureError("Signature Stripe manquante")
        try:
            event = stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
        except stripe.SignatureVerificationError as e:
            raise SignatureError("Signature Stripe invalide", details=str(e)) from e
        except ValueError as e:
            raise SignatureError("Payload webhook invalide", details=str(e)) from e
        return _plain(event)


def get_stripe_client(request: Request) -> StripeClient:
    """Dépendance FastAPI: retourne le client construit par le lifespan."""
    client = getattr(request.app.state, "stripe", None)
    if client is None:
        client = StripeClient.from_config()
        request.app.state.stripe = client
    return client
