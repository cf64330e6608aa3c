"""
Erreurs de la feature 'payments'.
- PaymentProviderError: échec réseau/API Stripe (réessayable) -> 502
- ProviderNotFoundError: session / payment intent inconnu côté Stripe -> 404
- SignatureError: signature webhook invalide -> 400, aucun traitement
- ReconciliationError: échec d'écriture des droits d'accès (aucun droit partiel)
"""


class PaymentError(Exception):
    """Base des erreurs de paiement; `message` est destiné à l'utilisateur."""

    def __init__(self, message: str, *, details: str | None = None):
        super().__init__(message)
        self.message = message
        self.details = details


class PaymentProviderError(PaymentError):
    pass


class ProviderNotFoundError(PaymentProviderError):
    pass


class SignatureError(PaymentError):
    pass


class ReconciliationError(PaymentError):
    pass
