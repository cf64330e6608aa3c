"""
Module 'payments' (feature-first): point d'entrée public.
Réunit logique panier, metadata Stripe, client Stripe et erreurs.
Les cas d'usage (service, webhook) s'importent explicitement depuis leurs modules.
"""

from .cart import parse_line_items, compute_totals, to_stripe_line_items, make_metadata
from .metadata import extract_session_context, extract_event, user_id_from
from .stripe_client import StripeClient, get_stripe_client
from .errors import (
    PaymentError,
    PaymentProviderError,
    ProviderNotFoundError,
    SignatureError,
    ReconciliationError,
)

__all__ = [
    # cart
    "parse_line_items",
    "compute_totals",
    "to_stripe_line_items",
    "make_metadata",
    # metadata
    "extract_session_context",
    "extract_event",
    "user_id_from",
    # stripe
    "StripeClient",
    "get_stripe_client",
    # errors
    "PaymentError",
    "PaymentProviderError",
    "ProviderNotFoundError",
    "SignatureError",
    "ReconciliationError",
]
