"""
Accès aux données pour la feature 'payments' (tables checkout_sessions, payments).
Écritures via le client service-role; sémantique merge (upsert) et statut monotone.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional
import logging

import storefront.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

SESSION_CREATED = "created"
SESSION_COMPLETED = "completed"
SESSION_EXPIRED = "expired"
PAYMENT_SUCCEEDED = "succeeded"
PAYMENT_FAILED = "failed"

def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()

def _first(res) -> Optional[Dict[str, Any]]:
    rows = res.data or []
    return rows[0] if isinstance(rows, list) and rows else None

# module storefront.payments.repository
def insert_checkout_session(row: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Persiste la session locale (statut "created").
    Ne remplace jamais une ligne existante (une session déjà complétée reste complétée).
    """
    payload = {"status": SESSION_CREATED, "created_at": _now_iso(), **row}
    res = (
        supabase_client.get_service_supabase()
        .table("checkout_sessions")
        .upsert(payload, on_conflict="session_id", ignore_duplicates=True)
        .execute()
    )
    return _first(res)

def get_checkout_session(user_id: str, session_id: str) -> Optional[Dict[str, Any]]:
    res = (
        supabase_client.get_service_supabase()
        .table("checkout_sessions")
        .select("*")
        .eq("user_id", user_id)
        .eq("session_id", session_id)
        .limit(1)
        .execute()
    )
    return _first(res)

def mark_session_completed(user_id: str, session_id: str, fields: Dict[str, Any]) -> bool:
    """
    Transition created -> completed, au plus une fois.
    - Mise à jour conditionnelle (status != completed): une re-observation est un no-op.
    - Ligne absente (webhook arrivé avant la persistance locale): création directe en "completed".
    Retourne True si cet appel a effectué la transition.
    """
    client = supabase_client.get_service_supabase()
    update = {**fields, "status": SESSION_COMPLETED, "completed_at": _now_iso()}
    res = (
        client.table("checkout_sessions")
        .update(update)
        .eq("session_id", session_id)
        .eq("user_id", user_id)
        .neq("status", SESSION_COMPLETED)
        .execute()
    )
    if res.data:
        return True
    if get_checkout_session(user_id, session_id):
        return False
    res = (
        client.table("checkout_sessions")
        .upsert(
            {"session_id": session_id, "user_id": user_id, "created_at": _now_iso(), **update},
            on_conflict="session_id",
            ignore_duplicates=True,
        )
        .execute()
    )
    return bool(res.data)

def _insert_payment_if_absent(client, row: Dict[str, Any]) -> bool:
    res = (
        client.table("payments")
        .upsert(row, on_conflict="payment_intent_id", ignore_duplicates=True)
        .execute()
    )
    return bool(res.data)

def mark_payment_succeeded(payment_intent_id: str, fields: Dict[str, Any]) -> bool:
    """
    Passage à "succeeded" (statut terminal), succeeded_at écrit une seule fois.
    - Ligne déjà "succeeded": seules les colonnes fournies sont complétées (merge), sans horodatage.
    - Ligne absente: création directe.
    Retourne True si cet appel a effectué la transition.
    """
    client = supabase_client.get_service_supabase()
    res = (
        client.table("payments")
        .update({**fields, "status": PAYMENT_SUCCEEDED, "succeeded_at": _now_iso()})
        .eq("payment_intent_id", payment_intent_id)
        .neq("status", PAYMENT_SUCCEEDED)
        .execute()
    )
    if res.data:
        return True
    if get_payment(payment_intent_id):
        if fields:
            client.table("payments").update(fields).eq("payment_intent_id", payment_intent_id).execute()
        return False
    return _insert_payment_if_absent(client, {
        "payment_intent_id": payment_intent_id,
        **fields,
        "status": PAYMENT_SUCCEEDED,
        "succeeded_at": _now_iso(),
    })

def mark_payment_failed(payment_intent_id: str, fields: Dict[str, Any]) -> bool:
    """
    Enregistre un échec sans jamais rétrograder un paiement "succeeded"
    (re-livraison tardive d'une tentative échouée). Retourne True si la ligne a été écrite.
    """
    client = supabase_client.get_service_supabase()
    update = {**fields, "status": PAYMENT_FAILED, "failed_at": _now_iso()}
    res = (
        client.table("payments")
        .update(update)
        .eq("payment_intent_id", payment_intent_id)
        .neq("status", PAYMENT_SUCCEEDED)
        .execute()
    )
    if res.data:
        return True
    if get_payment(payment_intent_id):
        return False
    return _insert_payment_if_absent(client, {"payment_intent_id": payment_intent_id, **update})

def get_payment(payment_intent_id: str, user_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
    query = (
        supabase_client.get_service_supabase()
        .table("payments")
        .select("*")
        .eq("payment_intent_id", payment_intent_id)
    )
    if user_id:
        query = query.eq("user_id", user_id)
    return _first(query.limit(1).execute())

def mark_session_expired(user_id: str, session_id: str) -> bool:
    """Transition created -> expired uniquement (une session complétée n'est jamais rétrogradée)."""
    res = (
        supabase_client.get_service_supabase()
        .table("checkout_sessions")
        .update({"status": SESSION_EXPIRED})
        .eq("session_id", session_id)
        .eq("user_id", user_id)
        .eq("status", SESSION_CREATED)
        .execute()
    )
    return bool(res.data)
