"""
Accès aux données des droits d'accès (table purchased_exams).
Clé naturelle: (user_id, exam_id, session_id), contrainte UNIQUE côté base.
"""
from typing import Any, Dict, List, Optional
import logging

import storefront.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

ENTITLEMENT_CONFLICT_KEY = "user_id,exam_id,session_id"

# module storefront.purchases.repository
def list_by_session(session_id: str, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
    query = (
        supabase_client.get_service_supabase()
        .table("purchased_exams")
        .select("*")
        .eq("session_id", session_id)
    )
    if user_id:
        query = query.eq("user_id", user_id)
    res = query.execute()
    return res.data or []

def insert_entitlements(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Insère les droits d'un passage de réconciliation en une seule requête
    (INSERT ... ON CONFLICT DO NOTHING): tous les droits sont écrits ou aucun.
    Les lignes déjà présentes sont ignorées; retourne uniquement les lignes créées.
    """
    if not rows:
        return []
    res = (
        supabase_client.get_service_supabase()
        .table("purchased_exams")
        .upsert(rows, on_conflict=ENTITLEMENT_CONFLICT_KEY, ignore_duplicates=True)
        .execute()
    )
    return res.data or []

def list_user_purchases(user_id: str, limit: int = 100) -> List[Dict[str, Any]]:
    res = (
        supabase_client.get_service_supabase()
        .table("purchased_exams")
        .select("*")
        .eq("user_id", user_id)
        .order("purchased_at", desc=True)
        .limit(limit)
        .execute()
    )
    return res.data or []

def list_user_exam_purchases(user_id: str, exam_id: str) -> List[Dict[str, Any]]:
    res = (
        supabase_client.get_service_supabase()
        .table("purchased_exams")
        .select("*")
        .eq("user_id", user_id)
        .eq("exam_id", exam_id)
        .execute()
    )
    return res.data or []
