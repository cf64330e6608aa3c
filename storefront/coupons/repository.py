"""
Accès aux données pour la feature 'coupons' (tables coupons, coupon_usages, exams).
Les lectures propagent les erreurs: le service décide du message utilisateur.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional
import logging

import storefront.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

# module storefront.coupons.repository
def get_coupon(code: str) -> Optional[Dict[str, Any]]:
    res = (
        supabase_client.get_service_supabase()
        .table("coupons")
        .select("*")
        .eq("code", code)
        .limit(1)
        .execute()
    )
    rows = res.data or []
    return rows[0] if rows else None

def count_user_usages(user_id: str, code: str) -> int:
    """Nombre de redemptions du coupon par l'utilisateur (l'existence des lignes fait office de compteur)."""
    res = (
        supabase_client.get_service_supabase()
        .table("coupon_usages")
        .select("session_id")
        .eq("user_id", user_id)
        .eq("coupon_code", code)
        .execute()
    )
    return len(res.data or [])

def get_exam_categories(exam_ids: Iterable[str]) -> List[str]:
    ids = [str(i) for i in exam_ids if i]
    if not ids:
        return []
    res = (
        supabase_client.get_service_supabase()
        .table("exams")
        .select("id, category")
        .in_("id", ids)
        .execute()
    )
    return [r.get("category") for r in (res.data or []) if r.get("category")]

def insert_coupon(row: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    res = (
        supabase_client.get_service_supabase()
        .table("coupons")
        .insert(row)
        .execute()
    )
    rows = res.data or []
    return rows[0] if rows else None

def insert_usage(*, user_id: str, code: str, session_id: str) -> bool:
    """
    Enregistre une redemption, au plus une fois par (coupon_code, session_id).
    Retourne True si la ligne a été créée, False si elle existait déjà.
    """
    res = (
        supabase_client.get_service_supabase()
        .table("coupon_usages")
        .upsert(
            {
                "user_id": user_id,
                "coupon_code": code,
                "session_id": session_id,
                "used_at": datetime.now(timezone.utc).isoformat(),
            },
            on_conflict="coupon_code,session_id",
            ignore_duplicates=True,
        )
        .execute()
    )
    return bool(res.data)

def increment_usage(code: str) -> None:
    """Incrément atomique de coupons.used_count (fonction SQL increment_coupon_usage)."""
    supabase_client.get_service_supabase().rpc("increment_coupon_usage", {"p_code": code}).execute()
