import logging
from fastapi import Request, HTTPException, Depends
from typing import Optional, Dict, Any

from storefront.infra import supabase_client

logger = logging.getLogger(__name__)

COOKIE_NAME = "sb_access"

def determine_role(metadata: Dict[str, Any] | None) -> str:
    if str((metadata or {}).get("role", "")).lower() == "admin":
        return "admin"
    return "user"

def _token_from_request(request: Request) -> Optional[str]:
    # Hybride: priorité au Bearer, fallback cookie
    token = None
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
    if not token:
        token = request.cookies.get(COOKIE_NAME)
    return token or None

def get_user_from_token(token: str) -> Dict[str, Any]:
    """Récupère et normalise l'utilisateur depuis supabase.auth.get_user(access_token)."""
    res = supabase_client.get_supabase().auth.get_user(token)
    user = getattr(res, "user", None)
    metadata = dict(getattr(user, "user_metadata", None) or {})
    metadata.update(getattr(user, "app_metadata", None) or {})
    return {
        "id": getattr(user, "id", None),
        "email": getattr(user, "email", None),
        "metadata": metadata,
        "role": determine_role(metadata),
    }

def get_current_user(request: Request) -> Dict[str, Any]:
    token = _token_from_request(request)
    if not token:
        raise HTTPException(status_code=401, detail="Non authentifié")
    try:
        user = get_user_from_token(token)
        if not user.get("id"):
            raise HTTPException(status_code=401, detail="Session expirée, veuillez vous connecter")
        return user
    except HTTPException:
        raise
    except Exception:
        logger.warning("security.get_current_user token rejected", exc_info=True)
        raise HTTPException(status_code=401, detail="Session expirée, veuillez vous connecter")

def optional_user(request: Request) -> Optional[Dict[str, Any]]:
    """
    Variante non bloquante: None pour un appelant anonyme (checkout invité).
    Un token présent mais invalide reste une erreur 401 (pas de bascule silencieuse en invité).
    """
    if not _token_from_request(request):
        return None
    return get_current_user(request)

def require_user(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    return user

def require_admin(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    if user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Accès interdit")
    return user
