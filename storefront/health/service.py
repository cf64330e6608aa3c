"""
Diagnostics des dépendances (Supabase), sans exposer de secrets.
"""
from typing import Any, Dict
from urllib.parse import urlparse
import logging

from storefront import config
import storefront.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

# module storefront.health.service
def health_supabase_info() -> Dict[str, Any]:
    info: Dict[str, Any] = {
        "configured": bool(config.SUPABASE_URL and config.SUPABASE_SERVICE_KEY),
        "host": urlparse(config.SUPABASE_URL).hostname if config.SUPABASE_URL else None,
        "reachable": False,
    }
    if not info["configured"]:
        return info
    try:
        supabase_client.get_service_supabase().table("coupons").select("code").limit(1).execute()
        info["reachable"] = True
    except Exception as e:
        logger.warning("health.supabase unreachable: %s", e)
        info["error"] = type(e).__name__
    return info
