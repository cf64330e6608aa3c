# storefront.config
from pathlib import Path
import os
from dotenv import load_dotenv

# Calculer le chemin du projet puis charger .env de manière explicite
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH)

"""
Configuration centrale du backend.

- Charge le fichier .env à la racine du projet (BASE_DIR/.env)
- Normalise et expose les secrets/URLs (Stripe, Supabase), CORS/hosts, logs
- Fournit les URLs de redirection du checkout (succès / échec)
- require_payment_settings(): contrôle bloquant appelé au démarrage (lifespan)
"""


class ConfigurationError(RuntimeError):
    """Configuration obligatoire absente: l'application ne doit pas démarrer."""


def _clean_env(v: str) -> str:
    """
    Nettoie une valeur d'environnement:
    - supprime les espaces et guillemets (simples, doubles) et backticks
    - retourne toujours une chaîne (jamais None)
    """
    return (v or "").strip().strip("'").strip('"').strip("`")


def _int_env(name: str, default: int) -> int:
    try:
        return int(_clean_env(os.getenv(name)) or default)
    except ValueError:
        return default


# Stripe: clé secrète, secret de signature webhook, version d'API optionnelle
STRIPE_SECRET_KEY = _clean_env(os.getenv("STRIPE_SECRET_KEY") or "")
STRIPE_WEBHOOK_SECRET = _clean_env(os.getenv("STRIPE_WEBHOOK_SECRET") or "")
STRIPE_API_VERSION = _clean_env(os.getenv("STRIPE_API_VERSION") or "")
STRIPE_CURRENCY = (_clean_env(os.getenv("STRIPE_CURRENCY") or "") or "usd").lower()

# URL publique du front (construction des URLs de redirection Stripe)
APP_URL = _clean_env(os.getenv("APP_URL") or os.getenv("BASE_URL") or "").rstrip("/")

# Pages de succès/échec du checkout ({CHECKOUT_SESSION_ID} est substitué par Stripe)
CHECKOUT_SUCCESS_PATH = os.getenv("CHECKOUT_SUCCESS_PATH", "/payment/success?session_id={CHECKOUT_SESSION_ID}")
CHECKOUT_CANCEL_PATH = os.getenv("CHECKOUT_CANCEL_PATH", "/payment/failed")

# Durée d'accès à un examen acheté
ENTITLEMENT_VALIDITY_DAYS = _int_env("ENTITLEMENT_VALIDITY_DAYS", 365)

# Supabase: URL et clés (anon pour l'auth, service pour les écritures serveur)
SUPABASE_URL = _clean_env(os.getenv("SUPABASE_URL") or "")
SUPABASE_ANON = _clean_env(os.getenv("SUPABASE_ANON_KEY") or os.getenv("SUPABASE_KEY") or "")
SUPABASE_SERVICE_KEY = _clean_env(os.getenv("SUPABASE_SERVICE_KEY") or "")

if SUPABASE_URL and not SUPABASE_URL.startswith("http"):
    SUPABASE_URL = "https://" + SUPABASE_URL
SUPABASE_URL = SUPABASE_URL.rstrip("/")

# CORS / hosts
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",") if o.strip()]
ALLOWED_HOSTS = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1,testserver").split(",") if h.strip()]

LOG_LEVEL = (_clean_env(os.getenv("LOG_LEVEL") or "") or "INFO").upper()

# Sentinelle utilisateur non authentifié (aucun droit persisté)
GUEST_USER_ID = "guest"

REQUIRED_PAYMENT_SETTINGS = ("STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET", "APP_URL")


def missing_payment_settings() -> list:
    """Liste les clés obligatoires non renseignées (lecture des globals du module)."""
    return [name for name in REQUIRED_PAYMENT_SETTINGS if not globals().get(name)]


def require_payment_settings() -> None:
    """
    Contrôle de démarrage: clé Stripe, secret webhook et URL publique sont obligatoires.
    Lève ConfigurationError avec la liste des clés manquantes.
    """
    missing = missing_payment_settings()
    if missing:
        raise ConfigurationError(f"Configuration manquante: {', '.join(missing)}")


def checkout_urls() -> tuple:
    """Retourne (success_url, cancel_url) absolus à partir de APP_URL."""
    return f"{APP_URL}{CHECKOUT_SUCCESS_PATH}", f"{APP_URL}{CHECKOUT_CANCEL_PATH}"
