# marketplace.config
from decimal import Decimal, InvalidOperation
from pathlib import Path
import os
from dotenv import load_dotenv

# Calculer le chemin du projet puis charger .env de manière explicite
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH, override=False)

"""
Configuration centrale de la plateforme.

- Charge le fichier .env à la racine du projet (BASE_DIR/.env)
- Normalise et expose les secrets/URLs (Supabase, Stripe, PayPal, base SQL)
- Expose les paramètres métier (commission, devise de règlement, timeouts passerelles)
- Les valeurs invalides lèvent une erreur à l'import (fail fast)
"""

def _clean_env(v: str) -> str:
    """
    Nettoie une valeur d'environnement:
    - supprime les espaces et guillemets (simples, doubles) et backticks
    - retourne toujours une chaîne (jamais None)
    """
    return (v or "").strip().strip("'").strip('"').strip("`")

def _parse_percent(raw: str) -> Decimal:
    try:
        value = Decimal(_clean_env(raw) or "20")
    except InvalidOperation:
        raise RuntimeError(f"PLATFORM_FEE_PERCENT invalide: {raw!r}")
    if value < 0 or value > 100:
        raise RuntimeError(f"PLATFORM_FEE_PERCENT hors bornes [0, 100]: {value}")
    return value

def _parse_currency(raw: str) -> str:
    code = _clean_env(raw).upper() or "CHF"
    if len(code) != 3 or not code.isalpha():
        raise RuntimeError(f"SETTLEMENT_CURRENCY invalide (ISO 4217 attendu): {raw!r}")
    return code

# Supabase: catalogue, identité, notifications
SUPABASE_URL = _clean_env(os.getenv("SUPABASE_URL") or "")
SUPABASE_KEY = _clean_env(os.getenv("SUPABASE_KEY") or os.getenv("SUPABASE_ANON_KEY") or "")
SUPABASE_ANON = _clean_env(os.getenv("SUPABASE_ANON_KEY") or SUPABASE_KEY)
SUPABASE_SERVICE_KEY = _clean_env(os.getenv("SUPABASE_SERVICE_KEY") or "")

if SUPABASE_URL and not SUPABASE_URL.startswith("http"):
    SUPABASE_URL = "https://" + SUPABASE_URL
if SUPABASE_URL.endswith("/"):
    SUPABASE_URL = SUPABASE_URL.rstrip("/")

# Base transactionnelle (commandes, paiements, grand livre des reversements)
DATABASE_URL = _clean_env(os.getenv("DATABASE_URL") or "sqlite:///./marketplace.db")

# Commission plateforme: PLATFORM_FEE_PERCENT=20 => COMMISSION_RATE=0.20
PLATFORM_FEE_PERCENT = _parse_percent(os.getenv("PLATFORM_FEE_PERCENT", "20"))
COMMISSION_RATE = PLATFORM_FEE_PERCENT / Decimal(100)

# Une seule devise de règlement pour tout le pipeline
SETTLEMENT_CURRENCY = _parse_currency(os.getenv("SETTLEMENT_CURRENCY", "CHF"))

# Passerelles activées (ordre sans importance)
PAYMENT_METHODS = [
    m.strip().lower() for m in os.getenv("PAYMENT_METHODS", "stripe,paypal").split(",") if m.strip()
]
GATEWAY_TIMEOUT_SECONDS = float(_clean_env(os.getenv("GATEWAY_TIMEOUT_SECONDS") or "15"))

# Stripe: clés publiques/privées et secret webhook
STRIPE_PUBLIC_KEY = _clean_env(os.getenv("STRIPE_PUBLIC_KEY") or "")
STRIPE_SECRET_KEY = _clean_env(os.getenv("STRIPE_SECRET_KEY") or "")
STRIPE_WEBHOOK_SECRET = _clean_env(os.getenv("STRIPE_WEBHOOK_SECRET") or "")

# PayPal (Orders v2)
PAYPAL_CLIENT_ID = _clean_env(os.getenv("PAYPAL_CLIENT_ID") or "")
PAYPAL_CLIENT_SECRET = _clean_env(os.getenv("PAYPAL_CLIENT_SECRET") or "")
PAYPAL_BASE_URL = _clean_env(os.getenv("PAYPAL_BASE_URL") or "https://api-m.sandbox.paypal.com").rstrip("/")

# CORS / hôtes
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
ALLOWED_HOSTS = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1,testserver").split(",") if h.strip()]

LOG_LEVEL = _clean_env(os.getenv("LOG_LEVEL") or "info").lower()
