"""
Diagnostic de la configuration Stripe (réservé aux admins).
- Présence/forme des clés (préfixe, longueur, masquage), jamais la clé elle-même
- Vérification du compte via stripe.Account.retrieve()
"""
import logging
import re
from typing import Any, Dict, Optional

import stripe
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from marketplace import config
from marketplace.utils.security import require_admin

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/diagnostics", tags=["Diagnostics"])

def _prefix(key: str) -> Optional[str]:
    parts = key.split("_")
    return "_".join(parts[:2]) + "_" if len(parts) >= 2 else None

def _describe_key(key: str) -> Dict[str, Any]:
    return {"present": bool(key), "prefix": _prefix(key) if key else None, "length": len(key), "masked": "*" in key}

def stripe_diagnostics() -> Dict[str, Any]:
    secret = config.STRIPE_SECRET_KEY
    result: Dict[str, Any] = {
        "publishableKey": _describe_key(config.STRIPE_PUBLIC_KEY),
        "secretKey": _describe_key(secret),
        "webhookSecretPresent": bool(config.STRIPE_WEBHOOK_SECRET),
        "accountCheck": None,
        "notes": [],
    }
    if not secret:
        return result
    if "*" in secret:
        result["notes"].append("La clé secrète semble masquée: utiliser la clé complète.")
    if not re.match(r"^(sk|rk)_(test|live)_", secret):
        result["notes"].append("La clé secrète ne commence pas par sk_test_/sk_live_.")
    try:
        account = stripe.Account.retrieve(api_key=secret)
        result["accountCheck"] = {
            "ok": True,
            "account": {"id": account.get("id"), "email": account.get("email"), "livemode": account.get("livemode")},
        }
    except stripe.StripeError as e:
        logger.exception("diagnostics.stripe account check failed")
        result["accountCheck"] = {
            "ok": False,
            "error": getattr(e, "user_message", None) or str(e),
            "statusCode": getattr(e, "http_status", None),
            "type": type(e).__name__,
        }
    return result

# module marketplace.diagnostics.views
@router.get("/stripe")
def diagnostics_stripe(admin: dict = Depends(require_admin)):
    return JSONResponse(stripe_diagnostics())
