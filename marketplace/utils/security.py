from fastapi import Request, HTTPException, Depends
from typing import Optional, Dict, Any
import logging

from marketplace.catalog import repository as catalog_repo
from marketplace.infra import supabase_client

COOKIE_NAME = "sb_access"

logger = logging.getLogger(__name__)

MERCHANT_ROLES = ("merchant", "admin")

def determine_role(metadata: Optional[Dict[str, Any]]) -> str:
    role_lower = str((metadata or {}).get("role", "")).lower()
    if role_lower in ("admin", "merchant"):
        return role_lower
    return "customer"

def get_user_from_token(access_token: str) -> Dict[str, Any]:
    """Normalise user issu de supabase.auth.get_user(access_token): {id, email, metadata, role, token}."""
    res = supabase_client.get_supabase().auth.get_user(access_token)
    user = getattr(res, "user", None) or {}
    if not isinstance(user, dict):
        user = {
            "id": getattr(user, "id", None),
            "email": getattr(user, "email", None),
            "user_metadata": getattr(user, "user_metadata", None),
        }
    metadata = user.get("user_metadata") or {}
    return {
        "id": user.get("id"),
        "email": user.get("email"),
        "metadata": metadata,
        "role": determine_role(metadata),
        "token": access_token,
    }

def get_current_user(request: Request) -> Dict[str, Any]:
    # Hybride: priorité au Bearer, fallback cookie
    token = None
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
    if not token:
        token = request.cookies.get(COOKIE_NAME)

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
        logger.exception("security.get_current_user token rejected")
        raise HTTPException(status_code=401, detail="Session expirée, veuillez vous connecter")

def require_user(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    return user

def require_admin(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    if user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Accès interdit")
    return user

def require_merchant(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    """
    Vendeur (ou admin agissant pour un vendeur) avec son merchant_id résolu.
    - 403 si le rôle n'est ni merchant ni admin
    - 404 si aucun vendeur n'est rattaché à l'utilisateur
    """
    if user.get("role") not in MERCHANT_ROLES:
        raise HTTPException(status_code=403, detail="Accès réservé aux vendeurs")
    merchant_id = catalog_repo.get_merchant_id_for_user(user.get("id"))
    if not merchant_id:
        raise HTTPException(status_code=404, detail="Vendeur introuvable")
    return {**user, "merchant_id": merchant_id}
