"""
Accès au catalogue (Supabase): produits et vendeurs.
Le catalogue est la seule source de prix: le prix envoyé par le client n'est jamais lu.
"""
from typing import Any, Dict, Iterable, List, Optional
import logging
import marketplace.infra.supabase_client as supabase_client
from marketplace.errors import CatalogUnavailableError

logger = logging.getLogger(__name__)

PRODUCT_COLUMNS = "id, title, price, merchant_id"

# module marketplace.catalog.repository
def fetch_products_by_ids(ids: List[str]) -> List[dict]:
    """
    Récupère les produits par leurs IDs (table 'products').
    - Retourne [] si ids vide.
    - Lève CatalogUnavailableError si Supabase échoue (erreur serveur, pas un panier invalide).
    """
    if not ids:
        return []
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("products")
            .select(PRODUCT_COLUMNS)
            .in_("id", [str(i) for i in ids])
            .execute()
        )
        return res.data or []
    except Exception:
        logger.exception("catalog.repository.fetch_products_by_ids failed ids=%s", ids)
        raise CatalogUnavailableError("Catalogue indisponible")

def get_products_map(ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
    """Retourne un dict {id: produit} à partir d'une liste d'IDs."""
    products = fetch_products_by_ids(list(ids))
    return {str(p.get("id")): p for p in products}

def get_merchant_id_for_user(user_id: str) -> Optional[str]:
    """Vendeur rattaché à un utilisateur (table 'merchants'), None si aucun."""
    if not user_id:
        return None
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("merchants")
            .select("id")
            .eq("user_id", user_id)
            .limit(1)
            .execute()
        )
        rows = res.data or []
        return str(rows[0]["id"]) if rows else None
    except Exception:
        logger.exception("catalog.repository.get_merchant_id_for_user failed user_id=%s", user_id)
        raise CatalogUnavailableError("Catalogue indisponible")
