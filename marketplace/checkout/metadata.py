"""
Sérialisation/désérialisation des métadonnées de passerelle
(orderId, customerId, cart, shippingAddress, split).

Stripe limite les métadonnées à 50 clés de 500 caractères: les champs JSON
volumineux sont découpés en morceaux `<clé>_0`, `<clé>_1`, ... puis recollés.
"""
import json
from typing import Any, Dict, List, Optional

from marketplace.errors import ValidationError

MAX_VALUE_LENGTH = 500
MAX_KEYS = 50

# module marketplace.checkout.metadata
def _put_chunked(meta: Dict[str, str], key: str, value: Any) -> None:
    raw = json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    chunks = [raw[i:i + MAX_VALUE_LENGTH] for i in range(0, len(raw), MAX_VALUE_LENGTH)] or [""]
    meta[f"{key}_n"] = str(len(chunks))
    for i, chunk in enumerate(chunks):
        meta[f"{key}_{i}"] = chunk

def _get_chunked(meta: Dict[str, Any], key: str) -> Optional[Any]:
    try:
        count = int(meta.get(f"{key}_n") or 0)
    except (TypeError, ValueError):
        return None
    if count <= 0:
        return None
    raw = "".join(str(meta.get(f"{key}_{i}") or "") for i in range(count))
    try:
        return json.loads(raw)
    except ValueError:
        return None

def make_metadata(
    *,
    order_id: str,
    customer_id: str,
    cart: List[Dict[str, Any]],
    shipping_address: Any,
    split: Dict[str, Any],
) -> Dict[str, str]:
    """
    Construit les métadonnées attachées à l'intention de paiement.
    - orderId / customerId: valeurs simples (recherche côté dashboard)
    - cart, shippingAddress, split: JSON compact découpé
    """
    meta: Dict[str, str] = {"orderId": order_id, "customerId": customer_id}
    _put_chunked(meta, "cart", cart)
    _put_chunked(meta, "shippingAddress", shipping_address)
    _put_chunked(meta, "split", split)
    if len(meta) > MAX_KEYS:
        raise ValidationError("Panier trop volumineux pour la passerelle", code="cart_too_large")
    return meta

def extract_metadata(meta: Dict[str, Any]) -> Dict[str, Any]:
    """
    Reconstitue {orderId, customerId, cart, shippingAddress, split}.
    Tolérant: les champs absents ou illisibles valent None ([] pour cart).
    """
    meta = meta or {}
    return {
        "orderId": meta.get("orderId"),
        "customerId": meta.get("customerId"),
        "cart": _get_chunked(meta, "cart") or [],
        "shippingAddress": _get_chunked(meta, "shippingAddress"),
        "split": _get_chunked(meta, "split"),
    }
