"""
Logique panier pure (pas de passerelle, pas de BD).

Découpe un panier multi-vendeurs en sous-commandes par vendeur avec prix
autoritaires du catalogue et calcul de commission exact:
    subtotal   = round2(Σ prix·qté)
    commission = round2(subtotal · taux)
    payout     = subtotal − commission   (reste, jamais arrondi séparément)
    grandTotal = round2(Σ subtotal)
"""
import hashlib
import json
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional, Tuple

from marketplace.errors import EmptyCartError, ProductNotFoundError, ValidationError
from marketplace.utils.money import as_json_number, round2, to_decimal


@dataclass(frozen=True)
class CartLine:
    product_id: str
    quantity: int


@dataclass(frozen=True)
class SplitItem:
    product_id: str
    title: str
    price: Decimal
    quantity: int

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity

    def to_dict(self) -> Dict[str, Any]:
        return {
            "productId": self.product_id,
            "title": self.title,
            "price": as_json_number(self.price),
            "quantity": self.quantity,
        }


@dataclass(frozen=True)
class SubOrderSplit:
    merchant_id: str
    items: Tuple[SplitItem, ...]
    subtotal: Decimal
    commission: Decimal
    payout_amount: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "merchantId": self.merchant_id,
            "items": [i.to_dict() for i in self.items],
            "subtotal": as_json_number(self.subtotal),
            "commission": as_json_number(self.commission),
            "payoutAmount": as_json_number(self.payout_amount),
        }


@dataclass(frozen=True)
class CartSplit:
    currency: str
    grand_total: Decimal
    sub_orders: Tuple[SubOrderSplit, ...] = field(default_factory=tuple)

    @property
    def merchant_ids(self) -> List[str]:
        return [so.merchant_id for so in self.sub_orders]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "currency": self.currency,
            "grandTotal": as_json_number(self.grand_total),
            "subOrders": [so.to_dict() for so in self.sub_orders],
        }


# module marketplace.checkout.cart
def normalize_cart(raw_lines: Any) -> List[CartLine]:
    """
    Valide un panier brut [{productId, quantity}, ...].
    - EmptyCartError si le panier est absent ou vide
    - ValidationError si une ligne est malformée (pas d'ID, quantité non entière ou <= 0)
    Contrairement à un panier d'UI, aucune ligne n'est ignorée silencieusement.
    """
    if raw_lines is None or (isinstance(raw_lines, list) and not raw_lines):
        raise EmptyCartError()
    if not isinstance(raw_lines, list):
        raise ValidationError("Panier invalide: liste attendue", code="invalid_cart")

    lines: List[CartLine] = []
    for index, raw in enumerate(raw_lines):
        if not isinstance(raw, dict):
            raise ValidationError(f"Ligne {index} invalide", code="invalid_cart")
        product_id = str(raw.get("productId") or "").strip()
        if not product_id:
            raise ValidationError(f"Ligne {index}: productId manquant", code="invalid_cart")
        quantity = raw.get("quantity")
        # bool est un int en Python: refusé explicitement
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError(f"Ligne {index}: quantité invalide", code="invalid_quantity")
        lines.append(CartLine(product_id=product_id, quantity=quantity))
    return lines


def calc_commission(subtotal: Decimal, rate: Decimal) -> Tuple[Decimal, Decimal]:
    subtotal = round2(subtotal)
    commission = round2(subtotal * to_decimal(rate))
    return commission, subtotal - commission


def _price_of(product: Mapping[str, Any]) -> Decimal:
    # prix catalogue brut: seul le sous-total est arrondi
    try:
        price = to_decimal(product.get("price"))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"Prix invalide pour le produit {product.get('id')}", code="invalid_price")
    if not price.is_finite() or price <= 0:
        raise ValidationError(f"Prix invalide pour le produit {product.get('id')}", code="invalid_price")
    return price


def split_cart(
    lines: List[CartLine],
    products_by_id: Mapping[str, Mapping[str, Any]],
    commission_rate: Decimal,
    currency: str,
) -> CartSplit:
    """
    Découpe le panier par vendeur (ordre de première apparition).
    Échoue en bloc: aucun résultat partiel si un produit est introuvable.
    """
    if not lines:
        raise EmptyCartError()

    missing = [l.product_id for l in lines if l.product_id not in products_by_id]
    if missing:
        raise ProductNotFoundError(dict.fromkeys(missing))

    groups: Dict[str, List[SplitItem]] = {}
    for line in lines:
        product = products_by_id[line.product_id]
        merchant_id = str(product.get("merchant_id") or "").strip()
        if not merchant_id:
            raise ValidationError(f"Produit {line.product_id} sans vendeur", code="invalid_product")
        item = SplitItem(
            product_id=line.product_id,
            title=str(product.get("title") or "Article"),
            price=_price_of(product),
            quantity=line.quantity,
        )
        groups.setdefault(merchant_id, []).append(item)

    sub_orders: List[SubOrderSplit] = []
    for merchant_id, items in groups.items():
        subtotal = round2(sum((i.line_total for i in items), Decimal(0)))
        commission, payout = calc_commission(subtotal, commission_rate)
        sub_orders.append(SubOrderSplit(
            merchant_id=merchant_id,
            items=tuple(items),
            subtotal=subtotal,
            commission=commission,
            payout_amount=payout,
        ))

    grand_total = round2(sum((so.subtotal for so in sub_orders), Decimal(0)))
    return CartSplit(currency=currency, grand_total=grand_total, sub_orders=tuple(sub_orders))


def checkout_key(
    customer_id: str,
    lines: List[CartLine],
    currency: str,
    method: str,
    shipping_address: Optional[Any] = None,
) -> str:
    """
    Empreinte déterministe d'une tentative de checkout (sha256 hexadécimal).
    Les lignes sont agrégées et triées: l'ordre du panier n'influe pas.
    """
    quantities: Dict[str, int] = {}
    for line in lines:
        quantities[line.product_id] = quantities.get(line.product_id, 0) + line.quantity
    canonical = {
        "customerId": customer_id,
        "cart": sorted(quantities.items()),
        "currency": (currency or "").upper(),
        "method": (method or "").lower(),
        "shippingAddress": shipping_address,
    }
    raw = json.dumps(canonical, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()
