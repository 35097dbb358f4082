"""
Module 'checkout' (feature-first): point d'entrée public.
Réunit découpage du panier, métadonnées de passerelle, persistance des commandes et orchestration.
"""

from .cart import CartLine, CartSplit, SubOrderSplit, SplitItem, calc_commission, checkout_key, normalize_cart, split_cart
from .metadata import extract_metadata, make_metadata
from .states import CheckoutState

__all__ = [
    # cart
    "CartLine",
    "CartSplit",
    "SubOrderSplit",
    "SplitItem",
    "calc_commission",
    "checkout_key",
    "normalize_cart",
    "split_cart",
    # metadata
    "make_metadata",
    "extract_metadata",
    # états
    "CheckoutState",
]
