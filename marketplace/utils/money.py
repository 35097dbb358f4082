"""
Arithmétique monétaire (Decimal, jamais float).
- round2: arrondi commercial au centime (ROUND_HALF_UP)
- to_minor_units / from_minor_units: conversion vers l'unité mineure (centimes),
  utilisée au bord des passerelles et pour le stockage.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Any

CENT = Decimal("0.01")

# Devises sans décimales côté passerelles (ex: JPY 500 = 500 unités mineures)
ZERO_DECIMAL_CURRENCIES = {
    "BIF", "CLP", "DJF", "GNF", "JPY", "KMF", "KRW", "MGA",
    "PYG", "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF",
}

def to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # passer par str pour ne pas hériter de l'erreur binaire du float
        return Decimal(repr(value))
    return Decimal(str(value))

def round2(value: Any) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)

def currency_exponent(currency: str) -> int:
    return 0 if (currency or "").upper() in ZERO_DECIMAL_CURRENCIES else 2

def to_minor_units(amount: Any, currency: str = "CHF") -> int:
    exponent = currency_exponent(currency)
    scaled = to_decimal(amount) * (Decimal(10) ** exponent)
    return int(scaled.quantize(Decimal(1), rounding=ROUND_HALF_UP))

def from_minor_units(minor: int, currency: str = "CHF") -> Decimal:
    exponent = currency_exponent(currency)
    return round2(Decimal(int(minor)) / (Decimal(10) ** exponent))

def format_amount(amount: Any, currency: str = "CHF") -> str:
    """Montant décimal en chaîne ("45.00"), format attendu par PayPal."""
    exponent = currency_exponent(currency)
    quant = Decimal(1) if exponent == 0 else CENT
    return str(to_decimal(amount).quantize(quant, rounding=ROUND_HALF_UP))

def as_json_number(amount: Any) -> float:
    return float(round2(amount))
