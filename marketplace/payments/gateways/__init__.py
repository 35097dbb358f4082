"""Fabrique des passerelles de paiement.

build_gateways() instancie les passerelles activées (PAYMENT_METHODS):
- StripeGateway pour "stripe" (intention/confirmation)
- PayPalGateway pour "paypal" (création/capture)
- FakeGateway pour "fake" (développement)
"""
from typing import Dict, Iterable, Optional

from marketplace.payments.gateways.fake_gateway import FakeGateway
from marketplace.payments.gateways.paypal_gateway import PayPalGateway
from marketplace.payments.gateways.port import GatewayStatus, IntentHandle, PaymentGateway
from marketplace.payments.gateways.stripe_gateway import StripeGateway


def build_gateways(methods: Optional[Iterable[str]] = None) -> Dict[str, PaymentGateway]:
    from marketplace import config
    gateways: Dict[str, PaymentGateway] = {}
    for method in methods if methods is not None else config.PAYMENT_METHODS:
        if method == "stripe":
            gateways[method] = StripeGateway()
        elif method == "paypal":
            gateways[method] = PayPalGateway(
                client_id=config.PAYPAL_CLIENT_ID,
                client_secret=config.PAYPAL_CLIENT_SECRET,
                base_url=config.PAYPAL_BASE_URL,
                timeout=config.GATEWAY_TIMEOUT_SECONDS,
            )
        elif method == "fake":
            gateways[method] = FakeGateway()
        else:
            raise RuntimeError(f"Passerelle inconnue dans PAYMENT_METHODS: {method}")
    return gateways


__all__ = [
    "build_gateways",
    "PaymentGateway",
    "IntentHandle",
    "GatewayStatus",
    "StripeGateway",
    "PayPalGateway",
    "FakeGateway",
]
