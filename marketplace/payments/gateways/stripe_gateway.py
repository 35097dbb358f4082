"""
Adaptateur Stripe (style intention/confirmation): centralise les appels et la configuration Stripe.
"""
import logging
from decimal import Decimal
from typing import Any, Dict

import stripe
from fastapi import Request

from marketplace.errors import GatewayError
from marketplace.payments.gateways.port import (
    FAILED,
    PENDING,
    REQUIRES_CAPTURE,
    SUCCEEDED,
    GatewayStatus,
    IntentHandle,
    PaymentGateway,
)
from marketplace.utils.money import from_minor_units, to_minor_units

logger = logging.getLogger(__name__)

# PaymentIntent.status -> statut normalisé
_STATUS_MAP = {
    "succeeded": SUCCEEDED,
    "processing": PENDING,
    "requires_payment_method": PENDING,
    "requires_confirmation": PENDING,
    "requires_action": PENDING,
    "requires_capture": REQUIRES_CAPTURE,
    "canceled": FAILED,
}

# module marketplace.payments.gateways.stripe_gateway
def require_stripe():
    """
    Prépare et retourne le module stripe prêt à l'emploi.
    - Configure stripe.api_key via STRIPE_SECRET_KEY.
    - Borne la durée des appels réseau (GATEWAY_TIMEOUT_SECONDS), sans retry automatique.
    """
    from marketplace.config import GATEWAY_TIMEOUT_SECONDS, STRIPE_SECRET_KEY
    if not STRIPE_SECRET_KEY:
        raise GatewayError("Stripe non configuré", type="configuration_error", gateway="stripe")
    stripe.api_key = STRIPE_SECRET_KEY
    stripe.max_network_retries = 0
    stripe.default_http_client = stripe.new_default_http_client(timeout=GATEWAY_TIMEOUT_SECONDS)
    return stripe

def gateway_error_from_stripe(exc: Exception) -> GatewayError:
    """
    Convertit une erreur SDK Stripe en GatewayError sans perte d'information
    (type, code, decline_code, param, doc_url, request_id).
    """
    body = (getattr(exc, "json_body", None) or {}).get("error") or {}
    message = body.get("message") or getattr(exc, "user_message", None) or str(exc) or "Erreur Stripe"
    return GatewayError(
        message,
        type=body.get("type") or type(exc).__name__,
        code=body.get("code") or getattr(exc, "code", None),
        decline_code=body.get("decline_code"),
        param=body.get("param"),
        doc_url=body.get("doc_url"),
        request_id=getattr(exc, "request_id", None),
        gateway="stripe",
    )

def _to_dict(obj: Any) -> Dict[str, Any]:
    if isinstance(obj, dict):
        return dict(obj)
    to_dict = getattr(obj, "to_dict_recursive", None) or getattr(obj, "to_dict", None)
    return to_dict() if callable(to_dict) else dict(obj)


class StripeGateway(PaymentGateway):
    """PaymentIntents Stripe: client_secret confirmé côté navigateur, statut relu côté serveur."""

    name = "stripe"

    def create_intent(self, amount: Decimal, currency: str, metadata: Dict[str, str], idempotency_key: str) -> IntentHandle:
        require_stripe()
        try:
            intent = stripe.PaymentIntent.create(
                amount=to_minor_units(amount, currency),
                currency=currency.lower(),
                metadata=metadata,
                automatic_payment_methods={"enabled": True},
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as e:
            logger.exception("stripe.create_intent failed key=%s", idempotency_key)
            raise gateway_error_from_stripe(e)
        data = _to_dict(intent)
        return IntentHandle(
            gateway=self.name,
            reference=data.get("id"),
            status=_STATUS_MAP.get(data.get("status"), PENDING),
            client_secret=data.get("client_secret"),
        )

    def retrieve_status(self, reference: str) -> GatewayStatus:
        require_stripe()
        try:
            intent = stripe.PaymentIntent.retrieve(reference)
        except stripe.StripeError as e:
            logger.exception("stripe.retrieve_status failed reference=%s", reference)
            raise gateway_error_from_stripe(e)
        data = _to_dict(intent)
        currency = str(data.get("currency") or "").upper()
        received = data.get("amount_received") or data.get("amount") or 0
        # latest_charge: identifiant du mouvement de fonds; repli sur l'intention
        charge = data.get("latest_charge")
        if isinstance(charge, dict):
            charge = charge.get("id")
        return GatewayStatus(
            gateway=self.name,
            reference=data.get("id") or reference,
            status=_STATUS_MAP.get(data.get("status"), PENDING),
            amount=from_minor_units(received, currency),
            currency=currency,
            transaction_id=data.get("id") or reference,
            raw={
                "id": data.get("id"),
                "status": data.get("status"),
                "amount": data.get("amount"),
                "amount_received": data.get("amount_received"),
                "currency": data.get("currency"),
                "latest_charge": charge,
                "metadata": dict(data.get("metadata") or {}),
            },
        )


async def parse_event(request: Request):
    """
    Parse et valide un événement Stripe signé (webhook).
    - Lit le body brut + en-tête Stripe-Signature
    - Valide la signature via Webhook.construct_event (STRIPE_WEBHOOK_SECRET)
    Retour: l'objet event si la signature est valide.
    """
    from marketplace.config import STRIPE_WEBHOOK_SECRET
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature") or ""
    return stripe.Webhook.construct_event(payload, sig_header, STRIPE_WEBHOOK_SECRET or "")
