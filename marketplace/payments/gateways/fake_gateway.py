"""Passerelle de paiement simulée, configurable (développement et tests).

Aucun appel externe. Rejoue les comportements des vraies passerelles:
- même clé d'idempotence => même intention
- statut relu depuis l'état interne (jamais depuis l'appelant)
- refus structuré via GatewayError
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import uuid4

from marketplace.errors import GatewayError
from marketplace.payments.gateways.port import (
    PENDING,
    REQUIRES_CAPTURE,
    SUCCEEDED,
    GatewayStatus,
    IntentHandle,
    PaymentGateway,
)


class FakeGateway(PaymentGateway):
    """Passerelle simulée: `configure()` choisit succès/échec, `calls` trace les appels."""

    def __init__(self, name: str = "fake", capture_style: bool = False) -> None:
        self.name = name
        self.capture_style = capture_style
        self.should_fail: bool = False
        self.failure: Dict[str, Any] = {}
        self.calls: List[Dict[str, Any]] = []
        self._intents: Dict[str, Dict[str, Any]] = {}
        self._by_key: Dict[str, str] = {}

    def configure(self, should_fail: bool, **failure: Any) -> None:
        """Ex: configure(True, type="card_error", code="card_declined", decline_code="insufficient_funds")."""
        self.should_fail = should_fail
        self.failure = failure

    def _raise_failure(self) -> None:
        failure = dict(self.failure)
        message = failure.pop("message", "Your card was declined.")
        raise GatewayError(message, gateway=self.name, **failure)

    def create_intent(self, amount: Decimal, currency: str, metadata: Dict[str, str], idempotency_key: str) -> IntentHandle:
        self.calls.append({
            "method": "create_intent",
            "amount": amount,
            "currency": currency,
            "metadata": dict(metadata),
            "idempotency_key": idempotency_key,
        })
        if self.should_fail:
            self._raise_failure()
        reference = self._by_key.get(idempotency_key)
        if reference is None:
            reference = f"{self.name}_{uuid4().hex[:12]}"
            self._by_key[idempotency_key] = reference
            self._intents[reference] = {
                "amount": amount,
                "currency": currency.upper(),
                "status": PENDING,
                "metadata": dict(metadata),
                "transaction_id": None,
            }
        return IntentHandle(
            gateway=self.name,
            reference=reference,
            status=self._intents[reference]["status"],
            client_secret=None if self.capture_style else f"{reference}_secret",
            approval_url=f"https://fake.test/approve/{reference}" if self.capture_style else None,
        )

    def complete(self, reference: str, amount: Optional[Decimal] = None, currency: Optional[str] = None) -> None:
        """Simule l'action de l'acheteur (paiement ou approbation); montant modifiable pour les tests."""
        intent = self._intents[reference]
        intent["status"] = REQUIRES_CAPTURE if self.capture_style else SUCCEEDED
        if amount is not None:
            intent["amount"] = amount
        if currency is not None:
            intent["currency"] = currency
        if not self.capture_style:
            intent["transaction_id"] = reference

    def set_status(self, reference: str, status: str) -> None:
        self._intents[reference]["status"] = status

    def _status(self, reference: str) -> GatewayStatus:
        intent = self._intents.get(reference)
        if intent is None:
            raise GatewayError("No such payment", type="invalid_request_error", code="resource_missing",
                               param="id", gateway=self.name)
        return GatewayStatus(
            gateway=self.name,
            reference=reference,
            status=intent["status"],
            amount=intent["amount"],
            currency=intent["currency"],
            transaction_id=intent["transaction_id"] or reference,
            raw={"id": reference, "status": intent["status"], "amount": str(intent["amount"])},
        )

    def retrieve_status(self, reference: str) -> GatewayStatus:
        self.calls.append({"method": "retrieve_status", "reference": reference})
        return self._status(reference)

    def capture(self, reference: str) -> GatewayStatus:
        self.calls.append({"method": "capture", "reference": reference})
        intent = self._intents.get(reference)
        if intent is not None and intent["status"] == REQUIRES_CAPTURE:
            intent["status"] = SUCCEEDED
            intent["transaction_id"] = f"{reference}_capture"
        return self._status(reference)
