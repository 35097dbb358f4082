"""Payment gateway port (interface abstraite).

Contrat commun aux deux styles de passerelles:
- intention/confirmation (Stripe): client_secret confirmé côté acheteur
- création/capture (PayPal): redirection puis capture côté serveur

L'orchestrateur ne connaît que ce contrat; FakeGateway, StripeGateway et
PayPalGateway sont interchangeables.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional

# Statuts normalisés renvoyés par retrieve_status / capture
SUCCEEDED = "succeeded"
PENDING = "pending"
REQUIRES_CAPTURE = "requires_capture"
FAILED = "failed"

RAW_PAYLOAD_VERSION = 1


@dataclass(frozen=True)
class IntentHandle:
    """Référence d'une intention créée chez le fournisseur."""

    gateway: str
    reference: str
    status: str
    client_secret: Optional[str] = None
    approval_url: Optional[str] = None


@dataclass(frozen=True)
class GatewayStatus:
    """État d'un paiement tel que relu chez le fournisseur."""

    gateway: str
    reference: str
    status: str
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    transaction_id: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == SUCCEEDED

    def provider_document(self) -> Dict[str, Any]:
        """Document versionné et étiqueté par passerelle, stocké avec le paiement."""
        return {"version": RAW_PAYLOAD_VERSION, "gateway": self.gateway, "payload": self.raw}


class PaymentGateway(ABC):
    """Interface abstraite d'une passerelle de paiement."""

    name: str = ""

    @abstractmethod
    def create_intent(
        self,
        amount: Decimal,
        currency: str,
        metadata: Dict[str, str],
        idempotency_key: str,
    ) -> IntentHandle:
        """Crée l'intention de paiement chez le fournisseur."""
        ...

    @abstractmethod
    def retrieve_status(self, reference: str) -> GatewayStatus:
        """Relit l'état du paiement chez le fournisseur (jamais depuis l'appelant)."""
        ...

    def capture(self, reference: str) -> GatewayStatus:
        """Finalise le mouvement de fonds; sans objet pour le style intention."""
        return self.retrieve_status(reference)
