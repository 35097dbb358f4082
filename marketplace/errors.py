"""
Taxonomie des erreurs métier de la plateforme.

Chaque erreur porte un code stable et le statut HTTP associé; le rendu JSON
est fait par marketplace.app_setup.exceptions.
"""
from decimal import Decimal
from typing import Any, Dict, Optional


class MarketplaceError(Exception):
    status_code = 500
    code = "error"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code}


class ValidationError(MarketplaceError):
    status_code = 400
    code = "invalid"


class EmptyCartError(ValidationError):
    code = "empty_cart"

    def __init__(self, message: str = "Panier vide"):
        super().__init__(message)


class NotFoundError(MarketplaceError):
    status_code = 404
    code = "not_found"


class ProductNotFoundError(NotFoundError):
    # Un produit inconnu invalide le panier: erreur client
    status_code = 400
    code = "product_not_found"

    def __init__(self, product_ids):
        self.product_ids = list(product_ids)
        super().__init__(f"Produit(s) introuvable(s): {', '.join(self.product_ids)}")

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["productIds"] = self.product_ids
        return data


class CatalogUnavailableError(MarketplaceError):
    code = "catalog_unavailable"


class GatewayError(MarketplaceError):
    """
    Refus ou panne d'une passerelle de paiement.
    Les champs du fournisseur sont conservés tels quels pour que l'UI puisse
    réagir (carte refusée, paramètre invalide, ...).
    """
    code = "gateway_error"

    def __init__(
        self,
        message: str,
        *,
        type: Optional[str] = None,
        code: Optional[str] = None,
        decline_code: Optional[str] = None,
        param: Optional[str] = None,
        doc_url: Optional[str] = None,
        request_id: Optional[str] = None,
        gateway: Optional[str] = None,
    ):
        super().__init__(message)
        self.type = type
        self.gateway_code = code
        self.decline_code = decline_code
        self.param = param
        self.doc_url = doc_url
        self.request_id = request_id
        self.gateway = gateway

    @property
    def details(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "code": self.gateway_code,
            "declineCode": self.decline_code,
            "param": self.param,
            "docUrl": self.doc_url,
            "requestId": self.request_id,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code, "details": self.details}


class PaymentNotConfirmedError(MarketplaceError):
    status_code = 400
    code = "payment_not_confirmed"

    def __init__(self, message: str, gateway_status: Optional[str] = None):
        super().__init__(message)
        self.gateway_status = gateway_status

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["gatewayStatus"] = self.gateway_status
        return data


class InsufficientBalanceError(MarketplaceError):
    status_code = 400
    code = "insufficient_balance"

    def __init__(self, available: Decimal, requested: Decimal):
        super().__init__("Solde insuffisant")
        self.available = available
        self.requested = requested

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["available"] = float(self.available)
        return data


class InvalidTransitionError(MarketplaceError):
    status_code = 409
    code = "invalid_transition"


class ConsistencyError(MarketplaceError):
    """Un invariant de règlement n'a pas tenu; à réconcilier, jamais ignoré."""
    code = "consistency_error"
