"""
Adaptateur PayPal (style création/capture) via l'API REST Orders v2.
- create_intent: POST /v2/checkout/orders (intent CAPTURE), renvoie l'URL d'approbation
- retrieve_status: GET /v2/checkout/orders/{id}
- capture: POST /v2/checkout/orders/{id}/capture quand l'acheteur a approuvé
Le header PayPal-Request-Id porte la clé d'idempotence.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx

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
from marketplace.utils.money import format_amount, round2

logger = logging.getLogger(__name__)

_ORDER_STATUS_MAP = {
    "CREATED": PENDING,
    "SAVED": PENDING,
    "PAYER_ACTION_REQUIRED": PENDING,
    "APPROVED": REQUIRES_CAPTURE,
    "COMPLETED": SUCCEEDED,
    "VOIDED": FAILED,
}

_CAPTURE_STATUS_MAP = {
    "COMPLETED": SUCCEEDED,
    "PENDING": PENDING,
    "DECLINED": FAILED,
    "FAILED": FAILED,
    "REFUNDED": FAILED,
    "PARTIALLY_REFUNDED": FAILED,
}


def gateway_error_from_response(response: httpx.Response) -> GatewayError:
    """Erreur PayPal {name, message, debug_id, details[{issue, field}], links[]} -> GatewayError."""
    try:
        body = response.json() or {}
    except ValueError:
        body = {}
    details = body.get("details") or [{}]
    first = details[0] if isinstance(details, list) and details else {}
    links = body.get("links") or []
    doc_url = next((l.get("href") for l in links if l.get("rel") == "information_link"), None)
    return GatewayError(
        body.get("message") or f"PayPal HTTP {response.status_code}",
        type=body.get("name") or f"http_{response.status_code}",
        code=first.get("issue"),
        decline_code=first.get("issue") if response.status_code == 422 else None,
        param=first.get("field"),
        doc_url=doc_url,
        request_id=body.get("debug_id") or response.headers.get("paypal-debug-id"),
        gateway="paypal",
    )


class PayPalGateway(PaymentGateway):
    """Commandes PayPal: l'acheteur approuve chez PayPal, le serveur capture."""

    name = "paypal"

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        base_url: str = "https://api-m.sandbox.paypal.com",
        timeout: float = 15.0,
        return_url: Optional[str] = None,
        http_client: Optional[httpx.Client] = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.return_url = return_url
        self._client = http_client or httpx.Client(base_url=base_url, timeout=timeout)
        self._token: Optional[str] = None

    def _access_token(self) -> str:
        if self._token:
            return self._token
        if not self.client_id or not self.client_secret:
            raise GatewayError("PayPal non configuré", type="configuration_error", gateway="paypal")
        res = self._send(
            "POST",
            "/v1/oauth2/token",
            data={"grant_type": "client_credentials"},
            auth=(self.client_id, self.client_secret),
        )
        self._token = res.get("access_token")
        return self._token

    def _send(self, method: str, path: str, retry_auth: bool = True, **kwargs) -> Dict[str, Any]:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise GatewayError("PayPal: délai dépassé", type="api_connection_error", code="timeout", gateway="paypal") from e
        except httpx.HTTPError as e:
            raise GatewayError(f"PayPal injoignable: {e}", type="api_connection_error", gateway="paypal") from e
        if response.status_code == 401 and self._token and retry_auth:
            # jeton expiré: on en redemande un une seule fois
            self._token = None
            headers = dict(kwargs.pop("headers", None) or {})
            headers["Authorization"] = f"Bearer {self._access_token()}"
            return self._send(method, path, retry_auth=False, headers=headers, **kwargs)
        if response.status_code >= 400:
            error = gateway_error_from_response(response)
            logger.error("paypal.%s %s failed status=%s debug_id=%s", method, path, response.status_code, error.request_id)
            raise error
        return response.json() if response.content else {}

    def _auth_headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {"Authorization": f"Bearer {self._access_token()}", "Content-Type": "application/json"}
        headers.update(extra or {})
        return headers

    def create_intent(self, amount: Decimal, currency: str, metadata: Dict[str, str], idempotency_key: str) -> IntentHandle:
        body: Dict[str, Any] = {
            "intent": "CAPTURE",
            "purchase_units": [{
                "reference_id": metadata.get("orderId") or "default",
                "custom_id": (metadata.get("customerId") or "")[:127],
                "amount": {"currency_code": currency.upper(), "value": format_amount(amount, currency)},
            }],
        }
        if self.return_url:
            body["application_context"] = {"return_url": self.return_url, "cancel_url": self.return_url}
        data = self._send(
            "POST",
            "/v2/checkout/orders",
            json=body,
            headers=self._auth_headers({"PayPal-Request-Id": idempotency_key}),
        )
        approval = next((l.get("href") for l in data.get("links") or [] if l.get("rel") in ("approve", "payer-action")), None)
        return IntentHandle(
            gateway=self.name,
            reference=data.get("id"),
            status=_ORDER_STATUS_MAP.get(data.get("status"), PENDING),
            approval_url=approval,
        )

    def _status_from_order(self, data: Dict[str, Any], reference: str) -> GatewayStatus:
        status = _ORDER_STATUS_MAP.get(data.get("status"), PENDING)
        units = data.get("purchase_units") or [{}]
        unit = units[0] if units else {}
        amount = unit.get("amount") or {}
        captures = ((unit.get("payments") or {}).get("captures")) or []
        capture = captures[0] if captures else {}
        if capture:
            status = _CAPTURE_STATUS_MAP.get(capture.get("status"), PENDING)
            amount = capture.get("amount") or amount
        value = amount.get("value")
        return GatewayStatus(
            gateway=self.name,
            reference=data.get("id") or reference,
            status=status,
            amount=round2(value) if value is not None else None,
            currency=str(amount.get("currency_code") or "").upper() or None,
            transaction_id=capture.get("id") or None,
            raw={
                "id": data.get("id"),
                "status": data.get("status"),
                "capture": {"id": capture.get("id"), "status": capture.get("status")} if capture else None,
                "amount": amount,
                "referenceId": unit.get("reference_id"),
            },
        )

    def retrieve_status(self, reference: str) -> GatewayStatus:
        data = self._send("GET", f"/v2/checkout/orders/{reference}", headers=self._auth_headers())
        return self._status_from_order(data, reference)

    def capture(self, reference: str) -> GatewayStatus:
        current = self.retrieve_status(reference)
        if current.status != REQUIRES_CAPTURE:
            return current
        data = self._send(
            "POST",
            f"/v2/checkout/orders/{reference}/capture",
            headers=self._auth_headers({"PayPal-Request-Id": f"capture-{reference}"}),
        )
        return self._status_from_order(data, reference)
