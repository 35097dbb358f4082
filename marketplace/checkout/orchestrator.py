"""
Orchestrateur du checkout multi-vendeurs.

Séquence: découpage du panier -> commande PENDING_PAYMENT -> intention de
paiement -> (acheteur) -> confirmation revérifiée auprès de la passerelle ->
règlement atomique. Aucun appel passerelle n'a lieu pendant une transaction SQL.
"""
import hashlib
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from marketplace.catalog import repository as catalog_repo
from marketplace.checkout import repository as orders_repo
from marketplace.checkout.cart import (
    CartLine,
    CartSplit,
    SplitItem,
    SubOrderSplit,
    checkout_key,
    normalize_cart,
    split_cart,
)
from marketplace.checkout.metadata import make_metadata
from marketplace.checkout.states import CheckoutState, assert_transition
from marketplace.errors import (
    ConsistencyError,
    GatewayError,
    MarketplaceError,
    NotFoundError,
    PaymentNotConfirmedError,
    ValidationError,
)
from marketplace.payments.gateways.port import FAILED, REQUIRES_CAPTURE, IntentHandle, PaymentGateway
from marketplace.payments.settlement import SettlementResult, SettlementService
from marketplace.utils.money import from_minor_units

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckoutRequest:
    lines: List[CartLine]
    shipping_address: Any
    currency: str
    payment_method: str
    return_url: Optional[str] = None


@dataclass(frozen=True)
class CheckoutResult:
    order_id: str
    method: str
    handle: IntentHandle
    split: CartSplit
    return_url: Optional[str] = None
    replayed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        payment: Dict[str, Any] = {"method": self.method}
        if self.handle.client_secret:
            payment["clientSecret"] = self.handle.client_secret
            payment["paymentIntentId"] = self.handle.reference
        else:
            payment["gatewayOrderId"] = self.handle.reference
            if self.handle.approval_url:
                payment["approvalUrl"] = self.handle.approval_url
            if self.return_url:
                payment["returnUrl"] = self.return_url
        return {
            "orderId": self.order_id,
            "status": "PAYMENT_REQUIRED",
            "payment": payment,
            "cartData": self.split.to_dict(),
        }


def parse_checkout_request(body: Mapping[str, Any], settlement_currency: str, methods: List[str]) -> CheckoutRequest:
    """
    Valide la requête de checkout:
    - cart: liste non vide de {productId, quantity}
    - shippingAddress: requis (chaîne non vide ou objet)
    - currency: optionnelle, doit égaler la devise de règlement
    - paymentMethod: une des passerelles activées
    """
    if not isinstance(body, Mapping):
        raise ValidationError("Requête invalide: objet JSON attendu")
    lines = normalize_cart(body.get("cart"))

    address = body.get("shippingAddress")
    if isinstance(address, str):
        address = address.strip()
    if not address:
        raise ValidationError("Adresse de livraison requise", code="invalid_address")

    currency = str(body.get("currency") or settlement_currency).strip().upper()
    if currency != settlement_currency:
        raise ValidationError(f"Devise non supportée: {currency} (attendu {settlement_currency})", code="invalid_currency")

    method = str(body.get("paymentMethod") or "").strip().lower()
    if method not in methods:
        raise ValidationError("Moyen de paiement invalide", code="invalid_payment_method")

    return_url = body.get("returnUrl")
    return CheckoutRequest(
        lines=lines,
        shipping_address=address,
        currency=currency,
        payment_method=method,
        return_url=str(return_url) if return_url else None,
    )


def intent_idempotency_key(attempt_key: str, order_id: str) -> str:
    return hashlib.sha256(f"{attempt_key}:{order_id}".encode("utf-8")).hexdigest()


class CheckoutOrchestrator:
    def __init__(
        self,
        engine: Engine,
        gateways: Mapping[str, PaymentGateway],
        settlement: SettlementService,
        commission_rate: Decimal,
        currency: str,
        fetch_products: Optional[Callable[[List[str]], Mapping[str, Mapping[str, Any]]]] = None,
    ):
        self.engine = engine
        self.gateways = dict(gateways)
        self.settlement = settlement
        self.commission_rate = commission_rate
        self.currency = currency
        self.fetch_products = fetch_products or catalog_repo.get_products_map

    @property
    def methods(self) -> List[str]:
        return list(self.gateways.keys())

    def _log_state(self, order_id: Optional[str], current: CheckoutState, target: CheckoutState, **extra) -> CheckoutState:
        assert_transition(current, target)
        logger.info("checkout.state order_id=%s %s->%s %s", order_id, current.value, target.value,
                    " ".join(f"{k}={v}" for k, v in extra.items()))
        return target

    def _gateway(self, method: str) -> PaymentGateway:
        gateway = self.gateways.get(method)
        if gateway is None:
            raise ValidationError(f"Moyen de paiement non disponible: {method}", code="invalid_payment_method")
        return gateway

    # --- démarrage ---

    def start_checkout(self, customer_id: str, request: CheckoutRequest) -> CheckoutResult:
        state = CheckoutState.CART_RECEIVED
        gateway = self._gateway(request.payment_method)

        try:
            products = self.fetch_products([l.product_id for l in request.lines])
            split = split_cart(request.lines, products, self.commission_rate, self.currency)
        except MarketplaceError as e:
            self._log_state(None, state, CheckoutState.SPLIT_FAILED, customer_id=customer_id, reason=e.code)
            raise

        attempt_key = checkout_key(
            customer_id, request.lines, request.currency, request.payment_method, request.shipping_address
        )
        order_id, split, existing = self._persist_order(customer_id, request, split, attempt_key)
        if existing and existing.get("gateway_reference"):
            logger.info("checkout.replay order_id=%s reference=%s", order_id, existing["gateway_reference"])
            return self._result_from_order(existing, split, request.return_url)
        state = self._log_state(order_id, state, CheckoutState.SPLIT_COMPUTED, grand_total=split.grand_total)

        metadata = make_metadata(
            order_id=order_id,
            customer_id=customer_id,
            cart=[{"productId": l.product_id, "quantity": l.quantity} for l in request.lines],
            shipping_address=request.shipping_address,
            split=split.to_dict(),
        )
        try:
            handle = gateway.create_intent(
                split.grand_total,
                split.currency,
                metadata,
                intent_idempotency_key(attempt_key, order_id),
            )
        except Exception as e:
            with self.engine.begin() as conn:
                orders_repo.mark_payment_failed(conn, order_id, CheckoutState.PAYMENT_FAILED.value)
            self._log_state(order_id, state, CheckoutState.PAYMENT_FAILED, error=type(e).__name__)
            if isinstance(e, GatewayError):
                raise
            logger.exception("checkout.create_intent unexpected failure order_id=%s", order_id)
            raise GatewayError(str(e) or "Erreur passerelle", type="api_error", gateway=gateway.name) from e

        with self.engine.begin() as conn:
            attached = orders_repo.attach_intent(
                conn,
                order_id,
                reference=handle.reference,
                client_secret=handle.client_secret,
                approval_url=handle.approval_url,
                checkout_state=CheckoutState.INTENT_CREATED.value,
            )
            if not attached:
                current = orders_repo.get_order(conn, order_id, with_sub_orders=False)
                if not current or current.get("gateway_reference") != handle.reference:
                    raise ConsistencyError(f"Commande {order_id} déjà liée à une autre intention")
        self._log_state(order_id, state, CheckoutState.INTENT_CREATED, reference=handle.reference)
        return CheckoutResult(
            order_id=order_id,
            method=request.payment_method,
            handle=handle,
            split=split,
            return_url=request.return_url,
        )

    def _persist_order(self, customer_id: str, request: CheckoutRequest, split: CartSplit, attempt_key: str):
        """
        Réutilise la tentative ouverte pour ce même panier, sinon crée la commande.
        Retourne (order_id, split effectif, commande existante ou None).
        """
        for _ in range(2):
            try:
                with self.engine.begin() as conn:
                    existing = orders_repo.find_open_order(conn, attempt_key)
                    if existing:
                        return existing["id"], self._split_from_order(conn, existing), existing
                    order_id = orders_repo.insert_order(
                        conn,
                        customer_id=customer_id,
                        split=split,
                        checkout_key=attempt_key,
                        payment_method=request.payment_method,
                        shipping_address=request.shipping_address,
                        checkout_state=CheckoutState.SPLIT_COMPUTED.value,
                    )
                    return order_id, split, None
            except IntegrityError:
                # une requête concurrente a ouvert la même tentative: on la relit
                logger.info("checkout.persist concurrent attempt key=%s", attempt_key[:12])
        raise ConsistencyError("Impossible de persister la commande")

    def _split_from_order(self, conn, order: Dict[str, Any]) -> CartSplit:
        currency = order["currency"]
        items_by_sub: Dict[str, List[SplitItem]] = {}
        for item in orders_repo.get_order_items(conn, order["id"]):
            items_by_sub.setdefault(item["sub_order_id"], []).append(SplitItem(
                product_id=item["product_id"],
                title=item["title"],
                price=from_minor_units(item["unit_price_minor"], currency),
                quantity=item["quantity"],
            ))
        sub_orders = tuple(
            SubOrderSplit(
                merchant_id=so["merchant_id"],
                items=tuple(items_by_sub.get(so["id"], [])),
                subtotal=from_minor_units(so["subtotal_minor"], currency),
                commission=from_minor_units(so["commission_minor"], currency),
                payout_amount=from_minor_units(so["payout_minor"], currency),
            )
            for so in orders_repo.get_sub_orders(conn, order["id"])
        )
        return CartSplit(
            currency=currency,
            grand_total=from_minor_units(order["grand_total_minor"], currency),
            sub_orders=sub_orders,
        )

    def _result_from_order(self, order: Dict[str, Any], split: CartSplit, return_url: Optional[str]) -> CheckoutResult:
        handle = IntentHandle(
            gateway=order["payment_method"],
            reference=order["gateway_reference"],
            status="pending",
            client_secret=order.get("client_secret"),
            approval_url=order.get("approval_url"),
        )
        return CheckoutResult(
            order_id=order["id"],
            method=order["payment_method"],
            handle=handle,
            split=split,
            return_url=return_url,
            replayed=True,
        )

    # --- confirmation ---

    def confirm_payment(self, order_id: str, customer_id: str, reference: str) -> SettlementResult:
        """
        Confirmation côté acheteur (retour de redirection).
        Le statut est toujours relu auprès de la passerelle avant règlement.
        """
        if not order_id or not reference:
            raise ValidationError("orderId et transactionId requis")
        with self.engine.connect() as conn:
            order = orders_repo.get_order(conn, order_id)
        if order is None or order["customer_id"] != customer_id:
            raise NotFoundError("Commande introuvable")
        if order["status"] == orders_repo.PAYMENT_FAILED:
            raise ValidationError("Commande non payable", code="order_not_payable")
        if order.get("gateway_reference") != reference:
            raise ValidationError("Référence de paiement inconnue pour cette commande", code="reference_mismatch")
        return self._verify_and_settle(order, reference)

    def handle_gateway_notification(self, gateway_name: str, reference: str,
                                    order_id: Optional[str] = None) -> Optional[SettlementResult]:
        """
        Notification asynchrone de la passerelle (webhook).
        Le contenu de la notification ne sert qu'à retrouver la commande.
        `order_id` (métadonnées de l'intention) doit désigner la même commande que la référence.
        """
        with self.engine.connect() as conn:
            order = orders_repo.find_order_by_reference(conn, gateway_name, reference)
        if order is None:
            logger.info("checkout.notification ignored gateway=%s reference=%s", gateway_name, reference)
            return None
        if order_id and order_id != order["id"]:
            logger.warning("checkout.notification order mismatch gateway=%s reference=%s metadata_order_id=%s order_id=%s",
                           gateway_name, reference, order_id, order["id"])
            return None
        return self._verify_and_settle(order, reference)

    def _verify_and_settle(self, order: Dict[str, Any], reference: str) -> SettlementResult:
        gateway = self._gateway(order["payment_method"])
        status = gateway.retrieve_status(reference)
        if status.status == REQUIRES_CAPTURE:
            status = gateway.capture(reference)

        current = CheckoutState(order["checkout_state"])
        if not status.succeeded:
            if status.status == FAILED and current == CheckoutState.INTENT_CREATED:
                with self.engine.begin() as conn:
                    orders_repo.mark_payment_failed(conn, order["id"], CheckoutState.PAYMENT_FAILED.value)
                self._log_state(order["id"], current, CheckoutState.PAYMENT_FAILED, gateway_status=status.status)
            logger.info("checkout.confirm not succeeded order_id=%s status=%s", order["id"], status.status)
            raise PaymentNotConfirmedError("Paiement non confirmé", gateway_status=status.status)

        if current == CheckoutState.INTENT_CREATED:
            with self.engine.begin() as conn:
                orders_repo.update_state(
                    conn,
                    order["id"],
                    from_states=[CheckoutState.INTENT_CREATED.value],
                    checkout_state=CheckoutState.PAYMENT_CONFIRMED.value,
                )
            current = self._log_state(order["id"], current, CheckoutState.PAYMENT_CONFIRMED,
                                      transaction_id=status.transaction_id)

        result = self.settlement.settle(order["id"], status)
        if not result.already_settled:
            self._log_state(order["id"], current, CheckoutState.ORDER_SETTLED)
        return result
