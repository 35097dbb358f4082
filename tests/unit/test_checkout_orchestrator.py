import pytest

from marketplace.checkout import repository as orders_repo
from marketplace.checkout.metadata import extract_metadata
from marketplace.checkout.orchestrator import intent_idempotency_key, parse_checkout_request
from marketplace.errors import (
    ConsistencyError,
    GatewayError,
    NotFoundError,
    PaymentNotConfirmedError,
    ProductNotFoundError,
    ValidationError,
)
from marketplace.payments.gateways.port import FAILED

CART = [{"productId": "p1", "quantity": 2}, {"productId": "p2", "quantity": 1}, {"productId": "p3", "quantity": 1}]

def _request(method="stripe", cart=None, **extra):
    body = {"cart": cart or CART, "shippingAddress": "Rue du Lac 1, Genève", "paymentMethod": method}
    body.update(extra)
    return parse_checkout_request(body, "CHF", ["stripe", "paypal"])

def _order(engine, order_id):
    with engine.connect() as conn:
        return orders_repo.get_order(conn, order_id)

# --- parse_checkout_request ---

@pytest.mark.parametrize("body,code", [
    ({"cart": CART, "paymentMethod": "stripe"}, "invalid_address"),
    ({"cart": CART, "shippingAddress": "  ", "paymentMethod": "stripe"}, "invalid_address"),
    ({"cart": CART, "shippingAddress": "Rue 1", "paymentMethod": "stripe", "currency": "EUR"}, "invalid_currency"),
    ({"cart": CART, "shippingAddress": "Rue 1", "paymentMethod": "bitcoin"}, "invalid_payment_method"),
    ({"cart": [], "shippingAddress": "Rue 1", "paymentMethod": "stripe"}, "empty_cart"),
])
def test_parse_checkout_request_rejects(body, code):
    with pytest.raises(ValidationError) as exc:
        parse_checkout_request(body, "CHF", ["stripe", "paypal"])
    assert exc.value.code == code

def test_parse_checkout_request_normalizes():
    req = _request(method=" PayPal ", currency="chf", returnUrl="https://shop.test/retour")
    assert req.payment_method == "paypal"
    assert req.currency == "CHF"
    assert req.return_url == "https://shop.test/retour"
    assert [l.quantity for l in req.lines] == [2, 1, 1]

# --- start_checkout ---

def test_start_checkout_persists_order_and_creates_intent(orchestrator, gateways, engine):
    # Act
    result = orchestrator.start_checkout("cust-1", _request())

    # Assert
    data = result.to_dict()
    assert data["status"] == "PAYMENT_REQUIRED"
    assert data["payment"]["method"] == "stripe"
    assert data["payment"]["clientSecret"].endswith("_secret")
    assert data["cartData"]["grandTotal"] == 45.0

    order = _order(engine, result.order_id)
    assert order["status"] == "PENDING_PAYMENT"
    assert order["checkout_state"] == "INTENT_CREATED"
    assert order["grand_total_minor"] == 4500
    assert order["gateway_reference"] == result.handle.reference
    assert [so["payout_minor"] for so in order["sub_orders"]] == [2000, 1600]

    call = gateways["stripe"].calls[0]
    assert call["amount"] == 45
    assert call["currency"] == "CHF"
    assert call["idempotency_key"] == intent_idempotency_key(order["checkout_key"], result.order_id)
    meta = extract_metadata(call["metadata"])
    assert meta["orderId"] == result.order_id
    assert meta["customerId"] == "cust-1"
    assert meta["cart"] == CART
    assert meta["split"]["subOrders"][1]["merchantId"] == "m2"

def test_retry_of_same_checkout_replays_intent(orchestrator, gateways):
    first = orchestrator.start_checkout("cust-1", _request())

    second = orchestrator.start_checkout("cust-1", _request())

    assert second.order_id == first.order_id
    assert second.handle.reference == first.handle.reference
    assert second.handle.client_secret == first.handle.client_secret
    assert second.replayed is True
    assert len([c for c in gateways["stripe"].calls if c["method"] == "create_intent"]) == 1

def test_different_cart_opens_new_order(orchestrator):
    first = orchestrator.start_checkout("cust-1", _request())
    second = orchestrator.start_checkout("cust-1", _request(cart=[{"productId": "p1", "quantity": 1}]))
    assert second.order_id != first.order_id

def test_unknown_product_fails_before_any_persistence(orchestrator, gateways, engine):
    with pytest.raises(ProductNotFoundError):
        orchestrator.start_checkout("cust-1", _request(cart=[{"productId": "zzz", "quantity": 1}]))
    assert gateways["stripe"].calls == []

def test_gateway_failure_marks_order_failed_and_surfaces_details(orchestrator, gateways, engine):
    # Arrange
    gateways["stripe"].configure(True, type="card_error", code="card_declined",
                                 decline_code="insufficient_funds", request_id="req_123")

    # Act
    with pytest.raises(GatewayError) as exc:
        orchestrator.start_checkout("cust-1", _request())

    # Assert
    err = exc.value
    assert err.details["type"] == "card_error"
    assert err.details["declineCode"] == "insufficient_funds"
    assert err.details["requestId"] == "req_123"
    key_call = gateways["stripe"].calls[0]
    meta = extract_metadata(key_call["metadata"])
    order = _order(engine, meta["orderId"])
    assert order["status"] == "PAYMENT_FAILED"
    assert order["checkout_state"] == "PAYMENT_FAILED"
    assert {so["status"] for so in order["sub_orders"]} == {"CANCELLED"}

def test_new_attempt_after_gateway_failure_opens_new_order(orchestrator, gateways):
    gateways["stripe"].configure(True, type="api_connection_error")
    with pytest.raises(GatewayError):
        orchestrator.start_checkout("cust-1", _request())
    gateways["stripe"].configure(False)

    result = orchestrator.start_checkout("cust-1", _request())

    assert result.handle.reference

def test_unexpected_gateway_exception_is_wrapped(orchestrator, gateways, monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError("socket closed")
    monkeypatch.setattr(gateways["stripe"], "create_intent", boom)

    with pytest.raises(GatewayError) as exc:
        orchestrator.start_checkout("cust-1", _request())
    assert exc.value.type == "api_error"
    assert exc.value.gateway == "stripe"

# --- confirmation ---

def test_confirm_settles_after_gateway_success(orchestrator, gateways, ledger, engine):
    started = orchestrator.start_checkout("cust-1", _request())
    gateways["stripe"].complete(started.handle.reference)

    result = orchestrator.confirm_payment(started.order_id, "cust-1", started.handle.reference)

    assert result.already_settled is False
    assert ledger.get_balance("m1")["available"] == 20.0
    assert ledger.get_balance("m2")["available"] == 16.0
    order = _order(engine, started.order_id)
    assert (order["status"], order["checkout_state"]) == ("PAID", "ORDER_SETTLED")

def test_confirm_twice_credits_once(orchestrator, gateways, ledger):
    started = orchestrator.start_checkout("cust-1", _request())
    gateways["stripe"].complete(started.handle.reference)
    orchestrator.confirm_payment(started.order_id, "cust-1", started.handle.reference)

    again = orchestrator.confirm_payment(started.order_id, "cust-1", started.handle.reference)

    assert again.already_settled is True
    assert ledger.get_balance("m1")["available"] == 20.0

def test_confirm_before_payment_is_rejected(orchestrator, ledger, engine):
    started = orchestrator.start_checkout("cust-1", _request())

    with pytest.raises(PaymentNotConfirmedError) as exc:
        orchestrator.confirm_payment(started.order_id, "cust-1", started.handle.reference)

    assert exc.value.gateway_status == "pending"
    assert ledger.get_balance("m1")["available"] == 0.0
    assert _order(engine, started.order_id)["checkout_state"] == "INTENT_CREATED"

def test_confirm_failed_payment_marks_order_failed(orchestrator, gateways, engine):
    started = orchestrator.start_checkout("cust-1", _request())
    gateways["stripe"].set_status(started.handle.reference, FAILED)

    with pytest.raises(PaymentNotConfirmedError):
        orchestrator.confirm_payment(started.order_id, "cust-1", started.handle.reference)

    assert _order(engine, started.order_id)["status"] == "PAYMENT_FAILED"
    with pytest.raises(ValidationError) as exc:
        orchestrator.confirm_payment(started.order_id, "cust-1", started.handle.reference)
    assert exc.value.code == "order_not_payable"

def test_confirm_with_foreign_reference_is_rejected(orchestrator, gateways):
    started = orchestrator.start_checkout("cust-1", _request())

    with pytest.raises(ValidationError) as exc:
        orchestrator.confirm_payment(started.order_id, "cust-1", "pi_someone_else")
    assert exc.value.code == "reference_mismatch"

def test_confirm_other_customers_order_is_not_found(orchestrator):
    started = orchestrator.start_checkout("cust-1", _request())
    with pytest.raises(NotFoundError):
        orchestrator.confirm_payment(started.order_id, "cust-2", started.handle.reference)

def test_amount_tampered_at_gateway_is_not_settled(orchestrator, gateways, ledger, engine):
    started = orchestrator.start_checkout("cust-1", _request())
    gateways["stripe"].complete(started.handle.reference, amount=1)

    with pytest.raises(ConsistencyError):
        orchestrator.confirm_payment(started.order_id, "cust-1", started.handle.reference)

    assert ledger.get_balance("m1")["available"] == 0.0

def test_paypal_flow_captures_before_settling(orchestrator, gateways, ledger):
    started = orchestrator.start_checkout("cust-1", _request(method="paypal", returnUrl="https://shop.test/retour"))
    data = started.to_dict()
    assert data["payment"]["gatewayOrderId"] == started.handle.reference
    assert data["payment"]["approvalUrl"].startswith("https://fake.test/approve/")
    assert data["payment"]["returnUrl"] == "https://shop.test/retour"
    gateways["paypal"].complete(started.handle.reference)

    result = orchestrator.confirm_payment(started.order_id, "cust-1", started.handle.reference)

    assert result.transaction_id == f"{started.handle.reference}_capture"
    assert [c["method"] for c in gateways["paypal"].calls][-2:] == ["retrieve_status", "capture"]
    assert ledger.get_balance("m2")["available"] == 16.0

def test_gateway_notification_settles_known_order(orchestrator, gateways, ledger):
    started = orchestrator.start_checkout("cust-1", _request())
    gateways["stripe"].complete(started.handle.reference)

    result = orchestrator.handle_gateway_notification("stripe", started.handle.reference)

    assert result.order_id == started.order_id
    assert ledger.get_balance("m1")["available"] == 20.0

def test_gateway_notification_for_unknown_reference_is_ignored(orchestrator):
    assert orchestrator.handle_gateway_notification("stripe", "pi_unknown") is None

def test_gateway_notification_with_other_order_in_metadata_is_ignored(orchestrator, gateways, ledger, engine):
    started = orchestrator.start_checkout("cust-1", _request())
    gateways["stripe"].complete(started.handle.reference)

    result = orchestrator.handle_gateway_notification("stripe", started.handle.reference, order_id="other-order")

    assert result is None
    assert ledger.get_balance("m1")["available"] == 0.0
    assert _order(engine, started.order_id)["status"] == "PENDING_PAYMENT"

def test_gateway_notification_with_matching_metadata_settles(orchestrator, gateways, ledger):
    started = orchestrator.start_checkout("cust-1", _request())
    gateways["stripe"].complete(started.handle.reference)

    result = orchestrator.handle_gateway_notification("stripe", started.handle.reference, order_id=started.order_id)

    assert result.order_id == started.order_id
    assert ledger.get_balance("m2")["available"] == 16.0
