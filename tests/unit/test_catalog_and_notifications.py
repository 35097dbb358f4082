from unittest.mock import MagicMock

import pytest

from marketplace.catalog import repository as catalog_repo
from marketplace.errors import CatalogUnavailableError
from marketplace.notifications import service as notifications

@pytest.fixture
def service_sb(monkeypatch):
    sb = MagicMock()
    monkeypatch.setattr(catalog_repo.supabase_client, "get_service_supabase", lambda: sb)
    return sb

def test_get_products_map_indexes_by_id(service_sb):
    # Arrange
    chain = service_sb.table.return_value.select.return_value.in_.return_value
    chain.execute.return_value = MagicMock(data=[
        {"id": 1, "title": "Mug", "price": "10.00", "merchant_id": "m1"},
        {"id": "p3", "title": "Lampe", "price": "20.00", "merchant_id": "m2"},
    ])

    # Act
    products = catalog_repo.get_products_map(["1", "p3"])

    # Assert
    assert set(products) == {"1", "p3"}
    service_sb.table.assert_called_with("products")
    service_sb.table.return_value.select.assert_called_with(catalog_repo.PRODUCT_COLUMNS)

def test_fetch_products_empty_ids_skips_query(service_sb):
    assert catalog_repo.fetch_products_by_ids([]) == []
    service_sb.table.assert_not_called()

def test_catalog_failure_is_unavailable_not_invalid_cart(service_sb):
    service_sb.table.side_effect = RuntimeError("connection reset")
    with pytest.raises(CatalogUnavailableError) as exc:
        catalog_repo.fetch_products_by_ids(["p1"])
    assert exc.value.status_code == 500

def test_get_merchant_id_for_user(service_sb):
    chain = service_sb.table.return_value.select.return_value.eq.return_value.limit.return_value
    chain.execute.return_value = MagicMock(data=[{"id": 42}])

    assert catalog_repo.get_merchant_id_for_user("u1") == "42"
    service_sb.table.return_value.select.return_value.eq.assert_called_with("user_id", "u1")

def test_notify_order_paid_counts_deliveries(monkeypatch):
    sb = MagicMock()
    sb.table.return_value.insert.return_value.execute.return_value = MagicMock(data=[{"id": 1}])
    monkeypatch.setattr(notifications.supabase_client, "get_service_supabase", lambda: sb)

    sent = notifications.notify_order_paid(
        order_id="o1", customer_id="c1", merchant_ids=["m1", "m2"], amount=45.0, currency="CHF",
    )

    assert sent == 3
    first = sb.table.return_value.insert.call_args_list[0].args[0]
    assert first == {"recipient_id": "c1", "kind": "order_paid",
                     "payload": {"orderId": "o1", "amount": 45.0, "currency": "CHF"}}

def test_notify_order_paid_never_raises(monkeypatch):
    def down():
        raise RuntimeError("supabase down")
    monkeypatch.setattr(notifications.supabase_client, "get_service_supabase", down)

    assert notifications.notify_order_paid(
        order_id="o1", customer_id="c1", merchant_ids=["m1"], amount=10.0, currency="CHF",
    ) == 0
