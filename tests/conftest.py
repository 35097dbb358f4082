import copy
from decimal import Decimal
from typing import Any, Dict, Generator

import pytest
from fastapi.testclient import TestClient
from unittest.mock import MagicMock

from marketplace.app import create_app
from marketplace.infra.database import build_engine, create_schema
from marketplace.payments.gateways.fake_gateway import FakeGateway
from marketplace.services import build_services
from marketplace.utils.security import require_admin, require_merchant, require_user

# Marquage automatique selon le dossier
def pytest_collection_modifyitems(config, items):
    for item in items:
        nodeid = item.nodeid.replace("\\", "/")
        if "tests/unit/" in nodeid:
            item.add_marker(pytest.mark.unit)
        elif "tests/integration/" in nodeid:
            item.add_marker(pytest.mark.integration)

# Catalogue de test: M1 vend p1 (10.00) et p2 (5.00), M2 vend p3 (20.00)
CATALOG: Dict[str, Dict[str, Any]] = {
    "p1": {"id": "p1", "title": "Mug", "price": "10.00", "merchant_id": "m1"},
    "p2": {"id": "p2", "title": "Poster", "price": "5.00", "merchant_id": "m1"},
    "p3": {"id": "p3", "title": "Lampe", "price": "20.00", "merchant_id": "m2"},
}

CUSTOMER = {"id": "cust-1", "email": "buyer@example.com", "role": "customer", "metadata": {}, "token": "fake-token"}
MERCHANT = {"id": "user-m1", "email": "m1@example.com", "role": "merchant", "metadata": {}, "token": "fake-token", "merchant_id": "m1"}
ADMIN = {"id": "admin-1", "email": "admin@example.com", "role": "admin", "metadata": {}, "token": "fake-token"}

@pytest.fixture
def catalog() -> Dict[str, Dict[str, Any]]:
    return copy.deepcopy(CATALOG)

@pytest.fixture
def fetch_products(catalog):
    def _fetch(ids):
        return {i: catalog[i] for i in ids if i in catalog}
    return _fetch

@pytest.fixture
def engine():
    eng = build_engine("sqlite://")
    create_schema(eng)
    yield eng
    eng.dispose()

@pytest.fixture
def gateways():
    return {"stripe": FakeGateway("stripe"), "paypal": FakeGateway("paypal", capture_style=True)}

@pytest.fixture
def notifier():
    return MagicMock(return_value=2)

@pytest.fixture
def services(engine, gateways, fetch_products, notifier):
    return build_services(
        engine=engine,
        gateways=gateways,
        fetch_products=fetch_products,
        notifier=notifier,
        commission_rate=Decimal("0.20"),
        currency="CHF",
    )

@pytest.fixture
def ledger(services):
    return services.ledger

@pytest.fixture
def settlement(services):
    return services.settlement

@pytest.fixture
def orchestrator(services):
    return services.orchestrator

@pytest.fixture
def app(services):
    application = create_app(services)
    # Simuler les utilisateurs authentifiés pour les endpoints protégés
    application.dependency_overrides[require_user] = lambda: dict(CUSTOMER)
    application.dependency_overrides[require_merchant] = lambda: dict(MERCHANT)
    application.dependency_overrides[require_admin] = lambda: dict(ADMIN)
    return application

@pytest.fixture
def client(app) -> Generator[TestClient, None, None]:
    with TestClient(app) as c:
        yield c
