from fastapi import FastAPI, Depends
from fastapi.testclient import TestClient
from unittest.mock import MagicMock
import pytest

from marketplace.utils import security as security_mod
from marketplace.utils.security import (
    COOKIE_NAME,
    determine_role,
    get_current_user,
    require_admin,
    require_merchant,
)

def _make_app():
    app = FastAPI()

    @app.get("/me")
    def me(user=Depends(get_current_user)):
        return user

    @app.get("/admin")
    def admin(user=Depends(require_admin)):
        return {"ok": True}

    @app.get("/merchant")
    def merchant(user=Depends(require_merchant)):
        return {"merchant_id": user["merchant_id"]}

    return app

def _fake_supabase(user):
    sb = MagicMock()
    sb.auth.get_user.return_value = MagicMock(user=user)
    return sb

@pytest.mark.parametrize("metadata,expected", [
    ({"role": "admin"}, "admin"),
    ({"role": "MERCHANT"}, "merchant"),
    ({"role": "scanner"}, "customer"),
    (None, "customer"),
])
def test_determine_role(metadata, expected):
    assert determine_role(metadata) == expected

def test_current_user_requires_token():
    client = TestClient(_make_app())
    assert client.get("/me").status_code == 401

def test_current_user_from_bearer(monkeypatch):
    user = {"id": "u1", "email": "u1@example.com", "user_metadata": {"role": "merchant"}}
    monkeypatch.setattr(security_mod.supabase_client, "get_supabase", lambda: _fake_supabase(user))
    client = TestClient(_make_app())

    res = client.get("/me", headers={"Authorization": "Bearer abc"})

    assert res.status_code == 200
    assert res.json()["role"] == "merchant"
    assert res.json()["token"] == "abc"

def test_current_user_from_cookie(monkeypatch):
    user = {"id": "u1", "email": "u1@example.com", "user_metadata": {}}
    monkeypatch.setattr(security_mod.supabase_client, "get_supabase", lambda: _fake_supabase(user))
    client = TestClient(_make_app())
    client.cookies.set(COOKIE_NAME, "cookie-token")

    res = client.get("/me")

    assert res.status_code == 200
    assert res.json()["role"] == "customer"

def test_rejected_token_is_401(monkeypatch):
    sb = MagicMock()
    sb.auth.get_user.side_effect = RuntimeError("invalid JWT")
    monkeypatch.setattr(security_mod.supabase_client, "get_supabase", lambda: sb)
    client = TestClient(_make_app())

    assert client.get("/me", headers={"Authorization": "Bearer bad"}).status_code == 401

def test_require_admin_forbidden_for_customer():
    app = _make_app()
    app.dependency_overrides[get_current_user] = lambda: {"id": "u1", "role": "customer"}
    client = TestClient(app)

    res = client.get("/admin")

    assert res.status_code == 403
    assert res.json()["detail"] == "Accès interdit"

def test_require_merchant_resolves_merchant_id(monkeypatch):
    app = _make_app()
    app.dependency_overrides[get_current_user] = lambda: {"id": "u1", "role": "merchant"}
    monkeypatch.setattr(security_mod.catalog_repo, "get_merchant_id_for_user", lambda user_id: "m1")
    client = TestClient(app)

    assert client.get("/merchant").json() == {"merchant_id": "m1"}

def test_require_merchant_rejects_customer():
    app = _make_app()
    app.dependency_overrides[get_current_user] = lambda: {"id": "u1", "role": "customer"}
    client = TestClient(app)

    assert client.get("/merchant").status_code == 403

def test_require_merchant_without_merchant_row_is_404(monkeypatch):
    app = _make_app()
    app.dependency_overrides[get_current_user] = lambda: {"id": "u1", "role": "merchant"}
    monkeypatch.setattr(security_mod.catalog_repo, "get_merchant_id_for_user", lambda user_id: None)
    client = TestClient(app)

    assert client.get("/merchant").status_code == 404
