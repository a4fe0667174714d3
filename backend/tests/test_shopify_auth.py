import time
from urllib.parse import parse_qs, urlparse

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient
from jose import jwt

from dispute_manager.main import app
from dispute_manager.models_sqlalchemy import get_db
from dispute_manager.models_sqlalchemy.models import Shop, ShopifySession
from dispute_manager.services import shopify_auth
from dispute_manager.services.shopify_auth import (
    WebhookVerificationError,
    build_authorize_url,
    compute_oauth_hmac,
    compute_webhook_hmac,
    decode_session_token,
    verify_oauth_hmac,
    verify_webhook_hmac,
)


def _session_token(**overrides):
    now = int(time.time())
    claims = {
        "iss": "https://demo.myshopify.com/admin",
        "dest": "https://demo.myshopify.com",
        "aud": "test-api-key",
        "sub": "42",
        "exp": now + 60,
        "nbf": now - 5,
        "iat": now - 5,
    }
    claims.update(overrides)
    return jwt.encode(claims, "test-api-secret", algorithm="HS256")


def test_webhook_hmac_roundtrip_and_tamper():
    body = b'{"shop_domain":"demo.myshopify.com"}'
    signature = compute_webhook_hmac(body)

    verify_webhook_hmac(body, signature)
    with pytest.raises(WebhookVerificationError):
        verify_webhook_hmac(body + b" ", signature)
    with pytest.raises(WebhookVerificationError):
        verify_webhook_hmac(body, None)


def test_missing_api_secret_refuses_to_verify(monkeypatch):
    monkeypatch.setattr(shopify_auth.settings, "SHOPIFY_API_SECRET", None)
    with pytest.raises(WebhookVerificationError, match="SHOPIFY_API_SECRET"):
        verify_webhook_hmac(b"{}", "anything")


def test_oauth_hmac_ignores_hmac_param_and_sorts_keys():
    params = {"shop": "demo.myshopify.com", "code": "abc", "timestamp": "1700000000", "state": "xyz"}
    params["hmac"] = compute_oauth_hmac(params)

    verify_oauth_hmac(params)

    params["code"] = "tampered"
    with pytest.raises(WebhookVerificationError):
        verify_oauth_hmac(params)


def test_authorize_url_carries_scopes_and_state():
    url = build_authorize_url("demo.myshopify.com", "state-123")
    parsed = urlparse(url)
    query = parse_qs(parsed.query)

    assert parsed.netloc == "demo.myshopify.com"
    assert parsed.path == "/admin/oauth/authorize"
    assert query["client_id"] == ["test-api-key"]
    assert query["state"] == ["state-123"]
    assert query["redirect_uri"][0].endswith("/auth/callback")


def test_session_token_yields_shop_from_dest():
    claims = decode_session_token(_session_token())
    assert claims["shop"] == "demo.myshopify.com"


@pytest.mark.parametrize("overrides", [
    {"aud": "someone-else"},
    {"exp": int(time.time()) - 60},
    {"dest": "https://evil.example.com"},
])
def test_bad_session_tokens_are_rejected(overrides):
    with pytest.raises(HTTPException) as excinfo:
        decode_session_token(_session_token(**overrides))
    assert excinfo.value.status_code == 401


def test_session_token_signed_with_wrong_secret_is_rejected():
    token = jwt.encode({"dest": "https://demo.myshopify.com", "aud": "test-api-key"}, "wrong", algorithm="HS256")
    with pytest.raises(HTTPException):
        decode_session_token(token)


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_db, None)


def test_billing_status_requires_installed_shop(client):
    response = client.get("/api/billing", headers={"Authorization": f"Bearer {_session_token()}"})
    assert response.status_code == 401


def test_install_redirects_to_shopify_and_sets_state_cookie(client):
    response = client.get("/auth", params={"shop": "demo.myshopify.com"}, follow_redirects=False)

    assert response.status_code == 302
    assert response.headers["location"].startswith("https://demo.myshopify.com/admin/oauth/authorize?")
    assert "shopify_oauth_state=" in response.headers["set-cookie"]


def test_install_rejects_non_shopify_domains(client):
    assert client.get("/auth", params={"shop": "evil.example.com"}).status_code == 400


def test_callback_stores_offline_session_and_starts_trial(client, db, monkeypatch):
    async def fake_exchange(shop_domain, code):
        assert code == "the-code"
        return {"access_token": "shpat_new_token", "scope": "read_orders"}

    monkeypatch.setattr("dispute_manager.routers.auth.exchange_code_for_token", fake_exchange)

    params = {"shop": "demo.myshopify.com", "code": "the-code", "state": "s1", "timestamp": "1700000000"}
    params["hmac"] = compute_oauth_hmac(params)
    client.cookies.set("shopify_oauth_state", "s1")

    response = client.get("/auth/callback", params=params, follow_redirects=False)

    assert response.status_code == 302
    stored = db.get(ShopifySession, "offline_demo.myshopify.com")
    assert stored is not None
    assert stored.access_token == "shpat_new_token"
    assert stored._access_token.startswith("ENC:v1:")

    shop = db.query(Shop).filter(Shop.shop_domain == "demo.myshopify.com").one()
    assert shop.access_token == "shpat_new_token"
    assert shop.billing_plan == "trial"
    assert shop.trial_end_date is not None


def test_callback_with_wrong_state_is_rejected(client):
    params = {"shop": "demo.myshopify.com", "code": "c", "state": "not-it", "timestamp": "1"}
    params["hmac"] = compute_oauth_hmac(params)
    client.cookies.set("shopify_oauth_state", "expected")

    assert client.get("/auth/callback", params=params).status_code == 401
