import json

import pytest
from fastapi.testclient import TestClient

from dispute_manager.main import app
from dispute_manager.models_sqlalchemy import get_db
from dispute_manager.models_sqlalchemy.models import Dispute, Shop
from dispute_manager.routers.webhooks import normalize_topic
from dispute_manager.services.shopify_auth import compute_webhook_hmac


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_db, None)


def _post(client, path, payload, topic, *, signature=None, shop="demo.myshopify.com"):
    body = json.dumps(payload).encode("utf-8")
    headers = {
        "Content-Type": "application/json",
        "X-Shopify-Topic": topic,
        "X-Shopify-Shop-Domain": shop,
        "X-Shopify-Hmac-Sha256": signature if signature is not None else compute_webhook_hmac(body),
    }
    return client.post(path, content=body, headers=headers)


@pytest.mark.parametrize("raw, expected", [
    ("customers/data_request", "customers/data_request"),
    ("CUSTOMERS_DATA_REQUEST", "customers/data_request"),
    ("CUSTOMERS_REDACT", "customers/redact"),
    ("SHOP_REDACT", "shop/redact"),
    ("APP_SUBSCRIPTIONS_UPDATE", "app_subscriptions/update"),
])
def test_topic_spellings_are_normalized(raw, expected):
    assert normalize_topic(raw) == expected


def test_invalid_hmac_is_rejected_with_401(client, shop, db):
    response = _post(
        client,
        "/webhooks/shop/redact",
        {"shop_domain": "demo.myshopify.com"},
        "shop/redact",
        signature="bm90LXRoZS1yaWdodC1zaWduYXR1cmU=",
    )

    assert response.status_code == 401
    assert db.query(Shop).count() == 1


def test_missing_hmac_header_is_rejected(client):
    body = b"{}"
    response = client.post(
        "/webhooks/compliance",
        content=body,
        headers={"Content-Type": "application/json", "X-Shopify-Topic": "shop/redact"},
    )
    assert response.status_code == 401


def test_shop_redact_webhook_removes_shop(client, shop, db):
    db.add(Dispute(shop=shop, shopify_dispute_id="1", status="open"))
    db.commit()

    response = _post(client, "/webhooks/shop/redact", {"shop_id": 1, "shop_domain": "demo.myshopify.com"}, "shop/redact")

    assert response.status_code == 200
    assert db.query(Shop).count() == 0
    assert db.query(Dispute).count() == 0


def test_unknown_shop_is_acknowledged(client):
    response = _post(client, "/webhooks/shop/redact", {"shop_domain": "ghost.myshopify.com"}, "shop/redact")
    assert response.status_code == 200


def test_combined_endpoint_dispatches_customer_redact(client, shop, db):
    db.add(Dispute(shop=shop, shopify_dispute_id="1", order_id="100", customer_email="jane@example.com"))
    db.commit()

    response = _post(
        client,
        "/webhooks/compliance",
        {"shop_domain": "demo.myshopify.com", "customer": {"id": 7, "email": "jane@example.com"}, "orders_to_redact": []},
        "CUSTOMERS_REDACT",
    )

    assert response.status_code == 200
    assert db.query(Dispute).one().customer_email is None


def test_processing_errors_still_return_200(client, shop, monkeypatch):
    from dispute_manager.services import compliance

    def boom(db, payload):
        raise RuntimeError("database went away")

    monkeypatch.setattr(compliance, "collect_customer_data", boom)

    response = _post(
        client,
        "/webhooks/compliance",
        {"shop_domain": "demo.myshopify.com", "customer": {"id": 1}, "data_request": {"id": 2}},
        "customers/data_request",
    )

    assert response.status_code == 200


def test_subscription_update_activates_billing(client, shop, db):
    payload = {
        "app_subscription": {
            "admin_graphql_api_id": "gid://shopify/AppSubscription/77",
            "name": "monthly",
            "status": "ACTIVE",
            "created_at": "2024-02-01T00:00:00Z",
            "updated_at": "2024-02-01T00:00:00Z",
            "current_period_end": None,
        }
    }

    response = _post(client, "/webhooks/app/subscriptions/update", payload, "APP_SUBSCRIPTIONS_UPDATE")

    assert response.status_code == 200
    db.refresh(shop)
    assert shop.billing_active is True
    assert shop.billing_plan == "monthly"
    assert shop.billing_subscription_id == "gid://shopify/AppSubscription/77"
    assert shop.subscription_start_date is not None
    assert shop.subscription_end_date is None


def test_subscription_cancel_deactivates_billing(client, shop, db):
    shop.billing_active = True
    db.commit()

    payload = {"id": "sub-1", "status": "CANCELLED", "created_at": "2024-02-01T00:00:00Z"}
    response = _post(client, "/webhooks/app/subscriptions/update", payload, "app_subscriptions/update")

    assert response.status_code == 200
    db.refresh(shop)
    assert shop.billing_active is False
