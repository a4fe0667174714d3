from __future__ import annotations

import json
from typing import Any, Callable, Dict, Optional, Tuple

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response
from sqlalchemy.orm import Session

from dispute_manager.models_sqlalchemy import get_db
from dispute_manager.services import compliance
from dispute_manager.services.billing import PLAN_MONTHLY, update_shop_billing
from dispute_manager.services.dispute_sync import parse_timestamp
from dispute_manager.services.shop_service import shop_service
from dispute_manager.services.shopify_auth import WebhookVerificationError, verify_webhook_hmac
from dispute_manager.utils.logger import logger, sanitize_credentials


router = APIRouter(prefix="/webhooks", tags=["shopify_webhooks"])

TOPIC_DATA_REQUEST = "customers/data_request"
TOPIC_CUSTOMERS_REDACT = "customers/redact"
TOPIC_SHOP_REDACT = "shop/redact"
TOPIC_SUBSCRIPTIONS_UPDATE = "app_subscriptions/update"


def normalize_topic(topic: Optional[str]) -> str:
    """Map both ``CUSTOMERS_REDACT`` and ``customers/redact`` spellings to the latter."""

    value = (topic or "").strip()
    if "/" in value:
        return value.lower()
    upper = value.upper()
    if upper.startswith("CUSTOMERS_"):
        return "customers/" + upper[len("CUSTOMERS_"):].lower()
    if upper.startswith("SHOP_"):
        return "shop/" + upper[len("SHOP_"):].lower()
    if upper.startswith("APP_SUBSCRIPTIONS_"):
        return "app_subscriptions/" + upper[len("APP_SUBSCRIPTIONS_"):].lower()
    return value.lower()


async def _read_verified(request: Request) -> Tuple[str, Optional[str], Dict[str, Any]]:
    raw_body = await request.body()
    logger.debug(f"Webhook headers: {sanitize_credentials(dict(request.headers))}")
    verify_webhook_hmac(raw_body, request.headers.get("X-Shopify-Hmac-Sha256"))

    topic = normalize_topic(request.headers.get("X-Shopify-Topic"))
    shop_domain = request.headers.get("X-Shopify-Shop-Domain")
    payload = json.loads(raw_body) if raw_body else {}
    if not isinstance(payload, dict):
        payload = {}
    logger.info(f"Received {topic} webhook for {shop_domain}")
    return topic, shop_domain, payload


async def _handle(
    request: Request,
    db: Session,
    handlers: Dict[str, Callable[[Session, Dict[str, Any]], Any]],
    label: str,
) -> Response:
    """Verify, dispatch on topic, and always acknowledge with 200 unless the HMAC is bad."""
    try:
        topic, _shop_domain, payload = await _read_verified(request)
        handler = handlers.get(topic)
        if handler is None:
            logger.info(f"Ignoring {topic!r} on {label} webhook endpoint")
        else:
            handler(db, payload)
        return Response(status_code=200)
    except WebhookVerificationError as exc:
        logger.error(f"Invalid HMAC signature on {label} webhook: {exc}")
        return Response(content="Unauthorized", status_code=401)
    except Exception as exc:
        logger.error(f"Error processing {label} webhook: {exc}", exc_info=True)
        db.rollback()
        return Response(status_code=200)


@router.post("/customers/data_request")
async def customers_data_request(request: Request, db: Session = Depends(get_db)) -> Response:
    return await _handle(request, db, {TOPIC_DATA_REQUEST: compliance.collect_customer_data}, "data request")


@router.post("/customers/redact")
async def customers_redact(request: Request, db: Session = Depends(get_db)) -> Response:
    return await _handle(request, db, {TOPIC_CUSTOMERS_REDACT: compliance.redact_customer}, "customer redact")


@router.post("/shop/redact")
async def shop_redact(request: Request, db: Session = Depends(get_db)) -> Response:
    return await _handle(request, db, {TOPIC_SHOP_REDACT: compliance.redact_shop}, "shop redact")


@router.post("/compliance")
async def compliance_webhook(request: Request, db: Session = Depends(get_db)) -> Response:
    """Single endpoint for all three mandatory privacy topics."""
    return await _handle(
        request,
        db,
        {
            TOPIC_DATA_REQUEST: compliance.collect_customer_data,
            TOPIC_CUSTOMERS_REDACT: compliance.redact_customer,
            TOPIC_SHOP_REDACT: compliance.redact_shop,
        },
        "compliance",
    )


@router.post("/app/subscriptions/update")
async def app_subscriptions_update(request: Request, db: Session = Depends(get_db)) -> Response:
    """Mirror subscription status changes onto the shop's billing columns."""
    try:
        topic, shop_domain, payload = await _read_verified(request)
    except WebhookVerificationError as exc:
        logger.error(f"Invalid HMAC signature on subscriptions webhook: {exc}")
        return Response(content="Unauthorized", status_code=401)

    if topic != TOPIC_SUBSCRIPTIONS_UPDATE or not shop_domain:
        return Response(status_code=200)

    subscription = payload.get("app_subscription") or payload
    shop = shop_service.get_or_create_shop(db, shop_domain)
    update_shop_billing(
        db,
        shop,
        billing_active=subscription.get("status") == "ACTIVE",
        billing_subscription_id=subscription.get("admin_graphql_api_id") or subscription.get("id"),
        billing_plan=PLAN_MONTHLY,
        subscription_start_date=parse_timestamp(subscription.get("created_at")),
        subscription_end_date=parse_timestamp(subscription.get("current_period_end")),
    )
    logger.info(f"Billing for {shop_domain} updated from subscription status {subscription.get('status')}")
    return Response(status_code=200)
