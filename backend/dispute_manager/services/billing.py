from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from dispute_manager.config import settings
from dispute_manager.models_sqlalchemy.models import Shop
from dispute_manager.services.dispute_sync import parse_timestamp
from dispute_manager.services.shopify_graphql import ShopifyGraphQLError, execute_graphql
from dispute_manager.utils.logger import logger


PLAN_TRIAL = "trial"
PLAN_MONTHLY = "monthly"

MONTHLY_PRICE = 9.99
CURRENCY_CODE = "USD"
TRIAL_DAYS = 7

_TEST_DOMAIN_MARKERS = ("dev-", "test-", "staging-")

SHOP_PLAN_QUERY = """
query {
  shop {
    plan {
      displayName
      partnerDevelopment
    }
  }
}
"""

ACTIVE_SUBSCRIPTIONS_QUERY = """
query {
  currentAppInstallation {
    activeSubscriptions {
      id
      name
      status
      test
      trialDays
      createdAt
      currentPeriodEnd
    }
  }
}
"""

APP_SUBSCRIPTION_CREATE_MUTATION = """
mutation AppSubscriptionCreate(
  $name: String!
  $returnUrl: URL!
  $trialDays: Int
  $test: Boolean
  $replacementBehavior: AppSubscriptionReplacementBehavior
  $lineItems: [AppSubscriptionLineItemInput!]!
) {
  appSubscriptionCreate(
    name: $name
    returnUrl: $returnUrl
    trialDays: $trialDays
    test: $test
    replacementBehavior: $replacementBehavior
    lineItems: $lineItems
  ) {
    appSubscription {
      id
      status
    }
    confirmationUrl
    userErrors {
      field
      message
    }
  }
}
"""


class BillingError(RuntimeError):
    """Raised when Shopify rejects a subscription request."""


def _to_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _now(now: Optional[datetime]) -> datetime:
    return _to_utc(now) if now is not None else datetime.now(timezone.utc)


def is_on_trial(shop: Any, now: Optional[datetime] = None) -> bool:
    """True when ``now`` lies within ``[trial_start_date, trial_end_date]``
    (both ends inclusive) and no paid billing is active yet."""

    start = _to_utc(shop.trial_start_date)
    end = _to_utc(shop.trial_end_date)
    if start is None or end is None:
        return False
    current = _now(now)
    return start <= current <= end and not shop.billing_active


def has_active_billing(shop: Any, now: Optional[datetime] = None) -> bool:
    """Trial, or an active subscription that is open-ended or not yet past its end."""

    if is_on_trial(shop, now):
        return True

    if shop.billing_active:
        end = _to_utc(shop.subscription_end_date)
        if end is None:
            return True
        return _now(now) <= end

    return False


def trial_days_remaining(shop: Any, now: Optional[datetime] = None) -> int:
    end = _to_utc(shop.trial_end_date)
    if end is None:
        return 0
    seconds = (end - _now(now)).total_seconds()
    return max(0, math.ceil(seconds / 86400))


def initialize_trial(db: Session, shop: Shop, now: Optional[datetime] = None) -> Shop:
    current = _now(now)
    shop.trial_start_date = current
    shop.trial_end_date = current + timedelta(days=TRIAL_DAYS)
    shop.billing_active = False
    shop.billing_plan = PLAN_TRIAL
    shop.billing_last_checked_at = current
    db.commit()
    db.refresh(shop)
    logger.info(f"Started {TRIAL_DAYS}-day trial for {shop.shop_domain}")
    return shop


def update_shop_billing(
    db: Session,
    shop: Shop,
    *,
    billing_active: bool,
    billing_subscription_id: Optional[str] = None,
    billing_plan: Optional[str] = None,
    subscription_start_date: Optional[datetime] = None,
    subscription_end_date: Optional[datetime] = None,
) -> Shop:
    now = datetime.now(timezone.utc)
    shop.billing_active = billing_active
    shop.billing_subscription_id = billing_subscription_id
    if billing_plan is not None:
        shop.billing_plan = billing_plan
    shop.subscription_start_date = subscription_start_date
    shop.subscription_end_date = subscription_end_date
    shop.billing_last_checked_at = now
    shop.updated_at = now
    db.commit()
    db.refresh(shop)
    return shop


def is_test_domain(shop_domain: str) -> bool:
    return ".myshopify.com" in shop_domain and any(marker in shop_domain for marker in _TEST_DOMAIN_MARKERS)


async def is_test_store(client: Any, shop_domain: str) -> bool:
    """Development and partner test stores bypass billing.

    GraphQL errors on the plan query propagate as ``ShopifyGraphQLError``.
    """

    data = await execute_graphql(client, SHOP_PLAN_QUERY)
    plan = (data.get("shop") or {}).get("plan") or {}

    if plan.get("partnerDevelopment"):
        return True
    if "development" in str(plan.get("displayName") or "").lower():
        return True
    return is_test_domain(shop_domain)


async def get_active_subscription(client: Any, plan_name: str = PLAN_MONTHLY) -> Optional[Dict[str, Any]]:
    data = await execute_graphql(client, ACTIVE_SUBSCRIPTIONS_QUERY)
    subscriptions = (data.get("currentAppInstallation") or {}).get("activeSubscriptions") or []
    for subscription in subscriptions:
        if subscription.get("name") == plan_name and subscription.get("status") == "ACTIVE":
            return subscription
    return None


async def request_subscription(client: Any, return_url: str) -> str:
    """Create the monthly subscription and return its confirmation URL."""

    variables = {
        "name": PLAN_MONTHLY,
        "returnUrl": return_url,
        "trialDays": TRIAL_DAYS,
        "test": settings.BILLING_TEST_MODE,
        "replacementBehavior": "APPLY_IMMEDIATELY",
        "lineItems": [
            {
                "plan": {
                    "appRecurringPricingDetails": {
                        "price": {"amount": MONTHLY_PRICE, "currencyCode": CURRENCY_CODE},
                        "interval": "EVERY_30_DAYS",
                    }
                }
            }
        ],
    }

    try:
        data = await execute_graphql(client, APP_SUBSCRIPTION_CREATE_MUTATION, variables)
    except ShopifyGraphQLError as exc:
        raise BillingError(f"Failed to create subscription: {exc}") from exc

    result = data.get("appSubscriptionCreate") or {}
    user_errors = result.get("userErrors") or []
    if user_errors:
        messages = "; ".join(str(err.get("message")) for err in user_errors)
        raise BillingError(f"Failed to create subscription: {messages}")

    confirmation_url = result.get("confirmationUrl")
    if not confirmation_url:
        raise BillingError("Shopify did not return a confirmation URL for the subscription")
    return confirmation_url


class BillingRequired(RuntimeError):
    """Raised by the billing gate; the app answers with a redirect to the billing page."""

    def __init__(self, shop_domain: str):
        super().__init__(f"Billing required for {shop_domain}")
        self.shop_domain = shop_domain


async def check_billing_access(db: Session, shop: Shop, client: Any) -> bool:
    """Trial or local subscription first, then test-store bypass, then Shopify's active subscriptions."""

    if has_active_billing(shop):
        return True

    try:
        if await is_test_store(client, shop.shop_domain):
            return True
    except Exception as exc:
        logger.warning(f"Could not determine test-store status for {shop.shop_domain}: {exc}")

    try:
        subscription = await get_active_subscription(client)
    except Exception as exc:
        logger.warning(f"Could not read active subscriptions for {shop.shop_domain}: {exc}")
        return False

    if subscription is None:
        return False

    update_shop_billing(
        db,
        shop,
        billing_active=True,
        billing_subscription_id=subscription.get("id"),
        billing_plan=PLAN_MONTHLY,
        subscription_start_date=parse_timestamp(subscription.get("createdAt")),
        subscription_end_date=parse_timestamp(subscription.get("currentPeriodEnd")),
    )
    return True
