from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from dispute_manager.config import settings
from dispute_manager.models_sqlalchemy import get_db
from dispute_manager.models.billing import BillingStatus, SubscribeResponse
from dispute_manager.services import billing as billing_service
from dispute_manager.services.billing import BillingError
from dispute_manager.services.shopify_auth import ShopContext, get_current_shop_context
from dispute_manager.utils.logger import logger

router = APIRouter(prefix="/api/billing", tags=["Billing"])


@router.get("", response_model=BillingStatus)
async def get_billing_status(
    context: ShopContext = Depends(get_current_shop_context),
    db: Session = Depends(get_db)
):
    """Trial and subscription state for the billing page."""
    shop = context.shop

    try:
        test_store = await billing_service.is_test_store(context.client, shop.shop_domain)
    except Exception as e:
        logger.warning(f"Error checking test store status for {shop.shop_domain}: {str(e)}")
        test_store = False

    has_active_subscription = test_store
    if not test_store:
        try:
            subscription = await billing_service.get_active_subscription(context.client)
            has_active_subscription = subscription is not None
        except Exception as e:
            logger.warning(f"Error reading subscriptions for {shop.shop_domain}: {str(e)}")

    on_trial = not has_active_subscription and billing_service.is_on_trial(shop)
    active_billing = has_active_subscription or billing_service.has_active_billing(shop)

    return BillingStatus(
        shop_domain=shop.shop_domain,
        test_store=test_store,
        on_trial=on_trial,
        active_billing=active_billing,
        has_active_subscription=has_active_subscription,
        trial_days_remaining=billing_service.trial_days_remaining(shop),
        trial_end_date=shop.trial_end_date,
        subscription_end_date=shop.subscription_end_date,
        billing_plan=shop.billing_plan,
        monthly_price=billing_service.MONTHLY_PRICE,
        trial_days=billing_service.TRIAL_DAYS,
    )


@router.post("/subscribe", response_model=SubscribeResponse)
async def subscribe(
    context: ShopContext = Depends(get_current_shop_context),
):
    """Start the monthly subscription; the client redirects the merchant to the confirmation URL."""
    return_url = f"{settings.FRONTEND_URL.rstrip('/')}/app/billing"
    try:
        confirmation_url = await billing_service.request_subscription(context.client, return_url)
    except BillingError as e:
        logger.error(f"Subscription request failed for {context.shop_domain}: {str(e)}")
        raise HTTPException(status_code=502, detail=str(e))

    logger.info(f"Subscription requested for {context.shop_domain}")
    return SubscribeResponse(confirmation_url=confirmation_url)
