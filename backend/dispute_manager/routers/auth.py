import secrets

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from dispute_manager.config import settings
from dispute_manager.models_sqlalchemy import get_db
from dispute_manager.services.billing import initialize_trial
from dispute_manager.services.shop_service import shop_service
from dispute_manager.services.shopify_auth import (
    WebhookVerificationError, build_authorize_url, exchange_code_for_token,
    is_valid_shop_domain, store_offline_session, verify_oauth_hmac,
)
from dispute_manager.utils.logger import logger

router = APIRouter(prefix="/auth", tags=["auth"])

STATE_COOKIE = "shopify_oauth_state"


@router.get("")
async def begin_install(shop: str):
    """Redirect the merchant to Shopify's consent screen."""
    if not is_valid_shop_domain(shop):
        raise HTTPException(status_code=400, detail="Invalid shop domain")

    state = secrets.token_urlsafe(24)
    try:
        url = build_authorize_url(shop, state)
    except RuntimeError as e:
        logger.error(f"Cannot start OAuth for {shop}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

    response = RedirectResponse(url, status_code=302)
    response.set_cookie(STATE_COOKIE, state, httponly=True, secure=not settings.DEBUG, samesite="lax", max_age=600)
    return response


@router.get("/callback")
async def oauth_callback(request: Request, db: Session = Depends(get_db)):
    """Finish install: verify the redirect, store the offline token, start the trial."""
    params = dict(request.query_params)
    shop = params.get("shop")
    code = params.get("code")

    if not is_valid_shop_domain(shop) or not code:
        raise HTTPException(status_code=400, detail="Missing or invalid shop/code")

    try:
        verify_oauth_hmac(params)
    except WebhookVerificationError as e:
        logger.warning(f"OAuth callback rejected for {shop}: {str(e)}")
        raise HTTPException(status_code=401, detail="Invalid HMAC")

    expected_state = request.cookies.get(STATE_COOKIE)
    if not expected_state or not secrets.compare_digest(expected_state, params.get("state") or ""):
        raise HTTPException(status_code=401, detail="OAuth state mismatch")

    try:
        token_data = await exchange_code_for_token(shop, code)
    except Exception as e:
        logger.error(f"Token exchange failed for {shop}: {str(e)}")
        raise HTTPException(status_code=502, detail="Failed to exchange OAuth code")

    access_token = token_data.get("access_token")
    if not access_token:
        raise HTTPException(status_code=502, detail="Shopify returned no access token")

    store_offline_session(db, shop, access_token, token_data.get("scope"))
    shop_record = shop_service.get_or_create_shop(db, shop, access_token=access_token)
    if shop_record.trial_start_date is None:
        initialize_trial(db, shop_record)

    logger.info(f"Installed app for {shop}")
    response = RedirectResponse(f"https://{shop}/admin/apps/{settings.SHOPIFY_API_KEY}", status_code=302)
    response.delete_cookie(STATE_COOKIE)
    return response
