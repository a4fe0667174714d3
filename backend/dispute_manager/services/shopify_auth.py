from __future__ import annotations

import base64
import hashlib
import hmac
import re
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlencode, urlparse

import httpx
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from dispute_manager.config import settings
from dispute_manager.models_sqlalchemy import get_db
from dispute_manager.models_sqlalchemy.models import Shop, ShopifySession
from dispute_manager.services.billing import BillingRequired, check_billing_access
from dispute_manager.services.shop_service import shop_service
from dispute_manager.services.shopify_graphql import ShopifyGraphQLClient
from dispute_manager.utils.logger import logger, sanitize_credentials

security = HTTPBearer()

_SHOP_DOMAIN_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9\-]*\.myshopify\.com$")


class WebhookVerificationError(RuntimeError):
    """Raised when a webhook or OAuth callback fails HMAC verification."""


def _api_secret() -> str:
    secret = settings.SHOPIFY_API_SECRET
    if not secret:
        raise WebhookVerificationError("SHOPIFY_API_SECRET is not configured; cannot verify Shopify signatures")
    return secret


def offline_session_id(shop_domain: str) -> str:
    return f"offline_{shop_domain}"


def is_valid_shop_domain(shop_domain: Optional[str]) -> bool:
    return bool(shop_domain and _SHOP_DOMAIN_RE.match(shop_domain))


def compute_webhook_hmac(raw_body: bytes, secret: Optional[str] = None) -> str:
    digest = hmac.new((secret or _api_secret()).encode("utf-8"), raw_body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_webhook_hmac(raw_body: bytes, header_value: Optional[str]) -> None:
    """Check ``X-Shopify-Hmac-Sha256`` against the raw request body.

    Raises :class:`WebhookVerificationError` on a missing or mismatched header.
    """

    expected = compute_webhook_hmac(raw_body)
    if not header_value:
        raise WebhookVerificationError("Missing X-Shopify-Hmac-Sha256 header")
    if not hmac.compare_digest(expected, header_value.strip()):
        raise WebhookVerificationError("Invalid webhook HMAC signature")


def compute_oauth_hmac(params: Mapping[str, str], secret: Optional[str] = None) -> str:
    message = "&".join(
        f"{key}={params[key]}" for key in sorted(params) if key not in ("hmac", "signature")
    )
    return hmac.new((secret or _api_secret()).encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_oauth_hmac(params: Mapping[str, str]) -> None:
    """Verify the ``hmac`` query parameter Shopify appends to OAuth redirects."""

    provided = params.get("hmac")
    if not provided:
        raise WebhookVerificationError("Missing hmac query parameter")
    if not hmac.compare_digest(compute_oauth_hmac(params), provided):
        raise WebhookVerificationError("Invalid OAuth HMAC signature")


def build_authorize_url(shop_domain: str, state: str) -> str:
    if not settings.SHOPIFY_API_KEY:
        raise RuntimeError("SHOPIFY_API_KEY is not configured")
    query = urlencode(
        {
            "client_id": settings.SHOPIFY_API_KEY,
            "scope": ",".join(settings.shopify_scopes),
            "redirect_uri": f"{settings.app_url}/auth/callback",
            "state": state,
        }
    )
    return f"https://{shop_domain}/admin/oauth/authorize?{query}"


async def exchange_code_for_token(shop_domain: str, code: str) -> Dict[str, Any]:
    """Trade an OAuth ``code`` for an offline access token."""

    payload = {
        "client_id": settings.SHOPIFY_API_KEY,
        "client_secret": _api_secret(),
        "code": code,
    }
    url = f"https://{shop_domain}/admin/oauth/access_token"
    async with httpx.AsyncClient(timeout=30.0) as client:
        resp = await client.post(url, json=payload, headers={"Accept": "application/json"})

    if resp.status_code >= 400:
        logger.error("Shopify token exchange HTTP %s for shop=%s: %s", resp.status_code, shop_domain, resp.text[:500])
    resp.raise_for_status()
    data = resp.json()
    logger.info(f"Token exchange for {shop_domain}: {sanitize_credentials(data)}")
    return data


def store_offline_session(db: Session, shop_domain: str, access_token: str, scope: Optional[str]) -> ShopifySession:
    session_id = offline_session_id(shop_domain)
    record = db.get(ShopifySession, session_id)
    if record is None:
        record = ShopifySession(id=session_id, shop=shop_domain, is_online=False)
        db.add(record)
    record.access_token = access_token
    record.scope = scope
    db.commit()
    db.refresh(record)
    return record


def decode_session_token(token: str) -> Dict[str, Any]:
    """Decode an App Bridge session token and return its claims.

    The token is HS256-signed with the app secret and its ``aud`` is the API
    key. The shop domain is read from the ``dest`` claim.
    """

    try:
        secret = _api_secret()
    except WebhookVerificationError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc

    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid session token",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        claims = jwt.decode(token, secret, algorithms=["HS256"], audience=settings.SHOPIFY_API_KEY)
    except JWTError:
        raise credentials_exception

    shop_domain = urlparse(str(claims.get("dest") or "")).netloc
    if not is_valid_shop_domain(shop_domain):
        raise credentials_exception
    claims["shop"] = shop_domain
    return claims


@dataclass
class ShopContext:
    """Authenticated shop for one request, with an Admin API client bound to it."""

    shop: Shop
    client: Any

    @property
    def shop_domain(self) -> str:
        return self.shop.shop_domain


async def get_current_shop_context(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> ShopContext:
    claims = decode_session_token(credentials.credentials)
    shop_domain = claims["shop"]

    offline = db.get(ShopifySession, offline_session_id(shop_domain))
    if offline is None:
        logger.warning(f"Session token for {shop_domain} but the app is not installed")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Shop is not installed")

    access_token = offline.access_token
    shop = shop_service.get_or_create_shop(db, shop_domain, access_token=access_token)
    return ShopContext(shop=shop, client=ShopifyGraphQLClient(shop_domain, access_token))


async def require_active_billing(
    context: ShopContext = Depends(get_current_shop_context),
    db: Session = Depends(get_db),
) -> ShopContext:
    """Route dependency that lets the request through only for shops with billing access."""

    if not await check_billing_access(db, context.shop, context.client):
        raise BillingRequired(context.shop_domain)
    return context
