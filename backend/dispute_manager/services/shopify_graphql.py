"""Thin Shopify Admin GraphQL client.

Exposes a single ``graphql(query, variables=None)`` coroutine returning the
raw ``httpx.Response``; callers read ``response.json()`` for the
``{"data": ..., "errors": ...}`` envelope. Auth, retries and throttling are
not handled here.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from dispute_manager.config import settings
from dispute_manager.utils.logger import logger


class ShopifyGraphQLError(RuntimeError):
    """Raised when a GraphQL response carries a top-level ``errors`` payload."""

    def __init__(self, message: str, errors: Any = None):
        super().__init__(message)
        self.errors = errors


class ShopifyGraphQLClient:
    """Admin API client bound to one shop and its offline access token."""

    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        *,
        api_version: Optional[str] = None,
        timeout: float = 30.0,
    ) -> None:
        self.shop_domain = shop_domain
        self._access_token = access_token
        self.api_version = api_version or settings.SHOPIFY_API_VERSION
        self.timeout = timeout

    @property
    def endpoint(self) -> str:
        return f"https://{self.shop_domain}/admin/api/{self.api_version}/graphql.json"

    async def graphql(self, query: str, variables: Optional[Dict[str, Any]] = None) -> httpx.Response:
        payload: Dict[str, Any] = {"query": query}
        if variables:
            payload["variables"] = variables

        headers = {
            "X-Shopify-Access-Token": self._access_token,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(self.endpoint, headers=headers, json=payload)

        if resp.status_code >= 400:
            logger.error(
                "Shopify GraphQL HTTP %s for shop=%s: %s",
                resp.status_code,
                self.shop_domain,
                resp.text[:500],
            )
        resp.raise_for_status()
        return resp


async def execute_graphql(client: Any, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Run ``query`` and return its ``data`` block.

    Raises :class:`ShopifyGraphQLError` when the envelope carries ``errors``.
    Transport failures propagate as raised by the client.
    """

    if variables:
        response = await client.graphql(query, variables)
    else:
        response = await client.graphql(query)
    body = response.json() or {}
    if body.get("errors"):
        raise ShopifyGraphQLError(f"Shopify GraphQL errors: {body['errors']}", errors=body["errors"])
    return body.get("data") or {}
