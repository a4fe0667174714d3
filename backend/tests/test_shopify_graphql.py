import httpx
import pytest

from dispute_manager.services import shopify_graphql
from dispute_manager.services.shopify_graphql import ShopifyGraphQLClient, ShopifyGraphQLError, execute_graphql


class _RecordingAsyncClient:
    calls = []
    reply = (200, {"data": {"shop": {"name": "Demo"}}})

    def __init__(self, *args, **kwargs):
        pass

    async def __aenter__(self):  # pragma: no cover - trivial
        return self

    async def __aexit__(self, exc_type, exc, tb):  # pragma: no cover - trivial
        return False

    async def post(self, url, headers=None, json=None):
        type(self).calls.append({"url": url, "headers": headers, "json": json})
        status_code, body = type(self).reply
        return httpx.Response(status_code, json=body, request=httpx.Request("POST", url))


@pytest.fixture
def recording(monkeypatch):
    _RecordingAsyncClient.calls = []
    _RecordingAsyncClient.reply = (200, {"data": {"shop": {"name": "Demo"}}})
    monkeypatch.setattr(shopify_graphql.httpx, "AsyncClient", _RecordingAsyncClient)
    return _RecordingAsyncClient


@pytest.mark.asyncio
async def test_client_posts_to_versioned_admin_endpoint(recording):
    client = ShopifyGraphQLClient("demo.myshopify.com", "shpat_abc", api_version="2025-01")

    data = await execute_graphql(client, "query { shop { name } }", {"first": 1})

    assert data == {"shop": {"name": "Demo"}}
    call = recording.calls[0]
    assert call["url"] == "https://demo.myshopify.com/admin/api/2025-01/graphql.json"
    assert call["headers"]["X-Shopify-Access-Token"] == "shpat_abc"
    assert call["json"] == {"query": "query { shop { name } }", "variables": {"first": 1}}


@pytest.mark.asyncio
async def test_graphql_errors_raise_with_payload(recording):
    recording.reply = (200, {"errors": [{"message": "Access denied"}]})
    client = ShopifyGraphQLClient("demo.myshopify.com", "shpat_abc")

    with pytest.raises(ShopifyGraphQLError) as excinfo:
        await execute_graphql(client, "query { shop { name } }")

    assert excinfo.value.errors == [{"message": "Access denied"}]


@pytest.mark.asyncio
async def test_http_errors_raise_status_error(recording):
    recording.reply = (401, {"errors": "[API] Invalid API key or access token"})
    client = ShopifyGraphQLClient("demo.myshopify.com", "bad-token")

    with pytest.raises(httpx.HTTPStatusError):
        await client.graphql("query { shop { name } }")
