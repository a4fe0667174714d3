import os

# Settings are read at import time; point everything at an in-memory database
# and dummy Shopify credentials before the package is imported.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ["SHOPIFY_API_KEY"] = "test-api-key"
os.environ["SHOPIFY_API_SECRET"] = "test-api-secret"
os.environ.pop("OPENAI_API_KEY", None)

from typing import Any, Dict, List, Optional

import pytest

from dispute_manager.models_sqlalchemy import Base, SessionLocal, engine
from dispute_manager.models_sqlalchemy.models import Shop


class FakeGraphQLResponse:
    def __init__(self, body: Dict[str, Any]):
        self._body = body

    def json(self) -> Dict[str, Any]:
        return self._body


class FakeShopifyClient:
    """Scripted stand-in for ShopifyGraphQLClient.

    Each call to ``graphql`` consumes the next scripted reply: a dict becomes
    the JSON body, an exception instance is raised. Once the script runs out
    every call raises ``RuntimeError``.
    """

    def __init__(self, replies: Optional[List[Any]] = None, shop_domain: str = "demo.myshopify.com"):
        self.replies = list(replies or [])
        self.queries: List[str] = []
        self.variables: List[Optional[Dict[str, Any]]] = []
        self.shop_domain = shop_domain

    async def graphql(self, query: str, variables: Optional[Dict[str, Any]] = None):
        self.queries.append(query)
        self.variables.append(variables)
        if not self.replies:
            raise RuntimeError("no scripted reply left")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return FakeGraphQLResponse(reply)


@pytest.fixture
def fake_client_factory():
    return FakeShopifyClient


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def shop(db):
    record = Shop(shop_domain="demo.myshopify.com", active=True)
    record.access_token = "shpat_test_token_value"
    db.add(record)
    db.commit()
    db.refresh(record)
    return record
