"""Dispute and chargeback reconciliation against the Shopify Admin API.

Two independent read paths feed one local table:

* disputes: ``shopifyPaymentsDisputes`` first, falling back to disputes
  nested under ``orders`` when the direct query errors or fails;
* chargebacks: ``CHARGEBACK`` transactions nested under recent orders.

Both are normalized into :class:`CanonicalDispute` and upserted on
``(shop_id, shopify_dispute_id)``. Each page is bounded to the first 250
records; there is no cursor pagination beyond that.
"""
from __future__ import annotations

import json
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from dateutil import parser as date_parser
from sqlalchemy.orm import Session

from dispute_manager.models_sqlalchemy.models import Dispute, Shop
from dispute_manager.services.shop_service import shop_service
from dispute_manager.services.shopify_graphql import ShopifyGraphQLError, execute_graphql
from dispute_manager.utils.logger import logger


CHARGEBACK_PREFIX = "chargeback-"
CHARGEBACK_KIND = "CHARGEBACK"

DIRECT_DISPUTES_QUERY = """
query {
  shopifyPaymentsDisputes(first: 250) {
    edges {
      node {
        id
        amount {
          amount
          currencyCode
        }
        initiatedAt
        evidenceDueBy
        evidenceSentOn
        reasonDetails {
          reason
        }
        status
        type
        order {
          id
          name
          email
        }
      }
    }
  }
}
"""

ORDERS_DISPUTES_QUERY = """
query {
  orders(first: 250, query: "financial_status:any") {
    edges {
      node {
        id
        name
        email
        disputes {
          id
          initiatedAs
          status
        }
      }
    }
  }
}
"""

ORDERS_CHARGEBACKS_QUERY = """
query {
  orders(first: 250, sortKey: CREATED_AT, reverse: true) {
    edges {
      node {
        id
        name
        email
        createdAt
        transactions(first: 50) {
          id
          kind
          status
          gateway
          createdAt
          amountSet {
            shopMoney {
              amount
              currencyCode
            }
          }
        }
      }
    }
  }
}
"""


class DisputeSyncError(ShopifyGraphQLError):
    """Raised when Shopify refuses every available query path."""


@dataclass
class QueryOutcome:
    """Result of one query attempt: either edges or a classified error."""

    source: str
    edges: List[Dict[str, Any]] = field(default_factory=list)
    error: Any = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class CanonicalDispute:
    """Storage-ready shape shared by dispute- and chargeback-sourced rows.

    Every attribute is always present; missing upstream values are ``None``.
    """

    shopify_dispute_id: str
    order_id: Optional[str] = None
    order_name: Optional[str] = None
    customer_email: Optional[str] = None
    status: Optional[str] = None
    reason: Optional[str] = None
    chargeback_reason: Optional[str] = None
    amount: Optional[float] = None
    currency: Optional[str] = None
    evidence_due_by: Optional[datetime] = None
    evidence_submitted: bool = False
    raw_payload: Any = None


# --- normalization helpers ---------------------------------------------------


def _safe_get(data: Any, *keys: str) -> Any:
    for key in keys:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def gid_tail(value: Any) -> Optional[str]:
    """``gid://shopify/Order/123`` -> ``"123"``; falsy input -> ``None``."""
    if not value:
        return None
    text = str(value)
    return text.rsplit("/", 1)[-1] or text


def parse_amount(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(str(value))
    except (TypeError, ValueError):
        return None


def parse_timestamp(value: Any) -> Optional[datetime]:
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = date_parser.isoparse(value)
    except (ValueError, OverflowError):
        logger.warning(f"Failed to parse datetime: {value}")
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _lower_or_none(value: Any) -> Optional[str]:
    if not value:
        return None
    return str(value).lower()


def _fallback_id() -> str:
    # Not stable across runs: a record without an id may be stored twice.
    return f"unknown-{int(time.time() * 1000)}"


def normalize_dispute_node(node: Dict[str, Any]) -> CanonicalDispute:
    """Map a ``ShopifyPaymentsDispute`` node (direct or order-flattened)."""

    node = node if isinstance(node, dict) else {}
    order = node.get("order") if isinstance(node.get("order"), dict) else None

    return CanonicalDispute(
        shopify_dispute_id=gid_tail(node.get("id")) or _fallback_id(),
        order_id=gid_tail(_safe_get(order, "id")),
        order_name=_safe_get(order, "name") or None,
        customer_email=_safe_get(order, "email") or None,
        status=_lower_or_none(node.get("status")),
        reason=_safe_get(node, "reasonDetails", "reason") or node.get("reason") or None,
        chargeback_reason=node.get("type") or node.get("initiatedAs") or None,
        amount=parse_amount(_safe_get(node, "amount", "amount")),
        currency=_safe_get(node, "amount", "currencyCode") or None,
        evidence_due_by=parse_timestamp(node.get("evidenceDueBy")),
        evidence_submitted=bool(node.get("evidenceSentOn")),
        raw_payload=node,
    )


def normalize_chargeback(transaction: Dict[str, Any], order: Dict[str, Any]) -> CanonicalDispute:
    """Map a CHARGEBACK order transaction.

    Chargebacks precede dispute creation, so they have no evidence deadline
    and default to status ``open``.
    """

    transaction = transaction if isinstance(transaction, dict) else {}
    order = order if isinstance(order, dict) else {}

    tx_id = gid_tail(transaction.get("id")) or _fallback_id()
    amount_value = _safe_get(transaction, "amountSet", "shopMoney", "amount")
    if amount_value is None:
        amount_value = transaction.get("amount")

    order_ref = {k: order.get(k) for k in ("id", "name", "email", "createdAt") if k in order}

    return CanonicalDispute(
        shopify_dispute_id=f"{CHARGEBACK_PREFIX}{tx_id}",
        order_id=gid_tail(order.get("id")),
        order_name=order.get("name") or None,
        customer_email=order.get("email") or None,
        status=_lower_or_none(transaction.get("status")) or "open",
        reason=None,
        chargeback_reason=CHARGEBACK_KIND,
        amount=parse_amount(amount_value),
        currency=(
            _safe_get(transaction, "amountSet", "shopMoney", "currencyCode")
            or transaction.get("currencyCode")
            or None
        ),
        evidence_due_by=None,
        evidence_submitted=False,
        raw_payload={"transaction": transaction, "order": order_ref},
    )


def flatten_order_disputes(order_edges: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """``order -> disputes[]`` into dispute edges carrying their parent order."""

    edges: List[Dict[str, Any]] = []
    for order_edge in order_edges or []:
        order = (order_edge or {}).get("node") or {}
        for dispute in order.get("disputes") or []:
            edges.append({
                "node": {
                    **dispute,
                    "order": {
                        "id": order.get("id"),
                        "name": order.get("name"),
                        "email": order.get("email"),
                    },
                },
            })
    return edges


def extract_chargebacks(order_edges: List[Dict[str, Any]]) -> List[CanonicalDispute]:
    records: List[CanonicalDispute] = []
    for order_edge in order_edges or []:
        order = (order_edge or {}).get("node") or {}
        for transaction in order.get("transactions") or []:
            kind = str((transaction or {}).get("kind") or "")
            if kind.upper() != CHARGEBACK_KIND:
                continue
            records.append(normalize_chargeback(transaction, order))
    return records


# --- query orchestration -----------------------------------------------------


async def _attempt(client: Any, query: str) -> tuple:
    """Run one query, returning ``(body, error)`` without raising."""
    try:
        response = await client.graphql(query)
        body = response.json() or {}
        if not isinstance(body, dict):
            return None, f"Unexpected response body: {type(body).__name__}"
        errors = body.get("errors")
    except Exception as exc:
        return None, f"{type(exc).__name__}: {exc}"
    if errors:
        return body, errors
    return body, None


async def query_direct_disputes(client: Any) -> QueryOutcome:
    body, error = await _attempt(client, DIRECT_DISPUTES_QUERY)
    if error is not None:
        return QueryOutcome(source="direct", error=error)
    edges = _safe_get(body, "data", "shopifyPaymentsDisputes", "edges") or []
    return QueryOutcome(source="direct", edges=list(edges))


async def query_order_disputes(client: Any) -> QueryOutcome:
    body, error = await _attempt(client, ORDERS_DISPUTES_QUERY)
    if error is not None:
        return QueryOutcome(source="orders", error=error)
    order_edges = _safe_get(body, "data", "orders", "edges") or []
    return QueryOutcome(source="orders", edges=flatten_order_disputes(order_edges))


async def fetch_dispute_edges(client: Any) -> List[Dict[str, Any]]:
    """Direct disputes query, then the orders fallback.

    Raises :class:`DisputeSyncError` only when the fallback fails too.
    """

    primary = await query_direct_disputes(client)
    if primary.ok:
        return primary.edges

    logger.warning(f"Direct disputes query failed, trying orders query: {primary.error}")
    fallback = await query_order_disputes(client)
    if fallback.ok:
        logger.info(f"Orders fallback returned {len(fallback.edges)} disputes")
        return fallback.edges

    logger.error(f"Orders fallback query failed: {fallback.error}")
    raise DisputeSyncError(
        f"Failed to fetch disputes: {json.dumps(fallback.error, default=str)}",
        errors=fallback.error,
    )


async def fetch_chargeback_records(client: Any) -> List[CanonicalDispute]:
    """CHARGEBACK transactions on the 250 newest orders. No fallback path."""

    try:
        data = await execute_graphql(client, ORDERS_CHARGEBACKS_QUERY)
    except ShopifyGraphQLError as exc:
        raise DisputeSyncError(
            f"Failed to fetch chargebacks: {json.dumps(exc.errors, default=str)}",
            errors=exc.errors,
        ) from exc

    return extract_chargebacks(_safe_get(data, "orders", "edges") or [])


# --- persistence -------------------------------------------------------------


_MUTABLE_FIELDS = (
    "order_id",
    "order_name",
    "customer_email",
    "status",
    "reason",
    "chargeback_reason",
    "amount",
    "currency",
    "evidence_due_by",
    "evidence_submitted",
    "raw_payload",
)


def _dialect_insert(db: Session):
    name = db.get_bind().dialect.name
    if name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
        return insert
    if name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
        return insert
    return None


def upsert_dispute(db: Session, shop_id: str, record: CanonicalDispute) -> Dispute:
    """Create or update one dispute row under ``(shop_id, shopify_dispute_id)``.

    Updates touch every mutable field plus ``updated_at``; ``id``,
    ``created_at`` and the key are written on insert only. Commits per row.
    """

    now = datetime.now(timezone.utc)
    values = {name: getattr(record, name) for name in _MUTABLE_FIELDS}

    insert = _dialect_insert(db)
    if insert is not None:
        stmt = insert(Dispute.__table__).values(
            id=str(uuid.uuid4()),
            shop_id=shop_id,
            shopify_dispute_id=record.shopify_dispute_id,
            created_at=now,
            updated_at=now,
            **values,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["shop_id", "shopify_dispute_id"],
            set_={
                **{name: stmt.excluded[name] for name in _MUTABLE_FIELDS},
                "updated_at": now,
            },
        )
        db.execute(stmt)
        db.commit()
        return (
            db.query(Dispute)
            .filter(
                Dispute.shop_id == shop_id,
                Dispute.shopify_dispute_id == record.shopify_dispute_id,
            )
            .populate_existing()
            .one()
        )

    existing = (
        db.query(Dispute)
        .filter(
            Dispute.shop_id == shop_id,
            Dispute.shopify_dispute_id == record.shopify_dispute_id,
        )
        .first()
    )
    if existing:
        for name, value in values.items():
            setattr(existing, name, value)
        existing.updated_at = now
        db.commit()
        db.refresh(existing)
        return existing

    dispute = Dispute(
        shop=db.get(Shop, shop_id),
        shopify_dispute_id=record.shopify_dispute_id,
        created_at=now,
        updated_at=now,
        **values,
    )
    db.add(dispute)
    db.commit()
    db.refresh(dispute)
    return dispute


# --- reconciler --------------------------------------------------------------


class DisputeReconciler:
    """One sync pass for one shop, with storage and API client injected."""

    def __init__(self, db: Session, client: Any) -> None:
        self.db = db
        self.client = client

    def _store(self, shop_domain: str, records: List[CanonicalDispute]) -> List[Dispute]:
        shop = shop_service.get_or_create_shop(self.db, shop_domain)
        saved: List[Dispute] = []
        for record in records:
            saved.append(upsert_dispute(self.db, shop.id, record))
        return saved

    async def sync_disputes(self, shop_domain: str) -> List[Dispute]:
        edges = await fetch_dispute_edges(self.client)
        records = [normalize_dispute_node((edge or {}).get("node") or {}) for edge in edges]
        saved = self._store(shop_domain, records)
        logger.info(f"Synced {len(saved)} disputes for {shop_domain}")
        return saved

    async def sync_chargebacks(self, shop_domain: str) -> List[Dispute]:
        records = await fetch_chargeback_records(self.client)
        saved = self._store(shop_domain, records)
        logger.info(f"Synced {len(saved)} chargebacks for {shop_domain}")
        return saved


async def sync_disputes(db: Session, client: Any, shop_domain: str) -> List[Dispute]:
    """Sync disputes, returning ``[]`` on failure so stored rows still render."""
    try:
        return await DisputeReconciler(db, client).sync_disputes(shop_domain)
    except Exception as exc:
        logger.error(f"Error syncing disputes for {shop_domain}: {exc}")
        db.rollback()
        return []


async def sync_chargebacks(db: Session, client: Any, shop_domain: str) -> List[Dispute]:
    """Sync chargebacks, returning ``[]`` on failure so stored rows still render."""
    try:
        return await DisputeReconciler(db, client).sync_chargebacks(shop_domain)
    except Exception as exc:
        logger.error(f"Error syncing chargebacks for {shop_domain}: {exc}")
        db.rollback()
        return []
