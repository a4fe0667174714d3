"""Mandatory privacy webhooks: customer data request, customer redact, shop redact.

Each handler takes the decoded webhook payload and returns a small summary
dict. An unknown shop is not an error; the summary then reports
``shop_found: False``.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session, selectinload

from dispute_manager.models_sqlalchemy.models import Dispute, DisputeResponse, Shop, ShopifySession
from dispute_manager.utils.logger import logger


def _find_shop(db: Session, payload: Dict[str, Any]) -> Optional[Shop]:
    domain = payload.get("shop_domain")
    if not domain:
        return None
    return db.query(Shop).filter(Shop.shop_domain == domain).first()


def _order_ids(values: Any) -> List[str]:
    return [str(v) for v in (values or [])]


def _customer_email(payload: Dict[str, Any]) -> Optional[str]:
    customer = payload.get("customer") or {}
    return customer.get("email") or None


def collect_customer_data(db: Session, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Gather the disputes (with responses) and sessions held for one customer."""

    shop = _find_shop(db, payload)
    if shop is None:
        logger.info(f"Data request for unknown shop {payload.get('shop_domain')}; nothing stored")
        return {"shop_found": False, "disputes": [], "sessions": []}

    orders_requested = _order_ids(payload.get("orders_requested"))
    email = _customer_email(payload)

    query = (
        db.query(Dispute)
        .options(selectinload(Dispute.dispute_responses))
        .filter(Dispute.shop_id == shop.id)
    )
    if orders_requested:
        query = query.filter(Dispute.order_id.in_(orders_requested))
    if email:
        query = query.filter(Dispute.customer_email == email)
    disputes = query.all()

    sessions: List[ShopifySession] = []
    if email:
        sessions = (
            db.query(ShopifySession)
            .filter(ShopifySession.shop == shop.shop_domain, ShopifySession.email == email)
            .all()
        )

    data_request_id = (payload.get("data_request") or {}).get("id")
    customer_id = (payload.get("customer") or {}).get("id")
    logger.info(
        f"Data request {data_request_id} for customer {customer_id}: "
        f"disputes={len(disputes)} sessions={len(sessions)} orders_requested={orders_requested}"
    )

    return {
        "shop_found": True,
        "disputes": disputes,
        "sessions": sessions,
    }


def redact_customer(db: Session, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Remove one customer's data from the shop's disputes and sessions."""

    shop = _find_shop(db, payload)
    if shop is None:
        logger.info(f"Customer redact for unknown shop {payload.get('shop_domain')}; nothing stored")
        return {"shop_found": False}

    orders_to_redact = _order_ids(payload.get("orders_to_redact"))
    email = _customer_email(payload)
    summary = {"shop_found": True, "responses_deleted": 0, "disputes_redacted": 0, "sessions_deleted": 0}

    if orders_to_redact:
        dispute_ids = [
            row.id
            for row in db.query(Dispute.id)
            .filter(Dispute.shop_id == shop.id, Dispute.order_id.in_(orders_to_redact))
            .all()
        ]
        if dispute_ids:
            summary["responses_deleted"] = (
                db.query(DisputeResponse)
                .filter(DisputeResponse.dispute_id.in_(dispute_ids))
                .delete(synchronize_session=False)
            )
        summary["disputes_redacted"] += (
            db.query(Dispute)
            .filter(Dispute.shop_id == shop.id, Dispute.order_id.in_(orders_to_redact))
            .update({Dispute.customer_email: None}, synchronize_session=False)
        )

    if email:
        summary["disputes_redacted"] += (
            db.query(Dispute)
            .filter(Dispute.shop_id == shop.id, Dispute.customer_email == email)
            .update({Dispute.customer_email: None}, synchronize_session=False)
        )
        summary["sessions_deleted"] = (
            db.query(ShopifySession)
            .filter(ShopifySession.shop == shop.shop_domain, ShopifySession.email == email)
            .delete(synchronize_session=False)
        )

    db.commit()
    customer_id = (payload.get("customer") or {}).get("id")
    logger.info(f"Redacted customer data for customer {customer_id} in shop {shop.shop_domain}")
    return summary


def redact_shop(db: Session, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Delete everything held for a shop.

    Rows go in dependency order: responses, disputes, sessions, then the
    shop itself. Succeeds when the shop is already gone.
    """

    domain = payload.get("shop_domain")
    shop = _find_shop(db, payload)
    if shop is None:
        logger.info(f"Shop redact for {domain}: shop already absent")
        return {"shop_found": False, "deleted": {}}

    shop_id = shop.id
    deleted: Dict[str, int] = {}
    deleted["dispute_responses"] = (
        db.query(DisputeResponse).filter(DisputeResponse.shop_id == shop_id).delete(synchronize_session=False)
    )
    deleted["disputes"] = db.query(Dispute).filter(Dispute.shop_id == shop_id).delete(synchronize_session=False)
    deleted["sessions"] = (
        db.query(ShopifySession).filter(ShopifySession.shop == domain).delete(synchronize_session=False)
    )
    deleted["shops"] = db.query(Shop).filter(Shop.id == shop_id).delete(synchronize_session=False)
    db.commit()
    db.expunge_all()

    logger.info(f"Redacted all data for shop {domain}: {deleted}")
    return {"shop_found": True, "deleted": deleted}
