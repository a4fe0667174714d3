from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from dispute_manager.models_sqlalchemy import get_db
from dispute_manager.models_sqlalchemy.models import Dispute
from dispute_manager.models.dispute import (
    DisputeDetail, DisputeListResponse, DisputeOut,
    DisputeResponseOut, GenerateDraftResult, SaveDraftRequest,
)
from dispute_manager.services.ai_drafts import AiDraftError, generate_dispute_response
from dispute_manager.services.dispute_sync import sync_chargebacks, sync_disputes
from dispute_manager.services.shop_service import shop_service
from dispute_manager.services.shopify_auth import ShopContext, require_active_billing
from dispute_manager.config import settings
from dispute_manager.utils.logger import logger

router = APIRouter(prefix="/api/disputes", tags=["Disputes"])


def _owned_dispute(db: Session, context: ShopContext, dispute_id: str) -> Dispute:
    dispute = shop_service.get_dispute_by_id(db, dispute_id)
    if not dispute or dispute.shop_id != context.shop.id:
        raise HTTPException(status_code=404, detail="Dispute not found")
    return dispute


@router.get("", response_model=DisputeListResponse)
async def list_disputes(
    context: ShopContext = Depends(require_active_billing),
    db: Session = Depends(get_db)
):
    """Sync chargebacks and disputes from Shopify, then return every stored row.

    A failed sync leaves previously stored rows visible.
    """
    # Chargebacks land before the dispute object exists on Shopify's side.
    await sync_chargebacks(db, context.client, context.shop_domain)
    await sync_disputes(db, context.client, context.shop_domain)

    try:
        disputes = shop_service.get_disputes(db, context.shop_domain)
        return DisputeListResponse(
            disputes=[DisputeOut.model_validate(d) for d in disputes],
            total=len(disputes),
        )
    except Exception as e:
        logger.error(f"Error loading disputes for {context.shop_domain}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/{dispute_id}", response_model=DisputeDetail)
async def get_dispute(
    dispute_id: str,
    context: ShopContext = Depends(require_active_billing),
    db: Session = Depends(get_db)
):
    dispute = _owned_dispute(db, context, dispute_id)
    latest = shop_service.get_latest_dispute_response(db, dispute.id)

    detail = DisputeDetail.model_validate(dispute)
    if latest is not None:
        detail.latest_response = DisputeResponseOut.model_validate(latest)
    return detail


@router.post("/{dispute_id}/responses/generate", response_model=GenerateDraftResult)
async def generate_response(
    dispute_id: str,
    context: ShopContext = Depends(require_active_billing),
    db: Session = Depends(get_db)
):
    """Draft a response with the AI provider and store it as a new row.

    Provider failures come back in the body's ``error`` field with status 200.
    """
    dispute = _owned_dispute(db, context, dispute_id)

    details = {
        "shopify_dispute_id": dispute.shopify_dispute_id,
        "order_name": dispute.order_name,
        "customer_email": dispute.customer_email,
        "status": dispute.status,
        "reason": dispute.reason,
        "chargeback_reason": dispute.chargeback_reason,
        "amount": dispute.amount,
        "currency": dispute.currency,
        "raw_payload": dispute.raw_payload,
    }

    try:
        draft_text = await generate_dispute_response(details)
    except AiDraftError as e:
        logger.warning(f"AI draft failed for dispute {dispute_id}: {str(e)}")
        return GenerateDraftResult(error=str(e))
    except Exception as e:
        logger.error(f"Unexpected error drafting dispute {dispute_id}: {str(e)}")
        return GenerateDraftResult(error="Failed to generate response")

    response = shop_service.create_dispute_response(db, dispute, draft_text, model_used=settings.OPENAI_MODEL)
    return GenerateDraftResult(response=DisputeResponseOut.model_validate(response))


@router.post("/{dispute_id}/responses", response_model=DisputeResponseOut)
async def save_response(
    dispute_id: str,
    body: SaveDraftRequest,
    context: ShopContext = Depends(require_active_billing),
    db: Session = Depends(get_db)
):
    """Save merchant-edited draft text as a new response row."""
    dispute = _owned_dispute(db, context, dispute_id)

    text = body.draft_text.strip()
    if not text:
        raise HTTPException(status_code=400, detail="draft_text is required")

    return shop_service.create_dispute_response(db, dispute, text, is_final=body.is_final)
