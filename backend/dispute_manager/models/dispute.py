from pydantic import BaseModel
from typing import Any, List, Optional
from datetime import datetime


class DisputeResponseOut(BaseModel):
    id: str
    dispute_id: str
    draft_text: str
    model_used: Optional[str]
    is_final: bool
    created_at: datetime

    class Config:
        from_attributes = True


class DisputeOut(BaseModel):
    id: str
    shopify_dispute_id: str
    order_id: Optional[str]
    order_name: Optional[str]
    customer_email: Optional[str]
    status: Optional[str]
    reason: Optional[str]
    chargeback_reason: Optional[str]
    amount: Optional[float]
    currency: Optional[str]
    evidence_due_by: Optional[datetime]
    evidence_submitted: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class DisputeDetail(DisputeOut):
    raw_payload: Optional[Any]
    latest_response: Optional[DisputeResponseOut] = None


class DisputeListResponse(BaseModel):
    disputes: List[DisputeOut]
    total: int


class SaveDraftRequest(BaseModel):
    draft_text: str
    is_final: bool = False


class GenerateDraftResult(BaseModel):
    response: Optional[DisputeResponseOut] = None
    error: Optional[str] = None
