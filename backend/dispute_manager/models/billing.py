from pydantic import BaseModel
from typing import Optional
from datetime import datetime


class BillingStatus(BaseModel):
    shop_domain: str
    test_store: bool
    on_trial: bool
    active_billing: bool
    has_active_subscription: bool
    trial_days_remaining: int
    trial_end_date: Optional[datetime]
    subscription_end_date: Optional[datetime]
    billing_plan: Optional[str]
    monthly_price: float
    trial_days: int


class SubscribeResponse(BaseModel):
    confirmation_url: str
