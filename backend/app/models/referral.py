"""
Referral Models
"""

from pydantic import BaseModel
from typing import Optional
from datetime import datetime


class RefereeIdentity(BaseModel):
    """Customer who used someone else's code (all best-effort)"""
    shopify_customer_id: Optional[str] = None
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class ReferralInDB(BaseModel):
    """Referral in database model"""
    id: str
    referrer_id: str
    code_id: Optional[str] = None
    referee_customer_id: Optional[str] = None
    referee_email: Optional[str] = None
    referee_first_name: Optional[str] = None
    referee_last_name: Optional[str] = None
    order_id: str
    workshop_product_id: Optional[str] = None
    workshop_product_title: Optional[str] = None
    workshop_quantity: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True


class Referral(ReferralInDB):
    """Referral response model"""


class RecordedReferral(BaseModel):
    """Referral together with whether this call created it"""
    referral: ReferralInDB
    created: bool


class ReferralStats(BaseModel):
    total: int = 0
    with_reward: int = 0
