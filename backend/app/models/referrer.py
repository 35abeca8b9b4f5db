"""
Referrer Models
"""

from pydantic import BaseModel, Field, EmailStr
from typing import Dict, List, Optional
from datetime import datetime
from decimal import Decimal

from app.models.code import DiscountDetails, ReferralCode, RefundProgress
from app.models.email import EmailLogInDB
from app.models.referral import Referral
from app.models.reward import Reward


class CustomerIdentity(BaseModel):
    """Customer identity carried by a Shopify payload"""
    shopify_customer_id: str = Field(..., min_length=1, max_length=64)
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class ReferrerBase(BaseModel):
    """Base referrer model"""
    shopify_customer_id: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class ReferrerCreate(BaseModel):
    """Manual referrer provisioning request"""
    email: EmailStr
    first_name: Optional[str] = Field(None, max_length=255)
    last_name: Optional[str] = Field(None, max_length=255)


class ReferrerInDB(ReferrerBase):
    """Referrer in database model"""
    id: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class Referrer(ReferrerInDB):
    """Referrer response model"""


class ReferrerSummary(Referrer):
    """Referrer with aggregates for operator listings"""
    latest_code: Optional[str] = None
    latest_code_id: Optional[str] = None
    latest_code_usage_count: int = 0
    codes_count: int = 0
    referrals_count: int = 0
    pending_rewards_count: int = 0
    pending_rewards_amount: Decimal = Decimal("0")
    paid_rewards_amount: Decimal = Decimal("0")
    next_pending_reward_id: Optional[str] = None


class ReferrerDetail(Referrer):
    """Referrer with everything it owns"""
    codes: List[ReferralCode] = []
    referrals: List[Referral] = []
    rewards: List[Reward] = []
    total_paid: Decimal = Decimal("0")
    discounts: Dict[str, DiscountDetails] = {}
    email_logs: List[EmailLogInDB] = []
    refund_progress: Dict[str, RefundProgress] = {}


class ProvisioningResult(BaseModel):
    """Outcome of manual referrer provisioning"""
    referrer: Referrer
    code: ReferralCode
    referrer_created: bool
    code_created: bool
    discount_synced: bool
    email_sent: bool
