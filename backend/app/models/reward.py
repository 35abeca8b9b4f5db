"""
Reward Models
"""

from pydantic import BaseModel, Field
from typing import Dict, List, Optional
from datetime import datetime
from decimal import Decimal
from enum import Enum

from app.models.referral import Referral


class RewardStatus(str, Enum):
    """Reward status"""
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class RewardInDB(BaseModel):
    """Reward in database model"""
    id: str
    referrer_id: str
    referral_id: str
    amount: Decimal
    currency: str
    status: RewardStatus = RewardStatus.PENDING
    notes: Optional[str] = None
    workshop_product_id: Optional[str] = None
    workshop_product_title: Optional[str] = None
    workshop_quantity: Optional[int] = None
    created_at: datetime
    paid_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class Reward(RewardInDB):
    """Reward response model"""


class RewardContext(BaseModel):
    """Reward loaded with the referral and code it came from"""
    reward: RewardInDB
    referral_order_id: Optional[str] = None
    code_id: Optional[str] = None
    code: Optional[str] = None
    origin_order_gid: Optional[str] = None
    referrer_email: Optional[str] = None
    referrer_first_name: Optional[str] = None


class SettleRewardRequest(BaseModel):
    """Operator request to settle a reward"""
    order_gid: Optional[str] = Field(None, max_length=255)


class FailRewardRequest(BaseModel):
    """Operator request to give up on a reward"""
    notes: Optional[str] = Field(None, max_length=2000)


class SettlementResult(BaseModel):
    """Outcome of a successful settlement"""
    reward: Reward
    order_gid: str
    total_paid: Decimal
    ceiling: Optional[Decimal] = None
    refund_id: Optional[str] = None
    used_fallback_gateway: bool = False


class RewardStatusStats(BaseModel):
    count: int = 0
    amount: Decimal = Decimal("0")


class RewardStats(BaseModel):
    """Reward and referral statistics for the dashboard"""
    by_status: Dict[RewardStatus, RewardStatusStats]
    total_referrals: int = 0
    referrals_with_reward: int = 0
    recent_referrals: List[Referral] = []
