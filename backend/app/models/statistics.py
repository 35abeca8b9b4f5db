"""
Statistics Models
"""

from pydantic import BaseModel
from typing import Dict, List, Optional
from datetime import date, datetime
from decimal import Decimal

from app.models.reward import RewardStatus, RewardStatusStats


class TimeSeriesPoint(BaseModel):
    day: date
    count: int = 0
    amount: Optional[Decimal] = None


class TopReferrer(BaseModel):
    id: str
    name: str
    total_referrals: int = 0
    total_rewards: Decimal = Decimal("0")
    paid_rewards: Decimal = Decimal("0")
    pending_rewards: Decimal = Decimal("0")


class StatisticsSummary(BaseModel):
    total_referrers: int = 0
    total_codes: int = 0
    total_referrals: int = 0
    total_rewards: int = 0
    total_rewards_amount: Decimal = Decimal("0")
    pending_rewards_amount: Decimal = Decimal("0")
    paid_rewards_amount: Decimal = Decimal("0")


class Statistics(BaseModel):
    """Dashboard figures; time series hold one point per day of the window, oldest first"""
    days: int
    referrers_over_time: List[TimeSeriesPoint]
    referrals_over_time: List[TimeSeriesPoint]
    rewards_over_time: List[TimeSeriesPoint]
    rewards_amount_over_time: List[TimeSeriesPoint]
    codes_usage_over_time: List[TimeSeriesPoint]
    rewards_by_status: Dict[RewardStatus, RewardStatusStats]
    top_referrers: List[TopReferrer]
    summary: StatisticsSummary


class WorkshopParticipant(BaseModel):
    referrer_id: str
    name: str
    email: Optional[str] = None
    shopify_customer_id: str
    purchased_at: datetime
    code: str
    quantity: int = 1
    # None when no promo email was attempted; NO_EMAIL when the referrer has no address
    email_status: Optional[str] = None
    email_sent_at: Optional[datetime] = None
    email_error: Optional[str] = None


class Workshop(BaseModel):
    product_title: str
    participants: List[WorkshopParticipant] = []
    seats: int = 0
