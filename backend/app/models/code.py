"""
Referral Code Models
"""

from pydantic import BaseModel
from typing import Optional
from datetime import datetime
from decimal import Decimal
from enum import Enum


class CodeIssuancePolicy(str, Enum):
    """How repeat purchases by a referrer are turned into codes"""
    REUSE = "reuse"
    PER_PURCHASE = "per_purchase"


class CodeOrigin(BaseModel):
    """Purchase that caused a code to be issued"""
    order_id: Optional[str] = None
    order_gid: Optional[str] = None
    product_id: Optional[str] = None
    product_title: Optional[str] = None
    quantity: Optional[int] = None


class ReferralCodeInDB(BaseModel):
    """Referral code in database model"""
    id: str
    referrer_id: str
    code: str
    shopify_discount_id: Optional[str] = None
    usage_count: int = 0
    max_usage: int = 0
    active: bool = True
    expires_at: Optional[datetime] = None
    origin_order_id: Optional[str] = None
    origin_order_gid: Optional[str] = None
    workshop_product_id: Optional[str] = None
    workshop_product_title: Optional[str] = None
    workshop_quantity: Optional[int] = None
    discount_snapshot: Decimal
    cashback_snapshot: Decimal
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ReferralCode(ReferralCodeInDB):
    """Referral code response model"""


class IssuedCode(BaseModel):
    """Result of issuing or refreshing a referrer's code"""
    code: ReferralCodeInDB
    created: bool


class DiscountDetails(BaseModel):
    """Discount object as reported by Shopify"""
    id: str
    title: Optional[str] = None
    status: Optional[str] = None
    percentage: Optional[Decimal] = None
    amount: Optional[Decimal] = None
    usage_limit: Optional[int] = None
    applies_once_per_customer: Optional[bool] = None
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None


class RefundProgress(BaseModel):
    """Cashback refunded against a code's origin order versus the allowed ceiling"""
    code_id: str
    origin_order_gid: str
    refunded: Decimal
    max_refund: Optional[Decimal] = None
    percentage: Decimal = Decimal("0")
