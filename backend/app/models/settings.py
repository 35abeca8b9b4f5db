"""
Referral Program Settings Models
"""

from pydantic import BaseModel, Field, field_validator
from typing import List, Optional, Tuple, Union
from datetime import datetime
from decimal import Decimal


class ReferralSettings(BaseModel):
    """Program settings as read at the start of an operation"""
    discount_fraction: Decimal = Field(Decimal("0.1"), ge=0, le=1)
    cashback_amount: Decimal = Field(Decimal("20"), ge=0)
    code_validity_days: int = Field(30, ge=0)
    applies_once_per_customer: bool = True
    max_usages_per_code: int = Field(0, ge=0)
    max_refund_fraction: Decimal = Field(Decimal("1.0"), ge=0, le=1)
    eligible_segment_ids: Tuple[str, ...] = ()
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
        frozen = True


class ReferralSettingsUpdate(BaseModel):
    """Partial settings update; percentages are given as 0-100"""
    discount_percentage: Optional[Decimal] = Field(None, ge=0, le=100)
    cashback_amount: Optional[Decimal] = Field(None, ge=0)
    code_validity_days: Optional[int] = Field(None, ge=0)
    applies_once_per_customer: Optional[bool] = None
    max_usages_per_code: Optional[int] = Field(None, ge=0)
    max_refund_percentage: Optional[Decimal] = Field(None, ge=0, le=100)
    eligible_segment_ids: Optional[List[str]] = None

    @field_validator("eligible_segment_ids")
    @classmethod
    def drop_blank_segments(cls, value):
        if value is None:
            return value
        return [segment.strip() for segment in value if segment and segment.strip()]


class ReferralSettingsResponse(BaseModel):
    """Settings as shown to operators"""
    discount_percentage: Decimal
    cashback_amount: Decimal
    code_validity_days: int
    applies_once_per_customer: bool
    max_usages_per_code: int
    max_refund_percentage: Decimal
    eligible_segment_ids: List[str]
    updated_at: Optional[datetime] = None

    @classmethod
    def from_settings(cls, program: ReferralSettings) -> "ReferralSettingsResponse":
        return cls(
            discount_percentage=program.discount_fraction * 100,
            cashback_amount=program.cashback_amount,
            code_validity_days=program.code_validity_days,
            applies_once_per_customer=program.applies_once_per_customer,
            max_usages_per_code=program.max_usages_per_code,
            max_refund_percentage=program.max_refund_fraction * 100,
            eligible_segment_ids=list(program.eligible_segment_ids),
            updated_at=program.updated_at,
        )


class AllCustomers(BaseModel):
    """Discount is open to every customer"""

    class Config:
        frozen = True


class CustomerSegments(BaseModel):
    """Discount is restricted to the listed customer segments"""
    segment_ids: Tuple[str, ...]

    class Config:
        frozen = True


Audience = Union[AllCustomers, CustomerSegments]
