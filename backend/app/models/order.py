"""
Shopify Order Models
"""

from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime
from decimal import Decimal


class OrderCustomer(BaseModel):
    """Customer block of an order webhook"""
    id: Optional[int] = None
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class DiscountCodeApplication(BaseModel):
    code: Optional[str] = None


class OrderPaidPayload(BaseModel):
    """orders/paid webhook body (only the fields used here)"""
    id: Optional[int] = None
    admin_graphql_api_id: Optional[str] = None
    email: Optional[str] = None
    currency: Optional[str] = None
    discount_codes: List[DiscountCodeApplication] = Field(default_factory=list)
    customer: Optional[OrderCustomer] = None

    class Config:
        extra = "ignore"

    @property
    def used_code(self) -> Optional[str]:
        for application in self.discount_codes:
            if application.code and application.code.strip():
                return application.code.strip().upper()
        return None

    @property
    def referee_email(self) -> Optional[str]:
        if self.email:
            return self.email
        return self.customer.email if self.customer else None


class ProductAttribution(BaseModel):
    """Primary product of an order"""
    product_id: Optional[str] = None
    product_title: Optional[str] = None
    quantity: Optional[int] = None


class CustomerOrder(BaseModel):
    """Order summary used to pick a settlement override"""
    id: str
    name: Optional[str] = None
    created_at: Optional[datetime] = None
    total: Optional[Decimal] = None
    currency: Optional[str] = None
    financial_status: Optional[str] = None


class RefundOutcome(BaseModel):
    """Result of a refund created on Shopify"""
    refund_id: Optional[str] = None
    parent_transaction_id: Optional[str] = None
    used_fallback_gateway: bool = False
    attempts: int = 1
