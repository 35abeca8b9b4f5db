"""
Common Models and Utilities
"""

from pydantic import BaseModel
from typing import Optional, Dict, Any
from datetime import datetime


class ErrorResponse(BaseModel):
    """Standard error response"""
    error: str
    message: str
    details: Optional[Dict[str, Any]] = None
    timestamp: datetime
    request_id: Optional[str] = None


class WebhookAck(BaseModel):
    """Acknowledgement returned to Shopify for every webhook delivery"""
    status: str = "ok"


class DeleteResponse(BaseModel):
    deleted: bool
    id: str
    discounts_deleted: int = 0
    discounts_failed: int = 0
