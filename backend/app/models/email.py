"""
Email Log and Template Models
"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional
from datetime import datetime
from enum import Enum


class EmailTemplate(str, Enum):
    CODE_PROMO = "code_promo"
    CASHBACK_CONFIRMATION = "cashback_confirmation"
    MANUAL_REFERRER_WELCOME = "manual_referrer_welcome"


class EmailStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class EmailLogInDB(BaseModel):
    """Email log in database model"""
    id: str
    referrer_id: Optional[str] = None
    recipient: str
    template: EmailTemplate
    subject: str
    status: EmailStatus
    provider_id: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime
    sent_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class EmailTemplateContent(BaseModel):
    """Stored, operator-editable template; {{variable}} placeholders"""
    template: EmailTemplate
    subject: str
    html: str
    text: Optional[str] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class EmailTemplateUpdate(BaseModel):
    subject: str = Field(..., min_length=1, max_length=255)
    html: str = Field(..., min_length=1)
    text: Optional[str] = None

    @field_validator("subject")
    @classmethod
    def strip_subject(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("subject must not be blank")
        return value

    @field_validator("html")
    @classmethod
    def html_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("html must not be blank")
        return value

    @field_validator("text")
    @classmethod
    def blank_text_is_none(cls, value: Optional[str]) -> Optional[str]:
        return value if value and value.strip() else None
