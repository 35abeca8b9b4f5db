"""
Email Template Endpoints
"""

from fastapi import APIRouter, Depends
from typing import List

from app.core.database import get_database
from app.models.email import EmailTemplate, EmailTemplateContent, EmailTemplateUpdate
from app.services import notification_service

router = APIRouter(prefix="/email-templates", tags=["email-templates"])


@router.get("", response_model=List[EmailTemplateContent])
async def list_templates(db=Depends(get_database)):
    return await notification_service.list_email_templates(db)


@router.get("/{template}", response_model=EmailTemplateContent)
async def get_template(template: EmailTemplate, db=Depends(get_database)):
    return await notification_service.get_email_template(db, template)


@router.get("/{template}/default", response_model=EmailTemplateContent)
async def get_default_template(template: EmailTemplate):
    """Built-in version, for comparing before a reset"""
    return notification_service.default_template(template)


@router.put("/{template}", response_model=EmailTemplateContent)
async def update_template(template: EmailTemplate, update_data: EmailTemplateUpdate, db=Depends(get_database)):
    return await notification_service.upsert_email_template(db, template, update_data)


@router.post("/{template}/reset", response_model=EmailTemplateContent)
async def reset_template(template: EmailTemplate, db=Depends(get_database)):
    return await notification_service.reset_email_template(db, template)
