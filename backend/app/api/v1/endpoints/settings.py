"""
Referral Settings Endpoints
"""

from fastapi import APIRouter, Depends

from app.core.database import get_database
from app.models.settings import ReferralSettingsResponse, ReferralSettingsUpdate
from app.services import settings_service

router = APIRouter(prefix="/settings", tags=["settings"])


@router.get("", response_model=ReferralSettingsResponse)
async def get_settings(db=Depends(get_database)):
    program = await settings_service.get_referral_settings(db)
    return ReferralSettingsResponse.from_settings(program)


@router.put("", response_model=ReferralSettingsResponse)
async def update_settings(update_data: ReferralSettingsUpdate, db=Depends(get_database)):
    """Partial update; percentages are 0-100"""
    program = await settings_service.update_referral_settings(db, update_data)
    return ReferralSettingsResponse.from_settings(program)
