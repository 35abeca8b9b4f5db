"""
Statistics Endpoints
"""

from fastapi import APIRouter, Depends, Query
from typing import List

from app.core.database import get_database
from app.models.statistics import Statistics, Workshop
from app.services import statistics_service

router = APIRouter(prefix="/statistics", tags=["statistics"])


@router.get("", response_model=Statistics)
async def get_statistics(days: int = Query(30, ge=1, le=365), db=Depends(get_database)):
    return await statistics_service.get_statistics(db, days=days)


@router.get("/workshops", response_model=List[Workshop])
async def list_workshops(db=Depends(get_database)):
    """Workshop buyers grouped by product, with their promo email status"""
    return await statistics_service.list_workshops(db)
