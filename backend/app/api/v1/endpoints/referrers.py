"""
Referrers Endpoints
"""

from fastapi import APIRouter, Depends, Query, status
from typing import List, Optional

from app.core.database import get_database
from app.models.code import ReferralCode
from app.models.common import DeleteResponse
from app.models.order import CustomerOrder
from app.models.referrer import ProvisioningResult, ReferrerCreate, ReferrerDetail, ReferrerSummary
from app.services import referrer_service
from app.services.discount_service import resync_code_discount
from app.services.provisioning_service import provision_referrer
from app.services.shopify_admin import get_shopify_client

router = APIRouter(prefix="/referrers", tags=["referrers"])


@router.get("", response_model=List[ReferrerSummary])
async def list_referrers(
    search: Optional[str] = Query(None, max_length=255),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db=Depends(get_database),
):
    """List referrers with their aggregates"""
    return await referrer_service.list_referrers_with_stats(db, limit=limit, offset=offset, search=search)


@router.post("", response_model=ProvisioningResult, status_code=status.HTTP_201_CREATED)
async def create_referrer(
    request: ReferrerCreate,
    db=Depends(get_database),
    client=Depends(get_shopify_client),
):
    """Provision a referrer and code from an email address"""
    return await provision_referrer(db, client, request)


@router.get("/{referrer_id}", response_model=ReferrerDetail)
async def get_referrer(
    referrer_id: str,
    db=Depends(get_database),
    client=Depends(get_shopify_client),
):
    return await referrer_service.get_referrer_detail(db, client, referrer_id)


@router.delete("/{referrer_id}", response_model=DeleteResponse)
async def delete_referrer(
    referrer_id: str,
    db=Depends(get_database),
    client=Depends(get_shopify_client),
):
    """Delete the referrer, its codes, referrals, rewards and discounts"""
    return await referrer_service.delete_referrer(db, client, referrer_id)


@router.get("/{referrer_id}/orders", response_model=List[CustomerOrder])
async def list_referrer_orders(
    referrer_id: str,
    limit: int = Query(10, ge=1, le=50),
    db=Depends(get_database),
    client=Depends(get_shopify_client),
):
    """Recent Shopify orders of the referrer, for choosing a settlement order"""
    return await referrer_service.list_referrer_orders(db, client, referrer_id, limit=limit)


@router.post("/{referrer_id}/codes/{code_id}/sync-discount", response_model=ReferralCode)
async def sync_code_discount(
    referrer_id: str,
    code_id: str,
    db=Depends(get_database),
    client=Depends(get_shopify_client),
):
    """Re-apply current settings to the code and its Shopify discount"""
    return await resync_code_discount(db, client, referrer_id, code_id)
