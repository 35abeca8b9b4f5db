"""
Rewards Endpoints
"""

from fastapi import APIRouter, Depends, Query
from typing import List, Optional

from app.core.database import get_database
from app.models.reward import (
    FailRewardRequest, Reward, RewardStats, RewardStatus, SettleRewardRequest, SettlementResult
)
from app.services import reward_service
from app.services.settlement_service import settle_reward
from app.services.shopify_admin import get_shopify_client

router = APIRouter(prefix="/rewards", tags=["rewards"])


@router.get("", response_model=List[Reward])
async def list_rewards(
    status_filter: Optional[RewardStatus] = Query(None, alias="status"),
    limit: int = Query(100, ge=1, le=500),
    db=Depends(get_database),
):
    """List rewards, newest first"""
    return await reward_service.list_rewards(db, status=status_filter, limit=limit)


@router.get("/stats", response_model=RewardStats)
async def get_reward_stats(db=Depends(get_database)):
    """Reward counts and amounts by status, with referral totals"""
    return await reward_service.get_reward_stats(db)


@router.post("/{reward_id}/settle", response_model=SettlementResult)
async def settle(
    reward_id: str,
    body: Optional[SettleRewardRequest] = None,
    db=Depends(get_database),
    client=Depends(get_shopify_client),
):
    """Refund the reward on Shopify and mark it paid"""
    override = body.order_gid.strip() if body and body.order_gid and body.order_gid.strip() else None
    return await settle_reward(db, client, reward_id, override)


@router.post("/{reward_id}/fail", response_model=Reward)
async def fail(
    reward_id: str,
    body: Optional[FailRewardRequest] = None,
    db=Depends(get_database),
):
    """Give up on a pending reward"""
    return await reward_service.mark_reward_as_failed(db, reward_id, body.notes if body else None)
