"""
Reward Service - Cashback ledger and reward status transitions
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from sqlalchemy import func, select, update
import structlog

from app.core.database import upsert_insert
from app.core.exceptions import InvalidRewardState, RewardNotFound
from app.core.schema import codes, referrals, referrers, rewards
from app.models.order import ProductAttribution
from app.models.reward import RewardContext, RewardInDB, RewardStats, RewardStatus, RewardStatusStats
from app.models.settings import ReferralSettings
from app.monitoring.metrics import metrics_collector
from app.models.referral import Referral
from app.services.referral_service import get_referral_stats, list_recent_referrals

logger = structlog.get_logger()


def _reward_from_row(row) -> RewardInDB:
    return RewardInDB(**dict(row._mapping))


async def get_reward_by_id(db, reward_id: str) -> Optional[RewardInDB]:
    result = await db.execute(select(rewards).where(rewards.c.id == reward_id))
    row = result.fetchone()
    return _reward_from_row(row) if row else None


async def create_pending_reward(
    db,
    referrer_id: str,
    referral_id: str,
    program: ReferralSettings,
    currency: str,
    attribution: Optional[ProductAttribution] = None,
) -> RewardInDB:
    """Pending reward for a referral; the amount is fixed from settings now"""
    attribution = attribution or ProductAttribution()

    result = await db.execute(
        upsert_insert(db, rewards)
        .values(
            id=str(uuid.uuid4()),
            referrer_id=referrer_id,
            referral_id=referral_id,
            amount=program.cashback_amount,
            currency=currency,
            status=RewardStatus.PENDING.value,
            workshop_product_id=attribution.product_id,
            workshop_product_title=attribution.product_title,
            workshop_quantity=attribution.quantity,
            created_at=datetime.utcnow(),
        )
        .on_conflict_do_nothing(index_elements=["referral_id"])
        .returning(*rewards.c)
    )
    row = result.fetchone()
    if row is None:
        existing = await db.execute(select(rewards).where(rewards.c.referral_id == referral_id))
        return _reward_from_row(existing.fetchone())

    reward = _reward_from_row(row)
    metrics_collector.increment_counter("rewards_created")
    logger.info(
        "Pending reward created",
        reward_id=reward.id,
        referral_id=referral_id,
        amount=str(reward.amount),
        currency=currency,
    )
    return reward


async def get_reward_with_context(db, reward_id: str, for_update: bool = False) -> RewardContext:
    """Reward with its referral, code and referrer contact.

    for_update row-locks the reward until the transaction ends
    (PostgreSQL; SQLite ignores it).
    """
    query = (
        select(
            rewards,
            referrals.c.order_id.label("referral_order_id"),
            codes.c.id.label("ctx_code_id"),
            codes.c.code.label("ctx_code"),
            codes.c.origin_order_gid.label("ctx_origin_order_gid"),
            referrers.c.email.label("ctx_referrer_email"),
            referrers.c.first_name.label("ctx_referrer_first_name"),
        )
        .select_from(
            rewards
            .outerjoin(referrals, referrals.c.id == rewards.c.referral_id)
            .outerjoin(codes, codes.c.id == referrals.c.code_id)
            .outerjoin(referrers, referrers.c.id == rewards.c.referrer_id)
        )
        .where(rewards.c.id == reward_id)
    )
    if for_update:
        query = query.with_for_update(of=rewards)
    result = await db.execute(query)
    row = result.fetchone()
    if not row:
        raise RewardNotFound(reward_id)

    data = dict(row._mapping)
    return RewardContext(
        reward=RewardInDB(**{c.name: data[c.name] for c in rewards.c}),
        referral_order_id=data["referral_order_id"],
        code_id=data["ctx_code_id"],
        code=data["ctx_code"],
        origin_order_gid=data["ctx_origin_order_gid"],
        referrer_email=data["ctx_referrer_email"],
        referrer_first_name=data["ctx_referrer_first_name"],
    )


async def mark_reward_as_paid(db, reward_id: str) -> Optional[RewardInDB]:
    """PENDING -> PAID; None when the reward was no longer pending"""
    result = await db.execute(
        update(rewards)
        .where(rewards.c.id == reward_id, rewards.c.status == RewardStatus.PENDING.value)
        .values(status=RewardStatus.PAID.value, paid_at=datetime.utcnow())
        .returning(*rewards.c)
    )
    row = result.fetchone()
    return _reward_from_row(row) if row else None


async def mark_reward_as_failed(db, reward_id: str, notes: Optional[str] = None) -> RewardInDB:
    """PENDING -> FAILED; operator decision, terminal"""
    result = await db.execute(
        update(rewards)
        .where(rewards.c.id == reward_id, rewards.c.status == RewardStatus.PENDING.value)
        .values(status=RewardStatus.FAILED.value, notes=notes)
        .returning(*rewards.c)
    )
    row = result.fetchone()
    if row:
        logger.info("Reward marked as failed", reward_id=reward_id)
        return _reward_from_row(row)

    current = await get_reward_by_id(db, reward_id)
    if not current:
        raise RewardNotFound(reward_id)
    raise InvalidRewardState(reward_id, current.status.value)


async def total_paid_for_origin_order(db, origin_order_gid: str) -> Decimal:
    """Sum of PAID rewards whose referral's code was minted from this order"""
    result = await db.execute(
        select(func.coalesce(func.sum(rewards.c.amount), 0))
        .select_from(
            rewards
            .join(referrals, referrals.c.id == rewards.c.referral_id)
            .join(codes, codes.c.id == referrals.c.code_id)
        )
        .where(
            rewards.c.status == RewardStatus.PAID.value,
            codes.c.origin_order_gid == origin_order_gid,
        )
    )
    return Decimal(str(result.scalar_one()))


async def total_paid_for_referrer(db, referrer_id: str) -> Decimal:
    result = await db.execute(
        select(func.coalesce(func.sum(rewards.c.amount), 0))
        .where(rewards.c.referrer_id == referrer_id, rewards.c.status == RewardStatus.PAID.value)
    )
    return Decimal(str(result.scalar_one()))


async def list_rewards(
    db,
    status: Optional[RewardStatus] = None,
    referrer_id: Optional[str] = None,
    limit: int = 100,
) -> List[RewardInDB]:
    query = select(rewards).order_by(rewards.c.created_at.desc()).limit(limit)
    if status:
        query = query.where(rewards.c.status == status.value)
    if referrer_id:
        query = query.where(rewards.c.referrer_id == referrer_id)

    result = await db.execute(query)
    return [_reward_from_row(row) for row in result.fetchall()]


async def get_reward_stats(db) -> RewardStats:
    result = await db.execute(
        select(rewards.c.status, func.count(), func.coalesce(func.sum(rewards.c.amount), 0))
        .group_by(rewards.c.status)
    )
    by_status = {status: RewardStatusStats() for status in RewardStatus}
    for status, count, amount in result.fetchall():
        by_status[RewardStatus(status)] = RewardStatusStats(count=count, amount=Decimal(str(amount)))

    referral_stats = await get_referral_stats(db)
    return RewardStats(
        by_status=by_status,
        total_referrals=referral_stats.total,
        referrals_with_reward=referral_stats.with_reward,
        recent_referrals=[Referral(**r.model_dump()) for r in await list_recent_referrals(db)],
    )
