"""
Settlement Service - Turns a pending reward into a Shopify refund

Flow for settle_reward:
    claim reward + order -> re-read reward -> ceiling check -> refund -> PAID -> release -> email

Claims live in settlement_locks and are committed before Shopify is
called, so two settlements of the same reward, or of two rewards on the
same order, can never both reach refundCreate. A reward only leaves
PENDING after Shopify confirmed the refund, and the PAID write is
committed before the claims are released.
"""

import asyncio
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional, Tuple
import structlog
from sqlalchemy import delete

from app.core.config import settings
from app.core.database import upsert_insert
from app.core.exceptions import (
    InvalidRewardState, NoOrderAvailable, OrderTotalUnavailable, RefundCeilingExceeded, SettlementInProgress
)
from app.core.schema import settlement_locks
from app.models.code import ReferralCodeInDB, RefundProgress
from app.models.reward import Reward, RewardStatus, SettlementResult
from app.models.settings import ReferralSettings
from app.monitoring.metrics import metrics_collector, track_timing
from app.monitoring.tracing import traced_operation
from app.services.code_service import backfill_origin_order
from app.services.notification_service import send_cashback_confirmation_email
from app.services.refund_service import execute_referral_refund
from app.services.reward_service import (
    get_reward_with_context, mark_reward_as_paid, total_paid_for_origin_order
)
from app.services.settings_service import get_referral_settings

logger = structlog.get_logger()

CENT = Decimal("0.01")


@asynccontextmanager
async def settlement_lock(db, keys: List[str], ttl_seconds: Optional[int] = None):
    """
    Claim every key or none of them.

    Raises SettlementInProgress when another holder has a live claim on a
    key. Claims older than the TTL are treated as abandoned and taken over.
    """
    ttl_seconds = ttl_seconds or settings.SETTLEMENT_LOCK_TTL_SECONDS
    token = str(uuid.uuid4())
    now = datetime.utcnow()

    await db.execute(
        delete(settlement_locks)
        .where(settlement_locks.c.key.in_(keys), settlement_locks.c.expires_at < now)
    )
    for key in keys:
        result = await db.execute(
            upsert_insert(db, settlement_locks)
            .values(key=key, token=token, acquired_at=now, expires_at=now + timedelta(seconds=ttl_seconds))
            .on_conflict_do_nothing(index_elements=["key"])
            .returning(settlement_locks.c.key)
        )
        if result.fetchone() is None:
            await db.rollback()
            logger.warning("Settlement already in progress", lock=key)
            raise SettlementInProgress(key)
    await db.commit()

    try:
        yield token
    finally:
        # Anything the body left uncommitted is abandoned with the claim
        await db.rollback()
        await db.execute(
            delete(settlement_locks)
            .where(settlement_locks.c.key.in_(keys), settlement_locks.c.token == token)
        )
        await db.commit()


async def _read_ledger(db, order_gid: str) -> Tuple[ReferralSettings, Decimal]:
    # One session cannot run statements concurrently, so these stay sequential
    program = await get_referral_settings(db)
    already_paid = await total_paid_for_origin_order(db, order_gid)
    return program, already_paid


def compute_refund_ceiling(order_total: Optional[Decimal], max_refund_fraction: Decimal) -> Optional[Decimal]:
    """None when the order total is unknown; a zero total counts as unknown"""
    if not order_total:
        return None
    return (Decimal(order_total) * Decimal(max_refund_fraction)).quantize(CENT)


async def get_refund_progress(db, client, code: ReferralCodeInDB, program: ReferralSettings) -> Optional[RefundProgress]:
    """How much of the code's origin order has gone back as cashback; None without an origin order"""
    if not code.origin_order_gid:
        return None

    refunded = await total_paid_for_origin_order(db, code.origin_order_gid)
    max_refund = compute_refund_ceiling(
        await client.get_order_total_amount(code.origin_order_gid), program.max_refund_fraction
    )
    percentage = Decimal("0")
    if max_refund:
        percentage = min(refunded / max_refund * 100, Decimal("100")).quantize(CENT)
    return RefundProgress(
        code_id=code.id,
        origin_order_gid=code.origin_order_gid,
        refunded=refunded,
        max_refund=max_refund,
        percentage=percentage,
    )


@traced_operation("settle_reward")
@track_timing("settle_reward")
async def settle_reward(db, client, reward_id: str, order_gid_override: Optional[str] = None) -> SettlementResult:
    context = await get_reward_with_context(db, reward_id)
    if context.reward.status != RewardStatus.PENDING:
        raise InvalidRewardState(reward_id, context.reward.status.value)

    order_gid = order_gid_override or context.origin_order_gid
    if not order_gid:
        raise NoOrderAvailable(reward_id)

    async with settlement_lock(db, [f"reward:{reward_id}", f"order:{order_gid}"]):
        # Re-read under the claim; a settlement that finished meanwhile shows up here
        context = await get_reward_with_context(db, reward_id, for_update=True)
        reward = context.reward
        if reward.status != RewardStatus.PENDING:
            raise InvalidRewardState(reward_id, reward.status.value)

        if order_gid_override and context.code_id and not context.origin_order_gid:
            await backfill_origin_order(db, context.code_id, order_gid_override)

        logger.info(
            "Settling reward",
            reward_id=reward_id,
            order_gid=order_gid,
            override=bool(order_gid_override),
            amount=str(reward.amount),
        )

        (program, already_paid), order_total = await asyncio.gather(
            _read_ledger(db, order_gid),
            client.get_order_total_amount(order_gid),
        )

        ceiling = compute_refund_ceiling(order_total, program.max_refund_fraction)
        if ceiling is None:
            if settings.REFUND_REQUIRE_ORDER_TOTAL:
                raise OrderTotalUnavailable(order_gid)
            logger.warning("Order total unknown, refund ceiling not enforced", reward_id=reward_id, order_gid=order_gid)
        elif already_paid + reward.amount > ceiling:
            remaining = max(Decimal("0"), ceiling - already_paid)
            logger.warning(
                "Refund ceiling exceeded",
                reward_id=reward_id,
                order_gid=order_gid,
                ceiling=str(ceiling),
                already_paid=str(already_paid),
                remaining=str(remaining),
            )
            raise RefundCeilingExceeded(remaining, ceiling, already_paid, order_gid, reward.currency)

        outcome = await execute_referral_refund(client, order_gid, reward.amount)

        paid = await mark_reward_as_paid(db, reward_id)
        await db.commit()
        if paid is None:
            # Only reachable when the reward was changed outside settle_reward
            logger.critical("Refund executed for a reward that is no longer pending", reward_id=reward_id, order_gid=order_gid)
            raise InvalidRewardState(reward_id, "settled concurrently")

    metrics_collector.increment_counter("rewards_settled")
    total_paid = already_paid + paid.amount
    logger.info(
        "Reward paid",
        reward_id=reward_id,
        order_gid=order_gid,
        total_paid=str(total_paid),
        ceiling=str(ceiling) if ceiling is not None else None,
        refund_id=outcome.refund_id,
    )

    try:
        await send_cashback_confirmation_email(
            db,
            referrer_id=paid.referrer_id,
            email=context.referrer_email,
            first_name=context.referrer_first_name,
            code=context.code,
            amount=paid.amount,
            currency=paid.currency,
        )
    except Exception as e:
        await db.rollback()
        logger.error("Cashback confirmation email failed", reward_id=reward_id, error=str(e))

    return SettlementResult(
        reward=Reward(**paid.model_dump()),
        order_gid=order_gid,
        total_paid=total_paid,
        ceiling=ceiling,
        refund_id=outcome.refund_id,
        used_fallback_gateway=outcome.used_fallback_gateway,
    )
