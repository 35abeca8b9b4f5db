"""
Referral Service - Records at most one referral per source order
"""

import uuid
from datetime import datetime
from typing import List, Optional
from sqlalchemy import func, select
import structlog

from app.core.database import upsert_insert
from app.core.schema import referrals, rewards
from app.models.order import ProductAttribution
from app.models.referral import RecordedReferral, RefereeIdentity, ReferralInDB, ReferralStats

logger = structlog.get_logger()


def _referral_from_row(row) -> ReferralInDB:
    return ReferralInDB(**dict(row._mapping))


async def find_referral_by_order_id(db, order_id: str) -> Optional[ReferralInDB]:
    result = await db.execute(select(referrals).where(referrals.c.order_id == order_id))
    row = result.fetchone()
    return _referral_from_row(row) if row else None


async def record_referral(
    db,
    referrer_id: str,
    order_id: str,
    code_id: Optional[str] = None,
    referee: Optional[RefereeIdentity] = None,
    attribution: Optional[ProductAttribution] = None,
) -> RecordedReferral:
    """
    Record the referral for an order exactly once.

    An existing referral for the order is returned untouched. The insert
    itself is ON CONFLICT DO NOTHING on order_id so two racing deliveries
    still produce a single row.
    """
    existing = await find_referral_by_order_id(db, order_id)
    if existing:
        logger.info("Referral already recorded for order", order_id=order_id, referral_id=existing.id)
        return RecordedReferral(referral=existing, created=False)

    referee = referee or RefereeIdentity()
    attribution = attribution or ProductAttribution()

    result = await db.execute(
        upsert_insert(db, referrals)
        .values(
            id=str(uuid.uuid4()),
            referrer_id=referrer_id,
            code_id=code_id,
            referee_customer_id=referee.shopify_customer_id,
            referee_email=referee.email,
            referee_first_name=referee.first_name,
            referee_last_name=referee.last_name,
            order_id=order_id,
            workshop_product_id=attribution.product_id,
            workshop_product_title=attribution.product_title,
            workshop_quantity=attribution.quantity,
            created_at=datetime.utcnow(),
        )
        .on_conflict_do_nothing(index_elements=["order_id"])
        .returning(*referrals.c)
    )
    row = result.fetchone()
    if row is None:
        # Lost the race to a concurrent delivery
        existing = await find_referral_by_order_id(db, order_id)
        return RecordedReferral(referral=existing, created=False)

    referral = _referral_from_row(row)
    logger.info("Referral recorded", order_id=order_id, referral_id=referral.id, referrer_id=referrer_id)
    return RecordedReferral(referral=referral, created=True)


async def list_referrals_for_referrer(db, referrer_id: str) -> List[ReferralInDB]:
    result = await db.execute(
        select(referrals)
        .where(referrals.c.referrer_id == referrer_id)
        .order_by(referrals.c.created_at.desc())
    )
    return [_referral_from_row(row) for row in result.fetchall()]


async def list_recent_referrals(db, limit: int = 20) -> List[ReferralInDB]:
    result = await db.execute(select(referrals).order_by(referrals.c.created_at.desc()).limit(limit))
    return [_referral_from_row(row) for row in result.fetchall()]


async def get_referral_stats(db) -> ReferralStats:
    total = (await db.execute(select(func.count()).select_from(referrals))).scalar_one()
    with_reward = (await db.execute(
        select(func.count()).select_from(referrals.join(rewards, rewards.c.referral_id == referrals.c.id))
    )).scalar_one()
    return ReferralStats(total=total, with_reward=with_reward)
