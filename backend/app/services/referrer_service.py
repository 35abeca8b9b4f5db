"""
Referrer Service - Referrer registry keyed by Shopify customer id
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple
from sqlalchemy import delete, func, or_, select, update
import structlog

from app.core.database import upsert_insert
from app.core.exceptions import ReferrerNotFound, ShopifyAPIError
from app.core.schema import codes, email_logs, referrals, referrers, rewards
from app.models.common import DeleteResponse
from app.models.code import ReferralCode
from app.models.order import CustomerOrder
from app.models.referral import Referral
from app.models.referrer import CustomerIdentity, ReferrerDetail, ReferrerInDB, ReferrerSummary
from app.models.reward import Reward, RewardStatus
from app.services.code_service import list_codes_for_referrer
from app.services.notification_service import list_email_logs_for_referrer
from app.services.referral_service import list_referrals_for_referrer
from app.services.reward_service import list_rewards, total_paid_for_referrer
from app.services.settings_service import get_referral_settings
from app.services.settlement_service import get_refund_progress

logger = structlog.get_logger()

CONTACT_FIELDS = ("email", "first_name", "last_name")


def _referrer_from_row(row) -> ReferrerInDB:
    return ReferrerInDB(**dict(row._mapping))


async def get_referrer_by_id(db, referrer_id: str) -> Optional[ReferrerInDB]:
    result = await db.execute(select(referrers).where(referrers.c.id == referrer_id))
    row = result.fetchone()
    return _referrer_from_row(row) if row else None


async def get_referrer_by_customer_id(db, shopify_customer_id: str) -> Optional[ReferrerInDB]:
    result = await db.execute(
        select(referrers).where(referrers.c.shopify_customer_id == shopify_customer_id)
    )
    row = result.fetchone()
    return _referrer_from_row(row) if row else None


async def get_or_create_referrer(db, customer: CustomerIdentity) -> Tuple[ReferrerInDB, bool]:
    """
    Idempotent upsert keyed on the Shopify customer id.

    Returns (referrer, created). A concurrent insert for the same customer
    resolves through the unique constraint and the existing row is re-read.
    Contact fields are refreshed when the payload carries different values;
    an unchanged referrer keeps its updated_at.
    """
    now = datetime.utcnow()
    result = await db.execute(
        upsert_insert(db, referrers)
        .values(
            id=str(uuid.uuid4()),
            shopify_customer_id=customer.shopify_customer_id,
            email=customer.email,
            first_name=customer.first_name,
            last_name=customer.last_name,
            created_at=now,
            updated_at=now,
        )
        .on_conflict_do_nothing(index_elements=["shopify_customer_id"])
        .returning(*referrers.c)
    )
    row = result.fetchone()
    if row:
        referrer = _referrer_from_row(row)
        logger.info("Referrer created", referrer_id=referrer.id, shopify_customer_id=customer.shopify_customer_id)
        return referrer, True

    existing = await get_referrer_by_customer_id(db, customer.shopify_customer_id)

    changes = {}
    for field in CONTACT_FIELDS:
        incoming = getattr(customer, field)
        if incoming is not None and incoming != getattr(existing, field):
            changes[field] = incoming

    if not changes:
        return existing, False

    result = await db.execute(
        update(referrers)
        .where(referrers.c.id == existing.id)
        .values(**changes, updated_at=now)
        .returning(*referrers.c)
    )
    logger.info("Referrer contact refreshed", referrer_id=existing.id, fields=sorted(changes))
    return _referrer_from_row(result.fetchone()), False


async def list_referrers_with_stats(
    db,
    limit: int = 50,
    offset: int = 0,
    search: Optional[str] = None,
) -> List[ReferrerSummary]:
    """Referrers with code, referral and reward aggregates"""
    query = select(referrers).order_by(referrers.c.created_at.desc()).limit(limit).offset(offset)
    if search:
        pattern = f"%{search.strip().lower()}%"
        query = query.where(or_(
            func.lower(referrers.c.email).like(pattern),
            func.lower(referrers.c.first_name).like(pattern),
            func.lower(referrers.c.last_name).like(pattern),
            referrers.c.shopify_customer_id.like(pattern),
        ))

    result = await db.execute(query)
    rows = result.fetchall()
    if not rows:
        return []

    referrer_ids = [row.id for row in rows]

    code_rows = (await db.execute(
        select(codes.c.referrer_id, codes.c.id, codes.c.code, codes.c.usage_count)
        .where(codes.c.referrer_id.in_(referrer_ids))
        .order_by(codes.c.created_at.desc())
    )).fetchall()

    referral_counts = dict((await db.execute(
        select(referrals.c.referrer_id, func.count())
        .where(referrals.c.referrer_id.in_(referrer_ids))
        .group_by(referrals.c.referrer_id)
    )).fetchall())

    reward_rows = (await db.execute(
        select(rewards.c.referrer_id, rewards.c.id, rewards.c.amount, rewards.c.status)
        .where(rewards.c.referrer_id.in_(referrer_ids))
        .order_by(rewards.c.created_at.asc())
    )).fetchall()

    summaries = []
    for row in rows:
        own_codes = [c for c in code_rows if c.referrer_id == row.id]
        pending = [r for r in reward_rows if r.referrer_id == row.id and r.status == RewardStatus.PENDING.value]
        paid = [r for r in reward_rows if r.referrer_id == row.id and r.status == RewardStatus.PAID.value]
        latest = own_codes[0] if own_codes else None

        summaries.append(ReferrerSummary(
            **dict(row._mapping),
            latest_code=latest.code if latest else None,
            latest_code_id=latest.id if latest else None,
            latest_code_usage_count=latest.usage_count if latest else 0,
            codes_count=len(own_codes),
            referrals_count=referral_counts.get(row.id, 0),
            pending_rewards_count=len(pending),
            pending_rewards_amount=sum((Decimal(r.amount) for r in pending), Decimal("0")),
            paid_rewards_amount=sum((Decimal(r.amount) for r in paid), Decimal("0")),
            next_pending_reward_id=pending[0].id if pending else None,
        ))

    return summaries


async def get_referrer_detail(db, client, referrer_id: str) -> ReferrerDetail:
    """Referrer with codes, referrals, rewards, the live state of its discounts and refund progress per code"""
    referrer = await get_referrer_by_id(db, referrer_id)
    if not referrer:
        raise ReferrerNotFound(referrer_id)

    own_codes = await list_codes_for_referrer(db, referrer_id)
    discounts = await client.fetch_discount_details([c.shopify_discount_id for c in own_codes])

    program = await get_referral_settings(db)
    refund_progress = {}
    for code in own_codes:
        progress = await get_refund_progress(db, client, code, program)
        if progress:
            refund_progress[code.id] = progress

    return ReferrerDetail(
        **referrer.model_dump(),
        codes=[ReferralCode(**c.model_dump()) for c in own_codes],
        referrals=[Referral(**r.model_dump()) for r in await list_referrals_for_referrer(db, referrer_id)],
        rewards=[Reward(**r.model_dump()) for r in await list_rewards(db, referrer_id=referrer_id)],
        total_paid=await total_paid_for_referrer(db, referrer_id),
        discounts=discounts,
        email_logs=await list_email_logs_for_referrer(db, referrer_id),
        refund_progress=refund_progress,
    )


async def delete_referrer(db, client, referrer_id: str) -> DeleteResponse:
    """
    Delete a referrer and everything it owns.

    Shopify discounts are removed first on a best-effort basis; a discount
    that cannot be deleted is logged and does not block the cascade.
    """
    referrer = await get_referrer_by_id(db, referrer_id)
    if not referrer:
        raise ReferrerNotFound(referrer_id)

    discounts_deleted = 0
    discounts_failed = 0
    for code in await list_codes_for_referrer(db, referrer_id):
        if not code.shopify_discount_id:
            continue
        try:
            await client.delete_discount(code.shopify_discount_id)
            discounts_deleted += 1
        except ShopifyAPIError as e:
            discounts_failed += 1
            logger.error(
                "Shopify discount deletion failed",
                code_id=code.id,
                discount_id=code.shopify_discount_id,
                error=e.message,
            )

    await db.execute(delete(email_logs).where(email_logs.c.referrer_id == referrer_id))
    await db.execute(delete(rewards).where(rewards.c.referrer_id == referrer_id))
    await db.execute(delete(referrals).where(referrals.c.referrer_id == referrer_id))
    await db.execute(delete(codes).where(codes.c.referrer_id == referrer_id))
    await db.execute(delete(referrers).where(referrers.c.id == referrer_id))

    logger.info(
        "Referrer deleted",
        referrer_id=referrer_id,
        discounts_deleted=discounts_deleted,
        discounts_failed=discounts_failed,
    )
    return DeleteResponse(
        deleted=True,
        id=referrer_id,
        discounts_deleted=discounts_deleted,
        discounts_failed=discounts_failed,
    )


async def list_referrer_orders(db, client, referrer_id: str, limit: int = 10) -> List[CustomerOrder]:
    """Recent Shopify orders of the referrer, used to pick a settlement order"""
    referrer = await get_referrer_by_id(db, referrer_id)
    if not referrer:
        raise ReferrerNotFound(referrer_id)
    return await client.fetch_orders_for_customer(referrer.shopify_customer_id, limit=limit)
