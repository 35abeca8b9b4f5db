"""
Code Service - Referral code generation, issuance and lifecycle
"""

import random
import string
import uuid
from datetime import datetime, timedelta
from typing import Optional
from sqlalchemy import func, select, update
import structlog

from app.core.config import settings
from app.core.database import upsert_insert
from app.core.exceptions import CodeGenerationExhausted
from app.core.schema import codes
from app.models.code import CodeIssuancePolicy, CodeOrigin, IssuedCode, ReferralCodeInDB
from app.models.settings import ReferralSettings

logger = structlog.get_logger()


def generate_referral_code() -> str:
    """Three uppercase letters, a hyphen and a four digit number, e.g. QKD-4821"""
    letters = "".join(random.choice(string.ascii_uppercase) for _ in range(3))
    return f"{letters}-{random.randint(1000, 9999)}"


def compute_expiry_date(code_validity_days: int, now: Optional[datetime] = None) -> Optional[datetime]:
    """None means the code never expires"""
    if code_validity_days <= 0:
        return None
    return (now or datetime.utcnow()) + timedelta(days=code_validity_days)


def _code_from_row(row) -> ReferralCodeInDB:
    return ReferralCodeInDB(**dict(row._mapping))


async def create_code_for_referrer(
    db,
    referrer_id: str,
    program: ReferralSettings,
    origin: Optional[CodeOrigin] = None,
    max_attempts: Optional[int] = None,
) -> ReferralCodeInDB:
    """Mint a new code, retrying on collision against the unique constraint"""
    max_attempts = max_attempts or settings.CODE_GENERATION_MAX_ATTEMPTS
    origin = origin or CodeOrigin()
    now = datetime.utcnow()

    for attempt in range(max_attempts):
        candidate = generate_referral_code()
        result = await db.execute(
            upsert_insert(db, codes)
            .values(
                id=str(uuid.uuid4()),
                referrer_id=referrer_id,
                code=candidate,
                usage_count=0,
                max_usage=program.max_usages_per_code,
                active=True,
                expires_at=compute_expiry_date(program.code_validity_days, now),
                origin_order_id=origin.order_id,
                origin_order_gid=origin.order_gid,
                workshop_product_id=origin.product_id,
                workshop_product_title=origin.product_title,
                workshop_quantity=origin.quantity if origin.quantity is not None else 1,
                discount_snapshot=program.discount_fraction,
                cashback_snapshot=program.cashback_amount,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(index_elements=["code"])
            .returning(*codes.c)
        )
        row = result.fetchone()
        if row:
            logger.info("Referral code created", referrer_id=referrer_id, code=candidate, attempt=attempt + 1)
            return _code_from_row(row)

        logger.warning("Referral code collision", code=candidate, attempt=attempt + 1)

    raise CodeGenerationExhausted(max_attempts)


async def get_code_by_id(db, code_id: str) -> Optional[ReferralCodeInDB]:
    result = await db.execute(select(codes).where(codes.c.id == code_id))
    row = result.fetchone()
    return _code_from_row(row) if row else None


async def find_code_by_value(db, code: str) -> Optional[ReferralCodeInDB]:
    """Lookup is case-insensitive on input; stored codes are uppercase"""
    result = await db.execute(select(codes).where(codes.c.code == code.strip().upper()))
    row = result.fetchone()
    return _code_from_row(row) if row else None


async def find_code_by_origin_order_id(db, referrer_id: str, origin_order_id: str) -> Optional[ReferralCodeInDB]:
    result = await db.execute(
        select(codes)
        .where(codes.c.referrer_id == referrer_id, codes.c.origin_order_id == origin_order_id)
        .limit(1)
    )
    row = result.fetchone()
    return _code_from_row(row) if row else None


async def find_latest_code_for_referrer(db, referrer_id: str) -> Optional[ReferralCodeInDB]:
    result = await db.execute(
        select(codes)
        .where(codes.c.referrer_id == referrer_id)
        .order_by(codes.c.created_at.desc())
        .limit(1)
    )
    row = result.fetchone()
    return _code_from_row(row) if row else None


async def list_codes_for_referrer(db, referrer_id: str):
    result = await db.execute(
        select(codes).where(codes.c.referrer_id == referrer_id).order_by(codes.c.created_at.desc())
    )
    return [_code_from_row(row) for row in result.fetchall()]


async def refresh_code_terms(
    db,
    code: ReferralCodeInDB,
    program: ReferralSettings,
    origin: Optional[CodeOrigin] = None,
) -> ReferralCodeInDB:
    """
    Re-apply current settings to an existing code.

    Expiry, max usage and the discount/cashback snapshots always follow
    the settings. Origin and product metadata are only written when the
    code has no origin yet, so the first purchase keeps its attribution.
    """
    now = datetime.utcnow()
    values = {
        "expires_at": compute_expiry_date(program.code_validity_days, now),
        "max_usage": program.max_usages_per_code,
        "discount_snapshot": program.discount_fraction,
        "cashback_snapshot": program.cashback_amount,
        "updated_at": now,
    }

    if origin and origin.order_id and not code.origin_order_id:
        values.update({
            "origin_order_id": origin.order_id,
            "origin_order_gid": origin.order_gid,
            "workshop_product_id": origin.product_id,
            "workshop_product_title": origin.product_title,
            "workshop_quantity": origin.quantity if origin.quantity is not None else code.workshop_quantity,
        })

    result = await db.execute(
        update(codes).where(codes.c.id == code.id).values(**values).returning(*codes.c)
    )
    return _code_from_row(result.fetchone())


async def issue_or_refresh_code(
    db,
    referrer_id: str,
    program: ReferralSettings,
    origin: Optional[CodeOrigin] = None,
    policy: Optional[CodeIssuancePolicy] = None,
) -> IssuedCode:
    """
    Give the referrer a usable code for this purchase.

    A code already minted for the same origin order is always reused, so a
    redelivered event never mints twice. Otherwise REUSE refreshes the
    referrer's latest code and PER_PURCHASE mints a new one.
    """
    policy = policy or CodeIssuancePolicy(settings.CODE_ISSUANCE_POLICY)

    existing = None
    if origin and origin.order_id:
        existing = await find_code_by_origin_order_id(db, referrer_id, origin.order_id)
    if existing is None and policy == CodeIssuancePolicy.REUSE:
        existing = await find_latest_code_for_referrer(db, referrer_id)

    if existing is None:
        code = await create_code_for_referrer(db, referrer_id, program, origin)
        return IssuedCode(code=code, created=True)

    code = await refresh_code_terms(db, existing, program, origin)
    logger.info("Referral code reused", referrer_id=referrer_id, code=code.code, policy=policy.value)
    return IssuedCode(code=code, created=False)


async def mark_code_as_used(db, code_id: str) -> None:
    await db.execute(
        update(codes)
        .where(codes.c.id == code_id)
        .values(usage_count=codes.c.usage_count + 1, updated_at=datetime.utcnow())
    )


async def link_discount_id(db, code_id: str, discount_id: str) -> None:
    await db.execute(
        update(codes)
        .where(codes.c.id == code_id)
        .values(shopify_discount_id=discount_id, updated_at=datetime.utcnow())
    )


async def backfill_origin_order(db, code_id: str, order_gid: str) -> bool:
    """Attach an operator supplied order to a code that has none"""
    result = await db.execute(
        update(codes)
        .where(codes.c.id == code_id, codes.c.origin_order_gid.is_(None))
        .values(
            origin_order_gid=order_gid,
            origin_order_id=func.coalesce(codes.c.origin_order_id, order_gid.rsplit("/", 1)[-1]),
            updated_at=datetime.utcnow(),
        )
        .returning(codes.c.id)
    )
    backfilled = result.fetchone() is not None
    if backfilled:
        logger.info("Origin order backfilled on code", code_id=code_id, order_gid=order_gid)
    return backfilled
