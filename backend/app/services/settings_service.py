"""
Settings Service - Program-wide referral settings (singleton row)
"""

from datetime import datetime
from decimal import Decimal
from sqlalchemy import select, update
import structlog

from app.core.database import upsert_insert
from app.core.schema import referral_settings
from app.models.settings import (
    ReferralSettings, ReferralSettingsUpdate, AllCustomers, CustomerSegments, Audience
)

logger = structlog.get_logger()

SETTINGS_ROW_ID = 1

DEFAULT_SETTINGS = ReferralSettings()


def _settings_from_row(row) -> ReferralSettings:
    data = dict(row._mapping)
    data["eligible_segment_ids"] = tuple(data.get("eligible_segment_ids") or ())
    return ReferralSettings(**data)


async def get_referral_settings(db) -> ReferralSettings:
    """Read the settings row, creating it with defaults on first use"""
    result = await db.execute(
        select(referral_settings).where(referral_settings.c.id == SETTINGS_ROW_ID)
    )
    row = result.fetchone()
    if row:
        return _settings_from_row(row)

    now = datetime.utcnow()
    await db.execute(
        upsert_insert(db, referral_settings)
        .values(
            id=SETTINGS_ROW_ID,
            discount_fraction=DEFAULT_SETTINGS.discount_fraction,
            cashback_amount=DEFAULT_SETTINGS.cashback_amount,
            code_validity_days=DEFAULT_SETTINGS.code_validity_days,
            applies_once_per_customer=DEFAULT_SETTINGS.applies_once_per_customer,
            max_usages_per_code=DEFAULT_SETTINGS.max_usages_per_code,
            max_refund_fraction=DEFAULT_SETTINGS.max_refund_fraction,
            eligible_segment_ids=list(DEFAULT_SETTINGS.eligible_segment_ids),
            created_at=now,
            updated_at=now,
        )
        .on_conflict_do_nothing(index_elements=["id"])
    )
    logger.info("Referral settings initialized with defaults")

    result = await db.execute(
        select(referral_settings).where(referral_settings.c.id == SETTINGS_ROW_ID)
    )
    return _settings_from_row(result.fetchone())


async def update_referral_settings(db, update_data: ReferralSettingsUpdate) -> ReferralSettings:
    """Apply a partial update; percentages are converted to fractions"""
    await get_referral_settings(db)

    values = {}
    if update_data.discount_percentage is not None:
        values["discount_fraction"] = update_data.discount_percentage / Decimal("100")
    if update_data.cashback_amount is not None:
        values["cashback_amount"] = update_data.cashback_amount
    if update_data.code_validity_days is not None:
        values["code_validity_days"] = update_data.code_validity_days
    if update_data.applies_once_per_customer is not None:
        values["applies_once_per_customer"] = update_data.applies_once_per_customer
    if update_data.max_usages_per_code is not None:
        values["max_usages_per_code"] = update_data.max_usages_per_code
    if update_data.max_refund_percentage is not None:
        values["max_refund_fraction"] = update_data.max_refund_percentage / Decimal("100")
    if update_data.eligible_segment_ids is not None:
        values["eligible_segment_ids"] = update_data.eligible_segment_ids

    if not values:
        return await get_referral_settings(db)

    values["updated_at"] = datetime.utcnow()
    result = await db.execute(
        update(referral_settings)
        .where(referral_settings.c.id == SETTINGS_ROW_ID)
        .values(**values)
        .returning(*referral_settings.c)
    )
    updated = _settings_from_row(result.fetchone())

    logger.info("Referral settings updated", fields=sorted(k for k in values if k != "updated_at"))
    return updated


def audience_from_settings(program: ReferralSettings) -> Audience:
    """Segment-restricted when any non-blank segment id is configured"""
    segment_ids = tuple(s.strip() for s in program.eligible_segment_ids if s and s.strip())
    if segment_ids:
        return CustomerSegments(segment_ids=segment_ids)
    return AllCustomers()
