"""
Discount Service - Keeps the Shopify discount of a referral code in sync
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional
import structlog

from app.core.exceptions import CodeNotFound, DiscountSyncFailed, ShopifyAPIError
from app.models.code import ReferralCodeInDB
from app.models.settings import ReferralSettings, CustomerSegments
from app.monitoring.metrics import metrics_collector
from app.services.code_service import get_code_by_id, link_discount_id, refresh_code_terms
from app.services.settings_service import audience_from_settings, get_referral_settings

logger = structlog.get_logger()


def _iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat().replace("+00:00", "Z")


def build_discount_input(
    code: ReferralCodeInDB,
    program: ReferralSettings,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """DiscountCodeBasicInput for a referral code"""
    discount_input: Dict[str, Any] = {
        "title": f"Referral - {code.code}",
        "code": code.code,
        "startsAt": _iso(now or datetime.utcnow()),
        "appliesOncePerCustomer": program.applies_once_per_customer,
        "customerGets": {
            "value": {"percentage": float(program.discount_fraction)},
            "items": {"all": True},
        },
    }

    if code.expires_at:
        discount_input["endsAt"] = _iso(code.expires_at)

    if program.max_usages_per_code > 0:
        discount_input["usageLimit"] = program.max_usages_per_code

    # Segment restriction and "all customers" are mutually exclusive
    audience = audience_from_settings(program)
    if isinstance(audience, CustomerSegments):
        discount_input["context"] = {"customerSegments": {"add": list(audience.segment_ids)}}
    else:
        discount_input["customerSelection"] = {"all": True}

    return discount_input


async def sync_discount(client, code: ReferralCodeInDB, program: ReferralSettings) -> Optional[str]:
    """
    Update the linked Shopify discount, or create one when none is linked.

    Returns the discount id, or None when Shopify rejected the call. Never
    raises for Shopify failures.
    """
    discount_input = build_discount_input(code, program)

    try:
        if code.shopify_discount_id:
            discount_id = await client.update_discount(code.shopify_discount_id, discount_input)
            logger.info("Shopify discount updated", code=code.code, discount_id=discount_id)
        else:
            discount_id = await client.create_discount(discount_input)
            logger.info(
                "Shopify discount created",
                code=code.code,
                discount_id=discount_id,
                segmented="context" in discount_input,
            )
        return discount_id
    except ShopifyAPIError as e:
        metrics_collector.increment_counter("discount_sync_failures")
        logger.error(
            "Shopify discount sync failed",
            code=code.code,
            discount_id=code.shopify_discount_id,
            error=e.message,
            details=e.details,
        )
        return None


async def sync_and_link_discount(db, client, code: ReferralCodeInDB, program: ReferralSettings) -> Optional[str]:
    """Sync the discount and store its id on the code when it changed"""
    discount_id = await sync_discount(client, code, program)
    if discount_id and discount_id != code.shopify_discount_id:
        await link_discount_id(db, code.id, discount_id)
    return discount_id


async def resync_code_discount(db, client, referrer_id: str, code_id: str) -> ReferralCodeInDB:
    """Operator resync: re-apply current settings to the code and its discount"""
    code = await get_code_by_id(db, code_id)
    if not code or code.referrer_id != referrer_id:
        raise CodeNotFound(code_id)

    program = await get_referral_settings(db)
    code = await refresh_code_terms(db, code, program)
    await db.commit()

    discount_id = await sync_and_link_discount(db, client, code, program)
    if not discount_id:
        raise DiscountSyncFailed(code_id)

    logger.info("Referral code resynced", code=code.code, discount_id=discount_id)
    return code.model_copy(update={"shopify_discount_id": discount_id})
