"""
Provisioning Service - Operator driven referrer onboarding by email
"""

import structlog

from app.models.referrer import CustomerIdentity, ProvisioningResult, Referrer, ReferrerCreate
from app.models.code import ReferralCode
from app.monitoring.metrics import track_counter, track_timing
from app.services.code_service import issue_or_refresh_code
from app.services.discount_service import sync_and_link_discount
from app.services.notification_service import send_manual_referrer_welcome_email
from app.services.referrer_service import get_or_create_referrer
from app.services.settings_service import get_referral_settings

logger = structlog.get_logger()


@track_counter("referrers_provisioned")
@track_timing("provision_referrer")
async def provision_referrer(db, client, request: ReferrerCreate) -> ProvisioningResult:
    """
    Same pipeline as a paid order, without an origin order:
    Shopify customer -> referrer -> code -> discount -> welcome email.

    Shopify customer errors propagate; discount sync and email are best-effort.
    """
    email = str(request.email).strip().lower()
    first_name = (request.first_name or "").strip() or None
    last_name = (request.last_name or "").strip() or None

    customer, customer_created = await client.get_or_create_customer_by_email(email, first_name, last_name)

    referrer, referrer_created = await get_or_create_referrer(db, CustomerIdentity(
        shopify_customer_id=customer["id"],
        email=customer["email"],
        first_name=first_name or customer.get("first_name"),
        last_name=last_name or customer.get("last_name"),
    ))

    program = await get_referral_settings(db)
    issued = await issue_or_refresh_code(db, referrer.id, program)
    await db.commit()

    discount_id = await sync_and_link_discount(db, client, issued.code, program)
    code = issued.code
    if discount_id:
        code = code.model_copy(update={"shopify_discount_id": discount_id})
    await db.commit()

    email_sent = False
    if issued.created or referrer_created:
        try:
            email_sent = await send_manual_referrer_welcome_email(db, referrer, code)
        except Exception as e:
            await db.rollback()
            logger.error("Welcome email failed", referrer_id=referrer.id, error=str(e))

    logger.info(
        "Referrer provisioned",
        referrer_id=referrer.id,
        customer_created=customer_created,
        referrer_created=referrer_created,
        code_created=issued.created,
        discount_synced=discount_id is not None,
        email_sent=email_sent,
    )
    return ProvisioningResult(
        referrer=Referrer(**referrer.model_dump()),
        code=ReferralCode(**code.model_dump()),
        referrer_created=referrer_created,
        code_created=issued.created,
        discount_synced=discount_id is not None,
        email_sent=email_sent,
    )
