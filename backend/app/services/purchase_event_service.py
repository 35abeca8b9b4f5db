"""
Purchase Event Service - Handles Shopify orders/paid notifications

Every paid order refreshes the buyer's own referral code. When the order
itself used a referral code, the code's owner gets a referral and a pending
cashback reward, exactly once per order.

Errors never escape handle_order_paid: Shopify would redeliver the webhook
forever, so failures are logged and counted instead.
"""

from typing import Any, Dict, Optional
import structlog

from app.core.config import settings
from app.models.code import CodeOrigin
from app.models.order import OrderPaidPayload, ProductAttribution
from app.models.referral import RefereeIdentity
from app.models.referrer import CustomerIdentity
from app.monitoring.metrics import metrics_collector, track_timing
from app.monitoring.tracing import traced_operation
from app.core.exceptions import ShopifyAPIError
from app.services.code_service import find_code_by_value, issue_or_refresh_code, mark_code_as_used
from app.services.discount_service import sync_and_link_discount
from app.services.notification_service import send_promo_code_email
from app.services.referral_service import find_referral_by_order_id, record_referral
from app.services.referrer_service import get_or_create_referrer
from app.services.reward_service import create_pending_reward
from app.services.settings_service import get_referral_settings

logger = structlog.get_logger()


def extract_product_attribution(order: Dict[str, Any]) -> ProductAttribution:
    """
    First line item is the primary product; its quantity is summed over
    every line of the order carrying the same product.
    """
    line_items = order.get("line_items") or []
    if not line_items:
        return ProductAttribution()

    def product_key(item) -> Optional[str]:
        value = item.get("product_id") or item.get("variant_id")
        return str(value) if value is not None else None

    first = line_items[0]
    product_id = product_key(first)
    quantity = sum(
        item.get("quantity") or 1
        for item in line_items
        if product_key(item) == product_id
    )

    return ProductAttribution(
        product_id=product_id,
        product_title=first.get("title") or first.get("name"),
        quantity=quantity,
    )


async def fetch_product_attribution(client, order_id: str) -> ProductAttribution:
    """Best-effort; empty attribution when the order cannot be fetched"""
    try:
        order = await client.fetch_order(order_id)
    except ShopifyAPIError as e:
        logger.warning("Order details unavailable for attribution", order_id=order_id, error=e.message)
        return ProductAttribution()
    return extract_product_attribution(order)


@traced_operation("handle_order_paid")
@track_timing("handle_order_paid")
async def handle_order_paid(db, client, payload: OrderPaidPayload) -> None:
    metrics_collector.increment_counter("order_paid_events")

    if not payload.id or not payload.customer or payload.customer.id is None:
        logger.warning("Incomplete orders/paid webhook, missing order or customer id", order_id=payload.id)
        return

    logger.info("orders/paid received", order_id=payload.id)

    try:
        await _process_order_paid(db, client, payload)
    except Exception as e:
        await db.rollback()
        metrics_collector.record_error(type(e).__name__, str(e))
        logger.exception("orders/paid processing failed", order_id=payload.id)


async def _process_order_paid(db, client, payload: OrderPaidPayload) -> None:
    order_id = str(payload.id)
    customer = payload.customer

    program = await get_referral_settings(db)
    attribution = await fetch_product_attribution(client, order_id)

    # 1. buyer becomes (or stays) a referrer
    referrer, _ = await get_or_create_referrer(db, CustomerIdentity(
        shopify_customer_id=str(customer.id),
        email=customer.email,
        first_name=customer.first_name,
        last_name=customer.last_name,
    ))
    await db.commit()

    # 2. buyer's own code, with this order as its origin
    issued = await issue_or_refresh_code(db, referrer.id, program, CodeOrigin(
        order_id=order_id,
        order_gid=payload.admin_graphql_api_id,
        product_id=attribution.product_id,
        product_title=attribution.product_title,
        quantity=attribution.quantity,
    ))
    await db.commit()

    await sync_and_link_discount(db, client, issued.code, program)
    await db.commit()

    if issued.created:
        try:
            await send_promo_code_email(db, referrer, issued.code)
            await db.commit()
        except Exception as e:
            await db.rollback()
            logger.error("Promo code email failed", referrer_id=referrer.id, error=str(e))

    # 3. attribution of this order to someone else's code
    used_code = payload.used_code
    if not used_code:
        return

    code = await find_code_by_value(db, used_code)
    if not code:
        logger.warning("Used discount code is not a referral code", order_id=order_id, code=used_code)
        return

    if await find_referral_by_order_id(db, order_id):
        logger.info("Referral already recorded, duplicate delivery ignored", order_id=order_id)
        return

    recorded = await record_referral(
        db,
        referrer_id=code.referrer_id,
        order_id=order_id,
        code_id=code.id,
        referee=RefereeIdentity(
            shopify_customer_id=str(customer.id),
            email=payload.referee_email,
            first_name=customer.first_name,
            last_name=customer.last_name,
        ),
        attribution=attribution,
    )
    if not recorded.created:
        return

    metrics_collector.increment_counter("referrals_recorded")
    await create_pending_reward(
        db,
        referrer_id=code.referrer_id,
        referral_id=recorded.referral.id,
        program=program,
        currency=payload.currency or settings.DEFAULT_CURRENCY,
        attribution=attribution,
    )
    await mark_code_as_used(db, code.id)
    await db.commit()

    if not code.origin_order_gid:
        logger.warning(
            "Referral code has no origin order, settlement needs a manual order",
            code=code.code,
            order_id=order_id,
        )
