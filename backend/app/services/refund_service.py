"""
Refund Service - Executes a cashback refund against a Shopify order
"""

import asyncio
from decimal import Decimal
from typing import Optional
import structlog

from app.core.config import settings
from app.core.exceptions import OrderTemporarilyUnavailable, RefundFailed
from app.models.order import RefundOutcome
from app.monitoring.metrics import metrics_collector

logger = structlog.get_logger()

REFERRAL_REFUND_NOTE = "Referral cashback refund"


async def execute_referral_refund(
    client,
    order_gid: str,
    amount: Decimal,
    note: str = REFERRAL_REFUND_NOTE,
    max_attempts: Optional[int] = None,
    retry_delay_seconds: Optional[float] = None,
) -> RefundOutcome:
    """
    Refund `amount` on the order.

    The refund is tied to the order's capture/sale transaction when one
    exists; otherwise it goes through the configured fallback gateway.
    Only a locked order is retried, with a linearly growing delay. Any
    other Shopify error propagates on the first attempt.
    """
    max_attempts = max_attempts or settings.REFUND_MAX_ATTEMPTS
    if retry_delay_seconds is None:
        retry_delay_seconds = settings.REFUND_RETRY_DELAY_SECONDS

    parent_id = await client.get_order_transaction_parent_id(order_gid)
    gateway = None
    if not parent_id:
        gateway = settings.SHOPIFY_REFUND_GATEWAY
        metrics_collector.increment_counter("refund_fallbacks")
        logger.warning("Refund falling back to gateway", order_gid=order_gid, gateway=gateway)

    for attempt in range(max_attempts):
        try:
            refund = await client.create_refund(
                order_gid,
                amount,
                note,
                parent_transaction_id=parent_id,
                gateway=gateway,
            )
        except OrderTemporarilyUnavailable as e:
            if attempt >= max_attempts - 1:
                logger.error("Order still unavailable, giving up refund", order_gid=order_gid, attempts=max_attempts)
                raise RefundFailed(
                    f"Order stayed unavailable for modification after {max_attempts} attempts",
                    order_gid,
                    max_attempts,
                ) from e

            wait_seconds = retry_delay_seconds * (attempt + 1)
            logger.info(
                "Order temporarily unavailable, retrying refund",
                order_gid=order_gid,
                attempt=attempt + 1,
                max_attempts=max_attempts,
                wait_seconds=wait_seconds,
            )
            await asyncio.sleep(wait_seconds)
            continue

        logger.info(
            "Refund created",
            order_gid=order_gid,
            refund_id=refund.get("id"),
            amount=f"{Decimal(amount):.2f}",
            attempts=attempt + 1,
            fallback_gateway=gateway,
        )
        return RefundOutcome(
            refund_id=refund.get("id"),
            parent_transaction_id=parent_id,
            used_fallback_gateway=gateway is not None,
            attempts=attempt + 1,
        )

    raise RefundFailed("Refund was not attempted", order_gid, 0)
