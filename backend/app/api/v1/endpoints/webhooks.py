"""
Shopify Webhook Endpoints
"""

from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError
import structlog

from app.core.database import get_database
from app.models.common import WebhookAck
from app.models.order import OrderPaidPayload
from app.services.purchase_event_service import handle_order_paid
from app.services.shopify_admin import get_shopify_client

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = structlog.get_logger()


@router.post("/orders/paid", response_model=WebhookAck)
async def orders_paid(
    request: Request,
    db=Depends(get_database),
    client=Depends(get_shopify_client),
):
    """orders/paid webhook; always acknowledged so Shopify does not redeliver"""
    shop_domain = request.headers.get("X-Shopify-Shop-Domain")

    try:
        payload = OrderPaidPayload.model_validate(await request.json())
    except (ValueError, ValidationError) as e:
        logger.error("Unreadable orders/paid webhook", shop_domain=shop_domain, error=str(e))
        return WebhookAck()

    await handle_order_paid(db, client, payload)
    return WebhookAck()
