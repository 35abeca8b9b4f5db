from decimal import Decimal

import pytest
from sqlalchemy import func, select

from app.core.schema import codes, email_logs, referrals, referrers, rewards
from app.models.order import OrderPaidPayload
from app.models.reward import RewardStatus
from app.monitoring.metrics import metrics_collector
from app.services import code_service, purchase_event_service, reward_service
from app.services.purchase_event_service import extract_product_attribution, handle_order_paid


def paid_order(order_id=2001, customer_id=777, code=None, **extra):
    body = {
        "id": order_id,
        "admin_graphql_api_id": f"gid://shopify/Order/{order_id}",
        "email": "grace@example.com",
        "currency": "EUR",
        "discount_codes": [{"code": code}] if code else [],
        "customer": {"id": customer_id, "email": "grace@example.com", "first_name": "Grace", "last_name": "Hopper"},
        "line_items": [{"product_id": 7001, "title": "Pottery Workshop", "quantity": 1}],
    }
    body.update(extra)
    return OrderPaidPayload.model_validate(body)


async def count(db, table):
    return (await db.execute(select(func.count()).select_from(table))).scalar_one()


def test_attribution_sums_quantity_of_primary_product():
    attribution = extract_product_attribution({"line_items": [
        {"product_id": 7001, "title": "Pottery Workshop", "quantity": 2},
        {"product_id": 7002, "title": "Glaze Kit", "quantity": 5},
        {"product_id": 7001, "title": "Pottery Workshop", "quantity": 1},
    ]})

    assert attribution.product_id == "7001"
    assert attribution.product_title == "Pottery Workshop"
    assert attribution.quantity == 3


def test_attribution_falls_back_to_variant_and_name():
    attribution = extract_product_attribution({"line_items": [{"variant_id": 42, "name": "Gift card"}]})
    assert attribution.product_id == "42"
    assert attribution.product_title == "Gift card"
    assert attribution.quantity == 1
    assert extract_product_attribution({}).product_id is None


def test_used_code_is_normalized():
    assert paid_order(code="  abc-1234 ").used_code == "ABC-1234"
    assert paid_order().used_code is None


@pytest.mark.asyncio
async def test_buyer_becomes_referrer_with_code(db, shopify):
    shopify.orders["2001"] = {"line_items": [{"product_id": 7001, "title": "Pottery Workshop", "quantity": 2}]}

    await handle_order_paid(db, shopify, paid_order())

    assert await count(db, referrers) == 1
    code = (await db.execute(select(codes))).fetchone()
    assert code.origin_order_gid == "gid://shopify/Order/2001"
    assert code.workshop_product_title == "Pottery Workshop"
    assert code.workshop_quantity == 2
    assert code.shopify_discount_id in shopify.discounts
    # the promo email is attempted for a freshly minted code
    assert (await db.execute(select(email_logs.c.template))).scalar_one() == "code_promo"
    assert await count(db, referrals) == 0


@pytest.mark.asyncio
async def test_referral_code_use_creates_pending_reward(db, shopify, origin_code):
    await handle_order_paid(db, shopify, paid_order(code=origin_code.code.lower()))

    referral = (await db.execute(select(referrals))).fetchone()
    assert referral.referrer_id == origin_code.referrer_id
    assert referral.order_id == "2001"
    assert referral.referee_email == "grace@example.com"

    pending = await reward_service.list_rewards(db, status=RewardStatus.PENDING)
    assert len(pending) == 1
    assert pending[0].amount == Decimal("20")
    assert pending[0].currency == "EUR"
    assert (await code_service.get_code_by_id(db, origin_code.id)).usage_count == 1
    assert metrics_collector.metrics["referrals_recorded"] == 1


@pytest.mark.asyncio
async def test_duplicate_delivery_is_idempotent(db, shopify, origin_code):
    payload = paid_order(code=origin_code.code)

    await handle_order_paid(db, shopify, payload)
    await handle_order_paid(db, shopify, payload)

    assert await count(db, referrals) == 1
    assert await count(db, rewards) == 1
    # one code for the referee, one for the original referrer
    assert await count(db, codes) == 2
    assert (await code_service.get_code_by_id(db, origin_code.id)).usage_count == 1


@pytest.mark.asyncio
async def test_unknown_code_records_nothing(db, shopify):
    await handle_order_paid(db, shopify, paid_order(code="NOP-0000"))

    assert await count(db, referrals) == 0
    assert await count(db, referrers) == 1


@pytest.mark.asyncio
async def test_missing_ids_are_ignored(db, shopify):
    await handle_order_paid(db, shopify, OrderPaidPayload.model_validate({"id": 2001}))
    await handle_order_paid(db, shopify, OrderPaidPayload.model_validate({"customer": {"id": 777}}))

    assert await count(db, referrers) == 0
    assert metrics_collector.metrics["order_paid_events"] == 2


@pytest.mark.asyncio
async def test_discount_failure_does_not_block_referral(db, shopify, origin_code):
    shopify.fail_discounts = True

    await handle_order_paid(db, shopify, paid_order(code=origin_code.code))

    assert await count(db, rewards) == 1
    assert metrics_collector.metrics["discount_sync_failures"] == 1


@pytest.mark.asyncio
async def test_internal_errors_never_escape(db, shopify, monkeypatch):
    async def broken_settings(db):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(purchase_event_service, "get_referral_settings", broken_settings)

    await handle_order_paid(db, shopify, paid_order())

    assert metrics_collector.metrics["errors"] == 1
    assert metrics_collector.error_counts == {"RuntimeError": 1}
