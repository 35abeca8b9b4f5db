from datetime import datetime, timedelta
from decimal import Decimal

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import insert, select

from app.core.database import get_database
from app.core.schema import referrers, settlement_locks
from app.main import app
from app.services.shopify_admin import get_shopify_client


@pytest_asyncio.fixture
async def api_client(session_factory, shopify):
    async def override_database():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_database] = override_database
    app.dependency_overrides[get_shopify_client] = lambda: shopify
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_health_and_metrics(api_client):
    response = await api_client.get("/api/v1/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"

    detailed = await api_client.get("/api/v1/health/detailed")
    assert detailed.json()["dependencies"]["database"] == {"status": "ok"}
    assert detailed.json()["dependencies"]["shopify"] == {"status": "unconfigured"}

    metrics = await api_client.get("/api/v1/metrics")
    assert "order_paid_events" in metrics.json()["metrics"]["counters"]


@pytest.mark.asyncio
async def test_webhook_always_acknowledges(api_client, db):
    malformed = await api_client.post(
        "/api/v1/webhooks/orders/paid", content=b"{not json", headers={"Content-Type": "application/json"}
    )
    assert malformed.status_code == 200
    assert malformed.json() == {"status": "ok"}

    incomplete = await api_client.post("/api/v1/webhooks/orders/paid", json={"id": 2001})
    assert incomplete.json() == {"status": "ok"}

    paid = await api_client.post("/api/v1/webhooks/orders/paid", json={
        "id": 2001,
        "admin_graphql_api_id": "gid://shopify/Order/2001",
        "currency": "EUR",
        "customer": {"id": 777, "email": "grace@example.com", "first_name": "Grace"},
    })
    assert paid.json() == {"status": "ok"}

    row = (await db.execute(select(referrers))).fetchone()
    assert row.shopify_customer_id == "777"


@pytest.mark.asyncio
async def test_settings_round_trip(api_client):
    initial = await api_client.get("/api/v1/settings")
    assert initial.status_code == 200
    assert Decimal(initial.json()["discount_percentage"]) == Decimal("10")

    updated = await api_client.put("/api/v1/settings", json={"cashback_amount": "25", "max_refund_percentage": 50})
    assert updated.status_code == 200
    assert Decimal(updated.json()["cashback_amount"]) == Decimal("25")
    assert Decimal(updated.json()["max_refund_percentage"]) == Decimal("50")

    invalid = await api_client.put("/api/v1/settings", json={"discount_percentage": 120})
    assert invalid.status_code == 422


@pytest.mark.asyncio
async def test_settle_and_error_rendering(api_client, shopify, origin_code, seed_reward):
    shopify.order_totals[origin_code.origin_order_gid] = Decimal("30")
    first = await seed_reward(origin_code, "2001", "20")
    second = await seed_reward(origin_code, "2002", "20")

    settled = await api_client.post(f"/api/v1/rewards/{first.id}/settle")
    assert settled.status_code == 200
    assert settled.json()["reward"]["status"] == "paid"

    blocked = await api_client.post(f"/api/v1/rewards/{second.id}/settle", json={"order_gid": None})
    assert blocked.status_code == 409
    body = blocked.json()
    assert body["error"] == "REFUND_CEILING_EXCEEDED"
    assert body["details"]["remaining"] == "10.00"
    assert "timestamp" in body

    again = await api_client.post(f"/api/v1/rewards/{first.id}/settle")
    assert again.status_code == 409
    assert again.json()["error"] == "INVALID_REWARD_STATE"

    missing = await api_client.post("/api/v1/rewards/missing/settle")
    assert missing.status_code == 404
    assert missing.json()["error"] == "REWARD_NOT_FOUND"


@pytest.mark.asyncio
async def test_fail_and_list_rewards(api_client, origin_code, seed_reward):
    reward = await seed_reward(origin_code, "2001", "20")

    failed = await api_client.post(f"/api/v1/rewards/{reward.id}/fail", json={"notes": "order cancelled"})
    assert failed.status_code == 200
    assert failed.json()["status"] == "failed"

    listed = await api_client.get("/api/v1/rewards", params={"status": "failed"})
    assert [r["id"] for r in listed.json()] == [reward.id]

    stats = await api_client.get("/api/v1/rewards/stats")
    assert stats.json()["by_status"]["failed"]["count"] == 1
    assert stats.json()["total_referrals"] == 1


@pytest.mark.asyncio
async def test_referrer_lifecycle(api_client, shopify):
    created = await api_client.post("/api/v1/referrers", json={"email": "linus@example.com", "first_name": "Linus"})
    assert created.status_code == 201
    referrer_id = created.json()["referrer"]["id"]
    code_id = created.json()["code"]["id"]

    listed = await api_client.get("/api/v1/referrers", params={"search": "linus"})
    assert [r["id"] for r in listed.json()] == [referrer_id]

    detail = await api_client.get(f"/api/v1/referrers/{referrer_id}")
    assert detail.status_code == 200
    assert len(detail.json()["discounts"]) == 1

    resynced = await api_client.post(f"/api/v1/referrers/{referrer_id}/codes/{code_id}/sync-discount")
    assert resynced.status_code == 200

    shopify.fail_discounts = True
    failed_sync = await api_client.post(f"/api/v1/referrers/{referrer_id}/codes/{code_id}/sync-discount")
    assert failed_sync.status_code == 502
    assert failed_sync.json()["error"] == "DISCOUNT_SYNC_FAILED"

    deleted = await api_client.delete(f"/api/v1/referrers/{referrer_id}")
    assert deleted.json()["deleted"] is True
    assert shopify.deleted_discounts == [created.json()["code"]["shopify_discount_id"]]

    gone = await api_client.get(f"/api/v1/referrers/{referrer_id}")
    assert gone.status_code == 404


@pytest.mark.asyncio
async def test_invalid_email_is_rejected(api_client):
    response = await api_client.post("/api/v1/referrers", json={"email": "not-an-email"})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_email_template_editing(api_client):
    listed = await api_client.get("/api/v1/email-templates")
    assert {t["template"] for t in listed.json()} == {"code_promo", "cashback_confirmation", "manual_referrer_welcome"}

    updated = await api_client.put("/api/v1/email-templates/code_promo", json={
        "subject": "Your code {{code}}",
        "html": "<p>{{code}}</p>",
    })
    assert updated.status_code == 200
    assert (await api_client.get("/api/v1/email-templates/code_promo")).json()["subject"] == "Your code {{code}}"

    broken = await api_client.put("/api/v1/email-templates/code_promo", json={"subject": "Hi", "html": "{% if %}"})
    assert broken.status_code == 422
    assert broken.json()["error"] == "INVALID_EMAIL_TEMPLATE"

    default = await api_client.get("/api/v1/email-templates/code_promo/default")
    reset = await api_client.post("/api/v1/email-templates/code_promo/reset")
    assert reset.json()["subject"] == default.json()["subject"] == "Your referral code is ready!"

    unknown = await api_client.get("/api/v1/email-templates/newsletter")
    assert unknown.status_code == 422


@pytest.mark.asyncio
async def test_statistics_endpoints(api_client, origin_code, seed_reward):
    await seed_reward(origin_code, "2001", "20")

    stats = await api_client.get("/api/v1/statistics", params={"days": 5})
    assert stats.status_code == 200
    body = stats.json()
    assert len(body["referrals_over_time"]) == 5
    assert body["referrals_over_time"][-1]["count"] == 1
    assert body["summary"]["total_referrals"] == 1

    assert (await api_client.get("/api/v1/statistics", params={"days": 0})).status_code == 422

    workshops = await api_client.get("/api/v1/statistics/workshops")
    assert workshops.json()[0]["product_title"] == "Pottery Workshop"


@pytest.mark.asyncio
async def test_settlement_in_progress_is_a_conflict(api_client, db, origin_code, seed_reward):
    reward = await seed_reward(origin_code, "2001", "20")
    now = datetime.utcnow()
    await db.execute(insert(settlement_locks).values(
        key=f"reward:{reward.id}", token="other-worker", acquired_at=now, expires_at=now + timedelta(minutes=5)
    ))
    await db.commit()

    response = await api_client.post(f"/api/v1/rewards/{reward.id}/settle")

    assert response.status_code == 409
    assert response.json()["error"] == "SETTLEMENT_IN_PROGRESS"
