import asyncio
import re
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from app.core.exceptions import CodeGenerationExhausted
from app.models.code import CodeIssuancePolicy, CodeOrigin
from app.models.settings import ReferralSettings
from app.services import code_service

CODE_FORMAT = re.compile(r"^[A-Z]{3}-\d{4}$")


def test_generated_codes_have_letters_hyphen_digits():
    for _ in range(200):
        code = code_service.generate_referral_code()
        assert CODE_FORMAT.match(code), code
        assert 1000 <= int(code[4:]) <= 9999


def test_expiry_is_none_for_zero_validity():
    now = datetime(2025, 3, 1, 12, 0)
    assert code_service.compute_expiry_date(0, now) is None
    assert code_service.compute_expiry_date(30, now) == now + timedelta(days=30)


@pytest.mark.asyncio
async def test_create_code_snapshots_settings(db, referrer):
    program = ReferralSettings(
        discount_fraction=Decimal("0.15"),
        cashback_amount=Decimal("12.50"),
        code_validity_days=0,
        max_usages_per_code=3,
    )

    code = await code_service.create_code_for_referrer(db, referrer.id, program)

    assert CODE_FORMAT.match(code.code)
    assert code.discount_snapshot == Decimal("0.15")
    assert code.cashback_snapshot == Decimal("12.50")
    assert code.max_usage == 3
    assert code.expires_at is None
    assert code.usage_count == 0
    assert code.workshop_quantity == 1


@pytest.mark.asyncio
async def test_collision_retries_until_unique(db, referrer, program, monkeypatch):
    first = await code_service.create_code_for_referrer(db, referrer.id, program)

    candidates = iter([first.code, first.code, "ZZZ-1234"])
    monkeypatch.setattr(code_service, "generate_referral_code", lambda: next(candidates))

    second = await code_service.create_code_for_referrer(db, referrer.id, program)
    assert second.code == "ZZZ-1234"


@pytest.mark.asyncio
async def test_collision_exhaustion_raises(db, referrer, program, monkeypatch):
    first = await code_service.create_code_for_referrer(db, referrer.id, program)
    monkeypatch.setattr(code_service, "generate_referral_code", lambda: first.code)

    with pytest.raises(CodeGenerationExhausted) as exc_info:
        await code_service.create_code_for_referrer(db, referrer.id, program, max_attempts=5)

    assert exc_info.value.details == {"attempts": 5}
    assert len(await code_service.list_codes_for_referrer(db, referrer.id)) == 1


@pytest.mark.asyncio
async def test_find_code_by_value_is_case_insensitive(db, origin_code):
    found = await code_service.find_code_by_value(db, f"  {origin_code.code.lower()} ")
    assert found.id == origin_code.id
    assert await code_service.find_code_by_value(db, "NOP-0000") is None


@pytest.mark.asyncio
async def test_reuse_policy_refreshes_latest_code(db, origin_code):
    updated_program = ReferralSettings(
        discount_fraction=Decimal("0.2"),
        cashback_amount=Decimal("30"),
        code_validity_days=60,
        max_usages_per_code=10,
    )

    issued = await code_service.issue_or_refresh_code(
        db,
        origin_code.referrer_id,
        updated_program,
        CodeOrigin(order_id="2002", order_gid="gid://shopify/Order/2002", product_id="8002"),
        policy=CodeIssuancePolicy.REUSE,
    )

    assert issued.created is False
    assert issued.code.id == origin_code.id
    assert issued.code.max_usage == 10
    assert issued.code.cashback_snapshot == Decimal("30")
    # first purchase keeps the attribution
    assert issued.code.origin_order_gid == origin_code.origin_order_gid
    assert issued.code.workshop_product_id == "7001"


@pytest.mark.asyncio
async def test_per_purchase_policy_mints_new_code(db, origin_code, program):
    issued = await code_service.issue_or_refresh_code(
        db,
        origin_code.referrer_id,
        program,
        CodeOrigin(order_id="2002", order_gid="gid://shopify/Order/2002"),
        policy=CodeIssuancePolicy.PER_PURCHASE,
    )

    assert issued.created is True
    assert issued.code.id != origin_code.id
    assert issued.code.origin_order_gid == "gid://shopify/Order/2002"


@pytest.mark.asyncio
async def test_same_origin_order_never_mints_twice(db, origin_code, program):
    issued = await code_service.issue_or_refresh_code(
        db,
        origin_code.referrer_id,
        program,
        CodeOrigin(order_id="1001", order_gid=origin_code.origin_order_gid),
        policy=CodeIssuancePolicy.PER_PURCHASE,
    )

    assert issued.created is False
    assert issued.code.id == origin_code.id


@pytest.mark.asyncio
async def test_refresh_adopts_origin_when_code_has_none(db, referrer, program):
    code = await code_service.create_code_for_referrer(db, referrer.id, program)

    refreshed = await code_service.refresh_code_terms(
        db, code, program, CodeOrigin(order_id="3003", order_gid="gid://shopify/Order/3003", quantity=2)
    )

    assert refreshed.origin_order_id == "3003"
    assert refreshed.origin_order_gid == "gid://shopify/Order/3003"
    assert refreshed.workshop_quantity == 2


@pytest.mark.asyncio
async def test_mark_code_as_used_increments(db, origin_code):
    await code_service.mark_code_as_used(db, origin_code.id)
    await code_service.mark_code_as_used(db, origin_code.id)

    code = await code_service.get_code_by_id(db, origin_code.id)
    assert code.usage_count == 2


@pytest.mark.asyncio
async def test_backfill_only_fills_missing_origin(db, referrer, origin_code, program):
    assert await code_service.backfill_origin_order(db, origin_code.id, "gid://shopify/Order/9") is False

    bare = await code_service.create_code_for_referrer(db, referrer.id, program)
    assert await code_service.backfill_origin_order(db, bare.id, "gid://shopify/Order/4004") is True

    code = await code_service.get_code_by_id(db, bare.id)
    assert code.origin_order_gid == "gid://shopify/Order/4004"
    assert code.origin_order_id == "4004"


@pytest.mark.asyncio
async def test_concurrent_generation_yields_distinct_codes(session_factory, referrer, program):
    async def mint():
        async with session_factory() as session:
            code = await code_service.create_code_for_referrer(session, referrer.id, program)
            await session.commit()
            return code.code

    minted = await asyncio.gather(*(mint() for _ in range(10)))

    assert len(set(minted)) == 10
    async with session_factory() as session:
        stored = await code_service.list_codes_for_referrer(session, referrer.id)
    assert sorted(c.code for c in stored) == sorted(minted)
