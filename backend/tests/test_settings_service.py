from decimal import Decimal

import pytest
from pydantic import ValidationError

from app.models.settings import AllCustomers, CustomerSegments, ReferralSettings, ReferralSettingsUpdate
from app.services import settings_service


@pytest.mark.asyncio
async def test_defaults_are_created_on_first_read(db):
    program = await settings_service.get_referral_settings(db)

    assert program.discount_fraction == Decimal("0.1")
    assert program.cashback_amount == Decimal("20")
    assert program.code_validity_days == 30
    assert program.applies_once_per_customer is True
    assert program.max_usages_per_code == 0
    assert program.max_refund_fraction == Decimal("1")
    assert program.eligible_segment_ids == ()


@pytest.mark.asyncio
async def test_partial_update_converts_percentages(db):
    updated = await settings_service.update_referral_settings(db, ReferralSettingsUpdate(
        discount_percentage=Decimal("15"),
        max_refund_percentage=Decimal("40"),
        eligible_segment_ids=[" gid://shopify/Segment/9 ", "", "   "],
    ))

    assert updated.discount_fraction == Decimal("0.15")
    assert updated.max_refund_fraction == Decimal("0.4")
    assert updated.cashback_amount == Decimal("20")
    assert updated.eligible_segment_ids == ("gid://shopify/Segment/9",)

    reread = await settings_service.get_referral_settings(db)
    assert reread == updated


@pytest.mark.asyncio
async def test_empty_update_changes_nothing(db):
    before = await settings_service.get_referral_settings(db)
    after = await settings_service.update_referral_settings(db, ReferralSettingsUpdate())
    assert after == before


def test_settings_are_immutable():
    program = ReferralSettings()
    with pytest.raises(ValidationError):
        program.cashback_amount = Decimal("50")


def test_audience_from_segments():
    assert settings_service.audience_from_settings(ReferralSettings()) == AllCustomers()
    assert settings_service.audience_from_settings(
        ReferralSettings(eligible_segment_ids=("a", " ", "b "))
    ) == CustomerSegments(segment_ids=("a", "b"))
