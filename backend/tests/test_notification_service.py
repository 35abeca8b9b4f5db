import json
from datetime import datetime
from decimal import Decimal

import httpx
import pytest
from sqlalchemy import select

from app.core.exceptions import InvalidEmailTemplate
from app.core.schema import email_logs, email_templates
from app.models.email import EmailStatus, EmailTemplate, EmailTemplateUpdate
from app.services import notification_service
from app.services.notification_service import ResendClient, send_email


def resend_transport(status_code=200, captured=None):
    def handler(request: httpx.Request):
        if captured is not None:
            captured.append(json.loads(request.content))
        return httpx.Response(status_code, json={"id": "re_123"} if status_code < 400 else {"message": "invalid"})
    return httpx.MockTransport(handler)


def test_render_replaces_known_and_blanks_unknown():
    assert notification_service.render("Hi {{firstName}}{{missing}}!", {"firstName": "Ada"}) == "Hi Ada!"


def test_formatting_helpers():
    assert notification_service.format_money(Decimal("20"), "EUR") == "20.00 EUR"
    assert notification_service.format_percentage(Decimal("0.1500")) == "15%"
    assert notification_service.format_expiry(datetime(2025, 4, 30)) == "30/04/2025"
    assert notification_service.format_expiry(None) == "no expiry"


@pytest.mark.asyncio
async def test_sent_email_is_logged(db, referrer):
    captured = []
    sender = ResendClient(api_key="re_test", from_email="shop@example.com", transport=resend_transport(captured=captured))

    sent = await send_email(
        db, EmailTemplate.CASHBACK_CONFIRMATION, "ada@example.com",
        {"firstName": "Ada", "code": "ABC-1234", "cashbackAmount": "20.00 EUR"},
        referrer.id, sender,
    )

    assert sent is True
    assert captured[0]["to"] == ["ada@example.com"]
    assert "ABC-1234" in captured[0]["html"]
    log = (await db.execute(select(email_logs))).fetchone()
    assert log.status == EmailStatus.SENT.value
    assert log.provider_id == "re_123"
    assert log.sent_at is not None


@pytest.mark.asyncio
async def test_provider_error_is_logged_not_raised(db, referrer):
    sender = ResendClient(api_key="re_test", transport=resend_transport(status_code=422))

    sent = await send_email(db, EmailTemplate.CODE_PROMO, "ada@example.com", {}, referrer.id, sender)

    assert sent is False
    log = (await db.execute(select(email_logs))).fetchone()
    assert log.status == EmailStatus.FAILED.value
    assert "422" in log.error_message


@pytest.mark.asyncio
async def test_unconfigured_sender_records_failure(db, referrer):
    sent = await send_email(db, EmailTemplate.CODE_PROMO, "ada@example.com", {}, referrer.id, ResendClient(api_key=""))

    assert sent is False
    log = (await db.execute(select(email_logs))).fetchone()
    assert log.error_message == "RESEND_API_KEY is not configured"


@pytest.mark.asyncio
async def test_missing_recipient_is_skipped(db):
    assert await send_email(db, EmailTemplate.CODE_PROMO, None, {}) is False
    assert (await db.execute(select(email_logs))).fetchone() is None


@pytest.mark.asyncio
async def test_promo_email_uses_code_snapshot(db, referrer, origin_code):
    captured = []
    sender = ResendClient(api_key="re_test", transport=resend_transport(captured=captured))

    await notification_service.send_promo_code_email(db, referrer, origin_code, sender=sender)

    text = captured[0]["text"]
    assert origin_code.code in text
    assert "Pottery Workshop" in text
    assert "10%" in text
    assert "20.00 EUR" in text

    logs = await notification_service.list_email_logs_for_referrer(db, referrer.id)
    assert [log.template for log in logs] == [EmailTemplate.CODE_PROMO]


def test_html_body_escapes_variables_text_body_does_not():
    content = notification_service.default_template(EmailTemplate.CASHBACK_CONFIRMATION)

    rendered = notification_service.render_template(content, {
        "firstName": "<script>alert(1)</script>",
        "code": "ABC-1234",
        "cashbackAmount": "20.00 EUR",
    })

    assert "<script>" not in rendered["html"]
    assert "&lt;script&gt;" in rendered["html"]
    assert "Hello <script>alert(1)</script>," in rendered["text"]


@pytest.mark.asyncio
async def test_non_json_provider_reply_is_logged_not_raised(db, referrer):
    transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>gateway</html>"))
    sender = ResendClient(api_key="re_test", transport=transport)

    sent = await send_email(db, EmailTemplate.CODE_PROMO, "ada@example.com", {}, referrer.id, sender)

    assert sent is False
    log = (await db.execute(select(email_logs))).fetchone()
    assert log.status == EmailStatus.FAILED.value


@pytest.mark.asyncio
async def test_templates_are_seeded_from_defaults(db):
    stored = await notification_service.get_email_template(db, EmailTemplate.CODE_PROMO)

    assert stored.subject == "Your referral code is ready!"
    assert stored.updated_at is not None
    rows = (await db.execute(select(email_templates))).fetchall()
    assert [row.template for row in rows] == [EmailTemplate.CODE_PROMO.value]

    listed = await notification_service.list_email_templates(db)
    assert {t.template for t in listed} == set(EmailTemplate)


@pytest.mark.asyncio
async def test_edited_template_is_used_then_reset(db, referrer):
    await notification_service.upsert_email_template(db, EmailTemplate.CASHBACK_CONFIRMATION, EmailTemplateUpdate(
        subject="  {{firstName}}, cashback on its way  ",
        html="<p>{{cashbackAmount}} for {{code}}</p>",
        text="   ",
    ))
    captured = []
    sender = ResendClient(api_key="re_test", transport=resend_transport(captured=captured))

    await notification_service.send_cashback_confirmation_email(
        db, referrer.id, "ada@example.com", "Ada", "ABC-1234", Decimal("20"), "EUR", sender=sender
    )

    assert captured[0]["subject"] == "Ada, cashback on its way"
    assert captured[0]["html"] == "<p>20.00 EUR for ABC-1234</p>"
    assert "text" not in captured[0]

    reset = await notification_service.reset_email_template(db, EmailTemplate.CASHBACK_CONFIRMATION)
    assert reset.subject == "Your cashback is confirmed!"
    assert reset.text is not None


@pytest.mark.asyncio
async def test_template_that_does_not_compile_is_rejected(db):
    with pytest.raises(InvalidEmailTemplate) as exc_info:
        await notification_service.upsert_email_template(
            db, EmailTemplate.CODE_PROMO, EmailTemplateUpdate(subject="Hi", html="<p>{{ code </p>")
        )

    assert exc_info.value.details["field"] == "html"
    stored = await notification_service.get_email_template(db, EmailTemplate.CODE_PROMO)
    assert stored.html == notification_service.default_template(EmailTemplate.CODE_PROMO).html
