"""
Notification Service - Transactional referral emails through Resend

Templates are stored per type in email_templates and editable by
operators; the defaults below seed the table on first read. Bodies are
jinja2 with {{variable}} placeholders: the HTML body is autoescaped, the
subject and text body are not.

Sending is best-effort: every attempt is written to email_logs and failures
are logged and reported as False, never raised to the caller.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
import httpx
import structlog
from jinja2 import Environment, TemplateError, TemplateSyntaxError
from sqlalchemy import insert, select, update

from app.core.config import settings
from app.core.database import upsert_insert
from app.core.exceptions import InvalidEmailTemplate
from app.core.schema import email_logs, email_templates
from app.models.code import ReferralCodeInDB
from app.models.email import (
    EmailLogInDB, EmailStatus, EmailTemplate, EmailTemplateContent, EmailTemplateUpdate
)
from app.models.referrer import ReferrerInDB

logger = structlog.get_logger()


def _blank_none(value):
    return "" if value is None else value


html_environment = Environment(autoescape=True, finalize=_blank_none)
text_environment = Environment(autoescape=False, finalize=_blank_none)

DEFAULT_TEMPLATES: Dict[EmailTemplate, Dict[str, str]] = {
    EmailTemplate.CODE_PROMO: {
        "subject": "Your referral code is ready!",
        "html": (
            '<div style="font-family:Arial,sans-serif;max-width:640px;margin:0 auto">'
            '<div style="text-align:center;padding:24px"><img src="{{logoUrl}}" alt="{{logoAlt}}" style="max-width:160px"/></div>'
            "<h1>Hello {{firstName}},</h1>"
            "<p>Thank you for joining <strong>{{workshopTitle}}</strong>.</p>"
            "<h2>Your referral code</h2>"
            '<p style="font-size:26px;font-weight:600;text-align:center;letter-spacing:2px">{{code}}</p>'
            "<p>Friends who use it get <strong>{{discountPercentage}}</strong> off their first purchase.</p>"
            "<p>You receive <strong>{{cashbackAmount}}</strong> cashback for each successful referral.</p>"
            "<p>This code is valid until <strong>{{expiresAt}}</strong>.</p>"
            '<p><a href="{{shopUrl}}">{{shopUrl}}</a></p>'
            "</div>"
        ),
        "text": (
            "Hello {{firstName}},\n\n"
            "Thank you for joining {{workshopTitle}}.\n\n"
            "Your referral code: {{code}}\n\n"
            "Friends who use it get {{discountPercentage}} off.\n"
            "You receive {{cashbackAmount}} for each referral.\n"
            "Valid until {{expiresAt}}.\n"
        ),
    },
    EmailTemplate.CASHBACK_CONFIRMATION: {
        "subject": "Your cashback is confirmed!",
        "html": (
            '<div style="font-family:Arial,sans-serif;max-width:640px;margin:0 auto">'
            '<div style="text-align:center;padding:24px"><img src="{{logoUrl}}" alt="{{logoAlt}}" style="max-width:160px"/></div>'
            "<h1>Hello {{firstName}},</h1>"
            "<p>A friend just used your code <strong>{{code}}</strong>.</p>"
            "<p><strong>{{cashbackAmount}}</strong> has been refunded to your original payment method.</p>"
            "<p>Thank you for spreading the word!</p>"
            "</div>"
        ),
        "text": (
            "Hello {{firstName}},\n\n"
            "A friend just used your code {{code}}.\n"
            "{{cashbackAmount}} has been refunded to your original payment method.\n"
        ),
    },
    EmailTemplate.MANUAL_REFERRER_WELCOME: {
        "subject": "Welcome to our referral program",
        "html": (
            '<div style="font-family:Arial,sans-serif;max-width:640px;margin:0 auto">'
            '<div style="text-align:center;padding:24px"><img src="{{logoUrl}}" alt="{{logoAlt}}" style="max-width:160px"/></div>'
            "<h1>Welcome {{firstName}},</h1>"
            "<p>You have been added to our referral program.</p>"
            '<p style="font-size:26px;font-weight:600;text-align:center;letter-spacing:2px">{{code}}</p>'
            "<p>Share it: your friends get <strong>{{discountPercentage}}</strong> off and you earn "
            "<strong>{{cashbackAmount}}</strong> for each referral.</p>"
            "<p>Valid until <strong>{{expiresAt}}</strong>.</p>"
            "</div>"
        ),
        "text": (
            "Welcome {{firstName}},\n\n"
            "Your referral code: {{code}}\n"
            "Your friends get {{discountPercentage}} off and you earn {{cashbackAmount}} per referral.\n"
            "Valid until {{expiresAt}}.\n"
        ),
    },
}


def render(source: str, variables: Dict[str, Any], autoescape: bool = False) -> str:
    """Fill {{name}} placeholders; unknown or None values render empty"""
    environment = html_environment if autoescape else text_environment
    return environment.from_string(source).render(**variables)


def render_template(content: EmailTemplateContent, variables: Dict[str, Any]) -> Dict[str, Optional[str]]:
    return {
        "subject": render(content.subject, variables),
        "html": render(content.html, variables, autoescape=True),
        "text": render(content.text, variables) if content.text else None,
    }


def default_template(template: EmailTemplate) -> EmailTemplateContent:
    return EmailTemplateContent(template=template, **DEFAULT_TEMPLATES[template])


def _template_from_row(row) -> EmailTemplateContent:
    return EmailTemplateContent(**dict(row._mapping))


def _check_compiles(template: EmailTemplate, update_data: EmailTemplateUpdate):
    for field in ("subject", "html", "text"):
        source = getattr(update_data, field)
        if source is None:
            continue
        try:
            html_environment.parse(source)
        except TemplateSyntaxError as e:
            raise InvalidEmailTemplate(template.value, field, e.message)


async def get_email_template(db, template: EmailTemplate) -> EmailTemplateContent:
    """Stored template, seeded from the defaults on first read"""
    result = await db.execute(select(email_templates).where(email_templates.c.template == template.value))
    row = result.fetchone()
    if row:
        return _template_from_row(row)

    defaults = DEFAULT_TEMPLATES[template]
    now = datetime.utcnow()
    await db.execute(
        upsert_insert(db, email_templates)
        .values(template=template.value, created_at=now, updated_at=now, **defaults)
        .on_conflict_do_nothing(index_elements=["template"])
    )
    result = await db.execute(select(email_templates).where(email_templates.c.template == template.value))
    return _template_from_row(result.fetchone())


async def list_email_templates(db) -> List[EmailTemplateContent]:
    return [await get_email_template(db, template) for template in EmailTemplate]


async def upsert_email_template(db, template: EmailTemplate, update_data: EmailTemplateUpdate) -> EmailTemplateContent:
    _check_compiles(template, update_data)
    await get_email_template(db, template)

    result = await db.execute(
        update(email_templates)
        .where(email_templates.c.template == template.value)
        .values(
            subject=update_data.subject,
            html=update_data.html,
            text=update_data.text,
            updated_at=datetime.utcnow(),
        )
        .returning(*email_templates.c)
    )
    logger.info("Email template updated", template=template.value)
    return _template_from_row(result.fetchone())


async def reset_email_template(db, template: EmailTemplate) -> EmailTemplateContent:
    defaults = default_template(template)
    return await upsert_email_template(
        db, template, EmailTemplateUpdate(subject=defaults.subject, html=defaults.html, text=defaults.text)
    )


def format_money(amount: Decimal, currency: str = None) -> str:
    return f"{Decimal(amount):.2f} {currency or settings.DEFAULT_CURRENCY}"


def format_percentage(fraction: Decimal) -> str:
    return f"{(Decimal(fraction) * 100).normalize():f}%"


def format_expiry(expires_at: Optional[datetime]) -> str:
    return expires_at.strftime("%d/%m/%Y") if expires_at else "no expiry"


class ResendClient:
    """Minimal Resend HTTP API client"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        from_email: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.RESEND_API_KEY
        self.from_email = from_email or settings.RESEND_FROM_EMAIL
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def send(self, to: str, subject: str, html: str, text: Optional[str] = None) -> Optional[str]:
        """Returns the provider message id"""
        payload = {"from": self.from_email, "to": [to], "subject": subject, "html": html}
        if text:
            payload["text"] = text
        async with httpx.AsyncClient(timeout=15.0, transport=self._transport) as client:
            response = await client.post(
                settings.RESEND_API_URL,
                headers={"Authorization": f"Bearer {self.api_key}"},
                json=payload,
            )
            response.raise_for_status()
            return response.json().get("id")


resend_client = ResendClient()


async def send_email(
    db,
    template: EmailTemplate,
    recipient: Optional[str],
    variables: Dict[str, Any],
    referrer_id: Optional[str] = None,
    sender: Optional[ResendClient] = None,
) -> bool:
    """Render, send and log one email. Returns True when Resend accepted it."""
    if not recipient:
        logger.warning("Email skipped, no recipient", template=template.value, referrer_id=referrer_id)
        return False

    sender = sender or resend_client
    variables = {
        "logoUrl": settings.EMAIL_LOGO_URL or "",
        "logoAlt": settings.EMAIL_LOGO_ALT or "",
        "shopUrl": settings.SHOP_URL or "",
        **variables,
    }
    content = await get_email_template(db, template)
    error_message = None
    try:
        rendered = render_template(content, variables)
    except TemplateError as e:
        rendered = {"subject": content.subject}
        error_message = f"Template could not be rendered: {e}"

    log_id = str(uuid.uuid4())
    await db.execute(insert(email_logs).values(
        id=log_id,
        referrer_id=referrer_id,
        recipient=recipient,
        template=template.value,
        subject=rendered["subject"][:255],
        status=EmailStatus.PENDING.value,
        created_at=datetime.utcnow(),
    ))

    if error_message is None and not sender.configured:
        error_message = "RESEND_API_KEY is not configured"
    if error_message:
        await _finish_log(db, log_id, EmailStatus.FAILED, error_message=error_message)
        logger.warning("Email not sent", template=template.value, referrer_id=referrer_id, reason=error_message)
        return False

    try:
        provider_id = await sender.send(recipient, rendered["subject"], rendered["html"], rendered["text"])
    except (httpx.HTTPError, ValueError) as e:
        # ValueError: Resend answered 2xx with a body that is not JSON
        await _finish_log(db, log_id, EmailStatus.FAILED, error_message=str(e)[:1000])
        logger.error("Email sending failed", template=template.value, referrer_id=referrer_id, error=str(e))
        return False

    await _finish_log(db, log_id, EmailStatus.SENT, provider_id=provider_id)
    logger.info("Email sent", template=template.value, referrer_id=referrer_id, provider_id=provider_id)
    return True


async def _finish_log(db, log_id: str, status: EmailStatus, provider_id: str = None, error_message: str = None):
    await db.execute(
        update(email_logs)
        .where(email_logs.c.id == log_id)
        .values(
            status=status.value,
            provider_id=provider_id,
            error_message=error_message,
            sent_at=datetime.utcnow() if status == EmailStatus.SENT else None,
        )
    )


def _code_variables(referrer: ReferrerInDB, code: ReferralCodeInDB) -> Dict[str, Any]:
    return {
        "firstName": referrer.first_name or "",
        "lastName": referrer.last_name or "",
        "code": code.code,
        "workshopTitle": code.workshop_product_title or "our workshop",
        "workshopQuantity": code.workshop_quantity or 1,
        "expiresAt": format_expiry(code.expires_at),
        "discountPercentage": format_percentage(code.discount_snapshot),
        "cashbackAmount": format_money(code.cashback_snapshot),
    }


async def send_promo_code_email(db, referrer: ReferrerInDB, code: ReferralCodeInDB, sender=None) -> bool:
    return await send_email(
        db, EmailTemplate.CODE_PROMO, referrer.email, _code_variables(referrer, code), referrer.id, sender
    )


async def send_manual_referrer_welcome_email(db, referrer: ReferrerInDB, code: ReferralCodeInDB, sender=None) -> bool:
    return await send_email(
        db, EmailTemplate.MANUAL_REFERRER_WELCOME, referrer.email, _code_variables(referrer, code), referrer.id, sender
    )


async def send_cashback_confirmation_email(
    db,
    referrer_id: str,
    email: Optional[str],
    first_name: Optional[str],
    code: Optional[str],
    amount: Decimal,
    currency: str,
    sender=None,
) -> bool:
    variables = {
        "firstName": first_name or "",
        "code": code or "",
        "cashbackAmount": format_money(amount, currency),
    }
    return await send_email(db, EmailTemplate.CASHBACK_CONFIRMATION, email, variables, referrer_id, sender)


async def list_email_logs_for_referrer(db, referrer_id: str, limit: int = 50) -> List[EmailLogInDB]:
    result = await db.execute(
        select(email_logs)
        .where(email_logs.c.referrer_id == referrer_id)
        .order_by(email_logs.c.created_at.desc())
        .limit(limit)
    )
    return [EmailLogInDB(**dict(row._mapping)) for row in result.fetchall()]
