"""
Statistics Service - Dashboard figures and the per-workshop participant view

Daily buckets use the UTC calendar date of created_at, matching the naive
UTC timestamps stored by every other service.
"""

from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Dict, List, Optional
from sqlalchemy import func, select

from app.core.schema import codes, email_logs, referrals, referrers, rewards
from app.models.email import EmailTemplate
from app.models.reward import RewardStatus
from app.models.statistics import (
    Statistics, StatisticsSummary, TimeSeriesPoint, TopReferrer, Workshop, WorkshopParticipant
)
from app.services.reward_service import get_reward_stats

TOP_REFERRERS_LIMIT = 10


def _display_name(first_name: Optional[str], last_name: Optional[str], email: Optional[str], customer_id: str) -> str:
    return " ".join(part for part in (first_name, last_name) if part) or email or customer_id


def _day_range(days: int, today: date) -> List[date]:
    return [today - timedelta(days=offset) for offset in range(days - 1, -1, -1)]


def _count_by_day(timestamps: List[datetime], day_range: List[date]) -> List[TimeSeriesPoint]:
    counts = {day: 0 for day in day_range}
    for created_at in timestamps:
        if created_at.date() in counts:
            counts[created_at.date()] += 1
    return [TimeSeriesPoint(day=day, count=counts[day]) for day in day_range]


async def _created_since(db, table, start: datetime, *columns):
    result = await db.execute(
        select(table.c.created_at, *columns).where(table.c.created_at >= start).order_by(table.c.created_at)
    )
    return result.fetchall()


async def get_statistics(db, days: int = 30, today: Optional[date] = None) -> Statistics:
    """Time series over the last `days` days (today included) plus all-time totals"""
    today = today or datetime.utcnow().date()
    day_range = _day_range(days, today)
    start = datetime.combine(day_range[0], time.min)

    referrer_rows = await _created_since(db, referrers, start)
    referral_rows = await _created_since(db, referrals, start)
    reward_rows = await _created_since(db, rewards, start, rewards.c.amount)

    amounts: Dict[date, Decimal] = {day: Decimal("0") for day in day_range}
    for row in reward_rows:
        if row.created_at.date() in amounts:
            amounts[row.created_at.date()] += Decimal(str(row.amount))

    # Cumulative: usage of every code created up to the end of each day
    code_rows = (await db.execute(select(codes.c.created_at, codes.c.usage_count))).fetchall()
    codes_usage = [
        TimeSeriesPoint(
            day=day,
            count=sum(row.usage_count for row in code_rows if row.created_at.date() <= day),
        )
        for day in day_range
    ]

    reward_stats = await get_reward_stats(db)
    by_status = reward_stats.by_status

    summary = StatisticsSummary(
        total_referrers=(await db.execute(select(func.count()).select_from(referrers))).scalar_one(),
        total_codes=len(code_rows),
        total_referrals=reward_stats.total_referrals,
        total_rewards=sum(stats.count for stats in by_status.values()),
        total_rewards_amount=sum((stats.amount for stats in by_status.values()), Decimal("0")),
        pending_rewards_amount=by_status[RewardStatus.PENDING].amount,
        paid_rewards_amount=by_status[RewardStatus.PAID].amount,
    )

    return Statistics(
        days=days,
        referrers_over_time=_count_by_day([r.created_at for r in referrer_rows], day_range),
        referrals_over_time=_count_by_day([r.created_at for r in referral_rows], day_range),
        rewards_over_time=_count_by_day([r.created_at for r in reward_rows], day_range),
        rewards_amount_over_time=[TimeSeriesPoint(day=day, count=0, amount=amounts[day]) for day in day_range],
        codes_usage_over_time=codes_usage,
        rewards_by_status=by_status,
        top_referrers=await get_top_referrers(db),
        summary=summary,
    )


async def get_top_referrers(db, limit: int = TOP_REFERRERS_LIMIT) -> List[TopReferrer]:
    """Referrers with the most referrals, with their reward amounts"""
    referral_counts = (
        select(referrals.c.referrer_id, func.count().label("total_referrals"))
        .group_by(referrals.c.referrer_id)
        .subquery()
    )
    result = await db.execute(
        select(referrers, referral_counts.c.total_referrals)
        .join(referral_counts, referral_counts.c.referrer_id == referrers.c.id)
        .order_by(referral_counts.c.total_referrals.desc(), referrers.c.created_at)
        .limit(limit)
    )
    rows = result.fetchall()
    if not rows:
        return []

    amounts: Dict[str, Dict[str, Decimal]] = {}
    reward_rows = await db.execute(
        select(rewards.c.referrer_id, rewards.c.status, func.coalesce(func.sum(rewards.c.amount), 0))
        .where(rewards.c.referrer_id.in_([row.id for row in rows]))
        .group_by(rewards.c.referrer_id, rewards.c.status)
    )
    for referrer_id, status, amount in reward_rows.fetchall():
        amounts.setdefault(referrer_id, {})[status] = Decimal(str(amount))

    top = []
    for row in rows:
        own = amounts.get(row.id, {})
        top.append(TopReferrer(
            id=row.id,
            name=_display_name(row.first_name, row.last_name, row.email, row.shopify_customer_id),
            total_referrals=row.total_referrals,
            total_rewards=sum(own.values(), Decimal("0")),
            paid_rewards=own.get(RewardStatus.PAID.value, Decimal("0")),
            pending_rewards=own.get(RewardStatus.PENDING.value, Decimal("0")),
        ))
    return top


async def list_workshops(db) -> List[Workshop]:
    """
    Codes minted from a workshop purchase, grouped by product title.

    Each participant carries the outcome of the latest promo email sent
    to them, newest purchase first.
    """
    result = await db.execute(
        select(
            codes.c.code,
            codes.c.created_at,
            codes.c.workshop_product_title,
            codes.c.workshop_quantity,
            referrers.c.id.label("referrer_id"),
            referrers.c.email,
            referrers.c.first_name,
            referrers.c.last_name,
            referrers.c.shopify_customer_id,
        )
        .join(referrers, referrers.c.id == codes.c.referrer_id)
        .where(codes.c.workshop_product_title.is_not(None))
        .order_by(codes.c.created_at.desc())
    )
    rows = result.fetchall()

    latest_logs = {}
    if rows:
        log_rows = await db.execute(
            select(email_logs)
            .where(
                email_logs.c.template == EmailTemplate.CODE_PROMO.value,
                email_logs.c.referrer_id.in_(list({row.referrer_id for row in rows})),
            )
            .order_by(email_logs.c.created_at.desc())
        )
        for log in log_rows.fetchall():
            latest_logs.setdefault(log.referrer_id, log)

    workshops: Dict[str, Workshop] = {}
    for row in rows:
        workshop = workshops.setdefault(row.workshop_product_title, Workshop(product_title=row.workshop_product_title))
        log = latest_logs.get(row.referrer_id)
        quantity = row.workshop_quantity or 1

        if not row.email:
            email_status, sent_at, error = "NO_EMAIL", None, None
        elif log:
            email_status, sent_at, error = log.status.upper(), log.sent_at, log.error_message
        else:
            email_status, sent_at, error = None, None, None

        workshop.participants.append(WorkshopParticipant(
            referrer_id=row.referrer_id,
            name=_display_name(row.first_name, row.last_name, row.email, row.shopify_customer_id),
            email=row.email,
            shopify_customer_id=row.shopify_customer_id,
            purchased_at=row.created_at,
            code=row.code,
            quantity=quantity,
            email_status=email_status,
            email_sent_at=sent_at,
            email_error=error,
        ))
        workshop.seats += quantity

    return list(workshops.values())
