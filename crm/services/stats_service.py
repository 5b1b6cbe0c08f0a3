"""Stats service — dashboard aggregates for a reporting period.

Periods:
    "7", "14", "30", ...  rolling N days ending now
    "this_month"          first of this month -> now
    "last_month"          the whole previous calendar month
    "custom"              start/end dates (YYYY-MM-DD, end inclusive)

Each period is compared with the window of the same length just before it.
All-time figures (conversions, conversion rate, total revenue) count every
lead, archived included.
"""

import logging
import math
from datetime import datetime, timedelta, timezone

from crm.errors import ValidationError
from crm.models.email_log import EmailLog
from crm.models.lead import Lead

logger = logging.getLogger(__name__)

SOURCE_LABELS = {
    "linkedin": "LinkedIn",
    "referral": "Referral",
    "website": "Website",
    "email": "Email",
    "instagram": "Instagram",
    "meta_ads": "Meta Ads",
    "google_ads": "Google Ads",
    "other": "Other",
}

DAY_NAMES = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]


def _aware(dt):
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def _month_start(year, month):
    while month < 1:
        month += 12
        year -= 1
    return datetime(year, month, 1, tzinfo=timezone.utc)


def _parse_date(value, name):
    try:
        return datetime.strptime(value, "%Y-%m-%d").replace(tzinfo=timezone.utc)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {name} date, expected YYYY-MM-DD")


def resolve_period(period="30", start=None, end=None, now=None):
    """Work out the current and previous windows for a period.

    Returns:
        (start, end, previous_start, days). Windows are [start, end) and
        [previous_start, start).
    """
    now = now or datetime.now(timezone.utc)

    if period == "this_month":
        start = _month_start(now.year, now.month)
        previous_start = _month_start(now.year, now.month - 1)
        days = max(1, math.ceil((now - start) / timedelta(days=1)))
        return start, now, previous_start, days

    if period == "last_month":
        end = _month_start(now.year, now.month)
        start = _month_start(now.year, now.month - 1)
        previous_start = _month_start(now.year, now.month - 2)
        return start, end, previous_start, (end - start).days

    if period == "custom":
        if not start or not end:
            raise ValidationError("start and end are required for a custom period")
        start_dt = _parse_date(start, "start")
        end_dt = _parse_date(end, "end") + timedelta(days=1)
        if end_dt <= start_dt:
            raise ValidationError("end must not be before start")
        days = (end_dt - start_dt).days
        return start_dt, end_dt, start_dt - timedelta(days=days), days

    try:
        days = int(period)
    except (TypeError, ValueError):
        days = 30
    if days < 1:
        days = 30
    start = now - timedelta(days=days)
    return start, now, start - timedelta(days=days), days


def _in_window(lead, start, end):
    created = _aware(lead.created_at)
    return created is not None and start <= created < end


def _revenue(leads):
    return sum(float(l.revenue) for l in leads if l.stage == "converted" and l.revenue)


def _conv_rate(converted, total):
    return round(converted / total * 100, 1) if total else 0


def _by_source(leads, value=lambda lead: 1):
    totals = {}
    for lead in leads:
        source = lead.source or "other"
        totals[source] = totals.get(source, 0) + value(lead)
    return sorted(
        (
            {"source": source, "label": SOURCE_LABELS.get(source, source), "value": total}
            for source, total in totals.items()
        ),
        key=lambda row: row["value"],
        reverse=True,
    )


def _count_emails(start, end):
    return (
        EmailLog.query
        .filter(EmailLog.sent_at >= start)
        .filter(EmailLog.sent_at < end)
        .count()
    )


def _bucket(leads, start, end):
    in_bucket = [l for l in leads if _in_window(l, start, end)]
    return len(in_bucket), sum(1 for l in in_bucket if l.stage == "converted")


def _week_label(start, end):
    if start.month == end.month:
        return f"{start:%b} {start.day}-{end.day}"
    return f"{start:%b} {start.day} - {end:%b} {end.day}"


def build_trend(leads, period, now):
    """Leads and conversions per day (periods up to 14 days) or per week."""
    trend = []
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)

    if period.isdigit() and int(period) <= 14:
        for offset in range(int(period) - 1, -1, -1):
            day = today - timedelta(days=offset)
            count, converted = _bucket(leads, day, day + timedelta(days=1))
            trend.append({
                "label": f"{DAY_NAMES[day.weekday()]} {day.day}",
                "leads": count,
                "conversions": converted,
            })
        return trend

    monday = today - timedelta(days=today.weekday())
    weeks = 5 if period == "last_month" else 4
    for offset in range(weeks - 1, -1, -1):
        week_start = monday - timedelta(weeks=offset)
        count, converted = _bucket(leads, week_start, week_start + timedelta(days=7))
        trend.append({
            "label": _week_label(week_start, week_start + timedelta(days=6)),
            "leads": count,
            "conversions": converted,
        })
    return trend


def get_stats(period="30", start=None, end=None, now=None):
    """Aggregate pipeline numbers for the dashboard."""
    now = now or datetime.now(timezone.utc)
    period = str(period or "30")
    start_dt, end_dt, previous_start, days = resolve_period(period, start, end, now)

    leads = Lead.query.all()
    current = [l for l in leads if _in_window(l, start_dt, end_dt)]
    previous = [l for l in leads if _in_window(l, previous_start, start_dt)]

    converted_all = [l for l in leads if l.stage == "converted"]
    converted_current = [l for l in current if l.stage == "converted"]
    converted_previous = [l for l in previous if l.stage == "converted"]
    with_revenue = [l for l in converted_all if l.revenue]

    total_revenue = _revenue(leads)

    logger.info(f"Stats for period={period}: {len(current)} lead(s) over {days} day(s)")

    return {
        "period": period,
        "start": start_dt.isoformat(),
        "end": end_dt.isoformat(),
        "total_leads": len(current),
        "emails_sent": _count_emails(start_dt, end_dt),
        "conversions": len(converted_all),
        "conv_rate": _conv_rate(len(converted_all), len(leads)),
        "previous_period": {
            "total_leads": len(previous),
            "emails_sent": _count_emails(previous_start, start_dt),
            "conversions": len(converted_previous),
            "conv_rate": _conv_rate(len(converted_previous), len(previous)),
        },
        "leads_trend": build_trend(leads, period, now),
        "leads_by_source": _by_source(current),
        "conversions_by_source": _by_source(converted_current),
        "revenue": {
            "total": total_revenue,
            "current_period": _revenue(current),
            "previous_period": _revenue(previous),
            "avg_deal_size": round(total_revenue / len(with_revenue)) if with_revenue else 0,
            "by_source": _by_source(with_revenue, value=lambda lead: float(lead.revenue)),
        },
    }
