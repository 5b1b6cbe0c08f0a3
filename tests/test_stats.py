"""Tests for dashboard stats (/api/stats)."""

from datetime import datetime, timedelta, timezone

import pytest

from crm.errors import ValidationError
from crm.extensions import db
from crm.models.email_log import EmailLog
from crm.services.stats_service import get_stats, resolve_period

NOW = datetime(2026, 3, 18, 15, 0, tzinfo=timezone.utc)


class TestResolvePeriod:

    def test_rolling_days(self):
        start, end, previous_start, days = resolve_period("7", now=NOW)
        assert days == 7
        assert end == NOW
        assert start == NOW - timedelta(days=7)
        assert previous_start == NOW - timedelta(days=14)

    def test_invalid_falls_back_to_30(self):
        assert resolve_period("banana", now=NOW)[3] == 30
        assert resolve_period("0", now=NOW)[3] == 30

    def test_this_month(self):
        start, end, previous_start, _ = resolve_period("this_month", now=NOW)
        assert start == datetime(2026, 3, 1, tzinfo=timezone.utc)
        assert end == NOW
        assert previous_start == datetime(2026, 2, 1, tzinfo=timezone.utc)

    def test_last_month_is_bounded(self):
        start, end, previous_start, days = resolve_period("last_month", now=NOW)
        assert start == datetime(2026, 2, 1, tzinfo=timezone.utc)
        assert end == datetime(2026, 3, 1, tzinfo=timezone.utc)
        assert previous_start == datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert days == 28

    def test_last_month_in_january(self):
        start, end, _, _ = resolve_period("last_month", now=datetime(2026, 1, 5, tzinfo=timezone.utc))
        assert start == datetime(2025, 12, 1, tzinfo=timezone.utc)
        assert end == datetime(2026, 1, 1, tzinfo=timezone.utc)

    def test_custom_end_inclusive(self):
        start, end, previous_start, days = resolve_period(
            "custom", "2026-03-01", "2026-03-10", now=NOW
        )
        assert end == datetime(2026, 3, 11, tzinfo=timezone.utc)
        assert days == 10
        assert previous_start == datetime(2026, 2, 19, tzinfo=timezone.utc)

    def test_custom_requires_valid_dates(self):
        with pytest.raises(ValidationError):
            resolve_period("custom", "2026-03-01", None, now=NOW)
        with pytest.raises(ValidationError):
            resolve_period("custom", "03/01/2026", "2026-03-10", now=NOW)
        with pytest.raises(ValidationError):
            resolve_period("custom", "2026-03-10", "2026-03-01", now=NOW)


class TestGetStats:

    def test_current_and_previous_windows(self, make_lead):
        make_lead(created_at=NOW - timedelta(days=2), source="meta_ads")
        make_lead(created_at=NOW - timedelta(days=3), source="meta_ads",
                  stage="converted", revenue=1200)
        make_lead(created_at=NOW - timedelta(days=10), source="referral",
                  stage="converted", revenue=800)
        make_lead(created_at=NOW - timedelta(days=40), source="website")

        stats = get_stats("7", now=NOW)

        assert stats["total_leads"] == 2
        assert stats["previous_period"]["total_leads"] == 1
        assert stats["previous_period"]["conversions"] == 1
        assert stats["previous_period"]["conv_rate"] == 100.0
        # all-time figures
        assert stats["conversions"] == 2
        assert stats["conv_rate"] == 50.0
        assert stats["revenue"]["total"] == 2000
        assert stats["revenue"]["current_period"] == 1200
        assert stats["revenue"]["previous_period"] == 800
        assert stats["revenue"]["avg_deal_size"] == 1000
        assert stats["leads_by_source"] == [
            {"source": "meta_ads", "label": "Meta Ads", "value": 2},
        ]
        assert stats["conversions_by_source"][0]["value"] == 1

    def test_emails_sent_counted_per_window(self, make_lead):
        db.session.add_all([
            EmailLog(subject="a", sent_at=NOW - timedelta(days=1)),
            EmailLog(subject="b", sent_at=NOW - timedelta(days=2)),
            EmailLog(subject="c", sent_at=NOW - timedelta(days=9)),
        ])
        db.session.commit()

        stats = get_stats("7", now=NOW)

        assert stats["emails_sent"] == 2
        assert stats["previous_period"]["emails_sent"] == 1

    def test_empty_database(self):
        stats = get_stats("30", now=NOW)
        assert stats["total_leads"] == 0
        assert stats["conv_rate"] == 0
        assert stats["revenue"]["avg_deal_size"] == 0

    def test_short_period_has_daily_trend(self, make_lead):
        make_lead(created_at=NOW - timedelta(hours=1))
        trend = get_stats("7", now=NOW)["leads_trend"]
        assert len(trend) == 7
        assert trend[-1] == {"label": "Wed 18", "leads": 1, "conversions": 0}

    def test_long_period_has_weekly_trend(self):
        assert len(get_stats("30", now=NOW)["leads_trend"]) == 4
        assert len(get_stats("last_month", now=NOW)["leads_trend"]) == 5


class TestStatsEndpoint:

    def test_default_period(self, auth_client, make_lead):
        make_lead()
        resp = auth_client.get("/api/stats")
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["period"] == "30"
        assert data["total_leads"] == 1

    def test_bad_custom_period_is_400(self, auth_client):
        resp = auth_client.get("/api/stats?period=custom&start=2026-03-01")
        assert resp.status_code == 400

    def test_requires_login(self, client):
        assert client.get("/api/stats").status_code == 401
