"""Tests for email response detection (check_responses) and its endpoint."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

from crm.errors import MailboxNotConnectedError, MailboxSessionExpiredError
from crm.extensions import db
from crm.models.activity import LeadActivity
from crm.models.lead import Lead
from crm.services.response_service import check_responses, has_responded

T = datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)


def _msg(when):
    return {"id": "m", "from_email": "x@example.com", "date": when}


class TestHasResponded:

    def test_newer_message_counts(self):
        assert has_responded([_msg(T - timedelta(days=1)), _msg(T + timedelta(days=1))], T)

    def test_only_older_messages(self):
        assert not has_responded([_msg(T - timedelta(days=1))], T)

    def test_equal_timestamp_is_not_a_reply(self):
        assert not has_responded([_msg(T)], T)

    def test_naive_last_contacted_treated_as_utc(self):
        naive = T.replace(tzinfo=None)
        assert has_responded([_msg(T + timedelta(minutes=1))], naive)

    def test_messages_without_date_ignored(self):
        assert not has_responded([_msg(None)], T)


class TestCheckResponses:

    def test_reply_moves_lead_to_interested(self, make_lead):
        lead = make_lead(name="Replier", email="r@example.com", last_contacted=T)
        mailbox = MagicMock()
        mailbox.list_messages.return_value = [_msg(T - timedelta(days=1)), _msg(T + timedelta(days=1))]

        result = check_responses(mailbox)

        assert result == {"checked": 1, "advanced": 1, "advanced_leads": ["Replier"], "errors": 0}
        mailbox.list_messages.assert_called_once_with(query="from:r@example.com", max_results=5)
        assert lead.stage == "interested"
        assert lead.archived is False
        # last_contacted is left alone
        assert lead.last_contacted.replace(tzinfo=timezone.utc) == T
        activity = LeadActivity.query.filter_by(lead_id=lead.id).one()
        assert activity.activity_type == "stage_change"

    def test_no_reply_no_change(self, make_lead):
        lead = make_lead(last_contacted=T)
        mailbox = MagicMock()
        mailbox.list_messages.return_value = [_msg(T - timedelta(hours=1))]

        result = check_responses(mailbox)

        assert result["advanced"] == 0
        assert lead.stage == "contacted_1"
        assert LeadActivity.query.count() == 0

    def test_only_eligible_leads_checked(self, make_lead):
        make_lead(stage="contacted_1", last_contacted=T)
        make_lead(stage="contacted_1", last_contacted=None)
        make_lead(stage="contacted_2", last_contacted=T)
        make_lead(stage="contacted_1", last_contacted=T, archived=True)
        mailbox = MagicMock()
        mailbox.list_messages.return_value = []

        result = check_responses(mailbox)

        assert result["checked"] == 1
        assert mailbox.list_messages.call_count == 1

    def test_single_lead_filter(self, make_lead):
        make_lead(last_contacted=T)
        target = make_lead(last_contacted=T)
        mailbox = MagicMock()
        mailbox.list_messages.return_value = []

        result = check_responses(mailbox, lead_id=target.id)

        assert result["checked"] == 1
        mailbox.list_messages.assert_called_once_with(query=f"from:{target.email}", max_results=5)

    def test_mailbox_error_on_one_lead_does_not_stop_sweep(self, make_lead):
        make_lead(name="Broken", email="broken@example.com", last_contacted=T)
        ok = make_lead(name="Fine", email="fine@example.com", last_contacted=T)

        def list_messages(query, max_results):
            if "broken" in query:
                raise RuntimeError("Gmail exploded")
            return [_msg(T + timedelta(hours=2))]

        mailbox = MagicMock()
        mailbox.list_messages.side_effect = list_messages

        result = check_responses(mailbox)

        assert result["checked"] == 2
        assert result["errors"] == 1
        assert result["advanced_leads"] == ["Fine"]
        assert db.session.get(Lead, ok.id).stage == "interested"

    def test_end_to_end_from_contacted_to_interested(self, make_lead):
        lead = make_lead(stage="contacted_1", last_contacted=T)
        mailbox = MagicMock()
        mailbox.list_messages.return_value = [_msg(T + timedelta(hours=3))]

        check_responses(mailbox)

        assert lead.stage == "interested"
        assert lead.archived is False
        assert lead.converted_at is None


class TestCheckResponsesEndpoint:

    def test_not_connected_is_soft(self, auth_client, make_lead):
        make_lead(last_contacted=T)
        with patch(
            "crm.services.gmail_service.get_mailbox",
            side_effect=MailboxNotConnectedError(),
        ):
            resp = auth_client.get("/api/leads/check-responses")
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["message"] == "Gmail not connected"
        assert data["checked"] == 0

    def test_expired_is_soft(self, auth_client):
        with patch(
            "crm.services.gmail_service.get_mailbox",
            side_effect=MailboxSessionExpiredError(),
        ):
            resp = auth_client.get("/api/leads/check-responses")
        assert resp.status_code == 200
        assert resp.get_json()["message"] == "Gmail token expired"

    def test_runs_sweep(self, auth_client, make_lead, fake_mailbox):
        lead = make_lead(last_contacted=T)
        fake_mailbox.list_messages.return_value = [_msg(T + timedelta(days=1))]
        with patch("crm.services.gmail_service.get_mailbox", return_value=fake_mailbox):
            resp = auth_client.get(f"/api/leads/check-responses?lead_id={lead.id}")
        assert resp.status_code == 200
        assert resp.get_json()["advanced"] == 1

    def test_requires_login(self, client):
        assert client.get("/api/leads/check-responses").status_code == 401
