"""Tests for the shared Gmail credential, the mailbox client, and /api/gmail."""

import base64
from datetime import datetime, timedelta, timezone
from email import message_from_bytes
from unittest.mock import MagicMock, patch

import httplib2
import pytest
from googleapiclient.errors import HttpError

from crm.errors import (
    MailboxNotConnectedError,
    MailboxSessionExpiredError,
    UpstreamUnavailableError,
)
from crm.extensions import db
from crm.models.activity import LeadActivity
from crm.models.email_log import EmailLog
from crm.models.setting import Setting
from crm.services import gmail_service
from crm.services.gmail_service import GmailMailbox


def _b64(text):
    return base64.urlsafe_b64encode(text.encode()).decode().rstrip("=")


def _http_error(status):
    return HttpError(httplib2.Response({"status": status}), b'{"error": {"message": "nope"}}')


def _expire(setting):
    setting.value = {**setting.value, "expiry_date": 1000}
    db.session.commit()


class TestSharedCredential:

    def test_not_connected(self):
        with pytest.raises(MailboxNotConnectedError):
            gmail_service.get_mailbox()

    def test_valid_token_used_as_is(self, gmail_connected):
        with patch("crm.services.gmail_service.refresh_access_token") as refresh:
            mailbox = gmail_service.get_mailbox()
        refresh.assert_not_called()
        assert mailbox.access_token == "ya29.valid"
        assert mailbox.email == "heath@seammedia.com"

    def test_missing_refresh_token_is_expired_session(self, gmail_connected):
        gmail_connected.value = {**gmail_connected.value, "refresh_token": None, "expiry_date": 1000}
        db.session.commit()
        with pytest.raises(MailboxSessionExpiredError):
            gmail_service.get_mailbox()

    def test_lost_refresh_race_uses_winner_token(self, gmail_connected):
        """Another request refreshes first; our write must not clobber it."""
        _expire(gmail_connected)

        def concurrent_refresh(refresh_token):
            Setting.query.filter_by(key=Setting.GMAIL_TOKENS).update(
                {
                    "value": {**gmail_connected.value, "access_token": "ya29.winner",
                              "expiry_date": 9999999999999},
                    "version": 2,
                },
                synchronize_session=False,
            )
            db.session.commit()
            return {"access_token": "ya29.loser", "expiry_date": 9999999999999, "refresh_token": None}

        with patch("crm.services.gmail_service.refresh_access_token", side_effect=concurrent_refresh):
            mailbox = gmail_service.get_mailbox()

        assert mailbox.access_token == "ya29.winner"
        setting = Setting.query.filter_by(key=Setting.GMAIL_TOKENS).one()
        assert setting.version == 2
        assert setting.value["access_token"] == "ya29.winner"

    def test_save_credential_keeps_existing_refresh_token(self, gmail_connected):
        gmail_service.save_credential("ya29.new", None, None, "heath@seammedia.com")
        setting = Setting.query.filter_by(key=Setting.GMAIL_TOKENS).one()
        assert setting.value["refresh_token"] == "1//refresh"
        assert setting.version == 2

    def test_clear_credential(self, gmail_connected):
        assert gmail_service.clear_credential() is True
        assert Setting.query.count() == 0


class TestCallWithMailbox:

    def test_401_triggers_one_refresh_and_retry(self, gmail_connected):
        calls = []

        def fn(mailbox):
            calls.append(mailbox.access_token)
            if len(calls) == 1:
                raise _http_error(401)
            return "ok"

        fresh = {"access_token": "ya29.fresh", "expiry_date": 9999999999999, "refresh_token": None}
        with patch("crm.services.gmail_service.refresh_access_token", return_value=fresh):
            assert gmail_service.call_with_mailbox(fn) == "ok"

        assert calls == ["ya29.valid", "ya29.fresh"]

    def test_refresh_failure_means_reconnect(self, gmail_connected):
        from google.auth.exceptions import RefreshError

        def fn(mailbox):
            raise _http_error(401)

        with patch("crm.services.gmail_service.refresh_access_token", side_effect=RefreshError("revoked")):
            with pytest.raises(MailboxSessionExpiredError):
                gmail_service.call_with_mailbox(fn)

    def test_other_errors_are_upstream_failures(self, gmail_connected):
        def fn(mailbox):
            raise _http_error(500)

        with pytest.raises(UpstreamUnavailableError):
            gmail_service.call_with_mailbox(fn)


class TestGmailMailbox:

    def _service(self, message):
        service = MagicMock()
        messages = service.users.return_value.messages.return_value
        messages.list.return_value.execute.return_value = {"messages": [{"id": message["id"]}]}
        messages.get.return_value.execute.return_value = message
        return service

    def test_list_messages_parses_headers_and_body(self):
        message = {
            "id": "m1",
            "threadId": "t1",
            "snippet": "Thanks for…",
            "internalDate": "1773136800000",
            "labelIds": ["INBOX", "UNREAD"],
            "payload": {
                "headers": [
                    {"name": "From", "value": '"Jane Doe" <jane@example.com>'},
                    {"name": "Subject", "value": "Re: Quote"},
                    {"name": "To", "value": "heath@seammedia.com"},
                ],
                "parts": [{"mimeType": "text/plain", "body": {"data": _b64("Sounds great")}}],
            },
        }
        mailbox = GmailMailbox("token", service=self._service(message))

        [parsed] = mailbox.list_messages(query="from:jane@example.com", max_results=5)

        assert parsed["from"] == "Jane Doe"
        assert parsed["from_email"] == "jane@example.com"
        assert parsed["subject"] == "Re: Quote"
        assert parsed["body"] == "Sounds great"
        assert parsed["is_read"] is False
        assert parsed["date"] == datetime.fromtimestamp(1773136800, tz=timezone.utc)

    def test_date_header_used_without_internal_date(self):
        message = {
            "id": "m2",
            "payload": {"headers": [{"name": "Date", "value": "Tue, 10 Mar 2026 09:00:00 +0000"}]},
        }
        mailbox = GmailMailbox("token", service=self._service(message))
        [parsed] = mailbox.list_messages()
        assert parsed["date"] == datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)

    def test_send_reply_sets_thread_and_headers(self):
        service = MagicMock()
        send = service.users.return_value.messages.return_value.send
        send.return_value.execute.return_value = {"id": "sent-1"}
        mailbox = GmailMailbox("token", service=service)

        message_id = mailbox.send_message(
            to="jane@example.com", subject="Quote", body="<p>Hi</p>",
            thread_id="t1", in_reply_to="<abc@mail.gmail.com>",
        )

        assert message_id == "sent-1"
        body = send.call_args.kwargs["body"]
        assert body["threadId"] == "t1"
        raw = body["raw"] + "=" * (-len(body["raw"]) % 4)
        mime = message_from_bytes(base64.urlsafe_b64decode(raw))
        assert mime["Subject"] == "Re: Quote"
        assert mime["In-Reply-To"] == "<abc@mail.gmail.com>"

    def test_archive_action_removes_inbox_label(self):
        service = MagicMock()
        mailbox = GmailMailbox("token", service=service)
        mailbox.perform_action("archive", "m1")
        modify = service.users.return_value.messages.return_value.modify
        assert modify.call_args.kwargs["body"] == {"addLabelIds": [], "removeLabelIds": ["INBOX"]}


class TestGmailEndpoints:

    def test_status_disconnected(self, auth_client):
        assert auth_client.get("/api/gmail/status").get_json() == {"connected": False, "email": None}

    def test_status_connected(self, auth_client, gmail_connected):
        data = auth_client.get("/api/gmail/status").get_json()
        assert data["connected"] is True
        assert data["email"] == "heath@seammedia.com"

    def test_emails_not_connected_is_401(self, auth_client):
        resp = auth_client.get("/api/gmail/emails")
        assert resp.status_code == 401

    def test_emails_serializes_dates(self, auth_client, fake_mailbox):
        fake_mailbox.list_messages.return_value = [
            {"id": "m1", "date": datetime(2026, 3, 10, tzinfo=timezone.utc), "subject": "Hi"},
        ]
        with patch("crm.services.gmail_service.get_mailbox", return_value=fake_mailbox):
            resp = auth_client.get("/api/gmail/emails?max_results=500&label_ids=INBOX,STARRED")
        assert resp.status_code == 200
        assert resp.get_json()["emails"][0]["date"].startswith("2026-03-10")
        kwargs = fake_mailbox.list_messages.call_args.kwargs
        assert kwargs["max_results"] == 100
        assert kwargs["label_ids"] == ["INBOX", "STARRED"]

    def test_thread_requires_id(self, auth_client):
        assert auth_client.get("/api/gmail/thread").status_code == 400

    def test_send_stamps_lead_and_logs(self, auth_client, make_lead, fake_mailbox):
        lead = make_lead(email="jane@example.com")
        with patch("crm.services.gmail_service.get_mailbox", return_value=fake_mailbox):
            resp = auth_client.post("/api/gmail/send", json={
                "to": "jane@example.com", "subject": "Quote", "body": "Here it is",
            })
        assert resp.status_code == 200
        assert resp.get_json()["message_id"] == "gmail-msg-1"
        assert lead.last_contacted is not None
        assert lead.stage == "contacted_1"
        assert EmailLog.query.one().lead_id == lead.id
        assert LeadActivity.query.filter_by(activity_type="email").count() == 1

    def test_send_unknown_lead_id_sends_nothing(self, auth_client, fake_mailbox):
        with patch("crm.services.gmail_service.get_mailbox", return_value=fake_mailbox):
            resp = auth_client.post("/api/gmail/send", json={
                "to": "jane@example.com", "body": "Hi", "lead_id": "nope",
            })
        assert resp.status_code == 404
        fake_mailbox.send_message.assert_not_called()
        assert EmailLog.query.count() == 0

    def test_send_succeeds_when_logging_fails(self, auth_client, fake_mailbox):
        with patch("crm.services.gmail_service.get_mailbox", return_value=fake_mailbox), \
                patch("crm.blueprints.gmail.EmailLog", side_effect=RuntimeError("db down")):
            resp = auth_client.post("/api/gmail/send", json={"to": "x@example.com", "body": "Hi"})
        assert resp.status_code == 200
        assert resp.get_json()["message_id"] == "gmail-msg-1"
        fake_mailbox.send_message.assert_called_once()

    def test_send_validates(self, auth_client):
        assert auth_client.post("/api/gmail/send", json={"to": "x@y.com"}).status_code == 400

    def test_unknown_action(self, auth_client):
        resp = auth_client.post("/api/gmail/actions", json={"action": "explode", "message_id": "m1"})
        assert resp.status_code == 400

    def test_star_action(self, auth_client, fake_mailbox):
        with patch("crm.services.gmail_service.get_mailbox", return_value=fake_mailbox):
            resp = auth_client.post("/api/gmail/actions", json={"action": "star", "message_id": "m1"})
        assert resp.status_code == 200
        fake_mailbox.perform_action.assert_called_once_with("star", "m1", starred=True)

    def test_callback_stores_credential(self, client):
        with patch("crm.services.gmail_service.connect_with_code", return_value="heath@seammedia.com") as connect:
            resp = client.get("/api/gmail/callback?code=abc")
        assert resp.status_code == 200
        connect.assert_called_once_with("abc")

    def test_callback_denied(self, client):
        assert client.get("/api/gmail/callback?error=access_denied").status_code == 400

    def test_disconnect(self, auth_client, gmail_connected):
        assert auth_client.post("/api/gmail/disconnect").status_code == 200
        assert Setting.query.count() == 0

    def test_auth_url(self, auth_client):
        url = auth_client.get("/api/gmail/auth-url").get_json()["url"]
        assert url.startswith("https://accounts.google.com/")
        assert "access_type=offline" in url
