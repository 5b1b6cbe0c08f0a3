"""Gmail service — shared credential, mailbox client, OAuth consent.

The Gmail credential lives in one place: the settings row keyed
"gmail_tokens". Interactive routes and the follow-up cron both read it
through get_mailbox(), which refreshes an expired access token and writes
the new one back with a compare-and-swap on Setting.version.

Uses:
- google-api-python-client for the Gmail v1 API
- google-auth for credential refresh
- google-auth-oauthlib for the consent-screen flow
"""

import base64
import logging
from datetime import datetime, timezone
from email.mime.text import MIMEText
from email.utils import parsedate_to_datetime

from flask import current_app
from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from crm.errors import (
    MailboxNotConnectedError,
    MailboxSessionExpiredError,
    UpstreamUnavailableError,
)
from crm.extensions import db
from crm.models.setting import Setting
from crm.services import email_parser

logger = logging.getLogger(__name__)

TOKEN_URI = "https://oauth2.googleapis.com/token"

SCOPES = [
    "https://www.googleapis.com/auth/gmail.readonly",
    "https://www.googleapis.com/auth/gmail.send",
    "https://www.googleapis.com/auth/gmail.compose",
    "https://www.googleapis.com/auth/gmail.modify",
    "https://www.googleapis.com/auth/userinfo.email",
    "openid",
]

# action name -> (labels to add, labels to remove)
LABEL_ACTIONS = {
    "archive": ([], ["INBOX"]),
    "star": (["STARRED"], []),
    "unstar": ([], ["STARRED"]),
    "markAsRead": ([], ["UNREAD"]),
    "markAsUnread": (["UNREAD"], []),
}


def _now_ms():
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def _expiry_ms(expiry):
    """google-auth keeps expiry as a naive UTC datetime; store ms epoch."""
    if expiry is None:
        return None
    if expiry.tzinfo is None:
        expiry = expiry.replace(tzinfo=timezone.utc)
    return int(expiry.timestamp() * 1000)


def _credentials(access_token, refresh_token=None):
    return Credentials(
        token=access_token,
        refresh_token=refresh_token,
        token_uri=TOKEN_URI,
        client_id=current_app.config.get("GOOGLE_CLIENT_ID"),
        client_secret=current_app.config.get("GOOGLE_CLIENT_SECRET"),
        scopes=SCOPES,
    )


# ──────────────────────────────────────────────
# Shared credential (settings row)
# ──────────────────────────────────────────────

def load_credential():
    """Return the gmail_tokens Setting row, or None if Gmail isn't connected."""
    return Setting.query.filter_by(key=Setting.GMAIL_TOKENS).first()


def save_credential(access_token, refresh_token, expiry_date, email):
    """Store (or replace) the shared credential after the OAuth callback."""
    value = {
        "access_token": access_token,
        "refresh_token": refresh_token,
        "expiry_date": expiry_date,
        "email": email,
    }
    setting = load_credential()
    if setting is None:
        setting = Setting(key=Setting.GMAIL_TOKENS, value=value, version=1)
        db.session.add(setting)
    else:
        # Google only returns a refresh token on first consent; keep the old one.
        if not refresh_token:
            value["refresh_token"] = setting.value.get("refresh_token")
        setting.value = value
        setting.version = setting.version + 1
    db.session.commit()
    logger.info(f"Gmail credential stored for {email}")
    return setting


def clear_credential():
    """Forget the shared credential (disconnect)."""
    deleted = Setting.query.filter_by(key=Setting.GMAIL_TOKENS).delete()
    db.session.commit()
    return deleted > 0


def refresh_access_token(refresh_token):
    """Exchange a refresh token for a new access token.

    Returns:
        dict with access_token, expiry_date (ms epoch or None), and
        refresh_token if Google rotated it.

    Raises:
        google.auth.exceptions.RefreshError on rejection.
    """
    creds = _credentials(None, refresh_token)
    creds.refresh(Request())
    return {
        "access_token": creds.token,
        "expiry_date": _expiry_ms(creds.expiry),
        "refresh_token": creds.refresh_token,
    }


def _refresh_and_store(setting):
    """Refresh the credential and persist it with compare-and-swap.

    If another request already refreshed (version moved on), its token is
    used instead and nothing is written.

    Returns:
        The current token dict.
    """
    tokens = dict(setting.value or {})
    read_version = setting.version

    if not tokens.get("refresh_token"):
        raise MailboxSessionExpiredError()

    try:
        fresh = refresh_access_token(tokens["refresh_token"])
    except (RefreshError, ValueError) as e:
        logger.error(f"Gmail token refresh failed: {e}")
        raise MailboxSessionExpiredError()

    new_value = {
        **tokens,
        "access_token": fresh["access_token"],
        "expiry_date": fresh["expiry_date"],
        "refresh_token": fresh.get("refresh_token") or tokens["refresh_token"],
    }

    updated = (
        Setting.query
        .filter_by(key=Setting.GMAIL_TOKENS, version=read_version)
        .update(
            {"value": new_value, "version": read_version + 1},
            synchronize_session=False,
        )
    )
    db.session.commit()

    if updated:
        logger.info("Gmail access token refreshed")
        db.session.expire(setting)
        return new_value

    logger.info("Gmail token was refreshed concurrently, using the stored one")
    db.session.expire(setting)
    current = load_credential()
    if current is None:
        raise MailboxNotConnectedError()
    return dict(current.value)


def get_mailbox(force_refresh=False):
    """Return a GmailMailbox using the shared credential.

    Refreshes the access token first if it has expired (or force_refresh).

    Raises:
        MailboxNotConnectedError:   No credential stored.
        MailboxSessionExpiredError: Refresh failed, user must reconnect.
    """
    setting = load_credential()
    if setting is None or not (setting.value or {}).get("access_token"):
        raise MailboxNotConnectedError()

    tokens = dict(setting.value)
    expiry = tokens.get("expiry_date")
    if force_refresh or (expiry and _now_ms() >= expiry):
        tokens = _refresh_and_store(setting)

    return GmailMailbox(
        access_token=tokens["access_token"],
        refresh_token=tokens.get("refresh_token"),
        email=tokens.get("email"),
    )


def call_with_mailbox(fn):
    """Run fn(mailbox) with one refresh-and-retry on a 401 from Gmail.

    Raises:
        MailboxNotConnectedError / MailboxSessionExpiredError as get_mailbox.
        UpstreamUnavailableError: Any other Gmail API failure.
    """
    mailbox = get_mailbox()
    try:
        return fn(mailbox)
    except HttpError as e:
        if e.resp.status != 401:
            logger.error(f"Gmail API error: {e}")
            raise UpstreamUnavailableError(f"Gmail request failed: {e}")
        logger.info("Gmail rejected the access token, refreshing once")

    mailbox = get_mailbox(force_refresh=True)
    try:
        return fn(mailbox)
    except HttpError as e:
        logger.error(f"Gmail API error after refresh: {e}")
        raise UpstreamUnavailableError(f"Gmail request failed: {e}")


# ──────────────────────────────────────────────
# OAuth consent
# ──────────────────────────────────────────────

def _flow(state=None):
    config = current_app.config
    client_config = {
        "web": {
            "client_id": config.get("GOOGLE_CLIENT_ID"),
            "client_secret": config.get("GOOGLE_CLIENT_SECRET"),
            "auth_uri": "https://accounts.google.com/o/oauth2/auth",
            "token_uri": TOKEN_URI,
            "redirect_uris": [config.get("GOOGLE_REDIRECT_URI")],
        }
    }
    return Flow.from_client_config(
        client_config,
        scopes=SCOPES,
        state=state,
        redirect_uri=config.get("GOOGLE_REDIRECT_URI"),
        autogenerate_code_verifier=False,
    )


def get_auth_url():
    """Consent-screen URL requesting offline access (refresh token)."""
    url, _state = _flow().authorization_url(
        access_type="offline",
        prompt="consent",
        include_granted_scopes="true",
    )
    return url


def connect_with_code(code):
    """Exchange an authorization code and store the shared credential.

    Returns:
        The connected Gmail address.
    """
    flow = _flow()
    flow.fetch_token(code=code)
    creds = flow.credentials

    mailbox = GmailMailbox(creds.token, creds.refresh_token)
    email = mailbox.get_profile_email()

    save_credential(
        access_token=creds.token,
        refresh_token=creds.refresh_token,
        expiry_date=_expiry_ms(creds.expiry),
        email=email,
    )
    return email


# ──────────────────────────────────────────────
# Mailbox client
# ──────────────────────────────────────────────

def _message_date(message, headers):
    """Message timestamp as an aware UTC datetime (internalDate preferred)."""
    internal = message.get("internalDate")
    if internal:
        try:
            return datetime.fromtimestamp(int(internal) / 1000, tz=timezone.utc)
        except (TypeError, ValueError):
            pass
    raw = email_parser.get_header(headers, "Date")
    if raw:
        try:
            parsed = parsedate_to_datetime(raw)
        except (TypeError, ValueError):
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return None


def _format_message(message):
    payload = message.get("payload") or {}
    headers = payload.get("headers") or []
    from_name, from_email = email_parser.parse_from_header(
        email_parser.get_header(headers, "From")
    )
    labels = message.get("labelIds") or []
    parts = payload.get("parts") or []

    return {
        "id": message.get("id"),
        "thread_id": message.get("threadId"),
        "from": from_name,
        "from_email": from_email,
        "to": email_parser.get_header(headers, "To"),
        "subject": email_parser.get_header(headers, "Subject"),
        "message_id_header": email_parser.get_header(headers, "Message-ID"),
        "snippet": message.get("snippet") or "",
        "body": email_parser.extract_body(payload),
        "date": _message_date(message, headers),
        "is_read": "UNREAD" not in labels,
        "is_starred": "STARRED" in labels,
        "has_attachment": any(p.get("filename") for p in parts if isinstance(p, dict)),
        "labels": labels,
    }


class GmailMailbox:
    """Thin wrapper around the Gmail v1 API for the connected account."""

    def __init__(self, access_token, refresh_token=None, email=None, service=None):
        self.access_token = access_token
        self.refresh_token = refresh_token
        self.email = email
        self._service = service

    @property
    def service(self):
        if self._service is None:
            creds = _credentials(self.access_token, self.refresh_token)
            self._service = build("gmail", "v1", credentials=creds, cache_discovery=False)
        return self._service

    def get_profile_email(self):
        profile = self.service.users().getProfile(userId="me").execute()
        return profile.get("emailAddress")

    def list_messages(self, query=None, max_results=20, label_ids=None):
        """List messages, newest first, each fetched in full.

        Returns:
            List of message dicts (see _format_message); `date` is an aware
            datetime or None.
        """
        params = {
            "userId": "me",
            "maxResults": max_results,
            "labelIds": label_ids or ["INBOX"],
        }
        if query:
            params["q"] = query

        response = self.service.users().messages().list(**params).execute()
        emails = []
        for ref in response.get("messages") or []:
            full = (
                self.service.users().messages()
                .get(userId="me", id=ref["id"], format="full")
                .execute()
            )
            emails.append(_format_message(full))
        return emails

    def get_thread(self, thread_id):
        """All messages in a thread with quoted text trimmed."""
        thread = (
            self.service.users().threads()
            .get(userId="me", id=thread_id, format="full")
            .execute()
        )
        me = (self.email or "").lower()
        messages = []
        for message in thread.get("messages") or []:
            formatted = _format_message(message)
            formatted["body"] = email_parser.clean_body(formatted["body"])
            formatted["is_from_me"] = bool(me) and me in formatted["from_email"].lower()
            messages.append(formatted)
        return messages

    def send_message(self, to, subject, body, thread_id=None, in_reply_to=None):
        """Send an HTML email, optionally as a reply within a thread.

        Returns:
            The Gmail message id.
        """
        message = MIMEText(body, "html", "utf-8")
        message["To"] = to
        if in_reply_to:
            message["Subject"] = subject if subject.lower().startswith("re:") else f"Re: {subject}"
            message["In-Reply-To"] = in_reply_to
            message["References"] = in_reply_to
        else:
            message["Subject"] = subject

        raw = base64.urlsafe_b64encode(message.as_bytes()).decode("ascii").rstrip("=")
        request_body = {"raw": raw}
        if thread_id:
            request_body["threadId"] = thread_id

        sent = (
            self.service.users().messages()
            .send(userId="me", body=request_body)
            .execute()
        )
        return sent.get("id")

    def modify_labels(self, message_id, add=None, remove=None):
        self.service.users().messages().modify(
            userId="me",
            id=message_id,
            body={"addLabelIds": add or [], "removeLabelIds": remove or []},
        ).execute()

    def trash(self, message_id):
        self.service.users().messages().trash(userId="me", id=message_id).execute()

    def perform_action(self, action, message_id, starred=True):
        """Dispatch a dashboard inbox action (archive, trash, star, read state)."""
        if action == "trash":
            self.trash(message_id)
            return
        if action == "star" and not starred:
            action = "unstar"
        add, remove = LABEL_ACTIONS[action]
        self.modify_labels(message_id, add=add, remove=remove)
