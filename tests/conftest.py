"""Shared test fixtures for the CRM test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, rate limits off)
- client: Flask test client (anonymous)
- auth_client: test client logged in with the master PIN
- db_session: clean database per test (tables created/dropped)
- make_lead: factory for persisted leads
- gmail_connected: stores a valid shared Gmail credential
- fake_mailbox: MagicMock standing in for GmailMailbox
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from crm import create_app
from crm.extensions import db as _db
from crm.models.lead import Lead
from crm.models.setting import Setting


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def auth_client(app):
    """Test client with an operator session."""
    client = app.test_client()
    resp = client.post("/api/auth/login", json={"pin": "123456"})
    assert resp.status_code == 200
    return client


@pytest.fixture
def make_lead(db_session):
    """Factory: make_lead(name=..., email=..., **fields) -> committed Lead."""
    counter = {"n": 0}

    def _make(**fields):
        counter["n"] += 1
        n = counter["n"]
        fields.setdefault("name", f"Lead {n}")
        fields.setdefault("email", f"lead{n}@example.com")
        fields.setdefault("company", "")
        fields.setdefault("stage", "contacted_1")
        fields.setdefault("source", "website")
        fields.setdefault("archived", fields["stage"] in Lead.ARCHIVED_STAGES)
        lead = Lead(**fields)
        _db.session.add(lead)
        _db.session.commit()
        return lead

    return _make


@pytest.fixture
def gmail_connected(db_session):
    """A shared Gmail credential valid for another hour."""
    expiry = datetime.now(timezone.utc) + timedelta(hours=1)
    setting = Setting(
        key=Setting.GMAIL_TOKENS,
        value={
            "access_token": "ya29.valid",
            "refresh_token": "1//refresh",
            "expiry_date": int(expiry.timestamp() * 1000),
            "email": "heath@seammedia.com",
        },
        version=1,
    )
    _db.session.add(setting)
    _db.session.commit()
    return setting


@pytest.fixture
def fake_mailbox():
    """Mailbox with no messages whose sends return a fixed id."""
    mailbox = MagicMock()
    mailbox.list_messages.return_value = []
    mailbox.send_message.return_value = "gmail-msg-1"
    return mailbox
