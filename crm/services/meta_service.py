"""Meta service — Lead Ads, Instagram and Messenger ingestion.

Graph API calls go through requests with a fixed timeout. Webhook payloads
look like:

    {"object": "page",
     "entry": [{"id": "<page id>",
                "changes": [{"field": "leadgen",
                             "value": {"leadgen_id": "...", "page_id": "..."}}],
                "messaging": [{"sender": {"id": "..."},
                               "message": {"text": "..."}}]}]}

Instagram DMs arrive with "object": "instagram" and the same messaging list.

Duplicate deliveries are expected. Ad leads are keyed by meta_lead_id and
DM senders by instagram_id / facebook_id; all three columns are unique, and
lead_service.insert_unique() turns a constraint violation into "skip".
"""

import hashlib
import hmac
import logging
from datetime import datetime, timezone

import requests
from flask import current_app

from crm.errors import UpstreamUnavailableError
from crm.extensions import db
from crm.models.activity import LeadActivity
from crm.models.lead import Lead
from crm.models.meta_connection import MetaConnection
from crm.services import lead_service, stage_policy

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 15

LEAD_FIELDS = (
    "id,created_time,field_data,ad_id,ad_name,adset_id,adset_name,"
    "campaign_id,campaign_name,form_id"
)

AD_LEAD_PROBABILITY = 30

# platform -> (Lead column, Lead.source, display label)
MESSAGING_PLATFORMS = {
    "instagram": ("instagram_id", "instagram", "Instagram"),
    "messenger": ("facebook_id", "other", "Messenger"),
}


# ──────────────────────────────────────────────
# Graph API
# ──────────────────────────────────────────────

def _graph_get(path, access_token, **params):
    url = f"{current_app.config['META_GRAPH_API_URL']}/{path}"
    params["access_token"] = access_token
    try:
        resp = requests.get(url, params=params, timeout=REQUEST_TIMEOUT)
    except requests.RequestException as e:
        logger.error(f"Graph API request to /{path} failed: {e}")
        raise UpstreamUnavailableError(f"Meta request failed: {e}")

    if not resp.ok:
        try:
            message = resp.json().get("error", {}).get("message")
        except ValueError:
            message = None
        logger.error(f"Graph API /{path} returned {resp.status_code}: {message}")
        raise UpstreamUnavailableError(message or f"Meta request failed ({resp.status_code})")

    return resp.json()


def get_lead_details(lead_id, access_token):
    """Fetch one ad lead with its form field values."""
    return _graph_get(lead_id, access_token, fields=LEAD_FIELDS)


def get_leadgen_forms(page_id, access_token):
    return _graph_get(f"{page_id}/leadgen_forms", access_token).get("data") or []


def get_form_leads(form_id, access_token, limit=50):
    data = _graph_get(
        f"{form_id}/leads", access_token, fields=LEAD_FIELDS, limit=limit
    )
    return data.get("data") or []


def parse_lead_data(lead):
    """Flatten a Graph lead into the fields we store.

    Meta forms name their fields inconsistently, so each value is taken from
    the first of several known field names.
    """
    fields = {}
    for field in lead.get("field_data") or []:
        values = field.get("values") or []
        fields[(field.get("name") or "").lower()] = values[0] if values else ""

    full_name = " ".join(
        part for part in (fields.get("first_name"), fields.get("last_name")) if part
    )
    name = fields.get("full_name") or fields.get("name") or full_name or "Unknown"
    email = fields.get("email") or fields.get("work_email") or ""
    phone = (
        fields.get("phone_number")
        or fields.get("phone")
        or fields.get("mobile_number")
        or None
    )
    company = (
        fields.get("company_name")
        or fields.get("company")
        or fields.get("business_name")
        or None
    )

    return {
        "meta_lead_id": lead.get("id"),
        "name": name,
        "email": email.strip().lower(),
        "phone": phone,
        "company": company,
        "created_time": lead.get("created_time"),
        "ad_name": lead.get("ad_name"),
        "campaign_name": lead.get("campaign_name"),
    }


def verify_signature(payload, signature):
    """Check X-Hub-Signature-256 ("sha256=<hex>") against META_APP_SECRET."""
    secret = current_app.config.get("META_APP_SECRET")
    if not secret or not signature:
        return False
    expected = hmac.new(
        secret.encode("utf-8"), payload, hashlib.sha256
    ).hexdigest()
    return hmac.compare_digest(signature, f"sha256={expected}")


# ──────────────────────────────────────────────
# Ad leads
# ──────────────────────────────────────────────

def _parse_created_time(value):
    if not value:
        return None
    try:
        # Graph uses "2024-01-15T10:30:00+0000"
        return datetime.strptime(value, "%Y-%m-%dT%H:%M:%S%z")
    except ValueError:
        return None


def _ad_lead_notes(parsed, form_name=None):
    notes = "Lead from Meta Ads"
    if form_name:
        notes += f" - Form: {form_name}"
    if parsed.get("campaign_name"):
        notes += f" - Campaign: {parsed['campaign_name']}"
    if parsed.get("ad_name"):
        notes += f" - Ad: {parsed['ad_name']}"
    return notes


def store_ad_lead(parsed, form_name=None):
    """Insert a parsed ad lead unless its meta_lead_id is already stored.

    Returns:
        The new Lead, or None if it was a duplicate.
    """
    if not parsed.get("meta_lead_id"):
        logger.warning("Ad lead without an id, skipping")
        return None

    if Lead.query.filter_by(meta_lead_id=parsed["meta_lead_id"]).first():
        logger.info(f"Lead {parsed['meta_lead_id']} already exists, skipping")
        return None

    fields = stage_policy.apply_transition({
        "name": parsed["name"],
        "email": parsed["email"],
        "phone": parsed["phone"],
        "company": parsed["company"] or "Unknown",
        "stage": "contacted_1",
        "source": "meta_ads",
        "owner": current_app.config.get("DEFAULT_LEAD_OWNER"),
        "conversion_probability": AD_LEAD_PROBABILITY,
        "notes": _ad_lead_notes(parsed, form_name),
        "meta_lead_id": parsed["meta_lead_id"],
    })
    created = _parse_created_time(parsed.get("created_time"))
    if created:
        fields["created_at"] = created

    lead = Lead(**fields)
    if not lead_service.insert_unique(lead):
        return None

    logger.info(f"Added Meta lead: {lead.name} ({lead.email})")
    return lead


def process_leadgen(leadgen_id, page_id):
    """Fetch an ad lead announced by the webhook and store it."""
    connection = MetaConnection.query.filter_by(page_id=page_id).first()
    if connection is None:
        logger.error(f"No access token stored for page {page_id}")
        return None

    data = get_lead_details(leadgen_id, connection.page_access_token)
    lead = store_ad_lead(parse_lead_data(data))
    db.session.commit()
    return lead


def sync_leads(limit=50):
    """Pull recent leads from every form of every connected page.

    A failing page is logged and skipped.

    Returns:
        Number of leads imported.
    """
    imported = 0
    for connection in MetaConnection.query.all():
        try:
            forms = get_leadgen_forms(connection.page_id, connection.page_access_token)
            for form in forms:
                for raw in get_form_leads(form["id"], connection.page_access_token, limit):
                    if store_ad_lead(parse_lead_data(raw), form_name=form.get("name")):
                        imported += 1
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error syncing leads for page {connection.page_name}: {e}")

    logger.info(f"Meta sync imported {imported} lead(s)")
    return imported


# ──────────────────────────────────────────────
# Instagram / Messenger DMs
# ──────────────────────────────────────────────

def process_message(platform, sender_id, text, now=None):
    """Record an inbound DM against the lead for this sender.

    Known sender: log a message activity, and advance early-contact leads
    to interested. Unknown sender: create an interested lead with a
    placeholder email and the message as its first activity.

    Returns:
        The Lead the message was recorded against.
    """
    column, source, label = MESSAGING_PLATFORMS[platform]
    now = now or datetime.now(timezone.utc)
    description = f"{label} message: {text}" if text else f"{label} message received"

    lead = Lead.query.filter(getattr(Lead, column) == sender_id).first()

    if lead is None:
        fields = stage_policy.apply_transition({
            "name": f"{label} user {sender_id}",
            "email": f"{platform}-{sender_id}@placeholder.invalid",
            "company": "",
            "stage": "interested",
            "source": source,
            "owner": current_app.config.get("DEFAULT_LEAD_OWNER"),
            "last_contacted": now,
            column: sender_id,
        })
        candidate = Lead(**fields)
        if lead_service.insert_unique(candidate):
            lead = candidate
            logger.info(f"New lead from {label} sender {sender_id}")
        else:
            # Another delivery created this sender first; treat it as known.
            lead = Lead.query.filter(getattr(Lead, column) == sender_id).first()
            _advance_if_early(lead, label, now)
    else:
        _advance_if_early(lead, label, now)

    db.session.add(LeadActivity(
        lead_id=lead.id,
        activity_type="message",
        description=lead_service.sanitize(description),
    ))
    db.session.commit()
    return lead


def _advance_if_early(lead, label, now):
    if lead.stage in Lead.EARLY_CONTACT_STAGES:
        old_stage = lead.stage
        stage_policy.transition(lead, {"stage": "interested", "last_contacted": now})
        logger.info(f"Lead {lead.id} messaged on {label}, {old_stage} -> interested")


def _messaging_events(entry, platform):
    page_id = str(entry.get("id") or "")
    for event in entry.get("messaging") or []:
        sender_id = str((event.get("sender") or {}).get("id") or "")
        message = event.get("message") or {}
        # Our own outgoing messages are echoed back.
        if not sender_id or sender_id == page_id or message.get("is_echo"):
            continue
        yield platform, sender_id, message.get("text")


def process_webhook_payload(data):
    """Dispatch every leadgen change and DM in a webhook delivery.

    Each item is handled on its own; a failure is logged and the rest
    still run.

    Returns:
        Number of items processed without error.
    """
    obj = data.get("object")
    if obj not in ("page", "instagram"):
        logger.info(f"Ignoring Meta webhook for object {obj!r}")
        return 0

    platform = "instagram" if obj == "instagram" else "messenger"
    handled = 0

    for entry in data.get("entry") or []:
        for change in entry.get("changes") or []:
            if change.get("field") != "leadgen":
                continue
            value = change.get("value") or {}
            logger.info(
                f"New lead received: {value.get('leadgen_id')} "
                f"from page {value.get('page_id')}, form {value.get('form_id')}"
            )
            try:
                process_leadgen(str(value.get("leadgen_id")), str(value.get("page_id")))
                handled += 1
            except Exception as e:
                db.session.rollback()
                logger.error(f"Error processing lead {value.get('leadgen_id')}: {e}")

        for event in _messaging_events(entry, platform):
            try:
                process_message(*event)
                handled += 1
            except Exception as e:
                db.session.rollback()
                logger.error(f"Error processing {platform} message from {event[1]}: {e}")

    return handled


def list_connections():
    return MetaConnection.query.order_by(MetaConnection.created_at.asc()).all()


def save_connection(page_id, page_name, access_token):
    """Store (or replace) the access token for a page."""
    connection = MetaConnection.query.filter_by(page_id=page_id).first()
    if connection is None:
        connection = MetaConnection(page_id=page_id)
        db.session.add(connection)
    connection.page_name = page_name
    connection.page_access_token = access_token
    db.session.commit()
    return connection


def disconnect():
    """Forget every connected page. Returns how many were removed."""
    deleted = MetaConnection.query.delete()
    db.session.commit()
    return deleted
