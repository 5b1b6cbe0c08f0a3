"""Lead service — CRUD, search, activity log, and storage-level dedup.

All stage changes go through stage_policy.transition(). Free-text fields
(notes, next_action, activity descriptions) are sanitized with
bleach.clean() to strip HTML tags.

Functions flush but do NOT commit. The caller commits.
"""

import logging
import re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

import bleach
from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from crm.errors import NotFoundError, ValidationError
from crm.extensions import db
from crm.models.activity import LeadActivity
from crm.models.lead import Lead
from crm.services import stage_policy

logger = logging.getLogger(__name__)

# Sanity check only, not RFC 5322
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# Fields a client may change through PATCH /api/leads/<id>.
MUTABLE_FIELDS = {
    "name",
    "email",
    "company",
    "phone",
    "stage",
    "source",
    "owner",
    "conversion_probability",
    "revenue",
    "notes",
    "next_action",
    "archived",
    "last_contacted",
}

# Accepted only when a lead is created (intake webhooks).
EXTERNAL_ID_FIELDS = {"meta_lead_id", "instagram_id", "facebook_id"}

# Silently dropped from updates (managed by the server).
IGNORED_FIELDS = {"id", "created_at", "updated_at", "converted_at"}

# Must arrive as JSON strings (or null).
TEXT_FIELDS = {"name", "email", "company", "phone", "owner", "notes", "next_action"}

# Old stage names -> current pipeline.
LEGACY_STAGE_MAP = {
    "new": "contacted_1",
    "contacted": "contacted_1",
    "interested": "interested",
    "negotiation": "contacted_2",
    "demo": "contacted_2",
    "converted": "converted",
    "lost": "not_interested",
}

SEARCH_LIMIT = 10


def sanitize(text):
    """Strip all HTML tags from user input."""
    if text is None:
        return text
    return bleach.clean(text, tags=[], strip=True).strip()


def _parse_timestamp(value, field):
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError(f"Invalid timestamp for {field}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _clean_fields(data, allowed=MUTABLE_FIELDS):
    """Validate and normalise a dict of lead fields.

    Raises:
        ValidationError: on unknown fields or bad values.
    """
    unknown = set(data) - allowed - IGNORED_FIELDS
    if unknown:
        raise ValidationError(f"Unknown field(s): {', '.join(sorted(unknown))}")

    cleaned = {}
    for field, value in data.items():
        if field in IGNORED_FIELDS:
            continue

        if field in TEXT_FIELDS and value is not None and not isinstance(value, str):
            raise ValidationError(f"{field} must be a string")

        if field == "name":
            value = (value or "").strip()
            if not value:
                raise ValidationError("Name is required")
        elif field == "email":
            value = (value or "").strip().lower()
            if not value or not EMAIL_RE.match(value):
                raise ValidationError("Invalid email format")
        elif field == "stage":
            if value not in Lead.STAGES:
                raise ValidationError(
                    f"Invalid stage '{value}'. Must be one of: {', '.join(Lead.STAGES)}"
                )
        elif field == "source":
            if value not in Lead.SOURCES:
                raise ValidationError(
                    f"Invalid source '{value}'. Must be one of: {', '.join(Lead.SOURCES)}"
                )
        elif field == "conversion_probability":
            try:
                value = int(value)
            except (TypeError, ValueError):
                raise ValidationError("conversion_probability must be an integer")
            if not 0 <= value <= 100:
                raise ValidationError("conversion_probability must be between 0 and 100")
        elif field == "revenue":
            if value is not None and value != "":
                try:
                    value = Decimal(str(value))
                except InvalidOperation:
                    raise ValidationError("revenue must be a number")
            else:
                value = None
        elif field == "archived":
            if not isinstance(value, bool):
                raise ValidationError("archived must be true or false")
        elif field == "last_contacted":
            value = _parse_timestamp(value, field)
        elif field in ("notes", "next_action"):
            value = sanitize(value) or None
        elif field in ("company", "owner"):
            value = (value or "").strip()
        elif field == "phone":
            value = (value or "").strip() or None
        elif field in EXTERNAL_ID_FIELDS:
            value = str(value).strip() or None

        cleaned[field] = value
    return cleaned


# ──────────────────────────────────────────────
# Reads
# ──────────────────────────────────────────────

def get_lead(lead_id):
    """Load a lead or raise NotFoundError."""
    lead = db.session.get(Lead, lead_id)
    if lead is None:
        raise NotFoundError("Lead", lead_id)
    return lead


def list_leads(archived=False):
    """All leads with the given archived flag, newest first."""
    return (
        Lead.query
        .filter(Lead.archived.is_(archived))
        .order_by(Lead.created_at.desc())
        .all()
    )


def search_leads(query):
    """Case-insensitive match on name, email or company.

    Queries shorter than two characters return nothing. Archived leads are
    excluded.
    """
    query = (query or "").strip()
    if len(query) < 2:
        return []

    escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    pattern = f"%{escaped}%"
    return (
        Lead.query
        .filter(Lead.archived.is_(False))
        .filter(or_(
            Lead.name.ilike(pattern, escape="\\"),
            Lead.email.ilike(pattern, escape="\\"),
            Lead.company.ilike(pattern, escape="\\"),
        ))
        .order_by(Lead.created_at.desc())
        .limit(SEARCH_LIMIT)
        .all()
    )


def find_by_email(email):
    """Return the first lead with this email (case-insensitive), or None."""
    if not email:
        return None
    return Lead.query.filter(Lead.email == email.strip().lower()).first()


# ──────────────────────────────────────────────
# Writes
# ──────────────────────────────────────────────

def create_lead(data):
    """Create a lead from a manual entry or intake payload.

    Args:
        data: Dict with at least name and email. Unspecified fields get
              the pipeline defaults.

    Returns:
        The created Lead (flushed).

    Raises:
        ValidationError: If name/email are missing or any value is invalid.
    """
    if not data.get("name") or not data.get("email"):
        raise ValidationError("Name and email are required")

    fields = _clean_fields(
        {k: v for k, v in data.items() if v is not None},
        allowed=MUTABLE_FIELDS | EXTERNAL_ID_FIELDS,
    )

    fields.setdefault("company", "")
    fields.setdefault("stage", "contacted_1")
    fields.setdefault("source", "website")
    fields.setdefault("owner", current_app.config.get("DEFAULT_LEAD_OWNER"))
    fields.setdefault("conversion_probability", 20)

    fields = stage_policy.apply_transition(fields)

    lead = Lead(**fields)
    db.session.add(lead)
    db.session.flush()
    logger.info(f"Lead created: {lead.email} ({lead.stage}, source={lead.source})")
    return lead


def insert_unique(lead):
    """Insert a lead whose external id must be unique.

    Runs inside a savepoint. A unique-constraint violation means another
    request (or an earlier delivery) already stored this identity.

    Returns:
        True if inserted, False if it already existed.
    """
    try:
        with db.session.begin_nested():
            db.session.add(lead)
    except IntegrityError:
        logger.info(f"Lead already exists for {lead!r}, skipping insert")
        return False
    return True


def update_lead(lead_id, changes, now=None):
    """Apply a partial update through the stage policy.

    Raises:
        NotFoundError:   If the lead doesn't exist (nothing is written).
        ValidationError: On unknown fields or invalid values.

    Returns:
        The updated Lead (flushed).
    """
    lead = get_lead(lead_id)
    fields = _clean_fields(changes)

    old_stage = lead.stage
    stage_policy.transition(lead, fields, now=now)
    db.session.flush()

    if "stage" in fields and fields["stage"] != old_stage:
        logger.info(f"Lead {lead.id} stage {old_stage} -> {lead.stage}")
    return lead


def delete_lead(lead_id):
    """Hard-delete a lead and its activity log."""
    lead = get_lead(lead_id)
    db.session.delete(lead)
    db.session.flush()
    logger.info(f"Lead deleted: {lead_id}")


def add_activity(lead_id, activity_type, description=None):
    """Append an activity to a lead's timeline.

    Raises:
        NotFoundError:   If the lead doesn't exist.
        ValidationError: If activity_type is not one of LeadActivity.TYPES.
    """
    get_lead(lead_id)

    if activity_type not in LeadActivity.TYPES:
        raise ValidationError(
            f"Invalid activity type '{activity_type}'. "
            f"Must be one of: {', '.join(LeadActivity.TYPES)}"
        )

    activity = LeadActivity(
        lead_id=lead_id,
        activity_type=activity_type,
        description=sanitize(description) or None,
    )
    db.session.add(activity)
    db.session.flush()
    return activity


def migrate_legacy_stages():
    """Map leads still on pre-pipeline stage names to current stages.

    Goes through the stage policy, so "lost" leads become archived.

    Returns:
        dict with total_leads, migrated_count.
    """
    leads = Lead.query.all()
    migrated = 0

    for lead in leads:
        new_stage = LEGACY_STAGE_MAP.get(lead.stage)
        if new_stage and new_stage != lead.stage:
            stage_policy.transition(lead, {"stage": new_stage})
            migrated += 1

    db.session.flush()
    logger.info(f"Migrated {migrated} of {len(leads)} leads to current stages")
    return {"total_leads": len(leads), "migrated_count": migrated}
