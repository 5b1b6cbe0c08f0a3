"""Leads blueprint — /api/leads/*

Every stage change goes through lead_service -> stage_policy.

Route Map:
  GET    /api/leads?archived=true|false       — list (default: active)
  POST   /api/leads                           — create (name + email required)
  GET    /api/leads/search?q=                 — name/email/company search
  GET    /api/leads/check-responses?lead_id=  — email response sweep
  POST   /api/leads/migrate-stages            — legacy stage rename
  GET    /api/leads/webhook                   — intake health check
  POST   /api/leads/webhook                   — Zapier-style intake (X-API-Key)
  GET    /api/leads/<id>                      — one lead
  PATCH  /api/leads/<id>                      — partial update
  DELETE /api/leads/<id>                      — delete
  GET    /api/leads/<id>/activities           — timeline
  POST   /api/leads/<id>/activities           — add activity (note, call, ...)
"""

import logging

from flask import Blueprint, jsonify, request
from flask_login import login_required
from sqlalchemy.exc import IntegrityError

from crm.decorators import shared_secret_required
from crm.errors import MailboxNotConnectedError, MailboxSessionExpiredError, ValidationError
from crm.extensions import db, limiter
from crm.services import gmail_service, lead_service, response_service

logger = logging.getLogger(__name__)

leads_bp = Blueprint("leads", __name__, url_prefix="/api/leads")

INTAKE_FIELDS = ("name", "email", "company", "phone", "notes", "source", "meta_lead_id")


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


# ──────────────────────────────────────────────
# Collection
# ──────────────────────────────────────────────

@leads_bp.route("", methods=["GET"])
@login_required
def list_leads():
    archived = request.args.get("archived", "false").lower() == "true"
    leads = lead_service.list_leads(archived=archived)
    return jsonify([lead.to_dict() for lead in leads])


@leads_bp.route("", methods=["POST"])
@login_required
def create_lead():
    lead = lead_service.create_lead(_json_body())
    db.session.commit()
    return jsonify(lead.to_dict()), 201


@leads_bp.route("/search", methods=["GET"])
@login_required
def search_leads():
    leads = lead_service.search_leads(request.args.get("q", ""))
    return jsonify([
        {"id": l.id, "name": l.name, "email": l.email, "company": l.company}
        for l in leads
    ])


@leads_bp.route("/check-responses", methods=["GET"])
@login_required
def check_responses():
    """Opportunistic sweep fired by the UI; never fails on a missing mailbox."""
    empty = {"checked": 0, "advanced": 0, "advanced_leads": [], "errors": 0}

    try:
        mailbox = gmail_service.get_mailbox()
    except MailboxNotConnectedError:
        return jsonify({**empty, "message": "Gmail not connected"})
    except MailboxSessionExpiredError:
        return jsonify({**empty, "message": "Gmail token expired"})

    result = response_service.check_responses(
        mailbox, lead_id=request.args.get("lead_id")
    )
    return jsonify(result)


@leads_bp.route("/migrate-stages", methods=["POST"])
@login_required
def migrate_stages():
    result = lead_service.migrate_legacy_stages()
    db.session.commit()
    return jsonify({"success": True, **result})


# ──────────────────────────────────────────────
# Intake webhook
# ──────────────────────────────────────────────

@leads_bp.route("/webhook", methods=["GET"])
def intake_info():
    return jsonify({
        "status": "ok",
        "message": "Lead intake webhook is active. POST JSON with name and email.",
    })


@leads_bp.route("/webhook", methods=["POST"])
@limiter.limit("60 per minute")
@shared_secret_required("WEBHOOK_API_KEY", header="X-API-Key", optional=True)
def intake_webhook():
    data = _json_body()
    if not data.get("name") or not data.get("email"):
        raise ValidationError("Missing required fields: name and email are required")

    existing = lead_service.find_by_email(str(data["email"]))
    if existing:
        return jsonify({
            "success": True,
            "message": "Lead already exists",
            "duplicate": True,
            "lead": {"id": existing.id, "email": existing.email},
        })

    fields = {k: data[k] for k in INTAKE_FIELDS if data.get(k) is not None}
    fields.setdefault("source", "meta_ads")

    try:
        with db.session.begin_nested():
            lead = lead_service.create_lead(fields)
    except IntegrityError:
        logger.info(f"Intake lead already stored: {data.get('meta_lead_id')}")
        return jsonify({"success": True, "message": "Lead already exists", "duplicate": True})

    db.session.commit()
    return jsonify({
        "success": True,
        "message": "Lead created successfully",
        "lead": lead.to_dict(),
    }), 201


# ──────────────────────────────────────────────
# Single lead
# ──────────────────────────────────────────────

@leads_bp.route("/<lead_id>", methods=["GET"])
@login_required
def get_lead(lead_id):
    return jsonify(lead_service.get_lead(lead_id).to_dict())


@leads_bp.route("/<lead_id>", methods=["PATCH"])
@login_required
def update_lead(lead_id):
    lead = lead_service.update_lead(lead_id, _json_body())
    db.session.commit()
    return jsonify(lead.to_dict())


@leads_bp.route("/<lead_id>", methods=["DELETE"])
@login_required
def delete_lead(lead_id):
    lead_service.delete_lead(lead_id)
    db.session.commit()
    return jsonify({"success": True})


@leads_bp.route("/<lead_id>/activities", methods=["GET"])
@login_required
def list_activities(lead_id):
    lead = lead_service.get_lead(lead_id)
    return jsonify([a.to_dict() for a in lead.activities.all()])


@leads_bp.route("/<lead_id>/activities", methods=["POST"])
@login_required
def add_activity(lead_id):
    data = _json_body()
    activity = lead_service.add_activity(
        lead_id,
        data.get("type", "note"),
        data.get("description"),
    )
    db.session.commit()
    return jsonify(activity.to_dict()), 201
