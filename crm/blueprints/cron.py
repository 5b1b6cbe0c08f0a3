"""Cron blueprint — /api/cron/*

Hit every 6 hours by the platform scheduler.

Route Map:
  GET /api/cron/follow-up — follow up with quiet contacted_1 leads
                            (Authorization: Bearer <CRON_SECRET> or ?token=)
"""

import logging

from flask import Blueprint, jsonify

from crm.decorators import shared_secret_required
from crm.services import gmail_service, response_service

logger = logging.getLogger(__name__)

cron_bp = Blueprint("cron", __name__, url_prefix="/api/cron")


@cron_bp.route("/follow-up", methods=["GET"])
@shared_secret_required("CRON_SECRET")
def follow_up():
    # No mailbox (or an unrecoverable one) aborts before any lead is touched;
    # the CRMError handler answers 401.
    mailbox = gmail_service.get_mailbox()
    result = response_service.run_follow_ups(mailbox)
    return jsonify({"success": True, **result})
