"""Stats blueprint — /api/stats

Route Map:
  GET /api/stats?period=7|14|30|this_month|last_month|custom&start=&end=
"""

from flask import Blueprint, jsonify, request
from flask_login import login_required

from crm.services import stats_service

stats_bp = Blueprint("stats", __name__, url_prefix="/api/stats")


@stats_bp.route("", methods=["GET"])
@login_required
def get_stats():
    return jsonify(stats_service.get_stats(
        period=request.args.get("period", "30"),
        start=request.args.get("start"),
        end=request.args.get("end"),
    ))
