"""
Proposed Change Blueprint — review queue for edits to verified records.

Edits are filed through POST /projects/<slug>/records/<id>/propose-change
(app.blueprints.record_bp).

Endpoints:
    GET   /api/v1/projects/<slug>/proposed-changes?status=   — list (review)
    GET   /api/v1/proposed-changes/<id>                      — detail + current record data (review)
    POST  /api/v1/proposed-changes/<id>/review               — approve / reject (validate)
"""

from flask import Blueprint, g, jsonify, request

from app.auth import current_user, login_required
from app.middleware.project_access import require_project_access
from app.models import db
from app.models.record import Record
from app.services import proposed_change_service
from app.services.permission_service import require_project_permission

proposed_change_bp = Blueprint("proposed_changes", __name__, url_prefix="/api/v1")


@proposed_change_bp.route("/projects/<slug>/proposed-changes", methods=["GET"])
@require_project_access("review")
def list_proposed_changes(slug):
    changes = proposed_change_service.list_changes(g.project_access.project.id, request.args.get("status"))
    return jsonify({"success": True, "items": [c.to_dict() for c in changes], "total": len(changes)}), 200


@proposed_change_bp.route("/proposed-changes/<int:change_id>", methods=["GET"])
@login_required
def get_proposed_change(change_id):
    change = proposed_change_service.get_change(change_id)
    require_project_permission(current_user().id, change.project_id, "review")
    record = db.session.get(Record, change.record_id)
    current_data = record.data if record is not None and record.deleted_at is None else None
    return jsonify({
        "success": True,
        "change": change.to_dict(),
        "current_data": current_data,
    }), 200


@proposed_change_bp.route("/proposed-changes/<int:change_id>/review", methods=["POST"])
@login_required
def review_proposed_change(change_id):
    data = request.get_json(silent=True) or {}
    change = proposed_change_service.review_change(
        change_id, current_user().id, data.get("decision"), data.get("notes"),
    )
    message = "Proposed change applied" if change.status == "approved" else "Proposed change rejected"
    return jsonify({"success": True, "change": change.to_dict(), "message": message}), 200
