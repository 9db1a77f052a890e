"""
Edit Suggestion Blueprint — corrections to verified incidents.

Endpoints:
    POST  /api/v1/incidents/<id>/suggest-edit         — file a suggestion (user)
    GET   /api/v1/incidents/<id>/suggest-edit         — suggestions for one incident (viewer)
    GET   /api/v1/edit-suggestions?status=            — review queue + per-status counts (analyst)
    GET   /api/v1/edit-suggestions/<id>               — detail (analyst)
    POST  /api/v1/edit-suggestions/<id>/review        — approve / reject (analyst)
"""

from flask import Blueprint, jsonify, request

from app.auth import current_user, require_role
from app.services import edit_suggestion_service, incident_service

edit_suggestion_bp = Blueprint("edit_suggestions", __name__, url_prefix="/api/v1")

_REVIEW_MESSAGES = {
    "first_review": "First approval recorded. Awaiting second analyst review.",
    "approved": "Edit approved and applied to the incident",
    "rejected": "Edit suggestion rejected",
}


@edit_suggestion_bp.route("/incidents/<int:incident_id>/suggest-edit", methods=["POST"])
@require_role("user")
def suggest_edit(incident_id):
    data = request.get_json(silent=True) or {}
    suggestion = edit_suggestion_service.suggest_edit(incident_id, current_user().id, data)
    return jsonify({
        "success": True,
        "message": "Edit suggestion submitted for review",
        "suggestion": suggestion.to_dict(),
    }), 201


@edit_suggestion_bp.route("/incidents/<int:incident_id>/suggest-edit", methods=["GET"])
@require_role("viewer")
def incident_suggestions(incident_id):
    incident_service.get_incident(incident_id, current_user().id)
    items = edit_suggestion_service.list_for_incident(incident_id)
    return jsonify({"success": True, "items": [s.to_dict() for s in items], "total": len(items)}), 200


@edit_suggestion_bp.route("/edit-suggestions", methods=["GET"])
@require_role("analyst")
def list_suggestions():
    result = edit_suggestion_service.list_suggestions(
        request.args.get("status", "pending"),
        limit=request.args.get("limit", 100, type=int),
    )
    return jsonify({
        "success": True,
        "items": [s.to_dict() for s in result["items"]],
        "stats": result["stats"],
    }), 200


@edit_suggestion_bp.route("/edit-suggestions/<int:suggestion_id>", methods=["GET"])
@require_role("analyst")
def get_suggestion(suggestion_id):
    suggestion = edit_suggestion_service.get_suggestion(suggestion_id)
    return jsonify({"success": True, "suggestion": suggestion.to_dict()}), 200


@edit_suggestion_bp.route("/edit-suggestions/<int:suggestion_id>/review", methods=["POST"])
@require_role("analyst")
def review_suggestion(suggestion_id):
    data = request.get_json(silent=True) or {}
    result = edit_suggestion_service.review_suggestion(
        suggestion_id, current_user().id, data.get("approved"), data.get("notes"),
    )
    return jsonify({
        "success": True,
        "message": _REVIEW_MESSAGES[result["outcome"]],
        "suggestion": result["suggestion"].to_dict(),
    }), 200
