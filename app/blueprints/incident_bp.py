"""
Incident Blueprint — global case review pipeline.

Endpoints:
    GET    /api/v1/incidents                          — list; unverified only for analysts
    POST   /api/v1/incidents                          — create (analyst)
    GET    /api/v1/incidents/review-queue             — pending/first_review (analyst)
    GET    /api/v1/incidents/<id>                     — read (unverified: analyst)
    POST   /api/v1/incidents/<id>/review              — advance one stage (analyst)
    POST   /api/v1/incidents/<id>/reject              — reject (analyst)
    POST   /api/v1/incidents/<id>/unpublish           — verified → pending (admin)
    POST   /api/v1/incidents/<id>/reopen              — rejected → pending (admin)
    POST   /api/v1/incidents/<id>/verify-field        — field provenance (analyst)
    GET    /api/v1/incidents/<id>/lock                — lock status (editor)
    POST   /api/v1/incidents/<id>/lock                — acquire / extend (editor)
    DELETE /api/v1/incidents/<id>/lock                — release; ?force=true (admin)

Layer contract:
    - Blueprint: parse input, call service, shape JSON.
    - State machine and lock rules live in app.services.review_workflow and
      app.services.record_lock; their exceptions are mapped app-wide.
"""

import logging

from flask import Blueprint, jsonify, request

from app.auth import current_user, require_role
from app.core.exceptions import ForbiddenError, ValidationError
from app.models.record import Incident
from app.services import incident_service, record_lock
from app.services import review_workflow as wf
from app.services.permission_service import has_required_role

logger = logging.getLogger(__name__)

incident_bp = Blueprint("incidents", __name__, url_prefix="/api/v1")


def _parse_id(raw: str) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValidationError("Invalid incident ID", details={"id": "must be an integer"})
    if value <= 0:
        raise ValidationError("Invalid incident ID", details={"id": "must be positive"})
    return value


def _wants_force() -> bool:
    return request.args.get("force", "").lower() in ("1", "true", "yes")


# ═════════════════════════════════════════════════════════════════════════════
# Intake & read
# ═════════════════════════════════════════════════════════════════════════════


@incident_bp.route("/incidents", methods=["POST"])
@require_role("analyst")
def create_incident():
    data = request.get_json(silent=True) or {}
    incident = incident_service.create_incident(current_user().id, data)
    return jsonify({"success": True, "incident": incident.to_dict()}), 201


@incident_bp.route("/incidents", methods=["GET"])
@require_role("viewer")
def list_incidents():
    result = incident_service.list_incidents(
        current_user().id,
        status=request.args.get("status"),
        search=request.args.get("search"),
        limit=request.args.get("limit", 50, type=int),
        offset=request.args.get("offset", 0, type=int),
    )
    return jsonify({"success": True, **result}), 200


@incident_bp.route("/incidents/review-queue", methods=["GET"])
@require_role("analyst")
def review_queue():
    limit = max(1, min(request.args.get("limit", 100, type=int), 500))
    items = wf.review_queue(wf.INCIDENT_PIPELINE, limit=limit)
    payload = [{**i.to_dict(), "lock": record_lock.lock_status(i)} for i in items]
    return jsonify({"success": True, "items": payload, "total": len(payload)}), 200


@incident_bp.route("/incidents/<incident_id>", methods=["GET"])
@require_role("viewer")
def get_incident(incident_id):
    incident = incident_service.get_incident(_parse_id(incident_id), current_user().id)
    return jsonify({"success": True, "incident": incident.to_dict()}), 200


# ═════════════════════════════════════════════════════════════════════════════
# Review pipeline
# ═════════════════════════════════════════════════════════════════════════════


@incident_bp.route("/incidents/<incident_id>/review", methods=["POST"])
@require_role("analyst")
def review_incident(incident_id):
    result = wf.submit_review(wf.INCIDENT_PIPELINE, _parse_id(incident_id), current_user().id)
    return jsonify({
        "success": True,
        "verification_status": result["status"],
        "message": result["message"],
    }), 200


@incident_bp.route("/incidents/<incident_id>/reject", methods=["POST"])
@require_role("analyst")
def reject_incident(incident_id):
    data = request.get_json(silent=True) or {}
    incident = wf.reject(wf.INCIDENT_PIPELINE, _parse_id(incident_id), current_user().id, data.get("reason"))
    return jsonify({"success": True, "message": "Incident rejected", "incident": incident.to_dict()}), 200


@incident_bp.route("/incidents/<incident_id>/unpublish", methods=["POST"])
@require_role("admin")
def unpublish_incident(incident_id):
    data = request.get_json(silent=True) or {}
    incident = wf.unpublish(wf.INCIDENT_PIPELINE, _parse_id(incident_id), current_user().id, data.get("reason"))
    return jsonify({
        "success": True,
        "message": "Incident unpublished and returned to review queue",
        "incident": incident.to_dict(),
    }), 200


@incident_bp.route("/incidents/<incident_id>/reopen", methods=["POST"])
@require_role("admin")
def reopen_incident(incident_id):
    incident = wf.reopen(wf.INCIDENT_PIPELINE, _parse_id(incident_id), current_user().id)
    return jsonify({"success": True, "message": "Incident reopened", "incident": incident.to_dict()}), 200


@incident_bp.route("/incidents/<incident_id>/verify-field", methods=["POST"])
@require_role("analyst")
def verify_incident_field(incident_id):
    data = request.get_json(silent=True) or {}
    result = incident_service.verify_field(
        _parse_id(incident_id), current_user().id, data.get("fieldSlug"), data.get("verified"),
    )
    return jsonify({"success": True, **result}), 200


# ═════════════════════════════════════════════════════════════════════════════
# Edit lock
# ═════════════════════════════════════════════════════════════════════════════


@incident_bp.route("/incidents/<incident_id>/lock", methods=["GET"])
@require_role("editor")
def incident_lock_status(incident_id):
    status = record_lock.get_lock_status(Incident, _parse_id(incident_id))
    return jsonify({"success": True, **status}), 200


@incident_bp.route("/incidents/<incident_id>/lock", methods=["POST"])
@require_role("editor")
def acquire_incident_lock(incident_id):
    user = current_user()
    force = _wants_force()
    if force and not has_required_role(user.role, "admin"):
        raise ForbiddenError("Admin access required", required="admin")
    status = record_lock.acquire_lock(Incident, _parse_id(incident_id), user.id, force=force)
    return jsonify({"success": True, "message": "Lock acquired", **status}), 200


@incident_bp.route("/incidents/<incident_id>/lock", methods=["DELETE"])
@require_role("editor")
def release_incident_lock(incident_id):
    user = current_user()
    force = _wants_force()
    if force and not has_required_role(user.role, "admin"):
        raise ForbiddenError("Admin access required", required="admin")
    released = record_lock.release_lock(Incident, _parse_id(incident_id), user.id, force=force)
    message = "Lock released" if released else "No active lock"
    return jsonify({"success": True, "released": released, "message": message}), 200
