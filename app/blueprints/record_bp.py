"""
Project Record Blueprint — project-scoped records, their review pipeline,
field verification, proposed edits, third-party verification requests and
the edit lock.

All routes live under /api/v1/projects/<slug>/records and resolve
``g.project_access`` first (app.middleware.project_access).

Endpoints:
    GET    /projects/<slug>/records                          view
    POST   /projects/<slug>/records                          upload
    GET    /projects/<slug>/records/<id>                     view
    PATCH  /projects/<slug>/records/<id>                     manage_records / pipeline gate
    DELETE /projects/<slug>/records/<id>                     delete_records
    POST   /projects/<slug>/records/<id>/review              review | validate
    POST   /projects/<slug>/records/<id>/reject              review
    POST   /projects/<slug>/records/<id>/unpublish           manage_project
    POST   /projects/<slug>/records/<id>/reopen              manage_project
    POST   /projects/<slug>/records/<id>/verify-field        validate
    POST   /projects/<slug>/records/<id>/propose-change      global analyst
    POST   /projects/<slug>/records/<id>/request-verification owner / can_request_verification
    GET    /projects/<slug>/records/<id>/verification-requests view
    GET    /projects/<slug>/records/<id>/lock                manage_records
    POST   /projects/<slug>/records/<id>/lock                manage_records (?force: manage_project)
    DELETE /projects/<slug>/records/<id>/lock                manage_records (?force: manage_project)
"""

import logging

from flask import Blueprint, g, jsonify, request

from app.auth import current_user, login_required
from app.core.exceptions import ForbiddenError
from app.middleware.project_access import require_project_access
from app.models.record import Record
from app.models.verification import VerificationRequest
from app.services import proposed_change_service, record_lock, record_service
from app.services import review_workflow as wf
from app.services import verification_queue

logger = logging.getLogger(__name__)

record_bp = Blueprint("records", __name__, url_prefix="/api/v1")

_BASE = "/projects/<slug>/records"


def _record(record_id: int) -> Record:
    return record_service.get_record(g.project_access, record_id)


def _wants_force() -> bool:
    return request.args.get("force", "").lower() in ("1", "true", "yes")


# ═════════════════════════════════════════════════════════════════════════════
# CRUD
# ═════════════════════════════════════════════════════════════════════════════


@record_bp.route(_BASE, methods=["GET"])
@require_project_access("view")
def list_records(slug):
    result = record_service.list_records(
        g.project_access,
        status=request.args.get("status"),
        record_type=request.args.get("record_type"),
        limit=request.args.get("limit", 50, type=int),
        offset=request.args.get("offset", 0, type=int),
    )
    return jsonify({"success": True, **result}), 200


@record_bp.route(_BASE, methods=["POST"])
@require_project_access("upload")
def create_record(slug):
    data = request.get_json(silent=True) or {}
    record = record_service.create_record(
        g.project_access, current_user().id, data.get("record_type"), data.get("data"),
    )
    return jsonify({"success": True, "record": record.to_dict()}), 201


@record_bp.route(f"{_BASE}/<int:record_id>", methods=["GET"])
@require_project_access("view")
def get_record(slug, record_id):
    record = _record(record_id)
    return jsonify({"success": True, "record": record.to_dict()}), 200


@record_bp.route(f"{_BASE}/<int:record_id>", methods=["PATCH"])
@login_required
@require_project_access(None)
def update_record(slug, record_id):
    data = request.get_json(silent=True) or {}
    record = record_service.update_record(g.project_access, _record(record_id), current_user().id, data)
    return jsonify({"success": True, "record": record.to_dict()}), 200


@record_bp.route(f"{_BASE}/<int:record_id>", methods=["DELETE"])
@require_project_access("delete_records")
def delete_record(slug, record_id):
    record_service.delete_record(g.project_access, _record(record_id), current_user().id)
    return jsonify({"success": True, "message": "Record deleted"}), 200


# ═════════════════════════════════════════════════════════════════════════════
# Review pipeline
# ═════════════════════════════════════════════════════════════════════════════


@record_bp.route(f"{_BASE}/<int:record_id>/review", methods=["POST"])
@login_required
@require_project_access(None)
def review_record(slug, record_id):
    record = _record(record_id)
    result = wf.submit_review(wf.RECORD_PIPELINE, record.id, current_user().id)
    return jsonify({
        "success": True,
        "status": result["status"],
        "message": result["message"],
        "record": result["record"].to_dict(),
    }), 200


@record_bp.route(f"{_BASE}/<int:record_id>/reject", methods=["POST"])
@login_required
@require_project_access(None)
def reject_record(slug, record_id):
    data = request.get_json(silent=True) or {}
    record = wf.reject(wf.RECORD_PIPELINE, _record(record_id).id, current_user().id, data.get("reason"))
    return jsonify({"success": True, "message": "Record rejected", "record": record.to_dict()}), 200


@record_bp.route(f"{_BASE}/<int:record_id>/unpublish", methods=["POST"])
@login_required
@require_project_access(None)
def unpublish_record(slug, record_id):
    data = request.get_json(silent=True) or {}
    record = wf.unpublish(wf.RECORD_PIPELINE, _record(record_id).id, current_user().id, data.get("reason"))
    return jsonify({
        "success": True,
        "message": "Record unpublished and returned to review queue",
        "record": record.to_dict(),
    }), 200


@record_bp.route(f"{_BASE}/<int:record_id>/reopen", methods=["POST"])
@login_required
@require_project_access(None)
def reopen_record(slug, record_id):
    record = wf.reopen(wf.RECORD_PIPELINE, _record(record_id).id, current_user().id)
    return jsonify({"success": True, "message": "Record reopened", "record": record.to_dict()}), 200


@record_bp.route(f"{_BASE}/<int:record_id>/verify-field", methods=["POST"])
@require_project_access("validate")
def verify_record_field(slug, record_id):
    data = request.get_json(silent=True) or {}
    result = record_service.verify_field(
        g.project_access, _record(record_id), current_user().id,
        data.get("fieldSlug"), data.get("verified"),
    )
    return jsonify({"success": True, **result}), 200


# ═════════════════════════════════════════════════════════════════════════════
# Proposed changes & third-party verification
# ═════════════════════════════════════════════════════════════════════════════


@record_bp.route(f"{_BASE}/<int:record_id>/propose-change", methods=["POST"])
@login_required
@require_project_access("view")
def propose_change(slug, record_id):
    data = request.get_json(silent=True) or {}
    change = proposed_change_service.propose_change(
        _record(record_id), current_user().id, data.get("proposed_data"), data.get("change_summary"),
    )
    return jsonify({
        "success": True,
        "id": change.id,
        "record_id": change.record_id,
        "status": change.status,
        "message": "Proposed change submitted successfully",
    }), 201


@record_bp.route(f"{_BASE}/<int:record_id>/request-verification", methods=["POST"])
@login_required
@require_project_access("view")
def request_verification(slug, record_id):
    data = request.get_json(silent=True) or {}
    vr = verification_queue.request_verification(
        g.project_access, _record(record_id), current_user().id, data,
    )
    return jsonify({
        "success": True,
        "request": vr.to_dict(),
        "message": "Verification requested",
    }), 201


@record_bp.route(f"{_BASE}/<int:record_id>/verification-requests", methods=["GET"])
@login_required
@require_project_access("view")
def list_verification_requests(slug, record_id):
    record = _record(record_id)
    items = (
        VerificationRequest.query.filter_by(record_id=record.id)
        .order_by(VerificationRequest.created_at.desc())
        .all()
    )
    return jsonify({"success": True, "items": [vr.to_dict() for vr in items]}), 200


# ═════════════════════════════════════════════════════════════════════════════
# Edit lock
# ═════════════════════════════════════════════════════════════════════════════


def _check_force():
    force = _wants_force()
    if force and not g.project_access.can("manage_project"):
        raise ForbiddenError("Access denied", required="manage_project")
    return force


@record_bp.route(f"{_BASE}/<int:record_id>/lock", methods=["GET"])
@require_project_access("manage_records")
def record_lock_status(slug, record_id):
    status = record_lock.lock_status(_record(record_id))
    return jsonify({"success": True, **status}), 200


@record_bp.route(f"{_BASE}/<int:record_id>/lock", methods=["POST"])
@require_project_access("manage_records")
def acquire_record_lock(slug, record_id):
    force = _check_force()
    record = _record(record_id)
    status = record_lock.acquire_lock(Record, record.id, current_user().id, force=force)
    return jsonify({"success": True, "message": "Lock acquired", **status}), 200


@record_bp.route(f"{_BASE}/<int:record_id>/lock", methods=["DELETE"])
@require_project_access("manage_records")
def release_record_lock(slug, record_id):
    force = _check_force()
    record = _record(record_id)
    released = record_lock.release_lock(Record, record.id, current_user().id, force=force)
    message = "Lock released" if released else "No active lock"
    return jsonify({"success": True, "released": released, "message": message}), 200
