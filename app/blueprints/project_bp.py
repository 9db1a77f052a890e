"""
Project Blueprint — caller's view of a project and its workflow settings.

Endpoints:
    GET    /api/v1/projects/<slug>                     — project + caller role/capabilities
    GET    /api/v1/projects/<slug>/members/me          — caller's membership
    GET    /api/v1/projects/<slug>/settings/workflow   — review/quota settings
    PATCH  /api/v1/projects/<slug>/settings/workflow   — update (manage_project)
    GET    /api/v1/projects/<slug>/review-queue        — records awaiting review
"""

import logging

from flask import Blueprint, g, jsonify, request

from app.auth import current_user
from app.core.exceptions import ValidationError
from app.middleware.project_access import require_project_access
from app.models import db
from app.models.audit import write_audit
from app.services import record_lock
from app.services import review_workflow as wf

logger = logging.getLogger(__name__)

project_bp = Blueprint("projects", __name__, url_prefix="/api/v1")

_BOOL_SETTINGS = ("require_validation", "require_different_validator")


@project_bp.route("/projects/<slug>", methods=["GET"])
@require_project_access("view")
def get_project(slug):
    access = g.project_access
    return jsonify({"success": True, "project": access.project.to_dict(), **access.to_dict()}), 200


@project_bp.route("/projects/<slug>/members/me", methods=["GET"])
@require_project_access("view")
def my_membership(slug):
    access = g.project_access
    membership = access.membership.to_dict() if access.membership is not None else None
    return jsonify({"success": True, "membership": membership, **access.to_dict()}), 200


@project_bp.route("/projects/<slug>/settings/workflow", methods=["GET"])
@require_project_access("view")
def get_workflow_settings(slug):
    return jsonify({"success": True, "settings": g.project_access.project.workflow_settings()}), 200


@project_bp.route("/projects/<slug>/settings/workflow", methods=["PATCH"])
@require_project_access("manage_project")
def update_workflow_settings(slug):
    data = request.get_json(silent=True) or {}
    project = g.project_access.project
    changes = {}

    for key in _BOOL_SETTINGS:
        if key in data:
            if not isinstance(data[key], bool):
                raise ValidationError(f"{key} must be true or false", details={key: "must be boolean"})
            changes[key] = {"old": getattr(project, key), "new": data[key]}
            setattr(project, key, data[key])

    if "verification_quota_monthly" in data:
        quota = data["verification_quota_monthly"]
        if isinstance(quota, bool) or not isinstance(quota, int) or quota < 0:
            raise ValidationError(
                "verification_quota_monthly must be a non-negative integer",
                details={"verification_quota_monthly": "invalid"},
            )
        changes["verification_quota_monthly"] = {"old": project.verification_quota_monthly, "new": quota}
        project.verification_quota_monthly = quota

    if not changes:
        raise ValidationError("No workflow settings provided")

    write_audit(
        entity_type="project", entity_id=project.id, action="project.settings",
        actor_user_id=current_user().id, project_id=project.id, diff=changes,
    )
    db.session.commit()
    logger.info("Workflow settings updated", extra={"project_id": project.id, "user_id": current_user().id})
    return jsonify({"success": True, "settings": project.workflow_settings()}), 200


@project_bp.route("/projects/<slug>/review-queue", methods=["GET"])
@require_project_access("review")
def project_review_queue(slug):
    limit = max(1, min(request.args.get("limit", 100, type=int), 500))
    items = wf.review_queue(wf.RECORD_PIPELINE, project_id=g.project_access.project.id, limit=limit)
    payload = [{**r.to_dict(), "lock": record_lock.lock_status(r)} for r in items]
    return jsonify({"success": True, "items": payload, "total": len(payload)}), 200
