"""
Admin Blueprint — verifier pool management.

Endpoints:
    GET     /api/v1/admin/verifiers              — verifiers with their queue counters
    POST    /api/v1/admin/verifiers              — {userId, specialties, maxConcurrent, notes}
    PATCH   /api/v1/admin/verifiers/<user_id>    — {specialties, maxConcurrent, notes}
    DELETE  /api/v1/admin/verifiers/<user_id>    — refused while assignments are open
"""

from flask import Blueprint, jsonify, request

from app.auth import current_user, require_role
from app.services import verifier_admin_service

admin_bp = Blueprint("admin", __name__, url_prefix="/api/v1/admin")


@admin_bp.route("/verifiers", methods=["GET"])
@require_role("admin")
def list_verifiers():
    items = verifier_admin_service.list_verifiers()
    return jsonify({"success": True, "items": items, "total": len(items)}), 200


@admin_bp.route("/verifiers", methods=["POST"])
@require_role("admin")
def add_verifier():
    data = request.get_json(silent=True) or {}
    verifier = verifier_admin_service.grant_verifier(data, current_user().id)
    return jsonify({"success": True, "verifier": verifier}), 201


@admin_bp.route("/verifiers/<int:user_id>", methods=["PATCH"])
@require_role("admin")
def update_verifier(user_id):
    data = request.get_json(silent=True) or {}
    verifier = verifier_admin_service.update_verifier(user_id, data, current_user().id)
    return jsonify({"success": True, "verifier": verifier}), 200


@admin_bp.route("/verifiers/<int:user_id>", methods=["DELETE"])
@require_role("admin")
def remove_verifier(user_id):
    verifier_admin_service.revoke_verifier(user_id, current_user().id)
    return jsonify({"success": True, "message": "Verifier removed"}), 200
