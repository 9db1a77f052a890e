"""
Verifier Blueprint — third-party verification queue.

Only users flagged ``is_verifier`` reach these routes.

Endpoints:
    GET   /api/v1/verifier/requests?status=pending     — queue / own assignments
    GET   /api/v1/verifier/stats                       — caller's counters
    GET   /api/v1/verifier/requests/<id>               — assigned request + history
    POST  /api/v1/verifier/requests/<id>/claim         — self-assign
    POST  /api/v1/verifier/requests/<id>/reject        — {rejection_reason, verifier_notes}
    POST  /api/v1/verifier/requests/<id>/complete      — {result, verifier_notes, issues_found}
"""

from flask import Blueprint, jsonify, request

from app.auth import current_user, require_verifier
from app.core.exceptions import ValidationError
from app.models.verification import REQUEST_STATUSES
from app.services import verification_queue

verifier_bp = Blueprint("verifier", __name__, url_prefix="/api/v1/verifier")


@verifier_bp.route("/requests", methods=["GET"])
@require_verifier
def list_requests():
    status = request.args.get("status", "pending")
    if status not in REQUEST_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(REQUEST_STATUSES)}",
                              details={"status": "invalid"})
    limit = max(1, min(request.args.get("limit", 50, type=int), 200))
    items = verification_queue.list_queue(current_user().id, status=status, limit=limit)
    return jsonify({"success": True, "items": [r.to_dict() for r in items], "total": len(items)}), 200


@verifier_bp.route("/stats", methods=["GET"])
@require_verifier
def my_stats():
    user = current_user()
    stats = verification_queue.get_stats(user.id)
    return jsonify({
        "success": True,
        "stats": stats.to_dict(),
        "max_concurrent": user.verifier_max_concurrent,
    }), 200


@verifier_bp.route("/requests/<int:request_id>", methods=["GET"])
@require_verifier
def get_request(request_id):
    req = verification_queue.get_assigned_request(request_id, current_user().id)
    history = verification_queue.get_history(req.id)
    return jsonify({
        "success": True,
        "request": req.to_dict(),
        "history": [h.to_dict() for h in history],
    }), 200


@verifier_bp.route("/requests/<int:request_id>/claim", methods=["POST"])
@require_verifier
def claim_request(request_id):
    req = verification_queue.claim(request_id, current_user().id)
    return jsonify({"success": True, "request": req.to_dict()}), 200


@verifier_bp.route("/requests/<int:request_id>/reject", methods=["POST"])
@require_verifier
def reject_request(request_id):
    data = request.get_json(silent=True) or {}
    req = verification_queue.reject(
        request_id, current_user().id, data.get("rejection_reason"), data.get("verifier_notes"),
    )
    return jsonify({"success": True, "request": req.to_dict()}), 200


@verifier_bp.route("/requests/<int:request_id>/complete", methods=["POST"])
@require_verifier
def complete_request(request_id):
    data = request.get_json(silent=True) or {}
    req = verification_queue.complete(
        request_id, current_user().id, data.get("result"),
        data.get("verifier_notes"), data.get("issues_found"),
    )
    return jsonify({"success": True, "request": req.to_dict()}), 200
