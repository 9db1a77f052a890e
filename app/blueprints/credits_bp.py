"""
Credits Blueprint — project credit ledger and AI usage gate.

Endpoints:
    GET   /api/v1/projects/<slug>/credits          — balance + recent transactions (view)
    POST  /api/v1/projects/<slug>/credits/adjust   — {amount, reason} (manage_project)
    GET   /api/v1/projects/<slug>/ai/usage         — caller's tier, limits, usage (view)
    POST  /api/v1/projects/<slug>/ai/usage         — record one AI operation (analyze)
"""

import logging

from flask import Blueprint, g, jsonify, request

from app.auth import current_user, login_required
from app.middleware.project_access import require_project_access
from app.services.credit_service import CreditService

logger = logging.getLogger(__name__)

credits_bp = Blueprint("credits", __name__, url_prefix="/api/v1")

# ── Rate limiting ─────────────────────────────────────────────────────────
from app import limiter  # noqa: E402

_ai_usage_limit = limiter.shared_limit("10/minute", scope="ai_usage")


# ═════════════════════════════════════════════════════════════════════════════
# Project ledger
# ═════════════════════════════════════════════════════════════════════════════


@credits_bp.route("/projects/<slug>/credits", methods=["GET"])
@login_required
@require_project_access("view")
def get_credits(slug):
    svc = CreditService()
    project_id = g.project_access.project.id
    account = svc.get_account(project_id)
    limit = max(1, min(request.args.get("limit", 50, type=int), 200))
    transactions = svc.list_transactions(project_id, limit=limit)
    return jsonify({
        "success": True,
        "credits": account.to_dict(),
        "transactions": [t.to_dict() for t in transactions],
    }), 200


@credits_bp.route("/projects/<slug>/credits/adjust", methods=["POST"])
@require_project_access("manage_project")
def adjust_credits(slug):
    data = request.get_json(silent=True) or {}
    result = CreditService().adjust(
        g.project_access.project.id, current_user().id, data.get("amount"), data.get("reason"),
    )
    return jsonify({
        "success": True,
        "newBalance": result["newBalance"],
        "transaction": result["transaction"].to_dict(),
    }), 200


# ═════════════════════════════════════════════════════════════════════════════
# AI usage gate
# ═════════════════════════════════════════════════════════════════════════════


@credits_bp.route("/projects/<slug>/ai/usage", methods=["GET"])
@login_required
@require_project_access("view")
def ai_usage_summary(slug):
    summary = CreditService().usage_summary(current_user().id)
    return jsonify({"success": True, **summary}), 200


@credits_bp.route("/projects/<slug>/ai/usage", methods=["POST"])
@_ai_usage_limit
@require_project_access("analyze")
def record_ai_usage(slug):
    data = request.get_json(silent=True) or {}
    result = CreditService().record_ai_usage(
        current_user().id,
        g.project_access.project.id,
        data.get("operation_type"),
        model_name=data.get("model_name"),
        input_tokens=data.get("input_tokens", 0),
        output_tokens=data.get("output_tokens", 0),
    )
    return jsonify({
        "success": True,
        "usage": result["usage"].to_dict(),
        "tier": result["tier"],
        "creditsUsed": result["creditsUsed"],
        "newBalance": result["newBalance"],
    }), 201
