"""
Billing Blueprint — credit packages and the payment provider callback.

Endpoints:
    GET   /api/v1/billing/packages   — credit top-up tiers
    POST  /api/v1/billing/webhook    — signed callback (no bearer token; HMAC only)
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from app.services import billing_webhook
from app.services.credit_service import CreditService
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

billing_bp = Blueprint("billing", __name__, url_prefix="/api/v1/billing")


@billing_bp.route("/packages", methods=["GET"])
def list_packages():
    return jsonify({"success": True, "packages": CreditService().list_packages()}), 200


@billing_bp.route("/webhook", methods=["POST"])
def payment_webhook():
    secret = current_app.config.get("PAYMENT_WEBHOOK_SECRET")
    if not secret:
        logger.error("Payment webhook called but PAYMENT_WEBHOOK_SECRET is not configured")
        return api_error(E.UNAVAILABLE, "Webhook not configured", status=503)

    event = billing_webhook.parse_event(
        secret, request.get_data(), request.headers.get(billing_webhook.SIGNATURE_HEADER),
    )
    result = billing_webhook.handle_event(event)
    return jsonify(result.to_dict()), 200
