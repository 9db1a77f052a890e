"""
Payment provider callback handling.

The provider signs the raw request body with HMAC-SHA256 and sends the hex
digest in ``X-Payment-Signature``.  Only ``checkout.session.completed`` is
acted on; the checkout session id is the idempotency key of the credit, so
redelivered events never credit twice.
"""

import json
import logging
from dataclasses import dataclass

from app.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from app.models import db
from app.models.auth import Project
from app.services.credit_service import CreditService
from app.utils.crypto import verify_signature

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Payment-Signature"
HANDLED_EVENTS = ("checkout.session.completed",)


@dataclass(frozen=True)
class WebhookResult:
    received: bool
    duplicate: bool = False
    handled: bool = False
    credits_added: int = 0

    def to_dict(self) -> dict:
        return {
            "received": self.received,
            "duplicate": self.duplicate,
            "handled": self.handled,
            "creditsAdded": self.credits_added,
        }


def parse_event(secret: str, body: bytes, signature: str | None) -> dict:
    """Verify the signature and decode the event; ForbiddenError on a bad signature."""
    if not verify_signature(secret, body, signature):
        logger.warning("Payment webhook rejected: bad signature")
        raise ForbiddenError("Invalid signature")
    try:
        event = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise ValidationError("Invalid request")
    if not isinstance(event, dict) or "type" not in event:
        raise ValidationError("Invalid request")
    return event


def handle_event(event: dict) -> WebhookResult:
    event_type = event.get("type")
    if event_type not in HANDLED_EVENTS:
        logger.info("Payment webhook event %s ignored", event_type)
        return WebhookResult(received=True)

    session = (event.get("data") or {}).get("object") or {}
    session_id = session.get("id")
    metadata = session.get("metadata") or {}
    if not session_id:
        raise ValidationError("Checkout session id missing", details={"id": "required"})

    try:
        project_id = int(metadata.get("project_id"))
    except (TypeError, ValueError):
        raise ValidationError("Checkout metadata is incomplete", details={"project_id": "required"})
    user_id = metadata.get("user_id")
    try:
        user_id = int(user_id) if user_id is not None else None
    except (TypeError, ValueError):
        user_id = None

    project = db.session.get(Project, project_id)
    if project is None:
        raise NotFoundError(resource="Project", resource_id=project_id)

    outcome = CreditService().purchase_package(
        project_id,
        user_id,
        metadata.get("package_id"),
        external_reference=session_id,
        payment_intent_id=session.get("payment_intent"),
    )
    if outcome["duplicate"]:
        logger.info("Checkout session %s already credited", session_id, extra={"project_id": project_id})
        return WebhookResult(received=True, duplicate=True, handled=True)
    return WebhookResult(
        received=True,
        handled=True,
        credits_added=outcome["transaction"].amount,
    )
