"""Standardised API error responses.

Usage
-----
    from app.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Incident not found")
    return api_error(E.VALIDATION_REQUIRED, "reason is required")

Service exceptions from ``app.core.exceptions`` are translated once, app-wide,
by ``register_error_handlers``.  Every message is passed through
``sanitize_error_message`` so connection strings, SQL and stack frames never
reach a client.
"""

from __future__ import annotations

import logging
import re

from flask import jsonify
from werkzeug.exceptions import HTTPException

from app.core.exceptions import (
    AlreadyAssignedError,
    AtCapacityError,
    ConflictError,
    ForbiddenError,
    InsufficientCreditsError,
    InvalidTransitionError,
    NotFoundError,
    QuotaExceededError,
    RateLimitExceededError,
    RecordLockedError,
    StaleStateError,
    ValidationError,
)

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants."""

    # Validation – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Workflow – HTTP 400
    INVALID_TRANSITION = "ERR_INVALID_TRANSITION"
    STALE_STATE = "ERR_STALE_STATE"
    ALREADY_ASSIGNED = "ERR_ALREADY_ASSIGNED"
    AT_CAPACITY = "ERR_AT_CAPACITY"
    INSUFFICIENT_CREDITS = "ERR_INSUFFICIENT_CREDITS"

    # Auth – HTTP 401 / 403
    UNAUTHORIZED = "ERR_UNAUTHORIZED"
    FORBIDDEN = "ERR_FORBIDDEN"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict / duplicate – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"

    # Lock – HTTP 423
    LOCKED = "ERR_LOCKED"

    # Throttling – HTTP 429
    RATE_LIMITED = "ERR_RATE_LIMITED"
    QUOTA_EXCEEDED = "ERR_QUOTA_EXCEEDED"

    # Server – HTTP 500 / 503
    INTERNAL = "ERR_INTERNAL"
    UNAVAILABLE = "ERR_UNAVAILABLE"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.INVALID_TRANSITION: 400,
    E.STALE_STATE: 400,
    E.ALREADY_ASSIGNED: 400,
    E.AT_CAPACITY: 400,
    E.INSUFFICIENT_CREDITS: 400,
    E.UNAUTHORIZED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.LOCKED: 423,
    E.RATE_LIMITED: 429,
    E.QUOTA_EXCEEDED: 429,
    E.INTERNAL: 500,
    E.UNAVAILABLE: 503,
}


# ── Sanitisation ──────────────────────────────────────────────────────
class SafeErrors:
    """Generic client-facing messages."""

    UNAUTHORIZED = "Authentication required"
    FORBIDDEN = "Access denied"
    NOT_FOUND = "Resource not found"
    BAD_REQUEST = "Invalid request"
    INTERNAL = "An error occurred. Please try again."
    RATE_LIMITED = "Too many requests. Please slow down."
    VALIDATION = "Invalid input provided"


_SENSITIVE_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"password",
        r"secret",
        r"token",
        r"key",
        r"credential",
        r"database",
        r"postgres",
        r"sql",
        r"connection",
        r"ECONNREFUSED",
        r"stack",
        r"at \w+ \(",
        r"node_modules",
        r"\.py\", line \d+",
        r"Traceback",
        r"\.ts:\d+",
        r"\.js:\d+",
    )
]

MAX_ERROR_MESSAGE_LENGTH = 200


def sanitize_error_message(error, fallback: str = SafeErrors.INTERNAL) -> str:
    """Return a message that is safe to show to a client.

    Messages that look like they carry credentials, connection details, SQL
    or stack frames are replaced by *fallback*; long messages are truncated.
    """
    message = str(error) if error is not None else ""
    if not message:
        return fallback
    for pattern in _SENSITIVE_PATTERNS:
        if pattern.search(message):
            return fallback
    if len(message) > MAX_ERROR_MESSAGE_LENGTH:
        return message[:MAX_ERROR_MESSAGE_LENGTH] + "..."
    return message


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
    sanitize: bool = True,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation; sanitized before it is sent.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (field errors, lock holder, etc.).
    sanitize : bool, optional
        Pass False only for fixed messages written in code.

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "success": False,
        "error": sanitize_error_message(message) if sanitize else message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


# ── App-wide handlers ─────────────────────────────────────────────────
def register_error_handlers(app):
    """Map the service exception hierarchy to JSON responses."""
    from app.models import db

    def _rollback():
        try:
            db.session.rollback()
        except Exception:  # noqa: BLE001
            logger.exception("Session rollback failed while handling an error")

    @app.errorhandler(NotFoundError)
    def _not_found(error: NotFoundError):
        _rollback()
        logger.info("Not found: %s", error)
        return api_error(E.NOT_FOUND, error.public_message)

    @app.errorhandler(ForbiddenError)
    def _forbidden(error: ForbiddenError):
        _rollback()
        return api_error(E.FORBIDDEN, str(error))

    @app.errorhandler(ValidationError)
    def _validation(error: ValidationError):
        _rollback()
        return api_error(E.VALIDATION_INVALID, str(error), details=error.details)

    @app.errorhandler(InvalidTransitionError)
    def _invalid_transition(error: InvalidTransitionError):
        _rollback()
        code = E.STALE_STATE if isinstance(error, StaleStateError) else E.INVALID_TRANSITION
        return api_error(code, str(error), details={"current_status": error.current_status})

    @app.errorhandler(AlreadyAssignedError)
    def _already_assigned(error: AlreadyAssignedError):
        _rollback()
        return api_error(E.ALREADY_ASSIGNED, str(error))

    @app.errorhandler(AtCapacityError)
    def _at_capacity(error: AtCapacityError):
        _rollback()
        return api_error(
            E.AT_CAPACITY, str(error),
            details={"current_assigned": error.current, "max_concurrent": error.maximum},
        )

    @app.errorhandler(InsufficientCreditsError)
    def _insufficient_credits(error: InsufficientCreditsError):
        _rollback()
        return api_error(
            E.INSUFFICIENT_CREDITS, str(error),
            details={"balance": error.balance, "required": error.required},
        )

    @app.errorhandler(RecordLockedError)
    def _locked(error: RecordLockedError):
        _rollback()
        return api_error(
            E.LOCKED, str(error),
            details={
                "locked_by": error.locked_by,
                "expires_at": error.expires_at.isoformat() if error.expires_at else None,
            },
        )

    @app.errorhandler(RateLimitExceededError)
    def _ai_rate_limited(error: RateLimitExceededError):
        _rollback()
        return api_error(
            E.RATE_LIMITED, str(error),
            details={"window": error.window, "limit": error.limit, "used": error.used},
        )

    @app.errorhandler(QuotaExceededError)
    def _quota(error: QuotaExceededError):
        _rollback()
        return api_error(E.QUOTA_EXCEEDED, str(error), details={"quota": error.quota})

    @app.errorhandler(ConflictError)
    def _conflict(error: ConflictError):
        _rollback()
        return api_error(E.CONFLICT_DUPLICATE, f"{error.resource} already exists")

    @app.errorhandler(HTTPException)
    def _http(error: HTTPException):
        if error.code == 429:
            return api_error(E.RATE_LIMITED, SafeErrors.RATE_LIMITED, status=429)
        if error.code == 404:
            return api_error(E.NOT_FOUND, SafeErrors.NOT_FOUND, status=404)
        return api_error(E.VALIDATION_INVALID, error.description or SafeErrors.BAD_REQUEST,
                         status=error.code or 400)

    @app.errorhandler(Exception)
    def _unexpected(error: Exception):
        _rollback()
        logger.exception("Unhandled error: %s", type(error).__name__)
        return api_error(E.INTERNAL, SafeErrors.INTERNAL, status=500)
