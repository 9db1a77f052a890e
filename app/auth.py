"""
Casework Review Platform
Authentication & Authorization decorators.

Provides:
    - current_user(): the active User behind the request's bearer token
    - login_required: 401 unless a valid token was presented
    - require_role(min_role): global role hierarchy check (403 when too low)
    - require_verifier: the users.is_verifier flag

The token itself is parsed by app.middleware.jwt_auth, which sets
``g.jwt_user_id``.  Roles are always re-read from the database so a
demotion takes effect before the token expires.
"""

import functools
import logging

from flask import g

from app.models import db
from app.models.auth import User
from app.services.permission_service import ROLE_HIERARCHY, has_required_role
from app.utils.errors import E, SafeErrors, api_error

logger = logging.getLogger(__name__)


def current_user() -> User | None:
    """Return the active user for this request, or None."""
    if "current_user" in g:
        return g.current_user
    user = None
    user_id = getattr(g, "jwt_user_id", None)
    if user_id is not None:
        user = db.session.get(User, user_id)
        if user is not None and not user.is_active:
            user = None
    g.current_user = user
    return user


def current_user_id() -> int | None:
    user = current_user()
    return user.id if user else None


def login_required(f):
    """Decorator: reject the request with 401 when no valid token was presented."""

    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if current_user() is None:
            return api_error(E.UNAUTHORIZED, SafeErrors.UNAUTHORIZED, status=401)
        return f(*args, **kwargs)

    return decorated


def require_role(minimum_role: str):
    """
    Decorator: require a global role at or above *minimum_role*.

    Hierarchy: guest < viewer < user < editor < analyst < admin.
    """
    if minimum_role not in ROLE_HIERARCHY:
        raise ValueError(f"Unknown role: {minimum_role}")

    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user = current_user()
            if user is None:
                return api_error(E.UNAUTHORIZED, SafeErrors.UNAUTHORIZED, status=401)
            if not has_required_role(user.role, minimum_role):
                logger.warning(
                    "Role '%s' denied on %s (requires %s)", user.role, f.__name__, minimum_role,
                    extra={"user_id": user.id},
                )
                return api_error(E.FORBIDDEN, f"{minimum_role.capitalize()} access required")
            return f(*args, **kwargs)

        return decorated

    return decorator


def require_verifier(f):
    """Decorator: only users flagged as third-party verifiers."""

    @functools.wraps(f)
    def decorated(*args, **kwargs):
        user = current_user()
        if user is None:
            return api_error(E.UNAUTHORIZED, SafeErrors.UNAUTHORIZED, status=401)
        if not user.is_verifier:
            return api_error(E.FORBIDDEN, "Verifier access required")
        return f(*args, **kwargs)

    return decorated
