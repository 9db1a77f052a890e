"""
Project Access Middleware — resolves the caller's access to the project
named in the route and enforces a capability.

Usage:
    @bp.route("/projects/<slug>/records", methods=["POST"])
    @require_project_access("upload")
    def create_record(slug):
        access = g.project_access
        ...

Anonymous callers reach public projects with ``view`` only; every other
action on a project needs a bearer token.  Unknown projects answer 404,
non-members of private projects 403 (raised as service exceptions and
mapped by the app-wide error handlers).
"""

import functools
import logging

from flask import g, request

from app.auth import current_user_id
from app.core.exceptions import ForbiddenError
from app.services.permission_service import resolve_project_access
from app.utils.errors import E, SafeErrors, api_error

logger = logging.getLogger(__name__)


def require_project_access(capability: str | None = "view", param_name: str = "slug"):
    """
    Decorator: resolve ``g.project_access`` for the route's project slug.

    Args:
        capability: Capability the caller must hold, or None to only resolve.
        param_name: Name of the route parameter carrying the project slug.
    """

    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            slug = kwargs.get(param_name) or (request.view_args or {}).get(param_name)
            user_id = current_user_id()
            needs_login = capability not in (None, "view")
            if user_id is None and needs_login:
                return api_error(E.UNAUTHORIZED, SafeErrors.UNAUTHORIZED, status=401)

            access = resolve_project_access(user_id, slug)
            if capability is not None and not access.can(capability):
                logger.warning(
                    "Capability '%s' denied on %s", capability, f.__name__,
                    extra={"user_id": user_id, "project_id": access.project.id},
                )
                raise ForbiddenError("Access denied", required=capability)

            g.project_access = access
            return f(*args, **kwargs)

        return decorated

    return decorator
