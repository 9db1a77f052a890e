"""
Role / permission resolver.

Two independent role systems:

  * Global role on ``users.role`` — ordered hierarchy used for incident-level
    actions (analyst reviews, admin unpublishes).
  * Project role on ``project_members.role`` — mapped to a capability set used
    for project-record actions.  The project creator is always ``owner``,
    whatever the membership table says.

All functions are read-only.

Usage:
    from app.services.permission_service import resolve_project_access

    access = resolve_project_access(user_id, "casefiles")
    if not access.can("validate"):
        raise ForbiddenError(...)
"""

import logging
from dataclasses import dataclass, field

from app.core.exceptions import ForbiddenError, NotFoundError
from app.models import db
from app.models.auth import Project, ProjectMember, User

logger = logging.getLogger(__name__)

# ── Global roles ─────────────────────────────────────────────────────────────

ROLE_HIERARCHY = {
    "guest": 0,
    "viewer": 1,
    "user": 2,
    "editor": 3,
    "analyst": 4,
    "admin": 5,
}


def has_required_role(role: str | None, minimum: str) -> bool:
    """True when *role* sits at or above *minimum* in the global hierarchy."""
    return ROLE_HIERARCHY.get(role or "guest", 0) >= ROLE_HIERARCHY[minimum]


def get_user_role(user_id: int | None) -> str:
    if user_id is None:
        return "guest"
    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        return "guest"
    return user.role


# ── Project capabilities ─────────────────────────────────────────────────────

CAPABILITIES = (
    "view",
    "analyze",
    "review",
    "validate",
    "manage_records",
    "delete_records",
    "manage_record_types",
    "manage_fields",
    "manage_members",
    "manage_project",
    "upload",
    "manage_appearances",
)

_ADMIN_CAPABILITIES = frozenset(c for c in CAPABILITIES if c != "manage_project")

ROLE_PERMISSIONS = {
    "owner": frozenset(CAPABILITIES),
    "admin": _ADMIN_CAPABILITIES,
    "reviewer": frozenset({"view", "analyze", "review", "manage_records", "upload"}),
    "validator": frozenset({"view", "validate", "upload"}),
    "analyst": frozenset({"view", "analyze", "upload"}),
    "viewer": frozenset({"view"}),
}

# Boolean columns on project_members that override a single capability
_COLUMN_OVERRIDES = {
    "can_upload": "upload",
    "can_manage_appearances": "manage_appearances",
}


@dataclass(frozen=True)
class ProjectAccess:
    """Effective access of one user to one project."""

    project: Project
    role: str | None
    capabilities: frozenset = field(default_factory=frozenset)
    is_owner: bool = False
    membership: ProjectMember | None = None

    def can(self, capability: str) -> bool:
        return capability in self.capabilities

    def to_dict(self) -> dict:
        return {
            "project_id": self.project.id,
            "role": self.role,
            "is_owner": self.is_owner,
            "capabilities": sorted(self.capabilities),
        }


def get_project_by_slug(slug: str) -> Project:
    project = Project.query_active().filter_by(slug=slug).first()
    if project is None:
        raise NotFoundError(resource="Project", resource_id=slug)
    return project


def get_membership(project_id: int, user_id: int | None) -> ProjectMember | None:
    if user_id is None:
        return None
    return ProjectMember.query.filter_by(project_id=project_id, user_id=user_id).first()


def effective_role(project: Project, user_id: int | None, membership: ProjectMember | None) -> str | None:
    """Creator → owner; otherwise the stored membership role; None for non-members."""
    if user_id is not None and project.created_by == user_id:
        return "owner"
    if membership is None:
        return None
    return membership.role


def capabilities_for(role: str | None, membership: ProjectMember | None = None) -> frozenset:
    """Role capabilities with per-member overrides applied.  Owners are never restricted."""
    caps = set(ROLE_PERMISSIONS.get(role, frozenset())) if role else set()
    if role == "owner" or membership is None:
        return frozenset(caps)

    for column, capability in _COLUMN_OVERRIDES.items():
        value = getattr(membership, column)
        if value is True:
            caps.add(capability)
        elif value is False:
            caps.discard(capability)

    for capability, allowed in (membership.permissions or {}).items():
        if capability not in CAPABILITIES:
            continue
        if allowed:
            caps.add(capability)
        else:
            caps.discard(capability)
    return frozenset(caps)


def _access_for(project: Project, user_id: int | None) -> ProjectAccess | None:
    membership = get_membership(project.id, user_id)
    role = effective_role(project, user_id, membership)
    if role is not None:
        return ProjectAccess(
            project=project,
            role=role,
            capabilities=capabilities_for(role, membership),
            is_owner=role == "owner",
            membership=membership,
        )
    if project.is_public:
        return ProjectAccess(project=project, role=None, capabilities=frozenset({"view"}))
    return None


def resolve_project_access(user_id: int | None, slug: str) -> ProjectAccess:
    """
    Resolve (user, project slug) to the effective role and capability set.

    Raises:
        NotFoundError: unknown or soft-deleted project.
        ForbiddenError: private project and the user is not a member.
    """
    project = get_project_by_slug(slug)
    access = _access_for(project, user_id)
    if access is None:
        logger.info("Project access denied", extra={"user_id": user_id, "project_id": project.id})
        raise ForbiddenError("You do not have access to this project")
    return access


def get_user_project_role(user_id: int, project_id: int) -> str | None:
    project = db.session.get(Project, project_id)
    if project is None or project.is_deleted:
        return None
    return effective_role(project, user_id, get_membership(project_id, user_id))


def has_project_permission(user_id: int | None, project_id: int, capability: str) -> bool:
    project = db.session.get(Project, project_id)
    if project is None or project.is_deleted:
        return False
    access = _access_for(project, user_id)
    return access is not None and access.can(capability)


def require_project_permission(user_id: int | None, project_id: int, capability: str) -> None:
    """Raise ForbiddenError unless the user holds *capability* on the project."""
    if not has_project_permission(user_id, project_id, capability):
        logger.warning(
            "User %s denied: missing capability '%s'", user_id, capability,
            extra={"user_id": user_id, "project_id": project_id},
        )
        raise ForbiddenError("Access denied", required=capability)
