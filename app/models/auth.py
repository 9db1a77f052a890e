"""
Auth Models — users, projects, project_members.

Global roles (users.role) gate incident-level actions; project membership
roles gate project-record actions.  See app.services.permission_service.
"""

from app.models import db, utcnow
from app.models.soft_delete import SoftDeleteMixin

GLOBAL_ROLES = ("guest", "viewer", "user", "editor", "analyst", "admin")
PROJECT_ROLES = ("owner", "admin", "reviewer", "validator", "analyst", "viewer")


# ═══════════════════════════════════════════════════════════════
# 1. USERS
# ═══════════════════════════════════════════════════════════════
class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(200), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256))
    full_name = db.Column(db.String(200))
    role = db.Column(db.String(20), nullable=False, default="user")
    status = db.Column(db.String(20), default="active")  # active, suspended

    # Verifier-queue participation
    is_verifier = db.Column(db.Boolean, nullable=False, default=False)
    verifier_max_concurrent = db.Column(db.Integer, nullable=False, default=5)
    verifier_since = db.Column(db.DateTime)
    verifier_specialties = db.Column(db.JSON)
    verifier_notes = db.Column(db.Text)

    # AI rate-limit tier (key of AI_RATE_LIMIT_TIERS)
    ai_tier = db.Column(db.String(30), nullable=False, default="free")

    last_login_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    project_memberships = db.relationship(
        "ProjectMember", back_populates="user", lazy="dynamic",
        cascade="all, delete-orphan", foreign_keys="ProjectMember.user_id",
    )

    @property
    def is_active(self):
        return self.status == "active"

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
            "status": self.status,
            "is_verifier": self.is_verifier,
            "verifier_max_concurrent": self.verifier_max_concurrent,
            "verifier_since": self.verifier_since.isoformat() if self.verifier_since else None,
            "verifier_specialties": self.verifier_specialties or [],
            "verifier_notes": self.verifier_notes,
            "ai_tier": self.ai_tier,
            "last_login_at": self.last_login_at.isoformat() if self.last_login_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.email} ({self.role})>"


# ═══════════════════════════════════════════════════════════════
# 2. PROJECTS
# ═══════════════════════════════════════════════════════════════
class Project(SoftDeleteMixin, db.Model):
    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    slug = db.Column(db.String(100), unique=True, nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    created_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    is_public = db.Column(db.Boolean, nullable=False, default=False)

    # Workflow settings
    require_validation = db.Column(db.Boolean, nullable=False, default=True)
    require_different_validator = db.Column(db.Boolean, nullable=False, default=False)

    # Third-party verification quota
    verification_quota_monthly = db.Column(db.Integer, nullable=False, default=5)
    verification_quota_used = db.Column(db.Integer, nullable=False, default=0)
    verification_quota_reset_at = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    members = db.relationship(
        "ProjectMember", back_populates="project", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    def workflow_settings(self):
        return {
            "require_validation": self.require_validation,
            "require_different_validator": self.require_different_validator,
            "verification_quota_monthly": self.verification_quota_monthly,
            "verification_quota_used": self.verification_quota_used,
        }

    def to_dict(self):
        return {
            "id": self.id,
            "slug": self.slug,
            "name": self.name,
            "description": self.description,
            "created_by": self.created_by,
            "is_public": self.is_public,
            "settings": self.workflow_settings(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Project {self.id}: {self.slug}>"


# ═══════════════════════════════════════════════════════════════
# 3. PROJECT MEMBERS
# ═══════════════════════════════════════════════════════════════
class ProjectMember(db.Model):
    """
    One row per (project, user).  ``role`` picks the base capability set;
    ``can_*`` columns and the ``permissions`` JSON map override it per member.
    """

    __tablename__ = "project_members"
    __table_args__ = (
        db.UniqueConstraint("project_id", "user_id", name="uq_project_member"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    role = db.Column(db.String(20), nullable=False, default="viewer")

    can_upload = db.Column(db.Boolean)
    can_manage_appearances = db.Column(db.Boolean)
    can_request_verification = db.Column(db.Boolean, nullable=False, default=False)
    verification_quota_override = db.Column(db.Integer)
    permissions = db.Column(db.JSON, default=dict)

    invited_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    joined_at = db.Column(db.DateTime, default=utcnow)

    user = db.relationship("User", back_populates="project_memberships", foreign_keys=[user_id])
    project = db.relationship("Project", back_populates="members")

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "user_id": self.user_id,
            "role": self.role,
            "can_upload": self.can_upload,
            "can_manage_appearances": self.can_manage_appearances,
            "can_request_verification": self.can_request_verification,
            "verification_quota_override": self.verification_quota_override,
            "permissions": self.permissions or {},
            "joined_at": self.joined_at.isoformat() if self.joined_at else None,
        }
