"""
Casework Review Platform
Audit domain model.

Models:
    - AuditLog: immutable, append-only audit trail for workflow events.
"""

import json

from app.models import db, utcnow

AUDIT_ENTITY_TYPES = frozenset({
    "incident", "record", "project", "proposed_change", "edit_suggestion", "user",
})

_REVIEW_ACTIONS = (
    "create", "first_review", "second_review", "reject", "unpublish", "reopen",
    "verify_field", "unverify_field",
)

AUDIT_ACTIONS = frozenset(
    {f"{family}.{action}" for family in ("incident", "record") for action in _REVIEW_ACTIONS}
    | {
        "record.update",
        "record.delete",
        "project.settings",
        # Proposed changes / edit suggestions
        "proposed_change.approve",
        "proposed_change.reject",
        "edit_suggestion.create",
        "edit_suggestion.first_review",
        "edit_suggestion.approve",
        "edit_suggestion.reject",
        # Verifier administration
        "user.grant_verifier",
        "user.update_verifier",
        "user.revoke_verifier",
    }
)


class AuditLog(db.Model):
    """
    Immutable audit trail for every workflow event.

    One row per action.  ``diff_json`` carries the old→new status snapshot
    plus any reason supplied by the actor.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_project", "project_id"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer,
        db.ForeignKey("projects.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Polymorphic entity reference
    entity_type = db.Column(db.String(30), nullable=False)
    entity_id = db.Column(db.String(36), nullable=False)

    action = db.Column(db.String(60), nullable=False)
    actor_user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    diff_json = db.Column(db.Text, default="{}")

    timestamp = db.Column(db.DateTime, nullable=False, default=utcnow)

    @property
    def diff(self) -> dict:
        """Deserialise *diff_json* to a Python dict."""
        try:
            return json.loads(self.diff_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor_user_id": self.actor_user_id,
            "diff": self.diff,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


def write_audit(
    *,
    entity_type: str,
    entity_id,
    action: str,
    actor_user_id: int | None = None,
    project_id: int | None = None,
    diff: dict | None = None,
) -> AuditLog:
    """
    Append a single audit row.  Uses ``flush`` so callers keep
    transaction control.

    Returns the (flushed) AuditLog instance.  Unknown entity types and
    actions raise ValueError.
    """
    if entity_type not in AUDIT_ENTITY_TYPES:
        raise ValueError(f"Unknown audit entity type: {entity_type}")
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action: {action}")
    log = AuditLog(
        project_id=project_id,
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor_user_id=actor_user_id,
        diff_json=json.dumps(diff or {}, default=str),
    )
    db.session.add(log)
    db.session.flush()
    return log
