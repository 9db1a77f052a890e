"""
Third-party verification queue models.

Models:
    - VerificationRequest: pull-style work item asking an external verifier
      to check a published record.
    - VerificationHistory: immutable, append-only log of queue actions.
    - VerifierStats: per-verifier aggregate; ``current_assigned`` is the
      counter the claim capacity check is keyed on.
"""

from app.models import db, utcnow

REQUEST_STATUSES = ("pending", "in_progress", "approved", "rejected")
PRIORITIES = ("urgent", "high", "normal", "low")
VERIFICATION_SCOPES = ("record", "data")
VERIFICATION_RESULTS = ("passed", "partial", "failed")

# Verification level stamped on a record whose third-party check passed
VERIFIED_BY_THIRD_PARTY_LEVEL = 3


def _iso(value):
    return value.isoformat() if value else None


class VerificationRequest(db.Model):
    __tablename__ = "verification_requests"
    __table_args__ = (
        db.Index("idx_verification_requests_queue", "status", "priority", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    record_id = db.Column(
        db.Integer, db.ForeignKey("records.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    requested_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))

    status = db.Column(db.String(20), nullable=False, default="pending")
    priority = db.Column(db.String(10), nullable=False, default="normal")
    verification_scope = db.Column(db.String(10), nullable=False, default="record")
    items_to_verify = db.Column(db.JSON)
    request_notes = db.Column(db.Text)

    assigned_to = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), index=True)
    assigned_at = db.Column(db.DateTime)

    verification_result = db.Column(db.String(10))
    verifier_notes = db.Column(db.Text)
    issues_found = db.Column(db.JSON)
    rejection_reason = db.Column(db.Text)
    completed_at = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "record_id": self.record_id,
            "requested_by": self.requested_by,
            "status": self.status,
            "priority": self.priority,
            "verification_scope": self.verification_scope,
            "items_to_verify": self.items_to_verify,
            "request_notes": self.request_notes,
            "assigned_to": self.assigned_to,
            "assigned_at": _iso(self.assigned_at),
            "verification_result": self.verification_result,
            "verifier_notes": self.verifier_notes,
            "issues_found": self.issues_found,
            "rejection_reason": self.rejection_reason,
            "completed_at": _iso(self.completed_at),
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<VerificationRequest {self.id}: {self.status}>"


class VerificationHistory(db.Model):
    __tablename__ = "verification_history"

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(
        db.Integer, db.ForeignKey("verification_requests.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    action = db.Column(db.String(30), nullable=False)  # requested | assigned | rejected | completed
    performed_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    details = db.Column(db.JSON, default=dict)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "request_id": self.request_id,
            "action": self.action,
            "performed_by": self.performed_by,
            "details": self.details or {},
            "created_at": _iso(self.created_at),
        }


class VerifierStats(db.Model):
    __tablename__ = "verifier_stats"

    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    current_assigned = db.Column(db.Integer, nullable=False, default=0)
    total_completed = db.Column(db.Integer, nullable=False, default=0)
    total_passed = db.Column(db.Integer, nullable=False, default=0)
    total_rejected = db.Column(db.Integer, nullable=False, default=0)
    last_activity_at = db.Column(db.DateTime)

    def to_dict(self):
        return {
            "user_id": self.user_id,
            "current_assigned": self.current_assigned,
            "total_completed": self.total_completed,
            "total_passed": self.total_passed,
            "total_rejected": self.total_rejected,
            "last_activity_at": _iso(self.last_activity_at),
        }
