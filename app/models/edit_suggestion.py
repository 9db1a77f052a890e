"""
Edit suggestions — single-field corrections to published incidents.

A suggestion needs two analyst approvals; the second one writes
``suggested_value`` into the incident.  A rejection at either stage is final.
"""

from app.models import db, utcnow

EDIT_SUGGESTION_STATUSES = ("pending", "first_review", "approved", "rejected")
OPEN_SUGGESTION_STATUSES = ("pending", "first_review")


def _iso(value):
    return value.isoformat() if value else None


class EditSuggestion(db.Model):
    __tablename__ = "edit_suggestions"
    __table_args__ = (
        db.Index("idx_edit_suggestions_incident_status", "incident_id", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    incident_id = db.Column(
        db.Integer, db.ForeignKey("incidents.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    suggested_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    field_name = db.Column(db.String(100), nullable=False)
    current_value = db.Column(db.JSON)
    suggested_value = db.Column(db.JSON)
    reason = db.Column(db.Text)
    status = db.Column(db.String(20), nullable=False, default="pending")

    first_reviewed_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    first_reviewed_at = db.Column(db.DateTime)
    first_review_notes = db.Column(db.Text)
    first_review_decision = db.Column(db.String(10))
    second_reviewed_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    second_reviewed_at = db.Column(db.DateTime)
    second_review_notes = db.Column(db.Text)
    applied_at = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "incident_id": self.incident_id,
            "suggested_by": self.suggested_by,
            "field_name": self.field_name,
            "current_value": self.current_value,
            "suggested_value": self.suggested_value,
            "reason": self.reason,
            "status": self.status,
            "first_reviewed_by": self.first_reviewed_by,
            "first_reviewed_at": _iso(self.first_reviewed_at),
            "first_review_notes": self.first_review_notes,
            "first_review_decision": self.first_review_decision,
            "second_reviewed_by": self.second_reviewed_by,
            "second_reviewed_at": _iso(self.second_reviewed_at),
            "second_review_notes": self.second_review_notes,
            "applied_at": _iso(self.applied_at),
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<EditSuggestion {self.id}: incident={self.incident_id} {self.field_name} {self.status}>"
