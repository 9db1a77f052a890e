"""
Proposed changes — pending full-payload replacements for verified records.
"""

from app.models import db, utcnow

PROPOSED_CHANGE_STATUSES = ("pending_review", "approved", "rejected")


class ProposedChange(db.Model):
    __tablename__ = "record_proposed_changes"
    __table_args__ = (
        db.Index("idx_proposed_changes_project_status", "project_id", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    record_id = db.Column(
        db.Integer, db.ForeignKey("records.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False,
    )
    proposed_data = db.Column(db.JSON, nullable=False)
    change_summary = db.Column(db.Text)
    status = db.Column(db.String(20), nullable=False, default="pending_review")

    submitted_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    submitted_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    reviewed_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    reviewed_at = db.Column(db.DateTime)
    review_notes = db.Column(db.Text)
    applied_at = db.Column(db.DateTime)

    def to_dict(self):
        return {
            "id": self.id,
            "record_id": self.record_id,
            "project_id": self.project_id,
            "proposed_data": self.proposed_data or {},
            "change_summary": self.change_summary,
            "status": self.status,
            "submitted_by": self.submitted_by,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "review_notes": self.review_notes,
            "applied_at": self.applied_at.isoformat() if self.applied_at else None,
        }

    def __repr__(self):
        return f"<ProposedChange {self.id}: record={self.record_id} {self.status}>"
