"""
Casework Review Platform
Record domain models.

Models:
    - RecordType / FieldDefinition: per-project schema side table consulted
      at write time.
    - Record: project-scoped typed record with a JSON payload.
    - Incident: case record reviewed by globally-roled analysts.

Both Record and Incident carry the review columns (ReviewMixin) and the
advisory edit-lock columns (EditLockMixin).  Status is the single source of
truth; the legacy ``verified`` boolean is derived in ``to_dict``.
"""

from app.models import db, utcnow
from app.models.soft_delete import SoftDeleteMixin

INCIDENT_STATUSES = ("pending", "first_review", "verified", "rejected")
RECORD_STATUSES = ("pending_review", "pending_validation", "verified", "rejected")

FIELD_TYPES = (
    "text", "textarea", "number", "boolean", "date", "datetime",
    "select", "multi_select", "url", "location", "object",
)


def _iso(value):
    return value.isoformat() if value else None


class ReviewMixin:
    """First/second review identity, review cycle counter, status."""

    first_reviewed_by = db.Column(db.Integer)
    first_reviewed_at = db.Column(db.DateTime)
    second_reviewed_by = db.Column(db.Integer)
    second_reviewed_at = db.Column(db.DateTime)
    rejected_by = db.Column(db.Integer)
    rejected_at = db.Column(db.DateTime)
    rejection_reason = db.Column(db.Text)
    review_cycle = db.Column(db.Integer, nullable=False, default=1)


class EditLockMixin:
    """Advisory, time-boxed edit lock.  Expiry is evaluated at read time."""

    locked_by = db.Column(db.Integer)
    locked_at = db.Column(db.DateTime)
    lock_expires_at = db.Column(db.DateTime)

    def lock_is_live(self, now=None) -> bool:
        if self.locked_by is None or self.lock_expires_at is None:
            return False
        return self.lock_expires_at > (now or utcnow())


# ═══════════════════════════════════════════════════════════════
# Record types & field definitions
# ═══════════════════════════════════════════════════════════════
class RecordType(db.Model):
    __tablename__ = "record_types"
    __table_args__ = (
        db.UniqueConstraint("project_id", "slug", name="uq_record_type_slug"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    slug = db.Column(db.String(100), nullable=False)
    name = db.Column(db.String(200), nullable=False)
    name_plural = db.Column(db.String(200))
    created_at = db.Column(db.DateTime, default=utcnow)

    fields = db.relationship(
        "FieldDefinition", back_populates="record_type",
        order_by="FieldDefinition.sort_order", cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "slug": self.slug,
            "name": self.name,
            "name_plural": self.name_plural,
            "fields": [f.to_dict() for f in self.fields],
        }


class FieldDefinition(db.Model):
    __tablename__ = "field_definitions"
    __table_args__ = (
        db.UniqueConstraint("record_type_id", "slug", name="uq_field_definition_slug"),
    )

    id = db.Column(db.Integer, primary_key=True)
    record_type_id = db.Column(
        db.Integer, db.ForeignKey("record_types.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    slug = db.Column(db.String(100), nullable=False)
    name = db.Column(db.String(200), nullable=False)
    field_type = db.Column(db.String(30), nullable=False, default="text")
    is_required = db.Column(db.Boolean, nullable=False, default=False)
    is_array = db.Column(db.Boolean, nullable=False, default=False)
    options = db.Column(db.JSON)  # list of allowed values for select/multi_select
    sort_order = db.Column(db.Integer, nullable=False, default=0)

    record_type = db.relationship("RecordType", back_populates="fields")

    def to_dict(self):
        return {
            "id": self.id,
            "slug": self.slug,
            "name": self.name,
            "field_type": self.field_type,
            "is_required": self.is_required,
            "is_array": self.is_array,
            "options": self.options,
        }


# ═══════════════════════════════════════════════════════════════
# Records
# ═══════════════════════════════════════════════════════════════
class Record(ReviewMixin, EditLockMixin, SoftDeleteMixin, db.Model):
    __tablename__ = "records"
    __table_args__ = (
        db.Index("idx_records_project_status", "project_id", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    record_type_id = db.Column(
        db.Integer, db.ForeignKey("record_types.id", ondelete="RESTRICT"), nullable=False,
    )
    data = db.Column(db.JSON, nullable=False, default=dict)
    status = db.Column(db.String(30), nullable=False, default="pending_review")
    verified_fields = db.Column(db.JSON, nullable=False, default=dict)

    verification_level = db.Column(db.Integer, nullable=False, default=0)
    verification_date = db.Column(db.DateTime)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    record_type = db.relationship("RecordType")

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "record_type_id": self.record_type_id,
            "record_type_slug": self.record_type.slug if self.record_type else None,
            "data": self.data or {},
            "status": self.status,
            "verified": self.status == "verified",
            "verified_fields": self.verified_fields or {},
            "reviewed_by": self.first_reviewed_by,
            "reviewed_at": _iso(self.first_reviewed_at),
            "validated_by": self.second_reviewed_by,
            "validated_at": _iso(self.second_reviewed_at),
            "rejected_by": self.rejected_by,
            "rejection_reason": self.rejection_reason,
            "review_cycle": self.review_cycle,
            "verification_level": self.verification_level,
            "verification_date": _iso(self.verification_date),
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Record {self.id}: {self.status}>"


class Incident(ReviewMixin, EditLockMixin, SoftDeleteMixin, db.Model):
    __tablename__ = "incidents"
    __table_args__ = (
        db.Index("idx_incidents_status", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id", ondelete="SET NULL"), index=True)
    reference = db.Column(db.String(50), unique=True)
    title = db.Column(db.String(300), nullable=False)
    summary = db.Column(db.Text)
    payload = db.Column(db.JSON, nullable=False, default=dict)
    status = db.Column(db.String(30), nullable=False, default="pending")
    verified_fields = db.Column(db.JSON, nullable=False, default=dict)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "reference": self.reference,
            "title": self.title,
            "summary": self.summary,
            "payload": self.payload or {},
            "verification_status": self.status,
            "verified": self.status == "verified",
            "verified_fields": self.verified_fields or {},
            "first_reviewed_by": self.first_reviewed_by,
            "first_reviewed_at": _iso(self.first_reviewed_at),
            "second_reviewed_by": self.second_reviewed_by,
            "second_reviewed_at": _iso(self.second_reviewed_at),
            "rejected_by": self.rejected_by,
            "rejection_reason": self.rejection_reason,
            "review_cycle": self.review_cycle,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Incident {self.id}: {self.status}>"
