"""
Soft Delete Mixin

Adds `deleted_at` timestamp column and query helpers for soft delete.
Models that include this mixin are marked deleted rather than physically
removed; every service lookup goes through ``query_active()``.

Usage:
    class Record(SoftDeleteMixin, db.Model):
        ...

    record.soft_delete()
    db.session.commit()

    Record.query_active().filter_by(project_id=7).all()
"""

from app.models import db, utcnow


class SoftDeleteMixin:
    """Mixin that adds soft delete support to any SQLAlchemy model."""

    deleted_at = db.Column(db.DateTime, nullable=True, default=None, index=True)

    def soft_delete(self):
        """Mark this record as deleted."""
        self.deleted_at = utcnow()

    @property
    def is_deleted(self):
        return self.deleted_at is not None

    @classmethod
    def query_active(cls):
        """Return a query that excludes soft-deleted records."""
        return cls.query.filter(cls.deleted_at.is_(None))
