"""
Proposed-change channel for verified records.

A proposal carries a full replacement payload.  The live record is only
touched when a validator approves; approve and reject are both terminal.
"""

import logging

import sqlalchemy as sa

from app.core.exceptions import (
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    StaleStateError,
    ValidationError,
)
from app.models import db, utcnow
from app.models.audit import write_audit
from app.models.proposed_change import PROPOSED_CHANGE_STATUSES, ProposedChange
from app.models.record import Record
from app.services.field_validation import validate_record_data
from app.services.permission_service import (
    get_user_role,
    has_project_permission,
    has_required_role,
)

logger = logging.getLogger(__name__)

DECISIONS = {"approve": "approved", "reject": "rejected"}


def propose_change(record: Record, user_id: int, proposed_data, change_summary: str | None = None) -> ProposedChange:
    """
    File a pending_review proposal against a verified record.

    Requires global role ≥ analyst.  The record is not modified.
    """
    if not has_required_role(get_user_role(user_id), "analyst"):
        raise ForbiddenError("Analyst access required", required="analyst")
    if proposed_data is None:
        raise ValidationError("Missing required field: proposed_data", details={"proposed_data": "required"})
    if not isinstance(proposed_data, dict):
        raise ValidationError("proposed_data must be an object", details={"proposed_data": "must be an object"})
    if record.status != "verified":
        raise InvalidTransitionError(
            "record", "propose_change", record.status,
            reason="Can only propose edits for verified records",
        )
    validate_record_data(record.record_type, proposed_data)

    change = ProposedChange(
        record_id=record.id,
        project_id=record.project_id,
        proposed_data=proposed_data,
        change_summary=(change_summary or "").strip() or None,
        status="pending_review",
        submitted_by=user_id,
    )
    db.session.add(change)
    db.session.commit()
    logger.info(
        "Proposed change %s filed for record %s", change.id, record.id,
        extra={"user_id": user_id, "record_id": record.id},
    )
    return change


def get_change(change_id: int) -> ProposedChange:
    change = db.session.get(ProposedChange, change_id)
    if change is None:
        raise NotFoundError(resource="Proposed change", resource_id=change_id)
    return change


def list_changes(project_id: int, status: str | None = None) -> list[ProposedChange]:
    if status and status not in PROPOSED_CHANGE_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(PROPOSED_CHANGE_STATUSES)}",
                              details={"status": "invalid"})
    q = ProposedChange.query.filter_by(project_id=project_id)
    if status:
        q = q.filter_by(status=status)
    return q.order_by(ProposedChange.submitted_at.asc(), ProposedChange.id.asc()).all()


def review_change(change_id: int, reviewer_id: int, decision: str, notes: str | None = None) -> ProposedChange:
    """
    Approve or reject a pending proposal.

    The decision is a conditional UPDATE on ``status = 'pending_review'``;
    a concurrent decision that lands first makes this one a StaleStateError.
    Approval replaces the record payload in the same transaction.
    """
    if decision not in DECISIONS:
        raise ValidationError("decision must be 'approve' or 'reject'", details={"decision": "invalid"})

    change = get_change(change_id)
    if not has_project_permission(reviewer_id, change.project_id, "validate"):
        raise ForbiddenError("Access denied", required="validate")
    if change.status != "pending_review":
        raise InvalidTransitionError(
            "proposed change", decision, change.status,
            reason=f"Proposed change has already been {change.status}",
        )

    record = Record.query_active().filter_by(id=change.record_id).first()
    if record is None:
        raise NotFoundError(resource="Record", resource_id=change.record_id)
    if decision == "approve":
        validate_record_data(record.record_type, change.proposed_data)

    now = utcnow()
    new_status = DECISIONS[decision]
    values = {
        "status": new_status,
        "reviewed_by": reviewer_id,
        "reviewed_at": now,
        "review_notes": (notes or "").strip() or None,
    }
    if decision == "approve":
        values["applied_at"] = now

    stmt = (
        sa.update(ProposedChange)
        .where(ProposedChange.id == change_id, ProposedChange.status == "pending_review")
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if db.session.execute(stmt).rowcount == 0:
        db.session.rollback()
        raise StaleStateError("proposed change", decision, "pending_review")

    if decision == "approve":
        record.data = dict(change.proposed_data)
    write_audit(
        entity_type="proposed_change",
        entity_id=change_id,
        action=f"proposed_change.{decision}",
        actor_user_id=reviewer_id,
        project_id=change.project_id,
        diff={"record_id": change.record_id, "status": {"old": "pending_review", "new": new_status}},
    )
    db.session.commit()
    logger.info(
        "Proposed change %s %s", change_id, new_status,
        extra={"user_id": reviewer_id, "record_id": change.record_id},
    )
    return db.session.get(ProposedChange, change_id, populate_existing=True)
