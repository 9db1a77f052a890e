"""
Project record store — create / read / merge / soft delete, plus the
field-level verification toggle.

Status changes are never written here directly: a PATCH carrying
``status`` is routed through app.services.review_workflow so the same
conditional-update rules apply as for the dedicated review endpoints.
"""

import logging

from app.core.exceptions import (
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from app.models import db
from app.models.audit import write_audit
from app.models.record import RECORD_STATUSES, FieldDefinition, Record, RecordType
from app.services import review_workflow as wf
from app.services.field_validation import validate_record_data
from app.services.permission_service import ProjectAccess

logger = logging.getLogger(__name__)

# Capabilities that let a member see records that are not yet verified
_SEES_UNPUBLISHED = ("analyze", "review", "validate", "manage_records")


def _require(access: ProjectAccess, capability: str) -> None:
    if not access.can(capability):
        raise ForbiddenError("Access denied", required=capability)


def can_see_unpublished(access: ProjectAccess) -> bool:
    return any(access.can(c) for c in _SEES_UNPUBLISHED)


def get_record_type(project_id: int, slug: str) -> RecordType:
    rtype = RecordType.query.filter_by(project_id=project_id, slug=slug).first()
    if rtype is None:
        raise NotFoundError(resource="Record type", resource_id=slug)
    return rtype


def get_record(access: ProjectAccess, record_id: int) -> Record:
    """Live record of the access's project, hidden from viewers until verified."""
    record = Record.query_active().filter_by(id=record_id, project_id=access.project.id).first()
    if record is None:
        raise NotFoundError(resource="Record", resource_id=record_id)
    if record.status != "verified" and not can_see_unpublished(access):
        raise NotFoundError(resource="Record", resource_id=record_id)
    return record


def list_records(
    access: ProjectAccess,
    *,
    status: str | None = None,
    record_type: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> dict:
    q = Record.query_active().filter(Record.project_id == access.project.id)
    if status and status not in RECORD_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(RECORD_STATUSES)}",
                              details={"status": "invalid"})
    if not can_see_unpublished(access):
        q = q.filter(Record.status == "verified")
    elif status:
        q = q.filter(Record.status == status)
    if record_type:
        rtype = get_record_type(access.project.id, record_type)
        q = q.filter(Record.record_type_id == rtype.id)

    limit = max(1, min(limit, 200))
    offset = max(0, offset)
    total = q.count()
    items = (
        q.order_by(Record.created_at.desc(), Record.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return {"items": [r.to_dict() for r in items], "total": total, "limit": limit, "offset": offset}


def create_record(access: ProjectAccess, user_id: int, record_type_slug: str | None, data) -> Record:
    _require(access, "upload")
    if not record_type_slug:
        raise ValidationError("Missing required field: record_type", details={"record_type": "required"})
    rtype = get_record_type(access.project.id, record_type_slug)
    validate_record_data(rtype, data or {})

    record = Record(
        project_id=access.project.id,
        record_type_id=rtype.id,
        data=dict(data or {}),
        status=wf.RECORD_PIPELINE.initial,
        created_by=user_id,
    )
    db.session.add(record)
    db.session.flush()
    write_audit(
        entity_type="record", entity_id=record.id, action="record.create",
        actor_user_id=user_id, project_id=access.project.id,
        diff={"record_type": rtype.slug},
    )
    db.session.commit()
    logger.info("Record %s created", record.id,
                extra={"user_id": user_id, "project_id": access.project.id, "record_id": record.id})
    return record


def _status_route(record: Record, target: str):
    """
    Pick the review-pipeline step that moves *record* to *target*.

    Returns a callable ``(record_id, user_id, reason)`` or None when the
    record is already there.  Raises InvalidTransitionError before anything
    has been written.
    """
    if target not in RECORD_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(RECORD_STATUSES)}",
                              details={"status": "invalid"})
    pipeline = wf.RECORD_PIPELINE
    current = record.status
    if target == current:
        return None
    if target == pipeline.first_stage and current == pipeline.initial:
        return lambda rid, uid, reason: wf.submit_review(pipeline, rid, uid)
    if target == pipeline.verified and current == pipeline.first_stage:
        return lambda rid, uid, reason: wf.submit_review(pipeline, rid, uid)
    if target == pipeline.rejected:
        return lambda rid, uid, reason: wf.reject(pipeline, rid, uid, reason)
    if target == pipeline.initial and current == pipeline.verified:
        return lambda rid, uid, reason: wf.unpublish(pipeline, rid, uid, reason)
    if target == pipeline.initial and current == pipeline.rejected:
        return lambda rid, uid, reason: wf.reopen(pipeline, rid, uid)
    raise InvalidTransitionError(
        "record", "update", current,
        reason=f"Cannot change record status from {current} to {target}",
    )


def update_record(access: ProjectAccess, record: Record, user_id: int, payload: dict) -> Record:
    """
    Merge ``payload["data"]`` into the record and/or route ``payload["status"]``
    through the review pipeline.  Verified records change only through
    proposed changes.

    A request carrying both is one transaction: the merge is flushed and
    committed by the pipeline step, or rolled back with it when the step fails.
    """
    data = payload.get("data")
    status = payload.get("status")
    if data is None and status is None:
        raise ValidationError("Nothing to update", details={"data": "or status required"})

    if data is not None:
        _require(access, "manage_records")
        if record.status == "verified":
            raise InvalidTransitionError(
                "record", "edit", record.status,
                reason="Verified records can only be changed through a proposed change",
            )
        validate_record_data(record.record_type, data, partial=True)
    step = _status_route(record, status) if status is not None else None

    try:
        if data is not None:
            merged = dict(record.data or {})
            merged.update(data)
            record.data = merged
            write_audit(
                entity_type="record", entity_id=record.id, action="record.update",
                actor_user_id=user_id, project_id=record.project_id,
                diff={"fields": sorted(data.keys())},
            )
        if step is not None:
            step(record.id, user_id, payload.get("reason"))
            record = wf.load_record(wf.RECORD_PIPELINE, record.id)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return record


def delete_record(access: ProjectAccess, record: Record, user_id: int) -> None:
    _require(access, "delete_records")
    record.soft_delete()
    write_audit(
        entity_type="record", entity_id=record.id, action="record.delete",
        actor_user_id=user_id, project_id=record.project_id,
    )
    db.session.commit()
    logger.info("Record %s soft-deleted", record.id,
                extra={"user_id": user_id, "record_id": record.id})


def verify_field(access: ProjectAccess, record: Record, user_id: int, field_slug, verified) -> dict:
    """Toggle the provenance entry of one field; record status is untouched."""
    _require(access, "validate")
    if not field_slug:
        raise ValidationError("Missing required field: fieldSlug", details={"fieldSlug": "required"})
    if not isinstance(verified, bool):
        raise ValidationError("verified must be true or false", details={"verified": "must be boolean"})

    field = FieldDefinition.query.filter_by(
        record_type_id=record.record_type_id, slug=field_slug,
    ).first()
    if field is None:
        raise NotFoundError(resource="Field", resource_id=field_slug, message="Field not found")

    entry = wf.set_field_verification(record, field_slug, verified, user_id, entity_type="record")
    return {"record": record.to_dict(), "verifiedField": field_slug, "verified": verified, "entry": entry}
