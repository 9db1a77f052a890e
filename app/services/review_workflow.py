"""
Review pipeline — two-stage review state machine shared by incidents and
project records.

    incident:  pending ──review──▶ first_review ──review──▶ verified
    record:    pending_review ──▶ pending_validation ──▶ verified

    any pre-verified state ──reject──▶ rejected
    verified ──unpublish──▶ <initial>   (review_cycle + 1, reviewers kept)
    rejected ──reopen──▶ <initial>      (only when ALLOW_REOPEN_REJECTED)

Every transition is a single conditional UPDATE keyed on the status the
caller observed.  When two requests race, exactly one UPDATE matches a row;
the other gets ``StaleStateError``.

Authorization:
  incident steps are gated by the caller's global role, record steps by the
  caller's capability on the record's project.

Usage:
    from app.services.review_workflow import INCIDENT_PIPELINE, submit_review

    result = submit_review(INCIDENT_PIPELINE, incident_id, reviewer_id)
"""

import logging
from dataclasses import dataclass

import sqlalchemy as sa
from flask import current_app

from app.core.exceptions import (
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    StaleStateError,
    ValidationError,
)
from app.models import db, utcnow
from app.models.audit import write_audit
from app.models.auth import Project
from app.models.record import Incident, Record
from app.services.permission_service import (
    get_user_role,
    has_project_permission,
    has_required_role,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Pipeline:
    """Status vocabulary and authorization gates of one record family."""

    family: str
    label: str
    model: type
    initial: str
    first_stage: str
    gate_kind: str      # "role" | "capability"
    gates: dict
    verified: str = "verified"
    rejected: str = "rejected"

    @property
    def reviewable(self) -> tuple:
        return (self.initial, self.first_stage)


INCIDENT_PIPELINE = Pipeline(
    family="incident",
    label="Incident",
    model=Incident,
    initial="pending",
    first_stage="first_review",
    gate_kind="role",
    gates={
        "first_review": "analyst",
        "second_review": "analyst",
        "reject": "analyst",
        "unpublish": "admin",
        "reopen": "admin",
    },
)

RECORD_PIPELINE = Pipeline(
    family="record",
    label="Record",
    model=Record,
    initial="pending_review",
    first_stage="pending_validation",
    gate_kind="capability",
    gates={
        "first_review": "review",
        "second_review": "validate",
        "reject": "review",
        "unpublish": "manage_project",
        "reopen": "manage_project",
    },
)


# ── Loading & authorization ──────────────────────────────────────────────────


def load_record(pipeline: Pipeline, record_id: int):
    """Return the live (non-deleted) row or raise NotFoundError."""
    obj = db.session.get(pipeline.model, record_id)
    if obj is None or obj.deleted_at is not None:
        raise NotFoundError(
            resource=pipeline.label, resource_id=record_id,
            message=f"{pipeline.label} not found",
        )
    return obj


def _project_of(obj) -> Project | None:
    if obj.project_id is None:
        return None
    return db.session.get(Project, obj.project_id)


def _gate_for(pipeline: Pipeline, obj, step: str) -> str:
    gate = pipeline.gates[step]
    if pipeline.family == "record" and step == "second_review":
        project = _project_of(obj)
        if project is not None and not project.require_validation:
            return pipeline.gates["first_review"]
    return gate


def can_perform(pipeline: Pipeline, obj, user_id: int | None, step: str) -> bool:
    gate = _gate_for(pipeline, obj, step)
    if pipeline.gate_kind == "role":
        return has_required_role(get_user_role(user_id), gate)
    return has_project_permission(user_id, obj.project_id, gate)


def _authorize(pipeline: Pipeline, obj, user_id: int | None, step: str) -> None:
    if not can_perform(pipeline, obj, user_id, step):
        gate = _gate_for(pipeline, obj, step)
        logger.warning(
            "Review step '%s' denied on %s %s (requires %s)",
            step, pipeline.family, obj.id, gate,
            extra={"user_id": user_id, "record_id": obj.id},
        )
        if pipeline.gate_kind == "role":
            raise ForbiddenError(f"{gate.capitalize()} access required", required=gate)
        raise ForbiddenError("Access denied", required=gate)


def requires_different_validator(pipeline: Pipeline, obj) -> bool:
    project = _project_of(obj)
    if project is not None:
        return bool(project.require_different_validator)
    return bool(current_app.config.get("REQUIRE_DIFFERENT_VALIDATOR_DEFAULT", False))


# ── Conditional update ───────────────────────────────────────────────────────


def _conditional_update(pipeline: Pipeline, record_id: int, expected_status: str,
                        values: dict, *extra_conditions) -> int:
    """UPDATE … WHERE id = :id AND status = :expected AND deleted_at IS NULL."""
    model = pipeline.model
    db.session.flush()
    stmt = (
        sa.update(model)
        .where(
            model.id == record_id,
            model.status == expected_status,
            model.deleted_at.is_(None),
            *extra_conditions,
        )
        .values(**values, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return db.session.execute(stmt).rowcount


def _reload(pipeline: Pipeline, record_id: int):
    return db.session.get(pipeline.model, record_id, populate_existing=True)


def _audit(pipeline: Pipeline, obj, action: str, actor_id: int | None, diff: dict) -> None:
    write_audit(
        entity_type=pipeline.family,
        entity_id=obj.id,
        action=f"{pipeline.family}.{action}",
        actor_user_id=actor_id,
        project_id=obj.project_id,
        diff=diff,
    )


# ═════════════════════════════════════════════════════════════════════════════
# Transitions
# ═════════════════════════════════════════════════════════════════════════════


def submit_review(pipeline: Pipeline, record_id: int, reviewer_id: int) -> dict:
    """
    Advance the record by exactly one review stage.

    initial → first_stage sets first_reviewed_by/at; first_stage → verified
    sets second_reviewed_by/at.  Any other status is InvalidTransition.

    Returns:
        {"record": <obj>, "status": str, "message": str}
    """
    obj = load_record(pipeline, record_id)
    current = obj.status
    now = utcnow()

    if current == pipeline.initial:
        step = "first_review"
        _authorize(pipeline, obj, reviewer_id, step)
        target = pipeline.first_stage
        values = {
            "status": target,
            "first_reviewed_by": reviewer_id,
            "first_reviewed_at": now,
        }
        conditions = ()
        message = "First review submitted. Awaiting second review."
    elif current == pipeline.first_stage:
        step = "second_review"
        _authorize(pipeline, obj, reviewer_id, step)
        different = requires_different_validator(pipeline, obj)
        if different and obj.first_reviewed_by == reviewer_id:
            raise InvalidTransitionError(
                pipeline.family, "review", current,
                reason="Second review must be performed by a different reviewer",
            )
        target = pipeline.verified
        values = {
            "status": target,
            "second_reviewed_by": reviewer_id,
            "second_reviewed_at": now,
        }
        conditions = [pipeline.model.first_reviewed_at.isnot(None)]
        if different:
            conditions.append(pipeline.model.first_reviewed_by != reviewer_id)
        message = f"Second review submitted. {pipeline.label} verified."
    else:
        raise InvalidTransitionError(
            pipeline.family, "review", current,
            reason=f"Cannot review {pipeline.family} with status: {current}",
        )

    if _conditional_update(pipeline, record_id, current, values, *conditions) == 0:
        db.session.rollback()
        logger.info(
            "Stale review on %s %s (expected %s)", pipeline.family, record_id, current,
            extra={"user_id": reviewer_id, "record_id": record_id},
        )
        raise StaleStateError(pipeline.family, "review", current)

    obj = _reload(pipeline, record_id)
    _audit(pipeline, obj, step, reviewer_id, {"status": {"old": current, "new": target}})
    db.session.commit()
    logger.info(
        "%s %s: %s → %s", pipeline.label, record_id, current, target,
        extra={"user_id": reviewer_id, "record_id": record_id, "event_type": step},
    )
    return {"record": obj, "status": target, "message": message}


def unpublish(pipeline: Pipeline, record_id: int, actor_id: int, reason: str | None):
    """
    Return a verified record to the start of the pipeline.

    Increments review_cycle (COALESCE(review_cycle, 1) + 1) and keeps the
    previous reviewer columns.  The audit row is best-effort: a failure to
    write it is logged and does not undo the unpublish.
    """
    if not reason or not str(reason).strip():
        raise ValidationError("Reason for unpublishing is required", details={"reason": "required"})
    reason = str(reason).strip()

    obj = load_record(pipeline, record_id)
    _authorize(pipeline, obj, actor_id, "unpublish")
    if obj.status != pipeline.verified:
        raise InvalidTransitionError(
            pipeline.family, "unpublish", obj.status,
            reason=(
                f"Cannot unpublish case with status: {obj.status}. "
                f"Only verified cases can be unpublished."
            ),
        )

    model = pipeline.model
    rows = _conditional_update(
        pipeline, record_id, pipeline.verified,
        {
            "status": pipeline.initial,
            "review_cycle": sa.func.coalesce(model.review_cycle, 1) + 1,
        },
    )
    if rows == 0:
        db.session.rollback()
        raise StaleStateError(pipeline.family, "unpublish", pipeline.verified)

    obj = _reload(pipeline, record_id)
    try:
        with db.session.begin_nested():
            _audit(pipeline, obj, "unpublish", actor_id, {
                "status": {"old": pipeline.verified, "new": pipeline.initial},
                "reason": reason,
                "review_cycle": obj.review_cycle,
            })
    except Exception:
        logger.warning(
            "Could not write unpublish audit entry for %s %s", pipeline.family, record_id,
            exc_info=True, extra={"record_id": record_id},
        )
    db.session.commit()
    logger.info(
        "%s %s unpublished (cycle %s)", pipeline.label, record_id, obj.review_cycle,
        extra={"user_id": actor_id, "record_id": record_id, "event_type": "unpublish"},
    )
    return obj


def reject(pipeline: Pipeline, record_id: int, actor_id: int, reason: str | None = None):
    """Move a pre-verified record to ``rejected``."""
    obj = load_record(pipeline, record_id)
    _authorize(pipeline, obj, actor_id, "reject")
    current = obj.status
    if current not in pipeline.reviewable:
        raise InvalidTransitionError(
            pipeline.family, "reject", current,
            reason=f"Cannot reject {pipeline.family} with status: {current}",
        )

    rows = _conditional_update(pipeline, record_id, current, {
        "status": pipeline.rejected,
        "rejected_by": actor_id,
        "rejected_at": utcnow(),
        "rejection_reason": (reason or "").strip() or None,
    })
    if rows == 0:
        db.session.rollback()
        raise StaleStateError(pipeline.family, "reject", current)

    obj = _reload(pipeline, record_id)
    _audit(pipeline, obj, "reject", actor_id, {
        "status": {"old": current, "new": pipeline.rejected},
        "reason": obj.rejection_reason,
    })
    db.session.commit()
    logger.info(
        "%s %s rejected", pipeline.label, record_id,
        extra={"user_id": actor_id, "record_id": record_id, "event_type": "reject"},
    )
    return obj


def reopen(pipeline: Pipeline, record_id: int, actor_id: int):
    """Return a rejected record to the start of the pipeline (config-gated)."""
    obj = load_record(pipeline, record_id)
    if not current_app.config.get("ALLOW_REOPEN_REJECTED", False):
        raise InvalidTransitionError(
            pipeline.family, "reopen", obj.status,
            reason="Rejected records cannot be reopened",
        )
    _authorize(pipeline, obj, actor_id, "reopen")
    if obj.status != pipeline.rejected:
        raise InvalidTransitionError(
            pipeline.family, "reopen", obj.status,
            reason=f"Only rejected records can be reopened (status: {obj.status})",
        )

    model = pipeline.model
    rows = _conditional_update(pipeline, record_id, pipeline.rejected, {
        "status": pipeline.initial,
        "review_cycle": sa.func.coalesce(model.review_cycle, 1) + 1,
    })
    if rows == 0:
        db.session.rollback()
        raise StaleStateError(pipeline.family, "reopen", pipeline.rejected)

    obj = _reload(pipeline, record_id)
    _audit(pipeline, obj, "reopen", actor_id, {
        "status": {"old": pipeline.rejected, "new": pipeline.initial},
    })
    db.session.commit()
    return obj


def review_queue(pipeline: Pipeline, *, project_id: int | None = None, limit: int = 100) -> list:
    """Non-deleted records awaiting a review step, oldest first."""
    model = pipeline.model
    q = model.query_active().filter(model.status.in_(pipeline.reviewable))
    if project_id is not None:
        q = q.filter(model.project_id == project_id)
    return q.order_by(model.created_at.asc(), model.id.asc()).limit(limit).all()


# ── Field-level verification ─────────────────────────────────────────────────


def set_field_verification(obj, field_slug: str, verified: bool, user_id: int, *, entity_type: str) -> dict:
    """
    Toggle one field's provenance entry in ``verified_fields`` without
    touching the record status.  Un-verifying removes the key.

    Caller has already checked the ``validate`` capability and that the
    field exists.  Commits.
    """
    fields = dict(obj.verified_fields or {})
    if verified:
        fields[field_slug] = {
            "verified": True,
            "by": user_id,
            "at": utcnow().isoformat(),
        }
    else:
        fields.pop(field_slug, None)
    obj.verified_fields = fields

    write_audit(
        entity_type=entity_type,
        entity_id=obj.id,
        action=f"{entity_type}.{'verify_field' if verified else 'unverify_field'}",
        actor_user_id=user_id,
        project_id=obj.project_id,
        diff={"field": field_slug, "verified": verified},
    )
    db.session.commit()
    return fields.get(field_slug)
