"""
Edit suggestions for verified incidents.

Any signed-in user may suggest a new value for one field of a verified
incident (``title``, ``summary`` or an existing payload key).  Two different
analysts must approve before the value is written; the suggester can never
review their own suggestion and a rejection at either stage is final.

Every decision is a conditional UPDATE on the status the reviewer saw, so
two analysts racing on the same suggestion cannot both win.
"""

import logging

import sqlalchemy as sa

from app.core.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    StaleStateError,
    ValidationError,
)
from app.models import db, utcnow
from app.models.audit import write_audit
from app.models.edit_suggestion import (
    EDIT_SUGGESTION_STATUSES,
    OPEN_SUGGESTION_STATUSES,
    EditSuggestion,
)
from app.models.record import Incident
from app.services import review_workflow as wf
from app.services.permission_service import get_user_role, has_required_role

logger = logging.getLogger(__name__)

# Incident columns that accept suggestions; anything else must be a payload key
SUGGESTIBLE_COLUMNS = ("title", "summary")

# status=needs_review is the union of both open stages
LIST_FILTERS = ("all", "needs_review") + EDIT_SUGGESTION_STATUSES


def _current_value(incident: Incident, field_name: str):
    if field_name in SUGGESTIBLE_COLUMNS:
        return getattr(incident, field_name)
    payload = incident.payload or {}
    if field_name not in payload:
        raise ValidationError(
            f"Field '{field_name}' does not exist on this incident",
            details={"fieldName": "unknown field"},
        )
    return payload[field_name]


def _check_value(field_name: str, value) -> None:
    if field_name == "title" and (not isinstance(value, str) or not value.strip()):
        raise ValidationError("title must be a non-empty string", details={"suggestedValue": "invalid"})
    if field_name == "summary" and value is not None and not isinstance(value, str):
        raise ValidationError("summary must be a string", details={"suggestedValue": "invalid"})


def _apply(incident: Incident, field_name: str, value) -> None:
    if field_name in SUGGESTIBLE_COLUMNS:
        setattr(incident, field_name, value.strip() if field_name == "title" else value)
    else:
        payload = dict(incident.payload or {})
        payload[field_name] = value
        incident.payload = payload


# ═════════════════════════════════════════════════════════════════════════════
# Suggest & read
# ═════════════════════════════════════════════════════════════════════════════


def suggest_edit(incident_id: int, user_id: int, data: dict) -> EditSuggestion:
    """
    File a pending suggestion.  ``data`` carries fieldName, suggestedValue
    (null is a legal value, a missing key is not) and an optional reason.

    An identical open suggestion for the same field is a ConflictError.
    """
    field_name = (data.get("fieldName") or "").strip()
    if not field_name or "suggestedValue" not in data:
        raise ValidationError(
            "Field name and suggested value are required",
            details={"fieldName": "required", "suggestedValue": "required"},
        )
    suggested_value = data["suggestedValue"]

    incident = wf.load_record(wf.INCIDENT_PIPELINE, incident_id)
    if incident.status != wf.INCIDENT_PIPELINE.verified:
        raise InvalidTransitionError(
            "incident", "suggest_edit", incident.status,
            reason="Edits can only be suggested for verified incidents",
        )
    current_value = _current_value(incident, field_name)
    _check_value(field_name, suggested_value)

    open_same_field = EditSuggestion.query.filter(
        EditSuggestion.incident_id == incident_id,
        EditSuggestion.field_name == field_name,
        EditSuggestion.status.in_(OPEN_SUGGESTION_STATUSES),
    ).all()
    if any(s.suggested_value == suggested_value for s in open_same_field):
        raise ConflictError("Edit suggestion", "fieldName", field_name)

    suggestion = EditSuggestion(
        incident_id=incident_id,
        suggested_by=user_id,
        field_name=field_name,
        current_value=current_value,
        suggested_value=suggested_value,
        reason=(data.get("reason") or "").strip() or None,
        status="pending",
    )
    db.session.add(suggestion)
    db.session.flush()
    write_audit(
        entity_type="edit_suggestion", entity_id=suggestion.id, action="edit_suggestion.create",
        actor_user_id=user_id, project_id=incident.project_id,
        diff={"incident_id": incident_id, "field": field_name},
    )
    db.session.commit()
    logger.info(
        "Edit suggestion %s filed for incident %s (%s)", suggestion.id, incident_id, field_name,
        extra={"user_id": user_id, "record_id": incident_id},
    )
    return suggestion


def get_suggestion(suggestion_id: int) -> EditSuggestion:
    suggestion = db.session.get(EditSuggestion, suggestion_id)
    if suggestion is None:
        raise NotFoundError(resource="Suggestion", resource_id=suggestion_id)
    return suggestion


def list_for_incident(incident_id: int) -> list[EditSuggestion]:
    return (
        EditSuggestion.query.filter_by(incident_id=incident_id)
        .order_by(EditSuggestion.created_at.desc(), EditSuggestion.id.desc())
        .all()
    )


def list_suggestions(status: str | None = "pending", *, limit: int = 100) -> dict:
    """Suggestions by status (newest first) plus a count per status."""
    status = status or "pending"
    if status not in LIST_FILTERS:
        raise ValidationError(f"status must be one of: {', '.join(LIST_FILTERS)}",
                              details={"status": "invalid"})
    q = EditSuggestion.query
    if status == "needs_review":
        q = q.filter(EditSuggestion.status.in_(OPEN_SUGGESTION_STATUSES))
    elif status != "all":
        q = q.filter(EditSuggestion.status == status)
    items = (
        q.order_by(EditSuggestion.created_at.desc(), EditSuggestion.id.desc())
        .limit(max(1, min(limit, 200)))
        .all()
    )

    counts = dict(
        db.session.query(EditSuggestion.status, sa.func.count(EditSuggestion.id))
        .group_by(EditSuggestion.status)
        .all()
    )
    stats = {s: counts.get(s, 0) for s in EDIT_SUGGESTION_STATUSES}
    stats["total"] = sum(stats.values())
    return {"items": items, "stats": stats}


# ═════════════════════════════════════════════════════════════════════════════
# Two-analyst review
# ═════════════════════════════════════════════════════════════════════════════


def _conditional_update(suggestion_id: int, expected_status: str, values: dict, *extra_conditions) -> int:
    stmt = (
        sa.update(EditSuggestion)
        .where(
            EditSuggestion.id == suggestion_id,
            EditSuggestion.status == expected_status,
            *extra_conditions,
        )
        .values(**values, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return db.session.execute(stmt).rowcount


def review_suggestion(suggestion_id: int, reviewer_id: int, approved, notes: str | None = None) -> dict:
    """
    Record one analyst decision.

    pending → first_review on the first approval; first_review → approved on
    a second approval by a different analyst, which writes the value into the
    incident in the same transaction.  Rejection from either open stage is
    terminal.

    Returns:
        {"suggestion": <EditSuggestion>, "outcome": "first_review" | "approved" | "rejected"}
    """
    if not isinstance(approved, bool):
        raise ValidationError("approved must be true or false", details={"approved": "must be boolean"})
    if not has_required_role(get_user_role(reviewer_id), "analyst"):
        raise ForbiddenError("Analyst access required", required="analyst")

    suggestion = get_suggestion(suggestion_id)
    if suggestion.suggested_by == reviewer_id:
        raise ForbiddenError("You cannot review your own suggestion")
    if suggestion.first_reviewed_by == reviewer_id:
        raise ForbiddenError("You have already reviewed this suggestion")
    current = suggestion.status
    if current not in OPEN_SUGGESTION_STATUSES:
        raise InvalidTransitionError(
            "edit suggestion", "review", current,
            reason="This suggestion has already been finalized",
        )

    now = utcnow()
    notes = (notes or "").strip() or None
    conditions = ()
    incident = None
    if current == "pending":
        values = {
            "first_reviewed_by": reviewer_id,
            "first_reviewed_at": now,
            "first_review_notes": notes,
            "first_review_decision": "approve" if approved else "reject",
        }
    else:
        values = {
            "second_reviewed_by": reviewer_id,
            "second_reviewed_at": now,
            "second_review_notes": notes,
        }
        conditions = (EditSuggestion.first_reviewed_by != reviewer_id,)

    if not approved:
        outcome = "rejected"
    elif current == "pending":
        outcome = "first_review"
    else:
        outcome = "approved"
        values["applied_at"] = now
        incident = wf.load_record(wf.INCIDENT_PIPELINE, suggestion.incident_id)
    values["status"] = outcome

    if _conditional_update(suggestion_id, current, values, *conditions) == 0:
        db.session.rollback()
        logger.info(
            "Stale review on edit suggestion %s (expected %s)", suggestion_id, current,
            extra={"user_id": reviewer_id},
        )
        raise StaleStateError("edit suggestion", "review", current)

    diff = {"incident_id": suggestion.incident_id, "status": {"old": current, "new": outcome}}
    if incident is not None:
        old_value = _current_value(incident, suggestion.field_name)
        _apply(incident, suggestion.field_name, suggestion.suggested_value)
        diff["field"] = {"name": suggestion.field_name, "old": old_value, "new": suggestion.suggested_value}
    action = {"first_review": "first_review", "approved": "approve", "rejected": "reject"}[outcome]
    write_audit(
        entity_type="edit_suggestion", entity_id=suggestion_id, action=f"edit_suggestion.{action}",
        actor_user_id=reviewer_id, diff=diff,
    )
    db.session.commit()
    logger.info(
        "Edit suggestion %s: %s → %s", suggestion_id, current, outcome,
        extra={"user_id": reviewer_id, "record_id": suggestion.incident_id},
    )
    return {
        "suggestion": db.session.get(EditSuggestion, suggestion_id, populate_existing=True),
        "outcome": outcome,
    }
