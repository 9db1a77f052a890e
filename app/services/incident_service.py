"""
Incident intake and field-level provenance.

Incidents are reviewed through INCIDENT_PIPELINE (app.services.review_workflow);
this module only creates them, lists and reads them with role-aware visibility and
toggles verified fields.
"""

import logging
import uuid

import sqlalchemy as sa

from app.core.exceptions import NotFoundError, ValidationError
from app.models import db
from app.models.audit import write_audit
from app.models.auth import Project
from app.models.record import INCIDENT_STATUSES, Incident
from app.services import review_workflow as wf
from app.services.permission_service import get_user_role, has_required_role

logger = logging.getLogger(__name__)

# Top-level columns that can carry a verified flag besides payload keys
_INCIDENT_FIELDS = ("title", "summary")


def create_incident(user_id: int, data: dict) -> Incident:
    title = (data.get("title") or "").strip()
    if not title:
        raise ValidationError("Missing required field: title", details={"title": "required"})
    payload = data.get("payload") or {}
    if not isinstance(payload, dict):
        raise ValidationError("payload must be an object", details={"payload": "must be an object"})

    project_id = data.get("project_id")
    if project_id is not None:
        project = db.session.get(Project, project_id)
        if project is None or project.is_deleted:
            raise NotFoundError(resource="Project", resource_id=project_id)

    incident = Incident(
        title=title,
        summary=data.get("summary"),
        payload=payload,
        project_id=project_id,
        reference=data.get("reference") or f"INC-{uuid.uuid4().hex[:8].upper()}",
        status=wf.INCIDENT_PIPELINE.initial,
        created_by=user_id,
    )
    db.session.add(incident)
    db.session.flush()
    write_audit(
        entity_type="incident", entity_id=incident.id, action="incident.create",
        actor_user_id=user_id, project_id=project_id,
    )
    db.session.commit()
    logger.info("Incident %s created", incident.id, extra={"user_id": user_id, "record_id": incident.id})
    return incident


def get_incident(incident_id: int, user_id: int | None) -> Incident:
    """Unverified incidents are only visible to analysts and above."""
    incident = wf.load_record(wf.INCIDENT_PIPELINE, incident_id)
    if incident.status != "verified" and not has_required_role(get_user_role(user_id), "analyst"):
        raise NotFoundError(resource="Incident", resource_id=incident_id, message="Incident not found")
    return incident


def list_incidents(
    user_id: int | None,
    *,
    status: str | None = None,
    search: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> dict:
    """Newest first; callers below analyst only ever see verified incidents."""
    if status and status not in INCIDENT_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(INCIDENT_STATUSES)}",
                              details={"status": "invalid"})
    q = Incident.query_active()
    if not has_required_role(get_user_role(user_id), "analyst"):
        q = q.filter(Incident.status == "verified")
    elif status:
        q = q.filter(Incident.status == status)
    if search:
        pattern = f"%{search.strip()}%"
        q = q.filter(sa.or_(Incident.title.ilike(pattern), Incident.summary.ilike(pattern)))

    limit = max(1, min(limit, 200))
    offset = max(0, offset)
    total = q.count()
    items = (
        q.order_by(Incident.created_at.desc(), Incident.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return {"items": [i.to_dict() for i in items], "total": total, "limit": limit, "offset": offset}


def verify_field(incident_id: int, user_id: int, field_slug, verified) -> dict:
    if not field_slug:
        raise ValidationError("Missing required field: fieldSlug", details={"fieldSlug": "required"})
    if not isinstance(verified, bool):
        raise ValidationError("verified must be true or false", details={"verified": "must be boolean"})

    incident = wf.load_record(wf.INCIDENT_PIPELINE, incident_id)
    if field_slug not in _INCIDENT_FIELDS and field_slug not in (incident.payload or {}):
        raise NotFoundError(resource="Field", resource_id=field_slug, message="Field not found")

    entry = wf.set_field_verification(incident, field_slug, verified, user_id, entity_type="incident")
    return {"incident": incident.to_dict(), "verifiedField": field_slug, "verified": verified, "entry": entry}
