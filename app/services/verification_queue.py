"""
Third-party verification queue.

    pending ──claim──▶ in_progress ──complete──▶ approved
                                   └──reject───▶ rejected

A claim is an assignment, not a lease: nothing releases an abandoned
in_progress request.  Capacity is tracked in ``verifier_stats.current_assigned``
and enforced with a conditional UPDATE, as is the pending → in_progress step,
so two verifiers racing for one request cannot both win and one verifier
racing against themselves cannot exceed their limit.
"""

import logging

import sqlalchemy as sa

from app.core.exceptions import (
    AlreadyAssignedError,
    AtCapacityError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    QuotaExceededError,
    ValidationError,
)
from app.models import db, utcnow
from app.models.auth import Project, User
from app.models.record import Record
from app.models.verification import (
    PRIORITIES,
    VERIFICATION_RESULTS,
    VERIFICATION_SCOPES,
    VERIFIED_BY_THIRD_PARTY_LEVEL,
    VerificationHistory,
    VerificationRequest,
    VerifierStats,
)
from app.services.permission_service import ProjectAccess

logger = logging.getLogger(__name__)

OPEN_STATUSES = ("pending", "in_progress")

_PRIORITY_ORDER = sa.case(
    {p: i for i, p in enumerate(PRIORITIES)},
    value=VerificationRequest.priority,
    else_=len(PRIORITIES),
)


def _history(request_id: int, action: str, user_id: int | None, details: dict | None = None) -> None:
    db.session.add(VerificationHistory(
        request_id=request_id,
        action=action,
        performed_by=user_id,
        details=details or {},
    ))


def _require_verifier(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None or not user.is_verifier or not user.is_active:
        raise ForbiddenError("Verifier access required", required="is_verifier")
    return user


def _stats_for(user_id: int) -> VerifierStats:
    stats = db.session.get(VerifierStats, user_id)
    if stats is None:
        stats = VerifierStats(user_id=user_id, current_assigned=0)
        db.session.add(stats)
        db.session.flush()
    return stats


def _month_start(now):
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


# ═════════════════════════════════════════════════════════════════════════════
# Requesting
# ═════════════════════════════════════════════════════════════════════════════


def request_verification(access: ProjectAccess, record: Record, user_id: int, payload: dict) -> VerificationRequest:
    """
    Queue a verified record for third-party verification.

    Preconditions: record verified; no open request for the record; caller is
    owner or a member with ``can_request_verification``; monthly quota left.
    """
    membership = access.membership
    if not (access.is_owner or (membership is not None and membership.can_request_verification)):
        raise ForbiddenError("You do not have permission to request verification")

    priority = payload.get("priority") or "normal"
    scope = payload.get("verification_scope") or "record"
    if priority not in PRIORITIES:
        raise ValidationError(f"priority must be one of: {', '.join(PRIORITIES)}",
                              details={"priority": "invalid"})
    if scope not in VERIFICATION_SCOPES:
        raise ValidationError(f"verification_scope must be one of: {', '.join(VERIFICATION_SCOPES)}",
                              details={"verification_scope": "invalid"})
    items = payload.get("items_to_verify")
    if scope == "data" and not items:
        raise ValidationError("items_to_verify is required for data verification",
                              details={"items_to_verify": "required"})

    if record.status != "verified":
        raise InvalidTransitionError(
            "record", "request_verification", record.status,
            reason="Only verified records can be submitted for third-party verification",
        )

    open_request = VerificationRequest.query.filter(
        VerificationRequest.record_id == record.id,
        VerificationRequest.status.in_(OPEN_STATUSES),
    ).first()
    if open_request is not None:
        raise InvalidTransitionError(
            "verification request", "request", open_request.status,
            reason="A verification request is already open for this record",
        )

    project = access.project
    now = utcnow()
    month_start = _month_start(now)
    if project.verification_quota_reset_at is None or project.verification_quota_reset_at < month_start:
        project.verification_quota_used = 0
        project.verification_quota_reset_at = month_start
        db.session.flush()

    quota = project.verification_quota_monthly
    if membership is not None and membership.verification_quota_override is not None and not access.is_owner:
        quota = membership.verification_quota_override

    stmt = (
        sa.update(Project)
        .where(Project.id == project.id, Project.verification_quota_used < quota)
        .values(verification_quota_used=Project.verification_quota_used + 1)
        .execution_options(synchronize_session=False)
    )
    if db.session.execute(stmt).rowcount == 0:
        db.session.rollback()
        raise QuotaExceededError(quota)

    req = VerificationRequest(
        project_id=project.id,
        record_id=record.id,
        requested_by=user_id,
        status="pending",
        priority=priority,
        verification_scope=scope,
        items_to_verify=items,
        request_notes=(payload.get("request_notes") or "").strip() or None,
    )
    db.session.add(req)
    db.session.flush()
    _history(req.id, "requested", user_id, {"priority": priority, "scope": scope})
    db.session.commit()
    logger.info(
        "Verification request %s queued for record %s", req.id, record.id,
        extra={"user_id": user_id, "project_id": project.id, "record_id": record.id},
    )
    return req


# ═════════════════════════════════════════════════════════════════════════════
# Queue reads
# ═════════════════════════════════════════════════════════════════════════════


def list_queue(user_id: int, status: str = "pending", limit: int = 50) -> list[VerificationRequest]:
    """Pending queue (urgent first, then oldest) or the caller's own assignments."""
    _require_verifier(user_id)
    q = VerificationRequest.query.filter(VerificationRequest.status == status)
    if status != "pending":
        q = q.filter(VerificationRequest.assigned_to == user_id)
    return (
        q.order_by(_PRIORITY_ORDER, VerificationRequest.created_at.asc(), VerificationRequest.id.asc())
        .limit(limit)
        .all()
    )


def get_request(request_id: int) -> VerificationRequest:
    req = db.session.get(VerificationRequest, request_id)
    if req is None:
        raise NotFoundError(resource="Verification request", resource_id=request_id,
                            message="Request not found")
    return req


def get_assigned_request(request_id: int, user_id: int) -> VerificationRequest:
    _require_verifier(user_id)
    req = db.session.get(VerificationRequest, request_id)
    if req is None or req.assigned_to != user_id:
        raise NotFoundError(resource="Verification request", resource_id=request_id,
                            message="Request not found")
    return req


def get_stats(user_id: int) -> VerifierStats:
    _require_verifier(user_id)
    stats = _stats_for(user_id)
    db.session.commit()
    return stats


def get_history(request_id: int) -> list[VerificationHistory]:
    return (
        VerificationHistory.query.filter_by(request_id=request_id)
        .order_by(VerificationHistory.created_at.asc(), VerificationHistory.id.asc())
        .all()
    )


# ═════════════════════════════════════════════════════════════════════════════
# Claim / reject / complete
# ═════════════════════════════════════════════════════════════════════════════


def claim(request_id: int, user_id: int) -> VerificationRequest:
    """
    Self-assign a pending request.

    Raises:
        ForbiddenError: caller is not a verifier.
        AtCapacityError: current_assigned >= verifier_max_concurrent.
        NotFoundError: unknown request.
        AlreadyAssignedError: request no longer pending / already assigned.
    """
    user = _require_verifier(user_id)
    stats = _stats_for(user_id)
    maximum = user.verifier_max_concurrent
    if stats.current_assigned >= maximum:
        raise AtCapacityError(stats.current_assigned, maximum)

    req = get_request(request_id)
    if req.status != "pending":
        raise AlreadyAssignedError("Request is not available")
    if req.assigned_to is not None:
        raise AlreadyAssignedError("Request is already assigned")

    now = utcnow()
    capacity = (
        sa.update(VerifierStats)
        .where(VerifierStats.user_id == user_id, VerifierStats.current_assigned < maximum)
        .values(current_assigned=VerifierStats.current_assigned + 1, last_activity_at=now)
        .execution_options(synchronize_session=False)
    )
    if db.session.execute(capacity).rowcount == 0:
        db.session.rollback()
        raise AtCapacityError(maximum, maximum)

    assign = (
        sa.update(VerificationRequest)
        .where(
            VerificationRequest.id == request_id,
            VerificationRequest.status == "pending",
            VerificationRequest.assigned_to.is_(None),
        )
        .values(assigned_to=user_id, assigned_at=now, status="in_progress", updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if db.session.execute(assign).rowcount == 0:
        db.session.rollback()
        logger.info("Claim race lost on request %s", request_id, extra={"user_id": user_id})
        raise AlreadyAssignedError("Request is already assigned")

    _history(request_id, "assigned", user_id, {"self_claimed": True})
    db.session.commit()
    logger.info("Verification request %s claimed", request_id, extra={"user_id": user_id})
    return db.session.get(VerificationRequest, request_id, populate_existing=True)


def _finish(request_id: int, user_id: int, values: dict) -> None:
    """in_progress → terminal, only for the assignee; releases one capacity slot."""
    now = utcnow()
    stmt = (
        sa.update(VerificationRequest)
        .where(
            VerificationRequest.id == request_id,
            VerificationRequest.assigned_to == user_id,
            VerificationRequest.status == "in_progress",
        )
        .values(**values, completed_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if db.session.execute(stmt).rowcount == 0:
        db.session.rollback()
        raise NotFoundError(resource="Verification request", resource_id=request_id,
                            message="Request not found or not assigned to you")

    counters = {
        "current_assigned": sa.case(
            (VerifierStats.current_assigned > 0, VerifierStats.current_assigned - 1),
            else_=0,
        ),
        "total_completed": VerifierStats.total_completed + 1,
        "last_activity_at": now,
    }
    if values["status"] == "rejected":
        counters["total_rejected"] = VerifierStats.total_rejected + 1
    elif values.get("verification_result") == "passed":
        counters["total_passed"] = VerifierStats.total_passed + 1
    db.session.execute(
        sa.update(VerifierStats)
        .where(VerifierStats.user_id == user_id)
        .values(**counters)
        .execution_options(synchronize_session=False)
    )


def reject(request_id: int, user_id: int, reason: str | None, notes: str | None = None) -> VerificationRequest:
    _require_verifier(user_id)
    if not reason or not str(reason).strip():
        raise ValidationError("Rejection reason required", details={"rejection_reason": "required"})
    reason = str(reason).strip()

    _finish(request_id, user_id, {
        "status": "rejected",
        "rejection_reason": reason,
        "verifier_notes": notes,
    })
    _history(request_id, "rejected", user_id, {"reason": reason})
    db.session.commit()
    logger.info("Verification request %s rejected", request_id, extra={"user_id": user_id})
    return db.session.get(VerificationRequest, request_id, populate_existing=True)


def complete(request_id: int, user_id: int, result: str | None, notes: str | None = None,
             issues_found=None) -> VerificationRequest:
    """Record the outcome; a passed check raises the record's verification level."""
    _require_verifier(user_id)
    if result not in VERIFICATION_RESULTS:
        raise ValidationError(f"result must be one of: {', '.join(VERIFICATION_RESULTS)}",
                              details={"result": "invalid"})

    _finish(request_id, user_id, {
        "status": "approved",
        "verification_result": result,
        "verifier_notes": notes,
        "issues_found": issues_found,
    })

    req = db.session.get(VerificationRequest, request_id, populate_existing=True)
    if result == "passed":
        record = db.session.get(Record, req.record_id)
        if record is not None:
            record.verification_level = VERIFIED_BY_THIRD_PARTY_LEVEL
            record.verification_date = utcnow()
    _history(request_id, "completed", user_id, {"result": result})
    db.session.commit()
    logger.info("Verification request %s completed: %s", request_id, result, extra={"user_id": user_id})
    return req
