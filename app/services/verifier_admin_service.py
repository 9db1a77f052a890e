"""
Verifier pool administration (admin only).

Granting the flag stamps ``verifier_since`` and makes sure a verifier_stats
row exists.  Revoking is refused while the verifier still holds open
assignments, so no in_progress request is left without an owner.
"""

import logging

from app.core.exceptions import NotFoundError, ValidationError
from app.models import db, utcnow
from app.models.audit import write_audit
from app.models.auth import User
from app.models.verification import VerificationRequest, VerifierStats
from app.services.verification_queue import OPEN_STATUSES

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENT = 5
MAX_CONCURRENT_CEILING = 100


def _get_user(user_id) -> User:
    user = db.session.get(User, user_id) if user_id is not None else None
    if user is None:
        raise NotFoundError(resource="User", resource_id=user_id)
    return user


def _get_verifier(user_id: int) -> User:
    user = _get_user(user_id)
    if not user.is_verifier:
        raise ValidationError("User is not a verifier", details={"userId": "not a verifier"})
    return user


def _clean_specialties(value) -> list:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(s, str) for s in value):
        raise ValidationError("specialties must be a list of strings", details={"specialties": "invalid"})
    return [s.strip() for s in value if s.strip()]


def _clean_max_concurrent(value) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= MAX_CONCURRENT_CEILING:
        raise ValidationError(
            f"maxConcurrent must be an integer between 1 and {MAX_CONCURRENT_CEILING}",
            details={"maxConcurrent": "invalid"},
        )
    return value


def _audit(user: User, action: str, actor_id: int, diff: dict | None = None) -> None:
    write_audit(entity_type="user", entity_id=user.id, action=f"user.{action}",
                actor_user_id=actor_id, diff=diff)


def verifier_dict(user: User, stats: VerifierStats | None) -> dict:
    return {
        **user.to_dict(),
        "stats": stats.to_dict() if stats is not None else None,
    }


def list_verifiers() -> list[dict]:
    rows = (
        db.session.query(User, VerifierStats)
        .outerjoin(VerifierStats, VerifierStats.user_id == User.id)
        .filter(User.is_verifier.is_(True))
        .order_by(User.verifier_since.desc(), User.id.asc())
        .all()
    )
    return [verifier_dict(user, stats) for user, stats in rows]


def grant_verifier(data: dict, actor_id: int) -> dict:
    if not data.get("userId"):
        raise ValidationError("userId is required", details={"userId": "required"})
    user = _get_user(data["userId"])
    if user.is_verifier:
        raise ValidationError("User is already a verifier", details={"userId": "already a verifier"})

    user.is_verifier = True
    user.verifier_since = utcnow()
    user.verifier_specialties = _clean_specialties(data.get("specialties"))
    user.verifier_max_concurrent = _clean_max_concurrent(data.get("maxConcurrent", DEFAULT_MAX_CONCURRENT))
    user.verifier_notes = (data.get("notes") or "").strip() or None

    stats = db.session.get(VerifierStats, user.id)
    if stats is None:
        stats = VerifierStats(user_id=user.id, current_assigned=0)
        db.session.add(stats)
    _audit(user, "grant_verifier", actor_id, {"max_concurrent": user.verifier_max_concurrent})
    db.session.commit()
    logger.info("User %s added to the verifier pool", user.id, extra={"user_id": actor_id})
    return verifier_dict(user, stats)


def update_verifier(user_id: int, data: dict, actor_id: int) -> dict:
    user = _get_verifier(user_id)
    changed = {}
    if "specialties" in data:
        user.verifier_specialties = changed["specialties"] = _clean_specialties(data["specialties"])
    if "maxConcurrent" in data:
        user.verifier_max_concurrent = changed["max_concurrent"] = _clean_max_concurrent(data["maxConcurrent"])
    if "notes" in data:
        user.verifier_notes = changed["notes"] = (data["notes"] or "").strip() or None
    if not changed:
        raise ValidationError("Nothing to update", details={"fields": "specialties, maxConcurrent or notes"})

    _audit(user, "update_verifier", actor_id, changed)
    db.session.commit()
    return verifier_dict(user, db.session.get(VerifierStats, user.id))


def revoke_verifier(user_id: int, actor_id: int) -> None:
    user = _get_verifier(user_id)
    active = VerificationRequest.query.filter(
        VerificationRequest.assigned_to == user.id,
        VerificationRequest.status.in_(OPEN_STATUSES),
    ).count()
    if active:
        raise ValidationError(
            f"Cannot remove verifier with {active} active assignment(s)",
            details={"active_assignments": active},
        )

    user.is_verifier = False
    user.verifier_since = None
    user.verifier_specialties = None
    user.verifier_notes = None
    user.verifier_max_concurrent = DEFAULT_MAX_CONCURRENT
    _audit(user, "revoke_verifier", actor_id)
    db.session.commit()
    logger.info("User %s removed from the verifier pool", user.id, extra={"user_id": actor_id})
