"""
Record edit lock — advisory, time-boxed, per record.

Not to be confused with verification-request assignment
(app.services.verification_queue): this lock only signals "someone is
editing this record right now" to other reviewers.

Expiry is lazy: a lock whose ``lock_expires_at`` has passed is treated as
absent by every read and can be taken over by anyone.  Nothing sweeps
abandoned locks.
"""

import logging
from datetime import timedelta

import sqlalchemy as sa
from flask import current_app

from app.core.exceptions import ForbiddenError, NotFoundError, RecordLockedError
from app.models import db, utcnow

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TTL_MINUTES = 30


def _ttl_minutes(ttl_minutes: int | None) -> int:
    if ttl_minutes:
        return ttl_minutes
    return current_app.config.get("RECORD_LOCK_TTL_MINUTES", DEFAULT_LOCK_TTL_MINUTES)


def _load(model, record_id: int):
    obj = db.session.get(model, record_id, populate_existing=True)
    if obj is None or obj.deleted_at is not None:
        raise NotFoundError(resource=model.__name__, resource_id=record_id)
    return obj


def lock_status(obj, now=None) -> dict:
    """Client view of a record's lock; expired locks read as unlocked."""
    now = now or utcnow()
    if not obj.lock_is_live(now):
        return {
            "isLocked": False,
            "lockedBy": None,
            "lockedAt": None,
            "expiresAt": None,
            "remainingMinutes": 0,
        }
    remaining = (obj.lock_expires_at - now).total_seconds() / 60
    return {
        "isLocked": True,
        "lockedBy": obj.locked_by,
        "lockedAt": obj.locked_at.isoformat() if obj.locked_at else None,
        "expiresAt": obj.lock_expires_at.isoformat(),
        "remainingMinutes": max(0, int(remaining + 0.999)),
    }


def get_lock_status(model, record_id: int) -> dict:
    return lock_status(_load(model, record_id))


def try_acquire_lock(model, record_id: int, user_id: int, ttl_minutes: int | None = None,
                     *, force: bool = False) -> bool:
    """
    Take (or extend) the edit lock in one conditional UPDATE.

    Succeeds when the lock is absent, expired, or already held by
    *user_id*.  ``force`` skips the holder check (admin override).
    Re-acquiring an own live lock keeps the original ``locked_at``.
    """
    now = utcnow()
    expires = now + timedelta(minutes=_ttl_minutes(ttl_minutes))
    own_live_lock = sa.and_(model.locked_by == user_id, model.lock_expires_at > now)

    conditions = [model.id == record_id, model.deleted_at.is_(None)]
    if not force:
        conditions.append(sa.or_(
            model.locked_by.is_(None),
            model.lock_expires_at.is_(None),
            model.lock_expires_at <= now,
            model.locked_by == user_id,
        ))

    db.session.flush()
    stmt = (
        sa.update(model)
        .where(*conditions)
        .values(
            locked_by=user_id,
            locked_at=sa.case((own_live_lock, model.locked_at), else_=now),
            lock_expires_at=expires,
        )
        .execution_options(synchronize_session=False)
    )
    acquired = db.session.execute(stmt).rowcount > 0
    db.session.commit()
    return acquired


def acquire_lock(model, record_id: int, user_id: int, ttl_minutes: int | None = None,
                 *, force: bool = False) -> dict:
    """Acquire or extend; raise RecordLockedError when another user holds a live lock."""
    _load(model, record_id)
    if not try_acquire_lock(model, record_id, user_id, ttl_minutes, force=force):
        obj = _load(model, record_id)
        logger.info(
            "Lock contention on %s %s held by %s", model.__name__, record_id, obj.locked_by,
            extra={"user_id": user_id, "record_id": record_id},
        )
        raise RecordLockedError(obj.locked_by, obj.lock_expires_at)
    obj = _load(model, record_id)
    if force:
        logger.info("Lock on %s %s taken over by %s", model.__name__, record_id, user_id)
    return lock_status(obj)


def release_lock(model, record_id: int, user_id: int, *, force: bool = False) -> bool:
    """
    Clear the lock.  Only the holder may release a live lock unless
    ``force`` is set.  Returns False when there was no live lock.
    """
    obj = _load(model, record_id)
    if not obj.lock_is_live():
        if obj.locked_by is not None:
            obj.locked_by = None
            obj.locked_at = None
            obj.lock_expires_at = None
            db.session.commit()
        return False

    conditions = [model.id == record_id]
    if not force:
        conditions.append(model.locked_by == user_id)

    stmt = (
        sa.update(model)
        .where(*conditions)
        .values(locked_by=None, locked_at=None, lock_expires_at=None)
        .execution_options(synchronize_session=False)
    )
    released = db.session.execute(stmt).rowcount > 0
    if not released:
        db.session.rollback()
        raise ForbiddenError("You can only release your own lock")
    db.session.commit()
    return True
