"""
Record edit lock tests:
  - conditional acquire (absent / expired / own lock)
  - lazy expiry on read
  - release only by the holder, force override
  - HTTP gates on incidents (editor / admin) and records (manage_records / manage_project)
"""

from datetime import timedelta

import pytest

from app.core.exceptions import ForbiddenError, RecordLockedError
from app.models import db as _db
from app.models import utcnow
from app.models.record import Incident, Record
from app.services import record_lock


# ═══════════════════════════════════════════════════════════════════════════
# Service
# ═══════════════════════════════════════════════════════════════════════════


class TestTryAcquire:
    def test_free_record(self, make_user, make_incident):
        user = make_user("editor")
        incident = make_incident()
        assert record_lock.try_acquire_lock(Incident, incident.id, user.id) is True
        status = record_lock.get_lock_status(Incident, incident.id)
        assert status["isLocked"] is True
        assert status["lockedBy"] == user.id
        assert 0 < status["remainingMinutes"] <= 30

    def test_held_by_someone_else(self, make_user, make_incident):
        a, b = make_user("editor"), make_user("editor")
        incident = make_incident()
        assert record_lock.try_acquire_lock(Incident, incident.id, a.id)
        assert record_lock.try_acquire_lock(Incident, incident.id, b.id) is False
        assert record_lock.get_lock_status(Incident, incident.id)["lockedBy"] == a.id

    def test_expired_lock_can_be_taken(self, make_user, make_incident):
        a, b = make_user("editor"), make_user("editor")
        past = utcnow() - timedelta(minutes=5)
        incident = make_incident(locked_by=a.id, locked_at=past - timedelta(minutes=30), lock_expires_at=past)

        assert record_lock.get_lock_status(Incident, incident.id)["isLocked"] is False
        assert record_lock.try_acquire_lock(Incident, incident.id, b.id) is True
        assert record_lock.get_lock_status(Incident, incident.id)["lockedBy"] == b.id

    def test_own_lock_is_extended_keeping_locked_at(self, make_user, make_incident):
        user = make_user("editor")
        incident = make_incident()
        record_lock.try_acquire_lock(Incident, incident.id, user.id, ttl_minutes=5)
        first = _db.session.get(Incident, incident.id, populate_existing=True)
        locked_at, expires = first.locked_at, first.lock_expires_at

        assert record_lock.try_acquire_lock(Incident, incident.id, user.id, ttl_minutes=60)
        again = _db.session.get(Incident, incident.id, populate_existing=True)
        assert again.locked_at == locked_at
        assert again.lock_expires_at > expires

    def test_force_takes_over(self, make_user, make_incident):
        a, admin = make_user("editor"), make_user("admin")
        incident = make_incident()
        record_lock.try_acquire_lock(Incident, incident.id, a.id)
        assert record_lock.try_acquire_lock(Incident, incident.id, admin.id, force=True)
        assert record_lock.get_lock_status(Incident, incident.id)["lockedBy"] == admin.id

    def test_acquire_lock_raises_when_held(self, make_user, make_incident):
        a, b = make_user("editor"), make_user("editor")
        incident = make_incident()
        record_lock.acquire_lock(Incident, incident.id, a.id)
        with pytest.raises(RecordLockedError) as exc:
            record_lock.acquire_lock(Incident, incident.id, b.id)
        assert exc.value.locked_by == a.id


class TestRelease:
    def test_holder_releases(self, make_user, make_incident):
        user = make_user("editor")
        incident = make_incident()
        record_lock.acquire_lock(Incident, incident.id, user.id)
        assert record_lock.release_lock(Incident, incident.id, user.id) is True
        assert record_lock.get_lock_status(Incident, incident.id)["isLocked"] is False

    def test_other_user_cannot_release(self, make_user, make_incident):
        a, b = make_user("editor"), make_user("editor")
        incident = make_incident()
        record_lock.acquire_lock(Incident, incident.id, a.id)
        with pytest.raises(ForbiddenError):
            record_lock.release_lock(Incident, incident.id, b.id)
        assert record_lock.get_lock_status(Incident, incident.id)["lockedBy"] == a.id

    def test_force_release(self, make_user, make_incident):
        a, admin = make_user("editor"), make_user("admin")
        incident = make_incident()
        record_lock.acquire_lock(Incident, incident.id, a.id)
        assert record_lock.release_lock(Incident, incident.id, admin.id, force=True) is True

    def test_release_without_live_lock_clears_leftovers(self, make_user, make_incident):
        a, b = make_user("editor"), make_user("editor")
        past = utcnow() - timedelta(minutes=1)
        incident = make_incident(locked_by=a.id, locked_at=past, lock_expires_at=past)
        assert record_lock.release_lock(Incident, incident.id, b.id) is False
        assert _db.session.get(Incident, incident.id).locked_by is None


# ═══════════════════════════════════════════════════════════════════════════
# HTTP
# ═══════════════════════════════════════════════════════════════════════════


class TestIncidentLockApi:
    def test_acquire_conflict_release(self, client, auth, make_user, make_incident):
        a, b = make_user("editor"), make_user("editor")
        incident = make_incident()
        url = f"/api/v1/incidents/{incident.id}/lock"

        r = client.post(url, headers=auth(a))
        assert r.status_code == 200
        assert r.get_json()["lockedBy"] == a.id

        r = client.post(url, headers=auth(b))
        assert r.status_code == 423
        assert r.get_json()["details"]["locked_by"] == a.id

        r = client.delete(url, headers=auth(a))
        assert r.get_json() == {"success": True, "released": True, "message": "Lock released"}

        r = client.delete(url, headers=auth(a))
        assert r.get_json()["message"] == "No active lock"

    def test_force_requires_admin(self, client, auth, make_user, make_incident):
        a, b, admin = make_user("editor"), make_user("analyst"), make_user("admin")
        incident = make_incident()
        url = f"/api/v1/incidents/{incident.id}/lock"
        client.post(url, headers=auth(a))

        r = client.post(f"{url}?force=true", headers=auth(b))
        assert r.status_code == 403
        assert r.get_json()["error"] == "Admin access required"

        r = client.post(f"{url}?force=true", headers=auth(admin))
        assert r.status_code == 200
        assert r.get_json()["lockedBy"] == admin.id

    def test_user_role_is_403(self, client, auth, make_user, make_incident):
        incident = make_incident()
        r = client.get(f"/api/v1/incidents/{incident.id}/lock", headers=auth(make_user("user")))
        assert r.status_code == 403


class TestRecordLockApi:
    def test_manage_records_gate_and_force(self, client, auth, make_user, make_project, add_member,
                                           make_record_type, make_record):
        owner, reviewer, other, validator = make_user(), make_user(), make_user(), make_user()
        project = make_project(owner=owner)
        add_member(project, reviewer, role="reviewer")
        add_member(project, other, role="reviewer")
        add_member(project, validator, role="validator")
        record = make_record(project, make_record_type(project))
        url = f"/api/v1/projects/{project.slug}/records/{record.id}/lock"

        assert client.post(url, headers=auth(validator)).status_code == 403
        assert client.post(url, headers=auth(reviewer)).status_code == 200
        assert client.post(url, headers=auth(other)).status_code == 423
        assert client.delete(url, headers=auth(other)).status_code == 403
        assert client.post(f"{url}?force=true", headers=auth(other)).status_code == 403

        r = client.delete(f"{url}?force=true", headers=auth(owner))
        assert r.status_code == 200
        assert r.get_json()["released"] is True
        assert _db.session.get(Record, record.id, populate_existing=True).locked_by is None
