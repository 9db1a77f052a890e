"""
Third-party verification queue tests:
  - requesting: permission, verified-only, one open request, monthly quota
  - claim: capacity, already-assigned, history row
  - reject / complete: assignee only, counters, record verification level
  - verifier HTTP endpoints
"""

from types import SimpleNamespace

import pytest

from app.core.exceptions import (
    AlreadyAssignedError,
    AtCapacityError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    QuotaExceededError,
    ValidationError,
)
from app.models import db as _db
from app.models.record import Record
from app.models.verification import VerificationHistory, VerificationRequest, VerifierStats
from app.services import verification_queue as vq
from app.services.permission_service import resolve_project_access


@pytest.fixture()
def env(make_user, make_project, make_record_type, make_record):
    owner = make_user()
    project = make_project(owner=owner)
    rtype = make_record_type(project)

    def new_record(status="verified"):
        return make_record(project, rtype, status=status)

    def new_request(priority="normal"):
        req = VerificationRequest(project_id=project.id, record_id=new_record().id,
                                  requested_by=owner.id, priority=priority)
        _db.session.add(req)
        _db.session.commit()
        return req

    def verifier(max_concurrent=5):
        return make_user("user", is_verifier=True, verifier_max_concurrent=max_concurrent)

    return SimpleNamespace(owner=owner, project=project, new_record=new_record,
                           new_request=new_request, verifier=verifier)


def _owner_access(env):
    return resolve_project_access(env.owner.id, env.project.slug)


# ═══════════════════════════════════════════════════════════════════════════
# Requesting
# ═══════════════════════════════════════════════════════════════════════════


class TestRequestVerification:
    def test_owner_requests(self, env):
        record = env.new_record()
        req = vq.request_verification(_owner_access(env), record, env.owner.id,
                                      {"priority": "high", "request_notes": " please "})
        assert req.status == "pending"
        assert req.priority == "high"
        assert req.request_notes == "please"
        assert [h.action for h in vq.get_history(req.id)] == ["requested"]
        _db.session.refresh(env.project)
        assert env.project.verification_quota_used == 1

    def test_member_needs_flag(self, env, make_user, add_member):
        member = make_user()
        add_member(env.project, member, role="admin")
        access = resolve_project_access(member.id, env.project.slug)
        with pytest.raises(ForbiddenError):
            vq.request_verification(access, env.new_record(), member.id, {})

    def test_member_with_flag(self, env, make_user, add_member):
        member = make_user()
        add_member(env.project, member, role="viewer", can_request_verification=True)
        access = resolve_project_access(member.id, env.project.slug)
        assert vq.request_verification(access, env.new_record(), member.id, {}).status == "pending"

    def test_only_verified_records(self, env):
        with pytest.raises(InvalidTransitionError):
            vq.request_verification(_owner_access(env), env.new_record("pending_review"), env.owner.id, {})

    def test_one_open_request_per_record(self, env):
        record = env.new_record()
        vq.request_verification(_owner_access(env), record, env.owner.id, {})
        with pytest.raises(InvalidTransitionError):
            vq.request_verification(_owner_access(env), record, env.owner.id, {})

    def test_data_scope_needs_items(self, env):
        with pytest.raises(ValidationError):
            vq.request_verification(_owner_access(env), env.new_record(), env.owner.id,
                                    {"verification_scope": "data"})

    def test_monthly_quota(self, env):
        env.project.verification_quota_monthly = 1
        _db.session.commit()
        vq.request_verification(_owner_access(env), env.new_record(), env.owner.id, {})
        with pytest.raises(QuotaExceededError):
            vq.request_verification(_owner_access(env), env.new_record(), env.owner.id, {})
        assert VerificationRequest.query.count() == 1


# ═══════════════════════════════════════════════════════════════════════════
# Claim
# ═══════════════════════════════════════════════════════════════════════════


class TestClaim:
    def test_claim_assigns_and_logs(self, env):
        verifier = env.verifier()
        req = env.new_request()
        claimed = vq.claim(req.id, verifier.id)
        assert claimed.status == "in_progress"
        assert claimed.assigned_to == verifier.id
        assert claimed.assigned_at is not None

        history = VerificationHistory.query.filter_by(request_id=req.id).one()
        assert history.action == "assigned"
        assert history.performed_by == verifier.id
        assert history.details == {"self_claimed": True}
        assert _db.session.get(VerifierStats, verifier.id).current_assigned == 1

    def test_at_capacity_leaves_request_pending(self, env):
        verifier = env.verifier(max_concurrent=1)
        first, second = env.new_request(), env.new_request()
        vq.claim(first.id, verifier.id)

        with pytest.raises(AtCapacityError):
            vq.claim(second.id, verifier.id)
        second = _db.session.get(VerificationRequest, second.id, populate_existing=True)
        assert second.status == "pending"
        assert second.assigned_to is None
        assert _db.session.get(VerifierStats, verifier.id, populate_existing=True).current_assigned == 1

    def test_already_assigned(self, env):
        a, b = env.verifier(), env.verifier()
        req = env.new_request()
        vq.claim(req.id, a.id)
        with pytest.raises(AlreadyAssignedError):
            vq.claim(req.id, b.id)
        assert _db.session.get(VerifierStats, b.id).current_assigned == 0

    def test_losing_claim_releases_capacity(self, env, monkeypatch):
        winner, loser = env.verifier(), env.verifier()
        req = env.new_request()
        vq.get_stats(loser.id)
        vq.claim(req.id, winner.id)

        stale = SimpleNamespace(id=req.id, status="pending", assigned_to=None)
        monkeypatch.setattr(vq, "get_request", lambda request_id: stale)
        with pytest.raises(AlreadyAssignedError):
            vq.claim(req.id, loser.id)

        assert _db.session.get(VerifierStats, loser.id, populate_existing=True).current_assigned == 0
        assert _db.session.get(VerifierStats, winner.id, populate_existing=True).current_assigned == 1
        current = _db.session.get(VerificationRequest, req.id, populate_existing=True)
        assert (current.status, current.assigned_to) == ("in_progress", winner.id)
        assert [h.performed_by for h in vq.get_history(req.id)] == [winner.id]

    def test_non_verifier_forbidden(self, env, make_user):
        req = env.new_request()
        with pytest.raises(ForbiddenError):
            vq.claim(req.id, make_user("admin").id)

    def test_unknown_request(self, env):
        with pytest.raises(NotFoundError):
            vq.claim(12345, env.verifier().id)


# ═══════════════════════════════════════════════════════════════════════════
# Reject / complete
# ═══════════════════════════════════════════════════════════════════════════


class TestFinish:
    def test_reject_by_assignee(self, env):
        verifier = env.verifier()
        req = env.new_request()
        vq.claim(req.id, verifier.id)
        done = vq.reject(req.id, verifier.id, "  not enough sources ")
        assert done.status == "rejected"
        assert done.rejection_reason == "not enough sources"
        assert done.completed_at is not None

        stats = _db.session.get(VerifierStats, verifier.id, populate_existing=True)
        assert stats.current_assigned == 0
        assert stats.total_rejected == 1
        assert [h.action for h in vq.get_history(req.id)] == ["assigned", "rejected"]

    def test_reject_requires_reason(self, env):
        verifier = env.verifier()
        req = env.new_request()
        vq.claim(req.id, verifier.id)
        with pytest.raises(ValidationError):
            vq.reject(req.id, verifier.id, "   ")

    def test_reject_by_other_verifier_is_not_found(self, env):
        a, b = env.verifier(), env.verifier()
        req = env.new_request()
        vq.claim(req.id, a.id)
        with pytest.raises(NotFoundError):
            vq.reject(req.id, b.id, "mine now")
        assert _db.session.get(VerificationRequest, req.id, populate_existing=True).status == "in_progress"

    def test_reject_pending_is_not_found(self, env):
        req = env.new_request()
        with pytest.raises(NotFoundError):
            vq.reject(req.id, env.verifier().id, "reason")

    def test_complete_passed_raises_level(self, env):
        verifier = env.verifier()
        req = env.new_request()
        vq.claim(req.id, verifier.id)
        done = vq.complete(req.id, verifier.id, "passed", "all good", [])
        assert done.status == "approved"
        assert done.verification_result == "passed"
        record = _db.session.get(Record, req.record_id, populate_existing=True)
        assert record.verification_level == 3
        stats = _db.session.get(VerifierStats, verifier.id, populate_existing=True)
        assert (stats.total_completed, stats.total_passed, stats.current_assigned) == (1, 1, 0)

    def test_complete_rejects_unknown_result(self, env):
        verifier = env.verifier()
        req = env.new_request()
        vq.claim(req.id, verifier.id)
        with pytest.raises(ValidationError):
            vq.complete(req.id, verifier.id, "great")


class TestQueue:
    def test_pending_queue_priority_order(self, env):
        verifier = env.verifier()
        low = env.new_request("low")
        normal = env.new_request("normal")
        urgent = env.new_request("urgent")
        high = env.new_request("high")
        queue = vq.list_queue(verifier.id)
        assert [r.id for r in queue] == [urgent.id, high.id, normal.id, low.id]

    def test_in_progress_lists_own_only(self, env):
        a, b = env.verifier(), env.verifier()
        mine, theirs = env.new_request(), env.new_request()
        vq.claim(mine.id, a.id)
        vq.claim(theirs.id, b.id)
        assert [r.id for r in vq.list_queue(a.id, status="in_progress")] == [mine.id]


# ═══════════════════════════════════════════════════════════════════════════
# HTTP
# ═══════════════════════════════════════════════════════════════════════════


class TestVerifierApi:
    def test_claim_capacity_reject(self, client, auth, env):
        verifier = env.verifier(max_concurrent=1)
        first, second = env.new_request(), env.new_request()

        r = client.post(f"/api/v1/verifier/requests/{first.id}/claim", headers=auth(verifier))
        assert r.status_code == 200
        assert r.get_json()["request"]["status"] == "in_progress"

        r = client.post(f"/api/v1/verifier/requests/{second.id}/claim", headers=auth(verifier))
        assert r.status_code == 400
        assert r.get_json()["code"] == "ERR_AT_CAPACITY"

        r = client.post(f"/api/v1/verifier/requests/{first.id}/reject", json={}, headers=auth(verifier))
        assert r.status_code == 400
        assert r.get_json()["error"] == "Rejection reason required"

        r = client.post(f"/api/v1/verifier/requests/{first.id}/reject",
                        json={"rejection_reason": "unverifiable"}, headers=auth(verifier))
        assert r.status_code == 200
        assert r.get_json()["request"]["status"] == "rejected"

        r = client.get("/api/v1/verifier/stats", headers=auth(verifier))
        assert r.get_json()["stats"]["current_assigned"] == 0
        assert r.get_json()["max_concurrent"] == 1

    def test_already_assigned_is_400(self, client, auth, env):
        a, b = env.verifier(), env.verifier()
        req = env.new_request()
        client.post(f"/api/v1/verifier/requests/{req.id}/claim", headers=auth(a))
        r = client.post(f"/api/v1/verifier/requests/{req.id}/claim", headers=auth(b))
        assert r.status_code == 400
        assert r.get_json()["code"] == "ERR_ALREADY_ASSIGNED"

    def test_non_verifier_is_403(self, client, auth, env, make_user):
        req = env.new_request()
        r = client.post(f"/api/v1/verifier/requests/{req.id}/claim", headers=auth(make_user("admin")))
        assert r.status_code == 403
        assert r.get_json()["error"] == "Verifier access required"

    def test_reject_not_assigned_is_404(self, client, auth, env):
        req = env.new_request()
        r = client.post(f"/api/v1/verifier/requests/{req.id}/reject",
                        json={"rejection_reason": "x"}, headers=auth(env.verifier()))
        assert r.status_code == 404

    def test_bad_status_filter_is_400(self, client, auth, env):
        r = client.get("/api/v1/verifier/requests?status=bogus", headers=auth(env.verifier()))
        assert r.status_code == 400

    def test_request_verification_endpoint(self, client, auth, env):
        record = env.new_record()
        base = f"/api/v1/projects/{env.project.slug}/records/{record.id}"
        r = client.post(f"{base}/request-verification", json={"priority": "urgent"}, headers=auth(env.owner))
        assert r.status_code == 201
        assert r.get_json()["request"]["priority"] == "urgent"

        r = client.get(f"{base}/verification-requests", headers=auth(env.owner))
        assert len(r.get_json()["items"]) == 1

    def test_quota_exceeded_is_429(self, client, auth, env):
        env.project.verification_quota_monthly = 0
        _db.session.commit()
        record = env.new_record()
        r = client.post(f"/api/v1/projects/{env.project.slug}/records/{record.id}/request-verification",
                        json={}, headers=auth(env.owner))
        assert r.status_code == 429
        assert r.get_json()["code"] == "ERR_QUOTA_EXCEEDED"
