"""
Verifier pool administration tests:
  - admin-only routes
  - add: unknown user 404, already a verifier 400, defaults, stats row
  - update: only existing verifiers, field validation
  - remove: refused while assignments are open, resets the profile
"""

import pytest

from app.models import db as _db
from app.models.audit import AuditLog
from app.models.auth import User
from app.models.verification import VerificationRequest, VerifierStats

URL = "/api/v1/admin/verifiers"


@pytest.fixture()
def admin(make_user):
    return make_user("admin")


def _user(user_id):
    return _db.session.get(User, user_id, populate_existing=True)


# ═══════════════════════════════════════════════════════════════════════════
# Add / list
# ═══════════════════════════════════════════════════════════════════════════


class TestAddVerifier:
    def test_add_with_defaults(self, client, auth, admin, make_user):
        target = make_user("user")
        r = client.post(URL, json={"userId": target.id, "specialties": [" maps ", "photos", ""],
                                   "notes": " field team "},
                        headers=auth(admin))
        assert r.status_code == 201
        body = r.get_json()["verifier"]
        assert body["is_verifier"] is True
        assert body["verifier_max_concurrent"] == 5
        assert body["verifier_specialties"] == ["maps", "photos"]
        assert body["verifier_notes"] == "field team"
        assert body["verifier_since"] is not None
        assert body["stats"]["current_assigned"] == 0
        assert _db.session.get(VerifierStats, target.id) is not None
        assert AuditLog.query.filter_by(action="user.grant_verifier").count() == 1

    def test_custom_max_concurrent(self, client, auth, admin, make_user):
        target = make_user("user")
        r = client.post(URL, json={"userId": target.id, "maxConcurrent": 2}, headers=auth(admin))
        assert r.status_code == 201
        assert _user(target.id).verifier_max_concurrent == 2

    def test_user_id_required(self, client, auth, admin):
        r = client.post(URL, json={}, headers=auth(admin))
        assert r.status_code == 400

    def test_unknown_user_is_404(self, client, auth, admin):
        r = client.post(URL, json={"userId": 9999}, headers=auth(admin))
        assert r.status_code == 404

    def test_already_verifier_is_400(self, client, auth, admin, make_user):
        target = make_user("user", is_verifier=True)
        r = client.post(URL, json={"userId": target.id}, headers=auth(admin))
        assert r.status_code == 400
        assert r.get_json()["error"] == "User is already a verifier"

    @pytest.mark.parametrize("value", [0, -1, "3", True, 101])
    def test_bad_max_concurrent_is_400(self, client, auth, admin, make_user, value):
        target = make_user("user")
        r = client.post(URL, json={"userId": target.id, "maxConcurrent": value}, headers=auth(admin))
        assert r.status_code == 400
        assert _user(target.id).is_verifier is False

    def test_non_admin_is_403(self, client, auth, make_user):
        analyst = make_user("analyst")
        r = client.post(URL, json={"userId": analyst.id}, headers=auth(analyst))
        assert r.status_code == 403
        assert client.get(URL, headers=auth(analyst)).status_code == 403

    def test_list_joins_stats(self, client, auth, admin, make_user):
        make_user("user")
        verifier = make_user("user", is_verifier=True)
        _db.session.add(VerifierStats(user_id=verifier.id, current_assigned=1, total_completed=4))
        _db.session.commit()

        r = client.get(URL, headers=auth(admin))
        assert r.status_code == 200
        items = r.get_json()["items"]
        assert [v["id"] for v in items] == [verifier.id]
        assert items[0]["stats"]["total_completed"] == 4


# ═══════════════════════════════════════════════════════════════════════════
# Update / remove
# ═══════════════════════════════════════════════════════════════════════════


class TestUpdateVerifier:
    def test_patch_fields(self, client, auth, admin, make_user):
        target = make_user("user", is_verifier=True)
        r = client.patch(f"{URL}/{target.id}",
                         json={"maxConcurrent": 8, "specialties": ["audio"], "notes": None},
                         headers=auth(admin))
        assert r.status_code == 200
        user = _user(target.id)
        assert user.verifier_max_concurrent == 8
        assert user.verifier_specialties == ["audio"]
        assert user.verifier_notes is None

    def test_patch_non_verifier_is_400(self, client, auth, admin, make_user):
        target = make_user("user")
        r = client.patch(f"{URL}/{target.id}", json={"maxConcurrent": 3}, headers=auth(admin))
        assert r.status_code == 400

    def test_empty_patch_is_400(self, client, auth, admin, make_user):
        target = make_user("user", is_verifier=True)
        r = client.patch(f"{URL}/{target.id}", json={}, headers=auth(admin))
        assert r.status_code == 400


class TestRemoveVerifier:
    def test_remove_resets_profile(self, client, auth, admin, make_user):
        target = make_user("user", is_verifier=True, verifier_max_concurrent=9,
                           verifier_specialties=["maps"], verifier_notes="x")
        r = client.delete(f"{URL}/{target.id}", headers=auth(admin))
        assert r.status_code == 200
        user = _user(target.id)
        assert user.is_verifier is False
        assert user.verifier_specialties is None
        assert user.verifier_notes is None
        assert user.verifier_max_concurrent == 5
        assert AuditLog.query.filter_by(action="user.revoke_verifier").count() == 1

    def test_open_assignment_blocks_removal(self, client, auth, admin, make_user,
                                            make_project, make_record_type, make_record):
        target = make_user("user", is_verifier=True)
        project = make_project()
        record = make_record(project, make_record_type(project), status="verified")
        _db.session.add(VerificationRequest(project_id=project.id, record_id=record.id,
                                            status="in_progress", assigned_to=target.id))
        _db.session.commit()

        r = client.delete(f"{URL}/{target.id}", headers=auth(admin))
        assert r.status_code == 400
        assert r.get_json()["details"] == {"active_assignments": 1}
        assert _user(target.id).is_verifier is True

    def test_finished_assignment_does_not_block(self, client, auth, admin, make_user,
                                                make_project, make_record_type, make_record):
        target = make_user("user", is_verifier=True)
        project = make_project()
        record = make_record(project, make_record_type(project), status="verified")
        _db.session.add(VerificationRequest(project_id=project.id, record_id=record.id,
                                            status="approved", assigned_to=target.id))
        _db.session.commit()

        assert client.delete(f"{URL}/{target.id}", headers=auth(admin)).status_code == 200

    def test_remove_non_verifier_is_400(self, client, auth, admin, make_user):
        target = make_user("user")
        assert client.delete(f"{URL}/{target.id}", headers=auth(admin)).status_code == 400
