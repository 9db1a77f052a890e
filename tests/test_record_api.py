"""
Project record API tests:
  - create / read / merge / soft delete with field-definition validation
  - viewer visibility of unverified records
  - review pipeline endpoints and PATCH status routing
  - field-level verification (validate capability)
  - propose-change entry point
"""

from types import SimpleNamespace

import pytest

from app.models import db as _db
from app.models.audit import AuditLog
from app.models.record import Record


@pytest.fixture()
def proj(make_user, make_project, add_member, make_record_type):
    """Project with one member per role and a 'sighting' record type."""
    owner = make_user()
    project = make_project(owner=owner)
    members = {"owner": owner}
    for role in ("admin", "reviewer", "validator", "analyst", "viewer"):
        user = make_user()
        add_member(project, user, role=role)
        members[role] = user
    rtype = make_record_type(project)
    return SimpleNamespace(project=project, rtype=rtype, base=f"/api/v1/projects/{project.slug}/records",
                           **members)


# ═══════════════════════════════════════════════════════════════════════════
# CRUD
# ═══════════════════════════════════════════════════════════════════════════


class TestCreate:
    def test_create_valid_record(self, client, auth, proj):
        r = client.post(proj.base, json={
            "record_type": "sighting",
            "data": {"title": "Otter", "count": 2, "category": "mammal", "tags": ["river"]},
        }, headers=auth(proj.analyst))
        assert r.status_code == 201
        record = r.get_json()["record"]
        assert record["status"] == "pending_review"
        assert record["record_type_slug"] == "sighting"
        assert record["created_by"] == proj.analyst.id

    def test_validation_errors_are_collected(self, client, auth, proj):
        r = client.post(proj.base, json={
            "record_type": "sighting",
            "data": {"count": "two", "category": "fish", "tags": "river", "colour": "red"},
        }, headers=auth(proj.analyst))
        assert r.status_code == 400
        details = r.get_json()["details"]
        assert details == {
            "title": "is required",
            "count": "must be a number",
            "category": "must be one of: bird, mammal, other",
            "tags": "must be a list",
            "colour": "unknown field",
        }

    def test_unsupported_field_type_rejects_value(self, client, auth, proj, make_record_type):
        make_record_type(proj.project, slug="swatch", fields=[
            {"slug": "shade", "name": "Shade", "field_type": "colour"},
        ])
        r = client.post(proj.base, json={"record_type": "swatch", "data": {"shade": "red"}},
                        headers=auth(proj.analyst))
        assert r.status_code == 400
        assert r.get_json()["details"] == {"shade": "unsupported field type: colour"}

    def test_unknown_record_type_is_404(self, client, auth, proj):
        r = client.post(proj.base, json={"record_type": "ghost", "data": {}}, headers=auth(proj.analyst))
        assert r.status_code == 404

    def test_viewer_cannot_create(self, client, auth, proj):
        r = client.post(proj.base, json={"record_type": "sighting", "data": {"title": "x"}},
                        headers=auth(proj.viewer))
        assert r.status_code == 403

    def test_upload_override_allows_viewer(self, client, auth, proj, make_user, add_member):
        uploader = make_user()
        add_member(proj.project, uploader, role="viewer", can_upload=True)
        r = client.post(proj.base, json={"record_type": "sighting", "data": {"title": "x"}},
                        headers=auth(uploader))
        assert r.status_code == 201

    def test_non_member_is_403_and_unknown_project_404(self, client, auth, proj, make_user):
        stranger = make_user()
        assert client.get(proj.base, headers=auth(stranger)).status_code == 403
        assert client.get("/api/v1/projects/nowhere/records", headers=auth(stranger)).status_code == 404


class TestReadVisibility:
    def test_viewer_sees_only_verified(self, client, auth, proj, make_record):
        pending = make_record(proj.project, proj.rtype)
        verified = make_record(proj.project, proj.rtype, status="verified")

        r = client.get(proj.base, headers=auth(proj.viewer))
        assert [item["id"] for item in r.get_json()["items"]] == [verified.id]
        assert client.get(f"{proj.base}/{pending.id}", headers=auth(proj.viewer)).status_code == 404
        assert client.get(f"{proj.base}/{verified.id}", headers=auth(proj.viewer)).status_code == 200

    def test_reviewer_filters_by_status(self, client, auth, proj, make_record):
        make_record(proj.project, proj.rtype)
        make_record(proj.project, proj.rtype, status="verified")
        r = client.get(f"{proj.base}?status=pending_review", headers=auth(proj.reviewer))
        body = r.get_json()
        assert body["total"] == 1
        assert body["items"][0]["status"] == "pending_review"

    def test_public_project_readable_anonymously(self, client, proj, make_record):
        proj.project.is_public = True
        _db.session.commit()
        make_record(proj.project, proj.rtype, status="verified")
        r = client.get(proj.base)
        assert r.status_code == 200
        assert r.get_json()["total"] == 1


class TestUpdateDelete:
    def test_merge_data(self, client, auth, proj, make_record):
        record = make_record(proj.project, proj.rtype, data={"title": "Heron", "count": 1})
        r = client.patch(f"{proj.base}/{record.id}", json={"data": {"count": 3}}, headers=auth(proj.reviewer))
        assert r.status_code == 200
        assert r.get_json()["record"]["data"] == {"title": "Heron", "count": 3}

    def test_cannot_blank_required_field(self, client, auth, proj, make_record):
        record = make_record(proj.project, proj.rtype)
        r = client.patch(f"{proj.base}/{record.id}", json={"data": {"title": ""}}, headers=auth(proj.reviewer))
        assert r.status_code == 400
        assert r.get_json()["details"] == {"title": "is required"}

    def test_verified_record_is_not_edited_directly(self, client, auth, proj, make_record):
        record = make_record(proj.project, proj.rtype, status="verified")
        r = client.patch(f"{proj.base}/{record.id}", json={"data": {"count": 3}}, headers=auth(proj.admin))
        assert r.status_code == 400
        assert "proposed change" in r.get_json()["error"]

    def test_status_patch_goes_through_pipeline(self, client, auth, proj, make_record):
        record = make_record(proj.project, proj.rtype)
        r = client.patch(f"{proj.base}/{record.id}", json={"status": "verified"}, headers=auth(proj.owner))
        assert r.status_code == 400

        r = client.patch(f"{proj.base}/{record.id}", json={"status": "pending_validation"},
                         headers=auth(proj.reviewer))
        assert r.status_code == 200
        assert r.get_json()["record"]["reviewed_by"] == proj.reviewer.id

    def test_illegal_status_leaves_data_untouched(self, client, auth, proj, make_record):
        record = make_record(proj.project, proj.rtype, data={"title": "Before"})
        r = client.patch(f"{proj.base}/{record.id}", json={"data": {"title": "After"}, "status": "verified"},
                         headers=auth(proj.reviewer))
        assert r.status_code == 400
        assert r.get_json()["code"] == "ERR_INVALID_TRANSITION"
        stored = _db.session.get(Record, record.id, populate_existing=True)
        assert stored.data == {"title": "Before"}
        assert stored.status == "pending_review"
        assert AuditLog.query.filter_by(action="record.update").count() == 0

    def test_denied_status_step_rolls_back_merge(self, client, auth, proj, make_record):
        record = make_record(proj.project, proj.rtype, status="pending_validation", data={"title": "Before"})
        r = client.patch(f"{proj.base}/{record.id}", json={"data": {"title": "After"}, "status": "verified"},
                         headers=auth(proj.reviewer))
        assert r.status_code == 403
        stored = _db.session.get(Record, record.id, populate_existing=True)
        assert stored.data == {"title": "Before"}
        assert stored.status == "pending_validation"
        assert AuditLog.query.filter_by(action="record.update").count() == 0

    def test_data_and_status_in_one_request(self, client, auth, proj, make_record):
        record = make_record(proj.project, proj.rtype, data={"title": "Before"})
        r = client.patch(f"{proj.base}/{record.id}",
                         json={"data": {"title": "After"}, "status": "pending_validation"},
                         headers=auth(proj.reviewer))
        assert r.status_code == 200
        body = r.get_json()["record"]
        assert body["data"] == {"title": "After"}
        assert body["status"] == "pending_validation"

    def test_unknown_status_filter_is_400(self, client, auth, proj):
        r = client.get(f"{proj.base}?status=published", headers=auth(proj.reviewer))
        assert r.status_code == 400

    def test_negative_limit_is_clamped(self, client, auth, proj, make_record):
        for _ in range(3):
            make_record(proj.project, proj.rtype)
        r = client.get(f"{proj.base}?limit=-1", headers=auth(proj.reviewer))
        body = r.get_json()
        assert body["total"] == 3
        assert len(body["items"]) == 1

    def test_empty_patch_is_400(self, client, auth, proj, make_record):
        record = make_record(proj.project, proj.rtype)
        r = client.patch(f"{proj.base}/{record.id}", json={}, headers=auth(proj.reviewer))
        assert r.status_code == 400

    def test_soft_delete(self, client, auth, proj, make_record):
        record = make_record(proj.project, proj.rtype)
        assert client.delete(f"{proj.base}/{record.id}", headers=auth(proj.reviewer)).status_code == 403
        r = client.delete(f"{proj.base}/{record.id}", headers=auth(proj.admin))
        assert r.status_code == 200
        assert _db.session.get(Record, record.id).deleted_at is not None
        assert client.get(f"{proj.base}/{record.id}", headers=auth(proj.admin)).status_code == 404


# ═══════════════════════════════════════════════════════════════════════════
# Review pipeline
# ═══════════════════════════════════════════════════════════════════════════


class TestRecordReview:
    def test_review_validate_unpublish(self, client, auth, proj, make_record):
        record = make_record(proj.project, proj.rtype)
        url = f"{proj.base}/{record.id}"

        r = client.post(f"{url}/review", headers=auth(proj.reviewer))
        assert r.status_code == 200
        assert r.get_json()["status"] == "pending_validation"

        r = client.post(f"{url}/review", headers=auth(proj.validator))
        assert r.status_code == 200
        body = r.get_json()
        assert body["status"] == "verified"
        assert body["record"]["validated_by"] == proj.validator.id

        r = client.post(f"{url}/unpublish", json={"reason": "wrong river"}, headers=auth(proj.owner))
        assert r.status_code == 200
        record_json = r.get_json()["record"]
        assert record_json["status"] == "pending_review"
        assert record_json["review_cycle"] == 2
        assert record_json["reviewed_by"] == proj.reviewer.id

    def test_viewer_review_is_404_for_unverified(self, client, auth, proj, make_record):
        record = make_record(proj.project, proj.rtype)
        r = client.post(f"{proj.base}/{record.id}/review", headers=auth(proj.viewer))
        assert r.status_code == 404

    def test_analyst_review_is_403(self, client, auth, proj, make_record):
        record = make_record(proj.project, proj.rtype)
        r = client.post(f"{proj.base}/{record.id}/review", headers=auth(proj.analyst))
        assert r.status_code == 403

    def test_anonymous_review_is_401(self, client, proj, make_record):
        record = make_record(proj.project, proj.rtype)
        assert client.post(f"{proj.base}/{record.id}/review").status_code == 401

    def test_reject(self, client, auth, proj, make_record):
        record = make_record(proj.project, proj.rtype, status="pending_validation")
        r = client.post(f"{proj.base}/{record.id}/reject", json={"reason": "blurry"},
                        headers=auth(proj.reviewer))
        assert r.status_code == 200
        assert r.get_json()["record"]["rejection_reason"] == "blurry"

    def test_project_review_queue(self, client, auth, proj, make_record):
        make_record(proj.project, proj.rtype)
        make_record(proj.project, proj.rtype, status="verified")
        r = client.get(f"/api/v1/projects/{proj.project.slug}/review-queue", headers=auth(proj.reviewer))
        assert r.status_code == 200
        assert r.get_json()["total"] == 1
        r = client.get(f"/api/v1/projects/{proj.project.slug}/review-queue", headers=auth(proj.validator))
        assert r.status_code == 403


# ═══════════════════════════════════════════════════════════════════════════
# Field-level verification
# ═══════════════════════════════════════════════════════════════════════════


class TestVerifyField:
    def test_toggle_keeps_status(self, client, auth, proj, make_record):
        record = make_record(proj.project, proj.rtype)
        url = f"{proj.base}/{record.id}/verify-field"

        r = client.post(url, json={"fieldSlug": "title", "verified": True}, headers=auth(proj.validator))
        assert r.status_code == 200
        body = r.get_json()
        assert body["verifiedField"] == "title"
        assert body["verified"] is True
        assert body["record"]["verified_fields"]["title"]["verified"] is True
        assert body["record"]["status"] == "pending_review"

        r = client.post(url, json={"fieldSlug": "title", "verified": False}, headers=auth(proj.validator))
        assert r.get_json()["record"]["verified_fields"] == {}

    def test_reviewer_without_validate_is_403(self, client, auth, proj, make_record):
        record = make_record(proj.project, proj.rtype)
        r = client.post(f"{proj.base}/{record.id}/verify-field", json={"fieldSlug": "title", "verified": True},
                        headers=auth(proj.reviewer))
        assert r.status_code == 403

    def test_unknown_field_is_404(self, client, auth, proj, make_record):
        record = make_record(proj.project, proj.rtype)
        r = client.post(f"{proj.base}/{record.id}/verify-field", json={"fieldSlug": "weight", "verified": True},
                        headers=auth(proj.validator))
        assert r.status_code == 404
        assert r.get_json()["error"] == "Field not found"

    def test_missing_slug_is_400(self, client, auth, proj, make_record):
        record = make_record(proj.project, proj.rtype)
        r = client.post(f"{proj.base}/{record.id}/verify-field", json={"verified": True},
                        headers=auth(proj.validator))
        assert r.status_code == 400


# ═══════════════════════════════════════════════════════════════════════════
# Propose change
# ═══════════════════════════════════════════════════════════════════════════


class TestProposeChange:
    def test_propose_on_verified(self, client, auth, proj, make_user, add_member, make_record):
        analyst = make_user("analyst")
        add_member(proj.project, analyst, role="viewer")
        record = make_record(proj.project, proj.rtype, status="verified")

        r = client.post(f"{proj.base}/{record.id}/propose-change", json={
            "proposed_data": {"title": "Grey heron", "count": 2},
            "change_summary": "species detail",
        }, headers=auth(analyst))
        assert r.status_code == 201
        body = r.get_json()
        assert body["record_id"] == record.id
        assert body["status"] == "pending_review"
        assert body["message"] == "Proposed change submitted successfully"
        assert _db.session.get(Record, record.id).data == {"title": "Heron at the lake"}

    def test_propose_on_unverified_is_400(self, client, auth, proj, make_user, add_member, make_record):
        analyst = make_user("analyst")
        add_member(proj.project, analyst, role="reviewer")
        record = make_record(proj.project, proj.rtype)
        r = client.post(f"{proj.base}/{record.id}/propose-change",
                        json={"proposed_data": {"title": "x"}}, headers=auth(analyst))
        assert r.status_code == 400
        assert r.get_json()["error"] == "Can only propose edits for verified records"

    def test_missing_proposed_data_is_400(self, client, auth, proj, make_user, add_member, make_record):
        analyst = make_user("analyst")
        add_member(proj.project, analyst, role="viewer")
        record = make_record(proj.project, proj.rtype, status="verified")
        r = client.post(f"{proj.base}/{record.id}/propose-change", json={}, headers=auth(analyst))
        assert r.status_code == 400
        assert r.get_json()["error"] == "Missing required field: proposed_data"

    def test_global_role_below_analyst_is_403(self, client, auth, proj, make_record):
        record = make_record(proj.project, proj.rtype, status="verified")
        r = client.post(f"{proj.base}/{record.id}/propose-change",
                        json={"proposed_data": {"title": "x"}}, headers=auth(proj.viewer))
        assert r.status_code == 403

    def test_unknown_record_is_404(self, client, auth, proj, make_user, add_member):
        analyst = make_user("analyst")
        add_member(proj.project, analyst, role="viewer")
        r = client.post(f"{proj.base}/777/propose-change",
                        json={"proposed_data": {"title": "x"}}, headers=auth(analyst))
        assert r.status_code == 404
