"""
Error sanitization and app-wide exception mapping.
"""

import pytest

from app.utils.errors import (
    MAX_ERROR_MESSAGE_LENGTH,
    E,
    SafeErrors,
    api_error,
    sanitize_error_message,
)


class TestSanitize:
    @pytest.mark.parametrize("message", [
        "could not connect to postgres://admin:hunter2@db:5432/cases",
        "psycopg2.OperationalError: connection refused",
        'File "/srv/app/services/x.py", line 12, in run',
        "Traceback (most recent call last):",
        "invalid api key supplied",
        "SQL syntax error near 'FROM'",
    ])
    def test_sensitive_messages_are_replaced(self, message):
        assert sanitize_error_message(message) == SafeErrors.INTERNAL

    def test_plain_message_passes(self):
        assert sanitize_error_message("Incident not found") == "Incident not found"

    def test_long_message_truncated(self):
        out = sanitize_error_message("x" * 500)
        assert out.endswith("...")
        assert len(out) == MAX_ERROR_MESSAGE_LENGTH + 3

    def test_empty_uses_fallback(self):
        assert sanitize_error_message(None, fallback="nothing") == "nothing"


class TestApiError:
    def test_body_shape(self, app):
        with app.test_request_context():
            resp, status = api_error(E.NOT_FOUND, "Record not found", details={"id": 3})
        assert status == 404
        assert resp.get_json() == {
            "success": False,
            "error": "Record not found",
            "code": "ERR_NOT_FOUND",
            "details": {"id": 3},
        }

    def test_unsanitized_fixed_message(self, app):
        with app.test_request_context():
            resp, status = api_error(E.UNAUTHORIZED, "Invalid email or password", status=401, sanitize=False)
        assert status == 401
        assert resp.get_json()["error"] == "Invalid email or password"


class TestUnexpectedErrors:
    def test_unhandled_exception_is_sanitized_500(self, client, auth, monkeypatch, make_user, make_incident):
        from app.services import review_workflow as wf

        def _boom(*args, **kwargs):
            raise RuntimeError("connection to database at 10.0.0.5 failed; password=hunter2")

        monkeypatch.setattr(wf, "submit_review", _boom)
        incident = make_incident()
        r = client.post(f"/api/v1/incidents/{incident.id}/review", headers=auth(make_user("analyst")))
        assert r.status_code == 500
        body = r.get_json()
        assert body == {"success": False, "error": SafeErrors.INTERNAL, "code": "ERR_INTERNAL"}
        assert "hunter2" not in r.get_data(as_text=True)

    def test_unknown_route_is_json_404(self, client):
        r = client.get("/api/v1/does-not-exist")
        assert r.status_code == 404
        assert r.get_json()["code"] == "ERR_NOT_FOUND"
