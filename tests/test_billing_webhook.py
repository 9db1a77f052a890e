"""
Payment webhook tests:
  - signed checkout.session.completed credits the package once
  - redelivery of the same checkout session is a no-op
  - bad / missing signature → 403, unset secret → 503
  - unhandled event types are acknowledged without side effects
"""

import json

import pytest

from app.models.credits import CreditTransaction, ProjectCredits
from app.utils.crypto import sign_payload, verify_signature

SECRET = "whsec_test"
URL = "/api/v1/billing/webhook"


def _event(project_id, session_id="cs_test_1", package_id="starter", event_type="checkout.session.completed"):
    return {
        "id": f"evt_{session_id}",
        "type": event_type,
        "data": {"object": {
            "id": session_id,
            "payment_intent": f"pi_{session_id}",
            "metadata": {"project_id": str(project_id), "user_id": None, "package_id": package_id},
        }},
    }


def _post(client, event, secret=SECRET, signature=None):
    body = json.dumps(event).encode("utf-8")
    sig = signature if signature is not None else sign_payload(secret, body)
    return client.post(URL, data=body, headers={
        "Content-Type": "application/json",
        "X-Payment-Signature": sig,
    })


# ═══════════════════════════════════════════════════════════════════════════
# Crediting
# ═══════════════════════════════════════════════════════════════════════════


class TestCheckoutCompleted:
    def test_credits_package(self, client, make_project):
        project = make_project()
        r = _post(client, _event(project.id))
        assert r.status_code == 200
        assert r.get_json() == {"received": True, "duplicate": False, "handled": True, "creditsAdded": 100}

        tx = CreditTransaction.query.one()
        assert tx.transaction_type == "purchase"
        assert tx.external_reference == "cs_test_1"
        assert tx.payment_intent_id == "pi_cs_test_1"
        assert ProjectCredits.query.filter_by(project_id=project.id).one().balance == 100

    def test_redelivery_is_idempotent(self, client, make_project):
        project = make_project()
        assert _post(client, _event(project.id)).get_json()["duplicate"] is False
        r = _post(client, _event(project.id))
        assert r.status_code == 200
        assert r.get_json()["duplicate"] is True
        assert CreditTransaction.query.count() == 1
        account = ProjectCredits.query.filter_by(project_id=project.id).one()
        assert account.balance == 100
        assert account.total_purchased == 100

    def test_unknown_package_is_400(self, client, make_project):
        project = make_project()
        r = _post(client, _event(project.id, package_id="enterprise"))
        assert r.status_code == 400
        assert CreditTransaction.query.count() == 0

    def test_unknown_project_is_404(self, client):
        r = _post(client, _event(9999))
        assert r.status_code == 404

    def test_other_events_are_acknowledged(self, client, make_project):
        project = make_project()
        r = _post(client, _event(project.id, event_type="invoice.paid"))
        assert r.status_code == 200
        assert r.get_json()["handled"] is False
        assert CreditTransaction.query.count() == 0


# ═══════════════════════════════════════════════════════════════════════════
# Signature & configuration
# ═══════════════════════════════════════════════════════════════════════════


class TestSignature:
    @pytest.mark.parametrize("signature", ["", "deadbeef"])
    def test_bad_signature_is_403(self, client, make_project, signature):
        project = make_project()
        r = _post(client, _event(project.id), signature=signature)
        assert r.status_code == 403
        assert CreditTransaction.query.count() == 0

    def test_wrong_secret_is_403(self, client, make_project):
        r = _post(client, _event(make_project().id), secret="whsec_other")
        assert r.status_code == 403

    def test_non_ascii_signature_is_403(self, client, make_project):
        r = _post(client, _event(make_project().id), signature="éabc")
        assert r.status_code == 403
        assert r.get_json()["error"] == "Invalid signature"
        assert CreditTransaction.query.count() == 0

    def test_verify_signature_non_ascii_is_mismatch(self):
        assert verify_signature(SECRET, b"{}", "é" + sign_payload(SECRET, b"{}")[1:]) is False
        assert verify_signature(SECRET, b"{}", sign_payload(SECRET, b"{}")) is True

    def test_unconfigured_secret_is_503(self, app, client, monkeypatch, make_project):
        monkeypatch.setitem(app.config, "PAYMENT_WEBHOOK_SECRET", None)
        r = _post(client, _event(make_project().id))
        assert r.status_code == 503
        assert r.get_json()["code"] == "ERR_UNAVAILABLE"

    def test_malformed_body_is_400(self, client):
        body = b"not json"
        r = client.post(URL, data=body, headers={
            "Content-Type": "application/json",
            "X-Payment-Signature": sign_payload(SECRET, body),
        })
        assert r.status_code == 400


def test_packages_listing(client):
    r = client.get("/api/v1/billing/packages")
    assert r.status_code == 200
    ids = [p["id"] for p in r.get_json()["packages"]]
    assert ids == ["starter", "standard", "professional"]
