from __future__ import annotations

import json

from conftest import USER_B_ID
from mlchat.core import config as app_config
from mlchat.models.payment_intent import PaymentIntentRecord
from mlchat.services import stripe as stripe_module
from mlchat.services.stripe import StripeWebhookError


def _event_payload(intent_id: str, user_id: str, credits: int, event_type: str = "payment_intent.succeeded") -> dict:
    return {
        "id": "evt_test",
        "type": event_type,
        "data": {
            "object": {
                "id": intent_id,
                "amount": credits * 100,
                "status": "succeeded",
                "metadata": {"user_id": user_id, "credits": str(credits)},
            }
        },
    }


def test_webhook_valid_signature_applies_credit(client, db_session, balance_of, monkeypatch):
    app_config.settings.STRIPE_SECRET_KEY = "sk_test"
    app_config.settings.STRIPE_WEBHOOK_SECRET = "whsec_test"

    event = _event_payload("pi_live_1", USER_B_ID, 100)
    payload_bytes = json.dumps(event).encode("utf-8")

    def _fake_parse(self, payload, signature):
        assert signature == "valid"
        assert payload == payload_bytes
        return event

    monkeypatch.setattr(stripe_module.StripeService, "parse_event", _fake_parse, raising=False)

    resp = client.post("/stripe-webhook", content=payload_bytes, headers={"stripe-signature": "valid"})

    assert resp.status_code == 200
    assert resp.json() == {"received": True, "credits_applied": True}
    assert balance_of(USER_B_ID) == 100
    record = db_session.query(PaymentIntentRecord).one()
    assert record.status == "confirmed"
    assert record.mode == "stripe"


def test_webhook_duplicate_delivery_credits_once(client, balance_of, monkeypatch):
    app_config.settings.STRIPE_WEBHOOK_SECRET = "whsec_test"
    event = _event_payload("pi_live_2", USER_B_ID, 10)
    monkeypatch.setattr(stripe_module.StripeService, "parse_event", lambda self, p, s: event, raising=False)

    first = client.post("/stripe-webhook", content=b"{}", headers={"stripe-signature": "valid"})
    second = client.post("/stripe-webhook", content=b"{}", headers={"stripe-signature": "valid"})

    assert first.json()["credits_applied"] is True
    assert second.json() == {"received": True, "credits_applied": False}
    assert balance_of(USER_B_ID) == 10


def test_webhook_invalid_signature_rejected(client, monkeypatch):
    app_config.settings.STRIPE_WEBHOOK_SECRET = "whsec_test"

    def _fake_parse(self, payload, signature):
        raise StripeWebhookError("bad signature")

    monkeypatch.setattr(stripe_module.StripeService, "parse_event", _fake_parse, raising=False)

    resp = client.post("/stripe-webhook", content=b"{}", headers={"stripe-signature": "invalid"})
    assert resp.status_code == 400
    assert resp.json() == {"error": "bad signature", "code": "VALIDATION_ERROR"}


def test_webhook_without_secret_rejected(client):
    resp = client.post("/stripe-webhook", content=b"{}", headers={"stripe-signature": "t=1,v1=abc"})
    assert resp.status_code == 400


def test_webhook_canceled_intent_is_abandoned(client, client_for, identity_b, db_session, balance_of, monkeypatch):
    with client_for(identity_b) as c:
        intent = c.post("/create-payment-intent", json={"credits": 10}).json()

    event = _event_payload(intent["payment_intent_id"], USER_B_ID, 10, event_type="payment_intent.canceled")
    monkeypatch.setattr(stripe_module.StripeService, "parse_event", lambda self, p, s: event, raising=False)

    resp = client.post("/stripe-webhook", content=b"{}", headers={"stripe-signature": "valid"})

    assert resp.json() == {"received": True, "credits_applied": False}
    db_session.expire_all()
    assert db_session.query(PaymentIntentRecord).one().status == "abandoned"
    assert balance_of(USER_B_ID) == 0


def test_webhook_missing_metadata_is_server_error(client, monkeypatch):
    event = {"type": "payment_intent.succeeded", "data": {"object": {"id": "pi_x", "metadata": {}}}}
    monkeypatch.setattr(stripe_module.StripeService, "parse_event", lambda self, p, s: event, raising=False)

    resp = client.post("/stripe-webhook", content=b"{}", headers={"stripe-signature": "valid"})
    assert resp.status_code == 500
