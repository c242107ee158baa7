from __future__ import annotations

import pytest

from conftest import USER_A_ID, USER_B_ID
from mlchat.dependencies.services import get_stripe_service
from mlchat.services.stripe import StripeService


class _FailingPaymentIntentAPI:
    def create(self, **kwargs):
        raise RuntimeError("stripe is down")


class _FakeStripe:
    api_key = None
    PaymentIntent = _FailingPaymentIntentAPI()


def test_credit_packages_listed(client):
    res = client.get("/credit-packages")
    assert res.status_code == 200
    packages = res.json()
    assert [p["credits"] for p in packages] == [10, 50, 100, 500]
    assert [p["price_cents"] for p in packages] == [500, 2000, 3500, 15000]
    assert sum(1 for p in packages if p["popular"]) == 1


def test_create_payment_intent_placeholder(client):
    res = client.post("/create-payment-intent", json={"credits": 50})

    assert res.status_code == 200
    body = res.json()
    assert body["amount"] == 5000
    assert body["credits"] == 50
    assert body["mode"] == "placeholder"
    assert body["payment_intent_id"].startswith("pi_test_")
    assert body["client_secret"].startswith("pi_test_")
    assert body["client_secret"].endswith(f"_{USER_A_ID}")
    assert body["payment_intent_id"] != body["client_secret"]


@pytest.mark.parametrize("credits", [0, -1, 1.5, "5", True, None])
def test_create_payment_intent_rejects_invalid_quantity(client, credits):
    res = client.post("/create-payment-intent", json={"credits": credits})
    assert res.status_code == 400
    assert res.json() == {"error": "Invalid credit amount", "code": "VALIDATION_ERROR"}


def test_create_payment_intent_processor_failure(app, client):
    app.dependency_overrides[get_stripe_service] = lambda: StripeService(_FakeStripe(), secret_key="sk_test_123")

    res = client.post("/create-payment-intent", json={"credits": 10})

    assert res.status_code == 500
    assert res.json()["error"] == "Failed to create payment intent"


def test_confirm_payment_flow_is_idempotent_with_intent_id(client_for, identity_b, balance_of):
    with client_for(identity_b) as c:
        intent = c.post("/create-payment-intent", json={"credits": 10}).json()
        payload = {"credits": 10, "payment_intent_id": intent["payment_intent_id"]}

        first = c.post("/confirm-payment", json=payload)
        second = c.post("/confirm-payment", json=payload)

    assert first.status_code == 200
    assert first.json() == {"credits_added": 10, "remaining_credits": 10, "already_confirmed": False}
    assert second.json() == {"credits_added": 0, "remaining_credits": 10, "already_confirmed": True}
    assert balance_of(USER_B_ID) == 10


def test_confirm_payment_without_intent_id_credits_each_time(client, balance_of):
    client.post("/confirm-payment", json={"credits": 10})
    res = client.post("/confirm-payment", json={"credits": 10})

    assert res.status_code == 200
    assert res.json()["remaining_credits"] == 23
    assert balance_of(USER_A_ID) == 23


def test_confirm_payment_rejects_invalid_quantity(client, balance_of):
    res = client.post("/confirm-payment", json={"credits": -5})
    assert res.status_code == 400
    assert balance_of(USER_A_ID) == 3


def test_confirm_payment_requires_auth(anon_client):
    res = anon_client.post("/confirm-payment", json={"credits": 10})
    assert res.status_code == 401


def test_create_payment_intent_id_conflict_is_500(client, monkeypatch):
    import uuid

    from mlchat.services import payments

    fixed = uuid.UUID(int=9)
    monkeypatch.setattr(payments.uuid, "uuid4", lambda: fixed)
    monkeypatch.setattr(payments.time, "time", lambda: 1_700_000_000.0)

    assert client.post("/create-payment-intent", json={"credits": 10}).status_code == 200
    res = client.post("/create-payment-intent", json={"credits": 10})

    assert res.status_code == 500
    assert res.json()["error"] == "Failed to create payment intent"
