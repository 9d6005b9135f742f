import pytest
import stripe
from bson import ObjectId


class FakeIntent:
    def __init__(self, client_secret):
        self.client_secret = client_secret


@pytest.fixture
def processor(monkeypatch):
    calls = []
    state = {"result": FakeIntent("pi_123_secret_456")}

    def fake_create(**kwargs):
        calls.append({"kwargs": kwargs, "api_key": stripe.api_key})
        if isinstance(state["result"], Exception):
            raise state["result"]
        return state["result"]

    monkeypatch.setattr(stripe.PaymentIntent, "create", fake_create)
    monkeypatch.setattr(stripe, "api_key", None)
    return calls, state


def test_payment_intent_amount_in_cents(customer, make_plant, processor):
    calls, _ = processor
    plant_id = make_plant(price=10.00)

    response = customer.post(
        "/create-payment-intent", json={"plantId": plant_id, "quantity": 3}
    )

    assert response.status_code == 200
    assert response.get_json() == {"clientSecret": "pi_123_secret_456"}
    assert calls == [
        {
            "kwargs": {
                "amount": 3000,
                "currency": "usd",
                "automatic_payment_methods": {"enabled": True},
            },
            "api_key": "sk_test_123",
        }
    ]


def test_payment_intent_rejects_amount_below_minimum(customer, make_plant, processor):
    calls, _ = processor
    plant_id = make_plant(price=0.49)

    response = customer.post(
        "/create-payment-intent", json={"plantId": plant_id, "quantity": 1}
    )

    assert response.status_code == 400
    assert response.get_json()["amount"] == 49
    assert calls == []


def test_payment_intent_exactly_minimum_is_accepted(customer, make_plant, processor):
    plant_id = make_plant(price=0.5)

    response = customer.post(
        "/create-payment-intent", json={"plantId": plant_id, "quantity": 1}
    )

    assert response.status_code == 200


def test_payment_intent_plant_lookup(customer, processor):
    assert (
        customer.post("/create-payment-intent", json={"plantId": "bad", "quantity": 1}).status_code
        == 400
    )
    assert (
        customer.post(
            "/create-payment-intent", json={"plantId": str(ObjectId()), "quantity": 1}
        ).status_code
        == 404
    )


def test_payment_intent_requires_quantity(customer, make_plant, processor):
    plant_id = make_plant()

    for quantity in (0, -2, "many", None):
        response = customer.post(
            "/create-payment-intent", json={"plantId": plant_id, "quantity": quantity}
        )
        assert response.status_code == 400


def test_payment_intent_processor_failures(customer, make_plant, processor):
    _, state = processor
    plant_id = make_plant()
    body = {"plantId": plant_id, "quantity": 1}

    state["result"] = stripe.CardError("card declined", param=None, code="card_declined")
    assert customer.post("/create-payment-intent", json=body).status_code == 502

    state["result"] = stripe.APIConnectionError("processor unreachable")
    assert customer.post("/create-payment-intent", json=body).status_code == 502

    state["result"] = FakeIntent(None)
    assert customer.post("/create-payment-intent", json=body).status_code == 502


def test_payment_intent_without_secret_key(app, customer, make_plant, processor):
    calls, _ = processor
    app.config["STRIPE_SECRET_KEY"] = ""
    plant_id = make_plant()

    response = customer.post(
        "/create-payment-intent", json={"plantId": plant_id, "quantity": 1}
    )

    assert response.status_code == 500
    assert calls == []


def test_payment_intent_requires_login(client):
    assert client.post("/create-payment-intent", json={}).status_code == 401
