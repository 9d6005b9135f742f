import fakeredis
import mongomock
import pytest
import resend
from rq import Queue, SimpleWorker

from plantnet import create_app


class RecordingResend:
    """Stands in for ``resend.Emails.send``; fails the first ``failures`` calls."""

    def __init__(self, failures=0):
        self.failures = failures
        self.calls = 0
        self.sent = []

    def __call__(self, payload):
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError("mail provider unavailable")
        self.sent.append(payload)
        return {"id": f"email_{self.calls}"}


def run_email_worker(queue):
    """Drain ``queue`` in-process, the way ``rq worker --burst`` would."""
    SimpleWorker([queue], connection=queue.connection).work(burst=True)


@pytest.fixture
def database():
    return mongomock.MongoClient()["plantnet"]


@pytest.fixture
def redis_server():
    return fakeredis.FakeServer()


@pytest.fixture
def email_queue(redis_server):
    return Queue("emails", connection=fakeredis.FakeStrictRedis(server=redis_server))


@pytest.fixture
def email_sender(monkeypatch):
    sender = RecordingResend()
    monkeypatch.setattr(resend.Emails, "send", sender)
    monkeypatch.setenv("RESEND_API_KEY", "re_test")
    return sender


@pytest.fixture
def app(database, email_queue, email_sender):
    return create_app(
        {
            "TESTING": True,
            "JWT_SECRET_KEY": "test-secret",
            "EMAIL_RETRY_INTERVAL_SECONDS": 0,
            "STRIPE_SECRET_KEY": "sk_test_123",
        },
        database=database,
        email_queue=email_queue,
    )


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(database):
    def _make_user(email, role="customer", **fields):
        document = {"email": email, "name": email.split("@")[0].title(), "role": role}
        document.update(fields)
        database.users.insert_one(document)
        return document

    return _make_user


@pytest.fixture
def login(app):
    def _login(email):
        session_client = app.test_client()
        response = session_client.post("/jwt", json={"email": email})
        assert response.status_code == 200
        return session_client

    return _login


@pytest.fixture
def seller(make_user, login):
    make_user("seller@plantnet.shop", role="seller", name="Sally Seller")
    return login("seller@plantnet.shop")


@pytest.fixture
def admin(make_user, login):
    make_user("admin@plantnet.shop", role="admin")
    return login("admin@plantnet.shop")


@pytest.fixture
def customer(make_user, login):
    make_user("carol@example.com", role="customer", name="Carol")
    return login("carol@example.com")


@pytest.fixture
def make_plant(database):
    def _make_plant(seller_email="seller@plantnet.shop", **fields):
        document = {
            "name": "Monstera",
            "category": "Indoor",
            "description": "Split-leaf philodendron",
            "price": 10.0,
            "quantity": 10,
            "image": "https://img.example.com/monstera.jpg",
            "seller": {"email": seller_email, "name": "Sally Seller"},
        }
        document.update(fields)
        result = database.plants.insert_one(document)
        return str(result.inserted_id)

    return _make_plant
