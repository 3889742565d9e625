from __future__ import annotations

import hashlib
import hmac
import time
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlsplit

import pytest
from fastapi.testclient import TestClient

from gatherlab import auth, db, mailer, payments, queries
from gatherlab.config import Config

WEBHOOK_SECRET = "whsec_test"


@pytest.fixture(autouse=True)
def test_config(tmp_path, monkeypatch):
    monkeypatch.setattr(Config, "DB_PATH", str(tmp_path / "gatherlab.db"))
    monkeypatch.setattr(Config, "DB_SEED_PATH", None)
    monkeypatch.setattr(Config, "COOKIE_SECURE", False)
    monkeypatch.setattr(Config, "APP_URL", "http://testserver")
    monkeypatch.setattr(Config, "STRIPE_WEBHOOK_KEY", WEBHOOK_SECRET)
    monkeypatch.setattr(Config, "STRIPE_WEBHOOK_TOLERANCE", 0)
    monkeypatch.setattr(Config, "RENDEZVOUS_TIMEOUT", 1.0)
    monkeypatch.setattr(Config, "EMAIL_RATELIMIT", 1000)
    db.init_db()


@pytest.fixture
def runner():
    r = db.get_runner()
    try:
        yield r
    finally:
        r.connection.close()


@pytest.fixture
def outbox(monkeypatch):
    """Every message the SMTP transport would have sent."""
    sent = []

    def _send(self, message):
        sent.append(message)

    monkeypatch.setattr(mailer.SmtpTransport, "send", _send)
    return sent


@pytest.fixture
def checkouts(monkeypatch):
    """Stand-in for the Stripe checkout call, recording what it was asked for."""
    calls = []

    async def _create_checkout(session_id, customer_email, line_items, return_url):
        calls.append(
            {
                "session_id": session_id,
                "customer_email": customer_email,
                "line_items": line_items,
                "return_url": return_url,
            }
        )
        return f"cs_test_{session_id}_secret_{len(calls)}"

    monkeypatch.setattr(payments, "create_checkout", _create_checkout)
    return calls


@pytest.fixture
def app(outbox, checkouts):
    from gatherlab.app import create_app

    return create_app()


@pytest.fixture
def client(app):
    with TestClient(app, follow_redirects=False) as c:
        yield c


@pytest.fixture
def make_event(runner):
    counter = {"n": 0}

    def _make(slug=None, capacity=10, spots=(), guest_list_id=None, unlisted=False):
        counter["n"] += 1
        starts_at = datetime.now(timezone.utc) + timedelta(days=7)
        event_id = queries.create_event(
            runner,
            {
                "slug": slug or f"event-{counter['n']}",
                "title": f"Event {counter['n']}",
                "description": "A gathering",
                "starts_at": starts_at.isoformat(),
                "ends_at": (starts_at + timedelta(hours=3)).isoformat(),
                "capacity": capacity,
                "unlisted": unlisted,
                "guest_list_id": guest_list_id,
            },
        )
        spot_ids = {}
        for sort, spot in enumerate(spots):
            data = {"qty_per_person": 1, "kind": "free", "sort": sort, **spot}
            spot_id = queries.create_spot(runner, data)
            queries.add_spot_to_event(runner, event_id, spot_id)
            spot_ids[spot["name"]] = spot_id
        return queries.get_event_by_id(runner, event_id), spot_ids

    return _make


@pytest.fixture
def make_user(runner):
    def _make(email="ada@gatherlab.org", first_name="Ada", last_name="Lovelace", roles=()):
        user_id = queries.create_user(runner, email, first_name, last_name)
        for role in roles:
            queries.add_user_role(runner, user_id, role)
        return queries.get_user_by_id(runner, user_id)

    return _make


def log_in(client, runner, user) -> None:
    _, token = auth.issue_login_token(runner, user.email)
    response = client.get(f"/login?token={token}")
    assert response.status_code == 303


def session_token(response) -> str:
    return parse_qs(urlsplit(response.headers["location"]).query)["session"][0]


def sign(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.".encode() + payload
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def checkout_completed(session_id: int, payment_status: str = "paid", payment_intent: str = "pi_123") -> dict:
    return {
        "id": "evt_test",
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "client_reference_id": str(session_id),
                "payment_intent": payment_intent,
                "payment_status": payment_status,
            }
        },
    }


def wait_until(predicate, timeout: float = 3.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()
