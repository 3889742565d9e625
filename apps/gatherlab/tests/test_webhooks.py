from __future__ import annotations

import asyncio
import json
import time

import httpx
import pytest
from conftest import checkout_completed, sign

from gatherlab import queries
from gatherlab.config import Config


@pytest.fixture
def pending_session(runner, make_event):
    """A session that reached checkout for one $25 seat."""
    event, spots = make_event(
        slug="party",
        spots=[{"name": "Supporter", "kind": "fixed", "qty_total": 5, "required_contribution": 25}],
    )
    session_id = queries.create_rsvp_session(runner, event.id, "f" * 32, None)
    queries.set_session_contact(runner, session_id, "Pay", "Er", "payer@x", None)
    queries.create_rsvp(runner, event.id, spots["Supporter"], session_id, 25, "Pay", "Er", "payer@x")
    queries.set_session_client_secret(runner, session_id, "cs_test_secret")
    return queries.get_rsvp_session_by_id(runner, session_id)


def _post(client, body: dict, signature=None, raw: bytes = None):
    payload = raw if raw is not None else json.dumps(body).encode()
    headers = {"Content-Type": "application/json"}
    if signature is not False:
        headers["Stripe-Signature"] = signature or sign(payload)
    return client.post("/webhooks/stripe", content=payload, headers=headers)


def _state(runner, session_id):
    session = queries.get_rsvp_session_by_id(runner, session_id)
    rsvps = queries.list_rsvps_for_session(runner, session_id)
    return session.status.value, session.payment_intent_id, [r.status.value for r in rsvps]


def test_paid_checkout_marks_session_and_rsvps_paid(client, runner, pending_session):
    response = _post(client, checkout_completed(pending_session.id, payment_intent="pi_abc"))

    assert response.status_code == 200
    assert _state(runner, pending_session.id) == ("paid", "pi_abc", ["paid"])
    assert queries.confirmation_exists_for_session(runner, pending_session.id)


def test_redelivery_is_idempotent(client, runner, pending_session):
    body = checkout_completed(pending_session.id, payment_intent="pi_abc")
    _post(client, body)
    first = _state(runner, pending_session.id)

    response = _post(client, body)

    assert response.status_code == 200
    assert _state(runner, pending_session.id) == first
    count = runner.fetch_one(
        queries.SELECT(queries.COUNT(queries.emails.c.id).AS("n"))
        .FROM(queries.emails)
        .WHERE(queries.emails.c.rsvp_session_id == pending_session.id)
    )
    assert int(count["n"]) == 1


def test_tampered_body_is_rejected(client, runner, pending_session):
    payload = json.dumps(checkout_completed(pending_session.id)).encode()
    signature = sign(payload)
    tampered = payload.replace(b'"paid"', b'"paid" ')

    response = _post(client, None, signature=signature, raw=tampered)

    assert response.status_code == 401
    assert _state(runner, pending_session.id) == ("pending", None, ["pending"])


def test_missing_signature_or_wrong_secret_is_rejected(client, runner, pending_session):
    body = checkout_completed(pending_session.id)
    assert _post(client, body, signature=False).status_code == 401

    payload = json.dumps(body).encode()
    assert _post(client, None, signature=sign(payload, secret="whsec_other"), raw=payload).status_code == 401
    assert _state(runner, pending_session.id)[0] == "pending"


def test_any_matching_v1_signature_is_accepted(client, runner, pending_session):
    payload = json.dumps(checkout_completed(pending_session.id)).encode()
    good = sign(payload)
    timestamp, v1 = good.split(",")
    header = f"{timestamp},v1={'0' * 64},{v1}"

    assert _post(client, None, signature=header, raw=payload).status_code == 200
    assert _state(runner, pending_session.id)[0] == "paid"


def test_old_timestamps_are_accepted_when_tolerance_is_off(client, runner, pending_session):
    payload = json.dumps(checkout_completed(pending_session.id)).encode()
    header = sign(payload, timestamp=int(time.time()) - 86400)

    assert _post(client, None, signature=header, raw=payload).status_code == 200


def test_old_timestamps_are_rejected_with_a_tolerance(client, runner, pending_session, monkeypatch):
    monkeypatch.setattr(Config, "STRIPE_WEBHOOK_TOLERANCE", 300)
    payload = json.dumps(checkout_completed(pending_session.id)).encode()
    header = sign(payload, timestamp=int(time.time()) - 86400)

    assert _post(client, None, signature=header, raw=payload).status_code == 401


def test_unpaid_unknown_and_unrelated_events_are_acknowledged(client, runner, pending_session):
    assert _post(client, checkout_completed(pending_session.id, payment_status="unpaid")).status_code == 200
    assert _post(client, checkout_completed(987654)).status_code == 200
    assert _post(client, {"type": "payment_intent.created", "data": {"object": {}}}).status_code == 200
    assert _state(runner, pending_session.id)[0] == "pending"


async def test_parked_manage_page_wakes_when_webhook_arrives(app, runner, pending_session, monkeypatch):
    monkeypatch.setattr(Config, "RENDEZVOUS_TIMEOUT", 10.0)
    manage_url = f"/e/party/rsvp/manage?session={pending_session.token}"
    payload = json.dumps(checkout_completed(pending_session.id)).encode()

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        parked = asyncio.create_task(client.get(manage_url))
        for _ in range(200):
            if len(app.state.rendezvous) == 1:
                break
            await asyncio.sleep(0.01)
        assert len(app.state.rendezvous) == 1
        assert not parked.done()

        response = await client.post(
            "/webhooks/stripe",
            content=payload,
            headers={"Stripe-Signature": sign(payload)},
        )
        assert response.status_code == 200

        started = time.monotonic()
        page = await asyncio.wait_for(parked, timeout=2.0)
        assert time.monotonic() - started < 1.0

    assert page.status_code == 200
    assert "You're going" in page.text
    assert "Supporter, Pay Er, payer@x, 25" in page.text


async def test_parked_manage_page_times_out_and_rereads(app, runner, pending_session, monkeypatch):
    monkeypatch.setattr(Config, "RENDEZVOUS_TIMEOUT", 0.05)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        page = await client.get(f"/e/party/rsvp/manage?session={pending_session.token}")

    assert page.status_code == 200
    assert "still waiting" in page.text
    assert len(app.state.rendezvous) == 0
