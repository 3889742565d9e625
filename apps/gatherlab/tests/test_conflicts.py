from __future__ import annotations

import sqlite3

import pytest
from conftest import session_token

from gatherlab import conflicts, queries
from gatherlab.errors import RsvpConflict


def _pending_session(client, runner, slug, spot_id, people, qty=None):
    response = client.post(f"/e/{slug}/rsvp")
    token = session_token(response)
    client.post(
        f"/e/{slug}/rsvp/selection?session={token}",
        json=[{"spot_id": spot_id, "qty": qty or len(people)}],
    )
    session = queries.get_rsvp_session_by_token(runner, token)
    rsvps = queries.list_rsvps_for_session(runner, session.id)
    payload = [
        {"rsvp_id": rsvp.id, "first_name": first, "last_name": last, "email": email, "is_me": index == 0}
        for index, (rsvp, (first, last, email)) in enumerate(zip(rsvps, people))
    ]
    response = client.post(f"/e/{slug}/rsvp/attendees?session={token}", json=payload)
    return token, response


@pytest.fixture
def paid_spot(make_event):
    _, spots = make_event(
        slug="e1",
        spots=[{"name": "s1", "kind": "fixed", "qty_total": 10, "qty_per_person": 3, "required_contribution": 15}],
    )
    return spots["s1"]


def test_cross_device_attendees_supersede_the_older_pending_session(client, runner, paid_spot):
    first, response = _pending_session(client, runner, "e1", paid_spot, [("U", "Ser", "u@x")])
    assert response.status_code == 302
    old = queries.get_rsvp_session_by_token(runner, first)
    assert old.email == "u@x"

    second, response = _pending_session(client, runner, "e1", paid_spot, [("U", "Ser", "u@x")])
    assert response.status_code == 302
    assert response.headers["location"] == f"/e/e1/rsvp/contribution?session={second}"

    assert queries.get_rsvp_session_by_token(runner, first) is None
    assert queries.list_rsvps_for_session(runner, old.id) == []
    current = queries.get_rsvp_session_by_token(runner, second)
    assert current.email == "u@x"
    assert client.get(f"/e/e1/rsvp/selection?session={first}").headers["location"] == "/e/e1"


def test_email_with_a_paid_rsvp_is_rejected_inline(client, runner, make_event):
    _, spots = make_event(slug="e1", spots=[{"name": "s1", "qty_total": 10}])
    token, _ = _pending_session(client, runner, "e1", spots["s1"], [("A", "B", "a@x")])
    client.post(f"/e/e1/rsvp/contribution?session={token}")

    again, response = _pending_session(client, runner, "e1", spots["s1"], [("A", "B", "a@x")])

    assert response.status_code == 200
    assert "already RSVPed" in response.text
    session = queries.get_rsvp_session_by_token(runner, again)
    assert session.email is None
    assert all(r.email is None for r in queries.list_rsvps_for_session(runner, session.id))


def test_email_held_by_another_pending_session_is_rejected(client, runner, paid_spot):
    _pending_session(client, runner, "e1", paid_spot, [("Me", "One", "me@x"), ("Guest", "Two", "guest@x")])

    token, response = _pending_session(client, runner, "e1", paid_spot, [("Guest", "Two", "guest@x")])

    assert response.status_code == 200
    assert "currently RSVPing" in response.text
    assert queries.get_rsvp_session_by_token(runner, token).email is None


def test_rejection_leaves_superseded_sessions_in_place(client, runner, paid_spot):
    """A conflict on a second attendee rolls back the whole step."""
    holder, _ = _pending_session(client, runner, "e1", paid_spot, [("Me", "One", "me@x"), ("Guest", "Two", "guest@x")])
    older, _ = _pending_session(client, runner, "e1", paid_spot, [("New", "Person", "new@x")])

    _, response = _pending_session(
        client, runner, "e1", paid_spot, [("New", "Person", "new@x"), ("Guest", "Two", "guest@x")]
    )

    assert "currently RSVPing" in response.text
    assert queries.get_rsvp_session_by_token(runner, older) is not None
    assert queries.get_rsvp_session_by_token(runner, holder) is not None


def test_resolve_supersedes_only_pending_sessions(runner, make_event):
    event, spots = make_event(slug="e1", spots=[{"name": "s1", "qty_total": 10}])

    pending_id = queries.create_rsvp_session(runner, event.id, "a" * 32, None)
    queries.set_session_contact(runner, pending_id, "A", "B", "a@x", None)
    queries.create_rsvp(runner, event.id, spots["s1"], pending_id, 0)

    paid_id = queries.create_rsvp_session(runner, event.id, "b" * 32, None)
    queries.set_session_contact(runner, paid_id, "C", "D", "c@x", None)
    queries.mark_session_paid(runner, paid_id, None)

    current_id = queries.create_rsvp_session(runner, event.id, "c" * 32, None)

    with runner.transaction():
        conflicts.resolve(runner, event.id, "A@X", current_id)
        assert conflicts.supersede_sessions(runner, event.id, "c@x", current_id) == 0

    assert queries.get_rsvp_session_by_id(runner, pending_id) is None
    assert queries.get_rsvp_session_by_id(runner, paid_id) is not None


def test_check_rsvp_conflict_prefers_paid_over_pending(runner, make_event):
    event, spots = make_event(slug="e1", spots=[{"name": "s1", "qty_total": 10}])
    paid_id = queries.create_rsvp_session(runner, event.id, "a" * 32, None)
    queries.create_rsvp(runner, event.id, spots["s1"], paid_id, 0, "A", "B", "a@x")
    queries.mark_session_paid(runner, paid_id, None)
    other_id = queries.create_rsvp_session(runner, event.id, "b" * 32, None)
    queries.create_rsvp(runner, event.id, spots["s1"], other_id, 0, "A", "B", "a@x")

    with pytest.raises(RsvpConflict) as exc:
        conflicts.check_rsvp_conflict(runner, event.id, "a@x", session_id=999)
    assert exc.value.kind == RsvpConflict.ALREADY_RSVPED

    conflicts.check_rsvp_conflict(runner, event.id, "nobody@x", session_id=999)


def test_database_rejects_a_second_paid_rsvp_for_the_same_email(runner, make_event):
    event, spots = make_event(slug="e1", spots=[{"name": "s1", "qty_total": 10}])
    first = queries.create_rsvp_session(runner, event.id, "a" * 32, None)
    queries.create_rsvp(runner, event.id, spots["s1"], first, 0, "A", "B", "a@x")
    queries.mark_session_paid(runner, first, None)
    second = queries.create_rsvp_session(runner, event.id, "b" * 32, None)
    queries.create_rsvp(runner, event.id, spots["s1"], second, 0, "A", "B", "a@x")

    with pytest.raises(sqlite3.IntegrityError):
        with runner.transaction():
            queries.mark_session_paid(runner, second, None)

    assert queries.get_rsvp_session_by_id(runner, second).status.value == "pending"
