"""RSVP session machine.

A session walks INIT -> SELECTION -> ATTENDEES -> CONTRIBUTION -> PAID and is
addressed by an opaque token carried in ``?session=``. Every step recomputes
availability and replaces pending state inside one transaction, so revisiting a
step with the same token is always safe. Paid sessions never change.
"""
from __future__ import annotations

import json
import logging
from collections import Counter, OrderedDict, defaultdict
from typing import List, Optional

from pydantic import TypeAdapter, ValidationError

from gatherlab import conflicts, mailer, payments, queries
from gatherlab.auth import new_token
from gatherlab.config import Config
from gatherlab.db import write_transaction
from gatherlab.errors import BadRequest, Forbidden
from gatherlab.models import (
    AttendeeIn,
    EventOut,
    LineItem,
    RsvpOut,
    RsvpSessionOut,
    SelectionItem,
    SessionStatus,
    SpotKind,
    SpotOut,
    UserOut,
)
from gatherlab.rendezvous import session_key
from gatherlab.stats import load_stats

logger = logging.getLogger(__name__)

STEP_SELECTION = "selection"
STEP_ATTENDEES = "attendees"
STEP_CONTRIBUTION = "contribution"
STEP_MANAGE = "manage"

_selection_adapter = TypeAdapter(List[SelectionItem])
_attendees_adapter = TypeAdapter(List[AttendeeIn])


def step_url(event: EventOut, step: str, session: RsvpSessionOut) -> str:
    return f"/e/{event.slug}/rsvp/{step}?session={session.token}"


def return_url(event: EventOut, session: RsvpSessionOut) -> str:
    return Config.APP_URL + step_url(event, STEP_MANAGE, session)


def _parse(adapter: TypeAdapter, raw, reason: str):
    try:
        if isinstance(raw, (str, bytes)):
            return adapter.validate_json(raw)
        return adapter.validate_python(raw)
    except (ValidationError, ValueError) as exc:
        raise BadRequest(reason, str(exc))


def parse_selection(raw) -> List[SelectionItem]:
    return _parse(_selection_adapter, raw, "InvalidSelection")


def parse_attendees(raw) -> List[AttendeeIn]:
    return _parse(_attendees_adapter, raw, "InvalidAttendees")


def load_session(runner, event: EventOut, token: Optional[str]) -> Optional[RsvpSessionOut]:
    if not token:
        return None
    session = queries.get_rsvp_session_by_token(runner, token)
    if session is None or session.event_id != event.id:
        return None
    return session


# INIT -> SELECTION


def _create_session(runner, event: EventOut, user: Optional[UserOut]) -> RsvpSessionOut:
    token = new_token()
    session_id = queries.create_rsvp_session(runner, event.id, token, user.id if user else None)
    logger.info("Started rsvp session %s for event %s", session_id, event.slug)
    return queries.get_rsvp_session_by_id(runner, session_id)


def start_session(runner, event: EventOut, user: Optional[UserOut]) -> Optional[RsvpSessionOut]:
    """Begin or resume a session.

    Returns None when the event has a guest list and nobody is logged in; the
    caller sends the visitor to the guest list prompt instead.
    """
    with write_transaction(runner):
        if user is not None:
            existing = queries.get_latest_session_for_user(runner, event.id, user.id)
            if existing is not None:
                return existing

        if event.guest_list_id is not None:
            if user is None:
                return None
            if not queries.is_list_member(runner, event.guest_list_id, user.email):
                raise Forbidden(f"{user.email} is not on the guest list for this event.", reason="GuestList")

        return _create_session(runner, event, user)


def start_guest_session(runner, event: EventOut, email: str) -> RsvpSessionOut:
    with write_transaction(runner):
        if event.guest_list_id is None or not queries.is_list_member(runner, event.guest_list_id, email):
            raise Forbidden(f"{email} is not on the guest list for this event.", reason="GuestList")
        return _create_session(runner, event, None)


# SELECTION -> ATTENDEES | CONTRIBUTION


def _recheck_session(runner, session: RsvpSessionOut) -> RsvpSessionOut:
    """Re-read a session under the write lock; another request may have replaced or paid it."""
    current = queries.get_rsvp_session_by_id(runner, session.id)
    if current is None or current.status != SessionStatus.pending:
        raise BadRequest("SessionClosed", "This RSVP was replaced or already paid.")
    return current


def contribution_for(spot: SpotOut, requested: Optional[int]) -> int:
    if spot.kind == SpotKind.fixed:
        return int(spot.required_contribution or 0)
    if spot.kind == SpotKind.variable:
        low = spot.min_contribution if spot.min_contribution is not None else 0
        high = spot.max_contribution
        if requested is None or requested < low or (high is not None and requested > high):
            raise BadRequest("ContributionRange", f"Contribution for {spot.name} is out of range.")
        return requested
    return 0


def submit_selection(
    runner,
    event: EventOut,
    session: RsvpSessionOut,
    items: List[SelectionItem],
    user: Optional[UserOut] = None,
) -> str:
    """Replace the session's pending RSVPs. Returns the next step."""
    items = [item for item in items if item.qty > 0]
    if not items:
        raise BadRequest("EmptySelection", "Pick at least one spot.")

    with write_transaction(runner):
        session = _recheck_session(runner, session)
        spots = {spot.id: spot for spot in queries.list_spots_for_event(runner, event.id)}
        stats = load_stats(runner, event, session.id)

        wanted = defaultdict(int)
        seats = []
        for item in items:
            spot = spots.get(item.spot_id)
            if spot is None:
                raise BadRequest("UnknownSpot", f"Spot {item.spot_id} is not part of this event.")
            wanted[spot.id] += item.qty
            if wanted[spot.id] > stats.remaining_spots.get(spot.id, 0):
                raise BadRequest("SpotCapacity", f"Not enough {spot.name} spots left.")
            seats.extend([(spot.id, contribution_for(spot, item.contribution))] * item.qty)

        if len(seats) > stats.remaining_capacity:
            raise BadRequest("EventCapacity", "This event doesn't have that many spots left.")

        quick = user is not None and len(seats) == 1
        if quick:
            conflicts.resolve(runner, event.id, user.email, session.id)

        queries.delete_pending_rsvps(runner, session.id)
        rsvp_ids = [
            queries.create_rsvp(runner, event.id, spot_id, session.id, contribution)
            for spot_id, contribution in seats
        ]
        queries.set_session_client_secret(runner, session.id, None)
        queries.touch_rsvp_session(runner, session.id)

        if quick:
            queries.set_rsvp_attendee(
                runner, rsvp_ids[0], user.first_name, user.last_name, user.email, user.id
            )
            queries.set_session_contact(
                runner, session.id, user.first_name, user.last_name, user.email, user.id
            )
            return STEP_CONTRIBUTION
    return STEP_ATTENDEES


# ATTENDEES -> CONTRIBUTION


def submit_attendees(runner, event: EventOut, session: RsvpSessionOut, attendees: List[AttendeeIn]) -> None:
    with write_transaction(runner):
        session = _recheck_session(runner, session)
        pending = [r for r in queries.list_rsvps_for_session(runner, session.id) if r.status == SessionStatus.pending]
        if not pending or Counter(a.rsvp_id for a in attendees) != Counter(r.id for r in pending):
            raise BadRequest("AttendeeMismatch", "Attendees don't match the selected spots.")

        mine = [a for a in attendees if a.is_me]
        if len(mine) != 1:
            raise BadRequest("IsMe", "Mark exactly one attendee as yourself.")
        if len({a.email for a in attendees}) != len(attendees):
            raise BadRequest("DuplicateEmail", "Each attendee needs their own email.")

        me = mine[0]
        conflicts.resolve(runner, event.id, me.email, session.id)
        for attendee in attendees:
            if attendee is not me:
                conflicts.resolve(runner, event.id, attendee.email, session.id)

        me_user = queries.get_user_by_email(runner, me.email)
        queries.set_session_contact(
            runner,
            session.id,
            me.first_name,
            me.last_name,
            me.email,
            me_user.id if me_user else session.user_id,
        )
        for attendee in attendees:
            attendee_user = me_user if attendee is me else queries.get_user_by_email(runner, attendee.email)
            queries.set_rsvp_attendee(
                runner,
                attendee.rsvp_id,
                attendee.first_name,
                attendee.last_name,
                attendee.email,
                attendee_user.id if attendee_user else None,
            )


# CONTRIBUTION -> PAID


def line_items(rsvps: List[RsvpOut]) -> List[LineItem]:
    grouped: "OrderedDict[tuple, int]" = OrderedDict()
    for rsvp in rsvps:
        key = (rsvp.spot_name or f"Spot {rsvp.spot_id}", rsvp.contribution)
        grouped[key] = grouped.get(key, 0) + 1
    return [
        LineItem(name=name, quantity=quantity, unit_price=price)
        for (name, price), quantity in grouped.items()
    ]


def session_total(rsvps: List[RsvpOut]) -> int:
    return sum(r.contribution for r in rsvps)


async def prepare_payment(runner, event: EventOut, session: RsvpSessionOut) -> Optional[str]:
    """Create a checkout for a pending session that owes money and store its client secret."""
    rsvps = queries.list_rsvps_for_session(runner, session.id)
    if session.status != SessionStatus.pending or session_total(rsvps) == 0:
        return None
    client_secret = await payments.create_checkout(
        session.id,
        session.email,
        line_items(rsvps),
        return_url(event, session),
    )
    queries.set_session_client_secret(runner, session.id, client_secret)
    return client_secret


def mark_paid(runner, session_id: int, payment_intent_id: Optional[str] = None, rendezvous=None, outbox=None) -> bool:
    """Move a session and its RSVPs to paid. Returns False when nothing changed."""
    with write_transaction(runner):
        session = queries.get_rsvp_session_by_id(runner, session_id)
        if session is None or session.status == SessionStatus.paid:
            return False
        queries.mark_session_paid(runner, session_id, payment_intent_id)
        mailer.queue_confirmation_email(runner, queries.get_rsvp_session_by_id(runner, session_id))

    logger.info("Rsvp session %s is paid", session_id)
    if rendezvous is not None:
        rendezvous.notify(session_key(session_id))
    if outbox is not None:
        outbox.notify()
    return True


def pay_zero_total(runner, session: RsvpSessionOut, rendezvous=None, outbox=None) -> bool:
    rsvps = queries.list_rsvps_for_session(runner, session.id)
    if not rsvps:
        raise BadRequest("EmptySelection", "Pick at least one spot.")
    if session_total(rsvps) != 0:
        raise BadRequest("PaymentRequired", "This RSVP needs a payment.")
    if not session.email:
        raise BadRequest("AttendeesMissing", "Fill in the attendees first.")
    return mark_paid(runner, session.id, None, rendezvous=rendezvous, outbox=outbox)


def dump_selection(rsvps: List[RsvpOut]) -> str:
    counts = Counter((r.spot_id, r.contribution) for r in rsvps)
    return json.dumps(
        [{"spot_id": spot_id, "qty": qty, "contribution": c} for (spot_id, c), qty in counts.items()]
    )
