from __future__ import annotations

from datetime import datetime, timezone

from gatherlab.models import EventOut, RsvpOut, SpotOut
from gatherlab.stats import compute_stats, median, spot_stats

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _event(capacity=10) -> EventOut:
    return EventOut(
        id=1,
        slug="e1",
        title="E1",
        starts_at=NOW,
        ends_at=NOW,
        capacity=capacity,
        created_at=NOW,
    )


def _spot(spot_id, kind="free", qty_total=5, qty_per_person=2, **extra) -> SpotOut:
    return SpotOut(
        id=spot_id,
        name=f"s{spot_id}",
        qty_total=qty_total,
        qty_per_person=qty_per_person,
        kind=kind,
        **extra,
    )


def _rsvp(rsvp_id, spot_id, session_id, contribution=0, status="paid") -> RsvpOut:
    return RsvpOut(
        id=rsvp_id,
        event_id=1,
        spot_id=spot_id,
        session_id=session_id,
        contribution=contribution,
        status=status,
    )


def test_median_uses_lower_middle_integer_division():
    assert median([30]) == 30
    assert median([10, 21]) == 15
    assert median([50, 10, 20]) == 20
    assert median([1, 2, 3, 4]) == 2


def test_variable_spot_stats_median_and_max():
    spot = _spot(2, kind="variable", min_contribution=10, max_contribution=50, suggested_contribution=20)
    rsvps = [_rsvp(1, 2, 1, 10), _rsvp(2, 2, 2, 40), _rsvp(3, 2, 3, 20)]

    stats = spot_stats([spot], rsvps)

    assert [(s.name, s.value) for s in stats[2]] == [("Median", 20), ("Max", 40)]


def test_max_is_omitted_when_equal_to_median():
    spot = _spot(2, kind="variable", min_contribution=10, max_contribution=50)
    stats = spot_stats([spot], [_rsvp(1, 2, 1, 30)])
    assert [(s.name, s.value) for s in stats[2]] == [("Median", 30)]


def test_suggested_contribution_stands_in_when_nobody_contributed():
    spot = _spot(2, kind="variable", min_contribution=10, max_contribution=50, suggested_contribution=20)
    stats = spot_stats([spot], [])
    assert [(s.name, s.value) for s in stats[2]] == [("Median", 20)]


def test_non_variable_spots_have_no_stats():
    stats = spot_stats([_spot(1, kind="fixed", required_contribution=25)], [_rsvp(1, 1, 1, 25)])
    assert stats == {}


def test_remaining_counts_pending_and_paid_from_other_sessions():
    event = _event(capacity=10)
    spots = [_spot(1, qty_total=5, qty_per_person=2)]
    rsvps = [
        _rsvp(1, 1, session_id=1, status="paid"),
        _rsvp(2, 1, session_id=2, status="pending"),
        _rsvp(3, 1, session_id=2, status="pending"),
        _rsvp(4, 1, session_id=3, status="paid"),
    ]

    stats = compute_stats(event, spots, rsvps)

    assert stats.remaining_capacity == 6
    assert stats.remaining_spots[1] == 1


def test_viewing_session_sees_its_own_seats_as_available():
    event = _event(capacity=3)
    spots = [_spot(1, qty_total=3, qty_per_person=3)]
    rsvps = [_rsvp(1, 1, 7, status="pending"), _rsvp(2, 1, 7, status="pending"), _rsvp(3, 1, 8)]

    stats = compute_stats(event, spots, rsvps, viewing_session_id=7)

    assert stats.remaining_capacity == 2
    assert stats.remaining_spots[1] == 2


def test_remaining_spots_is_capped_by_per_person_limit_and_never_negative():
    event = _event(capacity=1)
    spots = [_spot(1, qty_total=10, qty_per_person=2), _spot(2, qty_total=1, qty_per_person=1)]
    rsvps = [_rsvp(1, 2, 1), _rsvp(2, 2, 2)]

    stats = compute_stats(event, spots, rsvps)

    assert stats.remaining_spots == {1: 2, 2: 0}
    assert stats.remaining_capacity == 0


def test_viewers_own_contributions_are_left_out_of_spot_stats():
    spot = _spot(2, kind="variable", min_contribution=10, max_contribution=50, suggested_contribution=20)
    rsvps = [_rsvp(1, 2, 1, 50, status="pending")]

    stats = compute_stats(_event(), [spot], rsvps, viewing_session_id=1)

    assert [(s.name, s.value) for s in stats.spot_stats[2]] == [("Median", 20)]
