from __future__ import annotations

from collections import defaultdict
from typing import Dict, Iterable, List, Optional

from gatherlab import queries
from gatherlab.models import EventOut, EventStats, RsvpOut, SpotKind, SpotOut, SpotStat


def median(values: List[int]) -> int:
    values = sorted(values)
    n = len(values)
    if n % 2 == 0:
        return (values[n // 2 - 1] + values[n // 2]) // 2
    return values[n // 2]


def spot_stats(spots: Iterable[SpotOut], rsvps: Iterable[RsvpOut]) -> Dict[int, List[SpotStat]]:
    """Median and max contribution for every variable spot."""
    contributions: Dict[int, List[int]] = defaultdict(list)
    for rsvp in rsvps:
        contributions[rsvp.spot_id].append(int(rsvp.contribution))

    stats: Dict[int, List[SpotStat]] = {}
    for spot in spots:
        if spot.kind != SpotKind.variable:
            continue
        values = contributions.get(spot.id)
        if not values:
            if spot.suggested_contribution is not None:
                stats[spot.id] = [SpotStat(name="Median", value=spot.suggested_contribution)]
            continue
        mid = median(values)
        items = [SpotStat(name="Median", value=mid)]
        top = max(values)
        if top > mid:
            items.append(SpotStat(name="Max", value=top))
        stats[spot.id] = items
    return stats


def compute_stats(
    event: EventOut,
    spots: List[SpotOut],
    rsvps: List[RsvpOut],
    viewing_session_id: Optional[int] = None,
) -> EventStats:
    others = [r for r in rsvps if r.session_id != viewing_session_id]

    reserved: Dict[int, int] = defaultdict(int)
    for rsvp in others:
        reserved[rsvp.spot_id] += 1

    remaining_spots = {
        spot.id: max(min(spot.qty_total - reserved[spot.id], spot.qty_per_person), 0)
        for spot in spots
    }
    return EventStats(
        remaining_capacity=max(event.capacity - len(others), 0),
        remaining_spots=remaining_spots,
        spot_stats=spot_stats(spots, others),
    )


def load_stats(runner, event: EventOut, viewing_session_id: Optional[int] = None) -> EventStats:
    spots = queries.list_spots_for_event(runner, event.id)
    rsvps = queries.list_rsvps_for_event(runner, event.id)
    return compute_stats(event, spots, rsvps, viewing_session_id)
