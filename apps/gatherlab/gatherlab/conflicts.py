from __future__ import annotations

import logging

from gatherlab import queries
from gatherlab.errors import RsvpConflict
from gatherlab.models import SessionStatus

logger = logging.getLogger(__name__)


def supersede_sessions(runner, event_id: int, email: str, session_id: int) -> int:
    """Delete other pending sessions for the same event and email. Returns how many went."""
    removed = 0
    for other in queries.list_other_sessions_for_email(runner, event_id, email, session_id):
        if other.status != SessionStatus.pending:
            continue
        logger.info("Superseding rsvp session %s for %s", other.id, email)
        queries.delete_rsvp_session(runner, other.id)
        removed += 1
    return removed


def check_rsvp_conflict(runner, event_id: int, email: str, session_id: int) -> None:
    paid = False
    pending = False
    for rsvp in queries.list_rsvps_for_email(runner, event_id, email, session_id):
        if rsvp.status == SessionStatus.paid:
            paid = True
        else:
            pending = True
    if paid:
        raise RsvpConflict(RsvpConflict.ALREADY_RSVPED, email)
    if pending:
        raise RsvpConflict(RsvpConflict.CURRENTLY_RSVPING, email)


def resolve(runner, event_id: int, email: str, session_id: int) -> None:
    """Run both checks for one email. Call inside the step's transaction."""
    supersede_sessions(runner, event_id, email, session_id)
    check_rsvp_conflict(runner, event_id, email, session_id)
