from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse

from gatherlab import queries, rsvp
from gatherlab.errors import NotFound
from gatherlab.models import EventOut
from gatherlab.stats import load_stats
from gatherlab.web import get_runner_dep, get_user_dep, render

router = APIRouter()


def load_event(runner, slug: str) -> EventOut:
    event = queries.get_event_by_slug(runner, slug)
    if event is None:
        raise NotFound("Event not found")
    return event


@router.get("/", response_class=HTMLResponse)
def index(request: Request, runner=Depends(get_runner_dep), user=Depends(get_user_dep)):
    events = queries.list_upcoming_events(runner, limit=30)
    return render(request, "index.html", events=events)


@router.get("/e/{slug}", response_class=HTMLResponse)
def event_detail(
    slug: str,
    request: Request,
    session: Optional[str] = None,
    runner=Depends(get_runner_dep),
    user=Depends(get_user_dep),
):
    event = load_event(runner, slug)
    viewing = rsvp.load_session(runner, event, session)
    if viewing is None and user is not None:
        viewing = queries.get_latest_session_for_user(runner, event.id, user.id)
    spots = queries.list_spots_for_event(runner, event.id)
    stats = load_stats(runner, event, viewing.id if viewing else None)
    return render(
        request,
        "event.html",
        event=event,
        spots=spots,
        stats=stats,
        viewing=viewing,
    )
