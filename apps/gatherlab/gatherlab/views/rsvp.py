from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from starlette.concurrency import run_in_threadpool

from gatherlab import queries, rsvp
from gatherlab.config import Config
from gatherlab.errors import BadRequest
from gatherlab.models import SessionStatus, normalize_email
from gatherlab.rendezvous import session_key
from gatherlab.stats import load_stats
from gatherlab.views.events import load_event
from gatherlab.web import get_runner_dep, get_user_dep, render

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/e/{slug}")


def _redirect(url: str) -> RedirectResponse:
    return RedirectResponse(url=url, status_code=302)


async def _json_field(request: Request, field: str):
    """Read a JSON payload either as the request body or as a form field."""
    if request.headers.get("content-type", "").startswith("application/json"):
        return await request.body()
    form = await request.form()
    return form.get(field) or "[]"


def _step(runner, slug: str, token: Optional[str]):
    """Resolve event and session for a step; the redirect is set when the step can't run."""
    event = load_event(runner, slug)
    session = rsvp.load_session(runner, event, token)
    if session is None:
        return event, None, _redirect(f"/e/{slug}")
    if session.status == SessionStatus.paid:
        return event, session, _redirect(rsvp.step_url(event, rsvp.STEP_MANAGE, session))
    return event, session, None


@router.post("/rsvp")
def start(slug: str, runner=Depends(get_runner_dep), user=Depends(get_user_dep)):
    event = load_event(runner, slug)
    session = rsvp.start_session(runner, event, user)
    if session is None:
        return _redirect(f"/e/{slug}/guestlist")
    if session.status == SessionStatus.paid:
        return _redirect(rsvp.step_url(event, rsvp.STEP_MANAGE, session))
    return _redirect(rsvp.step_url(event, rsvp.STEP_SELECTION, session))


@router.get("/guestlist", response_class=HTMLResponse)
def guestlist(slug: str, request: Request, runner=Depends(get_runner_dep), user=Depends(get_user_dep)):
    event = load_event(runner, slug)
    if event.guest_list_id is None:
        return _redirect(f"/e/{slug}")
    return render(request, "guestlist.html", event=event)


@router.post("/guestlist")
async def guestlist_submit(slug: str, request: Request, runner=Depends(get_runner_dep)):
    event = load_event(runner, slug)
    form = await request.form()
    try:
        email = normalize_email(form.get("email", ""))
    except ValueError:
        raise BadRequest("InvalidEmail", "Enter a valid email address.")
    session = rsvp.start_guest_session(runner, event, email)
    return _redirect(rsvp.step_url(event, rsvp.STEP_SELECTION, session))


@router.get("/rsvp/selection", response_class=HTMLResponse)
def selection(
    slug: str,
    request: Request,
    session: Optional[str] = None,
    runner=Depends(get_runner_dep),
    user=Depends(get_user_dep),
):
    event, current, redirect = _step(runner, slug, session)
    if redirect:
        return redirect
    rsvps = queries.list_rsvps_for_session(runner, current.id)
    return render(
        request,
        "rsvp/selection.html",
        event=event,
        session=current,
        spots=queries.list_spots_for_event(runner, event.id),
        stats=load_stats(runner, event, current.id),
        selection=rsvp.dump_selection(rsvps),
    )


@router.post("/rsvp/selection")
async def selection_submit(
    slug: str,
    request: Request,
    session: Optional[str] = None,
    runner=Depends(get_runner_dep),
    user=Depends(get_user_dep),
):
    event, current, redirect = _step(runner, slug, session)
    if redirect:
        return redirect
    items = rsvp.parse_selection(await _json_field(request, "selection"))
    next_step = await run_in_threadpool(rsvp.submit_selection, runner, event, current, items, user)
    if next_step == rsvp.STEP_CONTRIBUTION:
        current = queries.get_rsvp_session_by_id(runner, current.id)
        await rsvp.prepare_payment(runner, event, current)
    return _redirect(rsvp.step_url(event, next_step, current))


@router.get("/rsvp/attendees", response_class=HTMLResponse)
def attendees(
    slug: str,
    request: Request,
    session: Optional[str] = None,
    runner=Depends(get_runner_dep),
    user=Depends(get_user_dep),
):
    event, current, redirect = _step(runner, slug, session)
    if redirect:
        return redirect
    rsvps = queries.list_rsvps_for_session(runner, current.id)
    if not rsvps:
        return _redirect(rsvp.step_url(event, rsvp.STEP_SELECTION, current))
    return render(request, "rsvp/attendees.html", event=event, session=current, rsvps=rsvps)


@router.post("/rsvp/attendees")
async def attendees_submit(
    slug: str,
    request: Request,
    session: Optional[str] = None,
    runner=Depends(get_runner_dep),
):
    event, current, redirect = _step(runner, slug, session)
    if redirect:
        return redirect
    people = rsvp.parse_attendees(await _json_field(request, "attendees"))
    await run_in_threadpool(rsvp.submit_attendees, runner, event, current, people)
    current = queries.get_rsvp_session_by_id(runner, current.id)
    await rsvp.prepare_payment(runner, event, current)
    return _redirect(rsvp.step_url(event, rsvp.STEP_CONTRIBUTION, current))


@router.get("/rsvp/contribution", response_class=HTMLResponse)
async def contribution(
    slug: str,
    request: Request,
    session: Optional[str] = None,
    runner=Depends(get_runner_dep),
    user=Depends(get_user_dep),
):
    event, current, redirect = _step(runner, slug, session)
    if redirect:
        return redirect
    rsvps = queries.list_rsvps_for_session(runner, current.id)
    if not rsvps:
        return _redirect(rsvp.step_url(event, rsvp.STEP_SELECTION, current))
    if not current.email:
        return _redirect(rsvp.step_url(event, rsvp.STEP_ATTENDEES, current))

    total = rsvp.session_total(rsvps)
    client_secret = current.payment_client_secret
    if total > 0 and not client_secret:
        client_secret = await rsvp.prepare_payment(runner, event, current)
    return render(
        request,
        "rsvp/contribution.html",
        event=event,
        session=current,
        rsvps=rsvps,
        line_items=rsvp.line_items(rsvps),
        total=total,
        client_secret=client_secret,
    )


@router.post("/rsvp/contribution")
def contribution_submit(
    slug: str,
    request: Request,
    session: Optional[str] = None,
    runner=Depends(get_runner_dep),
):
    event, current, redirect = _step(runner, slug, session)
    if redirect:
        return redirect
    rsvp.pay_zero_total(
        runner,
        current,
        rendezvous=request.app.state.rendezvous,
        outbox=request.app.state.mailer,
    )
    return _redirect(rsvp.step_url(event, rsvp.STEP_MANAGE, current))


@router.get("/rsvp/manage", response_class=HTMLResponse)
async def manage(
    slug: str,
    request: Request,
    session: Optional[str] = None,
    runner=Depends(get_runner_dep),
    user=Depends(get_user_dep),
):
    event = load_event(runner, slug)
    current = rsvp.load_session(runner, event, session)
    if current is None:
        return _redirect(f"/e/{slug}")

    if current.status == SessionStatus.pending:
        if not current.payment_client_secret:
            return _redirect(rsvp.step_url(event, rsvp.STEP_CONTRIBUTION, current))
        woke = await request.app.state.rendezvous.wait(session_key(current.id), Config.RENDEZVOUS_TIMEOUT)
        if not woke:
            logger.info("Timed out waiting for payment on rsvp session %s", current.id)
        current = queries.get_rsvp_session_by_id(runner, current.id)
        if current is None:
            return _redirect(f"/e/{slug}")

    rsvps = queries.list_rsvps_for_session(runner, current.id)
    return render(
        request,
        "rsvp/manage.html",
        event=event,
        session=current,
        rsvps=rsvps,
        total=rsvp.session_total(rsvps),
        paid=current.status == SessionStatus.paid,
    )


@router.get("/rsvp/status")
def status(slug: str, session: Optional[str] = None, runner=Depends(get_runner_dep)):
    event = load_event(runner, slug)
    current = rsvp.load_session(runner, event, session)
    if current is None:
        return JSONResponse({"detail": "Session not found"}, status_code=404)
    return JSONResponse({"status": current.status.value})
