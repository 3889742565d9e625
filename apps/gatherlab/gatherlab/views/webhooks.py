from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from gatherlab import payments, queries, rsvp
from gatherlab.web import get_runner_dep

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks")


@router.post("/stripe")
async def stripe_webhook(request: Request, runner=Depends(get_runner_dep)):
    payload = await request.body()
    event = payments.verify_webhook(payload, request.headers.get("stripe-signature"))

    completed = payments.parse_checkout_completed(event)
    if completed is None:
        logger.info("Ignoring stripe webhook of type %s", event.get("type"))
        return JSONResponse({"received": True})

    session = queries.get_rsvp_session_by_id(runner, completed.session_id)
    if session is None:
        logger.warning("Checkout completed for unknown rsvp session %s", completed.session_id)
        return JSONResponse({"received": True})
    if not completed.paid:
        logger.warning(
            "Checkout completed for rsvp session %s with payment_status=%s",
            session.id,
            completed.payment_status,
        )
        return JSONResponse({"received": True})

    await run_in_threadpool(
        rsvp.mark_paid,
        runner,
        session.id,
        completed.payment_intent,
        rendezvous=request.app.state.rendezvous,
        outbox=request.app.state.mailer,
    )
    return JSONResponse({"received": True})
