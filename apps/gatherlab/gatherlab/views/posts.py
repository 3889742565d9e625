from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse

from gatherlab import mailer, queries
from gatherlab.auth import require_role
from gatherlab.db import write_transaction
from gatherlab.errors import BadRequest, NotFound
from gatherlab.web import get_runner_dep, get_user_dep, render

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/p")


def _load_post(runner, slug: str):
    post = queries.get_post_by_slug(runner, slug)
    if post is None:
        raise NotFound("Post not found")
    return post


@router.get("/{slug}", response_class=HTMLResponse)
def post_detail(slug: str, request: Request, runner=Depends(get_runner_dep), user=Depends(get_user_dep)):
    return render(request, "post.html", post=_load_post(runner, slug))


@router.post("/{slug}/send", response_class=HTMLResponse)
async def post_send(slug: str, request: Request, runner=Depends(get_runner_dep)):
    require_role(request, runner, "admin", "writer")
    post = _load_post(runner, slug)

    form = await request.form()
    list_id = form.get("list_id", "")
    if not str(list_id).isdigit():
        raise BadRequest("InvalidList", "Pick a list to send to.")

    with write_transaction(runner):
        batch_id = mailer.queue_post_emails(runner, post.id, int(list_id))
    batch = queries.get_email_batch(runner, batch_id) if batch_id else None
    if batch is not None:
        logger.info("Queued post %s to list %s as batch %s", post.slug, list_id, batch.id)
        request.app.state.mailer.notify()
    return render(request, "post_sent.html", post=post, batch=batch)
