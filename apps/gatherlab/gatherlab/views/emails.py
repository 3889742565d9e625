from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, Response

from gatherlab import queries
from gatherlab.errors import NotFound
from gatherlab.web import get_runner_dep, get_user_dep, render

router = APIRouter(prefix="/emails")

# 1x1 transparent GIF89a
PIXEL = bytes(
    [
        0x47, 0x49, 0x46, 0x38, 0x39, 0x61, 0x01, 0x00, 0x01, 0x00, 0x80, 0x00, 0x00, 0x00,
        0x00, 0x00, 0x00, 0x00, 0x00, 0x21, 0xF9, 0x04, 0x01, 0x00, 0x00, 0x00, 0x00, 0x2C,
        0x00, 0x00, 0x00, 0x00, 0x01, 0x00, 0x01, 0x00, 0x00, 0x02, 0x02, 0x4C, 0x01, 0x00,
        0x3B,
    ]
)


@router.get("/{email_id}/footer.gif")
def footer_pixel(email_id: int, runner=Depends(get_runner_dep)):
    queries.mark_email_opened(runner, email_id)
    return Response(
        content=PIXEL,
        media_type="image/gif",
        headers={"Cache-Control": "no-store"},
    )


def _list_email(runner, email_id: int):
    email = queries.get_email(runner, email_id)
    if email is None or email.list_id is None:
        raise NotFound("Email not found")
    return email


@router.get("/{email_id}/unsubscribe", response_class=HTMLResponse)
def unsubscribe(email_id: int, request: Request, runner=Depends(get_runner_dep), user=Depends(get_user_dep)):
    email = _list_email(runner, email_id)
    return render(request, "unsubscribe.html", email=email, done=False)


@router.post("/{email_id}/unsubscribe", response_class=HTMLResponse)
def unsubscribe_submit(email_id: int, request: Request, runner=Depends(get_runner_dep), user=Depends(get_user_dep)):
    email = _list_email(runner, email_id)
    queries.remove_list_member(runner, email.list_id, email.address)
    return render(request, "unsubscribe.html", email=email, done=True)
