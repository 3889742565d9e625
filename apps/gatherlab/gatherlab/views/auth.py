from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from pydantic import ValidationError

from gatherlab import mailer, queries
from gatherlab.auth import (
    consume_login_token,
    issue_login_token,
    login_user,
    logout_user,
    peek_login_token,
    require_user,
)
from gatherlab.db import write_transaction
from gatherlab.models import LoginForm, UserUpdate
from gatherlab.web import get_runner_dep, get_user_dep, render

logger = logging.getLogger(__name__)

router = APIRouter()


def _errors(exc: ValidationError) -> str:
    return "; ".join(err["msg"] for err in exc.errors())


@router.get("/login", response_class=HTMLResponse)
def login(
    request: Request,
    token: Optional[str] = None,
    next: str = "/",
    runner=Depends(get_runner_dep),
    user=Depends(get_user_dep),
):
    if token is None:
        return render(request, "login.html", next=next)

    row = peek_login_token(runner, token)
    if row is None:
        return render(request, "login.html", status_code=400, error="That login link is invalid or expired.")

    account = queries.get_user_by_email(runner, row["email"])
    if account is None:
        return RedirectResponse(url=f"/register?token={token}", status_code=303)

    with write_transaction(runner):
        consume_login_token(runner, token)
        login_user(request, runner, account.id)
    logger.info("User %s logged in", account.id)
    return RedirectResponse(url="/", status_code=303)


@router.post("/login", response_class=HTMLResponse)
async def login_submit(request: Request, runner=Depends(get_runner_dep)):
    form = await request.form()
    try:
        data = LoginForm.model_validate({"email": (form.get("email") or "").strip()})
    except ValidationError as exc:
        return render(request, "login.html", status_code=400, error=_errors(exc))

    email = data.email.lower()
    with write_transaction(runner):
        account = queries.get_user_by_email(runner, email)
        token_id, _ = issue_login_token(runner, email)
        mailer.queue_login_email(runner, email, token_id, account.id if account else None)
    request.app.state.mailer.notify()
    return render(request, "check_email.html", email=email)


@router.get("/register", response_class=HTMLResponse)
def register(request: Request, token: Optional[str] = None, runner=Depends(get_runner_dep)):
    row = peek_login_token(runner, token)
    if row is None:
        return render(request, "login.html", status_code=400, error="That registration link is invalid or expired.")
    return render(request, "register.html", token=token, email=row["email"], form_data={})


@router.post("/register", response_class=HTMLResponse)
async def register_submit(request: Request, runner=Depends(get_runner_dep)):
    form = await request.form()
    token = form.get("token") or ""
    row = peek_login_token(runner, token)
    if row is None:
        return render(request, "login.html", status_code=400, error="That registration link is invalid or expired.")

    form_data = {
        "email": row["email"],
        "first_name": (form.get("first_name") or "").strip(),
        "last_name": (form.get("last_name") or "").strip(),
        "phone": (form.get("phone") or "").strip() or None,
    }
    try:
        user_in = UserUpdate.model_validate(form_data)
    except ValidationError as exc:
        return render(
            request,
            "register.html",
            status_code=400,
            token=token,
            email=row["email"],
            form_data=form_data,
            error=_errors(exc),
        )

    with write_transaction(runner):
        email = consume_login_token(runner, token)
        account = queries.get_user_by_email(runner, email)
        if account is None:
            user_id = queries.create_user(
                runner, email, user_in.first_name, user_in.last_name, user_in.phone
            )
            logger.info("Registered user %s", user_id)
        else:
            user_id = account.id
        login_user(request, runner, user_id)
    return RedirectResponse(url="/", status_code=303)


@router.post("/logout")
def logout(request: Request, runner=Depends(get_runner_dep)):
    logout_user(request, runner)
    return RedirectResponse(url="/", status_code=303)


@router.get("/user", response_class=HTMLResponse)
def profile(request: Request, runner=Depends(get_runner_dep)):
    user = require_user(request, runner)
    return render(request, "user.html", form_data=user.model_dump())


@router.post("/user", response_class=HTMLResponse)
async def profile_submit(request: Request, runner=Depends(get_runner_dep)):
    user = require_user(request, runner)
    form = await request.form()
    form_data = {
        "email": (form.get("email") or "").strip(),
        "first_name": (form.get("first_name") or "").strip(),
        "last_name": (form.get("last_name") or "").strip(),
        "phone": (form.get("phone") or "").strip() or None,
    }
    try:
        user_in = UserUpdate.model_validate(form_data)
    except ValidationError as exc:
        return render(request, "user.html", status_code=400, form_data=form_data, error=_errors(exc))

    with write_transaction(runner):
        other = queries.get_user_by_email(runner, user_in.email)
        if other is not None and other.id != user.id:
            return render(
                request,
                "user.html",
                status_code=400,
                form_data=form_data,
                error="That email belongs to another account.",
            )
        queries.update_user(
            runner, user.id, user_in.email, user_in.first_name, user_in.last_name, user_in.phone
        )
    return RedirectResponse(url="/user", status_code=303)
