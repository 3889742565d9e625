from __future__ import annotations

from typing import Optional

from fastapi import Depends, Request
from fastapi.templating import Jinja2Templates

from gatherlab.auth import get_session_user
from gatherlab.config import BASE_DIR, Config
from gatherlab.db import get_runner
from gatherlab.models import UserOut

templates = Jinja2Templates(directory=str(BASE_DIR / "templates"))
templates.env.globals["stripe_publishable_key"] = lambda: Config.STRIPE_PUBLISHABLE_KEY
templates.env.globals["turnstile_site_key"] = lambda: Config.TURNSTILE_SITE_KEY


def get_runner_dep():
    runner = get_runner()
    try:
        yield runner
    finally:
        runner.connection.close()


def get_user_dep(request: Request, runner=Depends(get_runner_dep)) -> Optional[UserOut]:
    return get_session_user(request, runner)


def render(request: Request, template_name: str, status_code: int = 200, **context):
    return templates.TemplateResponse(
        request,
        template_name,
        {
            "current_user": getattr(request.state, "user", None),
            **context,
        },
        status_code=status_code,
    )
