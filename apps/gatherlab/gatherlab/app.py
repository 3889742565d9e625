from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

from gatherlab.config import Config
from gatherlab.db import init_db
from gatherlab.errors import AppError, RsvpConflict
from gatherlab.jobs import Jobs
from gatherlab.mailer import Mailer
from gatherlab.rendezvous import Rendezvous
from gatherlab.views import auth as auth_views
from gatherlab.views import emails as email_views
from gatherlab.views import events as event_views
from gatherlab.views import posts as post_views
from gatherlab.views import rsvp as rsvp_views
from gatherlab.views import webhooks as webhook_views
from gatherlab.web import render

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    debug_flag = os.environ.get("GATHERLAB_DEBUG", "").lower()
    if debug_flag in {"1", "true", "yes"}:
        logging.basicConfig(level=logging.DEBUG)
        logging.getLogger("sqlstratum").setLevel(logging.DEBUG)
    else:
        logging.basicConfig(level=logging.INFO)


def _wants_json(request: Request) -> bool:
    return request.url.path.startswith("/webhooks/") or "application/json" in request.headers.get("accept", "")


def _error_response(request: Request, status_code: int, title: str, message: str):
    if _wants_json(request):
        return JSONResponse({"detail": message}, status_code=status_code)
    return render(request, "error.html", status_code=status_code, title=title, message=message)


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(RsvpConflict)
    async def _rsvp_conflict(request: Request, exc: RsvpConflict):
        return render(request, "rsvp/conflict.html", status_code=200, conflict=exc)

    @app.exception_handler(AppError)
    async def _app_error(request: Request, exc: AppError):
        return _error_response(request, exc.status_code, exc.title, exc.message)

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        return _error_response(request, 400, "Bad request", "; ".join(err["msg"] for err in exc.errors()))

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        return _error_response(request, exc.status_code, "Error", str(exc.detail))

    @app.exception_handler(Exception)
    async def _internal_error(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error_response(
            request,
            500,
            "Something went wrong",
            "An unexpected error occurred. Please contact support if it keeps happening.",
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    app.state.mailer.start()
    app.state.jobs.start()
    try:
        yield
    finally:
        await app.state.jobs.stop()
        await app.state.mailer.stop()


def create_app(mailer: Mailer = None) -> FastAPI:
    app = FastAPI(lifespan=lifespan)
    app.add_middleware(
        SessionMiddleware,
        secret_key=Config.SECRET_KEY,
        same_site="lax",
        https_only=Config.COOKIE_SECURE,
        max_age=60 * 60 * 24 * 365,
    )
    app.state.rendezvous = Rendezvous()
    app.state.mailer = mailer or Mailer()
    app.state.jobs = Jobs()

    install_error_handlers(app)

    app.include_router(event_views.router)
    app.include_router(auth_views.router)
    app.include_router(rsvp_views.router)
    app.include_router(webhook_views.router)
    app.include_router(email_views.router)
    app.include_router(post_views.router)
    return app


configure_logging()

app = create_app()
