from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from starlette.requests import Request

from gatherlab import queries
from gatherlab.config import Config
from gatherlab.errors import Forbidden, Unauthorized
from gatherlab.models import UserOut


def new_token(nbytes: int = 16) -> str:
    return secrets.token_hex(nbytes)


def issue_login_token(runner, email: str) -> Tuple[int, str]:
    token = new_token()
    token_id = queries.create_login_token(runner, email, token)
    return token_id, token


def peek_login_token(runner, token: Optional[str]):
    """Return the login token row if it is unused and younger than the TTL."""
    if not token:
        return None
    row = queries.get_login_token(runner, token)
    if row is None or row["used"]:
        return None
    created_at = datetime.fromisoformat(row["created_at"])
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    if datetime.now(timezone.utc) - created_at > timedelta(hours=Config.LOGIN_TOKEN_TTL_HOURS):
        return None
    return row


def consume_login_token(runner, token: Optional[str]) -> Optional[str]:
    row = peek_login_token(runner, token)
    if row is None:
        return None
    queries.mark_login_token_used(runner, int(row["id"]))
    return row["email"]


def login_user(request: Request, runner, user_id: int) -> str:
    token = new_token()
    queries.create_session_token(runner, user_id, token)
    request.session.clear()
    request.session["token"] = token
    return token


def logout_user(request: Request, runner) -> None:
    token = request.session.get("token")
    if token:
        queries.delete_session_token(runner, token)
    request.session.clear()


def get_session_user(request: Request, runner) -> Optional[UserOut]:
    if hasattr(request.state, "user"):
        return request.state.user
    token = request.session.get("token")
    user = queries.get_user_by_session_token(runner, token) if token else None
    request.state.user = user
    return user


def has_role(runner, user: Optional[UserOut], *roles: str) -> bool:
    if user is None:
        return False
    if not roles:
        return True
    return bool(set(queries.list_user_roles(runner, user.id)) & set(roles))


def require_user(request: Request, runner) -> UserOut:
    user = get_session_user(request, runner)
    if user is None:
        raise Unauthorized("Log in to continue")
    return user


def require_role(request: Request, runner, *roles: str) -> UserOut:
    user = require_user(request, runner)
    if not has_role(runner, user, *roles):
        raise Forbidden("You don't have access to this page")
    return user
