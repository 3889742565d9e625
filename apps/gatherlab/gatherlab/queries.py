from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from sqlstratum import (
    SELECT,
    INSERT,
    UPDATE,
    DELETE,
    COUNT,
    Table,
    col,
)
from sqlstratum.hydrate.pydantic import using_pydantic

from gatherlab.models import (
    EmailBatchOut,
    EmailOut,
    EventOut,
    PostOut,
    RsvpOut,
    RsvpSessionOut,
    SpotOut,
    UserOut,
)


users = Table(
    "users",
    col("id", int),
    col("email", str),
    col("first_name", str),
    col("last_name", str),
    col("phone", str),
    col("version", int),
    col("created_at", str),
    col("updated_at", str),
)

user_history = Table(
    "user_history",
    col("id", int),
    col("user_id", int),
    col("version", int),
    col("email", str),
    col("first_name", str),
    col("last_name", str),
    col("phone", str),
    col("created_at", str),
)

user_roles = Table(
    "user_roles",
    col("user_id", int),
    col("role", str),
    col("created_at", str),
)

login_tokens = Table(
    "login_tokens",
    col("id", int),
    col("email", str),
    col("token", str),
    col("used", int),
    col("created_at", str),
    col("used_at", str),
)

session_tokens = Table(
    "session_tokens",
    col("id", int),
    col("user_id", int),
    col("token", str),
    col("created_at", str),
)

lists = Table(
    "lists",
    col("id", int),
    col("name", str),
    col("description", str),
    col("created_at", str),
    col("updated_at", str),
)

list_members = Table(
    "list_members",
    col("list_id", int),
    col("email", str),
    col("created_at", str),
)

events = Table(
    "events",
    col("id", int),
    col("slug", str),
    col("title", str),
    col("description", str),
    col("starts_at", str),
    col("ends_at", str),
    col("capacity", int),
    col("unlisted", int),
    col("guest_list_id", int),
    col("created_at", str),
    col("updated_at", str),
)

spots = Table(
    "spots",
    col("id", int),
    col("name", str),
    col("description", str),
    col("qty_total", int),
    col("qty_per_person", int),
    col("kind", str),
    col("sort", int),
    col("required_contribution", int),
    col("min_contribution", int),
    col("max_contribution", int),
    col("suggested_contribution", int),
    col("required_notice_hours", int),
    col("created_at", str),
)

event_spots = Table(
    "event_spots",
    col("event_id", int),
    col("spot_id", int),
)

rsvp_sessions = Table(
    "rsvp_sessions",
    col("id", int),
    col("event_id", int),
    col("token", str),
    col("status", str),
    col("first_name", str),
    col("last_name", str),
    col("email", str),
    col("user_id", int),
    col("payment_client_secret", str),
    col("payment_intent_id", str),
    col("created_at", str),
    col("updated_at", str),
)

rsvps = Table(
    "rsvps",
    col("id", int),
    col("event_id", int),
    col("spot_id", int),
    col("session_id", int),
    col("contribution", int),
    col("status", str),
    col("first_name", str),
    col("last_name", str),
    col("email", str),
    col("user_id", int),
    col("checkin_at", str),
    col("created_at", str),
    col("updated_at", str),
)

posts = Table(
    "posts",
    col("id", int),
    col("slug", str),
    col("title", str),
    col("author", str),
    col("content", str),
    col("created_at", str),
    col("updated_at", str),
)

emails = Table(
    "emails",
    col("id", int),
    col("kind", str),
    col("state", str),
    col("user_id", int),
    col("address", str),
    col("post_id", int),
    col("list_id", int),
    col("event_id", int),
    col("notification_id", int),
    col("rsvp_session_id", int),
    col("login_token_id", int),
    col("batch_id", int),
    col("error", str),
    col("created_at", str),
    col("sent_at", str),
    col("errored_at", str),
    col("opened_at", str),
)

email_batches = Table(
    "email_batches",
    col("id", int),
    col("size", int),
    col("sent", int),
    col("errored", int),
    col("created_at", str),
    col("updated_at", str),
)

email_queue = Table(
    "email_queue",
    col("batch_id", int),
    col("position", int),
)


USER_FIELDS = ("id", "email", "first_name", "last_name", "phone", "version", "created_at")
EVENT_FIELDS = (
    "id", "slug", "title", "description", "starts_at", "ends_at",
    "capacity", "unlisted", "guest_list_id", "created_at",
)
SPOT_FIELDS = (
    "id", "name", "description", "qty_total", "qty_per_person", "kind", "sort",
    "required_contribution", "min_contribution", "max_contribution",
    "suggested_contribution", "required_notice_hours",
)
SESSION_FIELDS = (
    "id", "event_id", "token", "status", "first_name", "last_name", "email", "user_id",
    "payment_client_secret", "payment_intent_id", "created_at", "updated_at",
)
RSVP_FIELDS = (
    "id", "event_id", "spot_id", "session_id", "contribution", "status",
    "first_name", "last_name", "email", "user_id", "checkin_at",
)
EMAIL_FIELDS = (
    "id", "kind", "state", "user_id", "address", "post_id", "list_id", "event_id",
    "notification_id", "rsvp_session_id", "login_token_id", "batch_id", "error",
    "created_at", "sent_at", "errored_at", "opened_at",
)
BATCH_FIELDS = ("id", "size", "sent", "errored", "created_at", "updated_at")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _columns(table, names):
    return [getattr(table.c, name).AS(name) for name in names]


# users


def get_user_by_id(runner, user_id: int):
    q = using_pydantic(
        SELECT(*_columns(users, USER_FIELDS))
        .FROM(users)
        .WHERE(users.c.id == user_id)
        .LIMIT(1)
    ).hydrate(UserOut)
    return runner.fetch_one(q)


def get_user_by_email(runner, email: str):
    q = using_pydantic(
        SELECT(*_columns(users, USER_FIELDS))
        .FROM(users)
        .WHERE(users.c.email == email.lower())
        .LIMIT(1)
    ).hydrate(UserOut)
    return runner.fetch_one(q)


def get_user_by_session_token(runner, token: str):
    q = using_pydantic(
        SELECT(*_columns(users, USER_FIELDS))
        .FROM(session_tokens)
        .JOIN(users, ON=users.c.id == session_tokens.c.user_id)
        .WHERE(session_tokens.c.token == token)
        .LIMIT(1)
    ).hydrate(UserOut)
    return runner.fetch_one(q)


def create_user(runner, email: str, first_name: str, last_name: str, phone: Optional[str] = None) -> int:
    now = _now()
    result = runner.execute(
        INSERT(users).VALUES(
            email=email.lower(),
            first_name=first_name,
            last_name=last_name,
            phone=phone,
            version=1,
            created_at=now,
            updated_at=now,
        )
    )
    user_id = int(result.lastrowid)
    runner.execute(
        INSERT(user_history).VALUES(
            user_id=user_id,
            version=1,
            email=email.lower(),
            first_name=first_name,
            last_name=last_name,
            phone=phone,
            created_at=now,
        )
    )
    return user_id


def latest_user_version(runner, user_id: int) -> int:
    q = (
        SELECT(user_history.c.version.AS("version"))
        .FROM(user_history)
        .WHERE(user_history.c.user_id == user_id)
        .ORDER_BY(user_history.c.version.DESC())
        .LIMIT(1)
    )
    row = runner.fetch_one(q)
    if not row:
        return 0
    return int(row["version"])


def update_user(runner, user_id: int, email: str, first_name: str, last_name: str, phone: Optional[str]) -> int:
    """Append a history row and then update the mutable user row. Returns the new version."""
    now = _now()
    version = latest_user_version(runner, user_id) + 1
    runner.execute(
        INSERT(user_history).VALUES(
            user_id=user_id,
            version=version,
            email=email.lower(),
            first_name=first_name,
            last_name=last_name,
            phone=phone,
            created_at=now,
        )
    )
    runner.execute(
        UPDATE(users)
        .SET(
            email=email.lower(),
            first_name=first_name,
            last_name=last_name,
            phone=phone,
            version=version,
            updated_at=now,
        )
        .WHERE(users.c.id == user_id)
    )
    return version


def list_user_roles(runner, user_id: int) -> List[str]:
    q = (
        SELECT(user_roles.c.role.AS("role"))
        .FROM(user_roles)
        .WHERE(user_roles.c.user_id == user_id)
        .ORDER_BY(user_roles.c.role.ASC())
    )
    return [row["role"] for row in runner.fetch_all(q)]


def add_user_role(runner, user_id: int, role: str) -> None:
    if role in list_user_roles(runner, user_id):
        return
    runner.execute(INSERT(user_roles).VALUES(user_id=user_id, role=role, created_at=_now()))


# tokens


def create_login_token(runner, email: str, token: str) -> int:
    result = runner.execute(
        INSERT(login_tokens).VALUES(
            email=email.lower(),
            token=token,
            used=0,
            created_at=_now(),
        )
    )
    return int(result.lastrowid)


def get_login_token(runner, token: str):
    q = (
        SELECT(
            login_tokens.c.id.AS("id"),
            login_tokens.c.email.AS("email"),
            login_tokens.c.token.AS("token"),
            login_tokens.c.used.AS("used"),
            login_tokens.c.created_at.AS("created_at"),
        )
        .FROM(login_tokens)
        .WHERE(login_tokens.c.token == token)
        .LIMIT(1)
    )
    return runner.fetch_one(q)


def get_login_token_by_id(runner, token_id: int):
    q = (
        SELECT(login_tokens.c.id.AS("id"), login_tokens.c.token.AS("token"))
        .FROM(login_tokens)
        .WHERE(login_tokens.c.id == token_id)
        .LIMIT(1)
    )
    return runner.fetch_one(q)


def mark_login_token_used(runner, token_id: int) -> None:
    runner.execute(
        UPDATE(login_tokens)
        .SET(used=1, used_at=_now())
        .WHERE(login_tokens.c.id == token_id, login_tokens.c.used == 0)
    )


def create_session_token(runner, user_id: int, token: str) -> int:
    result = runner.execute(
        INSERT(session_tokens).VALUES(user_id=user_id, token=token, created_at=_now())
    )
    return int(result.lastrowid)


def delete_session_token(runner, token: str) -> None:
    runner.execute(DELETE(session_tokens).WHERE(session_tokens.c.token == token))


# lists


def create_list(runner, name: str, description: Optional[str] = None) -> int:
    now = _now()
    result = runner.execute(
        INSERT(lists).VALUES(name=name, description=description, created_at=now, updated_at=now)
    )
    return int(result.lastrowid)


def is_list_member(runner, list_id: int, email: str) -> bool:
    q = (
        SELECT(list_members.c.email.AS("email"))
        .FROM(list_members)
        .WHERE(list_members.c.list_id == list_id, list_members.c.email == email.lower())
        .LIMIT(1)
    )
    return runner.fetch_one(q) is not None


def add_list_member(runner, list_id: int, email: str) -> None:
    if is_list_member(runner, list_id, email):
        return
    runner.execute(
        INSERT(list_members).VALUES(list_id=list_id, email=email.lower(), created_at=_now())
    )


def remove_list_member(runner, list_id: int, email: str) -> None:
    runner.execute(
        DELETE(list_members).WHERE(
            list_members.c.list_id == list_id,
            list_members.c.email == email.lower(),
        )
    )


def list_members_with_users(runner, list_id: int):
    q = (
        SELECT(
            list_members.c.email.AS("email"),
            users.c.id.AS("user_id"),
            users.c.first_name.AS("first_name"),
            users.c.last_name.AS("last_name"),
        )
        .FROM(list_members)
        .LEFT_JOIN(users, ON=users.c.email == list_members.c.email)
        .WHERE(list_members.c.list_id == list_id)
        .ORDER_BY(list_members.c.created_at.ASC())
    )
    return runner.fetch_all(q)


# events and spots


def get_event_by_slug(runner, slug: str):
    q = using_pydantic(
        SELECT(*_columns(events, EVENT_FIELDS))
        .FROM(events)
        .WHERE(events.c.slug == slug)
        .LIMIT(1)
    ).hydrate(EventOut)
    return runner.fetch_one(q)


def get_event_by_id(runner, event_id: int):
    q = using_pydantic(
        SELECT(*_columns(events, EVENT_FIELDS))
        .FROM(events)
        .WHERE(events.c.id == event_id)
        .LIMIT(1)
    ).hydrate(EventOut)
    return runner.fetch_one(q)


def list_upcoming_events(runner, limit: int = 30):
    q = using_pydantic(
        SELECT(*_columns(events, EVENT_FIELDS))
        .FROM(events)
        .WHERE(events.c.ends_at >= _now(), events.c.unlisted == 0)
        .ORDER_BY(events.c.starts_at.ASC())
        .LIMIT(limit)
    ).hydrate(EventOut)
    return runner.fetch_all(q)


def create_event(runner, data: dict) -> int:
    now = _now()
    result = runner.execute(
        INSERT(events).VALUES(
            slug=data["slug"],
            title=data["title"],
            description=data.get("description"),
            starts_at=data["starts_at"],
            ends_at=data["ends_at"],
            capacity=data["capacity"],
            unlisted=1 if data.get("unlisted") else 0,
            guest_list_id=data.get("guest_list_id"),
            created_at=now,
            updated_at=now,
        )
    )
    return int(result.lastrowid)


def list_spots_for_event(runner, event_id: int):
    q = using_pydantic(
        SELECT(*_columns(spots, SPOT_FIELDS))
        .FROM(spots)
        .JOIN(event_spots, ON=event_spots.c.spot_id == spots.c.id)
        .WHERE(event_spots.c.event_id == event_id)
        .ORDER_BY(spots.c.sort.ASC(), spots.c.id.ASC())
    ).hydrate(SpotOut)
    return runner.fetch_all(q)


def create_spot(runner, data: dict) -> int:
    result = runner.execute(
        INSERT(spots).VALUES(
            name=data["name"],
            description=data.get("description"),
            qty_total=data["qty_total"],
            qty_per_person=data["qty_per_person"],
            kind=data["kind"],
            sort=data.get("sort", 0),
            required_contribution=data.get("required_contribution"),
            min_contribution=data.get("min_contribution"),
            max_contribution=data.get("max_contribution"),
            suggested_contribution=data.get("suggested_contribution"),
            required_notice_hours=data.get("required_notice_hours"),
            created_at=_now(),
        )
    )
    return int(result.lastrowid)


def add_spot_to_event(runner, event_id: int, spot_id: int) -> None:
    runner.execute(INSERT(event_spots).VALUES(event_id=event_id, spot_id=spot_id))


def remove_spot_from_event(runner, event_id: int, spot_id: int) -> None:
    runner.execute(
        DELETE(event_spots).WHERE(event_spots.c.event_id == event_id, event_spots.c.spot_id == spot_id)
    )


# rsvp sessions


def create_rsvp_session(runner, event_id: int, token: str, user_id: Optional[int]) -> int:
    now = _now()
    result = runner.execute(
        INSERT(rsvp_sessions).VALUES(
            event_id=event_id,
            token=token,
            status="pending",
            user_id=user_id,
            created_at=now,
            updated_at=now,
        )
    )
    return int(result.lastrowid)


def get_rsvp_session_by_token(runner, token: str):
    q = using_pydantic(
        SELECT(*_columns(rsvp_sessions, SESSION_FIELDS))
        .FROM(rsvp_sessions)
        .WHERE(rsvp_sessions.c.token == token)
        .LIMIT(1)
    ).hydrate(RsvpSessionOut)
    return runner.fetch_one(q)


def get_rsvp_session_by_id(runner, session_id: int):
    q = using_pydantic(
        SELECT(*_columns(rsvp_sessions, SESSION_FIELDS))
        .FROM(rsvp_sessions)
        .WHERE(rsvp_sessions.c.id == session_id)
        .LIMIT(1)
    ).hydrate(RsvpSessionOut)
    return runner.fetch_one(q)


def get_latest_session_for_user(runner, event_id: int, user_id: int):
    q = using_pydantic(
        SELECT(*_columns(rsvp_sessions, SESSION_FIELDS))
        .FROM(rsvp_sessions)
        .WHERE(rsvp_sessions.c.event_id == event_id, rsvp_sessions.c.user_id == user_id)
        .ORDER_BY(rsvp_sessions.c.id.DESC())
        .LIMIT(1)
    ).hydrate(RsvpSessionOut)
    return runner.fetch_one(q)


def list_other_sessions_for_email(runner, event_id: int, email: str, session_id: int):
    q = using_pydantic(
        SELECT(*_columns(rsvp_sessions, SESSION_FIELDS))
        .FROM(rsvp_sessions)
        .WHERE(
            rsvp_sessions.c.event_id == event_id,
            rsvp_sessions.c.email == email.lower(),
            rsvp_sessions.c.id != session_id,
        )
    ).hydrate(RsvpSessionOut)
    return runner.fetch_all(q)


def delete_rsvp_session(runner, session_id: int) -> None:
    runner.execute(DELETE(rsvps).WHERE(rsvps.c.session_id == session_id))
    runner.execute(DELETE(rsvp_sessions).WHERE(rsvp_sessions.c.id == session_id))


def set_session_contact(
    runner, session_id: int, first_name: str, last_name: str, email: str, user_id: Optional[int]
) -> None:
    runner.execute(
        UPDATE(rsvp_sessions)
        .SET(
            first_name=first_name,
            last_name=last_name,
            email=email.lower(),
            user_id=user_id,
            updated_at=_now(),
        )
        .WHERE(rsvp_sessions.c.id == session_id, rsvp_sessions.c.status == "pending")
    )


def set_session_client_secret(runner, session_id: int, client_secret: Optional[str]) -> None:
    runner.execute(
        UPDATE(rsvp_sessions)
        .SET(payment_client_secret=client_secret, updated_at=_now())
        .WHERE(rsvp_sessions.c.id == session_id, rsvp_sessions.c.status == "pending")
    )


def touch_rsvp_session(runner, session_id: int) -> None:
    runner.execute(
        UPDATE(rsvp_sessions)
        .SET(updated_at=_now())
        .WHERE(rsvp_sessions.c.id == session_id, rsvp_sessions.c.status == "pending")
    )


def mark_session_paid(runner, session_id: int, payment_intent_id: Optional[str]) -> None:
    now = _now()
    runner.execute(
        UPDATE(rsvp_sessions)
        .SET(status="paid", payment_intent_id=payment_intent_id, updated_at=now)
        .WHERE(rsvp_sessions.c.id == session_id, rsvp_sessions.c.status == "pending")
    )
    runner.execute(
        UPDATE(rsvps)
        .SET(status="paid", updated_at=now)
        .WHERE(rsvps.c.session_id == session_id, rsvps.c.status == "pending")
    )


def list_stale_pending_sessions(runner, cutoff: str):
    q = (
        SELECT(rsvp_sessions.c.id.AS("id"))
        .FROM(rsvp_sessions)
        .WHERE(rsvp_sessions.c.status == "pending", rsvp_sessions.c.updated_at < cutoff)
    )
    return runner.fetch_all(q)


# rsvps


def list_rsvps_for_event(runner, event_id: int):
    q = using_pydantic(
        SELECT(*_columns(rsvps, RSVP_FIELDS))
        .FROM(rsvps)
        .WHERE(rsvps.c.event_id == event_id)
        .ORDER_BY(rsvps.c.id.ASC())
    ).hydrate(RsvpOut)
    return runner.fetch_all(q)


def list_rsvps_for_session(runner, session_id: int):
    q = using_pydantic(
        SELECT(*_columns(rsvps, RSVP_FIELDS), spots.c.name.AS("spot_name"))
        .FROM(rsvps)
        .JOIN(spots, ON=spots.c.id == rsvps.c.spot_id)
        .WHERE(rsvps.c.session_id == session_id)
        .ORDER_BY(rsvps.c.id.ASC())
    ).hydrate(RsvpOut)
    return runner.fetch_all(q)


def list_rsvps_for_email(runner, event_id: int, email: str, exclude_session_id: int):
    q = using_pydantic(
        SELECT(*_columns(rsvps, RSVP_FIELDS))
        .FROM(rsvps)
        .WHERE(
            rsvps.c.event_id == event_id,
            rsvps.c.email == email.lower(),
            rsvps.c.session_id != exclude_session_id,
        )
    ).hydrate(RsvpOut)
    return runner.fetch_all(q)


def delete_pending_rsvps(runner, session_id: int) -> None:
    runner.execute(
        DELETE(rsvps).WHERE(rsvps.c.session_id == session_id, rsvps.c.status == "pending")
    )


def create_rsvp(
    runner,
    event_id: int,
    spot_id: int,
    session_id: int,
    contribution: int,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    email: Optional[str] = None,
    user_id: Optional[int] = None,
) -> int:
    now = _now()
    result = runner.execute(
        INSERT(rsvps).VALUES(
            event_id=event_id,
            spot_id=spot_id,
            session_id=session_id,
            contribution=contribution,
            status="pending",
            first_name=first_name,
            last_name=last_name,
            email=email.lower() if email else None,
            user_id=user_id,
            created_at=now,
            updated_at=now,
        )
    )
    return int(result.lastrowid)


def set_rsvp_attendee(
    runner, rsvp_id: int, first_name: str, last_name: str, email: str, user_id: Optional[int]
) -> None:
    runner.execute(
        UPDATE(rsvps)
        .SET(
            first_name=first_name,
            last_name=last_name,
            email=email.lower(),
            user_id=user_id,
            updated_at=_now(),
        )
        .WHERE(rsvps.c.id == rsvp_id, rsvps.c.status == "pending")
    )


# posts


def get_post_by_slug(runner, slug: str):
    q = using_pydantic(
        SELECT(
            posts.c.id.AS("id"),
            posts.c.slug.AS("slug"),
            posts.c.title.AS("title"),
            posts.c.author.AS("author"),
            posts.c.content.AS("content"),
            posts.c.created_at.AS("created_at"),
        )
        .FROM(posts)
        .WHERE(posts.c.slug == slug)
        .LIMIT(1)
    ).hydrate(PostOut)
    return runner.fetch_one(q)


def get_post_by_id(runner, post_id: int):
    q = using_pydantic(
        SELECT(
            posts.c.id.AS("id"),
            posts.c.slug.AS("slug"),
            posts.c.title.AS("title"),
            posts.c.author.AS("author"),
            posts.c.content.AS("content"),
            posts.c.created_at.AS("created_at"),
        )
        .FROM(posts)
        .WHERE(posts.c.id == post_id)
        .LIMIT(1)
    ).hydrate(PostOut)
    return runner.fetch_one(q)


def create_post(runner, slug: str, title: str, author: str, content: str) -> int:
    now = _now()
    result = runner.execute(
        INSERT(posts).VALUES(
            slug=slug, title=title, author=author, content=content, created_at=now, updated_at=now
        )
    )
    return int(result.lastrowid)


# emails


def create_email(
    runner,
    kind: str,
    address: str,
    batch_id: int,
    user_id: Optional[int] = None,
    post_id: Optional[int] = None,
    list_id: Optional[int] = None,
    event_id: Optional[int] = None,
    rsvp_session_id: Optional[int] = None,
    login_token_id: Optional[int] = None,
) -> int:
    result = runner.execute(
        INSERT(emails).VALUES(
            kind=kind,
            state="queued",
            user_id=user_id,
            address=address.lower(),
            post_id=post_id,
            list_id=list_id,
            event_id=event_id,
            rsvp_session_id=rsvp_session_id,
            login_token_id=login_token_id,
            batch_id=batch_id,
            created_at=_now(),
        )
    )
    return int(result.lastrowid)


def get_email(runner, email_id: int):
    q = using_pydantic(
        SELECT(*_columns(emails, EMAIL_FIELDS))
        .FROM(emails)
        .WHERE(emails.c.id == email_id)
        .LIMIT(1)
    ).hydrate(EmailOut)
    return runner.fetch_one(q)


def email_exists_for_post(runner, address: str, post_id: int, list_id: int) -> bool:
    q = (
        SELECT(emails.c.id.AS("id"))
        .FROM(emails)
        .WHERE(
            emails.c.address == address.lower(),
            emails.c.post_id == post_id,
            emails.c.list_id == list_id,
        )
        .LIMIT(1)
    )
    return runner.fetch_one(q) is not None


def confirmation_exists_for_session(runner, session_id: int) -> bool:
    q = (
        SELECT(emails.c.id.AS("id"))
        .FROM(emails)
        .WHERE(emails.c.kind == "confirmation", emails.c.rsvp_session_id == session_id)
        .LIMIT(1)
    )
    return runner.fetch_one(q) is not None


def mark_email_sent(runner, email_id: int) -> None:
    runner.execute(
        UPDATE(emails)
        .SET(state="sent", sent_at=_now())
        .WHERE(emails.c.id == email_id, emails.c.state == "queued")
    )


def mark_email_errored(runner, email_id: int, error: str) -> None:
    runner.execute(
        UPDATE(emails)
        .SET(state="errored", errored_at=_now(), error=error)
        .WHERE(emails.c.id == email_id, emails.c.state == "queued")
    )


def mark_email_opened(runner, email_id: int) -> None:
    email = get_email(runner, email_id)
    if email is None or email.opened_at is not None:
        return
    runner.execute(UPDATE(emails).SET(opened_at=_now()).WHERE(emails.c.id == email_id))


def next_queued_email(runner):
    q = using_pydantic(
        SELECT(*_columns(emails, EMAIL_FIELDS))
        .FROM(email_queue)
        .JOIN(emails, ON=emails.c.batch_id == email_queue.c.batch_id)
        .WHERE(emails.c.state == "queued")
        .ORDER_BY(email_queue.c.position.ASC(), emails.c.id.ASC())
        .LIMIT(1)
    ).hydrate(EmailOut)
    return runner.fetch_one(q)


def count_queued_emails(runner) -> int:
    q = (
        SELECT(COUNT(emails.c.id).AS("n"))
        .FROM(email_queue)
        .JOIN(emails, ON=emails.c.batch_id == email_queue.c.batch_id)
        .WHERE(emails.c.state == "queued")
    )
    row = runner.fetch_one(q)
    return int(row["n"]) if row else 0


def create_email_batch(runner, size: int) -> int:
    now = _now()
    result = runner.execute(
        INSERT(email_batches).VALUES(size=size, sent=0, errored=0, created_at=now, updated_at=now)
    )
    return int(result.lastrowid)


def get_email_batch(runner, batch_id: int):
    q = using_pydantic(
        SELECT(*_columns(email_batches, BATCH_FIELDS))
        .FROM(email_batches)
        .WHERE(email_batches.c.id == batch_id)
        .LIMIT(1)
    ).hydrate(EmailBatchOut)
    return runner.fetch_one(q)


def _edge_position(runner, front: bool) -> Optional[int]:
    order = email_queue.c.position.ASC() if front else email_queue.c.position.DESC()
    row = runner.fetch_one(
        SELECT(email_queue.c.position.AS("position")).FROM(email_queue).ORDER_BY(order).LIMIT(1)
    )
    if not row:
        return None
    return int(row["position"])


def enqueue_batch(runner, batch_id: int, front: bool = False) -> int:
    edge = _edge_position(runner, front)
    if edge is None:
        position = 0
    else:
        position = edge - 1 if front else edge + 1
    runner.execute(INSERT(email_queue).VALUES(batch_id=batch_id, position=position))
    return position


def is_batch_queued(runner, batch_id: int) -> bool:
    q = (
        SELECT(email_queue.c.batch_id.AS("batch_id"))
        .FROM(email_queue)
        .WHERE(email_queue.c.batch_id == batch_id)
        .LIMIT(1)
    )
    return runner.fetch_one(q) is not None


def dequeue_batch(runner, batch_id: int) -> None:
    runner.execute(DELETE(email_queue).WHERE(email_queue.c.batch_id == batch_id))


def bump_email_batch(runner, batch_id: int, sent: int = 0, errored: int = 0):
    """Add to a batch's counters, dequeueing it once every email is accounted for."""
    batch = get_email_batch(runner, batch_id)
    if batch is None:
        return None
    runner.execute(
        UPDATE(email_batches)
        .SET(sent=batch.sent + sent, errored=batch.errored + errored, updated_at=_now())
        .WHERE(email_batches.c.id == batch_id)
    )
    batch = get_email_batch(runner, batch_id)
    if batch.done:
        dequeue_batch(runner, batch_id)
    return batch
