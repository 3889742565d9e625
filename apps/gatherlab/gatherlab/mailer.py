from __future__ import annotations

import asyncio
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid
from typing import Optional
from urllib.parse import parse_qs, urlsplit

from jinja2 import Environment, FileSystemLoader, select_autoescape

from gatherlab import queries
from gatherlab.config import BASE_DIR, Config
from gatherlab.db import get_runner, write_transaction
from gatherlab.models import EmailKind, EmailOut

logger = logging.getLogger(__name__)

email_env = Environment(
    loader=FileSystemLoader(str(BASE_DIR / "templates" / "emails")),
    autoescape=select_autoescape(["html"]),
)


class SmtpTransport:
    """Blocking SMTP sender configured from an ``smtp://`` or ``smtps://`` URL.

    ``smtp://host:port?tls=required`` upgrades the connection with STARTTLS.
    """

    def __init__(self, addr: str, username: Optional[str] = None, password: Optional[str] = None):
        parts = urlsplit(addr)
        if parts.scheme not in {"smtp", "smtps"}:
            raise ValueError(f"Unsupported SMTP address: {addr}")
        self.implicit_tls = parts.scheme == "smtps"
        self.host = parts.hostname or "localhost"
        self.port = parts.port or (465 if self.implicit_tls else 25)
        self.starttls = parse_qs(parts.query).get("tls", [""])[0] == "required"
        self.username = username
        self.password = password

    @classmethod
    def from_config(cls) -> "SmtpTransport":
        return cls(Config.SMTP_ADDR, Config.SMTP_USERNAME, Config.SMTP_PASSWORD)

    def _connect(self) -> smtplib.SMTP:
        if self.implicit_tls:
            return smtplib.SMTP_SSL(self.host, self.port, timeout=Config.HTTP_TIMEOUT)
        return smtplib.SMTP(self.host, self.port, timeout=Config.HTTP_TIMEOUT)

    def send(self, message: MIMEMultipart) -> None:
        with self._connect() as server:
            if self.starttls:
                server.starttls()
            if self.username and self.password:
                server.login(self.username, self.password)
            server.send_message(message)


# Formatting


def _pixel_url(email_id: int) -> str:
    return f"{Config.APP_URL}/emails/{email_id}/footer.gif"


def _unsubscribe_url(email_id: int) -> str:
    return f"{Config.APP_URL}/emails/{email_id}/unsubscribe"


def _login_context(runner, email: EmailOut) -> dict:
    token = queries.get_login_token_by_id(runner, email.login_token_id)
    if token is None:
        raise LookupError(f"login token {email.login_token_id} is gone")
    path = "login" if email.user_id else "register"
    return {
        "subject": "Your login link",
        "link": f"{Config.APP_URL}/{path}?token={token['token']}",
        "registering": email.user_id is None,
    }


def _post_context(runner, email: EmailOut) -> dict:
    post = queries.get_post_by_id(runner, email.post_id)
    if post is None:
        raise LookupError(f"post {email.post_id} is gone")
    return {
        "subject": post.title,
        "post": post,
        "link": f"{Config.APP_URL}/p/{post.slug}",
        "unsubscribe_url": _unsubscribe_url(email.id) if email.list_id else None,
    }


def _confirmation_context(runner, email: EmailOut) -> dict:
    session = queries.get_rsvp_session_by_id(runner, email.rsvp_session_id)
    if session is None:
        raise LookupError(f"rsvp session {email.rsvp_session_id} is gone")
    event = queries.get_event_by_id(runner, session.event_id)
    rsvps = queries.list_rsvps_for_session(runner, session.id)
    return {
        "subject": f"You're going to {event.title}",
        "event": event,
        "session": session,
        "rsvps": rsvps,
        "total": sum(r.contribution for r in rsvps),
        "link": f"{Config.APP_URL}/e/{event.slug}/rsvp/manage?session={session.token}",
    }


_CONTEXTS = {
    EmailKind.login: _login_context,
    EmailKind.post: _post_context,
    EmailKind.confirmation: _confirmation_context,
}


def build_message(runner, email: EmailOut) -> MIMEMultipart:
    context = _CONTEXTS[email.kind](runner, email)
    context["email"] = email
    context["app_url"] = Config.APP_URL
    context["pixel_url"] = _pixel_url(email.id)

    msg = MIMEMultipart("alternative")
    msg["Subject"] = context["subject"]
    msg["From"] = Config.EMAIL_FROM
    msg["To"] = email.address
    msg["Message-ID"] = make_msgid(domain=Config.DOMAIN)
    if Config.EMAIL_REPLY_TO:
        msg["Reply-To"] = Config.EMAIL_REPLY_TO
    if context.get("unsubscribe_url"):
        msg["List-Unsubscribe"] = f"<{context['unsubscribe_url']}>"
        msg["List-Unsubscribe-Post"] = "List-Unsubscribe=One-Click"

    kind = email.kind.value
    msg.attach(MIMEText(email_env.get_template(f"{kind}.txt").render(**context), "plain"))
    msg.attach(MIMEText(email_env.get_template(f"{kind}.html").render(**context), "html"))
    return msg


# Queueing. These run inside the caller's transaction; call Mailer.notify after commit.


def queue_login_email(runner, address: str, login_token_id: int, user_id: Optional[int]) -> int:
    batch_id = queries.create_email_batch(runner, size=1)
    queries.create_email(
        runner,
        kind=EmailKind.login.value,
        address=address,
        batch_id=batch_id,
        user_id=user_id,
        login_token_id=login_token_id,
    )
    queries.enqueue_batch(runner, batch_id, front=True)
    return batch_id


def queue_confirmation_email(runner, session) -> Optional[int]:
    if not session.email or queries.confirmation_exists_for_session(runner, session.id):
        return None
    batch_id = queries.create_email_batch(runner, size=1)
    queries.create_email(
        runner,
        kind=EmailKind.confirmation.value,
        address=session.email,
        batch_id=batch_id,
        user_id=session.user_id,
        event_id=session.event_id,
        rsvp_session_id=session.id,
    )
    queries.enqueue_batch(runner, batch_id, front=True)
    return batch_id


def queue_post_emails(runner, post_id: int, list_id: int) -> Optional[int]:
    """One batch holding a post email for every list member not already sent this post."""
    recipients = [
        member
        for member in queries.list_members_with_users(runner, list_id)
        if not queries.email_exists_for_post(runner, member["email"], post_id, list_id)
    ]
    if not recipients:
        return None
    batch_id = queries.create_email_batch(runner, size=len(recipients))
    for member in recipients:
        queries.create_email(
            runner,
            kind=EmailKind.post.value,
            address=member["email"],
            batch_id=batch_id,
            user_id=member["user_id"],
            post_id=post_id,
            list_id=list_id,
        )
    queries.enqueue_batch(runner, batch_id, front=False)
    return batch_id


# Worker


def _record_result(runner, email: EmailOut, error: Optional[str]) -> None:
    """Mark one email sent or errored and count it against its batch."""
    with write_transaction(runner):
        if error is None:
            queries.mark_email_sent(runner, email.id)
            queries.bump_email_batch(runner, email.batch_id, sent=1)
        else:
            queries.mark_email_errored(runner, email.id, error)
            queries.bump_email_batch(runner, email.batch_id, errored=1)


class Mailer:
    """Drains the email queue at ``Config.EMAIL_RATELIMIT`` messages per second."""

    def __init__(self, transport=None, ratelimit: Optional[float] = None, tick: Optional[float] = None):
        self.transport = transport
        self.ratelimit = ratelimit
        self.tick = tick
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._wakeup: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None
        self._stopping = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        if self.transport is None:
            self.transport = SmtpTransport.from_config()
        self._loop = asyncio.get_running_loop()
        self._wakeup = asyncio.Event()
        self._stopping = False
        self._task = asyncio.create_task(self.run())

    async def stop(self) -> None:
        if not self.running:
            return
        self._stopping = True
        self._wakeup.set()
        await self._task
        self._task = None

    def notify(self) -> None:
        """Wake the worker. Callable from request threads."""
        if self._loop is None or self._wakeup is None:
            return
        self._loop.call_soon_threadsafe(self._wakeup.set)

    async def run(self) -> None:
        while not self._stopping:
            try:
                await self.send_queued()
            except Exception:
                logger.exception("Error while processing email queue")
                await asyncio.sleep(1)
                continue

            if self._stopping:
                break
            try:
                await asyncio.wait_for(self._wakeup.wait(), self.tick or Config.WORKER_TICK)
            except asyncio.TimeoutError:
                pass
            self._wakeup.clear()

    async def send_queued(self) -> int:
        """Send until the queue is empty. Returns how many emails were attempted."""
        loop = asyncio.get_running_loop()
        delay = 1.0 / (self.ratelimit or Config.EMAIL_RATELIMIT)
        next_send_at = loop.time()
        attempted = 0

        runner = await asyncio.to_thread(get_runner)
        try:
            while not self._stopping:
                email = await asyncio.to_thread(queries.next_queued_email, runner)
                if email is None:
                    return attempted

                now = loop.time()
                if next_send_at > now:
                    await asyncio.sleep(next_send_at - now)
                next_send_at = max(next_send_at, loop.time()) + delay

                await self._send_one(runner, email)
                attempted += 1
            return attempted
        finally:
            runner.connection.close()

    async def _send_one(self, runner, email: EmailOut) -> None:
        try:
            message = await asyncio.to_thread(build_message, runner, email)
            await asyncio.to_thread(self.transport.send, message)
        except Exception as exc:
            error = f"while sending email_id={email.id} in batch_id={email.batch_id}: {exc}"
            logger.warning("Email send failed %s", error)
            await asyncio.to_thread(_record_result, runner, email, error)
            return

        await asyncio.to_thread(_record_result, runner, email, None)
        logger.info("Sent %s email %s to %s", email.kind.value, email.id, email.address)