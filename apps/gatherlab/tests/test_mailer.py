from __future__ import annotations

import asyncio
import time

import pytest

from gatherlab import auth, mailer, queries
from gatherlab.mailer import Mailer, SmtpTransport


class FakeTransport:
    def __init__(self, fail_for=()):
        self.sent = []
        self.fail_for = set(fail_for)

    def send(self, message):
        if message["To"] in self.fail_for:
            raise ConnectionRefusedError("smtp down")
        self.sent.append(message)


def _body(message, subtype="plain") -> str:
    for part in message.walk():
        if part.get_content_type() == f"text/{subtype}":
            return part.get_payload(decode=True).decode()
    raise AssertionError(f"no text/{subtype} part")


@pytest.fixture
def post_batch(runner):
    list_id = queries.create_list(runner, "news")
    for address in ("one@gatherlab.org", "two@gatherlab.org", "three@gatherlab.org"):
        queries.add_list_member(runner, list_id, address)
    post_id = queries.create_post(runner, "hello", "Hello", "The Team", "First post")
    batch_id = mailer.queue_post_emails(runner, post_id, list_id)
    return batch_id


def test_transactional_email_jumps_ahead_of_bulk_batches(runner, post_batch):
    token_id, _ = auth.issue_login_token(runner, "me@gatherlab.org")
    login_batch = mailer.queue_login_email(runner, "me@gatherlab.org", token_id, None)
    later_post = queries.create_email_batch(runner, size=1)
    queries.create_email(runner, kind="post", address="late@gatherlab.org", batch_id=later_post)
    position = queries.enqueue_batch(runner, later_post)

    first = queries.next_queued_email(runner)

    assert first.batch_id == login_batch
    assert position == 1
    assert queries.count_queued_emails(runner) == 5


def test_queue_post_emails_skips_recipients_already_sent(runner, post_batch):
    post = queries.get_post_by_slug(runner, "hello")
    list_id = queries.next_queued_email(runner).list_id
    queries.add_list_member(runner, list_id, "four@gatherlab.org")

    batch_id = mailer.queue_post_emails(runner, post.id, list_id)

    assert queries.get_email_batch(runner, batch_id).size == 1
    assert mailer.queue_post_emails(runner, post.id, list_id) is None


async def test_send_queued_drains_and_dequeues_the_batch(runner, post_batch):
    transport = FakeTransport()
    worker = Mailer(transport=transport, ratelimit=1000)

    attempted = await worker.send_queued()

    assert attempted == 3
    assert sorted(m["To"] for m in transport.sent) == [
        "one@gatherlab.org",
        "three@gatherlab.org",
        "two@gatherlab.org",
    ]
    batch = queries.get_email_batch(runner, post_batch)
    assert (batch.size, batch.sent, batch.errored) == (3, 3, 0)
    assert not queries.is_batch_queued(runner, post_batch)
    assert queries.next_queued_email(runner) is None


async def test_failed_sends_are_marked_errored_and_counted(runner, post_batch):
    transport = FakeTransport(fail_for={"two@gatherlab.org"})
    worker = Mailer(transport=transport, ratelimit=1000)

    await worker.send_queued()

    batch = queries.get_email_batch(runner, post_batch)
    assert (batch.sent, batch.errored) == (2, 1)
    assert not queries.is_batch_queued(runner, post_batch)
    emails = [queries.get_email(runner, email_id) for email_id in (1, 2, 3)]
    failed = next(e for e in emails if e.address == "two@gatherlab.org")
    assert failed.state.value == "errored"
    assert f"email_id={failed.id}" in failed.error
    assert f"batch_id={post_batch}" in failed.error
    assert "smtp down" in failed.error


async def test_sends_are_paced_by_the_rate_limit(runner, post_batch):
    worker = Mailer(transport=FakeTransport(), ratelimit=20)

    started = time.monotonic()
    await worker.send_queued()

    assert time.monotonic() - started >= 0.09


def test_post_email_carries_unsubscribe_and_pixel(runner, post_batch):
    email = queries.next_queued_email(runner)

    message = mailer.build_message(runner, email)

    assert message["Subject"] == "Hello"
    assert message["List-Unsubscribe"] == f"<http://testserver/emails/{email.id}/unsubscribe>"
    assert f"http://testserver/emails/{email.id}/footer.gif" in _body(message, "html")
    assert "http://testserver/p/hello" in _body(message)


def test_login_email_links_to_login_or_register(runner, make_user):
    user = make_user()
    token_id, token = auth.issue_login_token(runner, user.email)
    mailer.queue_login_email(runner, user.email, token_id, user.id)
    known = queries.next_queued_email(runner)
    assert f"http://testserver/login?token={token}" in _body(mailer.build_message(runner, known))
    queries.mark_email_sent(runner, known.id)

    token_id, token = auth.issue_login_token(runner, "new@gatherlab.org")
    mailer.queue_login_email(runner, "new@gatherlab.org", token_id, None)
    stranger = queries.next_queued_email(runner)
    message = mailer.build_message(runner, stranger)
    assert f"http://testserver/register?token={token}" in _body(message)
    assert message["List-Unsubscribe"] is None


async def test_worker_wakes_on_notify(runner):
    transport = FakeTransport()
    worker = Mailer(transport=transport, ratelimit=1000, tick=30)
    worker.start()
    try:
        await asyncio.sleep(0.05)
        token_id, _ = auth.issue_login_token(runner, "wake@gatherlab.org")
        mailer.queue_login_email(runner, "wake@gatherlab.org", token_id, None)
        worker.notify()
        for _ in range(100):
            if transport.sent:
                break
            await asyncio.sleep(0.02)
    finally:
        await worker.stop()

    assert [m["To"] for m in transport.sent] == ["wake@gatherlab.org"]
    assert not worker.running


@pytest.mark.parametrize(
    "addr, host, port, implicit_tls, starttls",
    [
        ("smtp://localhost:1025", "localhost", 1025, False, False),
        ("smtp://mail.gatherlab.org:587?tls=required", "mail.gatherlab.org", 587, False, True),
        ("smtps://mail.gatherlab.org", "mail.gatherlab.org", 465, True, False),
    ],
)
def test_smtp_address_parsing(addr, host, port, implicit_tls, starttls):
    transport = SmtpTransport(addr, "user", "pass")
    assert (transport.host, transport.port) == (host, port)
    assert transport.implicit_tls is implicit_tls
    assert transport.starttls is starttls


def test_smtp_address_must_use_an_smtp_scheme():
    with pytest.raises(ValueError):
        SmtpTransport("http://localhost:25")
