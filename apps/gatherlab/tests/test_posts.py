from __future__ import annotations

import pytest
from conftest import log_in, wait_until

from gatherlab import queries


@pytest.fixture
def news(runner):
    list_id = queries.create_list(runner, "news")
    for address in ("one@gatherlab.org", "two@gatherlab.org"):
        queries.add_list_member(runner, list_id, address)
    queries.create_post(runner, "hello", "Hello, world", "The Team", "First post")
    return list_id


def test_post_page_renders(client, news):
    response = client.get("/p/hello")

    assert response.status_code == 200
    assert "Hello, world" in response.text
    assert client.get("/p/missing").status_code == 404


def test_writer_sends_a_post_to_a_list(client, runner, outbox, make_user, news):
    log_in(client, runner, make_user(roles=("writer",)))

    response = client.post("/p/hello/send", data={"list_id": str(news)})

    assert response.status_code == 200
    assert "Queued 2 emails" in response.text
    assert wait_until(lambda: len(outbox) == 2)
    assert sorted(m["To"] for m in outbox) == ["one@gatherlab.org", "two@gatherlab.org"]
    assert all(m["Subject"] == "Hello, world" for m in outbox)


def test_resending_only_reaches_new_members(client, runner, outbox, make_user, news):
    log_in(client, runner, make_user(roles=("admin",)))
    client.post("/p/hello/send", data={"list_id": str(news)})
    assert wait_until(lambda: len(outbox) == 2)

    response = client.post("/p/hello/send", data={"list_id": str(news)})
    assert "already has this post" in response.text

    queries.add_list_member(runner, news, "three@gatherlab.org")
    response = client.post("/p/hello/send", data={"list_id": str(news)})

    assert "Queued 1 emails" in response.text
    assert wait_until(lambda: len(outbox) == 3)
    assert outbox[-1]["To"] == "three@gatherlab.org"


def test_sending_requires_a_role(client, runner, make_user, news):
    assert client.post("/p/hello/send", data={"list_id": str(news)}).status_code == 401

    log_in(client, runner, make_user())
    assert client.post("/p/hello/send", data={"list_id": str(news)}).status_code == 403
    assert queries.count_queued_emails(runner) == 0


def test_sending_requires_a_list(client, runner, make_user, news):
    log_in(client, runner, make_user(roles=("writer",)))

    assert client.post("/p/hello/send", data={"list_id": ""}).status_code == 400
