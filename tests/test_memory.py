from __future__ import annotations

import threading

import httpx
import pytest

from conftest import FakeMem0
from tutor_agent.errors import MemoryStoreError, ValidationError
from tutor_agent.memory import (
    Mem0Client,
    MemoryGateway,
    MemoryWriter,
    clamp_limit,
    extract_items,
    memory_text,
)


@pytest.mark.parametrize(
    "payload",
    [
        [{"memory": "a"}, {"memory": "b"}],
        {"results": [{"memory": "a"}, {"memory": "b"}]},
        {"memories": [{"memory": "a"}, {"memory": "b"}]},
        {"data": [{"memory": "a"}, {"memory": "b"}]},
    ],
    ids=["raw", "results", "memories", "data"],
)
def test_search_handles_every_envelope(payload):
    gateway = FakeMem0(search_payload=payload).gateway()
    total, memories = gateway.search("CTV", "u1", 10)
    assert total == 2
    assert memories == ["a", "b"]


@pytest.mark.parametrize("payload", [{"items": [1, 2]}, {"results": "nope"}, None, 42, "text"])
def test_unrecognized_envelope_is_empty(payload):
    assert extract_items(payload) == []


def test_search_unrecognized_envelope_returns_empty_list():
    gateway = FakeMem0(search_payload={"hits": [{"memory": "a"}]}).gateway()
    assert gateway.search("CTV", "u1") == (0, [])


def test_memory_text_shapes():
    assert memory_text({"memory": "m"}) == "m"
    assert memory_text({"data": {"memory": "nested"}}) == "nested"
    assert memory_text({"text": "t"}) == "t"
    assert memory_text({"content": "c"}) == "c"
    assert memory_text("plain") == "plain"
    assert memory_text({"id": 7}) == '{"id": 7}'
    # .memory wins over the other fields
    assert memory_text({"memory": "m", "text": "t", "content": "c"}) == "m"


@pytest.mark.parametrize(
    "raw, expected",
    [(None, 10), ("abc", 10), (0, 10), (-3, 10), (5, 5), (3.9, 3), ("7", 7), (100, 25)],
)
def test_clamp_limit(raw, expected):
    assert clamp_limit(raw) == expected


def test_search_truncates_to_limit_but_reports_total():
    payload = {"results": [{"memory": str(i)} for i in range(30)]}
    gateway = FakeMem0(search_payload=payload).gateway()
    total, memories = gateway.search("q", "u1", 50)
    assert total == 30
    assert len(memories) == 25


def test_search_sends_query_and_user(fake_mem0):
    gateway = fake_mem0.gateway()
    gateway.search("CTV", "user-9")
    assert fake_mem0.bodies("POST", "/v1/memories/search/") == [{"query": "CTV", "user_id": "user-9"}]
    assert fake_mem0.requests[0].headers["Authorization"] == "Token test-key"


def test_store_errors_keep_upstream_details():
    gateway = FakeMem0(fail_with=401).gateway()
    with pytest.raises(MemoryStoreError) as exc:
        gateway.search("CTV", "u1")
    assert exc.value.upstream_status == 401
    assert exc.value.upstream_body == "store exploded"


def test_network_errors_become_store_errors():
    def boom(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("down", request=request)

    client = Mem0Client("k", base_url="https://mem0.test", transport=httpx.MockTransport(boom))
    with pytest.raises(MemoryStoreError):
        MemoryGateway(client).search("q", "u1")


def test_add_returns_before_the_write_runs():
    release = threading.Event()
    written = []

    class SlowClient:
        def add(self, text, user_id):
            release.wait(timeout=5)
            written.append((text, user_id))

    writer = MemoryWriter()
    gateway = MemoryGateway(SlowClient(), writer)  # type: ignore[arg-type]
    assert gateway.add("likes CTV", "u1") == {"ok": True, "queued": True}
    assert written == []
    release.set()
    writer.shutdown(wait=True)
    assert written == [("likes CTV", "u1")]


def test_failed_write_is_logged_not_raised(caplog):
    gateway = FakeMem0(fail_with=500).gateway()
    with caplog.at_level("ERROR", logger="tutor_agent.memory"):
        assert gateway.add("likes CTV", "u1")["queued"] is True
        gateway.writer.shutdown(wait=True)
    assert "Async memory write failed" in caplog.text


def test_add_requires_text(fake_mem0):
    with pytest.raises(ValidationError):
        fake_mem0.gateway().add("  ", "u1")


def test_list_uses_first_page(fake_mem0):
    fake_mem0.list_payload = {"results": [{"memory": "a"}, {"text": "b"}]}
    total, memories = fake_mem0.gateway().list("u1", 40)
    assert (total, memories) == (2, ["a", "b"])
    params = fake_mem0.requests[0].url.params
    assert params["user_id"] == "u1"
    assert params["page"] == "1"
    assert params["page_size"] == "25"


def test_list_truncates_when_store_ignores_page_size():
    payload = {"results": [{"memory": "a"}, {"memory": "b"}, {"memory": "c"}]}
    total, memories = FakeMem0(list_payload=payload).gateway().list("u1", 1)
    assert total == 3
    assert memories == ["a"]


def test_close_flushes_queued_writes():
    fake = FakeMem0()
    gateway = fake.gateway()
    release = threading.Event()
    # Occupy the single worker so the add below stays queued.
    gateway.writer.submit(release.wait, 5)
    gateway.add("likes CTV", "u1")
    assert fake.bodies("POST", "/v1/memories/") == []
    release.set()
    gateway.close()
    assert fake.bodies("POST", "/v1/memories/") == [
        {"messages": [{"role": "user", "content": "likes CTV"}], "user_id": "u1"}
    ]
