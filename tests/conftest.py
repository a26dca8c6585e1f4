"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

# Ensure src/ is on the import path (for local imports without installing as package)
SRC_PATH = Path(__file__).resolve().parent.parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from tutor_agent.config import Settings  # noqa: E402
from tutor_agent.llm import ModelReply, ToolCall  # noqa: E402
from tutor_agent.memory import Mem0Client, MemoryGateway, MemoryWriter  # noqa: E402


# -----------------------------
# Fake model
# -----------------------------
class ScriptedModel:
    """Returns canned replies in order; the last one repeats forever."""

    def __init__(self, replies: List[ModelReply]):
        assert replies, "need at least one reply"
        self.replies = list(replies)
        self.calls: List[Dict[str, Any]] = []

    def complete(self, messages, *, tools=None, tool_choice=None, response_format=None,
                 model=None, generation=None) -> ModelReply:
        self.calls.append({
            "messages": [dict(m) for m in messages],
            "tools": tools,
            "tool_choice": tool_choice,
            "response_format": response_format,
            "model": model,
        })
        if len(self.replies) > 1:
            return self.replies.pop(0)
        return self.replies[0]


def text_reply(text: str, usage: Optional[Dict[str, Any]] = None) -> ModelReply:
    return ModelReply(content=text, usage=usage or {"prompt_tokens": 10, "completion_tokens": 5})


def tool_reply(name: str, arguments: Dict[str, Any], call_id: str = "call_1",
               usage: Optional[Dict[str, Any]] = None) -> ModelReply:
    return ModelReply(
        content=None,
        tool_calls=[ToolCall(id=call_id, name=name, arguments=json.dumps(arguments))],
        usage=usage or {"prompt_tokens": 20, "completion_tokens": 3},
    )


# -----------------------------
# Fake memory store
# -----------------------------
class FakeMem0:
    """In-process stand-in for the Mem0 REST API, served via httpx.MockTransport."""

    def __init__(self, search_payload: Any = None, list_payload: Any = None, fail_with: int | None = None):
        self.search_payload = search_payload if search_payload is not None else {"results": []}
        self.list_payload = list_payload if list_payload is not None else {"results": []}
        self.fail_with = fail_with
        self.requests: List[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with:
            return httpx.Response(self.fail_with, text="store exploded")
        if request.url.path == "/v1/memories/search/":
            return httpx.Response(200, json=self.search_payload)
        if request.url.path == "/v1/memories/" and request.method == "POST":
            return httpx.Response(200, json=[{"id": "m1", "event": "ADD"}])
        if request.url.path == "/v1/memories/" and request.method == "GET":
            return httpx.Response(200, json=self.list_payload)
        return httpx.Response(404, json={"detail": "not found"})

    def gateway(self) -> MemoryGateway:
        client = Mem0Client("test-key", base_url="https://mem0.test", transport=httpx.MockTransport(self.handler))
        return MemoryGateway(client, MemoryWriter())

    def bodies(self, method: str, path: str) -> List[Any]:
        return [
            json.loads(r.content or b"null")
            for r in self.requests
            if r.method == method and r.url.path == path
        ]


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Return the root directory of the project."""
    return Path(__file__).resolve().parent.parent


@pytest.fixture(scope="session")
def config_path(project_root: Path) -> Path:
    return project_root / "config" / "default.yaml"


@pytest.fixture(scope="function")
def clean_env(monkeypatch: pytest.MonkeyPatch):
    """Ensure tests run with a clean environment (no leftover vars)."""
    for var in ["TUTOR_AGENT_CONFIG", "OPENAI_API_KEY", "OPENAI_MODEL", "OPENAI_BASE_URL", "MEM0_API_KEY"]:
        monkeypatch.delenv(var, raising=False)
    yield


@pytest.fixture
def settings() -> Settings:
    return Settings(openai_api_key="sk-test", mem0_api_key="m0-test")


@pytest.fixture
def make_model() -> Callable[..., ScriptedModel]:
    return lambda *replies: ScriptedModel(list(replies))


@pytest.fixture
def fake_mem0() -> FakeMem0:
    return FakeMem0()


@pytest.fixture
def no_web() -> Callable[[str, int], List[Dict[str, str]]]:
    def _search(query: str, limit: int) -> List[Dict[str, str]]:
        return [
            {"title": "CTV basics", "url": "https://example.com/ctv", "snippet": "What CTV is"},
            {"title": "OTT vs CTV", "url": "https://example.com/ott", "snippet": "The difference"},
        ][:limit]
    return _search
