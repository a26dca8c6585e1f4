from __future__ import annotations

from types import SimpleNamespace

import httpx
import openai
import pytest

from tutor_agent.config import Settings
from tutor_agent.errors import ConfigurationError, UpstreamError
from tutor_agent.llm import GenerationConfig, OpenAIChatModel, create_from_settings


class FakeCompletions:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.kwargs = None

    def create(self, **kwargs):
        self.kwargs = kwargs
        if self.error is not None:
            raise self.error
        return self.response


def _client(completions: FakeCompletions):
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


def _response(content=None, tool_calls=None, usage=None):
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(
        choices=[SimpleNamespace(message=message, finish_reason="stop")],
        usage=usage,
    )


def test_complete_parses_tool_calls():
    call = SimpleNamespace(id="c1", function=SimpleNamespace(name="search_memories", arguments='{"query":"x"}'))
    completions = FakeCompletions(_response(tool_calls=[call], usage={"prompt_tokens": 3}))
    model = OpenAIChatModel("sk", model="gpt-test", client=_client(completions))

    reply = model.complete([{"role": "user", "content": "hi"}], tools=[{"type": "function"}], tool_choice="auto")

    assert reply.content is None
    assert [(c.id, c.name) for c in reply.tool_calls] == [("c1", "search_memories")]
    assert reply.usage == {"prompt_tokens": 3}
    assert completions.kwargs["model"] == "gpt-test"
    assert completions.kwargs["tool_choice"] == "auto"


def test_tool_choice_is_dropped_without_tools():
    completions = FakeCompletions(_response(content="hello"))
    model = OpenAIChatModel("sk", model="gpt-test", client=_client(completions))
    reply = model.complete([{"role": "user", "content": "hi"}], tool_choice="none", model="gpt-other",
                           generation=GenerationConfig(reasoning_effort="low", verbosity="low"))
    assert reply.content == "hello"
    assert "tools" not in completions.kwargs
    assert "tool_choice" not in completions.kwargs
    assert completions.kwargs["model"] == "gpt-other"
    assert completions.kwargs["reasoning_effort"] == "low"
    assert completions.kwargs["verbosity"] == "low"


def test_status_errors_become_upstream_errors():
    request = httpx.Request("POST", "https://api.openai.test/v1/chat/completions")
    response = httpx.Response(429, request=request, text="slow down")
    error = openai.APIStatusError("rate limited", response=response, body=None)
    model = OpenAIChatModel("sk", model="gpt-test", client=_client(FakeCompletions(error=error)))

    with pytest.raises(UpstreamError) as exc:
        model.complete([{"role": "user", "content": "hi"}])
    assert exc.value.upstream_status == 429
    assert exc.value.upstream_body == "slow down"
    assert exc.value.status_code == 502


def test_empty_choices_is_an_upstream_error():
    empty = SimpleNamespace(choices=[], usage=None)
    model = OpenAIChatModel("sk", model="gpt-test", client=_client(FakeCompletions(empty)))
    with pytest.raises(UpstreamError):
        model.complete([{"role": "user", "content": "hi"}])


def test_factory_requires_key():
    with pytest.raises(ConfigurationError, match="OPENAI_API_KEY"):
        create_from_settings(Settings(openai_api_key=None))
