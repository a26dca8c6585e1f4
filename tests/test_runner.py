from __future__ import annotations

import json

import pytest
from pydantic import BaseModel, ConfigDict

from conftest import FakeMem0, text_reply, tool_reply
from tutor_agent.errors import ToolExecutionError, ValidationError
from tutor_agent.llm import ModelReply, ToolCall
from tutor_agent.prompts import default_tool_definitions
from tutor_agent.runner import NO_OUTPUT, AgentRunner, AgentSpec, RunState, normalize_history
from tutor_agent.tools.registry import RunContext, build_tools

HI = [{"role": "user", "content": "hi"}]


def _agent(**kwargs) -> AgentSpec:
    kwargs.setdefault("tools", build_tools(default_tool_definitions()))
    return AgentSpec(name="test", instructions="be brief", **kwargs)


def test_normalize_history_filters_malformed_entries():
    history = normalize_history([
        {"role": "user", "content": "  hello  "},
        {"role": "assistant", "content": ""},
        {"role": "tool", "content": "treated as user"},
        {"role": 3, "content": "bad role"},
        "not a dict",
        {"role": "system", "content": "sys"},
        {"role": "assistant"},
    ])
    assert history == [
        {"role": "user", "content": "hello"},
        {"role": "user", "content": "treated as user"},
        {"role": "system", "content": "sys"},
    ]


@pytest.mark.parametrize("messages", [[], [{"role": "user", "content": "   "}], None, "hi"])
def test_empty_history_is_rejected(messages):
    with pytest.raises(ValidationError):
        normalize_history(messages)


def test_direct_answer(make_model):
    model = make_model(text_reply("hello!"))
    result = AgentRunner(model).run(_agent(), HI)
    assert result.state is RunState.COMPLETED
    assert result.final_output == "hello!"
    assert result.turns == 1
    assert result.usage.input_tokens == 10
    assert len(model.calls) == 1
    first = model.calls[0]
    assert first["messages"][0] == {"role": "system", "content": "be brief"}
    assert first["messages"][1:] == HI
    assert [t["function"]["name"] for t in first["tools"]] == ["add_memory", "search_memories"]


def test_tool_round_trip_appends_results(make_model):
    fake = FakeMem0(search_payload={"results": [{"memory": "likes CTV"}]})
    model = make_model(
        tool_reply("search_memories", {"query": "CTV", "limit": 5}),
        text_reply("You like CTV, so let's dig into it."),
    )
    ctx = RunContext(user_id="u1", memory=fake.gateway())
    result = AgentRunner(model).run(_agent(), HI, ctx)

    assert result.state is RunState.COMPLETED
    assert result.tools_invoked == ["search_memories"]
    second = model.calls[1]["messages"]
    assistant, tool_msg = second[-2], second[-1]
    assert assistant["tool_calls"][0]["function"]["name"] == "search_memories"
    assert tool_msg["role"] == "tool"
    assert tool_msg["tool_call_id"] == "call_1"
    assert "likes CTV" in tool_msg["content"]
    assert result.text == "You like CTV, so let's dig into it."
    # one snapshot per model call, none per tool call
    assert len(result.usage_snapshots) == 2
    assert result.usage.input_tokens == 30


def test_multiple_tool_calls_in_one_turn(make_model):
    reply = ModelReply(
        tool_calls=[
            ToolCall(id="a", name="search_memories", arguments=json.dumps({"query": "x", "limit": 1})),
            ToolCall(id="b", name="add_memory", arguments=json.dumps({"text": "asked about x"})),
        ],
    )
    model = make_model(reply, text_reply("done"))
    result = AgentRunner(model).run(_agent(), HI, RunContext())
    tool_msgs = [m for m in model.calls[1]["messages"] if m["role"] == "tool"]
    assert [m["tool_call_id"] for m in tool_msgs] == ["a", "b"]
    assert result.tools_invoked == ["search_memories", "add_memory"]


def test_turn_ceiling_aborts_without_hanging(make_model):
    model = make_model(tool_reply("search_memories", {"query": "again", "limit": 1}))
    result = AgentRunner(model, max_turns=3).run(_agent(), HI, RunContext())
    assert result.state is RunState.ABORTED
    assert result.aborted
    assert result.turns == 3
    assert len(model.calls) == 3
    assert result.final_output is None
    assert result.text == NO_OUTPUT
    assert len(result.usage_snapshots) == 3


def test_abort_keeps_partial_text(make_model):
    partial = ModelReply(
        content="Let me check your notes first.",
        tool_calls=[ToolCall(id="c", name="search_memories", arguments='{"query": "q", "limit": 1}')],
    )
    result = AgentRunner(make_model(partial), max_turns=2).run(_agent(), HI, RunContext())
    assert result.aborted
    assert result.text == "Let me check your notes first."


def test_unknown_tool_from_model_fails_the_run(make_model):
    model = make_model(tool_reply("web_search", {"query": "x", "limit": 1}))
    with pytest.raises(ToolExecutionError):
        AgentRunner(model).run(_agent(), HI, RunContext())


def test_history_is_not_mutated(make_model):
    history = [{"role": "user", "content": "hi"}]
    model = make_model(tool_reply("search_memories", {"query": "x", "limit": 1}), text_reply("ok"))
    AgentRunner(model).run(_agent(), history, RunContext())
    assert history == [{"role": "user", "content": "hi"}]


def test_instructions_can_depend_on_context(make_model):
    model = make_model(text_reply("ok"))
    agent = _agent()
    agent.instructions = lambda ctx: f"user={ctx.user_id}"
    AgentRunner(model).run(agent, HI, RunContext(user_id="u7"))
    assert model.calls[0]["messages"][0]["content"] == "user=u7"


class Card(BaseModel):
    model_config = ConfigDict(extra="forbid")
    title: str


def test_structured_output_is_parsed(make_model):
    model = make_model(text_reply('{"title": "CTV 101"}'))
    result = AgentRunner(model).run(_agent(tools=[], output_type=Card), HI)
    assert result.final_output == Card(title="CTV 101")
    fmt = model.calls[0]["response_format"]
    assert fmt["type"] == "json_schema"
    assert fmt["json_schema"]["name"] == "Card"
    assert model.calls[0]["tools"] is None


def test_structured_output_falls_back_to_text(make_model):
    model = make_model(text_reply("not json at all"))
    result = AgentRunner(model).run(_agent(tools=[], output_type=Card), HI)
    assert result.final_output == "not json at all"


def test_tool_choice_policy_sees_invoked_kinds(make_model):
    seen = []

    def policy(invoked):
        seen.append(tuple(invoked))
        return "auto"

    model = make_model(tool_reply("search_memories", {"query": "x", "limit": 1}), text_reply("ok"))
    AgentRunner(model).run(_agent(tool_choice=policy), HI, RunContext())
    assert seen == [(), ("search_memories",)]
    assert model.calls[0]["tool_choice"] == "auto"


def test_max_turns_must_be_positive(make_model):
    with pytest.raises(ValueError):
        AgentRunner(make_model(text_reply("x")), max_turns=0)
