"""Bounded model/tool loop for a single request.

A run walks ``IDLE -> REQUESTING -> (TOOL_INVOKED -> DISPATCH -> REQUESTING)*``
and ends ``COMPLETED`` (the model answered) or ``ABORTED`` (the turn ceiling
was reached). Every model call contributes one usage snapshot; tool calls do
not. The history given to :meth:`AgentRunner.run` is never extended with
user input while the run is in progress.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Type, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .errors import ToolExecutionError, ValidationError
from .llm import ChatModel, GenerationConfig, ToolChoice
from .tools.registry import ExecutableTool, RunContext
from .usage import RunUsage, UsageSnapshot, aggregate, pick_usage

logger = logging.getLogger(__name__)

DEFAULT_MAX_TURNS = 8
NO_OUTPUT = "No output produced."


class RunState(str, Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    TOOL_INVOKED = "tool_invoked"
    DISPATCH = "dispatch"
    COMPLETED = "completed"
    ABORTED = "aborted"


Instructions = Union[str, Callable[[RunContext], str]]
# Receives the tool kinds dispatched so far in this run.
ToolChoicePolicy = Callable[[Sequence[str]], ToolChoice]


# -----------------------------
# History
# -----------------------------
def normalize_history(messages: Any) -> List[Dict[str, str]]:
    """Drop malformed entries and map roles onto user/assistant/system.

    Raises :class:`ValidationError` when nothing usable is left.
    """
    out: List[Dict[str, str]] = []
    for m in messages if isinstance(messages, (list, tuple)) else []:
        if not isinstance(m, Mapping):
            continue
        role, content = m.get("role"), m.get("content")
        if not isinstance(role, str) or not isinstance(content, str):
            continue
        content = content.strip()
        if not content:
            continue
        role = role.strip().lower()
        if role not in ("assistant", "system"):
            role = "user"
        out.append({"role": role, "content": content})
    if not out:
        raise ValidationError("messages must contain at least one non-empty {role, content} entry.")
    return out


# -----------------------------
# Agent & result
# -----------------------------
@dataclass
class AgentSpec:
    name: str
    instructions: Instructions
    tools: List[ExecutableTool] = field(default_factory=list)
    output_type: Optional[Type[BaseModel]] = None
    tool_choice: Optional[ToolChoicePolicy] = None
    model: Optional[str] = None
    generation: Optional[GenerationConfig] = None

    def render_instructions(self, ctx: RunContext) -> str:
        if callable(self.instructions):
            return self.instructions(ctx)
        return self.instructions

    def response_format(self) -> Optional[Dict[str, Any]]:
        if self.output_type is None:
            return None
        return {
            "type": "json_schema",
            "json_schema": {
                "name": self.output_type.__name__,
                "schema": self.output_type.model_json_schema(),
                "strict": True,
            },
        }

    def parse_output(self, content: str) -> Any:
        """Validate against ``output_type``; fall back to the raw text."""
        if self.output_type is None:
            return content
        try:
            return self.output_type.model_validate(json.loads(content))
        except (ValueError, PydanticValidationError) as e:
            logger.warning("%s: final output does not match %s: %s", self.name, self.output_type.__name__, e)
            return content


@dataclass
class RunResult:
    final_output: Any
    state: RunState
    turns: int
    usage_snapshots: List[UsageSnapshot] = field(default_factory=list)
    tools_invoked: List[str] = field(default_factory=list)
    transcript: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def aborted(self) -> bool:
        return self.state is RunState.ABORTED

    @property
    def usage(self) -> RunUsage:
        return aggregate(self.usage_snapshots)

    @property
    def text(self) -> str:
        out = self.final_output
        if isinstance(out, BaseModel):
            return out.model_dump_json()
        if isinstance(out, str) and out.strip():
            return out
        return NO_OUTPUT


# -----------------------------
# Runner
# -----------------------------
class AgentRunner:
    """Runs an :class:`AgentSpec` against a model with a hard turn ceiling."""

    def __init__(self, model: ChatModel, *, max_turns: int = DEFAULT_MAX_TURNS) -> None:
        if max_turns < 1:
            raise ValueError("max_turns must be >= 1")
        self.model = model
        self.max_turns = max_turns

    def run(
        self,
        agent: AgentSpec,
        history: Sequence[Any],
        ctx: Optional[RunContext] = None,
        *,
        max_turns: Optional[int] = None,
    ) -> RunResult:
        ctx = ctx or RunContext()
        ceiling = max_turns or self.max_turns
        state = RunState.IDLE

        messages = normalize_history(history)
        tools = {t.name: t for t in agent.tools}
        specs = [t.spec() for t in agent.tools] or None
        transcript: List[Dict[str, Any]] = [
            {"role": "system", "content": agent.render_instructions(ctx)},
            *messages,
        ]

        snapshots: List[UsageSnapshot] = []
        invoked: List[str] = []
        last_text: Optional[str] = None
        final: Any = None
        turns = 0

        logger.info("run start agent=%s messages=%d tools=%d user=%s",
                    agent.name, len(messages), len(tools), ctx.user_id or "-")

        while turns < ceiling:
            turns += 1
            state = RunState.REQUESTING
            reply = self.model.complete(
                transcript,
                tools=specs,
                tool_choice=agent.tool_choice(tuple(invoked)) if agent.tool_choice else None,
                response_format=agent.response_format(),
                model=agent.model,
                generation=agent.generation,
            )
            snapshots.append(pick_usage(reply.usage))
            if reply.content and reply.content.strip():
                last_text = reply.content

            if not reply.tool_calls:
                final = agent.parse_output(reply.content or "")
                state = RunState.COMPLETED
                break

            state = RunState.TOOL_INVOKED
            transcript.append(reply.assistant_message())
            state = RunState.DISPATCH
            for call in reply.tool_calls:
                tool = tools.get(call.name)
                if tool is None:
                    raise ToolExecutionError(f"Model requested a tool that is not enabled: {call.name!r}")
                logger.debug("turn %d dispatch %s args=%s", turns, call.name, call.arguments)
                output = tool.invoke(call.arguments, ctx)
                invoked.append(tool.kind.value)
                transcript.append({"role": "tool", "tool_call_id": call.id, "content": output})

        if state is not RunState.COMPLETED:
            state = RunState.ABORTED
            final = last_text
            logger.warning("run aborted agent=%s: reached max turns (%d)", agent.name, ceiling)

        result = RunResult(
            final_output=final,
            state=state,
            turns=turns,
            usage_snapshots=snapshots,
            tools_invoked=invoked,
            transcript=transcript,
        )
        usage = result.usage
        logger.info("run %s agent=%s turns=%d tools=%s tokens in=%d out=%d",
                    state.value, agent.name, turns, ",".join(invoked) or "-",
                    usage.input_tokens, usage.output_tokens)
        return result
