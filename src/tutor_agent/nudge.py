"""Proactive nudge drafting.

The workflow has three phases: search the user's memories, look up a few
external resources, then write one message. :class:`NudgePhasePolicy` turns
that order into ``tool_choice`` values so the model is forced through the
retrieval calls before it is allowed to answer.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from .errors import ValidationError
from .llm import GenerationConfig, ToolChoice
from .prompts import NUDGE_INSTRUCTIONS, nudge_seed, nudge_tool_definitions
from .runner import AgentRunner, AgentSpec, RunResult
from .tools.registry import RunContext, ToolKind, build_tools

logger = logging.getLogger(__name__)

NO_MESSAGE = "No message produced."
DEFAULT_PUSH_TURNS = 10


class NudgeOutput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    finalMessage: str = Field(
        ...,
        description=(
            "The concise, user-ready message. A few short paragraphs total. "
            "Friendly, actionable, and personalized."
        ),
    )


# -----------------------------
# Phase enforcement
# -----------------------------
class NudgePhase(str, Enum):
    MEMORIES = "memories"
    RESOURCES = "resources"
    SYNTHESIS = "synthesis"


def current_phase(invoked: Sequence[str]) -> NudgePhase:
    if ToolKind.SEARCH_MEMORIES.value not in invoked:
        return NudgePhase.MEMORIES
    if ToolKind.WEB_SEARCH.value not in invoked:
        return NudgePhase.RESOURCES
    return NudgePhase.SYNTHESIS


def _force(kind: ToolKind) -> Dict[str, Any]:
    return {"type": "function", "function": {"name": kind.value}}


class NudgePhasePolicy:
    """Maps the tools dispatched so far to the next ``tool_choice``."""

    def __call__(self, invoked: Sequence[str]) -> ToolChoice:
        phase = current_phase(invoked)
        if phase is NudgePhase.MEMORIES:
            return _force(ToolKind.SEARCH_MEMORIES)
        if phase is NudgePhase.RESOURCES:
            return _force(ToolKind.WEB_SEARCH)
        return "none"


# -----------------------------
# Output contract
# -----------------------------
_HEADING = re.compile(r"^\s*Helpful reads:\s*$", re.MULTILINE)
_LINK_BULLET = re.compile(r"^\s*[-*]\s+\[[^\]]+\]\(https?://[^)\s]+\)")


def check_nudge_format(text: str) -> List[str]:
    """List the ways ``text`` departs from intro + "Helpful reads:" + 2-4 link bullets."""
    problems: List[str] = []
    match = _HEADING.search(text or "")
    if match is None:
        return ['missing "Helpful reads:" section']
    if not text[: match.start()].strip():
        problems.append("missing intro paragraph")
    bullets = 0
    for line in text[match.end():].splitlines():
        if not line.strip():
            continue
        if _LINK_BULLET.match(line):
            bullets += 1
        elif bullets:
            break
    if not 2 <= bullets <= 4:
        problems.append(f"expected 2-4 link bullets, found {bullets}")
    return problems


@dataclass
class NudgeResult:
    message: str
    status_code: int
    output: Optional[NudgeOutput]
    run: RunResult

    def to_response(self) -> Dict[str, str]:
        return {"message": self.message}


# -----------------------------
# Workflow
# -----------------------------
def build_nudge_agent(
    model: Optional[str] = None,
    generation: Optional[GenerationConfig] = None,
) -> AgentSpec:
    return AgentSpec(
        name="LearningNudgeAgent",
        instructions=NUDGE_INSTRUCTIONS,
        tools=build_tools(nudge_tool_definitions()),
        output_type=NudgeOutput,
        tool_choice=NudgePhasePolicy(),
        model=model,
        generation=generation,
    )


def draft_nudge(
    runner: AgentRunner,
    ctx: RunContext,
    topic: Optional[str] = None,
    *,
    model: Optional[str] = None,
    generation: Optional[GenerationConfig] = None,
    max_turns: int = DEFAULT_PUSH_TURNS,
) -> NudgeResult:
    if not ctx.user_id:
        raise ValidationError("Missing userId in request body.")
    topic = (topic or "").strip() or None

    agent = build_nudge_agent(model, generation)
    seed = [{"role": "user", "content": nudge_seed(ctx.user_id, topic)}]
    result = runner.run(agent, seed, ctx, max_turns=max_turns)

    out = result.final_output
    if isinstance(out, NudgeOutput) and out.finalMessage.strip():
        problems = check_nudge_format(out.finalMessage)
        if problems:
            logger.info("nudge for user=%s off-format: %s", ctx.user_id, "; ".join(problems))
        return NudgeResult(out.finalMessage, 200, out, result)

    fallback = out.strip() if isinstance(out, str) else ""
    if fallback:
        return NudgeResult(fallback, 200, None, result)
    logger.warning("nudge for user=%s produced no message (state=%s)", ctx.user_id, result.state.value)
    return NudgeResult(NO_MESSAGE, 500, None, result)
