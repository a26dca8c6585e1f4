"""Chat-completions client with function-tool support."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence, Union

import openai
from openai import OpenAI

from .config import Settings
from .errors import UpstreamError

logger = logging.getLogger(__name__)


# -----------------------------
# Types & defaults
# -----------------------------

@dataclass
class GenerationConfig:
    reasoning_effort: Optional[str] = None   # "minimal" | "low" | "medium" | "high"
    verbosity: Optional[str] = None          # "low" | "medium" | "high"
    temperature: Optional[float] = None
    max_completion_tokens: Optional[int] = None

    def as_kwargs(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.reasoning_effort:
            out["reasoning_effort"] = self.reasoning_effort
        if self.verbosity:
            out["verbosity"] = self.verbosity
        if self.temperature is not None:
            out["temperature"] = float(self.temperature)
        if self.max_completion_tokens:
            out["max_completion_tokens"] = int(self.max_completion_tokens)
        return out


@dataclass
class ToolCall:
    id: str
    name: str
    arguments: str = ""


@dataclass
class ModelReply:
    """One model response: either final content or a batch of tool calls."""

    content: Optional[str] = None
    tool_calls: List[ToolCall] = field(default_factory=list)
    usage: Any = None
    finish_reason: Optional[str] = None

    def assistant_message(self) -> Dict[str, Any]:
        """Transcript entry to append before the tool results."""
        msg: Dict[str, Any] = {"role": "assistant", "content": self.content or ""}
        if self.tool_calls:
            msg["tool_calls"] = [
                {
                    "id": tc.id,
                    "type": "function",
                    "function": {"name": tc.name, "arguments": tc.arguments},
                }
                for tc in self.tool_calls
            ]
        return msg


ToolChoice = Union[str, Dict[str, Any], None]


class ChatModel(Protocol):
    def complete(
        self,
        messages: Sequence[Dict[str, Any]],
        *,
        tools: Optional[Sequence[Dict[str, Any]]] = None,
        tool_choice: ToolChoice = None,
        response_format: Optional[Dict[str, Any]] = None,
        model: Optional[str] = None,
        generation: Optional[GenerationConfig] = None,
    ) -> ModelReply:
        ...


# -----------------------------
# OpenAI wrapper
# -----------------------------

class OpenAIChatModel:
    """Thin wrapper around ``OpenAI().chat.completions``."""

    def __init__(
        self,
        api_key: str,
        *,
        model: str,
        base_url: Optional[str] = None,
        client: Optional[OpenAI] = None,
    ) -> None:
        self.model = model
        self._client = client or OpenAI(api_key=api_key, base_url=base_url)

    def complete(
        self,
        messages: Sequence[Dict[str, Any]],
        *,
        tools: Optional[Sequence[Dict[str, Any]]] = None,
        tool_choice: ToolChoice = None,
        response_format: Optional[Dict[str, Any]] = None,
        model: Optional[str] = None,
        generation: Optional[GenerationConfig] = None,
    ) -> ModelReply:
        kwargs: Dict[str, Any] = {
            "model": model or self.model,
            "messages": list(messages),
        }
        if tools:
            kwargs["tools"] = list(tools)
            if tool_choice is not None:
                kwargs["tool_choice"] = tool_choice
        if response_format:
            kwargs["response_format"] = response_format
        if generation:
            kwargs.update(generation.as_kwargs())

        logger.debug("chat.completions model=%s messages=%d tools=%d tool_choice=%s",
                     kwargs["model"], len(kwargs["messages"]), len(tools or ()), tool_choice)

        try:
            resp = self._client.chat.completions.create(**kwargs)
        except openai.APIStatusError as e:
            body = e.response.text if e.response is not None else None
            raise UpstreamError(
                f"Model call failed: {e.message}",
                upstream_status=e.status_code,
                upstream_body=body,
            ) from e
        except openai.APIError as e:
            raise UpstreamError(f"Model call failed: {e}") from e

        if not resp.choices:
            raise UpstreamError("Model returned no choices.")
        choice = resp.choices[0]
        msg = choice.message
        calls: List[ToolCall] = []
        for tc in msg.tool_calls or []:
            fn = getattr(tc, "function", None)
            if fn is None:
                continue
            calls.append(ToolCall(id=tc.id, name=fn.name, arguments=fn.arguments or ""))
        return ModelReply(
            content=msg.content,
            tool_calls=calls,
            usage=resp.usage,
            finish_reason=choice.finish_reason,
        )


# -----------------------------
# Convenience factory
# -----------------------------

def create_from_settings(settings: Settings) -> OpenAIChatModel:
    """Create the model client; fails fast when the credential is missing."""
    return OpenAIChatModel(
        settings.require_openai_key(),
        model=settings.model,
        base_url=settings.openai_base_url,
    )
