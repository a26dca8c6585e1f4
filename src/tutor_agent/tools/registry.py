"""Closed registry of executable tools.

Users may rewrite a tool's description and parameter block, but only the
kinds in :class:`ToolKind` can ever be executed. :func:`build_tools` refuses
definitions that name anything else, before a single model call is made.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..errors import MemoryStoreError, SchemaError, ToolArgumentError, UnsupportedToolError, ValidationError
from ..memory import DEFAULT_LIMIT, MemoryGateway, clamp_limit
from . import web
from .schema import (
    ParameterValidator,
    ToolDefinition,
    build_validator,
    check_definition,
    parse_definitions,
    to_openai_tool,
)

logger = logging.getLogger(__name__)

NO_USER_ID = "No userId provided; open settings and set a user id."
NO_MEMORY_STORE = "Memory store is not configured; set MEM0_API_KEY to enable memories."


class ToolKind(str, Enum):
    ADD_MEMORY = "add_memory"
    SEARCH_MEMORIES = "search_memories"
    TIME_NOW = "time_now"
    WEB_SEARCH = "web_search"


_ALIASES: Dict[str, ToolKind] = {"get_time": ToolKind.TIME_NOW}


def resolve_kind(name: str) -> Optional[ToolKind]:
    try:
        return ToolKind(name)
    except ValueError:
        return _ALIASES.get(name)


def supported_tool_names() -> List[str]:
    return [k.value for k in ToolKind] + sorted(_ALIASES)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RunContext:
    """Request-scoped state handed to every executor."""

    user_id: Optional[str] = None
    memory: Optional[MemoryGateway] = None
    search_web: Callable[[str, int], List[Dict[str, str]]] = web.web_search
    clock: Callable[[], datetime] = _utc_now
    extra: Dict[str, Any] = field(default_factory=dict)


def _dumps(obj: Any) -> str:
    return json.dumps(obj, indent=2, ensure_ascii=False)


# -----------------------------
# Executors
# -----------------------------
def _add_memory(args: Dict[str, Any], ctx: RunContext) -> str:
    if not ctx.user_id:
        return NO_USER_ID
    if ctx.memory is None:
        return NO_MEMORY_STORE
    try:
        ack = ctx.memory.add(str(args.get("text", "")), ctx.user_id)
    except ValidationError as e:
        return f"Failed to add memory: {e.message}"
    return _dumps(ack)


def _search_memories(args: Dict[str, Any], ctx: RunContext) -> str:
    if not ctx.user_id:
        return NO_USER_ID
    if ctx.memory is None:
        return NO_MEMORY_STORE
    limit = clamp_limit(args.get("limit", DEFAULT_LIMIT))
    try:
        total, memories = ctx.memory.search(str(args.get("query", "")), ctx.user_id, limit)
    except MemoryStoreError as e:
        logger.warning("memory search failed for user=%s: %s", ctx.user_id, e)
        return f"Failed to search memories: {e.message}"
    return _dumps({"ok": True, "count": total, "memories": memories})


def _time_now(args: Dict[str, Any], ctx: RunContext) -> str:
    tz_name = str(args.get("timezone") or "UTC").strip() or "UTC"
    try:
        tz = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        return f"Unknown timezone {tz_name!r}; use an IANA name such as 'America/New_York' or 'UTC'."
    now = ctx.clock().astimezone(tz)
    return _dumps({
        "ok": True,
        "timezone": tz_name,
        "iso": now.isoformat(timespec="seconds"),
        "date": now.date().isoformat(),
        "time": now.strftime("%H:%M"),
        "weekday": now.strftime("%A"),
    })


def _web_search(args: Dict[str, Any], ctx: RunContext) -> str:
    query = str(args.get("query", "")).strip()
    if not query:
        return "Failed to search the web: query must not be empty."
    limit = int(args.get("limit") or 5)
    try:
        results = ctx.search_web(query, limit)
    except Exception as e:
        logger.warning("web search failed for %r: %s", query, e)
        return f"Failed to search the web: {e}"
    return _dumps({"ok": True, "count": len(results), "results": results})


Executor = Callable[[Dict[str, Any], RunContext], str]

EXECUTORS: Dict[ToolKind, Executor] = {
    ToolKind.ADD_MEMORY: _add_memory,
    ToolKind.SEARCH_MEMORIES: _search_memories,
    ToolKind.TIME_NOW: _time_now,
    ToolKind.WEB_SEARCH: _web_search,
}


# -----------------------------
# Executable tools
# -----------------------------
def _parse_arguments(name: str, raw: Any) -> Any:
    if raw is None or raw == "":
        return {}
    if isinstance(raw, (str, bytes)):
        try:
            return json.loads(raw)
        except ValueError as e:
            raise ToolArgumentError(name, f"arguments are not valid JSON ({e})") from e
    return raw


@dataclass(frozen=True)
class ExecutableTool:
    definition: ToolDefinition
    kind: ToolKind
    validator: ParameterValidator

    @property
    def name(self) -> str:
        return self.definition.name

    def spec(self) -> Dict[str, Any]:
        return to_openai_tool(self.definition)

    def invoke(self, raw_arguments: Any, ctx: RunContext) -> str:
        """Validate arguments and run the executor; always returns text.

        Bad arguments raise :class:`ToolArgumentError`. Errors inside the
        executor become a ``"Failed to ..."`` string for the transcript.
        """
        args = self.validator.validate(_parse_arguments(self.name, raw_arguments))
        try:
            return EXECUTORS[self.kind](args, ctx)
        except Exception as e:
            logger.warning("tool %s raised: %s", self.name, e, exc_info=True)
            return f"Failed to run {self.name}: {e}"


def build_tools(definitions: Sequence[Any]) -> List[ExecutableTool]:
    """Assemble executable tools from (raw or parsed) definitions."""
    parsed = parse_definitions(definitions)
    tools: List[ExecutableTool] = []
    seen: set = set()
    for i, defn in enumerate(parsed):
        kind = resolve_kind(defn.name)
        if kind is None:
            raise UnsupportedToolError(defn.name, i)
        if defn.name in seen:
            raise SchemaError(f"toolDefinitions[{i}]: duplicate tool name {defn.name!r}.")
        seen.add(defn.name)
        check_definition(defn)
        tools.append(ExecutableTool(defn, kind, build_validator(defn)))
    return tools
