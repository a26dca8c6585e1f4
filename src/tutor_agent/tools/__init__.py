"""Tool definitions, validators and the closed executor registry."""

from .registry import (
    EXECUTORS,
    ExecutableTool,
    RunContext,
    ToolKind,
    build_tools,
    resolve_kind,
    supported_tool_names,
)
from .schema import ParameterValidator, ToolDefinition, build_validator, parse_definitions

__all__ = [
    "EXECUTORS",
    "ExecutableTool",
    "ParameterValidator",
    "RunContext",
    "ToolDefinition",
    "ToolKind",
    "build_tools",
    "build_validator",
    "parse_definitions",
    "resolve_kind",
    "supported_tool_names",
]
