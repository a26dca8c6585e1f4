"""Error taxonomy shared by the agent pipeline and the HTTP layer.

Every error carries the HTTP status and status text the server uses when it
renders the ``{error, status, statusText, upstream?}`` envelope.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class AgentError(Exception):
    """Base class for all pipeline errors."""

    status_code: int = 500
    status_text: str = "Internal Error"

    def __init__(self, message: str, *, upstream: Optional[Any] = None) -> None:
        super().__init__(message)
        self.message = message
        self.upstream = upstream

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "error": self.message,
            "status": self.status_code,
            "statusText": self.status_text,
        }
        if self.upstream is not None:
            payload["upstream"] = self.upstream
        return payload


# -----------------------------
# Request / definition problems
# -----------------------------
class ValidationError(AgentError):
    """Malformed request input, rejected before any model call."""

    status_code = 400
    status_text = "Bad Request"


class SchemaError(ValidationError):
    """A tool definition cannot be turned into a parameter validator."""


# -----------------------------
# Environment
# -----------------------------
class ConfigurationError(AgentError):
    """Missing credentials or unusable configuration."""

    status_text = "Server Misconfigured"


# -----------------------------
# Upstream services
# -----------------------------
class UpstreamError(AgentError):
    """A model or memory-store call failed.

    ``upstream_status`` and ``upstream_body`` keep whatever the remote side
    returned so callers can diagnose the failure.
    """

    status_code = 502
    status_text = "Bad Gateway"

    def __init__(
        self,
        message: str,
        *,
        upstream_status: Optional[int] = None,
        upstream_body: Optional[str] = None,
    ) -> None:
        upstream: Optional[Dict[str, Any]] = None
        if upstream_status is not None or upstream_body is not None:
            upstream = {"status": upstream_status, "body": upstream_body}
        super().__init__(message, upstream=upstream)
        self.upstream_status = upstream_status
        self.upstream_body = upstream_body


class MemoryStoreError(UpstreamError):
    """The external memory store rejected or failed a request."""


# -----------------------------
# Tools
# -----------------------------
class ToolExecutionError(AgentError):
    """The model drove a tool call the run cannot honor."""

    status_code = 502
    status_text = "Bad Gateway"


class UnsupportedToolError(ToolExecutionError):
    """A definition names a tool with no executor behind it.

    Raised while assembling tools from request input, so it is the caller's
    mistake rather than the model's.
    """

    status_code = 400
    status_text = "Bad Request"

    def __init__(self, name: str, index: Optional[int] = None) -> None:
        where = f"toolDefinitions[{index}]" if index is not None else "tool call"
        super().__init__(f"Unsupported tool at {where}: {name!r}")
        self.name = name
        self.index = index


class ToolArgumentError(ToolExecutionError):
    """The model produced arguments that fail the tool's validator."""

    def __init__(self, name: str, detail: str) -> None:
        super().__init__(f"Invalid arguments for tool {name!r}: {detail}")
        self.name = name
        self.detail = detail
