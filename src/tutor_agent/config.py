"""Configuration loading utilities for the tutor agent server.

This module handles layered configuration:
1. Explicit path argument (highest precedence)
2. Environment variable TUTOR_AGENT_CONFIG
3. Fallback to "config/default.yaml"

It also supports optional overrides from environment variables with prefix
``TUTOR_AGENT__`` (e.g., TUTOR_AGENT__AGENT__CHAT_MAX_TURNS=6).

Credentials never live in the YAML file; they are read from the usual
provider variables (``OPENAI_API_KEY``, ``MEM0_API_KEY``) by
:func:`resolve_settings`.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-5-mini"
DEFAULT_MEM0_URL = "https://api.mem0.ai"


ENV_PREFIX = "TUTOR_AGENT__"


def _coerce(value: str) -> Any:
    """Env values arrive as text; turn booleans and numbers back into YAML types."""
    if value.lower() in ("true", "false"):
        return value.lower() == "true"
    for cast in (int, float):
        try:
            return cast(value)
        except ValueError:
            pass
    return value


def _apply_env_overrides(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Overlay ``TUTOR_AGENT__<SECTION>__<KEY>`` variables onto ``cfg``.

    ``TUTOR_AGENT__AGENT__PUSH_MAX_TURNS=6`` sets ``cfg["agent"]["push_max_turns"]``
    and ``TUTOR_AGENT__MODEL__VERBOSITY=medium`` sets ``cfg["model"]["verbosity"]``.
    Missing sections are created.
    """
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        *sections, leaf = key[len(ENV_PREFIX):].lower().split("__")
        node = cfg
        for section in sections:
            if not isinstance(node.get(section), dict):
                node[section] = {}
            node = node[section]
        node[leaf] = _coerce(value)
    return cfg


def load_config(path: str | None = None) -> Dict[str, Any]:
    """Load YAML configuration for the server.

    Parameters
    ----------
    path : str | None
        Optional path to a configuration file. If not provided, the
        environment variable ``TUTOR_AGENT_CONFIG`` is consulted. As a
        last resort ``config/default.yaml`` is used.

    Returns
    -------
    Dict[str, Any]
        Parsed configuration dictionary with environment overrides applied.
    """
    if path is None:
        path = os.environ.get("TUTOR_AGENT_CONFIG", "config/default.yaml")

    path_obj = Path(path)
    if not path_obj.exists():
        logger.warning("config file not found at %s; using defaults", path_obj)
        return _apply_env_overrides({"agent": {}, "memory": {}})

    with path_obj.open("r", encoding="utf-8") as f:
        try:
            cfg = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse config file {path_obj}: {e}")

    if not isinstance(cfg, dict):
        raise ConfigurationError(f"Invalid config format in {path_obj}, expected dict.")

    return _apply_env_overrides(cfg)


@dataclass
class Settings:
    """Resolved runtime settings (config file + credentials from the environment)."""

    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None
    model: str = DEFAULT_MODEL
    chat_max_turns: int = 8
    push_max_turns: int = 10
    mem0_api_key: Optional[str] = None
    mem0_base_url: str = DEFAULT_MEM0_URL
    memory_timeout: float = 15.0
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    chat_reasoning_effort: Optional[str] = None
    push_reasoning_effort: Optional[str] = None
    verbosity: Optional[str] = None

    def require_openai_key(self) -> str:
        if not self.openai_api_key:
            raise ConfigurationError("Missing OPENAI_API_KEY")
        return self.openai_api_key

    def require_mem0_key(self) -> str:
        if not self.mem0_api_key:
            raise ConfigurationError("Missing MEM0_API_KEY")
        return self.mem0_api_key


def resolve_settings(cfg: Dict[str, Any]) -> Settings:
    """Build :class:`Settings` from a config dict and the process environment."""
    model_cfg = cfg.get("model", {}) or {}
    agent_cfg = cfg.get("agent", {}) or {}
    mem_cfg = cfg.get("memory", {}) or {}
    server_cfg = cfg.get("server", {}) or {}

    model = (
        os.environ.get("OPENAI_MODEL")
        or model_cfg.get("name")
        or DEFAULT_MODEL
    )
    return Settings(
        openai_api_key=os.environ.get("OPENAI_API_KEY") or None,
        openai_base_url=os.environ.get("OPENAI_BASE_URL") or model_cfg.get("base_url") or None,
        model=str(model),
        chat_max_turns=int(agent_cfg.get("chat_max_turns", 8)),
        push_max_turns=int(agent_cfg.get("push_max_turns", 10)),
        mem0_api_key=os.environ.get("MEM0_API_KEY") or None,
        mem0_base_url=str(mem_cfg.get("base_url") or DEFAULT_MEM0_URL),
        memory_timeout=float(mem_cfg.get("timeout", 15.0)),
        cors_origins=list(server_cfg.get("cors_origins") or ["*"]),
        chat_reasoning_effort=model_cfg.get("chat_reasoning_effort") or None,
        push_reasoning_effort=model_cfg.get("push_reasoning_effort") or None,
        verbosity=model_cfg.get("verbosity") or None,
    )
