"""FastAPI application exposing chat and proactive-nudge endpoints."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from .config import Settings, load_config, resolve_settings
from .errors import AgentError, ConfigurationError, ValidationError
from .llm import ChatModel, GenerationConfig, create_from_settings
from .memory import Mem0Client, MemoryGateway, clamp_limit
from .nudge import draft_nudge
from .prompts import chat_instructions, default_tool_definitions, tool_catalog
from .runner import AgentRunner, AgentSpec
from .tools import web
from .tools.registry import RunContext, build_tools, supported_tool_names

logger = logging.getLogger(__name__)


# -----------------------------
# Pydantic request/response
# -----------------------------
class ChatRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    # Loosely typed on purpose: malformed entries are filtered, not rejected.
    messages: List[Any] = Field(default_factory=list)
    userId: Optional[Any] = None
    systemPrompt: Optional[str] = None
    toolDefinitions: Optional[List[Any]] = None
    model: Optional[str] = None


class Usage(BaseModel):
    promptTokens: int
    completionTokens: int
    cachedTokens: int


class ChatResponse(BaseModel):
    reply: str
    usage: Usage


class PushRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    userId: Optional[Any] = None
    topic: Optional[Any] = None


class PushMemoriesRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    userId: Optional[Any] = None
    limit: Optional[Any] = None


class PushMemoriesResponse(BaseModel):
    ok: bool = True
    total: int
    memories: List[str]


# -----------------------------
# Utilities
# -----------------------------
def _clean_user_id(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _clean_topic(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _make_memory(settings: Settings) -> Optional[MemoryGateway]:
    if not settings.mem0_api_key:
        logger.warning("MEM0_API_KEY not set; memory tools will report that the store is unavailable")
        return None
    client = Mem0Client(
        settings.mem0_api_key,
        base_url=settings.mem0_base_url,
        timeout=settings.memory_timeout,
    )
    return MemoryGateway(client)


def _generation(settings: Settings, effort: Optional[str]) -> Optional[GenerationConfig]:
    if not effort and not settings.verbosity:
        return None
    return GenerationConfig(reasoning_effort=effort, verbosity=settings.verbosity)


# -----------------------------
# App factory
# -----------------------------
def create_app(
    config_path: Optional[str] = None,
    model: Optional[ChatModel] = None,
    memory: Optional[MemoryGateway] = None,
    settings: Optional[Settings] = None,
    search_web: Optional[Callable[[str, int], List[Dict[str, str]]]] = None,
) -> FastAPI:
    cfg = load_config(config_path)
    settings = settings or resolve_settings(cfg)

    owns_memory = memory is None
    memory = memory if memory is not None else _make_memory(settings)
    search_web = search_web or web.web_search
    models: Dict[str, ChatModel] = {}
    if model is not None:
        models["default"] = model

    def get_model() -> ChatModel:
        # Built on first use so a missing key surfaces as a per-request error.
        if "default" not in models:
            models["default"] = create_from_settings(settings)
        return models["default"]

    def require_memory() -> MemoryGateway:
        if memory is None:
            settings.require_mem0_key()
            raise ConfigurationError("Memory store is not configured.")
        return memory

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        yield
        if owns_memory and memory is not None:
            memory.close()

    app = FastAPI(title="Tutor Agent Server", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -------------------------
    # Error envelope
    # -------------------------
    @app.exception_handler(AgentError)
    async def agent_error_handler(_: Request, exc: AgentError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s: %s", type(exc).__name__, exc.message)
        return JSONResponse(exc.to_payload(), status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def request_error_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
        err = ValidationError("Invalid request body.", upstream=jsonable_encoder(exc.errors()))
        return JSONResponse(err.to_payload(), status_code=err.status_code)

    @app.exception_handler(Exception)
    async def unexpected_error_handler(_: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled error: %s", exc)
        return JSONResponse(
            {
                "error": str(exc) or "Unknown error",
                "status": 500,
                "statusText": "Internal Error",
                "upstream": repr(exc),
            },
            status_code=500,
        )

    # -------------------------
    # Routes
    # -------------------------
    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {
            "ok": True,
            "model_configured": bool(model is not None or settings.openai_api_key),
            "memory_configured": memory is not None,
        }

    @app.get("/tools")
    def tools() -> Dict[str, Any]:
        return {
            "supported": supported_tool_names(),
            "defaults": default_tool_definitions(),
            "catalog": tool_catalog(),
        }

    @app.post("/chat", response_model=ChatResponse)
    def chat(req: ChatRequest) -> ChatResponse:
        user_id = _clean_user_id(req.userId)
        chat_model = get_model()

        definitions = req.toolDefinitions if req.toolDefinitions is not None else default_tool_definitions()
        agent = AgentSpec(
            name="Chat Assistant",
            instructions=chat_instructions(req.systemPrompt, user_id),
            tools=build_tools(definitions),
            model=(req.model or "").strip() or None,
            generation=_generation(settings, settings.chat_reasoning_effort),
        )
        runner = AgentRunner(chat_model, max_turns=settings.chat_max_turns)
        ctx = RunContext(user_id=user_id, memory=memory, search_web=search_web)
        result = runner.run(agent, req.messages, ctx)

        return ChatResponse(reply=result.text, usage=Usage(**result.usage.to_response()))

    @app.post("/push")
    def push(req: PushRequest) -> JSONResponse:
        user_id = _clean_user_id(req.userId)
        if not user_id:
            raise ValidationError("Missing userId in request body.")
        gateway = require_memory()
        runner = AgentRunner(get_model(), max_turns=settings.push_max_turns)
        ctx = RunContext(user_id=user_id, memory=gateway, search_web=search_web)
        result = draft_nudge(
            runner,
            ctx,
            _clean_topic(req.topic),
            generation=_generation(settings, settings.push_reasoning_effort),
            max_turns=settings.push_max_turns,
        )
        return JSONResponse(result.to_response(), status_code=result.status_code)

    @app.post("/push/memories", response_model=PushMemoriesResponse)
    def push_memories(req: PushMemoriesRequest) -> PushMemoriesResponse:
        user_id = _clean_user_id(req.userId)
        if not user_id:
            raise ValidationError("Missing userId in request body.")
        gateway = require_memory()
        total, memories = gateway.list(user_id, clamp_limit(req.limit))
        return PushMemoriesResponse(total=total, memories=memories)

    return app
