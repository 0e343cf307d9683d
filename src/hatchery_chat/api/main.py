"""FastAPI entrypoint for the hatchery chat and health endpoints."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Literal

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from hatchery_chat.agent.models import CompletionClient, openai_chat_factory
from hatchery_chat.agent.orchestrator import (
    ChatOrchestrator,
    check_openai_key,
    health_check_reply,
)
from hatchery_chat.agent.registry import ToolRegistry
from hatchery_chat.agent.tools import register_hatchery_tools
from hatchery_chat.config import HEALTH_CHECK_SENTINEL, Settings
from hatchery_chat.errors import APOLOGY, HatcheryChatError
from hatchery_chat.store.supabase_client import SupabaseQueryClient
from hatchery_chat.types import ToolTrace

logger = logging.getLogger(__name__)


class HistoryTurn(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    message: str = ""
    history: list[HistoryTurn] = Field(default_factory=list)


def _log_tool_trace(trace: ToolTrace) -> None:
    logger.info(
        "tool=%s ok=%s latency_ms=%.1f input=%s",
        trace.name,
        trace.ok,
        trace.latency_ms,
        trace.input_payload,
    )


async def build_orchestrator(settings: Settings) -> ChatOrchestrator:
    client = await SupabaseQueryClient.from_settings(settings)
    registry = ToolRegistry()
    register_hatchery_tools(registry, client)
    registry.set_observer(_log_tool_trace)
    return ChatOrchestrator(
        tool_registry=registry,
        completion=CompletionClient(openai_chat_factory(settings)),
        settings=settings,
    )


def _now() -> datetime:
    return datetime.now(timezone.utc)


def create_app(
    orchestrator: ChatOrchestrator | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    """Build the app; the orchestrator is created on the first chat request unless injected."""
    if settings is None:
        settings = orchestrator.settings if orchestrator is not None else Settings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(title="Hatchery Chat", version="0.1.0")
    state: dict[str, ChatOrchestrator | None] = {"orchestrator": orchestrator}
    lock = asyncio.Lock()

    async def _orchestrator() -> ChatOrchestrator:
        async with lock:
            if state["orchestrator"] is None:
                state["orchestrator"] = await build_orchestrator(settings)
            return state["orchestrator"]

    @app.exception_handler(RequestValidationError)
    async def invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        logger.warning("Rejected chat request: %s", problems)
        return JSONResponse(
            status_code=500, content={"error": f"Invalid request - {problems}", "response": APOLOGY}
        )

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {
            "status": "healthy",
            "openai_configured": settings.openai_configured,
            "timestamp": _now().isoformat(),
        }

    @app.post("/chat")
    async def chat(request: ChatRequest) -> Any:
        if request.message.strip() == HEALTH_CHECK_SENTINEL:
            return health_check_reply(settings, _now())
        try:
            if not request.message.strip():
                raise HatcheryChatError("Message is required")
            check_openai_key(settings)
            service = await _orchestrator()
            return await service.handle(
                request.message,
                history=[turn.model_dump() for turn in request.history],
            )
        except HatcheryChatError as exc:
            logger.error("Chat request failed: %s", exc.error)
            return JSONResponse(
                status_code=500, content={"error": exc.error, "response": exc.response}
            )
        except Exception as exc:  # request boundary
            logger.exception("Unhandled error in chat request")
            return JSONResponse(status_code=500, content={"error": str(exc), "response": APOLOGY})

    return app


app = create_app()
