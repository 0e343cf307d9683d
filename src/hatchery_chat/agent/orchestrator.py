"""Request orchestration: PLAN -> TOOLS -> fast paths -> FINALIZE -> reply."""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from collections.abc import Callable
from datetime import date, datetime, timezone
from typing import Any

from langchain_core.messages import (
    AIMessage,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)

from hatchery_chat.agent.assembler import ResponseAssembler
from hatchery_chat.agent.models import CompletionClient
from hatchery_chat.agent.registry import ToolRegistry
from hatchery_chat.analytics.charts import ChartSynthesizer
from hatchery_chat.analytics.intent import detect_chart_type, detect_smart_default
from hatchery_chat.config import ChatConfig, Settings
from hatchery_chat.errors import ConfigurationError, UpstreamUnavailableError
from hatchery_chat.obs.tracing import Timer
from hatchery_chat.types import ToolInvocation, ToolResult

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT = """
You are a specialized AI assistant for a poultry hatchery management system. You have
access to real-time data about batches, flocks, machines, fertility analysis, QA
monitoring, and alerts.

Key capabilities:
- Answer questions about batch status, days remaining, and progress
- Provide fertility rate analysis and trends
- Compare fertility between houses or units with get_fertility_rates(group_by=...)
- Monitor machine utilization and status
- Check QA alerts and issues
- Offer insights and recommendations

When users ask about specific batches, machines, or data, use the appropriate tools to
query the database. Provide clear, actionable responses with specific data when
available. Never invent numbers that are not present in tool results.

Current date: {today}
""".strip()


def build_system_prompt(today: date) -> str:
    return _SYSTEM_PROMPT.format(today=today.isoformat())


def health_check_reply(settings: Settings, now: datetime) -> dict[str, Any]:
    return {
        "response": "Hatchery assistant is running.",
        "actions": [],
        "status": "healthy",
        "openai_configured": settings.openai_configured,
        "timestamp": now.isoformat(),
        "source": "health_check",
    }


def check_openai_key(settings: Settings) -> None:
    """Raise `ConfigurationError` for a missing or malformed OpenAI key."""
    key = settings.openai_api_key
    if not key:
        raise ConfigurationError(
            "OPENAI_API_KEY not configured. Please add your OpenAI API key to the "
            "service environment.",
            "I need an OpenAI API key to function. Please configure it in the "
            "service settings.",
        )
    if not key.startswith("sk-") or len(key) < 20:
        raise ConfigurationError(
            "Invalid OpenAI API key format",
            "The OpenAI API key appears to be invalid. Please check that it's "
            "properly configured.",
        )


class ChatOrchestrator:
    """Answers one chat message end to end. Holds no per-request state."""

    def __init__(
        self,
        *,
        tool_registry: ToolRegistry,
        completion: CompletionClient,
        settings: Settings,
        synthesizer: ChartSynthesizer | None = None,
        config: ChatConfig | None = None,
        today: Callable[[], date] = date.today,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.tool_registry = tool_registry
        self.completion = completion
        self.settings = settings
        self.config = config or ChatConfig()
        self.synthesizer = synthesizer or ChartSynthesizer(
            today=today, upcoming_window_days=self.config.upcoming_window_days
        )
        self.assembler = ResponseAssembler(self.synthesizer, clock=clock)
        self.tools = self.tool_registry.as_langchain_tools()
        self._today = today
        self._clock = clock

    async def handle(
        self, message: str, history: list[dict[str, str]] | None = None
    ) -> dict[str, Any]:
        if message.strip() == self.config.health_check_sentinel:
            return health_check_reply(self.settings, self._clock())
        check_openai_key(self.settings)

        messages = self._build_messages(message, history or [])
        with Timer() as plan_timer:
            plan = await self.completion.complete(messages, phase="plan", tools=self.tools)
        if plan.exhausted:
            raise UpstreamUnavailableError(
                "All model candidates failed: "
                + "; ".join(f"{f.model}: {f.error}" for f in plan.failures)
            )
        logger.info("Planned with %s in %.0fms", plan.model, plan_timer.elapsed_ms)

        assistant = plan.message
        invocations = _tool_invocations(assistant)
        if not invocations:
            return self.assembler.plain(message_text(assistant))

        with Timer() as tool_timer:
            results = await self._run_tools(invocations)
        logger.info(
            "Ran %d tools in %.0fms (%d failed)",
            len(results),
            tool_timer.elapsed_ms,
            sum(1 for result in results if not result.ok),
        )

        family = detect_chart_type(message)
        if family is not None:
            envelope = self.synthesizer.build_envelope(results, message, family=family)
            if envelope is not None:
                logger.info("Explicit %s chart requested; skipping final model call", family)
                return self.assembler.analytics(envelope, "explicit_intent")

        smart = detect_smart_default(
            message, results, min_rows=self.config.smart_default_min_rows
        )
        if smart is not None:
            envelope = self.synthesizer.build_envelope(results, message, kind=smart.kind)
            if envelope is not None:
                logger.info("Smart default %s (%s)", smart.kind, smart.reason)
                return self.assembler.analytics(envelope, "smart_default")

        final_messages: list[BaseMessage] = [
            *messages,
            assistant,
            *(
                ToolMessage(content=json.dumps(result.payload, default=str), tool_call_id=result.call_id)
                for result in results
            ),
        ]
        final = await self.completion.complete(final_messages, phase="finalize")
        final_text = None if final.exhausted else message_text(final.message)
        return self.assembler.finalize(message, results, final_text, model=final.model)

    def _build_messages(
        self, message: str, history: list[dict[str, str]]
    ) -> list[BaseMessage]:
        messages: list[BaseMessage] = [SystemMessage(content=build_system_prompt(self._today()))]
        turns = history[-self.config.history_turns :] if self.config.history_turns else []
        for turn in turns:
            if turn.get("role") == "assistant":
                messages.append(AIMessage(content=str(turn.get("content", ""))))
            else:
                messages.append(HumanMessage(content=str(turn.get("content", ""))))
        messages.append(HumanMessage(content=message))
        return messages

    async def _run_tools(self, invocations: list[ToolInvocation]) -> list[ToolResult]:
        results = await asyncio.gather(
            *(self.tool_registry.execute(invocation) for invocation in invocations)
        )
        by_call_id = {result.call_id: result for result in results}
        return [by_call_id[invocation.call_id] for invocation in invocations]


def _tool_invocations(message: AIMessage) -> list[ToolInvocation]:
    invocations = []
    for call in message.tool_calls or []:
        invocations.append(
            ToolInvocation(
                name=call["name"],
                arguments=dict(call.get("args") or {}),
                call_id=call.get("id") or f"call_{uuid.uuid4().hex[:12]}",
            )
        )
    return invocations


def message_text(message: AIMessage | None) -> str:
    if message is None:
        return ""
    content = message.content
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and "text" in item:
                parts.append(str(item["text"]))
            elif isinstance(item, str):
                parts.append(item)
        return " ".join(parts).strip()
    return str(content or "")
