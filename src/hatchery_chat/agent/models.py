"""Upstream chat-model candidates and the ordered fallback sweep."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal

import openai
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage
from langchain_core.tools import BaseTool
from langchain_openai import ChatOpenAI

from hatchery_chat.config import Settings

logger = logging.getLogger(__name__)

Phase = Literal["plan", "finalize"]


@dataclass(frozen=True, slots=True)
class ModelCandidate:
    """One upstream model plus the request shaping it needs."""

    model: str
    shape: Callable[[Phase], dict[str, Any]]


def _completion_tokens(model: str, limit: int) -> ModelCandidate:
    return ModelCandidate(model, lambda phase: {"model": model, "max_completion_tokens": limit})


def _legacy_tokens(model: str, limit: int) -> ModelCandidate:
    return ModelCandidate(model, lambda phase: {"model": model, "max_tokens": limit})


DEFAULT_CANDIDATES: tuple[ModelCandidate, ...] = (
    _completion_tokens("gpt-5-2025-08-07", 1500),
    _completion_tokens("gpt-4.1-2025-04-14", 1500),
    _legacy_tokens("gpt-4o-mini", 800),
)

ChatModelFactory = Callable[[ModelCandidate, Phase], BaseChatModel]


def openai_chat_factory(settings: Settings) -> ChatModelFactory:
    """Build `ChatOpenAI` clients; retries are disabled so fallback stays bounded."""

    def _factory(candidate: ModelCandidate, phase: Phase) -> BaseChatModel:
        return ChatOpenAI(
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            max_retries=0,
            timeout=60,
            **candidate.shape(phase),
        )

    return _factory


@dataclass(slots=True)
class CandidateFailure:
    model: str
    error: str
    status_code: int | None = None


@dataclass(slots=True)
class CompletionOutcome:
    """Result of one candidate sweep; `exhausted` means every candidate failed."""

    message: AIMessage | None
    model: str | None
    failures: list[CandidateFailure] = field(default_factory=list)

    @property
    def exhausted(self) -> bool:
        return self.message is None


class CompletionClient:
    """Tries each candidate once, in order, until one answers."""

    def __init__(
        self,
        factory: ChatModelFactory,
        candidates: Sequence[ModelCandidate] = DEFAULT_CANDIDATES,
    ) -> None:
        if not candidates:
            raise ValueError("At least one model candidate is required")
        self.factory = factory
        self.candidates = tuple(candidates)

    async def complete(
        self,
        messages: list[BaseMessage],
        *,
        phase: Phase,
        tools: list[BaseTool] | None = None,
    ) -> CompletionOutcome:
        failures: list[CandidateFailure] = []
        for candidate in self.candidates:
            llm = self.factory(candidate, phase)
            runnable = llm.bind_tools(tools, tool_choice="auto") if tools else llm
            try:
                message = await runnable.ainvoke(messages)
            except openai.APIError as exc:
                status_code = getattr(exc, "status_code", None)
                logger.warning(
                    "Model %s failed during %s (status=%s): %s",
                    candidate.model,
                    phase,
                    status_code,
                    exc.message,
                )
                failures.append(CandidateFailure(candidate.model, exc.message, status_code))
                continue
            if failures:
                logger.info("Model %s answered %s after %d failures", candidate.model, phase, len(failures))
            return CompletionOutcome(message=message, model=candidate.model, failures=failures)

        logger.error("All %d model candidates failed during %s", len(self.candidates), phase)
        return CompletionOutcome(message=None, model=None, failures=failures)
