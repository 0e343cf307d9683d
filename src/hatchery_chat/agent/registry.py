"""Tool registry built on Pydantic v2 models."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from time import perf_counter
from typing import Any

from langchain_core.tools import StructuredTool
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from hatchery_chat.errors import StoreError
from hatchery_chat.types import ToolInvocation, ToolResult, ToolTrace

logger = logging.getLogger(__name__)

ToolHandler = Callable[[BaseModel], Awaitable[dict[str, Any]]]


class ToolSpec(BaseModel):
    """Declarative tool specification for registration and validation."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    name: str
    description: str
    args_schema: type[BaseModel]
    handler: ToolHandler
    tags: list[str] = Field(default_factory=list)

    async def invoke(self, payload: dict[str, Any]) -> dict[str, Any]:
        data = self.args_schema.model_validate(payload)
        return await self.handler(data)


class ToolRegistry:
    """Stores tool specs and exports LangChain-compatible tool objects.

    `execute` never raises: validation failures, store errors and handler
    crashes come back as `{error, tool, parameters}` payloads so one bad tool
    call cannot abort the rest of a request.
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolSpec] = {}
        self._observer: Callable[[ToolTrace], None] | None = None

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise ValueError(f"Tool already registered: {spec.name}")
        self._tools[spec.name] = spec

    def set_observer(self, observer: Callable[[ToolTrace], None] | None) -> None:
        """Set an optional callback invoked after each tool execution."""
        self._observer = observer

    def specs(self) -> list[ToolSpec]:
        return list(self._tools.values())

    async def execute(self, invocation: ToolInvocation) -> ToolResult:
        spec = self._tools.get(invocation.name)
        if spec is None:
            logger.warning("Model requested unknown tool %s", invocation.name)
            return ToolResult(
                call_id=invocation.call_id,
                name=invocation.name,
                ok=False,
                payload={"error": "Unknown tool", "requested_tool": invocation.name},
            )
        return await self._execute_spec(spec, invocation)

    def as_langchain_tools(self) -> list[StructuredTool]:
        tools: list[StructuredTool] = []
        for spec in self._tools.values():
            tools.append(
                StructuredTool.from_function(
                    name=spec.name,
                    description=spec.description,
                    args_schema=spec.args_schema,
                    coroutine=self._build_coroutine(spec),
                )
            )
        return tools

    def _build_coroutine(self, spec: ToolSpec) -> Callable[..., Awaitable[dict[str, Any]]]:
        async def _callable(**kwargs: Any) -> dict[str, Any]:
            result = await self._execute_spec(
                spec, ToolInvocation(name=spec.name, arguments=kwargs, call_id=spec.name)
            )
            return result.payload

        return _callable

    async def _execute_spec(self, spec: ToolSpec, invocation: ToolInvocation) -> ToolResult:
        start = perf_counter()
        ok = True
        try:
            payload = await spec.invoke(invocation.arguments)
        except ValidationError as exc:
            ok = False
            payload = _error_payload(spec.name, invocation.arguments, _describe(exc))
        except StoreError as exc:
            ok = False
            payload = _error_payload(spec.name, invocation.arguments, str(exc))
        except Exception as exc:  # tool boundary: failures become payloads
            logger.exception("Tool %s crashed", spec.name)
            ok = False
            payload = _error_payload(spec.name, invocation.arguments, str(exc))
        latency_ms = (perf_counter() - start) * 1000.0

        if not ok:
            logger.warning("Tool %s failed: %s", spec.name, payload["error"])
        if self._observer is not None:
            self._observer(
                ToolTrace(
                    name=spec.name,
                    input_payload=invocation.arguments,
                    ok=ok,
                    latency_ms=latency_ms,
                )
            )
        return ToolResult(call_id=invocation.call_id, name=spec.name, ok=ok, payload=payload)


def _error_payload(name: str, parameters: dict[str, Any], message: str) -> dict[str, Any]:
    return {"error": message, "tool": name, "parameters": parameters}


def _describe(exc: ValidationError) -> str:
    problems = [
        f"{'.'.join(str(part) for part in err['loc']) or 'arguments'}: {err['msg']}"
        for err in exc.errors()
    ]
    return "Invalid arguments - " + "; ".join(problems)
