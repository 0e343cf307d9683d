"""Builds the three reply shapes returned by the chat endpoint."""

from __future__ import annotations

import json
import re
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, Literal

from hatchery_chat.agent.fallback import build_fallback_summary
from hatchery_chat.analytics.charts import ChartSynthesizer
from hatchery_chat.analytics.intent import detect_chart_type, wants_visualization
from hatchery_chat.types import AnalyticsEnvelope, ToolResult

Source = Literal["explicit_intent", "smart_default", "openai", "fallback", "enhanced"]

STANDARD_ACTIONS = [
    {"type": "export_csv", "label": "Export CSV"},
    {"type": "view_batches", "label": "Open batch overview"},
]
_OVERVIEW_COLUMNS = [
    "batch_number",
    "status",
    "set_date",
    "expected_hatch_date",
    "total_eggs_set",
    "chicks_hatched",
    "hatch_rate",
]
_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


def parse_envelope(text: str) -> dict[str, Any] | None:
    """Return the model's JSON reply when it is an analytics or chart object."""
    candidate = text.strip()
    fenced = _FENCE.match(candidate)
    if fenced:
        candidate = fenced.group(1)
    if not candidate.startswith("{"):
        return None
    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError:
        return None
    if isinstance(parsed, dict) and parsed.get("type") in ("analytics", "chart"):
        return parsed
    return None


def overview_payload(tool_results: list[ToolResult]) -> dict[str, Any] | None:
    """Tabular batch overview for the first successful batch listing."""
    for result in tool_results:
        batches = result.payload.get("batches") if result.ok else None
        if batches:
            return {
                "type": "batch_overview",
                "columns": _OVERVIEW_COLUMNS,
                "rows": [{column: batch.get(column) for column in _OVERVIEW_COLUMNS} for batch in batches],
                "analytics": result.payload.get("analytics", {}),
            }
    return None


class ResponseAssembler:
    def __init__(
        self,
        synthesizer: ChartSynthesizer,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.synthesizer = synthesizer
        self._clock = clock

    def plain(self, text: str) -> dict[str, Any]:
        return {"response": text, "actions": []}

    def analytics(
        self,
        envelope: AnalyticsEnvelope | dict[str, Any],
        source: Source,
        model: str | None = None,
    ) -> dict[str, Any]:
        body = envelope.as_dict() if isinstance(envelope, AnalyticsEnvelope) else envelope
        return self._stamp({"response": body}, source, model)

    def text(
        self,
        text: str,
        tool_results: list[ToolResult],
        source: Source,
        model: str | None = None,
    ) -> dict[str, Any]:
        reply: dict[str, Any] = {"response": text, "actions": []}
        payload = overview_payload(tool_results)
        if payload is not None:
            reply["actions"] = list(STANDARD_ACTIONS)
            reply["payload"] = payload
        return self._stamp(reply, source, model)

    def finalize(
        self,
        message: str,
        tool_results: list[ToolResult],
        final_text: str | None,
        *,
        model: str | None = None,
    ) -> dict[str, Any]:
        """Pick a reply shape after the final model call (or its failure).

        Order: the model's own analytics JSON, charts forced from tool results
        when the question warrants a visualization, then prose. A missing
        final answer uses the deterministic summary in place of prose.
        """
        visualize = wants_visualization(message, tool_results)
        if not final_text or not final_text.strip():
            summary = build_fallback_summary(tool_results)
            if visualize:
                envelope = self.synthesizer.build_envelope(
                    tool_results, message, family=detect_chart_type(message), summary=summary
                )
                if envelope is not None:
                    return self.analytics(envelope, "fallback")
            return self.text(summary, tool_results, "fallback")

        parsed = parse_envelope(final_text)
        if parsed is not None:
            return self.analytics(parsed, "openai", model)

        if visualize:
            envelope = self.synthesizer.build_envelope(
                tool_results, message, family=detect_chart_type(message), summary=final_text
            )
            if envelope is not None:
                return self.analytics(envelope, "enhanced", model)
        return self.text(final_text, tool_results, "openai", model)

    def _stamp(self, reply: dict[str, Any], source: Source, model: str | None) -> dict[str, Any]:
        reply["timestamp"] = self._clock().isoformat()
        reply["source"] = source
        if model is not None:
            reply["model"] = model
        return reply
