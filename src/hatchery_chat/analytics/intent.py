"""Deterministic intent heuristics over the user's message.

Every detector is a pure function of the normalized message (and, where
noted, the tool results already gathered). None of them call the model.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Literal

from hatchery_chat.types import ChartFamily, ToolResult

SmartDefaultKind = Literal["batch_overview", "fertility_comparison", "machine_utilization"]

# Scan order matters: the first family with an un-negated match wins.
_CHART_PATTERNS: tuple[tuple[ChartFamily, str], ...] = (
    ("bar", r"bar|bars|column|columns|histogram"),
    ("line", r"line|lines|trend|trends|trending|over time"),
    ("area", r"area|stacked area"),
    ("pie", r"pie|donut|doughnut"),
    ("radar", r"radar|spider"),
    ("scatter", r"scatter|xy|x-y|correlation"),
)

_NEGATION = r"(?:not|no|without|instead of|don't want|dont want)\s+(?:an?\s+|the\s+|any\s+)?"

_VISUALIZATION_PATTERN = re.compile(
    r"\b(?:"
    r"compare|compared|comparing|comparison|vs|versus|between"
    r"|charts?|graphs?|plots?|visuali[sz]e|pie|bars?|lines?"
    r"|trends?|trending|over time|patterns?"
    r"|breakdown|distribution|analy[sz]e|analysis|show me"
    r"|fertility|hatch(?:es|ing)?|performance"
    r")\b"
)

_BATCH_OVERVIEW_TERMS = ("overview", "summary", "status")


@dataclass(slots=True)
class SmartDefault:
    kind: SmartDefaultKind
    reason: str


def normalize(message: str) -> str:
    return re.sub(r"\s+", " ", message.lower()).strip()


def mentioned_chart_types(message: str) -> list[ChartFamily]:
    """All chart families named in the message and not negated, in scan order."""
    text = normalize(message)
    found: list[ChartFamily] = []
    for family, keywords in _CHART_PATTERNS:
        hits = len(re.findall(rf"\b(?:{keywords})\b", text))
        negated = len(re.findall(rf"\b{_NEGATION}(?:{keywords})\b", text))
        if hits > negated:
            found.append(family)
    return found


def detect_chart_type(message: str) -> ChartFamily | None:
    """Return the chart family the user explicitly asked for, if any.

    The first family in scan order wins; "not pie" or "no pie" suppresses
    that family.
    """
    found = mentioned_chart_types(message)
    return found[0] if found else None


def wants_visualization(message: str, tool_results: list[ToolResult]) -> bool:
    if not tool_results:
        return False
    return _VISUALIZATION_PATTERN.search(normalize(message)) is not None


def payload_shape(payload: dict[str, Any]) -> SmartDefaultKind | None:
    """Classify a tool payload by the rows it carries."""
    if payload.get("error"):
        return None
    if payload.get("batches") or payload.get("recent_batches"):
        return "batch_overview"
    if payload.get("groups"):
        return "fertility_comparison"
    rows = payload.get("data")
    if isinstance(rows, list) and rows and isinstance(rows[0], dict):
        if any(key in rows[0] for key in ("fertility_percent", "hatch_percent", "hof_percent")):
            return "fertility_comparison"
    if payload.get("machines"):
        return "machine_utilization"
    return None


def row_count(payload: dict[str, Any]) -> int:
    for key in ("batches", "recent_batches", "groups", "data", "machines", "alerts"):
        rows = payload.get(key)
        if isinstance(rows, list):
            return len(rows)
    return 0


def detect_smart_default(
    message: str, tool_results: list[ToolResult], *, min_rows: int = 3
) -> SmartDefault | None:
    """Decide whether a topic default visualization should skip the final model call."""
    shapes = {
        shape
        for result in tool_results
        if result.ok and (shape := payload_shape(result.payload)) is not None
    }
    if not shapes:
        return None

    text = normalize(message)
    if "batch_overview" in shapes and (
        ("batch" in text and any(term in text for term in _BATCH_OVERVIEW_TERMS))
        or "dashboard" in text
        or "recent" in text
    ):
        return SmartDefault("batch_overview", "batch overview requested")
    if "fertility_comparison" in shapes and ("fertility" in text or "hatch" in text):
        return SmartDefault("fertility_comparison", "fertility topic mentioned")

    for result in tool_results:
        if not result.ok or row_count(result.payload) <= min_rows:
            continue
        shape = payload_shape(result.payload)
        if shape is not None:
            return SmartDefault(shape, f"{result.name} returned {row_count(result.payload)} rows")
    return None
