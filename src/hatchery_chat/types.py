"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

ChartFamily = Literal["bar", "line", "pie", "radar", "scatter", "area"]
GroupBy = Literal["house", "unit", "batch"]


@dataclass(slots=True)
class ToolInvocation:
    """A tool call requested by the upstream model."""

    name: str
    arguments: dict[str, Any]
    call_id: str


@dataclass(slots=True)
class ToolResult:
    """Outcome of one tool invocation, matched back by `call_id`."""

    call_id: str
    name: str
    ok: bool
    payload: dict[str, Any]


@dataclass(slots=True)
class ToolTrace:
    """Trace record for an executed tool call."""

    name: str
    input_payload: dict[str, Any]
    ok: bool
    latency_ms: float


@dataclass(slots=True)
class AggregationRow:
    """Mean percentage metrics for one group label."""

    label: str
    metrics: dict[str, float]
    sample_count: int

    def as_dict(self) -> dict[str, Any]:
        return {"label": self.label, **self.metrics, "sample_count": self.sample_count}


@dataclass(slots=True)
class ValidationVerdict:
    passed: bool
    reasons: list[str] = field(default_factory=list)


@dataclass(slots=True)
class AggregationResult:
    """Grouped aggregation plus the verdict it was judged by."""

    group_by: GroupBy
    rows: list[AggregationRow]
    verdict: ValidationVerdict
    unresolved_count: int
    total_count: int
    retried: bool = False
    original_group_by: GroupBy | None = None

    @property
    def unresolved_fraction(self) -> float:
        if self.total_count == 0:
            return 0.0
        return self.unresolved_count / self.total_count


@dataclass(slots=True)
class ChartDescriptor:
    """A fully configured chart, ready for the UI to render."""

    type: ChartFamily
    title: str
    description: str
    data: list[dict[str, Any]]
    config: dict[str, Any]
    insights: str = ""

    def as_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "title": self.title,
            "description": self.description,
            "data": self.data,
            "config": self.config,
            "insights": self.insights,
        }


@dataclass(slots=True)
class AnalyticsEnvelope:
    """The chart-bearing response shape."""

    title: str
    summary: str
    charts: list[ChartDescriptor] = field(default_factory=list)
    metrics: list[dict[str, Any]] = field(default_factory=list)
    insights: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    actions: list[dict[str, Any]] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "type": "analytics",
            "title": self.title,
            "summary": self.summary,
            "charts": [chart.as_dict() for chart in self.charts],
            "metrics": self.metrics,
            "insights": self.insights,
            "recommendations": self.recommendations,
            "actions": self.actions,
        }
