"""Chart synthesis from tool payloads.

Each data shape (batches, fertility, machines) is reduced once to four
datasets: categories, a breakdown, a trend and scatter points. Chart families
read from those datasets, and every chart's insight text is derived from the
rows in that chart's own `data`.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from hatchery_chat.analytics.intent import (
    SmartDefaultKind,
    mentioned_chart_types,
    payload_shape,
)
from hatchery_chat.analytics.schedule import summarize_batches
from hatchery_chat.types import AnalyticsEnvelope, ChartDescriptor, ChartFamily, ToolResult

SERIES_COLORS = {
    "fertility_percent": "#10b981",
    "hatch_percent": "#3b82f6",
    "hof_percent": "#f59e0b",
    "hatch_rate": "#3b82f6",
    "total_eggs_set": "#8b5cf6",
    "utilization": "#ef4444",
}
STATUS_COLORS = {
    "planned": "#94a3b8",
    "setting": "#f59e0b",
    "incubating": "#3b82f6",
    "hatching": "#8b5cf6",
    "completed": "#10b981",
    "cancelled": "#ef4444",
}
PALETTE = ["#3b82f6", "#10b981", "#f59e0b", "#ef4444", "#8b5cf6", "#06b6d4", "#ec4899", "#84cc16"]

PERFORMANCE_BUCKETS = (
    (90.0, "Excellent (≥90%)", "#10b981"),
    (80.0, "Good (80-89%)", "#3b82f6"),
    (70.0, "Average (70-79%)", "#f59e0b"),
    (float("-inf"), "Poor (<70%)", "#ef4444"),
)

_FERTILITY_SERIES = [
    ("fertility_percent", "Fertility %"),
    ("hatch_percent", "Hatch %"),
    ("hof_percent", "HOF %"),
]


def performance_bucket(value: float) -> str:
    for threshold, name, _ in PERFORMANCE_BUCKETS:
        if value >= threshold:
            return name.split(" ")[0].lower()
    return "poor"


def _series(keys: list[tuple[str, str]]) -> list[dict[str, str]]:
    return [
        {"key": key, "name": name, "color": SERIES_COLORS.get(key, PALETTE[i % len(PALETTE)])}
        for i, (key, name) in enumerate(keys)
    ]


def _mean(values: list[float]) -> float:
    return round(sum(values) / len(values), 2) if values else 0.0


@dataclass(slots=True)
class ShapeData:
    """Datasets for one data shape, in the forms each chart family needs."""

    kind: SmartDefaultKind
    subject: str
    categories: list[dict[str, Any]] = field(default_factory=list)
    category_series: list[dict[str, str]] = field(default_factory=list)
    unit: str = "%"
    breakdown: list[dict[str, Any]] = field(default_factory=list)
    breakdown_title: str = ""
    trend: list[dict[str, Any]] = field(default_factory=list)
    trend_series: list[dict[str, str]] = field(default_factory=list)
    points: list[dict[str, Any]] = field(default_factory=list)
    x_label: str = ""
    y_label: str = ""
    row_count: int = 0


@dataclass(slots=True)
class CollectedData:
    batches: list[dict[str, Any]] = field(default_factory=list)
    fertility_rows: list[dict[str, Any]] = field(default_factory=list)
    groups: list[dict[str, Any]] = field(default_factory=list)
    group_by: str = "batch"
    grouping: dict[str, Any] = field(default_factory=dict)
    machines: list[dict[str, Any]] = field(default_factory=list)


class ChartSynthesizer:
    """Builds chart descriptors and analytics envelopes from tool results."""

    def __init__(
        self, *, today: Callable[[], date] = date.today, upcoming_window_days: int = 7
    ) -> None:
        self._today = today
        self.upcoming_window_days = upcoming_window_days

    # collection

    def collect(self, tool_results: list[ToolResult]) -> CollectedData:
        collected = CollectedData()
        for result in tool_results:
            payload = result.payload
            if not result.ok or payload_shape(payload) is None:
                continue
            collected.batches.extend(payload.get("batches") or payload.get("recent_batches") or [])
            if payload.get("groups") and not collected.groups:
                collected.groups = list(payload["groups"])
                collected.group_by = str(payload.get("group_by") or "batch")
                collected.grouping = {
                    "requested_group_by": payload.get("requested_group_by"),
                    "retried": bool(payload.get("retried")),
                    "validation": payload.get("validation") or {"passed": True, "reasons": []},
                }
            if payload_shape(payload) == "fertility_comparison" and payload.get("data"):
                collected.fertility_rows.extend(payload["data"])
            collected.machines.extend(payload.get("machines") or [])
        return collected

    def shapes(self, collected: CollectedData) -> list[ShapeData]:
        shapes: list[ShapeData] = []
        if collected.groups or collected.fertility_rows:
            shapes.append(self._fertility_shape(collected))
        if collected.batches:
            shapes.append(self._batch_shape(collected.batches))
        if collected.machines:
            shapes.append(self._machine_shape(collected.machines))
        return shapes

    # chart selection

    def charts_for_family(self, shape: ShapeData, family: ChartFamily) -> ChartDescriptor:
        if family == "pie":
            return self._pie(shape)
        if family in ("line", "area"):
            return self._trend(shape, family)
        if family == "scatter":
            return self._scatter(shape)
        if family == "radar":
            return self._radar(shape)
        return self._category(shape, "bar")

    def default_charts(self, shape: ShapeData, message: str) -> list[ChartDescriptor]:
        if shape.kind == "fertility_comparison":
            charts = [self._category(shape, "bar")]
            for family in mentioned_chart_types(message):
                if family != "bar":
                    charts.append(self.charts_for_family(shape, family))
            return charts
        if shape.kind == "batch_overview":
            charts = [self._pie(shape)]
            if shape.row_count >= 2:
                charts.append(self._category(shape, "bar"))
            return charts
        return [self._category(shape, "bar")]

    def build_envelope(
        self,
        tool_results: list[ToolResult],
        message: str,
        *,
        family: ChartFamily | None = None,
        kind: SmartDefaultKind | None = None,
        summary: str | None = None,
    ) -> AnalyticsEnvelope | None:
        """Assemble an analytics envelope, or None when no chartable data exists.

        An explicit `family` yields exactly one chart of that family per data
        shape. Otherwise `kind` (when given) puts its shape first and the
        default chart selection applies.
        """
        collected = self.collect(tool_results)
        shapes = self.shapes(collected)
        if kind is not None:
            shapes.sort(key=lambda shape: shape.kind != kind)
        if not shapes:
            return None

        charts: list[ChartDescriptor] = []
        for shape in shapes:
            if family is not None:
                charts.append(self.charts_for_family(shape, family))
            else:
                charts.extend(self.default_charts(shape, message))

        primary = shapes[0]
        metrics, insights, recommendations = self._narrative(primary, collected)
        insights.extend(chart.insights for chart in charts if chart.insights)
        return AnalyticsEnvelope(
            title=_ENVELOPE_TITLES[primary.kind],
            summary=summary or self._summary(primary, collected),
            charts=charts,
            metrics=metrics,
            insights=insights,
            recommendations=recommendations,
            actions=[{"type": "export_csv", "label": "Export data"}],
        )

    # shapes

    def _fertility_shape(self, collected: CollectedData) -> ShapeData:
        group_name = collected.group_by.capitalize() if collected.groups else "Batch"
        if collected.groups:
            categories = [
                {
                    "name": group["label"],
                    **{key: float(group.get(key) or 0.0) for key, _ in _FERTILITY_SERIES},
                    "samples": int(group.get("sample_count") or 0),
                }
                for group in collected.groups
            ]
        else:
            by_batch: dict[str, list[dict[str, Any]]] = {}
            for row in collected.fertility_rows:
                label = str(row.get("batch_number") or row.get("batch_id") or "Unknown")
                by_batch.setdefault(label, []).append(row)
            categories = [
                {
                    "name": label,
                    **{
                        key: _mean([float(r.get(key) or 0.0) for r in rows])
                        for key, _ in _FERTILITY_SERIES
                    },
                    "samples": len(rows),
                }
                for label, rows in by_batch.items()
            ]

        buckets: dict[str, int] = {}
        for item in categories:
            for threshold, name, _ in PERFORMANCE_BUCKETS:
                if item["fertility_percent"] >= threshold:
                    buckets[name] = buckets.get(name, 0) + 1
                    break
        breakdown = [
            {"name": name, "value": buckets[name], "fill": color}
            for _, name, color in PERFORMANCE_BUCKETS
            if buckets.get(name)
        ]

        by_date: dict[str, list[dict[str, Any]]] = {}
        for row in collected.fertility_rows:
            if row.get("analysis_date"):
                by_date.setdefault(str(row["analysis_date"])[:10], []).append(row)
        trend = [
            {
                "date": day,
                "fertility_percent": _mean([float(r.get("fertility_percent") or 0) for r in rows]),
                "hatch_percent": _mean([float(r.get("hatch_percent") or 0) for r in rows]),
            }
            for day, rows in sorted(by_date.items())
        ]

        point_source = (
            [
                {
                    "name": str(r.get("batch_number") or r.get("batch_id") or "Unknown"),
                    "x": float(r.get("fertility_percent") or 0),
                    "y": float(r.get("hatch_percent") or 0),
                }
                for r in collected.fertility_rows
            ]
            if collected.fertility_rows
            else [
                {"name": c["name"], "x": c["fertility_percent"], "y": c["hatch_percent"]}
                for c in categories
            ]
        )

        return ShapeData(
            kind="fertility_comparison",
            subject=f"Fertility by {group_name}",
            categories=categories,
            category_series=_series(_FERTILITY_SERIES),
            breakdown=breakdown,
            breakdown_title="Fertility Performance Distribution",
            trend=trend,
            trend_series=_series(_FERTILITY_SERIES[:2]),
            points=point_source,
            x_label="Fertility %",
            y_label="Hatch %",
        )

    def _batch_shape(self, batches: list[dict[str, Any]]) -> ShapeData:
        rated = [b for b in batches if b.get("hatch_rate") is not None]
        by_rate = len(rated) >= 2
        if by_rate:
            categories = [
                {"name": str(b.get("batch_number")), "hatch_rate": float(b["hatch_rate"])}
                for b in rated[:10]
            ]
            category_series = _series([("hatch_rate", "Hatch Rate %")])
            unit = "%"
        else:
            categories = [
                {"name": str(b.get("batch_number")), "total_eggs_set": int(b.get("total_eggs_set") or 0)}
                for b in batches[:10]
            ]
            category_series = _series([("total_eggs_set", "Eggs Set")])
            unit = " eggs"

        status_counts: dict[str, int] = {}
        for batch in batches:
            status = str(batch.get("status") or "unknown")
            status_counts[status] = status_counts.get(status, 0) + 1
        breakdown = [
            {
                "name": status,
                "value": count,
                "fill": STATUS_COLORS.get(status, PALETTE[i % len(PALETTE)]),
            }
            for i, (status, count) in enumerate(
                sorted(status_counts.items(), key=lambda item: (-item[1], item[0]))
            )
        ]

        trend = sorted(
            (
                {
                    "date": str(b["set_date"])[:10],
                    "name": str(b.get("batch_number")),
                    "total_eggs_set": int(b.get("total_eggs_set") or 0),
                }
                for b in batches
                if b.get("set_date")
            ),
            key=lambda item: item["date"],
        )
        points = [
            {"name": str(b.get("batch_number")), "x": int(b.get("total_eggs_set") or 0), "y": float(b["hatch_rate"])}
            for b in rated
        ]
        return ShapeData(
            kind="batch_overview",
            subject="Batch Hatch Performance" if by_rate else "Eggs Set by Batch",
            categories=categories,
            category_series=category_series,
            unit=unit,
            breakdown=breakdown,
            breakdown_title="Batch Status Breakdown",
            trend=trend,
            trend_series=_series([("total_eggs_set", "Eggs Set")]),
            points=points,
            x_label="Eggs Set",
            y_label="Hatch Rate %",
            row_count=len(batches),
        )

    def _machine_shape(self, machines: list[dict[str, Any]]) -> ShapeData:
        categories = [
            {
                "name": str(m.get("machine_number") or m.get("id")),
                "utilization": float(m.get("utilization") or 0.0),
                "current_batch_count": int(m.get("current_batch_count") or 0),
                "capacity": int(m.get("capacity") or 0),
            }
            for m in machines
        ]
        status_counts: dict[str, int] = {}
        for machine in machines:
            status = str(machine.get("status") or machine.get("machine_type") or "unknown")
            status_counts[status] = status_counts.get(status, 0) + 1
        return ShapeData(
            kind="machine_utilization",
            subject="Machine Utilization",
            categories=categories,
            category_series=_series([("utilization", "Utilization %")]),
            breakdown=[
                {"name": status, "value": count, "fill": PALETTE[i % len(PALETTE)]}
                for i, (status, count) in enumerate(sorted(status_counts.items()))
            ],
            breakdown_title="Machines by Status",
            points=[
                {"name": c["name"], "x": c["capacity"], "y": c["current_batch_count"]}
                for c in categories
            ],
            x_label="Capacity",
            y_label="Active Batches",
        )

    # chart builders

    def _category(self, shape: ShapeData, family: ChartFamily) -> ChartDescriptor:
        primary = shape.category_series[0]
        return ChartDescriptor(
            type=family,
            title=shape.subject,
            description=f"{', '.join(s['name'] for s in shape.category_series)} per {_axis_name(shape)}",
            data=shape.categories,
            config={
                "x_key": "name",
                "series": shape.category_series,
                "y_axis": _y_axis(shape.unit),
            },
            insights=_extremes_insight(shape.categories, primary["key"], primary["name"], shape.unit),
        )

    def _pie(self, shape: ShapeData) -> ChartDescriptor:
        data = shape.breakdown
        total = sum(item["value"] for item in data)
        insights = ""
        if data:
            top = max(data, key=lambda item: item["value"])
            insights = f"{top['name']} is the largest share with {top['value']} of {total}."
        return ChartDescriptor(
            type="pie",
            title=shape.breakdown_title,
            description=f"Distribution across {len(data)} categories",
            data=data,
            config={"name_key": "name", "value_key": "value"},
            insights=insights,
        )

    def _trend(self, shape: ShapeData, family: ChartFamily) -> ChartDescriptor:
        if not shape.trend:
            # no dated rows: plot the category series along the category axis
            chart = self._category(shape, family)
            chart.title = f"{shape.subject} Profile"
            return chart
        primary = shape.trend_series[0]
        first, last = shape.trend[0], shape.trend[-1]
        insights = (
            f"{primary['name']} moved from {first[primary['key']]} on {first['date']} "
            f"to {last[primary['key']]} on {last['date']}."
            if len(shape.trend) > 1
            else f"{primary['name']} was {first[primary['key']]} on {first['date']}."
        )
        return ChartDescriptor(
            type=family,
            title=f"{shape.subject} Over Time",
            description=f"{', '.join(s['name'] for s in shape.trend_series)} by date",
            data=shape.trend,
            config={
                "x_key": "date",
                "series": shape.trend_series,
                "y_axis": _y_axis("%" if primary["key"] != "total_eggs_set" else " eggs"),
            },
            insights=insights,
        )

    def _scatter(self, shape: ShapeData) -> ChartDescriptor:
        insights = ""
        if shape.points:
            top = max(shape.points, key=lambda point: point["y"])
            insights = (
                f"{top['name']} has the highest {shape.y_label} ({top['y']}) "
                f"at {shape.x_label} {top['x']}."
            )
        return ChartDescriptor(
            type="scatter",
            title=f"{shape.x_label} vs {shape.y_label}",
            description=f"Each point is one {_axis_name(shape)}",
            data=shape.points,
            config={
                "x_key": "x",
                "y_key": "y",
                "x_axis": {"label": shape.x_label},
                "y_axis": {"label": shape.y_label},
            },
            insights=insights,
        )

    def _radar(self, shape: ShapeData) -> ChartDescriptor:
        groups = shape.categories[:6]
        data = [
            {"metric": series["name"], **{group["name"]: group[series["key"]] for group in groups}}
            for series in shape.category_series
        ]
        insights = ""
        if groups:
            keys = [series["key"] for series in shape.category_series]
            best = max(groups, key=lambda group: sum(group[key] for key in keys))
            insights = f"{best['name']} has the strongest overall profile across {len(keys)} metrics."
        return ChartDescriptor(
            type="radar",
            title=f"{shape.subject} Profile",
            description=f"{len(groups)} {_axis_name(shape)}s compared across metrics",
            data=data,
            config={
                "angle_key": "metric",
                "series": [
                    {"key": group["name"], "name": group["name"], "color": PALETTE[i % len(PALETTE)]}
                    for i, group in enumerate(groups)
                ],
            },
            insights=insights,
        )

    # narrative

    def _summary(self, shape: ShapeData, collected: CollectedData) -> str:
        if shape.kind == "fertility_comparison":
            return (
                f"Compared {len(shape.categories)} {_axis_name(shape)} groups using "
                f"{sum(c['samples'] for c in shape.categories)} fertility records."
            )
        if shape.kind == "batch_overview":
            return f"Overview of {len(collected.batches)} batches by status and performance."
        return f"Utilization for {len(shape.categories)} machines."

    def _narrative(
        self, shape: ShapeData, collected: CollectedData
    ) -> tuple[list[dict[str, Any]], list[str], list[str]]:
        metrics: list[dict[str, Any]] = []
        insights: list[str] = []
        recommendations: list[str] = []

        if shape.kind == "fertility_comparison":
            for key, name in _FERTILITY_SERIES:
                metrics.append(
                    {"label": f"Avg {name}", "value": _mean([c[key] for c in shape.categories]), "unit": "%"}
                )
            metrics.append({"label": "Groups", "value": len(shape.categories)})
            grouping = collected.grouping
            if grouping.get("retried"):
                insights.append(
                    f"House labels were missing for most records, so results are grouped by "
                    f"{collected.group_by} instead of {grouping.get('requested_group_by')}."
                )
            validation = grouping.get("validation") or {}
            if validation and not validation.get("passed", True):
                insights.append(
                    "Grouping validation did not pass ("
                    + ", ".join(validation.get("reasons") or [])
                    + "); treat these comparisons with caution."
                )
            for item in shape.categories:
                bucket = performance_bucket(item["fertility_percent"])
                if bucket == "poor":
                    recommendations.append(
                        f"Review breeder flock management for {item['name']} "
                        f"(fertility {item['fertility_percent']}%)."
                    )
                elif bucket == "average":
                    recommendations.append(
                        f"Monitor {item['name']} closely; fertility of "
                        f"{item['fertility_percent']}% is below the 80% target."
                    )

        elif shape.kind == "batch_overview":
            summary = summarize_batches(
                collected.batches,
                today=self._today(),
                upcoming_window_days=self.upcoming_window_days,
            )
            metrics.extend(
                [
                    {"label": "Total Batches", "value": summary["total_batches"]},
                    {"label": "Eggs Set", "value": summary["total_eggs_set"]},
                    {"label": "Avg Hatch Rate", "value": summary["average_hatch_rate"], "unit": "%"},
                    {"label": "Upcoming Hatches", "value": summary["upcoming_count"]},
                    {"label": "Overdue", "value": summary["overdue_count"]},
                ]
            )
            if summary["overdue_count"]:
                recommendations.append(
                    f"Follow up on {summary['overdue_count']} batches past their expected hatch date."
                )
            if summary["upcoming_count"]:
                recommendations.append(
                    f"Prepare hatchers for {summary['upcoming_count']} batches due within "
                    f"{self.upcoming_window_days} days."
                )

        else:
            values = [c["utilization"] for c in shape.categories]
            metrics.extend(
                [
                    {"label": "Machines", "value": len(values)},
                    {"label": "Avg Utilization", "value": _mean(values), "unit": "%"},
                ]
            )
            for item in shape.categories:
                if item["utilization"] > 90:
                    recommendations.append(
                        f"{item['name']} is at {item['utilization']}% utilization; plan capacity."
                    )
                elif item["utilization"] < 30:
                    recommendations.append(
                        f"{item['name']} is underused at {item['utilization']}% utilization."
                    )

        return metrics, insights, recommendations


_ENVELOPE_TITLES: dict[str, str] = {
    "fertility_comparison": "Fertility Analysis",
    "batch_overview": "Batch Overview",
    "machine_utilization": "Machine Utilization",
}


def _axis_name(shape: ShapeData) -> str:
    match = re.search(r"by (\w+)$", shape.subject)
    if match:
        return match.group(1).lower()
    return {"batch_overview": "batch", "machine_utilization": "machine"}.get(shape.kind, "group")


def _y_axis(unit: str) -> dict[str, Any]:
    if unit == "%":
        return {"domain": [0, 100], "unit": "%"}
    return {"unit": unit.strip()}


def _extremes_insight(rows: list[dict[str, Any]], key: str, name: str, unit: str) -> str:
    if not rows:
        return ""
    if len(rows) == 1:
        return f"{rows[0]['name']}: {name} {rows[0][key]}{unit}."
    top = max(rows, key=lambda row: row[key])
    low = min(rows, key=lambda row: row[key])
    return (
        f"{top['name']} leads {name} at {top[key]}{unit}; "
        f"{low['name']} is lowest at {low[key]}{unit}."
    )
