"""Grouped fertility aggregation with validation and a single coarser retry.

House labels live two hops away from a fertility row
(`fertility_analysis -> batches -> flocks`). When flocks carry no house
number, a naive grouping collapses into mostly-unknown labels and still looks
like a valid chart. The planner below judges every aggregation with a
`ValidationVerdict` and, only for that failure mode, retries once at the
`unit` level.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any

from hatchery_chat.config import RetrievalConfig
from hatchery_chat.formulas import clamp_percent
from hatchery_chat.store.query import QueryClient, TableQuery
from hatchery_chat.types import AggregationResult, AggregationRow, GroupBy, ValidationVerdict

logger = logging.getLogger(__name__)

METRICS = ("fertility_percent", "hatch_percent", "hof_percent")

REASON_EMPTY = "empty"
REASON_INSUFFICIENT_GROUPS = "insufficient_groups"
REASON_OUT_OF_RANGE = "metric_out_of_range"
REASON_UNRESOLVED_LABELS = "unresolved_labels"
_LABEL_REASONS = frozenset(
    {REASON_EMPTY, REASON_INSUFFICIENT_GROUPS, REASON_UNRESOLVED_LABELS}
)


@dataclass(slots=True)
class _Lookup:
    batches: dict[str, dict[str, Any]] = field(default_factory=dict)
    flocks: dict[str, dict[str, Any]] = field(default_factory=dict)
    units: dict[str, dict[str, Any]] = field(default_factory=dict)


def validate_rows(
    rows: list[AggregationRow],
    min_groups: int,
    *,
    unresolved_count: int = 0,
    total_count: int = 0,
    unknown_fraction_threshold: float | None = None,
) -> ValidationVerdict:
    """Check an aggregated row set against the grouping invariants.

    Rows whose label could not be resolved never appear in `rows`; when they
    make up at least `unknown_fraction_threshold` of `total_count` the verdict
    fails with `unresolved_labels`, even if the remaining groups look valid.
    """
    reasons: list[str] = []
    if not rows:
        reasons.append(REASON_EMPTY)
    labels = {row.label.strip() for row in rows if row.label.strip()}
    if len(labels) < min_groups:
        reasons.append(REASON_INSUFFICIENT_GROUPS)
    if (
        unknown_fraction_threshold is not None
        and total_count > 0
        and unresolved_count / total_count >= unknown_fraction_threshold
    ):
        reasons.append(REASON_UNRESOLVED_LABELS)
    if any(
        not 0.0 <= value <= 100.0 for row in rows for value in row.metrics.values()
    ):
        reasons.append(REASON_OUT_OF_RANGE)
    return ValidationVerdict(passed=not reasons, reasons=reasons)


class SmartRetriever:
    """Fetches fertility facts and aggregates them by house, unit or batch."""

    def __init__(
        self,
        client: QueryClient,
        config: RetrievalConfig | None = None,
        *,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.client = client
        self.config = config or RetrievalConfig()
        self._today = today

    async def aggregate(
        self,
        *,
        group_by: GroupBy,
        days_back: int | None = None,
        limit: int | None = None,
        houses: list[str] | None = None,
        min_groups: int | None = None,
        batch_id: str | None = None,
    ) -> AggregationResult:
        required_groups = min_groups or self.config.min_groups
        facts = await self._fetch_facts(
            days_back=days_back,
            limit=limit or self.config.default_limit,
            batch_id=batch_id,
        )
        lookup = _Lookup(batches=await self._index_by_id("batches", _ids(facts, "batch_id")))

        result = await self._grouped(facts, lookup, group_by, houses, required_groups)
        if not self._should_retry(result):
            return result

        logger.info(
            "Grouping by %s failed (%s) with %d/%d unresolved rows; retrying by unit",
            group_by,
            ", ".join(result.verdict.reasons),
            result.unresolved_count,
            result.total_count,
        )
        retried = await self._grouped(facts, lookup, "unit", houses, required_groups)
        if retried.verdict.passed:
            retried.retried = True
            retried.original_group_by = group_by
            return retried

        logger.warning(
            "Unit-level retry also failed (%s); returning the original verdict",
            ", ".join(retried.verdict.reasons),
        )
        return result

    def _should_retry(self, result: AggregationResult) -> bool:
        return (
            not result.verdict.passed
            and result.group_by == "house"
            and bool(_LABEL_REASONS.intersection(result.verdict.reasons))
            and result.total_count > 0
            and result.unresolved_fraction >= self.config.unknown_fraction_threshold
        )

    async def _fetch_facts(
        self, *, days_back: int | None, limit: int, batch_id: str | None
    ) -> list[dict[str, Any]]:
        query = TableQuery("fertility_analysis").order("analysis_date", desc=True).limit(limit)
        if days_back is not None:
            start = self._today() - timedelta(days=days_back)
            query.gte("analysis_date", start.isoformat())
        if batch_id:
            query.eq("batch_id", batch_id)
        result = await self.client.execute(query)
        return result.rows_or_raise(query.table)

    async def _index_by_id(self, table: str, ids: list[str]) -> dict[str, dict[str, Any]]:
        if not ids:
            return {}
        result = await self.client.execute(TableQuery(table).in_("id", ids))
        return {str(row["id"]): row for row in result.rows_or_raise(table)}

    async def _grouped(
        self,
        facts: list[dict[str, Any]],
        lookup: _Lookup,
        group_by: GroupBy,
        houses: list[str] | None,
        min_groups: int,
    ) -> AggregationResult:
        if group_by == "house" and not lookup.flocks:
            lookup.flocks = await self._index_by_id(
                "flocks", _ids(lookup.batches.values(), "flock_id")
            )
        if group_by == "unit" and not lookup.units:
            lookup.units = await self._index_by_id(
                "units", _ids(lookup.batches.values(), "unit_id")
            )

        sums: dict[str, dict[str, float]] = {}
        counts: dict[str, int] = {}
        unresolved = 0
        clamped = 0
        for fact in facts:
            label = _resolve_label(fact, lookup, group_by)
            if not label:
                unresolved += 1
                continue
            totals = sums.setdefault(label, {metric: 0.0 for metric in METRICS})
            counts[label] = counts.get(label, 0) + 1
            for metric in METRICS:
                raw = float(fact.get(metric) or 0.0)
                value = clamp_percent(raw)
                if value != raw:
                    clamped += 1
                totals[metric] += value

        if clamped:
            logger.warning("Clamped %d out-of-range percentage values into [0, 100]", clamped)

        rows = [
            AggregationRow(
                label=label,
                metrics={
                    metric: round(total / counts[label], 2) for metric, total in totals.items()
                },
                sample_count=counts[label],
            )
            for label, totals in sums.items()
        ]
        if houses:
            wanted = [needle.strip().lower() for needle in houses if needle.strip()]
            rows = [row for row in rows if any(n in row.label.lower() for n in wanted)]
        rows.sort(key=lambda row: _natural_key(row.label))

        return AggregationResult(
            group_by=group_by,
            rows=rows,
            verdict=validate_rows(
                rows,
                min_groups,
                unresolved_count=unresolved,
                total_count=len(facts),
                unknown_fraction_threshold=self.config.unknown_fraction_threshold,
            ),
            unresolved_count=unresolved,
            total_count=len(facts),
        )


def _resolve_label(fact: dict[str, Any], lookup: _Lookup, group_by: GroupBy) -> str:
    batch = lookup.batches.get(str(fact.get("batch_id")))
    if batch is None:
        return ""
    if group_by == "batch":
        return str(batch.get("batch_number") or "").strip()
    if group_by == "unit":
        unit = lookup.units.get(str(batch.get("unit_id")))
        return str((unit or {}).get("name") or "").strip()

    flock = lookup.flocks.get(str(batch.get("flock_id"))) or {}
    house = str(flock.get("house_number") or "").strip()
    if not house:
        batch_number = str(batch.get("batch_number") or "")
        if "#" in batch_number:
            house = batch_number.split("#", 1)[1].strip()
    if not house:
        return ""
    return house if house.lower().startswith("house") else f"House {house}"


def _ids(rows: Any, key: str) -> list[str]:
    seen: dict[str, None] = {}
    for row in rows:
        value = row.get(key)
        if value is not None:
            seen[str(value)] = None
    return list(seen)


def _natural_key(label: str) -> list[Any]:
    return [int(part) if part.isdigit() else part.lower() for part in re.split(r"(\d+)", label)]
