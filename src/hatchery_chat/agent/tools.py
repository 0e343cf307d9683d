"""Hatchery data tools exposed to the chat model."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import date, timedelta
from typing import Any, Literal

from pydantic import BaseModel, Field

from hatchery_chat.agent.registry import ToolRegistry, ToolSpec
from hatchery_chat.analytics.schedule import parse_date, summarize_batches
from hatchery_chat.config import ChatConfig, RetrievalConfig
from hatchery_chat.formulas import hatch_percent
from hatchery_chat.retrieval.smart import SmartRetriever
from hatchery_chat.store.query import QueryClient, TableQuery

logger = logging.getLogger(__name__)

BatchStatus = Literal["planned", "setting", "incubating", "hatching", "completed", "cancelled"]
INACTIVE_STATUSES = frozenset({"completed", "cancelled"})


class AllBatchesInput(BaseModel):
    limit: int = Field(default=20, ge=1, le=500, description="Number of records to return")
    status: BatchStatus | None = Field(default=None, description="Filter by batch status")


class BatchesByDateRangeInput(BaseModel):
    days_back: int = Field(ge=1, le=3650, description="Number of days back from today")
    date_field: Literal["set_date", "created_at"] = "set_date"
    limit: int = Field(default=50, ge=1, le=500)


class BatchInfoInput(BaseModel):
    batch_identifier: str = Field(min_length=1, description="Batch number or ID")


class FertilityRatesInput(BaseModel):
    batch_id: str | None = Field(default=None, description="Optional specific batch ID")
    limit: int = Field(default=200, ge=1, le=1000)
    group_by: Literal["house", "unit", "batch"] | None = Field(
        default=None, description="Aggregate mean rates per house, unit or batch"
    )
    days_back: int | None = Field(default=None, ge=1, le=3650)
    houses: list[str] | None = Field(
        default=None, description="Only keep groups whose label contains one of these"
    )
    min_groups: int = Field(default=1, ge=1, le=50)


class MachineStatusInput(BaseModel):
    machine_id: str | None = None


class QAAlertsInput(BaseModel):
    severity: Literal["info", "warning", "critical"] | None = None


class RecentActivityInput(BaseModel):
    days: int = Field(default=7, ge=1, le=365)


def register_hatchery_tools(
    registry: ToolRegistry,
    client: QueryClient,
    *,
    retrieval_config: RetrievalConfig | None = None,
    chat_config: ChatConfig | None = None,
    today: Callable[[], date] = date.today,
) -> None:
    """Register the hatchery tool catalog.

    Tools:
    - `get_all_batches` / `get_batches_by_date_range`: batch listings with analytics.
    - `get_batch_info`: fuzzy lookup of one batch with days remaining.
    - `get_fertility_rates`: raw fertility rows or validated grouped means.
    - `get_machine_status`: machines with utilization.
    - `get_qa_alerts`: active alerts.
    - `get_recent_activity`: batches, alerts and QA checks for a lookback window.
    """

    chat_config = chat_config or ChatConfig()
    retriever = SmartRetriever(client, retrieval_config, today=today)

    async def _rows(query: TableQuery) -> list[dict[str, Any]]:
        result = await client.execute(query)
        return result.rows_or_raise(query.table)

    async def _index(table: str, ids: set[str]) -> dict[str, dict[str, Any]]:
        if not ids:
            return {}
        rows = await _rows(TableQuery(table).in_("id", sorted(ids)))
        return {str(row["id"]): row for row in rows}

    async def _normalize_batches(batches: list[dict[str, Any]]) -> list[dict[str, Any]]:
        flocks = await _index("flocks", {str(b["flock_id"]) for b in batches if b.get("flock_id")})
        machines = await _index(
            "machines", {str(b["machine_id"]) for b in batches if b.get("machine_id")}
        )
        current = today()
        normalized = []
        for batch in batches:
            set_date = parse_date(batch.get("set_date"))
            flock = flocks.get(str(batch.get("flock_id")), {})
            machine = machines.get(str(batch.get("machine_id")), {})
            chicks = batch.get("chicks_hatched")
            normalized.append(
                {
                    "id": batch.get("id"),
                    "batch_number": batch.get("batch_number"),
                    "status": batch.get("status"),
                    "set_date": batch.get("set_date"),
                    "expected_hatch_date": batch.get("expected_hatch_date"),
                    "actual_hatch_date": batch.get("actual_hatch_date"),
                    "total_eggs_set": batch.get("total_eggs_set"),
                    "chicks_hatched": chicks,
                    "created_at": batch.get("created_at"),
                    "days_since_set": (current - set_date).days if set_date else None,
                    "hatch_rate": (
                        hatch_percent(chicks, batch.get("total_eggs_set") or 0)
                        if chicks is not None
                        else None
                    ),
                    "flock": {
                        key: flock.get(key)
                        for key in ("flock_name", "breed", "age_weeks", "house_number")
                    },
                    "machine": {key: machine.get(key) for key in ("machine_number", "machine_type")},
                }
            )
        return normalized

    async def _listing(batches: list[dict[str, Any]], limit: int) -> dict[str, Any]:
        normalized = await _normalize_batches(batches)
        return {
            "count": min(limit, len(normalized)),
            "total_count": len(normalized),
            "batches": normalized[:limit],
            "analytics": summarize_batches(
                normalized,
                today=today(),
                upcoming_window_days=chat_config.upcoming_window_days,
            ),
        }

    async def _all_batches(input_data: AllBatchesInput) -> dict[str, Any]:
        query = TableQuery("batches").order("created_at", desc=True)
        if input_data.status:
            query.eq("status", input_data.status)
        batches = await _rows(query)
        if not batches:
            return {"message": "No batches found", "count": 0, "batches": []}
        payload = await _listing(batches, input_data.limit)
        return {"message": f"Found {payload['total_count']} batches", **payload}

    async def _batches_by_date_range(input_data: BatchesByDateRangeInput) -> dict[str, Any]:
        end = today()
        start = end - timedelta(days=input_data.days_back)
        date_range = f"{start.isoformat()} to {end.isoformat()}"
        batches = await _rows(
            TableQuery("batches")
            .gte(input_data.date_field, start.isoformat())
            .order(input_data.date_field, desc=True)
        )
        if not batches:
            return {
                "message": f"No batches found in the past {input_data.days_back} days",
                "count": 0,
                "date_range": date_range,
                "batches": [],
            }
        payload = await _listing(batches, input_data.limit)
        return {
            "message": (
                f"Found {payload['total_count']} batches from the past "
                f"{input_data.days_back} days"
            ),
            "date_range": date_range,
            **payload,
        }

    async def _batch_info(input_data: BatchInfoInput) -> dict[str, Any]:
        term = input_data.batch_identifier.strip()
        candidates = await _rows(
            TableQuery("batches").ilike("batch_number", f"%{term}%").limit(5)
        )
        if not candidates:
            by_id = await client.execute(TableQuery("batches").eq("id", term).limit(1))
            if by_id.error is not None:
                logger.debug("Identifier %r is not a valid batch id: %s", term, by_id.error)
            candidates = by_id.data if by_id.error is None else []
        if not candidates:
            return {"error": "Batch not found", "search_term": term, "found": False}

        exact = [c for c in candidates if str(c.get("batch_number", "")).lower() == term.lower()]
        batch = (await _normalize_batches([(exact or candidates)[0]]))[0]
        expected = parse_date(batch.get("expected_hatch_date"))
        return {
            "found": True,
            "batch": batch,
            "days_remaining": (expected - today()).days if expected else None,
            "status": batch["status"],
            "total_eggs": batch["total_eggs_set"],
            "hatch_percentage": round(
                hatch_percent(batch.get("chicks_hatched") or 0, batch.get("total_eggs_set") or 0),
                1,
            ),
        }

    async def _fertility_rates(input_data: FertilityRatesInput) -> dict[str, Any]:
        if input_data.group_by is not None:
            result = await retriever.aggregate(
                group_by=input_data.group_by,
                days_back=input_data.days_back,
                limit=input_data.limit,
                houses=input_data.houses,
                min_groups=input_data.min_groups,
                batch_id=input_data.batch_id,
            )
            return {
                "message": (
                    f"Aggregated {result.total_count} fertility records into "
                    f"{len(result.rows)} {result.group_by} groups"
                ),
                "group_by": result.group_by,
                "requested_group_by": result.original_group_by or input_data.group_by,
                "retried": result.retried,
                "groups": [row.as_dict() for row in result.rows],
                "validation": {
                    "passed": result.verdict.passed,
                    "reasons": result.verdict.reasons,
                },
                "unresolved_rows": result.unresolved_count,
                "total_rows": result.total_count,
            }

        query = TableQuery("fertility_analysis").order("analysis_date", desc=True)
        query.limit(input_data.limit)
        if input_data.batch_id:
            query.eq("batch_id", input_data.batch_id)
        if input_data.days_back:
            query.gte("analysis_date", (today() - timedelta(days=input_data.days_back)).isoformat())
        rows = await _rows(query)
        if not rows:
            return {"message": "No fertility analysis data found", "count": 0, "data": []}
        batches = await _index("batches", {str(r["batch_id"]) for r in rows if r.get("batch_id")})
        data = [
            {**row, "batch_number": batches.get(str(row.get("batch_id")), {}).get("batch_number")}
            for row in rows
        ]
        return {
            "message": f"Found {len(data)} fertility analysis records",
            "count": len(data),
            "data": data,
        }

    async def _machine_status(input_data: MachineStatusInput) -> dict[str, Any]:
        query = TableQuery("machines").order("machine_number", desc=False)
        if input_data.machine_id:
            query.eq("id", input_data.machine_id)
        machines = await _rows(query.limit(10))
        if not machines:
            return {"message": "No machines found", "machines": []}
        linked = await _rows(
            TableQuery("batches", "id, batch_number, status, machine_id").in_(
                "machine_id", [str(m["id"]) for m in machines]
            )
        )
        active: dict[str, int] = {}
        for batch in linked:
            if batch.get("status") not in INACTIVE_STATUSES:
                key = str(batch.get("machine_id"))
                active[key] = active.get(key, 0) + 1

        enriched = []
        for machine in machines:
            count = active.get(str(machine["id"]), 0)
            capacity = machine.get("capacity") or 0
            utilization = round(count / capacity * 100, 1) if capacity > 0 else 0.0
            enriched.append({**machine, "current_batch_count": count, "utilization": utilization})
        return {"message": f"Found {len(enriched)} machines", "machines": enriched}

    async def _qa_alerts(input_data: QAAlertsInput) -> dict[str, Any]:
        query = TableQuery("alerts").eq("status", "active").order("triggered_at", desc=True)
        if input_data.severity:
            query.eq("severity", input_data.severity)
        alerts = await _rows(query.limit(10))
        if not alerts:
            return {"message": "No active alerts found", "alerts": []}
        batches = await _index("batches", {str(a["batch_id"]) for a in alerts if a.get("batch_id")})
        machines = await _index(
            "machines", {str(a["machine_id"]) for a in alerts if a.get("machine_id")}
        )
        return {
            "message": f"Found {len(alerts)} active alerts",
            "alerts": [
                {
                    **alert,
                    "batch_number": batches.get(str(alert.get("batch_id")), {}).get("batch_number"),
                    "machine_number": machines.get(str(alert.get("machine_id")), {}).get(
                        "machine_number"
                    ),
                }
                for alert in alerts
            ],
        }

    async def _recent_activity(input_data: RecentActivityInput) -> dict[str, Any]:
        end = today()
        since = (end - timedelta(days=input_data.days)).isoformat()
        recent_batches, recent_alerts, recent_qa = await asyncio.gather(
            _rows(
                TableQuery("batches", "id, batch_number, status, created_at")
                .gte("created_at", since)
                .order("created_at", desc=True)
                .limit(10)
            ),
            _rows(
                TableQuery("alerts", "id, alert_type, severity, status, triggered_at")
                .gte("triggered_at", since)
                .order("triggered_at", desc=True)
                .limit(10)
            ),
            _rows(
                TableQuery("qa_monitoring", "id, batch_id, check_date, temperature, humidity")
                .gte("created_at", since)
                .order("created_at", desc=True)
                .limit(10)
            ),
        )
        return {
            "message": f"Recent activity summary for the past {input_data.days} days",
            "period": f"{since} to {end.isoformat()}",
            "summary": {
                "new_batches": len(recent_batches),
                "alerts_triggered": len(recent_alerts),
                "qa_checks_performed": len(recent_qa),
            },
            "recent_batches": recent_batches,
            "recent_alerts": recent_alerts,
            "recent_qa_checks": recent_qa,
        }

    registry.register(
        ToolSpec(
            name="get_all_batches",
            description="Get all batches with basic information and status analytics.",
            args_schema=AllBatchesInput,
            handler=_all_batches,
            tags=["batches"],
        )
    )
    registry.register(
        ToolSpec(
            name="get_batches_by_date_range",
            description="Get batches set or created within the past N days.",
            args_schema=BatchesByDateRangeInput,
            handler=_batches_by_date_range,
            tags=["batches"],
        )
    )
    registry.register(
        ToolSpec(
            name="get_batch_info",
            description="Get detailed information about a specific batch including days remaining.",
            args_schema=BatchInfoInput,
            handler=_batch_info,
            tags=["batches"],
        )
    )
    registry.register(
        ToolSpec(
            name="get_fertility_rates",
            description=(
                "Get fertility analysis data. Set group_by to house, unit or batch to "
                "compare mean fertility, hatch and HOF percentages between groups."
            ),
            args_schema=FertilityRatesInput,
            handler=_fertility_rates,
            tags=["fertility", "analytics"],
        )
    )
    registry.register(
        ToolSpec(
            name="get_machine_status",
            description="Get current status of machines and their utilization.",
            args_schema=MachineStatusInput,
            handler=_machine_status,
            tags=["machines"],
        )
    )
    registry.register(
        ToolSpec(
            name="get_qa_alerts",
            description="Get active QA monitoring alerts and issues.",
            args_schema=QAAlertsInput,
            handler=_qa_alerts,
            tags=["qa"],
        )
    )
    registry.register(
        ToolSpec(
            name="get_recent_activity",
            description="Get a recent activity summary across batches, alerts and QA checks.",
            args_schema=RecentActivityInput,
            handler=_recent_activity,
            tags=["activity"],
        )
    )
