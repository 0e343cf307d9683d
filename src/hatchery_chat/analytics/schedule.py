"""Hatch-date classification shared by the batch tools and batch charts."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal

HatchWindow = Literal["upcoming", "overdue"]


def parse_date(value: Any) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        try:
            return date.fromisoformat(text[:10])
        except ValueError:
            return None


def hatch_window(
    batch: dict[str, Any], *, today: date, window_days: int = 7
) -> HatchWindow | None:
    """Classify a batch by expected hatch date.

    Completed batches are never upcoming or overdue. A batch is upcoming when
    its expected hatch falls within [0, window_days] days and overdue when it
    is already in the past.
    """
    if batch.get("status") == "completed":
        return None
    expected = parse_date(batch.get("expected_hatch_date"))
    if expected is None:
        return None
    days_until = (expected - today).days
    if days_until < 0:
        return "overdue"
    if days_until <= window_days:
        return "upcoming"
    return None


def summarize_batches(
    batches: list[dict[str, Any]], *, today: date, upcoming_window_days: int = 7
) -> dict[str, Any]:
    """Aggregate analytics over a full (unsliced) batch set."""
    status_counts: dict[str, int] = {}
    windows = {"upcoming": 0, "overdue": 0}
    rates: list[float] = []
    for batch in batches:
        status = str(batch.get("status") or "unknown")
        status_counts[status] = status_counts.get(status, 0) + 1
        if batch.get("hatch_rate") is not None:
            rates.append(float(batch["hatch_rate"]))
        window = hatch_window(batch, today=today, window_days=upcoming_window_days)
        if window is not None:
            windows[window] += 1

    return {
        "total_batches": len(batches),
        "total_eggs_set": sum(int(b.get("total_eggs_set") or 0) for b in batches),
        "total_chicks_hatched": sum(int(b.get("chicks_hatched") or 0) for b in batches),
        "average_hatch_rate": round(sum(rates) / len(rates), 1) if rates else 0.0,
        "status_counts": status_counts,
        "upcoming_count": windows["upcoming"],
        "overdue_count": windows["overdue"],
    }
