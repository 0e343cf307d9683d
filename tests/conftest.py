from datetime import date

import pytest

from hatchery_chat.store.query import InMemoryQueryClient

TODAY = date(2026, 10, 17)


def _hatchery_tables() -> dict[str, list[dict[str, object]]]:
    return {
        "flocks": [
            {"id": "f1", "flock_name": "Ross North", "breed": "Ross 308", "age_weeks": 38, "house_number": "1"},
            {"id": "f2", "flock_name": "Cobb South", "breed": "Cobb 500", "age_weeks": 42, "house_number": "2"},
        ],
        "units": [
            {"id": "u1", "name": "Unit A"},
            {"id": "u2", "name": "Unit B"},
        ],
        "machines": [
            {"id": "m1", "machine_number": "S-01", "machine_type": "setter", "capacity": 4, "status": "active"},
            {"id": "m2", "machine_number": "H-01", "machine_type": "hatcher", "capacity": 0, "status": "maintenance"},
        ],
        "batches": [
            {
                "id": "b1", "batch_number": "B-001", "flock_id": "f1", "unit_id": "u1", "machine_id": "m1",
                "status": "incubating", "set_date": "2026-09-28", "expected_hatch_date": "2026-10-19",
                "total_eggs_set": 1000, "chicks_hatched": None, "created_at": "2026-09-28T08:00:00",
            },
            {
                "id": "b2", "batch_number": "B-002", "flock_id": "f2", "unit_id": "u2", "machine_id": "m1",
                "status": "hatching", "set_date": "2026-09-20", "expected_hatch_date": "2026-10-11",
                "total_eggs_set": 800, "chicks_hatched": None, "created_at": "2026-09-20T08:00:00",
            },
            {
                "id": "b3", "batch_number": "B-003", "flock_id": "f1", "unit_id": "u1", "machine_id": "m2",
                "status": "completed", "set_date": "2026-08-01", "expected_hatch_date": "2026-08-22",
                "total_eggs_set": 1200, "chicks_hatched": 1020, "created_at": "2026-08-01T08:00:00",
            },
            {
                "id": "b4", "batch_number": "B-004", "flock_id": "f2", "unit_id": "u2", "machine_id": "m1",
                "status": "planned", "set_date": "2026-10-30", "expected_hatch_date": "2026-11-20",
                "total_eggs_set": 500, "chicks_hatched": None, "created_at": "2026-10-15T08:00:00",
            },
        ],
        "fertility_analysis": [
            {
                "id": "fa1", "batch_id": "b1", "analysis_date": "2026-10-10", "sample_size": 200,
                "fertile_eggs": 184, "infertile_eggs": 16,
                "fertility_percent": 92.0, "hatch_percent": 85.0, "hof_percent": 92.39,
            },
            {
                "id": "fa2", "batch_id": "b2", "analysis_date": "2026-10-05", "sample_size": 200,
                "fertile_eggs": 156, "infertile_eggs": 44,
                "fertility_percent": 78.0, "hatch_percent": 70.0, "hof_percent": 89.74,
            },
            {
                "id": "fa3", "batch_id": "b3", "analysis_date": "2026-08-20", "sample_size": 200,
                "fertile_eggs": 176, "infertile_eggs": 24,
                "fertility_percent": 88.0, "hatch_percent": 84.0, "hof_percent": 95.45,
            },
        ],
        "alerts": [
            {
                "id": "a1", "alert_type": "temperature", "severity": "warning", "status": "active",
                "batch_id": "b1", "machine_id": "m1", "message": "Setter S-01 above 38.2C",
                "triggered_at": "2026-10-16T06:30:00",
            },
            {
                "id": "a2", "alert_type": "humidity", "severity": "info", "status": "resolved",
                "batch_id": "b2", "machine_id": "m1", "message": "Humidity dip",
                "triggered_at": "2026-09-01T06:30:00",
            },
        ],
        "qa_monitoring": [
            {
                "id": "q1", "batch_id": "b1", "check_date": "2026-10-16", "temperature": 37.8,
                "humidity": 55.0, "created_at": "2026-10-16T07:00:00",
            },
        ],
    }


@pytest.fixture
def hatchery_tables() -> dict[str, list[dict[str, object]]]:
    return _hatchery_tables()


@pytest.fixture
def hatchery_store(hatchery_tables) -> InMemoryQueryClient:
    return InMemoryQueryClient(hatchery_tables)


@pytest.fixture
def houseless_store(hatchery_tables) -> InMemoryQueryClient:
    """Flocks without house numbers, so house grouping cannot resolve labels."""
    for flock in hatchery_tables["flocks"]:
        flock["house_number"] = None
    return InMemoryQueryClient(hatchery_tables)
