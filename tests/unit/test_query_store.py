from types import SimpleNamespace

import pytest

from hatchery_chat.store.query import Filter, InMemoryQueryClient, TableQuery
from hatchery_chat.store.supabase_client import SupabaseQueryClient

ROWS = [
    {"id": "b1", "batch_number": "B-001", "status": "incubating", "set_date": "2026-09-28"},
    {"id": "b2", "batch_number": "B-002", "status": "hatching", "set_date": "2026-09-20"},
    {"id": "b3", "batch_number": "B-003", "status": "completed", "set_date": None},
]


class RecordingBuilder:
    def __init__(self) -> None:
        self.calls = []

    def table(self, name):
        self.calls.append(("table", name))
        return self

    def __getattr__(self, name):
        def _record(*args, **kwargs):
            self.calls.append((name, *args, *sorted(kwargs.items())))
            return self

        return _record

    async def execute(self):
        return SimpleNamespace(data=[{"id": "b1"}])


@pytest.mark.asyncio
async def test_in_memory_filters_order_and_limit() -> None:
    client = InMemoryQueryClient({"batches": ROWS})

    recent = await client.execute(
        TableQuery("batches", "id, status").gte("set_date", "2026-09-21").order("set_date")
    )
    by_number = await client.execute(TableQuery("batches").ilike("batch_number", "%b-00%").limit(2))
    picked = await client.execute(TableQuery("batches").in_("id", ["b2", "b3"]).order("set_date"))

    assert recent.data == [{"id": "b1", "status": "incubating"}]
    assert [row["id"] for row in by_number.data] == ["b1", "b2"]
    assert [row["id"] for row in picked.data] == ["b2", "b3"]


@pytest.mark.asyncio
async def test_in_memory_rejects_unknown_operator_and_table() -> None:
    client = InMemoryQueryClient({"batches": ROWS})
    query = TableQuery("batches")
    query.filters.append(Filter("set_date", "lt", "2026-10-01"))

    missing = await client.execute(TableQuery("hatch_logs"))

    assert missing.error == 'relation "hatch_logs" does not exist'
    with pytest.raises(ValueError, match="Unsupported filter operator: lt"):
        await client.execute(query)


@pytest.mark.asyncio
async def test_supabase_client_translates_every_builder_operator() -> None:
    builder = RecordingBuilder()
    client = SupabaseQueryClient(builder)
    query = (
        TableQuery("batches", "id")
        .eq("status", "hatching")
        .in_("id", ["b1", "b2"])
        .gte("set_date", "2026-09-01")
        .ilike("batch_number", "%B-0%")
        .order("set_date", desc=False)
        .limit(5)
    )

    result = await client.execute(query)

    assert result.data == [{"id": "b1"}]
    assert builder.calls == [
        ("table", "batches"),
        ("select", "id"),
        ("eq", "status", "hatching"),
        ("in_", "id", ["b1", "b2"]),
        ("gte", "set_date", "2026-09-01"),
        ("ilike", "batch_number", "%B-0%"),
        ("order", "set_date", ("desc", False)),
        ("limit", 5),
    ]
