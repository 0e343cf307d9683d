"""Supabase (PostgREST) adapter for the query contract."""

from __future__ import annotations

import logging

import httpx
from postgrest.exceptions import APIError
from supabase import AsyncClient, acreate_client

from hatchery_chat.config import Settings
from hatchery_chat.errors import ConfigurationError
from hatchery_chat.store.query import QueryResult, TableQuery

logger = logging.getLogger(__name__)

_FILTER_METHODS = {
    "eq": "eq",
    "in": "in_",
    "gte": "gte",
    "ilike": "ilike",
}


class SupabaseQueryClient:
    """Runs `TableQuery` objects through an async Supabase client."""

    def __init__(self, client: AsyncClient) -> None:
        self._client = client

    @classmethod
    async def from_settings(cls, settings: Settings) -> "SupabaseQueryClient":
        if not settings.supabase_url or not settings.supabase_key:
            raise ConfigurationError(
                "SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be configured",
                "The hatchery database connection is not configured. "
                "Please set the Supabase URL and service key.",
            )
        client = await acreate_client(settings.supabase_url, settings.supabase_key)
        return cls(client)

    async def execute(self, query: TableQuery) -> QueryResult:
        builder = self._client.table(query.table).select(query.columns)
        for flt in query.filters:
            builder = getattr(builder, _FILTER_METHODS[flt.op])(flt.column, flt.value)
        if query.order_by is not None:
            builder = builder.order(query.order_by, desc=query.descending)
        if query.row_limit is not None:
            builder = builder.limit(query.row_limit)

        try:
            response = await builder.execute()
        except APIError as exc:
            logger.warning("Query on %s failed: %s", query.table, exc.message)
            return QueryResult(error=exc.message or str(exc))
        except httpx.HTTPError as exc:
            logger.warning("Query on %s failed in transport: %s", query.table, exc)
            return QueryResult(error=str(exc))
        return QueryResult(data=list(response.data or []))
