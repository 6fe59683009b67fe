"""Async Supabase entity store adapter.

Provides ``AsyncSupabaseAdapter``, an async implementation of the
``DatabaseClient`` protocol using the supabase-py async client.

PostgREST executes every request in its own transaction, so this adapter
reports ``supports_transactions = False``.  Restores and animal admissions
against Supabase run under compensating rollback instead.

Usage:
    from ranch_snapshot.adapters.supabase import AsyncSupabaseAdapter

    adapter = AsyncSupabaseAdapter(
        url="https://xyzproject.supabase.co",
        key="eyJ...",
    )

    rows = await adapter.select("animals", "id, tag_number", {"ranch_id": rid})
    await adapter.close()
"""

import asyncio
from typing import Any

from supabase import AsyncClient, acreate_client

from ranch_snapshot.adapters.base import RowNotFoundError


class AsyncSupabaseAdapter:
    """Async Supabase implementation of the ``DatabaseClient`` protocol.

    The client is initialized lazily on first CRUD call using
    ``acreate_client`` protected by an ``asyncio.Lock``.

    Args:
        url: Supabase project URL.
        key: Supabase API key (service key for restores).
    """

    supports_transactions = False

    def __init__(self, url: str, key: str) -> None:
        self._url: str = url
        self._key: str = key
        self._client: AsyncClient | None = None
        self._lock: asyncio.Lock = asyncio.Lock()

    async def _get_client(self) -> AsyncClient:
        """Get or create the async Supabase client exactly once."""
        if self._client is None:
            async with self._lock:
                # Double-check after acquiring lock
                if self._client is None:
                    self._client = await acreate_client(self._url, self._key)
        return self._client

    @staticmethod
    def _apply_filters(query: Any, filters: dict[str, Any] | None) -> Any:
        for key, value in (filters or {}).items():
            if value is None:
                query = query.is_(key, "null")
            else:
                query = query.eq(key, value)
        return query

    # ------------------------------------------------------------------
    # Entity store operations
    # ------------------------------------------------------------------

    async def select(
        self,
        table: str,
        columns: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
    ) -> list[dict]:
        client = await self._get_client()
        query = self._apply_filters(client.table(table).select(columns), filters)
        if order_by:
            query = query.order(order_by)
        return (await query.execute()).data

    async def insert(self, table: str, data: dict) -> dict:
        """Insert one row; keys starting with ``_`` are never sent."""
        client = await self._get_client()
        row = {k: v for k, v in data.items() if not k.startswith("_")}
        response = await client.table(table).insert(row).execute()
        return response.data[0]

    async def update(self, table: str, data: dict, filters: dict[str, Any]) -> dict:
        """Update matching rows.

        PostgREST returns the changed rows, so an empty response means the
        filters matched nothing (for a counter update, a lost CAS race).

        Raises:
            RowNotFoundError: If no rows matched.
        """
        client = await self._get_client()
        query = self._apply_filters(client.table(table).update(data), filters)
        response = await query.execute()
        if not response.data:
            raise RowNotFoundError(table, filters)
        return response.data[0]

    async def delete(self, table: str, filters: dict[str, Any]) -> None:
        client = await self._get_client()
        await self._apply_filters(client.table(table).delete(), filters).execute()

    async def execute(self, sql: str, params: dict | None = None) -> None:
        raise NotImplementedError("PostgREST cannot run raw SQL; use a postgres profile")

    def transaction(self):
        raise NotImplementedError("PostgREST cannot group statements into a transaction")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
