"""Entity store protocol definition.

Defines the ``DatabaseClient`` Protocol that every entity store adapter
implements.  All data methods are ``async def`` -- the engine is
async-first.

Usage:
    from ranch_snapshot.adapters.base import DatabaseClient

    async def do_work(client: DatabaseClient) -> None:
        rows = await client.select("animals", "id, tag_number", {"ranch_id": rid})
        await client.insert("animals", {"id": new_id, "ranch_id": rid})
        if client.supports_transactions:
            async with client.transaction() as tx:
                await tx.update("ranches", {"name": "North"}, {"id": rid})
        await client.close()
"""

from contextlib import AbstractAsyncContextManager
from typing import Any, Protocol


class RowNotFoundError(ValueError):
    """Raised by ``update()`` when no row matches the filters.

    Compare-and-set callers rely on this to detect that a guarded row
    changed underneath them.
    """

    def __init__(self, table: str, filters: dict[str, Any]) -> None:
        super().__init__(f"No rows in '{table}' matched filters: {filters}")
        self.table = table
        self.filters = filters


class DatabaseClient(Protocol):
    """Entity store interface that all adapters must implement.

    Filters are equality matches combined with AND.  A filter value of
    ``None`` matches SQL ``NULL``.

    ``supports_transactions`` tells callers whether ``transaction()`` can
    group several writes into one atomic unit.  Adapters that report
    ``False`` raise ``NotImplementedError`` from ``transaction()``;
    callers then fall back to compensating rollback
    (see ``ranch_snapshot.unit_of_work``).
    """

    supports_transactions: bool

    async def select(
        self,
        table: str,
        columns: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
    ) -> list[dict]:
        """Select rows from table.

        Args:
            table: Table name.
            columns: Comma-separated column names, or ``"*"``.
            filters: Optional dict of field=value filters (all must match).
            order_by: Optional column name to sort by (ascending).

        Returns:
            List of dicts, one per row.  Empty list if no matches.
        """
        ...

    async def insert(self, table: str, data: dict) -> dict:
        """Insert row into table and return the created row.

        Raises:
            Exception: If duplicate key or constraint violation.
        """
        ...

    async def update(self, table: str, data: dict, filters: dict[str, Any]) -> dict:
        """Update matching rows and return the first updated row.

        Raises:
            RowNotFoundError: If no rows match filters.
        """
        ...

    async def delete(self, table: str, filters: dict[str, Any]) -> None:
        """Delete rows matching filters."""
        ...

    async def execute(self, sql: str, params: dict | None = None) -> None:
        """Execute a raw SQL statement (DDL).

        Raises:
            NotImplementedError: If the adapter does not support raw SQL.
        """
        ...

    def transaction(self) -> AbstractAsyncContextManager["DatabaseClient"]:
        """Open a transaction and yield a client bound to it.

        Commits when the block exits normally, rolls back on any exception
        (including ``asyncio.CancelledError``).

        Raises:
            NotImplementedError: If ``supports_transactions`` is ``False``.
        """
        ...

    async def close(self) -> None:
        """Close connections and clean up resources."""
        ...
