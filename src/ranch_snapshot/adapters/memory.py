"""In-process entity store.

``MemoryDatabase`` keeps tables as ordered lists of dicts.  It implements
the ``DatabaseClient`` protocol without multi-statement transactions, the
same capability profile as the Supabase adapter, which makes it the store
the test-suite runs against.

Every operation yields to the event loop once before touching the tables
and is atomic afterwards, so concurrent tasks interleave between
statements the way independent database sessions do.
"""

import asyncio
import copy
from typing import Any

from ranch_snapshot.adapters.base import RowNotFoundError


class MemoryDatabase:
    """Dict-backed ``DatabaseClient``.

    Args:
        tables: Optional initial contents, ``{table: [row, ...]}``.  Rows
            are deep-copied.
        unique_keys: Optional per-table column tuples that must be unique
            (``id`` is always unique when present).
    """

    supports_transactions = False

    def __init__(
        self,
        tables: dict[str, list[dict]] | None = None,
        unique_keys: dict[str, list[tuple[str, ...]]] | None = None,
    ) -> None:
        self._tables: dict[str, list[dict]] = {
            name: [copy.deepcopy(r) for r in rows] for name, rows in (tables or {}).items()
        }
        self._unique_keys = unique_keys or {}

    @staticmethod
    def _matches(row: dict, filters: dict[str, Any] | None) -> bool:
        return all(row.get(k) == v for k, v in (filters or {}).items())

    @staticmethod
    def _project(row: dict, columns: str) -> dict:
        if columns.strip() == "*":
            return copy.deepcopy(row)
        names = [c.strip() for c in columns.split(",") if c.strip()]
        return {name: copy.deepcopy(row.get(name)) for name in names}

    def _check_unique(self, table: str, row: dict, ignore: dict | None = None) -> None:
        keys = [("id",)] + list(self._unique_keys.get(table, []))
        for key in keys:
            if any(row.get(col) is None for col in key):
                continue
            for other in self._tables.get(table, []):
                if other is ignore:
                    continue
                if all(other.get(col) == row.get(col) for col in key):
                    raise ValueError(
                        f"duplicate key value violates unique constraint "
                        f"on {table}({', '.join(key)})"
                    )

    # ------------------------------------------------------------------
    # CRUD Methods
    # ------------------------------------------------------------------

    async def select(
        self,
        table: str,
        columns: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
    ) -> list[dict]:
        await asyncio.sleep(0)
        rows = [r for r in self._tables.get(table, []) if self._matches(r, filters)]
        if order_by:
            values = [r.get(order_by) for r in rows]
            if all(v is not None for v in values):
                try:
                    rows = sorted(rows, key=lambda r: r[order_by])
                except TypeError:
                    pass  # mixed types keep insertion order
        return [self._project(r, columns) for r in rows]

    async def insert(self, table: str, data: dict) -> dict:
        await asyncio.sleep(0)
        row = {k: copy.deepcopy(v) for k, v in data.items() if not k.startswith("_")}
        self._check_unique(table, row)
        self._tables.setdefault(table, []).append(row)
        return copy.deepcopy(row)

    async def update(self, table: str, data: dict, filters: dict[str, Any]) -> dict:
        await asyncio.sleep(0)
        matched = [r for r in self._tables.get(table, []) if self._matches(r, filters)]
        if not matched:
            raise RowNotFoundError(table, filters)
        for row in matched:
            candidate = {**row, **copy.deepcopy(data)}
            self._check_unique(table, candidate, ignore=row)
            row.update(copy.deepcopy(data))
        return copy.deepcopy(matched[0])

    async def delete(self, table: str, filters: dict[str, Any]) -> None:
        await asyncio.sleep(0)
        rows = self._tables.get(table, [])
        self._tables[table] = [r for r in rows if not self._matches(r, filters)]

    async def execute(self, sql: str, params: dict | None = None) -> None:
        raise NotImplementedError("Raw SQL not supported for this adapter type")

    def transaction(self):
        raise NotImplementedError("Transactions not supported for this adapter type")

    async def close(self) -> None:
        """Nothing to release."""

    # ------------------------------------------------------------------
    # Inspection helpers
    # ------------------------------------------------------------------

    def dump(self) -> dict[str, list[dict]]:
        """Deep copy of every table, for before/after comparisons."""
        return {name: copy.deepcopy(rows) for name, rows in self._tables.items() if rows}
