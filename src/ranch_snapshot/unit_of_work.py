"""Atomic units of work over an entity store.

A multi-write operation (a restore, an animal admission) runs inside one
``UnitOfWork``.  Either every write lands or none does:

- ``TransactionalUnit``: stores with real transactions (PostgreSQL).
  ``client`` and ``direct`` are the same transaction-bound client; the
  database rolls everything back on error.
- ``CompensatingUnit``: stores without multi-statement atomicity
  (Supabase, in-memory).  Every write made through ``client`` is
  journaled and undone in reverse order on error.  Writes made through
  ``direct`` are not journaled; callers register an explicit
  ``compensate()`` action for them instead (the license counter, whose
  undo must be a relative release rather than a blind overwrite).

Exiting a unit because of an exception, a timeout or task cancellation
takes the same rollback path.  The exception is never suppressed.

Usage:
    from ranch_snapshot.unit_of_work import open_unit

    async with open_unit(store) as uow:
        await uow.client.insert("animals", row)
        controller = LicenseAdmissionController(uow.direct)
        result = await controller.try_reserve(rid)
        uow.compensate(lambda: controller.release(rid), "release 1 slot")
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

from ranch_snapshot.adapters.base import DatabaseClient

logger = logging.getLogger(__name__)

UndoAction = Callable[[], Awaitable[Any]]


class UnitOfWork(ABC):
    """Abstract unit of work: one atomic group of writes."""

    client: DatabaseClient
    direct: DatabaseClient

    def __init__(self) -> None:
        self.rolled_back = False
        self.rollback_errors: list[str] = []

    @abstractmethod
    async def __aenter__(self) -> "UnitOfWork":
        pass

    @abstractmethod
    async def __aexit__(self, exc_type, exc, tb) -> bool:
        pass

    @abstractmethod
    def compensate(self, action: UndoAction, description: str) -> None:
        """Register an undo action for a write made through ``direct``."""


class TransactionalUnit(UnitOfWork):
    """Unit backed by a database transaction."""

    def __init__(self, store: DatabaseClient) -> None:
        super().__init__()
        self._store = store
        self._cm = None

    async def __aenter__(self) -> "TransactionalUnit":
        self._cm = self._store.transaction()
        tx = await self._cm.__aenter__()
        self.client = tx
        self.direct = tx
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        await self._cm.__aexit__(exc_type, exc, tb)
        if exc_type is not None:
            self.rolled_back = True
            logger.info("Transaction rolled back after %s", exc_type.__name__)
        return False

    def compensate(self, action: UndoAction, description: str) -> None:
        # Writes through ``direct`` are inside the transaction already.
        pass


class CompensatingUnit(UnitOfWork):
    """Unit that undoes its own writes when it exits with an error."""

    def __init__(self, store: DatabaseClient) -> None:
        super().__init__()
        self._store = store
        self._journal: list[tuple[str, UndoAction]] = []
        self.client = _JournalingClient(store, self)
        self.direct = store

    async def __aenter__(self) -> "CompensatingUnit":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if exc_type is None:
            self._journal.clear()
            return False
        logger.warning(
            "Undoing %d write(s) after %s", len(self._journal), exc_type.__name__
        )
        await self.rollback()
        return False

    def compensate(self, action: UndoAction, description: str) -> None:
        self._journal.append((description, action))

    @property
    def pending(self) -> int:
        """Number of journaled undo actions."""
        return len(self._journal)

    async def rollback(self) -> None:
        """Run every undo action, newest first.

        A failing undo action does not stop the others; its message is
        kept in ``rollback_errors`` and ``rolled_back`` stays ``False``.
        """
        errors: list[str] = []
        while self._journal:
            description, action = self._journal.pop()
            try:
                await action()
            except Exception as e:
                logger.error("Rollback step failed (%s): %s", description, e)
                errors.append(f"{description}: {e}")
        self.rollback_errors = errors
        self.rolled_back = not errors


class _JournalingClient:
    """``DatabaseClient`` proxy that journals an undo for every write."""

    supports_transactions = False

    def __init__(self, store: DatabaseClient, unit: CompensatingUnit) -> None:
        self._store = store
        self._unit = unit

    async def select(
        self,
        table: str,
        columns: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
    ) -> list[dict]:
        return await self._store.select(table, columns, filters=filters, order_by=order_by)

    async def insert(self, table: str, data: dict) -> dict:
        row = await self._store.insert(table, data)
        key = {"id": row["id"]} if row.get("id") is not None else dict(data)

        async def undo() -> None:
            await self._store.delete(table, key)

        self._unit.compensate(undo, f"delete {table} {key}")
        return row

    async def update(self, table: str, data: dict, filters: dict[str, Any]) -> dict:
        before = await self._store.select(table, "*", filters=filters)
        result = await self._store.update(table, data, filters)

        async def undo() -> None:
            for row in before:
                restore = {k: row.get(k) for k in data}
                key = {"id": row["id"]} if row.get("id") is not None else filters
                await self._store.update(table, restore, key)

        self._unit.compensate(undo, f"restore {len(before)} {table} row(s)")
        return result

    async def delete(self, table: str, filters: dict[str, Any]) -> None:
        before = await self._store.select(table, "*", filters=filters)
        await self._store.delete(table, filters)
        if not before:
            return

        async def undo() -> None:
            for row in before:
                await self._store.insert(table, row)

        self._unit.compensate(undo, f"re-insert {len(before)} {table} row(s)")

    async def execute(self, sql: str, params: dict | None = None) -> None:
        raise NotImplementedError("Raw SQL cannot be compensated")

    def transaction(self):
        raise NotImplementedError("Transactions not supported for this adapter type")

    async def close(self) -> None:
        """The unit does not own the store."""


def open_unit(store: DatabaseClient) -> UnitOfWork:
    """Pick the strongest unit of work ``store`` supports."""
    if getattr(store, "supports_transactions", False):
        return TransactionalUnit(store)
    return CompensatingUnit(store)
