"""Identifier remapping for restore.

Snapshot identifiers only mean something inside their document.  Before
anything is written, ``build_mapping()`` assigns every snapshot id a
target id (fresh, or pinned to an existing target row via ``reuse``).
Foreign keys are rewritten afterwards, record by record, through
``IdentifierMap.remap_record()``, so references between animals resolve
no matter which animal is written first.

Usage:
    from ranch_snapshot.restore.remapper import build_mapping, ancestry_order

    mapping = build_mapping(snapshot, "overwrite", existing={"animals": ids})
    for animal in ancestry_order(snapshot.animals):
        row = mapping.remap_record("animals", animal)
"""

import uuid
from collections.abc import Callable, Iterable, Sequence
from typing import Any, Literal, TypeVar

from pydantic import BaseModel

from ranch_snapshot.schema import RANCH_SCHEMA, BackupSchema
from ranch_snapshot.snapshot.models import Snapshot

RestoreMode = Literal["new_ranch", "overwrite"]
RESTORE_MODES: tuple[str, ...] = ("new_ranch", "overwrite")

T = TypeVar("T")


def new_id() -> str:
    return str(uuid.uuid4())


class IdentifierMap:
    """Old (snapshot) id to new (target) id, per collection.

    Attributes:
        mode: Restore mode the map was built for.
        reused: Per collection, the old ids pinned to existing target rows.
        scheduled_deletions: Per collection, target ids to remove before
            writing (``overwrite`` only).
    """

    def __init__(self, mode: RestoreMode, schema: BackupSchema = RANCH_SCHEMA) -> None:
        self.mode = mode
        self.schema = schema
        self._maps: dict[str, dict[str, str]] = {
            t.collection: {} for t in schema.tables if t.pk is not None
        }
        self.reused: dict[str, set[str]] = {name: set() for name in self._maps}
        self.scheduled_deletions: dict[str, list[str]] = {}

    def assign(self, collection: str, old_id: str, new: str, reused: bool = False) -> None:
        self._maps[collection][old_id] = new
        if reused:
            self.reused[collection].add(old_id)

    def get(self, collection: str, old_id: str) -> str:
        """Target id for ``old_id``.

        Raises:
            KeyError: If ``old_id`` was never allocated.
        """
        return self._maps[collection][old_id]

    def is_reused(self, collection: str, old_id: str) -> bool:
        return old_id in self.reused[collection]

    def collection_map(self, collection: str) -> dict[str, str]:
        return dict(self._maps[collection])

    def target_ids(self, collection: str) -> set[str]:
        return set(self._maps[collection].values())

    def remap_record(self, collection: str, record: BaseModel | dict) -> dict:
        """Copy of ``record`` with its id and every foreign key rewritten.

        Raises:
            KeyError: If the record or one of its references was not
                allocated (the snapshot was not validated).
        """
        table_def = self.schema.table(collection)
        row: dict[str, Any] = (
            record.model_dump(mode="json") if isinstance(record, BaseModel) else dict(record)
        )
        if table_def.pk is not None:
            row[table_def.pk] = self.get(collection, row[table_def.pk])
        for ref in table_def.refs:
            old = row.get(ref.field)
            if old is not None:
                row[ref.field] = self.get(ref.collection, old)
        return row


def build_mapping(
    snapshot: Snapshot,
    mode: RestoreMode,
    *,
    existing: dict[str, Iterable[str]] | None = None,
    reuse: dict[str, dict[str, str]] | None = None,
    id_factory: Callable[[], str] | None = None,
) -> IdentifierMap:
    """Allocate target ids for every record of ``snapshot``.

    Args:
        snapshot: Validated snapshot.
        mode: ``"new_ranch"`` or ``"overwrite"``.
        existing: Per collection, ids currently stored in the target.  In
            ``overwrite`` mode every one of them that the mapping does not
            reuse is scheduled for deletion.
        reuse: Per collection, ``{old_id: existing_target_id}`` pins.
        id_factory: Fresh id generator (default: UUID4 strings).

    Returns:
        Populated ``IdentifierMap``.

    Raises:
        ValueError: If ``mode`` is unknown.
    """
    if mode not in RESTORE_MODES:
        raise ValueError(f"Unknown restore mode '{mode}' (expected one of {RESTORE_MODES})")

    id_factory = id_factory or new_id
    reuse = reuse or {}
    mapping = IdentifierMap(mode)

    # Animals first: every parent id must exist before any record is remapped.
    order = ["animals"] + [
        t.collection for t in RANCH_SCHEMA.tables
        if t.pk is not None and t.collection != "animals"
    ]
    for collection in order:
        pins = reuse.get(collection, {})
        for record in snapshot.collection(collection):
            if record.id in pins:
                mapping.assign(collection, record.id, pins[record.id], reused=True)
            else:
                mapping.assign(collection, record.id, id_factory())

    if mode == "overwrite":
        for collection, ids in (existing or {}).items():
            keep = mapping.target_ids(collection) if collection in mapping.reused else set()
            doomed = [i for i in ids if i not in keep]
            if doomed:
                mapping.scheduled_deletions[collection] = doomed

    return mapping


def ancestry_order(
    animals: Sequence[T],
    key: Callable[[T], str] = lambda a: a.id,
    parents: Callable[[T], Iterable[str | None]] = lambda a: (a.mother_id, a.father_id),
) -> list[T]:
    """Animals ordered so each parent precedes its offspring.

    Input order is kept wherever ancestry allows it.  Parents outside
    ``animals`` are ignored.
    """
    by_id = {key(a): a for a in animals}
    placed: set[str] = set()
    ordered: list[T] = []

    for animal in animals:
        chain = [animal]
        while chain:
            top = chain[-1]
            chain_ids = {key(a) for a in chain}
            pending = [
                p for p in parents(top)
                if p is not None and p in by_id and p not in placed and p not in chain_ids
            ]
            if pending:
                chain.append(by_id[pending[0]])
                continue
            chain.pop()
            if key(top) not in placed:
                placed.add(key(top))
                ordered.append(top)
    return ordered
