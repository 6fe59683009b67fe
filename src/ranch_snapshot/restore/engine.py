"""Restore a snapshot into a target ranch.

``restore_snapshot()`` is all-or-nothing.  It validates the document
again (it never trusts a caller's earlier check), plans every identifier
and deletion up front, checks capacity before the first write, then
writes everything inside one ``UnitOfWork``:

1. ranch settings (and, in ``new_ranch`` mode, the ranch name)
2. deletions scheduled by ``overwrite`` mode, children first
3. custom field definitions not matched by name on the target
4. animals, parents before offspring
5. medical history, injections, photos, custom field values

The active-animal counter moves only through the admission controller.
The net change is the snapshot's active animals minus the active animals
the deletions actually claimed, so a concurrent deactivation is never
counted twice.  A net increase is reserved before the first insert and a
net decrease is released after the last one.

Usage:
    from ranch_snapshot.restore import restore_snapshot

    report = await restore_snapshot(
        adapter,
        read_snapshot("backups/north.json"),
        target_ranch_id=ranch_id,
        mode="overwrite",
        timeout=30,
    )
    print(report.format_report())
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, Field

from ranch_snapshot.adapters.base import DatabaseClient, RowNotFoundError
from ranch_snapshot.collaborators import BlobStore, Clock, SystemClock
from ranch_snapshot.errors import (
    CapacityExceeded,
    FormatUnsupported,
    RanchSnapshotError,
    StorageFailure,
    ValidationFailed,
)
from ranch_snapshot.graph import fetch_ranch_row
from ranch_snapshot.license.admission import LicenseAdmissionController
from ranch_snapshot.models import Animal
from ranch_snapshot.restore.remapper import (
    RESTORE_MODES,
    IdentifierMap,
    RestoreMode,
    ancestry_order,
    build_mapping,
    new_id,
)
from ranch_snapshot.schema import RANCH_SCHEMA
from ranch_snapshot.snapshot.models import (
    SUPPORTED_FORMAT_VERSION,
    Snapshot,
    ValidationIssue,
    ValidationResult,
)
from ranch_snapshot.snapshot.validator import validate_snapshot
from ranch_snapshot.unit_of_work import UnitOfWork, open_unit

logger = logging.getLogger(__name__)


class RestoreReport(BaseModel):
    """Result of a committed restore.

    Attributes:
        ranch_id: Target ranch.
        mode: ``new_ranch`` or ``overwrite``.
        inserted: Rows written per snapshot collection.
        deleted: Rows removed per snapshot collection (``overwrite``).
        definitions_reused: Custom field names matched to existing
            definitions on the target.
        definitions_created: Custom field names created on the target.
        active_animal_count: Counter value after the restore.
        capacity: Target ranch's ``max_animals``.
        warnings: Validator warnings plus anything noticed while writing.
        id_map: Per collection, snapshot id to target id.
    """

    ranch_id: str
    mode: str
    inserted: dict[str, int] = Field(default_factory=dict)
    deleted: dict[str, int] = Field(default_factory=dict)
    definitions_reused: list[str] = Field(default_factory=list)
    definitions_created: list[str] = Field(default_factory=list)
    active_animal_count: int = 0
    capacity: int = 0
    warnings: list[str] = Field(default_factory=list)
    id_map: dict[str, dict[str, str]] = Field(default_factory=dict)

    def format_report(self) -> str:
        """Format restore result as human-readable report."""
        lines = [f"Restored into ranch {self.ranch_id} ({self.mode})"]

        lines.append("\n  Inserted:")
        for collection, count in self.inserted.items():
            lines.append(f"    - {collection}: {count}")

        if any(self.deleted.values()):
            lines.append("\n  Deleted:")
            for collection, count in self.deleted.items():
                if count:
                    lines.append(f"    - {collection}: {count}")

        if self.definitions_reused:
            lines.append(
                f"\n  Custom fields merged by name: {', '.join(self.definitions_reused)}"
            )

        lines.append(f"\n  Active animals: {self.active_animal_count}/{self.capacity}")

        if self.warnings:
            lines.append(f"\n  Warnings ({len(self.warnings)}):")
            for warning in self.warnings:
                lines.append(f"    - {warning}")

        return "\n".join(lines)


# ============================================================================
# Planning
# ============================================================================


def _check_document(document: Any, clock: Clock) -> tuple[Snapshot, ValidationResult]:
    result = validate_snapshot(document, clock=clock)
    if result.format_unsupported:
        raise FormatUnsupported(result.format_version, SUPPORTED_FORMAT_VERSION)
    if not result.valid:
        raise ValidationFailed(result)
    return Snapshot.model_validate(document), result


async def _reconcile_definitions(
    client: DatabaseClient,
    snapshot: Snapshot,
    ranch_id: str,
    strict: bool,
    warnings: list[str],
) -> dict[str, str]:
    """Pin snapshot definitions to target definitions with the same name."""
    rows = await client.select(
        "custom_field_definitions", "id, name, type", filters={"ranch_id": ranch_id}
    )
    by_name = {row["name"]: row for row in rows}

    pins: dict[str, str] = {}
    collisions: list[ValidationIssue] = []
    for definition in snapshot.custom_field_definitions:
        match = by_name.get(definition.name)
        if match is None:
            continue
        if strict:
            collisions.append(
                ValidationIssue(
                    category="semantic",
                    message=f"Custom field {definition.name!r} already exists on the target ranch",
                    collection="custom_field_definitions",
                    record_id=definition.id,
                    field="name",
                )
            )
            continue
        pins[definition.id] = match["id"]
        if match.get("type") != definition.type.value:
            warnings.append(
                f"Custom field {definition.name!r} is {match.get('type')} on the target "
                f"but {definition.type.value} in the snapshot; keeping the target's type"
            )

    if collisions:
        raise ValidationFailed(ValidationResult(valid=False, errors=collisions))
    return pins


async def _existing_ids(client: DatabaseClient, ranch_id: str) -> dict[str, list[str]]:
    existing: dict[str, list[str]] = {}
    for table_def in RANCH_SCHEMA.tables:
        if table_def.collection == "custom_field_definitions":
            continue
        rows = await client.select(table_def.name, "id", filters={table_def.ranch_field: ranch_id})
        existing[table_def.collection] = [row["id"] for row in rows]
    return existing


async def _check_photos(blob_store: BlobStore, snapshot: Snapshot, warnings: list[str]) -> None:
    for photo in snapshot.photos:
        if not await blob_store.exists(photo.storage_locator):
            warnings.append(
                f"Photo {photo.id} of animal {photo.animal_id}: "
                f"content not found at {photo.storage_locator}"
            )


# ============================================================================
# Writing
# ============================================================================


async def _write_settings(
    client: DatabaseClient, snapshot: Snapshot, ranch_id: str, mode: RestoreMode
) -> None:
    if mode == "new_ranch":
        await client.update("ranches", {"name": snapshot.ranch.name}, {"id": ranch_id})

    settings = snapshot.ranch.settings.model_dump(mode="json")
    current = await client.select("ranch_settings", "ranch_id", filters={"ranch_id": ranch_id})
    if current:
        await client.update("ranch_settings", settings, {"ranch_id": ranch_id})
    else:
        await client.insert("ranch_settings", {**settings, "ranch_id": ranch_id})


async def _claim_active(client: DatabaseClient, ranch_id: str, animal_id: str) -> bool:
    """Flip an active animal to inactive; ``False`` if it already was."""
    try:
        await client.update(
            "animals",
            {"is_active": False},
            {"id": animal_id, "ranch_id": ranch_id, "is_active": True},
        )
    except RowNotFoundError:
        return False
    return True


async def _delete_scheduled(
    client: DatabaseClient, mapping: IdentifierMap, ranch_id: str
) -> tuple[dict[str, int], int]:
    """Delete the rows ``overwrite`` mode scheduled, children first.

    Each doomed animal is claimed with a conditional update before its
    delete.  An animal deactivated by another session in the meantime has
    released its own slot and is not claimed again.

    Returns:
        Per-collection delete counts and the number of active animals
        claimed.
    """
    deleted: dict[str, int] = {}
    claimed = 0
    scheduled = mapping.scheduled_deletions

    for table_def in RANCH_SCHEMA.deletion_order():
        ids = scheduled.get(table_def.collection, [])
        if table_def.collection == "animals" and ids:
            rows = await client.select("animals", "*", filters={"ranch_id": ranch_id})
            doomed = {*ids}
            animals = [Animal.model_validate(r) for r in rows if r["id"] in doomed]
            ids = [a.id for a in reversed(ancestry_order(animals))]
            for animal_id in ids:
                claimed += await _claim_active(client, ranch_id, animal_id)
        for record_id in ids:
            await client.delete(table_def.name, {"id": record_id, table_def.ranch_field: ranch_id})
        deleted[table_def.collection] = len(ids)
    return deleted, claimed


async def _write_records(
    client: DatabaseClient,
    snapshot: Snapshot,
    mapping: IdentifierMap,
    ranch_id: str,
    id_factory: Callable[[], str],
) -> dict[str, int]:
    inserted: dict[str, int] = {}
    for table_def in RANCH_SCHEMA.tables:
        collection = table_def.collection
        records = snapshot.collection(collection)
        if collection == "animals":
            records = ancestry_order(records)

        count = 0
        for record in records:
            if table_def.pk is not None and mapping.is_reused(collection, record.id):
                continue
            row = mapping.remap_record(collection, record)
            row[table_def.ranch_field] = ranch_id
            if table_def.pk is None:
                row["id"] = id_factory()
            await client.insert(table_def.name, row)
            count += 1
        inserted[collection] = count
    return inserted


async def _apply(
    uow: UnitOfWork,
    snapshot: Snapshot,
    ranch_id: str,
    mode: RestoreMode,
    *,
    clock: Clock,
    blob_store: BlobStore | None,
    strict_custom_fields: bool,
    id_factory: Callable[[], str],
    warnings: list[str],
) -> RestoreReport:
    client = uow.client
    ranch = await fetch_ranch_row(client, ranch_id)

    pins = await _reconcile_definitions(client, snapshot, ranch_id, strict_custom_fields, warnings)
    existing = await _existing_ids(client, ranch_id) if mode == "overwrite" else None
    mapping = build_mapping(
        snapshot,
        mode,
        existing=existing,
        reuse={"custom_field_definitions": pins},
        id_factory=id_factory,
    )

    if blob_store is not None:
        await _check_photos(blob_store, snapshot, warnings)

    retained = 0 if mode == "overwrite" else ranch.active_animal_count
    would_be = retained + snapshot.active_animal_count
    if would_be > ranch.max_animals:
        raise CapacityExceeded(ranch_id, would_be, ranch.max_animals)

    await _write_settings(client, snapshot, ranch_id, mode)
    deleted, claimed = await _delete_scheduled(client, mapping, ranch_id)

    controller = LicenseAdmissionController(uow.direct, clock=clock)
    delta = snapshot.active_animal_count - claimed
    if delta > 0:
        reserved = await controller.try_reserve(ranch_id, delta)
        if not reserved.ok:
            raise CapacityExceeded(ranch_id, reserved.active_count + delta, reserved.capacity)
        uow.compensate(
            lambda: controller.release(ranch_id, delta),
            f"release {delta} slot(s) on ranch {ranch_id}",
        )

    inserted = await _write_records(client, snapshot, mapping, ranch_id, id_factory)

    if delta < 0:
        await controller.release(ranch_id, -delta)

    final = await controller.capacity(ranch_id)
    by_id = {d.id: d.name for d in snapshot.custom_field_definitions}
    return RestoreReport(
        ranch_id=ranch_id,
        mode=mode,
        inserted=inserted,
        deleted=deleted,
        definitions_reused=[by_id[old] for old in pins],
        definitions_created=[d.name for d in snapshot.custom_field_definitions if d.id not in pins],
        active_animal_count=final.active_count,
        capacity=final.capacity,
        warnings=warnings,
        id_map={
            t.collection: mapping.collection_map(t.collection)
            for t in RANCH_SCHEMA.tables
            if t.pk is not None
        },
    )


# ============================================================================
# Public API
# ============================================================================


async def restore_snapshot(
    client: DatabaseClient,
    document: Any,
    target_ranch_id: str,
    mode: RestoreMode = "new_ranch",
    *,
    clock: Clock | None = None,
    blob_store: BlobStore | None = None,
    timeout: float | None = None,
    strict_custom_fields: bool = False,
    id_factory: Callable[[], str] | None = None,
) -> RestoreReport:
    """Restore a snapshot document into ``target_ranch_id``.

    Args:
        client: Entity store.
        document: Raw decoded snapshot (from ``read_snapshot()``).
        target_ranch_id: Existing ranch to restore into.
        mode: ``"new_ranch"`` adds the snapshot's records next to whatever
            the ranch holds; ``"overwrite"`` replaces its animals and their
            records.  Custom field definitions are merged by name in both.
        clock: Source of "today" for validation.
        blob_store: When given, photo locators that do not resolve are
            reported as warnings.
        timeout: Seconds for the whole operation; ``None`` waits forever.
        strict_custom_fields: Reject custom field names already defined on
            the target instead of merging them.
        id_factory: Fresh id generator (default: UUID4 strings).

    Returns:
        ``RestoreReport`` for the committed restore.

    Raises:
        FormatUnsupported: If the document is newer than this build.
        ValidationFailed: If the document has errors (or, in strict mode,
            custom field names collide).
        RanchNotFound: If the target ranch does not exist.
        CapacityExceeded: If the result would exceed the ranch's capacity.
            Nothing has been written.
        StorageFailure: If the store failed or the timeout expired.  The
            target is rolled back unless ``rolled_back`` is ``False``.
        ValueError: If ``mode`` is unknown.
        asyncio.CancelledError: Re-raised after rolling back.
    """
    if mode not in RESTORE_MODES:
        raise ValueError(f"Unknown restore mode '{mode}' (expected one of {RESTORE_MODES})")

    clock = clock or SystemClock()
    snapshot, validation = _check_document(document, clock)
    warnings = [str(issue) for issue in validation.warnings]

    unit = open_unit(client)
    try:
        async with asyncio.timeout(timeout):
            async with unit as uow:
                report = await _apply(
                    uow,
                    snapshot,
                    target_ranch_id,
                    mode,
                    clock=clock,
                    blob_store=blob_store,
                    strict_custom_fields=strict_custom_fields,
                    id_factory=id_factory or new_id,
                    warnings=warnings,
                )
    except TimeoutError as e:
        raise StorageFailure(
            f"Restore into ranch '{target_ranch_id}' timed out after {timeout}s",
            rolled_back=unit.rolled_back,
            rollback_errors=unit.rollback_errors,
        ) from e
    except StorageFailure as e:
        if unit.rollback_errors:
            e.rolled_back = False
            e.rollback_errors = [*e.rollback_errors, *unit.rollback_errors]
        raise
    except RanchSnapshotError:
        raise
    except Exception as e:
        raise StorageFailure(
            f"Restore into ranch '{target_ranch_id}' failed: {e}",
            rolled_back=unit.rolled_back,
            rollback_errors=unit.rollback_errors,
        ) from e

    logger.info(
        "Restored %d animals into ranch %s (%s)",
        report.inserted.get("animals", 0),
        target_ranch_id,
        mode,
    )
    return report
