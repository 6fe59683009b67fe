"""Turn a ranch graph into a portable snapshot, and snapshots into JSON.

``serialize()`` is pure: it reads nothing but the graph it is given and
writes nothing.  Original identifiers are carried verbatim; photos travel
by storage locator, never as bytes.

Usage:
    from ranch_snapshot.snapshot.serializer import (
        serialize,
        take_snapshot,
        read_snapshot,
    )

    snapshot = serialize(graph, clock=SystemClock())

    # Backup caller: fetch + serialize + write in one call
    path = await take_snapshot(adapter, ranch_id, "backups/north.json")

    # Restore caller: raw dict for the validator
    document = read_snapshot(path)
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from ranch_snapshot.adapters.base import DatabaseClient
from ranch_snapshot.collaborators import Clock, SystemClock
from ranch_snapshot.graph import RanchGraph, fetch_ranch_graph
from ranch_snapshot.models import (
    AnimalData,
    AnimalPhotoData,
    CustomFieldDefinitionData,
    CustomFieldValueData,
    InjectionData,
    MedicalHistoryData,
    RanchSettingsData,
)
from ranch_snapshot.snapshot.models import (
    FORMAT_VERSION,
    Snapshot,
    SnapshotMetadata,
    SnapshotRanch,
)

logger = logging.getLogger(__name__)

_PORTABLE_TYPES = {
    "custom_field_definitions": CustomFieldDefinitionData,
    "animals": AnimalData,
    "medical_history": MedicalHistoryData,
    "injections": InjectionData,
    "photos": AnimalPhotoData,
    "custom_field_values": CustomFieldValueData,
}


def _portable(model_type, record) -> Any:
    # Drop ownership/bookkeeping columns by re-validating against the
    # portable shape (extra="ignore").
    return model_type.model_validate(record.model_dump())


def serialize(graph: RanchGraph, clock: Clock | None = None) -> Snapshot:
    """Produce a snapshot of ``graph``.

    Args:
        graph: Ranch graph from ``fetch_ranch_graph()``.
        clock: Source of ``metadata.created_at``.  When ``None`` the
            timestamp is left empty, so the output depends on the graph
            alone.

    Returns:
        Snapshot at the current ``FORMAT_VERSION``.
    """
    settings = (
        _portable(RanchSettingsData, graph.settings)
        if graph.settings is not None
        else RanchSettingsData()
    )

    collections = {
        name: tuple(_portable(model_type, r) for r in graph.collection(name))
        for name, model_type in _PORTABLE_TYPES.items()
    }

    metadata = SnapshotMetadata(
        created_at=clock.now().isoformat() if clock is not None else None,
        source_ranch_id=graph.ranch.id,
        counts=graph.counts(),
    )

    return Snapshot(
        format_version=FORMAT_VERSION,
        metadata=metadata,
        ranch=SnapshotRanch(name=graph.ranch.name, settings=settings),
        **collections,
    )


def snapshot_to_document(snapshot: Snapshot) -> dict:
    """JSON-compatible dict form of a snapshot (the wire layout)."""
    return snapshot.model_dump(mode="json")


def write_snapshot(snapshot: Snapshot, output_path: str | Path | None = None) -> str:
    """Write a snapshot as JSON.

    Args:
        snapshot: Snapshot to write.
        output_path: Destination file.  When ``None``, generates a
            timestamped path under ``./backups/``.

    Returns:
        Path of the written file.
    """
    if output_path is None:
        backups_dir = Path.cwd() / "backups"
        backups_dir.mkdir(exist_ok=True)
        timestamp = datetime.now().strftime("%Y-%m-%d-%H%M%S")
        output_path = backups_dir / f"ranch-{timestamp}.json"

    output_path_obj = Path(output_path)
    output_path_obj.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path_obj, "w") as f:
        json.dump(snapshot_to_document(snapshot), f, indent=2)

    return str(output_path_obj)


def read_snapshot(path: str | Path) -> dict:
    """Load a snapshot file as a raw document for ``validate_snapshot()``.

    Raises:
        FileNotFoundError: If the file does not exist.
        json.JSONDecodeError: If the file is not valid JSON.
    """
    with open(path, "r") as f:
        return json.load(f)


async def take_snapshot(
    client: DatabaseClient,
    ranch_id: str,
    output_path: str | Path | None = None,
    clock: Clock | None = None,
) -> str:
    """Fetch, serialize and write one ranch.

    Returns:
        Path of the written snapshot file.

    Raises:
        RanchNotFound: If the ranch does not exist.
        CrossTenantReference: If the stored graph crosses tenants.
    """
    graph = await fetch_ranch_graph(client, ranch_id)
    snapshot = serialize(graph, clock=clock or SystemClock())
    path = write_snapshot(snapshot, output_path)
    logger.info(
        "Snapshot of ranch %s written to %s (%d animals)",
        ranch_id,
        path,
        len(snapshot.animals),
    )
    return path
