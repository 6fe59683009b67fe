"""Snapshot format: document models, serializer and validator.

Usage:
    from ranch_snapshot.snapshot import serialize, validate_snapshot, Snapshot
"""

from ranch_snapshot.snapshot.models import (
    FORMAT_VERSION,
    SUPPORTED_FORMAT_VERSION,
    Snapshot,
    SnapshotMetadata,
    SnapshotRanch,
    ValidationIssue,
    ValidationResult,
)
from ranch_snapshot.schema import (
    COLLECTIONS,
    RANCH_SCHEMA,
    BackupSchema,
    ForeignKey,
    TableDef,
)
from ranch_snapshot.snapshot.serializer import (
    read_snapshot,
    serialize,
    snapshot_to_document,
    take_snapshot,
    write_snapshot,
)
from ranch_snapshot.snapshot.validator import validate_snapshot

__all__ = [
    "FORMAT_VERSION",
    "SUPPORTED_FORMAT_VERSION",
    "Snapshot",
    "SnapshotMetadata",
    "SnapshotRanch",
    "ValidationIssue",
    "ValidationResult",
    "COLLECTIONS",
    "RANCH_SCHEMA",
    "BackupSchema",
    "ForeignKey",
    "TableDef",
    "read_snapshot",
    "serialize",
    "snapshot_to_document",
    "take_snapshot",
    "write_snapshot",
    "validate_snapshot",
]
