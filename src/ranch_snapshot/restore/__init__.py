"""Snapshot restore: identifier remapping and the all-or-nothing engine.

Usage:
    from ranch_snapshot.restore import restore_snapshot, RestoreReport
    from ranch_snapshot.restore import build_mapping, IdentifierMap
"""

from ranch_snapshot.restore.engine import RestoreReport, restore_snapshot
from ranch_snapshot.restore.remapper import (
    RESTORE_MODES,
    IdentifierMap,
    RestoreMode,
    ancestry_order,
    build_mapping,
)

__all__ = [
    "RestoreReport",
    "restore_snapshot",
    "RESTORE_MODES",
    "IdentifierMap",
    "RestoreMode",
    "ancestry_order",
    "build_mapping",
]
