"""Exception taxonomy for snapshot, restore and license operations.

Every failure that leaves the engine is one of these classes, with enough
detail attached to render a specific message.  Capacity refusals on the
admission path are *not* exceptions: ``try_reserve`` returns an
``AdmissionResult`` whose outcome callers branch on.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ranch_snapshot.snapshot.models import ValidationResult


class RanchSnapshotError(Exception):
    """Base class for all engine errors."""


class RanchNotFound(RanchSnapshotError):
    """The requested ranch does not exist."""

    def __init__(self, ranch_id: str) -> None:
        super().__init__(f"Ranch '{ranch_id}' not found")
        self.ranch_id = ranch_id


class CrossTenantReference(RanchSnapshotError):
    """A record points at (or belongs to) a different ranch."""

    def __init__(self, table: str, record_id: str, ranch_id: str, expected: str) -> None:
        super().__init__(
            f"{table} '{record_id}' belongs to ranch '{ranch_id}', expected '{expected}'"
        )
        self.table = table
        self.record_id = record_id
        self.ranch_id = ranch_id
        self.expected = expected


class ValidationFailed(RanchSnapshotError):
    """A snapshot failed structural, referential or semantic checks.

    User-correctable.  ``result`` carries every issue found, not just the
    first one.
    """

    def __init__(self, result: ValidationResult) -> None:
        super().__init__(
            f"Snapshot validation failed with {len(result.errors)} error(s)"
        )
        self.result = result

    @property
    def errors(self) -> list:
        return self.result.errors


class FormatUnsupported(RanchSnapshotError):
    """Snapshot format version is newer than this build understands."""

    def __init__(self, version: int, supported: int) -> None:
        super().__init__(
            f"Snapshot format version {version} is newer than the supported "
            f"version {supported}; upgrade ranch-snapshot to restore it"
        )
        self.version = version
        self.supported = supported


class CapacityExceeded(RanchSnapshotError):
    """Restoring would put the ranch above its licensed capacity."""

    def __init__(self, ranch_id: str, requested: int, capacity: int) -> None:
        super().__init__(
            f"Ranch '{ranch_id}' would hold {requested} active animals, "
            f"license allows {capacity}"
        )
        self.ranch_id = ranch_id
        self.requested = requested
        self.capacity = capacity


class StorageFailure(RanchSnapshotError):
    """Entity or blob store fault.  Retryable after re-validating.

    Attributes:
        rolled_back: ``True`` when every compensating action completed and
            the target is back in its pre-operation state.
        rollback_errors: Messages from compensating actions that failed.
    """

    def __init__(
        self,
        message: str,
        rolled_back: bool = True,
        rollback_errors: list[str] | None = None,
    ) -> None:
        super().__init__(message)
        self.rolled_back = rolled_back
        self.rollback_errors = rollback_errors or []
