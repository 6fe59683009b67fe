"""ranch-snapshot: Ranch snapshot, restore and license admission engine.

Captures one ranch's data as a portable JSON snapshot, restores snapshots
atomically into an existing ranch (with identifier remapping and custom
field reconciliation), and admits animals against the ranch's licensed
capacity without lost updates.

Usage:
    from ranch_snapshot import get_adapter, take_snapshot, restore_snapshot
    from ranch_snapshot import validate_snapshot, read_snapshot
    from ranch_snapshot import LicenseAdmissionController, check_license_status
"""

__version__ = "0.1.0"

# Adapters
from ranch_snapshot.adapters.base import DatabaseClient, RowNotFoundError
from ranch_snapshot.adapters.memory import MemoryDatabase
from ranch_snapshot.adapters.postgres import AsyncPostgresAdapter

# Config
from ranch_snapshot.config.loader import load_config
from ranch_snapshot.config.models import AppConfig, DatabaseProfile

# Errors
from ranch_snapshot.errors import (
    CapacityExceeded,
    CrossTenantReference,
    FormatUnsupported,
    RanchNotFound,
    RanchSnapshotError,
    StorageFailure,
    ValidationFailed,
)

# Factory
from ranch_snapshot.factory import ProfileNotFoundError, get_adapter, resolve_url

# License
from ranch_snapshot.license import (
    AdmissionOutcome,
    AdmissionResult,
    LicenseAdmissionController,
    LicenseStatus,
    check_license_status,
    generate_license_key,
)

# Restore
from ranch_snapshot.restore import RestoreReport, restore_snapshot

# Snapshot
from ranch_snapshot.snapshot import (
    Snapshot,
    ValidationResult,
    read_snapshot,
    serialize,
    take_snapshot,
    validate_snapshot,
    write_snapshot,
)

__all__ = [
    # Adapters
    "DatabaseClient",
    "RowNotFoundError",
    "MemoryDatabase",
    "AsyncPostgresAdapter",
    # Config
    "load_config",
    "AppConfig",
    "DatabaseProfile",
    # Errors
    "RanchSnapshotError",
    "RanchNotFound",
    "CrossTenantReference",
    "ValidationFailed",
    "FormatUnsupported",
    "CapacityExceeded",
    "StorageFailure",
    # Factory
    "get_adapter",
    "ProfileNotFoundError",
    "resolve_url",
    # License
    "LicenseAdmissionController",
    "AdmissionOutcome",
    "AdmissionResult",
    "LicenseStatus",
    "check_license_status",
    "generate_license_key",
    # Restore
    "restore_snapshot",
    "RestoreReport",
    # Snapshot
    "Snapshot",
    "ValidationResult",
    "serialize",
    "take_snapshot",
    "read_snapshot",
    "write_snapshot",
    "validate_snapshot",
]

# Optional: AsyncSupabaseAdapter (only available with supabase extra)
try:
    from ranch_snapshot.adapters.supabase import AsyncSupabaseAdapter

    __all__.append("AsyncSupabaseAdapter")
except ImportError:
    # supabase extra not installed -- AsyncSupabaseAdapter unavailable
    pass
