"""Configuration loading for ranch-snapshot.

Usage:
    from ranch_snapshot.config import load_config, AppConfig, DatabaseProfile
"""

from ranch_snapshot.config.loader import load_config
from ranch_snapshot.config.models import (
    AppConfig,
    DatabaseProfile,
    LicenseSettings,
    SnapshotSettings,
)

__all__ = [
    "load_config",
    "AppConfig",
    "DatabaseProfile",
    "LicenseSettings",
    "SnapshotSettings",
]
