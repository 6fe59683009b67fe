"""TOML configuration loader."""

import tomllib
from pathlib import Path

from ranch_snapshot.config.models import (
    AppConfig,
    DatabaseProfile,
    LicenseSettings,
    SnapshotSettings,
)

CONFIG_FILE_NAME = "ranch_snapshot.toml"


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load configuration from TOML file.

    Args:
        config_path: Path to the config file (default:
            ``ranch_snapshot.toml`` in the current working directory).

    Returns:
        AppConfig with all profiles and settings.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        pydantic.ValidationError: If a section has invalid values.
    """
    if config_path is None:
        config_path = Path.cwd() / CONFIG_FILE_NAME

    if not config_path.exists():
        raise FileNotFoundError(
            f"Config not found: {config_path}\n"
            f"Create {CONFIG_FILE_NAME} with at least one [profiles.<name>] section."
        )

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    profiles = {}
    for name, profile_data in data.get("profiles", {}).items():
        profiles[name] = DatabaseProfile(**profile_data)

    return AppConfig(
        profiles=profiles,
        snapshot=SnapshotSettings(**data.get("snapshot", {})),
        license=LicenseSettings(**data.get("license", {})),
    )
