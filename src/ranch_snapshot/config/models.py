"""Pydantic models for ranch-snapshot configuration."""

from pydantic import BaseModel, Field


class DatabaseProfile(BaseModel):
    """Entity store connection profile from ranch_snapshot.toml."""

    url: str
    description: str = ""
    db_password: str | None = None  # For [YOUR-PASSWORD] placeholder substitution
    provider: str = "postgres"  # postgres | supabase
    api_key: str | None = None  # Supabase service key


class SnapshotSettings(BaseModel):
    """Backup/restore defaults."""

    backups_dir: str = "backups"
    restore_timeout: float | None = 60.0
    strict_custom_fields: bool = False
    photo_root: str | None = None  # Local blob store root; unset skips photo checks
    photo_bucket: str = "animal-photos"


class LicenseSettings(BaseModel):
    """License defaults."""

    default_max_animals: int = Field(default=50, ge=1)
    grace_period_days: int = Field(default=30, ge=0)


class AppConfig(BaseModel):
    """Complete configuration from ranch_snapshot.toml."""

    profiles: dict[str, DatabaseProfile] = Field(default_factory=dict)
    snapshot: SnapshotSettings = Field(default_factory=SnapshotSettings)
    license: LicenseSettings = Field(default_factory=LicenseSettings)
