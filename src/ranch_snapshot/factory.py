"""Entity store factory.

Resolves a connection profile from ``ranch_snapshot.toml`` and builds the
matching adapter.  The active profile comes from an explicit name or the
``{PREFIX}DB_PROFILE`` environment variable.

Usage:
    from ranch_snapshot.factory import get_adapter

    adapter = await get_adapter(profile_name="local")
    adapter = await get_adapter(env_prefix="RANCH_")    # reads RANCH_DB_PROFILE
    adapter = await get_adapter(database_url="postgresql://...")
"""

import logging
import os
from pathlib import Path
from urllib.parse import quote

from ranch_snapshot.adapters.base import DatabaseClient
from ranch_snapshot.adapters.postgres import AsyncPostgresAdapter
from ranch_snapshot.config.loader import load_config
from ranch_snapshot.config.models import DatabaseProfile

logger = logging.getLogger(__name__)


class ProfileNotFoundError(Exception):
    """Raised when no usable connection profile is configured."""

    pass


def resolve_url(profile: DatabaseProfile) -> str:
    """Resolve profile URL with password substitution.

    Args:
        profile: Connection profile from config.

    Returns:
        Connection URL with ``[YOUR-PASSWORD]`` replaced by the URL-encoded
        ``db_password``.
    """
    url = profile.url
    if profile.db_password and "[YOUR-PASSWORD]" in url:
        url = url.replace("[YOUR-PASSWORD]", quote(profile.db_password, safe=""))
    return url


def get_active_profile_name(env_prefix: str = "") -> str:
    """Get active profile name from the ``{env_prefix}DB_PROFILE`` env var.

    Raises:
        ProfileNotFoundError: If the variable is unset.
    """
    env_var = f"{env_prefix}DB_PROFILE"
    env_profile = os.environ.get(env_var)
    if env_profile:
        return env_profile

    raise ProfileNotFoundError(
        "No database profile configured.\n"
        f"Set {env_var}=<name> or pass --profile <name> to ranch-snapshot.\n"
        "List profiles with: ranch-snapshot profiles"
    )


def get_active_profile(
    profile_name: str | None = None,
    env_prefix: str = "",
    config_path: Path | None = None,
) -> tuple[str, DatabaseProfile]:
    """Get active profile name and configuration.

    Raises:
        ProfileNotFoundError: If no profile is selected or it is not in
            the config file.
        FileNotFoundError: If the config file is missing.
    """
    if profile_name is None:
        profile_name = get_active_profile_name(env_prefix=env_prefix)

    config = load_config(config_path)
    if profile_name not in config.profiles:
        available = ", ".join(config.profiles) or "(none)"
        raise ProfileNotFoundError(
            f"Profile '{profile_name}' not found in config. Available profiles: {available}"
        )
    return profile_name, config.profiles[profile_name]


def _supabase_adapter(profile: DatabaseProfile, env_prefix: str) -> DatabaseClient:
    from ranch_snapshot.adapters.supabase import AsyncSupabaseAdapter

    key = profile.api_key or os.environ.get(f"{env_prefix}SUPABASE_KEY")
    if not key:
        raise ProfileNotFoundError(
            f"Supabase profile needs api_key or {env_prefix}SUPABASE_KEY"
        )
    return AsyncSupabaseAdapter(url=profile.url, key=key)


async def get_adapter(
    profile_name: str | None = None,
    env_prefix: str = "",
    database_url: str | None = None,
    jsonb_columns: list[str] | None = None,
    config_path: Path | None = None,
) -> DatabaseClient:
    """Create a new entity store adapter.

    Each call creates a fresh adapter; callers own it and must ``close()``
    it.

    Args:
        profile_name: Profile in the config file.  When ``None``, read from
            ``{env_prefix}DB_PROFILE``.
        env_prefix: Environment variable prefix.
        database_url: Direct PostgreSQL URL; skips profile resolution.
        jsonb_columns: Columns to bind as JSONB (PostgreSQL only).
        config_path: Config file (default: ``./ranch_snapshot.toml``).

    Raises:
        ProfileNotFoundError: If no profile can be resolved.
        ValueError: If the profile's provider is unknown.
    """
    if database_url is not None:
        return AsyncPostgresAdapter(database_url=database_url, jsonb_columns=jsonb_columns)

    name, profile = get_active_profile(profile_name, env_prefix, config_path)
    logger.debug("Using profile %s (%s)", name, profile.provider)

    if profile.provider == "postgres":
        return AsyncPostgresAdapter(
            database_url=resolve_url(profile),
            jsonb_columns=jsonb_columns,
        )
    if profile.provider == "supabase":
        return _supabase_adapter(profile, env_prefix)
    raise ValueError(f"Unknown provider '{profile.provider}' in profile '{name}'")
