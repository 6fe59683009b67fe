"""CLI for ranch snapshots and license administration.

Usage:
    RANCH_DB_PROFILE=local ranch-snapshot --env-prefix RANCH_ backup --ranch-id <id>
    ranch-snapshot profiles
    ranch-snapshot validate backups/ranch-2026-10-18-120000.json
    ranch-snapshot --profile local restore backups/north.json --ranch-id <id> --mode overwrite
    ranch-snapshot --profile local license status --ranch-id <id>
    ranch-snapshot --profile local license grant --ranch-id <id> --max-animals 500
    ranch-snapshot --profile local license redeem --ranch-id <id> HERD-2026-7KQM-X3PA
    ranch-snapshot license generate-key
    ranch-snapshot --profile local license generate-key --issue --type full --expires 2027-12-31

Commands:
    profiles  - List connection profiles
    backup    - Write a snapshot of one ranch
    validate  - Check a snapshot file without touching the database
    restore   - Restore a snapshot into an existing ranch
    license   - License status, capacity grants and license keys
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from ranch_snapshot.adapters.base import DatabaseClient
from ranch_snapshot.collaborators import LocalBlobStore, SystemClock
from ranch_snapshot.config.loader import load_config
from ranch_snapshot.config.models import AppConfig
from ranch_snapshot.errors import (
    CapacityExceeded,
    FormatUnsupported,
    RanchSnapshotError,
    StorageFailure,
    ValidationFailed,
)
from ranch_snapshot.factory import ProfileNotFoundError, get_active_profile_name, get_adapter
from ranch_snapshot.graph import fetch_ranch_row
from ranch_snapshot.license.admission import LicenseAdmissionController
from ranch_snapshot.license.keys import generate_license_key, issue_license_key
from ranch_snapshot.license.status import LicenseStatus, check_license_status
from ranch_snapshot.restore.engine import restore_snapshot
from ranch_snapshot.restore.remapper import RESTORE_MODES
from ranch_snapshot.snapshot.serializer import read_snapshot, take_snapshot
from ranch_snapshot.snapshot.validator import validate_snapshot

console = Console()

logger = logging.getLogger(__name__)


# ============================================================================
# Helpers
# ============================================================================


def _config_path(args: argparse.Namespace) -> Path | None:
    config = getattr(args, "config", None)
    return Path(config) if config else None


def _load_settings(args: argparse.Namespace) -> AppConfig:
    """Config file contents, or defaults when there is no config file."""
    try:
        return load_config(_config_path(args))
    except FileNotFoundError:
        return AppConfig()


async def _open_adapter(args: argparse.Namespace) -> DatabaseClient | None:
    try:
        return await get_adapter(
            profile_name=getattr(args, "profile", None),
            env_prefix=getattr(args, "env_prefix", ""),
            config_path=_config_path(args),
        )
    except (ProfileNotFoundError, FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return None


def _print_validation(result) -> None:
    for issue in result.errors:
        console.print(f"  [red]x[/red] [{issue.category}] {issue}")
    for issue in result.warnings:
        console.print(f"  [yellow]![/yellow] {issue}")


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_backup(args: argparse.Namespace) -> int:
    """Async implementation for backup command.

    Returns:
        0 on success, 1 on failure.
    """
    settings = _load_settings(args)
    adapter = await _open_adapter(args)
    if adapter is None:
        return 1

    output = args.output
    if output is None:
        stamp = SystemClock().now().strftime("%Y-%m-%d-%H%M%S")
        output = str(Path(settings.snapshot.backups_dir) / f"ranch-{args.ranch_id}-{stamp}.json")

    try:
        console.print(f"Backing up ranch [bold cyan]{args.ranch_id}[/bold cyan]...", style="dim")
        path = await take_snapshot(adapter, args.ranch_id, output)
    except RanchSnapshotError as e:
        console.print(f"[bold red]x[/bold red] {e}")
        return 1
    finally:
        await adapter.close()

    document = read_snapshot(path)
    table = Table(title="Snapshot", show_header=True, header_style="bold")
    table.add_column("Collection", style="dim")
    table.add_column("Records", justify="right")
    for collection, count in document["metadata"]["counts"].items():
        table.add_row(collection, str(count))
    console.print(table)
    console.print(f"[bold green]v[/bold green] Snapshot written to [cyan]{path}[/cyan]")
    return 0


async def _async_restore(args: argparse.Namespace) -> int:
    """Async implementation for restore command.

    Returns:
        0 on success, 1 on failure.
    """
    settings = _load_settings(args)

    try:
        document = read_snapshot(args.snapshot_path)
    except (FileNotFoundError, json.JSONDecodeError) as e:
        console.print(f"[red]Error reading snapshot: {e}[/red]")
        return 1

    result = validate_snapshot(document)
    if not result.valid:
        console.print("[bold red]x[/bold red] Snapshot is invalid")
        _print_validation(result)
        return 1

    if args.mode == "overwrite" and not args.yes:
        console.print(
            f"[bold yellow]Overwrite[/bold yellow] replaces every animal of ranch "
            f"[bold]{args.ranch_id}[/bold] with the snapshot's."
        )
        response = input("Continue? [y/N] ")
        if response.lower() not in ["y", "yes"]:
            console.print("Cancelled.")
            return 0

    blob_store = None
    if settings.snapshot.photo_root:
        blob_store = LocalBlobStore(settings.snapshot.photo_root, settings.snapshot.photo_bucket)

    adapter = await _open_adapter(args)
    if adapter is None:
        return 1

    timeout = args.timeout if args.timeout is not None else settings.snapshot.restore_timeout
    try:
        report = await restore_snapshot(
            adapter,
            document,
            args.ranch_id,
            args.mode,
            blob_store=blob_store,
            timeout=timeout,
            strict_custom_fields=args.strict_custom_fields or settings.snapshot.strict_custom_fields,
        )
    except ValidationFailed as e:
        console.print(f"[bold red]x[/bold red] {e}")
        _print_validation(e.result)
        return 1
    except (FormatUnsupported, CapacityExceeded) as e:
        console.print(f"[bold red]x[/bold red] {e}")
        return 1
    except StorageFailure as e:
        console.print(f"[bold red]x[/bold red] {e}")
        if e.rolled_back:
            console.print("  [dim]All changes were rolled back. Safe to retry.[/dim]")
        else:
            console.print("  [bold red]Rollback incomplete:[/bold red]")
            for message in e.rollback_errors:
                console.print(f"    - {message}")
        return 1
    except RanchSnapshotError as e:
        console.print(f"[bold red]x[/bold red] {e}")
        return 1
    finally:
        await adapter.close()

    console.print(report.format_report())
    console.print("[bold green]v[/bold green] Restore complete.")
    return 0


async def _async_license_status(args: argparse.Namespace) -> int:
    settings = _load_settings(args)
    adapter = await _open_adapter(args)
    if adapter is None:
        return 1

    try:
        ranch = await fetch_ranch_row(adapter, args.ranch_id)
    except RanchSnapshotError as e:
        console.print(f"[bold red]x[/bold red] {e}")
        return 1
    finally:
        await adapter.close()

    info = check_license_status(ranch, SystemClock().today(), settings.license.grace_period_days)
    style = {
        LicenseStatus.valid: "green",
        LicenseStatus.grace_period: "yellow",
    }.get(info.status, "red")

    table = Table(title=f"License: {ranch.name}", show_header=False)
    table.add_column("Key", style="dim")
    table.add_column("Value")
    table.add_row("Status", f"[{style}]{info.status.value}[/{style}]")
    table.add_row("Type", info.license_type.value if info.license_type else "-")
    table.add_row("Expires", info.expiration_date or "-")
    if info.days_until_expiration is not None:
        table.add_row("Days left", str(info.days_until_expiration))
    if info.days_in_grace_period is not None:
        table.add_row("Days in grace period", str(info.days_in_grace_period))
    table.add_row("Read-only", "yes" if info.is_read_only else "no")
    table.add_row("Active animals", f"{ranch.active_animal_count}/{ranch.max_animals}")
    console.print(table)
    return 0


async def _async_license_grant(args: argparse.Namespace) -> int:
    adapter = await _open_adapter(args)
    if adapter is None:
        return 1

    try:
        result = await LicenseAdmissionController(adapter).grant(args.ranch_id, args.max_animals)
    except RanchSnapshotError as e:
        console.print(f"[bold red]x[/bold red] {e}")
        return 1
    finally:
        await adapter.close()

    if result.applied:
        console.print(
            f"[bold green]v[/bold green] Capacity raised from {result.previous_capacity} "
            f"to {result.capacity}"
        )
    else:
        console.print(
            f"[yellow]Capacity unchanged at {result.capacity}[/yellow] "
            "[dim](grants never lower capacity)[/dim]"
        )
    return 0


async def _async_license_redeem(args: argparse.Namespace) -> int:
    settings = _load_settings(args)
    adapter = await _open_adapter(args)
    if adapter is None:
        return 1

    controller = LicenseAdmissionController(
        adapter, grace_period_days=settings.license.grace_period_days
    )
    try:
        result = await controller.redeem_key(args.ranch_id, args.key)
    except RanchSnapshotError as e:
        console.print(f"[bold red]x[/bold red] {e}")
        return 1
    finally:
        await adapter.close()

    if not result.ok:
        console.print(f"[bold red]x[/bold red] {result.key}: {result.outcome.value}")
        return 1
    console.print(
        f"[bold green]v[/bold green] Activated {result.license_type} license until "
        f"{result.expiration_date} (capacity {result.capacity})"
    )
    return 0


async def _async_generate_key(args: argparse.Namespace) -> int:
    if not args.issue:
        console.print(generate_license_key(args.year))
        return 0

    if not args.expires:
        console.print("[red]Error: --issue requires --expires YYYY-MM-DD[/red]")
        return 1

    settings = _load_settings(args)
    adapter = await _open_adapter(args)
    if adapter is None:
        return 1

    max_animals = args.max_animals or settings.license.default_max_animals
    try:
        record = await issue_license_key(
            adapter,
            args.type,
            args.expires,
            max_animals=max_animals,
            key=generate_license_key(args.year),
        )
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1
    finally:
        await adapter.close()

    console.print(record.key)
    return 0


# ============================================================================
# Sync command wrappers
# ============================================================================


def cmd_profiles(args: argparse.Namespace) -> int:
    """List available profiles.

    Reads only the local TOML config -- no database calls.

    Returns:
        0 on success, 1 if the config file is not found.
    """
    try:
        config = load_config(_config_path(args))
    except FileNotFoundError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    try:
        current = args.profile or get_active_profile_name(env_prefix=args.env_prefix)
    except ProfileNotFoundError:
        current = None

    table = Table(title="Database Profiles", show_header=True, header_style="bold")
    table.add_column("", width=2)
    table.add_column("Profile")
    table.add_column("Provider")
    table.add_column("Description")

    for name, profile in config.profiles.items():
        marker = "[bold green]*[/bold green]" if name == current else " "
        name_style = "bold cyan" if name == current else ""
        table.add_row(
            marker,
            f"[{name_style}]{name}[/{name_style}]" if name_style else name,
            profile.provider,
            profile.description or "",
        )

    console.print(table)
    if current:
        console.print("\n[bold green]*[/bold green] = active profile")
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    """Validate a snapshot file.

    Reads only the local file -- no database calls.

    Returns:
        0 when valid (warnings allowed), 1 otherwise.
    """
    console.print(f"Validating: [cyan]{args.snapshot_path}[/cyan]")
    try:
        document = read_snapshot(args.snapshot_path)
    except FileNotFoundError:
        console.print(f"[bold red]x[/bold red] Snapshot file not found: {args.snapshot_path}")
        return 1
    except json.JSONDecodeError as e:
        console.print(f"[bold red]x[/bold red] Invalid JSON: {e}")
        return 1

    result = validate_snapshot(document)
    _print_validation(result)

    if not result.valid:
        console.print(f"\n[bold red]x[/bold red] Snapshot is invalid ({result.error_count} errors)")
        return 1
    if result.warnings:
        console.print("\n[bold green]v[/bold green] Snapshot is valid (with warnings)")
    else:
        console.print("\n[bold green]v[/bold green] Snapshot is valid")
    return 0


def cmd_backup(args: argparse.Namespace) -> int:
    """Wraps the async implementation with ``asyncio.run()``."""
    return asyncio.run(_async_backup(args))


def cmd_restore(args: argparse.Namespace) -> int:
    """Wraps the async implementation with ``asyncio.run()``."""
    return asyncio.run(_async_restore(args))


def cmd_license_status(args: argparse.Namespace) -> int:
    return asyncio.run(_async_license_status(args))


def cmd_license_grant(args: argparse.Namespace) -> int:
    return asyncio.run(_async_license_grant(args))


def cmd_license_redeem(args: argparse.Namespace) -> int:
    return asyncio.run(_async_license_redeem(args))


def cmd_license_generate_key(args: argparse.Namespace) -> int:
    return asyncio.run(_async_generate_key(args))


# ============================================================================
# Main entry point
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ranch-snapshot",
        description="Ranch snapshot, restore and license administration",
    )

    parser.add_argument(
        "--env-prefix",
        default="",
        help=(
            "Prefix for environment variable lookup "
            "(e.g., --env-prefix RANCH_ reads RANCH_DB_PROFILE)"
        ),
    )
    parser.add_argument("--profile", help="Connection profile (overrides {PREFIX}DB_PROFILE)")
    parser.add_argument("--config", help="Config file (default: ./ranch_snapshot.toml)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    p_profiles = subparsers.add_parser("profiles", help="List available profiles")
    p_profiles.set_defaults(func=cmd_profiles)

    p_backup = subparsers.add_parser("backup", help="Write a snapshot of one ranch")
    p_backup.add_argument("--ranch-id", required=True, help="Ranch to back up")
    p_backup.add_argument("--output", "-o", help="Snapshot file path")
    p_backup.set_defaults(func=cmd_backup)

    p_validate = subparsers.add_parser("validate", help="Validate a snapshot file")
    p_validate.add_argument("snapshot_path", help="Snapshot JSON file")
    p_validate.set_defaults(func=cmd_validate)

    p_restore = subparsers.add_parser("restore", help="Restore a snapshot into a ranch")
    p_restore.add_argument("snapshot_path", help="Snapshot JSON file")
    p_restore.add_argument("--ranch-id", required=True, help="Target ranch (must exist)")
    p_restore.add_argument(
        "--mode", choices=RESTORE_MODES, default="new_ranch",
        help="new_ranch adds records; overwrite replaces the ranch's animals",
    )
    p_restore.add_argument(
        "--strict-custom-fields", action="store_true",
        help="Fail instead of merging custom fields that already exist by name",
    )
    p_restore.add_argument("--timeout", type=float, help="Seconds before giving up and rolling back")
    p_restore.add_argument("--yes", "-y", action="store_true", help="Skip confirmation")
    p_restore.set_defaults(func=cmd_restore)

    p_license = subparsers.add_parser("license", help="License administration")
    license_sub = p_license.add_subparsers(dest="license_command", required=True)

    p_status = license_sub.add_parser("status", help="Show license status and capacity")
    p_status.add_argument("--ranch-id", required=True)
    p_status.set_defaults(func=cmd_license_status)

    p_grant = license_sub.add_parser("grant", help="Raise a ranch's capacity")
    p_grant.add_argument("--ranch-id", required=True)
    p_grant.add_argument("--max-animals", type=int, required=True)
    p_grant.set_defaults(func=cmd_license_grant)

    p_redeem = license_sub.add_parser("redeem", help="Activate a license key on a ranch")
    p_redeem.add_argument("--ranch-id", required=True)
    p_redeem.add_argument("key", help="License key (HERD-YYYY-XXXX-XXXX)")
    p_redeem.set_defaults(func=cmd_license_redeem)

    p_key = license_sub.add_parser("generate-key", help="Generate (and optionally issue) a key")
    p_key.add_argument("--year", type=int, help="Year segment (default: current year)")
    p_key.add_argument("--issue", action="store_true", help="Store the key as unused")
    p_key.add_argument("--type", choices=["full", "demo"], default="full")
    p_key.add_argument("--expires", help="License expiration date (YYYY-MM-DD)")
    p_key.add_argument("--max-animals", type=int, help="Capacity granted on redemption")
    p_key.set_defaults(func=cmd_license_generate_key)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    _setup_logging(args.verbose)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
