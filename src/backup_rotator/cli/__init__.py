"""CLI module for backup runs and retention housekeeping.

Provides commands to run a size-aware mysqldump backup, preview its plan,
prune retention tiers, and list configured connection profiles.

Usage:
    backup-rotator run --profile prod
    backup-rotator run --host db.internal --user backup --database shop --force-split
    backup-rotator plan --profile prod --batch-size 500000
    backup-rotator prune --profile prod --daily 7
    backup-rotator profiles
    BACKUP_PASSWORD=secret backup-rotator run --profile prod

Commands:
    run       - Dump the database and rotate retention tiers
    plan      - Show the classification and dump plan without running it
    prune     - Prune retention tiers only
    profiles  - List available profiles
"""

import argparse
import asyncio
import logging
import sys
from datetime import date
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from backup_rotator.config.loader import (
    default_config_path,
    load_backup_config,
    resolve_profile,
)
from backup_rotator.config.models import BackupConfig, ConnectionProfile
from backup_rotator.errors import BackupError
from backup_rotator.inventory.mysql import MySQLTableInventory
from backup_rotator.models import BackupPlan, BackupRun, RunSummary, TaskStatus
from backup_rotator.orchestrator import BackupOrchestrator
from backup_rotator.retention.models import PruneResult

console = Console()

_STATUS_STYLES = {
    TaskStatus.SUCCEEDED: "green",
    TaskStatus.FAILED: "bold red",
    TaskStatus.SKIPPED: "yellow",
}


# ============================================================================
# Settings resolution (CLI-internal helpers)
# ============================================================================


def _configure_logging(verbose: bool) -> None:
    """Route log records through rich with colored levels."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _load_config(args: argparse.Namespace) -> BackupConfig:
    """Load the config file; a missing default file yields built-in defaults.

    Raises:
        FileNotFoundError: If an explicitly given ``--config`` file is missing.
        ConfigurationError: If the file is invalid.
    """
    if args.config is not None:
        return load_backup_config(Path(args.config))

    path = default_config_path(env_prefix=args.env_prefix)
    if path.exists():
        return load_backup_config(path)
    return BackupConfig()


def _apply_overrides(config: BackupConfig, args: argparse.Namespace) -> BackupConfig:
    """Command-line values override the config file."""

    def _updates(mapping: dict[str, str]) -> dict:
        return {
            field: getattr(args, dest)
            for dest, field in mapping.items()
            if getattr(args, dest, None) is not None
        }

    thresholds = _updates(
        {
            "db_threshold": "database_row_threshold",
            "table_threshold": "table_row_threshold",
            "batch_size": "batch_size",
        }
    )
    if getattr(args, "force_split", False):
        thresholds["force_split"] = True

    retention = _updates({"daily": "daily", "weekly": "weekly", "monthly": "monthly"})

    dump = _updates(
        {
            "mysqldump_path": "mysqldump_path",
            "output_dir": "output_directory",
            "workers": "workers",
            "timeout": "timeout",
        }
    )
    if getattr(args, "no_fail_fast", False):
        dump["fail_fast"] = False
    if "output_directory" in dump:
        dump["output_directory"] = Path(dump["output_directory"])

    return config.model_copy(
        update={
            "thresholds": config.thresholds.model_copy(update=thresholds),
            "retention": config.retention.model_copy(update=retention),
            "dump": config.dump.model_copy(update=dump),
        }
    )


def _resolve_settings(
    args: argparse.Namespace,
) -> tuple[ConnectionProfile, BackupConfig, BackupRun]:
    """Merge config file, environment and command line into run settings."""
    config = _apply_overrides(_load_config(args), args)
    _, profile = resolve_profile(
        config, profile_name=args.profile, env_prefix=args.env_prefix
    )

    connection = {
        field: getattr(args, field)
        for field in ("host", "port", "user", "password", "database")
        if getattr(args, field, None) is not None
    }
    profile = profile.model_copy(update=connection)

    run = BackupRun(
        database=profile.database,
        execution_date=args.date or date.today(),
        output_root=config.dump.output_directory,
    )
    return profile, config, run


def _print_plan(backup_plan: BackupPlan) -> None:
    console.print(
        f"Classification: [bold cyan]{backup_plan.classification.value}[/bold cyan] "
        f"[dim]({backup_plan.table_count} tables, {backup_plan.total_rows} rows)[/dim]"
    )

    table = Table(title="Dump Plan", show_header=True, header_style="bold")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Task")
    table.add_column("Rows", justify="right")
    table.add_column("Output")

    for i, task in enumerate(backup_plan.tasks, start=1):
        rows = ""
        if task.row_range is not None:
            offset, count = task.row_range
            rows = f"{offset}+{count}"
        table.add_row(str(i), task.label, rows, str(task.output_path))

    console.print(table)


def _print_prune_results(results: list[PruneResult]) -> None:
    table = Table(title="Retention", show_header=True, header_style="bold")
    table.add_column("Tier", style="dim")
    table.add_column("Kept", justify="right")
    table.add_column("Removed", justify="right")
    table.add_column("Failed", justify="right")

    for result in results:
        failed = str(len(result.failures)) if result.failures else "-"
        table.add_row(
            result.tier.value,
            str(len(result.kept)),
            str(result.removed_count),
            f"[red]{failed}[/red]" if result.failures else failed,
        )

    console.print(table)


def _print_summary(summary: RunSummary) -> None:
    table = Table(title="Dump Tasks", show_header=True, header_style="bold")
    table.add_column("Task")
    table.add_column("Status")
    table.add_column("Output / Error")

    for result in summary.results:
        style = _STATUS_STYLES[result.status]
        detail = result.error or str(result.task.output_path)
        table.add_row(
            result.task.label,
            f"[{style}]{result.status.value}[/{style}]",
            detail,
        )

    console.print(table)
    _print_prune_results(summary.prune_results)

    if summary.promoted_tiers:
        tiers = ", ".join(t.value for t in summary.promoted_tiers)
        console.print(f"Promoted to: [cyan]{tiers}[/cyan]")

    console.print()
    if summary.incomplete:
        console.print(
            f"[bold red]x[/bold red] Backup of [bold]{summary.database}[/bold] "
            f"incomplete: {len(summary.failed_tasks)} failed, "
            f"{len(summary.skipped_tasks)} skipped"
        )
    else:
        console.print(
            f"[bold green]v[/bold green] Backup of [bold]{summary.database}[/bold] "
            f"complete ({summary.classification.value})"
        )


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_run(args: argparse.Namespace) -> int:
    """Async implementation for run command.

    Returns:
        0 on success, 1 on fatal error or any failed task.
    """
    try:
        profile, config, run = _resolve_settings(args)
    except (BackupError, FileNotFoundError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    inventory = MySQLTableInventory.from_profile(profile)
    try:
        orchestrator = BackupOrchestrator(profile, config, inventory)
        summary = await orchestrator.run(run)
    except BackupError as e:
        console.print(f"\n[bold red]x[/bold red] {e}")
        return 1
    finally:
        await inventory.close()

    _print_summary(summary)
    return summary.exit_code


async def _async_plan(args: argparse.Namespace) -> int:
    """Async implementation for plan command.

    Returns:
        0 on success, 1 on fatal error.
    """
    try:
        profile, config, run = _resolve_settings(args)
    except (BackupError, FileNotFoundError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    inventory = MySQLTableInventory.from_profile(profile)
    try:
        orchestrator = BackupOrchestrator(profile, config, inventory)
        backup_plan = await orchestrator.plan_backup(run)
    except BackupError as e:
        console.print(f"\n[bold red]x[/bold red] {e}")
        return 1
    finally:
        await inventory.close()

    _print_plan(backup_plan)
    console.print("[bold yellow]DRY RUN[/bold yellow] - Nothing was dumped.")
    return 0


# ============================================================================
# Command wrappers
# ============================================================================


def cmd_run(args: argparse.Namespace) -> int:
    """Dump the database and rotate retention tiers.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return asyncio.run(_async_run(args))


def cmd_plan(args: argparse.Namespace) -> int:
    """Show the dump plan without executing it.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return asyncio.run(_async_plan(args))


def cmd_prune(args: argparse.Namespace) -> int:
    """Prune retention tiers only.

    Touches local directories only -- no database calls.

    Returns:
        0 on success (including collected deletion failures), 1 on
        configuration errors.
    """
    try:
        profile, config, run = _resolve_settings(args)
        orchestrator = BackupOrchestrator(profile, config)
        results = orchestrator.prune_tiers(run)
    except (BackupError, FileNotFoundError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    _print_prune_results(results)
    return 0


def cmd_profiles(args: argparse.Namespace) -> int:
    """List available profiles from the config file.

    Returns:
        0 on success, 1 if the config file is missing or invalid.
    """
    try:
        path = Path(args.config) if args.config else default_config_path(args.env_prefix)
        config = load_backup_config(path)
    except (BackupError, FileNotFoundError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    table = Table(title="Connection Profiles", show_header=True, header_style="bold")
    table.add_column("Profile")
    table.add_column("Host")
    table.add_column("Database")
    table.add_column("Description")

    for name, profile in config.profiles.items():
        table.add_row(
            name,
            f"{profile.host}:{profile.port}",
            profile.database,
            profile.description or "",
        )

    console.print(table)
    return 0


# ============================================================================
# Main entry point
# ============================================================================


def _add_backup_options(parser: argparse.ArgumentParser) -> None:
    """Connection, threshold, retention and dump options shared by commands."""
    conn = parser.add_argument_group("connection")
    conn.add_argument("--profile", help="Connection profile from the config file")
    conn.add_argument("--host", help="Database host")
    conn.add_argument("--port", type=int, help="Database port")
    conn.add_argument("--user", help="Database user")
    conn.add_argument(
        "--password",
        help="Database password (prefer the BACKUP_PASSWORD env var)",
    )
    conn.add_argument("--database", help="Database to back up")

    sizing = parser.add_argument_group("sizing")
    sizing.add_argument(
        "--db-threshold",
        type=int,
        help="Total row count above which the dump is batched",
    )
    sizing.add_argument(
        "--table-threshold",
        type=int,
        help="Row count above which a table is split into row batches",
    )
    sizing.add_argument("--batch-size", type=int, help="Rows per batch")
    sizing.add_argument(
        "--force-split",
        action="store_true",
        help="Dump schema and data into separate files",
    )

    retention = parser.add_argument_group("retention")
    retention.add_argument("--daily", type=int, help="Daily entries to keep")
    retention.add_argument("--weekly", type=int, help="Weekly entries to keep")
    retention.add_argument("--monthly", type=int, help="Monthly entries to keep")

    dump = parser.add_argument_group("dump")
    dump.add_argument("--output-dir", help="Root directory for backup tiers")
    dump.add_argument("--mysqldump-path", help="Path to the mysqldump binary")
    dump.add_argument("--workers", type=int, help="Concurrent batch dumps")
    dump.add_argument("--timeout", type=float, help="Seconds allowed per dump task")
    dump.add_argument(
        "--no-fail-fast",
        action="store_true",
        help="Keep running independent batches after a failure",
    )
    dump.add_argument(
        "--date",
        type=date.fromisoformat,
        help="Execution date YYYY-MM-DD (default: today)",
    )


def main() -> int:
    """Main CLI entry point.

    Parses command line arguments and dispatches to appropriate handler.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    parser = argparse.ArgumentParser(
        prog="backup-rotator",
        description="Size-aware mysqldump backups with daily/weekly/monthly rotation",
    )

    parser.add_argument(
        "--config",
        help="Path to backup.toml (default: ./backup.toml)",
    )
    parser.add_argument(
        "--env-prefix",
        default="",
        help=(
            "Prefix for environment variable lookup "
            "(e.g., --env-prefix APP_ reads APP_BACKUP_PROFILE)"
        ),
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # run command
    p_run = subparsers.add_parser("run", help="Dump the database and rotate tiers")
    _add_backup_options(p_run)
    p_run.set_defaults(func=cmd_run)

    # plan command
    p_plan = subparsers.add_parser("plan", help="Show the dump plan without running it")
    _add_backup_options(p_plan)
    p_plan.set_defaults(func=cmd_plan)

    # prune command
    p_prune = subparsers.add_parser("prune", help="Prune retention tiers only")
    _add_backup_options(p_prune)
    p_prune.set_defaults(func=cmd_prune)

    # profiles command
    p_profiles = subparsers.add_parser("profiles", help="List available profiles")
    p_profiles.set_defaults(func=cmd_profiles)

    args = parser.parse_args()
    _configure_logging(args.verbose)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
