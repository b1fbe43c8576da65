"""Exception hierarchy for backup runs.

Fatal errors (``ConfigurationError``, ``InventoryUnavailable``,
``EmptyInventoryError``) abort a run before any dump process is spawned.
``TaskExecutionFailure`` and ``RetentionPruneFailure`` describe degraded
runs -- they are recorded in the run summary rather than propagated.

Usage:
    from backup_rotator.errors import BackupError, ConfigurationError

    try:
        summary = await orchestrator.run(backup_run)
    except BackupError as e:
        console.print(f"[red]Error: {e}[/red]")
"""


class BackupError(Exception):
    """Base class for all backup-rotator errors."""

    pass


class ConfigurationError(BackupError):
    """Raised when thresholds, rotation counts, or paths are invalid."""

    pass


class InventoryUnavailable(BackupError):
    """Raised when the table inventory cannot be retrieved."""

    pass


class EmptyInventoryError(BackupError):
    """Raised when a batched dump is planned over an empty table list."""

    pass


class TaskExecutionFailure(BackupError):
    """A single dump invocation failed.

    Carries the process exit status (``returncode``; None when the process
    could not be started) so the orchestrator can report it without
    re-raising.
    """

    def __init__(self, message: str, returncode: int | None = None) -> None:
        super().__init__(message)
        self.returncode = returncode


class RetentionPruneFailure(BackupError):
    """A stale retention entry could not be deleted."""

    pass
