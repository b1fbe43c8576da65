"""Pydantic models for backup runs and their outcome."""

from datetime import date
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from backup_rotator.retention.models import PruneResult, TierName
from backup_rotator.strategy.models import DumpTask, SizingClassification


# ============================================================================
# Run Models
# ============================================================================


class BackupRun(BaseModel):
    """One backup invocation: which database, for which date, where to."""

    model_config = ConfigDict(frozen=True)

    database: str
    execution_date: date
    output_root: Path


class BackupPlan(BaseModel):
    """Classification and tasks computed for a run, before execution."""

    classification: SizingClassification
    table_count: int = 0
    total_rows: int = 0
    tasks: list[DumpTask] = Field(default_factory=list)


# ============================================================================
# Result Models
# ============================================================================


class TaskStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"  # not started after an earlier failure


class TaskResult(BaseModel):
    """Outcome of one dump task."""

    task: DumpTask
    status: TaskStatus
    error: str | None = None
    returncode: int | None = None


class RunSummary(BaseModel):
    """Result of a backup run."""

    database: str
    execution_date: date
    classification: SizingClassification
    results: list[TaskResult] = Field(default_factory=list)
    promoted_tiers: list[TierName] = Field(default_factory=list)
    prune_results: list[PruneResult] = Field(default_factory=list)

    @property
    def tasks_attempted(self) -> int:
        return sum(1 for r in self.results if r.status != TaskStatus.SKIPPED)

    @property
    def failed_tasks(self) -> list[TaskResult]:
        return [r for r in self.results if r.status == TaskStatus.FAILED]

    @property
    def skipped_tasks(self) -> list[TaskResult]:
        return [r for r in self.results if r.status == TaskStatus.SKIPPED]

    @property
    def incomplete(self) -> bool:
        """True if any task failed or was skipped (partial backup kept)."""
        return any(r.status != TaskStatus.SUCCEEDED for r in self.results)

    @property
    def exit_code(self) -> int:
        return 1 if self.incomplete else 0

    def format_report(self) -> str:
        """Format run summary as human-readable report."""
        status = "INCOMPLETE" if self.incomplete else "OK"
        lines = [
            f"Backup of {self.database} ({self.execution_date.isoformat()}): {status}",
            f"  Classification: {self.classification.value}",
            f"  Tasks attempted: {self.tasks_attempted}/{len(self.results)}",
        ]

        if self.failed_tasks:
            lines.append(f"\n  Failed tasks ({len(self.failed_tasks)}):")
            for result in self.failed_tasks:
                lines.append(f"    - {result.task.label}: {result.error}")

        if self.skipped_tasks:
            lines.append(f"\n  Skipped tasks ({len(self.skipped_tasks)}):")
            for result in self.skipped_tasks:
                lines.append(f"    - {result.task.label}")

        if self.promoted_tiers:
            tiers = ", ".join(t.value for t in self.promoted_tiers)
            lines.append(f"\n  Promoted to: {tiers}")

        if self.prune_results:
            lines.append("\n  Pruned:")
            for prune in self.prune_results:
                line = f"    - {prune.tier.value}: {prune.removed_count} removed, {len(prune.kept)} kept"
                if prune.failures:
                    line += f", {len(prune.failures)} failed"
                lines.append(line)

        return "\n".join(lines)
