"""Backup run orchestration.

Ties the inventory, sizing classification, dump planner, process runner
and retention manager together for one invocation:

1. Validate configuration (thresholds, rotation counts, dump tool)
2. Ensure tier directories exist
3. Fetch the table inventory and classify
4. Build the dump plan and create the daily entry directory
5. Execute tasks in plan order
6. Promote a complete daily entry into weekly/monthly on schedule
7. Prune every tier (complete runs only)

Fatal errors (``ConfigurationError``, ``InventoryUnavailable``,
``EmptyInventoryError``) raise before any dump process is spawned.  Task
failures are collected into the ``RunSummary``; already written files are
kept, and an incomplete run neither promotes nor prunes.

Usage:
    from backup_rotator.orchestrator import BackupOrchestrator
    from backup_rotator.models import BackupRun

    orchestrator = BackupOrchestrator(profile, config, inventory)
    summary = await orchestrator.run(
        BackupRun(database="shop", execution_date=date.today(), output_root=root)
    )
    print(summary.format_report())
"""

import asyncio
import logging
import shutil
from pathlib import Path

from backup_rotator.config.models import BackupConfig, ConnectionProfile
from backup_rotator.errors import ConfigurationError, TaskExecutionFailure
from backup_rotator.inventory.base import TableInventory
from backup_rotator.models import (
    BackupPlan,
    BackupRun,
    RunSummary,
    TaskResult,
    TaskStatus,
)
from backup_rotator.retention.manager import (
    RetentionManager,
    is_monthly_boundary,
    is_weekly_boundary,
)
from backup_rotator.retention.models import PruneResult, TierName
from backup_rotator.runner import ProcessRunner, SubprocessRunner
from backup_rotator.strategy.models import (
    DumpOptions,
    DumpScope,
    DumpTask,
    SizingClassification,
)
from backup_rotator.strategy.planner import plan
from backup_rotator.strategy.sizing import classify, total_row_count, validate_thresholds

logger = logging.getLogger(__name__)


class BackupOrchestrator:
    """Runs one backup invocation end to end.

    Args:
        profile: Connection settings passed to the dump tool.
        config: Thresholds, retention and dump settings.
        inventory: Source of table names and row counts (not needed for
            ``prune_tiers``).
        runner: Executes dump invocations (default: ``SubprocessRunner``).
        manager: Retention manager; built from ``config.retention`` under
            the run's output root when omitted.
    """

    def __init__(
        self,
        profile: ConnectionProfile,
        config: BackupConfig,
        inventory: TableInventory | None = None,
        runner: ProcessRunner | None = None,
        manager: RetentionManager | None = None,
    ) -> None:
        self._profile = profile
        self._config = config
        self._inventory = inventory
        self._runner: ProcessRunner = runner or SubprocessRunner()
        self._manager = manager

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _manager_for(self, run: BackupRun) -> RetentionManager:
        if self._manager is not None:
            return self._manager
        return RetentionManager.from_settings(run.output_root, self._config.retention)

    def validate(self, run: BackupRun, check_dump_tool: bool = True) -> RetentionManager:
        """Validate configuration for ``run``.

        Returns:
            The retention manager for the run.

        Raises:
            ConfigurationError: On any invalid setting or missing dump tool.
        """
        if not run.database:
            raise ConfigurationError("No database name configured")

        validate_thresholds(self._config.thresholds)

        manager = self._manager_for(run)
        manager.validate()

        dump = self._config.dump
        if dump.workers < 1:
            raise ConfigurationError(f"workers must be at least 1, got {dump.workers}")
        if dump.timeout is not None and dump.timeout <= 0:
            raise ConfigurationError(f"timeout must be positive, got {dump.timeout}")

        if check_dump_tool and shutil.which(dump.mysqldump_path) is None:
            raise ConfigurationError(
                f"mysqldump binary can not be found at '{dump.mysqldump_path}', "
                f"please specify the correct --mysqldump-path"
            )

        return manager

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def _dump_options(self, run: BackupRun, output_directory: Path) -> DumpOptions:
        return DumpOptions(
            host=self._profile.host,
            port=self._profile.port,
            user=self._profile.user,
            password=self._profile.password,
            database=run.database,
            dump_path=self._config.dump.mysqldump_path,
            output_directory=output_directory,
            execution_date=run.execution_date,
            thresholds=self._config.thresholds,
        )

    async def _build_plan(self, run: BackupRun, manager: RetentionManager) -> BackupPlan:
        if self._inventory is None:
            raise ConfigurationError("No table inventory configured")

        tables = await self._inventory.list_tables(run.database)
        logger.info("%d tables retrieved: %s", len(tables), run.database)

        thresholds = self._config.thresholds
        total = total_row_count(tables)
        classification = classify(tables, thresholds)
        logger.info(
            "Classification %s: force_split=%s, total rows %d, database threshold %d",
            classification.value,
            thresholds.force_split,
            total,
            thresholds.database_row_threshold,
        )

        output_directory = manager.entry_path(manager.daily, run.execution_date, run.database)
        tasks = plan(classification, tables, self._dump_options(run, output_directory))

        return BackupPlan(
            classification=classification,
            table_count=len(tables),
            total_rows=total,
            tasks=tasks,
        )

    async def plan_backup(self, run: BackupRun) -> BackupPlan:
        """Compute the classification and dump plan without executing it.

        Nothing is written to disk and the dump tool is not required.
        """
        manager = self.validate(run, check_dump_tool=False)
        return await self._build_plan(run, manager)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _run_task(self, task: DumpTask) -> TaskResult:
        logger.info(
            "Running %s: %s", task.label, " ".join(task.redacted_arguments())
        )
        try:
            result = await self._runner.run(
                task.arguments,
                timeout=self._config.dump.timeout,
                env=task.environment or None,
            )
        except Exception as e:
            logger.exception("Dump runner raised for %s", task.label)
            return TaskResult(task=task, status=TaskStatus.FAILED, error=str(e))

        if result.succeeded:
            logger.info("Finished %s -> %s", task.label, task.output_path)
            return TaskResult(task=task, status=TaskStatus.SUCCEEDED, returncode=result.returncode)

        failure = TaskExecutionFailure(
            f"{task.label} failed (exit {result.returncode}): {result.stderr}",
            returncode=result.returncode,
        )
        logger.error("%s", failure)
        return TaskResult(
            task=task,
            status=TaskStatus.FAILED,
            error=str(failure),
            returncode=failure.returncode,
        )

    async def _execute_sequential(self, tasks: list[DumpTask]) -> list[TaskResult]:
        results: list[TaskResult] = []
        stopped = False

        for task in tasks:
            if stopped:
                results.append(TaskResult(task=task, status=TaskStatus.SKIPPED))
                continue

            result = await self._run_task(task)
            results.append(result)

            # Data depends on the schema dump; batches only stop on fail_fast.
            if result.status == TaskStatus.FAILED and (
                self._config.dump.fail_fast or task.scope == DumpScope.SCHEMA_ONLY
            ):
                stopped = True

        return results

    async def _execute_concurrent(self, tasks: list[DumpTask]) -> list[TaskResult]:
        semaphore = asyncio.Semaphore(self._config.dump.workers)
        stop = asyncio.Event()

        async def _worker(task: DumpTask) -> TaskResult:
            async with semaphore:
                if stop.is_set():
                    return TaskResult(task=task, status=TaskStatus.SKIPPED)
                result = await self._run_task(task)
                if result.status == TaskStatus.FAILED and self._config.dump.fail_fast:
                    stop.set()
                return result

        return list(await asyncio.gather(*(_worker(task) for task in tasks)))

    async def execute(
        self, classification: SizingClassification, tasks: list[DumpTask]
    ) -> list[TaskResult]:
        """Execute a plan; batches run concurrently when ``workers > 1``.

        Returns:
            One ``TaskResult`` per task, in plan order.
        """
        if (
            classification == SizingClassification.BATCHED_BY_TABLE
            and self._config.dump.workers > 1
        ):
            return await self._execute_concurrent(tasks)
        return await self._execute_sequential(tasks)

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def _promote(self, manager: RetentionManager, run: BackupRun) -> list[TierName]:
        retention = self._config.retention
        daily_entry = manager.entry_path(manager.daily, run.execution_date, run.database)
        promoted: list[TierName] = []

        if is_weekly_boundary(run.execution_date, retention.weekly_day):
            manager.record_entry(manager.weekly, run.execution_date, run.database, source=daily_entry)
            promoted.append(TierName.WEEKLY)

        if is_monthly_boundary(run.execution_date, retention.monthly_day):
            manager.record_entry(manager.monthly, run.execution_date, run.database, source=daily_entry)
            promoted.append(TierName.MONTHLY)

        return promoted

    @staticmethod
    def _prune_all(manager: RetentionManager, database: str) -> list[PruneResult]:
        return [manager.prune(tier, database=database) for tier in manager.tiers]

    def prune_tiers(self, run: BackupRun) -> list[PruneResult]:
        """Run retention housekeeping only (no inventory, no dump).

        Weekly and monthly entries are counted per database, so a database
        name is required just as for a backup run.

        Raises:
            ConfigurationError: No database name, or invalid rotation counts.
        """
        if not run.database:
            raise ConfigurationError(
                "No database name configured; prune needs --database or a profile"
            )

        manager = self._manager_for(run)
        manager.validate()
        manager.ensure_tier_directories()
        return self._prune_all(manager, run.database)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(self, run: BackupRun) -> RunSummary:
        """Execute one backup run.

        Raises:
            ConfigurationError: Invalid configuration or missing dump tool.
            InventoryUnavailable: Tables could not be listed.
            EmptyInventoryError: Batching planned over no tables.

        Returns:
            ``RunSummary``; ``summary.incomplete`` is True if any task failed.
        """
        manager = self.validate(run)
        manager.ensure_tier_directories()

        backup_plan = await self._build_plan(run, manager)

        manager.record_entry(manager.daily, run.execution_date, run.database)
        results = await self.execute(backup_plan.classification, backup_plan.tasks)

        summary = RunSummary(
            database=run.database,
            execution_date=run.execution_date,
            classification=backup_plan.classification,
            results=results,
        )

        # Rotation only runs after a complete backup
        if summary.incomplete:
            logger.warning(
                "Backup of %s is incomplete: %d failed, %d skipped; partial files kept, "
                "rotation skipped",
                run.database,
                len(summary.failed_tasks),
                len(summary.skipped_tasks),
            )
            return summary

        summary.promoted_tiers = self._promote(manager, run)
        summary.prune_results = self._prune_all(manager, run.database)
        return summary
