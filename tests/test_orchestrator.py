"""Tests for BackupOrchestrator.

Uses a fake inventory and a fake process runner so runs are fully
deterministic: verifies validation, fail-fast behavior, concurrent batch
execution, partial-backup retention, promotion to weekly/monthly tiers,
and that credentials never reach log output.
"""

import asyncio
import logging
from datetime import date
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from backup_rotator.config.models import (
    BackupConfig,
    BackupThresholds,
    ConnectionProfile,
    DumpSettings,
    RetentionSettings,
)
from backup_rotator.errors import (
    ConfigurationError,
    EmptyInventoryError,
    InventoryUnavailable,
)
from backup_rotator.inventory.base import TableInfo
from backup_rotator.models import BackupRun, TaskStatus
from backup_rotator.orchestrator import BackupOrchestrator
from backup_rotator.retention.models import TierName
from backup_rotator.runner import ProcessResult
from backup_rotator.strategy.models import DumpScope, SizingClassification

SUNDAY = date(2024, 1, 14)
MONDAY = date(2024, 1, 15)
FIRST_OF_MONTH = date(2024, 2, 1)  # Thursday


# ------------------------------------------------------------------
# Fakes
# ------------------------------------------------------------------


class FakeInventory:
    """In-memory ``TableInventory``."""

    def __init__(self, tables: list[TableInfo] | None = None, error: Exception | None = None):
        self.tables = tables or []
        self.error = error
        self.calls: list[str] = []

    async def list_tables(self, database: str) -> list[TableInfo]:
        self.calls.append(database)
        if self.error is not None:
            raise self.error
        return list(self.tables)

    async def close(self) -> None:
        pass


class FakeRunner:
    """Records invocations and writes the result file like mysqldump would.

    Args:
        fail_when: Substrings; an invocation whose result file contains one
            of them exits with status 2.
        delay: Seconds each invocation sleeps (for concurrency tests).
    """

    def __init__(self, fail_when: tuple[str, ...] = (), delay: float = 0.0):
        self.fail_when = fail_when
        self.delay = delay
        self.calls: list[list[str]] = []
        self.timeouts: list[float | None] = []
        self.envs: list[dict[str, str] | None] = []
        self.active = 0
        self.max_active = 0

    async def run(
        self,
        arguments: list[str],
        timeout: float | None = None,
        env: dict[str, str] | None = None,
    ) -> ProcessResult:
        self.calls.append(list(arguments))
        self.timeouts.append(timeout)
        self.envs.append(env)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            result_file = next(
                a.split("=", 1)[1] for a in arguments if a.startswith("--result-file=")
            )
            if any(marker in result_file for marker in self.fail_when):
                return ProcessResult(returncode=2, stderr="mysqldump: Got error 1045")
            Path(result_file).write_text("-- dump\n")
            return ProcessResult(returncode=0)
        finally:
            self.active -= 1


@pytest.fixture
def dump_tool(tmp_path: Path) -> Path:
    """An executable stand-in for the mysqldump binary."""
    tool = tmp_path / "bin" / "mysqldump"
    tool.parent.mkdir()
    tool.write_text("#!/bin/sh\nexit 0\n")
    tool.chmod(0o755)
    return tool


def _config(dump_tool: Path, output: Path, **dump_overrides) -> BackupConfig:
    return BackupConfig(
        thresholds=BackupThresholds(
            database_row_threshold=5_000_000,
            table_row_threshold=5_000_000,
            batch_size=1_000_000,
        ),
        retention=RetentionSettings(daily=2, weekly=2, monthly=1),
        dump=DumpSettings(
            mysqldump_path=str(dump_tool), output_directory=output, **dump_overrides
        ),
    )


def _profile() -> ConnectionProfile:
    return ConnectionProfile(
        host="db.internal", user="backup", password="s3cret", database="shop"
    )


def _run(output: Path, day: date = MONDAY) -> BackupRun:
    return BackupRun(database="shop", execution_date=day, output_root=output)


def _small_tables() -> list[TableInfo]:
    return [TableInfo(name="orders", row_count=3_000_000)]


def _large_tables() -> list[TableInfo]:
    return [
        TableInfo(name="big", row_count=8_000_000),
        TableInfo(name="small", row_count=1_000_000),
    ]


# ------------------------------------------------------------------
# Validation
# ------------------------------------------------------------------


class TestValidation:
    """Fatal preconditions raise before anything is spawned."""

    @pytest.mark.asyncio
    async def test_missing_dump_tool(self, tmp_path):
        config = _config(tmp_path / "nope" / "mysqldump", tmp_path / "out")
        runner = FakeRunner()
        inventory = FakeInventory(_small_tables())
        orchestrator = BackupOrchestrator(_profile(), config, inventory, runner)

        with pytest.raises(ConfigurationError, match="mysqldump"):
            await orchestrator.run(_run(tmp_path / "out"))

        assert runner.calls == []
        assert inventory.calls == []
        assert not (tmp_path / "out").exists()

    @pytest.mark.asyncio
    async def test_invalid_batch_size(self, tmp_path, dump_tool):
        config = _config(dump_tool, tmp_path / "out")
        config.thresholds.batch_size = 0
        orchestrator = BackupOrchestrator(
            _profile(), config, FakeInventory(_small_tables()), FakeRunner()
        )

        with pytest.raises(ConfigurationError, match="batch_size"):
            await orchestrator.run(_run(tmp_path / "out"))

    @pytest.mark.asyncio
    async def test_invalid_rotation(self, tmp_path, dump_tool):
        config = _config(dump_tool, tmp_path / "out")
        config.retention.weekly = 0
        orchestrator = BackupOrchestrator(
            _profile(), config, FakeInventory(_small_tables()), FakeRunner()
        )

        with pytest.raises(ConfigurationError, match="weekly"):
            await orchestrator.run(_run(tmp_path / "out"))

    @pytest.mark.asyncio
    async def test_invalid_workers(self, tmp_path, dump_tool):
        config = _config(dump_tool, tmp_path / "out", workers=0)
        orchestrator = BackupOrchestrator(
            _profile(), config, FakeInventory(_small_tables()), FakeRunner()
        )

        with pytest.raises(ConfigurationError, match="workers"):
            await orchestrator.run(_run(tmp_path / "out"))

    @pytest.mark.asyncio
    async def test_missing_database(self, tmp_path, dump_tool):
        orchestrator = BackupOrchestrator(
            _profile(), _config(dump_tool, tmp_path), FakeInventory(), FakeRunner()
        )
        run = BackupRun(database="", execution_date=MONDAY, output_root=tmp_path)

        with pytest.raises(ConfigurationError, match="database"):
            await orchestrator.run(run)

    @pytest.mark.asyncio
    async def test_inventory_unavailable(self, tmp_path, dump_tool):
        runner = FakeRunner()
        inventory = FakeInventory(error=InventoryUnavailable("connection refused"))
        orchestrator = BackupOrchestrator(
            _profile(), _config(dump_tool, tmp_path / "out"), inventory, runner
        )

        with pytest.raises(InventoryUnavailable):
            await orchestrator.run(_run(tmp_path / "out"))

        assert runner.calls == []
        # Only empty tier directories remain
        daily = tmp_path / "out" / "daily"
        assert daily.is_dir()
        assert list(daily.iterdir()) == []

    @pytest.mark.asyncio
    async def test_empty_inventory_when_batching(self, tmp_path, dump_tool):
        runner = FakeRunner()
        orchestrator = BackupOrchestrator(
            _profile(), _config(dump_tool, tmp_path / "out"), FakeInventory([]), runner
        )

        with patch(
            "backup_rotator.orchestrator.classify",
            return_value=SizingClassification.BATCHED_BY_TABLE,
        ):
            with pytest.raises(EmptyInventoryError):
                await orchestrator.run(_run(tmp_path / "out"))

        assert runner.calls == []


# ------------------------------------------------------------------
# Successful runs
# ------------------------------------------------------------------


class TestRun:
    @pytest.mark.asyncio
    async def test_single_file_run(self, tmp_path, dump_tool):
        out = tmp_path / "out"
        runner = FakeRunner()
        orchestrator = BackupOrchestrator(
            _profile(), _config(dump_tool, out), FakeInventory(_small_tables()), runner
        )

        summary = await orchestrator.run(_run(out))

        assert summary.classification == SizingClassification.SINGLE_FILE
        assert summary.exit_code == 0
        assert not summary.incomplete
        assert summary.tasks_attempted == 1
        expected = out / "daily" / "2024-01-15" / "shop-2024-01-15" / "shop_DATA_20240115.sql"
        assert expected.exists()
        assert runner.calls[0][0] == str(dump_tool)

    @pytest.mark.asyncio
    async def test_tier_directories_created(self, tmp_path, dump_tool):
        out = tmp_path / "out"
        orchestrator = BackupOrchestrator(
            _profile(), _config(dump_tool, out), FakeInventory(_small_tables()), FakeRunner()
        )
        await orchestrator.run(_run(out))
        assert sorted(p.name for p in out.iterdir()) == ["daily", "monthly", "weekly"]

    @pytest.mark.asyncio
    async def test_batched_run_executes_in_plan_order(self, tmp_path, dump_tool):
        out = tmp_path / "out"
        runner = FakeRunner()
        orchestrator = BackupOrchestrator(
            _profile(), _config(dump_tool, out), FakeInventory(_large_tables()), runner
        )

        summary = await orchestrator.run(_run(out))

        assert summary.classification == SizingClassification.BATCHED_BY_TABLE
        assert len(runner.calls) == 9
        result_files = [
            next(a for a in call if a.startswith("--result-file=")) for call in runner.calls
        ]
        assert result_files[0].endswith("shop_TABLE_big_20240115_batch1.sql")
        assert result_files[-1].endswith("shop_DATA_20240115_batch1.sql")

    @pytest.mark.asyncio
    async def test_timeout_passed_to_runner(self, tmp_path, dump_tool):
        out = tmp_path / "out"
        runner = FakeRunner()
        orchestrator = BackupOrchestrator(
            _profile(),
            _config(dump_tool, out, timeout=30),
            FakeInventory(_small_tables()),
            runner,
        )
        await orchestrator.run(_run(out))
        assert runner.timeouts == [30]

    @pytest.mark.asyncio
    async def test_plan_backup_writes_nothing(self, tmp_path):
        out = tmp_path / "out"
        runner = FakeRunner()
        # dump tool need not exist for planning
        config = _config(tmp_path / "missing" / "mysqldump", out)
        orchestrator = BackupOrchestrator(
            _profile(), config, FakeInventory(_large_tables()), runner
        )

        backup_plan = await orchestrator.plan_backup(_run(out))

        assert backup_plan.classification == SizingClassification.BATCHED_BY_TABLE
        assert backup_plan.total_rows == 9_000_000
        assert backup_plan.table_count == 2
        assert len(backup_plan.tasks) == 9
        assert runner.calls == []
        assert not out.exists()


# ------------------------------------------------------------------
# Failures
# ------------------------------------------------------------------


class TestTaskFailures:
    @pytest.mark.asyncio
    async def test_schema_failure_skips_data(self, tmp_path, dump_tool):
        out = tmp_path / "out"
        config = _config(dump_tool, out, fail_fast=False)
        config.thresholds.force_split = True
        runner = FakeRunner(fail_when=("_SCHEMA_",))
        orchestrator = BackupOrchestrator(
            _profile(), config, FakeInventory(_small_tables()), runner
        )

        summary = await orchestrator.run(_run(out))

        assert [r.task.scope for r in summary.results] == [
            DumpScope.SCHEMA_ONLY,
            DumpScope.DATA_ONLY,
        ]
        assert [r.status for r in summary.results] == [
            TaskStatus.FAILED,
            TaskStatus.SKIPPED,
        ]
        # exit status carried from the failed invocation
        assert summary.results[0].returncode == 2
        assert "exit 2" in summary.results[0].error
        assert len(runner.calls) == 1
        assert summary.exit_code == 1

    @pytest.mark.asyncio
    async def test_fail_fast_stops_sequence(self, tmp_path, dump_tool):
        out = tmp_path / "out"
        runner = FakeRunner(fail_when=("_batch3",))
        orchestrator = BackupOrchestrator(
            _profile(), _config(dump_tool, out), FakeInventory(_large_tables()), runner
        )

        summary = await orchestrator.run(_run(out))

        assert len(runner.calls) == 3
        assert len(summary.failed_tasks) == 1
        assert len(summary.skipped_tasks) == 6
        assert summary.tasks_attempted == 3
        assert summary.incomplete
        assert "exit 2" in summary.failed_tasks[0].error

    @pytest.mark.asyncio
    async def test_no_fail_fast_continues_batches(self, tmp_path, dump_tool):
        out = tmp_path / "out"
        runner = FakeRunner(fail_when=("big_20240115_batch2", "big_20240115_batch5"))
        orchestrator = BackupOrchestrator(
            _profile(),
            _config(dump_tool, out, fail_fast=False),
            FakeInventory(_large_tables()),
            runner,
        )

        summary = await orchestrator.run(_run(out))

        assert len(runner.calls) == 9
        assert len(summary.failed_tasks) == 2
        assert summary.skipped_tasks == []

    @pytest.mark.asyncio
    async def test_partial_files_kept_and_not_promoted(self, tmp_path, dump_tool):
        out = tmp_path / "out"
        runner = FakeRunner(fail_when=("_batch2",))
        orchestrator = BackupOrchestrator(
            _profile(), _config(dump_tool, out), FakeInventory(_large_tables()), runner
        )

        summary = await orchestrator.run(_run(out, day=SUNDAY))

        entry = out / "daily" / "2024-01-14" / "shop-2024-01-14"
        assert (entry / "shop_TABLE_big_20240114_batch1.sql").exists()
        assert summary.promoted_tiers == []
        assert list((out / "weekly").iterdir()) == []

    @pytest.mark.asyncio
    async def test_runner_exception_recorded(self, tmp_path, dump_tool):
        out = tmp_path / "out"
        runner = AsyncMock()
        runner.run = AsyncMock(side_effect=OSError("exec format error"))
        orchestrator = BackupOrchestrator(
            _profile(), _config(dump_tool, out), FakeInventory(_small_tables()), runner
        )

        summary = await orchestrator.run(_run(out))

        assert summary.failed_tasks[0].error == "exec format error"
        assert summary.exit_code == 1

    @pytest.mark.asyncio
    async def test_timed_out_task_is_failed(self, tmp_path, dump_tool):
        out = tmp_path / "out"
        runner = AsyncMock()
        runner.run = AsyncMock(
            return_value=ProcessResult(returncode=-9, stderr="timed out after 5s", timed_out=True)
        )
        orchestrator = BackupOrchestrator(
            _profile(), _config(dump_tool, out), FakeInventory(_small_tables()), runner
        )

        summary = await orchestrator.run(_run(out, day=SUNDAY))

        assert summary.failed_tasks[0].returncode == -9
        assert summary.promoted_tiers == []


# ------------------------------------------------------------------
# Concurrency
# ------------------------------------------------------------------


class TestConcurrentBatches:
    @pytest.mark.asyncio
    async def test_bounded_by_workers(self, tmp_path, dump_tool):
        out = tmp_path / "out"
        runner = FakeRunner(delay=0.01)
        orchestrator = BackupOrchestrator(
            _profile(),
            _config(dump_tool, out, workers=3),
            FakeInventory(_large_tables()),
            runner,
        )

        summary = await orchestrator.run(_run(out))

        assert len(runner.calls) == 9
        assert 1 < runner.max_active <= 3
        assert summary.exit_code == 0
        # results stay in plan order
        assert [r.task.batch_index for r in summary.results[:8]] == list(range(1, 9))

    @pytest.mark.asyncio
    async def test_all_concurrent_failures_collected(self, tmp_path, dump_tool):
        out = tmp_path / "out"
        runner = FakeRunner(fail_when=("big_20240115_batch1", "big_20240115_batch2"), delay=0.01)
        orchestrator = BackupOrchestrator(
            _profile(),
            _config(dump_tool, out, workers=2, fail_fast=False),
            FakeInventory(_large_tables()),
            runner,
        )

        summary = await orchestrator.run(_run(out))

        failed = sorted(r.task.batch_index for r in summary.failed_tasks)
        assert failed == [1, 2]
        assert len(runner.calls) == 9

    @pytest.mark.asyncio
    async def test_fail_fast_stops_new_tasks(self, tmp_path, dump_tool):
        out = tmp_path / "out"
        runner = FakeRunner(fail_when=("big_20240115_batch1",), delay=0.01)
        orchestrator = BackupOrchestrator(
            _profile(),
            _config(dump_tool, out, workers=2),
            FakeInventory(_large_tables()),
            runner,
        )

        summary = await orchestrator.run(_run(out))

        assert len(runner.calls) < 9
        assert summary.skipped_tasks
        assert summary.incomplete

    @pytest.mark.asyncio
    async def test_split_never_concurrent(self, tmp_path, dump_tool):
        out = tmp_path / "out"
        config = _config(dump_tool, out, workers=4)
        config.thresholds.force_split = True
        runner = FakeRunner(delay=0.01)
        orchestrator = BackupOrchestrator(
            _profile(), config, FakeInventory(_small_tables()), runner
        )

        await orchestrator.run(_run(out))

        assert runner.max_active == 1
        assert "--no-data" in runner.calls[0]


# ------------------------------------------------------------------
# Retention
# ------------------------------------------------------------------


class TestRetention:
    @pytest.mark.asyncio
    async def test_weekly_promotion_on_sunday(self, tmp_path, dump_tool):
        out = tmp_path / "out"
        orchestrator = BackupOrchestrator(
            _profile(), _config(dump_tool, out), FakeInventory(_small_tables()), FakeRunner()
        )

        summary = await orchestrator.run(_run(out, day=SUNDAY))

        assert summary.promoted_tiers == [TierName.WEEKLY]
        weekly = out / "weekly" / "shop-2024-W02"
        assert (weekly / "shop_DATA_20240114.sql").exists()

    @pytest.mark.asyncio
    async def test_monthly_promotion_on_first(self, tmp_path, dump_tool):
        out = tmp_path / "out"
        orchestrator = BackupOrchestrator(
            _profile(), _config(dump_tool, out), FakeInventory(_small_tables()), FakeRunner()
        )

        summary = await orchestrator.run(_run(out, day=FIRST_OF_MONTH))

        assert summary.promoted_tiers == [TierName.MONTHLY]
        assert (out / "monthly" / "shop-2024-02" / "shop_DATA_20240201.sql").exists()

    @pytest.mark.asyncio
    async def test_no_promotion_midweek(self, tmp_path, dump_tool):
        out = tmp_path / "out"
        orchestrator = BackupOrchestrator(
            _profile(), _config(dump_tool, out), FakeInventory(_small_tables()), FakeRunner()
        )
        summary = await orchestrator.run(_run(out, day=MONDAY))
        assert summary.promoted_tiers == []

    @pytest.mark.asyncio
    async def test_daily_rotation_across_runs(self, tmp_path, dump_tool):
        out = tmp_path / "out"
        orchestrator = BackupOrchestrator(
            _profile(), _config(dump_tool, out), FakeInventory(_small_tables()), FakeRunner()
        )

        for day in (date(2024, 1, 16), date(2024, 1, 17), date(2024, 1, 18)):
            summary = await orchestrator.run(_run(out, day=day))

        assert sorted(p.name for p in (out / "daily").iterdir()) == ["2024-01-17", "2024-01-18"]
        daily = next(r for r in summary.prune_results if r.tier == TierName.DAILY)
        assert daily.removed_count == 1

    @pytest.mark.asyncio
    async def test_prune_tiers_only(self, tmp_path, dump_tool):
        out = tmp_path / "out"
        for name in ("2024-01-01", "2024-01-02", "2024-01-03"):
            (out / "daily" / name).mkdir(parents=True)
        orchestrator = BackupOrchestrator(_profile(), _config(dump_tool, out))

        results = orchestrator.prune_tiers(_run(out))

        assert [r.tier for r in results] == list(TierName)
        assert sorted(p.name for p in (out / "daily").iterdir()) == ["2024-01-02", "2024-01-03"]

    @pytest.mark.asyncio
    async def test_incomplete_run_does_not_rotate(self, tmp_path, dump_tool):
        out = tmp_path / "out"
        config = _config(dump_tool, out)
        config.retention.daily = 1
        inventory = FakeInventory(_small_tables())

        good = BackupOrchestrator(_profile(), config, inventory, FakeRunner())
        await good.run(_run(out, day=MONDAY))

        failing = BackupOrchestrator(
            _profile(), config, inventory, FakeRunner(fail_when=("_DATA_",))
        )
        summary = await failing.run(_run(out, day=date(2024, 1, 16)))

        assert summary.incomplete
        assert summary.prune_results == []
        # the last complete backup survives the failed one
        assert sorted(p.name for p in (out / "daily").iterdir()) == ["2024-01-15", "2024-01-16"]
        assert (out / "daily" / "2024-01-15" / "shop-2024-01-15" / "shop_DATA_20240115.sql").exists()

    def test_prune_tiers_requires_database(self, tmp_path, dump_tool):
        out = tmp_path / "out"
        for name in ("shop-2024-W01", "blog-2024-W02"):
            (out / "weekly" / name).mkdir(parents=True)
        config = _config(dump_tool, out)
        config.retention.weekly = 1
        orchestrator = BackupOrchestrator(_profile(), config)

        with pytest.raises(ConfigurationError, match="No database name"):
            orchestrator.prune_tiers(BackupRun(database="", execution_date=MONDAY, output_root=out))

        assert sorted(p.name for p in (out / "weekly").iterdir()) == [
            "blog-2024-W02",
            "shop-2024-W01",
        ]

    def test_prune_tiers_keeps_other_databases(self, tmp_path, dump_tool):
        out = tmp_path / "out"
        for name in ("shop-2024-W01", "shop-2024-W02", "blog-2024-W02"):
            (out / "weekly" / name).mkdir(parents=True)
        config = _config(dump_tool, out)
        config.retention.weekly = 1
        orchestrator = BackupOrchestrator(_profile(), config)

        orchestrator.prune_tiers(_run(out))

        assert sorted(p.name for p in (out / "weekly").iterdir()) == [
            "blog-2024-W02",
            "shop-2024-W02",
        ]


# ------------------------------------------------------------------
# Logging
# ------------------------------------------------------------------


class TestCredentialRedaction:
    @pytest.mark.asyncio
    async def test_password_never_logged(self, tmp_path, dump_tool, caplog):
        out = tmp_path / "out"
        runner = FakeRunner(fail_when=("_DATA_",))
        orchestrator = BackupOrchestrator(
            _profile(), _config(dump_tool, out), FakeInventory(_small_tables()), runner
        )

        with caplog.at_level(logging.DEBUG):
            summary = await orchestrator.run(_run(out))

        assert "s3cret" not in caplog.text
        assert "s3cret" not in summary.format_report()
        # the password reaches the dump tool through its environment only
        assert not any("s3cret" in a for a in runner.calls[0])
        assert runner.envs[0] == {"MYSQL_PWD": "s3cret"}


class TestRunSummary:
    @pytest.mark.asyncio
    async def test_format_report(self, tmp_path, dump_tool):
        out = tmp_path / "out"
        runner = FakeRunner(fail_when=("_batch2",))
        orchestrator = BackupOrchestrator(
            _profile(), _config(dump_tool, out), FakeInventory(_large_tables()), runner
        )

        report = (await orchestrator.run(_run(out))).format_report()

        assert "INCOMPLETE" in report
        assert "batched_by_table" in report
        assert "Failed tasks (1)" in report
        assert "Skipped tasks (7)" in report
        # incomplete runs are not rotated
        assert "Pruned" not in report
