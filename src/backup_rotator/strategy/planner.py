"""Dump plan generation -- turn a classification into dump invocations.

Builds the ordered list of ``DumpTask``s for a run.  Each task holds the
full argument list for one ``mysqldump`` invocation; nothing is executed
here.

Usage:
    from backup_rotator.strategy.planner import plan
    from backup_rotator.strategy.sizing import classify

    classification = classify(tables, options.thresholds)
    tasks = plan(classification, tables, options)
    for task in tasks:
        print(task.label, task.redacted_arguments())
"""

import math
from collections.abc import Sequence
from urllib.parse import quote

from backup_rotator.errors import ConfigurationError, EmptyInventoryError
from backup_rotator.inventory.base import TableInfo
from backup_rotator.strategy.models import (
    PASSWORD_ENV,
    DumpOptions,
    DumpScope,
    DumpTask,
    SizingClassification,
)

# Scope flags.  Data dumps never carry CREATE statements or triggers: the
# schema is expected to exist at restore time.
DATA_ONLY_FLAGS = ["--no-create-db", "--no-create-info", "--skip-triggers"]
SCHEMA_ONLY_FLAGS = ["--no-data", "--no-create-db"]

# LIMIT windows need a stable row order across separate invocations
ROW_WINDOW_FLAGS = DATA_ONLY_FLAGS + ["--order-by-primary"]

# MySQL's documented "all remaining rows" LIMIT count
_UNBOUNDED_LIMIT = 18446744073709551615


# ------------------------------------------------------------------
# Argument helpers
# ------------------------------------------------------------------


def _connection_arguments(options: DumpOptions) -> list[str]:
    return [
        options.dump_path,
        f"--host={options.host}",
        f"--port={options.port}",
        f"--user={options.user}",
    ]


def _connection_environment(options: DumpOptions) -> dict[str, str]:
    # The password never goes on argv, which is visible in the process list
    if options.password:
        return {PASSWORD_ENV: options.password}
    return {}


def _table_scope_name(table: str) -> str:
    """File-name scope for a per-table batch.

    Prefixed with ``TABLE_`` so a table called ``DATA`` or ``SCHEMA`` cannot
    share a file with the whole-database or packed dumps, and percent-encoded
    so path separators in a table name stay inside the file name.
    """
    return f"TABLE_{quote(table, safe='')}"


def _output_path(options: DumpOptions, scope_name: str, batch_index: int | None = None):
    suffix = f"_batch{batch_index}" if batch_index is not None else ""
    filename = f"{options.database}_{scope_name}_{options.date_stamp}{suffix}.sql"
    return options.output_directory / filename


def _build_task(
    options: DumpOptions,
    scope: DumpScope,
    scope_name: str,
    flags: list[str],
    tables: list[str] | None = None,
    batch_index: int | None = None,
    row_range: tuple[int, int] | None = None,
    where: str | None = None,
) -> DumpTask:
    output_path = _output_path(options, scope_name, batch_index)

    arguments = _connection_arguments(options) + list(flags)
    if where is not None:
        arguments.append(f"--where={where}")
    arguments.append(f"--result-file={output_path}")
    arguments.append(options.database)
    arguments.extend(tables or [])

    return DumpTask(
        scope=scope,
        output_path=output_path,
        arguments=arguments,
        tables=list(tables or []),
        batch_index=batch_index,
        row_range=row_range,
        environment=_connection_environment(options),
    )


# ------------------------------------------------------------------
# Strategies
# ------------------------------------------------------------------


def _plan_single_file(options: DumpOptions) -> list[DumpTask]:
    return [
        _build_task(options, DumpScope.WHOLE_DATABASE, "DATA", DATA_ONLY_FLAGS)
    ]


def _plan_split(options: DumpOptions) -> list[DumpTask]:
    # Schema first so a restore can apply structure before data.
    return [
        _build_task(options, DumpScope.SCHEMA_ONLY, "SCHEMA", SCHEMA_ONLY_FLAGS),
        _build_task(options, DumpScope.DATA_ONLY, "DATA", DATA_ONLY_FLAGS),
    ]


def split_row_ranges(row_count: int, batch_size: int) -> list[tuple[int, int]]:
    """Partition ``[0, row_count)`` into ``(offset, count)`` windows.

    Produces ``ceil(row_count / batch_size)`` contiguous, non-overlapping
    windows; every window holds ``batch_size`` rows except possibly the last.

    Example:
        >>> split_row_ranges(25, 10)
        [(0, 10), (10, 10), (20, 5)]
    """
    batch_count = math.ceil(row_count / batch_size)
    return [
        (offset, min(batch_size, row_count - offset))
        for offset in range(0, batch_count * batch_size, batch_size)
    ]


def pack_tables(tables: Sequence[TableInfo], batch_size: int) -> list[list[TableInfo]]:
    """Greedily pack tables into bins of at most ``batch_size`` rows.

    Tables keep their order.  A table is appended to the current bin until
    it would push the bin past ``batch_size``, then a new bin starts.  A
    table larger than ``batch_size`` on its own occupies a bin by itself.

    Example:
        >>> bins = pack_tables([TableInfo(name="a", row_count=6),
        ...                     TableInfo(name="b", row_count=5)], 10)
        >>> [[t.name for t in b] for b in bins]
        [['a'], ['b']]
    """
    bins: list[list[TableInfo]] = []
    current: list[TableInfo] = []
    current_rows = 0

    for table in tables:
        if current and current_rows + table.row_count > batch_size:
            bins.append(current)
            current, current_rows = [], 0
        current.append(table)
        current_rows += table.row_count

    if current:
        bins.append(current)

    return bins


def _plan_batched(tables: Sequence[TableInfo], options: DumpOptions) -> list[DumpTask]:
    thresholds = options.thresholds
    large = [t for t in tables if t.row_count > thresholds.table_row_threshold]
    small = [t for t in tables if t.row_count <= thresholds.table_row_threshold]

    tasks: list[DumpTask] = []

    for table in large:
        ranges = split_row_ranges(table.row_count, thresholds.batch_size)
        for index, (offset, count) in enumerate(ranges, start=1):
            # The last window is open-ended: information_schema row counts
            # are estimates and rows past the estimate must still be dumped.
            limit = count if index < len(ranges) else _UNBOUNDED_LIMIT
            tasks.append(
                _build_task(
                    options,
                    DumpScope.TABLE_BATCH,
                    _table_scope_name(table.name),
                    ROW_WINDOW_FLAGS,
                    tables=[table.name],
                    batch_index=index,
                    row_range=(offset, count),
                    where=f"1 LIMIT {offset},{limit}",
                )
            )

    for index, group in enumerate(pack_tables(small, thresholds.batch_size), start=1):
        tasks.append(
            _build_task(
                options,
                DumpScope.TABLE_BATCH,
                "DATA",
                DATA_ONLY_FLAGS,
                tables=[t.name for t in group],
                batch_index=index,
            )
        )

    return tasks


def plan(
    classification: SizingClassification,
    tables: Sequence[TableInfo],
    options: DumpOptions,
) -> list[DumpTask]:
    """Build the ordered dump plan for a classification.

    - ``SINGLE_FILE``: one whole-database data dump.
    - ``SPLIT_SCHEMA_AND_DATA``: a schema-only dump, then a data-only dump.
    - ``BATCHED_BY_TABLE``: row-window batches for each table above
      ``table_row_threshold``, then the remaining tables packed into
      combined batches of at most ``batch_size`` rows.

    Output files land in ``options.output_directory`` and are named
    ``<database>_<SCOPE>_<YYYYMMDD>[_batch<N>].sql`` where SCOPE is
    ``DATA``, ``SCHEMA`` or, for per-table batches, ``TABLE_<table>`` with
    the table name percent-encoded. Every task gets a distinct path.

    Args:
        classification: Strategy returned by ``classify()``.
        tables: Table inventory, in inventory order.
        options: Connection, output and threshold settings.

    Returns:
        Tasks in execution order.

    Raises:
        ConfigurationError: If ``batch_size`` is not positive.
        EmptyInventoryError: If batching is requested over no tables.
    """
    if options.thresholds.batch_size <= 0:
        raise ConfigurationError(
            f"batch_size must be positive, got {options.thresholds.batch_size}"
        )

    if classification == SizingClassification.SINGLE_FILE:
        return _plan_single_file(options)

    if classification == SizingClassification.SPLIT_SCHEMA_AND_DATA:
        return _plan_split(options)

    if not tables:
        raise EmptyInventoryError(
            f"Cannot plan a batched dump of '{options.database}': no tables"
        )
    return _plan_batched(tables, options)
