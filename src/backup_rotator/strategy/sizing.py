"""Backup sizing classification.

Totals table row counts and decides which dump strategy a run uses.
Pure logic -- no I/O, no database connections.

Usage:
    from backup_rotator.strategy.sizing import classify

    classification = classify(tables, thresholds)
"""

from collections.abc import Iterable

from backup_rotator.config.models import BackupThresholds
from backup_rotator.errors import ConfigurationError
from backup_rotator.inventory.base import TableInfo
from backup_rotator.strategy.models import SizingClassification


def total_row_count(tables: Iterable[TableInfo]) -> int:
    """Sum of row counts across all tables (0 for no tables)."""
    return sum(table.row_count for table in tables)


def validate_thresholds(thresholds: BackupThresholds) -> None:
    """Reject impossible threshold settings.

    Raises:
        ConfigurationError: If ``batch_size`` is not positive or a
            threshold is negative.
    """
    if thresholds.batch_size <= 0:
        raise ConfigurationError(
            f"batch_size must be positive, got {thresholds.batch_size}"
        )
    if thresholds.database_row_threshold < 0:
        raise ConfigurationError(
            f"database_row_threshold must be non-negative, "
            f"got {thresholds.database_row_threshold}"
        )
    if thresholds.table_row_threshold < 0:
        raise ConfigurationError(
            f"table_row_threshold must be non-negative, "
            f"got {thresholds.table_row_threshold}"
        )


def classify(
    tables: Iterable[TableInfo],
    thresholds: BackupThresholds,
) -> SizingClassification:
    """Classify a backup run by total row count.

    A total at the threshold counts as under it.  Exceeding the database
    threshold always means batching, even when only a schema/data split
    was requested.

    Args:
        tables: Table inventory for the database.
        thresholds: Size thresholds and the ``force_split`` preference.

    Returns:
        The ``SizingClassification`` for this run.

    Examples:
        >>> t = BackupThresholds(database_row_threshold=10)
        >>> classify([TableInfo(name="a", row_count=10)], t)
        <SizingClassification.SINGLE_FILE: 'single_file'>
        >>> classify([], t.model_copy(update={"force_split": True}))
        <SizingClassification.SPLIT_SCHEMA_AND_DATA: 'split_schema_and_data'>
        >>> classify([TableInfo(name="a", row_count=11)], t)
        <SizingClassification.BATCHED_BY_TABLE: 'batched_by_table'>
    """
    total = total_row_count(tables)

    if total > thresholds.database_row_threshold:
        return SizingClassification.BATCHED_BY_TABLE

    if thresholds.force_split:
        return SizingClassification.SPLIT_SCHEMA_AND_DATA

    return SizingClassification.SINGLE_FILE
