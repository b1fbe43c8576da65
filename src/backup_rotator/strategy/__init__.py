"""Dump strategy: sizing classification and dump planning.

Usage:
    from backup_rotator.strategy import classify, plan
"""

from backup_rotator.strategy.models import (
    DumpOptions,
    DumpScope,
    DumpTask,
    SizingClassification,
    redact_arguments,
)
from backup_rotator.strategy.planner import pack_tables, plan, split_row_ranges
from backup_rotator.strategy.sizing import classify, total_row_count, validate_thresholds

__all__ = [
    "DumpOptions",
    "DumpScope",
    "DumpTask",
    "SizingClassification",
    "redact_arguments",
    "classify",
    "total_row_count",
    "validate_thresholds",
    "plan",
    "pack_tables",
    "split_row_ranges",
]
