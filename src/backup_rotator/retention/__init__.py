"""Retention tiers and rotation of dated backup directories.

Usage:
    from backup_rotator.retention import RetentionManager, TierName
"""

from backup_rotator.retention.manager import (
    RetentionManager,
    is_monthly_boundary,
    is_weekly_boundary,
    month_id,
    parse_entry_date,
    week_id,
)
from backup_rotator.retention.models import (
    PruneFailure,
    PruneResult,
    RetentionTier,
    TierName,
)

__all__ = [
    "RetentionManager",
    "RetentionTier",
    "TierName",
    "PruneFailure",
    "PruneResult",
    "is_weekly_boundary",
    "is_monthly_boundary",
    "week_id",
    "month_id",
    "parse_entry_date",
]
