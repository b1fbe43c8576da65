"""backup-rotator: size-aware mysqldump backups with tiered retention.

Inspects table row counts to choose between a single dump, a schema/data
split, or batched per-table dumps, runs ``mysqldump`` for each planned task,
and rotates dated backup directories across daily, weekly and monthly tiers.

Usage:
    from backup_rotator import BackupOrchestrator, BackupRun, MySQLTableInventory
    from backup_rotator import classify, plan, RetentionManager
    from backup_rotator import load_backup_config, BackupConfig
"""

__version__ = "0.1.0"

# Config
from backup_rotator.config.loader import load_backup_config, resolve_profile
from backup_rotator.config.models import (
    BackupConfig,
    BackupThresholds,
    ConnectionProfile,
)

# Errors
from backup_rotator.errors import (
    BackupError,
    ConfigurationError,
    EmptyInventoryError,
    InventoryUnavailable,
    RetentionPruneFailure,
    TaskExecutionFailure,
)

# Inventory
from backup_rotator.inventory.base import TableInfo, TableInventory
from backup_rotator.inventory.mysql import MySQLTableInventory

# Strategy
from backup_rotator.strategy.models import DumpScope, DumpTask, SizingClassification
from backup_rotator.strategy.planner import plan
from backup_rotator.strategy.sizing import classify

# Retention
from backup_rotator.retention.manager import RetentionManager
from backup_rotator.retention.models import RetentionTier, TierName

# Orchestration
from backup_rotator.models import BackupRun, RunSummary
from backup_rotator.orchestrator import BackupOrchestrator
from backup_rotator.runner import ProcessRunner, SubprocessRunner

__all__ = [
    # Config
    "load_backup_config",
    "resolve_profile",
    "BackupConfig",
    "BackupThresholds",
    "ConnectionProfile",
    # Errors
    "BackupError",
    "ConfigurationError",
    "EmptyInventoryError",
    "InventoryUnavailable",
    "RetentionPruneFailure",
    "TaskExecutionFailure",
    # Inventory
    "TableInfo",
    "TableInventory",
    "MySQLTableInventory",
    # Strategy
    "DumpScope",
    "DumpTask",
    "SizingClassification",
    "classify",
    "plan",
    # Retention
    "RetentionManager",
    "RetentionTier",
    "TierName",
    # Orchestration
    "BackupRun",
    "RunSummary",
    "BackupOrchestrator",
    "ProcessRunner",
    "SubprocessRunner",
]
