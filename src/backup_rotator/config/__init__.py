"""Configuration management: profiles, TOML loading, and config models.

Usage:
    >>> from backup_rotator.config import load_backup_config, BackupConfig
"""

from backup_rotator.config.loader import load_backup_config, resolve_profile
from backup_rotator.config.models import (
    BackupConfig,
    BackupThresholds,
    ConnectionProfile,
    DumpSettings,
    RetentionSettings,
)

__all__ = [
    "load_backup_config",
    "resolve_profile",
    "BackupConfig",
    "BackupThresholds",
    "ConnectionProfile",
    "DumpSettings",
    "RetentionSettings",
]
