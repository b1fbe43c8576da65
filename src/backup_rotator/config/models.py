"""Pydantic models for backup configuration."""

from pathlib import Path

from pydantic import BaseModel, Field


# ============================================================================
# Configuration Models
# ============================================================================


class ConnectionProfile(BaseModel):
    """Database connection profile from backup.toml."""

    host: str = "localhost"
    port: int = 3306
    user: str = "root"
    password: str | None = None
    database: str = ""
    description: str = ""


class BackupThresholds(BaseModel):
    """Size thresholds that drive the dump strategy.

    ``batch_size`` must be positive and both thresholds non-negative;
    ``validate_thresholds()`` enforces this (pydantic only checks types so
    that invalid values surface as ``ConfigurationError``).
    """

    database_row_threshold: int = 10_000_000
    table_row_threshold: int = 5_000_000
    batch_size: int = 1_000_000
    force_split: bool = False


class RetentionSettings(BaseModel):
    """Maximum entries per retention tier and promotion schedule."""

    daily: int = 5
    weekly: int = 2
    monthly: int = 1
    weekly_day: int = 7  # ISO weekday (1=Monday, 7=Sunday)
    monthly_day: int = 1


class DumpSettings(BaseModel):
    """External dump tool and execution settings."""

    mysqldump_path: str = "/usr/bin/mysqldump"
    output_directory: Path = Field(default_factory=Path.cwd)
    workers: int = 1
    timeout: float | None = None  # seconds per task, None = no limit
    fail_fast: bool = True


class BackupConfig(BaseModel):
    """Complete backup configuration from backup.toml."""

    profiles: dict[str, ConnectionProfile] = Field(default_factory=dict)
    thresholds: BackupThresholds = Field(default_factory=BackupThresholds)
    retention: RetentionSettings = Field(default_factory=RetentionSettings)
    dump: DumpSettings = Field(default_factory=DumpSettings)
