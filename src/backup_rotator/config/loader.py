"""TOML configuration loader for backup-rotator."""

import os
import tomllib
from pathlib import Path

from pydantic import ValidationError

from backup_rotator.config.models import (
    BackupConfig,
    BackupThresholds,
    ConnectionProfile,
    DumpSettings,
    RetentionSettings,
)
from backup_rotator.errors import ConfigurationError

DEFAULT_CONFIG_FILE = "backup.toml"

# TOML key -> BackupThresholds field
_THRESHOLD_KEYS = {
    "database_rows": "database_row_threshold",
    "table_rows": "table_row_threshold",
    "batch_size": "batch_size",
    "force_split": "force_split",
}


def default_config_path(env_prefix: str = "") -> Path:
    """Return the config path from ``{env_prefix}BACKUP_CONFIG`` or ./backup.toml."""
    env_path = os.environ.get(f"{env_prefix}BACKUP_CONFIG")
    if env_path:
        return Path(env_path)
    return Path.cwd() / DEFAULT_CONFIG_FILE


def load_backup_config(config_path: Path | None = None) -> BackupConfig:
    """Load backup configuration from TOML file.

    Args:
        config_path: Path to backup.toml (default: ./backup.toml)

    Returns:
        BackupConfig with profiles, thresholds, retention and dump settings

    Raises:
        FileNotFoundError: If config file doesn't exist
        ConfigurationError: If the file is not valid TOML or a value has
            the wrong type
    """
    if config_path is None:
        config_path = default_config_path()

    if not config_path.exists():
        raise FileNotFoundError(
            f"Backup config not found: {config_path}\n"
            f"Create backup.toml or pass connection options on the command line."
        )

    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML in {config_path}: {e}") from e

    try:
        profiles = {
            name: ConnectionProfile(**profile_data)
            for name, profile_data in data.get("profiles", {}).items()
        }

        threshold_data = data.get("thresholds", {})
        thresholds = BackupThresholds(
            **{
                field: threshold_data[key]
                for key, field in _THRESHOLD_KEYS.items()
                if key in threshold_data
            }
        )

        return BackupConfig(
            profiles=profiles,
            thresholds=thresholds,
            retention=RetentionSettings(**data.get("retention", {})),
            dump=DumpSettings(**data.get("dump", {})),
        )
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration in {config_path}:\n{e}") from e


def resolve_profile(
    config: BackupConfig,
    profile_name: str | None = None,
    env_prefix: str = "",
) -> tuple[str | None, ConnectionProfile]:
    """Pick the active connection profile.

    Priority:
    1. ``profile_name`` argument (``--profile``)
    2. ``{env_prefix}BACKUP_PROFILE`` env var
    3. The only profile, when exactly one is configured
    4. An empty ``ConnectionProfile`` (connection comes from CLI options)

    A ``{env_prefix}BACKUP_PASSWORD`` env var overrides the profile password.

    Returns:
        Tuple of (profile_name or None, ConnectionProfile)

    Raises:
        ConfigurationError: If the named profile is not in the config
    """
    name = profile_name or os.environ.get(f"{env_prefix}BACKUP_PROFILE")

    if name is None and len(config.profiles) == 1:
        name = next(iter(config.profiles))

    if name is None:
        profile = ConnectionProfile()
    elif name in config.profiles:
        profile = config.profiles[name]
    else:
        available = ", ".join(config.profiles.keys()) or "(none)"
        raise ConfigurationError(
            f"Profile '{name}' not found. Available: {available}"
        )

    env_password = os.environ.get(f"{env_prefix}BACKUP_PASSWORD")
    if env_password:
        profile = profile.model_copy(update={"password": env_password})

    return name, profile
