"""Models for dump strategy classification and planning."""

from datetime import date
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from backup_rotator.config.models import BackupThresholds

PASSWORD_FLAG = "--password="
PASSWORD_ENV = "MYSQL_PWD"
REDACTED = "****"


# ============================================================================
# Classification
# ============================================================================


class SizingClassification(str, Enum):
    """Dump strategy chosen for a run."""

    SINGLE_FILE = "single_file"
    SPLIT_SCHEMA_AND_DATA = "split_schema_and_data"
    BATCHED_BY_TABLE = "batched_by_table"


class DumpScope(str, Enum):
    """What a single dump invocation covers."""

    WHOLE_DATABASE = "whole_database"
    SCHEMA_ONLY = "schema_only"
    DATA_ONLY = "data_only"
    TABLE_BATCH = "table_batch"


# ============================================================================
# Plan Models
# ============================================================================


class DumpOptions(BaseModel):
    """Everything the planner needs to build dump arguments."""

    host: str = "localhost"
    port: int = 3306
    user: str = "root"
    password: str | None = None
    database: str
    dump_path: str = "/usr/bin/mysqldump"
    output_directory: Path
    execution_date: date
    thresholds: BackupThresholds = Field(default_factory=BackupThresholds)

    @property
    def date_stamp(self) -> str:
        """Compact date stamp used in file names (``YYYYMMDD``)."""
        return self.execution_date.strftime("%Y%m%d")


class DumpTask(BaseModel):
    """One planned invocation of the dump tool."""

    model_config = ConfigDict(frozen=True)

    scope: DumpScope
    output_path: Path
    arguments: list[str]
    tables: list[str] = Field(default_factory=list)
    batch_index: int | None = None
    row_range: tuple[int, int] | None = None  # (offset, count)
    # Extra process environment (credentials); kept out of repr and dumps
    environment: dict[str, str] = Field(default_factory=dict, repr=False, exclude=True)

    def redacted_arguments(self) -> list[str]:
        """Arguments with the password masked, safe for logging."""
        return redact_arguments(self.arguments)

    @property
    def label(self) -> str:
        """Short human-readable description for logs and reports."""
        if self.scope != DumpScope.TABLE_BATCH:
            return self.scope.value
        tables = ", ".join(self.tables)
        return f"batch {self.batch_index} ({tables})"


def redact_arguments(arguments: list[str]) -> list[str]:
    """Return a copy of ``arguments`` with any password value masked."""
    return [
        f"{PASSWORD_FLAG}{REDACTED}" if arg.startswith(PASSWORD_FLAG) else arg
        for arg in arguments
    ]
