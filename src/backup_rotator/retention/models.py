"""Retention tier models."""

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field


class TierName(str, Enum):
    """Retention tier identifiers."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class RetentionTier(BaseModel):
    """A rotation bucket: root directory plus maximum retained entries."""

    name: TierName
    root_directory: Path
    max_entries: int


class PruneFailure(BaseModel):
    """An entry that could not be deleted during pruning."""

    path: Path
    reason: str


class PruneResult(BaseModel):
    """Outcome of pruning one tier."""

    tier: TierName
    kept: list[Path] = Field(default_factory=list)
    removed: list[Path] = Field(default_factory=list)
    failures: list[PruneFailure] = Field(default_factory=list)

    @property
    def removed_count(self) -> int:
        return len(self.removed)
