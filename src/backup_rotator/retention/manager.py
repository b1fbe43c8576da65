"""Retention rotation for dated backup directories.

Each tier (daily, weekly, monthly) owns a root directory of dated entries
and keeps at most ``max_entries`` of them.  Entries are ordered by the date
embedded in their directory name -- never by filesystem mtime -- and the
oldest are evicted first.

Layout::

    <daily-root>/<YYYY-MM-DD>/<database>-<YYYY-MM-DD>/
    <weekly-root>/<database>-<GGGG>-W<VV>/
    <monthly-root>/<database>-<YYYY>-<MM>/

Daily rotation counts the day directories, so several databases backed up
on the same day share one daily entry.

Usage:
    from backup_rotator.retention.manager import RetentionManager

    manager = RetentionManager.from_settings(output_root, retention_settings)
    manager.ensure_tier_directories()
    entry = manager.record_entry(manager.daily, run_date, "shop")
    result = manager.prune(manager.daily)
"""

import logging
import re
import shutil
from datetime import date
from pathlib import Path

from backup_rotator.config.models import RetentionSettings
from backup_rotator.errors import ConfigurationError, RetentionPruneFailure
from backup_rotator.retention.models import (
    PruneFailure,
    PruneResult,
    RetentionTier,
    TierName,
)

logger = logging.getLogger(__name__)

# Entry id patterns (without the "<database>-" prefix)
_ID_PATTERNS = {
    TierName.DAILY: re.compile(r"(?P<year>\d{4})-(?P<month>\d{2})-(?P<day>\d{2})"),
    TierName.WEEKLY: re.compile(r"(?P<year>\d{4})-W(?P<week>\d{2})"),
    TierName.MONTHLY: re.compile(r"(?P<year>\d{4})-(?P<month>\d{2})"),
}


# ------------------------------------------------------------------
# Entry naming
# ------------------------------------------------------------------


def week_id(day: date) -> str:
    """ISO week id, e.g. ``2024-W03``."""
    year, week, _ = day.isocalendar()
    return f"{year:04d}-W{week:02d}"


def month_id(day: date) -> str:
    """Calendar month id, e.g. ``2024-01``."""
    return day.strftime("%Y-%m")


def is_weekly_boundary(day: date, weekday: int = 7) -> bool:
    """True when ``day`` is the configured ISO weekday (7 = Sunday)."""
    return day.isoweekday() == weekday


def is_monthly_boundary(day: date, day_of_month: int = 1) -> bool:
    """True when ``day`` is the configured day of the month."""
    return day.day == day_of_month


def _date_from_match(tier: TierName, match: re.Match) -> date | None:
    try:
        year = int(match["year"])
        if tier == TierName.DAILY:
            return date(year, int(match["month"]), int(match["day"]))
        if tier == TierName.WEEKLY:
            return date.fromisocalendar(year, int(match["week"]), 1)
        return date(year, int(match["month"]), 1)
    except ValueError:
        return None


def parse_entry_date(
    tier: TierName, entry_name: str, database: str | None = None
) -> date | None:
    """Extract the date embedded in an entry directory name.

    Daily entries are bare ``YYYY-MM-DD`` names.  Weekly and monthly entries
    are ``<database>-<id>``; when ``database`` is given only that database's
    entries match.

    Returns:
        The entry date (weeks map to their Monday, months to their first
        day), or None if the name is not an entry of this tier.

    Examples:
        >>> parse_entry_date(TierName.DAILY, "2024-01-02")
        datetime.date(2024, 1, 2)
        >>> parse_entry_date(TierName.WEEKLY, "shop-2024-W03", "shop")
        datetime.date(2024, 1, 15)
        >>> parse_entry_date(TierName.MONTHLY, "shop-eu-2024-01", "shop") is None
        True
    """
    pattern = _ID_PATTERNS[tier]

    if tier == TierName.DAILY:
        match = pattern.fullmatch(entry_name)
    elif database is not None:
        prefix = f"{database}-"
        if not entry_name.startswith(prefix):
            return None
        match = pattern.fullmatch(entry_name[len(prefix):])
    else:
        match = re.search(rf"-({pattern.pattern})$", entry_name)

    if match is None:
        return None
    return _date_from_match(tier, match)


# ------------------------------------------------------------------
# Manager
# ------------------------------------------------------------------


class RetentionManager:
    """Maintains the daily/weekly/monthly rotation tiers.

    Args:
        tiers: One ``RetentionTier`` per ``TierName``.
    """

    def __init__(self, tiers: list[RetentionTier]) -> None:
        self._tiers: dict[TierName, RetentionTier] = {t.name: t for t in tiers}
        missing = set(TierName) - set(self._tiers)
        if missing:
            names = ", ".join(sorted(t.value for t in missing))
            raise ConfigurationError(f"Missing retention tiers: {names}")

    @classmethod
    def from_settings(
        cls, output_root: Path, settings: RetentionSettings
    ) -> "RetentionManager":
        """Build the three tiers under ``output_root``."""
        return cls(
            [
                RetentionTier(
                    name=TierName.DAILY,
                    root_directory=output_root / TierName.DAILY.value,
                    max_entries=settings.daily,
                ),
                RetentionTier(
                    name=TierName.WEEKLY,
                    root_directory=output_root / TierName.WEEKLY.value,
                    max_entries=settings.weekly,
                ),
                RetentionTier(
                    name=TierName.MONTHLY,
                    root_directory=output_root / TierName.MONTHLY.value,
                    max_entries=settings.monthly,
                ),
            ]
        )

    @property
    def tiers(self) -> list[RetentionTier]:
        return [self._tiers[name] for name in TierName]

    @property
    def daily(self) -> RetentionTier:
        return self._tiers[TierName.DAILY]

    @property
    def weekly(self) -> RetentionTier:
        return self._tiers[TierName.WEEKLY]

    @property
    def monthly(self) -> RetentionTier:
        return self._tiers[TierName.MONTHLY]

    def validate(self) -> None:
        """Check every tier keeps at least one entry.

        Raises:
            ConfigurationError: If a tier's ``max_entries`` is below 1.
        """
        for tier in self.tiers:
            if tier.max_entries < 1:
                raise ConfigurationError(
                    f"{tier.name.value} rotation must keep at least 1 entry, "
                    f"got {tier.max_entries}"
                )

    def ensure_tier_directories(self, tiers: list[RetentionTier] | None = None) -> None:
        """Create missing tier root directories.  Safe to call repeatedly."""
        for tier in tiers if tiers is not None else self.tiers:
            tier.root_directory.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    def entry_path(self, tier: RetentionTier, execution_date: date, database: str) -> Path:
        """Directory that holds ``database``'s artifacts for ``execution_date``.

        For the daily tier this is nested inside the day directory.
        """
        root = tier.root_directory
        if tier.name == TierName.DAILY:
            day = execution_date.isoformat()
            return root / day / f"{database}-{day}"
        if tier.name == TierName.WEEKLY:
            return root / f"{database}-{week_id(execution_date)}"
        return root / f"{database}-{month_id(execution_date)}"

    def rotation_entry(self, tier: RetentionTier, execution_date: date, database: str) -> Path:
        """Directory counted by rotation for this run (the day dir for daily)."""
        path = self.entry_path(tier, execution_date, database)
        if tier.name == TierName.DAILY:
            return path.parent
        return path

    def record_entry(
        self,
        tier: RetentionTier,
        execution_date: date,
        database: str,
        source: Path | None = None,
    ) -> Path:
        """Create the entry directory, optionally filled from ``source``.

        Args:
            tier: Tier to record into.
            execution_date: Run date embedded in the entry name.
            database: Database the entry belongs to.
            source: Directory whose contents are copied into the entry
                (used to promote a finished daily entry).

        Returns:
            Path of the entry directory.
        """
        entry = self.entry_path(tier, execution_date, database)
        entry.mkdir(parents=True, exist_ok=True)

        if source is not None:
            shutil.copytree(source, entry, dirs_exist_ok=True)
            logger.info("Recorded %s entry %s from %s", tier.name.value, entry, source)
        else:
            logger.debug("Recorded %s entry %s", tier.name.value, entry)

        return entry

    def list_entries(self, tier: RetentionTier, database: str | None = None) -> list[Path]:
        """Dated entries of a tier, oldest first.

        Directories whose names carry no date for this tier are ignored.
        Entries with the same date are ordered by path.  ``database`` only
        filters weekly and monthly tiers.
        """
        root = tier.root_directory
        if not root.is_dir():
            return []

        filter_db = None if tier.name == TierName.DAILY else database
        dated: list[tuple[date, str, Path]] = []
        for child in root.iterdir():
            if not child.is_dir():
                continue
            entry_date = parse_entry_date(tier.name, child.name, filter_db)
            if entry_date is not None:
                dated.append((entry_date, str(child), child))

        dated.sort(key=lambda item: (item[0], item[1]))
        return [path for _, _, path in dated]

    def prune(self, tier: RetentionTier, database: str | None = None) -> PruneResult:
        """Evict the oldest entries beyond ``tier.max_entries``.

        Deletion failures are collected in the result and logged as
        warnings; they never raise.
        """
        entries = self.list_entries(tier, database)
        excess = max(len(entries) - tier.max_entries, 0)
        stale, kept = entries[:excess], entries[excess:]

        result = PruneResult(tier=tier.name, kept=kept)

        for entry in stale:
            try:
                _remove_entry(entry)
            except RetentionPruneFailure as e:
                logger.warning("%s", e)
                result.failures.append(PruneFailure(path=entry, reason=str(e.__cause__ or e)))
                continue
            logger.info("Pruned %s entry %s", tier.name.value, entry)
            result.removed.append(entry)

        return result


def _remove_entry(entry: Path) -> None:
    """Recursively delete an entry directory."""
    try:
        shutil.rmtree(entry)
    except OSError as e:
        raise RetentionPruneFailure(f"Could not delete {entry}: {e}") from e
