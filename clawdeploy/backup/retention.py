"""
Retention policy enforcement for backups.

Deletes timestamped archives whose date token lies before the cutoff date.
The latest alias and names that do not parse are never deleted.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from . import manifest
from .policy import RunLog
from .storage import StorageError


logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    """Outcome of a retention sweep."""

    deleted: List[str] = field(default_factory=list)
    retained: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


class RetentionSweeper:
    """
    Enforces the age-based retention window of one archive prefix.
    """

    def __init__(self, storage, prefix: str, run_log: RunLog = None):
        """
        Initialize retention sweeper.

        Args:
            storage: Object storage handler (list_names/delete)
            prefix: Archive name prefix (e.g. 'openclaw')
            run_log: RunLog to record into (default: a new one)
        """
        self.storage = storage
        self.prefix = prefix
        self.run_log = run_log or RunLog(logger)
        self._pattern = manifest.archive_pattern(prefix)
        self._aliases = {
            manifest.latest_name(prefix),
            manifest.latest_name(prefix, encrypted=True),
        }

    def sweep(self, names: Iterable[str], retention_days: int, now: Optional[datetime] = None) -> SweepResult:
        """
        Delete archives older than the retention window.

        An archive is deleted when its date token is strictly before
        now.date() - retention_days; an archive dated on the cutoff day is
        retained.

        Args:
            names: Remote archive names to consider
            retention_days: Days of archives to keep
            now: Reference time (default: datetime.now())

        Returns:
            SweepResult
        """
        cutoff = (now or datetime.now()).date() - timedelta(days=retention_days)
        result = SweepResult()

        for name in names:
            if name in self._aliases:
                continue

            match = self._pattern.match(name)
            if not match:
                if name.startswith(f"{self.prefix}-"):
                    result.skipped.append(name)
                    self.run_log.info(f"Retention: skipped unparseable archive name {name}")
                continue

            try:
                archive_date = datetime.strptime(match.group('date'), '%Y%m%d').date()
            except ValueError:
                result.skipped.append(name)
                self.run_log.info(f"Retention: skipped {name} (invalid date {match.group('date')})")
                continue

            if archive_date >= cutoff:
                result.retained.append(name)
                continue

            try:
                self.storage.delete(name)
                result.deleted.append(name)
                self.run_log.info(f"Deleted old backup: {name}")
            except StorageError as e:
                result.failed.append(name)
                self.run_log.handle('sweep_delete', f"Failed to delete {name}", e)

        self.run_log.info(
            f"Retention sweep complete (cutoff {cutoff.isoformat()}). "
            f"Deleted: {len(result.deleted)}, "
            f"Retained: {len(result.retained)}, "
            f"Skipped: {len(result.skipped)}, "
            f"Failed: {len(result.failed)}"
        )
        return result

    def run(self, retention_days: int, now: Optional[datetime] = None) -> SweepResult:
        """
        List the remote store and sweep it.

        Listing failures are recorded as a warning and yield an empty result.
        """
        self.run_log.info(f"Enforcing retention: {retention_days} days")
        try:
            names = self.storage.list_names()
        except StorageError as e:
            self.run_log.handle('sweep_list', "Failed to list backups", e)
            return SweepResult()

        return self.sweep(names, retention_days, now=now)
