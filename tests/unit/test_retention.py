"""
Unit tests for retention policy enforcement (clawdeploy/backup/retention.py).

Tests RetentionSweeper for deleting archives outside the retention window.
"""

from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest
from freezegun import freeze_time

from clawdeploy.backup.retention import RetentionSweeper, SweepResult
from clawdeploy.backup.storage import StorageError


def _name(days_ago, now=datetime(2026, 6, 1, 12, 0, 0), suffix='.tar.gz'):
    stamp = (now - timedelta(days=days_ago)).strftime('%Y%m%d-%H%M%S')
    return f"openclaw-{stamp}{suffix}"


class TestRetentionSweeper:
    """Test RetentionSweeper.sweep decisions."""

    @freeze_time("2026-06-01 12:00:00")
    def test_retention_boundary(self):
        """Test 100 and 91 days are deleted, 90 and 89 days retained at 90 days."""
        storage = MagicMock()
        names = [_name(100), _name(91), _name(90), _name(89)]

        result = RetentionSweeper(storage, 'openclaw').sweep(names, 90)

        assert result.deleted == [_name(100), _name(91)]
        assert result.retained == [_name(90), _name(89)]
        assert storage.delete.call_count == 2

    def test_retention_explicit_now(self):
        """Test an explicit reference time is used instead of the clock."""
        storage = MagicMock()
        now = datetime(2026, 1, 31)

        result = RetentionSweeper(storage, 'openclaw').sweep(
            ['openclaw-20260101-000000.tar.gz', 'openclaw-20260102-000000.tar.gz'], 30, now=now
        )

        assert result.deleted == []
        assert result.retained == ['openclaw-20260101-000000.tar.gz', 'openclaw-20260102-000000.tar.gz']

    @freeze_time("2026-06-01")
    def test_retention_encrypted_names_are_swept(self):
        """Test .age archives are subject to the same window."""
        storage = MagicMock()
        old = _name(200, suffix='.tar.gz.age')

        result = RetentionSweeper(storage, 'openclaw').sweep([old], 90)

        assert result.deleted == [old]
        storage.delete.assert_called_once_with(old)

    @freeze_time("2026-06-01")
    def test_retention_never_deletes_latest_alias(self):
        """Test the latest alias is neither deleted nor reported as skipped."""
        storage = MagicMock()

        result = RetentionSweeper(storage, 'openclaw').sweep(
            ['openclaw-latest.tar.gz', 'openclaw-latest.tar.gz.age'], 0
        )

        assert result == SweepResult()
        storage.delete.assert_not_called()

    @freeze_time("2026-06-01")
    def test_retention_skips_unparseable_names_visibly(self):
        """Test malformed timestamped names are recorded in skipped."""
        storage = MagicMock()
        names = [
            'openclaw-2026-01-01.tar.gz',
            'openclaw-20261399-000000.tar.gz',
            'openclaw-manual.tar.gz',
            'unrelated-file.txt',
        ]

        sweeper = RetentionSweeper(storage, 'openclaw')
        result = sweeper.sweep(names, 1)

        assert result.deleted == []
        assert result.skipped == [
            'openclaw-2026-01-01.tar.gz',
            'openclaw-20261399-000000.tar.gz',
            'openclaw-manual.tar.gz',
        ]
        assert any('openclaw-manual.tar.gz' in entry for entry in sweeper.run_log.entries)
        storage.delete.assert_not_called()

    @freeze_time("2026-06-01")
    def test_retention_other_prefix_untouched(self):
        """Test archives of another prefix are ignored."""
        storage = MagicMock()

        result = RetentionSweeper(storage, 'openclaw').sweep(['other-20200101-000000.tar.gz'], 1)

        assert result == SweepResult()

    @freeze_time("2026-06-01")
    def test_retention_delete_failure_continues(self):
        """Test a failed delete is collected and the sweep goes on."""
        storage = MagicMock()
        first, second = _name(300), _name(200)
        storage.delete.side_effect = [StorageError("denied"), None]

        sweeper = RetentionSweeper(storage, 'openclaw')
        result = sweeper.sweep([first, second], 90)

        assert result.failed == [first]
        assert result.deleted == [second]
        assert len(sweeper.run_log.warnings) == 1


class TestRetentionRun:
    """Test RetentionSweeper.run against storage."""

    @freeze_time("2026-06-01")
    def test_run_lists_then_sweeps(self, local_storage, tmp_path):
        """Test run() deletes old archives from the store."""
        archive = tmp_path / 'a.tar.gz'
        archive.write_bytes(b'data')
        for name in ('openclaw-20250101-000000.tar.gz', 'openclaw-20260530-000000.tar.gz', 'openclaw-latest.tar.gz'):
            local_storage.upload(str(archive), name)

        result = RetentionSweeper(local_storage, 'openclaw').run(90)

        assert result.deleted == ['openclaw-20250101-000000.tar.gz']
        assert local_storage.list_names() == ['openclaw-20260530-000000.tar.gz', 'openclaw-latest.tar.gz']

    def test_run_list_failure_is_a_warning(self):
        """Test a listing failure yields an empty result and one warning."""
        storage = MagicMock()
        storage.list_names.side_effect = StorageError("unreachable")

        sweeper = RetentionSweeper(storage, 'openclaw')
        result = sweeper.run(90)

        assert result == SweepResult()
        assert len(sweeper.run_log.warnings) == 1
