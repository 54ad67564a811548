"""
Unit tests for the backup manifest (clawdeploy/backup/manifest.py).
"""

from datetime import datetime

from clawdeploy.backup import manifest


class TestNaming:
    """Test archive naming helpers."""

    def test_generate_timestamp(self):
        """Test timestamps are YYYYMMDD-HHMMSS."""
        assert manifest.generate_timestamp(datetime(2026, 2, 8, 23, 34, 27)) == '20260208-233427'

    def test_archive_and_latest_names(self):
        """Test timestamped and latest names with and without encryption."""
        assert manifest.archive_name('openclaw', '20260208-233427') == 'openclaw-20260208-233427.tar.gz'
        assert manifest.archive_name('openclaw', '20260208-233427', True) == 'openclaw-20260208-233427.tar.gz.age'
        assert manifest.latest_name('openclaw') == 'openclaw-latest.tar.gz'
        assert manifest.latest_name('openclaw', True) == 'openclaw-latest.tar.gz.age'

    def test_snapshot_dir_name(self):
        """Test the archive's top-level directory name."""
        assert manifest.snapshot_dir_name('20260208-233427') == 'openclaw-backup-20260208-233427'

    def test_encrypted_suffix_helpers(self):
        """Test suffix detection and stripping."""
        assert manifest.is_encrypted_name('a.tar.gz.age') is True
        assert manifest.is_encrypted_name('a.tar.gz') is False
        assert manifest.strip_encrypted_suffix('a.tar.gz.age') == 'a.tar.gz'
        assert manifest.strip_encrypted_suffix('a.tar.gz') == 'a.tar.gz'

    def test_is_plain_name(self):
        """Test bare names pass and path-like names are refused."""
        assert manifest.is_plain_name('openclaw-20260208-233427.tar.gz.age') is True
        assert manifest.is_plain_name('../x') is False
        assert manifest.is_plain_name('sub/openclaw-latest.tar.gz') is False
        assert manifest.is_plain_name('..') is False
        assert manifest.is_plain_name('') is False

    def test_browser_cache_paths(self):
        """Test cache paths sit under the browser profile."""
        assert manifest.browser_cache_paths() == [
            'browser/chrome-data/Default/Cache',
            'browser/chrome-data/Default/Code Cache',
            'browser/chrome-data/Default/Service Worker',
        ]


class TestArchivePattern:
    """Test archive_pattern."""

    def test_matches_timestamped_archives(self):
        """Test plaintext and encrypted timestamped names match."""
        pattern = manifest.archive_pattern('openclaw')

        match = pattern.match('openclaw-20260208-233427.tar.gz.age')
        assert match.group('date') == '20260208'
        assert match.group('time') == '233427'
        assert pattern.match('openclaw-20260208-233427.tar.gz')

    def test_rejects_aliases_and_other_prefixes(self):
        """Test latest aliases and foreign names never match."""
        pattern = manifest.archive_pattern('openclaw')

        assert pattern.match('openclaw-latest.tar.gz') is None
        assert pattern.match('openclaw-latest.tar.gz.age') is None
        assert pattern.match('other-20260208-233427.tar.gz') is None
        assert pattern.match('openclaw-2026-02-08.tar.gz') is None

    def test_prefix_is_escaped(self):
        """Test regex characters in the prefix are literal."""
        pattern = manifest.archive_pattern('a.b')

        assert pattern.match('a.b-20260101-000000.tar.gz')
        assert pattern.match('axb-20260101-000000.tar.gz') is None
