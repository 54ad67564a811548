"""
Unit tests for compression module (clawdeploy/backup/compression.py).

Tests archive creation, safe extraction and snapshot discovery.
"""

import io
import os
import tarfile
from pathlib import Path

import pytest

from clawdeploy.backup.compression import (
    create_archive,
    extract_archive,
    find_snapshot_dirs,
    get_archive_size,
    CompressionError
)


def _add_bytes(tar, name, data=b'data'):
    info = tarfile.TarInfo(name)
    info.size = len(data)
    tar.addfile(info, io.BytesIO(data))


class TestCreateArchive:
    """Test create_archive."""

    def test_create_archive_single_top_level_dir(self, tmp_path):
        """Test the archive holds the snapshot directory under its basename."""
        snapshot = tmp_path / 'openclaw-backup-20260101-120000'
        (snapshot / 'credentials').mkdir(parents=True)
        (snapshot / 'credentials' / 'token.json').write_text('{}')
        (snapshot / 'openclaw.json').write_text('{}')

        archive_path = str(tmp_path / 'openclaw-20260101-120000.tar.gz')
        create_archive(str(snapshot), archive_path)

        with tarfile.open(archive_path, 'r:gz') as tar:
            names = tar.getnames()

        assert {name.split('/')[0] for name in names} == {'openclaw-backup-20260101-120000'}
        assert 'openclaw-backup-20260101-120000/credentials/token.json' in names

    def test_create_archive_missing_dir(self, tmp_path):
        """Test archiving a missing directory raises CompressionError."""
        with pytest.raises(CompressionError):
            create_archive(str(tmp_path / 'missing'), str(tmp_path / 'out.tar.gz'))

    def test_create_archive_removes_partial_output(self, tmp_path):
        """Test a failed archive leaves no file behind."""
        snapshot = tmp_path / 'snap'
        snapshot.mkdir()
        archive_path = tmp_path / 'no-such-dir' / 'out.tar.gz'

        with pytest.raises(CompressionError):
            create_archive(str(snapshot), str(archive_path))
        assert not archive_path.exists()

    def test_get_archive_size(self, sample_archive):
        """Test archive size is reported in bytes."""
        assert get_archive_size(str(sample_archive)) == os.path.getsize(sample_archive)

    def test_get_archive_size_missing(self, tmp_path):
        """Test a missing archive raises CompressionError."""
        with pytest.raises(CompressionError):
            get_archive_size(str(tmp_path / 'missing.tar.gz'))


class TestExtractArchive:
    """Test extract_archive and its safety checks."""

    def test_extract_archive(self, sample_archive, tmp_path):
        """Test extraction reproduces the files."""
        dest = tmp_path / 'out'
        dest.mkdir()

        extract_archive(str(sample_archive), str(dest))

        assert (dest / 'test_data' / 'file1.txt').read_text() == 'Content 1'

    def test_extract_rejects_path_traversal(self, tmp_path):
        """Test members escaping the destination are rejected."""
        archive_path = tmp_path / 'evil.tar.gz'
        with tarfile.open(archive_path, 'w:gz') as tar:
            _add_bytes(tar, '../escaped.txt')

        dest = tmp_path / 'out'
        dest.mkdir()

        with pytest.raises(CompressionError):
            extract_archive(str(archive_path), str(dest))
        assert not (tmp_path / 'escaped.txt').exists()

    def test_extract_skips_absolute_symlink(self, tmp_path):
        """Test stale absolute links (browser singleton sockets) are skipped."""
        archive_path = tmp_path / 'links.tar.gz'
        with tarfile.open(archive_path, 'w:gz') as tar:
            _add_bytes(tar, 'openclaw-backup-1/browser/Preferences', b'{}')
            link = tarfile.TarInfo('openclaw-backup-1/browser/SingletonSocket')
            link.type = tarfile.SYMTYPE
            link.linkname = '/tmp/.org.chromium.Chromium.abc/SingletonSocket'
            tar.addfile(link)

        dest = tmp_path / 'out'
        dest.mkdir()
        extract_archive(str(archive_path), str(dest))

        assert (dest / 'openclaw-backup-1' / 'browser' / 'Preferences').exists()
        assert not (dest / 'openclaw-backup-1' / 'browser' / 'SingletonSocket').is_symlink()

    def test_extract_not_gzip(self, tmp_path):
        """Test a file that is not a tar.gz raises CompressionError."""
        bogus = tmp_path / 'bogus.tar.gz'
        bogus.write_bytes(b'age-encryption.org/v1\nnot a tarball')

        with pytest.raises(CompressionError):
            extract_archive(str(bogus), str(tmp_path))


class TestFindSnapshotDirs:
    """Test find_snapshot_dirs."""

    def test_find_snapshot_dirs(self, tmp_path):
        """Test only openclaw-backup-* directories are returned, sorted."""
        (tmp_path / 'openclaw-backup-2').mkdir()
        (tmp_path / 'openclaw-backup-1').mkdir()
        (tmp_path / 'openclaw-backup-file').write_text('not a dir')
        (tmp_path / 'other').mkdir()

        found = find_snapshot_dirs(str(tmp_path))

        assert [Path(p).name for p in found] == ['openclaw-backup-1', 'openclaw-backup-2']

    def test_find_snapshot_dirs_empty(self, tmp_path):
        """Test an empty directory yields no snapshots."""
        assert find_snapshot_dirs(str(tmp_path)) == []
