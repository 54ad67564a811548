"""
Archive format handling.

An archive is a gzip-compressed tar whose single top-level entry is the
snapshot directory 'openclaw-backup-{timestamp}'.
"""

import os
import tarfile
from pathlib import Path
from typing import List

from .manifest import SNAPSHOT_DIR_PREFIX


class CompressionError(Exception):
    """Raised when archive creation or extraction fails."""
    pass


def create_archive(snapshot_dir: str, archive_path: str) -> str:
    """
    Create a gzip-compressed tar of a snapshot directory.

    Args:
        snapshot_dir: Directory to archive; stored under its basename
        archive_path: Output path (should end with .tar.gz)

    Returns:
        archive_path

    Raises:
        CompressionError: If the directory is missing or archive creation fails
    """
    source = Path(snapshot_dir)
    if not source.is_dir():
        raise CompressionError(f"Snapshot directory does not exist: {snapshot_dir}")

    try:
        with tarfile.open(archive_path, 'w:gz') as tar:
            tar.add(str(source), arcname=source.name, recursive=True)
        return archive_path
    except Exception as e:
        # Clean up partial archive on failure
        if os.path.exists(archive_path):
            try:
                os.remove(archive_path)
            except OSError:
                pass
        raise CompressionError(f"Failed to create archive: {e}")


def safe_extract(tar: tarfile.TarFile, dest_dir: str):
    """
    Extract every member of an open tar into dest_dir.

    Members with absolute paths or '..' components are rejected. Links
    pointing outside dest_dir (stale browser lock and socket links) are
    skipped.

    Raises:
        CompressionError: If a member would escape dest_dir
    """
    if hasattr(tarfile, 'data_filter'):
        try:
            tar.extractall(dest_dir, filter=_member_filter)
        except tarfile.FilterError as e:
            raise CompressionError(f"Unsafe archive member: {e}")
        return

    root = os.path.realpath(dest_dir)
    members = []
    for member in tar.getmembers():
        target = os.path.realpath(os.path.join(root, member.name))
        if os.path.isabs(member.name) or not _is_within(root, target):
            raise CompressionError(f"Unsafe archive member: {member.name}")
        if member.issym() or member.islnk():
            link_base = os.path.dirname(target) if member.issym() else root
            link_target = os.path.realpath(os.path.join(link_base, member.linkname))
            if os.path.isabs(member.linkname) or not _is_within(root, link_target):
                continue
        elif not (member.isfile() or member.isdir()):
            continue
        members.append(member)
    tar.extractall(dest_dir, members=members)


def _member_filter(member: tarfile.TarInfo, dest_path: str):
    try:
        return tarfile.data_filter(member, dest_path)
    except (tarfile.AbsoluteLinkError, tarfile.LinkOutsideDestinationError):
        return None


def extract_archive(archive_path: str, dest_dir: str):
    """
    Extract a .tar.gz archive into dest_dir.

    Raises:
        CompressionError: If the archive is not a readable tar.gz or is unsafe
    """
    try:
        with tarfile.open(archive_path, 'r:gz') as tar:
            safe_extract(tar, dest_dir)
    except (tarfile.TarError, EOFError, OSError) as e:
        raise CompressionError(f"Failed to extract {os.path.basename(archive_path)}: {e}")


def find_snapshot_dirs(scratch_dir: str) -> List[str]:
    """
    List snapshot directories ('openclaw-backup-*') directly below scratch_dir.

    Returns:
        Sorted list of directory paths
    """
    scratch = Path(scratch_dir)
    return sorted(
        str(p) for p in scratch.glob(f'{SNAPSHOT_DIR_PREFIX}-*')
        if p.is_dir() and not p.is_symlink()
    )


def get_archive_size(archive_path: str) -> int:
    """
    Get the size of an archive file in bytes.

    Args:
        archive_path: Path to the archive file

    Returns:
        File size in bytes

    Raises:
        CompressionError: If file doesn't exist or cannot be accessed
    """
    try:
        return os.path.getsize(archive_path)
    except FileNotFoundError:
        raise CompressionError(f"Archive not found: {archive_path}")
    except Exception as e:
        raise CompressionError(f"Failed to get archive size: {e}")


def _is_within(root: str, path: str) -> bool:
    return path == root or path.startswith(root + os.sep)
