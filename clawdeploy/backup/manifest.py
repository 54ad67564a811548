"""
Canonical backup manifest.

Every component that writes or reads an archive (builder, backup executor,
restore executor, retention sweeper) takes its entry lists and names from
this module. Add a directory here and it is backed up and restored
everywhere.
"""

import re
from datetime import datetime
from typing import Optional


# Primary configuration file; its presence is the health signal of a backup
PRIMARY_CONFIG = 'openclaw.json'

# Runtime data directories copied out of the workload
DATA_DIRS = (
    'credentials',
    'identity',
    'agents',
    'memory',
    'extensions',
    'devices',
    'cron',
    'canvas',
    'completions',
    'media',
    'subagents',
)

# Host-side browser profile and the cache-only subpaths stripped from it
BROWSER_DIR = 'browser'
BROWSER_PROFILE = ('chrome-data', 'Default')
BROWSER_CACHE_DIRS = ('Cache', 'Code Cache', 'Service Worker')

# Optional persona/documentation files plus the workspace memory dir
WORKSPACE_DIR = 'workspace'
WORKSPACE_FILES = (
    'AGENTS.md',
    'SOUL.md',
    'USER.md',
    'IDENTITY.md',
    'TOOLS.md',
    'HEARTBEAT.md',
)
WORKSPACE_MEMORY_DIR = 'memory'

# Deployment descriptors (from the deployment repo) and portable config (from home)
DEPLOY_FILES = ('docker-compose.yml', 'docker-compose.override.yml')
PORTABLE_CONFIG = 'agent-config.yml'

# Archive naming
TIMESTAMP_FORMAT = '%Y%m%d-%H%M%S'
ARCHIVE_EXTENSION = '.tar.gz'
ENCRYPTED_SUFFIX = '.age'
LATEST_TAG = 'latest'
SNAPSHOT_DIR_PREFIX = 'openclaw-backup'
REMOTE_KEY_PREFIX = 'backups/'

# Secret names used by the backup subsystem
AGE_PUBLIC_KEY_SECRET = 'age-public-key'
AGE_PRIVATE_KEY_SECRET = 'age-private-key'


def browser_cache_paths():
    """Relative paths (under the backup/data root) of browser caches to strip."""
    return [
        '/'.join((BROWSER_DIR,) + BROWSER_PROFILE + (cache_dir,))
        for cache_dir in BROWSER_CACHE_DIRS
    ]


def generate_timestamp(now: Optional[datetime] = None) -> str:
    """Return a lexicographically sortable YYYYMMDD-HHMMSS timestamp."""
    return (now or datetime.now()).strftime(TIMESTAMP_FORMAT)


def snapshot_dir_name(timestamp: str) -> str:
    """Name of the single top-level directory inside an archive."""
    return f"{SNAPSHOT_DIR_PREFIX}-{timestamp}"


def archive_name(prefix: str, timestamp: str, encrypted: bool = False) -> str:
    """
    Remote name of a timestamped archive.

    Args:
        prefix: Archive name prefix (e.g. 'openclaw')
        timestamp: YYYYMMDD-HHMMSS timestamp
        encrypted: Append the encrypted suffix

    Returns:
        e.g. 'openclaw-20260208-233427.tar.gz.age'
    """
    name = f"{prefix}-{timestamp}{ARCHIVE_EXTENSION}"
    return name + ENCRYPTED_SUFFIX if encrypted else name


def latest_name(prefix: str, encrypted: bool = False) -> str:
    """Remote name of the always-overwritten latest alias."""
    return archive_name(prefix, LATEST_TAG, encrypted)


def is_encrypted_name(name: str) -> bool:
    return name.endswith(ENCRYPTED_SUFFIX)


def strip_encrypted_suffix(name: str) -> str:
    if is_encrypted_name(name):
        return name[:-len(ENCRYPTED_SUFFIX)]
    return name


def is_plain_name(name: str) -> bool:
    """True if name is a bare object name with no path separators or '..'."""
    return bool(name) and not any(token in name for token in ('/', '\\', '..', '\0'))


def archive_pattern(prefix: str):
    """
    Compiled pattern for timestamped archive names of a prefix.

    The 'date' group holds the 8-digit date token, 'time' the 6-digit time.
    The latest alias never matches.
    """
    return re.compile(
        rf'^{re.escape(prefix)}-(?P<date>\d{{8}})-(?P<time>\d{{6}})'
        rf'{re.escape(ARCHIVE_EXTENSION)}(?:{re.escape(ENCRYPTED_SUFFIX)})?$'
    )
