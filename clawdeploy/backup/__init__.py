"""
Backup module for clawdeploy.

This module handles the backup/restore lifecycle including:
- Canonical manifest of archived entries
- Snapshot acquisition (container and host)
- Compression and age encryption
- Storage (GCS, S3 and local)
- Backup and restore orchestration
- Retention policy enforcement
"""

from .executor import BackupExecutor, BackupResult, BackupError
from .restore import RestoreExecutor, RestoreResult, RestoreError, MissingPrivateKeyError, auto_restore
from .builder import ArchiveBuilder
from .encryption import AgeCodec
from .sources import ContainerSource, HostSource
from .storage import GCSStorage, S3Storage, LocalStorage, create_storage
from .retention import RetentionSweeper, SweepResult

__all__ = [
    'BackupExecutor',
    'BackupResult',
    'BackupError',
    'RestoreExecutor',
    'RestoreResult',
    'RestoreError',
    'MissingPrivateKeyError',
    'auto_restore',
    'ArchiveBuilder',
    'AgeCodec',
    'ContainerSource',
    'HostSource',
    'GCSStorage',
    'S3Storage',
    'LocalStorage',
    'create_storage',
    'RetentionSweeper',
    'SweepResult'
]
