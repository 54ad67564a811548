"""
Backup executor - orchestrates the complete backup workflow.

Workflow:
1. Build the snapshot directory from the manifest (best effort, but a
   snapshot without config or data directories aborts the run)
2. Create the compressed archive
3. Encrypt it to the stored public key, or skip encryption with one warning
4. Upload as {prefix}-{timestamp} and as {prefix}-latest
5. Cleanup temporary files (always)
6. Sweep archives older than the retention window (failures swallowed)
"""

import logging
import os
import shutil
import tempfile
from dataclasses import dataclass, field
from typing import List, Optional

from . import manifest
from .builder import ArchiveBuilder, BuildReport
from .compression import create_archive, get_archive_size, CompressionError
from .encryption import EncryptionError
from .policy import RunLog
from .retention import RetentionSweeper, SweepResult
from .sources import create_source
from .storage import StorageError
from ..secrets.store import SecretNotFound, SecretBackendError


logger = logging.getLogger(__name__)


class BackupError(Exception):
    """Raised when a backup run fails."""
    pass


@dataclass
class BackupResult:
    """Outcome of a successful backup run."""

    timestamp: str
    remote_name: str
    latest_name: str
    location: str
    encrypted: bool
    size_bytes: int
    build: Optional[BuildReport] = None
    sweep: Optional[SweepResult] = None
    warnings: List[str] = field(default_factory=list)
    logs: List[str] = field(default_factory=list)


class BackupExecutor:
    """
    Orchestrates the complete backup workflow.
    """

    def __init__(self, settings, storage, secrets, codec, builder: ArchiveBuilder = None, workload=None):
        """
        Initialize backup executor.

        Args:
            settings: BackupSettings
            storage: Object storage handler
            secrets: SecretStore holding the age public key, or None when the
                store could not be opened (the backup is then unencrypted)
            codec: AgeCodec
            builder: ArchiveBuilder (default: one reading from the workload)
            workload: Workload source for the default builder
                (default: the configured container)
        """
        self.settings = settings
        self.storage = storage
        self.secrets = secrets
        self.codec = codec
        self.run_log = RunLog(logger)

        if builder is None:
            builder = ArchiveBuilder(
                settings,
                workload or create_source('container', settings),
                run_log=self.run_log
            )
        else:
            builder.run_log = self.run_log
        self.builder = builder

        self.work_dir = None

    @property
    def logs(self) -> List[str]:
        return self.run_log.entries

    def execute(self) -> BackupResult:
        """
        Execute one backup run.

        Returns:
            BackupResult

        Raises:
            BackupError: If the archive cannot be built, compressed or uploaded
        """
        prefix = self.settings.secrets_prefix
        timestamp = manifest.generate_timestamp()
        self.run_log.info(f"Starting backup {prefix}-{timestamp}")

        try:
            temp_root = self.settings.temp_path
            temp_root.mkdir(parents=True, exist_ok=True)
            self.work_dir = tempfile.mkdtemp(prefix=f'{prefix}-backup-{timestamp}-', dir=str(temp_root))
        except OSError as e:
            raise BackupError(f"Failed to create temporary directory: {e}") from e

        try:
            result = self._execute_workflow(timestamp)
        finally:
            self._cleanup()

        if self.settings.retention_days and self.settings.retention_days > 0:
            result.sweep = self._sweep()
        else:
            self.run_log.info("Retention disabled, skipping sweep")

        result.warnings = list(self.run_log.warnings)
        result.logs = list(self.run_log.entries)
        self.run_log.info(f"Backup complete: {result.location}")
        return result

    def _execute_workflow(self, timestamp: str) -> BackupResult:
        """Execute the main backup workflow steps."""
        prefix = self.settings.secrets_prefix

        # Step 1: Build snapshot directory
        snapshot_dir = os.path.join(self.work_dir, manifest.snapshot_dir_name(timestamp))
        self.run_log.info(f"Building snapshot from {self.settings.container_name}")
        try:
            report = self.builder.build(snapshot_dir)
        except OSError as e:
            raise BackupError(f"Failed to build snapshot: {e}") from e
        finally:
            cleanup = getattr(self.builder.workload, 'cleanup', None)
            if cleanup:
                cleanup()

        if not report.has_workload_data:
            self.run_log.handle(
                'build',
                f"Snapshot from {self.settings.container_name} holds no configuration or data directories",
                error_class=BackupError
            )

        # Step 2: Create archive
        archive_path = os.path.join(self.work_dir, manifest.archive_name(prefix, timestamp))
        try:
            create_archive(snapshot_dir, archive_path)
            size = get_archive_size(archive_path)
        except CompressionError as e:
            self.run_log.handle('compress', "Failed to compress backup", e, error_class=BackupError)
        self.run_log.info(f"Archive created: {os.path.basename(archive_path)} ({size / 1024 / 1024:.2f} MB)")

        # Step 3: Encrypt or skip
        upload_path = self._encrypt(archive_path)
        encrypted = upload_path != archive_path
        if encrypted:
            size = get_archive_size(upload_path)

        # Step 4: Upload timestamped copy, then the latest alias
        remote_name = manifest.archive_name(prefix, timestamp, encrypted)
        latest = manifest.latest_name(prefix, encrypted)
        for name in (remote_name, latest):
            try:
                self.storage.upload(upload_path, name)
                self.run_log.info(f"Uploaded {self.storage.location(name)}")
            except StorageError as e:
                self.run_log.handle(
                    'upload',
                    f"Failed to upload to {self.storage.location(name)}",
                    e,
                    error_class=BackupError
                )

        return BackupResult(
            timestamp=timestamp,
            remote_name=remote_name,
            latest_name=latest,
            location=self.storage.location(remote_name),
            encrypted=encrypted,
            size_bytes=size,
            build=report
        )

    def _encrypt(self, archive_path: str) -> str:
        """
        Encrypt the archive to the stored public key.

        Every skip path records exactly one warning.

        Returns:
            Path to upload (the .age file, or the plaintext archive)
        """
        secret_name = f"{self.settings.secrets_prefix}-{manifest.AGE_PUBLIC_KEY_SECRET}"

        try:
            if self.secrets is None:
                raise SecretBackendError("Secret store unavailable")
            recipient = self.secrets.get(manifest.AGE_PUBLIC_KEY_SECRET)
        except (SecretNotFound, SecretBackendError) as e:
            self.run_log.handle(
                'fetch_public_key',
                f"No usable {secret_name} - backup will not be encrypted",
                e
            )
            return archive_path

        if not self.codec.is_available():
            self.run_log.handle('encrypt', "age not installed - backup will not be encrypted")
            return archive_path

        self.run_log.info("Encrypting backup...")
        try:
            encrypted_path = self.codec.encrypt(archive_path, recipient)
        except EncryptionError as e:
            self.run_log.handle('encrypt', "Encryption failed - backup will not be encrypted", e)
            return archive_path

        return encrypted_path

    def _sweep(self) -> Optional[SweepResult]:
        sweeper = RetentionSweeper(self.storage, self.settings.secrets_prefix, run_log=self.run_log)
        try:
            return sweeper.run(self.settings.retention_days)
        except Exception as e:
            # The backup itself already succeeded
            self.run_log.warn(f"Retention sweep failed: {e}")
            return None

    def _cleanup(self):
        """Remove temporary directory and files."""
        if self.work_dir and os.path.exists(self.work_dir):
            try:
                shutil.rmtree(self.work_dir)
                self.run_log.info("Cleaned up temporary directory")
            except OSError as e:
                self.run_log.handle('cleanup', f"Failed to cleanup {self.work_dir}", e)
        self.work_dir = None


def open_secret_store(settings):
    """
    Open the configured secret store for a backup run.

    Returns:
        SecretStore, or None if the store cannot be opened
    """
    from ..secrets import create_secret_store

    try:
        return create_secret_store(settings)
    except (SecretBackendError, ValueError) as e:
        logger.warning(f"Secret store unavailable: {e}")
        return None


def run_backup(settings, storage=None, secrets=None, codec=None) -> BackupResult:
    """
    Run a backup with handlers built from settings.

    Args:
        settings: BackupSettings
        storage: Object storage handler (default: create_storage(settings))
        secrets: SecretStore (default: open_secret_store(settings))
        codec: AgeCodec (default: AgeCodec())

    Returns:
        BackupResult
    """
    from .encryption import AgeCodec
    from .storage import create_storage

    executor = BackupExecutor(
        settings,
        storage or create_storage(settings),
        secrets or open_secret_store(settings),
        codec or AgeCodec()
    )
    return executor.execute()
