"""
Restore executor - recovers a deployment from a backup archive.

Workflow:
1. Resolve the archive name (prefer the encrypted variant)
2. Download into a per-run scratch directory
3. Decrypt when the archive is age-encrypted (private key required)
4. Extract and locate the single snapshot directory
5. Validate that the primary configuration is present
6. Distribute the manifest entries into the live directories
7. Fix ownership for the container runtime user
8. Cleanup the scratch directory (always)
"""

import logging
import os
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from . import manifest
from .builder import strip_browser_caches
from .compression import extract_archive, find_snapshot_dirs, CompressionError
from .encryption import DecryptionError, sniff_encrypted
from .policy import RunLog
from .storage import StorageError, ObjectNotFound


logger = logging.getLogger(__name__)


class RestoreError(Exception):
    """Raised when a restore run fails."""
    pass


class BackupNotFound(RestoreError):
    """Raised when the requested archive does not exist in the bucket."""
    pass


class CannotDecryptError(RestoreError):
    """Raised when an encrypted archive cannot be decrypted."""
    pass


class MissingPrivateKeyError(CannotDecryptError):
    """Raised when an archive is encrypted but no private key is stored."""
    pass


@dataclass
class RestoreResult:
    """Outcome of a successful restore run."""

    source_name: str
    location: str
    encrypted: bool
    snapshot_name: str
    config_present: bool
    restored: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    logs: List[str] = field(default_factory=list)


class RestoreExecutor:
    """
    Orchestrates the complete restore workflow.
    """

    def __init__(self, settings, storage, secrets, codec):
        """
        Initialize restore executor.

        Args:
            settings: BackupSettings
            storage: Object storage handler holding the archives
            secrets: SecretStore holding the age private key
            codec: AgeCodec
        """
        self.settings = settings
        self.storage = storage
        self.secrets = secrets
        self.codec = codec
        self.run_log = RunLog(logger)
        self.scratch_dir = None

    @property
    def logs(self) -> List[str]:
        return self.run_log.entries

    def execute(self, backup_name: Optional[str] = None) -> RestoreResult:
        """
        Restore a backup into the live directories.

        Args:
            backup_name: Archive name (default: the latest alias)

        Returns:
            RestoreResult

        Raises:
            BackupNotFound: If the archive does not exist
            MissingPrivateKeyError: If the archive is encrypted and no private key is stored
            CannotDecryptError: If decryption fails
            RestoreError: If download or extraction fails
        """
        prefix = self.settings.secrets_prefix
        timestamp = manifest.generate_timestamp()

        try:
            source_name = self._resolve_source(backup_name)
            self.run_log.info(f"Restoring from {self.storage.location(source_name)}")

            try:
                temp_root = self.settings.temp_path
                temp_root.mkdir(parents=True, exist_ok=True)
                self.scratch_dir = tempfile.mkdtemp(
                    prefix=f'{prefix}-restore-{timestamp}-', dir=str(temp_root)
                )
            except OSError as e:
                raise RestoreError(f"Failed to create temporary directory: {e}") from e

            archive_path, encrypted = self._download_and_decrypt(source_name)
            snapshot = self._extract(archive_path)

            config_present = (snapshot / manifest.PRIMARY_CONFIG).is_file()
            if not config_present:
                self.run_log.warn(f"{manifest.PRIMARY_CONFIG} not found in backup", elevated=True)

            restored = self._distribute(snapshot)
            self._fix_ownership()
        finally:
            self._cleanup()

        self.run_log.info("Restore complete")
        return RestoreResult(
            source_name=source_name,
            location=self.storage.location(source_name),
            encrypted=encrypted,
            snapshot_name=snapshot.name,
            config_present=config_present,
            restored=restored,
            warnings=list(self.run_log.warnings),
            logs=list(self.run_log.entries)
        )

    def _resolve_source(self, backup_name: Optional[str]) -> str:
        """
        Pick the remote name to restore.

        An explicit '.age' name is used verbatim. Otherwise the encrypted
        variant is tried first and the plaintext name is the fallback.
        Names with path separators or '..' are refused.
        """
        name = backup_name or manifest.latest_name(self.settings.secrets_prefix)
        if not manifest.is_plain_name(name):
            self.run_log.handle('resolve', f"Invalid backup name: {name!r}", error_class=RestoreError)
        if manifest.is_encrypted_name(name):
            return name

        candidate = f"{name}{manifest.ENCRYPTED_SUFFIX}"
        try:
            if self.storage.exists(candidate):
                return candidate
        except StorageError as e:
            logger.debug(f"Lookup of {candidate} failed: {e}")

        return name

    def _download_and_decrypt(self, source_name: str):
        """
        Download the archive and decrypt it when needed.

        Returns:
            Tuple of (plaintext archive path, was_encrypted)
        """
        local_path = os.path.join(self.scratch_dir, source_name)
        location = self.storage.location(source_name)

        self.run_log.info("Downloading backup...")
        try:
            self.storage.download(source_name, local_path)
        except ObjectNotFound as e:
            self.run_log.handle('download', f"No backup found at {location}", e, error_class=BackupNotFound)
        except StorageError as e:
            self.run_log.handle('download', f"Failed to download {location}", e, error_class=RestoreError)

        if not (manifest.is_encrypted_name(source_name) or sniff_encrypted(local_path)):
            return local_path, False

        self.run_log.info("Decrypting backup...")
        secret_name = f"{self.settings.secrets_prefix}-{manifest.AGE_PRIVATE_KEY_SECRET}"
        private_key = self.secrets.get_optional(manifest.AGE_PRIVATE_KEY_SECRET)
        if not private_key:
            self.run_log.handle(
                'decrypt',
                f"Backup is encrypted but {secret_name} was not found in the secret store",
                error_class=MissingPrivateKeyError
            )

        if not self.codec.is_available():
            self.run_log.handle('decrypt', "age is not installed - cannot decrypt backup", error_class=RestoreError)

        try:
            plaintext_path = self.codec.decrypt(local_path, private_key)
        except DecryptionError as e:
            self.run_log.handle(
                'decrypt',
                f"Failed to decrypt {source_name} with {secret_name}",
                e,
                error_class=CannotDecryptError
            )

        os.remove(local_path)
        return plaintext_path, True

    def _extract(self, archive_path: str) -> Path:
        """
        Extract the archive and return its single snapshot directory.

        Raises:
            RestoreError: If extraction fails or the layout is ambiguous
        """
        extract_dir = os.path.join(self.scratch_dir, 'extract')
        os.makedirs(extract_dir, exist_ok=True)

        self.run_log.info("Extracting...")
        try:
            extract_archive(archive_path, extract_dir)
        except CompressionError as e:
            self.run_log.handle('extract', "Failed to extract backup", e, error_class=RestoreError)

        snapshots = find_snapshot_dirs(extract_dir)
        if len(snapshots) != 1:
            self.run_log.handle(
                'extract',
                f"Expected exactly one {manifest.SNAPSHOT_DIR_PREFIX}-* directory in archive, found {len(snapshots)}",
                error_class=RestoreError
            )

        return Path(snapshots[0])

    def _distribute(self, snapshot: Path) -> List[str]:
        """Copy every manifest entry of the snapshot into the live directories."""
        data_path = self.settings.data_path
        restored = []

        self.run_log.info(f"Restoring to {data_path}")
        data_path.mkdir(parents=True, exist_ok=True)

        for dir_name in manifest.DATA_DIRS:
            source = snapshot / dir_name
            if not source.is_dir():
                self.run_log.handle('restore_entry', f"{dir_name} not found in backup")
                continue
            self._restore_entry(dir_name, lambda: merge_tree(source, data_path / dir_name), restored)

        config = snapshot / manifest.PRIMARY_CONFIG
        if config.is_file():
            self._restore_entry(
                manifest.PRIMARY_CONFIG,
                lambda: _copy_file(config, data_path / manifest.PRIMARY_CONFIG),
                restored
            )

        browser = snapshot / manifest.BROWSER_DIR
        if browser.is_dir():
            def restore_browser():
                merge_tree(browser, data_path / manifest.BROWSER_DIR)
                strip_browser_caches(data_path)
            self._restore_entry(manifest.BROWSER_DIR, restore_browser, restored)

        workspace = snapshot / manifest.WORKSPACE_DIR
        if workspace.is_dir():
            self._restore_entry(
                manifest.WORKSPACE_DIR,
                lambda: merge_tree(workspace, data_path / manifest.WORKSPACE_DIR),
                restored
            )

        targets = [(name, self.settings.repo_path) for name in manifest.DEPLOY_FILES]
        targets.append((manifest.PORTABLE_CONFIG, self.settings.home_path))
        for name, target_dir in targets:
            source = snapshot / name
            if source.is_file():
                self._restore_entry(name, lambda: _copy_file(source, target_dir / name), restored)

        return restored

    def _restore_entry(self, name: str, action, restored: List[str]):
        try:
            action()
            restored.append(name)
        except (OSError, shutil.Error) as e:
            self.run_log.handle('restore_entry', f"Failed to restore {name}", e)

    def _fix_ownership(self):
        uid = self.settings.runtime_uid
        gid = self.settings.runtime_gid
        self.run_log.info(f"Fixing ownership ({uid}:{gid})")
        try:
            chown_tree(self.settings.data_path, uid, gid)
        except OSError as e:
            self.run_log.handle('fix_ownership', f"Could not set ownership of {self.settings.data_path}", e)

    def _cleanup(self):
        """Remove the scratch directory (download, decrypted file, extraction)."""
        if self.scratch_dir and os.path.exists(self.scratch_dir):
            try:
                shutil.rmtree(self.scratch_dir)
                self.run_log.info("Cleaned up temporary directory")
            except OSError as e:
                self.run_log.handle('cleanup', f"Failed to cleanup {self.scratch_dir}", e)
        self.scratch_dir = None


def merge_tree(source: Path, dest: Path):
    """
    Copy a directory tree over dest, replacing files and links that exist.

    Symlinks are copied as links. Entries present only in dest are kept.
    """
    for root, dirs, files in os.walk(source):
        relative = os.path.relpath(root, source)
        target_root = dest if relative == '.' else dest / relative
        target_root.mkdir(parents=True, exist_ok=True)

        for name in dirs + files:
            src = Path(root) / name
            dst = target_root / name
            if src.is_symlink():
                if dst.is_symlink() or dst.is_file():
                    dst.unlink()
                elif dst.is_dir():
                    shutil.rmtree(dst)
                os.symlink(os.readlink(src), dst)
            elif src.is_file():
                _copy_file(src, dst)


def chown_tree(path: Path, uid: int, gid: int):
    """Recursively set ownership without following symlinks."""
    os.lchown(path, uid, gid)
    for root, dirs, files in os.walk(path):
        for name in dirs + files:
            os.lchown(os.path.join(root, name), uid, gid)


def _copy_file(source: Path, dest: Path):
    dest.parent.mkdir(parents=True, exist_ok=True)
    if dest.is_symlink():
        dest.unlink()
    shutil.copy2(source, dest)


def auto_restore(settings, storage, secrets, codec) -> Optional[RestoreResult]:
    """
    Restore the latest backup on first boot.

    Runs only when the live primary configuration is absent. A missing
    backup or an undecryptable one leaves a fresh install instead of
    failing the boot.

    Returns:
        RestoreResult, or None when nothing was restored
    """
    config_path = settings.data_path / manifest.PRIMARY_CONFIG
    if config_path.exists():
        logger.info(f"Existing configuration found at {config_path}, skipping restore")
        return None

    logger.info("No configuration found, checking for backup...")
    try:
        return RestoreExecutor(settings, storage, secrets, codec).execute()
    except BackupNotFound:
        logger.info("No backup found, starting fresh")
    except CannotDecryptError as e:
        logger.warning(f"[WARN] {e} - starting fresh")
    return None
