"""
Archive builder - snapshots the canonical manifest into a directory tree.

The build is a flat best-effort fan-out: every entry is copied
independently and a failed entry is recorded as a warning, never aborting
the build. The caller compresses the resulting directory.
"""

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from . import manifest
from .policy import RunLog
from .sources import SourceError, SourceNotFound, SourceUnavailable, HostSource


logger = logging.getLogger(__name__)


@dataclass
class BuildReport:
    """Outcome of a single archive build."""

    snapshot_dir: str
    copied: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    config_present: bool = False

    @property
    def has_workload_data(self) -> bool:
        """True if the primary config or any data directory was copied."""
        return any(
            name == manifest.PRIMARY_CONFIG or name in manifest.DATA_DIRS
            for name in self.copied
        )


class ArchiveBuilder:
    """
    Copies the manifest entries of a workload and its host into a snapshot
    directory.
    """

    def __init__(self, settings, workload, host: HostSource = None, run_log: RunLog = None):
        """
        Initialize the builder.

        Args:
            settings: BackupSettings
            workload: Source for container-resident data (fetch(relative, dest))
            host: Source rooted at the host data directory (browser profile);
                defaults to HostSource(settings.data_path)
            run_log: RunLog to record into (default: a new one)
        """
        self.settings = settings
        self.workload = workload
        self.host = host or HostSource(str(settings.data_path))
        self.run_log = run_log or RunLog(logger)

    def build(self, destination_dir: str) -> BuildReport:
        """
        Populate destination_dir with every manifest entry that can be copied.

        Args:
            destination_dir: Snapshot directory (created if missing)

        Returns:
            BuildReport
        """
        dest = Path(destination_dir)
        (dest / manifest.WORKSPACE_DIR).mkdir(parents=True, exist_ok=True)
        report = BuildReport(snapshot_dir=str(dest))
        warnings_before = len(self.run_log.warnings)

        # Primary configuration: elevated severity, but never aborts
        reachable = True
        try:
            self.workload.fetch(manifest.PRIMARY_CONFIG, str(dest / manifest.PRIMARY_CONFIG))
            report.copied.append(manifest.PRIMARY_CONFIG)
            report.config_present = True
        except SourceUnavailable as e:
            self.run_log.handle(
                'copy_primary_config',
                "Workload unreachable - no configuration, data directories or workspace copied",
                e,
                elevated=True
            )
            reachable = False
        except SourceError as e:
            self.run_log.handle(
                'copy_primary_config',
                f"Failed to copy {manifest.PRIMARY_CONFIG} - backup may be incomplete",
                e,
                elevated=True
            )

        for dir_name in manifest.DATA_DIRS:
            if not reachable:
                break
            try:
                self.workload.fetch(dir_name, str(dest / dir_name))
                report.copied.append(dir_name)
            except SourceUnavailable as e:
                self.run_log.handle('copy_data_dir', f"Workload unreachable - skipped {dir_name} and later entries", e)
                reachable = False
            except SourceError as e:
                self.run_log.handle('copy_data_dir', f"Failed to copy {dir_name}", e)

        self._copy_browser(dest, report)
        if reachable:
            self._copy_workspace(dest, report)
        self._copy_deploy_files(dest, report)

        report.warnings = self.run_log.warnings[warnings_before:]
        self.run_log.info(f"Snapshot built: {len(report.copied)} entries, {len(report.warnings)} warnings")
        return report

    def _copy_browser(self, dest: Path, report: BuildReport):
        """Browser data lives on the host, not in the container; caches are stripped."""
        try:
            self.host.fetch(manifest.BROWSER_DIR, str(dest / manifest.BROWSER_DIR))
        except SourceNotFound:
            self.run_log.warn("No browser data")
            return
        except SourceError as e:
            self.run_log.handle('copy_browser', "Failed to copy browser data", e)
            return

        strip_browser_caches(dest)
        report.copied.append(manifest.BROWSER_DIR)

    def _copy_workspace(self, dest: Path, report: BuildReport):
        workspace = dest / manifest.WORKSPACE_DIR
        entries = list(manifest.WORKSPACE_FILES) + [manifest.WORKSPACE_MEMORY_DIR]
        for name in entries:
            relative = f"{manifest.WORKSPACE_DIR}/{name}"
            try:
                self.workload.fetch(relative, str(workspace / name))
                report.copied.append(relative)
            except SourceError as e:
                self.run_log.handle('copy_workspace_file', f"Skipped {relative}", e)

    def _copy_deploy_files(self, dest: Path, report: BuildReport):
        # Only the compose files; .env is a symlink into tmpfs and is never archived
        candidates = [(self.settings.repo_path / name, name) for name in manifest.DEPLOY_FILES]
        candidates.append((self.settings.home_path / manifest.PORTABLE_CONFIG, manifest.PORTABLE_CONFIG))

        for source_path, name in candidates:
            try:
                shutil.copy2(source_path, dest / name)
                report.copied.append(name)
            except OSError as e:
                self.run_log.handle('copy_deploy_file', f"Skipped {name}", e)


def strip_browser_caches(root) -> List[str]:
    """
    Remove browser cache subpaths below a backup or data root.

    Args:
        root: Directory containing the 'browser' entry

    Returns:
        List of removed paths
    """
    removed = []
    for relative in manifest.browser_cache_paths():
        cache_path = Path(root) / relative
        if cache_path.is_dir() and not cache_path.is_symlink():
            shutil.rmtree(cache_path, ignore_errors=True)
            removed.append(str(cache_path))
        elif cache_path.exists() or cache_path.is_symlink():
            cache_path.unlink()
            removed.append(str(cache_path))
    return removed
