"""
Failure policy table for backup and restore operations.

Each operation maps to what happens when it fails:
- ABORT: the run fails, the error propagates to the caller
- WARN: a warning is recorded and the run continues
- SWALLOW: the failure is logged at debug level only
"""

import logging
from datetime import datetime, timezone
from enum import Enum


class Policy(Enum):
    ABORT = 'abort'
    WARN = 'warn'
    SWALLOW = 'swallow'


POLICIES = {
    # Archive builder
    'copy_data_dir': Policy.WARN,
    'copy_primary_config': Policy.WARN,
    'copy_browser': Policy.WARN,
    'copy_workspace_file': Policy.SWALLOW,
    'copy_deploy_file': Policy.SWALLOW,

    # Backup executor
    'build': Policy.ABORT,
    'compress': Policy.ABORT,
    'fetch_public_key': Policy.WARN,
    'encrypt': Policy.WARN,
    'upload': Policy.ABORT,
    'sweep_list': Policy.WARN,
    'sweep_delete': Policy.WARN,

    # Restore executor
    'resolve': Policy.ABORT,
    'download': Policy.ABORT,
    'decrypt': Policy.ABORT,
    'extract': Policy.ABORT,
    'restore_entry': Policy.WARN,
    'fix_ownership': Policy.WARN,

    # Both
    'cleanup': Policy.SWALLOW,
}


def policy_for(operation: str) -> Policy:
    """
    Look up the failure policy of an operation.

    Raises:
        KeyError: If the operation has no policy entry
    """
    return POLICIES[operation]


class RunLog:
    """
    Per-run log of a backup or restore.

    Keeps timestamped entries and the list of warnings for the run result,
    mirrors every entry to the module logger, and applies the policy table
    when an operation fails.
    """

    def __init__(self, logger: logging.Logger):
        self.logger = logger
        self.entries = []
        self.warnings = []

    def info(self, message: str):
        self._record(logging.INFO, message)

    def warn(self, message: str, elevated: bool = False):
        """
        Record a warning.

        Args:
            message: Warning text
            elevated: Log at ERROR level (the run still continues)
        """
        self.warnings.append(message)
        if elevated:
            self._record(logging.ERROR, f"[WARN] {message}")
        else:
            self._record(logging.WARNING, f"[WARN] {message}")

    def handle(self, operation: str, message: str, exc: Exception = None,
               error_class=RuntimeError, elevated: bool = False):
        """
        Apply the failure policy of an operation.

        Args:
            operation: Key of POLICIES
            message: Description of the failure
            exc: Underlying exception, if any
            error_class: Exception type raised for ABORT operations
            elevated: Log WARN operations at ERROR level

        Raises:
            error_class: If the operation's policy is ABORT
        """
        policy = policy_for(operation)
        detail = f"{message}: {exc}" if exc is not None else message

        if policy is Policy.ABORT:
            self._record(logging.ERROR, f"[ERROR] {detail}")
            raise error_class(detail) from exc
        elif policy is Policy.WARN:
            self.warn(detail, elevated=elevated)
        else:
            self.logger.debug(detail)

    def _record(self, level: int, message: str):
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
        self.entries.append(f"[{timestamp}] {message}")
        self.logger.log(level, message)
