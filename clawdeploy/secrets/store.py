"""
Namespaced secret store.

Every logical secret name is stored as '{prefix}-{name}' in the backend.
Writes append a version; reads return the newest version.
"""

import logging
from typing import List, Optional

from .backends import SecretNotFound, SecretBackendError


logger = logging.getLogger(__name__)


class SecretStore:
    """
    Secret store adapter over a backend.
    """

    def __init__(self, backend, prefix: str = 'openclaw'):
        """
        Initialize secret store.

        Args:
            backend: Secret backend (see backends.py)
            prefix: Namespace prepended to every secret name
        """
        self.backend = backend
        self.prefix = prefix

    def full_name(self, name: str) -> str:
        return f"{self.prefix}-{name}"

    def store(self, name: str, value: str):
        """
        Store a value under {prefix}-{name}.

        Raises:
            SecretBackendError: If the backend rejects the write
        """
        if value is None or value == '':
            raise ValueError(f"Refusing to store an empty value for {self.full_name(name)}")

        self.backend.create_or_add_version(self.full_name(name), value)
        logger.info(f"Stored {self.full_name(name)}")

    def get(self, name: str) -> str:
        """
        Read the newest version of a secret.

        Raises:
            SecretNotFound: If the secret is missing or its value is empty
            SecretBackendError: If the backend cannot be reached
        """
        value = self.backend.access_latest(self.full_name(name))
        if not value:
            raise SecretNotFound(f"Secret {self.full_name(name)} has an empty value")
        return value

    def get_optional(self, name: str) -> Optional[str]:
        """
        Best-effort lookup: any failure is logged and returns None.
        """
        try:
            return self.get(name)
        except SecretNotFound:
            logger.info(f"Secret {self.full_name(name)} not found")
        except Exception as e:
            logger.warning(f"Lookup of {self.full_name(name)} failed: {e}")
        return None

    def delete(self, name: str):
        self.backend.delete(self.full_name(name))
        logger.info(f"Deleted {self.full_name(name)}")

    def list(self) -> List[str]:
        """List logical names stored under this prefix."""
        namespace = f"{self.prefix}-"
        return sorted(
            full[len(namespace):] for full in self.backend.list_names()
            if full.startswith(namespace)
        )


__all__ = ['SecretStore', 'SecretNotFound', 'SecretBackendError']
