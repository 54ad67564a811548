"""
Source handlers for backup operations.

Supports:
- HostSource: Copy entries from a directory on the host filesystem
- ContainerSource: Copy entries out of a running Docker container

Both expose fetch(relative_path, dest_path), copying one file or directory
tree (named relative to the source root) to dest_path.
"""

import os
import shutil
import tarfile
import tempfile
from pathlib import Path

import docker
from docker.errors import APIError, DockerException, NotFound

from .compression import safe_extract


class SourceError(Exception):
    """Raised when source acquisition fails."""
    pass


class SourceNotFound(SourceError):
    """Raised when the requested entry does not exist in the source."""
    pass


class SourceUnavailable(SourceError):
    """Raised when the source itself cannot be reached."""
    pass


class HostSource:
    """
    Handler for host filesystem sources.

    Copies files/directories below a root directory.
    """

    def __init__(self, root: str):
        """
        Initialize host source handler.

        Args:
            root: Directory entries are resolved against
        """
        self.root = Path(root).expanduser()

    def fetch(self, relative_path: str, dest_path: str) -> str:
        """
        Copy an entry to dest_path.

        Args:
            relative_path: Entry path relative to the root
            dest_path: Destination path (file or directory name)

        Returns:
            dest_path

        Raises:
            SourceNotFound: If the entry does not exist
            SourceError: If the entry cannot be copied
        """
        source_path = self.root / relative_path
        dest = Path(dest_path)

        if not source_path.exists() and not source_path.is_symlink():
            raise SourceNotFound(f"Path does not exist: {source_path}")

        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            if source_path.is_dir():
                # Browser profiles hold dangling lock symlinks, copy links as links
                shutil.copytree(source_path, dest, symlinks=True, dirs_exist_ok=True)
            else:
                shutil.copy2(source_path, dest, follow_symlinks=False)
        except PermissionError as e:
            raise SourceError(f"Permission denied accessing {source_path}: {e}")
        except (OSError, shutil.Error) as e:
            raise SourceError(f"Failed to copy {source_path}: {e}")

        return str(dest)

    def cleanup(self):
        """Cleanup any resources. Host source has no persistent connections."""
        pass


class ContainerSource:
    """
    Handler for entries inside a running Docker container.

    Uses the Docker API archive endpoint (the same mechanism as `docker cp`)
    to stream a path out of the container as a tar archive.
    """

    def __init__(self, container_name: str, data_dir: str, client=None):
        """
        Initialize container source handler.

        Args:
            container_name: Name or ID of the workload container
            data_dir: Directory inside the container entries are resolved against
            client: Optional docker.DockerClient (default: docker.from_env())
        """
        self.container_name = container_name
        self.data_dir = data_dir.rstrip('/')
        self.client = client
        self._container = None
        self._lookup_error = None

    def _get_container(self):
        # A failed lookup is remembered until cleanup()
        if self._lookup_error is not None:
            raise SourceUnavailable(self._lookup_error)
        if self._container is None:
            try:
                if self.client is None:
                    self.client = docker.from_env()
                self._container = self.client.containers.get(self.container_name)
            except NotFound as e:
                self._lookup_error = f"Container not found: {self.container_name}"
                raise SourceUnavailable(self._lookup_error) from e
            except DockerException as e:
                self._lookup_error = f"Failed to connect to Docker: {e}"
                raise SourceUnavailable(self._lookup_error) from e
        return self._container

    def fetch(self, relative_path: str, dest_path: str) -> str:
        """
        Copy an entry out of the container to dest_path.

        Args:
            relative_path: Entry path relative to data_dir
            dest_path: Destination path on the host

        Returns:
            dest_path

        Raises:
            SourceNotFound: If the path does not exist in the container
            SourceError: If the copy fails
        """
        container = self._get_container()
        remote_path = f"{self.data_dir}/{relative_path}"
        dest = Path(dest_path)
        dest.parent.mkdir(parents=True, exist_ok=True)

        try:
            stream, _ = container.get_archive(remote_path)
        except NotFound as e:
            raise SourceNotFound(f"Path does not exist in {self.container_name}: {remote_path}") from e
        except APIError as e:
            raise SourceError(f"Failed to copy {remote_path} from {self.container_name}: {e}") from e

        # The archive holds a single top-level entry named after the basename
        staging = tempfile.mkdtemp(prefix='.fetch-', dir=str(dest.parent))
        try:
            with tempfile.TemporaryFile() as buffer:
                for chunk in stream:
                    buffer.write(chunk)
                buffer.seek(0)
                with tarfile.open(fileobj=buffer, mode='r') as tar:
                    safe_extract(tar, staging)

            extracted = Path(staging) / os.path.basename(remote_path.rstrip('/'))
            if not extracted.exists() and not extracted.is_symlink():
                raise SourceError(f"Archive from {self.container_name} did not contain {remote_path}")

            if extracted.is_dir() and dest.is_dir():
                shutil.copytree(extracted, dest, symlinks=True, dirs_exist_ok=True)
            else:
                shutil.move(str(extracted), str(dest))
        except (tarfile.TarError, OSError, shutil.Error) as e:
            raise SourceError(f"Failed to unpack {remote_path} from {self.container_name}: {e}") from e
        finally:
            shutil.rmtree(staging, ignore_errors=True)

        return str(dest)

    def cleanup(self):
        """Close the Docker client."""
        if self.client is not None:
            try:
                self.client.close()
            except DockerException:
                pass
            self.client = None
        self._container = None
        self._lookup_error = None


def create_source(source_type: str, settings):
    """
    Factory function to create the workload source handler.

    Args:
        source_type: 'container' or 'host'
        settings: BackupSettings

    Returns:
        ContainerSource or HostSource instance

    Raises:
        ValueError: If source_type is invalid
    """
    if source_type == 'container':
        return ContainerSource(settings.container_name, settings.container_data_dir)
    elif source_type == 'host':
        return HostSource(str(settings.data_path))
    else:
        raise ValueError(f"Invalid source type: {source_type}")
