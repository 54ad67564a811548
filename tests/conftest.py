"""
Shared pytest fixtures for clawdeploy tests.

This module provides fixtures for:
- Explicit BackupSettings rooted in a temporary directory
- In-memory secret store and a fake age codec
- A populated workload tree (stand-in for the container data dir)
- Local storage, a mocked Docker client and a mocked scheduler
"""

import os
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from clawdeploy.config import BackupSettings
from clawdeploy.backup import manifest
from clawdeploy.backup.encryption import DecryptionError, EncryptionError, AGE_BINARY_HEADER
from clawdeploy.backup.sources import HostSource
from clawdeploy.backup.storage import LocalStorage
from clawdeploy.secrets.backends import SecretNotFound
from clawdeploy.secrets.store import SecretStore
from clawdeploy.utils.crypto import CryptoManager


TEST_PUBLIC_KEY = 'age1testrecipient0000000000000000000000000000000000000000000'
TEST_PRIVATE_KEY = 'AGE-SECRET-KEY-1TESTIDENTITY000000000000000000000000000000000000'
OTHER_PRIVATE_KEY = 'AGE-SECRET-KEY-1OTHERIDENTITY00000000000000000000000000000000000'


class MemorySecretBackend:
    """Dict-backed secret backend keeping every version."""

    def __init__(self):
        self.secrets = {}
        self.fail = False

    def create_or_add_version(self, name, value):
        self.secrets.setdefault(name, []).append(value)

    def access_latest(self, name):
        if self.fail:
            from clawdeploy.secrets.backends import SecretBackendError
            raise SecretBackendError("backend unreachable")
        if not self.secrets.get(name):
            raise SecretNotFound(f"Secret not found: {name}")
        return self.secrets[name][-1]

    def delete(self, name):
        if name not in self.secrets:
            raise SecretNotFound(f"Secret not found: {name}")
        del self.secrets[name]

    def list_names(self):
        return sorted(self.secrets)


class FakeAgeCodec:
    """
    Stand-in for AgeCodec.

    Ciphertext is the age header, the recipient and the payload; decryption
    only succeeds with the private key paired to that recipient.
    """

    def __init__(self, available=True, pairs=None):
        self.available = available
        self.pairs = pairs or {TEST_PRIVATE_KEY: TEST_PUBLIC_KEY, OTHER_PRIVATE_KEY: 'age1other'}
        self.encrypt_calls = []
        self.decrypt_calls = []

    def is_available(self):
        return self.available

    def keygen_available(self):
        return self.available

    def encrypt(self, plaintext_path, recipient):
        self.encrypt_calls.append((plaintext_path, recipient))
        encrypted_path = plaintext_path + manifest.ENCRYPTED_SUFFIX
        data = Path(plaintext_path).read_bytes()
        Path(encrypted_path).write_bytes(AGE_BINARY_HEADER + b'\n' + recipient.encode() + b'\n' + data)
        return encrypted_path

    def decrypt(self, encrypted_path, private_key):
        self.decrypt_calls.append((encrypted_path, private_key))
        header, recipient, data = Path(encrypted_path).read_bytes().split(b'\n', 2)
        if header != AGE_BINARY_HEADER or self.pairs.get(private_key) != recipient.decode():
            raise DecryptionError("age decryption failed: no identity matched any of the recipients")
        if encrypted_path.endswith(manifest.ENCRYPTED_SUFFIX):
            plaintext_path = encrypted_path[:-len(manifest.ENCRYPTED_SUFFIX)]
        else:
            plaintext_path = encrypted_path + '.decrypted'
        Path(plaintext_path).write_bytes(data)
        return plaintext_path

    def generate_keypair(self):
        if not self.available:
            raise EncryptionError("age-keygen failed: not installed")
        return TEST_PRIVATE_KEY, TEST_PUBLIC_KEY


@pytest.fixture(scope='function')
def settings(tmp_path):
    """
    BackupSettings rooted in tmp_path, using local storage and a local vault.

    The live data directory does not exist until a restore creates it.
    """
    home = tmp_path / 'home'
    home.mkdir()
    return BackupSettings(
        secrets_prefix='openclaw',
        secrets_provider='local',
        secrets_passphrase='test-passphrase',
        local_secrets_file=str(tmp_path / 'vault' / 'secrets.json'),
        storage_provider='local',
        bucket='test-bucket',
        retention_days=90,
        local_backup_dir=str(tmp_path / 'buckets'),
        openclaw_home=str(home),
        openclaw_dir=str(home / '.openclaw'),
        openclaw_repo=str(home / 'openclaw'),
        runtime_uid=os.getuid(),
        runtime_gid=os.getgid(),
        secrets_dir=str(tmp_path / 'run' / 'openclaw-secrets'),
        temp_dir=str(tmp_path / 'temp'),
    )


@pytest.fixture(scope='function')
def memory_backend():
    return MemorySecretBackend()


@pytest.fixture(scope='function')
def secret_store(memory_backend):
    """SecretStore over an in-memory backend, prefix 'openclaw'."""
    return SecretStore(memory_backend, 'openclaw')


@pytest.fixture(scope='function')
def keyed_secret_store(secret_store):
    """SecretStore holding the test age key pair."""
    secret_store.store(manifest.AGE_PUBLIC_KEY_SECRET, TEST_PUBLIC_KEY)
    secret_store.store(manifest.AGE_PRIVATE_KEY_SECRET, TEST_PRIVATE_KEY)
    return secret_store


@pytest.fixture(scope='function')
def fake_codec():
    return FakeAgeCodec()


@pytest.fixture(scope='function')
def local_storage(settings):
    """LocalStorage standing in for the 'test-bucket' bucket."""
    return LocalStorage(settings.local_backup_dir, 'test-bucket')


@pytest.fixture(scope='function')
def workload_dir(tmp_path):
    """
    Populated stand-in for the container's data directory.

    Contains the primary config, one file in every data directory, the
    workspace persona files and workspace memory.
    """
    root = tmp_path / 'container'
    root.mkdir()
    (root / manifest.PRIMARY_CONFIG).write_text('{"gateway": {"port": 18789}}')

    for dir_name in manifest.DATA_DIRS:
        (root / dir_name).mkdir()
        (root / dir_name / f'{dir_name}.json').write_text(f'{{"dir": "{dir_name}"}}')
    (root / 'agents' / 'main' / 'sessions').mkdir(parents=True)
    (root / 'agents' / 'main' / 'sessions' / 'session-1.jsonl').write_text('{"role": "user"}\n')

    workspace = root / manifest.WORKSPACE_DIR
    workspace.mkdir()
    for name in manifest.WORKSPACE_FILES:
        (workspace / name).write_text(f'# {name}\n')
    (workspace / manifest.WORKSPACE_MEMORY_DIR).mkdir()
    (workspace / manifest.WORKSPACE_MEMORY_DIR / '2026-01-01.md').write_text('remembered\n')

    return root


@pytest.fixture(scope='function')
def workload(workload_dir):
    return HostSource(str(workload_dir))


@pytest.fixture(scope='function')
def host_dir(tmp_path):
    """Host data directory holding a browser profile with caches."""
    root = tmp_path / 'host'
    profile = root / manifest.BROWSER_DIR / 'chrome-data' / 'Default'
    profile.mkdir(parents=True)
    (profile / 'Cookies').write_bytes(b'cookie-db')
    (profile / 'Preferences').write_text('{}')
    for cache_dir in manifest.BROWSER_CACHE_DIRS:
        (profile / cache_dir).mkdir()
        (profile / cache_dir / 'data_0').write_bytes(b'cache' * 100)
    return root


@pytest.fixture(scope='function')
def host(host_dir):
    return HostSource(str(host_dir))


@pytest.fixture(scope='function')
def deploy_files(settings):
    """Compose files in the deployment repo and agent-config.yml in home."""
    settings.repo_path.mkdir(parents=True, exist_ok=True)
    for name in manifest.DEPLOY_FILES:
        (settings.repo_path / name).write_text(f'# {name}\nservices: {{}}\n')
    (settings.home_path / manifest.PORTABLE_CONFIG).write_text('agent: main\n')
    return settings


@pytest.fixture
def sample_archive(tmp_path):
    """
    Create a sample archive file for testing.
    """
    import tarfile

    test_dir = tmp_path / 'test_data'
    test_dir.mkdir()
    (test_dir / 'file1.txt').write_text('Content 1')
    (test_dir / 'file2.txt').write_text('Content 2')

    archive_path = tmp_path / 'test_archive.tar.gz'
    with tarfile.open(archive_path, 'w:gz') as tar:
        tar.add(test_dir, arcname='test_data')

    return archive_path


@pytest.fixture(scope='function')
def crypto_manager_initialized():
    """
    Create and initialize a CryptoManager instance.

    Passphrase: test_password_123
    """
    cm = CryptoManager()
    salt = cm.initialize('test_password_123')
    return cm, salt


@pytest.fixture
def mock_docker_client():
    """
    Mock docker.from_env() for container source testing.

    Returns the MagicMock client.
    """
    with patch('clawdeploy.backup.sources.docker.from_env') as mock_from_env:
        client = MagicMock()
        mock_from_env.return_value = client
        yield client


@pytest.fixture(scope='function')
def mock_scheduler():
    """
    Mock APScheduler for testing scheduler functionality.
    """
    import clawdeploy.scheduler as scheduler_module

    scheduler_module.scheduler = None
    with patch('clawdeploy.scheduler.BlockingScheduler') as mock_sched:
        scheduler_instance = MagicMock()
        mock_sched.return_value = scheduler_instance

        scheduler_instance.running = False
        scheduler_instance.get_jobs.return_value = []

        yield scheduler_instance

    scheduler_module.scheduler = None
    scheduler_module.backup_settings = None
