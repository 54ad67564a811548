"""
Secret provisioning.

Helpers that put a deployment's secrets into the store, check them,
move them between stores and materialize them for the containers.
"""

import logging
import os
from pathlib import Path
from secrets import token_hex
from typing import Dict, Iterable, List, Optional

from .store import SecretStore, SecretNotFound, SecretBackendError
from ..backup.manifest import AGE_PUBLIC_KEY_SECRET, AGE_PRIVATE_KEY_SECRET, WORKSPACE_DIR


logger = logging.getLogger(__name__)


ANTHROPIC_API_KEY = 'anthropic-api-key'
OPENAI_API_KEY = 'openai-api-key'
MISTRAL_API_KEY = 'mistral-api-key'
GATEWAY_TOKEN = 'gateway-token'

REQUIRED_SECRETS = (ANTHROPIC_API_KEY, OPENAI_API_KEY)
OPTIONAL_SECRETS = (MISTRAL_API_KEY,)

# Secret name -> variable in the container .env
ENV_SECRETS = {
    ANTHROPIC_API_KEY: 'ANTHROPIC_API_KEY',
    OPENAI_API_KEY: 'OPENAI_API_KEY',
    MISTRAL_API_KEY: 'MISTRAL_API_KEY',
    GATEWAY_TOKEN: 'OPENCLAW_GATEWAY_TOKEN',
}

# Non-secret gateway settings written alongside the keys
ENV_DEFAULTS = {
    'OPENCLAW_GATEWAY_PORT': '18789',
    'OPENCLAW_BRIDGE_PORT': '18790',
    'OPENCLAW_GATEWAY_BIND': 'lan',
    'OPENCLAW_IMAGE': 'alpine/openclaw',
}

ENV_FILE = '.env'


def store_api_keys(store: SecretStore, keys: Dict[str, str], gateway_token: Optional[str] = None) -> List[str]:
    """
    Store the API keys of a deployment and a gateway token.

    Args:
        store: Destination SecretStore
        keys: Mapping of secret name to value
        gateway_token: Gateway token (default: 32 random bytes, hex)

    Returns:
        Names of the stored secrets

    Raises:
        SecretNotFound: If a required key is missing (nothing is stored)
    """
    missing = [name for name in REQUIRED_SECRETS if not keys.get(name)]
    if missing:
        raise SecretNotFound(f"Missing required API keys: {', '.join(missing)}")

    stored = []
    for name in REQUIRED_SECRETS + OPTIONAL_SECRETS:
        if keys.get(name):
            store.store(name, keys[name])
            stored.append(name)

    store.store(GATEWAY_TOKEN, gateway_token or token_hex(32))
    stored.append(GATEWAY_TOKEN)
    return stored


def provision_encryption_keys(store: SecretStore, codec) -> bool:
    """
    Generate the backup encryption key pair and store it.

    An existing pair is never replaced. The private half is stored first,
    so the public half never exists without it.

    Args:
        store: SecretStore
        codec: AgeCodec

    Returns:
        True if a key pair is available in the store
    """
    if store.get_optional(AGE_PUBLIC_KEY_SECRET) and store.get_optional(AGE_PRIVATE_KEY_SECRET):
        logger.info("Encryption keys already provisioned")
        return True

    if not codec.keygen_available():
        logger.warning("[WARN] age-keygen not found - encryption keys will be generated on the VM")
        return False

    private_key, public_key = codec.generate_keypair()
    store.store(AGE_PRIVATE_KEY_SECRET, private_key)
    store.store(AGE_PUBLIC_KEY_SECRET, public_key)
    logger.info(f"Encryption keys stored (public key: {public_key})")
    return True


def validate_secrets(store: SecretStore) -> List[str]:
    """
    Check that the secrets a deployment needs exist.

    Returns:
        Warnings for missing optional secrets

    Raises:
        SecretNotFound: Listing every missing required secret
        SecretBackendError: If the backend cannot be reached
    """
    missing = []
    for name in REQUIRED_SECRETS:
        try:
            store.get(name)
        except SecretNotFound:
            missing.append(store.full_name(name))

    if missing:
        raise SecretNotFound(f"Missing required secrets: {', '.join(missing)}")

    warnings = []
    try:
        store.get(AGE_PUBLIC_KEY_SECRET)
    except SecretNotFound:
        warnings.append(f"{store.full_name(AGE_PUBLIC_KEY_SECRET)} not found - backups will not be encrypted")

    for message in warnings:
        logger.warning(f"[WARN] {message}")
    return warnings


def migrate_secrets(source: SecretStore, dest: SecretStore, names: Optional[Iterable[str]] = None) -> List[str]:
    """
    Copy secrets from one store to another and verify the copies.

    Args:
        source: SecretStore to read from
        dest: SecretStore to write to
        names: Logical names to copy (default: everything in the source prefix)

    Returns:
        Names that were copied

    Raises:
        SecretBackendError: If any copied secret cannot be read back unchanged
    """
    names = list(names) if names is not None else source.list()
    copied = {}

    for name in names:
        value = source.get_optional(name)
        if value is None:
            logger.warning(f"[WARN] {source.full_name(name)} not found in source, skipping")
            continue
        dest.store(name, value)
        copied[name] = value

    failed = [name for name, value in copied.items() if dest.get_optional(name) != value]
    if failed:
        raise SecretBackendError(f"Migration verification failed for: {', '.join(failed)}")

    logger.info(f"Migrated {len(copied)} secrets")
    return list(copied)


def materialize_secrets(store: SecretStore, settings, secrets_dir: Optional[str] = None) -> Path:
    """
    Write the container .env into a memory-backed directory.

    The directory is created owner-only and the file with mode 0600;
    {repo}/.env is replaced by a symlink to it, so secret values never
    land on persistent disk.

    Args:
        store: SecretStore
        settings: BackupSettings
        secrets_dir: Directory to write to (default: settings.secrets_dir, a tmpfs mount)

    Returns:
        Path of the written .env
    """
    target_dir = Path(secrets_dir or settings.secrets_dir)

    values = {
        'OPENCLAW_CONFIG_DIR': str(settings.data_path),
        'OPENCLAW_WORKSPACE_DIR': str(settings.data_path / WORKSPACE_DIR),
    }
    values.update(ENV_DEFAULTS)
    for name, variable in ENV_SECRETS.items():
        values[variable] = store.get_optional(name) or ''

    if not values['ANTHROPIC_API_KEY']:
        logger.warning(f"[WARN] {store.full_name(ANTHROPIC_API_KEY)} not found - the gateway cannot reach Anthropic")

    env_path = target_dir / ENV_FILE
    old_umask = os.umask(0o077)
    try:
        target_dir.mkdir(parents=True, exist_ok=True)
        os.chmod(target_dir, 0o700)
        fd = os.open(env_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, 'w') as f:
            for variable, value in values.items():
                f.write(f"{variable}={value}\n")
        os.chmod(env_path, 0o600)
    finally:
        os.umask(old_umask)

    link = settings.repo_path / ENV_FILE
    link.parent.mkdir(parents=True, exist_ok=True)
    if link.is_symlink() or link.exists():
        link.unlink()
    link.symlink_to(env_path)

    logger.info(f"Secrets loaded into {env_path}")
    return env_path
