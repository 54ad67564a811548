"""
Secret lifecycle for clawdeploy.

- SecretStore: namespaced store/get/delete/list over a backend
- Backends: GCP Secret Manager, AWS Secrets Manager, local vault
- Provisioning: API keys, encryption keys, validation, migration and
  materialization of the container .env
"""

from .store import SecretStore, SecretNotFound, SecretBackendError
from .backends import (
    GCPSecretManagerBackend,
    AWSSecretsManagerBackend,
    LocalSecretBackend,
    create_secret_backend,
)
from .provisioning import (
    store_api_keys,
    provision_encryption_keys,
    validate_secrets,
    migrate_secrets,
    materialize_secrets,
)


def create_secret_store(settings, provider: str = None) -> SecretStore:
    """
    Build the SecretStore described by settings.

    Args:
        settings: BackupSettings
        provider: Provider overriding settings.secrets_provider

    Returns:
        SecretStore
    """
    backend = create_secret_backend(
        provider or settings.secrets_provider,
        project_id=settings.gcp_project_id,
        region=settings.aws_region,
        label=settings.secrets_label,
        vault_path=settings.local_secrets_file,
        passphrase=settings.secrets_passphrase
    )
    return SecretStore(backend, settings.secrets_prefix)


__all__ = [
    'SecretStore',
    'SecretNotFound',
    'SecretBackendError',
    'GCPSecretManagerBackend',
    'AWSSecretsManagerBackend',
    'LocalSecretBackend',
    'create_secret_backend',
    'create_secret_store',
    'store_api_keys',
    'provision_encryption_keys',
    'validate_secrets',
    'migrate_secrets',
    'materialize_secrets',
]
