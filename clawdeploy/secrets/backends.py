"""
Secret backends.

Supports:
- GCPSecretManagerBackend: Google Cloud Secret Manager
- AWSSecretsManagerBackend: AWS Secrets Manager
- LocalSecretBackend: Passphrase-encrypted JSON vault on local disk

Every backend addresses secrets by their full name and offers
create_or_add_version, access_latest, delete and list_names.
"""

import base64
import json
import logging
import os
from pathlib import Path
from typing import List, Optional

import boto3
from botocore.exceptions import ClientError, BotoCoreError
from google.api_core import exceptions as google_exceptions
from google.auth import exceptions as google_auth_exceptions

from ..utils.crypto import CryptoManager, CryptoError


logger = logging.getLogger(__name__)


# RetryError and credential refresh or transport failures are not GoogleAPICallErrors
GCP_ERRORS = (google_exceptions.GoogleAPIError, google_auth_exceptions.GoogleAuthError)


class SecretNotFound(Exception):
    """Raised when a secret does not exist or has no usable value."""
    pass


class SecretBackendError(Exception):
    """Raised when the secret backend cannot be reached or rejects a request."""
    pass


class GCPSecretManagerBackend:
    """
    Handler for secrets in Google Cloud Secret Manager.

    Secrets are created with automatic replication and an 'app' label;
    listing is filtered by that label.
    """

    def __init__(self, project_id: str, label: str = 'openclaw', client=None):
        """
        Initialize Secret Manager backend.

        Args:
            project_id: GCP project ID
            label: Value of the 'app' label put on created secrets
            client: Optional secretmanager.SecretManagerServiceClient
        """
        if not project_id:
            raise SecretBackendError("GCP project ID is required for Secret Manager (set GCP_PROJECT_ID)")

        self.project_id = project_id
        self.label = label
        self.parent = f"projects/{project_id}"

        if client is None:
            from google.cloud import secretmanager

            try:
                client = secretmanager.SecretManagerServiceClient()
            except Exception as e:
                raise SecretBackendError(f"Failed to initialize Secret Manager client: {e}")

        self.client = client

    def create_or_add_version(self, name: str, value: str):
        """
        Store a value as the newest version of a secret.

        The secret is created on first use.

        Raises:
            SecretBackendError: If the request fails
        """
        try:
            self.client.create_secret(request={
                'parent': self.parent,
                'secret_id': name,
                'secret': {
                    'replication': {'automatic': {}},
                    'labels': {'app': self.label},
                },
            })
        except google_exceptions.AlreadyExists:
            pass
        except GCP_ERRORS as e:
            raise SecretBackendError(f"Failed to create secret {name}: {e}")

        try:
            self.client.add_secret_version(request={
                'parent': f"{self.parent}/secrets/{name}",
                'payload': {'data': value.encode('utf-8')},
            })
        except GCP_ERRORS as e:
            raise SecretBackendError(f"Failed to add version to secret {name}: {e}")

    def access_latest(self, name: str) -> str:
        """
        Read the newest version of a secret.

        Raises:
            SecretNotFound: If the secret or its versions do not exist
            SecretBackendError: If the request fails
        """
        try:
            response = self.client.access_secret_version(request={
                'name': f"{self.parent}/secrets/{name}/versions/latest"
            })
        except google_exceptions.NotFound:
            raise SecretNotFound(f"Secret not found: {name}")
        except GCP_ERRORS as e:
            raise SecretBackendError(f"Failed to access secret {name}: {e}")

        return response.payload.data.decode('utf-8')

    def delete(self, name: str):
        try:
            self.client.delete_secret(request={'name': f"{self.parent}/secrets/{name}"})
        except google_exceptions.NotFound:
            raise SecretNotFound(f"Secret not found: {name}")
        except GCP_ERRORS as e:
            raise SecretBackendError(f"Failed to delete secret {name}: {e}")

    def list_names(self) -> List[str]:
        try:
            secrets = self.client.list_secrets(request={
                'parent': self.parent,
                'filter': f"labels.app={self.label}",
            })
            return [secret.name.rsplit('/', 1)[-1] for secret in secrets]
        except GCP_ERRORS as e:
            raise SecretBackendError(f"Failed to list secrets: {e}")


class AWSSecretsManagerBackend:
    """
    Handler for secrets in AWS Secrets Manager.
    """

    def __init__(self, region: str = 'us-east-1', label: str = 'openclaw',
                 access_key: str = None, secret_key: str = None):
        """
        Initialize Secrets Manager backend.

        Args:
            region: AWS region (default: us-east-1)
            label: Value of the 'app' tag put on created secrets
            access_key: AWS access key ID (default: boto3 credential chain)
            secret_key: AWS secret access key (default: boto3 credential chain)
        """
        self.region = region
        self.label = label

        try:
            self.client = boto3.client(
                'secretsmanager',
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                region_name=region
            )
        except Exception as e:
            raise SecretBackendError(f"Failed to initialize Secrets Manager client: {e}")

    def create_or_add_version(self, name: str, value: str):
        try:
            self.client.create_secret(
                Name=name,
                SecretString=value,
                Tags=[{'Key': 'app', 'Value': self.label}]
            )
            return
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            if error_code != 'ResourceExistsException':
                raise SecretBackendError(f"Failed to create secret {name} ({error_code}): {e}")
        except BotoCoreError as e:
            raise SecretBackendError(f"Failed to create secret {name}: {e}")

        try:
            self.client.put_secret_value(SecretId=name, SecretString=value)
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise SecretBackendError(f"Failed to add version to secret {name} ({error_code}): {e}")
        except BotoCoreError as e:
            raise SecretBackendError(f"Failed to add version to secret {name}: {e}")

    def access_latest(self, name: str) -> str:
        """
        Read the current version of a secret.

        Raises:
            SecretNotFound: If the secret does not exist
            SecretBackendError: If the request fails
        """
        try:
            response = self.client.get_secret_value(SecretId=name)
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            if error_code == 'ResourceNotFoundException':
                raise SecretNotFound(f"Secret not found: {name}")
            raise SecretBackendError(f"Failed to access secret {name} ({error_code}): {e}")
        except BotoCoreError as e:
            raise SecretBackendError(f"Failed to access secret {name}: {e}")

        return response.get('SecretString', '')

    def delete(self, name: str):
        try:
            self.client.delete_secret(SecretId=name, ForceDeleteWithoutRecovery=True)
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            if error_code == 'ResourceNotFoundException':
                raise SecretNotFound(f"Secret not found: {name}")
            raise SecretBackendError(f"Failed to delete secret {name} ({error_code}): {e}")
        except BotoCoreError as e:
            raise SecretBackendError(f"Failed to delete secret {name}: {e}")

    def list_names(self) -> List[str]:
        """List the names of secrets tagged app=<label>."""
        tag = {'Key': 'app', 'Value': self.label}
        try:
            names = []
            paginator = self.client.get_paginator('list_secrets')

            for page in paginator.paginate():
                for secret in page.get('SecretList', []):
                    if tag in secret.get('Tags', []):
                        names.append(secret['Name'])

            return names

        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise SecretBackendError(f"Failed to list secrets ({error_code}): {e}")
        except BotoCoreError as e:
            raise SecretBackendError(f"Failed to list secrets: {e}")


class LocalSecretBackend:
    """
    Handler for secrets in a local JSON vault.

    Every version is Fernet-encrypted with a key derived from a passphrase.
    The vault file is written with mode 0600. Intended for development, CI
    and hosts without a managed secret store.
    """

    def __init__(self, vault_path: str, passphrase: str):
        """
        Initialize local vault backend.

        Args:
            vault_path: Path of the JSON vault file (created on first write)
            passphrase: Passphrase the vault key is derived from

        Raises:
            SecretBackendError: If the passphrase is missing or the vault is unreadable
        """
        if not passphrase:
            raise SecretBackendError("A passphrase is required for the local secret vault (set SECRETS_PASSPHRASE)")

        self.vault_path = Path(vault_path).expanduser()
        self.crypto = CryptoManager()

        vault = self._read()
        salt = base64.b64decode(vault['salt']) if vault.get('salt') else None
        self.crypto.initialize(passphrase, salt)

    def create_or_add_version(self, name: str, value: str):
        vault = self._read()
        vault.setdefault('secrets', {}).setdefault(name, []).append(self.crypto.encrypt(value))
        self._write(vault)

    def access_latest(self, name: str) -> str:
        versions = self._read().get('secrets', {}).get(name)
        if not versions:
            raise SecretNotFound(f"Secret not found: {name}")

        try:
            return self.crypto.decrypt(versions[-1])
        except CryptoError as e:
            raise SecretBackendError(f"Failed to decrypt secret {name}: {e}")

    def delete(self, name: str):
        vault = self._read()
        if name not in vault.get('secrets', {}):
            raise SecretNotFound(f"Secret not found: {name}")
        del vault['secrets'][name]
        self._write(vault)

    def list_names(self) -> List[str]:
        return sorted(self._read().get('secrets', {}))

    def _read(self) -> dict:
        if not self.vault_path.exists():
            return {}
        try:
            with open(self.vault_path, 'r') as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            raise SecretBackendError(f"Failed to read secret vault {self.vault_path}: {e}")

    def _write(self, vault: dict):
        vault['salt'] = base64.b64encode(self.crypto.salt).decode()
        try:
            self.vault_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.vault_path.with_name(f".{self.vault_path.name}.tmp")
            fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, 'w') as f:
                json.dump(vault, f, indent=2)
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.vault_path)
        except OSError as e:
            raise SecretBackendError(f"Failed to write secret vault {self.vault_path}: {e}")


def create_secret_backend(provider: str, project_id: Optional[str] = None, region: str = 'us-east-1',
                          label: str = 'openclaw', vault_path: Optional[str] = None,
                          passphrase: Optional[str] = None):
    """
    Factory function to create the secret backend.

    Args:
        provider: 'gcp', 'aws' or 'local'
        project_id: GCP project ID (gcp)
        region: AWS region (aws)
        label: Label/tag value marking secrets of this deployment
        vault_path: Vault file (local)
        passphrase: Vault passphrase (local)

    Returns:
        Backend instance

    Raises:
        ValueError: If provider is invalid
    """
    if provider == 'gcp':
        return GCPSecretManagerBackend(project_id, label=label)
    elif provider == 'aws':
        return AWSSecretsManagerBackend(region=region, label=label)
    elif provider == 'local':
        return LocalSecretBackend(vault_path, passphrase)
    else:
        raise ValueError(f"Invalid secrets provider: {provider}")
