"""
Object storage handlers for backup archives.

Supports:
- GCSStorage: Google Cloud Storage bucket
- S3Storage: AWS S3 bucket
- LocalStorage: Local directory with the same layout

All handlers address archives by name below the 'backups/' key prefix and
offer upload, download, exists, list_names and delete.
"""

import os
import shutil
from pathlib import Path
from typing import Optional, List

import boto3
from botocore.exceptions import ClientError, BotoCoreError
from google.api_core import exceptions as google_exceptions
from google.auth import exceptions as google_auth_exceptions

from .manifest import REMOTE_KEY_PREFIX, is_plain_name


GCS_ERRORS = (google_exceptions.GoogleAPIError, google_auth_exceptions.GoogleAuthError)


class StorageError(Exception):
    """Raised when storage operation fails."""
    pass


class ObjectNotFound(StorageError):
    """Raised when the requested archive does not exist."""
    pass


class GCSStorage:
    """
    Handler for backups in a Google Cloud Storage bucket.

    Objects are stored as gs://{bucket}/backups/{name}.
    """

    def __init__(self, bucket_name: str, project_id: Optional[str] = None,
                 key_prefix: str = REMOTE_KEY_PREFIX, client=None):
        """
        Initialize GCS storage handler.

        Args:
            bucket_name: GCS bucket name (without gs://)
            project_id: GCP project ID (optional, inferred from credentials)
            key_prefix: Object name prefix for archives
            client: Optional google.cloud.storage.Client
        """
        self.bucket_name = bucket_name
        self.key_prefix = key_prefix

        if client is None:
            from google.cloud import storage

            try:
                # Application Default Credentials
                client = storage.Client(project=project_id) if project_id else storage.Client()
            except Exception as e:
                raise StorageError(f"Failed to initialize GCS client: {e}")

        self.client = client
        self.bucket = self.client.bucket(bucket_name)

    def location(self, name: str) -> str:
        return f"gs://{self.bucket_name}/{self.key_prefix}{name}"

    def upload(self, local_path: str, name: str) -> str:
        """
        Upload an archive.

        Args:
            local_path: Path to local archive file
            name: Remote archive name

        Returns:
            Object key of the uploaded archive

        Raises:
            StorageError: If upload fails
        """
        if not os.path.exists(local_path):
            raise StorageError(f"Local file not found: {local_path}")

        key = f"{self.key_prefix}{name}"
        try:
            self.bucket.blob(key).upload_from_filename(local_path)
            return key
        except GCS_ERRORS as e:
            raise StorageError(f"GCS upload to {self.location(name)} failed: {e}")

    def download(self, name: str, local_path: str) -> str:
        """
        Download an archive.

        Raises:
            ObjectNotFound: If the archive does not exist
            StorageError: If download fails
        """
        blob = self.bucket.blob(f"{self.key_prefix}{name}")
        try:
            Path(local_path).parent.mkdir(parents=True, exist_ok=True)
            blob.download_to_filename(local_path)
            return local_path
        except google_exceptions.NotFound:
            _remove_partial(local_path)
            raise ObjectNotFound(f"Backup not found: {self.location(name)}")
        except GCS_ERRORS as e:
            _remove_partial(local_path)
            raise StorageError(f"GCS download of {self.location(name)} failed: {e}")

    def exists(self, name: str) -> bool:
        try:
            return self.bucket.blob(f"{self.key_prefix}{name}").exists()
        except GCS_ERRORS as e:
            raise StorageError(f"GCS lookup of {self.location(name)} failed: {e}")

    def list_names(self) -> List[str]:
        """
        List archive names below the key prefix.

        Raises:
            StorageError: If listing fails
        """
        try:
            blobs = self.client.list_blobs(self.bucket_name, prefix=self.key_prefix)
            return [blob.name[len(self.key_prefix):] for blob in blobs if blob.name != self.key_prefix]
        except GCS_ERRORS as e:
            raise StorageError(f"GCS list of gs://{self.bucket_name}/{self.key_prefix} failed: {e}")

    def delete(self, name: str):
        """
        Delete an archive.

        Raises:
            StorageError: If deletion fails
        """
        try:
            self.bucket.blob(f"{self.key_prefix}{name}").delete()
        except google_exceptions.NotFound:
            raise ObjectNotFound(f"Backup not found: {self.location(name)}")
        except GCS_ERRORS as e:
            raise StorageError(f"GCS delete of {self.location(name)} failed: {e}")


class S3Storage:
    """
    Handler for backups in an AWS S3 bucket.

    Objects are stored as s3://{bucket}/backups/{name}.
    """

    def __init__(self, bucket_name: str, region: str = 'us-east-1', key_prefix: str = REMOTE_KEY_PREFIX,
                 access_key: str = None, secret_key: str = None):
        """
        Initialize S3 storage handler.

        Args:
            bucket_name: S3 bucket name
            region: AWS region (default: us-east-1)
            key_prefix: Object key prefix for archives
            access_key: AWS access key ID (default: boto3 credential chain)
            secret_key: AWS secret access key (default: boto3 credential chain)
        """
        self.bucket_name = bucket_name
        self.region = region
        self.key_prefix = key_prefix

        try:
            self.s3_client = boto3.client(
                's3',
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                region_name=region
            )
        except Exception as e:
            raise StorageError(f"Failed to initialize S3 client: {e}")

    def location(self, name: str) -> str:
        return f"s3://{self.bucket_name}/{self.key_prefix}{name}"

    def upload(self, local_path: str, name: str) -> str:
        """
        Upload archive to S3.

        Args:
            local_path: Path to local archive file
            name: Remote archive name

        Returns:
            S3 key of uploaded file

        Raises:
            StorageError: If upload fails
        """
        if not os.path.exists(local_path):
            raise StorageError(f"Local file not found: {local_path}")

        s3_key = f"{self.key_prefix}{name}"

        try:
            file_size = os.path.getsize(local_path)

            # Use multipart upload for files larger than 100MB
            if file_size > 100 * 1024 * 1024:  # 100MB
                self._multipart_upload(local_path, s3_key)
            else:
                self._simple_upload(local_path, s3_key)

            return s3_key

        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"S3 upload failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"S3 upload failed: {e}")

    def _simple_upload(self, local_path: str, s3_key: str):
        with open(local_path, 'rb') as f:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=s3_key,
                Body=f
            )

    def _multipart_upload(self, local_path: str, s3_key: str):
        """
        Upload large file using multipart upload.

        Args:
            local_path: Path to local file
            s3_key: S3 object key
        """
        # 10MB chunks
        chunk_size = 10 * 1024 * 1024

        response = self.s3_client.create_multipart_upload(
            Bucket=self.bucket_name,
            Key=s3_key
        )
        upload_id = response['UploadId']

        parts = []

        try:
            with open(local_path, 'rb') as f:
                part_number = 1

                while True:
                    data = f.read(chunk_size)
                    if not data:
                        break

                    response = self.s3_client.upload_part(
                        Bucket=self.bucket_name,
                        Key=s3_key,
                        PartNumber=part_number,
                        UploadId=upload_id,
                        Body=data
                    )

                    parts.append({
                        'PartNumber': part_number,
                        'ETag': response['ETag']
                    })

                    part_number += 1

            self.s3_client.complete_multipart_upload(
                Bucket=self.bucket_name,
                Key=s3_key,
                UploadId=upload_id,
                MultipartUpload={'Parts': parts}
            )

        except Exception:
            # Abort multipart upload on error
            try:
                self.s3_client.abort_multipart_upload(
                    Bucket=self.bucket_name,
                    Key=s3_key,
                    UploadId=upload_id
                )
            except (ClientError, BotoCoreError):
                pass
            raise

    def download(self, name: str, local_path: str) -> str:
        """
        Download an archive from S3.

        Raises:
            ObjectNotFound: If the archive does not exist
            StorageError: If download fails
        """
        s3_key = f"{self.key_prefix}{name}"
        try:
            Path(local_path).parent.mkdir(parents=True, exist_ok=True)
            self.s3_client.download_file(self.bucket_name, s3_key, local_path)
            return local_path
        except ClientError as e:
            _remove_partial(local_path)
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            if error_code in ('404', 'NoSuchKey', 'NotFound'):
                raise ObjectNotFound(f"Backup not found: {self.location(name)}")
            raise StorageError(f"S3 download failed ({error_code}): {e}")
        except BotoCoreError as e:
            _remove_partial(local_path)
            raise StorageError(f"S3 download failed: {e}")

    def exists(self, name: str) -> bool:
        try:
            self.s3_client.head_object(Bucket=self.bucket_name, Key=f"{self.key_prefix}{name}")
            return True
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            if error_code in ('404', 'NoSuchKey', 'NotFound'):
                return False
            raise StorageError(f"S3 lookup failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"S3 lookup failed: {e}")

    def delete(self, name: str):
        """
        Delete an object from S3.

        Raises:
            StorageError: If deletion fails
        """
        try:
            self.s3_client.delete_object(
                Bucket=self.bucket_name,
                Key=f"{self.key_prefix}{name}"
            )
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"S3 delete failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"S3 delete failed: {e}")

    def list_names(self) -> List[str]:
        """
        List archive names below the key prefix.

        Raises:
            StorageError: If listing fails
        """
        try:
            names = []
            paginator = self.s3_client.get_paginator('list_objects_v2')

            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=self.key_prefix):
                for obj in page.get('Contents', []):
                    if obj['Key'] != self.key_prefix:
                        names.append(obj['Key'][len(self.key_prefix):])

            return names

        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"S3 list failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"S3 list failed: {e}")


class LocalStorage:
    """
    Handler for storing backups in local filesystem.

    Stores archives as {base_path}/{bucket}/backups/{name}.
    """

    def __init__(self, base_path: str, bucket_name: str = 'default', key_prefix: str = REMOTE_KEY_PREFIX):
        """
        Initialize local storage handler.

        Args:
            base_path: Base directory for local backups
            bucket_name: Sub-directory standing in for the bucket
            key_prefix: Directory prefix for archives
        """
        self.bucket_name = bucket_name
        self.key_prefix = key_prefix
        self.base_path = Path(base_path) / bucket_name / key_prefix.strip('/')

        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except Exception as e:
            raise StorageError(f"Failed to create local storage directory: {e}")

    def _path(self, name: str) -> Path:
        if not is_plain_name(name):
            raise StorageError(f"Invalid archive name: {name!r}")
        return self.base_path / name

    def location(self, name: str) -> str:
        return str(self._path(name))

    def upload(self, local_path: str, name: str) -> str:
        """
        Copy archive to local storage.

        Raises:
            StorageError: If storage fails
        """
        if not os.path.exists(local_path):
            raise StorageError(f"Source file not found: {local_path}")

        dest_path = self._path(name)
        try:
            shutil.copy2(local_path, dest_path)
            return f"{self.key_prefix}{name}"
        except PermissionError as e:
            raise StorageError(f"Permission denied writing to {dest_path}: {e}")
        except OSError as e:
            raise StorageError(f"Failed to store locally: {e}")

    def download(self, name: str, local_path: str) -> str:
        source_path = self._path(name)
        if not source_path.is_file():
            raise ObjectNotFound(f"Backup not found: {source_path}")
        try:
            Path(local_path).parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source_path, local_path)
            return local_path
        except OSError as e:
            _remove_partial(local_path)
            raise StorageError(f"Failed to read {source_path}: {e}")

    def exists(self, name: str) -> bool:
        return self._path(name).is_file()

    def delete(self, name: str):
        """
        Delete a file from local storage.

        Raises:
            StorageError: If deletion fails
        """
        full_path = self._path(name)

        try:
            if full_path.exists():
                full_path.unlink()
        except PermissionError as e:
            raise StorageError(f"Permission denied deleting {full_path}: {e}")
        except OSError as e:
            raise StorageError(f"Failed to delete local file: {e}")

    def list_names(self) -> List[str]:
        try:
            return sorted(p.name for p in self.base_path.iterdir() if p.is_file())
        except OSError as e:
            raise StorageError(f"Failed to list local files: {e}")


def create_storage(settings, bucket: str = None):
    """
    Factory function to create the object storage handler.

    Args:
        settings: BackupSettings (storage_provider selects the handler)
        bucket: Bucket name overriding settings.bucket

    Returns:
        GCSStorage, S3Storage or LocalStorage instance

    Raises:
        ValueError: If the provider is invalid or no bucket is configured
    """
    bucket = bucket or settings.bucket
    if not bucket:
        raise ValueError("No backup bucket configured (set BACKUP_BUCKET)")

    # Accept gs://bucket and s3://bucket forms
    for scheme in ('gs://', 's3://'):
        if bucket.startswith(scheme):
            bucket = bucket[len(scheme):]
    bucket = bucket.rstrip('/')

    provider = settings.storage_provider
    if provider == 'gcs':
        return GCSStorage(bucket, project_id=settings.gcp_project_id)
    elif provider == 's3':
        return S3Storage(bucket, region=settings.aws_region)
    elif provider == 'local':
        return LocalStorage(settings.local_backup_dir, bucket)
    else:
        raise ValueError(f"Invalid storage provider: {provider}")


def _remove_partial(local_path: str):
    try:
        os.remove(local_path)
    except FileNotFoundError:
        pass
