"""
Archive encryption with age (https://github.com/FiloSottile/age).

Archives are encrypted to an X25519 recipient (the public key kept in the
secret store) and decrypted with the matching identity (the private key).
The codec drives the `age` and `age-keygen` binaries.
"""

import os
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Tuple

from .manifest import ENCRYPTED_SUFFIX, is_encrypted_name


AGE_BINARY_HEADER = b'age-encryption.org/v1'
AGE_ARMOR_HEADER = b'-----BEGIN AGE ENCRYPTED FILE-----'
GZIP_MAGIC = b'\x1f\x8b'


class EncryptionError(Exception):
    """Raised when encrypting an archive or generating keys fails."""
    pass


class DecryptionError(EncryptionError):
    """Raised when an archive cannot be decrypted (wrong key, corrupt data)."""
    pass


class AgeCodec:
    """
    Encrypts and decrypts archives with the age command-line tools.
    """

    def __init__(self, age_binary: str = 'age', keygen_binary: str = 'age-keygen', timeout: int = 3600):
        """
        Initialize the codec.

        Args:
            age_binary: Name or path of the age binary
            keygen_binary: Name or path of the age-keygen binary
            timeout: Seconds to wait for a single age invocation
        """
        self.age_binary = age_binary
        self.keygen_binary = keygen_binary
        self.timeout = timeout

    def is_available(self) -> bool:
        """Check whether the age binary is on PATH."""
        return shutil.which(self.age_binary) is not None

    def keygen_available(self) -> bool:
        """Check whether the age-keygen binary is on PATH."""
        return shutil.which(self.keygen_binary) is not None

    def encrypt(self, plaintext_path: str, recipient: str) -> str:
        """
        Encrypt a file to a recipient public key.

        Args:
            plaintext_path: File to encrypt
            recipient: age public key (age1...)

        Returns:
            Path of the encrypted file (plaintext_path + '.age')

        Raises:
            EncryptionError: If age is missing or fails
        """
        if not recipient or not recipient.strip():
            raise EncryptionError("No recipient public key provided")
        if not os.path.exists(plaintext_path):
            raise EncryptionError(f"File not found: {plaintext_path}")

        encrypted_path = f"{plaintext_path}{ENCRYPTED_SUFFIX}"
        try:
            self._run([self.age_binary, '-r', recipient.strip(), '-o', encrypted_path, plaintext_path])
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as e:
            _remove_quietly(encrypted_path)
            raise EncryptionError(f"age encryption failed: {_describe(e)}") from e

        return encrypted_path

    def decrypt(self, encrypted_path: str, private_key: str) -> str:
        """
        Decrypt a file with a private key.

        The key is written to an owner-only key file next to the ciphertext,
        used for this one invocation and removed before returning or raising.

        Args:
            encrypted_path: File to decrypt
            private_key: age identity (AGE-SECRET-KEY-1...)

        Returns:
            Path of the decrypted file (encrypted_path without '.age')

        Raises:
            DecryptionError: If the key is empty, age is missing or decryption fails
        """
        if not private_key or not private_key.strip():
            raise DecryptionError("No private key provided")
        if not os.path.exists(encrypted_path):
            raise DecryptionError(f"File not found: {encrypted_path}")

        if is_encrypted_name(encrypted_path):
            plaintext_path = encrypted_path[:-len(ENCRYPTED_SUFFIX)]
        else:
            plaintext_path = f"{encrypted_path}.decrypted"

        # mkstemp creates the file with mode 0600
        fd, key_path = tempfile.mkstemp(
            prefix='age-restore-', suffix='.key', dir=os.path.dirname(os.path.abspath(encrypted_path))
        )
        try:
            with os.fdopen(fd, 'w') as key_file:
                key_file.write(private_key.strip() + '\n')
            self._run([self.age_binary, '-d', '-i', key_path, '-o', plaintext_path, encrypted_path])
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as e:
            _remove_quietly(plaintext_path)
            raise DecryptionError(f"age decryption failed: {_describe(e)}") from e
        finally:
            _remove_quietly(key_path)

        return plaintext_path

    def generate_keypair(self) -> Tuple[str, str]:
        """
        Generate a new X25519 key pair with age-keygen.

        Returns:
            Tuple of (private_key, public_key)

        Raises:
            EncryptionError: If age-keygen is missing, fails or prints no key
        """
        try:
            result = self._run([self.keygen_binary])
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as e:
            raise EncryptionError(f"age-keygen failed: {_describe(e)}") from e

        private_key = None
        public_key = None
        for line in result.stdout.splitlines():
            line = line.strip()
            if line.startswith('# public key:'):
                public_key = line.split(':', 1)[1].strip()
            elif line.startswith('AGE-SECRET-KEY-'):
                private_key = line

        if not private_key or not public_key:
            raise EncryptionError("age-keygen output did not contain a key pair")

        return private_key, public_key

    def _run(self, args) -> subprocess.CompletedProcess:
        return subprocess.run(
            args,
            check=True,
            capture_output=True,
            text=True,
            timeout=self.timeout
        )


def sniff_encrypted(path: str) -> bool:
    """
    Check whether a file's content is an age ciphertext.

    Recognizes both the binary and the ASCII-armored format.

    Args:
        path: File to inspect

    Returns:
        True if the file starts with an age header
    """
    try:
        with open(path, 'rb') as f:
            head = f.read(64)
    except OSError:
        return False

    return head.startswith(AGE_BINARY_HEADER) or head.lstrip().startswith(AGE_ARMOR_HEADER)


def looks_like_gzip(path: str) -> bool:
    """Check whether a file starts with the gzip magic number."""
    try:
        with open(path, 'rb') as f:
            return f.read(2) == GZIP_MAGIC
    except OSError:
        return False


def _describe(error: Exception) -> str:
    if isinstance(error, subprocess.CalledProcessError):
        stderr = (error.stderr or '').strip()
        return stderr or f"exit status {error.returncode}"
    return str(error)


def _remove_quietly(path: str):
    try:
        Path(path).unlink()
    except FileNotFoundError:
        pass
