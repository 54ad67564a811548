"""
Encryption utilities for the local secret vault.
Uses Fernet symmetric encryption with a key derived from a passphrase.
"""

import os
import base64
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC


class CryptoError(Exception):
    """Raised when a value cannot be decrypted (wrong passphrase, corrupt data)."""
    pass


class CryptoManager:
    """Handles encryption and decryption of secret values."""

    def __init__(self):
        self._fernet = None
        self._salt = None

    def initialize(self, passphrase: str, salt: bytes = None) -> bytes:
        """
        Initialize the encryption manager with a passphrase.

        Args:
            passphrase: Passphrase to derive the encryption key from
            salt: Optional salt (if None, generates new one)

        Returns:
            The salt used (persist it next to the encrypted values)
        """
        if not passphrase:
            raise ValueError("A passphrase is required to open the secret vault")

        if salt is None:
            salt = os.urandom(16)

        self._salt = salt

        # Derive a 32-byte key from passphrase using PBKDF2
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=480000,  # OWASP recommended iterations for 2023+
        )
        key = base64.urlsafe_b64encode(kdf.derive(passphrase.encode()))

        self._fernet = Fernet(key)
        return salt

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a string.

        Args:
            plaintext: String to encrypt

        Returns:
            Fernet token as a string

        Raises:
            RuntimeError: If crypto manager not initialized
        """
        if not self._fernet:
            raise RuntimeError("CryptoManager not initialized. Call initialize() first.")

        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, token: str) -> str:
        """
        Decrypt a string.

        Args:
            token: Fernet token produced by encrypt()

        Returns:
            Decrypted plaintext string

        Raises:
            RuntimeError: If crypto manager not initialized
            CryptoError: If decryption fails
        """
        if not self._fernet:
            raise RuntimeError("CryptoManager not initialized. Call initialize() first.")

        try:
            return self._fernet.decrypt(token.encode()).decode()
        except InvalidToken:
            raise CryptoError("Invalid token - wrong passphrase or corrupted vault")

    @property
    def salt(self) -> bytes:
        return self._salt

    @property
    def is_initialized(self) -> bool:
        """Check if the crypto manager has been initialized."""
        return self._fernet is not None
