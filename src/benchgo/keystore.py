"""
benchgo - Identity key stores.

A KeyStore holds this peer's long-term RSA keypair and exposes it to the
handshake. The keypair is generated (or loaded) lazily on first use and is
memoized for the lifetime of the store.

Two implementations are provided:
- MemoryKeyStore: key lives only in process memory
- FileKeyStore: key is persisted in a password-encrypted identity file
"""

import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional, Tuple

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from . import crypto
from .constants import (
    DEFAULT_RSA_KEY_SIZE,
    MAX_RSA_KEY_SIZE,
    MIN_RSA_KEY_SIZE,
    RECOMMENDED_RSA_KEY_SIZE,
)
from .errors import CryptoError, ErrorCode, KeyStoreError

logger = logging.getLogger(__name__)


def _check_key_size(key_size: int) -> None:
    if key_size < MIN_RSA_KEY_SIZE:
        raise KeyStoreError(
            ErrorCode.E504_KEY_SIZE_TOO_SMALL,
            f"RSA key size {key_size} is below the minimum of {MIN_RSA_KEY_SIZE} bits",
            {"key_size": key_size},
        )
    if key_size > MAX_RSA_KEY_SIZE:
        raise KeyStoreError(
            ErrorCode.E505_KEY_SIZE_TOO_LARGE,
            f"RSA key size {key_size} is above the maximum of {MAX_RSA_KEY_SIZE} bits",
            {"key_size": key_size},
        )
    if key_size < RECOMMENDED_RSA_KEY_SIZE:
        logger.warning(
            f"RSA key size {key_size} is below the recommended {RECOMMENDED_RSA_KEY_SIZE} bits"
        )


class KeyStore(ABC):
    """
    Source of this peer's long-term identity keypair.

    Subclasses only implement :meth:`_obtain_key`; generation is serialized
    and memoized here, so the first access from any thread or task wins and
    every later access returns the same key.
    """

    def __init__(self):
        self._key: Optional[rsa.RSAPrivateKey] = None
        self._lock = threading.Lock()

    @abstractmethod
    def _obtain_key(self) -> rsa.RSAPrivateKey:
        """Produce the private key on first access."""

    def private_key(self) -> rsa.RSAPrivateKey:
        """Return the private key, creating it on first use."""
        if self._key is None:
            with self._lock:
                if self._key is None:
                    self._key = self._obtain_key()
        return self._key

    def public_key(self) -> rsa.RSAPublicKey:
        """Return the long-term public key."""
        return self.private_key().public_key()

    def public_numbers(self) -> Tuple[str, int]:
        """Return (modulus as decimal string, exponent) for handshake records."""
        return crypto.public_numbers_of(self.public_key())

    def unwrap_half(self, wrapped: bytes) -> bytes:
        """Decrypt a half-key that a peer wrapped to our public key."""
        return crypto.unwrap_half_key(self.private_key(), wrapped)

    def fingerprint(self) -> str:
        """SHA-256 fingerprint of the public key."""
        return crypto.fingerprint(self.public_key())

    @property
    def is_loaded(self) -> bool:
        """Whether the keypair has already been generated or loaded."""
        return self._key is not None


class MemoryKeyStore(KeyStore):
    """Key store whose keypair is generated on demand and never leaves memory."""

    def __init__(self, key_size: int = DEFAULT_RSA_KEY_SIZE,
                 private_key: Optional[rsa.RSAPrivateKey] = None):
        super().__init__()
        _check_key_size(key_size)
        self.key_size = key_size
        self._key = private_key

    def _obtain_key(self) -> rsa.RSAPrivateKey:
        logger.info(f"Generating {self.key_size}-bit RSA identity key")
        try:
            return crypto.generate_rsa_keypair(self.key_size)
        except CryptoError as e:
            raise KeyStoreError(
                ErrorCode.E500_KEYSTORE_ERROR, f"Failed to generate identity key: {e.message}"
            ) from e


class FileKeyStore(KeyStore):
    """
    Key store persisted in a password-encrypted identity file.

    On first access the file is loaded and decrypted; if it does not exist,
    a new keypair is generated and saved. The file is JSON holding the
    Argon2id salt, AES-GCM nonce and ciphertext of the PKCS#8 DER key.
    """

    def __init__(self, path, password: str, key_size: int = DEFAULT_RSA_KEY_SIZE):
        super().__init__()
        _check_key_size(key_size)
        self.path = Path(path)
        self.key_size = key_size
        self._password = password

    def exists(self) -> bool:
        """Whether an identity file is already present."""
        return self.path.exists()

    def regenerate(self) -> rsa.RSAPrivateKey:
        """
        Generate a new keypair and replace the identity file with it.

        An existing file is only replaced once the new one is fully written.
        """
        with self._lock:
            key = self._generate()
            self._save(key)
            self._key = key
        return key

    def _obtain_key(self) -> rsa.RSAPrivateKey:
        if self.path.exists():
            return self._load()

        logger.info(f"No identity at {self.path}, generating a {self.key_size}-bit key")
        key = self._generate()
        self._save(key)
        return key

    def _generate(self) -> rsa.RSAPrivateKey:
        try:
            return crypto.generate_rsa_keypair(self.key_size)
        except CryptoError as e:
            raise KeyStoreError(
                ErrorCode.E500_KEYSTORE_ERROR, f"Failed to generate identity key: {e.message}"
            ) from e

    def _load(self) -> rsa.RSAPrivateKey:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                encrypted_data: Dict[str, str] = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise KeyStoreError(
                ErrorCode.E501_IDENTITY_LOAD_FAILED,
                f"Failed to read identity file: {e}",
                {"path": str(self.path)},
            ) from e

        try:
            der = crypto.decrypt_identity_blob(encrypted_data, self._password)
        except CryptoError as e:
            raise KeyStoreError(
                ErrorCode.E503_WRONG_PASSWORD,
                "Failed to decrypt identity. Incorrect password or corrupted file.",
                {"path": str(self.path)},
            ) from e

        try:
            key = serialization.load_der_private_key(der, password=None)
        except ValueError as e:
            raise KeyStoreError(
                ErrorCode.E501_IDENTITY_LOAD_FAILED,
                f"Identity file does not contain a valid private key: {e}",
                {"path": str(self.path)},
            ) from e

        if not isinstance(key, rsa.RSAPrivateKey):
            raise KeyStoreError(
                ErrorCode.E501_IDENTITY_LOAD_FAILED,
                "Identity file does not contain an RSA key",
                {"path": str(self.path)},
            )

        logger.info(f"Identity loaded from {self.path}")
        return key

    def _save(self, key: rsa.RSAPrivateKey) -> None:
        der = key.private_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        encrypted_data = crypto.encrypt_identity_blob(der, self._password)

        # Write atomically by writing to temp file first
        temp_file = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_file, "w", encoding="utf-8") as f:
                json.dump(encrypted_data, f, indent=2)
            os.replace(temp_file, self.path)
        except OSError as e:
            raise KeyStoreError(
                ErrorCode.E502_IDENTITY_SAVE_FAILED,
                f"Failed to save identity file: {e}",
                {"path": str(self.path)},
            ) from e

        try:
            os.chmod(self.path, 0o600)
        except OSError as e:
            logger.debug(f"Could not restrict permissions on {self.path}: {e}")

        logger.info(f"Identity saved to {self.path}")


_default_key_store: Optional[MemoryKeyStore] = None
_default_lock = threading.Lock()


def default_key_store() -> MemoryKeyStore:
    """Process-wide in-memory key store, created on first call."""
    global _default_key_store
    with _default_lock:
        if _default_key_store is None:
            _default_key_store = MemoryKeyStore()
        return _default_key_store
