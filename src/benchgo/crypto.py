"""
benchgo - Cryptographic operations.

This module holds every primitive the session layer consumes:
- RSA keypairs (long-term identity) and public-key reconstruction from
  the decimal modulus / integer exponent carried in handshake records
- RSA-OAEP (SHA-256) wrapping and unwrapping of 8-byte half-keys
- Half-key generation from the operating system CSPRNG
- SessionCipher: CAST5 keyed with the assembled 16-byte session secret
- Public-key fingerprints for out-of-band comparison
- Argon2id + AES-256-GCM protection of identity files at rest

All cryptographic operations use well-tested, open-source libraries:
- cryptography library (Apache 2.0/BSD License)
- argon2-cffi (MIT License)
"""

import base64
import os
import secrets
from typing import Dict, Tuple

from argon2.low_level import Type, hash_secret_raw
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.decrepit.ciphers.algorithms import CAST5
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers import Cipher, CipherContext, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .constants import (
    ARGON2_HASH_LEN,
    ARGON2_MEMORY_COST,
    ARGON2_PARALLELISM,
    ARGON2_TIME_COST,
    CIPHER_BLOCK_SIZE,
    HALF_KEY_SIZE,
    IDENTITY_FILE_VERSION,
    MAX_MODULUS_DIGITS,
    NONCE_SIZE,
    RSA_PUBLIC_EXPONENT,
    SALT_SIZE,
    SESSION_KEY_SIZE,
)
from .errors import CryptoError, ErrorCode, KeyUnwrapFailed, ProtocolViolation

_OAEP = padding.OAEP(
    mgf=padding.MGF1(algorithm=hashes.SHA256()),
    algorithm=hashes.SHA256(),
    label=None,
)


def generate_rsa_keypair(key_size: int) -> rsa.RSAPrivateKey:
    """Generate a fresh RSA private key of ``key_size`` bits."""
    try:
        return rsa.generate_private_key(public_exponent=RSA_PUBLIC_EXPONENT, key_size=key_size)
    except ValueError as e:
        raise CryptoError(
            ErrorCode.E104_KEY_GENERATION_FAILED,
            f"RSA key generation failed: {e}",
            {"key_size": key_size},
        ) from e


def public_numbers_of(public_key: rsa.RSAPublicKey) -> Tuple[str, int]:
    """
    Split a public key into its wire form.

    Returns:
        (modulus as a decimal string, public exponent)
    """
    numbers = public_key.public_numbers()
    return str(numbers.n), numbers.e


def public_key_from_numbers(modulus: str, exponent: int) -> rsa.RSAPublicKey:
    """
    Rebuild a peer's public key from the decimal modulus and exponent.

    The key is taken as presented; nothing here authenticates it.

    Raises:
        ProtocolViolation: If the numbers do not form a usable RSA key
    """
    if not isinstance(modulus, str) or not modulus.isdigit():
        raise ProtocolViolation(
            ErrorCode.E305_INVALID_PUBLIC_KEY,
            "Public modulus is not a decimal integer string",
        )
    if len(modulus) > MAX_MODULUS_DIGITS:
        raise ProtocolViolation(
            ErrorCode.E305_INVALID_PUBLIC_KEY,
            f"Public modulus is longer than {MAX_MODULUS_DIGITS} digits",
            {"modulus_digits": len(modulus)},
        )
    if isinstance(exponent, bool) or not isinstance(exponent, int):
        raise ProtocolViolation(
            ErrorCode.E305_INVALID_PUBLIC_KEY,
            "Public exponent is not an integer",
        )

    try:
        return rsa.RSAPublicNumbers(exponent, int(modulus)).public_key()
    except ValueError as e:
        raise ProtocolViolation(
            ErrorCode.E305_INVALID_PUBLIC_KEY,
            f"Invalid RSA public key: {e}",
            {"modulus_digits": len(modulus), "exponent": exponent},
        ) from e


def generate_half_key() -> bytes:
    """Generate one peer's 8-byte contribution to the session secret."""
    return secrets.token_bytes(HALF_KEY_SIZE)


def wrap_half_key(public_key: rsa.RSAPublicKey, half_key: bytes) -> bytes:
    """Encrypt a half-key to the peer's public key with RSA-OAEP (SHA-256)."""
    try:
        return public_key.encrypt(half_key, _OAEP)
    except ValueError as e:
        raise CryptoError(
            ErrorCode.E101_ENCRYPTION_FAILED,
            f"Failed to wrap half-key: {e}",
        ) from e


def unwrap_half_key(private_key: rsa.RSAPrivateKey, wrapped: bytes) -> bytes:
    """
    Decrypt a half-key wrapped to our public key.

    Raises:
        KeyUnwrapFailed: If decryption fails or the result is not 8 bytes
    """
    try:
        half_key = private_key.decrypt(wrapped, _OAEP)
    except (ValueError, TypeError) as e:
        raise KeyUnwrapFailed(message=f"Failed to unwrap half-key: {e}") from e

    if len(half_key) != HALF_KEY_SIZE:
        raise KeyUnwrapFailed(
            message=f"Unwrapped half-key has {len(half_key)} bytes, expected {HALF_KEY_SIZE}",
            details={"length": len(half_key)},
        )
    return half_key


class SessionCipher:
    """
    CAST5 block cipher keyed with the 16-byte session secret.

    The key is immutable. Each call to :meth:`encryptor` / :meth:`decryptor`
    returns an independent cipher context, so concurrent encryptions and
    decryptions on distinct buffers never share state.
    """

    block_size = CIPHER_BLOCK_SIZE

    def __init__(self, key: bytes):
        if len(key) != SESSION_KEY_SIZE:
            raise CryptoError(
                ErrorCode.E103_INVALID_KEY,
                f"Session key must be {SESSION_KEY_SIZE} bytes, got {len(key)}",
            )
        self._key = bytes(key)

    @classmethod
    def from_halves(cls, first: bytes, second: bytes) -> "SessionCipher":
        """Assemble the secret as ``first + second`` and key the cipher with it."""
        return cls(first + second)

    @property
    def secret(self) -> bytes:
        """The raw 16-byte session secret."""
        return self._key

    def _cipher(self) -> Cipher:
        # Each block is enciphered on its own, with no chaining between blocks
        return Cipher(CAST5(self._key), modes.ECB())

    def encryptor(self) -> CipherContext:
        """Fresh single-use encryption context."""
        return self._cipher().encryptor()

    def decryptor(self) -> CipherContext:
        """Fresh single-use decryption context."""
        return self._cipher().decryptor()

    def __repr__(self) -> str:
        return f"SessionCipher(algorithm=CAST5, block_size={self.block_size})"


def fingerprint(public_key: rsa.RSAPublicKey) -> str:
    """
    SHA-256 fingerprint of a public key (DER SubjectPublicKeyInfo).

    The handshake never checks it; it is only shown so that users can
    compare keys through a trusted channel.

    Returns a 64-character hexadecimal fingerprint.
    """
    der = public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    digest = hashes.Hash(hashes.SHA256())
    digest.update(der)
    return digest.finalize().hex()


def derive_storage_key(password: str, salt: bytes) -> bytes:
    """
    Derive the identity-file key from a password using Argon2id.

    Parameters:
        - Time cost: 3 iterations
        - Memory cost: 65536 KB (64 MB)
        - Parallelism: 1 thread
        - Output: 32 bytes (256 bits)
    """
    return hash_secret_raw(
        secret=password.encode("utf-8"),
        salt=salt,
        time_cost=ARGON2_TIME_COST,
        memory_cost=ARGON2_MEMORY_COST,
        parallelism=ARGON2_PARALLELISM,
        hash_len=ARGON2_HASH_LEN,
        type=Type.ID,
    )


def encrypt_identity_blob(data: bytes, password: str) -> Dict[str, str]:
    """
    Encrypt identity key material with a password using AES-256-GCM.

    Uses a unique 16-byte salt per file and a unique 12-byte nonce per
    encryption; the key comes from :func:`derive_storage_key`.
    """
    salt = os.urandom(SALT_SIZE)
    key = derive_storage_key(password, salt)

    nonce = os.urandom(NONCE_SIZE)
    ciphertext = AESGCM(key).encrypt(nonce, data, None)

    return {
        "salt": base64.b64encode(salt).decode("utf-8"),
        "nonce": base64.b64encode(nonce).decode("utf-8"),
        "ciphertext": base64.b64encode(ciphertext).decode("utf-8"),
        "version": IDENTITY_FILE_VERSION,
    }


def decrypt_identity_blob(encrypted_data: Dict[str, str], password: str) -> bytes:
    """
    Decrypt identity key material with a password.

    Raises CryptoError if:
    - Password is incorrect
    - File is corrupted
    - Authentication tag verification fails
    """
    try:
        salt = base64.b64decode(encrypted_data["salt"])
        nonce = base64.b64decode(encrypted_data["nonce"])
        ciphertext = base64.b64decode(encrypted_data["ciphertext"])
    except (KeyError, TypeError, ValueError) as e:
        raise CryptoError(
            ErrorCode.E102_DECRYPTION_FAILED,
            f"Identity file is malformed: {e}",
        ) from e

    key = derive_storage_key(password, salt)
    try:
        return AESGCM(key).decrypt(nonce, ciphertext, None)
    except (InvalidTag, ValueError) as e:
        raise CryptoError(
            ErrorCode.E102_DECRYPTION_FAILED,
            "Failed to decrypt identity. Incorrect password or corrupted file.",
        ) from e
