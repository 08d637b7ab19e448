"""
benchgo - Custom Exception Classes and Error Codes

This module defines all custom exceptions and error codes used throughout
benchgo. Each error has a unique code for logging and debugging.

Every failure in the core is raised to the immediate caller; nothing in
the core retries.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Enumeration of all benchgo error codes."""

    # Crypto Errors (E100-E199)
    E100_CRYPTO_ERROR = "E100"
    E101_ENCRYPTION_FAILED = "E101"
    E102_DECRYPTION_FAILED = "E102"
    E103_INVALID_KEY = "E103"
    E104_KEY_GENERATION_FAILED = "E104"
    E105_KEY_UNWRAP_FAILED = "E105"

    # Transport Errors (E200-E299)
    E200_TRANSPORT_ERROR = "E200"
    E201_CONNECTION_FAILED = "E201"
    E202_CONNECTION_TIMEOUT = "E202"
    E203_CONNECTION_CLOSED = "E203"
    E204_SEND_FAILED = "E204"
    E205_RECEIVE_FAILED = "E205"

    # Protocol Errors (E300-E399)
    E300_PROTOCOL_VIOLATION = "E300"
    E301_MALFORMED_RECORD = "E301"
    E302_MISSING_FIELD = "E302"
    E303_RECORD_TOO_LARGE = "E303"
    E304_HANDSHAKE_REJECTED = "E304"
    E305_INVALID_PUBLIC_KEY = "E305"
    E306_INVALID_CIPHERTEXT = "E306"

    # Session Errors (E400-E499)
    E401_UNKNOWN_SESSION = "E401"

    # Key Store Errors (E500-E599)
    E500_KEYSTORE_ERROR = "E500"
    E501_IDENTITY_LOAD_FAILED = "E501"
    E502_IDENTITY_SAVE_FAILED = "E502"
    E503_WRONG_PASSWORD = "E503"
    E504_KEY_SIZE_TOO_SMALL = "E504"
    E505_KEY_SIZE_TOO_LARGE = "E505"

    # Config Errors (E700-E799)
    E700_CONFIG_ERROR = "E700"
    E702_CONFIG_SAVE_FAILED = "E702"
    E704_CONFIG_PARSE_ERROR = "E704"


class BenchgoError(Exception):
    """Base exception class for all benchgo errors.

    Attributes:
        code: Error code from ErrorCode enum
        message: Human-readable error message
        details: Additional error details (optional)
    """

    def __init__(self, code: ErrorCode, message: str, details: Optional[Dict[str, Any]] = None):
        """Initialize a benchgo error.

        Args:
            code: Error code from ErrorCode enum
            message: Human-readable error message
            details: Additional error context (optional)
        """
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(f"[{code.value}] {message}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for serialization.

        Returns:
            Dictionary containing error information
        """
        return {"code": self.code.value, "message": self.message, "details": self.details}


class CryptoError(BenchgoError):
    """Exception raised for cryptographic operation failures."""

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E100_CRYPTO_ERROR,
        message: str = "Cryptographic operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class KeyUnwrapFailed(CryptoError):
    """Asymmetric decryption of a peer's half-key failed.

    Always fatal to the handshake in progress.
    """

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E105_KEY_UNWRAP_FAILED,
        message: str = "Failed to unwrap half-key",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class TransportError(BenchgoError):
    """Exception raised when opening, reading or writing a stream fails.

    Always fatal to the current operation and never retried internally.
    """

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E200_TRANSPORT_ERROR,
        message: str = "Transport operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class ProtocolViolation(BenchgoError):
    """Exception raised for malformed or incomplete wire records."""

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E300_PROTOCOL_VIOLATION,
        message: str = "Protocol violation",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class HandshakeRejected(BenchgoError):
    """The peer replied with an unexpected record type or left out a required field.

    Surfaced to the caller as a declined-session condition.
    """

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E304_HANDSHAKE_REJECTED,
        message: str = "Remote peer declined session request",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class UnknownSession(BenchgoError):
    """An incoming message names a session identifier that is not registered."""

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E401_UNKNOWN_SESSION,
        message: str = "Unknown session",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class KeyStoreError(BenchgoError):
    """Exception raised for identity key loading, saving and generation failures."""

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E500_KEYSTORE_ERROR,
        message: str = "Key store operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class ConfigError(BenchgoError):
    """Exception raised for configuration failures.

    This includes loading, parsing, and validating configuration files.
    """

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E700_CONFIG_ERROR,
        message: str = "Configuration operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)
