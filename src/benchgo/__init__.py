"""
benchgo - Encrypted Peer-to-Peer Text Sessions

Two peers establish a shared symmetric session without a pre-shared
secret by exchanging RSA-wrapped key halves, then exchange CAST5
encrypted text messages over that session.

Version: 0.3.0
License: MIT
"""

__version__ = "0.3.0"
__license__ = "MIT"

# Import core modules for easy access
from .config import Config
from .constants import APP_NAME, DEFAULT_PORT, PROTOCOL_VERSION, VERSION
from .errors import (
    BenchgoError,
    ConfigError,
    CryptoError,
    ErrorCode,
    HandshakeRejected,
    KeyStoreError,
    KeyUnwrapFailed,
    ProtocolViolation,
    TransportError,
    UnknownSession,
)
from .handshake import accept_inbound, establish_outbound
from .keystore import FileKeyStore, KeyStore, MemoryKeyStore, default_key_store
from .messaging import receive, send, send_message
from .server import SessionServer
from .session import (
    MemorySessionRegistry,
    Message,
    Session,
    SessionRegistry,
    default_registry,
    derive_session_identifier,
)

__all__ = [
    "APP_NAME",
    "DEFAULT_PORT",
    "PROTOCOL_VERSION",
    "VERSION",
    "BenchgoError",
    "Config",
    "ConfigError",
    "CryptoError",
    "ErrorCode",
    "FileKeyStore",
    "HandshakeRejected",
    "KeyStore",
    "KeyStoreError",
    "KeyUnwrapFailed",
    "MemoryKeyStore",
    "MemorySessionRegistry",
    "Message",
    "ProtocolViolation",
    "Session",
    "SessionRegistry",
    "SessionServer",
    "TransportError",
    "UnknownSession",
    "__license__",
    "__version__",
    "accept_inbound",
    "default_key_store",
    "default_registry",
    "derive_session_identifier",
    "establish_outbound",
    "receive",
    "send",
    "send_message",
]
