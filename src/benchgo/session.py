"""
benchgo - Sessions, messages and the session registry.

A Session is created only by a completed handshake and bundles the
session identifier, the keyed SessionCipher, the peer address and an
append-only message history.

Session identifiers are derived, never negotiated: both peers hash the
connecting peer's address followed by the accepting peer's address, so
the two ends agree without exchanging the value.
"""

import hashlib
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from .constants import DEFAULT_PORT, SESSION_ID_SIZE
from .crypto import SessionCipher

logger = logging.getLogger(__name__)


def derive_session_identifier(connecting_address: str, accepting_address: str) -> bytes:
    """
    Derive the 8-byte session identifier for a pair of endpoints.

    The identifier is the first 8 bytes of SHA-256 over the two host
    strings concatenated, connecting peer first. The function is order
    sensitive: the initiator calls it as (local, remote) and the responder
    as (remote, local), which is the same ordered pair.

    Args:
        connecting_address: Host of the peer that opened the connection
        accepting_address: Host of the peer that accepted it

    Returns:
        8-byte identifier
    """
    digest = hashlib.sha256((connecting_address + accepting_address).encode("utf-8")).digest()
    return digest[:SESSION_ID_SIZE]


def identifier_to_int(identifier: bytes) -> int:
    """Wire form of a session identifier (unsigned 64-bit, big-endian)."""
    return int.from_bytes(identifier, "big")


def identifier_from_int(value: int) -> bytes:
    """Inverse of :func:`identifier_to_int`."""
    return value.to_bytes(SESSION_ID_SIZE, "big")


@dataclass(frozen=True)
class Message:
    """
    One sent or received message as kept in a session's history.

    The timestamp is the local wall clock at the time of the event and is
    never transmitted.
    """

    session_id: bytes
    content: str
    outgoing: bool
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class Session:
    """Represents an established session with one peer.

    Attributes:
        identifier: 8-byte session identifier
        cipher: SessionCipher keyed with the 16-byte shared secret
        peer_address: Host of the remote participant (no port)
        peer_port: Port on which the peer accepts message streams
        created_at: UTC timestamp of session establishment
    """

    def __init__(self, identifier: bytes, cipher: SessionCipher, peer_address: str,
                 peer_port: int = DEFAULT_PORT):
        if len(identifier) != SESSION_ID_SIZE:
            raise ValueError(f"Session identifier must be {SESSION_ID_SIZE} bytes")
        self.identifier = identifier
        self.cipher = cipher
        self.peer_address = peer_address
        self.peer_port = peer_port
        self.created_at = datetime.now(timezone.utc)
        self._history: List[Message] = []
        self._history_lock = threading.Lock()

    @property
    def sid(self) -> int:
        """Identifier in its wire form."""
        return identifier_to_int(self.identifier)

    @property
    def history(self) -> List[Message]:
        """Snapshot of the message history, oldest first."""
        with self._history_lock:
            return list(self._history)

    def append(self, message: Message) -> None:
        """Append a message to the history; history is never rewritten."""
        with self._history_lock:
            self._history.append(message)

    def __len__(self) -> int:
        with self._history_lock:
            return len(self._history)

    def __repr__(self) -> str:
        return (
            f"Session(id={self.identifier.hex()}, peer={self.peer_address}:{self.peer_port}, "
            f"messages={len(self)})"
        )


class SessionRegistry(ABC):
    """Mapping from session identifier to live Session.

    Insertion and lookup only; there is no eviction.
    """

    @abstractmethod
    def add(self, session: Session) -> None:
        """Insert a session, replacing any existing entry with the same identifier."""

    @abstractmethod
    def by_identifier(self, identifier: bytes) -> Optional[Session]:
        """Return the session registered under ``identifier`` or None."""

    @abstractmethod
    def sessions(self) -> List[Session]:
        """Snapshot of all registered sessions."""

    def __contains__(self, identifier: bytes) -> bool:
        return self.by_identifier(identifier) is not None

    def __len__(self) -> int:
        return len(self.sessions())


class MemorySessionRegistry(SessionRegistry):
    """In-memory registry; one lock guards the whole mapping."""

    def __init__(self):
        self._sessions: Dict[bytes, Session] = {}
        self._lock = threading.Lock()

    def add(self, session: Session) -> None:
        with self._lock:
            if session.identifier in self._sessions:
                logger.debug(f"Replacing session {session.identifier.hex()}")
            self._sessions[session.identifier] = session

    def by_identifier(self, identifier: bytes) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(identifier)

    def sessions(self) -> List[Session]:
        with self._lock:
            return list(self._sessions.values())


_default_registry: Optional[MemorySessionRegistry] = None
_default_lock = threading.Lock()


def default_registry() -> MemorySessionRegistry:
    """Process-wide in-memory registry, created on first call."""
    global _default_registry
    with _default_lock:
        if _default_registry is None:
            _default_registry = MemorySessionRegistry()
        return _default_registry
