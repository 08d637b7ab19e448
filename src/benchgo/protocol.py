"""
benchgo - Wire protocol definitions.

Every unit on the wire is one msgpack map (a tagged record). Two record
kinds exist:

Handshake record (HandshakeMessage):
- v: protocol version string
- t: record type, "NEW SESSION" or "OKAY"
- m: RSA public modulus as a decimal string (optional)
- e: RSA public exponent (optional)
- k: RSA-OAEP wrapped half-key (optional)

Message record (WireMessage):
- sid: session identifier as an unsigned 64-bit integer
- c: ciphertext bytes

Fields that are not populated are left out of the map. Message
timestamps are local and never serialized.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

import msgpack

from .constants import (
    CONNECT_TIMEOUT,
    MAX_RECORD_SIZE,
    NEW_SESSION_MSG,
    OKAY_SESSION_MSG,
    PROTOCOL_VERSION,
    READ_CHUNK_SIZE,
)
from .errors import ErrorCode, ProtocolViolation, TransportError
from .utils import host_of

logger = logging.getLogger(__name__)


class HandshakeType(str, Enum):
    """Handshake record types."""

    NEW_SESSION = NEW_SESSION_MSG
    OKAY = OKAY_SESSION_MSG


def _malformed(message: str, **details) -> ProtocolViolation:
    return ProtocolViolation(ErrorCode.E301_MALFORMED_RECORD, message, details or None)


def encode_record(record: Dict[str, Any]) -> bytes:
    """Serialize one tagged record."""
    try:
        return msgpack.packb(record, use_bin_type=True)
    except (TypeError, ValueError, OverflowError) as e:
        raise _malformed(f"Record cannot be encoded: {e}") from e


def decode_record(data: bytes) -> Dict[str, Any]:
    """Deserialize exactly one tagged record from ``data``."""
    try:
        record = msgpack.unpackb(data, raw=False)
    except (msgpack.exceptions.UnpackException, ValueError) as e:
        raise _malformed(f"Record cannot be decoded: {e}") from e
    if not isinstance(record, dict):
        raise _malformed(f"Expected a map record, got {type(record).__name__}")
    return record


@dataclass(frozen=True)
class HandshakeMessage:
    """One step of the session-establishment dialogue."""

    msg_type: str
    version: str = PROTOCOL_VERSION
    modulus: Optional[str] = None
    exponent: Optional[int] = None
    half_key: Optional[bytes] = None

    @classmethod
    def new_session(cls, modulus: str, exponent: int) -> "HandshakeMessage":
        """Opening request carrying the initiator's public key and no half-key."""
        return cls(msg_type=HandshakeType.NEW_SESSION.value, modulus=modulus, exponent=exponent)

    @classmethod
    def okay(cls, half_key: bytes, modulus: Optional[str] = None,
             exponent: Optional[int] = None) -> "HandshakeMessage":
        """Acceptance carrying a wrapped half-key, plus the public key on the response leg."""
        return cls(
            msg_type=HandshakeType.OKAY.value,
            modulus=modulus,
            exponent=exponent,
            half_key=half_key,
        )

    @property
    def has_public_key(self) -> bool:
        return self.modulus is not None and self.exponent is not None

    def to_record(self) -> Dict[str, Any]:
        record: Dict[str, Any] = {"v": self.version, "t": self.msg_type}
        if self.modulus is not None:
            record["m"] = self.modulus
        if self.exponent is not None:
            record["e"] = self.exponent
        if self.half_key is not None:
            record["k"] = self.half_key
        return record

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "HandshakeMessage":
        """
        Validate field types and build a HandshakeMessage.

        Only the shape is checked here; whether the fields required by a
        given step are present is up to the handshake.

        Raises:
            ProtocolViolation: If the record is not a well-formed handshake record
        """
        version = record.get("v")
        msg_type = record.get("t")
        if not isinstance(version, str):
            raise _malformed("Handshake record has no version string", record_keys=sorted(record))
        if not isinstance(msg_type, str):
            raise _malformed("Handshake record has no type string", record_keys=sorted(record))

        modulus = record.get("m")
        if modulus is not None and not isinstance(modulus, str):
            raise _malformed("Handshake modulus must be a string")
        exponent = record.get("e")
        if exponent is not None and (isinstance(exponent, bool) or not isinstance(exponent, int)):
            raise _malformed("Handshake exponent must be an integer")
        half_key = record.get("k")
        if half_key is not None and not isinstance(half_key, bytes):
            raise _malformed("Handshake half-key must be binary")

        # Empty modulus and zero exponent count as absent
        return cls(
            msg_type=msg_type,
            version=version,
            modulus=modulus or None,
            exponent=exponent or None,
            half_key=half_key,
        )

    def encode(self) -> bytes:
        return encode_record(self.to_record())

    def __repr__(self) -> str:
        return (
            f"HandshakeMessage(type={self.msg_type!r}, version={self.version!r}, "
            f"public_key={self.has_public_key}, half_key={self.half_key is not None})"
        )


@dataclass(frozen=True)
class WireMessage:
    """The transmitted form of a message: session identifier and ciphertext."""

    sid: int
    ciphertext: bytes

    def to_record(self) -> Dict[str, Any]:
        return {"sid": self.sid, "c": self.ciphertext}

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "WireMessage":
        """
        Raises:
            ProtocolViolation: If ``sid`` or ``c`` is missing or of the wrong type
        """
        sid = record.get("sid")
        ciphertext = record.get("c")
        if isinstance(sid, bool) or not isinstance(sid, int) or not 0 <= sid < 2 ** 64:
            raise ProtocolViolation(
                ErrorCode.E302_MISSING_FIELD, "Message record has no valid session identifier"
            )
        if not isinstance(ciphertext, bytes):
            raise ProtocolViolation(
                ErrorCode.E302_MISSING_FIELD, "Message record has no ciphertext"
            )
        return cls(sid=sid, ciphertext=ciphertext)

    def encode(self) -> bytes:
        return encode_record(self.to_record())


def is_handshake_record(record: Dict[str, Any]) -> bool:
    """Whether a decoded record opens a handshake rather than carrying a message."""
    return "t" in record


class RecordStream:
    """
    A bidirectional byte stream read and written one tagged record at a time.

    Wraps an asyncio (reader, writer) pair. Bytes beyond the current record
    stay buffered for the next read. A record can be peeked at without
    consuming it, so a dispatcher can look at the first record before
    handing the stream over.
    """

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self.reader = reader
        self.writer = writer
        self._unpacker = msgpack.Unpacker(raw=False, max_buffer_size=MAX_RECORD_SIZE)
        self._peeked: Optional[Dict[str, Any]] = None
        self._closed = False

    @classmethod
    async def open(cls, host: str, port: int, timeout: float = CONNECT_TIMEOUT) -> "RecordStream":
        """
        Connect to ``host:port``.

        Raises:
            TransportError: If the connection cannot be made within ``timeout``
        """
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port), timeout=timeout
            )
        except asyncio.TimeoutError as e:
            raise TransportError(
                ErrorCode.E202_CONNECTION_TIMEOUT,
                f"Connection to {host}:{port} timed out after {timeout}s",
                {"host": host, "port": port},
            ) from e
        except OSError as e:
            raise TransportError(
                ErrorCode.E201_CONNECTION_FAILED,
                f"Connection to {host}:{port} failed: {e}",
                {"host": host, "port": port},
            ) from e

        logger.debug(f"Connected to {host}:{port}")
        return cls(reader, writer)

    @property
    def local_host(self) -> str:
        """Host part of the local socket address."""
        return host_of(self.writer.get_extra_info("sockname"))

    @property
    def peer_host(self) -> str:
        """Host part of the remote socket address."""
        return host_of(self.writer.get_extra_info("peername"))

    def _buffered_record(self) -> Optional[Dict[str, Any]]:
        try:
            record = self._unpacker.unpack()
        except msgpack.exceptions.OutOfData:
            return None
        except (msgpack.exceptions.UnpackException, ValueError) as e:
            raise _malformed(f"Record cannot be decoded: {e}") from e

        if not isinstance(record, dict):
            raise _malformed(f"Expected a map record, got {type(record).__name__}")
        return record

    async def _read_record(self) -> Dict[str, Any]:
        while True:
            record = self._buffered_record()
            if record is not None:
                return record

            try:
                chunk = await self.reader.read(READ_CHUNK_SIZE)
            except OSError as e:
                raise TransportError(
                    ErrorCode.E205_RECEIVE_FAILED, f"Read failed: {e}"
                ) from e
            if not chunk:
                raise TransportError(
                    ErrorCode.E203_CONNECTION_CLOSED, "Connection closed before a full record arrived"
                )

            try:
                self._unpacker.feed(chunk)
            except msgpack.exceptions.BufferFull as e:
                raise ProtocolViolation(
                    ErrorCode.E303_RECORD_TOO_LARGE,
                    f"Record exceeds {MAX_RECORD_SIZE} bytes",
                ) from e

    async def read_record(self, timeout: Optional[float] = None) -> Dict[str, Any]:
        """
        Read the next record.

        Raises:
            TransportError: On EOF, read failure or timeout
            ProtocolViolation: If the bytes are not a well-formed record
        """
        if self._peeked is not None:
            record, self._peeked = self._peeked, None
            return record

        try:
            return await asyncio.wait_for(self._read_record(), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise TransportError(
                ErrorCode.E202_CONNECTION_TIMEOUT, f"No record received within {timeout}s"
            ) from e

    async def peek_record(self, timeout: Optional[float] = None) -> Dict[str, Any]:
        """Read the next record without consuming it."""
        if self._peeked is None:
            self._peeked = await self.read_record(timeout=timeout)
        return self._peeked

    async def write_record(self, record: Dict[str, Any]) -> None:
        """
        Encode and send one record, waiting until it is flushed.

        Raises:
            TransportError: If the write fails
        """
        data = encode_record(record)
        try:
            self.writer.write(data)
            await self.writer.drain()
        except (OSError, RuntimeError) as e:
            raise TransportError(ErrorCode.E204_SEND_FAILED, f"Write failed: {e}") from e

    async def close(self) -> None:
        """Close the stream; safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except OSError as e:
            logger.debug(f"Error while closing stream: {e}")

    async def __aenter__(self) -> "RecordStream":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
