"""
benchgo - Session establishment handshake.

Two peers agree on a 16-byte session secret without a pre-shared key.
Each side contributes an 8-byte half, wrapped with RSA-OAEP to the other
side's public key:

    initiator                                responder
    NEW SESSION {v, t, m, e}        ---->
                                    <----    OKAY {v, t, m, e, k}
    OKAY {v, t, k}                  ---->

The responder's half becomes secret[0:8] and the initiator's half
secret[8:16]. Both sides derive the session identifier locally from the
connecting and accepting hosts.

Public keys are taken as presented. Nothing here authenticates the peer;
the peer's fingerprint is logged so an operator can compare it out of band.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Dict, FrozenSet, List, Optional

from . import crypto
from .constants import CONNECT_TIMEOUT, DEFAULT_PORT, HANDSHAKE_TIMEOUT, PROTOCOL_VERSION
from .crypto import SessionCipher
from .errors import ErrorCode, HandshakeRejected, ProtocolViolation
from .keystore import KeyStore
from .protocol import HandshakeMessage, HandshakeType, RecordStream
from .session import Session, SessionRegistry, derive_session_identifier

logger = logging.getLogger(__name__)


class HandshakeRole(Enum):
    """Side of the handshake a peer plays."""

    INITIATOR = auto()  # Opened the connection
    RESPONDER = auto()  # Accepted the connection


class HandshakeState(Enum):
    """Handshake states for both roles."""

    START = auto()
    # Initiator
    SENT_REQUEST = auto()  # NEW SESSION written
    AWAIT_RESPONSE = auto()  # Waiting for the responder's OKAY
    HALF_RECEIVED = auto()  # Responder half unwrapped
    SENT_REPLY = auto()  # Final OKAY written
    # Responder
    AWAIT_REQUEST = auto()  # Waiting for NEW SESSION
    SENT_RESPONSE = auto()  # OKAY with our key and half written
    AWAIT_FINAL = auto()  # Waiting for the initiator's half
    # Terminal
    ESTABLISHED = auto()
    ABORTED = auto()


@dataclass
class StateTransition:
    """Represents a handshake state transition."""

    from_state: HandshakeState
    to_state: HandshakeState
    timestamp: float = field(default_factory=time.time)


def _path(*states: HandshakeState) -> Dict[HandshakeState, FrozenSet[HandshakeState]]:
    """Linear state path where every non-terminal step may also abort."""
    table = {}
    for current, following in zip(states, states[1:]):
        table[current] = frozenset({following, HandshakeState.ABORTED})
    return table


class HandshakeProtocol:
    """
    State machine for one handshake attempt.

    Enforces the order of steps for its role and records every transition.
    ESTABLISHED and ABORTED are terminal. Requesting a transition the table
    does not allow is a programming error and raises RuntimeError.
    """

    TRANSITIONS: Dict[HandshakeRole, Dict[HandshakeState, FrozenSet[HandshakeState]]] = {
        HandshakeRole.INITIATOR: _path(
            HandshakeState.START,
            HandshakeState.SENT_REQUEST,
            HandshakeState.AWAIT_RESPONSE,
            HandshakeState.HALF_RECEIVED,
            HandshakeState.SENT_REPLY,
            HandshakeState.ESTABLISHED,
        ),
        HandshakeRole.RESPONDER: _path(
            HandshakeState.START,
            HandshakeState.AWAIT_REQUEST,
            HandshakeState.SENT_RESPONSE,
            HandshakeState.AWAIT_FINAL,
            HandshakeState.ESTABLISHED,
        ),
    }

    TERMINAL_STATES = frozenset({HandshakeState.ESTABLISHED, HandshakeState.ABORTED})

    def __init__(self, role: HandshakeRole):
        self.role = role
        self.state = HandshakeState.START
        self.transition_history: List[StateTransition] = []
        self.error_message: Optional[str] = None

    def can_transition(self, new_state: HandshakeState) -> bool:
        """Check whether ``new_state`` may follow the current state."""
        return new_state in self.TRANSITIONS[self.role].get(self.state, frozenset())

    def advance(self, new_state: HandshakeState) -> None:
        """
        Move to ``new_state``.

        Raises:
            RuntimeError: If the transition is not allowed for this role
        """
        if not self.can_transition(new_state):
            raise RuntimeError(
                f"Invalid {self.role.name.lower()} handshake transition: "
                f"{self.state.name} -> {new_state.name}"
            )

        old_state = self.state
        self.state = new_state
        self.transition_history.append(StateTransition(old_state, new_state))
        logger.debug(
            f"Handshake ({self.role.name.lower()}): {old_state.name} -> {new_state.name}"
        )

    def abort(self, reason: str) -> None:
        """Move to ABORTED unless the handshake already finished."""
        if self.is_terminal:
            return
        self.error_message = reason
        self.advance(HandshakeState.ABORTED)

    @property
    def is_terminal(self) -> bool:
        return self.state in self.TERMINAL_STATES

    @property
    def is_established(self) -> bool:
        return self.state == HandshakeState.ESTABLISHED

    def __repr__(self) -> str:
        return f"HandshakeProtocol(role={self.role.name}, state={self.state.name})"


def _check_version(message: HandshakeMessage, peer: str) -> None:
    if message.version != PROTOCOL_VERSION:
        logger.warning(
            f"Peer {peer} speaks protocol {message.version!r}, we speak {PROTOCOL_VERSION!r}"
        )


async def _public_numbers(key_store: KeyStore):
    # First use may generate an RSA key; keep that off the event loop
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, key_store.public_numbers)


async def _initiate(handshake: HandshakeProtocol, stream: RecordStream, key_store: KeyStore,
                    port: int, timeout: float, local_address: Optional[str]) -> Session:
    remote_host = stream.peer_host
    identifier = derive_session_identifier(local_address or stream.local_host, remote_host)

    modulus, exponent = await _public_numbers(key_store)
    await stream.write_record(HandshakeMessage.new_session(modulus, exponent).to_record())
    handshake.advance(HandshakeState.SENT_REQUEST)

    handshake.advance(HandshakeState.AWAIT_RESPONSE)
    record = await stream.read_record(timeout=timeout)
    if record.get("t") != HandshakeType.OKAY.value:
        raise HandshakeRejected(
            message=f"Remote peer {remote_host} declined session request",
            details={"type": record.get("t")},
        )

    reply = HandshakeMessage.from_record(record)
    if not reply.has_public_key or reply.half_key is None:
        raise HandshakeRejected(
            message=f"Session response from {remote_host} is missing required fields",
            details={"record_keys": sorted(record)},
        )
    _check_version(reply, remote_host)

    peer_key = crypto.public_key_from_numbers(reply.modulus, reply.exponent)
    first_half = key_store.unwrap_half(reply.half_key)
    handshake.advance(HandshakeState.HALF_RECEIVED)

    second_half = crypto.generate_half_key()
    wrapped = crypto.wrap_half_key(peer_key, second_half)
    await stream.write_record(HandshakeMessage.okay(wrapped).to_record())
    handshake.advance(HandshakeState.SENT_REPLY)

    logger.info(f"Peer {remote_host} key fingerprint: {crypto.fingerprint(peer_key)}")
    cipher = SessionCipher.from_halves(first_half, second_half)
    return Session(identifier, cipher, remote_host, peer_port=port)


async def establish_outbound(
    remote_address: str,
    key_store: KeyStore,
    registry: SessionRegistry,
    port: int = DEFAULT_PORT,
    connect_timeout: float = CONNECT_TIMEOUT,
    timeout: float = HANDSHAKE_TIMEOUT,
    local_address: Optional[str] = None,
) -> Session:
    """
    Open a session with the peer listening at ``remote_address:port``.

    Args:
        remote_address: Host of the peer to contact
        key_store: Source of our long-term keypair
        registry: Registry the new session is added to
        port: Peer's listening port
        connect_timeout: Seconds allowed to open the connection
        timeout: Seconds allowed for each handshake read
        local_address: Host to use for our side of the session identifier
            instead of the local socket address

    Returns:
        The established, registered Session

    Raises:
        TransportError: If the stream cannot be opened, read or written
        HandshakeRejected: If the peer does not answer OKAY with m, e and k
        ProtocolViolation: If the reply is malformed or carries an unusable key
        KeyUnwrapFailed: If the peer's half-key cannot be decrypted
    """
    handshake = HandshakeProtocol(HandshakeRole.INITIATOR)
    logger.debug(f"Opening session with {remote_address}:{port}")

    try:
        stream = await RecordStream.open(remote_address, port, timeout=connect_timeout)
    except Exception as e:
        handshake.abort(str(e))
        raise

    try:
        session = await _initiate(handshake, stream, key_store, port, timeout, local_address)
        handshake.advance(HandshakeState.ESTABLISHED)
        registry.add(session)
    except Exception as e:
        handshake.abort(str(e))
        logger.debug(f"Outbound handshake with {remote_address} aborted: {e}")
        raise
    finally:
        await stream.close()

    logger.info(f"Session {session.identifier.hex()} established with {session.peer_address}")
    return session


async def _respond(handshake: HandshakeProtocol, stream: RecordStream, key_store: KeyStore,
                   peer_port: int, timeout: float, local_address: Optional[str]) -> Session:
    peer_host = stream.peer_host

    handshake.advance(HandshakeState.AWAIT_REQUEST)
    request = HandshakeMessage.from_record(await stream.read_record(timeout=timeout))
    if request.msg_type != HandshakeType.NEW_SESSION.value:
        raise HandshakeRejected(
            message=f"Expected a session request from {peer_host}, got {request.msg_type!r}",
            details={"type": request.msg_type},
        )
    if not request.has_public_key:
        raise ProtocolViolation(
            ErrorCode.E302_MISSING_FIELD,
            f"Session request from {peer_host} carries no public key",
        )
    _check_version(request, peer_host)

    peer_key = crypto.public_key_from_numbers(request.modulus, request.exponent)
    identifier = derive_session_identifier(peer_host, local_address or stream.local_host)

    first_half = crypto.generate_half_key()
    wrapped = crypto.wrap_half_key(peer_key, first_half)
    modulus, exponent = await _public_numbers(key_store)
    await stream.write_record(HandshakeMessage.okay(wrapped, modulus, exponent).to_record())
    handshake.advance(HandshakeState.SENT_RESPONSE)

    handshake.advance(HandshakeState.AWAIT_FINAL)
    final = HandshakeMessage.from_record(await stream.read_record(timeout=timeout))
    if final.msg_type != HandshakeType.OKAY.value:
        raise HandshakeRejected(
            message=f"Peer {peer_host} did not confirm the session",
            details={"type": final.msg_type},
        )
    if final.half_key is None:
        raise ProtocolViolation(
            ErrorCode.E302_MISSING_FIELD,
            f"Session confirmation from {peer_host} carries no half-key",
        )

    second_half = key_store.unwrap_half(final.half_key)

    logger.info(f"Peer {peer_host} key fingerprint: {crypto.fingerprint(peer_key)}")
    cipher = SessionCipher.from_halves(first_half, second_half)
    return Session(identifier, cipher, peer_host, peer_port=peer_port)


async def accept_inbound(
    stream: RecordStream,
    key_store: KeyStore,
    registry: SessionRegistry,
    local_address: Optional[str] = None,
    peer_port: int = DEFAULT_PORT,
    timeout: float = HANDSHAKE_TIMEOUT,
) -> Session:
    """
    Run the responder side of the handshake on an accepted stream.

    The stream is closed on return, whether or not the handshake succeeds.

    Args:
        stream: Accepted connection
        key_store: Source of our long-term keypair
        registry: Registry the new session is added to
        local_address: Host to use for our side of the session identifier
            instead of the local socket address
        peer_port: Port on which the peer accepts message streams
        timeout: Seconds allowed for each handshake read

    Returns:
        The established, registered Session

    Raises:
        TransportError: If the stream fails or a read times out
        HandshakeRejected: If a record has an unexpected type
        ProtocolViolation: If a record is malformed or lacks a required field
        KeyUnwrapFailed: If the initiator's half-key cannot be decrypted
    """
    handshake = HandshakeProtocol(HandshakeRole.RESPONDER)

    try:
        session = await _respond(handshake, stream, key_store, peer_port, timeout, local_address)
        handshake.advance(HandshakeState.ESTABLISHED)
        registry.add(session)
    except Exception as e:
        handshake.abort(str(e))
        logger.debug(f"Inbound handshake aborted: {e}")
        raise
    finally:
        await stream.close()

    logger.info(f"Session {session.identifier.hex()} established with {session.peer_address}")
    return session
