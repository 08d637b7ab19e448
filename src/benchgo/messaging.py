"""
benchgo - Sending and receiving messages on established sessions.

Every message travels on its own short-lived stream: the sender opens a
connection to the peer's listening port, writes one message record and
closes. The receiver looks the session up by identifier and decrypts with
that session's cipher.
"""

import logging
from typing import Optional, Tuple

from .constants import CONNECT_TIMEOUT, MAX_TEXT_MESSAGE_SIZE, RECEIVE_TIMEOUT
from .errors import ErrorCode, ProtocolViolation, UnknownSession
from .framing import decrypt_message, encrypt_message
from .protocol import RecordStream, WireMessage
from .session import Message, Session, SessionRegistry, identifier_from_int

logger = logging.getLogger(__name__)


async def send_message(stream: RecordStream, session: Session, plaintext: str) -> None:
    """
    Encrypt ``plaintext`` with the session cipher and write it to ``stream``.

    The stream is left open and history is not touched.

    Raises:
        ProtocolViolation: If the text exceeds the message size limit
        TransportError: If the write fails
    """
    if len(plaintext.encode("utf-8")) > MAX_TEXT_MESSAGE_SIZE:
        raise ProtocolViolation(
            ErrorCode.E303_RECORD_TOO_LARGE,
            f"Message exceeds {MAX_TEXT_MESSAGE_SIZE} bytes",
        )

    ciphertext = encrypt_message(plaintext, session.cipher)
    await stream.write_record(WireMessage(sid=session.sid, ciphertext=ciphertext).to_record())


async def send(session: Session, plaintext: str, port: Optional[int] = None,
               connect_timeout: float = CONNECT_TIMEOUT) -> Message:
    """
    Deliver one message to the session's peer.

    Opens a stream to the peer, writes the message, closes the stream and
    appends the message to the session history. Nothing is appended if
    delivery fails.

    Args:
        session: Established session
        plaintext: Text to send
        port: Peer port (defaults to the port recorded on the session)
        connect_timeout: Seconds allowed to open the connection

    Returns:
        The Message appended to history

    Raises:
        TransportError: If the peer cannot be reached or the write fails
    """
    port = port or session.peer_port
    stream = await RecordStream.open(session.peer_address, port, timeout=connect_timeout)
    try:
        await send_message(stream, session, plaintext)
    finally:
        await stream.close()

    message = Message(session_id=session.identifier, content=plaintext, outgoing=True)
    session.append(message)
    logger.debug(f"Sent {len(plaintext)} characters on session {session.identifier.hex()}")
    return message


async def receive(stream: RecordStream, registry: SessionRegistry,
                  timeout: Optional[float] = RECEIVE_TIMEOUT) -> Tuple[Session, str]:
    """
    Read one message record from ``stream`` and decrypt it.

    The stream is not closed; whoever accepted it owns it.

    Returns:
        (session the message belongs to, plaintext)

    Raises:
        TransportError: If the read fails or times out
        ProtocolViolation: If the record or its ciphertext is malformed
        UnknownSession: If no session is registered under the record's identifier
    """
    wire = WireMessage.from_record(await stream.read_record(timeout=timeout))
    identifier = identifier_from_int(wire.sid)

    session = registry.by_identifier(identifier)
    if session is None:
        raise UnknownSession(
            message=f"No session with identifier {identifier.hex()}",
            details={"session_id": identifier.hex()},
        )

    plaintext = decrypt_message(wire.ciphertext, session.cipher)
    session.append(Message(session_id=identifier, content=plaintext, outgoing=False))
    logger.debug(f"Received {len(plaintext)} characters on session {identifier.hex()}")
    return session, plaintext
