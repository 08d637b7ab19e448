"""
benchgo - Listening server for inbound handshakes and messages.

Every accepted connection runs in its own asyncio task. The first record
on the connection decides what it is: a handshake record starts the
responder side of the handshake, a message record is decrypted and handed
to the message callback. Either way the connection is closed afterwards.
"""

import asyncio
import logging
from typing import Callable, Optional

from .config import Config
from .constants import DEFAULT_HOST, DEFAULT_PORT, HANDSHAKE_TIMEOUT
from .errors import BenchgoError
from .handshake import accept_inbound
from .keystore import KeyStore
from .messaging import receive
from .protocol import RecordStream, is_handshake_record
from .session import Session, SessionRegistry

logger = logging.getLogger(__name__)


class SessionServer:
    """Accepts session requests and incoming messages from peers."""

    def __init__(
        self,
        key_store: KeyStore,
        registry: SessionRegistry,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        handshake_timeout: float = HANDSHAKE_TIMEOUT,
        local_address: Optional[str] = None,
    ):
        """
        Initialize server.

        Args:
            key_store: Source of our long-term keypair
            registry: Registry that accepted sessions are added to
            host: Address to bind
            port: Port to bind (0 picks a free port)
            handshake_timeout: Seconds allowed for each read on a connection
            local_address: Host to use for our side of session identifiers
        """
        self.key_store = key_store
        self.registry = registry
        self.host = host
        self.port = port
        self.handshake_timeout = handshake_timeout
        self.local_address = local_address
        self.running = False
        self._server: Optional[asyncio.AbstractServer] = None

        # Callbacks
        self.on_session: Optional[Callable[[Session], None]] = None
        self.on_message: Optional[Callable[[Session, str], None]] = None

    @classmethod
    def from_config(cls, config: Config, key_store: KeyStore,
                    registry: SessionRegistry) -> "SessionServer":
        """Build a server from the ``network`` configuration section."""
        return cls(
            key_store,
            registry,
            host=config.get("network", "host", DEFAULT_HOST),
            port=config.get("network", "port", DEFAULT_PORT),
            handshake_timeout=config.get("network", "handshake_timeout", HANDSHAKE_TIMEOUT),
            local_address=config.get("network", "local_address") or None,
        )

    async def start(self) -> None:
        """
        Start listening.

        Raises:
            OSError: If the address cannot be bound
        """
        self._server = await asyncio.start_server(self._handle_client, self.host, self.port)
        if self.port == 0:
            self.port = self._server.sockets[0].getsockname()[1]
        self.running = True
        logger.info(f"Listening for sessions on {self.host}:{self.port}")

    async def stop(self) -> None:
        """Stop accepting connections."""
        if not self.running:
            return
        self.running = False
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        logger.info("Server stopped")

    async def _handle_client(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        """Serve one inbound connection."""
        address = writer.get_extra_info("peername")
        logger.debug(f"Connection from {address}")
        stream = RecordStream(reader, writer)

        try:
            first = await stream.peek_record(timeout=self.handshake_timeout)
            if is_handshake_record(first):
                session = await accept_inbound(
                    stream,
                    self.key_store,
                    self.registry,
                    local_address=self.local_address,
                    peer_port=self.port,
                    timeout=self.handshake_timeout,
                )
                self._notify(self.on_session, session)
            else:
                session, plaintext = await receive(
                    stream, self.registry, timeout=self.handshake_timeout
                )
                self._notify(self.on_message, session, plaintext)
        except BenchgoError as e:
            logger.warning(f"Dropped connection from {address}: {e}")
        except Exception as e:
            logger.error(f"Error handling connection from {address}: {e}", exc_info=True)
        finally:
            await stream.close()

    @staticmethod
    def _notify(callback: Optional[Callable], *args) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.error(f"Server callback error: {e}", exc_info=True)

    async def __aenter__(self) -> "SessionServer":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()
