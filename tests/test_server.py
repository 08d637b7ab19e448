"""
benchgo - Server tests over real loopback TCP connections.
"""

import asyncio

import pytest

from benchgo.config import Config
from benchgo.errors import TransportError
from benchgo.handshake import establish_outbound
from benchgo.messaging import send
from benchgo.protocol import RecordStream
from benchgo.server import SessionServer
from benchgo.session import derive_session_identifier


@pytest.mark.integration
@pytest.mark.asyncio
class TestSessionServer:
    """Run a SessionServer on 127.0.0.1 with an ephemeral port."""

    async def test_session_and_message_over_loopback(self, key_store_a, key_store_b,
                                                     registry_a, registry_b):
        server = SessionServer(key_store_b, registry_b, host="127.0.0.1", port=0)
        opened = asyncio.Event()
        delivered = asyncio.Event()
        messages = []

        server.on_session = lambda session: opened.set()

        def on_message(session, text):
            messages.append(text)
            delivered.set()

        server.on_message = on_message

        async with server:
            session = await establish_outbound(
                "127.0.0.1", key_store_a, registry_a, port=server.port
            )
            await asyncio.wait_for(opened.wait(), timeout=5)
            await send(session, "over the wire")
            await asyncio.wait_for(delivered.wait(), timeout=5)

        assert session.identifier == derive_session_identifier("127.0.0.1", "127.0.0.1")
        assert messages == ["over the wire"]
        remote = registry_b.by_identifier(session.identifier)
        assert remote.cipher.secret == session.cipher.secret
        assert [m.content for m in remote.history] == ["over the wire"]

    async def test_server_survives_garbage(self, key_store_a, key_store_b, registry_a,
                                           registry_b):
        server = SessionServer(key_store_b, registry_b, host="127.0.0.1", port=0)
        opened = asyncio.Event()
        server.on_session = lambda session: opened.set()

        async with server:
            reader, writer = await asyncio.open_connection("127.0.0.1", server.port)
            writer.write(b"\xc1 this is not a record")
            await writer.drain()
            # The server closes the connection after the bad record
            assert await asyncio.wait_for(reader.read(), timeout=5) == b""
            writer.close()

            await establish_outbound("127.0.0.1", key_store_a, registry_a, port=server.port)
            await asyncio.wait_for(opened.wait(), timeout=5)

        assert len(registry_a) == 1
        assert len(registry_b) == 1

    async def test_server_callback_errors_are_contained(self, key_store_a, key_store_b,
                                                        registry_a, registry_b):
        server = SessionServer(key_store_b, registry_b, host="127.0.0.1", port=0)

        def broken(session):
            raise RuntimeError("callback bug")

        server.on_session = broken

        async with server:
            await establish_outbound("127.0.0.1", key_store_a, registry_a, port=server.port)
            for _ in range(100):
                if len(registry_b):
                    break
                await asyncio.sleep(0.01)

        assert len(registry_b) == 1

    async def test_stopped_server_refuses(self, key_store_b, registry_b):
        server = SessionServer(key_store_b, registry_b, host="127.0.0.1", port=0)
        await server.start()
        port = server.port
        await server.stop()
        await server.stop()

        with pytest.raises(TransportError):
            await RecordStream.open("127.0.0.1", port, timeout=2)


def test_from_config(temp_dir, key_store_b, registry_b):
    config = Config(temp_dir / "config.toml")
    config.set("network", "port", 9123)
    config.set("network", "local_address", "192.0.2.1")

    server = SessionServer.from_config(config, key_store_b, registry_b)
    assert server.port == 9123
    assert server.local_address == "192.0.2.1"
    assert server.handshake_timeout == config.get("network", "handshake_timeout")
