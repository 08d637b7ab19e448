"""
benchgo - Handshake tests.

Runs both sides of the handshake over in-memory connections and checks
the agreed secret, the session identifier and every failure path. A
failed handshake must leave both registries empty and the stream closed.
"""

import asyncio

import pytest

from benchgo import crypto
from benchgo.errors import (
    ErrorCode,
    HandshakeRejected,
    KeyUnwrapFailed,
    ProtocolViolation,
    TransportError,
)
from benchgo.handshake import (
    HandshakeProtocol,
    HandshakeRole,
    HandshakeState,
    accept_inbound,
    establish_outbound,
)
from benchgo.protocol import HandshakeMessage, RecordStream
from benchgo.server import SessionServer
from benchgo.session import derive_session_identifier
from conftest import make_stream_pair


def scripted_responder(script):
    """Listener that reads the request and then runs ``script(stream, request)``."""

    async def handler(reader, writer):
        stream = RecordStream(reader, writer)
        try:
            request = await stream.read_record(timeout=2)
            await script(stream, request)
        finally:
            await stream.close()

    return handler


class TestHandshakeProtocol:
    """Test the handshake state machine."""

    def test_initiator_path(self):
        handshake = HandshakeProtocol(HandshakeRole.INITIATOR)
        for state in (
            HandshakeState.SENT_REQUEST,
            HandshakeState.AWAIT_RESPONSE,
            HandshakeState.HALF_RECEIVED,
            HandshakeState.SENT_REPLY,
            HandshakeState.ESTABLISHED,
        ):
            handshake.advance(state)
        assert handshake.is_established
        assert len(handshake.transition_history) == 5

    def test_responder_path(self):
        handshake = HandshakeProtocol(HandshakeRole.RESPONDER)
        for state in (
            HandshakeState.AWAIT_REQUEST,
            HandshakeState.SENT_RESPONSE,
            HandshakeState.AWAIT_FINAL,
            HandshakeState.ESTABLISHED,
        ):
            handshake.advance(state)
        assert handshake.is_established

    def test_invalid_transition(self):
        handshake = HandshakeProtocol(HandshakeRole.RESPONDER)
        with pytest.raises(RuntimeError):
            handshake.advance(HandshakeState.SENT_REQUEST)
        with pytest.raises(RuntimeError):
            handshake.advance(HandshakeState.ESTABLISHED)

    def test_abort_from_any_open_state(self):
        handshake = HandshakeProtocol(HandshakeRole.INITIATOR)
        handshake.advance(HandshakeState.SENT_REQUEST)
        handshake.abort("peer went away")
        assert handshake.state == HandshakeState.ABORTED
        assert handshake.error_message == "peer went away"
        assert handshake.is_terminal

    def test_terminal_states_are_final(self):
        handshake = HandshakeProtocol(HandshakeRole.INITIATOR)
        handshake.abort("first")
        handshake.abort("second")
        assert handshake.error_message == "first"
        with pytest.raises(RuntimeError):
            handshake.advance(HandshakeState.SENT_REQUEST)


@pytest.mark.asyncio
class TestHandshake:
    """Run the full handshake between two peers."""

    def _listen(self, fake_network, key_store, registry):
        server = SessionServer(key_store, registry, host="10.0.0.2", port=8081)
        fake_network.listen("10.0.0.2", 8081, server._handle_client)
        return server

    async def test_both_peers_agree_on_secret(self, fake_network, key_store_a, key_store_b,
                                              registry_a, registry_b):
        self._listen(fake_network, key_store_b, registry_b)

        initiator = await establish_outbound("10.0.0.2", key_store_a, registry_a)
        await fake_network.settle()
        responder = registry_b.by_identifier(initiator.identifier)

        assert responder is not None
        assert len(initiator.cipher.secret) == 16
        assert initiator.cipher.secret == responder.cipher.secret
        assert initiator.identifier == derive_session_identifier("10.0.0.1", "10.0.0.2")
        assert registry_a.by_identifier(initiator.identifier) is initiator
        assert initiator.peer_address == "10.0.0.2"
        assert responder.peer_address == "10.0.0.1"

    async def test_each_handshake_gets_a_fresh_secret(self, fake_network, key_store_a,
                                                      key_store_b, registry_a, registry_b):
        self._listen(fake_network, key_store_b, registry_b)

        first = await establish_outbound("10.0.0.2", key_store_a, registry_a)
        second = await establish_outbound("10.0.0.2", key_store_a, registry_a)
        await fake_network.settle()

        assert first.identifier == second.identifier
        assert first.cipher.secret != second.cipher.secret
        # Same endpoints, so the second session replaced the first
        assert len(registry_a) == 1
        assert registry_a.by_identifier(first.identifier) is second
        assert registry_b.by_identifier(first.identifier).cipher.secret == second.cipher.secret

    async def test_local_address_override(self, fake_network, key_store_a, key_store_b,
                                          registry_a, registry_b):
        self._listen(fake_network, key_store_b, registry_b)

        session = await establish_outbound(
            "10.0.0.2", key_store_a, registry_a, local_address="192.0.2.7"
        )
        await fake_network.settle()
        assert session.identifier == derive_session_identifier("192.0.2.7", "10.0.0.2")

    async def test_responder_declines(self, fake_network, key_store_a, registry_a, registry_b):
        async def decline(stream, request):
            await stream.write_record({"v": "0.2", "t": "NO THANKS"})

        fake_network.listen("10.0.0.2", 8081, scripted_responder(decline))

        with pytest.raises(HandshakeRejected):
            await establish_outbound("10.0.0.2", key_store_a, registry_a)
        await fake_network.settle()
        assert len(registry_a) == 0
        assert len(registry_b) == 0

    async def test_response_missing_half_key(self, fake_network, key_store_a, key_store_b,
                                             registry_a):
        async def no_half(stream, request):
            modulus, exponent = key_store_b.public_numbers()
            await stream.write_record({"v": "0.2", "t": "OKAY", "m": modulus, "e": exponent})

        fake_network.listen("10.0.0.2", 8081, scripted_responder(no_half))

        with pytest.raises(HandshakeRejected):
            await establish_outbound("10.0.0.2", key_store_a, registry_a)
        await fake_network.settle()
        assert len(registry_a) == 0

    async def test_response_with_bad_modulus(self, fake_network, key_store_a, registry_a):
        async def bad_key(stream, request):
            await stream.write_record(
                {"v": "0.2", "t": "OKAY", "m": "banana", "e": 65537, "k": b"x" * 128}
            )

        fake_network.listen("10.0.0.2", 8081, scripted_responder(bad_key))

        with pytest.raises(ProtocolViolation):
            await establish_outbound("10.0.0.2", key_store_a, registry_a)
        await fake_network.settle()
        assert len(registry_a) == 0

    async def test_response_half_key_unreadable(self, fake_network, key_store_a, key_store_b,
                                                registry_a):
        async def garbage_half(stream, request):
            modulus, exponent = key_store_b.public_numbers()
            await stream.write_record(
                {"v": "0.2", "t": "OKAY", "m": modulus, "e": exponent, "k": b"\x01" * 128}
            )

        fake_network.listen("10.0.0.2", 8081, scripted_responder(garbage_half))

        with pytest.raises(KeyUnwrapFailed):
            await establish_outbound("10.0.0.2", key_store_a, registry_a)
        await fake_network.settle()
        assert len(registry_a) == 0

    async def test_responder_hangs_up(self, fake_network, key_store_a, registry_a):
        async def hang_up(stream, request):
            return None

        fake_network.listen("10.0.0.2", 8081, scripted_responder(hang_up))

        with pytest.raises(TransportError):
            await establish_outbound("10.0.0.2", key_store_a, registry_a)
        await fake_network.settle()
        assert len(registry_a) == 0

    async def test_version_mismatch_is_tolerated(self, fake_network, key_store_a, key_store_b,
                                                 registry_a, caplog):
        async def old_version(stream, request):
            peer_key = crypto.public_key_from_numbers(request["m"], request["e"])
            modulus, exponent = key_store_b.public_numbers()
            wrapped = crypto.wrap_half_key(peer_key, crypto.generate_half_key())
            await stream.write_record(
                {"v": "0.1", "t": "OKAY", "m": modulus, "e": exponent, "k": wrapped}
            )
            await stream.read_record(timeout=2)

        fake_network.listen("10.0.0.2", 8081, scripted_responder(old_version))

        with caplog.at_level("WARNING", logger="benchgo"):
            session = await establish_outbound("10.0.0.2", key_store_a, registry_a)
            await fake_network.settle()
        assert session in registry_a.sessions()
        assert "0.1" in caplog.text

    async def test_connection_refused(self, fake_network, key_store_a, registry_a):
        with pytest.raises(TransportError):
            await establish_outbound("10.0.0.9", key_store_a, registry_a)
        assert len(registry_a) == 0


@pytest.mark.asyncio
class TestAcceptInbound:
    """Drive the responder directly with a scripted initiator."""

    async def _run(self, initiator_script, key_store, registry):
        client, server = make_stream_pair()
        responder = asyncio.ensure_future(accept_inbound(server, key_store, registry, timeout=2))
        try:
            await initiator_script(client)
        finally:
            await client.close()
        try:
            return await responder
        finally:
            assert server.writer.closed

    async def test_wrong_request_type(self, key_store_a, key_store_b, registry_b):
        async def script(client):
            modulus, exponent = key_store_a.public_numbers()
            await client.write_record({"v": "0.2", "t": "OKAY", "m": modulus, "e": exponent})

        with pytest.raises(HandshakeRejected):
            await self._run(script, key_store_b, registry_b)
        assert len(registry_b) == 0

    async def test_request_without_public_key(self, key_store_b, registry_b):
        async def script(client):
            await client.write_record({"v": "0.2", "t": "NEW SESSION"})

        with pytest.raises(ProtocolViolation) as exc_info:
            await self._run(script, key_store_b, registry_b)
        assert exc_info.value.code == ErrorCode.E302_MISSING_FIELD
        assert len(registry_b) == 0

    async def test_undecodable_request(self, key_store_b, registry_b):
        async def script(client):
            client.writer.write(b"\xc1\xc1\xc1\xc1")

        with pytest.raises(ProtocolViolation):
            await self._run(script, key_store_b, registry_b)
        assert len(registry_b) == 0

    async def test_final_message_declines(self, key_store_a, key_store_b, registry_b):
        async def script(client):
            modulus, exponent = key_store_a.public_numbers()
            await client.write_record(HandshakeMessage.new_session(modulus, exponent).to_record())
            await client.read_record(timeout=2)
            await client.write_record({"v": "0.2", "t": "GOODBYE"})

        with pytest.raises(HandshakeRejected):
            await self._run(script, key_store_b, registry_b)
        assert len(registry_b) == 0

    async def test_final_message_without_half_key(self, key_store_a, key_store_b, registry_b):
        async def script(client):
            modulus, exponent = key_store_a.public_numbers()
            await client.write_record(HandshakeMessage.new_session(modulus, exponent).to_record())
            await client.read_record(timeout=2)
            await client.write_record({"v": "0.2", "t": "OKAY"})

        with pytest.raises(ProtocolViolation):
            await self._run(script, key_store_b, registry_b)
        assert len(registry_b) == 0

    async def test_final_half_key_unreadable(self, key_store_a, key_store_b, registry_b):
        async def script(client):
            modulus, exponent = key_store_a.public_numbers()
            await client.write_record(HandshakeMessage.new_session(modulus, exponent).to_record())
            await client.read_record(timeout=2)
            await client.write_record(HandshakeMessage.okay(b"\x02" * 128).to_record())

        with pytest.raises(KeyUnwrapFailed):
            await self._run(script, key_store_b, registry_b)
        assert len(registry_b) == 0

    async def test_initiator_goes_silent(self, key_store_b, registry_b):
        client, server = make_stream_pair()

        with pytest.raises(TransportError) as exc_info:
            await accept_inbound(server, key_store_b, registry_b, timeout=0.05)
        assert exc_info.value.code == ErrorCode.E202_CONNECTION_TIMEOUT
        assert server.writer.closed
        assert len(registry_b) == 0

    async def test_response_carries_key_and_half(self, key_store_a, key_store_b, registry_b):
        responses = []

        async def script(client):
            modulus, exponent = key_store_a.public_numbers()
            await client.write_record(HandshakeMessage.new_session(modulus, exponent).to_record())
            response = HandshakeMessage.from_record(await client.read_record(timeout=2))
            responses.append(response)

            peer_key = crypto.public_key_from_numbers(response.modulus, response.exponent)
            wrapped = crypto.wrap_half_key(peer_key, b"B" * 8)
            await client.write_record(HandshakeMessage.okay(wrapped).to_record())

        session = await self._run(script, key_store_b, registry_b)

        response = responses[0]
        assert response.msg_type == "OKAY"
        assert (response.modulus, response.exponent) == key_store_b.public_numbers()
        first_half = key_store_a.unwrap_half(response.half_key)
        assert session.cipher.secret == first_half + b"B" * 8
        assert session.identifier == derive_session_identifier("10.0.0.1", "10.0.0.2")
        assert registry_b.by_identifier(session.identifier) is session
