"""
Pytest configuration and fixtures for benchgo tests.

Provides common fixtures and test utilities for unit and integration tests:
temporary directories, small RSA identities, and in-memory stream pairs
that report configurable socket addresses.
"""

import asyncio
import shutil
import tempfile
from pathlib import Path
from typing import Dict, Generator, List, Tuple

import pytest

from benchgo.crypto import generate_rsa_keypair
from benchgo.errors import ErrorCode, TransportError
from benchgo.keystore import MemoryKeyStore
from benchgo.protocol import RecordStream
from benchgo.session import MemorySessionRegistry

# Small keys keep the suite fast; production defaults to 2048 bits
TEST_KEY_SIZE = 1024


class PipeWriter:
    """
    Writer half of an in-memory connection.

    Bytes written here are fed to the peer's StreamReader; closing feeds it
    EOF. Socket addresses are whatever the test says they are.
    """

    def __init__(self, peer_reader: asyncio.StreamReader, sockname, peername):
        self._peer_reader = peer_reader
        self._extra = {"sockname": sockname, "peername": peername}
        self.closed = False
        self.written = bytearray()

    def write(self, data: bytes) -> None:
        if self.closed:
            raise ConnectionResetError("write on closed pipe")
        self.written += data
        self._peer_reader.feed_data(data)

    async def drain(self) -> None:
        await asyncio.sleep(0)

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._peer_reader.feed_eof()

    def is_closing(self) -> bool:
        return self.closed

    async def wait_closed(self) -> None:
        return None

    def get_extra_info(self, name, default=None):
        return self._extra.get(name, default)


def make_pipe(first_address, second_address):
    """
    Create a connected pair of (reader, writer) tuples.

    Must be called with an event loop running.
    """
    first_reader = asyncio.StreamReader()
    second_reader = asyncio.StreamReader()
    first_writer = PipeWriter(second_reader, sockname=first_address, peername=second_address)
    second_writer = PipeWriter(first_reader, sockname=second_address, peername=first_address)
    return (first_reader, first_writer), (second_reader, second_writer)


def make_stream_pair(
    connecting=("10.0.0.1", 40000), accepting=("10.0.0.2", 8081)
) -> Tuple[RecordStream, RecordStream]:
    """Return (connecting side, accepting side) RecordStreams over an in-memory pipe."""
    (r1, w1), (r2, w2) = make_pipe(connecting, accepting)
    return RecordStream(r1, w1), RecordStream(r2, w2)


def reader_with(data: bytes, eof: bool = True) -> RecordStream:
    """RecordStream whose reader already holds ``data``."""
    reader = asyncio.StreamReader()
    reader.feed_data(data)
    if eof:
        reader.feed_eof()
    writer = PipeWriter(asyncio.StreamReader(), ("10.0.0.2", 8081), ("10.0.0.1", 40000))
    return RecordStream(reader, writer)


class FakeNetwork:
    """
    Routes RecordStream.open to in-memory listeners.

    Every dialed connection appears to come from ``dial_from``. Each
    accepted connection is served by its listener in a background task;
    :meth:`settle` waits for those tasks.
    """

    def __init__(self, dial_from: str = "10.0.0.1"):
        self.dial_from = dial_from
        self.listeners: Dict[Tuple[str, int], object] = {}
        self.tasks: List[asyncio.Future] = []
        self._next_port = 40000

    def listen(self, host: str, port: int, handler) -> None:
        self.listeners[(host, port)] = handler

    async def open(self, host: str, port: int, timeout=None) -> RecordStream:
        handler = self.listeners.get((host, port))
        if handler is None:
            raise TransportError(
                ErrorCode.E201_CONNECTION_FAILED, f"Connection to {host}:{port} refused"
            )
        self._next_port += 1
        (r1, w1), (r2, w2) = make_pipe((self.dial_from, self._next_port), (host, port))
        self.tasks.append(asyncio.ensure_future(handler(r2, w2)))
        return RecordStream(r1, w1)

    async def settle(self) -> None:
        tasks, self.tasks = self.tasks, []
        await asyncio.gather(*tasks)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """
    Create a temporary directory for test data.

    Yields:
        Path: Temporary directory path

    Cleanup:
        Automatically removes directory after test
    """
    tmp = Path(tempfile.mkdtemp(prefix="benchgo_test_"))
    try:
        yield tmp
    finally:
        shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture(scope="session")
def rsa_key_a():
    return generate_rsa_keypair(TEST_KEY_SIZE)


@pytest.fixture(scope="session")
def rsa_key_b():
    return generate_rsa_keypair(TEST_KEY_SIZE)


@pytest.fixture
def key_store_a(rsa_key_a) -> MemoryKeyStore:
    """Identity of the connecting peer."""
    return MemoryKeyStore(key_size=TEST_KEY_SIZE, private_key=rsa_key_a)


@pytest.fixture
def key_store_b(rsa_key_b) -> MemoryKeyStore:
    """Identity of the accepting peer."""
    return MemoryKeyStore(key_size=TEST_KEY_SIZE, private_key=rsa_key_b)


@pytest.fixture
def registry_a() -> MemorySessionRegistry:
    return MemorySessionRegistry()


@pytest.fixture
def registry_b() -> MemorySessionRegistry:
    return MemorySessionRegistry()


@pytest.fixture
def fake_network(monkeypatch) -> FakeNetwork:
    """Install a FakeNetwork in place of real TCP connections."""
    network = FakeNetwork()
    monkeypatch.setattr(RecordStream, "open", network.open)
    return network


# Pytest marks
def pytest_configure(config):
    """
    Configure pytest markers.

    Args:
        config: Pytest configuration object
    """
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")


# Test collection hooks
def pytest_collection_modifyitems(config, items):
    """
    Modify test collection to add markers based on test location.

    Args:
        config: Pytest configuration
        items: List of collected test items
    """
    for item in items:
        # Add unit marker to tests in unit/ directory
        if "unit" in Path(str(item.fspath)).parts:
            item.add_marker(pytest.mark.unit)
