"""
pytest configuration and fixtures.
"""

import socket
from typing import Generator, Tuple
import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from netstack import NetworkStack, SocketInfo, StackConfig


# Seconds to wait on any future in the tests
WAIT = 5.0


@pytest.fixture
def config() -> StackConfig:
    """Default test stack configuration."""
    return StackConfig(
        progress_interval=0.0,  # Report every chunk
        log_level="WARNING",
    )


@pytest.fixture
def stack(config: StackConfig) -> Generator[NetworkStack, None, None]:
    """A running stack, shut down after the test."""
    net = NetworkStack(config)
    yield net
    net.shutdown()


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


@pytest.fixture
def socket_pair() -> Generator[Tuple[socket.socket, socket.socket], None, None]:
    """Two connected plain sockets for driving the pipelines directly."""
    left, right = socket.socketpair()
    yield left, right
    left.close()
    right.close()


def open_connection(net: NetworkStack) -> Tuple[SocketInfo, SocketInfo, SocketInfo]:
    """
    Listen on loopback, connect to it and accept.

    Returns:
        (server, client, peer) SocketInfo records.
    """
    server = net.listen("127.0.0.1", 0).result(WAIT)
    pending = net.accept(server.id)
    client = net.connect("127.0.0.1", server.local_port).result(WAIT)
    peer = pending.result(WAIT)
    return server, client, peer


@pytest.fixture
def connection(stack: NetworkStack) -> Tuple[SocketInfo, SocketInfo, SocketInfo]:
    """A listener plus a connected client/peer pair on the test stack."""
    return open_connection(stack)
