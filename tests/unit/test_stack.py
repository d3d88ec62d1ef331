"""
Integration tests for NetworkStack over loopback TCP and UDP.
"""

import logging
import socket
import threading
import time

import pytest

from netstack import (
    ArgumentError,
    Datagram,
    NetstackError,
    NetworkStack,
    PrematureEndOfStreamError,
    SessionClosedError,
    SessionRoleError,
    SocketInfo,
    StackConfig,
    TransportError,
)
from netstack.core.progress import READ_EVENT


WAIT = 5.0


class TestSetup:
    """Tests for connect, listen and accept."""

    def test_connection_records(self, connection):
        """Test the SocketInfo records of a listener, a client and the accepted peer."""
        server, client, peer = connection

        assert isinstance(server, SocketInfo)
        assert server.remote_address is None
        assert server.local_port > 0

        assert client.remote_port == server.local_port
        assert peer.remote_port == client.local_port
        assert peer.local_port == server.local_port

    def test_handles_are_distinct_and_positive(self, connection):
        handles = [info.id for info in connection]
        assert len(set(handles)) == 3
        assert all(handle >= 1 for handle in handles)

    def test_connect_refused(self, stack, free_port):
        """Test that nobody listening is a transport error, not a handle."""
        future = stack.connect("127.0.0.1", free_port)
        with pytest.raises(TransportError):
            future.result(WAIT)
        assert len(stack.sessions) == 0

    @pytest.mark.parametrize("port", [-1, 65536, "80", True])
    def test_invalid_port(self, stack, port):
        """Test that a bad port fails before any I/O."""
        future = stack.connect("127.0.0.1", port)
        assert future.done()
        with pytest.raises(ArgumentError):
            future.result()

    def test_invalid_host(self, stack):
        with pytest.raises(ArgumentError):
            stack.listen("", 0).result(WAIT)

    def test_listener_accepts_several_connections(self, stack):
        server = stack.listen("127.0.0.1", 0).result(WAIT)

        peers = []
        for _ in range(3):
            pending = stack.accept(server.id)
            stack.connect("127.0.0.1", server.local_port).result(WAIT)
            peers.append(pending.result(WAIT))

        assert len({peer.id for peer in peers}) == 3

    def test_accept_on_stream(self, stack, connection):
        _, client, _ = connection
        with pytest.raises(SessionRoleError):
            stack.accept(client.id).result(WAIT)


class TestReadWrite:
    """Tests for reads and writes between two sessions."""

    def test_line_exchange(self, stack, connection):
        _, client, peer = connection

        assert stack.write(client.id, "hello\n").result(WAIT) is None
        assert stack.read(peer.id, terminator="\n").result(WAIT) == "hello"

    def test_reads_complete_in_order(self, stack, connection):
        """Test that queued reads split the stream in submission order."""
        _, client, peer = connection

        first = stack.read(peer.id, terminator="\n")
        second = stack.read(peer.id, max_length=3)
        third = stack.read(peer.id, terminator=0)

        stack.write(client.id, "one\ntwothree\x00")

        assert first.result(WAIT) == "one"
        assert second.result(WAIT) == "two"
        assert third.result(WAIT) == "three"

    def test_concurrent_writes_do_not_interleave(self, stack, connection):
        """Test that writes issued back to back arrive whole and in order."""
        _, client, peer = connection
        chunks = [f"{i:03d}" * 1000 for i in range(20)]

        futures = [stack.write(client.id, chunk) for chunk in chunks]
        for future in futures:
            future.result(WAIT)

        total = sum(len(chunk) for chunk in chunks)
        assert stack.read(peer.id, max_length=total).result(WAIT) == "".join(chunks)

    def test_pending_read_does_not_block_write(self, stack, connection):
        """Test that a write completes while a read waits on the same session."""
        _, client, peer = connection
        reply = stack.read(client.id, terminator="\n")

        stack.write(client.id, "request\n").result(WAIT)
        assert not reply.done()

        assert stack.read(peer.id, terminator="\n").result(WAIT) == "request"
        stack.write(peer.id, "response\n").result(WAIT)
        assert reply.result(WAIT) == "response"

    def test_binary_round_trip(self, stack, connection):
        _, client, peer = connection
        stack.write(client.id, "AP8Q", kind="base64").result(WAIT)
        stack.write(client.id, 65, kind="byte").result(WAIT)

        assert stack.read(peer.id, max_length=4, output="base64").result(WAIT) == "AP8QQQ=="

    def test_file_write_and_save(self, stack, connection, tmp_path):
        _, client, peer = connection
        source = tmp_path / "in.bin"
        target = tmp_path / "out.bin"
        source.write_bytes(b"\x01\x02" * 5000)

        stack.write(client.id, str(source), kind="file").result(WAIT)
        result = stack.read(peer.id, max_length=10000, save_to=str(target), output="save")

        assert result.result(WAIT) is None
        assert target.read_bytes() == source.read_bytes()

    def test_peer_close_fails_pending_read(self, stack, connection):
        _, client, peer = connection
        stack.write(client.id, "partial").result(WAIT)
        stack.close(client.id).result(WAIT)

        with pytest.raises(PrematureEndOfStreamError):
            stack.read(peer.id, terminator="\n").result(WAIT)

    def test_argument_errors_are_immediate(self, stack, connection):
        _, client, peer = connection

        for future in (
            stack.read(peer.id, terminator=""),
            stack.read(peer.id, output="nope"),
            stack.write(client.id, 999, kind="byte"),
            stack.write(client.id, "x", kind="nope"),
        ):
            assert future.done()
            with pytest.raises(ArgumentError):
                future.result()

    def test_listener_cannot_read_or_write(self, stack, connection):
        server, _, _ = connection
        with pytest.raises(SessionRoleError):
            stack.read(server.id).result(WAIT)
        with pytest.raises(SessionRoleError):
            stack.write(server.id, "x").result(WAIT)

    def test_unknown_handle(self, stack):
        for future in (
            stack.read(999),
            stack.write(999, "x"),
            stack.accept(999),
            stack.udp_receive(999),
            stack.udp_send(999, "127.0.0.1", 9, "x"),
            stack.udp_join(999, "239.1.2.3"),
            stack.udp_leave(999, "239.1.2.3"),
        ):
            with pytest.raises(SessionClosedError):
                future.result(WAIT)
        assert len(stack.sessions) == 0

    def test_read_progress(self, stack, connection):
        """Test progress events for a read that arrives in pieces."""
        _, client, peer = connection
        events = []
        stack.on_progress(events.append)

        pending = stack.read(peer.id, max_length=30, progress_id="dl")
        for _ in range(3):
            stack.write(client.id, "x" * 10).result(WAIT)
            time.sleep(0.1)

        assert pending.result(WAIT) == "x" * 30
        time.sleep(0.1)  # let a delivery already under way land
        delivered = len(events)
        time.sleep(0.2)

        assert delivered >= 1
        assert len(events) == delivered  # nothing after completion
        assert all(e.name == READ_EVENT and e.progress_id == "dl" for e in events)
        counts = [e.transferred for e in events]
        assert counts == sorted(set(counts))
        assert counts[-1] <= 30

    def test_slow_listener_does_not_delay_read(self, stack, connection):
        """Test that a read completes while a progress listener is still busy."""
        _, client, peer = connection
        busy = threading.Event()

        def slow(event):
            busy.set()
            time.sleep(1.0)

        stack.on_progress(slow)
        pending = stack.read(peer.id, max_length=20, progress_id="slow")

        stack.write(client.id, "a" * 10).result(WAIT)
        assert busy.wait(WAIT)

        started = time.monotonic()
        stack.write(client.id, "b" * 10).result(WAIT)
        assert pending.result(WAIT) == "a" * 10 + "b" * 10
        assert time.monotonic() - started < 0.5


class TestClose:
    """Tests for closing sessions."""

    def test_close_twice(self, stack, connection):
        _, client, _ = connection
        first = stack.close(client.id)
        second = stack.close(client.id)

        assert first.result(WAIT) is None
        assert second.result(WAIT) is None
        assert client.id not in stack.sessions

    def test_close_unknown_handle(self, stack):
        assert stack.close(12345).result(WAIT) is None

    def test_operations_after_close(self, stack, connection):
        _, client, _ = connection
        stack.close(client.id).result(WAIT)

        with pytest.raises(SessionClosedError):
            stack.write(client.id, "x").result(WAIT)
        with pytest.raises(SessionClosedError):
            stack.read(client.id).result(WAIT)

    def test_close_waits_for_queued_writes(self, stack, connection):
        """Test that data written before close reaches the peer."""
        _, client, peer = connection
        payload = "z" * 200000

        stack.write(client.id, payload)
        stack.close(client.id)

        assert stack.read(peer.id, max_length=len(payload)).result(WAIT) == payload

    def test_close_unblocks_read(self, stack, connection):
        """Test that a read waiting for data fails once its session is closed."""
        _, _, peer = connection
        pending = stack.read(peer.id, terminator="\n")
        time.sleep(0.1)
        assert not pending.done()

        stack.close(peer.id).result(WAIT)
        with pytest.raises(NetstackError):
            pending.result(WAIT)

    def test_close_unblocks_accept(self, stack):
        server = stack.listen("127.0.0.1", 0).result(WAIT)
        pending = stack.accept(server.id)
        time.sleep(0.1)

        stack.close(server.id).result(WAIT)
        with pytest.raises(NetstackError):
            pending.result(WAIT)


class TestDatagrams:
    """Tests for UDP endpoints."""

    def test_send_and_receive(self, stack):
        sender = stack.udp_bind(0).result(WAIT)
        receiver = stack.udp_bind(0).result(WAIT)

        pending = stack.udp_receive(receiver.id)
        sent = stack.udp_send(sender.id, "127.0.0.1", receiver.local_port, "héllo")

        assert sent.result(WAIT) == len("héllo".encode("utf-8"))
        datagram = pending.result(WAIT)
        assert isinstance(datagram, Datagram)
        assert datagram.data == "héllo"
        assert datagram.sender_address == "127.0.0.1"
        assert datagram.sender_port == sender.local_port

    def test_terminator_read_per_datagram(self, stack):
        """Test that each delimited read takes one whole datagram."""
        sender = stack.udp_bind(0).result(WAIT)
        receiver = stack.udp_bind(0).result(WAIT)
        for text in ("abc\n", "xyz\n"):
            stack.udp_send(sender.id, "127.0.0.1", receiver.local_port, text).result(WAIT)

        assert stack.read(receiver.id, terminator="\n").result(WAIT) == "abc"
        assert stack.read(receiver.id, terminator="\n").result(WAIT) == "xyz"

    def test_fixed_length_read_per_datagram(self, stack):
        """Test that a short fixed-length read leaves the next datagram intact."""
        sender = stack.udp_bind(0).result(WAIT)
        receiver = stack.udp_bind(0).result(WAIT)

        stack.udp_send(sender.id, "127.0.0.1", receiver.local_port, "hello world").result(WAIT)
        assert stack.read(receiver.id, max_length=5).result(WAIT) == "hello"

        stack.udp_send(sender.id, "127.0.0.1", receiver.local_port, "second").result(WAIT)
        assert stack.read(receiver.id, max_length=6).result(WAIT) == "second"

    def test_fixed_length_longer_than_datagram(self, stack):
        sender = stack.udp_bind(0).result(WAIT)
        receiver = stack.udp_bind(0).result(WAIT)
        stack.udp_send(sender.id, "127.0.0.1", receiver.local_port, "hi").result(WAIT)

        with pytest.raises(PrematureEndOfStreamError):
            stack.read(receiver.id, max_length=5).result(WAIT)

    def test_chunk_read_returns_whole_datagram(self, stack):
        sender = stack.udp_bind(0).result(WAIT)
        receiver = stack.udp_bind(0).result(WAIT)
        stack.udp_send(sender.id, "127.0.0.1", receiver.local_port, "one datagram").result(WAIT)

        assert stack.read(receiver.id, output="base64").result(WAIT) == "b25lIGRhdGFncmFt"

    def test_close_unblocks_datagram_read(self, stack):
        info = stack.udp_bind(0).result(WAIT)
        pending = stack.read(info.id, terminator="\n")
        time.sleep(0.1)

        stack.close(info.id).result(WAIT)
        with pytest.raises(SessionClosedError):
            pending.result(WAIT)

    def test_reuse_without_reuseport(self, stack, monkeypatch, caplog):
        """Test that a missing SO_REUSEPORT is logged and the bind still succeeds."""
        monkeypatch.delattr(socket, "SO_REUSEPORT", raising=False)

        with caplog.at_level(logging.DEBUG, logger="netstack.stack"):
            info = stack.udp_bind(0, reuse_address=True).result(WAIT)

        assert info.local_port > 0
        assert any("SO_REUSEPORT not set" in r.getMessage() for r in caplog.records)

    def test_bind_record(self, stack):
        info = stack.udp_bind(0, broadcast=True, reuse_address=True).result(WAIT)
        assert info.remote_address is None
        assert info.local_port > 0

    def test_stream_operations_on_datagram(self, stack):
        info = stack.udp_bind(0).result(WAIT)
        with pytest.raises(SessionRoleError):
            stack.write(info.id, "x").result(WAIT)
        with pytest.raises(SessionRoleError):
            stack.accept(info.id).result(WAIT)

    def test_datagram_operations_on_stream(self, stack, connection):
        _, client, _ = connection
        with pytest.raises(SessionRoleError):
            stack.udp_send(client.id, "127.0.0.1", 9, "x").result(WAIT)
        with pytest.raises(SessionRoleError):
            stack.udp_join(client.id, "239.1.2.3").result(WAIT)

    def test_send_rejects_non_text(self, stack):
        info = stack.udp_bind(0).result(WAIT)
        with pytest.raises(ArgumentError):
            stack.udp_send(info.id, "127.0.0.1", 9, b"bytes").result(WAIT)

    def test_join_non_multicast_group(self, stack):
        """Test that the OS refusing a membership is a transport error."""
        info = stack.udp_bind(0).result(WAIT)
        with pytest.raises(TransportError):
            stack.udp_join(info.id, "127.0.0.1").result(WAIT)


class TestLifecycle:
    """Tests for close_all and shutdown."""

    def test_close_all(self, stack, connection):
        assert stack.close_all() == 3
        assert len(stack.sessions) == 0

    def test_shutdown_refuses_new_work(self, config):
        net = NetworkStack(config)
        info = net.udp_bind(0).result(WAIT)
        net.shutdown()

        assert net.is_shut_down
        with pytest.raises(NetstackError) as error:
            net.udp_bind(0).result(WAIT)
        assert error.value.code == "stack-shutdown"
        assert info.id not in net.sessions

        net.shutdown()  # idempotent

    def test_context_manager(self, config):
        with NetworkStack(config) as net:
            net.udp_bind(0).result(WAIT)
        assert net.is_shut_down
        assert len(net.sessions) == 0

    def test_invalid_config(self):
        with pytest.raises(ValueError):
            NetworkStack(StackConfig(transfer_buffer_size=0))
