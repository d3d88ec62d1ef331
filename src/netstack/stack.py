"""
=============================================================================
NETWORK STACK - OPERATION ENTRY POINTS
=============================================================================

This is the surface the calling runtime talks to. Every method takes
plain arguments, returns a ``concurrent.futures.Future`` immediately and
never blocks on I/O.

    caller                 NetworkStack                 Session worker
    ──────                 ────────────                 ──────────────
    read(3, "\\n") ───────► lookup handle 3
                           validate arguments
                           submit to read_queue ──────► run_read(...)
    ◄──────── Future                                         │
                                                             ▼
    future.result() ◄──────────────────────────────── set_result("abc")

=============================================================================
WHICH QUEUE?
=============================================================================

    write_queue   connect, listen, udp_bind (setup of a NEW session)
                  write, udp_send, udp_join, udp_leave, close

    read_queue    read, udp_receive, accept

close() shares the write queue, so it can never overtake or interleave
with a write. A read or accept blocked on the same transport is woken by
the close and fails with its own error.

accept() runs on the listener's read queue. A listener never reads, so
that queue is otherwise idle, and a close() on the write queue can still
reach the socket and unblock a pending accept().

=============================================================================
FAILURES
=============================================================================

Every failure is delivered through the returned future:

    unknown / closed handle  → SessionClosedError   (before queueing)
    malformed arguments      → ArgumentError        (before queueing)
    OSError on the worker    → TransportError       (one seam: _run_operation)

A failed task never kills its worker; the next queued task still runs.
=============================================================================
"""

import atexit
import logging
import socket
import struct
import threading
import time
from concurrent.futures import Future
from typing import Callable, Optional, Tuple

from .config import StackConfig
from .core.pipeline import (
    DatagramPayload,
    ReadRequest,
    WriteRequest,
    receive_datagram,
    run_read,
    run_write,
)
from .core.progress import READ_EVENT, WRITE_EVENT, ProgressChannel, ProgressListener
from .core.registry import SessionTable
from .core.serial_queue import failed_future, resolved_future
from .core.session import Datagram, Session, SessionRole, SocketInfo
from .core.transcode import decode_text, encode_text
from .errors import (
    ArgumentError,
    NetstackError,
    SessionClosedError,
    TransportError,
)
from .oplog import OperationLog, emit


logger = logging.getLogger(__name__)


def _check_port(port) -> int:
    if isinstance(port, bool) or not isinstance(port, int) or not 0 <= port <= 65535:
        raise ArgumentError(f"Invalid port: {port!r}. Must be 0-65535.")
    return port


def _check_host(host) -> str:
    if not isinstance(host, str) or not host:
        raise ArgumentError(f"Invalid host: {host!r}")
    return host


class NetworkStack:
    """
    Handle-based TCP/UDP socket service.

    =========================================================================
    USAGE
    =========================================================================

        with NetworkStack() as stack:
            info = stack.connect("example.com", 80).result()
            stack.write(info.id, "GET / HTTP/1.0\\r\\n\\r\\n").result()
            head = stack.read(info.id, terminator="\\r\\n\\r\\n").result()
            stack.close(info.id).result()

    =========================================================================
    """

    def __init__(
        self,
        config: Optional[StackConfig] = None,
        sessions: Optional[SessionTable] = None,
        progress: Optional[ProgressChannel] = None,
    ):
        self.config = config or StackConfig()
        self.config.validate()  # Fail-fast on invalid config

        self.sessions = sessions or SessionTable()
        self.progress = progress or ProgressChannel()

        self._close_lock = threading.Lock()
        self._shut_down = False
        self._exit_hook_installed = False

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    @property
    def is_shut_down(self) -> bool:
        return self._shut_down

    def on_progress(self, listener: ProgressListener) -> Callable[[], None]:
        """Subscribe to every progress event. Returns an unsubscribe function."""
        return self.progress.subscribe(listener)

    def close_all(self) -> int:
        """Close every open session right away. Returns how many were closed."""
        return self.sessions.close_all()

    def shutdown(self) -> None:
        """
        Tear the stack down.

        1. Refuse new operations
        2. Close every session out-of-band (unblocks stuck reads/accepts)
        3. Stop progress delivery

        Safe to call more than once.
        """
        if self._shut_down:
            return
        self._shut_down = True

        logger.info("Shutting down network stack...")
        self.sessions.close_all()
        self.progress.close()
        logger.info("Network stack stopped")

    def install_exit_hook(self) -> None:
        """Run shutdown() at interpreter exit."""
        if not self._exit_hook_installed:
            atexit.register(self.shutdown)
            self._exit_hook_installed = True

    def __enter__(self) -> "NetworkStack":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()
        return False

    # =========================================================================
    # SETUP: connect / listen / udp_bind
    # =========================================================================

    def connect(self, host: str, port: int) -> Future:
        """
        Open a TCP connection.

        Resolves with a SocketInfo carrying the new handle plus the local
        and remote address and port.
        """
        try:
            self._ensure_running()
            _check_host(host)
            _check_port(port)
        except NetstackError as e:
            return failed_future(e)

        return self._setup(SessionRole.CONNECTING, "connect", self._open_stream, host, port)

    def listen(self, host: str = "0.0.0.0", port: int = 0) -> Future:
        """
        Open a listening TCP socket. Port 0 picks a free port.

        Resolves with a SocketInfo without remote fields.
        """
        try:
            self._ensure_running()
            _check_host(host)
            _check_port(port)
        except NetstackError as e:
            return failed_future(e)

        return self._setup(SessionRole.LISTENING, "listen", self._open_listener, host, port)

    def udp_bind(self, port: int = 0, broadcast: bool = False, reuse_address: bool = False) -> Future:
        """Open a UDP endpoint bound to ``port`` on all interfaces."""
        try:
            self._ensure_running()
            _check_port(port)
        except NetstackError as e:
            return failed_future(e)

        return self._setup(
            SessionRole.DATAGRAM, "udp_bind", self._open_datagram,
            port, bool(broadcast), bool(reuse_address),
        )

    def _setup(self, role: SessionRole, name: str, opener: Callable, *args) -> Future:
        # The new session's own write queue runs its setup.
        session = Session(role)
        return session.write_queue.submit(
            self._run_operation, name, session, self._establish, session, opener, *args
        )

    def _establish(self, session: Session, opener: Callable, *args) -> Tuple[SocketInfo, int]:
        try:
            transport = opener(*args)
        except Exception:
            session.stop()
            raise
        return self._register(session, transport), 0

    def _register(self, session: Session, transport: socket.socket) -> SocketInfo:
        """Attach a live transport and publish the session under a new handle."""
        try:
            session.attach(transport)
            self._ensure_running()
            self.sessions.allocate(session)
            return session.info()
        except Exception:
            if session.handle is not None:
                self.sessions.remove(session.handle)
            try:
                session.close_transport()
            except TransportError:
                transport.close()
            session.stop()
            raise

    def _open_stream(self, host: str, port: int) -> socket.socket:
        sock = socket.create_connection((host, port), timeout=self.config.connect_timeout)
        sock.settimeout(None)
        if self.config.tcp_nodelay:
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        return sock

    def _open_listener(self, host: str, port: int) -> socket.socket:
        family, sock_type, proto, _, address = socket.getaddrinfo(
            host, port, type=socket.SOCK_STREAM, flags=socket.AI_PASSIVE
        )[0]

        sock = socket.socket(family, sock_type, proto)
        try:
            # Rebinding right after a restart would otherwise hit TIME_WAIT.
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(address)
            sock.listen(self.config.listen_backlog)
        except OSError:
            sock.close()
            raise

        logger.info(f"Listening on {address[0]}:{sock.getsockname()[1]}")
        return sock

    def _open_datagram(self, port: int, broadcast: bool, reuse_address: bool) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            if reuse_address:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
                try:
                    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
                except (AttributeError, OSError) as e:
                    logger.debug(f"SO_REUSEPORT not set on UDP port {port}: {e!r}")
            if broadcast:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            sock.bind(("0.0.0.0", port))
        except OSError:
            sock.close()
            raise
        return sock

    # =========================================================================
    # ACCEPT
    # =========================================================================

    def accept(self, handle: int) -> Future:
        """
        Wait for the next incoming connection on a listening session.

        Resolves with the SocketInfo of a brand-new session. The listener
        stays open for further accepts.
        """
        try:
            session = self._lookup(handle)
            session.require_listener()
        except NetstackError as e:
            return failed_future(e)

        return session.read_queue.submit(
            self._run_operation, "accept", session, self._accept, session
        )

    def _accept(self, session: Session) -> Tuple[SocketInfo, int]:
        listener = session.require_listener()
        conn, address = listener.accept()
        conn.settimeout(None)
        if self.config.tcp_nodelay:
            conn.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

        logger.debug(f"Session {session.handle} accepted {address[0]}:{address[1]}")
        return self._register(Session(SessionRole.CONNECTING), conn), 0

    # =========================================================================
    # READ / WRITE
    # =========================================================================

    def read(
        self,
        handle: int,
        terminator=None,
        max_length: Optional[int] = -1,
        save_to: Optional[str] = None,
        output: str = "utf8",
        progress_id: Optional[str] = None,
    ) -> Future:
        """
        Read from a connected stream or datagram endpoint. On a datagram
        endpoint each read consumes exactly one datagram.

        Args:
            handle: Session handle.
            terminator: Read until this byte (int), string or bytes.
            max_length: Read exactly this many bytes (wins over terminator).
            save_to: Stream the bytes into this file; resolves None.
            output: utf8 | base64 | buffer | skip | save.
            progress_id: Correlation id for ``net.read`` progress events.

        Resolves with text, or None for file/skip reads.
        """
        try:
            session = self._lookup(handle)
            session.require_readable()
            request = ReadRequest.build(terminator, max_length, save_to, output, progress_id)
        except NetstackError as e:
            return failed_future(e)

        return session.read_queue.submit(
            self._run_operation, "read", session, self._read, session, request
        )

    def _read(self, session: Session, request: ReadRequest) -> Tuple[Optional[str], int]:
        transport = session.require_readable()
        if session.role is SessionRole.DATAGRAM:
            transport = self._next_datagram(session, transport)

        tracker = self.progress.tracker(READ_EVENT, request.progress_id, self.config.progress_interval)
        with tracker:
            result = run_read(transport, request, tracker, self.config.transfer_buffer_size)

        if isinstance(transport, DatagramPayload) and transport.remaining:
            logger.debug(
                f"Session {session.handle} read left {transport.remaining} bytes of its datagram unread"
            )
        return result

    def _next_datagram(self, session: Session, sock: socket.socket) -> DatagramPayload:
        try:
            payload = receive_datagram(sock, self.config.datagram_buffer_size)
        except OSError:
            if session.closed:
                raise SessionClosedError(session.handle) from None
            raise
        if session.closed:
            raise SessionClosedError(session.handle)
        return payload

    def write(
        self,
        handle: int,
        payload,
        kind: str = "utf8",
        progress_id: Optional[str] = None,
    ) -> Future:
        """
        Write to a connected stream.

        Args:
            handle: Session handle.
            payload: File path, byte value, text, or Base64 text.
            kind: file | byte | utf8 | base64.
            progress_id: Correlation id for ``net.write`` events (file only).

        Resolves with None once every byte was handed to the OS.
        """
        try:
            session = self._lookup(handle)
            session.require_stream()
            request = WriteRequest.build(payload, kind, progress_id)
        except NetstackError as e:
            return failed_future(e)

        return session.write_queue.submit(
            self._run_operation, "write", session, self._write, session, request
        )

    def _write(self, session: Session, request: WriteRequest) -> Tuple[None, int]:
        transport = session.require_stream()
        tracker = self.progress.tracker(WRITE_EVENT, request.progress_id, self.config.progress_interval)
        with tracker:
            sent = run_write(transport, request, tracker, self.config.transfer_buffer_size)
        return None, sent

    # =========================================================================
    # CLOSE
    # =========================================================================

    def close(self, handle: int) -> Future:
        """
        Close a session. Idempotent: unknown or closed handles resolve None.

        Queued behind any pending writes on the same session.
        """
        session = self.sessions.get(handle)
        if session is None:
            return resolved_future(None)

        with self._close_lock:
            if session.close_future is None:
                queued = session.write_queue.submit(
                    self._run_operation, "close", session, self._close, session, handle
                )
                session.close_future = _ignore_closed(queued)
            return session.close_future

    def _close(self, session: Session, handle: int) -> Tuple[None, int]:
        try:
            session.close_transport()
        finally:
            # Even a failed close must not leave the handle pointing at a
            # dead transport.
            self.sessions.remove(handle)
            session.stop()
        return None, 0

    # =========================================================================
    # DATAGRAMS
    # =========================================================================

    def udp_send(self, handle: int, address: str, port: int, text: str) -> Future:
        """Send ``text`` as one UTF-8 datagram. Resolves with the byte count sent."""
        try:
            session = self._lookup(handle)
            session.require_datagram()
            _check_host(address)
            _check_port(port)
            data = encode_text(text)
        except NetstackError as e:
            return failed_future(e)

        return session.write_queue.submit(
            self._run_operation, "udp_send", session, self._udp_send, session, data, (address, port)
        )

    def _udp_send(self, session: Session, data: bytes, target: tuple) -> Tuple[int, int]:
        sent = session.require_datagram().sendto(data, target)
        return sent, sent

    def udp_receive(self, handle: int) -> Future:
        """Wait for one datagram. Resolves with a Datagram."""
        try:
            session = self._lookup(handle)
            session.require_datagram()
        except NetstackError as e:
            return failed_future(e)

        return session.read_queue.submit(
            self._run_operation, "udp_receive", session, self._udp_receive, session
        )

    def _udp_receive(self, session: Session) -> Tuple[Datagram, int]:
        sock = session.require_datagram()
        try:
            data, sender = sock.recvfrom(self.config.datagram_buffer_size)
        except OSError:
            if session.closed:
                raise SessionClosedError(session.handle) from None
            raise
        if session.closed:
            # Woken by close(), not by a datagram.
            raise SessionClosedError(session.handle)
        return Datagram(decode_text(data), sender[0], sender[1]), len(data)

    def udp_join(self, handle: int, address: str) -> Future:
        """Join a multicast group."""
        return self._membership(handle, address, socket.IP_ADD_MEMBERSHIP, "udp_join")

    def udp_leave(self, handle: int, address: str) -> Future:
        """Leave a multicast group."""
        return self._membership(handle, address, socket.IP_DROP_MEMBERSHIP, "udp_leave")

    def _membership(self, handle: int, address: str, option: int, name: str) -> Future:
        try:
            session = self._lookup(handle)
            session.require_datagram()
            _check_host(address)
        except NetstackError as e:
            return failed_future(e)

        return session.write_queue.submit(
            self._run_operation, name, session, self._set_membership, session, address, option
        )

    def _set_membership(self, session: Session, address: str, option: int) -> Tuple[None, int]:
        sock = session.require_datagram()
        group = socket.gethostbyname(address)
        request = struct.pack("4s4s", socket.inet_aton(group), socket.inet_aton("0.0.0.0"))
        sock.setsockopt(socket.IPPROTO_IP, option, request)
        return None, 0

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _ensure_running(self) -> None:
        if self._shut_down:
            raise NetstackError("The network stack has been shut down.", code="stack-shutdown")

    def _lookup(self, handle: int) -> Session:
        self._ensure_running()
        return self.sessions.lookup(handle)

    def _run_operation(self, name: str, session: Session, func: Callable, *args):
        """
        Execute one queued unit: translate OS errors, log the outcome.

        ``func`` returns (result, bytes_moved); only the result reaches
        the caller.
        """
        start_time = time.perf_counter()
        try:
            try:
                result, amount = func(*args)
            except OSError as e:
                raise TransportError.from_os_error(e) from e
        except NetstackError as e:
            elapsed = (time.perf_counter() - start_time) * 1000
            emit(OperationLog(session.handle, name, e.code, 0, elapsed, e.message),
                 self.config.log_format)
            raise
        except Exception:
            logger.exception(f"Unexpected failure in {name} on session {session.handle}")
            raise

        elapsed = (time.perf_counter() - start_time) * 1000
        emit(OperationLog(session.handle, name, "ok", amount, elapsed), self.config.log_format)
        return result


def _ignore_closed(future: Future) -> Future:
    """Chain ``future`` so a SessionClosedError outcome becomes None."""
    chained: Future = Future()

    def _relay(done: Future):
        if done.cancelled():
            chained.set_result(None)
            return
        error = done.exception()
        if error is None or isinstance(error, SessionClosedError):
            chained.set_result(None if error is not None else done.result())
        else:
            chained.set_exception(error)

    future.add_done_callback(_relay)
    return chained
