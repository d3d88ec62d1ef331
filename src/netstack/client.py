"""
=============================================================================
CALLER-SIDE SOCKET OBJECTS
=============================================================================

NetworkStack speaks in handles and futures. These classes wrap one handle
each and give back a blocking, object-style API:

    server = TCPSocket.listen(stack, port=0, host="127.0.0.1")
    client = TCPSocket.connect(stack, "127.0.0.1", server.local_port)
    peer = server.accept()

    client.write("hello\\n")
    peer.read(until="\\n")              # → "hello"

    udp = UDPSocket.create(stack, port=0)
    udp.send("127.0.0.1", 9999, "ping")

Progress callbacks
──────────────────
``on_progress`` receives cumulative byte counts. Each call gets its own
progress id and a listener that only lets that id through; the listener
is removed when the call returns, whether it succeeded or not.
=============================================================================
"""

import itertools
import threading
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from .core.progress import READ_EVENT, WRITE_EVENT, ProgressEvent
from .core.session import Datagram, SocketInfo
from .core.transcode import OutputRepresentation, encode_base64
from .errors import SessionRoleError
from .stack import NetworkStack


ProgressCallback = Callable[[int], None]


class Socket:
    """Base class: one session handle plus its address details."""

    _progress_ids = itertools.count(1)
    _progress_lock = threading.Lock()

    def __init__(self, stack: NetworkStack, info: SocketInfo):
        self.stack = stack
        self.id = info.id
        self.local_address = info.local_address
        self.local_port = info.local_port
        self.remote_address = info.remote_address
        self.remote_port = info.remote_port

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.id} local={self.local_address}:{self.local_port}>"

    def close(self, timeout: Optional[float] = None) -> None:
        self.stack.close(self.id).result(timeout)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    @contextmanager
    def _progress(self, event_name: str, callback: Optional[ProgressCallback]) -> Iterator[Optional[str]]:
        if callback is None:
            yield None
            return

        with Socket._progress_lock:
            progress_id = str(next(Socket._progress_ids))

        def listener(event: ProgressEvent):
            if event.name == event_name and event.progress_id == progress_id:
                callback(event.transferred)

        unsubscribe = self.stack.on_progress(listener)
        try:
            yield progress_id
        finally:
            unsubscribe()


class TCPSocket(Socket):
    """A TCP connection, or a listening TCP socket."""

    def __init__(self, stack: NetworkStack, info: SocketInfo, is_server: bool = False):
        super().__init__(stack, info)
        self.is_server = is_server
        self.server_socket: Optional["TCPSocket"] = None

    @classmethod
    def connect(cls, stack: NetworkStack, host: str, port: int,
                timeout: Optional[float] = None) -> "TCPSocket":
        return cls(stack, stack.connect(host, port).result(timeout))

    @classmethod
    def listen(cls, stack: NetworkStack, port: int = 0, host: str = "0.0.0.0",
               timeout: Optional[float] = None) -> "TCPSocket":
        return cls(stack, stack.listen(host, port).result(timeout), is_server=True)

    def _check_not_server(self) -> None:
        if self.is_server:
            raise SessionRoleError(
                "This is a server socket. You can't use read() or write() on it."
            )

    def read(
        self,
        until=None,
        length: Optional[int] = None,
        save_to: Optional[str] = None,
        skip: bool = False,
        encoding: str = "utf8",
        on_progress: Optional[ProgressCallback] = None,
        timeout: Optional[float] = None,
    ) -> Optional[str]:
        """
        Read data.

        Args:
            until: Stop at this terminator (str, bytes or byte value).
            length: Read exactly this many bytes.
            save_to: Write the data to this file instead of returning it.
            skip: Read and throw the data away.
            encoding: "utf8" or "base64" for returned data.
            on_progress: Called with cumulative byte counts.
            timeout: Seconds to wait for the result.
        """
        self._check_not_server()

        if skip:
            output = OutputRepresentation.SKIP
        elif save_to:
            output = OutputRepresentation.SAVE
        else:
            output = encoding

        with self._progress(READ_EVENT, on_progress) as progress_id:
            future = self.stack.read(
                self.id,
                terminator=until,
                max_length=-1 if length is None else length,
                save_to=save_to,
                output=output,
                progress_id=progress_id,
            )
            return future.result(timeout)

    def write(
        self,
        data,
        file: bool = False,
        on_progress: Optional[ProgressCallback] = None,
        timeout: Optional[float] = None,
    ) -> None:
        """
        Write data.

        int → one byte, bytes → raw binary, str → UTF-8 text, or with
        ``file=True`` a path whose contents are streamed.
        """
        self._check_not_server()

        if file:
            payload, kind = data, "file"
        elif isinstance(data, int) and not isinstance(data, bool):
            payload, kind = data, "byte"
        elif isinstance(data, (bytes, bytearray, memoryview)):
            payload, kind = encode_base64(bytes(data)), "base64"
        else:
            payload, kind = data, "utf8"

        with self._progress(WRITE_EVENT, on_progress) as progress_id:
            self.stack.write(self.id, payload, kind, progress_id).result(timeout)

    def accept(self, timeout: Optional[float] = None) -> "TCPSocket":
        """Block until a connection arrives and return it."""
        if not self.is_server:
            raise SessionRoleError("This is not a server socket. You can't use accept() on it.")

        connection = TCPSocket(self.stack, self.stack.accept(self.id).result(timeout))
        connection.server_socket = self
        return connection


class UDPSocket(Socket):
    """A bound UDP endpoint. Payloads are UTF-8 text."""

    @classmethod
    def create(cls, stack: NetworkStack, port: int = 0, broadcast: bool = False,
               reuse: bool = False, timeout: Optional[float] = None) -> "UDPSocket":
        return cls(stack, stack.udp_bind(port, broadcast, reuse).result(timeout))

    def receive(self, timeout: Optional[float] = None) -> Datagram:
        return self.stack.udp_receive(self.id).result(timeout)

    def send(self, address: str, port: int, data: str, timeout: Optional[float] = None) -> int:
        return self.stack.udp_send(self.id, address, port, data).result(timeout)

    def join(self, address: str, timeout: Optional[float] = None) -> None:
        self.stack.udp_join(self.id, address).result(timeout)

    def leave(self, address: str, timeout: Optional[float] = None) -> None:
        self.stack.udp_leave(self.id, address).result(timeout)
