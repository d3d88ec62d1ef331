"""
=============================================================================
READ / WRITE PIPELINES
=============================================================================

These functions run INSIDE a session's queue worker. They block on the
socket freely; nobody else is waiting on this thread.

=============================================================================
READ: THREE TERMINATION POLICIES
=============================================================================

Picked by precedence, first match wins:

    1. FIXED LENGTH     max_length >= 0
       ─────────────
       recv_into() a bounded buffer until exactly max_length bytes are in
       the sink. TCP hands data over in arbitrary pieces:

           want 10:   recv → 4   recv → 1   recv → 5   done
                      [abcd]     [e]        [fghij]

       EOF before the count is reached fails the read.

    2. TERMINATOR       terminator given, no length
       ──────────
       recv(1) at a time through a TerminatorMatcher. One byte per call
       so nothing past the terminator is consumed: the next read starts
       exactly after it.

    3. SINGLE CHUNK     neither
       ────────────
       Exactly one recv_into(). Whatever arrived is the result, possibly
       less than the buffer. EOF with nothing read fails the read.

Then the sink is finalized. File and discard sinks produce no payload;
an in-memory sink's bytes are transcoded to utf8 or base64.

=============================================================================
READING FROM A DATAGRAM ENDPOINT
=============================================================================

Every recv on a UDP socket takes a whole datagram and drops whatever
did not fit. So a datagram read receives exactly ONE datagram into a
DatagramPayload first, and the policies then run over those bytes:

    datagram b"abc\nxyz"   terminator "\n"  → "abc"
    datagram b"hello"      length 8         → PrematureEndOfStreamError

The next read always starts at the next datagram. Bytes a policy did
not consume are discarded with the datagram.

=============================================================================
WRITE: FOUR PAYLOAD KINDS
=============================================================================

    file    stream the file through a bounded buffer, with progress
    byte    one byte, 0..255
    utf8    encoded text
    base64  decoded binary

In-memory payloads are converted when the request is built, so bad input
fails before the write is even queued.
=============================================================================
"""

import logging
import os
import socket
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from ..errors import ArgumentError, PrematureEndOfStreamError
from .progress import ProgressTracker
from .sinks import OutputSink, open_sink
from .terminator import TerminatorMatcher, TerminatorSpec, resolve_terminator
from .transcode import OutputRepresentation, PayloadKind, decode_payload, encode_output


logger = logging.getLogger(__name__)


class ReadPolicy(Enum):
    FIXED_LENGTH = "fixed-length"
    TERMINATOR = "terminator"
    CHUNK = "chunk"


@dataclass
class ReadRequest:
    """
    A validated, ready-to-run read.

    Build it with ReadRequest.build(), which turns raw caller arguments
    into concrete values or raises ArgumentError.
    """

    terminator: Optional[bytes] = None
    max_length: int = -1
    save_to: Optional[str] = None
    representation: OutputRepresentation = OutputRepresentation.UTF8
    progress_id: Optional[str] = None

    @classmethod
    def build(
        cls,
        terminator: TerminatorSpec = None,
        max_length: Optional[int] = -1,
        save_to: Optional[Union[str, os.PathLike]] = None,
        output: Union[str, OutputRepresentation] = OutputRepresentation.UTF8,
        progress_id: Optional[str] = None,
    ) -> "ReadRequest":
        representation = OutputRepresentation.parse(output)

        if max_length is None:
            max_length = -1
        if isinstance(max_length, bool) or not isinstance(max_length, int):
            raise ArgumentError(f"max_length must be an integer, got {type(max_length).__name__}")

        # The terminator is only consulted without a length, but a
        # malformed one is still a caller bug.
        pattern = resolve_terminator(terminator)

        path = os.fspath(save_to) if save_to else None
        if representation is OutputRepresentation.SAVE and not path:
            raise ArgumentError("Output 'save' needs a destination path.")

        return cls(
            terminator=pattern,
            max_length=max_length,
            save_to=path,
            representation=representation,
            progress_id=progress_id or None,
        )

    @property
    def policy(self) -> ReadPolicy:
        if self.max_length >= 0:
            return ReadPolicy.FIXED_LENGTH
        if self.terminator is not None:
            return ReadPolicy.TERMINATOR
        return ReadPolicy.CHUNK


@dataclass
class WriteRequest:
    """A validated write. ``data`` is set for every kind except file."""

    kind: PayloadKind
    data: Optional[bytes] = None
    path: Optional[str] = None
    progress_id: Optional[str] = None

    @classmethod
    def build(
        cls,
        payload,
        kind: Union[str, PayloadKind] = PayloadKind.UTF8,
        progress_id: Optional[str] = None,
    ) -> "WriteRequest":
        kind = PayloadKind.parse(kind)

        if kind is PayloadKind.FILE:
            if not isinstance(payload, (str, os.PathLike)) or not os.fspath(payload):
                raise ArgumentError("A file write needs a file path.")
            return cls(kind=kind, path=os.fspath(payload), progress_id=progress_id or None)

        return cls(kind=kind, data=decode_payload(payload, kind), progress_id=progress_id or None)


# =============================================================================
# READ POLICIES
# =============================================================================

class DatagramPayload:
    """
    One received datagram, read through the recv calls the read policies
    make on a stream socket.

    Reading past the end behaves like a stream that was closed.
    """

    def __init__(self, data: bytes):
        self._view = memoryview(bytes(data))
        self._offset = 0

    @property
    def remaining(self) -> int:
        return len(self._view) - self._offset

    def recv(self, bufsize: int) -> bytes:
        chunk = self._view[self._offset:self._offset + bufsize]
        self._offset += len(chunk)
        return bytes(chunk)

    def recv_into(self, buffer, nbytes: int = 0) -> int:
        wanted = nbytes or len(buffer)
        chunk = self._view[self._offset:self._offset + wanted]
        buffer[:len(chunk)] = chunk
        self._offset += len(chunk)
        return len(chunk)


def receive_datagram(transport: socket.socket, buffer_size: int = 32 * 1024) -> DatagramPayload:
    """Wait for the next datagram. Longer datagrams are truncated by the OS."""
    return DatagramPayload(transport.recv(buffer_size))


def read_exactly(
    transport: socket.socket,
    length: int,
    sink: OutputSink,
    tracker: Optional[ProgressTracker] = None,
    buffer_size: int = 512 * 1024,
) -> int:
    """
    Copy exactly ``length`` bytes from the transport into the sink.

    Returns:
        Bytes read (always ``length``).

    Raises:
        PrematureEndOfStreamError: The stream ended first.
    """
    amount_read = 0
    if length == 0:
        return 0

    buffer = bytearray(min(buffer_size, length))
    view = memoryview(buffer)

    while amount_read < length:
        wanted = min(len(buffer), length - amount_read)
        received = transport.recv_into(view, wanted)
        if received == 0:
            raise PrematureEndOfStreamError(
                "Socket closed before all data could be read.", amount_read
            )

        sink.write(bytes(view[:received]))
        amount_read += received

        if tracker is not None:
            tracker.update(amount_read)

    return amount_read


def read_until(
    transport: socket.socket,
    terminator: bytes,
    sink: OutputSink,
    tracker: Optional[ProgressTracker] = None,
) -> int:
    """
    Read byte by byte until ``terminator`` has been seen.

    The terminator is consumed from the stream but never written to the
    sink.

    Returns:
        Bytes consumed from the transport, terminator included.

    Raises:
        PrematureEndOfStreamError: The stream ended before the terminator.
    """
    matcher = TerminatorMatcher(terminator)
    amount_read = 0

    while not matcher.matched:
        byte = transport.recv(1)
        if not byte:
            raise PrematureEndOfStreamError(
                "Socket closed before all data could be read.", amount_read
            )

        amount_read += 1
        sink.write(matcher.feed(byte[0]))

        if tracker is not None:
            tracker.update(amount_read)

    return amount_read


def read_chunk(
    transport: socket.socket,
    sink: OutputSink,
    buffer_size: int = 512 * 1024,
) -> int:
    """
    One best-effort recv.

    Raises:
        PrematureEndOfStreamError: The stream ended with nothing to read.
    """
    buffer = bytearray(buffer_size)
    received = transport.recv_into(buffer)
    if received == 0:
        raise PrematureEndOfStreamError("Socket closed before any data could be read.", 0)

    sink.write(bytes(buffer[:received]))
    return received


def run_read(
    transport: socket.socket,
    request: ReadRequest,
    tracker: Optional[ProgressTracker] = None,
    buffer_size: int = 512 * 1024,
) -> tuple:
    """
    Execute a read request end to end.

    Returns:
        (payload, bytes_read). payload is None for file and skip reads.
    """
    policy = request.policy

    with open_sink(request.save_to, request.representation) as sink:
        if policy is ReadPolicy.FIXED_LENGTH:
            amount = read_exactly(transport, request.max_length, sink, tracker, buffer_size)
        elif policy is ReadPolicy.TERMINATOR:
            amount = read_until(transport, request.terminator, sink, tracker)
        else:
            amount = read_chunk(transport, sink, buffer_size)
        data = sink.finalize()

    if data is None or not request.representation.returns_payload:
        return None, amount
    return encode_output(data, request.representation), amount


# =============================================================================
# WRITE
# =============================================================================

def write_file(
    transport: socket.socket,
    path: str,
    tracker: Optional[ProgressTracker] = None,
    buffer_size: int = 512 * 1024,
) -> int:
    """Stream a file to the transport. Returns bytes sent."""
    amount_sent = 0
    buffer = bytearray(buffer_size)
    view = memoryview(buffer)

    with open(path, "rb") as source:
        while True:
            count = source.readinto(buffer)
            if not count:
                break

            transport.sendall(view[:count])
            amount_sent += count

            if tracker is not None:
                tracker.update(amount_sent)

    logger.debug(f"Streamed {amount_sent} bytes from {path}")
    return amount_sent


def run_write(
    transport: socket.socket,
    request: WriteRequest,
    tracker: Optional[ProgressTracker] = None,
    buffer_size: int = 512 * 1024,
) -> int:
    """Execute a write request. Returns bytes sent."""
    if request.kind is PayloadKind.FILE:
        return write_file(transport, request.path, tracker, buffer_size)

    # sendall() loops until every byte is out or the socket fails.
    transport.sendall(request.data)
    return len(request.data)
