"""
=============================================================================
OUTPUT SINKS
=============================================================================

Where the bytes of a read go. The read pipeline is written once against
OutputSink and never cares which variant it got.

    ┌──────────────┬─────────────────────────┬──────────────────────────┐
    │ Sink         │ write(data)             │ finalize()               │
    ├──────────────┼─────────────────────────┼──────────────────────────┤
    │ MemorySink   │ append to bytearray     │ collected bytes          │
    │ FileSink     │ write to open file      │ close file, None         │
    │ DiscardSink  │ count and drop          │ None                     │
    └──────────────┴─────────────────────────┴──────────────────────────┘

Sinks are context managers. Leaving the block without finalize() (the
read failed) releases the sink and its contents are thrown away.
=============================================================================
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union

from .transcode import OutputRepresentation


logger = logging.getLogger(__name__)


class OutputSink(ABC):
    """Write target for one read operation."""

    def __init__(self):
        self.bytes_written = 0
        self._finalized = False

    @abstractmethod
    def write(self, data: bytes) -> None:
        """Append bytes. Called zero or more times."""

    @abstractmethod
    def finalize(self) -> Optional[bytes]:
        """
        Finish the sink.

        Returns:
            The collected bytes for in-memory sinks, None otherwise.
        """

    def abort(self) -> None:
        """Release resources after a failed read."""

    def __enter__(self) -> "OutputSink":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if not self._finalized:
            self.abort()
        return False


class MemorySink(OutputSink):
    """Accumulates everything in memory."""

    def __init__(self):
        super().__init__()
        self._buffer = bytearray()

    def write(self, data: bytes) -> None:
        if data:
            self._buffer += data
            self.bytes_written += len(data)

    def finalize(self) -> bytes:
        self._finalized = True
        return bytes(self._buffer)

    def abort(self) -> None:
        self._buffer.clear()


class FileSink(OutputSink):
    """
    Streams bytes into a file, truncating it first.

    The file is opened on construction so a bad path fails before the
    first byte is read from the socket.
    """

    def __init__(self, path: Union[str, Path]):
        super().__init__()
        self.path = Path(path)
        self._file = open(self.path, "wb")

    def write(self, data: bytes) -> None:
        if data:
            self._file.write(data)
            self.bytes_written += len(data)

    def finalize(self) -> None:
        self._finalized = True
        self._file.close()
        return None

    def abort(self) -> None:
        # The partial file stays on disk; the caller owns the path.
        self._file.close()
        logger.debug(f"Read into {self.path} aborted after {self.bytes_written} bytes")


class DiscardSink(OutputSink):
    """Counts bytes and drops them."""

    def write(self, data: bytes) -> None:
        self.bytes_written += len(data)

    def finalize(self) -> None:
        self._finalized = True
        return None


def open_sink(
    save_to: Optional[Union[str, Path]],
    representation: OutputRepresentation,
) -> OutputSink:
    """Pick the sink for a read request."""
    if save_to:
        return FileSink(save_to)
    if representation is OutputRepresentation.SKIP:
        return DiscardSink()
    return MemorySink()
