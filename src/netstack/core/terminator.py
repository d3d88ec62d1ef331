"""
=============================================================================
TERMINATOR MATCHING
=============================================================================

A delimited read pulls one byte at a time off the stream and feeds it to
a TerminatorMatcher. The matcher keeps a single cursor into the pattern:

    pattern = b"\\r\\n"

    byte   cursor   action
    ────   ──────   ─────────────────────────────────────────────
    'a'    0 → 0    no match, emit b"a"
    '\\r'   0 → 1    tentative match, emit nothing
    'b'    1 → 0    match broken, emit held b"\\r" then b"b"
    '\\r'   0 → 1    tentative match
    '\\n'   1 → 2    complete, stop; terminator is NOT emitted

=============================================================================
NOT OVERLAP-AWARE
=============================================================================

When a match breaks, the breaking byte is emitted as data and scanning
restarts after it. It is never re-tested as the first byte of a new
match. So pattern b"\\r\\n" against b"\\r\\r\\n" does not terminate, and
pattern b"ab" against b"aab" does not terminate either.
=============================================================================
"""

from typing import Optional, Union

from ..errors import ArgumentError


TerminatorSpec = Union[None, int, str, bytes, bytearray]


def resolve_terminator(value: TerminatorSpec) -> Optional[bytes]:
    """
    Resolve the caller's terminator argument into concrete bytes.

    Args:
        value: None, a byte value (0..255), a non-empty str (UTF-8
               encoded) or non-empty bytes.

    Returns:
        The terminator bytes, or None when no terminator was given.

    Raises:
        ArgumentError: For any other shape, an out-of-range byte, or an
                       empty terminator.
    """
    if value is None:
        return None

    if isinstance(value, bool):
        raise ArgumentError("Unknown data type for terminator. Specify a string or a byte.")

    if isinstance(value, int):
        if not 0 <= value <= 255:
            raise ArgumentError(f"The byte specified as the terminator was out of range: {value}")
        pattern = bytes((value,))
    elif isinstance(value, str):
        pattern = value.encode("utf-8")
    elif isinstance(value, (bytes, bytearray)):
        pattern = bytes(value)
    else:
        raise ArgumentError("Unknown data type for terminator. Specify a string or a byte.")

    if not pattern:
        raise ArgumentError("Terminator was empty.")
    return pattern


class TerminatorMatcher:
    """
    Incremental single-cursor matcher for one terminator pattern.

    Usage:
        matcher = TerminatorMatcher(b"\\n")
        for b in stream_bytes:
            sink.write(matcher.feed(b))
            if matcher.matched:
                break
    """

    def __init__(self, pattern: bytes):
        if not pattern:
            raise ArgumentError("Terminator was empty.")
        self.pattern = bytes(pattern)
        self._cursor = 0

    @property
    def cursor(self) -> int:
        """Number of pattern bytes tentatively matched so far."""
        return self._cursor

    @property
    def matched(self) -> bool:
        return self._cursor >= len(self.pattern)

    def feed(self, byte: int) -> bytes:
        """
        Consume one byte.

        Returns:
            The bytes that are now known to be data, in stream order.
            Empty while a match is in progress or once it completes.
        """
        if self.matched:
            raise RuntimeError("Terminator already matched; call reset() first")

        if byte == self.pattern[self._cursor]:
            self._cursor += 1
            return b""

        # Held prefix first, then the byte that broke the match.
        held = self.pattern[:self._cursor]
        self._cursor = 0
        return held + bytes((byte,))

    def reset(self) -> None:
        self._cursor = 0
