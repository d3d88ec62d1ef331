"""
=============================================================================
ERROR TAXONOMY
=============================================================================

Every failure that reaches a caller is one of four kinds. Each exception
carries a short machine-readable ``code`` so the calling runtime can tell
them apart without parsing messages.

    ┌──────────────────────────┬──────────────────────┬──────────────────────┐
    │ Exception                │ Code                 │ Raised when          │
    ├──────────────────────────┼──────────────────────┼──────────────────────┤
    │ SessionClosedError       │ socket-closed        │ handle unknown/closed│
    │ ArgumentError            │ invalid-argument     │ bad input, no I/O yet│
    │   SessionRoleError       │ invalid-socket-role  │ wrong session role   │
    │ TransportError           │ transport-error      │ OS / socket failure  │
    │   PrematureEndOfStream.. │ premature-eof        │ peer closed mid-read │
    └──────────────────────────┴──────────────────────┴──────────────────────┘

Nothing in this package retries. A failure is reported once, through the
future of the operation that hit it.
=============================================================================
"""

from typing import Optional


class NetstackError(Exception):
    """
    Base class for every error reported by the socket stack.

    Attributes:
        message: Human readable description.
        code: Stable identifier for the error kind.
    """

    code = "netstack-error"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class SessionClosedError(NetstackError):
    """The handle does not name a live session (never opened, or closed)."""

    code = "socket-closed"

    def __init__(self, handle: Optional[int] = None, message: str = "This socket is closed."):
        super().__init__(message)
        self.handle = handle


class ArgumentError(NetstackError):
    """Malformed caller input, detected before any I/O is attempted."""

    code = "invalid-argument"


class SessionRoleError(ArgumentError):
    """The operation does not apply to this kind of session."""

    code = "invalid-socket-role"


class TransportError(NetstackError):
    """
    An underlying socket, resolver or file operation failed.

    The original ``OSError`` is chained as ``__cause__``.
    """

    code = "transport-error"

    @classmethod
    def from_os_error(cls, error: OSError) -> "TransportError":
        message = error.strerror or str(error) or type(error).__name__
        return cls(message)


class PrematureEndOfStreamError(TransportError):
    """
    The peer closed the stream before the read could complete.

    ``bytes_delivered`` tells how much had already arrived. Those bytes are
    dropped; the read fails as a whole.
    """

    code = "premature-eof"

    def __init__(self, message: str, bytes_delivered: int = 0):
        super().__init__(message)
        self.bytes_delivered = bytes_delivered
