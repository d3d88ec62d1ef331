"""
=============================================================================
TRANSCODER
=============================================================================

Converts between raw bytes on the wire and the text shapes a caller can
pass around: UTF-8 text and Base64.

    READ SIDE                               WRITE SIDE
    ─────────                               ──────────
    bytes ──► OutputRepresentation          PayloadKind ──► bytes
              utf8    → str                 utf8    str   → UTF-8 bytes
              base64  → str                 base64  str   → decoded bytes
              buffer  → str (base64)        byte    int   → 1 byte
              skip    → None                file    path  → streamed
              save    → None                               (not here)

Both enums accept their string values, so ``"utf8"`` and
``OutputRepresentation.UTF8`` are interchangeable at the API boundary.
=============================================================================
"""

import base64
import binascii
from enum import Enum
from typing import Optional, Union

from ..errors import ArgumentError


class OutputRepresentation(str, Enum):
    """How a completed read is handed back to the caller."""

    UTF8 = "utf8"
    BASE64 = "base64"
    BUFFER = "buffer"  # older name for base64
    SKIP = "skip"
    SAVE = "save"

    @classmethod
    def parse(cls, value: Union[str, "OutputRepresentation"]) -> "OutputRepresentation":
        try:
            return cls(value)
        except ValueError:
            raise ArgumentError(f"Unknown encoding type requested: {value!r}") from None

    @property
    def returns_payload(self) -> bool:
        return self not in (OutputRepresentation.SKIP, OutputRepresentation.SAVE)


class PayloadKind(str, Enum):
    """What a write payload contains."""

    FILE = "file"
    BYTE = "byte"
    UTF8 = "utf8"
    BASE64 = "base64"

    @classmethod
    def parse(cls, value: Union[str, "PayloadKind"]) -> "PayloadKind":
        try:
            return cls(value)
        except ValueError:
            raise ArgumentError(f"Unknown data type specified: {value!r}") from None


def encode_text(text: str) -> bytes:
    """UTF-8 encode caller text."""
    if not isinstance(text, str):
        raise ArgumentError(f"Expected a string, got {type(text).__name__}")
    return text.encode("utf-8")


def decode_text(data: bytes) -> str:
    """UTF-8 decode wire bytes. Malformed sequences become U+FFFD."""
    return data.decode("utf-8", errors="replace")


def encode_base64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def decode_base64(text: str) -> bytes:
    if not isinstance(text, str):
        raise ArgumentError(f"Expected Base64 text, got {type(text).__name__}")
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ArgumentError(f"Invalid Base64 payload: {e}") from None


def byte_value(value) -> bytes:
    """
    Turn a single integer into one byte.

    Booleans are ints in Python, but ``True`` is never what a caller
    meant to send, so they are rejected along with everything outside
    0..255.
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise ArgumentError(f"Expected a byte value, got {type(value).__name__}")
    if not 0 <= value <= 255:
        raise ArgumentError(f"The byte specified was out of range: {value}")
    return bytes((value,))


def encode_output(data: bytes, representation: OutputRepresentation) -> Optional[str]:
    """
    Apply the requested representation to the bytes of a finished read.

    Args:
        data: Everything the read collected.
        representation: Parsed output representation.

    Returns:
        Text for utf8/base64/buffer, None for skip/save.
    """
    if representation is OutputRepresentation.UTF8:
        return decode_text(data)
    if representation in (OutputRepresentation.BASE64, OutputRepresentation.BUFFER):
        return encode_base64(data)
    if not representation.returns_payload:
        return None
    raise ArgumentError(f"Unknown encoding type requested: {representation!r}")


def decode_payload(payload, kind: PayloadKind) -> bytes:
    """
    Turn an in-memory write payload into the bytes to send.

    File payloads are streamed by the write pipeline and never pass
    through here.
    """
    if kind is PayloadKind.BYTE:
        return byte_value(payload)
    if kind is PayloadKind.UTF8:
        return encode_text(payload)
    if kind is PayloadKind.BASE64:
        return decode_base64(payload)
    raise ArgumentError(f"Payload kind {kind.value!r} cannot be decoded in memory")
