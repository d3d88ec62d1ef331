"""
Unit tests for terminator resolution and matching.
"""

import pytest

from netstack.core.terminator import TerminatorMatcher, resolve_terminator
from netstack.errors import ArgumentError


def run(pattern: bytes, data: bytes):
    """Feed data through a matcher. Returns (emitted, consumed, matched)."""
    matcher = TerminatorMatcher(pattern)
    emitted = b""
    consumed = 0
    for byte in data:
        emitted += matcher.feed(byte)
        consumed += 1
        if matcher.matched:
            break
    return emitted, consumed, matcher.matched


class TestResolveTerminator:
    """Tests for turning caller arguments into terminator bytes."""

    def test_none(self):
        assert resolve_terminator(None) is None

    def test_byte_value(self):
        assert resolve_terminator(10) == b"\n"
        assert resolve_terminator(0) == b"\x00"

    def test_string_is_utf8(self):
        assert resolve_terminator("\r\n") == b"\r\n"
        assert resolve_terminator("€") == "€".encode("utf-8")

    def test_bytes(self):
        assert resolve_terminator(b"END") == b"END"
        assert resolve_terminator(bytearray(b"!")) == b"!"

    @pytest.mark.parametrize("value", ["", b""])
    def test_empty(self, value):
        """Test that an empty terminator is refused."""
        with pytest.raises(ArgumentError):
            resolve_terminator(value)

    @pytest.mark.parametrize("value", [256, -1])
    def test_byte_out_of_range(self, value):
        with pytest.raises(ArgumentError):
            resolve_terminator(value)

    @pytest.mark.parametrize("value", [True, 1.5, ["\n"]])
    def test_wrong_type(self, value):
        with pytest.raises(ArgumentError):
            resolve_terminator(value)


class TestTerminatorMatcher:
    """Tests for the single-cursor matcher."""

    def test_simple_match(self):
        """Test that data before the terminator is emitted, the terminator is not."""
        emitted, consumed, matched = run(b"\n", b"abc\ndef")
        assert matched
        assert emitted == b"abc"
        assert consumed == 4

    def test_multi_byte_match(self):
        emitted, consumed, matched = run(b"\r\n", b"ab\r\ncd")
        assert matched
        assert emitted == b"ab"
        assert consumed == 4

    def test_broken_match_emits_prefix_then_byte(self):
        """Test that a broken partial match releases the held bytes in stream order."""
        emitted, _, matched = run(b"\r\n", b"a\rb\r\n")
        assert matched
        assert emitted == b"a\rb"

    def test_not_overlap_aware_crlf(self):
        """Test that \\r\\r\\n does not terminate on \\r\\n."""
        emitted, consumed, matched = run(b"\r\n", b"\r\r\n")
        assert not matched
        assert emitted == b"\r\r\n"
        assert consumed == 3

    def test_not_overlap_aware_repeated_prefix(self):
        """Test that aab does not terminate on ab."""
        emitted, _, matched = run(b"ab", b"aab")
        assert not matched
        assert emitted == b"aab"

    def test_later_match_after_miss(self):
        """Test that a full occurrence after a miss still terminates."""
        emitted, _, matched = run(b"ab", b"aabab")
        assert matched
        assert emitted == b"aab"

    def test_cursor_tracks_partial_match(self):
        matcher = TerminatorMatcher(b"END")
        matcher.feed(ord("E"))
        matcher.feed(ord("N"))
        assert matcher.cursor == 2
        assert not matcher.matched

    def test_feed_after_match(self):
        matcher = TerminatorMatcher(b"!")
        matcher.feed(ord("!"))
        with pytest.raises(RuntimeError):
            matcher.feed(ord("x"))

    def test_reset(self):
        matcher = TerminatorMatcher(b"!")
        matcher.feed(ord("!"))
        matcher.reset()
        assert not matcher.matched
        assert matcher.feed(ord("x")) == b"x"

    def test_empty_pattern(self):
        with pytest.raises(ArgumentError):
            TerminatorMatcher(b"")
