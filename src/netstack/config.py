"""
=============================================================================
STACK CONFIGURATION
=============================================================================

Centralized settings for the socket stack.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   1. Command-line arguments   python -m netstack --log-level DEBUG  │
    │   2. Environment variables    NETSTACK_LOG_LEVEL=DEBUG              │
    │   3. Defaults in this dataclass                                     │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The buffer sizes bound how much memory one in-flight operation may hold
at once. They do not limit how much a fixed-length read can return.
=============================================================================
"""

import os
from dataclasses import dataclass
from typing import Optional


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_optional_float(name: str) -> Optional[float]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return None
    return float(value)


@dataclass
class StackConfig:
    """
    Configuration for a NetworkStack.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    TRANSFER SETTINGS
    - transfer_buffer_size, datagram_buffer_size

    PROGRESS
    - progress_interval

    TCP SETTINGS
    - listen_backlog, connect_timeout, tcp_nodelay

    LOGGING
    - log_level, log_format

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # TRANSFER SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    transfer_buffer_size: int = 512 * 1024
    """
    Size of the bounded buffer used for stream reads and file streaming.
    A best-effort read never returns more than this many bytes.
    """

    datagram_buffer_size: int = 32 * 1024
    """
    Receive buffer for one datagram. Longer datagrams are truncated by
    the operating system.
    """

    # ─────────────────────────────────────────────────────────────────────
    # PROGRESS
    # ─────────────────────────────────────────────────────────────────────

    progress_interval: float = 0.5
    """Minimum seconds between two progress events of one operation."""

    # ─────────────────────────────────────────────────────────────────────
    # TCP SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    listen_backlog: int = 10
    """Pending-connection queue length for listening sessions."""

    connect_timeout: Optional[float] = None
    """
    Seconds to wait for a TCP connect. None = wait as long as the
    operating system does. Established streams are always blocking.
    """

    tcp_nodelay: bool = True
    """Disable Nagle's algorithm on connected streams."""

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"
    """Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)."""

    log_format: str = "text"
    """Operation log format: 'text' or 'json'."""

    @classmethod
    def from_env(cls) -> "StackConfig":
        """
        Create configuration from environment variables.

        NETSTACK_TRANSFER_BUFFER   Stream transfer buffer in bytes
        NETSTACK_DATAGRAM_BUFFER   Datagram receive buffer in bytes
        NETSTACK_PROGRESS_INTERVAL Seconds between progress events
        NETSTACK_BACKLOG           Listen backlog
        NETSTACK_CONNECT_TIMEOUT   Connect timeout in seconds (empty = none)
        NETSTACK_TCP_NODELAY       1/0
        NETSTACK_LOG_LEVEL         Logging level
        NETSTACK_LOG_FORMAT        text or json
        """
        defaults = cls()
        return cls(
            transfer_buffer_size=int(
                os.getenv("NETSTACK_TRANSFER_BUFFER", str(defaults.transfer_buffer_size))
            ),
            datagram_buffer_size=int(
                os.getenv("NETSTACK_DATAGRAM_BUFFER", str(defaults.datagram_buffer_size))
            ),
            progress_interval=float(
                os.getenv("NETSTACK_PROGRESS_INTERVAL", str(defaults.progress_interval))
            ),
            listen_backlog=int(os.getenv("NETSTACK_BACKLOG", str(defaults.listen_backlog))),
            connect_timeout=_env_optional_float("NETSTACK_CONNECT_TIMEOUT"),
            tcp_nodelay=_env_bool("NETSTACK_TCP_NODELAY", defaults.tcp_nodelay),
            log_level=os.getenv("NETSTACK_LOG_LEVEL", defaults.log_level),
            log_format=os.getenv("NETSTACK_LOG_FORMAT", defaults.log_format),
        )

    def validate(self) -> None:
        """Fail fast on values the stack cannot run with."""
        if self.transfer_buffer_size < 1:
            raise ValueError("transfer_buffer_size must be >= 1")

        if self.datagram_buffer_size < 1:
            raise ValueError("datagram_buffer_size must be >= 1")

        if self.progress_interval < 0:
            raise ValueError("progress_interval must be >= 0")

        if self.listen_backlog < 0:
            raise ValueError("listen_backlog must be >= 0")

        if self.connect_timeout is not None and self.connect_timeout <= 0:
            raise ValueError("connect_timeout must be > 0")

        if self.log_format not in ("text", "json"):
            raise ValueError(f"Invalid log_format: {self.log_format}. Must be 'text' or 'json'.")
