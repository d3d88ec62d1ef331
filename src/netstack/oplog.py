"""
=============================================================================
OPERATION LOGGING
=============================================================================

Every queued operation that finishes, successfully or not, leaves one
structured record on the ``netstack.ops`` logger.

    TEXT FORMAT (default):
    ┌─────────────────────────────────────────────────────────────────────┐
    │ #3 read ok 1024B 12.40ms                                            │
    │ #3 read premature-eof 0B 3.02ms Socket closed before any data ...   │
    └─────────────────────────────────────────────────────────────────────┘

    JSON FORMAT (for log aggregators):
    ┌─────────────────────────────────────────────────────────────────────┐
    │ {"handle": 3, "operation": "read", "outcome": "ok",                 │
    │  "bytes": 1024, "duration_ms": 12.4, "error": null}                 │
    └─────────────────────────────────────────────────────────────────────┘

Payload contents are never logged, only sizes.

The logger is namespaced so it can be tuned on its own:
    logging.getLogger("netstack.ops").setLevel(logging.WARNING)
=============================================================================
"""

import json
import logging
from dataclasses import dataclass
from typing import Optional

from .config import StackConfig


logger = logging.getLogger("netstack.ops")


@dataclass
class OperationLog:
    """
    Structured log entry for one completed operation.

    handle:       Session handle, None for setup that never got one
    operation:    connect, read, write, close, udp_send, ...
    outcome:      "ok" or the error code
    bytes:        Payload bytes moved, 0 when not applicable
    duration_ms:  Time spent executing on the worker
    error:        Error message on failure
    """

    handle: Optional[int]
    operation: str
    outcome: str
    bytes: int
    duration_ms: float
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "handle": self.handle,
            "operation": self.operation,
            "outcome": self.outcome,
            "bytes": self.bytes,
            "duration_ms": round(self.duration_ms, 2),
            "error": self.error,
        }

    def to_text(self) -> str:
        handle = "-" if self.handle is None else f"#{self.handle}"
        line = f"{handle} {self.operation} {self.outcome} {self.bytes}B {self.duration_ms:.2f}ms"
        if self.error:
            line += f" {self.error}"
        return line


def emit(entry: OperationLog, log_format: str = "text") -> None:
    """Write an entry. Successes log at DEBUG, failures at INFO."""
    level = logging.DEBUG if entry.outcome == "ok" else logging.INFO
    if not logger.isEnabledFor(level):
        return

    if log_format == "json":
        logger.log(level, json.dumps(entry.to_dict()))
    else:
        logger.log(level, entry.to_text())


def setup_logging(config: StackConfig) -> None:
    """Configure root logging for command-line use."""
    level = getattr(logging, config.log_level.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    logging.getLogger("netstack").setLevel(level)
