"""
=============================================================================
CORE SOCKET SESSION ENGINE
=============================================================================

The pieces NetworkStack assembles for every operation, leaves first:

    ┌─────────────────────────────────────────────────────────────────────┐
    │  transcode    bytes ⇄ UTF-8 text / Base64                           │
    │  terminator   single-cursor delimiter matcher                       │
    │  sinks        memory / file / discard write targets                 │
    │  progress     throttled progress events + delivery channel          │
    │  serial_queue one-worker FIFO executor                              │
    │  session      transport + read queue + write queue                  │
    │  registry     handle → session table                                │
    │  pipeline     read policies and write payloads                      │
    └─────────────────────────────────────────────────────────────────────┘
=============================================================================
"""

from .pipeline import ReadPolicy, ReadRequest, WriteRequest, run_read, run_write
from .progress import ProgressChannel, ProgressEvent, ProgressTracker
from .registry import SessionTable
from .serial_queue import SerialQueue
from .session import Datagram, Session, SessionRole, SocketInfo
from .sinks import DiscardSink, FileSink, MemorySink, OutputSink
from .terminator import TerminatorMatcher, resolve_terminator
from .transcode import OutputRepresentation, PayloadKind

__all__ = [
    "Datagram",
    "DiscardSink",
    "FileSink",
    "MemorySink",
    "OutputRepresentation",
    "OutputSink",
    "PayloadKind",
    "ProgressChannel",
    "ProgressEvent",
    "ProgressTracker",
    "ReadPolicy",
    "ReadRequest",
    "SerialQueue",
    "Session",
    "SessionRole",
    "SessionTable",
    "SocketInfo",
    "TerminatorMatcher",
    "WriteRequest",
    "resolve_terminator",
    "run_read",
    "run_write",
]
