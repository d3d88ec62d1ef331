"""
=============================================================================
PROGRESS NOTIFICATION
=============================================================================

Long reads and file writes can report how far they got. Two pieces keep
the pipeline and the caller boundary apart:

    ┌───────────────────┐  publish()  ┌──────────────────┐  listener(event)
    │  ProgressTracker  │────────────►│  ProgressChannel │─────────────────►
    │  (one per op)     │   queue     │  delivery thread │   subscribers
    └───────────────────┘             └──────────────────┘

    ProgressTracker decides WHEN:
        - only if the caller supplied a progress id
        - at most once per interval (default 500 ms)
        - only if the byte count went up since the last event

    ProgressChannel decides HOW:
        - events are queued, publish() never blocks the I/O worker
        - one delivery thread calls listeners in publish order
        - listener exceptions are logged and swallowed

=============================================================================
NO EVENTS AFTER COMPLETION
=============================================================================

A tracker is retired with finish() before its operation reports a
result. After that, update() publishes nothing, and the delivery thread
drops any event of that tracker still waiting in the queue. It checks
before each listener call, so a retired operation stops reaching
listeners mid-fan-out too.

finish() only flips a flag and never waits on the delivery thread. A
slow listener cannot delay the read or write it reports on.
=============================================================================
"""

import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple


logger = logging.getLogger(__name__)


READ_EVENT = "net.read"
WRITE_EVENT = "net.write"


@dataclass(frozen=True)
class ProgressEvent:
    """
    One progress notification.

    Attributes:
        name: READ_EVENT or WRITE_EVENT.
        progress_id: Caller-supplied correlation id.
        transferred: Cumulative bytes moved so far.
    """

    name: str
    progress_id: str
    transferred: int

    def to_wire(self) -> str:
        """Compact "<id>|<count>" form for string-only event buses."""
        return f"{self.progress_id}|{self.transferred}"


ProgressListener = Callable[[ProgressEvent], None]


class ProgressTracker:
    """Throttles progress events for a single in-flight operation."""

    def __init__(
        self,
        channel: Optional["ProgressChannel"],
        name: str,
        progress_id: Optional[str],
        interval: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.progress_id = progress_id or None
        self.interval = interval
        self._channel = channel
        self._clock = clock
        self._last_time = clock()
        self._last_reported = 0
        self._active = True

    @property
    def enabled(self) -> bool:
        return self.progress_id is not None and self._channel is not None

    @property
    def active(self) -> bool:
        return self._active

    def update(self, transferred: int) -> bool:
        """
        Report the cumulative byte count after a chunk.

        Returns:
            True if an event was published.
        """
        if not self.enabled or not self._active:
            return False

        now = self._clock()
        if now - self._last_time < self.interval:
            return False
        if transferred <= self._last_reported:
            return False

        self._last_time = now
        self._last_reported = transferred
        self._channel.publish(self, ProgressEvent(self.name, self.progress_id, transferred))
        return True

    def finish(self) -> None:
        """Retire the tracker. Returns at once, even while a listener runs."""
        self._active = False

    def dispatch(self, event: ProgressEvent, listeners: List[ProgressListener]) -> bool:
        """
        Deliver an event to listeners unless the tracker was retired.

        Returns:
            False if the tracker was retired before delivery started.
        """
        if not self.active:
            return False
        for listener in listeners:
            if not self.active:
                break
            try:
                listener(event)
            except Exception:
                logger.exception(f"Progress listener failed for {event.name} {event.progress_id}")
        return True

    def __enter__(self) -> "ProgressTracker":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.finish()
        return False


class ProgressChannel:
    """
    Fan-out of progress events to subscribed listeners.

    The delivery thread is started on the first publish and stopped by
    close().
    """

    def __init__(self):
        self._listeners: List[ProgressListener] = []
        self._listeners_lock = threading.Lock()
        self._queue: "queue.Queue[Optional[Tuple[ProgressTracker, ProgressEvent]]]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._state_lock = threading.Lock()
        self._closed = False

    def subscribe(self, listener: ProgressListener) -> Callable[[], None]:
        """
        Register a listener for every progress event.

        Returns:
            A function that removes the listener again.
        """
        with self._listeners_lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._listeners_lock:
                try:
                    self._listeners.remove(listener)
                except ValueError:
                    pass

        return unsubscribe

    @property
    def listener_count(self) -> int:
        with self._listeners_lock:
            return len(self._listeners)

    def tracker(self, name: str, progress_id: Optional[str], interval: float) -> ProgressTracker:
        return ProgressTracker(self, name, progress_id, interval)

    def publish(self, tracker: ProgressTracker, event: ProgressEvent) -> None:
        with self._state_lock:
            if self._closed:
                return
            if self._thread is None:
                self._thread = threading.Thread(
                    target=self._run, name="netstack-progress", daemon=True
                )
                self._thread.start()
            self._queue.put_nowait((tracker, event))

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is None:
                break
            tracker, event = item
            with self._listeners_lock:
                listeners = list(self._listeners)
            tracker.dispatch(event, listeners)

    def close(self, timeout: Optional[float] = 2.0) -> None:
        """Stop delivering. Queued events for live trackers are still delivered."""
        with self._state_lock:
            if self._closed:
                return
            self._closed = True
            thread = self._thread
            if thread is not None:
                self._queue.put_nowait(None)

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
