"""
=============================================================================
SERIAL WORK QUEUE
=============================================================================

Every session owns two of these: one for reads, one for writes. A serial
queue is a task queue drained by exactly ONE worker thread, so the tasks
submitted to it run one at a time, in submission order.

    caller thread                       worker thread
    ─────────────                       ─────────────
    submit(read_a) ──┐
    submit(read_b) ──┤   ┌─────────┐    ┌─────────────────────────┐
                     └──►│ a  b    │───►│ run a → set future      │
                         └─────────┘    │ run b → set future      │
                                        └─────────────────────────┘

Why not a lock around the socket?
─────────────────────────────────
A lock would block the CALLER while another operation holds the socket.
The queue lets the caller hand work off and walk away with a Future.
The ordering guarantee is the same: never two reads (or two writes) on
one transport at once.

=============================================================================
SHUTDOWN
=============================================================================

shutdown() puts a None "poison pill" behind whatever is already queued.
Queued tasks still run (and usually fail fast because the session is
closed), then the worker exits. Submitting after shutdown() returns a
future that already failed with SessionClosedError.
=============================================================================
"""

import logging
import queue
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from ..errors import SessionClosedError


logger = logging.getLogger(__name__)


@dataclass
class Task:
    """
    A deferred call plus the future that receives its outcome.

    Attributes:
        func: The function to execute.
        args: Positional arguments for the function.
        kwargs: Keyword arguments for the function.
        future: Resolved with the return value or the raised exception.
        submitted_at: Time the task was queued.
    """

    func: Callable[..., Any]
    args: tuple = ()
    kwargs: dict = field(default_factory=dict)
    future: Future = field(default_factory=Future)
    submitted_at: float = field(default_factory=time.time)


def failed_future(error: BaseException) -> Future:
    """A future that has already failed with ``error``."""
    future: Future = Future()
    future.set_exception(error)
    return future


def resolved_future(value: Any = None) -> Future:
    future: Future = Future()
    future.set_result(value)
    return future


class SerialQueue:
    """
    Single-worker FIFO executor.

    Usage:
        q = SerialQueue("session-3-read")
        future = q.submit(sock.recv, 1024)
        data = future.result()
        q.shutdown()
    """

    def __init__(self, name: str):
        self.name = name
        self._queue: "queue.Queue[Optional[Task]]" = queue.Queue()
        self._lock = threading.Lock()  # orders submit() against shutdown()
        self._closed = False

        # Metrics
        self.tasks_completed = 0
        self.tasks_failed = 0

        # daemon=True: a stuck blocking call never keeps the process alive
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._thread.start()

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """Tasks waiting behind the one currently running."""
        return self._queue.qsize()

    def submit(self, func: Callable[..., Any], *args, **kwargs) -> Future:
        """
        Queue ``func(*args, **kwargs)`` for execution on the worker.

        Returns:
            Future resolved with the call's return value or exception.
        """
        task = Task(func=func, args=args, kwargs=kwargs)
        with self._lock:
            if self._closed:
                return failed_future(SessionClosedError(message="This socket is closed."))
            self._queue.put(task)
        return task.future

    def _run(self) -> None:
        logger.debug(f"{self.name} worker started")

        while True:
            task = self._queue.get()
            if task is None:
                break
            self._execute(task)

        self.drain()
        logger.debug(f"{self.name} worker stopped")

    def _execute(self, task: Task) -> None:
        if not task.future.set_running_or_notify_cancel():
            return  # cancelled while queued

        start_time = time.time()
        try:
            result = task.func(*task.args, **task.kwargs)
        except Exception as e:
            # The worker must outlive any single task.
            self.tasks_failed += 1
            elapsed = time.time() - start_time
            logger.debug(f"{self.name} task failed after {elapsed:.3f}s: {e!r}")
            task.future.set_exception(e)
        else:
            self.tasks_completed += 1
            task.future.set_result(result)

    def drain(self) -> int:
        """Fail any tasks left behind after the worker stopped."""
        dropped = 0
        while True:
            try:
                task = self._queue.get_nowait()
            except queue.Empty:
                return dropped
            if task is not None and task.future.set_running_or_notify_cancel():
                task.future.set_exception(SessionClosedError(message="This socket is closed."))
                dropped += 1

    def shutdown(self) -> None:
        """Stop accepting tasks; the worker exits after the queued ones. Idempotent."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._queue.put(None)

    def join(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for the worker to exit.

        Returns:
            True if the worker has stopped.
        """
        if self._thread is not threading.current_thread():
            self._thread.join(timeout)
        return not self._thread.is_alive()
