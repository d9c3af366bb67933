"""
Supervisor
==========

A group of threads that live and die together.

Any managed task that raises kills the group; the first reason wins and
becomes the group's terminal error. Tasks watch ``dying`` and stop at their
next check point. ``dead`` is set once the group is dying and every managed
task has returned.
"""

import logging
import threading
from typing import Callable, Optional

from .errors import SourceError, SourceStopped

logger = logging.getLogger(__name__)


class WaitGroup:
    """Counts outstanding tasks; ``wait`` blocks until the count is zero."""

    def __init__(self):
        self._count = 0
        self._cond = threading.Condition()

    def add(self, n: int = 1):
        with self._cond:
            self._count += n
            if self._count < 0:
                raise ValueError("negative WaitGroup counter")
            if self._count == 0:
                self._cond.notify_all()

    def done(self):
        self.add(-1)

    def wait(self, timeout: Optional[float] = None) -> bool:
        with self._cond:
            return self._cond.wait_for(lambda: self._count == 0, timeout=timeout)


class Supervisor:
    """Cancellation scope shared by the scheduler and all table readers."""

    def __init__(self, name: str = "bigquery-source"):
        self.name = name
        self.dying = threading.Event()
        self.dead = threading.Event()
        self._lock = threading.Lock()
        self._alive = 0
        self._err: Optional[BaseException] = None

    @property
    def err(self) -> Optional[BaseException]:
        with self._lock:
            return self._err

    @property
    def alive(self) -> bool:
        return not self.dead.is_set()

    def go(self, fn: Callable, *args, name: Optional[str] = None) -> threading.Thread:
        """
        Run ``fn(*args)`` in a managed thread.

        Raises:
            RuntimeError: if the group is already dead
        """
        with self._lock:
            if self.dead.is_set():
                raise RuntimeError(f"supervisor {self.name} is dead")
            self._alive += 1

        thread = threading.Thread(
            target=self._run, args=(fn, args), name=name or f"{self.name}-task", daemon=True
        )
        thread.start()
        return thread

    def _run(self, fn: Callable, args: tuple):
        try:
            fn(*args)
        except Exception as e:
            extra = {"error": e.to_dict()} if isinstance(e, SourceError) else None
            logger.error(
                f"Task {threading.current_thread().name} failed: {e}", exc_info=True, extra=extra
            )
            self.kill(e)
        finally:
            with self._lock:
                self._alive -= 1
                finished = self._alive == 0
            if finished:
                # every task returned: the group dies, cleanly unless killed
                self.dying.set()
                self.dead.set()

    def kill(self, reason: Optional[BaseException] = None):
        """Put the group in the dying state. The first reason is kept."""
        with self._lock:
            if self._err is None and reason is not None:
                self._err = reason
            no_tasks = self._alive == 0
        self.dying.set()
        if no_tasks:
            self.dead.set()

    def stop(self):
        """Kill the group as part of a normal teardown."""
        self.kill(SourceStopped())

    def wait(self, timeout: Optional[float] = None) -> Optional[BaseException]:
        """Wait for the group to die and return its terminal error."""
        self.dead.wait(timeout)
        return self.err
