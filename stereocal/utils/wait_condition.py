"""
Wait condition that never loses a wake signal.

threading.Condition drops a notify() issued while no thread is waiting.
WaitCondition records such signals instead, so a subsequent wait() returns
immediately. What happens to repeated signals is fixed per instance:

    QueueMode.QUEUE     N wakes with no waiter let the next N waits return
                        immediately (counting semaphore).
    QueueMode.NO_QUEUE  Any number of wakes with no waiter leave one pending
                        signal, cleared by the next wait (sticky flag).

Example:
    >>> condition = WaitCondition(QueueMode.QUEUE)
    >>> condition.wake_one()
    >>> condition.wake_one()
    >>> condition.queue_length
    2
    >>> condition.wait(timeout=0)
    True
"""

import threading
import time
from enum import Enum
from typing import Optional


class QueueMode(Enum):
    """Signalling modes of WaitCondition."""

    NO_QUEUE = "no_queue"
    QUEUE = "queue"


class WaitCondition:
    """Block-until-signalled handoff between threads with missed-signal accounting."""

    def __init__(self, mode: QueueMode = QueueMode.NO_QUEUE):
        self._mode = QueueMode(mode)
        self._condition = threading.Condition(threading.Lock())
        # Threads blocked in wait() and not yet released
        self._waiters = 0
        # Wake signals issued while nobody was waiting
        self._signals = 0
        # Releases granted to blocked waiters but not yet consumed
        self._handoff = 0

    @property
    def queue_mode(self) -> QueueMode:
        return self._mode

    @property
    def queue_length(self) -> int:
        """Number of pending wake signals."""
        with self._condition:
            return self._signals

    @property
    def waiter_count(self) -> int:
        """Number of threads currently blocked in wait()."""
        with self._condition:
            return self._waiters

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for a wake signal.

        Returns immediately if a signal is pending. Otherwise blocks until
        wake_one()/wake_all() or until timeout seconds have elapsed.

        Args:
            timeout: Maximum wait in seconds; None waits forever.

        Returns:
            bool: True if woken, False if the wait timed out.
        """
        with self._condition:
            if self._signals > 0:
                self._signals -= 1
                return True

            end = None if timeout is None else time.monotonic() + timeout
            self._waiters += 1
            while self._handoff == 0:
                remaining = None if end is None else end - time.monotonic()
                if remaining is not None and remaining <= 0:
                    self._waiters -= 1
                    return False
                self._condition.wait(remaining)

            self._handoff -= 1
            return True

    def wake_one(self) -> None:
        """
        Wake one waiting thread, or record the signal if none is waiting.
        """
        with self._condition:
            if self._waiters > 0:
                self._waiters -= 1
                self._handoff += 1
                self._condition.notify()
            elif self._mode is QueueMode.QUEUE:
                self._signals += 1
            else:
                self._signals = 1

    def wake_all(self) -> None:
        """
        Wake every waiting thread and clear pending signals.

        Does not build up the signal queue.
        """
        with self._condition:
            self._handoff += self._waiters
            self._waiters = 0
            self._signals = 0
            self._condition.notify_all()

    def __repr__(self) -> str:
        return (
            f"WaitCondition(mode={self._mode.name}, pending={self._signals}, "
            f"waiters={self._waiters})"
        )
