"""
Streaming triangulation.

Producers push observation sets from any thread; a single consumer thread
triangulates them in arrival order and hands each Point3D to a callback.

The consumer drains every pending query each time it wakes, so several
submissions between two wakes need only one pending signal. The stream
therefore uses a NO_QUEUE WaitCondition.
"""

import threading
from collections import deque
from typing import Any, Callable, Deque, Optional, Tuple

from ..calibration.errors import CalibrationError
from ..utils.logger import LoggerMixin
from ..utils.wait_condition import QueueMode, WaitCondition
from .triangulator import ObservationInput, Point3D, StereoTriangulator


PointCallback = Callable[[Any, Point3D], None]
ErrorCallback = Callable[[Any, Exception], None]


class ObservationStream(LoggerMixin):
    """
    Background consumer that triangulates submitted observations.

    Example:
        >>> with ObservationStream(triangulator, on_point) as stream:
        ...     stream.submit({"left": (410.0, 230.0), "right": (290.0, 231.0)}, tag=17)
    """

    def __init__(
        self,
        triangulator: StereoTriangulator,
        callback: PointCallback,
        error_callback: Optional[ErrorCallback] = None,
        poll_interval: float = 0.5,
    ):
        """
        Initialize stream.

        Args:
            triangulator: Shared triangulator.
            callback: Called as callback(tag, point) for each success.
            error_callback: Called as error_callback(tag, error) when a query or
                the point callback raises; failures are logged either way.
            poll_interval: Seconds between checks of the stop flag while idle.
        """
        self.triangulator = triangulator
        self.callback = callback
        self.error_callback = error_callback
        self.poll_interval = poll_interval

        self._pending: Deque[Tuple[Any, ObservationInput]] = deque()
        self._lock = threading.Lock()
        self._wake = WaitCondition(QueueMode.NO_QUEUE)
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self.processed = 0
        self.failed = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    def start(self) -> "ObservationStream":
        """Start the consumer thread."""
        if self.running:
            raise RuntimeError("Stream is already running")
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="observation-stream", daemon=True)
        self._thread.start()
        self.logger.info("Observation stream started")
        return self

    def submit(self, observations: ObservationInput, tag: Any = None) -> None:
        """
        Queue one point for triangulation.

        Args:
            observations: Observations of the point.
            tag: Caller identifier passed back to the callbacks.
        """
        with self._lock:
            if self._stop.is_set():
                raise RuntimeError("Stream is stopped")
            self._pending.append((tag, observations))
        self._wake.wake_one()

    def stop(self, timeout: Optional[float] = None) -> None:
        """
        Process queued work and stop the consumer thread.

        Args:
            timeout: Seconds to wait for the thread to finish.
        """
        with self._lock:
            self._stop.set()
        self._wake.wake_one()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                self.logger.warning("Observation stream did not stop within timeout")
            else:
                self._thread = None
        self.logger.info(
            f"Observation stream stopped: {self.processed} processed, {self.failed} failed"
        )

    def _run(self) -> None:
        while True:
            self._wake.wait(self.poll_interval)
            self._drain()
            if self._stop.is_set():
                self._drain()
                return

    def _drain(self) -> None:
        while True:
            with self._lock:
                if not self._pending:
                    return
                tag, observations = self._pending.popleft()

            try:
                point = self.triangulator.triangulate(observations)
                self.callback(tag, point)
            except CalibrationError as e:
                self.logger.warning(f"Triangulation of {tag!r} failed: {e}")
                self._report_failure(tag, e)
            except Exception as e:
                self.logger.exception(f"Query {tag!r} raised {type(e).__name__}")
                self._report_failure(tag, e)
            else:
                self.processed += 1

    def _report_failure(self, tag: Any, error: Exception) -> None:
        self.failed += 1
        if self.error_callback is None:
            return
        try:
            self.error_callback(tag, error)
        except Exception:
            self.logger.exception(f"Error callback raised for {tag!r}")

    def __enter__(self):
        return self.start()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
