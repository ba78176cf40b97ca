"""
Tests for streaming triangulation.
"""

import threading
import time

import numpy as np
import pytest

from stereocal.calibration.errors import InsufficientViews, InvalidInput
from stereocal.calibration.extrinsics import RelativePosition
from stereocal.calibration.intrinsics import CameraParameters
from stereocal.triangulation import CalibratedCamera, ObservationStream, StereoTriangulator


@pytest.fixture
def triangulator():
    params = CameraParameters(fx=1000.0, fy=1000.0, cx=320.0, cy=240.0)
    return StereoTriangulator({
        "A": CalibratedCamera(params, RelativePosition(rotation=np.zeros(3), translation=[1.0, 0.0, 0.0])),
        "B": CalibratedCamera(params, RelativePosition(rotation=np.zeros(3), translation=[-1.0, 0.0, 0.0])),
    })


class Collector:
    """Thread-safe callback sink."""

    def __init__(self):
        self.points = {}
        self.errors = {}
        self.lock = threading.Lock()

    def on_point(self, tag, point):
        with self.lock:
            self.points[tag] = point

    def on_error(self, tag, error):
        with self.lock:
            self.errors[tag] = error


class TestObservationStream:
    """Test the background triangulation consumer."""

    def test_processes_submissions(self, triangulator):
        sink = Collector()

        with ObservationStream(triangulator, sink.on_point, poll_interval=0.01) as stream:
            for k in range(10):
                stream.submit({"A": (520.0, 240.0 + k), "B": (120.0, 240.0 + k)}, tag=k)

        assert sorted(sink.points) == list(range(10))
        assert np.allclose(sink.points[0].xyz, [0.0, 0.0, 5.0])
        assert stream.processed == 10
        assert stream.pending == 0
        assert not stream.running

    def test_failures_reported(self, triangulator):
        sink = Collector()
        stream = ObservationStream(triangulator, sink.on_point, sink.on_error, poll_interval=0.01)

        stream.start()
        stream.submit({"A": (520.0, 240.0)}, tag="lonely")
        stream.submit({"A": (520.0, 240.0), "B": (120.0, 240.0)}, tag="good")
        stream.stop(timeout=5.0)

        assert isinstance(sink.errors["lonely"], InsufficientViews)
        assert "good" in sink.points
        assert stream.failed == 1
        assert stream.processed == 1

    def test_malformed_query_does_not_stop_consumer(self, triangulator):
        sink = Collector()

        with ObservationStream(triangulator, sink.on_point, sink.on_error, poll_interval=0.01) as stream:
            stream.submit([1.0, 2.0], tag="bad")
            stream.submit({"A": (520.0, 240.0), "B": (120.0, 240.0)}, tag="good")

        assert isinstance(sink.errors["bad"], InvalidInput)
        assert "good" in sink.points
        assert stream.failed == 1
        assert stream.processed == 1

    def test_raising_callback_does_not_stop_consumer(self, triangulator):
        sink = Collector()

        def on_point(tag, point):
            if tag == 0:
                raise RuntimeError("sink unavailable")
            sink.on_point(tag, point)

        with ObservationStream(triangulator, on_point, sink.on_error, poll_interval=0.01) as stream:
            stream.submit({"A": (520.0, 240.0), "B": (120.0, 240.0)}, tag=0)
            stream.submit({"A": (520.0, 240.0), "B": (120.0, 240.0)}, tag=1)

        assert isinstance(sink.errors[0], RuntimeError)
        assert list(sink.points) == [1]
        assert stream.pending == 0
        assert stream.failed == 1
        assert stream.processed == 1

    def test_raising_error_callback_is_contained(self, triangulator):
        sink = Collector()

        def on_error(tag, error):
            raise RuntimeError("error sink unavailable")

        with ObservationStream(triangulator, sink.on_point, on_error, poll_interval=0.01) as stream:
            stream.submit({"A": (520.0, 240.0)}, tag="lonely")
            stream.submit({"A": (520.0, 240.0), "B": (120.0, 240.0)}, tag="good")

        assert "good" in sink.points
        assert stream.failed == 1

    def test_submit_after_stop(self, triangulator):
        stream = ObservationStream(triangulator, lambda tag, point: None).start()
        stream.stop(timeout=5.0)

        with pytest.raises(RuntimeError):
            stream.submit({"A": (520.0, 240.0), "B": (120.0, 240.0)})

    def test_double_start(self, triangulator):
        stream = ObservationStream(triangulator, lambda tag, point: None, poll_interval=0.01).start()
        try:
            with pytest.raises(RuntimeError):
                stream.start()
        finally:
            stream.stop(timeout=5.0)

    def test_concurrent_producers(self, triangulator):
        sink = Collector()

        def produce(stream, offset):
            for k in range(25):
                stream.submit({"A": (520.0, 240.0), "B": (120.0, 240.0)}, tag=offset + k)

        with ObservationStream(triangulator, sink.on_point, poll_interval=0.01) as stream:
            producers = [
                threading.Thread(target=produce, args=(stream, 100 * i)) for i in range(4)
            ]
            for producer in producers:
                producer.start()
            for producer in producers:
                producer.join()

        assert len(sink.points) == 100

    def test_accepted_submissions_survive_stop(self, triangulator):
        sink = Collector()
        accepted = []

        def produce(stream, offset):
            for k in range(10000):
                try:
                    stream.submit({"A": (520.0, 240.0), "B": (120.0, 240.0)}, tag=offset + k)
                except RuntimeError:
                    return
                accepted.append(offset + k)

        stream = ObservationStream(triangulator, sink.on_point, poll_interval=0.01).start()
        producers = [
            threading.Thread(target=produce, args=(stream, 100000 * i)) for i in range(4)
        ]
        for producer in producers:
            producer.start()
        time.sleep(0.02)
        stream.stop(timeout=30.0)
        for producer in producers:
            producer.join()

        assert set(sink.points) == set(accepted)
        assert stream.pending == 0
