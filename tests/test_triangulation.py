"""
Tests for multi-view triangulation.

Test Coverage:
- Exact reconstruction through distorted cameras
- Quality metric behaviour with noisy and exact observations
- Degenerate geometry and insufficient views
- Batch triangulation and residuals
"""

import numpy as np
import pytest

from stereocal.calibration.errors import DegenerateGeometry, InsufficientViews, InvalidInput
from stereocal.calibration.extrinsics import RelativePosition
from stereocal.calibration.intrinsics import CameraParameters
from stereocal.data.synthetic import look_at_pose
from stereocal.triangulation import (
    CalibratedCamera,
    Observation,
    StereoTriangulator,
    TriangulatorConfig,
    closest_point_between_rays,
    distance_to_rays,
    ray_angle,
)


def _camera_at(center, params):
    """Camera with identity rotation whose aperture is at center."""
    return CalibratedCamera(params, RelativePosition(rotation=np.zeros(3), translation=-np.asarray(center)))


# =============================================================================
# Test Fixtures
# =============================================================================

@pytest.fixture
def pinhole():
    return CameraParameters(fx=1000.0, fy=1000.0, cx=320.0, cy=240.0)


@pytest.fixture
def stereo_rig(pinhole):
    """Cameras A, B and C looking along +Z, all seeing (0, 0, 5)."""
    return {
        "A": _camera_at([-1.0, 0.0, 0.0], pinhole),
        "B": _camera_at([1.0, 0.0, 0.0], pinhole),
        "C": _camera_at([0.0, -2.0, 0.0], pinhole),
    }


@pytest.fixture
def distorted_rig():
    """Two converging cameras with lens distortion."""
    params = CameraParameters(
        fx=900.0, fy=905.0, cx=319.5, cy=239.5,
        k1=-0.2, k2=0.05, p1=0.001, p2=-0.002,
    )
    target = (1.0, 2.0, 5.0)
    return {
        "left": CalibratedCamera(params, look_at_pose([-0.5, 0.0, 0.0], target)),
        "right": CalibratedCamera(params, look_at_pose([0.6, 0.1, 0.0], target)),
    }


# =============================================================================
# Test Ray Geometry
# =============================================================================

class TestRayGeometry:
    """Test the pairwise ray helpers."""

    def test_closest_point_of_skew_lines(self):
        midpoint, distance = closest_point_between_rays(
            np.array([0.0, 0.0, 0.0]), np.array([1.0, 0.0, 0.0]),
            np.array([0.0, 0.0, 1.0]), np.array([0.0, 1.0, 0.0]),
        )

        assert np.allclose(midpoint, [0.0, 0.0, 0.5])
        assert np.isclose(distance, 1.0)

    def test_intersecting_lines(self):
        midpoint, distance = closest_point_between_rays(
            np.array([-1.0, 0.0, 0.0]), np.array([1.0, 0.0, 5.0]) / np.sqrt(26.0),
            np.array([1.0, 0.0, 0.0]), np.array([-1.0, 0.0, 5.0]) / np.sqrt(26.0),
        )

        assert np.allclose(midpoint, [0.0, 0.0, 5.0])
        assert distance < 1e-12

    def test_parallel_lines(self):
        with pytest.raises(DegenerateGeometry):
            closest_point_between_rays(
                np.zeros(3), np.array([0.0, 0.0, 1.0]),
                np.array([1.0, 0.0, 0.0]), np.array([0.0, 0.0, 1.0]),
            )

    def test_ray_angle(self):
        assert np.isclose(ray_angle(np.array([1.0, 0.0, 0.0]), np.array([0.0, 1.0, 0.0])), np.pi / 2)
        assert ray_angle(np.array([0.0, 0.0, 1.0]), np.array([0.0, 0.0, -1.0])) == 0.0

    def test_distance_to_rays(self):
        origins = np.zeros((2, 3))
        directions = np.array([[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]])

        distances = distance_to_rays(np.array([3.0, 4.0, 0.0]), origins, directions)

        assert np.allclose(distances, [4.0, 3.0])


# =============================================================================
# Test Triangulation
# =============================================================================

class TestTriangulate:
    """Test single-point reconstruction."""

    def test_exact_through_distortion(self, distorted_rig):
        world = np.array([1.0, 2.0, 5.0])
        observations = {
            camera_id: camera.project(world) for camera_id, camera in distorted_rig.items()
        }

        point = StereoTriangulator(distorted_rig).triangulate(observations)

        assert np.allclose(point.xyz, world, atol=1e-4)
        assert point.quality < 1e-6
        assert point.pair_count == 1

    def test_observation_list_input(self, stereo_rig):
        observations = [
            Observation("A", (520.0, 240.0)),
            ("B", (120.0, 240.0)),
        ]

        point = StereoTriangulator(stereo_rig).triangulate(observations)

        assert np.allclose(point.xyz, [0.0, 0.0, 5.0])

    def test_noisy_pair_quality(self, stereo_rig):
        """±2 px of vertical noise puts the rays about 0.02 apart at 5 m."""
        point = StereoTriangulator(stereo_rig).triangulate({
            "A": (520.0, 242.0),
            "B": (120.0, 238.0),
        })

        assert abs(point.y) < 1e-9
        assert 0.005 < point.quality < 0.02
        assert np.isclose(point.max_pair_deviation, 0.0)

    def test_exact_third_view_improves_quality(self, stereo_rig):
        triangulator = StereoTriangulator(stereo_rig)
        noisy = {"A": (520.0, 242.0), "B": (120.0, 238.0)}
        exact_c = stereo_rig["C"].project(np.array([0.0, 0.0, 5.0]))

        two_views = triangulator.triangulate(noisy)
        three_views = triangulator.triangulate({**noisy, "C": exact_c})

        assert three_views.pair_count == 3
        assert three_views.quality < two_views.quality
        assert three_views.max_pair_deviation > 0.0

    def test_angle_weighting(self, stereo_rig):
        observations = {
            "A": (520.0, 242.0),
            "B": (120.0, 238.0),
            "C": tuple(stereo_rig["C"].project(np.array([0.0, 0.0, 5.0]))),
        }
        mean = StereoTriangulator(stereo_rig).triangulate(observations)
        weighted = StereoTriangulator(
            stereo_rig, TriangulatorConfig(weighting="angle")
        ).triangulate(observations)

        assert not np.allclose(mean.xyz, weighted.xyz, atol=1e-9)
        assert np.allclose(mean.xyz, weighted.xyz, atol=0.05)

    def test_reprojection_residuals(self, distorted_rig):
        world = np.array([1.0, 2.0, 5.0])
        observations = {
            camera_id: camera.project(world) for camera_id, camera in distorted_rig.items()
        }
        triangulator = StereoTriangulator(distorted_rig)

        residuals = triangulator.reprojection_residuals(triangulator.triangulate(observations), observations)

        assert set(residuals) == {"left", "right"}
        assert all(r < 1e-3 for r in residuals.values())

    def test_point_to_dict(self, stereo_rig):
        point = StereoTriangulator(stereo_rig).triangulate({"A": (520.0, 240.0), "B": (120.0, 240.0)})

        data = point.to_dict()

        assert set(data) == {"x", "y", "z", "quality", "pair_count", "max_pair_deviation"}
        assert np.isclose(data["z"], 5.0)


class TestTriangulationFailures:
    """Test typed failures."""

    def test_single_observation(self, stereo_rig):
        with pytest.raises(InsufficientViews) as excinfo:
            StereoTriangulator(stereo_rig).triangulate({"A": (320.0, 240.0)})

        assert excinfo.value.camera_ids == ["A"]

    def test_parallel_rays(self, stereo_rig):
        """Both cameras see the point at infinity straight ahead."""
        triangulator = StereoTriangulator(stereo_rig)

        with pytest.raises(DegenerateGeometry) as excinfo:
            triangulator.triangulate({"A": (320.0, 240.0), "B": (320.0, 240.0)})

        assert isinstance(excinfo.value, InsufficientViews)
        assert sorted(excinfo.value.camera_ids) == ["A", "B"]

    def test_degenerate_pair_skipped(self, stereo_rig):
        """A parallel pair is dropped while the remaining pairs are used."""
        point = StereoTriangulator(stereo_rig).triangulate({
            "A": (320.0, 240.0),
            "B": (320.0, 240.0),
            "C": (320.0, 640.0),
        })

        assert point.pair_count == 2

    def test_parallel_pair_skipped_without_angle_threshold(self, stereo_rig):
        triangulator = StereoTriangulator(stereo_rig, TriangulatorConfig(min_baseline_angle=0.0))

        point = triangulator.triangulate({
            "A": (320.0, 240.0),
            "B": (320.0, 240.0),
            "C": (320.0, 640.0),
        })

        assert point.pair_count == 2

    def test_only_parallel_pair_without_angle_threshold(self, stereo_rig):
        triangulator = StereoTriangulator(stereo_rig, TriangulatorConfig(min_baseline_angle=0.0))

        with pytest.raises(DegenerateGeometry):
            triangulator.triangulate({"A": (320.0, 240.0), "B": (320.0, 240.0)})

    def test_unknown_camera(self, stereo_rig):
        with pytest.raises(InvalidInput):
            StereoTriangulator(stereo_rig).triangulate({"A": (320.0, 240.0), "Z": (300.0, 240.0)})

    def test_duplicate_camera(self, stereo_rig):
        with pytest.raises(InvalidInput):
            StereoTriangulator(stereo_rig).triangulate([
                Observation("A", (320.0, 240.0)),
                Observation("A", (321.0, 240.0)),
            ])

    def test_malformed_pixel(self):
        with pytest.raises(InvalidInput):
            Observation("A", (1.0, 2.0, 3.0))
        with pytest.raises(InvalidInput):
            Observation("A", (np.nan, 2.0))

    @pytest.mark.parametrize("observations", [[1.0, 2.0], [("A", (320.0, 240.0), 0)]])
    def test_malformed_entries(self, stereo_rig, observations):
        with pytest.raises(InvalidInput):
            StereoTriangulator(stereo_rig).triangulate(observations)

    def test_non_camera_rejected(self, pinhole):
        with pytest.raises(InvalidInput):
            StereoTriangulator({"A": pinhole})


# =============================================================================
# Test Batch and Configuration
# =============================================================================

class TestBatch:
    """Test thread-pool batch triangulation."""

    def test_order_preserved(self, distorted_rig):
        worlds = [np.array([1.0, 2.0, 5.0]) + offset for offset in np.linspace(-0.3, 0.3, 12)[:, None]]
        queries = [
            {camera_id: camera.project(world) for camera_id, camera in distorted_rig.items()}
            for world in worlds
        ]

        points = StereoTriangulator(distorted_rig).triangulate_batch(queries, max_workers=4)

        assert len(points) == len(worlds)
        for point, world in zip(points, worlds):
            assert np.allclose(point.xyz, world, atol=1e-4)

    def test_progress_logging(self, stereo_rig):
        queries = [{"A": (520.0, 240.0), "B": (120.0, 240.0)}] * 3

        points = StereoTriangulator(stereo_rig).triangulate_batch(queries, log_progress=True)

        assert len(points) == 3

    def test_failure_propagates(self, stereo_rig):
        queries = [{"A": (520.0, 240.0), "B": (120.0, 240.0)}, {"A": (320.0, 240.0)}]

        with pytest.raises(InsufficientViews):
            StereoTriangulator(stereo_rig).triangulate_batch(queries)


class TestCameraSerialization:
    """Test CalibratedCamera dict conversion."""

    def test_round_trip(self, distorted_rig):
        camera = distorted_rig["left"]

        loaded = CalibratedCamera.from_dict(camera.to_dict())

        assert loaded.parameters == camera.parameters
        assert np.allclose(loaded.center, camera.center)

    def test_missing_pose(self, pinhole):
        with pytest.raises(InvalidInput):
            CalibratedCamera.from_dict({"parameters": pinhole.to_dict()})


class TestTriangulatorConfig:
    """Test triangulation settings."""

    def test_from_dict(self):
        config = TriangulatorConfig.from_dict({"weighting": "angle", "ignored": 1})

        assert config.weighting == "angle"
        assert config.min_baseline_angle == 1e-3

    def test_invalid_weighting(self):
        with pytest.raises(ValueError):
            TriangulatorConfig(weighting="median")

    def test_negative_angle(self):
        with pytest.raises(ValueError):
            TriangulatorConfig(min_baseline_angle=-1.0)
