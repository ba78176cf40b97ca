"""
Tests for the projection pipeline.

Test Coverage:
- Known 3D point → expected 2D pixel
- Points behind the camera
- Pixel → normalized → pixel consistency
- Viewing rays
"""

import numpy as np
import pytest

from stereocal.calibration.errors import DegenerateProjection, InvalidInput
from stereocal.calibration.extrinsics import RelativePosition
from stereocal.calibration.intrinsics import CameraParameters
from stereocal.calibration.projection import (
    apply_distortion,
    normalized_to_pixel,
    perspective_projection,
    pixel_to_normalized,
    pixel_to_normalized_distorted,
    pixel_to_ray,
    project_points,
    reprojection_errors,
    world_to_camera,
)


# =============================================================================
# Test Fixtures
# =============================================================================

@pytest.fixture
def pinhole():
    """Distortion-free camera, fx = fy = 1000, principal point (320, 240)."""
    return CameraParameters(fx=1000.0, fy=1000.0, cx=320.0, cy=240.0)


@pytest.fixture
def distorted():
    """Camera with radial and tangential distortion."""
    return CameraParameters(
        fx=900.0, fy=880.0, cx=319.5, cy=239.5,
        k1=-0.2, k2=0.05, p1=0.002, p2=-0.001,
    )


@pytest.fixture
def pose():
    return RelativePosition(rotation=[0.05, -0.1, 0.02], translation=[0.2, -0.1, 3.0])


# =============================================================================
# Test Forward Pipeline
# =============================================================================

class TestForwardProjection:
    """Test world → pixel projection."""

    def test_optical_axis_projects_to_principal_point(self, pinhole):
        """(0, 0, 1000) at identity pose lands exactly on (320, 240)."""
        pixel = project_points(np.array([0.0, 0.0, 1000.0]), pinhole, RelativePosition.identity())

        assert pixel[0] == 320.0
        assert pixel[1] == 240.0

    def test_offset_point(self, pinhole):
        """u = fx * X/Z + cx."""
        pixel = project_points(np.array([1.0, -2.0, 10.0]), pinhole)

        assert np.allclose(pixel, [420.0, 40.0])

    def test_batch_shape(self, pinhole):
        points = np.array([
            [0, 0, 10],
            [1, 0, 10],
            [0, 1, 10],
        ], dtype=float)

        pixels = project_points(points, pinhole)

        assert pixels.shape == (3, 2)
        assert np.allclose(pixels[1], [420.0, 240.0])
        assert np.allclose(pixels[2], [320.0, 340.0])

    def test_depth_scaling(self, pinhole):
        """Points on the same ray project to the same pixel."""
        near = project_points(np.array([2.0, 1.0, 10.0]), pinhole)
        far = project_points(np.array([4.0, 2.0, 20.0]), pinhole)

        assert np.allclose(near, far)

    def test_world_to_camera(self, pose):
        point = np.array([0.3, 0.4, 0.5])
        expected = pose.rotation_matrix @ point + pose.translation

        assert np.allclose(world_to_camera(point, pose), expected)

    def test_point_behind_camera(self):
        points = np.array([
            [0.0, 0.0, 5.0],
            [0.0, 0.0, -1.0],
            [1.0, 1.0, 0.0],
        ])

        with pytest.raises(DegenerateProjection) as excinfo:
            perspective_projection(points)

        assert list(excinfo.value.indices) == [1, 2]

    def test_distortion_changes_off_axis_points_only(self, distorted):
        on_axis = apply_distortion(np.array([0.0, 0.0]), distorted)
        off_axis = apply_distortion(np.array([0.3, 0.2]), distorted)

        assert np.allclose(on_axis, [0.0, 0.0])
        assert not np.allclose(off_axis, [0.3, 0.2])

    def test_radial_distortion_formula(self):
        """x_d = x (1 + k1 r² + k2 r⁴) for pure radial distortion."""
        point = np.array([0.3, 0.4])  # r² = 0.25
        distorted = apply_distortion(point, [0.1, 0.2, 0.0, 0.0])

        assert np.allclose(distorted, point * (1 + 0.1 * 0.25 + 0.2 * 0.0625))

    def test_tangential_distortion_formula(self):
        x, y = 0.3, 0.4
        r2 = x * x + y * y
        p1, p2 = 0.01, -0.02
        distorted = apply_distortion(np.array([x, y]), [0.0, 0.0, p1, p2])

        expected = [
            x + 2 * p1 * x * y + p2 * (r2 + 2 * x * x),
            y + p1 * (r2 + 2 * y * y) + 2 * p2 * x * y,
        ]
        assert np.allclose(distorted, expected)

    def test_wrong_shape(self, pinhole):
        with pytest.raises(InvalidInput):
            project_points(np.zeros((4, 2)), pinhole)


# =============================================================================
# Test Inverse Pipeline
# =============================================================================

class TestInverseProjection:
    """Test pixel → normalized coordinates and rays."""

    def test_affine_inverse_is_exact(self, distorted):
        points = np.array([[0.1, -0.2], [0.0, 0.0], [-0.3, 0.25]])
        pixels = normalized_to_pixel(points, distorted)

        assert np.allclose(pixel_to_normalized_distorted(pixels, distorted), points, atol=1e-15)

    def test_pixel_round_trip(self, distorted, pose):
        world = np.array([[0.1, 0.2, 0.0], [-0.4, 0.3, 0.5], [0.0, 0.0, 0.0]])
        pixels = project_points(world, distorted, pose)

        normalized = pixel_to_normalized(pixels, distorted)
        expected = perspective_projection(world_to_camera(world, pose))

        assert np.allclose(normalized, expected, atol=1e-9)

    def test_ray_passes_through_world_point(self, distorted, pose):
        world = np.array([0.25, -0.15, 0.4])
        pixel = project_points(world, distorted, pose)

        origin, direction = pixel_to_ray(pixel, distorted, pose)
        offset = world - origin
        perpendicular = offset - (offset @ direction) * direction

        assert np.isclose(np.linalg.norm(direction), 1.0)
        assert np.allclose(origin, pose.camera_center)
        assert np.linalg.norm(perpendicular) < 1e-8
        assert offset @ direction > 0

    def test_batch_rays(self, pinhole, pose):
        pixels = np.array([[320.0, 240.0], [100.0, 50.0]])
        origins, directions = pixel_to_ray(pixels, pinhole, pose)

        assert origins.shape == (2, 3)
        assert directions.shape == (2, 3)
        assert np.allclose(np.linalg.norm(directions, axis=1), 1.0)

    def test_reprojection_errors(self, pinhole):
        world = np.array([[0.0, 0.0, 10.0], [1.0, 0.0, 10.0]])
        observed = np.array([[321.0, 240.0], [420.0, 238.0]])

        errors = reprojection_errors(world, observed, pinhole, RelativePosition.identity())

        assert np.allclose(errors, [[-1.0, 0.0], [0.0, 2.0]])

    def test_reprojection_errors_count_mismatch(self, pinhole):
        with pytest.raises(InvalidInput):
            reprojection_errors(
                np.zeros((3, 3)) + [0, 0, 1], np.zeros((2, 2)), pinhole, RelativePosition.identity()
            )
