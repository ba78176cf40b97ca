"""
Tests for camera parameters and poses.

Test Coverage:
- CameraParameters: validation, K matrix, vector/dict conversion
- Pixel convention: image center
- RelativePosition: Rodrigues, matrix conversion, inverse, composition
"""

import numpy as np
import pytest

from stereocal.calibration.errors import InvalidInput
from stereocal.calibration.extrinsics import RelativePosition, is_rotation_matrix, rodrigues
from stereocal.calibration.intrinsics import CameraParameters, image_center


# =============================================================================
# Test Fixtures
# =============================================================================

@pytest.fixture
def params():
    """Typical intrinsics with distortion."""
    return CameraParameters(
        fx=800.0, fy=790.0, cx=319.5, cy=239.5,
        k1=-0.1, k2=0.02, p1=0.001, p2=-0.002,
    )


@pytest.fixture
def pose():
    """A generic world-to-camera pose."""
    return RelativePosition(rotation=[0.1, -0.2, 0.3], translation=[0.5, -0.1, 2.0])


# =============================================================================
# Test CameraParameters
# =============================================================================

class TestCameraParameters:
    """Test intrinsic parameter container."""

    def test_intrinsic_matrix_structure(self, params):
        """K has zero skew and the focal lengths and principal point in place."""
        K = params.K

        assert K.shape == (3, 3)
        assert K[0, 0] == 800.0
        assert K[1, 1] == 790.0
        assert K[0, 2] == 319.5
        assert K[1, 2] == 239.5
        assert K[0, 1] == 0.0
        assert K[2, 2] == 1.0

    def test_intrinsic_matrix_inverse(self, params):
        """K @ K^-1 = I."""
        assert np.allclose(params.K @ params.K_inv, np.eye(3), atol=1e-12)

    def test_non_positive_focal_length_rejected(self):
        with pytest.raises(InvalidInput):
            CameraParameters(fx=0.0, fy=100.0, cx=0.0, cy=0.0)
        with pytest.raises(InvalidInput):
            CameraParameters(fx=100.0, fy=-1.0, cx=0.0, cy=0.0)

    def test_non_finite_rejected(self):
        with pytest.raises(InvalidInput):
            CameraParameters(fx=100.0, fy=100.0, cx=np.nan, cy=0.0)

    def test_invalid_input_is_value_error(self):
        """InvalidInput can be caught as a ValueError."""
        with pytest.raises(ValueError):
            CameraParameters(fx=-5.0, fy=100.0, cx=0.0, cy=0.0)

    def test_vector_round_trip(self, params):
        vector = params.to_vector()

        assert vector.shape == (8,)
        assert CameraParameters.from_vector(vector) == params

    def test_from_vector_wrong_length(self):
        with pytest.raises(InvalidInput):
            CameraParameters.from_vector([1.0, 2.0, 3.0])

    def test_dict_round_trip(self, params):
        assert CameraParameters.from_dict(params.to_dict()) == params

    def test_from_dict_defaults_distortion(self):
        loaded = CameraParameters.from_dict({"fx": 500, "fy": 500, "cx": 10, "cy": 20})

        assert not loaded.has_distortion
        assert loaded.k1 == 0.0

    def test_from_dict_missing_focal_length(self):
        with pytest.raises(InvalidInput):
            CameraParameters.from_dict({"fy": 500, "cx": 10, "cy": 20})

    def test_from_matrix(self, params):
        loaded = CameraParameters.from_matrix(params.K, params.distortion_coefficients)

        assert loaded == params

    def test_without_distortion(self, params):
        plain = params.without_distortion()

        assert not plain.has_distortion
        assert plain.fx == params.fx and plain.cy == params.cy

    def test_fov(self):
        """FOV = 2 * atan(w / 2f)."""
        plain = CameraParameters(fx=100.0, fy=100.0, cx=49.5, cy=49.5)
        fov_h, fov_v = plain.get_fov(100, 100)

        assert np.isclose(fov_h, 2 * np.arctan(0.5))
        assert np.isclose(fov_v, 2 * np.arctan(0.5))

    def test_parameters_are_immutable(self, params):
        with pytest.raises(AttributeError):
            params.fx = 1.0


class TestImageCenter:
    """Test the top-left-pixel-center convention."""

    def test_even_size(self):
        assert image_center(640, 480) == (319.5, 239.5)

    def test_odd_size(self):
        assert image_center(3, 5) == (1.0, 2.0)

    def test_invalid_size(self):
        with pytest.raises(InvalidInput):
            image_center(0, 480)


# =============================================================================
# Test RelativePosition
# =============================================================================

class TestRodrigues:
    """Test axis-angle to matrix conversion."""

    def test_zero_rotation_is_identity(self):
        assert np.allclose(rodrigues(np.zeros(3)), np.eye(3))

    def test_rotation_about_z(self):
        R = rodrigues([0.0, 0.0, np.pi / 2])
        expected = np.array([
            [0, -1, 0],
            [1, 0, 0],
            [0, 0, 1],
        ], dtype=float)

        assert np.allclose(R, expected, atol=1e-12)

    def test_tiny_rotation_is_proper(self):
        R = rodrigues([1e-14, 0.0, 0.0])

        assert is_rotation_matrix(R)

    @pytest.mark.parametrize("rotation", [
        [0.3, -0.2, 0.1],
        [np.pi - 1e-3, 0.0, 0.0],
        [1.0, 2.0, -0.5],
    ])
    def test_result_is_proper_rotation(self, rotation):
        R = rodrigues(rotation)

        assert np.allclose(R.T @ R, np.eye(3), atol=1e-12)
        assert np.isclose(np.linalg.det(R), 1.0)


class TestRelativePosition:
    """Test world-to-camera poses."""

    def test_identity(self):
        identity = RelativePosition.identity()
        points = np.array([[1.0, 2.0, 3.0], [-1.0, 0.5, 4.0]])

        assert np.allclose(identity.transform_points(points), points)

    def test_transform_single_point(self):
        pose = RelativePosition(rotation=[0.0, 0.0, np.pi / 2], translation=[1.0, 0.0, 0.0])
        transformed = pose.transform_points(np.array([1.0, 0.0, 0.0]))

        assert transformed.shape == (3,)
        assert np.allclose(transformed, [1.0, 1.0, 0.0])

    def test_from_matrix_round_trip(self, pose):
        rebuilt = RelativePosition.from_matrix(pose.rotation_matrix, pose.translation)

        assert np.allclose(rebuilt.rotation, pose.rotation)
        assert np.allclose(rebuilt.translation, pose.translation)

    def test_from_matrix_rejects_reflection(self):
        reflection = np.diag([1.0, 1.0, -1.0])

        with pytest.raises(InvalidInput):
            RelativePosition.from_matrix(reflection, np.zeros(3))

    def test_camera_center(self, pose):
        """The camera center maps to the camera-frame origin."""
        center = pose.camera_center

        assert np.allclose(pose.transform_points(center), 0.0, atol=1e-12)

    def test_inverse(self, pose):
        points = np.array([[0.1, 0.2, 0.3], [1.0, -2.0, 5.0]])
        back = pose.inverse().transform_points(pose.transform_points(points))

        assert np.allclose(back, points)

    def test_compose(self, pose):
        other = RelativePosition(rotation=[-0.3, 0.0, 0.2], translation=[0.0, 1.0, 0.0])
        points = np.array([[0.1, 0.2, 0.3], [1.0, -2.0, 5.0]])

        composed = pose.compose(other).transform_points(points)
        sequential = other.transform_points(pose.transform_points(points))

        assert np.allclose(composed, sequential)

    def test_rotate_to_world(self, pose):
        direction = np.array([0.0, 0.0, 1.0])

        assert np.allclose(pose.rotate_to_world(direction), pose.rotation_matrix.T @ direction)

    def test_vector_round_trip(self, pose):
        assert RelativePosition.from_vector(pose.to_vector()) == pose

    def test_dict_round_trip(self, pose):
        assert RelativePosition.from_dict(pose.to_dict()) == pose

    def test_from_dict_missing_key(self):
        with pytest.raises(InvalidInput):
            RelativePosition.from_dict({"rotation": [0, 0, 0]})

    def test_arrays_are_read_only(self, pose):
        with pytest.raises(ValueError):
            pose.rotation[0] = 1.0

    def test_wrong_shape_rejected(self):
        with pytest.raises(InvalidInput):
            RelativePosition(rotation=[0.0, 0.0], translation=[0.0, 0.0, 0.0])
