"""
Camera Extrinsic Parameters Module.

This module handles the pose of a camera for one view: the rigid
transformation from world coordinates into the camera's reference frame.

Mathematical Background:
========================

Rigid Body Transformation:
--------------------------
For a point X in world coordinates, its coordinates in the camera frame are

    X_c = R · X + T

where R is a proper rotation (RᵀR = I, det R = 1) and T a translation.

Axis-Angle Storage:
-------------------
The rotation is stored as an axis-angle 3-vector ω (direction = axis,
norm = angle θ in radians). The matrix is derived on demand with the
Rodrigues formula

    R = I + sin θ · [k]ₓ + (1 - cos θ) · [k]ₓ²,    k = ω / θ

where [k]ₓ is the cross-product matrix of the unit axis. Storing ω rather
than R means the pose can never drift out of SO(3): every matrix produced
from it is a proper rotation up to rounding.

Inverse Transformation:
-----------------------
    X = Rᵀ · (X_c - T)

The camera aperture (optical center) in world coordinates is therefore
C = -Rᵀ · T.
"""

from dataclasses import dataclass
from typing import Dict, List, Sequence

import numpy as np
from scipy.spatial.transform import Rotation

from .errors import InvalidInput


# Below this angle the Rodrigues terms are replaced by their Taylor series
SMALL_ANGLE = 1e-12


def skew(v: np.ndarray) -> np.ndarray:
    """Cross-product matrix [v]ₓ such that [v]ₓ @ w == np.cross(v, w)."""
    x, y, z = v
    return np.array([
        [0.0, -z, y],
        [z, 0.0, -x],
        [-y, x, 0.0],
    ], dtype=np.float64)


def rodrigues(rotation: np.ndarray) -> np.ndarray:
    """
    Convert an axis-angle vector to a 3x3 rotation matrix.

    Args:
        rotation: Axis-angle vector (3,), angle in radians.

    Returns:
        np.ndarray: 3x3 proper rotation matrix.
    """
    rotation = np.asarray(rotation, dtype=np.float64).reshape(3)
    theta = float(np.linalg.norm(rotation))
    W = skew(rotation)

    if theta < SMALL_ANGLE:
        # sin θ/θ → 1, (1 - cos θ)/θ² → 1/2
        return np.eye(3) + W + 0.5 * (W @ W)

    return (
        np.eye(3)
        + (np.sin(theta) / theta) * W
        + ((1.0 - np.cos(theta)) / theta ** 2) * (W @ W)
    )


def is_rotation_matrix(R: np.ndarray, atol: float = 1e-6) -> bool:
    """Check RᵀR = I and det(R) = 1."""
    R = np.asarray(R, dtype=np.float64)
    if R.shape != (3, 3):
        return False
    return bool(
        np.allclose(R.T @ R, np.eye(3), atol=atol)
        and np.isclose(np.linalg.det(R), 1.0, atol=atol)
    )


@dataclass(frozen=True)
class RelativePosition:
    """
    Pose of a camera for one view (world → camera).

    Attributes:
        rotation: Axis-angle rotation vector (3,), radians.
        translation: Translation vector (3,).

    Mathematical Details:
        For a point X in world coordinates:
            X_camera = R(rotation) @ X + translation

    Example:
        >>> pose = RelativePosition(rotation=[0.0, 0.1, 0.0], translation=[0, 0, 5])
        >>> R = pose.rotation_matrix
        >>> X_cam = pose.transform_points(np.array([0.0, 0.0, 1.0]))
    """

    rotation: np.ndarray
    translation: np.ndarray

    def __post_init__(self):
        """Validate inputs after initialization."""
        rotation = np.array(self.rotation, dtype=np.float64).flatten()
        translation = np.array(self.translation, dtype=np.float64).flatten()

        if rotation.shape != (3,):
            raise InvalidInput(f"rotation must be (3,), got {rotation.shape}")
        if translation.shape != (3,):
            raise InvalidInput(f"translation must be (3,), got {translation.shape}")
        if not (np.all(np.isfinite(rotation)) and np.all(np.isfinite(translation))):
            raise InvalidInput("Pose contains non-finite values")

        rotation.setflags(write=False)
        translation.setflags(write=False)
        object.__setattr__(self, "rotation", rotation)
        object.__setattr__(self, "translation", translation)

    @classmethod
    def identity(cls) -> "RelativePosition":
        """Camera frame coincides with the world frame."""
        return cls(rotation=np.zeros(3), translation=np.zeros(3))

    @classmethod
    def from_matrix(cls, R: np.ndarray, t: Sequence[float]) -> "RelativePosition":
        """
        Create a pose from a rotation matrix and translation.

        Raises:
            InvalidInput: If R is not a proper rotation matrix.
        """
        R = np.asarray(R, dtype=np.float64)
        if not is_rotation_matrix(R):
            raise InvalidInput("R is not a proper rotation matrix")
        rotation = Rotation.from_matrix(R).as_rotvec()
        return cls(rotation=rotation, translation=np.asarray(t, dtype=np.float64))

    @classmethod
    def from_vector(cls, vector: Sequence[float]) -> "RelativePosition":
        """Create a pose from [ωx, ωy, ωz, tx, ty, tz]."""
        vector = np.asarray(vector, dtype=np.float64).flatten()
        if vector.shape != (6,):
            raise InvalidInput(f"Expected 6 pose values, got {vector.shape}")
        return cls(rotation=vector[:3], translation=vector[3:])

    def to_vector(self) -> np.ndarray:
        """Pack as [ωx, ωy, ωz, tx, ty, tz] (the per-view calibrator block)."""
        return np.concatenate([self.rotation, self.translation])

    @property
    def rotation_matrix(self) -> np.ndarray:
        """3x3 rotation matrix derived from the axis-angle vector."""
        return rodrigues(self.rotation)

    @property
    def angle(self) -> float:
        """Rotation angle in radians."""
        return float(np.linalg.norm(self.rotation))

    @property
    def camera_center(self) -> np.ndarray:
        """
        Camera aperture in world coordinates.

            C = -Rᵀ · T
        """
        return -self.rotation_matrix.T @ self.translation

    def transform_points(self, points: np.ndarray) -> np.ndarray:
        """
        Transform world points into the camera frame.

        Args:
            points: 3D points (N, 3) or (3,) in world coordinates.

        Returns:
            np.ndarray: Points in camera coordinates, same shape as input.
        """
        points = np.asarray(points, dtype=np.float64)
        single = points.ndim == 1
        transformed = np.atleast_2d(points) @ self.rotation_matrix.T + self.translation
        return transformed[0] if single else transformed

    def rotate_to_world(self, directions: np.ndarray) -> np.ndarray:
        """
        Rotate camera-frame direction vectors into the world frame (Rᵀ · d).

        Args:
            directions: Direction vectors (N, 3) or (3,).
        """
        directions = np.asarray(directions, dtype=np.float64)
        single = directions.ndim == 1
        rotated = np.atleast_2d(directions) @ self.rotation_matrix
        return rotated[0] if single else rotated

    def inverse(self) -> "RelativePosition":
        """
        Get the inverse transformation (camera → world).

        For transformation (R, t), the inverse is (Rᵀ, -Rᵀ t). In axis-angle
        form Rᵀ is simply -ω.
        """
        R_inv = self.rotation_matrix.T
        return RelativePosition(rotation=-self.rotation, translation=-R_inv @ self.translation)

    def compose(self, other: "RelativePosition") -> "RelativePosition":
        """
        Chain this transformation with another (this first, then other).

        Returns:
            RelativePosition: Transformation X ↦ R₂(R₁X + t₁) + t₂.
        """
        R_combined = other.rotation_matrix @ self.rotation_matrix
        t_combined = other.rotation_matrix @ self.translation + other.translation
        return RelativePosition.from_matrix(R_combined, t_combined)

    def to_dict(self) -> Dict[str, List[float]]:
        """Convert to a plain dictionary (YAML friendly)."""
        return {
            "rotation": [float(v) for v in self.rotation],
            "translation": [float(v) for v in self.translation],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Sequence[float]]) -> "RelativePosition":
        """Create a pose from a dictionary with 'rotation' and 'translation'."""
        try:
            return cls(rotation=data["rotation"], translation=data["translation"])
        except KeyError as e:
            raise InvalidInput(f"Pose entry missing key {e}") from e

    def __eq__(self, other) -> bool:
        if not isinstance(other, RelativePosition):
            return NotImplemented
        return bool(
            np.array_equal(self.rotation, other.rotation)
            and np.array_equal(self.translation, other.translation)
        )

    def __hash__(self) -> int:
        return hash((self.rotation.tobytes(), self.translation.tobytes()))

    def __repr__(self) -> str:
        """String representation."""
        r = ", ".join(f"{v:.4f}" for v in self.rotation)
        t = ", ".join(f"{v:.4f}" for v in self.translation)
        return f"RelativePosition(rotation=[{r}], translation=[{t}])"
