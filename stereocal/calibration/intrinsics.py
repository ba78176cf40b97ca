"""
Camera Intrinsic Parameters Module.

This module holds the intrinsic model shared by every view taken with one
physical camera and lens: focal lengths, principal point and the four-term
radial/tangential distortion.

Mathematical Background:
========================

The camera intrinsic matrix K maps undistorted-then-distorted normalized
coordinates to pixels. Skew is fixed at zero:

    K = | fx   0  cx |
        |  0  fy  cy |
        |  0   0   1 |

Where:
    - fx, fy: Focal lengths in pixel units
    - cx, cy: Principal point in pixels

Distortion (applied to normalized coordinates x = X/Z, y = Y/Z):

    r² = x² + y²
    radial = 1 + k1·r² + k2·r⁴
    x_d = x·radial + 2·p1·x·y + p2·(r² + 2x²)
    y_d = y·radial + p1·(r² + 2y²) + 2·p2·x·y

Pixel Convention:
=================
The origin is at the *center* of the top-left pixel. An image of size
(width, height) therefore has its geometric center at

    (width / 2 - 0.5, height / 2 - 0.5)

Every consumer (calibration, projection, triangulation) uses this
convention; mixing it with a corner-origin convention shifts every
reconstruction by half a pixel.
"""

from dataclasses import asdict, dataclass
from typing import Dict, Sequence, Tuple

import numpy as np

from .errors import InvalidInput


PARAMETER_NAMES: Tuple[str, ...] = ("fx", "fy", "cx", "cy", "k1", "k2", "p1", "p2")


def image_center(width: int, height: int) -> Tuple[float, float]:
    """
    Geometric center of an image in the top-left-pixel-center convention.

    Args:
        width: Image width in pixels.
        height: Image height in pixels.

    Returns:
        Tuple[float, float]: (cx, cy) = (width/2 - 0.5, height/2 - 0.5).

    Example:
        >>> image_center(640, 480)
        (319.5, 239.5)
    """
    if width <= 0 or height <= 0:
        raise InvalidInput(f"Image size must be positive, got {width}x{height}")
    return width / 2.0 - 0.5, height / 2.0 - 0.5


@dataclass(frozen=True)
class CameraParameters:
    """
    Intrinsic parameters of a pinhole camera with lens distortion.

    Instances are immutable: calibration produces a new object rather than
    editing one in place, so consumers holding a reference never see drift.

    Attributes:
        fx: Focal length in x direction (pixels), > 0.
        fy: Focal length in y direction (pixels), > 0.
        cx: Principal point x coordinate (pixels).
        cy: Principal point y coordinate (pixels).
        k1: Second-order radial distortion coefficient.
        k2: Fourth-order radial distortion coefficient.
        p1: First tangential distortion coefficient.
        p2: Second tangential distortion coefficient.

    Example:
        >>> params = CameraParameters(fx=1000.0, fy=1000.0, cx=320.0, cy=240.0)
        >>> K = params.K
        >>> params.to_vector().shape
        (8,)
    """

    fx: float
    fy: float
    cx: float
    cy: float
    k1: float = 0.0
    k2: float = 0.0
    p1: float = 0.0
    p2: float = 0.0

    def __post_init__(self):
        """Validate and normalise to plain floats."""
        for name in PARAMETER_NAMES:
            value = float(getattr(self, name))
            if not np.isfinite(value):
                raise InvalidInput(f"{name} must be finite, got {value}")
            object.__setattr__(self, name, value)

        if self.fx <= 0 or self.fy <= 0:
            raise InvalidInput(
                f"Focal lengths must be positive, got fx={self.fx}, fy={self.fy}"
            )

    @property
    def K(self) -> np.ndarray:
        """
        Get the 3x3 camera intrinsic (calibration) matrix.

        Returns:
            np.ndarray: 3x3 matrix with zero skew, dtype float64.
        """
        return np.array([
            [self.fx, 0, self.cx],
            [0, self.fy, self.cy],
            [0, 0, 1]
        ], dtype=np.float64)

    @property
    def K_inv(self) -> np.ndarray:
        """
        Get the closed-form inverse of the intrinsic matrix.

            K^(-1) = | 1/fx    0   -cx/fx |
                     |   0   1/fy  -cy/fy |
                     |   0     0      1   |
        """
        return np.array([
            [1 / self.fx, 0, -self.cx / self.fx],
            [0, 1 / self.fy, -self.cy / self.fy],
            [0, 0, 1]
        ], dtype=np.float64)

    @property
    def distortion_coefficients(self) -> np.ndarray:
        """Distortion coefficients [k1, k2, p1, p2]."""
        return np.array([self.k1, self.k2, self.p1, self.p2], dtype=np.float64)

    @property
    def has_distortion(self) -> bool:
        """True if any distortion coefficient is non-zero."""
        return bool(np.any(self.distortion_coefficients != 0.0))

    def without_distortion(self) -> "CameraParameters":
        """Copy of these parameters with all distortion coefficients zeroed."""
        return CameraParameters(fx=self.fx, fy=self.fy, cx=self.cx, cy=self.cy)

    def to_vector(self) -> np.ndarray:
        """
        Pack into an 8-vector in field order (fx, fy, cx, cy, k1, k2, p1, p2).

        This is the intrinsic block of the calibrator's parameter vector.
        """
        return np.array([getattr(self, name) for name in PARAMETER_NAMES], dtype=np.float64)

    @classmethod
    def from_vector(cls, vector: Sequence[float]) -> "CameraParameters":
        """
        Create parameters from an 8-vector in field order.

        Raises:
            InvalidInput: If the vector does not have 8 elements.
        """
        vector = np.asarray(vector, dtype=np.float64).flatten()
        if vector.shape != (len(PARAMETER_NAMES),):
            raise InvalidInput(f"Expected 8 intrinsic values, got {vector.shape}")
        return cls(*vector.tolist())

    @classmethod
    def from_matrix(
        cls,
        K: np.ndarray,
        distortion: Sequence[float] = (0.0, 0.0, 0.0, 0.0),
    ) -> "CameraParameters":
        """
        Create parameters from a 3x3 intrinsic matrix and [k1, k2, p1, p2].

        Any skew term in K is ignored (the model fixes it at zero).
        """
        K = np.asarray(K, dtype=np.float64)
        if K.shape != (3, 3):
            raise InvalidInput(f"K must be 3x3, got {K.shape}")
        k1, k2, p1, p2 = (float(d) for d in distortion)
        return cls(
            fx=float(K[0, 0]),
            fy=float(K[1, 1]),
            cx=float(K[0, 2]),
            cy=float(K[1, 2]),
            k1=k1, k2=k2, p1=p1, p2=p2,
        )

    def to_dict(self) -> Dict[str, float]:
        """Convert to a plain dictionary (YAML friendly)."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, float]) -> "CameraParameters":
        """
        Create parameters from a dictionary.

        Missing distortion entries default to zero; missing focal length or
        principal point entries are an error.
        """
        missing = [name for name in ("fx", "fy", "cx", "cy") if name not in data]
        if missing:
            raise InvalidInput(f"Missing intrinsic parameters: {missing}")
        return cls(**{name: float(data.get(name, 0.0)) for name in PARAMETER_NAMES})

    def get_fov(self, width: int, height: int) -> Tuple[float, float]:
        """
        Horizontal and vertical field of view in radians (distortion ignored).

            θ_h = 2 * arctan(width / (2 * fx))
            θ_v = 2 * arctan(height / (2 * fy))
        """
        return (
            2 * np.arctan(width / (2 * self.fx)),
            2 * np.arctan(height / (2 * self.fy)),
        )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"CameraParameters(fx={self.fx:.2f}, fy={self.fy:.2f}, "
            f"cx={self.cx:.2f}, cy={self.cy:.2f}, "
            f"k1={self.k1:.4g}, k2={self.k2:.4g}, p1={self.p1:.4g}, p2={self.p2:.4g})"
        )
