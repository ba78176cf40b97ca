"""
Camera calibration modules.

This package provides the pinhole camera model with lens distortion, its
iterative inverse, and the Levenberg–Marquardt calibrator that fits shared
intrinsics plus per-view poses to 3D-2D correspondences.

Classes:
    CameraParameters: Intrinsics (focal lengths, principal point, distortion).
    RelativePosition: World-to-camera pose in axis-angle form.
    DistortionSolver: Iterative inverse of the distortion map.
    Calibrator: Nonlinear calibration with planar initialization.
    CalibrationSession: Calibration state machine.

Standalone Functions:
    project_points: World points to pixels.
    pixel_to_normalized: Pixels to undistorted normalized coordinates.
    pixel_to_ray: Pixels to world-frame viewing rays.

Example Usage:
    >>> from stereocal.calibration import Calibrator
    >>> calibrator = Calibrator((640, 480))
    >>> result = calibrator.calibrate(views)
    >>> result.parameters, result.statistics.rms
"""

from .errors import (
    CalibrationError,
    ConvergenceFailure,
    DegenerateGeometry,
    DegenerateProjection,
    InsufficientViews,
    InvalidInput,
    NoInitialGuess,
    SingularNormalEquations,
    UndistortDivergence,
)
from .intrinsics import CameraParameters, image_center
from .extrinsics import RelativePosition, rodrigues
from .distortion import DistortionSolver, apply_distortion, undistort
from .projection import (
    normalized_to_pixel,
    perspective_projection,
    pixel_to_normalized,
    pixel_to_normalized_distorted,
    pixel_to_ray,
    project_points,
    reprojection_errors,
    world_to_camera,
)
from .calibrator import (
    CalibrationResult,
    CalibrationSession,
    CalibrationState,
    Calibrator,
    CalibratorConfig,
    ResidualStatistics,
    ViewStatus,
)

__all__ = [
    # Errors
    "CalibrationError",
    "ConvergenceFailure",
    "DegenerateGeometry",
    "DegenerateProjection",
    "InsufficientViews",
    "InvalidInput",
    "NoInitialGuess",
    "SingularNormalEquations",
    "UndistortDivergence",
    # Classes
    "CameraParameters",
    "RelativePosition",
    "DistortionSolver",
    "Calibrator",
    "CalibratorConfig",
    "CalibrationSession",
    "CalibrationState",
    "CalibrationResult",
    "ResidualStatistics",
    "ViewStatus",
    # Standalone functions
    "image_center",
    "rodrigues",
    "apply_distortion",
    "undistort",
    "world_to_camera",
    "perspective_projection",
    "normalized_to_pixel",
    "pixel_to_normalized_distorted",
    "pixel_to_normalized",
    "project_points",
    "reprojection_errors",
    "pixel_to_ray",
]
