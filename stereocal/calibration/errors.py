"""
Error taxonomy for calibration and reconstruction.

Every failure of the camera model, the calibrator or the triangulator is
surfaced as one of the exceptions below. None of them is ever replaced by a
default value: callers either handle the typed failure or let it propagate.

Hierarchy:
    CalibrationError
    ├── InvalidInput            (also a ValueError)
    ├── DegenerateProjection
    ├── UndistortDivergence
    ├── NoInitialGuess
    ├── SingularNormalEquations
    ├── ConvergenceFailure
    └── InsufficientViews
        └── DegenerateGeometry
"""

from typing import Optional, Sequence

import numpy as np


class CalibrationError(Exception):
    """Base class for all errors raised by stereocal."""


class InvalidInput(CalibrationError, ValueError):
    """Malformed, non-finite or insufficient input data."""


class DegenerateProjection(CalibrationError):
    """
    A point lies behind (or on) the camera plane, z <= 0.

    Attributes:
        indices: Indices of the offending points in the input array.
    """

    def __init__(self, message: str, indices: Optional[Sequence[int]] = None):
        super().__init__(message)
        self.indices = np.asarray(indices if indices is not None else [], dtype=int)


class UndistortDivergence(CalibrationError):
    """
    Inverse distortion did not converge within its iteration budget.

    Attributes:
        indices: Indices of the points that failed to converge.
    """

    def __init__(self, message: str, indices: Optional[Sequence[int]] = None):
        super().__init__(message)
        self.indices = np.asarray(indices if indices is not None else [], dtype=int)


class NoInitialGuess(CalibrationError):
    """Intrinsics cannot be initialised automatically and no guess was given."""


class SingularNormalEquations(CalibrationError):
    """
    The damped normal equations could not be solved.

    Attributes:
        iteration: Optimizer iteration at which the solve failed.
        rcond: Reciprocal condition number of the scaled normal matrix.
    """

    def __init__(self, message: str, iteration: int = 0, rcond: float = 0.0):
        super().__init__(message)
        self.iteration = iteration
        self.rcond = rcond


class ConvergenceFailure(CalibrationError):
    """
    The optimizer stopped without meeting a convergence criterion.

    Attributes:
        iteration: Number of iterations performed.
        cost: Total squared reprojection error at the last accepted step.
    """

    def __init__(self, message: str, iteration: int = 0, cost: float = float("nan")):
        super().__init__(message)
        self.iteration = iteration
        self.cost = cost


class InsufficientViews(CalibrationError):
    """
    Fewer than two usable observations for a triangulation.

    Attributes:
        camera_ids: Camera identifiers involved in the failed query.
    """

    def __init__(self, message: str, camera_ids: Optional[Sequence] = None):
        super().__init__(message)
        self.camera_ids = list(camera_ids) if camera_ids is not None else []


class DegenerateGeometry(InsufficientViews):
    """Every camera pair of a query was rejected as near-parallel."""
