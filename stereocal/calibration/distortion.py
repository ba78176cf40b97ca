"""
Lens Distortion Module.

Forward map (normalized → distorted normalized coordinates):

    r² = x² + y²
    radial = 1 + k1·r² + k2·r⁴
    tangential_x = 2·p1·x·y + p2·(r² + 2x²)
    tangential_y = p1·(r² + 2y²) + 2·p2·x·y
    x_d = x·radial + tangential_x
    y_d = y·radial + tangential_y

The forward map has no closed-form inverse. DistortionSolver inverts it by
the fixed-point iteration

    x_{k+1} = (x_d - tangential(x_k)) / radial(r²(x_k)),    x_0 = x_d

and, for entries the fixed point does not settle within its budget, a
bounded Newton retry on the same equations. Entries that still do not
converge raise UndistortDivergence; a non-converged value is never returned.
"""

from typing import Any, Dict, Optional, Sequence, Tuple, Union

import numpy as np

from .errors import InvalidInput, UndistortDivergence
from .intrinsics import CameraParameters


Coefficients = Union[CameraParameters, Sequence[float], np.ndarray]


def _coefficients(distortion: Coefficients) -> Tuple[float, float, float, float]:
    """Extract (k1, k2, p1, p2) from parameters or a 4-sequence."""
    if isinstance(distortion, CameraParameters):
        return distortion.k1, distortion.k2, distortion.p1, distortion.p2
    values = np.asarray(distortion, dtype=np.float64).flatten()
    if values.shape != (4,):
        raise InvalidInput(f"Expected [k1, k2, p1, p2], got shape {values.shape}")
    k1, k2, p1, p2 = (float(v) for v in values)
    return k1, k2, p1, p2


def _as_points_2d(points: np.ndarray) -> Tuple[np.ndarray, bool]:
    points = np.asarray(points, dtype=np.float64)
    single = points.ndim == 1
    points = np.atleast_2d(points)
    if points.shape[1] != 2:
        raise InvalidInput(f"Expected 2D points (N, 2), got {points.shape}")
    return points, single


def radial_factor(points: np.ndarray, distortion: Coefficients) -> np.ndarray:
    """Radial scale 1 + k1·r² + k2·r⁴ for each point (N,)."""
    k1, k2, _, _ = _coefficients(distortion)
    points, _ = _as_points_2d(points)
    r2 = np.sum(points ** 2, axis=1)
    return 1.0 + k1 * r2 + k2 * r2 ** 2


def tangential_term(points: np.ndarray, distortion: Coefficients) -> np.ndarray:
    """Tangential offset (N, 2) of the standard cross-term model."""
    _, _, p1, p2 = _coefficients(distortion)
    points, _ = _as_points_2d(points)
    x = points[:, 0]
    y = points[:, 1]
    r2 = x * x + y * y
    xy = x * y
    return np.stack([
        2.0 * p1 * xy + p2 * (r2 + 2.0 * x * x),
        p1 * (r2 + 2.0 * y * y) + 2.0 * p2 * xy,
    ], axis=1)


def apply_distortion(points: np.ndarray, distortion: Coefficients) -> np.ndarray:
    """
    Apply radial and tangential distortion to normalized coordinates.

    Args:
        points: Normalized coordinates (N, 2) or (2,).
        distortion: CameraParameters or [k1, k2, p1, p2].

    Returns:
        np.ndarray: Distorted normalized coordinates, same shape as input.

    Example:
        >>> apply_distortion(np.array([0.1, 0.0]), [0.1, 0.0, 0.0, 0.0])
        array([0.1001, 0.    ])
    """
    points, single = _as_points_2d(points)
    distorted = points * radial_factor(points, distortion)[:, None]
    distorted = distorted + tangential_term(points, distortion)
    return distorted[0] if single else distorted


def distortion_jacobian(points: np.ndarray, distortion: Coefficients) -> np.ndarray:
    """
    Jacobian of the forward map with respect to the undistorted point.

    Returns:
        np.ndarray: (N, 2, 2) with J[i] = ∂(x_d, y_d) / ∂(x, y).
    """
    k1, k2, p1, p2 = _coefficients(distortion)
    points, _ = _as_points_2d(points)
    x = points[:, 0]
    y = points[:, 1]
    r2 = x * x + y * y
    radial = 1.0 + k1 * r2 + k2 * r2 ** 2
    d_radial = 2.0 * (k1 + 2.0 * k2 * r2)  # ∂radial/∂x = d_radial·x

    J = np.empty((len(points), 2, 2), dtype=np.float64)
    J[:, 0, 0] = radial + d_radial * x * x + 2.0 * p1 * y + 6.0 * p2 * x
    J[:, 0, 1] = d_radial * x * y + 2.0 * p1 * x + 2.0 * p2 * y
    J[:, 1, 0] = d_radial * x * y + 2.0 * p1 * x + 2.0 * p2 * y
    J[:, 1, 1] = radial + d_radial * y * y + 6.0 * p1 * y + 2.0 * p2 * x
    return J


class DistortionSolver:
    """
    Iterative inverse of the forward distortion map.

    Attributes:
        tolerance: Convergence threshold on the update magnitude.
        max_iterations: Fixed-point iteration cap.
        divergence_bound: Magnitude beyond which an estimate counts as diverged.
        newton_iterations: Iteration cap of the Newton retry (0 disables it).

    Example:
        >>> solver = DistortionSolver()
        >>> xd = apply_distortion(np.array([0.3, -0.2]), params)
        >>> xn = solver.undistort(xd, params)
    """

    def __init__(
        self,
        tolerance: float = 1e-10,
        max_iterations: int = 20,
        divergence_bound: float = 1e6,
        newton_iterations: int = 50,
    ):
        if tolerance <= 0:
            raise ValueError(f"tolerance must be positive, got {tolerance}")
        if max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {max_iterations}")

        self.tolerance = tolerance
        self.max_iterations = max_iterations
        self.divergence_bound = divergence_bound
        self.newton_iterations = newton_iterations

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]] = None) -> "DistortionSolver":
        """Create a solver from the 'distortion' config section."""
        config = config or {}
        return cls(
            tolerance=float(config.get("tolerance", 1e-10)),
            max_iterations=int(config.get("max_iterations", 20)),
            divergence_bound=float(config.get("divergence_bound", 1e6)),
            newton_iterations=int(config.get("newton_iterations", 50)),
        )

    def undistort(self, points: np.ndarray, distortion: Coefficients) -> np.ndarray:
        """
        Invert the distortion map.

        Args:
            points: Distorted normalized coordinates (N, 2) or (2,).
            distortion: CameraParameters or [k1, k2, p1, p2].

        Returns:
            np.ndarray: Undistorted normalized coordinates, same shape as input.

        Raises:
            UndistortDivergence: If any point fails to converge.
        """
        distorted, single = _as_points_2d(points)
        if not np.all(np.isfinite(distorted)):
            raise InvalidInput("Distorted points contain non-finite values")

        coefficients = _coefficients(distortion)
        if not any(coefficients):
            result = distorted.copy()
            return result[0] if single else result

        estimate, converged = self._fixed_point(distorted, coefficients)

        if not np.all(converged) and self.newton_iterations > 0:
            pending = np.flatnonzero(~converged)
            refined, newton_ok = self._newton(distorted[pending], coefficients)
            estimate[pending[newton_ok]] = refined[newton_ok]
            converged[pending[newton_ok]] = True

        if not np.all(converged):
            failed = np.flatnonzero(~converged)
            raise UndistortDivergence(
                f"Inverse distortion did not converge for {len(failed)} of "
                f"{len(distorted)} points",
                indices=failed,
            )

        return estimate[0] if single else estimate

    def _fixed_point(
        self,
        distorted: np.ndarray,
        coefficients: Tuple[float, float, float, float],
    ) -> Tuple[np.ndarray, np.ndarray]:
        estimate = distorted.copy()
        converged = np.zeros(len(distorted), dtype=bool)
        active = np.ones(len(distorted), dtype=bool)

        for _ in range(self.max_iterations):
            idx = np.flatnonzero(active)
            if len(idx) == 0:
                break

            current = estimate[idx]
            radial = radial_factor(current, coefficients)
            with np.errstate(divide="ignore", invalid="ignore"):
                updated = (distorted[idx] - tangential_term(current, coefficients)) / radial[:, None]

            step = np.linalg.norm(updated - current, axis=1)
            diverged = (
                ~np.all(np.isfinite(updated), axis=1)
                | (np.linalg.norm(updated, axis=1) > self.divergence_bound)
            )

            ok = ~diverged
            estimate[idx[ok]] = updated[ok]
            done = ok & (step < self.tolerance)
            converged[idx[done]] = True
            active[idx[done | diverged]] = False

        return estimate, converged

    def _newton(
        self,
        distorted: np.ndarray,
        coefficients: Tuple[float, float, float, float],
    ) -> Tuple[np.ndarray, np.ndarray]:
        estimate = distorted.copy()
        converged = np.zeros(len(distorted), dtype=bool)
        active = np.ones(len(distorted), dtype=bool)

        for _ in range(self.newton_iterations):
            idx = np.flatnonzero(active)
            if len(idx) == 0:
                break

            current = estimate[idx]
            residual = apply_distortion(current, coefficients) - distorted[idx]
            J = distortion_jacobian(current, coefficients)

            det = J[:, 0, 0] * J[:, 1, 1] - J[:, 0, 1] * J[:, 1, 0]
            singular = np.abs(det) < 1e-14
            safe_det = np.where(singular, 1.0, det)
            step = np.stack([
                (J[:, 1, 1] * residual[:, 0] - J[:, 0, 1] * residual[:, 1]) / safe_det,
                (-J[:, 1, 0] * residual[:, 0] + J[:, 0, 0] * residual[:, 1]) / safe_det,
            ], axis=1)

            # Halve steps that do not reduce the residual
            residual_norm = np.linalg.norm(residual, axis=1)
            scale = np.ones(len(idx))
            for _ in range(8):
                trial = current - scale[:, None] * step
                trial_norm = np.linalg.norm(apply_distortion(trial, coefficients) - distorted[idx], axis=1)
                worse = trial_norm > residual_norm
                if not np.any(worse):
                    break
                scale = np.where(worse, 0.5 * scale, scale)

            updated = current - scale[:, None] * step
            step_norm = np.linalg.norm(updated - current, axis=1)
            failed = singular | ~np.all(np.isfinite(updated), axis=1)

            ok = ~failed
            estimate[idx[ok]] = updated[ok]
            done = ok & (step_norm < self.tolerance)
            converged[idx[done]] = True
            active[idx[done | failed]] = False

        return estimate, converged


_DEFAULT_SOLVER = DistortionSolver()


def undistort(
    points: np.ndarray,
    distortion: Coefficients,
    solver: Optional[DistortionSolver] = None,
) -> np.ndarray:
    """Invert the distortion map with the given (or default) solver."""
    return (solver or _DEFAULT_SOLVER).undistort(points, distortion)
