"""
Camera Calibration Module.

Fits one shared set of intrinsics and one pose per view to multi-view 3D-2D
correspondences by minimising the total squared reprojection error.

Mathematical Background:
========================

Parameter vector:
-----------------
    x = [fx, fy, cx, cy, k1, k2, p1, p2,  ω₀, T₀,  ω₁, T₁,  ...]
         └──── 8 shared intrinsics ────┘  └ 6 per view ┘

Cost:
-----
    E(x) = Σ_views Σ_points ‖project(X_ij; K, dist, ω_i, T_i) - p_ij‖²

Levenberg–Marquardt step:
-------------------------
With J the residual Jacobian and D = diag(JᵀJ) (Marquardt scaling), each
iteration solves

    (D^-½ JᵀJ D^-½ + μ·I) · δ' = -D^-½ Jᵀr,    δ = D^-½ · δ'

A step is accepted if it lowers E; μ then shrinks by damping_down.
Otherwise μ grows by damping_up and the solve is repeated.

Each view only touches the 8 intrinsics and its own 6 pose parameters, so
its 14x14 block of JᵀJ and 14-vector of Jᵀr are computed independently on a
worker pool and summed into the full normal equations before the
(sequential) solve.

States:
=======
    UNINITIALIZED → INITIALIZING → OPTIMIZING → CONVERGED
                         └──────────────┴──────→ FAILED

A session is frozen once CONVERGED; non-converged state is never reported
as converged.
"""

import threading
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
from scipy.linalg import LinAlgError, cho_factor, cho_solve

from ..data.correspondences import split_view
from ..data.sample_set import SampleSet
from ..utils.config_loader import section_from_dict
from ..utils.logger import LoggerMixin
from .errors import (
    ConvergenceFailure,
    DegenerateProjection,
    InvalidInput,
    SingularNormalEquations,
)
from .extrinsics import RelativePosition
from .initialization import (
    check_view_geometry,
    detect_planar_rig,
    initialize_planar,
    initialize_with_guess,
)
from .intrinsics import CameraParameters, image_center
from .projection import reprojection_errors


INTRINSIC_COUNT = 8
POSE_COUNT = 6

ViewInput = Union[SampleSet, np.ndarray, Tuple[np.ndarray, np.ndarray]]


# =============================================================================
# Configuration and State
# =============================================================================

@dataclass
class CalibratorConfig:
    """
    Optimizer settings ('calibration' config section).

    Attributes:
        max_iterations: Levenberg–Marquardt iteration budget.
        relative_tolerance: Converge when an accepted step lowers the cost
            by less than this fraction.
        target_rms: Converge when the global RMS error (pixels) drops below.
        gradient_tolerance: Scaled gradient bound under which a step that
            cannot lower the cost at maximum damping counts as converged.
        initial_damping: Starting damping factor μ.
        damping_up: Factor applied to μ on a rejected step.
        damping_down: Factor applied to μ on an accepted step.
        max_damping: Upper bound for μ.
        singular_rcond: Minimum reciprocal condition number of the scaled
            normal matrix.
        jacobian_step: Relative central-difference step.
        planar_tolerance: Z spread (relative to in-plane extent) under which
            a view counts as planar.
        view_rms_threshold: Per-view RMS (pixels) above which a view is
            reported HIGH_RESIDUAL.
        degenerate_rcond: Pose-block conditioning under which a view is
            reported DEGENERATE.
        max_workers: Thread pool size for per-view Jacobians.
    """

    max_iterations: int = 200
    relative_tolerance: float = 1e-10
    target_rms: float = 1e-9
    gradient_tolerance: float = 1e-6
    initial_damping: float = 1e-3
    damping_up: float = 10.0
    damping_down: float = 0.1
    max_damping: float = 1e10
    singular_rcond: float = 1e-12
    jacobian_step: float = 1e-6
    planar_tolerance: float = 1e-6
    view_rms_threshold: float = 1.0
    degenerate_rcond: float = 1e-12
    max_workers: Optional[int] = None

    def __post_init__(self):
        if self.max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {self.max_iterations}")
        if self.damping_up <= 1.0:
            raise ValueError(f"damping_up must be > 1, got {self.damping_up}")
        if not 0.0 < self.damping_down < 1.0:
            raise ValueError(f"damping_down must be in (0, 1), got {self.damping_down}")
        if self.initial_damping <= 0 or self.max_damping <= self.initial_damping:
            raise ValueError("Require 0 < initial_damping < max_damping")
        if self.jacobian_step <= 0:
            raise ValueError(f"jacobian_step must be positive, got {self.jacobian_step}")

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]] = None) -> "CalibratorConfig":
        """Build from a config section; unknown keys are ignored."""
        return section_from_dict(cls, data)


class CalibrationState(Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    OPTIMIZING = "optimizing"
    CONVERGED = "converged"
    FAILED = "failed"


_TRANSITIONS = {
    CalibrationState.UNINITIALIZED: {CalibrationState.INITIALIZING, CalibrationState.FAILED},
    CalibrationState.INITIALIZING: {CalibrationState.OPTIMIZING, CalibrationState.FAILED},
    CalibrationState.OPTIMIZING: {CalibrationState.CONVERGED, CalibrationState.FAILED},
    CalibrationState.CONVERGED: set(),
    CalibrationState.FAILED: set(),
}


class ViewStatus(Enum):
    """Per-view outcome of a converged calibration."""

    CONVERGED = "converged"
    HIGH_RESIDUAL = "high_residual"
    DEGENERATE = "degenerate"


@dataclass(frozen=True)
class ResidualStatistics:
    """
    Reprojection error summary.

    Attributes:
        view_rms: RMS reprojection error of each view (pixels).
        rms: Global RMS reprojection error (pixels).
        max_error: Largest single reprojection error (pixels).
        point_count: Number of correspondences.
        cost: Total squared reprojection error.
    """

    view_rms: Tuple[float, ...]
    rms: float
    max_error: float
    point_count: int
    cost: float

    @classmethod
    def from_residuals(cls, residuals: Sequence[np.ndarray]) -> "ResidualStatistics":
        """Summarise per-view residual arrays (N_i, 2)."""
        errors = [np.linalg.norm(np.reshape(r, (-1, 2)), axis=1) for r in residuals]
        all_errors = np.concatenate(errors)
        cost = float(np.sum(all_errors ** 2))
        return cls(
            view_rms=tuple(float(np.sqrt(np.mean(e ** 2))) for e in errors),
            rms=float(np.sqrt(cost / len(all_errors))),
            max_error=float(np.max(all_errors)),
            point_count=int(len(all_errors)),
            cost=cost,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "view_rms": list(self.view_rms),
            "rms": self.rms,
            "max_error": self.max_error,
            "point_count": self.point_count,
            "cost": self.cost,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResidualStatistics":
        try:
            return cls(
                view_rms=tuple(float(v) for v in data["view_rms"]),
                rms=float(data["rms"]),
                max_error=float(data["max_error"]),
                point_count=int(data["point_count"]),
                cost=float(data.get("cost", float("nan"))),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidInput(f"Malformed residual statistics: {e}") from e


class CalibrationSession:
    """
    Mutable calibration state, owned by a Calibrator.

    Only the calibrator mutates a session. Reaching CONVERGED freezes it;
    any later mutation raises RuntimeError.
    """

    def __init__(self, image_size: Tuple[int, int]):
        self.image_size = tuple(image_size)
        self._state = CalibrationState.UNINITIALIZED
        self._parameters: Optional[CameraParameters] = None
        self._poses: Tuple[RelativePosition, ...] = ()
        self._statistics: Optional[ResidualStatistics] = None
        self._view_status: Tuple[ViewStatus, ...] = ()
        self._iterations = 0
        self._cost_history: List[float] = []
        self._failure: Optional[str] = None
        self._frozen = False

    @property
    def state(self) -> CalibrationState:
        return self._state

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def parameters(self) -> Optional[CameraParameters]:
        return self._parameters

    @property
    def poses(self) -> Tuple[RelativePosition, ...]:
        return self._poses

    @property
    def statistics(self) -> Optional[ResidualStatistics]:
        return self._statistics

    @property
    def view_rms(self) -> Tuple[float, ...]:
        return self._statistics.view_rms if self._statistics else ()

    @property
    def rms(self) -> Optional[float]:
        return self._statistics.rms if self._statistics else None

    @property
    def view_status(self) -> Tuple[ViewStatus, ...]:
        return self._view_status

    @property
    def iterations(self) -> int:
        return self._iterations

    @property
    def cost_history(self) -> Tuple[float, ...]:
        return tuple(self._cost_history)

    @property
    def failure(self) -> Optional[str]:
        return self._failure

    def _check_mutable(self) -> None:
        if self._frozen:
            raise RuntimeError("Calibration session is frozen")

    def transition(self, state: CalibrationState) -> None:
        """Move to a new state; CONVERGED freezes the session."""
        self._check_mutable()
        if state not in _TRANSITIONS[self._state]:
            raise RuntimeError(f"Invalid transition {self._state.name} -> {state.name}")
        self._state = state
        if state is CalibrationState.CONVERGED:
            self._frozen = True

    def update(
        self,
        parameters: CameraParameters,
        poses: Sequence[RelativePosition],
        cost: Optional[float] = None,
        iteration: Optional[int] = None,
    ) -> None:
        """Record the current parameter estimate."""
        self._check_mutable()
        self._parameters = parameters
        self._poses = tuple(poses)
        if cost is not None:
            self._cost_history.append(float(cost))
        if iteration is not None:
            self._iterations = iteration

    def set_statistics(
        self,
        statistics: ResidualStatistics,
        view_status: Sequence[ViewStatus],
    ) -> None:
        self._check_mutable()
        self._statistics = statistics
        self._view_status = tuple(view_status)

    def fail(self, reason: str) -> None:
        """Move to FAILED, keeping the last estimate for inspection."""
        self._failure = reason
        if self._state is not CalibrationState.FAILED:
            self.transition(CalibrationState.FAILED)

    def __repr__(self) -> str:
        return (
            f"CalibrationSession(state={self._state.name}, views={len(self._poses)}, "
            f"iterations={self._iterations}, rms={self.rms})"
        )


@dataclass(frozen=True)
class CalibrationResult:
    """
    Output of a converged calibration.

    Attributes:
        parameters: Shared intrinsics.
        poses: World-to-camera pose of each view.
        statistics: Residual statistics under the final parameters.
        view_status: Per-view outcome.
        iterations: Optimizer iterations performed.
        planar: Whether the rig was treated as planar.
    """

    parameters: CameraParameters
    poses: Tuple[RelativePosition, ...]
    statistics: ResidualStatistics
    view_status: Tuple[ViewStatus, ...]
    iterations: int
    planar: bool = True

    @property
    def rms(self) -> float:
        return self.statistics.rms

    @property
    def all_views_converged(self) -> bool:
        return all(status is ViewStatus.CONVERGED for status in self.view_status)


# =============================================================================
# Residual Evaluation
# =============================================================================

def _view_residuals(vector: np.ndarray, world: np.ndarray, pixel: np.ndarray) -> np.ndarray:
    """Flattened residuals of one view from its 14-vector [intrinsics, pose]."""
    params = CameraParameters.from_vector(vector[:INTRINSIC_COUNT])
    pose = RelativePosition.from_vector(vector[INTRINSIC_COUNT:])
    return reprojection_errors(world, pixel, params, pose).ravel()


def _view_vector(x: np.ndarray, view: int) -> np.ndarray:
    start = INTRINSIC_COUNT + POSE_COUNT * view
    return np.concatenate([x[:INTRINSIC_COUNT], x[start:start + POSE_COUNT]])


def _view_columns(view: int) -> np.ndarray:
    start = INTRINSIC_COUNT + POSE_COUNT * view
    return np.r_[0:INTRINSIC_COUNT, start:start + POSE_COUNT]


def _pack(parameters: CameraParameters, poses: Sequence[RelativePosition]) -> np.ndarray:
    return np.concatenate([parameters.to_vector()] + [pose.to_vector() for pose in poses])


def _unpack(x: np.ndarray, n_views: int) -> Tuple[CameraParameters, List[RelativePosition]]:
    parameters = CameraParameters.from_vector(x[:INTRINSIC_COUNT])
    poses = [
        RelativePosition.from_vector(x[INTRINSIC_COUNT + POSE_COUNT * i:INTRINSIC_COUNT + POSE_COUNT * (i + 1)])
        for i in range(n_views)
    ]
    return parameters, poses


def _scaled_rcond(matrix: np.ndarray) -> float:
    """Reciprocal condition number of a symmetric PSD matrix after unit-diagonal scaling."""
    diag = np.diag(matrix)
    if np.any(diag <= 0):
        return 0.0
    scale = 1.0 / np.sqrt(diag)
    eigenvalues = np.linalg.eigvalsh(matrix * scale[:, None] * scale[None, :])
    if eigenvalues[-1] <= 0:
        return 0.0
    return float(max(eigenvalues[0], 0.0) / eigenvalues[-1])


def residual_statistics(
    worlds: Sequence[np.ndarray],
    pixels: Sequence[np.ndarray],
    parameters: CameraParameters,
    poses: Sequence[RelativePosition],
) -> ResidualStatistics:
    """
    Reprojection statistics of given parameters over all views.

    Raises:
        DegenerateProjection: If a point projects behind its camera.
    """
    residuals = [
        reprojection_errors(world, pixel, parameters, pose)
        for world, pixel, pose in zip(worlds, pixels, poses)
    ]
    return ResidualStatistics.from_residuals(residuals)


# =============================================================================
# Calibrator
# =============================================================================

class Calibrator(LoggerMixin):
    """
    Levenberg–Marquardt camera calibrator.

    Example:
        >>> calibrator = Calibrator((640, 480))
        >>> result = calibrator.calibrate(views)
        >>> result.parameters.fx, result.rms
    """

    def __init__(
        self,
        image_size: Tuple[int, int],
        config: Optional[CalibratorConfig] = None,
    ):
        """
        Initialize calibrator.

        Args:
            image_size: (width, height) of the calibration images in pixels.
            config: Optimizer settings.
        """
        width, height = image_size
        image_center(width, height)  # validates the size
        self.image_size = (int(width), int(height))
        self.config = config or CalibratorConfig()
        self._cancel = threading.Event()
        self._session: Optional[CalibrationSession] = None

    @property
    def session(self) -> Optional[CalibrationSession]:
        """Session of the most recent calibrate() call."""
        return self._session

    def cancel(self) -> None:
        """Request the running calibration to stop before its next iteration."""
        self._cancel.set()

    def calibrate(
        self,
        views: Sequence[ViewInput],
        initial_guess: Optional[CameraParameters] = None,
        planar: Optional[bool] = None,
        deadline: Optional[float] = None,
    ) -> CalibrationResult:
        """
        Calibrate from multi-view correspondences.

        Args:
            views: One entry per view: a SampleSet or (N, 5) array of rows
                [X, Y, Z, u, v], or a (world (N, 3), pixel (N, 2)) pair.
            initial_guess: Starting intrinsics (required for non-planar rigs).
            planar: Force planar/non-planar handling; detected if None.
            deadline: time.monotonic() value after which optimization stops.

        Returns:
            CalibrationResult: Converged parameters, poses and statistics.

        Raises:
            InvalidInput: Malformed or insufficient correspondences.
            NoInitialGuess: Non-planar rig (or fronto-parallel planar views)
                without initial_guess.
            SingularNormalEquations: Degenerate geometry.
            ConvergenceFailure: Budget exhausted, cancelled or deadline passed.
        """
        self._cancel.clear()
        session = CalibrationSession(self.image_size)
        self._session = session

        try:
            self._transition(session, CalibrationState.INITIALIZING)
            worlds, pixels = self._prepare_views(views)
            is_planar = self._is_planar(worlds, planar)

            if is_planar:
                if len(worlds) < 2:
                    raise InvalidInput(
                        f"Planar calibration needs at least 2 views, got {len(worlds)}"
                    )
                parameters, poses = initialize_planar(worlds, pixels, self.image_size, initial_guess)
            else:
                parameters, poses = initialize_with_guess(worlds, pixels, initial_guess)

            self.logger.info(
                f"Initial estimate ({'planar' if is_planar else 'non-planar'} rig, "
                f"{len(worlds)} views): {parameters}"
            )
            session.update(parameters, poses, iteration=0)

            self._transition(session, CalibrationState.OPTIMIZING)
            self._optimize(session, worlds, pixels, deadline)
        except Exception as e:
            session.fail(str(e))
            self.logger.error(f"Calibration failed: {e}")
            raise

        self._transition(session, CalibrationState.CONVERGED)
        return CalibrationResult(
            parameters=session.parameters,
            poses=session.poses,
            statistics=session.statistics,
            view_status=session.view_status,
            iterations=session.iterations,
            planar=is_planar,
        )

    # -------------------------------------------------------------------------
    # Setup
    # -------------------------------------------------------------------------

    def _transition(self, session: CalibrationSession, state: CalibrationState) -> None:
        previous = session.state
        session.transition(state)
        self.logger.info(f"Calibration state: {previous.name} -> {state.name}")

    def _prepare_views(self, views: Sequence[ViewInput]) -> Tuple[List[np.ndarray], List[np.ndarray]]:
        if views is None or len(views) == 0:
            raise InvalidInput("No calibration views given")

        worlds, pixels = [], []
        for index, view in enumerate(views):
            if isinstance(view, tuple) and len(view) == 2:
                world = np.atleast_2d(np.asarray(view[0], dtype=np.float64))
                pixel = np.atleast_2d(np.asarray(view[1], dtype=np.float64))
                if world.shape[1] != 3 or pixel.shape[1] != 2:
                    raise InvalidInput(
                        f"View {index}: expected (N, 3) world and (N, 2) pixel arrays"
                    )
            else:
                world, pixel = split_view(view)
            check_view_geometry(world, pixel, index)
            worlds.append(world)
            pixels.append(pixel)
        return worlds, pixels

    def _is_planar(self, worlds: Sequence[np.ndarray], planar: Optional[bool]) -> bool:
        detected = detect_planar_rig(worlds, self.config.planar_tolerance)
        if planar is None:
            return detected
        if planar and not detected:
            self.logger.warning("Rig declared planar but world Z varies within a view")
        return bool(planar)

    # -------------------------------------------------------------------------
    # Optimization
    # -------------------------------------------------------------------------

    def _check_interrupt(self, deadline: Optional[float], iteration: int, cost: float) -> None:
        if self._cancel.is_set():
            raise ConvergenceFailure("Calibration cancelled", iteration=iteration, cost=cost)
        if deadline is not None and time.monotonic() >= deadline:
            raise ConvergenceFailure(
                f"Deadline reached after {iteration} iterations", iteration=iteration, cost=cost
            )

    def _view_block(
        self,
        x: np.ndarray,
        view: int,
        world: np.ndarray,
        pixel: np.ndarray,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """JᵀJ (14x14) and Jᵀr (14,) of one view by central differences."""
        vector = _view_vector(x, view)
        residuals = _view_residuals(vector, world, pixel)

        J = np.empty((len(residuals), len(vector)))
        for k in range(len(vector)):
            h = self.config.jacobian_step * max(1.0, abs(vector[k]))
            forward = vector.copy()
            backward = vector.copy()
            forward[k] += h
            backward[k] -= h
            J[:, k] = (
                _view_residuals(forward, world, pixel) - _view_residuals(backward, world, pixel)
            ) / (2.0 * h)

        return J.T @ J, J.T @ residuals

    def _normal_equations(
        self,
        executor: Executor,
        x: np.ndarray,
        worlds: Sequence[np.ndarray],
        pixels: Sequence[np.ndarray],
    ) -> Tuple[np.ndarray, np.ndarray, List[float]]:
        """Assemble JᵀJ and Jᵀr over all views; also returns per-view pose conditioning."""
        blocks = list(executor.map(
            lambda args: self._view_block(x, *args),
            [(i, world, pixel) for i, (world, pixel) in enumerate(zip(worlds, pixels))],
        ))

        normal = np.zeros((len(x), len(x)))
        gradient = np.zeros(len(x))
        pose_rcond = []
        for view, (JtJ, Jtr) in enumerate(blocks):
            cols = _view_columns(view)
            normal[np.ix_(cols, cols)] += JtJ
            gradient[cols] += Jtr
            pose_rcond.append(_scaled_rcond(JtJ[INTRINSIC_COUNT:, INTRINSIC_COUNT:]))
        return normal, gradient, pose_rcond

    def _total_cost(
        self,
        executor: Executor,
        x: np.ndarray,
        worlds: Sequence[np.ndarray],
        pixels: Sequence[np.ndarray],
    ) -> float:
        residuals = executor.map(
            lambda i: _view_residuals(_view_vector(x, i), worlds[i], pixels[i]),
            range(len(worlds)),
        )
        return float(sum(r @ r for r in residuals))

    def _optimize(
        self,
        session: CalibrationSession,
        worlds: Sequence[np.ndarray],
        pixels: Sequence[np.ndarray],
        deadline: Optional[float],
    ) -> None:
        config = self.config
        n_views = len(worlds)
        point_count = sum(len(world) for world in worlds)
        target_cost = config.target_rms ** 2 * point_count

        x = _pack(session.parameters, session.poses)
        damping = config.initial_damping
        iteration = 0

        with ThreadPoolExecutor(max_workers=config.max_workers) as executor:
            try:
                cost = self._total_cost(executor, x, worlds, pixels)
            except DegenerateProjection as e:
                raise ConvergenceFailure(
                    f"Initial estimate places points behind the camera: {e}", iteration=0
                ) from e
            session.update(session.parameters, session.poses, cost=cost)

            converged = cost <= target_cost
            while not converged:
                self._check_interrupt(deadline, iteration, cost)
                if iteration >= config.max_iterations:
                    raise ConvergenceFailure(
                        f"No convergence within {config.max_iterations} iterations "
                        f"(cost {cost:.6g})",
                        iteration=iteration,
                        cost=cost,
                    )
                iteration += 1

                normal, gradient, pose_rcond = self._normal_equations(executor, x, worlds, pixels)
                diag = np.diag(normal).copy()
                if np.any(diag <= 0):
                    raise SingularNormalEquations(
                        "Some parameters have no effect on the residuals",
                        iteration=iteration,
                    )
                scale = 1.0 / np.sqrt(diag)
                scaled = normal * scale[:, None] * scale[None, :]
                scaled_gradient = gradient * scale

                rcond = _scaled_rcond(normal)
                if rcond < config.singular_rcond:
                    raise SingularNormalEquations(
                        f"Normal equations are singular (rcond {rcond:.3g})",
                        iteration=iteration,
                        rcond=rcond,
                    )

                while True:
                    step = self._damped_step(scaled, scaled_gradient, damping, iteration, rcond) * scale
                    trial_cost = self._trial_cost(executor, x + step, worlds, pixels)

                    if trial_cost is not None and trial_cost < cost:
                        decrease = (cost - trial_cost) / cost
                        x = x + step
                        cost = trial_cost
                        damping = max(damping * config.damping_down, 1e-15)
                        parameters, poses = _unpack(x, n_views)
                        session.update(parameters, poses, cost=cost, iteration=iteration)
                        self.logger.debug(
                            f"Iteration {iteration}: cost {cost:.6g}, "
                            f"rms {np.sqrt(cost / point_count):.4g} px, damping {damping:.2g}"
                        )
                        converged = decrease < config.relative_tolerance or cost <= target_cost
                        break

                    damping *= config.damping_up
                    if damping > config.max_damping:
                        gradient_norm = float(np.max(np.abs(scaled_gradient)))
                        if gradient_norm <= config.gradient_tolerance * np.sqrt(cost):
                            self.logger.debug(
                                f"Iteration {iteration}: no further decrease at maximum damping"
                            )
                            converged = True
                            break
                        raise ConvergenceFailure(
                            f"Damping exceeded {config.max_damping:g} without reducing "
                            f"the cost (cost {cost:.6g})",
                            iteration=iteration,
                            cost=cost,
                        )

            if iteration == 0:
                _, _, pose_rcond = self._normal_equations(executor, x, worlds, pixels)

        parameters, poses = _unpack(x, n_views)
        statistics = residual_statistics(worlds, pixels, parameters, poses)
        view_status = self._view_status(statistics, pose_rcond)
        session.update(parameters, poses, iteration=iteration)
        session.set_statistics(statistics, view_status)
        self.logger.info(
            f"Converged after {iteration} iterations: rms {statistics.rms:.4g} px, "
            f"max {statistics.max_error:.4g} px"
        )

    def _damped_step(
        self,
        scaled: np.ndarray,
        scaled_gradient: np.ndarray,
        damping: float,
        iteration: int,
        rcond: float,
    ) -> np.ndarray:
        damped = scaled + damping * np.eye(len(scaled))
        try:
            factor = cho_factor(damped)
        except LinAlgError as e:
            raise SingularNormalEquations(
                f"Cholesky factorisation failed: {e}", iteration=iteration, rcond=rcond
            ) from e
        return -cho_solve(factor, scaled_gradient)

    def _trial_cost(
        self,
        executor: Executor,
        x: np.ndarray,
        worlds: Sequence[np.ndarray],
        pixels: Sequence[np.ndarray],
    ) -> Optional[float]:
        """Cost at a trial point, or None if the step is not admissible."""
        if not np.all(np.isfinite(x)):
            return None
        try:
            return self._total_cost(executor, x, worlds, pixels)
        except (DegenerateProjection, InvalidInput):
            # Points behind a camera or non-positive focal length
            return None

    def _view_status(
        self,
        statistics: ResidualStatistics,
        pose_rcond: Sequence[float],
    ) -> List[ViewStatus]:
        status = []
        for view, (rms, rcond) in enumerate(zip(statistics.view_rms, pose_rcond)):
            if rcond < self.config.degenerate_rcond:
                status.append(ViewStatus.DEGENERATE)
                self.logger.warning(f"View {view}: pose is poorly constrained (rcond {rcond:.3g})")
            elif rms > self.config.view_rms_threshold:
                status.append(ViewStatus.HIGH_RESIDUAL)
                self.logger.warning(f"View {view}: high residual (rms {rms:.4g} px)")
            else:
                status.append(ViewStatus.CONVERGED)
        return status
