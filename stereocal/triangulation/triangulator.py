"""
Multi-View Stereo Triangulation Module.

Reconstructs a 3D point from its pixel observations in two or more
calibrated cameras.

Mathematical Background:
========================

Viewing rays:
-------------
Each observed pixel is undistorted to normalized coordinates (x_n, y_n) and
turned into a world-frame ray

    origin    C = -Rᵀ · T                  (camera aperture)
    direction d = Rᵀ · (x_n, y_n, 1) / ‖·‖

Pairwise closest approach:
--------------------------
With noisy pixels two rays rarely intersect. For rays o1 + s·d1 and
o2 + t·d2 the closest points minimise ‖(o1 + s·d1) - (o2 + t·d2)‖²:

    w0 = o1 - o2
    a = d1·d1,  b = d1·d2,  c = d2·d2,  d = d1·w0,  e = d2·w0
    s = (b·e - c·d) / (a·c - b²)
    t = (a·e - b·d) / (a·c - b²)

and the pair estimate is the midpoint of the two closest points. The
denominator vanishes for parallel rays, so pairs whose angle is below
min_baseline_angle are rejected, as is any pair left numerically parallel.

Averaging and quality:
----------------------
Surviving pair estimates are averaged (unweighted by default, optionally
weighted by sin(angle)). The quality metric is the RMS perpendicular
distance from the final point to every observation ray; it is zero only for
perfectly consistent observations.
"""

import itertools
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, Hashable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from ..calibration.distortion import DistortionSolver
from ..calibration.errors import (
    DegenerateGeometry,
    InsufficientViews,
    InvalidInput,
)
from ..calibration.extrinsics import RelativePosition
from ..calibration.intrinsics import CameraParameters
from ..calibration.projection import pixel_to_ray, project_points
from ..utils.config_loader import section_from_dict
from ..utils.logger import LoggerMixin, ProgressLogger


WEIGHTING_MODES = ("mean", "angle")


# =============================================================================
# Data Types
# =============================================================================

@dataclass(frozen=True)
class Observation:
    """
    One pixel observation of a 3D point.

    Attributes:
        camera_id: Identifier of the observing calibrated camera.
        pixel_point: Observed pixel (u, v).
    """

    camera_id: Hashable
    pixel_point: np.ndarray

    def __post_init__(self):
        pixel = np.asarray(self.pixel_point, dtype=np.float64).flatten()
        if pixel.shape != (2,):
            raise InvalidInput(f"Pixel point must have 2 values, got {pixel.shape[0]}")
        if not np.all(np.isfinite(pixel)):
            raise InvalidInput(f"Pixel point for camera {self.camera_id!r} is not finite")
        pixel.setflags(write=False)
        object.__setattr__(self, "pixel_point", pixel)


@dataclass(frozen=True)
class CalibratedCamera:
    """
    Calibration state of one physical camera: intrinsics plus world pose.

    Attributes:
        parameters: Intrinsic parameters.
        pose: World-to-camera transformation.
    """

    parameters: CameraParameters
    pose: RelativePosition

    @property
    def center(self) -> np.ndarray:
        """Camera aperture in world coordinates."""
        return self.pose.camera_center

    def ray(
        self,
        pixel: np.ndarray,
        solver: Optional[DistortionSolver] = None,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """World-frame viewing ray (origin, unit direction) through a pixel."""
        return pixel_to_ray(pixel, self.parameters, self.pose, solver)

    def project(self, world_points: np.ndarray) -> np.ndarray:
        """Project world points to pixels."""
        return project_points(world_points, self.parameters, self.pose)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "parameters": self.parameters.to_dict(),
            "pose": self.pose.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CalibratedCamera":
        try:
            parameters = data["parameters"]
            pose = data["pose"]
        except (KeyError, TypeError) as e:
            raise InvalidInput(f"Camera entry needs 'parameters' and 'pose': {e}") from e
        try:
            return cls(CameraParameters.from_dict(parameters), RelativePosition.from_dict(pose))
        except InvalidInput:
            raise
        except (TypeError, ValueError) as e:
            raise InvalidInput(f"Malformed camera entry: {e}") from e


@dataclass(frozen=True)
class Point3D:
    """
    Reconstructed world point.

    Attributes:
        x, y, z: World coordinates.
        quality: RMS distance from the point to the observation rays
            (world units, lower is better).
        pair_count: Number of camera pairs that contributed.
        max_pair_deviation: Largest distance of a pair estimate from the point.
    """

    x: float
    y: float
    z: float
    quality: float
    pair_count: int = 1
    max_pair_deviation: float = 0.0

    @property
    def xyz(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z])

    def to_dict(self) -> Dict[str, float]:
        return {
            "x": self.x,
            "y": self.y,
            "z": self.z,
            "quality": self.quality,
            "pair_count": self.pair_count,
            "max_pair_deviation": self.max_pair_deviation,
        }


@dataclass
class TriangulatorConfig:
    """
    Triangulation settings ('triangulation' config section).

    Attributes:
        min_baseline_angle: Minimum angle (radians) between two rays for the
            pair to be used.
        weighting: 'mean' for the unweighted average of pair estimates,
            'angle' to weight each pair by sin(angle).
        max_workers: Thread pool size for batch triangulation.
    """

    min_baseline_angle: float = 1e-3
    weighting: str = "mean"
    max_workers: Optional[int] = None

    def __post_init__(self):
        if self.min_baseline_angle < 0:
            raise ValueError(f"min_baseline_angle must be >= 0, got {self.min_baseline_angle}")
        if self.weighting not in WEIGHTING_MODES:
            raise ValueError(f"weighting must be one of {WEIGHTING_MODES}, got {self.weighting!r}")

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]] = None) -> "TriangulatorConfig":
        return section_from_dict(cls, data)


# =============================================================================
# Ray Geometry
# =============================================================================

def ray_angle(d1: np.ndarray, d2: np.ndarray) -> float:
    """Angle in radians (0..π/2) between two ray directions."""
    cross = np.linalg.norm(np.cross(d1, d2))
    dot = abs(float(np.dot(d1, d2)))
    return float(np.arctan2(cross, dot))


def closest_point_between_rays(
    o1: np.ndarray,
    d1: np.ndarray,
    o2: np.ndarray,
    d2: np.ndarray,
) -> Tuple[np.ndarray, float]:
    """
    Midpoint of the closest approach of two lines.

    Args:
        o1, d1: Origin and direction of the first ray.
        o2, d2: Origin and direction of the second ray.

    Returns:
        Tuple[np.ndarray, float]:
            - midpoint: (3,) point halfway between the closest points
            - distance: Distance between the two closest points

    Raises:
        DegenerateGeometry: If the rays are parallel.
    """
    w0 = o1 - o2
    a = d1 @ d1
    b = d1 @ d2
    c = d2 @ d2
    d = d1 @ w0
    e = d2 @ w0

    denom = a * c - b * b
    if abs(denom) < 1e-12 * a * c:
        raise DegenerateGeometry("Rays are parallel")

    s = (b * e - c * d) / denom
    t = (a * e - b * d) / denom

    p1 = o1 + s * d1
    p2 = o2 + t * d2
    return 0.5 * (p1 + p2), float(np.linalg.norm(p1 - p2))


def distance_to_rays(point: np.ndarray, origins: np.ndarray, directions: np.ndarray) -> np.ndarray:
    """Perpendicular distance from a point to each line (origins/directions (N, 3), unit)."""
    offsets = point - origins
    along = np.sum(offsets * directions, axis=1)
    perpendicular = offsets - along[:, None] * directions
    return np.linalg.norm(perpendicular, axis=1)


# =============================================================================
# Triangulator
# =============================================================================

ObservationInput = Union[Sequence[Observation], Mapping[Hashable, Sequence[float]]]


class StereoTriangulator(LoggerMixin):
    """
    Reconstructs 3D points from simultaneous observations by calibrated cameras.

    Camera state is read-only after construction, so one triangulator can be
    shared by any number of threads.

    Example:
        >>> triangulator = StereoTriangulator({"left": left, "right": right})
        >>> point = triangulator.triangulate({"left": (412.0, 230.5), "right": (288.3, 231.0)})
        >>> point.xyz, point.quality
    """

    def __init__(
        self,
        cameras: Mapping[Hashable, CalibratedCamera],
        config: Optional[TriangulatorConfig] = None,
        solver: Optional[DistortionSolver] = None,
    ):
        """
        Initialize triangulator.

        Args:
            cameras: Calibration state keyed by camera id.
            config: Triangulation settings.
            solver: Distortion solver used to undistort observations.
        """
        for camera_id, camera in cameras.items():
            if not isinstance(camera, CalibratedCamera):
                raise InvalidInput(
                    f"Camera {camera_id!r} must be a CalibratedCamera, got {type(camera).__name__}"
                )
        self._cameras = MappingProxyType(dict(cameras))
        self.config = config or TriangulatorConfig()
        self.solver = solver or DistortionSolver()

    @property
    def cameras(self) -> Mapping[Hashable, CalibratedCamera]:
        return self._cameras

    def _as_observations(self, observations: ObservationInput) -> List[Observation]:
        if isinstance(observations, Mapping):
            items = [Observation(camera_id, pixel) for camera_id, pixel in observations.items()]
        else:
            items = []
            for obs in observations:
                if not isinstance(obs, Observation):
                    try:
                        camera_id, pixel = obs
                    except (TypeError, ValueError) as e:
                        raise InvalidInput(f"Expected (camera_id, pixel) pairs, got {obs!r}") from e
                    obs = Observation(camera_id, pixel)
                items.append(obs)

        seen = set()
        for obs in items:
            if obs.camera_id in seen:
                raise InvalidInput(f"Camera {obs.camera_id!r} observed the point more than once")
            seen.add(obs.camera_id)
            if obs.camera_id not in self._cameras:
                raise InvalidInput(f"Unknown camera id {obs.camera_id!r}")
        return items

    def triangulate(self, observations: ObservationInput) -> Point3D:
        """
        Reconstruct one 3D point.

        Args:
            observations: Observation list, or a mapping camera_id → pixel.

        Returns:
            Point3D: Averaged estimate with its quality metric.

        Raises:
            InvalidInput: Unknown or duplicated camera id, malformed pixel.
            InsufficientViews: Fewer than two observations.
            DegenerateGeometry: Every camera pair is near-parallel.
            UndistortDivergence: A pixel cannot be undistorted.
        """
        items = self._as_observations(observations)
        camera_ids = [obs.camera_id for obs in items]
        if len(items) < 2:
            raise InsufficientViews(
                f"Triangulation needs at least 2 observations, got {len(items)}",
                camera_ids=camera_ids,
            )

        origins = np.empty((len(items), 3))
        directions = np.empty((len(items), 3))
        for i, obs in enumerate(items):
            origins[i], directions[i] = self._cameras[obs.camera_id].ray(obs.pixel_point, self.solver)

        estimates = []
        weights = []
        for i, j in itertools.combinations(range(len(items)), 2):
            angle = ray_angle(directions[i], directions[j])
            if angle < self.config.min_baseline_angle:
                self.logger.debug(
                    f"Rejecting pair ({camera_ids[i]!r}, {camera_ids[j]!r}): "
                    f"baseline angle {angle:.2e} rad"
                )
                continue
            try:
                midpoint, _ = closest_point_between_rays(
                    origins[i], directions[i], origins[j], directions[j]
                )
            except DegenerateGeometry:
                self.logger.debug(f"Rejecting pair ({camera_ids[i]!r}, {camera_ids[j]!r}): parallel rays")
                continue
            estimates.append(midpoint)
            weights.append(np.sin(angle) if self.config.weighting == "angle" else 1.0)

        if not estimates:
            raise DegenerateGeometry(
                f"All camera pairs are parallel or below the minimum baseline angle "
                f"({self.config.min_baseline_angle:g} rad)",
                camera_ids=camera_ids,
            )

        estimates = np.array(estimates)
        point = np.average(estimates, axis=0, weights=np.array(weights))
        distances = distance_to_rays(point, origins, directions)
        quality = float(np.sqrt(np.mean(distances ** 2)))
        deviation = float(np.max(np.linalg.norm(estimates - point, axis=1)))

        return Point3D(
            x=float(point[0]),
            y=float(point[1]),
            z=float(point[2]),
            quality=quality,
            pair_count=len(estimates),
            max_pair_deviation=deviation,
        )

    def triangulate_batch(
        self,
        queries: Sequence[ObservationInput],
        max_workers: Optional[int] = None,
        log_progress: bool = False,
    ) -> List[Point3D]:
        """
        Reconstruct independent points on a thread pool.

        Args:
            queries: One observation set per point.
            max_workers: Pool size (config.max_workers if None).
            log_progress: Log progress through ProgressLogger.

        Returns:
            List[Point3D]: Results in query order.

        Raises:
            The first failure of any query, in query order.
        """
        workers = max_workers or self.config.max_workers
        results = []
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [executor.submit(self.triangulate, query) for query in queries]
            if not log_progress:
                return [future.result() for future in futures]
            with ProgressLogger(len(futures), self.logger, description="Triangulating") as progress:
                for future in futures:
                    results.append(future.result())
                    progress.update()
        return results

    def reprojection_residuals(self, point: Point3D, observations: ObservationInput) -> Dict[Hashable, float]:
        """Pixel distance between each observation and the projected point."""
        residuals = {}
        for obs in self._as_observations(observations):
            projected = self._cameras[obs.camera_id].project(point.xyz)
            residuals[obs.camera_id] = float(np.linalg.norm(projected - obs.pixel_point))
        return residuals
