"""
3D-2D Projection Utilities Module.

This module implements the pinhole projection pipeline with lens
distortion, in both directions, as pure stateless functions.

Mathematical Background:
========================

Forward pipeline (world point X → pixel p):
-------------------------------------------
    1. World to camera:        X_c = R · X + T
    2. Perspective projection: x_n = (X_c / Z_c, Y_c / Z_c),  requires Z_c > 0
    3. Distortion:             x_d = distort(x_n; k1, k2, p1, p2)
    4. Normalized to pixel:    u = fx · x_d + cx,  v = fy · y_d + cy

Inverse pipeline (pixel p → normalized x_n):
--------------------------------------------
    1. Pixel to distorted normalized (exact affine inverse):
           x_d = (u - cx) / fx,  y_d = (v - cy) / fy
    2. Distortion inversion (iterative, see distortion.py)

Viewing ray:
------------
A pixel defines a ray from the camera aperture C = -Rᵀ T through the
world-frame direction Rᵀ · (x_n, y_n, 1).

Pixel coordinates use the top-left-pixel-center convention (see
intrinsics.py).
"""

from typing import Optional, Tuple

import numpy as np

from .distortion import DistortionSolver, apply_distortion, undistort
from .errors import DegenerateProjection, InvalidInput
from .extrinsics import RelativePosition
from .intrinsics import CameraParameters


__all__ = [
    "world_to_camera",
    "perspective_projection",
    "apply_distortion",
    "normalized_to_pixel",
    "pixel_to_normalized_distorted",
    "pixel_to_normalized",
    "project_points",
    "reprojection_errors",
    "pixel_to_ray",
]


def _as_points(points: np.ndarray, dim: int) -> Tuple[np.ndarray, bool]:
    points = np.asarray(points, dtype=np.float64)
    single = points.ndim == 1
    points = np.atleast_2d(points)
    if points.ndim != 2 or points.shape[1] != dim:
        raise InvalidInput(f"Expected points of shape (N, {dim}), got {points.shape}")
    return points, single


# =============================================================================
# Forward Pipeline
# =============================================================================

def world_to_camera(points: np.ndarray, pose: RelativePosition) -> np.ndarray:
    """
    Transform world points into the camera frame.

    Mathematical Form:
        X_c = R · X + T

    Args:
        points: 3D points (N, 3) or (3,) in world coordinates.
        pose: World-to-camera transformation.

    Returns:
        np.ndarray: Points in camera coordinates, same shape as input.
    """
    points, single = _as_points(points, 3)
    transformed = points @ pose.rotation_matrix.T + pose.translation
    return transformed[0] if single else transformed


def perspective_projection(points_cam: np.ndarray) -> np.ndarray:
    """
    Project camera-frame points onto the unit-depth image plane.

    Mathematical Form:
        x_n = X_c / Z_c,   y_n = Y_c / Z_c

    Args:
        points_cam: 3D points (N, 3) or (3,) in camera coordinates.

    Returns:
        np.ndarray: Normalized image coordinates (N, 2) or (2,).

    Raises:
        DegenerateProjection: If any point has Z_c <= 0 (behind or on the
            camera plane). The offending indices are attached.

    Example:
        >>> perspective_projection(np.array([1.0, 2.0, 10.0]))
        array([0.1, 0.2])
    """
    points_cam, single = _as_points(points_cam, 3)
    depths = points_cam[:, 2]

    behind = ~(depths > 0)
    if np.any(behind):
        indices = np.flatnonzero(behind)
        raise DegenerateProjection(
            f"{len(indices)} point(s) behind or on the camera plane",
            indices=indices,
        )

    normalized = points_cam[:, :2] / depths[:, np.newaxis]
    return normalized[0] if single else normalized


def normalized_to_pixel(points: np.ndarray, params: CameraParameters) -> np.ndarray:
    """
    Map distorted normalized coordinates to pixels (zero skew).

    Mathematical Form:
        u = fx · x_d + cx
        v = fy · y_d + cy
    """
    points, single = _as_points(points, 2)
    pixels = np.empty_like(points)
    pixels[:, 0] = params.fx * points[:, 0] + params.cx
    pixels[:, 1] = params.fy * points[:, 1] + params.cy
    return pixels[0] if single else pixels


def pixel_to_normalized_distorted(pixels: np.ndarray, params: CameraParameters) -> np.ndarray:
    """
    Exact inverse of normalized_to_pixel.

    Mathematical Form:
        x_d = (u - cx) / fx
        y_d = (v - cy) / fy
    """
    pixels, single = _as_points(pixels, 2)
    points = np.empty_like(pixels)
    points[:, 0] = (pixels[:, 0] - params.cx) / params.fx
    points[:, 1] = (pixels[:, 1] - params.cy) / params.fy
    return points[0] if single else points


def pixel_to_normalized(
    pixels: np.ndarray,
    params: CameraParameters,
    solver: Optional[DistortionSolver] = None,
) -> np.ndarray:
    """
    Map pixels to undistorted normalized image coordinates.

    The affine part is inverted in closed form; distortion inversion is
    delegated to the DistortionSolver.

    Args:
        pixels: Pixel coordinates (N, 2) or (2,).
        params: Camera intrinsics.
        solver: Distortion solver (module default if None).

    Returns:
        np.ndarray: Normalized coordinates, same shape as input.

    Raises:
        UndistortDivergence: If distortion inversion fails for any pixel.
    """
    distorted = pixel_to_normalized_distorted(pixels, params)
    return undistort(distorted, params, solver)


def project_points(
    world_points: np.ndarray,
    params: CameraParameters,
    pose: Optional[RelativePosition] = None,
) -> np.ndarray:
    """
    Full projection pipeline from world coordinates to pixels.

    Pipeline:
        world → camera (if pose given) → perspective → distortion → pixel

    Args:
        world_points: 3D points (N, 3) or (3,).
        params: Camera intrinsics.
        pose: World-to-camera pose; points are taken as camera-frame if None.

    Returns:
        np.ndarray: Pixel coordinates (N, 2) or (2,).

    Raises:
        DegenerateProjection: If any point is behind the camera.

    Example:
        >>> params = CameraParameters(fx=1000, fy=1000, cx=320, cy=240)
        >>> project_points(np.array([0.0, 0.0, 1000.0]), params)
        array([320., 240.])
    """
    points_cam = world_points if pose is None else world_to_camera(world_points, pose)
    normalized = perspective_projection(points_cam)
    distorted = apply_distortion(normalized, params)
    return normalized_to_pixel(distorted, params)


def reprojection_errors(
    world_points: np.ndarray,
    pixels: np.ndarray,
    params: CameraParameters,
    pose: RelativePosition,
) -> np.ndarray:
    """
    Pixel-space residual vectors (projected - observed), shape (N, 2).
    """
    world_points, _ = _as_points(world_points, 3)
    pixels, _ = _as_points(pixels, 2)
    if len(world_points) != len(pixels):
        raise InvalidInput(
            f"Point count mismatch: {len(world_points)} world vs {len(pixels)} pixel"
        )
    return project_points(world_points, params, pose) - pixels


def pixel_to_ray(
    pixels: np.ndarray,
    params: CameraParameters,
    pose: RelativePosition,
    solver: Optional[DistortionSolver] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Convert pixels into world-frame viewing rays.

    Args:
        pixels: Pixel coordinates (N, 2) or (2,).
        params: Camera intrinsics.
        pose: World-to-camera pose of the observing camera.
        solver: Distortion solver (module default if None).

    Returns:
        Tuple[np.ndarray, np.ndarray]:
            - origins: Camera aperture in world frame (N, 3) or (3,)
            - directions: Unit ray directions in world frame (N, 3) or (3,)
    """
    pixels, single = _as_points(pixels, 2)
    normalized = pixel_to_normalized(pixels, params, solver)

    rays_cam = np.hstack([normalized, np.ones((len(normalized), 1))])
    directions = pose.rotate_to_world(rays_cam)
    directions /= np.linalg.norm(directions, axis=1, keepdims=True)
    origins = np.tile(pose.camera_center, (len(directions), 1))

    if single:
        return origins[0], directions[0]
    return origins, directions
