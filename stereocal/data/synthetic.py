"""
Synthetic calibration data.

Generates planar-rig correspondences from known intrinsics and poses, used
to validate calibration against ground truth.
"""

from typing import List, Optional, Sequence, Tuple

import numpy as np

from ..calibration.extrinsics import RelativePosition
from ..calibration.intrinsics import CameraParameters
from ..calibration.projection import project_points
from .correspondences import view_from_arrays
from .sample_set import SampleSet


def planar_grid(
    rows: int = 7,
    cols: int = 9,
    spacing: float = 0.03,
    z: float = 0.0,
) -> np.ndarray:
    """
    Checkerboard-like grid of rig points in the Z = z plane.

    Returns:
        np.ndarray: (rows * cols, 3) world points, centred on the origin.
    """
    xs = (np.arange(cols) - (cols - 1) / 2.0) * spacing
    ys = (np.arange(rows) - (rows - 1) / 2.0) * spacing
    X, Y = np.meshgrid(xs, ys)
    return np.column_stack([X.ravel(), Y.ravel(), np.full(X.size, z)])


def look_at_pose(
    camera_center: Sequence[float],
    target: Sequence[float] = (0.0, 0.0, 0.0),
    up: Sequence[float] = (0.0, -1.0, 0.0),
) -> RelativePosition:
    """
    World-to-camera pose of a camera at camera_center looking at target.

    The camera looks along +Z; image y points roughly along 'up' negated.
    """
    center = np.asarray(camera_center, dtype=np.float64)
    forward = np.asarray(target, dtype=np.float64) - center
    forward /= np.linalg.norm(forward)
    right = np.cross(forward, np.asarray(up, dtype=np.float64))
    if np.linalg.norm(right) < 1e-9:
        right = np.cross(forward, [1.0, 0.0, 0.0])
    right /= np.linalg.norm(right)
    down = np.cross(forward, right)

    R = np.vstack([right, down, forward])
    return RelativePosition.from_matrix(R, -R @ center)


def tilted_views(
    count: int = 6,
    distance: float = 0.5,
    tilt: float = np.radians(30.0),
) -> List[RelativePosition]:
    """
    Poses looking at the rig origin from `count` directions around the Z axis.

    Each camera is tilted by `tilt` away from the rig normal so that every
    view has finite vanishing points.
    """
    poses = []
    for k in range(count):
        azimuth = 2.0 * np.pi * k / count
        center = distance * np.array([
            np.sin(tilt) * np.cos(azimuth),
            np.sin(tilt) * np.sin(azimuth),
            -np.cos(tilt),
        ])
        poses.append(look_at_pose(center))
    return poses


def generate_views(
    parameters: CameraParameters,
    poses: Sequence[RelativePosition],
    world_points: Optional[np.ndarray] = None,
    noise_std: float = 0.0,
    seed: Optional[int] = None,
) -> List[SampleSet]:
    """
    Project rig points through known cameras.

    Args:
        parameters: Ground-truth intrinsics.
        poses: Ground-truth pose of each view.
        world_points: Rig points (planar_grid() if None).
        noise_std: Standard deviation of Gaussian pixel noise.
        seed: Random seed for the noise.

    Returns:
        List[SampleSet]: One correspondence view per pose.
    """
    if world_points is None:
        world_points = planar_grid()
    rng = np.random.default_rng(seed)

    views = []
    for pose in poses:
        pixels = project_points(world_points, parameters, pose)
        if noise_std > 0:
            pixels = pixels + rng.normal(scale=noise_std, size=pixels.shape)
        views.append(view_from_arrays(world_points, pixels))
    return views


def planar_calibration_scene(
    parameters: Optional[CameraParameters] = None,
    view_count: int = 6,
    noise_std: float = 0.0,
    seed: Optional[int] = None,
) -> Tuple[CameraParameters, List[RelativePosition], List[SampleSet]]:
    """
    Complete synthetic planar calibration problem.

    Returns:
        Tuple of ground-truth intrinsics, ground-truth poses and the views.
    """
    if parameters is None:
        parameters = CameraParameters(
            fx=800.0, fy=790.0, cx=319.5, cy=239.5,
            k1=-0.12, k2=0.03, p1=0.001, p2=-0.0008,
        )
    poses = tilted_views(view_count)
    views = generate_views(parameters, poses, noise_std=noise_std, seed=seed)
    return parameters, poses, views
