"""
Initial Parameter Estimation Module.

Nonlinear calibration needs a starting point close enough to the optimum.
This module provides it.

Planar Rigs:
============
If every world point of a view has the same Z (within tolerance), the rig
is planar and the view is related to the image by a homography

    p ~ H · (X, Y, 1)ᵀ,    H = K · [r1  r2  t']

Vanishing Points:
-----------------
Parallel rig lines along a direction (a, b, 0) converge in the image at the
vanishing point v = H · (a, b, 0)ᵀ. For two orthogonal rig directions the
back-projected rays K⁻¹v₁ and K⁻¹v₂ are orthogonal, which with zero skew,
square pixels and a known principal point c gives

    f² = -((v₁ - c)·(v₂ - c))        (v in inhomogeneous pixel coordinates)

Two orthogonal pairs are used per view: the rig axes (h1, h2) and the
diagonals (h1 + h2, h1 - h2). The median over all usable pairs seeds fx and
fy; the principal point starts at the image center.

Pose From Homography:
---------------------
    B = K⁻¹ · H = λ · [r1  r2  t'],    λ = 2 / (‖b1‖ + ‖b2‖)
    r3 = r1 × r2

The sign of λ is chosen so that the rig lies in front of the camera, and
[r1 r2 r3] is projected back onto SO(3) with an SVD.

Non-Planar Rigs:
================
No automatic intrinsic estimate is attempted; an initial guess is required
and per-view poses are obtained with cv2.solvePnP.
"""

from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np

from .distortion import DistortionSolver
from .errors import InvalidInput, NoInitialGuess
from .extrinsics import RelativePosition
from .intrinsics import CameraParameters, image_center
from .projection import pixel_to_normalized_distorted, normalized_to_pixel


MIN_POINTS_PER_VIEW = 4


# =============================================================================
# Input Geometry Checks
# =============================================================================

def _is_collinear(points: np.ndarray, tolerance: float = 1e-9) -> bool:
    """True if points span at most a line (relative to their spread)."""
    centered = points - points.mean(axis=0)
    singular_values = np.linalg.svd(centered, compute_uv=False)
    if singular_values[0] == 0:
        return True
    return bool(singular_values[1] <= tolerance * singular_values[0])


def check_view_geometry(world: np.ndarray, pixel: np.ndarray, view_index: int = 0) -> None:
    """
    Validate one view's correspondences.

    Raises:
        InvalidInput: Fewer than 4 points, non-finite values, mismatched
            counts, or collinear world/pixel points.
    """
    if len(world) != len(pixel):
        raise InvalidInput(
            f"View {view_index}: {len(world)} world points but {len(pixel)} pixels"
        )
    if len(world) < MIN_POINTS_PER_VIEW:
        raise InvalidInput(
            f"View {view_index}: {len(world)} correspondences, at least "
            f"{MIN_POINTS_PER_VIEW} non-collinear points are required"
        )
    if not (np.all(np.isfinite(world)) and np.all(np.isfinite(pixel))):
        raise InvalidInput(f"View {view_index}: correspondences contain non-finite values")
    if _is_collinear(world) or _is_collinear(pixel):
        raise InvalidInput(f"View {view_index}: correspondences are collinear")


def is_planar_view(world: np.ndarray, tolerance: float = 1e-6) -> bool:
    """
    True if the view's world points share one Z value.

    The Z standard deviation is compared against the in-plane extent so the
    test does not depend on the rig's units.
    """
    world = np.asarray(world, dtype=np.float64)
    extent = max(np.ptp(world[:, 0]), np.ptp(world[:, 1]))
    if extent == 0:
        return False
    return bool(np.std(world[:, 2]) <= tolerance * extent)


def detect_planar_rig(worlds: Sequence[np.ndarray], tolerance: float = 1e-6) -> bool:
    """True if every view is planar."""
    return all(is_planar_view(world, tolerance) for world in worlds)


# =============================================================================
# Homography and Vanishing Points
# =============================================================================

def estimate_homography(plane_points: np.ndarray, pixels: np.ndarray) -> np.ndarray:
    """
    Least-squares homography from rig-plane coordinates (N, 2) to pixels (N, 2).

    Returns:
        np.ndarray: 3x3 homography normalised to H[2, 2] = 1 when possible.

    Raises:
        InvalidInput: If OpenCV cannot estimate a homography.
    """
    H, _mask = cv2.findHomography(
        np.asarray(plane_points, dtype=np.float64),
        np.asarray(pixels, dtype=np.float64),
        method=0,
    )
    if H is None or not np.all(np.isfinite(H)):
        raise InvalidInput("Homography estimation failed (degenerate rig geometry)")
    if abs(H[2, 2]) > 1e-12:
        H = H / H[2, 2]
    return H


def vanishing_point_pairs(H: np.ndarray) -> List[Tuple[np.ndarray, np.ndarray]]:
    """
    Homogeneous vanishing points of two orthogonal rig direction pairs.

    Returns:
        List of (v1, v2): the rig axes and the rig diagonals.
    """
    h1 = H[:, 0]
    h2 = H[:, 1]
    return [(h1, h2), (h1 + h2, h1 - h2)]


def focal_from_vanishing_points(
    v1: np.ndarray,
    v2: np.ndarray,
    center: Tuple[float, float],
    min_w: float = 1e-6,
) -> Optional[float]:
    """
    Focal length implied by two orthogonal vanishing points.

    Args:
        v1, v2: Homogeneous vanishing points (3,).
        center: Principal point (cx, cy).
        min_w: Minimum relative homogeneous weight; smaller means the
            vanishing point is at infinity (lines parallel in the image).

    Returns:
        Optional[float]: f, or None when the pair carries no information.
    """
    cx, cy = center
    w1 = v1[2] / np.linalg.norm(v1)
    w2 = v2[2] / np.linalg.norm(v2)
    if abs(w1) < min_w or abs(w2) < min_w:
        return None

    a1 = v1[0] / v1[2] - cx
    b1 = v1[1] / v1[2] - cy
    a2 = v2[0] / v2[2] - cx
    b2 = v2[1] / v2[2] - cy
    f_squared = -(a1 * a2 + b1 * b2)
    if not np.isfinite(f_squared) or f_squared <= 0:
        return None
    return float(np.sqrt(f_squared))


def estimate_focal_length(
    homographies: Sequence[np.ndarray],
    center: Tuple[float, float],
) -> Optional[float]:
    """
    Median focal length over all usable vanishing-point pairs.

    Returns None if no view yields a usable estimate (e.g. every view is
    fronto-parallel).
    """
    estimates = []
    for H in homographies:
        for v1, v2 in vanishing_point_pairs(H):
            f = focal_from_vanishing_points(v1, v2, center)
            if f is not None:
                estimates.append(f)
    if not estimates:
        return None
    return float(np.median(estimates))


def pose_from_homography(
    H: np.ndarray,
    K: np.ndarray,
    z_offset: float = 0.0,
) -> RelativePosition:
    """
    Decompose a rig-plane homography into a camera pose.

    Args:
        H: Homography from rig-plane (X, Y) to pixels.
        K: 3x3 intrinsic matrix.
        z_offset: Common Z of the rig points in world coordinates.

    Returns:
        RelativePosition: World-to-camera pose.
    """
    B = np.linalg.solve(K, H)
    b1, b2, b3 = B[:, 0], B[:, 1], B[:, 2]

    scale = 2.0 / (np.linalg.norm(b1) + np.linalg.norm(b2))
    if scale * b3[2] < 0:
        # Rig origin must be in front of the camera
        scale = -scale

    r1 = scale * b1
    r2 = scale * b2
    r3 = np.cross(r1, r2)
    U, _, Vt = np.linalg.svd(np.column_stack([r1, r2, r3]))
    R = U @ Vt
    if np.linalg.det(R) < 0:
        U[:, -1] *= -1
        R = U @ Vt

    t = scale * b3 - R[:, 2] * z_offset
    return RelativePosition.from_matrix(R, t)


# =============================================================================
# Full Initialization
# =============================================================================

def _undistorted_pixels(pixels: np.ndarray, params: CameraParameters) -> np.ndarray:
    if not params.has_distortion:
        return pixels
    normalized = DistortionSolver().undistort(pixel_to_normalized_distorted(pixels, params), params)
    return normalized_to_pixel(normalized, params.without_distortion())


def initialize_planar(
    worlds: Sequence[np.ndarray],
    pixels: Sequence[np.ndarray],
    image_size: Tuple[int, int],
    initial_guess: Optional[CameraParameters] = None,
) -> Tuple[CameraParameters, List[RelativePosition]]:
    """
    Initial intrinsics and per-view poses for a planar rig.

    Args:
        worlds: Per-view world points (N_i, 3), planar in Z.
        pixels: Per-view observed pixels (N_i, 2).
        image_size: (width, height) of the images.
        initial_guess: Intrinsics to start from instead of the vanishing
            point estimate.

    Returns:
        Tuple of the initial CameraParameters and one pose per view.

    Raises:
        NoInitialGuess: If no guess is given and the vanishing points carry
            no focal length information.
    """
    width, height = image_size

    if initial_guess is None:
        center = image_center(width, height)
        homographies = [
            estimate_homography(world[:, :2], pixel) for world, pixel in zip(worlds, pixels)
        ]
        focal = estimate_focal_length(homographies, center)
        if focal is None:
            raise NoInitialGuess(
                "Vanishing points give no focal length estimate (views are "
                "fronto-parallel); supply an initial guess"
            )
        params = CameraParameters(fx=focal, fy=focal, cx=center[0], cy=center[1])
    else:
        params = initial_guess
        homographies = [
            estimate_homography(world[:, :2], _undistorted_pixels(pixel, params))
            for world, pixel in zip(worlds, pixels)
        ]

    poses = [
        pose_from_homography(H, params.K, z_offset=float(np.mean(world[:, 2])))
        for H, world in zip(homographies, worlds)
    ]
    return params, poses


def initialize_with_guess(
    worlds: Sequence[np.ndarray],
    pixels: Sequence[np.ndarray],
    initial_guess: Optional[CameraParameters],
) -> Tuple[CameraParameters, List[RelativePosition]]:
    """
    Per-view poses for a non-planar rig from supplied intrinsics.

    Raises:
        NoInitialGuess: If initial_guess is None.
    """
    if initial_guess is None:
        raise NoInitialGuess(
            "Non-planar rig: initial intrinsics must be supplied"
        )

    distortion = np.array(
        [initial_guess.k1, initial_guess.k2, initial_guess.p1, initial_guess.p2],
        dtype=np.float64,
    )
    poses = []
    for index, (world, pixel) in enumerate(zip(worlds, pixels)):
        ok, rvec, tvec = cv2.solvePnP(
            world.astype(np.float64),
            pixel.astype(np.float64),
            initial_guess.K,
            distortion,
            flags=cv2.SOLVEPNP_EPNP,
        )
        if not ok:
            raise InvalidInput(f"View {index}: pose estimation failed")
        ok, rvec, tvec = cv2.solvePnP(
            world.astype(np.float64),
            pixel.astype(np.float64),
            initial_guess.K,
            distortion,
            rvec=rvec,
            tvec=tvec,
            useExtrinsicGuess=True,
            flags=cv2.SOLVEPNP_ITERATIVE,
        )
        if not ok:
            raise InvalidInput(f"View {index}: pose estimation failed")
        poses.append(RelativePosition(rotation=rvec.flatten(), translation=tvec.flatten()))
    return initial_guess, poses
