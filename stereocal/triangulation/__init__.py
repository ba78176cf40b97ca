"""
Multi-view triangulation with calibrated cameras.

Classes:
    Observation: One pixel observation of a point by a camera.
    CalibratedCamera: Intrinsics plus world pose of one camera.
    Point3D: Reconstructed point with quality metric.
    StereoTriangulator: Pairwise ray intersection and averaging.
    ObservationStream: Background consumer for streamed observations.
"""

from .triangulator import (
    CalibratedCamera,
    Observation,
    Point3D,
    StereoTriangulator,
    TriangulatorConfig,
    closest_point_between_rays,
    distance_to_rays,
    ray_angle,
)
from .stream import ObservationStream

__all__ = [
    "CalibratedCamera",
    "Observation",
    "Point3D",
    "StereoTriangulator",
    "TriangulatorConfig",
    "ObservationStream",
    "closest_point_between_rays",
    "distance_to_rays",
    "ray_angle",
]
