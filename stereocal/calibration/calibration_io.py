"""
Calibration persistence.

Calibration state is stored as YAML:

    cameras:
      left:
        parameters: {fx: ..., fy: ..., cx: ..., cy: ..., k1: ..., k2: ..., p1: ..., p2: ...}
        pose: {rotation: [rx, ry, rz], translation: [tx, ty, tz]}
      right:
        ...
    statistics:            # optional
      rms: ...
      view_rms: [...]

Rotations are persisted in axis-angle form only.
"""

from pathlib import Path
from typing import Dict, Hashable, Mapping, Optional, Sequence, Tuple, Union

import yaml

from ..triangulation.triangulator import CalibratedCamera
from ..utils.logger import get_logger, log_function_call
from .calibrator import CalibrationResult, ResidualStatistics
from .errors import InvalidInput


logger = get_logger(__name__)


def cameras_from_result(
    result: CalibrationResult,
    ids: Optional[Sequence[Hashable]] = None,
) -> Dict[Hashable, CalibratedCamera]:
    """
    Turn the views of a calibration into triangulation cameras.

    Every view shares the calibrated intrinsics and keeps its own pose, so
    a calibration of a fixed multi-camera rig (one view per camera, common
    world frame) yields the state the triangulator needs.

    Args:
        result: Converged calibration.
        ids: Camera id for each view (view index if None).
    """
    if ids is None:
        ids = list(range(len(result.poses)))
    if len(ids) != len(result.poses):
        raise InvalidInput(f"Got {len(ids)} ids for {len(result.poses)} views")
    if len(set(ids)) != len(ids):
        raise InvalidInput("Camera ids must be unique")
    return {
        camera_id: CalibratedCamera(result.parameters, pose)
        for camera_id, pose in zip(ids, result.poses)
    }


@log_function_call(logger)
def save_calibration(
    path: Union[str, Path],
    cameras: Mapping[Hashable, CalibratedCamera],
    statistics: Optional[ResidualStatistics] = None,
) -> None:
    """
    Write calibration state to a YAML file.

    Args:
        path: Output file.
        cameras: Cameras keyed by id.
        statistics: Residual statistics to store alongside.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    document = {"cameras": {camera_id: camera.to_dict() for camera_id, camera in cameras.items()}}
    if statistics is not None:
        document["statistics"] = statistics.to_dict()

    with open(path, "w") as f:
        yaml.safe_dump(document, f, default_flow_style=False, sort_keys=False)
    logger.info(f"Saved {len(cameras)} camera(s) to {path}")


@log_function_call(logger)
def load_calibration(
    path: Union[str, Path],
) -> Tuple[Dict[Hashable, CalibratedCamera], Optional[ResidualStatistics]]:
    """
    Read calibration state written by save_calibration.

    Returns:
        Tuple of cameras keyed by id and the stored statistics (or None).

    Raises:
        FileNotFoundError: If the file does not exist.
        InvalidInput: If the document is malformed.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Calibration file not found: {path}")

    with open(path, "r") as f:
        document = yaml.safe_load(f)

    if not isinstance(document, dict) or not isinstance(document.get("cameras"), dict):
        raise InvalidInput(f"{path}: expected a 'cameras' mapping")
    if not document["cameras"]:
        raise InvalidInput(f"{path}: no cameras defined")

    cameras = {}
    for camera_id, entry in document["cameras"].items():
        try:
            cameras[camera_id] = CalibratedCamera.from_dict(entry)
        except InvalidInput as e:
            raise InvalidInput(f"{path}: camera {camera_id!r}: {e}") from e

    statistics = None
    if document.get("statistics") is not None:
        statistics = ResidualStatistics.from_dict(document["statistics"])

    return cameras, statistics
