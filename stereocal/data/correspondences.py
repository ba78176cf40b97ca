"""
3D-2D point correspondences and pixel observations.

Calibration input is an ordered collection of views; each view is a
SampleSet of width 5 holding rows [X, Y, Z, u, v] (world point followed by
its observed pixel). Correspondences are produced externally by a rig
detector and consumed read-only.

File Formats:
=============
Correspondence CSV (one row per correspondence, header optional):

    view, X, Y, Z, u, v

Observation CSV for triangulation (header optional):

    point_id, camera_id, u, v
"""

import csv
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Sequence, Tuple, Union

import numpy as np

from ..calibration.errors import InvalidInput
from .sample_set import SampleSet


CORRESPONDENCE_WIDTH = 5


@dataclass(frozen=True)
class PointCorrespondence:
    """
    One world point and the pixel at which it was observed.

    Attributes:
        world_point: 3D point (3,) in world (rig) coordinates.
        pixel_point: Observed pixel (2,).
        view_index: Index of the view the observation belongs to.
    """

    world_point: Tuple[float, float, float]
    pixel_point: Tuple[float, float]
    view_index: int

    def to_row(self) -> np.ndarray:
        """Row [X, Y, Z, u, v] for a correspondence SampleSet."""
        return np.array([*self.world_point, *self.pixel_point], dtype=np.float64)


def view_from_arrays(world_points: np.ndarray, pixel_points: np.ndarray) -> SampleSet:
    """
    Build a view SampleSet from matching world (N, 3) and pixel (N, 2) arrays.
    """
    world_points = np.atleast_2d(np.asarray(world_points, dtype=np.float64))
    pixel_points = np.atleast_2d(np.asarray(pixel_points, dtype=np.float64))
    if world_points.shape[1] != 3 or pixel_points.shape[1] != 2:
        raise InvalidInput(
            f"Expected (N, 3) world and (N, 2) pixel arrays, got "
            f"{world_points.shape} and {pixel_points.shape}"
        )
    if len(world_points) != len(pixel_points):
        raise InvalidInput(
            f"Point count mismatch: {len(world_points)} world vs {len(pixel_points)} pixel"
        )
    return SampleSet.from_rows(np.hstack([world_points, pixel_points]), CORRESPONDENCE_WIDTH)


def split_view(view: Union[SampleSet, np.ndarray]) -> Tuple[np.ndarray, np.ndarray]:
    """
    Split a view into (world (N, 3), pixel (N, 2)) arrays.
    """
    rows = view.as_array() if isinstance(view, SampleSet) else np.asarray(view, dtype=np.float64)
    rows = np.atleast_2d(rows)
    if rows.size == 0:
        return np.zeros((0, 3)), np.zeros((0, 2))
    if rows.shape[1] != CORRESPONDENCE_WIDTH:
        raise InvalidInput(f"Correspondence rows must have 5 values, got {rows.shape[1]}")
    return rows[:, :3].copy(), rows[:, 3:].copy()


def group_by_view(correspondences: Iterable[PointCorrespondence]) -> List[SampleSet]:
    """
    Group correspondences into one SampleSet per view, ordered by view index.

    View indices need not be contiguous; the returned list follows their
    sorted order.
    """
    views: Dict[int, SampleSet] = {}
    for correspondence in correspondences:
        samples = views.setdefault(
            int(correspondence.view_index), SampleSet(CORRESPONDENCE_WIDTH)
        )
        samples.append(correspondence.to_row())
    return [views[index] for index in sorted(views)]


def _numeric_rows(path: Path, width: int) -> List[Tuple[int, List[str]]]:
    """Read CSV rows, skipping blank lines, comments and a header line."""
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    rows = []
    with open(path, "r", newline="") as f:
        for line_no, row in enumerate(csv.reader(f), start=1):
            row = [cell.strip() for cell in row]
            if not row or not row[0] or row[0].startswith("#"):
                continue
            if len(row) != width:
                raise InvalidInput(f"{path}:{line_no}: expected {width} columns, got {len(row)}")
            rows.append((line_no, row))

    # A first row that does not parse as numbers is a header
    if rows:
        try:
            float(rows[0][1][-1])
        except ValueError:
            rows = rows[1:]
    return rows


def load_correspondences_csv(path: Union[str, Path]) -> List[SampleSet]:
    """
    Load calibration correspondences from a CSV file.

    Args:
        path: CSV with columns view, X, Y, Z, u, v.

    Returns:
        List[SampleSet]: One SampleSet per view, ordered by view index.

    Raises:
        FileNotFoundError: If the file does not exist.
        InvalidInput: If a row is malformed.
    """
    path = Path(path)
    correspondences = []
    for line_no, row in _numeric_rows(path, 6):
        try:
            view = int(float(row[0]))
            X, Y, Z, u, v = (float(cell) for cell in row[1:])
        except ValueError as e:
            raise InvalidInput(f"{path}:{line_no}: {e}") from e
        correspondences.append(PointCorrespondence((X, Y, Z), (u, v), view))
    return group_by_view(correspondences)


def save_correspondences_csv(path: Union[str, Path], views: Sequence[SampleSet]) -> None:
    """Write views to a correspondence CSV (with header)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(["view", "X", "Y", "Z", "u", "v"])
        for index, view in enumerate(views):
            for row in view:
                writer.writerow([index, *(repr(float(v)) for v in row)])


def load_observations_csv(path: Union[str, Path]) -> "OrderedDict[str, Dict[str, np.ndarray]]":
    """
    Load triangulation queries from a CSV file.

    Args:
        path: CSV with columns point_id, camera_id, u, v.

    Returns:
        OrderedDict mapping point_id to {camera_id: pixel (2,)}, in file order.
    """
    path = Path(path)
    queries: "OrderedDict[str, Dict[str, np.ndarray]]" = OrderedDict()
    for line_no, row in _numeric_rows(path, 4):
        point_id, camera_id = row[0], row[1]
        try:
            pixel = np.array([float(row[2]), float(row[3])])
        except ValueError as e:
            raise InvalidInput(f"{path}:{line_no}: {e}") from e
        observations = queries.setdefault(point_id, {})
        if camera_id in observations:
            raise InvalidInput(
                f"{path}:{line_no}: camera '{camera_id}' observed point '{point_id}' twice"
            )
        observations[camera_id] = pixel
    return queries
