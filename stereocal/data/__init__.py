"""Point data containers and loaders."""

from .sample_set import SampleSet
from .correspondences import (
    PointCorrespondence,
    group_by_view,
    load_correspondences_csv,
    load_observations_csv,
    save_correspondences_csv,
    split_view,
    view_from_arrays,
)

__all__ = [
    "SampleSet",
    "PointCorrespondence",
    "group_by_view",
    "load_correspondences_csv",
    "load_observations_csv",
    "save_correspondences_csv",
    "split_view",
    "view_from_arrays",
]
