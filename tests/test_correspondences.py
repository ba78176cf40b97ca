"""
Tests for correspondence and observation files.
"""

import numpy as np
import pytest

from stereocal.calibration.errors import InvalidInput
from stereocal.data import (
    PointCorrespondence,
    SampleSet,
    group_by_view,
    load_correspondences_csv,
    load_observations_csv,
    save_correspondences_csv,
    split_view,
    view_from_arrays,
)


@pytest.fixture
def views():
    world = np.array([[0.0, 0.0, 0.0], [0.1, 0.0, 0.0], [0.0, 0.1, 0.0], [0.1, 0.1, 0.0]])
    return [
        view_from_arrays(world, np.array([[320.0, 240.0], [400.5, 241.25], [319.0, 320.0], [401.0, 322.0]])),
        view_from_arrays(world[:3], np.array([[300.0, 200.0], [380.0, 205.0], [302.0, 281.0]])),
    ]


class TestViews:
    """Test view construction helpers."""

    def test_view_from_arrays(self, views):
        assert isinstance(views[0], SampleSet)
        assert views[0].feature_count == 5
        assert len(views[0]) == 4

    def test_split_view(self, views):
        world, pixel = split_view(views[1])

        assert world.shape == (3, 3)
        assert pixel.shape == (3, 2)
        assert np.array_equal(pixel[1], [380.0, 205.0])

    def test_count_mismatch(self):
        with pytest.raises(InvalidInput):
            view_from_arrays(np.zeros((4, 3)), np.zeros((3, 2)))

    def test_wrong_width(self):
        with pytest.raises(InvalidInput):
            split_view(np.zeros((3, 4)))

    def test_group_by_view(self):
        correspondences = [
            PointCorrespondence((0.0, 0.0, 0.0), (1.0, 2.0), view_index=3),
            PointCorrespondence((1.0, 0.0, 0.0), (3.0, 4.0), view_index=1),
            PointCorrespondence((0.0, 1.0, 0.0), (5.0, 6.0), view_index=3),
        ]

        grouped = group_by_view(correspondences)

        assert [len(view) for view in grouped] == [1, 2]
        assert np.array_equal(grouped[1][1], [0.0, 1.0, 0.0, 5.0, 6.0])


class TestCorrespondenceFiles:
    """Test the view, X, Y, Z, u, v CSV format."""

    def test_round_trip(self, tmp_path, views):
        path = tmp_path / "rig.csv"

        save_correspondences_csv(path, views)
        loaded = load_correspondences_csv(path)

        assert loaded == views

    def test_header_is_optional(self, tmp_path):
        path = tmp_path / "rig.csv"
        path.write_text("# rig capture\n0,0,0,0,320,240\n0,0.1,0,0,400,240\n\n1,0,0,0,300,200\n")

        loaded = load_correspondences_csv(path)

        assert [len(view) for view in loaded] == [2, 1]

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_correspondences_csv(tmp_path / "missing.csv")

    def test_wrong_column_count(self, tmp_path):
        path = tmp_path / "rig.csv"
        path.write_text("0,0,0,0,320\n")

        with pytest.raises(InvalidInput):
            load_correspondences_csv(path)

    def test_non_numeric_value(self, tmp_path):
        path = tmp_path / "rig.csv"
        path.write_text("view,X,Y,Z,u,v\n0,0,0,0,320,240\n0,a,0,0,320,240\n")

        with pytest.raises(InvalidInput):
            load_correspondences_csv(path)


class TestObservationFiles:
    """Test the point_id, camera_id, u, v CSV format."""

    def test_load(self, tmp_path):
        path = tmp_path / "obs.csv"
        path.write_text(
            "point_id,camera_id,u,v\n"
            "p2,left,100,200\n"
            "p1,left,110,210\n"
            "p2,right,90,201\n"
        )

        queries = load_observations_csv(path)

        assert list(queries) == ["p2", "p1"]
        assert set(queries["p2"]) == {"left", "right"}
        assert np.array_equal(queries["p2"]["right"], [90.0, 201.0])

    def test_duplicate_camera(self, tmp_path):
        path = tmp_path / "obs.csv"
        path.write_text("p1,left,100,200\np1,left,101,200\n")

        with pytest.raises(InvalidInput):
            load_observations_csv(path)
