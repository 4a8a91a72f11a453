"""
Tests — Crown Segmentation
===========================
Unit tests for :func:`~canopy_crowns.crowns.segment_crowns`.
"""

from __future__ import annotations

import logging
import math

import geopandas as gpd
import numpy as np
import pytest
from shapely.geometry import Point, box

from canopy_crowns.crowns import CROWN_COLUMNS, segment_crowns
from canopy_crowns.raster import RasterGrid
from canopy_crowns.treetops import Treetop, detect_treetops
from canopy_crowns.windows import constant_window
from shared.python.exceptions import (
    InputMismatchError,
    InputValidationError,
    InvalidConfigurationError,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _chm(values: np.ndarray, res: float = 1.0, nodata: float | None = None) -> RasterGrid:
    north = values.shape[0] * res
    return RasterGrid.from_origin(values, 0.0, north, res, res, crs="EPSG:32617", nodata=nodata)


def _top(grid: RasterGrid, tree_id: int, row: int, col: int) -> Treetop:
    x, y = grid.xy(row, col)
    return Treetop(tree_id, row, col, x, y, float(grid.values[row, col]), 1.0)


def _two_cones() -> np.ndarray:
    rr, cc = np.mgrid[0:10, 0:20]
    a = 10.0 - np.hypot(rr - 5, cc - 5)
    b = 8.0 - np.hypot(rr - 5, cc - 14)
    return np.clip(np.maximum(a, b), 0.0, None)


# ---------------------------------------------------------------------------
# Partition properties
# ---------------------------------------------------------------------------


class TestPartition:
    def test_every_eligible_cell_labelled_once(self) -> None:
        grid = _chm(_two_cones())
        seg = segment_crowns(grid, [_top(grid, 1, 5, 5), _top(grid, 2, 5, 14)], 1.0)
        eligible = grid.values >= 1.0
        assert np.array_equal(seg.labels > 0, eligible)
        assert set(np.unique(seg.labels)) == {0, 1, 2}
        assert sum(seg.cell_counts().values()) == int(eligible.sum())

    def test_markers_keep_their_cells(self) -> None:
        grid = _chm(_two_cones())
        seg = segment_crowns(grid, [_top(grid, 1, 5, 5), _top(grid, 2, 5, 14)], 1.0)
        assert seg.labels[5, 5] == 1
        assert seg.labels[5, 14] == 2
        assert seg.labels[5, 0] == 1
        assert seg.labels[5, 19] == 2

    def test_works_with_detected_treetops(self) -> None:
        grid = _chm(_two_cones())
        tops = detect_treetops(grid, constant_window(2), 2.0)
        seg = segment_crowns(grid, tops, 1.0)
        assert seg.n_crowns == len(tops) == 2

    def test_labels_dtype_and_shape(self) -> None:
        grid = _chm(_two_cones())
        seg = segment_crowns(grid, [_top(grid, 1, 5, 5)], 1.0)
        assert seg.labels.dtype == np.int32
        assert seg.labels.shape == grid.shape

    def test_label_grid_uses_zero_nodata(self) -> None:
        values = np.array([[5.0, 0.0]])
        grid = _chm(values)
        label_grid = segment_crowns(grid, [_top(grid, 3, 0, 0)], 1.0).label_grid()
        assert label_grid.nodata == 0
        assert label_grid.valid_mask.tolist() == [[True, False]]
        assert label_grid.transform == grid.transform


class TestBackground:
    def test_low_and_nodata_cells_stay_background(self) -> None:
        values = np.full((3, 3), 6.0)
        values[0, 2] = 0.5
        values[2, 0] = np.nan
        grid = _chm(values)
        seg = segment_crowns(grid, [_top(grid, 1, 1, 1)], 1.0)
        assert seg.labels[0, 2] == 0
        assert seg.labels[2, 0] == 0
        assert seg.cell_counts() == {1: 7}

    def test_unmarked_component_stays_background(self) -> None:
        values = np.zeros((3, 7))
        values[:, :3] = 5.0
        values[:, 4:] = 6.0
        grid = _chm(values)
        seg = segment_crowns(grid, [_top(grid, 1, 1, 1)], 1.0)
        assert (seg.labels[:, :3] == 1).all()
        assert (seg.labels[:, 3:] == 0).all()

    def test_marker_below_min_height_skipped(self, caplog) -> None:
        values = np.array([[0.5, 5.0, 5.0]])
        grid = _chm(values)
        with caplog.at_level(logging.WARNING, logger="canopycrowns.crowns"):
            seg = segment_crowns(grid, [_top(grid, 1, 0, 0)], 1.0)
        assert not seg.labels.any()
        assert "skipped" in caplog.text

    def test_no_treetops(self) -> None:
        grid = _chm(_two_cones())
        seg = segment_crowns(grid, [], 1.0, output="polygons")
        assert not seg.labels.any()
        assert seg.n_crowns == 0
        assert len(seg.polygons) == 0
        assert list(seg.polygons.columns) == [*CROWN_COLUMNS, "geometry"]


# ---------------------------------------------------------------------------
# Flooding order
# ---------------------------------------------------------------------------


class TestFlooding:
    def test_valley_goes_to_first_basin_on_tie(self) -> None:
        values = np.array([[9.0, 5.0, 3.0, 5.0, 8.0]])
        grid = _chm(values)
        seg = segment_crowns(grid, [_top(grid, 1, 0, 0), _top(grid, 2, 0, 4)], 1.0)
        assert seg.labels.tolist() == [[1, 1, 1, 2, 2]]

    def test_higher_basin_floods_first(self) -> None:
        values = np.array([[9.0, 7.0, 6.0, 2.0, 8.0]])
        grid = _chm(values)
        seg = segment_crowns(grid, [_top(grid, 1, 0, 0), _top(grid, 2, 0, 4)], 1.0)
        assert seg.labels.tolist() == [[1, 1, 1, 2, 2]]

    def test_diagonal_needs_eight_connectivity(self) -> None:
        values = np.array([[5.0, 0.0], [0.0, 4.0]])
        grid = _chm(values)
        tops = [_top(grid, 1, 0, 0)]
        four = segment_crowns(grid, tops, 1.0, connectivity=4)
        eight = segment_crowns(grid, tops, 1.0, connectivity=8)
        assert four.labels[1, 1] == 0
        assert eight.labels[1, 1] == 1

    def test_repeatable(self) -> None:
        rng = np.random.default_rng(3)
        grid = _chm(rng.uniform(0, 20, size=(15, 15)))
        tops = detect_treetops(grid, constant_window(2), 2.0)
        first = segment_crowns(grid, tops, 1.0)
        second = segment_crowns(grid, tops, 1.0)
        assert np.array_equal(first.labels, second.labels)


# ---------------------------------------------------------------------------
# Polygon output
# ---------------------------------------------------------------------------


class TestPolygons:
    def test_crown_attributes(self) -> None:
        values = np.zeros((5, 5))
        values[1:4, 1:4] = 4.0
        values[2, 2] = 7.0
        grid = _chm(values, res=2.0)
        seg = segment_crowns(grid, [_top(grid, 5, 2, 2)], 1.0, output="polygons")
        crowns = seg.polygons
        assert list(crowns.columns) == [*CROWN_COLUMNS, "geometry"]
        row = crowns.iloc[0]
        assert row["treeID"] == 5
        assert row["height"] == 7.0
        assert row["crownArea"] == pytest.approx(36.0)
        assert row["crownDiameter"] == pytest.approx(2 * math.sqrt(36.0 / math.pi))
        assert crowns.geometry.iloc[0].equals(box(2.0, 2.0, 8.0, 8.0))
        assert crowns.crs.to_epsg() == 32617

    def test_one_polygon_per_crown(self) -> None:
        grid = _chm(_two_cones())
        seg = segment_crowns(
            grid, [_top(grid, 1, 5, 5), _top(grid, 2, 5, 14)], 1.0, output="polygons"
        )
        assert seg.polygons["treeID"].tolist() == [1, 2]
        counts = seg.cell_counts()
        for _, crown in seg.polygons.iterrows():
            assert crown["crownArea"] == pytest.approx(counts[crown["treeID"]] * grid.cell_area)

    def test_raster_mode_has_no_polygons(self) -> None:
        grid = _chm(_two_cones())
        assert segment_crowns(grid, [_top(grid, 1, 5, 5)], 1.0).polygons is None

    def test_simplify_keeps_area_close(self) -> None:
        grid = _chm(_two_cones())
        tops = [_top(grid, 1, 5, 5)]
        plain = segment_crowns(grid, tops, 1.0, output="polygons").polygons
        simple = segment_crowns(
            grid, tops, 1.0, output="polygons", simplify_tolerance=0.5
        ).polygons
        assert simple.geometry.iloc[0].is_valid
        assert simple["crownArea"].iloc[0] == pytest.approx(plain["crownArea"].iloc[0], rel=0.15)


# ---------------------------------------------------------------------------
# Treetop inputs and errors
# ---------------------------------------------------------------------------


class TestTreetopInputs:
    def test_geodataframe_with_tree_ids(self) -> None:
        grid = _chm(_two_cones())
        tops = gpd.GeoDataFrame(
            {"treeID": [10, 20]},
            geometry=[Point(grid.xy(5, 5)), Point(grid.xy(5, 14))],
            crs="EPSG:32617",
        )
        seg = segment_crowns(grid, tops, 1.0)
        assert seg.labels[5, 5] == 10
        assert seg.labels[5, 14] == 20

    def test_geodataframe_without_ids_numbered(self) -> None:
        grid = _chm(_two_cones())
        tops = gpd.GeoDataFrame(
            geometry=[Point(grid.xy(5, 5)), Point(grid.xy(5, 14))], crs="EPSG:32617"
        )
        seg = segment_crowns(grid, tops, 1.0)
        assert set(seg.cell_counts()) == {1, 2}

    def test_geodataframe_height_column_ignored(self) -> None:
        grid = _chm(_two_cones())
        tops = gpd.GeoDataFrame(
            {"treeID": [1], "height": [99.0]},
            geometry=[Point(grid.xy(5, 5))],
            crs="EPSG:32617",
        )
        crowns = segment_crowns(grid, tops, 1.0, output="polygons").polygons
        assert crowns["height"].iloc[0] == grid.values[5, 5] == 10.0

    def test_crs_mismatch(self) -> None:
        grid = _chm(_two_cones())
        tops = gpd.GeoDataFrame(geometry=[Point(grid.xy(5, 5))], crs="EPSG:4326")
        with pytest.raises(InputMismatchError):
            segment_crowns(grid, tops, 1.0)

    def test_point_outside_grid(self) -> None:
        grid = _chm(_two_cones())
        tops = gpd.GeoDataFrame(geometry=[Point(-50, -50)], crs="EPSG:32617")
        with pytest.raises(InputMismatchError):
            segment_crowns(grid, tops, 1.0)

    def test_duplicate_ids(self) -> None:
        grid = _chm(_two_cones())
        with pytest.raises(InputValidationError):
            segment_crowns(grid, [_top(grid, 1, 5, 5), _top(grid, 1, 5, 14)], 1.0)

    def test_non_point_geometry(self) -> None:
        grid = _chm(_two_cones())
        tops = gpd.GeoDataFrame(geometry=[box(1, 1, 2, 2)], crs="EPSG:32617")
        with pytest.raises(InputValidationError):
            segment_crowns(grid, tops, 1.0)

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"output": "vector"},
            {"connectivity": 6},
            {"simplify_tolerance": -1.0},
        ],
    )
    def test_bad_configuration(self, kwargs) -> None:
        grid = _chm(_two_cones())
        with pytest.raises(InvalidConfigurationError):
            segment_crowns(grid, [_top(grid, 1, 5, 5)], 1.0, **kwargs)
