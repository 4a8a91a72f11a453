"""
zonal.py
========
Summaries of tree attributes over zones or a generated grid.

Two entry points:

* :func:`summarize` — one record per polygon zone, or one global record
  when no zones are given.  Polygon results are a copy of the zones
  GeoDataFrame with ``TreeCount``, one ``<attribute><Stat>`` column per
  attribute and statistic, and an ``error`` column.
* :func:`summarize_grid` — tiles an extent into square cells and returns
  one aligned :class:`RasterGrid` layer per statistic, framed by
  ``TreeCount`` and a ``StatFailures`` count of failed statistics.

Trees are assigned to zones by a representative location: the point
itself for point trees, :meth:`shapely.Geometry.representative_point`
for crown polygons.  With ``min_overlap`` set, crown polygons are
instead assigned to every zone covering at least that fraction of their
area.  A point inside a zone counts in that zone, so overlapping zones
can share it.  A point lying only on zone boundaries counts once, in the
first zone that covers it.

A zone with an invalid geometry, or a statistic that fails on one zone's
values, is reported in that zone's ``error`` field; the other zones are
computed normally.  In grid mode the failure leaves the cell NaN and is
counted in the ``StatFailures`` layer.
"""

from __future__ import annotations

import logging
import math
from typing import Mapping, Sequence, Union

import geopandas as gpd
import numpy as np
import numpy.typing as npt
import pandas as pd
from rasterio.transform import Affine, from_origin
from shapely.geometry.base import BaseGeometry
from shapely.validation import explain_validity

from canopy_crowns.raster import RasterGrid
from canopy_crowns.statistics import StatFunction, StatFunctionTable
from canopy_crowns.treetops import Treetop, treetops_to_geodataframe
from shared.python.exceptions import (
    InvalidConfigurationError,
    StatisticError,
    UnsupportedGeometryError,
)
from shared.python.validators import Validators

logger = logging.getLogger("canopycrowns.zonal")

COUNT_COLUMN = "TreeCount"
ERROR_COLUMN = "error"
FAILURE_LAYER = "StatFailures"

TreeInput = Union[gpd.GeoDataFrame, Sequence[Treetop]]
StatsInput = Union[StatFunctionTable, Mapping[str, StatFunction], Sequence[str], None]

_POLYGONAL = ("Polygon", "MultiPolygon")


def summarize(
    trees: TreeInput,
    *,
    zones: gpd.GeoDataFrame | None = None,
    attributes: Sequence[str] = ("height",),
    stats: StatsInput = None,
    min_overlap: float | None = None,
) -> pd.DataFrame | gpd.GeoDataFrame:
    """Count trees and summarise their attributes per zone.

    Args:
        trees: Point or crown-polygon GeoDataFrame, or a sequence of
               :class:`Treetop` objects.
        zones: Polygon zones.  ``None`` produces a single global record.
        attributes: Numeric tree columns to summarise.
        stats: A :class:`StatFunctionTable`, a ``name → function`` mapping,
               a list of built-in statistic names, or ``None`` for the
               defaults (mean, median, sd, min, max).
        min_overlap: Fraction ``(0, 1]`` of a crown polygon's area a zone
                     must cover for the crown to count in it.  ``None``
                     assigns crowns by representative point.

    Returns:
        A one-row ``DataFrame`` without zones, otherwise a copy of
        *zones* with the summary columns appended.

    Raises:
        InvalidConfigurationError: For bad statistics, non-numeric
            attributes or an out-of-range *min_overlap*.
        ColumnNotFoundError: If an attribute column is missing.
        InputMismatchError: If *trees* and *zones* use different CRSs.
    """
    table = _stat_table(stats)
    tree_gdf = _tree_frame(trees)
    values = _attribute_values(tree_gdf, attributes)
    if min_overlap is not None:
        Validators.assert_positive(min_overlap, "min_overlap")
        if min_overlap > 1:
            raise InvalidConfigurationError(
                f"min_overlap must be in (0, 1], got {min_overlap!r}."
            )

    if zones is None:
        everything = np.arange(len(tree_gdf))
        record, errors = _record(everything, values, table)
        for message in errors:
            logger.warning("Global summary: %s", message)
        logger.info("Summarised %d tree(s) globally", record[COUNT_COLUMN])
        return pd.DataFrame([record])

    Validators.assert_crs_match(zones.crs, tree_gdf.crs, "trees")
    anchors = tree_gdf.geometry.representative_point()
    is_region = tree_gdf.geometry.geom_type.isin(_POLYGONAL).to_numpy()

    problems = [_check_zone(zone) for zone in zones.geometry]
    usable = [zone for zone, problem in zip(zones.geometry, problems) if problem is None]
    point_members = iter(_point_members(usable, anchors))

    records = []
    error_col: list[str | None] = []
    for zone, problem in zip(zones.geometry, problems):
        if problem is not None:
            records.append(_empty_record(list(values), table, count=None))
            error_col.append(problem)
            continue

        members = _members(next(point_members), zone, tree_gdf, is_region, min_overlap)
        record, errors = _record(members, values, table)
        records.append(record)
        error_col.append("; ".join(errors) or None)
    n_bad = len(zones) - len(usable)

    result = zones.copy()
    columns = [COUNT_COLUMN] + [
        table.column_name(attr, name) for attr in values for name in table
    ]
    summary = pd.DataFrame(records, index=zones.index, columns=columns)
    summary[COUNT_COLUMN] = summary[COUNT_COLUMN].astype("Int64")
    for col in summary.columns:
        result[col] = summary[col]
    result[ERROR_COLUMN] = pd.Series(error_col, index=zones.index, dtype=object)

    logger.info(
        "Summarised %d tree(s) over %d zone(s); %d zone(s) unsupported",
        len(tree_gdf), len(zones), n_bad,
    )
    return result


def summarize_grid(
    trees: TreeInput,
    *,
    cell_size: float | None = None,
    template: RasterGrid | None = None,
    attributes: Sequence[str] = ("height",),
    stats: StatsInput = None,
) -> dict[str, RasterGrid]:
    """Summarise trees over a regular grid of square cells.

    Exactly one of *cell_size* or *template* must be given.  With
    *cell_size*, the grid extent covers every tree and its edges snap to
    multiples of the cell size.  With *template*, the template's
    transform and shape are reused and trees outside it are ignored.

    Cells are half-open: a tree exactly on a shared edge belongs to the
    cell on its right / below in row-major order.

    Returns:
        Ordered ``{layer name: RasterGrid}``.  ``TreeCount`` comes first,
        then ``<attribute><Stat>`` for every attribute and statistic, and
        ``StatFailures`` last: the number of statistics that raised in
        each cell.  Empty cells have count 0 and NaN statistics; a NaN
        in an occupied cell with no failures is the statistic's own value.

    Raises:
        InvalidConfigurationError: For a non-positive *cell_size*, for
            giving neither or both of *cell_size* / *template*, or for an
            empty tree set without a template.
        InputMismatchError: If *template* and *trees* use different CRSs.
    """
    if (cell_size is None) == (template is None):
        raise InvalidConfigurationError("Supply exactly one of cell_size or template.")
    table = _stat_table(stats)
    tree_gdf = _tree_frame(trees)
    values = _attribute_values(tree_gdf, attributes)
    anchors = tree_gdf.geometry.representative_point()
    xs = anchors.x.to_numpy(dtype=np.float64)
    ys = anchors.y.to_numpy(dtype=np.float64)

    if template is not None:
        Validators.assert_crs_match(template.crs, tree_gdf.crs, "trees")
        transform, (n_rows, n_cols), crs = template.transform, template.shape, template.crs
    else:
        Validators.assert_positive(cell_size, "cell_size")
        if len(tree_gdf) == 0:
            raise InvalidConfigurationError(
                "Cannot derive a grid extent from zero trees; supply a template."
            )
        transform, (n_rows, n_cols) = _snapped_grid(xs, ys, float(cell_size))
        crs = tree_gdf.crs

    rows, cols, inside = _cell_index(xs, ys, transform, n_rows, n_cols)
    if not inside.all():
        logger.debug("%d tree(s) fall outside the grid and are ignored", int((~inside).sum()))
    cell = rows[inside] * n_cols + cols[inside]
    member_idx = np.flatnonzero(inside)

    counts = np.bincount(cell, minlength=n_rows * n_cols).reshape(n_rows, n_cols)
    layers: dict[str, RasterGrid] = {
        COUNT_COLUMN: RasterGrid(counts.astype(np.float64), transform, crs),
    }

    order = np.argsort(cell, kind="stable")
    occupied, starts = np.unique(cell[order], return_index=True)
    groups = np.split(member_idx[order], starts[1:])

    failures = np.zeros(n_rows * n_cols)
    for attr in values:
        for name in table:
            out = np.full(n_rows * n_cols, np.nan)
            for flat, members in zip(occupied, groups):
                try:
                    out[flat] = table.apply(name, values[attr][members])
                except StatisticError as exc:
                    failures[flat] += 1
                    logger.warning("Cell %d: %s", int(flat), exc.message)
            layers[table.column_name(attr, name)] = RasterGrid(
                out.reshape(n_rows, n_cols), transform, crs
            )
    layers[FAILURE_LAYER] = RasterGrid(failures.reshape(n_rows, n_cols), transform, crs)

    logger.info(
        "Summarised %d tree(s) into a %dx%d grid with %d layer(s)",
        int(inside.sum()), n_rows, n_cols, len(layers),
    )
    return layers


# ---------------------------------------------------------------------------
# Input preparation
# ---------------------------------------------------------------------------


def _stat_table(stats: StatsInput) -> StatFunctionTable:
    if stats is None:
        return StatFunctionTable()
    if isinstance(stats, StatFunctionTable):
        return stats
    if isinstance(stats, Mapping):
        return StatFunctionTable(stats, defaults=False)
    if isinstance(stats, str):
        return StatFunctionTable.from_names([stats])
    return StatFunctionTable.from_names(list(stats))


def _tree_frame(trees: TreeInput) -> gpd.GeoDataFrame:
    if not isinstance(trees, gpd.GeoDataFrame):
        trees = treetops_to_geodataframe(list(trees))
    missing = trees.geometry.isna() | trees.geometry.is_empty
    if missing.any():
        logger.warning("Dropping %d tree(s) with missing geometry", int(missing.sum()))
        trees = trees[~missing]
    return trees.reset_index(drop=True)


def _attribute_values(
    trees: gpd.GeoDataFrame, attributes: Sequence[str]
) -> dict[str, npt.NDArray[np.float64]]:
    if isinstance(attributes, str):
        attributes = [attributes]
    Validators.assert_columns_exist(trees, attributes)
    values = {}
    for attr in attributes:
        try:
            values[attr] = trees[attr].to_numpy(dtype=np.float64, na_value=np.nan)
        except (TypeError, ValueError) as exc:
            raise InvalidConfigurationError(
                f"Attribute '{attr}' is not numeric: {exc}"
            ) from exc
    return values


# ---------------------------------------------------------------------------
# Zone handling
# ---------------------------------------------------------------------------


def _check_zone(zone: BaseGeometry | None) -> str | None:
    """Why *zone* cannot be summarised, or ``None`` when it can."""
    if zone is None or zone.is_empty:
        return UnsupportedGeometryError("empty geometry").message
    if zone.geom_type not in _POLYGONAL:
        return UnsupportedGeometryError(f"{zone.geom_type} is not a polygon").message
    if not zone.is_valid:
        return UnsupportedGeometryError(explain_validity(zone)).message
    return None


def _point_members(
    zones: list[BaseGeometry],
    anchors: gpd.GeoSeries,
) -> list[npt.NDArray[np.int64]]:
    """Anchor indices per zone.

    An anchor inside a zone's interior belongs to that zone. An anchor
    lying only on zone boundaries belongs to the first zone that covers
    it, so zones that merely touch partition the trees between them.
    """
    tree = anchors.sindex
    inside = [tree.query(zone, predicate="contains") for zone in zones]
    claimed = np.zeros(len(anchors), dtype=bool)
    for idx in inside:
        claimed[idx] = True
    result = []
    for zone, idx in zip(zones, inside):
        edge = tree.query(zone, predicate="covers")
        edge = edge[~claimed[edge]]
        claimed[edge] = True
        result.append(np.sort(np.concatenate([idx, edge]).astype(np.int64)))
    return result


def _members(
    by_point: npt.NDArray[np.int64],
    zone: BaseGeometry,
    trees: gpd.GeoDataFrame,
    is_region: npt.NDArray[np.bool_],
    min_overlap: float | None,
) -> npt.NDArray[np.int64]:
    """Positional indices of the trees assigned to *zone*."""
    if min_overlap is None:
        return by_point

    by_point = by_point[~is_region[by_point]]
    touching = trees.sindex.query(zone, predicate="intersects")
    touching = touching[is_region[touching]]
    crowns = trees.geometry.iloc[touching]
    area = crowns.area.to_numpy()
    shared = crowns.intersection(zone).area.to_numpy()
    with np.errstate(divide="ignore", invalid="ignore"):
        enough = np.where(area > 0, shared / area >= min_overlap, False)
    return np.sort(np.concatenate([by_point, touching[enough]]))


def _record(
    members: npt.NDArray[np.int64],
    values: dict[str, npt.NDArray[np.float64]],
    table: StatFunctionTable,
) -> tuple[dict[str, float], list[str]]:
    record: dict[str, float] = {COUNT_COLUMN: int(len(members))}
    errors = []
    for attr, column in values.items():
        subset = column[members]
        for name in table:
            try:
                record[table.column_name(attr, name)] = table.apply(name, subset)
            except StatisticError as exc:
                record[table.column_name(attr, name)] = math.nan
                errors.append(exc.message)
    return record, errors


def _empty_record(
    attributes: Sequence[str], table: StatFunctionTable, count: int | None
) -> dict[str, float | None]:
    record: dict[str, float | None] = {COUNT_COLUMN: count}
    for attr in attributes:
        for name in table:
            record[table.column_name(attr, name)] = math.nan
    return record


# ---------------------------------------------------------------------------
# Grid helpers
# ---------------------------------------------------------------------------


def _snapped_grid(
    xs: npt.NDArray[np.float64], ys: npt.NDArray[np.float64], cell_size: float
) -> tuple[Affine, tuple[int, int]]:
    left = math.floor(xs.min() / cell_size) * cell_size
    # rows are half-open downwards, so the bottom edge must lie below every tree
    bottom = (math.ceil(ys.min() / cell_size) - 1) * cell_size
    right = (math.floor(xs.max() / cell_size) + 1) * cell_size
    top = (math.floor(ys.max() / cell_size) + 1) * cell_size
    n_cols = int(round((right - left) / cell_size))
    n_rows = int(round((top - bottom) / cell_size))
    return from_origin(left, top, cell_size, cell_size), (n_rows, n_cols)


def _cell_index(
    xs: npt.NDArray[np.float64],
    ys: npt.NDArray[np.float64],
    transform: Affine,
    n_rows: int,
    n_cols: int,
) -> tuple[npt.NDArray[np.int64], npt.NDArray[np.int64], npt.NDArray[np.bool_]]:
    cols = np.floor((xs - transform.c) / transform.a).astype(np.int64)
    rows = np.floor((ys - transform.f) / transform.e).astype(np.int64)
    inside = (rows >= 0) & (rows < n_rows) & (cols >= 0) & (cols < n_cols)
    return rows, cols, inside
