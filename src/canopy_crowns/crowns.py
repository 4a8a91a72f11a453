"""
crowns.py
=========
Marker-controlled watershed segmentation of tree crowns.

The canopy height model is flooded from the treetop markers downwards.
A single priority queue holds the boundary cells of every basin at once,
keyed by descending height and then by row-major cell index, so the
highest unclaimed boundary cell anywhere is always processed next and
ties resolve the same way on every run.  A cell is claimed by the first
basin that pushes it onto the queue; claimed cells are never reassigned.

Cells that are no-data, lower than ``min_height``, or not connected to
any marker through eligible cells stay background (label ``0``).

Output modes:

* ``"raster"``   — :attr:`CrownSegmentation.labels` only.
* ``"polygons"`` — additionally traces each crown with
  :func:`rasterio.features.shapes` and returns a GeoDataFrame with
  ``treeID``, ``height``, ``crownArea`` and ``crownDiameter``.
"""

from __future__ import annotations

import heapq
import logging
import math
from collections import defaultdict
from dataclasses import dataclass
from typing import Sequence, Union

import geopandas as gpd
import numpy as np
import numpy.typing as npt
from rasterio.features import shapes
from shapely.geometry import shape as to_shape
from shapely.ops import unary_union

from canopy_crowns.raster import RasterGrid
from canopy_crowns.treetops import Treetop
from shared.python.exceptions import InputMismatchError, InputValidationError
from shared.python.validators import Validators

logger = logging.getLogger("canopycrowns.crowns")

OUTPUT_MODES = ("raster", "polygons")
CROWN_COLUMNS = ["treeID", "height", "crownArea", "crownDiameter"]

TreetopInput = Union[Sequence[Treetop], gpd.GeoDataFrame]

_NEIGHBOURS = {
    4: ((-1, 0), (0, -1), (0, 1), (1, 0)),
    8: ((-1, -1), (-1, 0), (-1, 1), (0, -1), (0, 1), (1, -1), (1, 0), (1, 1)),
}


@dataclass(frozen=True, eq=False)
class CrownSegmentation:
    """Result of :func:`segment_crowns`.

    Attributes:
        labels: ``int32`` array aligned with :attr:`grid`; each crown cell
                holds its treetop's ``treeID``, background is ``0``.
        grid: The canopy height model that was segmented.
        polygons: Crown polygons in polygon mode, else ``None``.
    """

    labels: npt.NDArray[np.int32]
    grid: RasterGrid
    polygons: gpd.GeoDataFrame | None = None

    def label_grid(self) -> RasterGrid:
        """Labels as a :class:`RasterGrid` with ``nodata=0``."""
        return self.grid.with_values(self.labels, nodata=0)

    def cell_counts(self) -> dict[int, int]:
        """Number of cells per crown, keyed by ``treeID``."""
        ids, counts = np.unique(self.labels[self.labels > 0], return_counts=True)
        return {int(i): int(n) for i, n in zip(ids, counts)}

    @property
    def n_crowns(self) -> int:
        return len(self.cell_counts())


def segment_crowns(
    grid: RasterGrid,
    treetops: TreetopInput,
    min_height: float,
    *,
    output: str = "raster",
    connectivity: int = 4,
    simplify_tolerance: float = 0.0,
) -> CrownSegmentation:
    """Partition the canopy into one crown per treetop.

    Args:
        grid: Canopy height model.
        treetops: :class:`Treetop` objects, or a point GeoDataFrame with
                  an optional ``treeID`` column (1..n assigned otherwise).
                  Other columns are ignored; crown heights are read
                  from *grid* at each marker cell.
        min_height: Cells lower than this stay background.  Usually lower
                    than the detector's ``min_height``.
        output: ``"raster"`` or ``"polygons"``.
        connectivity: 4 or 8 neighbour flooding and tracing.
        simplify_tolerance: Polygon simplification tolerance in ground
                            units; 0 disables simplification.

    Raises:
        InvalidConfigurationError: For an unknown mode or connectivity,
            non-finite *min_height* or negative *simplify_tolerance*.
        InputMismatchError: If treetops use another CRS or fall outside
            the grid.
        InputValidationError: If treetop identifiers are not unique
            positive integers.
    """
    Validators.assert_finite(min_height, "min_height")
    Validators.assert_choice(output, OUTPUT_MODES, "output mode")
    Validators.assert_choice(connectivity, tuple(_NEIGHBOURS), "connectivity")
    Validators.assert_non_negative(simplify_tolerance, "simplify_tolerance")

    markers = _markers(grid, treetops)
    eligible = grid.valid_mask & (grid.values >= min_height)
    labels = _flood(grid.values, eligible, markers, connectivity)

    n_labelled = int(np.count_nonzero(labels))
    logger.info(
        "Segmented %d crown(s) covering %d of %d eligible cell(s)",
        len(np.unique(labels[labels > 0])), n_labelled, int(eligible.sum()),
    )

    polygons = None
    if output == "polygons":
        heights = {tree_id: h for tree_id, _, _, h in markers}
        polygons = _vectorise(grid, labels, heights, connectivity, simplify_tolerance)

    return CrownSegmentation(labels=labels, grid=grid, polygons=polygons)


# ---------------------------------------------------------------------------
# Markers
# ---------------------------------------------------------------------------


def _markers(
    grid: RasterGrid, treetops: TreetopInput
) -> list[tuple[int, int, int, float]]:
    """Resolve treetops into ``(tree_id, row, col, height)`` on *grid*."""
    if isinstance(treetops, gpd.GeoDataFrame):
        Validators.assert_crs_match(grid.crs, treetops.crs, "treetops")
        geoms = treetops.geometry
        if len(geoms) and not (geoms.geom_type == "Point").all():
            raise InputValidationError("Treetop geometries must all be points.")
        if "treeID" in treetops.columns:
            ids = [int(i) for i in treetops["treeID"]]
        else:
            ids = list(range(1, len(treetops) + 1))
        points = [(g.x, g.y) for g in geoms]
    else:
        ids = [t.tree_id for t in treetops]
        points = [(t.x, t.y) for t in treetops]

    if any(i <= 0 for i in ids) or len(set(ids)) != len(ids):
        raise InputValidationError("Treetop treeIDs must be unique positive integers.")

    markers = []
    for tree_id, (x, y) in zip(ids, points):
        try:
            row, col = grid.index(x, y)
        except InputMismatchError as exc:
            raise InputMismatchError(
                "treetops", f"treeID {tree_id} at ({x}, {y}) is outside the grid"
            ) from exc
        markers.append((tree_id, row, col, float(grid.values[row, col])))
    return markers


# ---------------------------------------------------------------------------
# Priority flood
# ---------------------------------------------------------------------------


def _flood(
    values: npt.NDArray[np.float64],
    eligible: npt.NDArray[np.bool_],
    markers: list[tuple[int, int, int, float]],
    connectivity: int,
) -> npt.NDArray[np.int32]:
    n_rows, n_cols = values.shape
    heights = values.ravel().tolist()
    ok = eligible.ravel().tolist()
    labels = [0] * (n_rows * n_cols)
    heap: list[tuple[float, int]] = []

    for tree_id, row, col, _ in markers:
        i = row * n_cols + col
        if not ok[i]:
            logger.warning(
                "Treetop %d at cell (%d, %d) is below min_height or no-data; skipped",
                tree_id, row, col,
            )
            continue
        if labels[i]:
            logger.warning(
                "Treetop %d shares cell (%d, %d) with treetop %d; skipped",
                tree_id, row, col, labels[i],
            )
            continue
        labels[i] = tree_id
        heapq.heappush(heap, (-heights[i], i))

    steps = _NEIGHBOURS[connectivity]
    while heap:
        _, i = heapq.heappop(heap)
        row, col = divmod(i, n_cols)
        owner = labels[i]
        for dr, dc in steps:
            r, c = row + dr, col + dc
            if r < 0 or r >= n_rows or c < 0 or c >= n_cols:
                continue
            j = r * n_cols + c
            if ok[j] and not labels[j]:
                labels[j] = owner
                heapq.heappush(heap, (-heights[j], j))

    return np.asarray(labels, dtype=np.int32).reshape(n_rows, n_cols)


# ---------------------------------------------------------------------------
# Vectorisation
# ---------------------------------------------------------------------------


def _vectorise(
    grid: RasterGrid,
    labels: npt.NDArray[np.int32],
    heights: dict[int, float],
    connectivity: int,
    simplify_tolerance: float,
) -> gpd.GeoDataFrame:
    parts = defaultdict(list)
    for geom, value in shapes(
        labels, mask=labels > 0, connectivity=connectivity, transform=grid.transform
    ):
        parts[int(value)].append(to_shape(geom))

    records = []
    for tree_id in sorted(parts):
        crown = unary_union(parts[tree_id])
        if simplify_tolerance > 0:
            crown = crown.simplify(simplify_tolerance, preserve_topology=True)
        area = float(crown.area)
        records.append(
            {
                "treeID": tree_id,
                "height": heights[tree_id],
                "crownArea": area,
                "crownDiameter": 2.0 * math.sqrt(area / math.pi),
                "geometry": crown,
            }
        )

    logger.debug("Vectorised %d crown polygon(s)", len(records))
    if not records:
        return gpd.GeoDataFrame(
            columns=[*CROWN_COLUMNS, "geometry"], geometry="geometry", crs=grid.crs
        )
    return gpd.GeoDataFrame(records, geometry="geometry", crs=grid.crs)
