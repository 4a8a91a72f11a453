"""
treetops.py
===========
Treetop detection with a variable window filter.

Every valid cell at or above ``min_height`` derives its own search radius
from the caller's window function, so taller trees are compared against a
wider neighbourhood.  A cell is kept as a treetop when:

1. its height is ``>=`` every valid cell inside its window (cells past the
   grid edge and no-data cells are simply not part of the window);
2. the window is not a flat plateau, i.e. at least one valid neighbour is
   strictly lower, or there are no valid neighbours at all (radius 0);
3. no earlier cell in row-major order inside its window is an equally high
   local maximum.  Among tied maxima the first scanned one wins.

Distinct discrete windows are few compared to the number of cells, so the
filter runs one :func:`scipy.ndimage.maximum_filter` pass per distinct
kernel and reads the result only at the cells that use that kernel.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import asdict, dataclass
from typing import Any, Sequence

import geopandas as gpd
import numpy as np
import numpy.typing as npt
from scipy import ndimage

from canopy_crowns.raster import RasterGrid
from canopy_crowns.windows import (
    WINDOW_SHAPES,
    WindowFunction,
    evaluate_window,
    footprint,
    window_offsets,
)
from shared.python.validators import Validators

logger = logging.getLogger("canopycrowns.treetops")

TREETOP_COLUMNS = ["treeID", "height", "winRadius"]


@dataclass(frozen=True)
class Treetop:
    """One detected tree apex.

    Attributes:
        tree_id: 1-based identifier in row-major detection order.
        row: Grid row of the apex cell.
        col: Grid column of the apex cell.
        x: Ground x of the cell centre.
        y: Ground y of the cell centre.
        height: CHM value of the apex cell.
        win_radius: Search radius (ground units) the cell was confirmed with.
    """

    tree_id: int
    row: int
    col: int
    x: float
    y: float
    height: float
    win_radius: float

    @property
    def cell(self) -> tuple[int, int]:
        return self.row, self.col

    def __str__(self) -> str:
        return (
            f"Treetop {self.tree_id}: ({self.x:.2f}, {self.y:.2f}) "
            f"height={self.height:.2f} winRadius={self.win_radius:.2f}"
        )


def detect_treetops(
    grid: RasterGrid,
    win_fun: WindowFunction,
    min_height: float,
    *,
    shape: str = "circular",
) -> list[Treetop]:
    """Detect treetops on a canopy height model.

    Args:
        grid: Canopy height model.
        win_fun: Callable mapping a height to a search radius in ground
                 units.  Must return a finite radius ``>= 0``.
        min_height: Cells lower than this are never treetops.
        shape: Neighbourhood shape, ``"circular"`` or ``"square"``.

    Returns:
        Treetops in row-major order, numbered from 1.

    Raises:
        InvalidConfigurationError: For a non-finite *min_height*, an
            unknown *shape*, or a window function yielding a negative,
            non-finite or non-scalar radius.  Raised before scanning.
    """
    Validators.assert_finite(min_height, "min_height")
    Validators.assert_choice(shape, WINDOW_SHAPES, "window shape")

    values = grid.values
    rows, cols = np.nonzero(grid.valid_mask & (values >= min_height))
    heights = values[rows, cols]
    # validates every radius up front
    radii = evaluate_window(win_fun, heights)

    if rows.size == 0:
        logger.info("No cells at or above min_height=%g; 0 treetops.", min_height)
        return []

    xres, yres = grid.res
    groups: dict[bytes, list[int]] = defaultdict(list)
    kernels: dict[bytes, npt.NDArray[np.int64]] = {}
    for radius in np.unique(radii):
        offsets = window_offsets(radius, xres, yres, shape)
        key = _kernel_key(offsets)
        kernels[key] = offsets
        groups[key].extend(np.flatnonzero(radii == radius).tolist())

    logger.debug(
        "%d candidate cell(s) across %d distinct window kernel(s)",
        rows.size, len(kernels),
    )

    high = grid.filled(-np.inf)
    low = grid.filled(np.inf)
    is_max = np.zeros(rows.size, dtype=bool)

    for key, members in groups.items():
        idx = np.asarray(members, dtype=np.int64)
        r, c = rows[idx], cols[idx]
        v = heights[idx]
        offsets = kernels[key]
        if len(offsets) == 1:
            is_max[idx] = True
            continue

        fp = footprint(offsets)
        window_max = _filter_at(ndimage.maximum_filter, high, fp, -np.inf, r, c)
        neighbours = fp.copy()
        neighbours[fp.shape[0] // 2, fp.shape[1] // 2] = False
        window_min = _filter_at(ndimage.minimum_filter, low, neighbours, np.inf, r, c)

        not_flat = (window_min < v) | np.isinf(window_min)
        is_max[idx] = (v >= window_max) & not_flat

    candidates = np.zeros(grid.shape, dtype=bool)
    candidates[rows[is_max], cols[is_max]] = True

    keep = []
    for key, members in groups.items():
        earlier = _earlier_offsets(kernels[key])
        for i in members:
            if is_max[i] and not _has_earlier_tie(
                values, candidates, int(rows[i]), int(cols[i]), earlier
            ):
                keep.append(i)

    treetops = []
    for tree_id, i in enumerate(sorted(keep), start=1):
        r, c = int(rows[i]), int(cols[i])
        x, y = grid.xy(r, c)
        treetops.append(
            Treetop(
                tree_id=tree_id, row=r, col=c, x=x, y=y,
                height=float(heights[i]), win_radius=float(radii[i]),
            )
        )

    logger.info(
        "Detected %d treetop(s) from %d local maxima (min_height=%g)",
        len(treetops), int(is_max.sum()), min_height,
    )
    return treetops


def treetops_to_geodataframe(
    treetops: Sequence[Treetop], crs: Any = None
) -> gpd.GeoDataFrame:
    """Point layer with ``treeID``, ``height`` and ``winRadius`` attributes."""
    records = [asdict(t) for t in treetops]
    return gpd.GeoDataFrame(
        {
            "treeID": np.array([t["tree_id"] for t in records], dtype=np.int64),
            "height": np.array([t["height"] for t in records], dtype=np.float64),
            "winRadius": np.array([t["win_radius"] for t in records], dtype=np.float64),
        },
        geometry=gpd.points_from_xy(
            np.array([t["x"] for t in records], dtype=np.float64),
            np.array([t["y"] for t in records], dtype=np.float64),
        ),
        crs=crs,
    )


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


def _kernel_key(offsets: npt.NDArray[np.int64]) -> bytes:
    return np.ascontiguousarray(offsets).tobytes()


def _filter_at(
    filt: Any,
    arr: npt.NDArray[np.float64],
    fp: npt.NDArray[np.bool_],
    cval: float,
    r: npt.NDArray[np.int64],
    c: npt.NDArray[np.int64],
) -> npt.NDArray[np.float64]:
    """Run a rank filter on the bounding box of ``(r, c)`` and sample it."""
    hr, hc = fp.shape[0] // 2, fp.shape[1] // 2
    r0, r1 = max(int(r.min()) - hr, 0), min(int(r.max()) + hr + 1, arr.shape[0])
    c0, c1 = max(int(c.min()) - hc, 0), min(int(c.max()) + hc + 1, arr.shape[1])
    out = filt(arr[r0:r1, c0:c1], footprint=fp, mode="constant", cval=cval)
    return out[r - r0, c - c0]


def _earlier_offsets(offsets: npt.NDArray[np.int64]) -> npt.NDArray[np.int64]:
    """Offsets scanned before the focal cell in row-major order."""
    dr, dc = offsets[:, 0], offsets[:, 1]
    return offsets[(dr < 0) | ((dr == 0) & (dc < 0))]


def _has_earlier_tie(
    values: npt.NDArray[np.float64],
    candidates: npt.NDArray[np.bool_],
    row: int,
    col: int,
    earlier: npt.NDArray[np.int64],
) -> bool:
    if earlier.size == 0:
        return False
    nr = earlier[:, 0] + row
    nc = earlier[:, 1] + col
    inside = (nr >= 0) & (nr < values.shape[0]) & (nc >= 0) & (nc < values.shape[1])
    nr, nc = nr[inside], nc[inside]
    return bool(np.any(candidates[nr, nc] & (values[nr, nc] == values[row, col])))
