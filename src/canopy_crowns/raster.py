"""
raster.py
=========
In-memory raster grid shared by every canopy-crowns component.

A :class:`RasterGrid` couples a 2-D value array with the affine transform
that maps ``(row, col)`` indices onto ground coordinates, an optional CRS
and a no-data sentinel.  Grids are immutable: the value array is copied
on construction and flagged read-only, and every derived product is a
new grid.

Usage::

    import numpy as np
    from canopy_crowns.raster import RasterGrid

    chm = RasterGrid.from_origin(heights, west=500000.0, north=4100000.0,
                                 xsize=0.5, ysize=0.5, crs="EPSG:32617")
    row, col = chm.index(500010.2, 4099990.7)
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any

import numpy as np
import numpy.typing as npt
from rasterio.transform import Affine, from_bounds, from_origin

from shared.python.exceptions import InputMismatchError, InvalidConfigurationError


@dataclass(frozen=True, eq=False)
class RasterGrid:
    """Regularly spaced 2-D value grid with georeferencing.

    Attributes:
        values: ``(rows, cols)`` float64 array, read-only.
        transform: Affine transform of the upper-left cell corner.  Must
                   be axis-aligned (no rotation or shear).
        crs: Coordinate reference identifier (EPSG string, WKT, rasterio
             or pyproj CRS), or ``None`` when unknown.
        nodata: Sentinel marking invalid cells.  NaN cells are always
                invalid regardless of this value.
    """

    values: npt.NDArray[np.float64]
    transform: Affine
    crs: Any = None
    nodata: float | None = None
    _valid: npt.NDArray[np.bool_] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        arr = np.array(self.values, dtype=np.float64, copy=True)
        if arr.ndim != 2:
            raise InvalidConfigurationError(
                f"Raster values must be 2-D, got an array with shape {arr.shape}."
            )
        t = Affine(*tuple(self.transform)[:6])
        if t.b != 0 or t.d != 0:
            raise InvalidConfigurationError(
                "Rotated or sheared transforms are not supported."
            )
        for name, size in (("cell width", t.a), ("cell height", t.e)):
            if not math.isfinite(size) or size == 0:
                raise InvalidConfigurationError(
                    f"Raster {name} must be non-zero and finite, got {size!r}."
                )

        valid = np.isfinite(arr)
        if self.nodata is not None and not np.isnan(self.nodata):
            valid &= arr != self.nodata
        arr.flags.writeable = False
        valid.flags.writeable = False

        object.__setattr__(self, "values", arr)
        object.__setattr__(self, "transform", t)
        object.__setattr__(self, "_valid", valid)

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def from_origin(
        cls,
        values: npt.ArrayLike,
        west: float,
        north: float,
        xsize: float,
        ysize: float,
        crs: Any = None,
        nodata: float | None = None,
    ) -> "RasterGrid":
        """Build a north-up grid from its upper-left corner and cell size."""
        return cls(np.asarray(values), from_origin(west, north, xsize, ysize), crs, nodata)

    @classmethod
    def from_bounds(
        cls,
        values: npt.ArrayLike,
        left: float,
        bottom: float,
        right: float,
        top: float,
        crs: Any = None,
        nodata: float | None = None,
    ) -> "RasterGrid":
        """Build a north-up grid spanning the given bounds."""
        arr = np.asarray(values)
        if arr.ndim != 2:
            raise InvalidConfigurationError(
                f"Raster values must be 2-D, got an array with shape {arr.shape}."
            )
        rows, cols = arr.shape
        return cls(arr, from_bounds(left, bottom, right, top, cols, rows), crs, nodata)

    def with_values(
        self, values: npt.ArrayLike, nodata: float | None = None
    ) -> "RasterGrid":
        """Return a new grid with the same georeference and new values.

        Raises:
            InputMismatchError: If *values* does not have this grid's shape.
        """
        arr = np.asarray(values)
        if arr.shape != self.shape:
            raise InputMismatchError(
                "values", f"shape {arr.shape} != grid shape {self.shape}"
            )
        return RasterGrid(arr, self.transform, self.crs, nodata)

    # ------------------------------------------------------------------
    # Geometry
    # ------------------------------------------------------------------

    @property
    def shape(self) -> tuple[int, int]:
        return self.values.shape  # type: ignore[return-value]

    @property
    def height(self) -> int:
        """Number of rows."""
        return self.values.shape[0]

    @property
    def width(self) -> int:
        """Number of columns."""
        return self.values.shape[1]

    @property
    def res(self) -> tuple[float, float]:
        """Positive ``(xres, yres)`` cell size in ground units."""
        return abs(self.transform.a), abs(self.transform.e)

    @property
    def cell_area(self) -> float:
        xres, yres = self.res
        return xres * yres

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        """``(left, bottom, right, top)`` of the full grid."""
        t = self.transform
        x0, y0 = t.c, t.f
        x1, y1 = t.c + t.a * self.width, t.f + t.e * self.height
        return min(x0, x1), min(y0, y1), max(x0, x1), max(y0, y1)

    @property
    def valid_mask(self) -> npt.NDArray[np.bool_]:
        """Boolean array, ``True`` where the cell holds data."""
        return self._valid

    def filled(self, fill: float) -> npt.NDArray[np.float64]:
        """Return a writable copy of the values with invalid cells set to *fill*."""
        return np.where(self._valid, self.values, fill)

    def xy(self, row: int, col: int) -> tuple[float, float]:
        """Ground coordinates of the centre of cell ``(row, col)``."""
        t = self.transform
        return float(t.c + t.a * (col + 0.5)), float(t.f + t.e * (row + 0.5))

    def index(self, x: float, y: float) -> tuple[int, int]:
        """Return the ``(row, col)`` of the cell containing ``(x, y)``.

        Raises:
            InputMismatchError: If the coordinate lies outside the grid.
        """
        # axis-aligned, so the inverse transform is a per-axis division
        t = self.transform
        row = int(math.floor((y - t.f) / t.e))
        col = int(math.floor((x - t.c) / t.a))
        if not (0 <= row < self.height and 0 <= col < self.width):
            raise InputMismatchError(
                "coordinates", f"({x}, {y}) falls outside grid bounds {self.bounds}"
            )
        return row, col

    def __repr__(self) -> str:
        return (
            f"RasterGrid(shape={self.shape}, res={self.res}, "
            f"bounds={self.bounds}, crs={self.crs!r}, nodata={self.nodata!r})"
        )
