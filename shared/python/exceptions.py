"""
canopy-crowns — Custom Exception Hierarchy
===========================================
Every canopy-crowns module raises exceptions from this module so callers
can catch them at the right level of granularity.

Hierarchy::

    CanopyCrownsError                    ← catch-all base
    ├── InputValidationError             ← bad files, missing columns, etc.
    │   ├── ColumnNotFoundError          ← attribute column missing
    │   └── InvalidConfigurationError    ← bad radius, statistic, cell size
    ├── InputMismatchError               ← CRS / extent disagreement
    ├── CRSError                         ← invalid / unknown CRS string
    ├── RasterError                      ← rasterio / numpy raster issues
    │   └── BandIndexError               ← requested band does not exist
    ├── UnsupportedGeometryError         ← zone polygon invalid for containment
    ├── StatisticError                   ← statistic function failed on a zone
    └── OutputWriteError                 ← cannot write to output path

Usage::

    from shared.python.exceptions import InvalidConfigurationError

    raise InvalidConfigurationError("Window radius must be >= 0, got -1.0")
"""

from __future__ import annotations


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


class CanopyCrownsError(Exception):
    """Base exception for all canopy-crowns errors.

    Catch this to handle any library error without caring about the
    exact subtype.

    Args:
        message: Human-readable description of the error.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message: str = message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r})"


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------


class InputValidationError(CanopyCrownsError):
    """Raised when inputs fail pre-processing validation.

    This is the parent class for more specific input problems.
    """


class ColumnNotFoundError(InputValidationError):
    """Raised when an expected attribute column is absent from a table.

    Args:
        column: The name of the missing column.
        available: List of column names that ARE present, used to
                   generate a helpful error message.

    Example::

        raise ColumnNotFoundError("height", gdf.columns.tolist())
    """

    def __init__(self, column: str, available: list[str]) -> None:
        available_str = ", ".join(f"'{c}'" for c in available)
        super().__init__(
            f"Column '{column}' not found. Available columns: {available_str}"
        )
        self.column: str = column
        self.available: list[str] = available


class InvalidConfigurationError(InputValidationError):
    """Raised when a configuration value makes the requested call impossible.

    Covers negative or undefined window radii, statistic functions that
    do not return exactly one scalar, and non-positive grid cell sizes.
    Always raised before any scan begins, so no partial result exists.
    """


# ---------------------------------------------------------------------------
# Spatial agreement
# ---------------------------------------------------------------------------


class InputMismatchError(CanopyCrownsError):
    """Raised when two inputs disagree on coordinate reference or extent.

    Args:
        what: Short label of the offending input (e.g. ``"treetops"``).
        reason: Explanation of the disagreement.

    Example::

        raise InputMismatchError("zones", "CRS EPSG:4326 != EPSG:32617")
    """

    def __init__(self, what: str, reason: str) -> None:
        super().__init__(f"{what} do not match the reference grid: {reason}")
        self.what: str = what
        self.reason: str = reason


# ---------------------------------------------------------------------------
# CRS
# ---------------------------------------------------------------------------


class CRSError(CanopyCrownsError):
    """Raised when a coordinate reference system string cannot be parsed
    or matched to a known CRS.

    Args:
        crs_string: The raw CRS string that caused the error
                    (e.g. ``"EPSG:99999"``).

    Example::

        raise CRSError("EPSG:99999")
    """

    def __init__(self, crs_string: str) -> None:
        super().__init__(
            f"Invalid or unrecognised CRS: '{crs_string}'. "
            "Use an EPSG code (e.g. 'EPSG:4326') or a valid WKT/PROJ string."
        )
        self.crs_string: str = crs_string


# ---------------------------------------------------------------------------
# Raster
# ---------------------------------------------------------------------------


class RasterError(CanopyCrownsError):
    """Raised for general raster processing failures (rasterio / numpy).

    Subclass this for more specific raster errors.
    """


class BandIndexError(RasterError):
    """Raised when a requested raster band index does not exist.

    Args:
        band_index: The 1-based band number that was requested.
        total_bands: Total number of bands in the raster file.

    Example::

        raise BandIndexError(band_index=5, total_bands=4)
    """

    def __init__(self, band_index: int, total_bands: int) -> None:
        super().__init__(
            f"Band {band_index} does not exist. "
            f"This raster has {total_bands} band(s) (1-indexed)."
        )
        self.band_index: int = band_index
        self.total_bands: int = total_bands


# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------


class UnsupportedGeometryError(CanopyCrownsError):
    """Raised when a zone geometry cannot be used for area or containment.

    The zonal summarizer catches this per zone and records the message
    in that zone's ``error`` field instead of aborting the whole call.

    Args:
        reason: Short explanation, usually from
                :func:`shapely.validation.explain_validity`.
    """

    def __init__(self, reason: str) -> None:
        super().__init__(f"UnsupportedGeometry: {reason}")
        self.reason: str = reason


class StatisticError(CanopyCrownsError):
    """Raised when a statistic function fails on one zone's values.

    Like :class:`UnsupportedGeometryError` this is recorded per zone by
    the zonal summarizer rather than aborting the call.

    Args:
        stat_name: Registered name of the failing statistic.
        reason: Underlying error message.
    """

    def __init__(self, stat_name: str, reason: str) -> None:
        super().__init__(f"Statistic '{stat_name}' failed: {reason}")
        self.stat_name: str = stat_name
        self.reason: str = reason


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


class OutputWriteError(CanopyCrownsError):
    """Raised when the tool cannot write its output to disk.

    Args:
        output_path: String representation of the path that failed.
        reason: Underlying OS or library error message.

    Example::

        raise OutputWriteError("/read-only/dir/crowns.gpkg", "Permission denied")
    """

    def __init__(self, output_path: str, reason: str) -> None:
        super().__init__(
            f"Failed to write output to '{output_path}': {reason}"
        )
        self.output_path: str = output_path
        self.reason: str = reason
