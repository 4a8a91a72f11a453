"""
canopy-crowns — Shared Input Validators
========================================
Static utility methods used across canopy-crowns to validate common
preconditions before any scan begins.

All methods raise an appropriate exception from
:mod:`shared.python.exceptions` rather than returning booleans — this
keeps configuration checks at the top of each public function short::

    def detect_treetops(grid, win_fun, min_height):
        Validators.assert_finite(min_height, "min_height")
        Validators.assert_choice(shape, ("circular", "square"), "shape")
"""

from __future__ import annotations

import math
from pathlib import Path
from typing import Any, Sequence

# Lazy imports for heavy libraries so callers that do not use them avoid
# the import cost at startup.
#   pyproj → assert_crs_valid, assert_crs_match

from shared.python.exceptions import (
    BandIndexError,
    ColumnNotFoundError,
    CRSError,
    InputMismatchError,
    InputValidationError,
    InvalidConfigurationError,
    OutputWriteError,
)


class Validators:
    """Collection of static precondition checks shared across modules.

    All methods are ``@staticmethod`` — this class is never instantiated.
    It exists purely as a logical namespace.
    """

    # ------------------------------------------------------------------
    # File-system checks
    # ------------------------------------------------------------------

    @staticmethod
    def assert_file_exists(path: Path) -> None:
        """Assert that *path* points to an existing regular file.

        Args:
            path: Path object to check.

        Raises:
            InputValidationError: If *path* does not exist or is a
                directory rather than a file.

        Example::

            Validators.assert_file_exists(Path("data/chm.tif"))
        """
        path = Path(path)
        if not path.exists():
            raise InputValidationError(
                f"Input file not found: '{path}'. "
                "Check that the path is correct and the file exists."
            )
        if path.is_dir():
            raise InputValidationError(
                f"Expected a file but got a directory: '{path}'."
            )

    @staticmethod
    def assert_output_dir_writable(output_dir: Path) -> None:
        """Assert that *output_dir* exists (creating it if needed).

        Args:
            output_dir: Directory the outputs will be written into.
                        It is created, with any missing parents, if absent.

        Raises:
            OutputWriteError: If the directory cannot be created.
        """
        output_dir = Path(output_dir)
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise OutputWriteError(str(output_dir), str(exc)) from exc

    @staticmethod
    def assert_supported_extension(path: Path, extensions: Sequence[str]) -> None:
        """Assert that *path* has one of the allowed file extensions.

        Args:
            path: File path to check.
            extensions: Sequence of allowed extensions, each starting with
                        a dot (e.g. ``[".tif", ".tiff"]``).

        Raises:
            InputValidationError: If the file extension is not in
                *extensions*.
        """
        path = Path(path)
        suffix = path.suffix.lower()
        allowed = [ext.lower() for ext in extensions]
        if suffix not in allowed:
            raise InputValidationError(
                f"Unsupported file extension '{suffix}' for '{path.name}'. "
                f"Accepted extensions: {', '.join(allowed)}"
            )

    # ------------------------------------------------------------------
    # CRS / projection checks
    # ------------------------------------------------------------------

    @staticmethod
    def assert_crs_valid(crs_string: str) -> None:
        """Assert that *crs_string* can be parsed as a valid CRS.

        Uses :mod:`pyproj` to attempt parsing.  Accepts EPSG codes
        (``"EPSG:32617"``), PROJ strings, and WKT strings.

        Args:
            crs_string: The CRS identifier to validate.

        Raises:
            CRSError: If *crs_string* is not recognised by pyproj.
        """
        from pyproj import CRS  # noqa: PLC0415
        from pyproj.exceptions import CRSError as ProjCRSError  # noqa: PLC0415

        try:
            CRS.from_user_input(crs_string)
        except ProjCRSError as exc:
            raise CRSError(str(crs_string)) from exc

    @staticmethod
    def assert_crs_match(crs_a: Any, crs_b: Any, what: str) -> None:
        """Assert that two CRS definitions describe the same system.

        ``None`` on either side means "unknown" and is accepted, so
        in-memory test grids without a CRS still compose.

        Args:
            crs_a: Reference CRS (string, pyproj/rasterio CRS or ``None``).
            crs_b: CRS of the input being checked.
            what: Label of the checked input, used in the error message.

        Raises:
            InputMismatchError: If both are defined and differ.
        """
        if crs_a is None or crs_b is None:
            return
        from pyproj import CRS  # noqa: PLC0415

        if CRS.from_user_input(crs_a) != CRS.from_user_input(crs_b):
            raise InputMismatchError(what, f"CRS {crs_b} != {crs_a}")

    # ------------------------------------------------------------------
    # Tabular data checks
    # ------------------------------------------------------------------

    @staticmethod
    def assert_columns_exist(
        df: object,  # pandas DataFrame — typed loosely to avoid hard dep
        required_columns: Sequence[str],
    ) -> None:
        """Assert that all *required_columns* are present in *df*.

        Args:
            df: A ``pandas.DataFrame`` (or GeoDataFrame).
            required_columns: List of column names that must be present.

        Raises:
            ColumnNotFoundError: On the first missing column found.
        """
        available = list(df.columns)  # type: ignore[union-attr]
        for col in required_columns:
            if col not in available:
                raise ColumnNotFoundError(col, available)

    # ------------------------------------------------------------------
    # Raster checks
    # ------------------------------------------------------------------

    @staticmethod
    def assert_band_index_valid(band_index: int, total_bands: int) -> None:
        """Assert that *band_index* is within the valid range for a raster.

        Args:
            band_index: 1-based band index requested by the user.
            total_bands: Total number of bands in the raster file.

        Raises:
            BandIndexError: If *band_index* is less than 1 or exceeds
                *total_bands*.
        """
        if band_index < 1 or band_index > total_bands:
            raise BandIndexError(band_index, total_bands)

    # ------------------------------------------------------------------
    # Numeric configuration checks
    # ------------------------------------------------------------------

    @staticmethod
    def assert_finite(value: float, name: str) -> None:
        """Assert that *value* is a finite real number.

        Raises:
            InvalidConfigurationError: If *value* is NaN, infinite or
                not a number at all.
        """
        try:
            ok = math.isfinite(float(value))
        except (TypeError, ValueError):
            ok = False
        if not ok:
            raise InvalidConfigurationError(
                f"{name} must be a finite number, got {value!r}."
            )

    @staticmethod
    def assert_positive(value: float, name: str) -> None:
        """Assert that *value* is finite and strictly greater than zero.

        Raises:
            InvalidConfigurationError: If *value* is not > 0.

        Example::

            Validators.assert_positive(cell_size, "cell_size")
        """
        Validators.assert_finite(value, name)
        if float(value) <= 0:
            raise InvalidConfigurationError(
                f"{name} must be greater than 0, got {value!r}."
            )

    @staticmethod
    def assert_non_negative(value: float, name: str) -> None:
        """Assert that *value* is finite and ``>= 0``."""
        Validators.assert_finite(value, name)
        if float(value) < 0:
            raise InvalidConfigurationError(
                f"{name} must be >= 0, got {value!r}."
            )

    @staticmethod
    def assert_choice(value: Any, choices: Sequence[Any], name: str) -> None:
        """Assert that *value* is one of *choices*.

        Raises:
            InvalidConfigurationError: If *value* is not allowed.
        """
        if value not in choices:
            allowed = ", ".join(repr(c) for c in choices)
            raise InvalidConfigurationError(
                f"Unsupported {name} {value!r}. Expected one of: {allowed}"
            )
