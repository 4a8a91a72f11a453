"""
canopy-crowns — Shared Python Package
======================================
Re-exports the shared base class, exception hierarchy, and validator
utilities so every module can import from a single location::

    from shared.python import GeoTool, Validators
    from shared.python.exceptions import InputMismatchError
"""

from shared.python.base_tool import GeoTool
from shared.python.exceptions import (
    BandIndexError,
    CanopyCrownsError,
    ColumnNotFoundError,
    CRSError,
    InputMismatchError,
    InputValidationError,
    InvalidConfigurationError,
    OutputWriteError,
    RasterError,
    StatisticError,
    UnsupportedGeometryError,
)
from shared.python.validators import Validators

__all__ = [
    "GeoTool",
    "Validators",
    "CanopyCrownsError",
    "InputValidationError",
    "ColumnNotFoundError",
    "InvalidConfigurationError",
    "InputMismatchError",
    "CRSError",
    "RasterError",
    "BandIndexError",
    "UnsupportedGeometryError",
    "StatisticError",
    "OutputWriteError",
]
