"""
io.py
=====
Thin rasterio / geopandas adapters between files and the in-memory types.

Nothing here does analysis: readers build a :class:`RasterGrid` or a
GeoDataFrame, writers persist them.  Library errors are re-raised as
canopy-crowns exceptions so callers handle one hierarchy.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Mapping

import geopandas as gpd
import numpy as np
import rasterio
from rasterio.errors import RasterioIOError

from canopy_crowns.raster import RasterGrid
from shared.python.exceptions import InputMismatchError, OutputWriteError, RasterError
from shared.python.validators import Validators

logger = logging.getLogger("canopycrowns.io")

RASTER_EXTENSIONS = [".tif", ".tiff", ".img", ".vrt"]
VECTOR_DRIVERS = {".gpkg": "GPKG", ".geojson": "GeoJSON", ".shp": "ESRI Shapefile"}


def read_chm(path: Path, band: int = 1) -> RasterGrid:
    """Read one band of a raster file into a :class:`RasterGrid`.

    Raises:
        InputValidationError: If the file is missing.
        BandIndexError: If *band* does not exist.
        RasterError: If rasterio cannot read the file.
    """
    path = Path(path)
    Validators.assert_file_exists(path)
    try:
        with rasterio.open(path) as src:
            Validators.assert_band_index_valid(band, src.count)
            values = src.read(band).astype(np.float64)
            grid = RasterGrid(values, src.transform, src.crs, src.nodata)
    except RasterioIOError as exc:
        raise RasterError(f"Could not open raster '{path}': {exc}") from exc
    logger.debug("Read %s from %s", grid, path.name)
    return grid


def read_zones(path: Path) -> gpd.GeoDataFrame:
    """Read a polygon layer with geopandas."""
    path = Path(path)
    Validators.assert_file_exists(path)
    zones = gpd.read_file(path)
    logger.debug("Read %d zone(s) from %s", len(zones), path.name)
    return zones


def write_raster(grid: RasterGrid, path: Path, dtype: str = "float32") -> Path:
    """Write *grid* as a single-band GeoTIFF."""
    return write_layers({"band": grid}, path, dtype=dtype)


def write_layers(
    layers: Mapping[str, RasterGrid], path: Path, dtype: str = "float32"
) -> Path:
    """Write aligned grids as one multi-band GeoTIFF.

    Band descriptions are set to the layer names so the output is
    self-describing (``TreeCount``, ``heightMean`` …).

    Raises:
        InputMismatchError: If the layers are not aligned.
        OutputWriteError: If the file cannot be written.
    """
    path = Path(path)
    grids = list(layers.values())
    if not grids:
        raise OutputWriteError(str(path), "no layers to write")
    ref = grids[0]
    for name, grid in layers.items():
        if grid.shape != ref.shape or grid.transform != ref.transform:
            raise InputMismatchError("layers", f"'{name}' is not aligned with the first layer")

    is_float = np.dtype(dtype).kind == "f"
    nodata = np.nan if is_float else ref.nodata
    profile = {
        "driver": "GTiff",
        "height": ref.height,
        "width": ref.width,
        "count": len(grids),
        "dtype": dtype,
        "crs": ref.crs,
        "transform": ref.transform,
        "nodata": nodata,
        "compress": "deflate",
    }
    try:
        with rasterio.open(path, "w", **profile) as dst:
            for band, (name, grid) in enumerate(layers.items(), start=1):
                fill = np.nan if is_float else (grid.nodata if grid.nodata is not None else 0)
                dst.write(grid.filled(fill).astype(dtype), band)
                dst.set_band_description(band, name)
    except (RasterioIOError, OSError) as exc:
        raise OutputWriteError(str(path), str(exc)) from exc
    logger.debug("Wrote %d band(s) to %s", len(grids), path.name)
    return path


def write_vector(gdf: gpd.GeoDataFrame, path: Path) -> Path:
    """Write a GeoDataFrame, picking the driver from the file extension."""
    path = Path(path)
    Validators.assert_supported_extension(path, list(VECTOR_DRIVERS))
    try:
        gdf.to_file(path, driver=VECTOR_DRIVERS[path.suffix.lower()])
    except OSError as exc:
        raise OutputWriteError(str(path), str(exc)) from exc
    logger.debug("Wrote %d feature(s) to %s", len(gdf), path.name)
    return path
