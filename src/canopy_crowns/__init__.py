"""
canopy_crowns
=============
Individual tree detection and crown delineation on canopy height models.

Submodules
----------
raster      -- RasterGrid, the shared in-memory CHM representation
windows     -- Window functions mapping height to search radius
treetops    -- Variable window filter treetop detection
crowns      -- Marker-controlled watershed crown segmentation
statistics  -- Named statistic-function table
zonal       -- Zonal and grid summaries of tree attributes
io          -- rasterio / geopandas file adapters
pipeline    -- CrownAnalyzer file-to-file tool
"""

from .crowns import CrownSegmentation, segment_crowns
from .pipeline import CrownAnalysisConfig, CrownAnalyzer
from .raster import RasterGrid
from .statistics import StatFunctionTable
from .treetops import Treetop, detect_treetops, treetops_to_geodataframe
from .windows import constant_window, linear_window, power_window
from .zonal import summarize, summarize_grid

__version__ = "1.0.0"
__all__ = [
    "RasterGrid",
    "Treetop",
    "detect_treetops",
    "treetops_to_geodataframe",
    "CrownSegmentation",
    "segment_crowns",
    "StatFunctionTable",
    "summarize",
    "summarize_grid",
    "constant_window",
    "linear_window",
    "power_window",
    "CrownAnalysisConfig",
    "CrownAnalyzer",
]
