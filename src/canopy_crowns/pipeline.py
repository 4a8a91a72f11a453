"""
Crown Analyzer — Pipeline Module
=================================
End-to-end treetop detection, crown segmentation and summarisation for a
canopy height model GeoTIFF.

Classes:
    CrownAnalysisConfig   Configuration bundle for the analyzer.
    CrownAnalyzer         Primary tool class (inherits GeoTool).

Usage::

    from pathlib import Path
    from canopy_crowns.pipeline import CrownAnalysisConfig, CrownAnalyzer
    from canopy_crowns.windows import linear_window

    tool = CrownAnalyzer(
        input_path=Path("data/chm.tif"),
        output_path=Path("output/"),
        config=CrownAnalysisConfig(
            window=linear_window(0.06, 0.5),
            min_height=2.0,
            crown_min_height=1.0,
            crown_output="polygons",
            grid_cell_size=20.0,
        ),
    )
    tool.run()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

import pandas as pd

from canopy_crowns.crowns import OUTPUT_MODES, CrownSegmentation, segment_crowns
from canopy_crowns.io import (
    RASTER_EXTENSIONS,
    read_chm,
    read_zones,
    write_layers,
    write_raster,
    write_vector,
)
from canopy_crowns.statistics import DEFAULT_STATS, StatFunctionTable
from canopy_crowns.treetops import Treetop, detect_treetops, treetops_to_geodataframe
from canopy_crowns.windows import (
    WINDOW_SHAPES,
    WindowFunction,
    evaluate_window,
    linear_window,
)
from canopy_crowns.zonal import summarize, summarize_grid
from shared.python.base_tool import GeoTool
from shared.python.exceptions import InvalidConfigurationError
from shared.python.validators import Validators

logger = logging.getLogger("canopycrowns.pipeline")


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass
class CrownAnalysisConfig:
    """Configuration for :class:`CrownAnalyzer`.

    Attributes:
        window: Height → search radius function for treetop detection.
        min_height: Detector height floor.
        crown_min_height: Segmenter height floor; should be lower than
                          ``min_height``.
        window_shape: ``"circular"`` or ``"square"`` neighbourhoods.
        crown_output: ``"raster"`` writes ``crowns.tif``; ``"polygons"``
                      also writes ``crowns.gpkg``.
        connectivity: 4 or 8 neighbour crown flooding.
        simplify_tolerance: Crown polygon simplification, ground units.
        zones_path: Optional polygon layer to summarise over.
        grid_cell_size: Optional statistics grid cell size.
        attributes: Treetop attributes to summarise.
        stats: Statistic names from :data:`DEFAULT_STATS`.
        band: 1-based CHM band to read.
    """

    window: WindowFunction = field(default_factory=lambda: linear_window(0.06, 0.5))
    min_height: float = 2.0
    crown_min_height: float = 1.0
    window_shape: Literal["circular", "square"] = "circular"
    crown_output: Literal["raster", "polygons"] = "raster"
    connectivity: int = 4
    simplify_tolerance: float = 0.0
    zones_path: Path | None = None
    grid_cell_size: float | None = None
    attributes: list[str] = field(default_factory=lambda: ["height"])
    stats: list[str] = field(default_factory=lambda: list(DEFAULT_STATS))
    band: int = 1


# ---------------------------------------------------------------------------
# Main tool class
# ---------------------------------------------------------------------------


class CrownAnalyzer(GeoTool):
    """Detect treetops, segment crowns and summarise them for one CHM file.

    Inherits the Template Method pipeline from :class:`~shared.python.GeoTool`.

    Outputs written to ``output_path`` (a directory):

    * ``treetops.gpkg`` — points with ``treeID``, ``height``, ``winRadius``.
    * ``crowns.tif`` — crown labels; ``crowns.gpkg`` in polygon mode.
    * ``summary.csv`` — global record, always.
    * ``zones_summary.gpkg`` — when ``zones_path`` is set.
    * ``grid_summary.tif`` — when ``grid_cell_size`` is set.

    Args:
        input_path: CHM raster file.
        output_path: Output directory.
        config: A :class:`CrownAnalysisConfig` instance.
        verbose: Enable DEBUG-level logging.
    """

    def __init__(
        self,
        input_path: Path,
        output_path: Path,
        config: CrownAnalysisConfig | None = None,
        *,
        verbose: bool = False,
    ) -> None:
        super().__init__(input_path, output_path, verbose=verbose)
        self.config = config or CrownAnalysisConfig()
        self._treetops: list[Treetop] = []
        self._crowns: CrownSegmentation | None = None
        self._summary: pd.DataFrame | None = None

    # ------------------------------------------------------------------
    # GeoTool abstract method implementations
    # ------------------------------------------------------------------

    def validate_inputs(self) -> None:
        """Validate paths and every configuration value before reading data.

        Raises:
            InputValidationError: If files are missing or unsupported.
            InvalidConfigurationError: For inconsistent settings.
            OutputWriteError: If the output directory cannot be created.
        """
        cfg = self.config
        Validators.assert_file_exists(self.input_path)
        Validators.assert_supported_extension(self.input_path, RASTER_EXTENSIONS)
        Validators.assert_output_dir_writable(self.output_path)
        if cfg.zones_path is not None:
            Validators.assert_file_exists(cfg.zones_path)

        Validators.assert_finite(cfg.min_height, "min_height")
        Validators.assert_finite(cfg.crown_min_height, "crown_min_height")
        if cfg.crown_min_height > cfg.min_height:
            raise InvalidConfigurationError(
                f"crown_min_height ({cfg.crown_min_height}) must not exceed "
                f"min_height ({cfg.min_height})."
            )
        Validators.assert_choice(cfg.window_shape, WINDOW_SHAPES, "window shape")
        Validators.assert_choice(cfg.crown_output, OUTPUT_MODES, "crown output")
        Validators.assert_choice(cfg.connectivity, (4, 8), "connectivity")
        Validators.assert_non_negative(cfg.simplify_tolerance, "simplify_tolerance")
        if cfg.grid_cell_size is not None:
            Validators.assert_positive(cfg.grid_cell_size, "grid_cell_size")
        # try the window at the detection floor before touching the raster
        evaluate_window(cfg.window, [cfg.min_height])
        StatFunctionTable.from_names(cfg.stats)

        logger.debug("Inputs validated.")

    def process(self) -> None:
        """Read the CHM, run the three stages and write every output."""
        cfg = self.config
        chm = read_chm(self.input_path, band=cfg.band)
        logger.info("Loaded %s", chm)

        self._treetops = detect_treetops(
            chm, cfg.window, cfg.min_height, shape=cfg.window_shape
        )
        self._crowns = segment_crowns(
            chm,
            self._treetops,
            cfg.crown_min_height,
            output=cfg.crown_output,
            connectivity=cfg.connectivity,
            simplify_tolerance=cfg.simplify_tolerance,
        )

        tops = treetops_to_geodataframe(self._treetops, crs=chm.crs)
        if tops.empty:
            logger.warning("No treetops detected; treetops.gpkg not written.")
        else:
            self._record_output(write_vector(tops, self.output_path / "treetops.gpkg"))
        self._record_output(
            write_raster(self._crowns.label_grid(), self.output_path / "crowns.tif", dtype="int32")
        )
        if self._crowns.polygons is not None and not self._crowns.polygons.empty:
            self._record_output(
                write_vector(self._crowns.polygons, self.output_path / "crowns.gpkg")
            )

        self._summary = summarize(tops, attributes=cfg.attributes, stats=cfg.stats)
        summary_csv = self.output_path / "summary.csv"
        self._summary.to_csv(summary_csv, index=False)
        self._record_output(summary_csv)

        if cfg.zones_path is not None:
            zones = read_zones(cfg.zones_path)
            zonal = summarize(
                tops, zones=zones,
                attributes=cfg.attributes, stats=cfg.stats,
            )
            self._record_output(write_vector(zonal, self.output_path / "zones_summary.gpkg"))

        if cfg.grid_cell_size is not None and len(tops):
            layers = summarize_grid(
                tops, cell_size=cfg.grid_cell_size,
                attributes=cfg.attributes, stats=cfg.stats,
            )
            self._record_output(write_layers(layers, self.output_path / "grid_summary.tif"))
        elif cfg.grid_cell_size is not None:
            logger.warning("No treetops detected; grid summary skipped.")

    def describe_result(self) -> str:
        n_crowns = self._crowns.n_crowns if self._crowns is not None else 0
        return f"{len(self._treetops)} treetop(s), {n_crowns} crown(s)"

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    @property
    def treetops(self) -> list[Treetop]:
        """Treetops from the last run, or ``[]``."""
        return self._treetops

    @property
    def crowns(self) -> CrownSegmentation | None:
        """Crown segmentation from the last run, or ``None``."""
        return self._crowns

    @property
    def summary(self) -> pd.DataFrame | None:
        """Global summary record from the last run."""
        return self._summary

