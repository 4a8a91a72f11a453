"""
Crown Analyzer — CLI Entry Point
=================================
Installed as the ``canopy-crowns`` command via ``pyproject.toml``.

Usage:
    canopy-crowns --input data/chm.tif --output output/
    canopy-crowns -i chm.tif -o out/ --win-slope 0.05 --win-intercept 0.6 \\
        --min-height 3 --crown-min-height 1.5 --crowns polygons --grid 20
"""

from __future__ import annotations

import sys
from pathlib import Path

import click

from canopy_crowns.pipeline import CrownAnalysisConfig, CrownAnalyzer
from canopy_crowns.statistics import DEFAULT_STATS
from canopy_crowns.windows import constant_window, linear_window
from shared.python.exceptions import CanopyCrownsError


@click.command(
    name="canopy-crowns",
    help="Detect treetops, segment crowns and summarise them for a canopy height model.",
)
@click.option(
    "--input", "-i", "input_path",
    required=True,
    type=click.Path(exists=True, file_okay=True, dir_okay=False, path_type=Path),
    help="Path to the canopy height model raster (GeoTIFF).",
)
@click.option(
    "--output", "-o", "output_path",
    required=True,
    type=click.Path(file_okay=False, dir_okay=True, path_type=Path),
    help="Directory for the output layers.",
)
@click.option("--win-slope", default=0.06, show_default=True, type=float,
              help="Window radius per unit of height.")
@click.option("--win-intercept", default=0.5, show_default=True, type=float,
              help="Window radius at height 0.")
@click.option("--win-constant", default=None, type=float,
              help="Fixed window radius; overrides --win-slope/--win-intercept.")
@click.option("--window-shape", type=click.Choice(["circular", "square"]),
              default="circular", show_default=True)
@click.option("--min-height", default=2.0, show_default=True, type=float,
              help="Minimum treetop height.")
@click.option("--crown-min-height", default=1.0, show_default=True, type=float,
              help="Minimum height of cells included in crowns.")
@click.option("--crowns", "crown_output", type=click.Choice(["raster", "polygons"]),
              default="raster", show_default=True, help="Crown output mode.")
@click.option("--connectivity", type=click.Choice(["4", "8"]), default="4", show_default=True)
@click.option("--simplify", default=0.0, show_default=True, type=float,
              help="Crown polygon simplification tolerance (ground units).")
@click.option(
    "--zones",
    "zones_path",
    default=None,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Polygon layer to summarise treetops over.",
)
@click.option("--grid", "grid_cell_size", default=None, type=float,
              help="Cell size of a generated statistics grid.")
@click.option("--attributes", default="height", show_default=True,
              help="Comma-separated treetop attributes to summarise.")
@click.option("--stats", default=",".join(DEFAULT_STATS), show_default=True,
              help="Comma-separated statistics to compute.")
@click.option("--band", default=1, show_default=True, type=int, help="1-based CHM band.")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging.")
def main(
    input_path: Path,
    output_path: Path,
    win_slope: float,
    win_intercept: float,
    win_constant: float | None,
    window_shape: str,
    min_height: float,
    crown_min_height: float,
    crown_output: str,
    connectivity: str,
    simplify: float,
    zones_path: Path | None,
    grid_cell_size: float | None,
    attributes: str,
    stats: str,
    band: int,
    verbose: bool,
) -> None:
    """CLI entry point — wires Click options into CrownAnalyzer."""
    try:
        window = (
            constant_window(win_constant)
            if win_constant is not None
            else linear_window(win_slope, win_intercept)
        )
        config = CrownAnalysisConfig(
            window=window,
            min_height=min_height,
            crown_min_height=crown_min_height,
            window_shape=window_shape,  # type: ignore[arg-type]
            crown_output=crown_output,  # type: ignore[arg-type]
            connectivity=int(connectivity),
            simplify_tolerance=simplify,
            zones_path=zones_path,
            grid_cell_size=grid_cell_size,
            attributes=[a.strip() for a in attributes.split(",") if a.strip()],
            stats=[s.strip() for s in stats.split(",") if s.strip()],
            band=band,
        )
        tool = CrownAnalyzer(input_path, output_path, config, verbose=verbose)
        outputs = tool.run()
    except CanopyCrownsError as exc:
        click.echo(f"Error: {exc.message}", err=True)
        sys.exit(1)

    click.echo(f"\n{tool.describe_result()}")
    for path in outputs:
        click.echo(f"  {path}")


if __name__ == "__main__":
    main()
