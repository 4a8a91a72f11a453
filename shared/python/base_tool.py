"""
canopy-crowns — Shared Base Tool
=================================
Abstract base for tools that read one raster from disk and write a set
of derived layers into an output directory.

``run()`` fixes the order of work: inputs are validated before anything
is read, :meth:`GeoTool.process` writes the outputs, and the run ends
with one log line naming what was produced.  Every file a tool writes
goes through :meth:`GeoTool._record_output`, so callers get the list
back from ``run()`` without knowing the tool's file names.

Usage::

    from shared.python.base_tool import GeoTool

    class MyTool(GeoTool):
        def validate_inputs(self) -> None:
            ...
        def process(self) -> None:
            self._record_output(write_raster(grid, self.output_path / "x.tif"))
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from pathlib import Path

# Parent of every ``canopycrowns.<module>`` logger in the package.
logger = logging.getLogger("canopycrowns")

LOG_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s — %(message)s"


class GeoTool(ABC):
    """Validate → process → report pipeline over one input raster.

    Attributes:
        input_path: The primary input file.
        output_path: Directory receiving every output.
        verbose: Log at DEBUG instead of INFO.
    """

    def __init__(
        self,
        input_path: Path,
        output_path: Path,
        *,
        verbose: bool = False,
    ) -> None:
        self.input_path: Path = Path(input_path)
        self.output_path: Path = Path(output_path)
        self.verbose: bool = verbose
        self._outputs: list[Path] = []
        self._configure_logging()

    @abstractmethod
    def validate_inputs(self) -> None:
        """Raise an :class:`~shared.python.exceptions.InputValidationError`
        subclass for any bad input.  Nothing may be read or written here
        beyond creating the output directory."""

    @abstractmethod
    def process(self) -> None:
        """Do the work, passing each written file to :meth:`_record_output`."""

    def describe_result(self) -> str:
        """One-line description of the last run's result for the log."""
        return ""

    def run(self) -> list[Path]:
        """Validate, process and report.

        Outputs from a previous run are forgotten first, so the returned
        list only names files written by this call.

        Returns:
            The files written, in the order they were written.

        Raises:
            Whatever ``validate_inputs`` or ``process`` raises.
        """
        self._outputs = []
        logger.info("Starting %s on %s", type(self).__name__, self.input_path.name)
        start = time.perf_counter()
        self.validate_inputs()
        self.process()
        self._report_success(time.perf_counter() - start)
        return self.outputs

    @property
    def outputs(self) -> list[Path]:
        """Files written by the last run."""
        return list(self._outputs)

    def _record_output(self, path: Path) -> Path:
        path = Path(path)
        self._outputs.append(path)
        logger.debug("Wrote %s", path)
        return path

    def _report_success(self, elapsed: float) -> None:
        result = self.describe_result()
        logger.info(
            "%s finished in %.2fs%s; %d file(s) in %s",
            type(self).__name__,
            elapsed,
            f": {result}" if result else "",
            len(self._outputs),
            self.output_path,
        )

    def _configure_logging(self) -> None:
        # one console handler for the whole package, however many tools exist
        if not any(getattr(h, "_canopycrowns", False) for h in logger.handlers):
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%H:%M:%S"))
            handler._canopycrowns = True  # type: ignore[attr-defined]
            logger.addHandler(handler)
        logger.setLevel(logging.DEBUG if self.verbose else logging.INFO)

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}({str(self.input_path)!r} -> "
            f"{str(self.output_path)!r}, verbose={self.verbose})"
        )
