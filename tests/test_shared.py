"""
Tests — Shared Exceptions and Validators
=========================================
Unit tests for :mod:`shared.python.exceptions` and
:class:`shared.python.validators.Validators`.
"""

from __future__ import annotations

import logging
from pathlib import Path

import pandas as pd
import pytest

from shared.python import GeoTool
from shared.python.exceptions import (
    BandIndexError,
    CanopyCrownsError,
    ColumnNotFoundError,
    CRSError,
    InputMismatchError,
    InputValidationError,
    InvalidConfigurationError,
    OutputWriteError,
    StatisticError,
    UnsupportedGeometryError,
)
from shared.python.validators import Validators


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class TestExceptions:
    @pytest.mark.parametrize(
        "exc",
        [
            InvalidConfigurationError("bad radius"),
            InputMismatchError("zones", "CRS differs"),
            UnsupportedGeometryError("Self-intersection[5 5]"),
            StatisticError("mean", "boom"),
            BandIndexError(3, 1),
            CRSError("EPSG:99999"),
            OutputWriteError("/x", "denied"),
        ],
    )
    def test_all_derive_from_base(self, exc: CanopyCrownsError) -> None:
        assert isinstance(exc, CanopyCrownsError)
        assert exc.message == str(exc)

    def test_configuration_is_input_validation(self) -> None:
        assert issubclass(InvalidConfigurationError, InputValidationError)

    def test_unsupported_geometry_marker(self) -> None:
        exc = UnsupportedGeometryError("Self-intersection[5 5]")
        assert exc.message == "UnsupportedGeometry: Self-intersection[5 5]"
        assert exc.reason == "Self-intersection[5 5]"

    def test_input_mismatch_message(self) -> None:
        exc = InputMismatchError("treetops", "CRS EPSG:4326 != EPSG:32617")
        assert exc.what == "treetops"
        assert "treetops do not match" in exc.message

    def test_column_not_found_lists_available(self) -> None:
        exc = ColumnNotFoundError("dbh", ["height", "treeID"])
        assert "'height'" in exc.message

    def test_repr(self) -> None:
        assert repr(StatisticError("sd", "x")).startswith("StatisticError(")


# ---------------------------------------------------------------------------
# Validators
# ---------------------------------------------------------------------------


class TestValidators:
    def test_file_exists(self, tmp_path: Path) -> None:
        f = tmp_path / "a.tif"
        f.write_bytes(b"")
        Validators.assert_file_exists(f)
        with pytest.raises(InputValidationError):
            Validators.assert_file_exists(tmp_path / "missing.tif")
        with pytest.raises(InputValidationError):
            Validators.assert_file_exists(tmp_path)

    def test_output_dir_created(self, tmp_path: Path) -> None:
        target = tmp_path / "a" / "b"
        Validators.assert_output_dir_writable(target)
        assert target.is_dir()

    def test_output_dir_blocked_by_file(self, tmp_path: Path) -> None:
        blocker = tmp_path / "file"
        blocker.write_text("x")
        with pytest.raises(OutputWriteError):
            Validators.assert_output_dir_writable(blocker / "sub")

    def test_supported_extension_case_insensitive(self) -> None:
        Validators.assert_supported_extension(Path("CHM.TIF"), [".tif"])
        with pytest.raises(InputValidationError):
            Validators.assert_supported_extension(Path("chm.png"), [".tif"])

    def test_crs_valid(self) -> None:
        Validators.assert_crs_valid("EPSG:32617")
        with pytest.raises(CRSError):
            Validators.assert_crs_valid("EPSG:99999")

    def test_crs_match(self) -> None:
        Validators.assert_crs_match("EPSG:32617", "epsg:32617", "zones")
        Validators.assert_crs_match(None, "EPSG:4326", "zones")
        with pytest.raises(InputMismatchError):
            Validators.assert_crs_match("EPSG:32617", "EPSG:4326", "zones")

    def test_columns_exist(self) -> None:
        df = pd.DataFrame({"height": [1.0]})
        Validators.assert_columns_exist(df, ["height"])
        with pytest.raises(ColumnNotFoundError):
            Validators.assert_columns_exist(df, ["height", "dbh"])

    def test_band_index(self) -> None:
        Validators.assert_band_index_valid(1, 1)
        with pytest.raises(BandIndexError):
            Validators.assert_band_index_valid(0, 1)

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), "abc", None])
    def test_finite_rejects(self, value) -> None:
        with pytest.raises(InvalidConfigurationError):
            Validators.assert_finite(value, "x")

    def test_positive_and_non_negative(self) -> None:
        Validators.assert_positive(0.1, "x")
        Validators.assert_non_negative(0.0, "x")
        with pytest.raises(InvalidConfigurationError):
            Validators.assert_positive(0.0, "x")
        with pytest.raises(InvalidConfigurationError):
            Validators.assert_non_negative(-0.1, "x")

    def test_choice(self) -> None:
        Validators.assert_choice(4, (4, 8), "connectivity")
        with pytest.raises(InvalidConfigurationError, match="connectivity"):
            Validators.assert_choice(6, (4, 8), "connectivity")


# ---------------------------------------------------------------------------
# GeoTool
# ---------------------------------------------------------------------------


class _RecordingTool(GeoTool):
    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.steps: list[str] = []

    def validate_inputs(self) -> None:
        self.steps.append("validate")

    def process(self) -> None:
        self.steps.append("process")
        self.output_path.mkdir(parents=True, exist_ok=True)
        target = self.output_path / f"result{len(self.steps)}.txt"
        target.write_text("x")
        self._record_output(target)

    def describe_result(self) -> str:
        return "1 thing"


class TestGeoTool:
    def test_run_order(self, tmp_path: Path) -> None:
        tool = _RecordingTool(tmp_path / "in.tif", tmp_path / "out")
        tool.run()
        assert tool.steps == ["validate", "process"]

    def test_run_returns_recorded_outputs(self, tmp_path: Path) -> None:
        tool = _RecordingTool(tmp_path / "in.tif", tmp_path / "out")
        assert tool.outputs == []
        outputs = tool.run()
        assert outputs == [tmp_path / "out" / "result2.txt"]
        assert tool.outputs == outputs

    def test_outputs_reset_between_runs(self, tmp_path: Path) -> None:
        tool = _RecordingTool(tmp_path / "in.tif", tmp_path / "out")
        tool.run()
        assert tool.run() == [tmp_path / "out" / "result4.txt"]

    def test_success_log_names_result(self, tmp_path: Path, caplog) -> None:
        tool = _RecordingTool(tmp_path / "in.tif", tmp_path / "out")
        with caplog.at_level(logging.INFO, logger="canopycrowns"):
            tool.run()
        assert "_RecordingTool finished" in caplog.text
        assert "1 thing; 1 file(s)" in caplog.text

    def test_verbose_sets_debug(self, tmp_path: Path) -> None:
        _RecordingTool(tmp_path / "in.tif", tmp_path / "out", verbose=True)
        assert logging.getLogger("canopycrowns").level == logging.DEBUG
        _RecordingTool(tmp_path / "in.tif", tmp_path / "out")
        assert logging.getLogger("canopycrowns").level == logging.INFO

    def test_single_console_handler(self, tmp_path: Path) -> None:
        before = len(logging.getLogger("canopycrowns").handlers)
        _RecordingTool(tmp_path / "in.tif", tmp_path / "out")
        _RecordingTool(tmp_path / "in.tif", tmp_path / "out")
        assert len(logging.getLogger("canopycrowns").handlers) == max(before, 1)

    def test_repr(self, tmp_path: Path) -> None:
        tool = _RecordingTool(tmp_path / "in.tif", tmp_path / "out", verbose=True)
        assert repr(tool).startswith("_RecordingTool(")
        assert "verbose=True" in repr(tool)

    def test_cannot_instantiate_abstract(self, tmp_path: Path) -> None:
        with pytest.raises(TypeError):
            GeoTool(tmp_path, tmp_path)  # type: ignore[abstract]
