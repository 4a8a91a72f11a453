"""
statistics.py
=============
Named statistic functions for the zonal summarizer.

A :class:`StatFunctionTable` maps a statistic name (``"mean"``) to a
callable taking a 1-D float array and returning one number.  Functions
are tried on a sample when registered, so one that returns an array, a
string or nothing is rejected before any summary runs.

Missing values are dropped before a function is called.  An empty
collection yields ``NaN`` without calling the function at all.

Usage::

    import numpy as np
    from canopy_crowns.statistics import StatFunctionTable

    stats = StatFunctionTable()                      # mean, median, sd, min, max
    stats.register("q90", lambda v: np.percentile(v, 90))
    stats.column_name("height", "q90")               # "heightQ90"
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Mapping
from numbers import Real
from typing import Any

import numpy as np
import numpy.typing as npt

from shared.python.exceptions import InvalidConfigurationError, StatisticError

logger = logging.getLogger("canopycrowns.statistics")

StatFunction = Callable[[npt.NDArray[np.float64]], float]

_SAMPLE = np.array([1.0, 2.0, 4.0, 8.0])

DEFAULT_STATS: dict[str, tuple[str, StatFunction]] = {
    "mean": ("Mean", np.mean),
    "median": ("Median", np.median),
    "sd": ("SD", np.std),
    "min": ("Min", np.min),
    "max": ("Max", np.max),
}


class StatFunctionTable(Mapping[str, StatFunction]):
    """Ordered, validated mapping of statistic name → function.

    Args:
        functions: Extra (or replacement) statistics to register, in order.
        defaults: Start from :data:`DEFAULT_STATS` when ``True``.
    """

    def __init__(
        self,
        functions: Mapping[str, StatFunction] | None = None,
        *,
        defaults: bool = True,
    ) -> None:
        self._funcs: dict[str, StatFunction] = {}
        self._suffixes: dict[str, str] = {}
        if defaults:
            for name, (suffix, func) in DEFAULT_STATS.items():
                self._funcs[name] = func
                self._suffixes[name] = suffix
        for name, func in (functions or {}).items():
            self.register(name, func)

    @classmethod
    def from_names(cls, names: list[str] | tuple[str, ...]) -> "StatFunctionTable":
        """Subset of the defaults, in the order given.

        Raises:
            InvalidConfigurationError: For a name that is not a default.
        """
        table = cls(defaults=False)
        for name in names:
            if name not in DEFAULT_STATS:
                raise InvalidConfigurationError(
                    f"Unknown statistic {name!r}. "
                    f"Built-in statistics: {', '.join(DEFAULT_STATS)}"
                )
            suffix, func = DEFAULT_STATS[name]
            table.register(name, func, suffix=suffix)
        return table

    def register(self, name: str, func: StatFunction, *, suffix: str | None = None) -> None:
        """Add or replace a statistic after checking its result on a sample.

        Args:
            name: Statistic name, e.g. ``"q90"``.
            func: Callable ``(values) -> number``.
            suffix: Column suffix; defaults to *name* with a capitalised
                    first letter.

        Raises:
            InvalidConfigurationError: If *name* is empty, *func* is not
                callable, raises on the sample input, or does not return
                exactly one real scalar.  NaN and infinities are valid
                results.
        """
        if not isinstance(name, str) or not name:
            raise InvalidConfigurationError(f"Statistic name must be a non-empty string, got {name!r}.")
        if not callable(func):
            raise InvalidConfigurationError(f"Statistic {name!r} is not callable.")
        try:
            result = func(_SAMPLE.copy())
        except Exception as exc:  # noqa: BLE001
            raise InvalidConfigurationError(
                f"Statistic {name!r} failed on a sample input: {exc}"
            ) from exc
        _as_scalar(name, result)

        self._funcs[name] = func
        self._suffixes[name] = suffix or name[0].upper() + name[1:]
        logger.debug("Registered statistic %r", name)

    def apply(self, name: str, values: npt.ArrayLike) -> float:
        """Evaluate statistic *name* on *values*, ignoring NaNs.

        Returns:
            The statistic as a float, or ``NaN`` for an empty collection.

        Raises:
            InvalidConfigurationError: If the function returns other than
                one numeric scalar.
            StatisticError: If the function raises anything on these values.
        """
        arr = np.asarray(values, dtype=np.float64).ravel()
        arr = arr[~np.isnan(arr)]
        if arr.size == 0:
            return float("nan")
        try:
            result = self._funcs[name](arr)
        except Exception as exc:  # noqa: BLE001
            raise StatisticError(name, f"{type(exc).__name__}: {exc}") from exc
        return _as_scalar(name, result)

    def suffix(self, name: str) -> str:
        return self._suffixes[name]

    def column_name(self, attribute: str, name: str) -> str:
        """Output column for *attribute* and statistic *name*, e.g. ``heightMean``."""
        return f"{attribute}{self._suffixes[name]}"

    # ------------------------------------------------------------------
    # Mapping protocol
    # ------------------------------------------------------------------

    def __getitem__(self, name: str) -> StatFunction:
        return self._funcs[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._funcs)

    def __len__(self) -> int:
        return len(self._funcs)

    def __repr__(self) -> str:
        return f"StatFunctionTable({list(self._funcs)!r})"


def _as_scalar(name: str, result: Any) -> float:
    if isinstance(result, np.ndarray):
        if result.ndim != 0:
            raise InvalidConfigurationError(
                f"Statistic {name!r} returned an array of shape {result.shape}; "
                "expected exactly one number."
            )
        result = result.item()
    if isinstance(result, bool) or not isinstance(result, Real):
        raise InvalidConfigurationError(
            f"Statistic {name!r} returned {result!r}; expected exactly one number."
        )
    return float(result)
