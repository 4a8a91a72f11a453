"""
windows.py
==========
Window functions for the variable window filter.

A window function maps a canopy height to a search radius in the grid's
linear ground units.  Any callable ``height -> radius`` is accepted;
the factories below cover the usual crown-allometry shapes.

The radius is converted to a discrete neighbourhood by
:func:`window_offsets`.  Two shapes are supported:

* ``"circular"`` (default) — every cell whose centre lies within the
  radius of the focal cell centre.
* ``"square"`` — the bounding square of the circle, a cheaper and more
  permissive approximation.
"""

from __future__ import annotations

import logging
import math
from functools import lru_cache
from numbers import Real
from typing import Callable

import numpy as np
import numpy.typing as npt

from shared.python.exceptions import InvalidConfigurationError
from shared.python.validators import Validators

logger = logging.getLogger("canopycrowns.windows")

WindowFunction = Callable[[float], float]

WINDOW_SHAPES = ("circular", "square")


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def constant_window(radius: float) -> WindowFunction:
    """Window function returning the same *radius* for every height."""
    Validators.assert_non_negative(radius, "radius")
    r = float(radius)

    def _window(height: float) -> float:
        return r

    _window.__name__ = f"constant_window({r:g})"
    return _window


def linear_window(slope: float, intercept: float = 0.0) -> WindowFunction:
    """Window function ``radius = slope * height + intercept``.

    A slope of ``0.06`` and intercept of ``0.5`` is a common starting
    point for coniferous canopies at sub-metre resolution.
    """
    Validators.assert_finite(slope, "slope")
    Validators.assert_finite(intercept, "intercept")

    def _window(height: float) -> float:
        return slope * height + intercept

    _window.__name__ = f"linear_window({slope:g}, {intercept:g})"
    return _window


def power_window(scale: float, exponent: float, base: float = 0.0) -> WindowFunction:
    """Window function ``radius = base + scale * height ** exponent``."""
    Validators.assert_finite(scale, "scale")
    Validators.assert_finite(exponent, "exponent")
    Validators.assert_finite(base, "base")

    def _window(height: float) -> float:
        return base + scale * height ** exponent

    _window.__name__ = f"power_window({scale:g}, {exponent:g}, {base:g})"
    return _window


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


def evaluate_window(
    win_fun: WindowFunction, heights: npt.ArrayLike
) -> npt.NDArray[np.float64]:
    """Apply *win_fun* to every height and validate the radii.

    The function is called once per distinct height, so expensive window
    functions stay cheap on quantised CHMs.

    Args:
        win_fun: Callable mapping one height to one radius.
        heights: Heights to evaluate (any shape).

    Returns:
        Float array of radii with the same shape as *heights*.

    Raises:
        InvalidConfigurationError: If *win_fun* is not callable, or
            returns anything other than a finite, non-negative scalar
            for any of the heights.
    """
    if not callable(win_fun):
        raise InvalidConfigurationError(
            f"Window function must be callable, got {type(win_fun).__name__}."
        )
    heights = np.asarray(heights, dtype=np.float64)
    uniq, inverse = np.unique(heights, return_inverse=True)
    radii = np.empty(uniq.shape, dtype=np.float64)

    for i, h in enumerate(uniq):
        r = win_fun(float(h))
        if isinstance(r, np.ndarray) and r.ndim == 0:
            r = r.item()
        if isinstance(r, bool) or not isinstance(r, Real):
            raise InvalidConfigurationError(
                f"Window function returned {r!r} for height {h:g}; "
                "expected a single number."
            )
        if not math.isfinite(r) or r < 0:
            raise InvalidConfigurationError(
                f"Window function returned radius {r!r} for height {h:g}; "
                "radii must be finite and >= 0."
            )
        radii[i] = r

    logger.debug("Evaluated window function on %d distinct height(s)", uniq.size)
    return radii[inverse].reshape(heights.shape)


# ---------------------------------------------------------------------------
# Discrete neighbourhoods
# ---------------------------------------------------------------------------


def window_offsets(
    radius: float, xres: float, yres: float, shape: str = "circular"
) -> npt.NDArray[np.int64]:
    """Cell offsets ``(drow, dcol)`` inside a window of *radius*.

    The focal cell ``(0, 0)`` is always included.  Offsets are returned in
    row-major order.

    Args:
        radius: Search radius in ground units.
        xres: Cell width in ground units.
        yres: Cell height in ground units.
        shape: ``"circular"`` or ``"square"``.
    """
    Validators.assert_choice(shape, WINDOW_SHAPES, "window shape")
    return _offsets(float(radius), float(xres), float(yres), shape)


@lru_cache(maxsize=256)
def _offsets(radius: float, xres: float, yres: float, shape: str) -> npt.NDArray[np.int64]:
    nr = int(math.floor(radius / yres + 1e-9))
    nc = int(math.floor(radius / xres + 1e-9))
    dr, dc = np.mgrid[-nr:nr + 1, -nc:nc + 1]
    if shape == "circular":
        # small tolerance so cells exactly on the circle are kept
        keep = (dr * yres) ** 2 + (dc * xres) ** 2 <= radius ** 2 * (1 + 1e-9)
    else:
        keep = np.ones(dr.shape, dtype=bool)
    offsets = np.column_stack((dr[keep], dc[keep])).astype(np.int64)
    offsets.flags.writeable = False
    return offsets


def footprint(offsets: npt.NDArray[np.int64]) -> npt.NDArray[np.bool_]:
    """Boolean kernel for :mod:`scipy.ndimage` filters from *offsets*."""
    nr = int(np.abs(offsets[:, 0]).max())
    nc = int(np.abs(offsets[:, 1]).max())
    fp = np.zeros((2 * nr + 1, 2 * nc + 1), dtype=bool)
    fp[offsets[:, 0] + nr, offsets[:, 1] + nc] = True
    return fp
