"""Piecewise linear interpolation in one and two variables.

The functions are the work horses of the table based property evaluators (PVT tables,
saturation function tables, rock compaction tables and VFP tables). Outside the range
of the table, the first and last segment are extended linearly. Derivatives are the
slopes of the active segment, i.e. piecewise constant.

The kernels are compiled with numba; the public functions are thin wrappers which
bring the input to contiguous float arrays.

"""

from __future__ import annotations

import numba as nb
import numpy as np

from blackoil._core import NUMBA_CACHE, NUMBA_FAST_MATH

__all__ = ["linear_interpolation", "bilinear_interpolation", "check_table_axis"]


_COMPILE_KWARGS = dict(fastmath=NUMBA_FAST_MATH, cache=NUMBA_CACHE)
"""Keyword arguments for compiling functions in this module."""


@nb.njit(**_COMPILE_KWARGS)
def _segment(axis: np.ndarray, x: float) -> int:
    """Index ``i`` of the segment ``[axis[i], axis[i+1]]`` used for ``x``.

    Values outside the axis are mapped to the first or last segment.

    """
    n = axis.size
    if n < 2:
        return 0
    i = np.searchsorted(axis, x, side="right") - 1
    if i < 0:
        i = 0
    elif i > n - 2:
        i = n - 2
    return i


@nb.njit(**_COMPILE_KWARGS)
def _linear_kernel(
    x_table: np.ndarray, y_table: np.ndarray, x: np.ndarray
) -> tuple[np.ndarray, np.ndarray]:
    val = np.empty(x.size)
    der = np.empty(x.size)
    if x_table.size == 1:
        val[:] = y_table[0]
        der[:] = 0.0
        return val, der
    for k in range(x.size):
        i = _segment(x_table, x[k])
        slope = (y_table[i + 1] - y_table[i]) / (x_table[i + 1] - x_table[i])
        val[k] = y_table[i] + slope * (x[k] - x_table[i])
        der[k] = slope
    return val, der


@nb.njit(**_COMPILE_KWARGS)
def _bilinear_kernel(
    x_axis: np.ndarray,
    y_axis: np.ndarray,
    table: np.ndarray,
    x: np.ndarray,
    y: np.ndarray,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    n = x.size
    val = np.empty(n)
    dx = np.empty(n)
    dy = np.empty(n)
    for k in range(n):
        if x_axis.size > 1:
            i = _segment(x_axis, x[k])
            hx = x_axis[i + 1] - x_axis[i]
            tx = (x[k] - x_axis[i]) / hx
            ip = i + 1
        else:
            i = 0
            ip = 0
            hx = 1.0
            tx = 0.0
        if y_axis.size > 1:
            j = _segment(y_axis, y[k])
            hy = y_axis[j + 1] - y_axis[j]
            ty = (y[k] - y_axis[j]) / hy
            jp = j + 1
        else:
            j = 0
            jp = 0
            hy = 1.0
            ty = 0.0
        f00 = table[i, j]
        f10 = table[ip, j]
        f01 = table[i, jp]
        f11 = table[ip, jp]
        val[k] = (
            (1 - tx) * (1 - ty) * f00
            + tx * (1 - ty) * f10
            + (1 - tx) * ty * f01
            + tx * ty * f11
        )
        if x_axis.size > 1:
            dx[k] = ((1 - ty) * (f10 - f00) + ty * (f11 - f01)) / hx
        else:
            dx[k] = 0.0
        if y_axis.size > 1:
            dy[k] = ((1 - tx) * (f01 - f00) + tx * (f11 - f10)) / hy
        else:
            dy[k] = 0.0
    return val, dx, dy


def check_table_axis(axis: np.ndarray, name: str = "table") -> np.ndarray:
    """Validate an interpolation axis and return it as a float array.

    Parameters:
        axis: Abscissa values of a table.
        name: Name of the table, used in error messages.

    Raises:
        ValueError: If the axis is empty, not one dimensional or not strictly
            increasing.

    Returns:
        The axis as a contiguous float array.

    """
    axis = np.ascontiguousarray(axis, dtype=float)
    if axis.ndim != 1 or axis.size == 0:
        raise ValueError(f"The axis of {name} must be a non-empty 1d array.")
    if np.any(np.diff(axis) <= 0):
        raise ValueError(f"The axis of {name} must be strictly increasing.")
    return axis


def linear_interpolation(
    x_table: np.ndarray, y_table: np.ndarray, x: np.ndarray | float
) -> tuple[np.ndarray, np.ndarray]:
    """Evaluate a piecewise linear function and its derivative.

    Parameters:
        x_table: Strictly increasing abscissa of the table.
        y_table: Function values in the abscissa points.
        x: Evaluation points.

    Returns:
        Function values and derivatives with respect to ``x``, as arrays of the same
        size as ``x``.

    """
    x = np.ascontiguousarray(np.atleast_1d(x), dtype=float)
    return _linear_kernel(
        np.ascontiguousarray(x_table, dtype=float),
        np.ascontiguousarray(y_table, dtype=float),
        x,
    )


def bilinear_interpolation(
    x_axis: np.ndarray,
    y_axis: np.ndarray,
    table: np.ndarray,
    x: np.ndarray | float,
    y: np.ndarray | float,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Evaluate a bilinear function on a Cartesian table and its partial derivatives.

    Parameters:
        x_axis: Strictly increasing first axis, ``shape=(nx,)``.
        y_axis: Strictly increasing second axis, ``shape=(ny,)``.
        table: Function values, ``shape=(nx, ny)``.
        x: First coordinate of the evaluation points.
        y: Second coordinate of the evaluation points.

    Returns:
        Function values and the derivatives with respect to ``x`` and ``y``.

    """
    x = np.ascontiguousarray(np.atleast_1d(x), dtype=float)
    y = np.ascontiguousarray(np.atleast_1d(y), dtype=float)
    if x.size != y.size:
        if x.size == 1:
            x = np.full(y.size, x[0])
        elif y.size == 1:
            y = np.full(x.size, y[0])
        else:
            raise ValueError("Evaluation coordinates must have the same size.")
    return _bilinear_kernel(
        np.ascontiguousarray(x_axis, dtype=float),
        np.ascontiguousarray(y_axis, dtype=float),
        np.ascontiguousarray(table, dtype=float),
        x,
        y,
    )
