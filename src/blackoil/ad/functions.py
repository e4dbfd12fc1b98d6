"""Element-wise functions of AD expressions, and the selector used for upwinding and
for switching between alternative expressions per element.

All functions accept plain numpy arrays as well, in which case they fall back to the
corresponding numpy function.

"""

from __future__ import annotations

from enum import Enum
from typing import Union

import numpy as np

import blackoil as bo
from blackoil.ad.block_matrix import AutoDiffMatrix
from blackoil.ad.forward_mode import AutoDiffBlock

__all__ = [
    "exp",
    "log",
    "abs",
    "sign",
    "spdiag",
    "make_constant",
    "Criterion",
    "Selector",
]

module_sections = ["ad"]

AdOrArray = Union[AutoDiffBlock, np.ndarray]


@bo.time_logger(sections=module_sections)
def exp(var):
    if isinstance(var, AutoDiffBlock):
        val = np.exp(var.val)
        return AutoDiffBlock(val, var.diagvec_mul_jac(val))
    else:
        return np.exp(var)


@bo.time_logger(sections=module_sections)
def log(var):
    if not isinstance(var, AutoDiffBlock):
        return np.log(var)

    val = np.log(var.val)
    der = var.diagvec_mul_jac(1 / var.val)
    return AutoDiffBlock(val, der)


@bo.time_logger(sections=module_sections)
def sign(var) -> np.ndarray:
    """Sign of the values. The result is a plain array, without derivatives."""
    if not isinstance(var, AutoDiffBlock):
        return np.sign(var)
    else:
        return np.sign(var.val)


@bo.time_logger(sections=module_sections)
def abs(var):
    if not isinstance(var, AutoDiffBlock):
        return np.abs(var)
    else:
        val = np.abs(var.val)
        jac = var.diagvec_mul_jac(sign(var))
        return AutoDiffBlock(val, jac)


def spdiag(var) -> AutoDiffMatrix:
    """Diagonal matrix with the values of ``var`` (array or AD) on the diagonal."""
    if isinstance(var, AutoDiffBlock):
        return AutoDiffMatrix.diagonal_matrix(var.val)
    return AutoDiffMatrix.diagonal_matrix(np.asarray(var, dtype=float))


def make_constant(var) -> AutoDiffBlock:
    """Copy of ``var`` with all derivatives set to zero, keeping the block pattern."""
    if isinstance(var, AutoDiffBlock):
        return AutoDiffBlock.constant(var.val.copy(), var.block_pattern)
    return AutoDiffBlock.constant(np.asarray(var, dtype=float))


class Criterion(Enum):
    """Element-wise criteria for :class:`Selector`."""

    GreaterEqualZero = "ge"
    GreaterZero = "gt"
    Zero = "eq"
    NotEqualZero = "ne"
    LessZero = "lt"
    LessEqualZero = "le"


class Selector:
    """Choose element-wise between two expressions based on a criterion.

    Example:

        >>> sel = Selector(drawdown, Criterion.GreaterEqualZero)
        >>> mob_perf = sel.select(mob_cell, mob_wellbore)

    picks ``mob_cell`` where ``drawdown >= 0`` and ``mob_wellbore`` elsewhere.

    Parameters:
        values: Values the criterion is evaluated on.
        criterion: The criterion.

    """

    def __init__(
        self,
        values: AdOrArray,
        criterion: Criterion = Criterion.GreaterEqualZero,
    ) -> None:
        if isinstance(values, AutoDiffBlock):
            values = values.val
        values = np.atleast_1d(np.asarray(values, dtype=float))
        if criterion == Criterion.GreaterEqualZero:
            mask = values >= 0
        elif criterion == Criterion.GreaterZero:
            mask = values > 0
        elif criterion == Criterion.Zero:
            mask = values == 0
        elif criterion == Criterion.NotEqualZero:
            mask = values != 0
        elif criterion == Criterion.LessZero:
            mask = values < 0
        elif criterion == Criterion.LessEqualZero:
            mask = values <= 0
        else:
            raise ValueError(f"Unknown selection criterion {criterion}.")

        self.mask: np.ndarray = mask
        """Boolean array, True where the first alternative is chosen."""

    def select(self, x1, x2):
        """Elements of ``x1`` where the criterion holds, of ``x2`` elsewhere.

        Either argument may be an AD expression, an array or a scalar. The result is an
        AD expression if any argument is.

        """
        m = self.mask.astype(float)
        n = self.mask.size
        if not isinstance(x1, AutoDiffBlock) and not isinstance(x2, AutoDiffBlock):
            return np.where(
                self.mask, np.broadcast_to(x1, n), np.broadcast_to(x2, n)
            ).astype(float)

        def _val(x):
            return x.val if isinstance(x, AutoDiffBlock) else np.broadcast_to(x, n)

        val = np.where(self.mask, _val(x1), _val(x2))
        jac1 = x1.diagvec_mul_jac(m) if isinstance(x1, AutoDiffBlock) else []
        jac2 = x2.diagvec_mul_jac(1 - m) if isinstance(x2, AutoDiffBlock) else []
        if jac1 and jac2 and len(jac1) != len(jac2):
            raise bo.ShapeError("Alternatives of a selection have different blocks.")
        return AutoDiffBlock(val, AutoDiffBlock._add_jacs(jac1, jac2))
