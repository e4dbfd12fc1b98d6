"""Reduction of the cell equations to a block system with a pressure equation.

After the elimination of the well unknowns, the mass balance equations form a system
with ``num_phases`` equations and unknown blocks of ``num_cells`` entries each. This
module

1. replaces the first equation of each cell by a combination of the phase equations
   whose pressure derivative is diagonally strong, such that the first row of every
   cell block is a pressure equation, and
2. reorders the system cell-major, i.e. into ``num_cells`` blocks of size
   ``num_phases``, ready for block preconditioning.

For three phases, the oil equation is put first, as in the MRST reference
implementation.

"""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np
import scipy.sparse as sps

import blackoil as bo
from blackoil.ad.forward_mode import AutoDiffBlock
from blackoil.ad.utils import vertcat_collapse_jacs

__all__ = [
    "RATIO_LIMIT",
    "strong_diagonal_indicator",
    "form_interleaved_system",
    "cell_major_permutation",
    "to_cell_major",
    "from_cell_major",
]

logger = logging.getLogger(__name__)

module_sections = ["linear_solver"]

RATIO_LIMIT: float = 0.01
"""Minimal ratio of the absolute diagonal entry over the sum of the other absolute
column entries for a diagonally strong pressure derivative."""


def strong_diagonal_indicator(eqs: Sequence[AutoDiffBlock]) -> np.ndarray:
    """Per cell and equation, whether the pressure derivative is diagonally strong.

    Parameters:
        eqs: Cell equations, the pressure being the first block of unknowns.

    Returns:
        Array of shape ``(num_cells, num_eqs)`` with entries 0 or 1.

    """
    n = eqs[0].size
    l1 = np.zeros((n, len(eqs)))
    for phase, eq in enumerate(eqs):
        J = eq.jac[0].to_sparse()
        dj = np.abs(J.diagonal())
        sod = np.asarray(abs(J).sum(axis=0)).ravel() - dj
        with np.errstate(divide="ignore", invalid="ignore"):
            ratio = dj / sod
        # A vanishing off-diagonal sum with a non-zero diagonal is strong.
        ratio[(sod == 0) & (dj > 0)] = np.inf
        l1[:, phase] = (ratio > RATIO_LIMIT).astype(float)
    return l1


@bo.time_logger(sections=module_sections)
def form_interleaved_system(
    eqs: Sequence[AutoDiffBlock], swap_oil_first: bool = True
) -> tuple[sps.csr_matrix, np.ndarray]:
    """Combine the cell equations into a system with a pressure equation first.

    Per cell, the first equation becomes the sum of all diagonally strong equations. If
    the first equation itself is not strong, it is swapped into the slot of the first
    remaining strong equation. If no equation is strong, the first equation is kept.

    Parameters:
        eqs: One equation per active phase, with as many unknown blocks.
        swap_oil_first: ``default=True``

            For three phases, swap the first two equations beforehand, such that the
            oil equation comes first.

    Returns:
        The matrix and right hand side, both ordered equation by equation.

    Raises:
        ShapeError: If the number of equations and blocks differ.

    """
    eqs = list(eqs)
    num_eq = len(eqs)
    if any(eq.num_blocks != num_eq for eq in eqs):
        raise bo.ShapeError(
            f"Interleaving requires {num_eq} blocks of unknowns in every equation."
        )
    if swap_oil_first and num_eq == 3:
        eqs[0], eqs[1] = eqs[1], eqs[0]

    total = vertcat_collapse_jacs(eqs)
    A = total.jac[0].to_sparse()
    b = total.val.copy()
    if num_eq == 1:
        return A, b

    n = eqs[0].size
    l1 = strong_diagonal_indicator(eqs)
    # Row k of each cell is either equation k or the first equation.
    swap_into = np.full(n, -1, dtype=int)
    weak = np.where(l1[:, 0] == 0)[0]
    for elem in weak:
        strong = np.where(l1[elem, 1:] > 0)[0]
        if strong.size == 0:
            l1[elem, 0] = 1.0
        else:
            swap_into[elem] = strong[0] + 1

    cells = np.arange(n)
    rows, cols, data = [], [], []
    for k in range(num_eq):
        rows.append(cells)
        cols.append(k * n + cells)
        data.append(l1[:, k])
    for k in range(1, num_eq):
        swapped = swap_into == k
        rows.append(k * n + cells)
        cols.append(np.where(swapped, cells, k * n + cells))
        data.append(np.ones(n))
    L = sps.csr_matrix(
        (np.concatenate(data), (np.concatenate(rows), np.concatenate(cols))),
        shape=(num_eq * n, num_eq * n),
    )
    L.eliminate_zeros()
    return sps.csr_matrix(L @ A), L @ b


def cell_major_permutation(num_cells: int, num_blocks: int) -> np.ndarray:
    """Permutation ``p`` with ``x_cell_major = x[p]``.

    Entry ``c * num_blocks + k`` of the cell-major vector is entry
    ``k * num_cells + c`` of the block-ordered vector.

    """
    return (
        np.arange(num_blocks)[np.newaxis, :] * num_cells
        + np.arange(num_cells)[:, np.newaxis]
    ).ravel()


def to_cell_major(
    A: sps.spmatrix, b: np.ndarray, num_cells: int, num_blocks: int
) -> tuple[sps.bsr_matrix, np.ndarray]:
    """Reorder a block-ordered system into a matrix of cell blocks.

    Returns:
        A block sparse row matrix with blocks of shape ``(num_blocks, num_blocks)``
        and sorted block indices, and the permuted right hand side.

    """
    p = cell_major_permutation(num_cells, num_blocks)
    A = sps.csr_matrix(A)[p][:, p]
    A_bsr = sps.bsr_matrix(A, blocksize=(num_blocks, num_blocks))
    A_bsr.sort_indices()
    return A_bsr, np.asarray(b, dtype=float)[p]


def from_cell_major(x: np.ndarray, num_cells: int, num_blocks: int) -> np.ndarray:
    """Inverse of the reordering of :func:`to_cell_major` for a vector."""
    p = cell_major_permutation(num_cells, num_blocks)
    out = np.empty_like(x)
    out[p] = x
    return out
