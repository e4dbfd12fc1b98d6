"""Row selection, embedding and stacking of AD expressions."""

from __future__ import annotations

from typing import Sequence, Union

import numpy as np
import scipy.sparse as sps

import blackoil as bo
from blackoil.ad.block_matrix import AutoDiffMatrix
from blackoil.ad.forward_mode import AutoDiffBlock

__all__ = [
    "selection_matrix",
    "subset",
    "superset",
    "vertcat",
    "collapse_jacs",
    "vertcat_collapse_jacs",
]

module_sections = ["ad"]


def selection_matrix(indices: np.ndarray, n: int) -> sps.csr_matrix:
    """Matrix picking the rows ``indices`` of a vector of length ``n``.

    Parameters:
        indices: Row indices, ``shape=(k,)``.
        n: Length of the vector to select from.

    Returns:
        Sparse 0/1 matrix of ``shape=(k, n)``.

    """
    indices = np.asarray(indices, dtype=int).ravel()
    if indices.size > 0 and (indices.min() < 0 or indices.max() >= n):
        raise IndexError(f"Selection indices out of range [0, {n}).")
    k = indices.size
    return sps.csr_matrix((np.ones(k), (np.arange(k), indices)), shape=(k, n))


@bo.time_logger(sections=module_sections)
def subset(x: Union[AutoDiffBlock, np.ndarray], indices: np.ndarray):
    """Rows ``indices`` of ``x``."""
    indices = np.asarray(indices, dtype=int).ravel()
    if isinstance(x, AutoDiffBlock):
        return AutoDiffMatrix.from_sparse(selection_matrix(indices, x.size)) @ x
    return np.asarray(x)[indices]


@bo.time_logger(sections=module_sections)
def superset(x: Union[AutoDiffBlock, np.ndarray], indices: np.ndarray, n: int):
    """Embed ``x`` at rows ``indices`` of a zero vector of length ``n``."""
    indices = np.asarray(indices, dtype=int).ravel()
    if isinstance(x, AutoDiffBlock):
        return AutoDiffMatrix.from_sparse(selection_matrix(indices, n).T) @ x
    out = np.zeros(n)
    np.add.at(out, indices, np.asarray(x, dtype=float))
    return out


@bo.time_logger(sections=module_sections)
def vertcat(*variables: AutoDiffBlock) -> AutoDiffBlock:
    """Stack expressions sharing a block pattern on top of each other.

    Raises:
        ShapeError: If the block patterns differ.

    """
    if len(variables) == 1 and isinstance(variables[0], (list, tuple)):
        variables = tuple(variables[0])
    patterns = [v.block_pattern for v in variables if v.num_blocks > 0]
    if any(p != patterns[0] for p in patterns):
        raise bo.ShapeError(f"Cannot stack expressions with block patterns {patterns}.")

    val = np.concatenate([v.val for v in variables])
    if len(patterns) == 0:
        return AutoDiffBlock.constant(val)
    pattern = patterns[0]
    jac = []
    for b, n in enumerate(pattern):
        jac.append(
            AutoDiffMatrix.vstack(
                [
                    v.jac[b] if v.num_blocks > 0 else AutoDiffMatrix.zero(v.size, n)
                    for v in variables
                ]
            )
        )
    return AutoDiffBlock(val, jac)


def collapse_jacs(x: AutoDiffBlock) -> AutoDiffBlock:
    """Expression with a single Jacobian block covering all primary variables."""
    return AutoDiffBlock(x.val.copy(), [AutoDiffMatrix.from_sparse(x.full_jacobian())])


@bo.time_logger(sections=module_sections)
def vertcat_collapse_jacs(variables: Sequence[AutoDiffBlock]) -> AutoDiffBlock:
    """Stack expressions and collapse their Jacobians into a single block.

    Equivalent to ``collapse_jacs(vertcat(*variables))`` without forming the
    intermediate per-block matrices.

    """
    patterns = [v.block_pattern for v in variables if v.num_blocks > 0]
    if any(p != patterns[0] for p in patterns):
        raise bo.ShapeError(f"Cannot stack expressions with block patterns {patterns}.")
    num_cols = sum(patterns[0]) if patterns else 0
    val = np.concatenate([v.val for v in variables])
    rows = [
        v.full_jacobian() if v.num_blocks > 0 else sps.csr_matrix((v.size, num_cols))
        for v in variables
    ]
    jac = sps.vstack(rows, format="csr")
    return AutoDiffBlock(val, [AutoDiffMatrix.from_sparse(jac)])
