"""Block incomplete LU factorization without fill-in.

The factorization works on the data of a :class:`scipy.sparse.bsr_matrix` with square
blocks and sorted block column indices. The strictly lower block triangle holds the
factor ``L`` (unit block diagonal implied), the rest holds ``U``. The inverses of the
diagonal blocks of ``U`` are stored separately for the triangular solves.

The kernels are compiled with numba. The order of all floating point operations is
fixed, so that the factorization and the solves are reproducible.

"""

from __future__ import annotations

import logging

import numba as nb
import numpy as np
import scipy.sparse as sps

import blackoil as bo
from blackoil._core import NUMBA_CACHE, NUMBA_FAST_MATH

__all__ = ["BlockILU0"]

logger = logging.getLogger(__name__)

module_sections = ["linear_solver"]

_COMPILE_KWARGS = dict(fastmath=NUMBA_FAST_MATH, cache=NUMBA_CACHE)
"""Keyword arguments for compiling functions in this module."""


@nb.njit(**_COMPILE_KWARGS)
def _invert_block(block: np.ndarray, out: np.ndarray) -> bool:
    """Gauss-Jordan inversion with partial pivoting. False if the block is singular."""
    n = block.shape[0]
    a = block.copy()
    for i in range(n):
        for j in range(n):
            out[i, j] = 1.0 if i == j else 0.0
    for col in range(n):
        piv = col
        for r in range(col + 1, n):
            if abs(a[r, col]) > abs(a[piv, col]):
                piv = r
        if a[piv, col] == 0.0:
            return False
        if piv != col:
            for j in range(n):
                tmp = a[col, j]
                a[col, j] = a[piv, j]
                a[piv, j] = tmp
                tmp = out[col, j]
                out[col, j] = out[piv, j]
                out[piv, j] = tmp
        d = a[col, col]
        for j in range(n):
            a[col, j] /= d
            out[col, j] /= d
        for r in range(n):
            if r != col:
                f = a[r, col]
                if f != 0.0:
                    for j in range(n):
                        a[r, j] -= f * a[col, j]
                        out[r, j] -= f * out[col, j]
    return True


@nb.njit(**_COMPILE_KWARGS)
def _factorize_kernel(
    indptr: np.ndarray, indices: np.ndarray, data: np.ndarray
) -> tuple[np.ndarray, np.ndarray, int]:
    """In-place block ILU(0) of ``data``.

    Returns the position of each diagonal block, the inverted diagonal blocks, and the
    first row with a missing or singular diagonal block (-1 if none).

    """
    n = indptr.size - 1
    bs = data.shape[1]
    diag_ptr = np.full(n, -1, dtype=np.int64)
    inv_diag = np.zeros((n, bs, bs))
    marker = np.full(n, -1, dtype=np.int64)

    for i in range(n):
        for jj in range(indptr[i], indptr[i + 1]):
            marker[indices[jj]] = jj
            if indices[jj] == i:
                diag_ptr[i] = jj
        if diag_ptr[i] < 0:
            return diag_ptr, inv_diag, i

        for kk in range(indptr[i], indptr[i + 1]):
            k = indices[kk]
            if k >= i:
                break
            # L_ik = A_ik inv(U_kk)
            data[kk] = data[kk] @ inv_diag[k]
            for jj in range(diag_ptr[k] + 1, indptr[k + 1]):
                pos = marker[indices[jj]]
                if pos >= 0:
                    data[pos] -= data[kk] @ data[jj]

        if not _invert_block(data[diag_ptr[i]], inv_diag[i]):
            return diag_ptr, inv_diag, i

        for jj in range(indptr[i], indptr[i + 1]):
            marker[indices[jj]] = -1

    return diag_ptr, inv_diag, -1


@nb.njit(**_COMPILE_KWARGS)
def _solve_kernel(
    indptr: np.ndarray,
    indices: np.ndarray,
    data: np.ndarray,
    diag_ptr: np.ndarray,
    inv_diag: np.ndarray,
    b: np.ndarray,
) -> np.ndarray:
    n = indptr.size - 1
    bs = data.shape[1]
    x = b.reshape((n, bs)).copy()
    # Forward substitution with unit block diagonal.
    for i in range(n):
        for kk in range(indptr[i], diag_ptr[i]):
            x[i] -= data[kk] @ x[indices[kk]]
    # Backward substitution.
    for i in range(n - 1, -1, -1):
        for jj in range(diag_ptr[i] + 1, indptr[i + 1]):
            x[i] -= data[jj] @ x[indices[jj]]
        x[i] = inv_diag[i] @ x[i]
    return x.ravel()


class BlockILU0:
    """Block ILU(0) factorization of a block sparse row matrix.

    Parameters:
        A: Matrix with square blocks. Converted to a block sparse row matrix with blocks
            of size ``block_size`` if necessary.
        block_size: ``default=None``

            Size of the blocks. Taken from ``A`` if it is a block sparse row matrix,
            else 1.

    Raises:
        NumericalProblem: If a diagonal block is missing or becomes singular.

    """

    @bo.time_logger(sections=module_sections)
    def __init__(self, A: sps.spmatrix, block_size: int | None = None) -> None:
        if block_size is None:
            block_size = A.blocksize[0] if sps.isspmatrix_bsr(A) else 1
        A = sps.bsr_matrix(A, blocksize=(block_size, block_size), copy=True)
        A.sort_indices()
        self.block_size: int = block_size
        """Size of the blocks."""
        self.num_block_rows: int = A.shape[0] // block_size
        """Number of block rows."""

        self._indptr = A.indptr.astype(np.int64)
        self._indices = A.indices.astype(np.int64)
        self._data = np.ascontiguousarray(A.data, dtype=float)
        self._diag_ptr, self._inv_diag, failed = _factorize_kernel(
            self._indptr, self._indices, self._data
        )
        if failed >= 0:
            raise bo.NumericalProblem(
                f"Block ILU(0) breaks down in block row {failed}: missing or singular "
                "diagonal block."
            )

    def solve(self, b: np.ndarray) -> np.ndarray:
        """Apply the inverse of ``L U`` to ``b``."""
        b = np.ascontiguousarray(b, dtype=float)
        if b.size != self.num_block_rows * self.block_size:
            raise bo.ShapeError(
                f"Vector of size {b.size} does not match the factorization of size "
                f"{self.num_block_rows * self.block_size}."
            )
        return _solve_kernel(
            self._indptr, self._indices, self._data, self._diag_ptr, self._inv_diag, b
        )

    def __repr__(self) -> str:
        return (
            f"Block ILU(0) with {self.num_block_rows} block rows of size "
            f"{self.block_size}"
        )
