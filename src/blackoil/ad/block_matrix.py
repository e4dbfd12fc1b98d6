"""Structured sparse matrices used as Jacobian blocks in forward mode AD.

Jacobian blocks are frequently zero (a residual not depending on a primary variable),
identity (a primary variable differentiated with respect to itself) or diagonal
(cell-wise functions of a primary variable). :class:`AutoDiffMatrix` keeps track of
which of these shapes a block has, and all arithmetic dispatches on the pair of shapes
to return the tightest shape that represents the result exactly.

Dispatch for ``+`` (rows: left operand, columns: right operand)::

         Z  I     D  S
    Z    Z  I     D  S
    I    I  D(2)  D  S
    D    D  D     D  S
    S    S  S     S  S

and for the matrix product ``@`` (also available as ``*`` between two matrices, as for
scipy sparse matrices)::

         Z  I  D  S
    Z    Z  Z  Z  Z
    I    Z  I  D  S
    D    Z  D  D  S
    S    Z  S  S  S

A shape is never changed based on the numerical values it holds: a diagonal matrix
with zeros on the diagonal stays diagonal and a sparse matrix with only diagonal
entries stays sparse.

"""

from __future__ import annotations

from enum import Enum
from typing import Optional, Sequence, Union

import numpy as np
import scipy.sparse as sps

from blackoil.utils.errors import ShapeError

__all__ = ["MatrixKind", "AutoDiffMatrix"]


class MatrixKind(Enum):
    """Tag of the structure of an :class:`AutoDiffMatrix`."""

    ZERO = 0
    IDENTITY = 1
    DIAGONAL = 2
    SPARSE = 3


class AutoDiffMatrix:
    """Rectangular matrix tagged as zero, identity, diagonal or general sparse.

    Use the class methods :meth:`zero`, :meth:`identity`, :meth:`diagonal_matrix`
    and :meth:`from_sparse` for construction.

    Parameters:
        rows: Number of rows.
        cols: Number of columns.
        kind: Structure of the matrix.
        diag: Diagonal entries, only for ``kind == MatrixKind.DIAGONAL``.
        sparse: Matrix entries, only for ``kind == MatrixKind.SPARSE``.

    Raises:
        ShapeError: If the payload does not match the kind or the dimensions.

    """

    # Let numpy defer binary operators to this class.
    __array_ufunc__ = None

    def __init__(
        self,
        rows: int,
        cols: int,
        kind: MatrixKind = MatrixKind.ZERO,
        diag: Optional[np.ndarray] = None,
        sparse: Optional[sps.csr_matrix] = None,
    ) -> None:
        self._rows = int(rows)
        self._cols = int(cols)
        self._kind = kind
        self._diag: Optional[np.ndarray] = None
        self._sparse: Optional[sps.csr_matrix] = None

        if kind in (MatrixKind.IDENTITY, MatrixKind.DIAGONAL) and rows != cols:
            raise ShapeError(
                f"{kind.name.lower()} matrix must be square, got {rows} x {cols}."
            )
        if kind == MatrixKind.DIAGONAL:
            if diag is None or np.asarray(diag).size != rows:
                raise ShapeError("Diagonal matrix needs a diagonal of length rows.")
            self._diag = np.asarray(diag, dtype=float).ravel()
        elif kind == MatrixKind.SPARSE:
            if sparse is None or sparse.shape != (rows, cols):
                raise ShapeError("Sparse matrix payload must have shape rows x cols.")
            self._sparse = sps.csr_matrix(sparse, dtype=float)

    # ---- Construction

    @classmethod
    def zero(cls, rows: int, cols: int) -> AutoDiffMatrix:
        return cls(rows, cols, MatrixKind.ZERO)

    @classmethod
    def identity(cls, num: int) -> AutoDiffMatrix:
        return cls(num, num, MatrixKind.IDENTITY)

    @classmethod
    def diagonal_matrix(cls, diag: np.ndarray) -> AutoDiffMatrix:
        diag = np.asarray(diag, dtype=float).ravel()
        return cls(diag.size, diag.size, MatrixKind.DIAGONAL, diag=diag)

    @classmethod
    def from_sparse(cls, mat: Union[sps.spmatrix, np.ndarray]) -> AutoDiffMatrix:
        """Wrap a scipy sparse matrix or a dense 2d array as a general sparse block."""
        mat = sps.csr_matrix(mat, dtype=float)
        return cls(mat.shape[0], mat.shape[1], MatrixKind.SPARSE, sparse=mat)

    @classmethod
    def vstack(cls, blocks: Sequence[AutoDiffMatrix]) -> AutoDiffMatrix:
        """Stack blocks with equal column count vertically.

        The result is zero if all blocks are zero, and sparse otherwise.

        """
        if len(blocks) == 0:
            raise ShapeError("Cannot stack an empty list of matrices.")
        cols = blocks[0].cols
        if any(b.cols != cols for b in blocks):
            raise ShapeError("Vertically stacked matrices must have equal columns.")
        rows = sum(b.rows for b in blocks)
        if all(b.kind == MatrixKind.ZERO for b in blocks):
            return cls.zero(rows, cols)
        return cls.from_sparse(sps.vstack([b.to_sparse() for b in blocks]))

    # ---- Attributes

    @property
    def rows(self) -> int:
        return self._rows

    @property
    def cols(self) -> int:
        return self._cols

    @property
    def shape(self) -> tuple[int, int]:
        return (self._rows, self._cols)

    @property
    def kind(self) -> MatrixKind:
        return self._kind

    @property
    def nnz(self) -> int:
        """Number of structurally non-zero entries."""
        if self._kind == MatrixKind.ZERO:
            return 0
        elif self._kind in (MatrixKind.IDENTITY, MatrixKind.DIAGONAL):
            return self._rows
        return self._sparse.nnz

    def coeff(self, row: int, col: int) -> float:
        """Value of a single entry."""
        if not (0 <= row < self._rows and 0 <= col < self._cols):
            raise IndexError(f"Entry ({row}, {col}) outside matrix of {self.shape}.")
        if self._kind == MatrixKind.ZERO:
            return 0.0
        elif self._kind == MatrixKind.IDENTITY:
            return 1.0 if row == col else 0.0
        elif self._kind == MatrixKind.DIAGONAL:
            return float(self._diag[row]) if row == col else 0.0
        return float(self._sparse[row, col])

    def diagonal(self) -> np.ndarray:
        """Main diagonal as a dense vector."""
        n = min(self._rows, self._cols)
        if self._kind == MatrixKind.ZERO:
            return np.zeros(n)
        elif self._kind == MatrixKind.IDENTITY:
            return np.ones(n)
        elif self._kind == MatrixKind.DIAGONAL:
            return self._diag.copy()
        return self._sparse.diagonal()

    # ---- Conversion

    def to_sparse(self) -> sps.csr_matrix:
        if self._kind == MatrixKind.ZERO:
            return sps.csr_matrix(self.shape)
        elif self._kind == MatrixKind.IDENTITY:
            return sps.identity(self._rows, format="csr")
        elif self._kind == MatrixKind.DIAGONAL:
            return sps.diags(self._diag, format="csr")
        return self._sparse.copy()

    def to_dense(self) -> np.ndarray:
        return self.to_sparse().toarray()

    def transpose(self) -> AutoDiffMatrix:
        if self._kind == MatrixKind.ZERO:
            return AutoDiffMatrix.zero(self._cols, self._rows)
        elif self._kind == MatrixKind.SPARSE:
            return AutoDiffMatrix.from_sparse(self._sparse.T)
        return self.copy()

    @property
    def T(self) -> AutoDiffMatrix:
        return self.transpose()

    def copy(self) -> AutoDiffMatrix:
        return AutoDiffMatrix(
            self._rows,
            self._cols,
            self._kind,
            diag=None if self._diag is None else self._diag.copy(),
            sparse=self._sparse,
        )

    # ---- Arithmetic

    def __add__(self, other: AutoDiffMatrix) -> AutoDiffMatrix:
        if not isinstance(other, AutoDiffMatrix):
            return NotImplemented
        if self.shape != other.shape:
            raise ShapeError(
                f"Cannot add matrices of shapes {self.shape} and {other.shape}."
            )
        k1, k2 = self._kind, other._kind
        if k1 == MatrixKind.ZERO:
            return other.copy()
        if k2 == MatrixKind.ZERO:
            return self.copy()
        if k1 == MatrixKind.SPARSE or k2 == MatrixKind.SPARSE:
            return AutoDiffMatrix.from_sparse(self.to_sparse() + other.to_sparse())
        # Both are identity or diagonal.
        return AutoDiffMatrix.diagonal_matrix(self.diagonal() + other.diagonal())

    def __neg__(self) -> AutoDiffMatrix:
        return self * -1.0

    def __sub__(self, other: AutoDiffMatrix) -> AutoDiffMatrix:
        if not isinstance(other, AutoDiffMatrix):
            return NotImplemented
        return self + (-other)

    def __mul__(self, other) -> AutoDiffMatrix:
        if isinstance(other, AutoDiffMatrix):
            return self.__matmul__(other)
        if not np.isscalar(other):
            return NotImplemented
        s = float(other)
        if self._kind == MatrixKind.ZERO:
            return self.copy()
        elif self._kind == MatrixKind.IDENTITY:
            return AutoDiffMatrix.diagonal_matrix(np.full(self._rows, s))
        elif self._kind == MatrixKind.DIAGONAL:
            return AutoDiffMatrix.diagonal_matrix(s * self._diag)
        return AutoDiffMatrix.from_sparse(s * self._sparse)

    def __rmul__(self, other) -> AutoDiffMatrix:
        if np.isscalar(other):
            return self.__mul__(other)
        return NotImplemented

    def __matmul__(self, other):
        if isinstance(other, AutoDiffMatrix):
            return self._matmul_matrix(other)
        if isinstance(other, np.ndarray):
            return self._matmul_vector(other)
        return NotImplemented

    def __rmatmul__(self, other):
        if sps.issparse(other):
            return AutoDiffMatrix.from_sparse(other) @ self
        return NotImplemented

    def _matmul_matrix(self, other: AutoDiffMatrix) -> AutoDiffMatrix:
        if self._cols != other._rows:
            raise ShapeError(
                f"Cannot multiply matrices of shapes {self.shape} and {other.shape}."
            )
        k1, k2 = self._kind, other._kind
        if k1 == MatrixKind.ZERO or k2 == MatrixKind.ZERO:
            return AutoDiffMatrix.zero(self._rows, other._cols)
        if k1 == MatrixKind.IDENTITY:
            return other.copy()
        if k2 == MatrixKind.IDENTITY:
            return self.copy()
        if k1 == MatrixKind.DIAGONAL and k2 == MatrixKind.DIAGONAL:
            return AutoDiffMatrix.diagonal_matrix(self._diag * other._diag)
        if k1 == MatrixKind.DIAGONAL:
            # Row scaling of a sparse matrix.
            return AutoDiffMatrix.from_sparse(sps.diags(self._diag) @ other._sparse)
        if k2 == MatrixKind.DIAGONAL:
            return AutoDiffMatrix.from_sparse(self._sparse @ sps.diags(other._diag))
        return AutoDiffMatrix.from_sparse(self._sparse @ other._sparse)

    def _matmul_vector(self, vec: np.ndarray) -> np.ndarray:
        if vec.shape[0] != self._cols:
            raise ShapeError(
                f"Cannot multiply matrix of shape {self.shape} with vector of "
                f"length {vec.shape[0]}."
            )
        if self._kind == MatrixKind.ZERO:
            return np.zeros((self._rows,) + vec.shape[1:])
        elif self._kind == MatrixKind.IDENTITY:
            return vec.astype(float)
        elif self._kind == MatrixKind.DIAGONAL:
            if vec.ndim == 1:
                return self._diag * vec
            return self._diag[:, None] * vec
        return self._sparse @ vec

    def __repr__(self) -> str:
        return (
            f"AutoDiffMatrix of kind {self._kind.name} with shape {self.shape} "
            f"and {self.nnz} structural non-zeros"
        )
