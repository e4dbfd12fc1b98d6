"""Forward mode automatic differentiation with block structured Jacobians.

An :class:`AutoDiffBlock` holds a value vector ``val`` and a list ``jac`` with one
:class:`~blackoil.ad.block_matrix.AutoDiffMatrix` per primary variable block. Keeping
the blocks apart (rather than one monolithic Jacobian) is what allows the well
elimination and the interleaving of the linear system to work on block boundaries.

Example:

    >>> p, sw = AutoDiffBlock.variables([p0, sw0])
    >>> mob = sw**2 / mu
    >>> flux = trans * (ngrad @ p)

Scipy sparse matrices and :class:`AutoDiffMatrix` instances apply to an
:class:`AutoDiffBlock` from the left with ``@``. Numpy arrays combine element-wise.

"""

from __future__ import annotations

from typing import Optional, Sequence, Union

import numpy as np
import scipy.sparse as sps

from blackoil.ad.block_matrix import AutoDiffMatrix
from blackoil.utils.errors import DivisionByZero, ShapeError

__all__ = ["AutoDiffBlock", "initAdArrays"]


class AutoDiffBlock:
    """Value vector together with block structured Jacobian.

    Use the factories :meth:`constant`, :meth:`variable`, :meth:`function` and
    :meth:`variables` rather than the constructor.

    Parameters:
        val: Values, ``shape=(N,)``.
        jac: Jacobian blocks, each with ``N`` rows. An empty list is a constant
            without recorded block pattern, which combines with any other expression.

    Raises:
        ShapeError: If a Jacobian block does not have ``N`` rows.

    """

    # Let numpy defer binary operators to this class, so that
    # ``array * ad`` becomes ``ad.__rmul__(array)``.
    __array_ufunc__ = None

    def __init__(self, val: np.ndarray, jac: Sequence[AutoDiffMatrix]) -> None:
        self.val: np.ndarray = np.atleast_1d(np.asarray(val, dtype=float))
        """Value vector."""
        self.jac: list[AutoDiffMatrix] = list(jac)
        """Jacobian blocks, one per primary variable block."""

        n = self.val.size
        for b, J in enumerate(self.jac):
            if J.rows != n:
                raise ShapeError(
                    f"Jacobian block {b} has {J.rows} rows, expected {n} "
                    "(the size of the value vector)."
                )

    # ---- Factories

    @classmethod
    def constant(
        cls, val: np.ndarray, block_pattern: Sequence[int] = ()
    ) -> AutoDiffBlock:
        """Expression with all-zero Jacobian blocks."""
        val = np.atleast_1d(np.asarray(val, dtype=float))
        return cls(val, [AutoDiffMatrix.zero(val.size, n) for n in block_pattern])

    @classmethod
    def variable(
        cls, index: int, val: np.ndarray, block_pattern: Sequence[int]
    ) -> AutoDiffBlock:
        """Independent variable occupying block ``index`` of the pattern."""
        val = np.atleast_1d(np.asarray(val, dtype=float))
        if block_pattern[index] != val.size:
            raise ShapeError(
                f"Variable of size {val.size} does not fit block {index} of "
                f"pattern {list(block_pattern)}."
            )
        jac = [
            AutoDiffMatrix.identity(n) if b == index else AutoDiffMatrix.zero(val.size, n)
            for b, n in enumerate(block_pattern)
        ]
        return cls(val, jac)

    @classmethod
    def function(
        cls, val: np.ndarray, jac: Sequence[AutoDiffMatrix]
    ) -> AutoDiffBlock:
        """Expression with given value and Jacobian blocks."""
        return cls(val, jac)

    @classmethod
    def variables(cls, initial_values: Sequence[np.ndarray]) -> list[AutoDiffBlock]:
        """Create independent variables, one block per entry of ``initial_values``."""
        values = [np.atleast_1d(np.asarray(v, dtype=float)) for v in initial_values]
        pattern = [v.size for v in values]
        return [cls.variable(i, v, pattern) for i, v in enumerate(values)]

    # ---- Attributes

    @property
    def size(self) -> int:
        return self.val.size

    @property
    def num_blocks(self) -> int:
        return len(self.jac)

    @property
    def block_pattern(self) -> list[int]:
        return [J.cols for J in self.jac]

    def value(self) -> np.ndarray:
        return self.val

    def full_jacobian(self) -> sps.csr_matrix:
        """All Jacobian blocks concatenated horizontally."""
        if len(self.jac) == 0:
            return sps.csr_matrix((self.size, 0))
        return sps.hstack([J.to_sparse() for J in self.jac], format="csr")

    def copy(self) -> AutoDiffBlock:
        return AutoDiffBlock(self.val.copy(), [J.copy() for J in self.jac])

    # ---- Helpers for binary operations

    def _check_size(self, other_size: int) -> None:
        if other_size != self.size:
            raise ShapeError(
                f"Operands have sizes {self.size} and {other_size}; "
                "element-wise operations need equal sizes."
            )

    def _check_pattern(self, other: AutoDiffBlock) -> None:
        self._check_size(other.size)
        if self.jac and other.jac and self.block_pattern != other.block_pattern:
            raise ShapeError(
                f"Block patterns {self.block_pattern} and {other.block_pattern} "
                "do not match."
            )

    def diagvec_mul_jac(self, a: Union[np.ndarray, float]) -> list[AutoDiffMatrix]:
        """The Jacobian blocks scaled from the left by ``diag(a)``."""
        if np.isscalar(a):
            return [a * J for J in self.jac]
        D = AutoDiffMatrix.diagonal_matrix(a)
        return [D @ J for J in self.jac]

    @staticmethod
    def _add_jacs(
        j1: list[AutoDiffMatrix], j2: list[AutoDiffMatrix]
    ) -> list[AutoDiffMatrix]:
        if not j1:
            return [J.copy() for J in j2]
        if not j2:
            return [J.copy() for J in j1]
        return [a + b for a, b in zip(j1, j2)]

    @staticmethod
    def _as_array(other, size: int) -> Optional[np.ndarray]:
        """Scalars and arrays as a float array of length ``size``, or None."""
        if np.isscalar(other):
            return np.full(size, float(other))
        if isinstance(other, np.ndarray):
            arr = np.asarray(other, dtype=float).ravel()
            if arr.size == 1:
                return np.full(size, arr[0])
            if arr.size != size:
                raise ShapeError(
                    f"Operands have sizes {size} and {arr.size}; "
                    "element-wise operations need equal sizes."
                )
            return arr
        return None

    # ---- Arithmetic

    def __add__(self, other) -> AutoDiffBlock:
        if isinstance(other, AutoDiffBlock):
            self._check_pattern(other)
            return AutoDiffBlock(self.val + other.val, self._add_jacs(self.jac, other.jac))
        arr = self._as_array(other, self.size)
        if arr is None:
            return NotImplemented
        return AutoDiffBlock(self.val + arr, [J.copy() for J in self.jac])

    def __radd__(self, other) -> AutoDiffBlock:
        return self.__add__(other)

    def __neg__(self) -> AutoDiffBlock:
        return AutoDiffBlock(-self.val, [-J for J in self.jac])

    def __sub__(self, other) -> AutoDiffBlock:
        if isinstance(other, AutoDiffBlock):
            return self + (-other)
        arr = self._as_array(other, self.size)
        if arr is None:
            return NotImplemented
        return self + (-arr)

    def __rsub__(self, other) -> AutoDiffBlock:
        return (-self).__add__(other)

    def __mul__(self, other) -> AutoDiffBlock:
        if isinstance(other, AutoDiffBlock):
            self._check_pattern(other)
            val = self.val * other.val
            jac = self._add_jacs(
                self.diagvec_mul_jac(other.val), other.diagvec_mul_jac(self.val)
            )
            return AutoDiffBlock(val, jac)
        if np.isscalar(other):
            return AutoDiffBlock(self.val * other, self.diagvec_mul_jac(float(other)))
        arr = self._as_array(other, self.size)
        if arr is None:
            return NotImplemented
        return AutoDiffBlock(self.val * arr, self.diagvec_mul_jac(arr))

    def __rmul__(self, other) -> AutoDiffBlock:
        if sps.issparse(other) or isinstance(other, AutoDiffMatrix):
            # Sparse matrices historically use * for the matrix product.
            return self.__rmatmul__(other)
        return self.__mul__(other)

    def __truediv__(self, other) -> AutoDiffBlock:
        if isinstance(other, AutoDiffBlock):
            self._check_pattern(other)
            if np.any(other.val == 0):
                raise DivisionByZero(
                    f"Division by an expression with {np.sum(other.val == 0)} zero "
                    "entries."
                )
            inv = 1.0 / other.val
            val = self.val * inv
            # d(a/b) = diag(1/b) da - diag(a/b^2) db
            jac = self._add_jacs(
                self.diagvec_mul_jac(inv), other.diagvec_mul_jac(-val * inv)
            )
            return AutoDiffBlock(val, jac)
        arr = self._as_array(other, self.size)
        if arr is None:
            return NotImplemented
        if np.any(arr == 0):
            raise DivisionByZero(
                f"Division by an array with {np.sum(arr == 0)} zero entries."
            )
        return self * (1.0 / arr)

    def __rtruediv__(self, other) -> AutoDiffBlock:
        arr = self._as_array(other, self.size)
        if arr is None:
            return NotImplemented
        if np.any(self.val == 0):
            raise DivisionByZero(
                f"Division by an expression with {np.sum(self.val == 0)} zero "
                "entries."
            )
        inv = 1.0 / self.val
        val = arr * inv
        return AutoDiffBlock(val, self.diagvec_mul_jac(-val * inv))

    def __pow__(self, other) -> AutoDiffBlock:
        if not np.isscalar(other):
            return NotImplemented
        val = self.val**other
        jac = self.diagvec_mul_jac(other * self.val ** (other - 1))
        return AutoDiffBlock(val, jac)

    def __rmatmul__(self, other) -> AutoDiffBlock:
        """Left multiplication ``M @ self`` by a matrix."""
        if isinstance(other, AutoDiffMatrix):
            M = other
        elif sps.issparse(other) or (
            isinstance(other, np.ndarray) and other.ndim == 2
        ):
            M = AutoDiffMatrix.from_sparse(other)
        else:
            return NotImplemented
        if M.cols != self.size:
            raise ShapeError(
                f"Cannot apply operator of shape {M.shape} to expression of size "
                f"{self.size}."
            )
        return AutoDiffBlock(M @ self.val, [M @ J for J in self.jac])

    def __repr__(self) -> str:
        s = f"AutoDiffBlock of size {self.size} with block pattern {self.block_pattern}"
        kinds = ", ".join(J.kind.name for J in self.jac)
        return s + (f"\nJacobian block kinds: {kinds}" if kinds else "")


def initAdArrays(variables: Sequence[np.ndarray]) -> list[AutoDiffBlock]:
    """Initialize a set of independent variables.

    Shorthand for :meth:`AutoDiffBlock.variables`.

    """
    return AutoDiffBlock.variables(variables)
