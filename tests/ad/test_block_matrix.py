"""Tests of the structured Jacobian blocks.

The shape dispatch of addition and multiplication is checked against the tables in the
module documentation, and every result is compared with the product or sum of the
equivalent scipy matrices.

"""
from __future__ import annotations

import numpy as np
import pytest
import scipy.sparse as sps

import blackoil as bo
from blackoil.ad.block_matrix import AutoDiffMatrix, MatrixKind


def _matrices(n: int = 3) -> dict[str, AutoDiffMatrix]:
    sparse = sps.csr_matrix(np.array([[1.0, 2.0, 0.0], [0.0, 3.0, 0.0], [4.0, 0.0, 5.0]]))
    return {
        "Z": AutoDiffMatrix.zero(n, n),
        "I": AutoDiffMatrix.identity(n),
        "D": AutoDiffMatrix.diagonal_matrix(np.array([1.0, -2.0, 3.0])),
        "S": AutoDiffMatrix.from_sparse(sparse),
    }


_ADD_TABLE = {
    ("Z", "Z"): "Z",
    ("Z", "I"): "I",
    ("Z", "D"): "D",
    ("Z", "S"): "S",
    ("I", "I"): "D",
    ("I", "D"): "D",
    ("I", "S"): "S",
    ("D", "D"): "D",
    ("D", "S"): "S",
    ("S", "S"): "S",
}

_MUL_TABLE = {
    ("Z", "I"): "Z",
    ("I", "I"): "I",
    ("I", "D"): "D",
    ("D", "I"): "D",
    ("I", "S"): "S",
    ("D", "D"): "D",
    ("D", "S"): "S",
    ("S", "D"): "S",
    ("S", "S"): "S",
    ("S", "Z"): "Z",
}

_KIND = {
    "Z": MatrixKind.ZERO,
    "I": MatrixKind.IDENTITY,
    "D": MatrixKind.DIAGONAL,
    "S": MatrixKind.SPARSE,
}


@pytest.mark.parametrize("pair, expected", list(_ADD_TABLE.items()))
def test_addition_dispatch(pair, expected):
    mats = _matrices()
    a, b = mats[pair[0]], mats[pair[1]]
    for result in (a + b, b + a):
        assert result.kind == _KIND[expected]
        np.testing.assert_allclose(result.to_dense(), a.to_dense() + b.to_dense())


@pytest.mark.parametrize("pair, expected", list(_MUL_TABLE.items()))
def test_product_dispatch(pair, expected):
    mats = _matrices()
    a, b = mats[pair[0]], mats[pair[1]]
    result = a @ b
    assert result.kind == _KIND[expected]
    np.testing.assert_allclose(result.to_dense(), a.to_dense() @ b.to_dense())
    # * between two matrices is the matrix product, as for scipy matrices.
    np.testing.assert_allclose((a * b).to_dense(), result.to_dense())


def test_kind_is_not_changed_by_values():
    D = AutoDiffMatrix.diagonal_matrix(np.zeros(3))
    assert D.kind == MatrixKind.DIAGONAL
    assert D.nnz == 3
    S = AutoDiffMatrix.from_sparse(sps.identity(3))
    assert S.kind == MatrixKind.SPARSE


def test_scalar_multiplication_and_negation():
    mats = _matrices()
    for key, M in mats.items():
        np.testing.assert_allclose((2.0 * M).to_dense(), 2.0 * M.to_dense())
        np.testing.assert_allclose((-M).to_dense(), -M.to_dense())
        np.testing.assert_allclose((M - M).to_dense(), np.zeros((3, 3)))
    assert (3.0 * mats["I"]).kind == MatrixKind.DIAGONAL


def test_vector_product():
    v = np.array([1.0, 2.0, -1.0])
    for M in _matrices().values():
        np.testing.assert_allclose(M @ v, M.to_dense() @ v)


def test_attributes():
    mats = _matrices()
    assert mats["Z"].nnz == 0
    assert mats["I"].nnz == 3
    assert mats["S"].nnz == 5
    assert mats["S"].coeff(2, 0) == 4.0
    assert mats["D"].coeff(1, 1) == -2.0
    assert mats["D"].coeff(0, 1) == 0.0
    np.testing.assert_allclose(mats["S"].diagonal(), [1.0, 3.0, 5.0])
    np.testing.assert_allclose(mats["S"].T.to_dense(), mats["S"].to_dense().T)
    with pytest.raises(IndexError):
        mats["S"].coeff(3, 0)


def test_zero_rectangular_and_vstack():
    Z = AutoDiffMatrix.zero(2, 4)
    assert Z.shape == (2, 4)
    assert Z.transpose().shape == (4, 2)
    stacked = AutoDiffMatrix.vstack([Z, AutoDiffMatrix.zero(3, 4)])
    assert stacked.kind == MatrixKind.ZERO and stacked.shape == (5, 4)

    mats = _matrices()
    stacked = AutoDiffMatrix.vstack([mats["I"], mats["D"]])
    assert stacked.kind == MatrixKind.SPARSE
    np.testing.assert_allclose(
        stacked.to_dense(), np.vstack((np.eye(3), np.diag([1.0, -2.0, 3.0])))
    )


def test_shape_errors():
    A = AutoDiffMatrix.identity(3)
    B = AutoDiffMatrix.zero(2, 2)
    with pytest.raises(bo.ShapeError):
        A + B
    with pytest.raises(bo.ShapeError):
        A @ AutoDiffMatrix.zero(2, 3)
    with pytest.raises(bo.ShapeError):
        A @ np.ones(2)
    with pytest.raises(bo.ShapeError):
        AutoDiffMatrix.vstack([AutoDiffMatrix.zero(1, 2), AutoDiffMatrix.zero(1, 3)])
    with pytest.raises(bo.ShapeError) as excinfo:
        AutoDiffMatrix(2, 3, MatrixKind.IDENTITY)
    assert "must be square" in str(excinfo.value)
