"""Tests of the block ILU(0) factorization."""
from __future__ import annotations

import numpy as np
import pytest
import scipy.sparse as sps
import scipy.sparse.linalg as spla

import blackoil as bo
from blackoil.linalg.ilu import BlockILU0


def block_tridiagonal(num_blocks, block_size, seed=0):
    rng = np.random.default_rng(seed)
    n = num_blocks * block_size
    A = np.zeros((n, n))
    for i in range(num_blocks):
        rows = slice(i * block_size, (i + 1) * block_size)
        A[rows, rows] = rng.random((block_size, block_size)) + 4 * np.eye(block_size)
        if i > 0:
            cols = slice((i - 1) * block_size, i * block_size)
            A[rows, cols] = -rng.random((block_size, block_size))
            A[cols, rows] = -rng.random((block_size, block_size))
    return sps.bsr_matrix(A, blocksize=(block_size, block_size))


@pytest.mark.parametrize("block_size", [1, 2, 3])
def test_exact_without_fill_in(block_size):
    # The LU factors of a block tridiagonal matrix have no fill-in.
    A = block_tridiagonal(5, block_size)
    b = np.arange(A.shape[0], dtype=float)
    ilu = BlockILU0(A)
    assert ilu.block_size == block_size
    assert ilu.num_block_rows == 5
    np.testing.assert_allclose(ilu.solve(b), spla.spsolve(A.tocsc(), b), rtol=1e-10)


def test_block_size_from_argument():
    A = block_tridiagonal(4, 2).tocsr()
    ilu = BlockILU0(A, block_size=2)
    b = np.ones(8)
    np.testing.assert_allclose(A @ ilu.solve(b), b, rtol=1e-10)


def test_approximate_with_fill_in():
    # Two-dimensional Laplacian: ILU(0) is only approximate, but a preconditioner.
    n = 10
    T = sps.diags([-1, 2, -1], [-1, 0, 1], shape=(n, n))
    A = sps.kronsum(T, T).tocsr()
    b = np.ones(n * n)
    ilu = BlockILU0(A)
    assert not np.allclose(A @ ilu.solve(b), b)
    M = spla.LinearOperator(A.shape, matvec=ilu.solve)
    x, info = spla.gmres(A, b, M=M, rtol=1e-10, atol=0.0, restart=n * n, maxiter=2)
    assert info == 0
    np.testing.assert_allclose(A @ x, b, atol=1e-7)


def test_reproducible():
    A = block_tridiagonal(20, 3, seed=5)
    b = np.random.default_rng(1).random(60)
    x1 = BlockILU0(A).solve(b)
    x2 = BlockILU0(A).solve(b)
    assert np.array_equal(x1, x2)


def test_breakdown_and_shape():
    A = sps.bsr_matrix(np.array([[0.0, 1.0], [1.0, 0.0]]), blocksize=(1, 1))
    with pytest.raises(bo.NumericalProblem):
        BlockILU0(A)
    ilu = BlockILU0(block_tridiagonal(2, 2))
    with pytest.raises(bo.ShapeError):
        ilu.solve(np.ones(3))
