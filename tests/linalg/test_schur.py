"""Tests of the elimination of variable blocks by Schur complements."""
from __future__ import annotations

import numpy as np
import pytest
import scipy.sparse as sps

import blackoil as bo
from blackoil.ad.block_matrix import AutoDiffMatrix
from blackoil.ad.forward_mode import AutoDiffBlock
from blackoil.ad.utils import vertcat_collapse_jacs
from blackoil.linalg.schur import eliminate_variable, eliminate_wells, recover_variable


def split_system(J, R, sizes):
    """Equations of a dense system, one per block of unknowns."""
    offsets = np.concatenate(([0], np.cumsum(sizes)))
    eqs = []
    for i in range(len(sizes)):
        rows = slice(offsets[i], offsets[i + 1])
        jacs = [
            AutoDiffMatrix.from_sparse(
                sps.csr_matrix(J[rows, offsets[j] : offsets[j + 1]])
            )
            for j in range(len(sizes))
        ]
        eqs.append(AutoDiffBlock.function(R[rows].copy(), jacs))
    return eqs


def random_system(sizes, seed=42):
    rng = np.random.default_rng(seed)
    n = sum(sizes)
    J = rng.random((n, n)) + n * np.eye(n)
    R = rng.random(n)
    return J, R


def solve_reduced(eqs):
    total = vertcat_collapse_jacs(eqs)
    return np.linalg.solve(total.jac[0].to_dense(), total.val)


def test_eliminate_and_recover():
    sizes = [2, 1]
    J, R = random_system(sizes)
    eqs = split_system(J, R, sizes)

    reduced = eliminate_variable(eqs, 1)
    assert len(reduced) == 1 and reduced[0].num_blocks == 1
    A, B, C, D = J[:2, :2], J[:2, 2:], J[2:, :2], J[2:, 2:]
    np.testing.assert_allclose(
        reduced[0].jac[0].to_dense(), A - B @ np.linalg.solve(D, C)
    )

    x = recover_variable(eqs[1], solve_reduced(reduced), 1)
    np.testing.assert_allclose(x, np.linalg.solve(J, R))


def test_eliminate_first_block():
    sizes = [1, 2]
    J, R = random_system(sizes, seed=1)
    eqs = split_system(J, R, sizes)
    reduced = eliminate_variable(eqs, 0)
    x = recover_variable(eqs[0], solve_reduced(reduced), 0)
    np.testing.assert_allclose(x, np.linalg.solve(J, R))


def test_eliminate_wells():
    # Two cell blocks, then well rates and bottom hole pressures.
    sizes = [3, 3, 2, 1]
    J, R = random_system(sizes, seed=3)
    eqs = split_system(J, R, sizes)
    reduced, elimination = eliminate_wells(eqs, 2)
    assert len(reduced) == 2
    assert reduced[0].block_pattern == [3, 3]
    dx = elimination.recover(solve_reduced(reduced))
    np.testing.assert_allclose(dx, np.linalg.solve(J, R))


def test_errors():
    sizes = [2, 1]
    J, R = random_system(sizes)
    eqs = split_system(J, R, sizes)
    with pytest.raises(bo.ShapeError):
        eliminate_variable(eqs[:1], 0)
    with pytest.raises(bo.ShapeError):
        eliminate_variable(eqs, 2)
    with pytest.raises(bo.ShapeError):
        recover_variable(eqs[1], np.ones(3), 1)

    J[2, 2] = 0.0
    with pytest.raises(bo.NumericalProblem):
        eliminate_variable(split_system(J, R, sizes), 1)


def test_empty_block():
    # A model without wells has empty well blocks.
    J, R = random_system([2])
    eqs = [
        AutoDiffBlock.function(
            R, [AutoDiffMatrix.from_sparse(J), AutoDiffMatrix.zero(2, 0)]
        ),
        AutoDiffBlock.function(
            np.zeros(0), [AutoDiffMatrix.zero(0, 2), AutoDiffMatrix.zero(0, 0)]
        ),
    ]
    reduced = eliminate_variable(eqs, 1)
    assert reduced[0].block_pattern == [2]
    np.testing.assert_allclose(reduced[0].val, R)
    np.testing.assert_allclose(recover_variable(eqs[1], np.ones(2), 1), np.ones(2))
