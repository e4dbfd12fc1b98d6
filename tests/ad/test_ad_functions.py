"""Tests of the element-wise AD functions, the selector and the stacking utilities."""
from __future__ import annotations

import numpy as np
import pytest

import blackoil as bo
from blackoil.ad import functions as af
from blackoil.ad import utils as au
from blackoil.ad.block_matrix import MatrixKind
from blackoil.ad.forward_mode import AutoDiffBlock, initAdArrays


def test_exp_log_abs():
    (x,) = initAdArrays([np.array([1.0, -2.0])])
    z = af.exp(x)
    np.testing.assert_allclose(z.val, np.exp([1.0, -2.0]))
    np.testing.assert_allclose(z.jac[0].diagonal(), np.exp([1.0, -2.0]))

    z = af.abs(x)
    np.testing.assert_allclose(z.val, [1.0, 2.0])
    np.testing.assert_allclose(z.jac[0].diagonal(), [1.0, -1.0])

    (y,) = initAdArrays([np.array([1.0, 4.0])])
    z = af.log(y)
    np.testing.assert_allclose(z.val, [0.0, np.log(4.0)])
    np.testing.assert_allclose(z.jac[0].diagonal(), [1.0, 0.25])

    np.testing.assert_allclose(af.sign(x), [1.0, -1.0])
    np.testing.assert_allclose(af.exp(np.zeros(2)), np.ones(2))


def test_make_constant_keeps_pattern():
    x, y = initAdArrays([np.ones(2), np.ones(3)])
    c = af.make_constant(x * 2.0)
    assert c.block_pattern == [2, 3]
    assert all(J.kind == MatrixKind.ZERO for J in c.jac)
    np.testing.assert_allclose(c.val, [2.0, 2.0])


@pytest.mark.parametrize(
    "criterion, mask",
    [
        (af.Criterion.GreaterEqualZero, [True, True, False]),
        (af.Criterion.GreaterZero, [True, False, False]),
        (af.Criterion.Zero, [False, True, False]),
        (af.Criterion.NotEqualZero, [True, False, True]),
        (af.Criterion.LessZero, [False, False, True]),
        (af.Criterion.LessEqualZero, [False, True, True]),
    ],
)
def test_selector_criteria(criterion, mask):
    sel = af.Selector(np.array([1.0, 0.0, -1.0]), criterion)
    np.testing.assert_array_equal(sel.mask, mask)


def test_selector_with_ad_alternatives():
    x, y = initAdArrays([np.array([1.0, 2.0]), np.array([10.0, 20.0])])
    sel = af.Selector(np.array([1.0, -1.0]))
    z = sel.select(x, y)
    np.testing.assert_allclose(z.val, [1.0, 20.0])
    np.testing.assert_allclose(z.full_jacobian().toarray(), [[1, 0, 0, 0], [0, 0, 0, 1]])

    z = sel.select(x, 5.0)
    np.testing.assert_allclose(z.val, [1.0, 5.0])
    np.testing.assert_allclose(z.jac[0].diagonal(), [1.0, 0.0])

    plain = sel.select(np.array([1.0, 2.0]), 0.0)
    assert not isinstance(plain, AutoDiffBlock)
    np.testing.assert_allclose(plain, [1.0, 0.0])


def test_subset_and_superset():
    (x,) = initAdArrays([np.array([1.0, 2.0, 3.0, 4.0])])
    sub = au.subset(x, np.array([3, 1]))
    np.testing.assert_allclose(sub.val, [4.0, 2.0])
    np.testing.assert_allclose(
        sub.full_jacobian().toarray(), [[0, 0, 0, 1], [0, 1, 0, 0]]
    )
    sup = au.superset(sub, np.array([0, 2]), 3)
    np.testing.assert_allclose(sup.val, [4.0, 0.0, 2.0])
    assert sup.full_jacobian().shape == (3, 4)

    np.testing.assert_allclose(au.superset(np.array([1.0, 2.0]), [2, 0], 3), [2, 0, 1])
    with pytest.raises(IndexError):
        au.subset(x, np.array([4]))


def test_vertcat_and_collapse():
    x, y = initAdArrays([np.array([1.0, 2.0]), np.array([3.0])])
    z = au.vertcat(x, y)
    assert z.size == 3
    assert z.block_pattern == [2, 1]
    np.testing.assert_allclose(z.full_jacobian().toarray(), np.eye(3))

    collapsed = au.vertcat_collapse_jacs([x, y])
    assert collapsed.num_blocks == 1
    np.testing.assert_allclose(collapsed.jac[0].to_dense(), np.eye(3))
    np.testing.assert_allclose(
        au.collapse_jacs(x).jac[0].to_dense(), [[1, 0, 0], [0, 1, 0]]
    )

    c = AutoDiffBlock.constant(np.ones(2))
    stacked = au.vertcat_collapse_jacs([x, c])
    assert stacked.jac[0].shape == (4, 3)

    (u,) = initAdArrays([np.ones(2)])
    with pytest.raises(bo.ShapeError):
        au.vertcat(x, u)
