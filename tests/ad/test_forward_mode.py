"""Tests of the forward mode AD expressions with block structured Jacobians.

Results are compared with hand computed values and derivatives. The Jacobians are
checked through :meth:`AutoDiffBlock.full_jacobian`, i.e. all blocks side by side.

"""
from __future__ import annotations

import numpy as np
import pytest
import scipy.sparse as sps

import blackoil as bo
from blackoil.ad.block_matrix import AutoDiffMatrix, MatrixKind
from blackoil.ad.forward_mode import AutoDiffBlock, initAdArrays


def test_quadratic_function():
    x, y = initAdArrays([np.array([1.0]), np.array([2.0])])
    z = 1 * x + 2 * y + 3 * x * y + 4 * x * x + 5 * y * y
    assert z.val == 35
    np.testing.assert_allclose(z.full_jacobian().toarray(), [[15, 25]])


def test_vector_quadratic():
    x, y = initAdArrays([np.array([1.0, 1.0]), np.array([2.0, 3.0])])
    z = 1 * x + 2 * y + 3 * x * y + 4 * x * x + 5 * y * y
    np.testing.assert_allclose(z.val, [35, 65])
    J = np.array([[15, 0, 25, 0], [0, 18, 0, 35]])
    np.testing.assert_allclose(z.full_jacobian().toarray(), J)


def test_mapping_m_to_n():
    x, y = initAdArrays([np.array([1.0, 1.0, 3.0]), np.array([2.0, 3.0])])
    A = sps.csc_matrix(np.array([[1, 2, 1], [2, 3, 4]]))

    z = y * (A @ x)
    np.testing.assert_allclose(z.val, [12, 51])
    J = np.array([[2, 4, 2, 6, 0], [6, 9, 12, 0, 17]])
    np.testing.assert_allclose(z.full_jacobian().toarray(), J)


def test_variables_have_identity_and_zero_blocks():
    p, s = AutoDiffBlock.variables([np.ones(3), np.zeros(2)])
    assert p.block_pattern == [3, 2]
    assert [J.kind for J in p.jac] == [MatrixKind.IDENTITY, MatrixKind.ZERO]
    assert [J.kind for J in s.jac] == [MatrixKind.ZERO, MatrixKind.IDENTITY]
    assert s.jac[0].shape == (2, 3)


def test_elementwise_products_keep_diagonal_blocks():
    p, s = AutoDiffBlock.variables([np.array([1.0, 2.0]), np.array([0.5, 0.25])])
    z = p * s + p / s
    assert [J.kind for J in z.jac] == [MatrixKind.DIAGONAL, MatrixKind.DIAGONAL]
    np.testing.assert_allclose(z.val, [0.5 + 2.0, 0.5 + 8.0])
    # dz/dp = s + 1/s, dz/ds = p - p/s^2
    np.testing.assert_allclose(z.jac[0].diagonal(), [0.5 + 2.0, 0.25 + 4.0])
    np.testing.assert_allclose(z.jac[1].diagonal(), [1.0 - 4.0, 2.0 - 32.0])


def test_division_and_reverse_operations():
    (x,) = initAdArrays([np.array([2.0, 4.0])])
    z = 1.0 / x
    np.testing.assert_allclose(z.val, [0.5, 0.25])
    np.testing.assert_allclose(z.jac[0].diagonal(), [-0.25, -1.0 / 16])

    z = 3.0 - x
    np.testing.assert_allclose(z.val, [1.0, -1.0])
    np.testing.assert_allclose(z.jac[0].diagonal(), [-1.0, -1.0])

    z = x**3
    np.testing.assert_allclose(z.val, [8.0, 64.0])
    np.testing.assert_allclose(z.jac[0].diagonal(), [12.0, 48.0])


def test_array_operand_from_the_left():
    (x,) = initAdArrays([np.array([1.0, 2.0])])
    a = np.array([3.0, 4.0])
    for z in (a * x, x * a):
        assert isinstance(z, AutoDiffBlock)
        np.testing.assert_allclose(z.val, [3.0, 8.0])
        np.testing.assert_allclose(z.jac[0].diagonal(), [3.0, 4.0])
    z = a + x
    assert isinstance(z, AutoDiffBlock)
    np.testing.assert_allclose(z.val, [4.0, 6.0])


def test_division_by_zero():
    x, y = initAdArrays([np.array([1.0, 2.0]), np.array([0.0, 1.0])])
    with pytest.raises(bo.DivisionByZero):
        x / y
    with pytest.raises(bo.DivisionByZero):
        x / np.array([1.0, 0.0])
    with pytest.raises(bo.DivisionByZero):
        1.0 / y


def test_size_and_pattern_mismatch():
    x, y = initAdArrays([np.ones(2), np.ones(3)])
    with pytest.raises(bo.ShapeError):
        x + y
    (u,) = initAdArrays([np.ones(2)])
    with pytest.raises(bo.ShapeError) as excinfo:
        x + u
    assert "Block patterns" in str(excinfo.value)
    with pytest.raises(bo.ShapeError):
        x + np.ones(3)


def test_constant_without_pattern_combines_with_anything():
    x, y = initAdArrays([np.ones(2), np.ones(3)])
    c = AutoDiffBlock.constant(np.array([2.0, 3.0]))
    assert c.num_blocks == 0
    z = x * c + c
    assert z.block_pattern == [2, 3]
    np.testing.assert_allclose(z.val, [4.0, 6.0])
    np.testing.assert_allclose(z.jac[0].diagonal(), [2.0, 3.0])
    assert z.jac[1].kind == MatrixKind.ZERO


def test_constant_with_pattern():
    c = AutoDiffBlock.constant(np.ones(2), block_pattern=[2, 4])
    assert c.block_pattern == [2, 4]
    assert c.full_jacobian().shape == (2, 6)
    assert c.full_jacobian().nnz == 0


def test_matrix_application():
    (x,) = initAdArrays([np.array([1.0, 2.0, 3.0])])
    M = AutoDiffMatrix.from_sparse(np.array([[1.0, -1.0, 0.0], [0.0, 1.0, -1.0]]))
    z = M @ x
    np.testing.assert_allclose(z.val, [-1.0, -1.0])
    np.testing.assert_allclose(z.full_jacobian().toarray(), M.to_dense())
    with pytest.raises(bo.ShapeError):
        M @ AutoDiffBlock.constant(np.ones(2))


def test_copy_is_independent():
    (x,) = initAdArrays([np.array([1.0, 2.0])])
    y = x.copy()
    y.val[0] = 10.0
    assert x.val[0] == 1.0


def test_function_factory_checks_rows():
    with pytest.raises(bo.ShapeError):
        AutoDiffBlock.function(np.ones(2), [AutoDiffMatrix.identity(3)])
    with pytest.raises(bo.ShapeError):
        AutoDiffBlock.variable(0, np.ones(2), [3])
