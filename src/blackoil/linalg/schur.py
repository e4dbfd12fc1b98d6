"""Elimination of variable blocks from a block system by Schur complements.

For a system of equations ``eqs`` with as many blocks of unknowns as equations, the
block ``n`` is eliminated by forming, for every remaining pair ``(i, j)``,

    J_ij <- J_ij - J_in inv(J_nn) J_nj,    R_i <- R_i - J_in inv(J_nn) R_n.

The eliminated unknowns are recovered from the solution of the reduced system by
``inv(J_nn) (R_n - sum_j J_nj x_j)``. The well unknowns are eliminated this way before
the cell system is handed to the iterative solver; the blocks ``J_nn`` are the small
well blocks, factorised by a sparse LU.

"""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np
import scipy.sparse as sps
import scipy.sparse.linalg as spla

import blackoil as bo
from blackoil.ad.block_matrix import AutoDiffMatrix
from blackoil.ad.forward_mode import AutoDiffBlock

__all__ = [
    "eliminate_variable",
    "recover_variable",
    "eliminate_wells",
    "WellElimination",
]

logger = logging.getLogger(__name__)

module_sections = ["linear_solver"]


def _factorize(D: sps.spmatrix, n: int):
    try:
        return spla.splu(sps.csc_matrix(D))
    except RuntimeError as err:
        raise bo.NumericalProblem(
            f"Singular diagonal block when eliminating variable {n}."
        ) from err


@bo.time_logger(sections=module_sections)
def eliminate_variable(eqs: Sequence[AutoDiffBlock], n: int) -> list[AutoDiffBlock]:
    """Eliminate equation and unknown block ``n`` by a Schur complement.

    Parameters:
        eqs: Equations, one per block of unknowns. Equation ``n`` must be square in
            block ``n``.
        n: Index of the equation and block to eliminate.

    Returns:
        The remaining equations, without block ``n``.

    Raises:
        ShapeError: If the numbers of equations and blocks differ, or ``n`` is out of
            range.
        NumericalProblem: If the block ``J_nn`` is singular.

    """
    num_eq = len(eqs)
    num_vars = eqs[0].num_blocks
    if num_eq != num_vars:
        raise bo.ShapeError(
            "Elimination requires the same number of variables and equations."
        )
    if n >= num_eq:
        raise bo.ShapeError("Trying to eliminate variable from too small set of equations.")

    Jn = [J.to_sparse() for J in eqs[n].jac]
    size_n = eqs[n].size
    if size_n == 0:
        return [
            AutoDiffBlock.function(
                eq.val.copy(), [J for b, J in enumerate(eq.jac) if b != n]
            )
            for i, eq in enumerate(eqs)
            if i != n
        ]

    lu = _factorize(Jn[n], n)
    # The eliminated blocks are small, so the inverse is formed explicitly.
    Di = sps.csr_matrix(lu.solve(np.eye(size_n)))
    Dibn = lu.solve(eqs[n].val)

    # inv(D) C for every remaining block
    u = {var: Di @ Jn[var] for var in range(num_eq) if var != n}

    result = []
    for i, eq in enumerate(eqs):
        if i == n:
            continue
        B = eq.jac[n].to_sparse()
        val = eq.val - B @ Dibn
        jacs = []
        for var in range(num_eq):
            if var == n:
                continue
            J = eq.jac[var].to_sparse() - B @ u[var]
            jacs.append(AutoDiffMatrix.from_sparse(sps.csr_matrix(J)))
        result.append(AutoDiffBlock.function(val, jacs))
    return result


def recover_variable(
    equation: AutoDiffBlock, partial_solution: np.ndarray, n: int
) -> np.ndarray:
    """Recover an eliminated block of unknowns.

    Parameters:
        equation: The eliminated equation, as it was before its elimination.
        partial_solution: Solution of the reduced system.
        n: Index of the eliminated block.

    Returns:
        Solution including the recovered block, inserted at its position.

    """
    partial_solution = np.asarray(partial_solution, dtype=float)
    nelim = equation.size
    start = sum(equation.jac[i].cols for i in range(n))
    if nelim == 0:
        return partial_solution.copy()

    D = equation.jac[n].to_sparse()
    C_blocks = [J.to_sparse() for b, J in enumerate(equation.jac) if b != n]
    C = (
        sps.hstack(C_blocks, format="csr")
        if len(C_blocks) > 0
        else sps.csr_matrix((nelim, 0))
    )
    if C.shape[1] != partial_solution.size:
        raise bo.ShapeError(
            f"Partial solution has size {partial_solution.size}, the equation has "
            f"{C.shape[1]} remaining unknowns."
        )
    rhs = equation.val - C @ partial_solution
    elim_var = _factorize(D, n).solve(rhs)

    return np.concatenate(
        (partial_solution[:start], elim_var, partial_solution[start:])
    )


class WellElimination:
    """Eliminated well equations, for the recovery of the well unknowns.

    Parameters:
        eliminated: The eliminated equations in order of elimination, each as it was
            before its own elimination.
        position: Index of the eliminated block in each elimination.

    """

    def __init__(self, eliminated: list[AutoDiffBlock], position: int) -> None:
        self.eliminated = eliminated
        """Equations in order of elimination."""
        self.position = position
        """Block index of the eliminated unknowns."""

    def recover(self, cell_solution: np.ndarray) -> np.ndarray:
        """Full solution from the solution of the reduced cell system."""
        dx = np.asarray(cell_solution, dtype=float)
        # Recovery in inverse order of elimination.
        for equation in reversed(self.eliminated):
            dx = recover_variable(equation, dx, self.position)
        return dx


def eliminate_wells(
    eqs: Sequence[AutoDiffBlock], num_cell_blocks: int
) -> tuple[list[AutoDiffBlock], WellElimination]:
    """Eliminate the well rates and bottom hole pressures.

    Parameters:
        eqs: Mass balance equations followed by the well flux and control equations.
        num_cell_blocks: Number of cell equations, equal to the index of the first
            well equation.

    Returns:
        The reduced cell equations, and the object recovering the well unknowns.

    """
    eqs = list(eqs)
    eliminated = []
    while len(eqs) > num_cell_blocks:
        eliminated.append(eqs[num_cell_blocks])
        eqs = eliminate_variable(eqs, num_cell_blocks)
    return eqs, WellElimination(eliminated, num_cell_blocks)
