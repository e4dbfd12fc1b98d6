"""Constrained pressure residual (CPR) preconditioner.

The preconditioner acts on a cell-major block system whose first row and column in
every block belong to the pressure equation and the pressure unknown, see
:mod:`~blackoil.linalg.interleave`. One application is two-stage:

1. ``x1 = P^T inv(A_pp) P r``: one AMG V-cycle on the pressure block ``A_pp``, applied
   to the pressure rows of the residual.
2. ``x = x1 + inv(LU) (r - A x1)``: a block ILU(0) smoothing of the full system.

"""

from __future__ import annotations

import logging
from typing import Any, Optional

import numpy as np
import scipy.sparse as sps
import scipy.sparse.linalg as spla

import blackoil as bo
from blackoil.linalg.amg import AMGPressureSolver
from blackoil.linalg.ilu import BlockILU0
from blackoil.params.parameters import default_parameters, merge_parameters

__all__ = ["CPRPreconditioner"]

logger = logging.getLogger(__name__)

module_sections = ["linear_solver"]


class CPRPreconditioner:
    """Two-stage preconditioner for block systems with a pressure equation.

    Parameters:
        A: Block sparse row matrix with square blocks, pressure first in each block.
        params: ``default=None``

            Parameters. If ``linear_solver_use_amg`` is False, the pressure stage is
            skipped and the preconditioner is the block ILU(0) alone. The AMG is
            configured by the ``cpr_amg_*`` keys.

    Raises:
        NumericalProblem: If the block ILU(0) breaks down.

    """

    @bo.time_logger(sections=module_sections)
    def __init__(
        self, A: sps.bsr_matrix, params: Optional[dict[str, Any]] = None
    ) -> None:
        self.params: dict[str, Any] = merge_parameters(default_parameters(), params)
        if not sps.isspmatrix_bsr(A):
            A = sps.bsr_matrix(A, blocksize=(1, 1))
        self.A: sps.bsr_matrix = A
        """The system matrix."""
        self.block_size: int = A.blocksize[0]
        """Number of unknowns per cell."""

        self.pressure_solver: Optional[AMGPressureSolver] = None
        """AMG of the pressure block, None if the pressure stage is off."""
        if self.params["linear_solver_use_amg"] and A.shape[0] > 0:
            self.pressure_solver = AMGPressureSolver(
                self.pressure_matrix(), self.params
            )
        self.smoother = BlockILU0(A, self.block_size)
        """Block ILU(0) of the full system."""

    def pressure_matrix(self) -> sps.csr_matrix:
        """The pressure block: first row and column of every cell block."""
        A = sps.csr_matrix(self.A)
        return sps.csr_matrix(A[:: self.block_size, :: self.block_size])

    def apply(self, r: np.ndarray) -> np.ndarray:
        """Apply the preconditioner to a residual vector."""
        r = np.asarray(r, dtype=float).ravel()
        if self.pressure_solver is None:
            return self.smoother.solve(r)
        x1 = np.zeros_like(r)
        x1[:: self.block_size] = self.pressure_solver.solve(r[:: self.block_size])
        r2 = r - self.A @ x1
        return x1 + self.smoother.solve(r2)

    def as_linear_operator(self) -> spla.LinearOperator:
        """The preconditioner as a linear operator, for the scipy Krylov solvers."""
        return spla.LinearOperator(self.A.shape, matvec=self.apply, dtype=float)

    def __repr__(self) -> str:
        stage = "AMG + " if self.pressure_solver is not None else ""
        return (
            f"CPR preconditioner ({stage}block ILU(0)) with block size "
            f"{self.block_size} for {self.A.shape[0] // max(self.block_size, 1)} cells"
        )
