"""Algebraic multigrid for the pressure block of the CPR preconditioner.

A thin wrapper around the classical Ruge-Stüben hierarchy of :mod:`pyamg`. One
application is one V-cycle with symmetric Gauss-Seidel smoothing and a direct solve on
the coarsest level.

"""

from __future__ import annotations

import logging
from typing import Any, Optional

import numpy as np
import pyamg
import scipy.sparse as sps

import blackoil as bo
from blackoil.params.parameters import default_parameters, merge_parameters

__all__ = ["AMGPressureSolver"]

logger = logging.getLogger(__name__)

module_sections = ["linear_solver"]


class AMGPressureSolver:
    """V-cycle of a Ruge-Stüben hierarchy built for a scalar matrix.

    Parameters:
        A: Square scalar matrix, typically the pressure block of the reservoir system.
        params: ``default=None``

            Parameters. Used keys are ``cpr_amg_theta`` (strength of connection
            threshold), ``cpr_amg_max_levels`` and ``cpr_amg_coarse_size`` (size below
            which the coarsening stops). See
            :func:`~blackoil.params.parameters.default_parameters`.

    Raises:
        ShapeError: If ``A`` is not square.

    """

    @bo.time_logger(sections=module_sections)
    def __init__(self, A: sps.spmatrix, params: Optional[dict[str, Any]] = None) -> None:
        params = merge_parameters(default_parameters(), params)
        A = sps.csr_matrix(A, dtype=float)
        if A.shape[0] != A.shape[1]:
            raise bo.ShapeError(f"AMG requires a square matrix, got shape {A.shape}.")
        self.shape: tuple[int, int] = A.shape
        """Shape of the matrix."""

        smoother = ("gauss_seidel", {"sweep": "symmetric"})
        self.hierarchy = pyamg.ruge_stuben_solver(
            A,
            strength=("classical", {"theta": float(params["cpr_amg_theta"])}),
            max_levels=int(params["cpr_amg_max_levels"]),
            max_coarse=int(params["cpr_amg_coarse_size"]),
            presmoother=smoother,
            postsmoother=smoother,
            coarse_solver="splu",
        )
        """The multilevel hierarchy of :mod:`pyamg`."""
        self._cycle = self.hierarchy.aspreconditioner(cycle="V")
        logger.debug(
            f"AMG hierarchy with {len(self.hierarchy.levels)} levels for a pressure "
            f"matrix of size {A.shape[0]}"
        )

    @property
    def num_levels(self) -> int:
        return len(self.hierarchy.levels)

    def solve(self, b: np.ndarray) -> np.ndarray:
        """Apply one V-cycle to ``b``, starting from a zero guess."""
        b = np.asarray(b, dtype=float)
        if b.size == 0:
            return np.zeros(0)
        return np.asarray(self._cycle.matvec(b), dtype=float).ravel()

    def as_preconditioner(self):
        """The V-cycle as a :class:`scipy.sparse.linalg.LinearOperator`."""
        return self._cycle

    def __repr__(self) -> str:
        return f"AMG pressure solver with {self.num_levels} levels for size {self.shape[0]}"
