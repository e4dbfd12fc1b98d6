"""Linear solver of the Newton iterations.

:class:`NewtonIterationBlackoilInterleaved` computes the Newton increment of a
:class:`~blackoil.models.state.LinearisedBlackoilResidual`:

1. The well rates and the bottom hole pressures are eliminated by Schur complements,
   see :mod:`~blackoil.linalg.schur`.
2. The mass balance equations are scaled by the ``matbal_scale`` of the residual.
3. The equations are combined into a cell-major block system with a pressure equation
   first in every block, see :mod:`~blackoil.linalg.interleave`.
4. The system is solved by BiCGStab or restarted GMRES from :mod:`scipy.sparse.linalg`,
   preconditioned by :class:`~blackoil.linalg.cpr.CPRPreconditioner`.
5. The well unknowns are recovered in the inverse order of their elimination.

The increment ``dx`` solves ``J dx = R`` approximately, such that the Newton update of
the primary variables is ``x - dx``.

With a communicator of more than one process, the Krylov method is a BiCGStab whose
inner products are summed over the owned unknowns of all processes, and whose operator
and preconditioner applications are followed by an update of the overlap cells.

"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

import numpy as np
import scipy.sparse.linalg as spla

import blackoil as bo
from blackoil.ad.forward_mode import AutoDiffBlock
from blackoil.linalg.cpr import CPRPreconditioner
from blackoil.linalg.interleave import form_interleaved_system, from_cell_major, to_cell_major
from blackoil.linalg.schur import WellElimination, eliminate_wells
from blackoil.models.state import LinearisedBlackoilResidual
from blackoil.parallel.communicator import Communicator, SerialCommunicator
from blackoil.params.parameters import default_parameters, merge_parameters

__all__ = ["NewtonIterationBlackoilInterleaved"]

logger = logging.getLogger(__name__)

module_sections = ["linear_solver"]


class NewtonIterationBlackoilInterleaved:
    """Interleaved CPR-preconditioned Krylov solver for the Newton systems.

    Parameters:
        params: ``default=None``

            Parameters. Used keys are ``newton_use_gmres``, ``linear_solver_reduction``
            (relative reduction of the residual norm), ``linear_solver_maxiter``,
            ``linear_solver_restart`` (GMRES only), ``linear_solver_verbosity`` and the
            preconditioner keys of :class:`~blackoil.linalg.cpr.CPRPreconditioner`.
        communicator: ``default=None``

            Communicator of the distributed solve. Serial if not given.

    """

    def __init__(
        self,
        params: Optional[dict[str, Any]] = None,
        communicator: Optional[Communicator] = None,
    ) -> None:
        self.params: dict[str, Any] = merge_parameters(default_parameters(), params)
        self.communicator: Communicator = (
            SerialCommunicator() if communicator is None else communicator
        )
        """Communicator of the distributed solve."""

        self.use_gmres: bool = bool(self.params["newton_use_gmres"])
        self.reduction: float = float(self.params["linear_solver_reduction"])
        self.maxiter: int = int(self.params["linear_solver_maxiter"])
        self.restart: int = int(self.params["linear_solver_restart"])
        self.verbosity: int = int(self.params["linear_solver_verbosity"])

        self.iterations: int = 0
        """Number of Krylov iterations of the last solve."""

    # ---- Reduction of the system

    def _cell_equations(
        self, residual: LinearisedBlackoilResidual
    ) -> tuple[list[AutoDiffBlock], Optional[WellElimination]]:
        num_phases = residual.num_phases
        if residual.has_wells:
            eqs, elimination = eliminate_wells(residual.equations(), num_phases)
        else:
            # Drop the empty well blocks of the unknowns.
            eqs = [
                AutoDiffBlock.function(eq.val, eq.jac[:num_phases])
                for eq in residual.material_balance_eq
            ]
            elimination = None
        scale = np.asarray(residual.matbal_scale, dtype=float)
        eqs = [eq * float(scale[phase]) for phase, eq in enumerate(eqs)]
        return eqs, elimination

    # ---- Solution

    @bo.time_logger(sections=module_sections)
    def compute_newton_increment(
        self, residual: LinearisedBlackoilResidual
    ) -> tuple[np.ndarray, int]:
        """Solve ``J dx = R`` for the Newton increment.

        Parameters:
            residual: The assembled residual.

        Returns:
            The increment of all primary variables, ordered as the blocks of the
            residual Jacobians, and the number of Krylov iterations.

        Raises:
            LinearConvergenceFailure: If the Krylov method does not reach the requested
                reduction within ``linear_solver_maxiter`` iterations.
            NumericalProblem: If an elimination or the preconditioner breaks down.

        """
        num_phases = residual.num_phases
        num_cells = residual.material_balance_eq[0].size
        eqs, elimination = self._cell_equations(residual)

        A, b = form_interleaved_system(eqs)
        A, b = to_cell_major(A, b, num_cells, num_phases)

        preconditioner = CPRPreconditioner(A, self.params)
        if self.communicator.size > 1:
            x, iterations, converged = self._distributed_bicgstab(
                A, b, preconditioner.apply, num_cells, num_phases
            )
        else:
            x, iterations, converged = self._scipy_solve(
                A, b, preconditioner.as_linear_operator()
            )
        self.iterations = iterations

        if not converged:
            raise bo.LinearConvergenceFailure(
                f"Convergence failure for linear solver after {iterations} iterations.",
                iterations=iterations,
            )
        if self.verbosity > 0:
            logger.info(f"Linear solver converged in {iterations} iterations")
        else:
            logger.debug(f"Linear solver converged in {iterations} iterations")

        dx = from_cell_major(x, num_cells, num_phases)
        if elimination is not None:
            dx = elimination.recover(dx)
        else:
            dx = np.concatenate((dx, np.zeros(residual.size() - dx.size)))
        return dx, iterations

    def _scipy_solve(self, A, b: np.ndarray, M) -> tuple[np.ndarray, int, bool]:
        count = [0]

        def callback(_) -> None:
            count[0] += 1

        x0 = np.zeros_like(b)
        if self.use_gmres:
            # scipy counts restart cycles in maxiter.
            cycles = max(1, -(-self.maxiter // max(self.restart, 1)))
            x, info = spla.gmres(
                A,
                b,
                x0=x0,
                rtol=self.reduction,
                atol=0.0,
                restart=self.restart,
                maxiter=cycles,
                M=M,
                callback=callback,
                callback_type="pr_norm",
            )
        else:
            x, info = spla.bicgstab(
                A,
                b,
                x0=x0,
                rtol=self.reduction,
                atol=0.0,
                maxiter=self.maxiter,
                M=M,
                callback=callback,
            )
        if info < 0:
            raise bo.NumericalProblem(
                f"Breakdown of the Krylov solver (scipy info {info})."
            )
        return x, count[0], info == 0

    def _distributed_bicgstab(
        self,
        A,
        b: np.ndarray,
        precondition: Callable[[np.ndarray], np.ndarray],
        num_cells: int,
        num_phases: int,
    ) -> tuple[np.ndarray, int, bool]:
        """Preconditioned BiCGStab on the local rows of a distributed system.

        The scipy Krylov methods reduce inner products locally, so the iteration is
        written out here. Inner products are summed over the owned cells only, with
        :meth:`~blackoil.parallel.communicator.Communicator.sum`. After every product
        with the matrix or the preconditioner the overlap cells are refreshed from
        their owners by :meth:`~blackoil.parallel.communicator.Communicator.exchange`,
        which is a halo update in :class:`~blackoil.parallel.mpi.MPICommunicator`.

        Returns:
            The solution, the number of iterations and whether the reduction was
            reached.

        Raises:
            NumericalProblem: On a breakdown of the iteration.

        """
        comm = self.communicator
        owned = np.repeat(comm.owner_mask(num_cells), num_phases)

        def exchange(v: np.ndarray) -> np.ndarray:
            return comm.exchange(v.reshape((num_cells, num_phases))).ravel()

        def dot(u: np.ndarray, v: np.ndarray) -> float:
            return float(comm.sum(float(u[owned] @ v[owned])))

        def apply_A(v: np.ndarray) -> np.ndarray:
            return exchange(A @ v)

        def apply_M(v: np.ndarray) -> np.ndarray:
            return exchange(precondition(v))

        x = np.zeros_like(b)
        r = exchange(b.copy())
        tol = self.reduction * np.sqrt(dot(r, r))
        if tol == 0.0:
            return x, 0, True
        r_hat = r.copy()
        rho = alpha = omega = 1.0
        v = np.zeros_like(b)
        p = np.zeros_like(b)

        for it in range(1, self.maxiter + 1):
            rho_new = dot(r_hat, r)
            if rho_new == 0.0:
                raise bo.NumericalProblem("Breakdown of BiCGStab: rho vanished.")
            beta = (rho_new / rho) * (alpha / omega)
            p = r + beta * (p - omega * v)
            y = apply_M(p)
            v = apply_A(y)
            alpha = rho_new / dot(r_hat, v)
            s = r - alpha * v
            x = x + alpha * y
            if np.sqrt(dot(s, s)) <= tol:
                return x, it, True
            z = apply_M(s)
            t = apply_A(z)
            tt = dot(t, t)
            if tt == 0.0:
                raise bo.NumericalProblem("Breakdown of BiCGStab: omega undefined.")
            omega = dot(t, s) / tt
            x = x + omega * z
            r = s - omega * t
            if self.verbosity > 1:
                logger.info(f"BiCGStab iteration {it}: residual {np.sqrt(dot(r, r)):.3e}")
            if np.sqrt(dot(r, r)) <= tol:
                return x, it, True
            rho = rho_new
        return x, self.maxiter, False

    def __repr__(self) -> str:
        method = "restarted GMRES" if self.use_gmres else "BiCGStab"
        return (
            f"Interleaved CPR-{method} linear solver, reduction {self.reduction:g}, "
            f"at most {self.maxiter} iterations"
        )
