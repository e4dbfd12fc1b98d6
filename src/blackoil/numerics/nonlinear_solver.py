"""Newton iterations of one sub-step, with oscillation detection and relaxation.

The solver drives a model providing ``prepare_step``, ``nonlinear_iteration`` and
``after_step``, see :class:`~blackoil.models.blackoil_model.BlackoilModel`. Iterations
continue until the model reports convergence after at least ``min_iter`` updates, or
``max_iter`` iterations are exhausted. Failure to converge is returned in the report,
not raised; numerical breakdown inside an iteration raises
:class:`~blackoil.utils.errors.NumericalProblem`.

"""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Any, Optional

import numpy as np

import blackoil as bo
from blackoil.models.report import SimulationReport
from blackoil.params.parameters import default_parameters, merge_parameters

__all__ = ["RelaxType", "NonlinearSolver"]

logger = logging.getLogger(__name__)

module_sections = ["nonlinear"]


class RelaxType(Enum):
    """Relaxation of the Newton update."""

    DAMPEN = "dampen"
    """Scale the update by the relaxation factor."""
    SOR = "sor"
    """Combine the update with the previous one."""

    @classmethod
    def from_str(cls, relax_type: str) -> RelaxType:
        try:
            return cls(relax_type.strip().lower())
        except ValueError as err:
            raise ValueError(
                f"Unknown relaxation type {relax_type}, use 'dampen' or 'sor'."
            ) from err


class NonlinearSolver:
    """Newton solver for a single sub-step.

    Parameters:
        model: The model providing the nonlinear iterations.
        params: ``default=None``

            Parameters. Used are ``max_iter``, ``min_iter``, ``relax_type``,
            ``relax_max``, ``relax_increment`` and ``relax_rel_tol``.

    """

    def __init__(self, model, params: Optional[dict[str, Any]] = None) -> None:
        self.model = model
        """The model."""
        self.params: dict[str, Any] = merge_parameters(default_parameters(), params)
        """Parameters of the solver."""

        self.max_iter: int = int(self.params["max_iter"])
        """Maximum number of Newton iterations."""
        self.min_iter: int = int(self.params["min_iter"])
        """Minimum number of Newton updates."""
        self.relax_type: RelaxType = (
            self.params["relax_type"]
            if isinstance(self.params["relax_type"], RelaxType)
            else RelaxType.from_str(self.params["relax_type"])
        )
        """Relaxation of the updates once oscillations are detected."""
        self.relax_max: float = float(self.params["relax_max"])
        """Smallest relaxation factor."""
        self.relax_increment: float = float(self.params["relax_increment"])
        """Reduction of the relaxation factor per detected oscillation."""
        self.relax_rel_tol: float = float(self.params["relax_rel_tol"])
        """Relative tolerance of the oscillation detection."""

        if self.max_iter < 1 or self.min_iter < 0:
            raise ValueError("max_iter must be positive and min_iter non-negative.")
        if not 0 < self.relax_max <= 1:
            raise ValueError(f"relax_max must be in (0, 1], got {self.relax_max}.")

        self.newton_iterations: int = 0
        """Newton iterations of all successful steps."""
        self.linear_iterations: int = 0
        """Linear iterations of all successful steps."""
        self.well_iterations: int = 0
        """Well iterations of all successful steps."""
        self.newton_iterations_last_step: int = 0
        """Newton iterations of the last step, successful or not."""
        self.linear_iterations_last_step: int = 0
        """Linear iterations of the last step, successful or not."""

    @bo.time_logger(sections=module_sections)
    def step(self, dt: float, state, well_state) -> SimulationReport:
        """Solve one sub-step of length ``dt``.

        The states are updated in place. On failure they hold the last iterate, and
        the caller is responsible for restoring them.

        Parameters:
            dt: Length of the sub-step.
            state: Reservoir state at the start of the step.
            well_state: Well state at the start of the step.

        Returns:
            Report of the step. ``converged`` is False if the iterations did not
            converge within ``max_iter``.

        """
        tic = time.perf_counter()
        report = SimulationReport()
        self.model.prepare_step(dt, state, well_state)

        iteration = 0
        converged = False
        # Iterate while not converged, and at least until min_iter updates are done.
        while (not converged and iteration <= self.max_iter) or (
            iteration <= self.min_iter
        ):
            iteration_report = self.model.nonlinear_iteration(
                iteration, dt, self, state, well_state
            )
            report.assemble_time += iteration_report.assemble_time
            report.linear_solve_time += iteration_report.linear_solve_time
            report.update_time += iteration_report.update_time
            report.linear_iterations += iteration_report.linear_iterations
            report.well_iterations += iteration_report.well_iterations
            if iteration_report.failed:
                converged = False
                break
            converged = iteration_report.converged
            iteration += 1

        report.newton_iterations = max(iteration - 1, 0)
        report.converged = converged
        report.failed = not converged
        report.total_time = time.perf_counter() - tic

        self.newton_iterations_last_step = report.newton_iterations
        self.linear_iterations_last_step = report.linear_iterations
        if not converged:
            logger.info(f"Failed to converge in {report.newton_iterations} iterations")
            return report

        self.newton_iterations += report.newton_iterations
        self.linear_iterations += report.linear_iterations
        self.well_iterations += report.well_iterations
        self.model.after_step(dt, state, well_state)
        return report

    def detect_oscillations(
        self, residual_history: list[list[float]], iteration: int
    ) -> tuple[bool, bool]:
        """Detect oscillating or stagnating residuals.

        The last three residual norms ``F0, F1, F2`` (latest first) of each phase are
        compared. A phase oscillates if ``|F0 - F2| / F0`` is below ``relax_rel_tol``
        while ``|F0 - F1| / F0`` is above, i.e. the residual returns to where it was
        two iterations ago. The iterations oscillate if more than one phase does, and
        stagnate if no phase changed its residual by more than a factor ``1e-3``.

        Parameters:
            residual_history: Residual norms per iteration; the entries of the mass
                balance equations come first.
            iteration: The current iteration.

        Returns:
            Whether the iterations oscillate, and whether they stagnate.

        """
        if iteration < 2 or len(residual_history) < 3:
            return False, False
        num_phases = self.model.num_phases
        F0 = np.asarray(residual_history[-1][:num_phases], dtype=float)
        F1 = np.asarray(residual_history[-2][:num_phases], dtype=float)
        F2 = np.asarray(residual_history[-3][:num_phases], dtype=float)

        with np.errstate(divide="ignore", invalid="ignore"):
            d1 = np.abs((F0 - F2) / F0)
            d2 = np.abs((F0 - F1) / F0)
            d3 = np.abs((F1 - F2) / F2)
        oscillating_phases = np.count_nonzero(
            (d1 < self.relax_rel_tol) & (self.relax_rel_tol < d2)
        )
        oscillate = oscillating_phases > 1
        stagnate = bool(np.all(d3 <= 1e-3))
        return oscillate, stagnate

    def stabilize_nonlinear_update(
        self, dx: np.ndarray, dx_old: np.ndarray, omega: float
    ) -> tuple[np.ndarray, np.ndarray]:
        """Relax a Newton update.

        Parameters:
            dx: The Newton update.
            dx_old: The previous unrelaxed update.
            omega: Relaxation factor. No relaxation for ``omega == 1``.

        Returns:
            The relaxed update, and the unrelaxed update to be passed as ``dx_old``
            in the next iteration.

        """
        dx = np.asarray(dx, dtype=float)
        if omega == 1.0:
            return dx, dx.copy()
        if self.relax_type == RelaxType.DAMPEN:
            relaxed = dx * omega
        else:
            relaxed = dx * omega + (1.0 - omega) * dx_old
        return relaxed, dx.copy()

    def __repr__(self) -> str:
        return (
            f"NonlinearSolver with max_iter={self.max_iter}, min_iter={self.min_iter} "
            f"and {self.relax_type.value} relaxation"
        )
