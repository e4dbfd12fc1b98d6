"""
This module contains the controls suggesting the length of the next sub-step.

Three controls are available, selected by the parameter ``timestep.control``:

    pid: The relative change of pressure and saturations over the last sub-step,

        e = (||p^{n+1} - p^n||^2 + ||S^{n+1} - S^n||^2) / (||p^{n+1}||^2 + ||S^{n+1}||^2),

        is driven towards the tolerance ``tol`` by a PID controller on the errors of
        the last three sub-steps ``e0, e1, e2`` (latest last),

            dt_new = dt * (e1 / e2)^kP * (tol / e2)^kI * (e0^2 / (e1 e2))^kD.

        If the latest error exceeds the tolerance, the step is reduced by
        ``tol / e2`` instead.

    pid+iteration: As pid, but the step is additionally reduced when the number of
        linear iterations exceeds a target.

    iterationcount: The step is increased by an over-relaxation factor if the number of
        Newton iterations is below an optimal range, and reduced by an under-relaxation
        factor above it. This is the rule of the iteration based time managers in the
        literature, see e.g.

        Simunek, J., Van Genuchten, M. T., & Sejna, M. (2005). The HYDRUS-1D software
        package for simulating the one-dimensional movement of water, heat, and
        multiple solutes in variably-saturated media.

All controls are stateless with respect to the simulation time; bounds on the step and
alignment with report times are the business of
:class:`~blackoil.numerics.adaptive_simulator_timer.AdaptiveSimulatorTimer`.

"""

from __future__ import annotations

import abc
import logging
from typing import Any, Optional

import numpy as np

from blackoil.models.report import SimulationReport
from blackoil.params.parameters import default_parameters, merge_parameters

__all__ = [
    "TimeStepControl",
    "PIDTimeStepControl",
    "PIDAndIterationCountTimeStepControl",
    "IterationCountTimeStepControl",
    "create_time_step_control",
]

logger = logging.getLogger(__name__)


class TimeStepControl(abc.ABC):
    """Interface of the time-step controls."""

    @abc.abstractmethod
    def compute_time_step_size(
        self, dt: float, report: SimulationReport, relative_change: float
    ) -> float:
        """Suggested length of the next sub-step.

        Parameters:
            dt: Length of the sub-step just completed.
            report: Report of the completed sub-step.
            relative_change: Relative change of the state over the sub-step.

        Returns:
            The suggested length of the next sub-step.

        """


class PIDTimeStepControl(TimeStepControl):
    """Control of the relative change of the solution.

    Parameters:
        tol: ``default=1e-3``

            Target relative change per sub-step.
        kp: ``default=0.075``

            Proportional gain.
        ki: ``default=0.175``

            Integral gain.
        kd: ``default=0.01``

            Derivative gain.

    """

    def __init__(
        self, tol: float = 1e-3, kp: float = 0.075, ki: float = 0.175, kd: float = 0.01
    ) -> None:
        if tol <= 0:
            raise ValueError("Tolerance of the time-step control must be positive.")
        self.tol = float(tol)
        """Target relative change."""
        self.kp = float(kp)
        self.ki = float(ki)
        self.kd = float(kd)
        self.errors: list[float] = [self.tol, self.tol, self.tol]
        """Relative changes of the last three sub-steps, latest last."""

    def compute_time_step_size(
        self, dt: float, report: SimulationReport, relative_change: float
    ) -> float:
        # An unchanged state gives the largest possible step.
        error = max(float(relative_change), np.finfo(float).tiny)
        self.errors = [self.errors[1], self.errors[2], error]
        e0, e1, e2 = self.errors

        if e2 > self.tol:
            new_dt = dt * self.tol / e2
            logger.debug(f"Relative change {e2:.3e} above tolerance, step reduced")
            return new_dt

        return (
            dt
            * (e1 / e2) ** self.kp
            * (self.tol / e2) ** self.ki
            * (e0 * e0 / e1 / e2) ** self.kd
        )

    def __repr__(self) -> str:
        return (
            f"PID time-step control with tol={self.tol}, kP={self.kp}, "
            f"kI={self.ki} and kD={self.kd}"
        )


class PIDAndIterationCountTimeStepControl(PIDTimeStepControl):
    """PID control, with the step further reduced when the linear solver needs more
    than ``target_iterations`` iterations.

    Parameters:
        target_iterations: ``default=25``

            Target number of linear iterations per sub-step.
        tol: ``default=1e-3``

            Target relative change per sub-step.

    """

    def __init__(self, target_iterations: int = 25, tol: float = 1e-3, **kwargs) -> None:
        super().__init__(tol, **kwargs)
        if target_iterations <= 0:
            raise ValueError("Target number of iterations must be positive.")
        self.target_iterations = int(target_iterations)
        """Target number of linear iterations."""

    def compute_time_step_size(
        self, dt: float, report: SimulationReport, relative_change: float
    ) -> float:
        dt_estimate = super().compute_time_step_size(dt, report, relative_change)
        iterations = report.linear_iterations
        if iterations > self.target_iterations:
            off_target_fraction = (
                iterations - self.target_iterations
            ) / self.target_iterations
            dt_estimate = min(dt_estimate, dt / (1.0 + off_target_fraction))
        return dt_estimate


class IterationCountTimeStepControl(TimeStepControl):
    """Control of the number of Newton iterations.

    Parameters:
        iter_optimal_range: ``default=(4, 10)``

            Lower and upper end of the optimal number of Newton iterations.
        iter_relax_factors: ``default=(0.7, 1.3)``

            Under-relaxation factor, strictly below one, and over-relaxation factor,
            strictly above one.

    Raises:
        ValueError: If the range is not ordered or negative, or the factors are on the
            wrong side of one.

    """

    def __init__(
        self,
        iter_optimal_range: tuple[int, int] = (4, 10),
        iter_relax_factors: tuple[float, float] = (0.7, 1.3),
    ) -> None:
        if iter_optimal_range[0] > iter_optimal_range[1]:
            msg = (
                f"Lower endpoint '{iter_optimal_range[0]}' of optimal iteration "
                "range cannot be larger than upper endpoint "
                f"'{iter_optimal_range[1]}'."
            )
            raise ValueError(msg)
        elif iter_optimal_range[0] < 0:
            msg = (
                f"Lower endpoint '{iter_optimal_range[0]}' of optimal iteration "
                "range cannot be negative."
            )
            raise ValueError(msg)
        if iter_relax_factors[0] >= 1:
            raise ValueError("Expected under-relaxation factor < 1.")
        elif iter_relax_factors[1] <= 1:
            raise ValueError("Expected over-relaxation factor > 1.")

        self.iter_optimal_range = tuple(iter_optimal_range)
        """Optimal number of Newton iterations."""
        self.iter_relax_factors = tuple(iter_relax_factors)
        """Under- and over-relaxation factors."""

    def compute_time_step_size(
        self, dt: float, report: SimulationReport, relative_change: float
    ) -> float:
        iterations = report.newton_iterations
        if iterations < self.iter_optimal_range[0]:
            return dt * self.iter_relax_factors[1]
        if iterations > self.iter_optimal_range[1]:
            return dt * self.iter_relax_factors[0]
        return dt

    def __repr__(self) -> str:
        return (
            f"Iteration count time-step control with optimal range "
            f"{self.iter_optimal_range} and relaxation factors "
            f"{self.iter_relax_factors}"
        )


def create_time_step_control(
    params: Optional[dict[str, Any]] = None,
) -> TimeStepControl:
    """Time-step control selected by the parameter ``timestep.control``.

    Raises:
        ValueError: If the control is not known.

    """
    params = merge_parameters(default_parameters(), params)
    control = str(params["timestep.control"]).strip().lower()
    tol = params["timestep.control.tol"]
    gains = dict(
        kp=params["timestep.control.kp"],
        ki=params["timestep.control.ki"],
        kd=params["timestep.control.kd"],
    )
    if control == "pid":
        return PIDTimeStepControl(tol, **gains)
    elif control == "pid+iteration":
        return PIDAndIterationCountTimeStepControl(
            params["timestep.control.targetiteration"], tol, **gains
        )
    elif control == "iterationcount":
        return IterationCountTimeStepControl(
            params["timestep.control.iteration_range"],
            params["timestep.control.iteration_factors"],
        )
    raise ValueError(
        f"Unsupported time step control {control}. Use 'pid', 'pid+iteration' or "
        "'iterationcount'."
    )
