"""Adaptive sub-stepping of report steps, with restarts on failure.

A report step is split into sub-steps whose lengths are suggested by a
:mod:`~blackoil.numerics.time_step_control`. A sub-step failing to converge, or
raising :class:`~blackoil.utils.errors.NumericalProblem`, is rolled back and retried
with the step multiplied by ``solver.restartfactor``. After ``solver.restart``
consecutive failures the report step is abandoned with
:class:`~blackoil.utils.errors.TimestepAbort`.

Example:
    Typical use within a report-step loop::

        stepping = bo.AdaptiveTimeStepping(params)
        for step, (t0, t1) in enumerate(zip(schedule[:-1], schedule[1:])):
            report = stepping.step(solver, state, well_state, t0, t1 - t0, step)

"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional

import numpy as np

import blackoil as bo
from blackoil.models.report import SimulationReport
from blackoil.models.state import StateSnapshot
from blackoil.numerics.adaptive_simulator_timer import AdaptiveSimulatorTimer
from blackoil.numerics.time_step_control import (
    TimeStepControl,
    create_time_step_control,
)
from blackoil.params.parameters import default_parameters, merge_parameters

__all__ = ["AdaptiveTimeStepping"]

logger = logging.getLogger(__name__)

module_sections = ["timestepping"]


class AdaptiveTimeStepping:
    """Driver of the sub-steps of report steps.

    Parameters:
        params: ``default=None``

            Parameters. Used are ``solver.initialfraction``, ``solver.restartfactor``,
            ``solver.growthfactor``, ``solver.restart``, ``solver.maxtimestep``,
            ``solver.mintimestep`` and those of the time-step control.
        time_step_control: ``default=None``

            Control suggesting the sub-steps. Created from ``params`` if not given.
        clock: ``default=time.perf_counter``

            Wall clock used for the timings of the reports.

    Raises:
        ValueError: If a factor is out of range.

    """

    def __init__(
        self,
        params: Optional[dict[str, Any]] = None,
        time_step_control: Optional[TimeStepControl] = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        params = merge_parameters(default_parameters(), params)
        self.params = params
        """Parameters of the driver."""
        self.time_step_control: TimeStepControl = (
            create_time_step_control(params)
            if time_step_control is None
            else time_step_control
        )
        """Control suggesting the sub-step lengths."""
        self.clock = clock
        """Wall clock."""

        self.initial_fraction = float(params["solver.initialfraction"])
        """First sub-step as a fraction of the first report step."""
        self.restart_factor = float(params["solver.restartfactor"])
        """Reduction of the sub-step after a failure."""
        self.growth_factor = float(params["solver.growthfactor"])
        """Largest growth of the sub-step directly after a failure."""
        self.max_restarts = int(params["solver.restart"])
        """Number of consecutive failures tolerated."""
        self.max_time_step = float(params["solver.maxtimestep"])
        """Largest sub-step."""
        self.min_time_step = float(params["solver.mintimestep"])
        """Smallest sub-step."""

        if not 0 < self.initial_fraction <= 1:
            raise ValueError("solver.initialfraction must be in (0, 1].")
        if not 0 < self.restart_factor < 1:
            raise ValueError("solver.restartfactor must be in (0, 1).")
        if self.growth_factor < 1:
            raise ValueError("solver.growthfactor must be at least one.")
        if self.max_restarts < 0:
            raise ValueError("solver.restart must be non-negative.")

        self.last_timestep: float = -1.0
        """Sub-step suggested for the start of the next report step. Negative before
        the first report step."""

    @bo.time_logger(sections=module_sections)
    def step(
        self,
        solver,
        state,
        well_state,
        time: float,
        timestep: float,
        report_step: int = 0,
        output_writer=None,
    ) -> SimulationReport:
        """Advance the states over the report step ``[time, time + timestep]``.

        Parameters:
            solver: Nonlinear solver with ``step(dt, state, well_state)`` returning a
                :class:`~blackoil.models.report.SimulationReport`, and a ``model``
                providing ``relative_change``.
            state: Reservoir state, updated in place.
            well_state: Well state, updated in place.
            time: Start of the report step.
            timestep: Length of the report step.
            report_step: ``default=0``

                Index of the report step, for messages and output.
            output_writer: ``default=None``

                If given, a snapshot is written after every converged sub-step.

        Returns:
            Accumulated report of the converged and failed sub-steps.

        Raises:
            TimestepAbort: If more than ``solver.restart`` consecutive sub-steps fail.
                The states are left at the end of the last converged sub-step.

        """
        tic = self.clock()
        if self.last_timestep < 0:
            self.last_timestep = self.initial_fraction * timestep

        timer = AdaptiveSimulatorTimer(
            time,
            time + timestep,
            self.last_timestep,
            max_time_step=self.max_time_step,
            min_time_step=self.min_time_step,
        )

        last_state = state.copy()
        last_well_state = well_state.copy()
        report = SimulationReport()
        restarts = 0

        while not timer.done():
            dt = timer.current_step_length
            substep_report: Optional[SimulationReport] = None
            try:
                substep_report = solver.step(dt, state, well_state)
            except bo.NumericalProblem as err:
                logger.warning(
                    f"Report step {report_step}, sub-step at "
                    f"{timer.simulation_time_elapsed / bo.DAY:g} days: {err}"
                )

            if substep_report is not None:
                report += substep_report

            if substep_report is not None and substep_report.converged:
                timer.advance()
                relative_change = solver.model.relative_change(last_state, state)
                dt_estimate = self.time_step_control.compute_time_step_size(
                    dt, substep_report, relative_change
                )
                if restarts > 0:
                    # No fast growth directly after a failure.
                    dt_estimate = min(self.growth_factor * dt, dt_estimate)
                    restarts = 0
                logger.info(
                    f"Sub-step {timer.current_step_num} of report step {report_step}: "
                    f"{dt / bo.DAY:g} days, {substep_report.newton_iterations} Newton "
                    "iterations"
                )
                if np.isfinite(dt_estimate) and dt_estimate > 0:
                    timer.provide_time_step_estimate(dt_estimate)
                else:
                    timer.provide_time_step_estimate(dt)

                last_state.assign(state)
                last_well_state.assign(well_state)

                if output_writer is not None:
                    output_writer.write(
                        StateSnapshot.from_state(
                            report_step,
                            timer.simulation_time_elapsed,
                            state,
                            well_state,
                        )
                    )
            else:
                state.assign(last_state)
                well_state.assign(last_well_state)
                if restarts >= self.max_restarts:
                    raise bo.TimestepAbort(
                        f"Solver failed to converge after {restarts} restarts in "
                        f"report step {report_step}.",
                        report_step=report_step,
                        time=timer.simulation_time_elapsed,
                    )
                new_timestep = self.restart_factor * dt
                logger.warning(
                    "Solver convergence failed, restarting solver with new time step "
                    f"({new_timestep / bo.DAY:g} days)."
                )
                timer.provide_time_step_estimate(new_timestep)
                restarts += 1

        timer.report()
        self.last_timestep = timer.suggested_average()
        if not np.isfinite(self.last_timestep):
            self.last_timestep = timestep

        report.converged = True
        report.failed = False
        report.total_time = self.clock() - tic
        return report

    def __repr__(self) -> str:
        return (
            f"AdaptiveTimeStepping with {self.time_step_control!r}, restart factor "
            f"{self.restart_factor} and at most {self.max_restarts} restarts"
        )
