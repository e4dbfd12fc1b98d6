"""Report-step loop of a simulation run."""

from __future__ import annotations

import logging
import time
from typing import Any, Optional

import numpy as np
from numpy.typing import ArrayLike

import blackoil as bo
from blackoil.models.report import SimulationReport
from blackoil.models.state import ReservoirState, StateSnapshot
from blackoil.numerics.adaptive_time_stepping import AdaptiveTimeStepping
from blackoil.params.parameters import default_parameters, merge_parameters
from blackoil.wells.well_state import WellState

__all__ = ["Simulator"]

logger = logging.getLogger(__name__)


class Simulator:
    """Run a model through a schedule of report times.

    Parameters:
        model: The model, see :class:`~blackoil.models.blackoil_model.BlackoilModel`.
        solver: The nonlinear solver of the model.
        params: ``default=None``

            Parameters. If ``timestep.adaptive`` is False, every report step is taken
            as a single step, and a failure aborts the run. Otherwise the report steps
            are divided into adaptive sub-steps.
        schedule: Report times, starting with the initial time. At least two strictly
            increasing, non-negative times.
        output_writer: ``default=None``

            Writer receiving the snapshot of every report step.
        fip_regions: ``default=None``

            Region index per cell, for the fluid in place of the snapshots. All cells
            form one region if not given.

    Raises:
        ValueError: If the schedule is invalid.

    """

    def __init__(
        self,
        model,
        solver,
        params: Optional[dict[str, Any]] = None,
        schedule: ArrayLike = (0.0, bo.DAY),
        output_writer=None,
        fip_regions: Optional[np.ndarray] = None,
    ) -> None:
        schedule = np.array(schedule, dtype=float)
        # Sanity checks for schedule
        if np.size(schedule) < 2:
            raise ValueError("Expected schedule with at least two elements.")
        elif any(t < 0 for t in schedule):
            raise ValueError("Encountered at least one negative time in schedule.")
        elif not np.all(np.diff(schedule) > 0):
            raise ValueError("Schedule must contain strictly increasing times.")

        self.model = model
        """The model."""
        self.solver = solver
        """The nonlinear solver."""
        self.params: dict[str, Any] = merge_parameters(default_parameters(), params)
        """Parameters of the run."""
        self.schedule: np.ndarray = schedule
        """Report times."""
        self.output_writer = output_writer
        """Writer of the report step snapshots."""
        self.fip_regions = fip_regions
        """Region index per cell for the fluid in place."""

        self.adaptive: bool = bool(self.params["timestep.adaptive"])
        """Whether report steps are divided into adaptive sub-steps."""
        self.time_stepping: Optional[AdaptiveTimeStepping] = (
            AdaptiveTimeStepping(self.params) if self.adaptive else None
        )
        """Driver of the sub-steps."""

        self.report = SimulationReport()
        """Accumulated report of the run."""
        self.report_step_reports: list[SimulationReport] = []
        """Report of each report step."""
        self.snapshots: list[StateSnapshot] = []
        """Snapshot of each completed report step."""

    @property
    def num_report_steps(self) -> int:
        return self.schedule.size - 1

    def _constant_step(
        self, report_step: int, t0: float, dt: float, state, well_state
    ) -> SimulationReport:
        step_report = self.solver.step(dt, state, well_state)
        if not step_report.converged:
            raise bo.TimestepAbort(
                f"Solver failed to converge in report step {report_step}, and "
                "adaptive time stepping is switched off.",
                report_step=report_step,
                time=t0,
            )
        return step_report

    def run(
        self, state: ReservoirState, well_state: Optional[WellState] = None
    ) -> list[StateSnapshot]:
        """Advance the states through all report steps.

        Parameters:
            state: Initial reservoir state, updated in place.
            well_state: ``default=None``

                Initial well state, updated in place. Initialised from the wells of
                the model if not given.

        Returns:
            Snapshot of the state at the end of each report step.

        Raises:
            TimestepAbort: If a report step cannot be completed.

        """
        if well_state is None:
            well_state = WellState.init(self.model.well_model.wells, state.pressure)

        tic = time.perf_counter()
        for report_step in range(self.num_report_steps):
            t0 = float(self.schedule[report_step])
            dt = float(self.schedule[report_step + 1]) - t0
            logger.info(
                f"Report step {report_step}: {t0 / bo.DAY:g} to "
                f"{(t0 + dt) / bo.DAY:g} days"
            )
            if self.time_stepping is not None:
                step_report = self.time_stepping.step(
                    self.solver, state, well_state, t0, dt, report_step
                )
            else:
                step_report = self._constant_step(
                    report_step, t0, dt, state, well_state
                )
            self.report += step_report
            self.report_step_reports.append(step_report)

            fip = self.model.compute_fluid_in_place(state, self.fip_regions)
            snapshot = StateSnapshot.from_state(
                report_step, t0 + dt, state, well_state, fip
            )
            self.snapshots.append(snapshot)
            if self.output_writer is not None:
                self.output_writer.write(snapshot)

        self.report.total_time = time.perf_counter() - tic
        logger.info(f"Simulation finished. {self.report.summary()}")
        return self.snapshots

    def __repr__(self) -> str:
        return (
            f"Simulator with {self.num_report_steps} report steps until "
            f"{self.schedule[-1] / bo.DAY:g} days"
        )
