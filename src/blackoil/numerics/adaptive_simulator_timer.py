"""Sub-step timer of one report step."""

from __future__ import annotations

import logging

import numpy as np

import blackoil as bo

__all__ = ["AdaptiveSimulatorTimer"]

logger = logging.getLogger(__name__)


class AdaptiveSimulatorTimer:
    """Sub-steps within a report step ``[start_time, end_time]``.

    The length of the next sub-step is set by :meth:`provide_time_step_estimate`. The
    estimate is limited to ``max_growth`` times the previous sub-step, clipped to
    ``[min_time_step, max_time_step]``, and aligned with the end of the report step:
    if the estimate nearly reaches the end, the remainder is taken in one step; if
    less than one and a half estimated steps remain, the remainder is split into two
    equal steps.

    Parameters:
        start_time: Start of the report step.
        end_time: End of the report step.
        last_step_taken: Length of the first sub-step.
        max_time_step: ``default=inf``

            Largest sub-step.
        min_time_step: ``default=0``

            Smallest sub-step, except for the last sub-step of a report step.
        max_growth: ``default=3``

            Largest ratio between two consecutive sub-steps.

    Raises:
        ValueError: If the report step is empty or the first sub-step is not positive.

    """

    def __init__(
        self,
        start_time: float,
        end_time: float,
        last_step_taken: float,
        max_time_step: float = np.inf,
        min_time_step: float = 0.0,
        max_growth: float = 3.0,
    ) -> None:
        if end_time <= start_time:
            raise ValueError(
                f"Report step [{start_time}, {end_time}] must have positive length."
            )
        if not last_step_taken > 0:
            raise ValueError(f"Sub-step must be positive, got {last_step_taken}.")
        if min_time_step > max_time_step:
            raise ValueError("Minimum time step cannot be larger than maximum.")

        self.start_time = float(start_time)
        """Start of the report step."""
        self.end_time = float(end_time)
        """End of the report step."""
        self.max_time_step = float(max_time_step)
        """Largest sub-step."""
        self.min_time_step = float(min_time_step)
        """Smallest sub-step."""
        self.max_growth = float(max_growth)
        """Largest ratio between consecutive sub-steps."""

        self.current_time: float = self.start_time
        """Start of the current sub-step."""
        self.dt: float = float(last_step_taken)
        """Length of the current sub-step."""
        self.steps: list[float] = []
        """Lengths of the completed sub-steps."""
        self._suggested_max: float = 0.0
        self._suggested_sum: float = 0.0
        self._num_suggested: int = 0

        # The first estimate is not limited by the growth factor.
        self._set_step(float(last_step_taken))

    @property
    def current_step_num(self) -> int:
        return len(self.steps)

    @property
    def current_step_length(self) -> float:
        return self.dt

    @property
    def simulation_time_elapsed(self) -> float:
        return self.current_time

    @property
    def total_time(self) -> float:
        return self.end_time - self.start_time

    def done(self) -> bool:
        """Whether the end of the report step is reached."""
        return self.current_time >= self.end_time or np.isclose(
            self.current_time, self.end_time, rtol=1e-12, atol=0.0
        )

    def advance(self) -> None:
        """Complete the current sub-step."""
        self.current_time += self.dt
        if np.isclose(self.current_time, self.end_time, rtol=1e-12, atol=0.0):
            self.current_time = self.end_time
        self.steps.append(self.dt)

    def provide_time_step_estimate(self, dt_estimate: float) -> None:
        """Set the length of the next sub-step from an estimate.

        Raises:
            ValueError: If the estimate is not positive.

        """
        if not dt_estimate > 0:
            raise ValueError(f"Time step estimate must be positive, got {dt_estimate}.")
        self._suggested_max = max(self._suggested_max, dt_estimate)
        self._suggested_sum += dt_estimate
        self._num_suggested += 1
        if self.max_growth > 0 and self.dt > 0:
            dt_estimate = min(dt_estimate, self.max_growth * self.dt)
        self._set_step(dt_estimate)

    def _set_step(self, dt_estimate: float) -> None:
        dt_estimate = min(max(dt_estimate, self.min_time_step), self.max_time_step)
        remaining = self.end_time - self.current_time
        if remaining > 0:
            if 1.05 * dt_estimate > remaining:
                self.dt = remaining
                if self.dt > self.max_time_step:
                    self.dt = 0.5 * remaining
                return
            if 1.5 * dt_estimate > remaining:
                self.dt = 0.5 * remaining
                return
        self.dt = dt_estimate

    def suggested_max(self) -> float:
        return self._suggested_max

    def suggested_average(self) -> float:
        """Average of the estimates provided, or the current step if there were none.
        Used as the first sub-step of the next report step."""
        if self._num_suggested == 0:
            return self.dt
        return self._suggested_sum / self._num_suggested

    def average_time_step(self) -> float:
        if len(self.steps) == 0:
            return 0.0
        return float(np.mean(self.steps))

    def report(self) -> None:
        """Log the sub-steps of the report step."""
        if len(self.steps) == 0:
            return
        logger.info(
            f"Sub-steps: {len(self.steps)}, min {min(self.steps) / bo.DAY:g}, "
            f"max {max(self.steps) / bo.DAY:g}, average "
            f"{self.average_time_step() / bo.DAY:g} days"
        )

    def __repr__(self) -> str:
        return (
            f"AdaptiveSimulatorTimer in [{self.start_time}, {self.end_time}] at time "
            f"{self.current_time} with step {self.dt}"
        )
