"""Counters and timings of sub-steps and report steps."""

from __future__ import annotations

from dataclasses import dataclass

__all__ = ["SimulationReport", "IterationReport"]


@dataclass
class SimulationReport:
    """Work spent on a sub-step, a report step or a whole run.

    Reports are accumulated with ``+=``: counters and times are summed, while the
    flags ``converged`` and ``failed`` describe the most recently added report.

    """

    assemble_time: float = 0.0
    """Wall clock time spent in the residual assembly."""
    linear_solve_time: float = 0.0
    """Wall clock time spent in the linear solver."""
    update_time: float = 0.0
    """Wall clock time spent in the state update."""
    newton_iterations: int = 0
    """Number of nonlinear iterations."""
    linear_iterations: int = 0
    """Number of linear solver iterations."""
    well_iterations: int = 0
    """Number of iterations of the well-only solves."""
    converged: bool = False
    """Whether the nonlinear solve converged."""
    failed: bool = False
    """Whether the nonlinear solve failed."""
    total_time: float = 0.0
    """Wall clock time of the step."""

    def __iadd__(self, other: SimulationReport) -> SimulationReport:
        self.assemble_time += other.assemble_time
        self.linear_solve_time += other.linear_solve_time
        self.update_time += other.update_time
        self.newton_iterations += other.newton_iterations
        self.linear_iterations += other.linear_iterations
        self.well_iterations += other.well_iterations
        self.total_time += other.total_time
        self.converged = other.converged
        self.failed = other.failed
        return self

    def summary(self) -> str:
        return (
            f"Newton iterations: {self.newton_iterations}, linear iterations: "
            f"{self.linear_iterations}, well iterations: {self.well_iterations}, "
            f"assembly {self.assemble_time:.3f} s, linear solve "
            f"{self.linear_solve_time:.3f} s, update {self.update_time:.3f} s"
        )


@dataclass
class IterationReport:
    """Outcome of a single nonlinear iteration."""

    failed: bool = False
    converged: bool = False
    linear_iterations: int = 0
    well_iterations: int = 0
    assemble_time: float = 0.0
    linear_solve_time: float = 0.0
    update_time: float = 0.0
