"""Exception classes raised by the black-oil core.

Two groups are distinguished. Programmer errors (``ShapeError``, ``DivisionByZero``,
``PhaseNotPresent``) and unrecoverable run conditions (``WellControlInfeasible``,
``TimestepAbort``) propagate to the caller. ``NumericalProblem`` and its subclass
``LinearConvergenceFailure`` are raised inside a Newton iteration and caught exactly
once by :class:`~blackoil.numerics.adaptive_time_stepping.AdaptiveTimeStepping`, which
rolls back the state and retries with a shorter sub-step.

"""

from __future__ import annotations

from typing import Optional

__all__ = [
    "BlackoilError",
    "ShapeError",
    "DivisionByZero",
    "PhaseNotPresent",
    "NumericalProblem",
    "LinearConvergenceFailure",
    "WellControlInfeasible",
    "TimestepAbort",
]


class BlackoilError(Exception):
    """Base class for all errors raised deliberately by the package."""


class ShapeError(BlackoilError, ValueError):
    """Dimension or block-pattern mismatch between AD matrices or expressions."""


class DivisionByZero(BlackoilError, ZeroDivisionError):
    """Division of AD expressions where the denominator has exact zeros."""


class PhaseNotPresent(BlackoilError, KeyError):
    """A property was requested for a phase that is not active."""

    def __str__(self) -> str:
        # KeyError quotes its argument, which garbles the message.
        return str(self.args[0]) if self.args else ""


class NumericalProblem(BlackoilError, ArithmeticError):
    """Non-finite or unacceptably large residuals, or a singular sub-system.

    Recoverable: the adaptive time-step driver maps it to a failed sub-step.

    """


class LinearConvergenceFailure(NumericalProblem):
    """The Krylov solver did not reach the requested residual reduction.

    Parameters:
        message: Description of the failure.
        iterations: Number of linear iterations performed before giving up.

    """

    def __init__(self, message: str, iterations: int = -1) -> None:
        super().__init__(message)
        self.iterations = iterations
        """Number of linear iterations spent."""


class WellControlInfeasible(BlackoilError):
    """No feasible control could be established for a well.

    Parameters:
        message: Description of the failure.
        well_name: Name of the offending well.

    """

    def __init__(self, message: str, well_name: Optional[str] = None) -> None:
        if well_name is not None:
            message = f"Well {well_name}: {message}"
        super().__init__(message)
        self.well_name = well_name
        """Name of the offending well."""


class TimestepAbort(BlackoilError):
    """The adaptive driver exhausted its restarts on a report step.

    Parameters:
        message: Description of the failure.
        report_step: Index of the report step that could not be completed.
        time: Simulated time at the start of the failing sub-step.

    """

    def __init__(
        self, message: str, report_step: Optional[int] = None, time: float = 0.0
    ) -> None:
        super().__init__(message)
        self.report_step = report_step
        """Index of the report step that failed."""
        self.time = time
        """Simulated time at which the last attempt started."""
