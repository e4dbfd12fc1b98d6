"""Mutable state of the wells: pressures, rates and active controls."""

from __future__ import annotations

from typing import Optional

import numpy as np

from blackoil.wells.wells import ControlType, Wells

__all__ = ["WellState"]

SMALL_RATE = 1e-14
"""Initial magnitude of the rates of wells not on rate control."""


class WellState:
    """Bottom hole and tubing head pressures, rates and current controls.

    Parameters:
        num_wells: Number of wells.
        num_perforations: Number of perforations.
        num_phases: Number of active phases.

    """

    def __init__(self, num_wells: int, num_perforations: int, num_phases: int) -> None:
        self.bhp: np.ndarray = np.zeros(num_wells)
        """Bottom hole pressure per well."""
        self.thp: np.ndarray = np.zeros(num_wells)
        """Tubing head pressure per well, zero for wells without VFP table."""
        self.well_rates: np.ndarray = np.zeros((num_wells, num_phases))
        """Surface rate per well and active phase. Positive for injection."""
        self.perf_phase_rates: np.ndarray = np.zeros((num_perforations, num_phases))
        """Surface rate per perforation and active phase."""
        self.perf_press: np.ndarray = np.zeros(num_perforations)
        """Pressure in the well bore at each perforation."""
        self.current_controls: np.ndarray = np.zeros(num_wells, dtype=int)
        """Index of the active control of each well."""

    @classmethod
    def init(
        cls,
        wells: Optional[Wells],
        pressure: np.ndarray,
        previous: Optional[WellState] = None,
    ) -> WellState:
        """Initial well state from the reservoir pressure.

        Wells on BHP control start at the target, other wells slightly below (for
        producers) or above (for injectors) the pressure of their first perforated
        cell. Wells on surface rate control start at the target rates, other wells
        at a tiny rate of the sign of the well type.

        Parameters:
            wells: The wells. None gives an empty state.
            pressure: Cell pressures.
            previous: ``default=None``

                Well state of a previous report step with the same wells, whose
                controls, pressures and rates are kept.

        """
        if wells is None:
            return cls(0, 0, 0)
        num_phases = wells.phase_usage.num_phases
        state = cls(wells.num_wells, wells.num_perforations, num_phases)
        state.perf_press = np.asarray(pressure, dtype=float)[wells.well_cells].copy()

        if (
            previous is not None
            and previous.bhp.size == wells.num_wells
            and previous.perf_press.size == wells.num_perforations
        ):
            state.assign(previous)
            return state

        for w, well in enumerate(wells):
            if len(well.controls) == 0:
                continue
            ctrl = well.controls[0]
            first_cell = well.cells[0]
            if ctrl.type == ControlType.BHP:
                state.bhp[w] = ctrl.target
            else:
                factor = 1.01 if wells.is_injector[w] else 0.99
                state.bhp[w] = factor * pressure[first_cell]
            if ctrl.type == ControlType.SURFACE_RATE:
                distr = wells.distr(w, ctrl)
                state.well_rates[w] = ctrl.target * distr
            else:
                # Small rate with the sign of the well type, so that the well is
                # not taken for dead before the first solve.
                sign = 1.0 if wells.is_injector[w] else -1.0
                state.well_rates[w] = sign * SMALL_RATE
        return state

    @property
    def num_wells(self) -> int:
        return self.bhp.size

    def copy(self) -> WellState:
        ws = WellState(0, 0, 0)
        ws.assign(self)
        return ws

    def assign(self, other: WellState) -> None:
        """Overwrite the state with a copy of ``other``."""
        self.bhp = other.bhp.copy()
        self.thp = other.thp.copy()
        self.well_rates = other.well_rates.copy()
        self.perf_phase_rates = other.perf_phase_rates.copy()
        self.perf_press = other.perf_press.copy()
        self.current_controls = other.current_controls.copy()

    def rates_phase_major(self) -> np.ndarray:
        """Rates as a vector ordered phase by phase, ``phase * num_wells + w``."""
        return self.well_rates.T.ravel()

    def __repr__(self) -> str:
        return f"WellState of {self.num_wells} wells"
