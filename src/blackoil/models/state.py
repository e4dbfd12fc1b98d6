"""Containers for the reservoir state, the AD solution state, the linearised residual
and the per report step snapshots.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import numpy as np

import blackoil as bo
from blackoil.ad.forward_mode import AutoDiffBlock
from blackoil.models.primary_variables import HydroCarbonState

__all__ = [
    "ReservoirState",
    "SolutionState",
    "LinearisedBlackoilResidual",
    "FluidInPlace",
    "StateSnapshot",
]


class ReservoirState:
    """Primary and secondary unknowns per cell.

    Parameters:
        num_cells: Number of cells.
        num_phases: Number of active phases.

    """

    def __init__(self, num_cells: int, num_phases: int) -> None:
        self.pressure: np.ndarray = np.zeros(num_cells)
        """Oil pressure, or the pressure of the reference phase without oil."""
        self.temperature: np.ndarray = np.zeros(num_cells)
        """Temperature. Only stored, the models are isothermal."""
        self.saturation: np.ndarray = np.zeros((num_cells, num_phases))
        """Saturation per cell and active phase, summing to one in each cell."""
        self.rs: np.ndarray = np.zeros(num_cells)
        """Dissolved gas-oil ratio."""
        self.rv: np.ndarray = np.zeros(num_cells)
        """Vaporised oil-gas ratio."""
        self.hydrocarbon_state: np.ndarray = np.full(
            num_cells, HydroCarbonState.GasAndOil, dtype=int
        )
        """Free hydrocarbon phases of each cell."""

    @classmethod
    def init(
        cls,
        pressure: np.ndarray,
        saturation: np.ndarray,
        rs: Optional[np.ndarray] = None,
        rv: Optional[np.ndarray] = None,
        temperature: Optional[np.ndarray] = None,
    ) -> ReservoirState:
        """State from given cell values.

        Parameters:
            pressure: Pressure per cell.
            saturation: Saturations, ``shape=(num_cells, num_phases)``.
            rs: ``default=None``

                Dissolved gas-oil ratio, zero if not given.
            rv: ``default=None``

                Vaporised oil-gas ratio, zero if not given.
            temperature: ``default=None``

                Temperature, zero if not given.

        Raises:
            ValueError: If the saturations are negative or do not sum to one.

        """
        pressure = np.atleast_1d(np.asarray(pressure, dtype=float))
        saturation = np.asarray(saturation, dtype=float)
        if saturation.ndim == 1:
            saturation = saturation.reshape(-1, 1)
        nc = pressure.size
        if saturation.shape[0] != nc:
            raise ValueError(
                f"Saturations given for {saturation.shape[0]} cells, pressure for {nc}."
            )
        if np.any(saturation < 0):
            raise ValueError("Saturations must be non-negative.")
        if not np.allclose(saturation.sum(axis=1), 1.0, atol=1e-10):
            raise ValueError("Saturations must sum to one in every cell.")

        state = cls(nc, saturation.shape[1])
        state.pressure = pressure.copy()
        state.saturation = saturation.copy()
        if rs is not None:
            state.rs = np.broadcast_to(np.asarray(rs, dtype=float), (nc,)).copy()
        if rv is not None:
            state.rv = np.broadcast_to(np.asarray(rv, dtype=float), (nc,)).copy()
        if temperature is not None:
            state.temperature = np.broadcast_to(
                np.asarray(temperature, dtype=float), (nc,)
            ).copy()
        return state

    @property
    def num_cells(self) -> int:
        return self.pressure.size

    @property
    def num_phases(self) -> int:
        return self.saturation.shape[1]

    def copy(self) -> ReservoirState:
        state = ReservoirState(0, 0)
        state.assign(self)
        return state

    def assign(self, other: ReservoirState) -> None:
        """Overwrite the state with a copy of ``other``."""
        self.pressure = other.pressure.copy()
        self.temperature = other.temperature.copy()
        self.saturation = other.saturation.copy()
        self.rs = other.rs.copy()
        self.rv = other.rv.copy()
        self.hydrocarbon_state = other.hydrocarbon_state.copy()

    def __repr__(self) -> str:
        return (
            f"ReservoirState with {self.num_cells} cells and {self.num_phases} phases"
        )


@dataclass
class SolutionState:
    """Primary and derived unknowns as AD expressions, for one assembly."""

    pressure: AutoDiffBlock
    """Oil pressure."""
    temperature: AutoDiffBlock
    """Temperature, a constant."""
    saturation: list = field(default_factory=list)
    """Saturation per canonical phase, None for inactive phases."""
    rs: Optional[AutoDiffBlock] = None
    """Dissolved gas-oil ratio."""
    rv: Optional[AutoDiffBlock] = None
    """Vaporised oil-gas ratio."""
    qs: Optional[AutoDiffBlock] = None
    """Well surface rates, phase by phase."""
    bhp: Optional[AutoDiffBlock] = None
    """Bottom hole pressures."""
    canonical_phase_pressures: list = field(default_factory=list)
    """Pressure per canonical phase, None for inactive phases."""


@dataclass
class LinearisedBlackoilResidual:
    """Residual equations and their Jacobians, as handed to the linear solver.

    All equations share the block pattern of the primary variables, i.e. the cell
    unknowns followed by the well rates and the bottom hole pressures.

    """

    material_balance_eq: list[AutoDiffBlock]
    """Mass balance per active phase."""
    well_flux_eq: AutoDiffBlock
    """Well rates minus the sum of the perforation rates, phase by phase."""
    well_eq: AutoDiffBlock
    """Control equation of each well."""
    matbal_scale: np.ndarray
    """Scaling of the mass balance equations in the linear solver."""

    @property
    def num_phases(self) -> int:
        return len(self.material_balance_eq)

    @property
    def has_wells(self) -> bool:
        return self.well_flux_eq.size > 0

    def equations(self) -> list[AutoDiffBlock]:
        """Mass balance equations followed by the well equations."""
        return list(self.material_balance_eq) + [self.well_flux_eq, self.well_eq]

    def size(self) -> int:
        """Total number of equations."""
        return sum(eq.size for eq in self.equations())

    def is_finite(self) -> bool:
        return all(np.all(np.isfinite(eq.val)) for eq in self.equations())


@dataclass
class FluidInPlace:
    """Fluid volumes at surface conditions and pore volumes of one region.

    Oil in place includes the oil vaporised in the gas phase, gas in place includes the
    gas dissolved in the oil phase.

    """

    water: float = 0.0
    """Water in place."""
    oil: float = 0.0
    """Oil in place."""
    gas: float = 0.0
    """Gas in place."""
    pore_volume: float = 0.0
    """Pore volume at reservoir conditions."""
    pressure: float = 0.0
    """Pressure weighted by the hydrocarbon pore volume. Pore volume weighted in
    regions without hydrocarbons."""

    def as_array(self) -> np.ndarray:
        return np.array(
            [self.water, self.oil, self.gas, self.pore_volume, self.pressure]
        )


@dataclass
class StateSnapshot:
    """Copy of the state at the end of a report step, for output."""

    report_step: int
    """Index of the report step."""
    time: float
    """Simulated time at the end of the report step."""
    pressure: np.ndarray
    """Pressure per cell."""
    saturation: np.ndarray
    """Saturation per cell and active phase."""
    rs: np.ndarray
    """Dissolved gas-oil ratio."""
    rv: np.ndarray
    """Vaporised oil-gas ratio."""
    bhp: np.ndarray
    """Bottom hole pressure per well."""
    well_rates: np.ndarray
    """Surface rate per well and active phase."""
    fip: dict[int, FluidInPlace] = field(default_factory=dict)
    """Fluid in place per region."""

    @classmethod
    def from_state(
        cls,
        report_step: int,
        time: float,
        state: ReservoirState,
        well_state,
        fip: Optional[dict[int, FluidInPlace]] = None,
    ) -> StateSnapshot:
        return cls(
            report_step=report_step,
            time=float(time),
            pressure=state.pressure.copy(),
            saturation=state.saturation.copy(),
            rs=state.rs.copy(),
            rv=state.rv.copy(),
            bhp=well_state.bhp.copy(),
            well_rates=well_state.well_rates.copy(),
            fip={} if fip is None else dict(fip),
        )

    def to_dict(self) -> dict[str, np.ndarray]:
        """Arrays of the snapshot by name, fluid in place as ``fip_<region>``."""
        out = {
            "report_step": np.array(self.report_step),
            "time": np.array(self.time),
            "pressure": self.pressure,
            "saturation": self.saturation,
            "rs": self.rs,
            "rv": self.rv,
            "bhp": self.bhp,
            "well_rates": self.well_rates,
        }
        for region, values in self.fip.items():
            out[f"fip_{region}"] = values.as_array()
        return out

    def __repr__(self) -> str:
        return (
            f"StateSnapshot of report step {self.report_step} at time "
            f"{self.time / bo.DAY:g} days"
        )
