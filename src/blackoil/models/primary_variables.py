"""Choice of the third primary variable of each cell and the phase transitions.

In a model with both oil and gas, the third unknown of a cell is the gas saturation
where both hydrocarbon phases are free, the dissolved gas-oil ratio where only oil is
free, and the vaporised oil-gas ratio where only gas is free. The choice is stored as
a :class:`HydroCarbonState` per cell, and exposed to the assembly as the 0/1 masks
:attr:`PrimaryVariables.is_sg`, :attr:`PrimaryVariables.is_rs` and
:attr:`PrimaryVariables.is_rv`, so that the AD expressions of all cells are formed
without branching, e.g.

    sg = is_sg * x + is_rv * so
    rs = (1 - is_rs) * rs_sat + is_rs * x

"""

from __future__ import annotations

import logging
from enum import IntEnum

import numpy as np

import blackoil as bo
from blackoil.props.phase_usage import PhasePresence, PhaseUsage

__all__ = ["HydroCarbonState", "PrimaryVariables"]

logger = logging.getLogger(__name__)

SATURATION_EPS: float = float(np.sqrt(np.finfo(float).eps))
"""Relative tolerance of the saturation checks of the phase transitions."""


class HydroCarbonState(IntEnum):
    """Free hydrocarbon phases of a cell, deciding its third primary variable."""

    GasAndOil = 0
    """Both oil and gas are free. The primary variable is the gas saturation."""
    OilOnly = 1
    """Only oil is free. The primary variable is the dissolved gas-oil ratio."""
    GasOnly = 2
    """Only gas is free. The primary variable is the vaporised oil-gas ratio."""


class PrimaryVariables:
    """Hydrocarbon state of every cell, with the transitions between states.

    Parameters:
        num_cells: Number of cells.
        phase_usage: Active phases.
        has_disgas: Whether gas dissolves in oil.
        has_vapoil: Whether oil vaporises in gas.

    """

    def __init__(
        self,
        num_cells: int,
        phase_usage: PhaseUsage,
        has_disgas: bool = False,
        has_vapoil: bool = False,
    ) -> None:
        self.phase_usage = phase_usage
        """Active phases."""
        self.has_disgas = bool(has_disgas)
        """Whether cells may be in the state ``OilOnly``."""
        self.has_vapoil = bool(has_vapoil)
        """Whether cells may be in the state ``GasOnly``."""
        self.hydrocarbon_state: np.ndarray = np.full(
            num_cells, HydroCarbonState.GasAndOil, dtype=int
        )
        """State of each cell, see :class:`HydroCarbonState`."""

    @property
    def num_cells(self) -> int:
        return self.hydrocarbon_state.size

    @property
    def oil_and_gas(self) -> bool:
        """Whether the model has a third, switching, primary variable."""
        pu = self.phase_usage
        return pu.active(bo.OIL) and pu.active(bo.GAS)

    @property
    def is_sg(self) -> np.ndarray:
        return (self.hydrocarbon_state == HydroCarbonState.GasAndOil).astype(float)

    @property
    def is_rs(self) -> np.ndarray:
        return (self.hydrocarbon_state == HydroCarbonState.OilOnly).astype(float)

    @property
    def is_rv(self) -> np.ndarray:
        return (self.hydrocarbon_state == HydroCarbonState.GasOnly).astype(float)

    def set_state(self, hydrocarbon_state: np.ndarray) -> None:
        """Overwrite the state of all cells, e.g. from a stored reservoir state."""
        hydrocarbon_state = np.asarray(hydrocarbon_state, dtype=int)
        if hydrocarbon_state.size != self.num_cells:
            raise bo.ShapeError(
                f"Hydrocarbon state of size {hydrocarbon_state.size} given for "
                f"{self.num_cells} cells."
            )
        self.hydrocarbon_state = hydrocarbon_state.copy()

    def _split_saturation(self, saturation: np.ndarray):
        pu = self.phase_usage
        pos = pu.phase_pos
        nc = saturation.shape[0]
        sw = saturation[:, pos[bo.WATER]] if pu.active(bo.WATER) else np.zeros(nc)
        so = saturation[:, pos[bo.OIL]]
        sg = saturation[:, pos[bo.GAS]]
        return sw, so, sg

    def classify(self, saturation: np.ndarray) -> np.ndarray:
        """Set the state of every cell from its saturations.

        Cells with free oil and no free gas become ``OilOnly`` (with dissolved gas),
        cells with free gas and no free oil ``GasOnly`` (with vaporised oil). All
        other cells, water filled cells included, are ``GasAndOil``.

        Parameters:
            saturation: Saturations, ``shape=(num_cells, num_phases)``.

        Returns:
            The new state of each cell.

        """
        state = np.full(self.num_cells, HydroCarbonState.GasAndOil, dtype=int)
        if self.oil_and_gas:
            sw, so, sg = self._split_saturation(np.asarray(saturation, dtype=float))
            water_only = sw > 1.0 - SATURATION_EPS
            if self.has_disgas:
                state[~water_only & (so > 0) & ~(sg > 0)] = HydroCarbonState.OilOnly
            if self.has_vapoil:
                state[~water_only & (sg > 0) & ~(so > 0)] = HydroCarbonState.GasOnly
        self.hydrocarbon_state = state
        return state

    def phase_condition(self) -> PhasePresence:
        """Free phases of each cell implied by the state."""
        pu = self.phase_usage
        cond = PhasePresence(self.num_cells)
        cond.free_water[:] = pu.active(bo.WATER)
        if self.oil_and_gas:
            state = self.hydrocarbon_state
            cond.free_oil = state != HydroCarbonState.GasOnly
            cond.free_gas = state != HydroCarbonState.OilOnly
        else:
            cond.free_oil[:] = pu.active(bo.OIL)
            cond.free_gas[:] = pu.active(bo.GAS)
        return cond

    def switch(
        self,
        saturation: np.ndarray,
        rs: np.ndarray,
        rv: np.ndarray,
        rs_old: np.ndarray,
        rv_old: np.ndarray,
        rs_sat: np.ndarray,
        rs_sat_old: np.ndarray,
        rv_sat: np.ndarray,
        rv_sat_old: np.ndarray,
    ) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Phase transitions after a Newton update.

        The saturations are expected to be projected to non-negative values already,
        so that a phase which disappeared has zero saturation. The transitions are

        * ``GasAndOil`` to ``OilOnly`` if the gas saturation vanished. The dissolved
          gas-oil ratio is set to the saturated value.
        * ``GasAndOil`` to ``GasOnly`` if the oil saturation vanished. The vaporised
          oil-gas ratio is set to the saturated value.
        * ``OilOnly`` to ``GasAndOil`` if the dissolved gas-oil ratio exceeds the
          saturated value, and the cell was saturated before the update. The gas
          saturation starts from zero.
        * ``GasOnly`` to ``GasAndOil`` correspondingly.

        Cells filled with water are ``GasAndOil`` without hydrocarbons. Dissolution
        ratios are capped by their saturated values, and the saturations are
        renormalised.

        Parameters:
            saturation: Updated saturations, ``shape=(num_cells, num_phases)``.
            rs: Updated dissolved gas-oil ratio.
            rv: Updated vaporised oil-gas ratio.
            rs_old: Dissolved gas-oil ratio before the update.
            rv_old: Vaporised oil-gas ratio before the update.
            rs_sat: Saturated dissolved gas-oil ratio at the updated pressure.
            rs_sat_old: Saturated dissolved gas-oil ratio before the update.
            rv_sat: Saturated vaporised oil-gas ratio at the updated gas pressure.
            rv_sat_old: Saturated vaporised oil-gas ratio before the update.

        Returns:
            Saturations, dissolved gas-oil ratio and vaporised oil-gas ratio after the
            transitions.

        """
        saturation = np.array(saturation, dtype=float)
        rs = np.array(rs, dtype=float)
        rv = np.array(rv, dtype=float)
        if not self.oil_and_gas:
            return saturation, rs, rv

        pu = self.phase_usage
        pos = pu.phase_pos
        eps = SATURATION_EPS
        old_state = self.hydrocarbon_state
        was_rs = old_state == HydroCarbonState.OilOnly
        was_rv = old_state == HydroCarbonState.GasOnly

        sw, so, sg = self._split_saturation(saturation)
        water_only = sw > 1.0 - eps

        state = np.full(self.num_cells, HydroCarbonState.GasAndOil, dtype=int)
        if self.has_disgas:
            has_gas = (sg > 0) & ~was_rs
            gas_vaporized = (
                (rs > rs_sat * (1.0 + eps)) & was_rs & (rs_old > rs_sat_old * (1.0 - eps))
            )
            use_sg = water_only | has_gas | gas_vaporized
            state[~use_sg] = HydroCarbonState.OilOnly
            # Saturated where gas is free, and on entering the undersaturated state
            rs = np.where(use_sg | ~was_rs, rs_sat, np.minimum(rs, rs_sat))
            rs = np.maximum(rs, 0.0)
        if self.has_vapoil:
            has_oil = (so > 0) & ~was_rv
            oil_condensed = (
                (rv > rv_sat * (1.0 + eps)) & was_rv & (rv_old > rv_sat_old * (1.0 - eps))
            )
            use_sg = water_only | has_oil | oil_condensed
            state[~use_sg] = HydroCarbonState.GasOnly
            rv = np.where(use_sg | ~was_rv, rv_sat, np.minimum(rv, rv_sat))
            rv = np.maximum(rv, 0.0)

        so = np.where(state == HydroCarbonState.GasOnly, 0.0, so)
        sg = np.where(state == HydroCarbonState.OilOnly, 0.0, sg)
        so = np.where(water_only, 0.0, so)
        sg = np.where(water_only, 0.0, sg)
        rs = np.where(water_only, 0.0, rs)
        rv = np.where(water_only, 0.0, rv)

        saturation[:, pos[bo.OIL]] = so
        saturation[:, pos[bo.GAS]] = sg
        saturation = np.maximum(saturation, 0.0)
        total = saturation.sum(axis=1)
        saturation /= np.where(total > 0, total, 1.0)[:, None]

        num_changed = np.count_nonzero(state != old_state)
        if num_changed > 0:
            logger.debug(
                f"Phase transitions in {num_changed} cells: "
                f"{np.count_nonzero(state == HydroCarbonState.OilOnly)} oil only, "
                f"{np.count_nonzero(state == HydroCarbonState.GasOnly)} gas only"
            )
        self.hydrocarbon_state = state
        return saturation, rs, rv
