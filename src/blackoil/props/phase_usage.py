"""Active phases of a model and the presence of free phases per cell."""

from __future__ import annotations

from enum import IntEnum
from typing import Optional

import numpy as np

import blackoil as bo

__all__ = ["Phase", "PhaseUsage", "PhasePresence"]


class Phase(IntEnum):
    """Canonical phase index."""

    WATER = bo.WATER
    OIL = bo.OIL
    GAS = bo.GAS


class PhaseUsage:
    """Which of water, oil and gas are active, and their position among the active
    phases.

    Parameters:
        water: ``default=True``
        oil: ``default=True``
        gas: ``default=True``

    Raises:
        ValueError: If no phase is active.

    """

    def __init__(self, water: bool = True, oil: bool = True, gas: bool = True) -> None:
        self.phase_used: np.ndarray = np.array([water, oil, gas], dtype=bool)
        """Active flag per canonical phase."""
        if not self.phase_used.any():
            raise ValueError("At least one phase must be active.")

        self.num_phases: int = int(self.phase_used.sum())
        """Number of active phases."""

        pos = -np.ones(bo.MAX_NUM_PHASES, dtype=int)
        pos[self.phase_used] = np.arange(self.num_phases)
        self.phase_pos: np.ndarray = pos
        """Position of each canonical phase among the active ones, -1 if inactive."""

    def active(self, phase: int) -> bool:
        return bool(self.phase_used[phase])

    def active_phases(self) -> list[Phase]:
        """Active phases in canonical order."""
        return [Phase(p) for p in range(bo.MAX_NUM_PHASES) if self.phase_used[p]]

    def check_active(self, phase: int) -> None:
        """Raise :class:`~blackoil.utils.errors.PhaseNotPresent` for an inactive phase."""
        if not self.phase_used[phase]:
            raise bo.PhaseNotPresent(
                f"Phase {bo.PHASE_NAMES[phase]} is not active in this model."
            )

    def __repr__(self) -> str:
        names = [bo.PHASE_NAMES[p] for p in range(bo.MAX_NUM_PHASES) if self.phase_used[p]]
        return f"PhaseUsage with active phases {names}"


class PhasePresence:
    """Presence of free water, oil and gas per cell.

    The presence of free gas decides whether oil properties are evaluated on the
    saturated or the undersaturated branch of the PVT table, and correspondingly the
    presence of free oil for gas properties.

    Parameters:
        num_cells: Number of cells.

    """

    def __init__(self, num_cells: int) -> None:
        self.free_water: np.ndarray = np.zeros(num_cells, dtype=bool)
        """Cells with free water."""
        self.free_oil: np.ndarray = np.zeros(num_cells, dtype=bool)
        """Cells with free oil."""
        self.free_gas: np.ndarray = np.zeros(num_cells, dtype=bool)
        """Cells with free gas."""

    @classmethod
    def all_present(cls, num_cells: int) -> PhasePresence:
        cond = cls(num_cells)
        cond.free_water[:] = True
        cond.free_oil[:] = True
        cond.free_gas[:] = True
        return cond

    @property
    def num_cells(self) -> int:
        return self.free_oil.size

    def subset(self, cells: Optional[np.ndarray]) -> PhasePresence:
        """Presence restricted to some cells."""
        if cells is None:
            return self
        cond = PhasePresence(np.asarray(cells).size)
        cond.free_water = self.free_water[cells]
        cond.free_oil = self.free_oil[cells]
        cond.free_gas = self.free_gas[cells]
        return cond
