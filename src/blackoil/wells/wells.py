"""Static description of wells: perforations, controls and injection compositions.

Rates follow the sign convention of the reservoir equations: positive rates inject
into the reservoir, negative rates produce from it. Rate targets of producers are
therefore negative.

"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Sequence

import numpy as np
import scipy.sparse as sps

import blackoil as bo
from blackoil.props.phase_usage import PhaseUsage

__all__ = ["WellType", "ControlType", "WellControl", "Well", "Wells"]


class WellType(Enum):
    INJECTOR = "injector"
    PRODUCER = "producer"


class ControlType(Enum):
    """Quantity a well control prescribes."""

    BHP = "bhp"
    """Bottom hole pressure at the reference depth."""
    SURFACE_RATE = "surface_rate"
    """Weighted sum of the surface phase rates."""
    RESERVOIR_RATE = "reservoir_rate"
    """Weighted sum of the phase rates at reservoir conditions."""
    THP = "thp"
    """Tubing head pressure, converted to bottom hole pressure by a VFP table."""
    GROUP_VOIDAGE = "group_voidage"
    """Injection of a fraction of the reservoir voidage of the producers of a group."""


@dataclass
class WellControl:
    """A single constraint of a well.

    Parameters:
        type: The controlled quantity.
        target: Target value. Pressure for BHP and THP controls, rate for the rate
            controls. Unused for group voidage controls.
        distr: ``default=None``

            Weight of each active phase in the controlled rate. For a producer on oil
            rate control in a three-phase model, ``(0, 1, 0)``. Defaults to one for
            all phases.
        vfp_table: ``default=None``

            Table converting tubing head to bottom hole pressure, for THP controls.
        alq: ``default=0``

            Artificial lift quantity of the VFP table.
        group_fraction: ``default=1``

            Fraction of the group voidage to inject, for group voidage controls.

    """

    type: ControlType
    target: float = 0.0
    distr: Optional[np.ndarray] = None
    vfp_table: Optional[object] = None
    alq: float = 0.0
    group_fraction: float = 1.0


@dataclass
class Well:
    """A well with its perforations and controls.

    Parameters:
        name: Name of the well.
        type: Injector or producer.
        cells: Perforated cells, ordered from the top of the well downwards.
        wi: Connection transmissibility factor of each perforation.
        controls: Constraints of the well. The first is the initial control.
        depths: ``default=None``

            Depth of each perforation. Defaults to the depth of the cell centers.
        ref_depth: ``default=None``

            Reference depth of the bottom hole pressure. Defaults to the depth of the
            first perforation.
        comp_frac: ``default=None``

            Composition of the injected fluid per canonical phase ``(water, oil,
            gas)``. Defaults to equal fractions of the active phases.
        allow_cross_flow: ``default=True``

            Whether perforations may flow opposite to the well type.
        group: ``default=None``

            Name of the group of the well, used by group voidage controls.

    """

    name: str
    type: WellType
    cells: Sequence[int]
    wi: Sequence[float]
    controls: list[WellControl] = field(default_factory=list)
    depths: Optional[Sequence[float]] = None
    ref_depth: Optional[float] = None
    comp_frac: Optional[Sequence[float]] = None
    allow_cross_flow: bool = True
    group: Optional[str] = None

    def __post_init__(self) -> None:
        self.cells = np.atleast_1d(np.asarray(self.cells, dtype=int))
        self.wi = np.atleast_1d(np.asarray(self.wi, dtype=float))
        if self.cells.size == 0:
            raise ValueError(f"Well {self.name} has no perforations.")
        if self.wi.size != self.cells.size:
            raise ValueError(
                f"Well {self.name} needs one connection factor per perforation."
            )
        if np.any(self.wi < 0):
            raise ValueError(f"Well {self.name} has negative connection factors.")

    @property
    def num_perforations(self) -> int:
        return self.cells.size


class Wells:
    """Collection of wells, with perforation arrays and the maps between wells and
    perforations.

    Parameters:
        wells: The wells.
        phase_usage: Active phases.
        cell_depths: Depth of each grid cell, used for defaulted perforation depths.

    Raises:
        ValueError: If well names are not unique, or perforations refer to cells
            outside the grid.

    """

    def __init__(
        self,
        wells: Sequence[Well],
        phase_usage: PhaseUsage,
        cell_depths: np.ndarray,
    ) -> None:
        self.wells: list[Well] = list(wells)
        """The wells."""
        names = [w.name for w in self.wells]
        if len(set(names)) != len(names):
            raise ValueError(f"Well names must be unique, got {names}.")
        self.phase_usage = phase_usage
        """Active phases."""

        nc = np.asarray(cell_depths).size
        num_phases = phase_usage.num_phases
        for w in self.wells:
            if np.any(w.cells < 0) or np.any(w.cells >= nc):
                raise ValueError(f"Well {w.name} perforates cells outside the grid.")

        self.num_wells: int = len(self.wells)
        """Number of wells."""

        nperf = [w.num_perforations for w in self.wells]
        self.well_connpos: np.ndarray = np.concatenate(([0], np.cumsum(nperf))).astype(int)
        """Perforations of well ``w`` are ``well_connpos[w]:well_connpos[w + 1]``."""

        self.num_perforations: int = int(self.well_connpos[-1])
        """Total number of perforations."""

        self.well_cells: np.ndarray = (
            np.concatenate([w.cells for w in self.wells])
            if self.wells
            else np.zeros(0, dtype=int)
        )
        """Perforated cell of each perforation."""

        self.wi: np.ndarray = (
            np.concatenate([w.wi for w in self.wells]) if self.wells else np.zeros(0)
        )
        """Connection transmissibility factor of each perforation."""

        self.perf_well: np.ndarray = np.repeat(np.arange(self.num_wells), nperf)
        """Well of each perforation."""

        depths = []
        for w in self.wells:
            d = cell_depths[w.cells] if w.depths is None else np.asarray(w.depths, float)
            if d.size != w.num_perforations:
                raise ValueError(f"Well {w.name} needs one depth per perforation.")
            depths.append(d)
        self.perf_depth: np.ndarray = np.concatenate(depths) if depths else np.zeros(0)
        """Depth of each perforation."""

        self.ref_depth: np.ndarray = np.array(
            [
                w.ref_depth if w.ref_depth is not None else d[0]
                for w, d in zip(self.wells, depths)
            ],
            dtype=float,
        )
        """Reference depth of the bottom hole pressure of each well."""

        comp = np.zeros((self.num_wells, num_phases))
        for i, w in enumerate(self.wells):
            if w.comp_frac is None:
                comp[i] = 1.0 / num_phases
            else:
                cf = np.asarray(w.comp_frac, dtype=float)
                if cf.size != bo.MAX_NUM_PHASES:
                    raise ValueError(
                        f"Composition of well {w.name} must be given for water, oil "
                        "and gas."
                    )
                comp[i] = cf[phase_usage.phase_used]
                if comp[i].sum() <= 0:
                    raise ValueError(
                        f"Composition of well {w.name} has no active phase."
                    )
                comp[i] /= comp[i].sum()
        self.comp_frac: np.ndarray = comp
        """Composition of the injected fluid per well and active phase."""

        self.is_injector: np.ndarray = np.array(
            [w.type == WellType.INJECTOR for w in self.wells], dtype=bool
        )
        """Whether each well is an injector."""

        self.allow_cross_flow: np.ndarray = np.array(
            [w.allow_cross_flow for w in self.wells], dtype=bool
        )
        """Whether each well allows cross flow."""

        w2p = sps.csr_matrix(
            (
                np.ones(self.num_perforations),
                (np.arange(self.num_perforations), self.perf_well),
            ),
            shape=(self.num_perforations, self.num_wells),
        )
        self.w2p: sps.csr_matrix = w2p
        """Map from wells to their perforations, ``shape=(num_perf, num_wells)``."""
        self.p2w: sps.csr_matrix = w2p.T.tocsr()
        """Sum over the perforations of each well, ``shape=(num_wells, num_perf)``."""

    def __len__(self) -> int:
        return self.num_wells

    def __iter__(self):
        return iter(self.wells)

    def __getitem__(self, index: int) -> Well:
        return self.wells[index]

    def index(self, name: str) -> int:
        """Index of the well with the given name."""
        for i, w in enumerate(self.wells):
            if w.name == name:
                return i
        raise KeyError(f"No well named {name}.")

    def distr(self, w: int, control: WellControl) -> np.ndarray:
        """Phase weights of a control, defaulted to one for all active phases."""
        num_phases = self.phase_usage.num_phases
        if control.distr is None:
            return np.ones(num_phases)
        distr = np.asarray(control.distr, dtype=float)
        if distr.size != num_phases:
            raise bo.WellControlInfeasible(
                f"Control weights must be given for {num_phases} active phases.",
                self.wells[w].name,
            )
        return distr

    def __repr__(self) -> str:
        return (
            f"Wells with {self.num_wells} wells and {self.num_perforations} "
            "perforations"
        )
