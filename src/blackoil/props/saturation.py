"""Relative permeabilities and capillary pressures from saturation function tables.

Two table families are used, one for the water-oil system (SWOF: ``sw, krw, krow,
pcow``) and one for the gas-oil system (SGOF: ``sg, krg, krog, pcgo``). In three-phase
models, the oil relative permeability is the saturation weighted interpolation of the
two-phase values (the default three-phase model of ECLIPSE)

    kro = (sg * krog(sg) + (sw - swco) * krow(sw)) / (sg + sw - swco),

with ``swco`` the connate water saturation (first saturation of the SWOF table).

Derivatives are returned as a matrix per cell stored column-major: with ``np`` active
phases, ``dkr[:, i + np * j]`` is the derivative of the relative permeability of
active phase ``i`` with respect to the saturation of active phase ``j``.

"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

import blackoil as bo
from blackoil.props.phase_usage import PhaseUsage
from blackoil.utils.interpolation import check_table_axis, linear_interpolation

__all__ = [
    "SwofTable",
    "SgofTable",
    "SaturationFunctions",
    "corey_swof",
    "corey_sgof",
]

module_sections = ["properties"]


def _table_eval(x_table: np.ndarray, y_table: np.ndarray, s: np.ndarray):
    """Constant extrapolation outside the table, linear inside."""
    s_clip = np.clip(s, x_table[0], x_table[-1])
    val, der = linear_interpolation(x_table, y_table, s_clip)
    der[(s < x_table[0]) | (s > x_table[-1])] = 0.0
    return val, der


@dataclass
class SwofTable:
    """Water-oil saturation functions."""

    sw: np.ndarray
    """Strictly increasing water saturations."""
    krw: np.ndarray
    """Water relative permeability."""
    krow: np.ndarray
    """Oil relative permeability in the water-oil system."""
    pcow: np.ndarray
    """Oil-water capillary pressure ``po - pw``."""

    def __post_init__(self) -> None:
        self.sw = check_table_axis(self.sw, "SWOF")
        for name in ("krw", "krow", "pcow"):
            arr = np.asarray(getattr(self, name), dtype=float)
            if arr.size != self.sw.size:
                raise ValueError(f"SWOF column {name} has wrong length.")
            setattr(self, name, arr)

    @property
    def connate_saturation(self) -> float:
        return float(self.sw[0])


@dataclass
class SgofTable:
    """Gas-oil saturation functions."""

    sg: np.ndarray
    """Strictly increasing gas saturations."""
    krg: np.ndarray
    """Gas relative permeability."""
    krog: np.ndarray
    """Oil relative permeability in the gas-oil system with connate water."""
    pcgo: np.ndarray
    """Gas-oil capillary pressure ``pg - po``."""

    def __post_init__(self) -> None:
        self.sg = check_table_axis(self.sg, "SGOF")
        for name in ("krg", "krog", "pcgo"):
            arr = np.asarray(getattr(self, name), dtype=float)
            if arr.size != self.sg.size:
                raise ValueError(f"SGOF column {name} has wrong length.")
            setattr(self, name, arr)


def corey_swof(
    swc: float = 0.0,
    sor: float = 0.0,
    nw: float = 2.0,
    no: float = 2.0,
    krw_max: float = 1.0,
    kro_max: float = 1.0,
    pc_max: float = 0.0,
    num_points: int = 21,
) -> SwofTable:
    """Water-oil table from Corey type functions.

    The capillary pressure decreases linearly from ``pc_max`` at ``swc`` to zero at
    ``1 - sor``.

    """
    if swc + sor >= 1:
        raise ValueError("Residual saturations must sum to less than one.")
    sw = np.linspace(swc, 1.0, num_points)
    sn = np.clip((sw - swc) / (1.0 - swc - sor), 0.0, 1.0)
    krw = krw_max * sn**nw
    krow = kro_max * (1.0 - sn) ** no
    pcow = pc_max * (1.0 - sn)
    return SwofTable(sw, krw, krow, pcow)


def corey_sgof(
    swc: float = 0.0,
    sgc: float = 0.0,
    sorg: float = 0.0,
    ng: float = 2.0,
    nog: float = 2.0,
    krg_max: float = 1.0,
    kro_max: float = 1.0,
    pc_max: float = 0.0,
    num_points: int = 21,
) -> SgofTable:
    """Gas-oil table from Corey type functions, assuming connate water ``swc``.

    The capillary pressure increases linearly from zero at ``sgc`` to ``pc_max`` at
    the maximum gas saturation ``1 - swc``.

    """
    if swc + sgc + sorg >= 1:
        raise ValueError("Residual saturations must sum to less than one.")
    sg = np.linspace(0.0, 1.0 - swc, num_points)
    sgn = np.clip((sg - sgc) / (1.0 - swc - sgc - sorg), 0.0, 1.0)
    son = np.clip((1.0 - swc - sg - sorg) / (1.0 - swc - sorg), 0.0, 1.0)
    krg = krg_max * sgn**ng
    krog = kro_max * son**nog
    pcgo = pc_max * sgn
    return SgofTable(sg, krg, krog, pcgo)


class SaturationFunctions:
    """Relative permeability and capillary pressure evaluator.

    Parameters:
        phase_usage: Active phases.
        swof: ``default=None``

            Water-oil tables, one per saturation region. Required if water is
            active together with another phase.
        sgof: ``default=None``

            Gas-oil tables, one per saturation region. Required if gas is active
            together with another phase.

    """

    def __init__(
        self,
        phase_usage: PhaseUsage,
        swof: Optional[Sequence[SwofTable]] = None,
        sgof: Optional[Sequence[SgofTable]] = None,
    ) -> None:
        self.phase_usage = phase_usage
        """Active phases."""
        self.swof: list[SwofTable] = (
            [] if swof is None else ([swof] if isinstance(swof, SwofTable) else list(swof))
        )
        """Water-oil tables per region."""
        self.sgof: list[SgofTable] = (
            [] if sgof is None else ([sgof] if isinstance(sgof, SgofTable) else list(sgof))
        )
        """Gas-oil tables per region."""

        pu = phase_usage
        if pu.num_phases > 1 and pu.active(bo.WATER) and not self.swof:
            raise ValueError("Water-oil saturation tables are required.")
        if pu.num_phases > 1 and pu.active(bo.GAS) and not self.sgof:
            raise ValueError("Gas-oil saturation tables are required.")
        if self.swof and self.sgof and len(self.swof) != len(self.sgof):
            raise ValueError("SWOF and SGOF must have the same number of regions.")

        self.num_regions: int = max(len(self.swof), len(self.sgof), 1)
        """Number of saturation regions."""

    def _regions(self, region: Optional[np.ndarray], n: int) -> np.ndarray:
        if region is None:
            return np.zeros(n, dtype=int)
        region = np.broadcast_to(np.asarray(region, dtype=int), (n,))
        if np.any(region < 0) or np.any(region >= self.num_regions):
            raise ValueError(
                f"Saturation region index outside [0, {self.num_regions})."
            )
        return region

    def swco(self, region: Optional[np.ndarray] = None, n: int = 1) -> np.ndarray:
        """Connate water saturation per cell."""
        region = self._regions(region, n)
        if not self.swof:
            return np.zeros(n)
        table = np.array([t.connate_saturation for t in self.swof])
        return table[region]

    @bo.time_logger(sections=module_sections)
    def relperm(
        self,
        saturation: np.ndarray,
        region: Optional[np.ndarray] = None,
    ) -> tuple[np.ndarray, np.ndarray]:
        """Relative permeabilities and their saturation derivatives.

        Parameters:
            saturation: ``shape=(n, num_phases)``, active phases in canonical order.
            region: ``default=None``

                Saturation region per cell. Defaults to zero.

        Returns:
            ``kr`` with ``shape=(n, num_phases)`` and ``dkr`` with
            ``shape=(n, num_phases**2)``, see the module documentation.

        """
        pu = self.phase_usage
        num_phases = pu.num_phases
        saturation = np.atleast_2d(np.asarray(saturation, dtype=float))
        n = saturation.shape[0]
        region = self._regions(region, n)
        kr = np.zeros((n, num_phases))
        dkr = np.zeros((n, num_phases * num_phases))

        if num_phases == 1:
            kr[:, 0] = 1.0
            return kr, dkr

        pos = pu.phase_pos
        wpos, opos, gpos = pos[bo.WATER], pos[bo.OIL], pos[bo.GAS]

        def put(i, j, values, mask):
            dkr[mask, i + num_phases * j] = values

        for r in np.unique(region):
            mask = region == r
            if pu.active(bo.WATER):
                sw = saturation[mask, wpos]
                wt = self.swof[r]
                krw, dkrw = _table_eval(wt.sw, wt.krw, sw)
                krow, dkrow = _table_eval(wt.sw, wt.krow, sw)
                kr[mask, wpos] = krw
                put(wpos, wpos, dkrw, mask)
            if pu.active(bo.GAS):
                sg = saturation[mask, gpos]
                gt = self.sgof[r]
                krg, dkrg = _table_eval(gt.sg, gt.krg, sg)
                krog, dkrog = _table_eval(gt.sg, gt.krog, sg)
                kr[mask, gpos] = krg
                put(gpos, gpos, dkrg, mask)

            if not pu.active(bo.OIL):
                continue
            if pu.active(bo.WATER) and not pu.active(bo.GAS):
                kr[mask, opos] = krow
                put(opos, wpos, dkrow, mask)
            elif pu.active(bo.GAS) and not pu.active(bo.WATER):
                kr[mask, opos] = krog
                put(opos, gpos, dkrog, mask)
            else:
                # Default three-phase oil relative permeability
                eps = 1e-5
                swco = np.minimum(self.swof[r].connate_saturation, sw - eps)
                denom = sg + sw - swco
                xw = (sw - swco) / denom
                xg = 1.0 - xw
                dxw_dsw = sg / denom**2
                dxw_dsg = -(sw - swco) / denom**2
                kr[mask, opos] = xw * krow + xg * krog
                put(opos, wpos, xw * dkrow + (krow - krog) * dxw_dsw, mask)
                put(opos, gpos, xg * dkrog + (krow - krog) * dxw_dsg, mask)

        return kr, dkr

    @bo.time_logger(sections=module_sections)
    def cap_press(
        self,
        saturation: np.ndarray,
        region: Optional[np.ndarray] = None,
    ) -> tuple[np.ndarray, np.ndarray]:
        """Capillary pressure offsets of each phase relative to oil.

        The phase pressures are ``p_phase = p_oil + pc_phase``, i.e. ``-pcow`` for
        water and ``pcgo`` for gas.

        Returns:
            ``pc`` with ``shape=(n, num_phases)`` and ``dpc`` with
            ``shape=(n, num_phases**2)``, stored as ``dkr`` in :meth:`relperm`.

        """
        pu = self.phase_usage
        num_phases = pu.num_phases
        saturation = np.atleast_2d(np.asarray(saturation, dtype=float))
        n = saturation.shape[0]
        region = self._regions(region, n)
        pc = np.zeros((n, num_phases))
        dpc = np.zeros((n, num_phases * num_phases))
        if num_phases == 1:
            return pc, dpc

        pos = pu.phase_pos
        for r in np.unique(region):
            mask = region == r
            if pu.active(bo.WATER) and self.swof:
                w = pos[bo.WATER]
                val, der = _table_eval(self.swof[r].sw, self.swof[r].pcow, saturation[mask, w])
                pc[mask, w] = -val
                dpc[mask, w + num_phases * w] = -der
            if pu.active(bo.GAS) and self.sgof:
                g = pos[bo.GAS]
                val, der = _table_eval(self.sgof[r].sg, self.sgof[r].pcgo, saturation[mask, g])
                pc[mask, g] = val
                dpc[mask, g + num_phases * g] = der
        return pc, dpc
