"""Fluid and rock property evaluation on AD expressions.

:class:`BlackoilProperties` is the single entry point of the residual assembly to all
property models. All methods take AD expressions of the primary quantities (pressure,
dissolution ratios, saturations) together with the cells they are evaluated in, and
return AD expressions obtained by the chain rule:

    J_f = diag(df/dp) J_p + diag(df/dr) J_r.

Properties of inactive phases raise :class:`~blackoil.utils.errors.PhaseNotPresent`.

"""

from __future__ import annotations

from typing import Optional, Sequence, Union

import numpy as np
from typing_extensions import TypeAlias

import blackoil as bo
from blackoil.ad.forward_mode import AutoDiffBlock
from blackoil.params.rock import RockCompressibility
from blackoil.props.phase_usage import PhasePresence, PhaseUsage
from blackoil.props.pvt import PvtInterface
from blackoil.props.saturation import SaturationFunctions

__all__ = ["BlackoilProperties"]

module_sections = ["properties"]

AdOrArray: TypeAlias = Union[AutoDiffBlock, np.ndarray]


def _value(x: AdOrArray) -> np.ndarray:
    return x.val if isinstance(x, AutoDiffBlock) else np.atleast_1d(np.asarray(x, float))


def _chain(val: np.ndarray, derivatives: Sequence[tuple[np.ndarray, AdOrArray]]):
    """AD expression with value ``val`` and Jacobian ``sum_i diag(d_i) J(x_i)``.

    Arguments that are not AD expressions do not contribute. If no argument is an AD
    expression, the value is returned as an array.

    """
    jac = []
    for d, x in derivatives:
        if isinstance(x, AutoDiffBlock) and x.num_blocks > 0:
            scaled = x.diagvec_mul_jac(d)
            jac = scaled if not jac else [a + b for a, b in zip(jac, scaled)]
    if not jac and not any(isinstance(x, AutoDiffBlock) for _, x in derivatives):
        return val
    return AutoDiffBlock(val, jac)


class BlackoilProperties:
    """Properties of the black-oil fluid system and the rock.

    Parameters:
        phase_usage: Active phases.
        pvt: PVT model per active canonical phase, e.g.
            ``{bo.WATER: water_pvt, bo.OIL: oil_pvt}``.
        saturation_functions: Relative permeability and capillary pressure.
        surface_densities: Surface densities ``(water, oil, gas)``, either one
            triplet or ``shape=(num_pvt_regions, 3)``.
        pvt_region: ``default=None``

            PVT region of each cell. Defaults to zero.
        sat_region: ``default=None``

            Saturation region of each cell. Defaults to zero.
        rock_compressibility: ``default=None``

            Pressure dependence of pore volume and transmissibility.

    """

    def __init__(
        self,
        phase_usage: PhaseUsage,
        pvt: dict[int, PvtInterface],
        saturation_functions: SaturationFunctions,
        surface_densities: Sequence[float],
        pvt_region: Optional[np.ndarray] = None,
        sat_region: Optional[np.ndarray] = None,
        rock_compressibility: Optional[RockCompressibility] = None,
    ) -> None:
        self.phase_usage = phase_usage
        """Active phases."""
        for phase in phase_usage.active_phases():
            if phase not in pvt:
                raise ValueError(f"Missing PVT model for {bo.PHASE_NAMES[phase]}.")
        self.pvt: dict[int, PvtInterface] = {int(k): v for k, v in pvt.items()}
        """PVT model per canonical phase."""
        self.saturation_functions = saturation_functions
        """Relative permeability and capillary pressure."""

        rho = np.atleast_2d(np.asarray(surface_densities, dtype=float))
        if rho.shape[1] != bo.MAX_NUM_PHASES:
            raise ValueError("Surface densities must be given for water, oil and gas.")
        self._surface_densities = rho

        self.pvt_region: Optional[np.ndarray] = (
            None if pvt_region is None else np.asarray(pvt_region, dtype=int)
        )
        """PVT region of each cell, None for a single region."""
        self.sat_region: Optional[np.ndarray] = (
            None if sat_region is None else np.asarray(sat_region, dtype=int)
        )
        """Saturation region of each cell, None for a single region."""
        self.rock_compressibility: RockCompressibility = (
            RockCompressibility()
            if rock_compressibility is None
            else rock_compressibility
        )
        """Pressure dependence of pore volume and transmissibility."""

    # ---- Helpers

    @property
    def num_phases(self) -> int:
        return self.phase_usage.num_phases

    @property
    def has_disgas(self) -> bool:
        """Whether gas dissolves in oil."""
        pu = self.phase_usage
        return (
            pu.active(bo.OIL) and pu.active(bo.GAS) and self.pvt[bo.OIL].has_dissolution
        )

    @property
    def has_vapoil(self) -> bool:
        """Whether oil vaporises in gas."""
        pu = self.phase_usage
        return (
            pu.active(bo.OIL) and pu.active(bo.GAS) and self.pvt[bo.GAS].has_dissolution
        )

    def _region(self, regions: Optional[np.ndarray], cells, n: int) -> np.ndarray:
        if regions is None:
            return np.zeros(n, dtype=int)
        if cells is None:
            return regions
        return regions[cells]

    def _pvt_eval(self, phase, quantity, p, r, cond, cells):
        self.phase_usage.check_active(phase)
        pv = _value(p)
        rv = np.zeros(pv.size) if r is None else _value(r)
        if cond is not None and cells is not None and cond.num_cells != pv.size:
            cond = cond.subset(cells)
        region = self._region(self.pvt_region, cells, pv.size)
        val, dp, dr = getattr(self.pvt[phase], quantity)(pv, rv, cond, region)
        derivs = [(dp, p)]
        if r is not None:
            derivs.append((dr, r))
        return _chain(val, derivs)

    # ---- Viscosities and formation volume factors

    @bo.time_logger(sections=module_sections)
    def mu_wat(self, pw: AdOrArray, T: Optional[AdOrArray] = None, cells=None):
        """Water viscosity."""
        return self._pvt_eval(bo.WATER, "mu", pw, None, None, cells)

    @bo.time_logger(sections=module_sections)
    def mu_oil(
        self,
        po: AdOrArray,
        T: Optional[AdOrArray] = None,
        rs: Optional[AdOrArray] = None,
        cond: Optional[PhasePresence] = None,
        cells=None,
    ):
        """Oil viscosity."""
        return self._pvt_eval(bo.OIL, "mu", po, rs, cond, cells)

    @bo.time_logger(sections=module_sections)
    def mu_gas(
        self,
        pg: AdOrArray,
        T: Optional[AdOrArray] = None,
        rv: Optional[AdOrArray] = None,
        cond: Optional[PhasePresence] = None,
        cells=None,
    ):
        """Gas viscosity."""
        return self._pvt_eval(bo.GAS, "mu", pg, rv, cond, cells)

    @bo.time_logger(sections=module_sections)
    def b_wat(self, pw: AdOrArray, T: Optional[AdOrArray] = None, cells=None):
        """Reciprocal formation volume factor of water."""
        return self._pvt_eval(bo.WATER, "b", pw, None, None, cells)

    @bo.time_logger(sections=module_sections)
    def b_oil(
        self,
        po: AdOrArray,
        T: Optional[AdOrArray] = None,
        rs: Optional[AdOrArray] = None,
        cond: Optional[PhasePresence] = None,
        cells=None,
    ):
        """Reciprocal formation volume factor of oil."""
        return self._pvt_eval(bo.OIL, "b", po, rs, cond, cells)

    @bo.time_logger(sections=module_sections)
    def b_gas(
        self,
        pg: AdOrArray,
        T: Optional[AdOrArray] = None,
        rv: Optional[AdOrArray] = None,
        cond: Optional[PhasePresence] = None,
        cells=None,
    ):
        """Reciprocal formation volume factor of gas."""
        return self._pvt_eval(bo.GAS, "b", pg, rv, cond, cells)

    def mu(self, phase: int, p, r=None, cond=None, cells=None):
        """Viscosity of a phase given by its canonical index."""
        return self._pvt_eval(phase, "mu", p, r, cond, cells)

    def b(self, phase: int, p, r=None, cond=None, cells=None):
        """Reciprocal formation volume factor of a phase given by its index."""
        return self._pvt_eval(phase, "b", p, r, cond, cells)

    # ---- Saturated dissolution ratios

    def rs_sat(self, po: AdOrArray, cells=None):
        """Saturated dissolved gas-oil ratio at the oil pressure, zero without
        dissolved gas."""
        self.phase_usage.check_active(bo.OIL)
        pv = _value(po)
        region = self._region(self.pvt_region, cells, pv.size)
        val, dp = self.pvt[bo.OIL].r_sat(pv, region)
        return _chain(val, [(dp, po)])

    def rv_sat(self, pg: AdOrArray, cells=None):
        """Saturated vaporised oil-gas ratio at the gas pressure, zero without
        vaporised oil."""
        self.phase_usage.check_active(bo.GAS)
        pv = _value(pg)
        region = self._region(self.pvt_region, cells, pv.size)
        val, dp = self.pvt[bo.GAS].r_sat(pv, region)
        return _chain(val, [(dp, pg)])

    # ---- Saturation functions

    def _saturation_matrix(self, sw, so, sg) -> tuple[np.ndarray, list]:
        pu = self.phase_usage
        sats = []
        for phase, s in zip((bo.WATER, bo.OIL, bo.GAS), (sw, so, sg)):
            if pu.active(phase):
                if s is None:
                    raise ValueError(
                        f"Saturation of active phase {bo.PHASE_NAMES[phase]} missing."
                    )
                sats.append(s)
        return np.column_stack([_value(s) for s in sats]), sats

    @bo.time_logger(sections=module_sections)
    def relperm(self, sw=None, so=None, sg=None, cells=None) -> list:
        """Relative permeability of each active phase, in canonical order.

        Derivatives are chained through all three saturations.

        """
        smat, sats = self._saturation_matrix(sw, so, sg)
        region = self._region(self.sat_region, cells, smat.shape[0])
        kr, dkr = self.saturation_functions.relperm(smat, region)
        num_phases = self.num_phases
        out = []
        for i in range(num_phases):
            derivs = [(dkr[:, i + num_phases * j], sats[j]) for j in range(num_phases)]
            out.append(_chain(kr[:, i], derivs))
        return out

    @bo.time_logger(sections=module_sections)
    def cap_press(self, sw=None, so=None, sg=None, cells=None) -> list:
        """Capillary pressure offset of each active phase relative to oil."""
        smat, sats = self._saturation_matrix(sw, so, sg)
        region = self._region(self.sat_region, cells, smat.shape[0])
        pc, dpc = self.saturation_functions.cap_press(smat, region)
        num_phases = self.num_phases
        out = []
        for i in range(num_phases):
            derivs = [(dpc[:, i + num_phases * j], sats[j]) for j in range(num_phases)]
            out.append(_chain(pc[:, i], derivs))
        return out

    # ---- Densities and rock

    def surface_density(self, phase: int, cells=None) -> np.ndarray:
        """Surface density of a phase per cell."""
        self.phase_usage.check_active(phase)
        rho = self._surface_densities[:, phase]
        if self.pvt_region is None:
            n = 1 if cells is None else np.asarray(cells).size
            return np.full(n, rho[0])
        region = self.pvt_region if cells is None else self.pvt_region[cells]
        return rho[region]

    def poro_mult(self, p: AdOrArray):
        """Pore volume multiplier; unity without rock compressibility."""
        pv = _value(p)
        rc = self.rock_compressibility
        if not rc.is_active():
            return np.ones(pv.size)
        val, dp = rc.poro_mult(pv), rc.poro_mult_deriv(pv)
        return _chain(val, [(dp, p)])

    def trans_mult(self, p: AdOrArray):
        """Transmissibility multiplier; unity without rock compressibility."""
        pv = _value(p)
        rc = self.rock_compressibility
        if not rc.is_active():
            return np.ones(pv.size)
        val, dp = rc.trans_mult(pv), rc.trans_mult_deriv(pv)
        return _chain(val, [(dp, p)])
