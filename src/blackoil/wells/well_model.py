"""Standard (non-segmented) well model.

The well unknowns are the surface rates ``qs`` of each well and active phase, ordered
phase by phase (``phase * num_wells + w``), and the bottom hole pressures ``bhp``.
Each well contributes one flux equation per phase,

    qs - sum_perf cq_s = 0,

linking the well rates to the perforation inflows, and one control equation selected
by the active control of the well.

Perforation inflow is driven by the drawdown ``p_cell - (bhp + cdp)``, where ``cdp`` is
the hydrostatic pressure difference between the reference depth and the perforation,
computed from a density segmented well bore. Perforations with positive drawdown
produce with the mobilities of the perforated cell. Injecting perforations use the
total mobility together with the mixture in the well bore.

"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

import numpy as np
import scipy.sparse as sps

import blackoil as bo
from blackoil.ad.block_matrix import AutoDiffMatrix
from blackoil.ad.forward_mode import AutoDiffBlock
from blackoil.ad.functions import Criterion, Selector
from blackoil.ad.utils import subset, superset
from blackoil.props.fluid import BlackoilProperties
from blackoil.props.phase_usage import PhasePresence
from blackoil.wells.vfp import flo_weights
from blackoil.wells.well_state import WellState
from blackoil.wells.wells import ControlType, WellControl, Wells

__all__ = ["StandardWells"]

logger = logging.getLogger(__name__)

module_sections = ["wells"]


class StandardWells:
    """Well equations and well state updates for a set of standard wells.

    Parameters:
        wells: The wells. None, or an empty collection, disables all well terms.
        props: Fluid properties, used for the well bore densities.
        gravity: ``default=0``

            Magnitude of the gravity acceleration.

    Raises:
        WellControlInfeasible: If a control of a well can not be honoured, e.g. a
            producer with a positive rate target or a THP control without VFP table.

    """

    def __init__(
        self,
        wells: Optional[Wells],
        props: BlackoilProperties,
        gravity: float = 0.0,
    ) -> None:
        self.wells: Optional[Wells] = wells
        """The wells."""
        self.props = props
        """Fluid properties."""
        self.gravity = float(gravity)
        """Magnitude of the gravity acceleration."""

        nperf = 0 if wells is None else wells.num_perforations
        nw = 0 if wells is None else wells.num_wells
        self.well_perforation_densities: np.ndarray = np.zeros(nperf)
        """Mixture density in the well bore at each perforation."""
        self.well_perforation_pressure_diffs: np.ndarray = np.zeros(nperf)
        """Pressure difference between perforation and reference depth."""
        self.reservoir_coefficients: np.ndarray = np.ones(
            (nw, props.phase_usage.num_phases)
        )
        """Conversion from surface to reservoir rates per well and phase."""

        if self.wells_active:
            self._w2p = AutoDiffMatrix.from_sparse(wells.w2p)
            self._p2w = AutoDiffMatrix.from_sparse(wells.p2w)
            self._check_controls()

    # ---- Basic attributes

    @property
    def wells_active(self) -> bool:
        return self.wells is not None and self.wells.num_wells > 0

    @property
    def num_wells(self) -> int:
        return 0 if self.wells is None else self.wells.num_wells

    @property
    def num_perforations(self) -> int:
        return 0 if self.wells is None else self.wells.num_perforations

    @property
    def num_phases(self) -> int:
        return self.props.phase_usage.num_phases

    @property
    def well_cells(self) -> np.ndarray:
        if self.wells is None:
            return np.zeros(0, dtype=int)
        return self.wells.well_cells

    def _phase_rows(self, phase: int) -> np.ndarray:
        nw = self.num_wells
        return phase * nw + np.arange(nw)

    def variable_well_state_initials(self, well_state: WellState) -> list[np.ndarray]:
        """Initial values of the well unknowns, ``[qs, bhp]``."""
        return [well_state.rates_phase_major(), well_state.bhp.copy()]

    # ---- Control validation

    def _check_controls(self) -> None:
        wells = self.wells
        groups_with_producers = {
            w.group for i, w in enumerate(wells) if not wells.is_injector[i]
        }
        for w, well in enumerate(wells):
            if len(well.controls) == 0:
                raise bo.WellControlInfeasible("The well has no controls.", well.name)
            injector = wells.is_injector[w]
            for ctrl in well.controls:
                if ctrl.type == ControlType.BHP and ctrl.target <= 0:
                    raise bo.WellControlInfeasible(
                        f"Bottom hole pressure target {ctrl.target} is not positive.",
                        well.name,
                    )
                if ctrl.type in (ControlType.SURFACE_RATE, ControlType.RESERVOIR_RATE):
                    distr = wells.distr(w, ctrl)
                    if not np.any(distr != 0):
                        raise bo.WellControlInfeasible(
                            "Rate control has zero weight for all phases.", well.name
                        )
                    if (injector and ctrl.target < 0) or (
                        not injector and ctrl.target > 0
                    ):
                        kind = "injector" if injector else "producer"
                        raise bo.WellControlInfeasible(
                            f"Rate target {ctrl.target} has the wrong sign for a "
                            f"{kind}.",
                            well.name,
                        )
                if ctrl.type == ControlType.THP and ctrl.vfp_table is None:
                    raise bo.WellControlInfeasible(
                        "THP control without VFP table.", well.name
                    )
                if ctrl.type == ControlType.GROUP_VOIDAGE:
                    if not injector:
                        raise bo.WellControlInfeasible(
                            "Group voidage control is only available for injectors.",
                            well.name,
                        )
                    if well.group is None or well.group not in groups_with_producers:
                        raise bo.WellControlInfeasible(
                            f"Group {well.group} has no producers to replace voidage "
                            "for.",
                            well.name,
                        )

    # ---- Well bore densities and hydrostatic pressure differences

    @bo.time_logger(sections=module_sections)
    def compute_well_connection_pressures(
        self,
        pressure: np.ndarray,
        rs: Optional[np.ndarray],
        rv: Optional[np.ndarray],
        cond: Optional[PhasePresence],
        well_state: WellState,
    ) -> None:
        """Update the perforation densities and the hydrostatic pressure differences.

        Fluid properties are evaluated at the average of the well bore pressures of
        a perforation and the perforation above, with the dissolution ratios and phase
        presence of the perforated cells.

        Parameters:
            pressure: Cell pressures.
            rs: Dissolved gas-oil ratio per cell, or None.
            rv: Vaporised oil-gas ratio per cell, or None.
            cond: Phase presence per cell, or None.
            well_state: Current well state, for perforation rates and pressures.

        """
        if not self.wells_active:
            return
        wells = self.wells
        props = self.props
        pu = props.phase_usage
        pos = pu.phase_pos
        cells = wells.well_cells
        nperf = wells.num_perforations
        num_phases = pu.num_phases

        perf_press = well_state.perf_press
        first = wells.well_connpos[:-1]
        p_above = np.empty(nperf)
        p_above[1:] = perf_press[:-1]
        p_above[first] = well_state.bhp
        avg_press = 0.5 * (perf_press + p_above)

        cond_perf = None if cond is None else cond.subset(cells)
        b_perf = np.zeros((nperf, num_phases))
        rsmax = np.zeros(nperf)
        rvmax = np.zeros(nperf)
        if pu.active(bo.WATER):
            b_perf[:, pos[bo.WATER]] = props.b_wat(avg_press, cells=cells)
        if pu.active(bo.OIL):
            rs_perf = rs[cells] if (props.has_disgas and rs is not None) else None
            b_perf[:, pos[bo.OIL]] = props.b_oil(
                avg_press, rs=rs_perf, cond=cond_perf, cells=cells
            )
            if props.has_disgas:
                rsmax = props.rs_sat(avg_press, cells=cells)
        if pu.active(bo.GAS):
            rv_perf = rv[cells] if (props.has_vapoil and rv is not None) else None
            b_perf[:, pos[bo.GAS]] = props.b_gas(
                avg_press, rv=rv_perf, cond=cond_perf, cells=cells
            )
            if props.has_vapoil:
                rvmax = props.rv_sat(avg_press, cells=cells)

        surf_dens = np.column_stack(
            [props.surface_density(phase, cells) for phase in pu.active_phases()]
        )

        dens = self.compute_connection_densities(
            well_state.perf_phase_rates, b_perf, rsmax, rvmax, surf_dens
        )
        self.well_perforation_densities = dens
        self.well_perforation_pressure_diffs = self.compute_connection_pressure_delta(
            dens
        )

        nperf_well = np.diff(wells.well_connpos).astype(float)
        self.reservoir_coefficients = (wells.p2w @ (1.0 / b_perf)) / nperf_well[:, None]

    def compute_connection_densities(
        self,
        perf_rates: np.ndarray,
        b_perf: np.ndarray,
        rsmax_perf: np.ndarray,
        rvmax_perf: np.ndarray,
        surf_dens_perf: np.ndarray,
    ) -> np.ndarray:
        """Mixture density in the well bore at each perforation.

        The mixture at a perforation is the sum of the inflow of all perforations
        below it. Wells without flow use the injection composition.

        Parameters:
            perf_rates: Surface rates per perforation and phase.
            b_perf: Reciprocal formation volume factors at the perforations.
            rsmax_perf: Saturated dissolved gas-oil ratio at the perforations.
            rvmax_perf: Saturated vaporised oil-gas ratio at the perforations.
            surf_dens_perf: Surface densities at the perforations.

        Returns:
            Density per perforation.

        """
        wells = self.wells
        pu = self.props.phase_usage
        pos = pu.phase_pos
        oil_gas = pu.active(bo.OIL) and pu.active(bo.GAS)
        opos, gpos = pos[bo.OIL], pos[bo.GAS]

        nperf = wells.num_perforations
        q_out = np.zeros_like(perf_rates)
        dens = np.zeros(nperf)
        for w in range(wells.num_wells):
            start, end = wells.well_connpos[w], wells.well_connpos[w + 1]
            # Flow out of each perforation towards the top of the well.
            for perf in range(end - 1, start - 1, -1):
                below = q_out[perf + 1] if perf < end - 1 else 0.0
                q_out[perf] = below - perf_rates[perf]

            for perf in range(start, end):
                total = q_out[perf].sum()
                if total != 0.0:
                    mix = q_out[perf] / total
                else:
                    mix = wells.comp_frac[w].copy()

                x = mix.copy()
                if oil_gas:
                    rs = 0.0
                    rv = 0.0
                    if mix[opos] > 0.0:
                        rs = min(mix[gpos] / mix[opos], rsmax_perf[perf])
                    if mix[gpos] > 0.0:
                        rv = min(mix[opos] / mix[gpos], rvmax_perf[perf])
                    if rs != 0.0:
                        x[gpos] = (mix[gpos] - mix[opos] * rs) / (1.0 - rs * rv)
                    if rv != 0.0:
                        x[opos] = (mix[opos] - mix[gpos] * rv) / (1.0 - rs * rv)
                volrat = np.sum(x / b_perf[perf])
                surface_mass = np.sum(mix * surf_dens_perf[perf])
                dens[perf] = surface_mass / volrat
        return dens

    def compute_connection_pressure_delta(self, dens: np.ndarray) -> np.ndarray:
        """Hydrostatic pressure difference from the reference depth to each
        perforation, using the density of the fluid above each perforation."""
        wells = self.wells
        z = wells.perf_depth
        dp = np.zeros(wells.num_perforations)
        for w in range(wells.num_wells):
            start, end = wells.well_connpos[w], wells.well_connpos[w + 1]
            for perf in range(start, end):
                z_above = wells.ref_depth[w] if perf == start else z[perf - 1]
                rho = dens[perf] if perf == start else dens[perf - 1]
                dp[perf] = (z[perf] - z_above) * rho * self.gravity
            dp[start:end] = np.cumsum(dp[start:end])
        return dp

    def _vfp_correction(self, w: int, datum_depth: float) -> float:
        """Hydrostatic pressure difference between the VFP datum and the reference
        depth of well ``w``."""
        first = self.wells.well_connpos[w]
        rho = self.well_perforation_densities[first]
        return rho * self.gravity * (datum_depth - self.wells.ref_depth[w])

    # ---- Perforation fluxes and well equations

    @bo.time_logger(sections=module_sections)
    def compute_well_flux(
        self,
        p_perfcells: AutoDiffBlock,
        mob_perfcells: Sequence[AutoDiffBlock],
        b_perfcells: Sequence[AutoDiffBlock],
        rs_perfcells,
        rv_perfcells,
        qs: AutoDiffBlock,
        bhp: AutoDiffBlock,
    ) -> tuple[list[AutoDiffBlock], np.ndarray]:
        """Surface rates of each perforation and phase.

        Parameters:
            p_perfcells: Oil pressure in the perforated cells.
            mob_perfcells: Mobility of each active phase in the perforated cells.
            b_perfcells: Reciprocal formation volume factor of each active phase.
            rs_perfcells: Dissolved gas-oil ratio in the perforated cells, or None.
            rv_perfcells: Vaporised oil-gas ratio in the perforated cells, or None.
            qs: Well surface rates, phase by phase.
            bhp: Bottom hole pressures.

        Returns:
            The perforation rates ``cq_s`` per active phase, positive for injection,
            and an array which is zero for dead wells and one otherwise.

        """
        wells = self.wells
        pu = self.props.phase_usage
        pos = pu.phase_pos
        nw = wells.num_wells
        nperf = wells.num_perforations
        num_phases = pu.num_phases
        Tw = wells.wi
        if rs_perfcells is None:
            rs_perfcells = np.zeros(nperf)
        if rv_perfcells is None:
            rv_perfcells = np.zeros(nperf)

        perf_pressure = self._w2p @ bhp + self.well_perforation_pressure_diffs
        drawdown = p_perfcells - perf_pressure

        injecting = (drawdown.val < 0).astype(float)
        producing = 1.0 - injecting

        num_injecting = wells.p2w @ injecting
        num_producing = wells.p2w @ producing
        for w in range(nw):
            if wells.allow_cross_flow[w]:
                continue
            # Without cross flow, reverse flow is shut unless all perforations
            # flow in reverse.
            perfs = slice(wells.well_connpos[w], wells.well_connpos[w + 1])
            if wells.is_injector[w] and num_injecting[w] > 0:
                producing[perfs] = 0.0
            elif not wells.is_injector[w] and num_producing[w] > 0:
                injecting[perfs] = 0.0

        # Flow into the well bore
        cq_ps = []
        for i in range(num_phases):
            cq_p = -(producing * Tw) * (mob_perfcells[i] * drawdown)
            cq_ps.append(b_perfcells[i] * cq_p)
        if pu.active(bo.OIL) and pu.active(bo.GAS):
            opos, gpos = pos[bo.OIL], pos[bo.GAS]
            cq_ps_oil = cq_ps[opos]
            cq_ps_gas = cq_ps[gpos]
            cq_ps[gpos] = cq_ps_gas + rs_perfcells * cq_ps_oil
            cq_ps[opos] = cq_ps_oil + rv_perfcells * cq_ps_gas

        # Flow out of the well bore, with the total mobility
        total_mob = mob_perfcells[0]
        for i in range(1, num_phases):
            total_mob = total_mob + mob_perfcells[i]
        cqt_i = -(injecting * Tw) * (total_mob * drawdown)

        # Well bore mixture from the injected fluid and the reservoir inflow
        compi = wells.comp_frac
        wbq = []
        wbqt = None
        for i in range(num_phases):
            q_ps = self._p2w @ cq_ps[i]
            q_s = subset(qs, self._phase_rows(i))
            injected = Selector(q_s, Criterion.GreaterZero).select(q_s, 0.0)
            wbq.append(compi[:, i] * injected - q_ps)
            wbqt = wbq[i] if wbqt is None else wbqt + wbq[i]

        dead = wbqt.val == 0
        wbqt_safe = wbqt + dead.astype(float)
        dead_selector = Selector(wbqt, Criterion.Zero)
        cmix_s = [
            self._w2p @ dead_selector.select(compi[:, i], wbq[i] / wbqt_safe)
            for i in range(num_phases)
        ]

        # Ratio between reservoir and surface volume of the mixture
        d = 1.0 - rv_perfcells * rs_perfcells
        volume_ratio = None
        for phase in pu.active_phases():
            i = pos[phase]
            tmp = cmix_s[i]
            if phase == bo.OIL and pu.active(bo.GAS):
                tmp = tmp - rv_perfcells * cmix_s[pos[bo.GAS]] / d
            if phase == bo.GAS and pu.active(bo.OIL):
                tmp = tmp - rs_perfcells * cmix_s[pos[bo.OIL]] / d
            term = tmp / b_perfcells[i]
            volume_ratio = term if volume_ratio is None else volume_ratio + term

        cqt_is = cqt_i / volume_ratio
        cq_s = [cq_ps[i] + cmix_s[i] * cqt_is for i in range(num_phases)]

        alive = np.where(dead, 0.0, 1.0)
        return cq_s, alive

    def update_perf_phase_rates_and_pressures(
        self,
        cq_s: Sequence[AutoDiffBlock],
        bhp: np.ndarray,
        well_state: WellState,
    ) -> None:
        """Store perforation rates and well bore pressures in the well state."""
        well_state.perf_phase_rates = np.column_stack([q.val for q in cq_s])
        well_state.perf_press = (
            self.wells.w2p @ np.asarray(bhp) + self.well_perforation_pressure_diffs
        )

    def add_well_flux_eq(
        self, cq_s: Sequence[AutoDiffBlock], qs: AutoDiffBlock
    ) -> AutoDiffBlock:
        """Residual ``qs - sum_perf cq_s`` of the well flux equations."""
        nw = self.num_wells
        n = nw * self.num_phases
        eq = qs
        for i, q in enumerate(cq_s):
            eq = eq - superset(self._p2w @ q, self._phase_rows(i), n)
        return eq

    def add_well_contributions(
        self,
        cq_s: Sequence[AutoDiffBlock],
        material_balance_eq: list[AutoDiffBlock],
        num_cells: int,
    ) -> list[AutoDiffBlock]:
        """Subtract the perforation rates from the mass balance of the perforated
        cells."""
        cells = self.wells.well_cells
        return [
            eq - superset(q, cells, num_cells)
            for eq, q in zip(material_balance_eq, cq_s)
        ]

    @bo.time_logger(sections=module_sections)
    def add_well_control_eq(
        self,
        qs: AutoDiffBlock,
        bhp: AutoDiffBlock,
        well_state: WellState,
        alive: np.ndarray,
    ) -> AutoDiffBlock:
        """Residual of the control equation of each well.

        Dead wells, which do not communicate with the reservoir, get the total well
        rate as residual instead.

        """
        wells = self.wells
        pu = self.props.phase_usage
        nw = wells.num_wells
        num_phases = pu.num_phases

        bhp_coeff = np.zeros(nw)
        targets = np.zeros(nw)
        rows, cols, vals = [], [], []
        thp_wells = []

        def add_rate_row(w: int, coefficients: np.ndarray, target_well: int) -> None:
            for p in range(num_phases):
                if coefficients[p] != 0.0:
                    rows.append(w)
                    cols.append(p * nw + target_well)
                    vals.append(coefficients[p])

        for w, well in enumerate(wells):
            ctrl = well.controls[well_state.current_controls[w]]
            if ctrl.type == ControlType.BHP:
                bhp_coeff[w] = 1.0
                targets[w] = ctrl.target
            elif ctrl.type == ControlType.THP:
                bhp_coeff[w] = 1.0
                thp_wells.append(w)
            elif ctrl.type == ControlType.SURFACE_RATE:
                add_rate_row(w, wells.distr(w, ctrl), w)
                targets[w] = ctrl.target
            elif ctrl.type == ControlType.RESERVOIR_RATE:
                add_rate_row(w, wells.distr(w, ctrl) * self.reservoir_coefficients[w], w)
                targets[w] = ctrl.target
            elif ctrl.type == ControlType.GROUP_VOIDAGE:
                add_rate_row(w, wells.distr(w, ctrl) * self.reservoir_coefficients[w], w)
                for j, other in enumerate(wells):
                    if other.group == well.group and not wells.is_injector[j]:
                        add_rate_row(
                            w, ctrl.group_fraction * self.reservoir_coefficients[j], j
                        )

        rate_distr = sps.csr_matrix((vals, (rows, cols)), shape=(nw, num_phases * nw))
        eq = bhp_coeff * bhp + AutoDiffMatrix.from_sparse(rate_distr) @ qs - targets

        for w in thp_wells:
            ctrl = wells[w].controls[well_state.current_controls[w]]
            table = ctrl.vfp_table
            weights = flo_weights(table.flo_type, pu.phase_used)
            F = sps.csr_matrix(
                (weights, (np.zeros(num_phases, dtype=int), np.arange(num_phases) * nw + w)),
                shape=(1, num_phases * nw),
            )
            flo = table.flo(AutoDiffMatrix.from_sparse(F) @ qs)
            bhp_target = table.bhp(flo, ctrl.target) - self._vfp_correction(
                w, table.datum_depth
            )
            eq = eq - superset(bhp_target, [w], nw)

        rate_summer = sps.csr_matrix(
            (
                np.ones(num_phases * nw),
                (np.tile(np.arange(nw), num_phases), np.arange(num_phases * nw)),
            ),
            shape=(nw, num_phases * nw),
        )
        total_rate = AutoDiffMatrix.from_sparse(rate_summer) @ qs
        return Selector(alive, Criterion.NotEqualZero).select(eq, total_rate)

    # ---- Control switching

    def _control_value(self, w: int, ctrl: WellControl, well_state: WellState):
        """Current value of the quantity a control constrains, None if it is not
        checked as a constraint."""
        if ctrl.type == ControlType.BHP:
            return well_state.bhp[w]
        if ctrl.type == ControlType.THP:
            return well_state.thp[w]
        distr = self.wells.distr(w, ctrl)
        if ctrl.type == ControlType.SURFACE_RATE:
            return float(np.dot(distr, well_state.well_rates[w]))
        if ctrl.type == ControlType.RESERVOIR_RATE:
            coefficients = distr * self.reservoir_coefficients[w]
            return float(np.dot(coefficients, well_state.well_rates[w]))
        return None

    def constraint_broken(
        self, w: int, ctrl: WellControl, well_state: WellState
    ) -> bool:
        """Whether the control ``ctrl`` of well ``w`` is violated.

        Injectors violate a constraint by exceeding its target, producers by
        falling below it. Producer rates are negative, so a producer violates a rate
        constraint by producing more than the limit.

        """
        value = self._control_value(w, ctrl, well_state)
        if value is None:
            return False
        if self.wells.is_injector[w]:
            return value > ctrl.target
        return value < ctrl.target

    @bo.time_logger(sections=module_sections)
    def update_well_controls(self, well_state: WellState) -> bool:
        """Switch wells with violated constraints to the most violated one.

        The well state is then reset from the target of the active control: the
        bottom hole pressure for BHP and THP controls, the phase rates for surface
        rate controls.

        Returns:
            Whether any well switched control.

        """
        if not self.wells_active:
            return False
        self._update_thp(well_state)
        switched = False
        for w, well in enumerate(self.wells):
            current = int(well_state.current_controls[w])
            worst = None
            worst_violation = -1.0
            for i, ctrl in enumerate(well.controls):
                if i == current or not self.constraint_broken(w, ctrl, well_state):
                    continue
                value = self._control_value(w, ctrl, well_state)
                violation = abs(value - ctrl.target) / max(abs(ctrl.target), 1e-300)
                if violation > worst_violation:
                    worst, worst_violation = i, violation
            if worst is not None:
                logger.info(
                    "Switching control mode for well %s from %s to %s",
                    well.name,
                    well.controls[current].type.name,
                    well.controls[worst].type.name,
                )
                well_state.current_controls[w] = worst
                current = worst
                switched = True
            self._reset_from_target(w, well.controls[current], well_state)
        return switched

    def _reset_from_target(
        self, w: int, ctrl: WellControl, well_state: WellState
    ) -> None:
        if ctrl.type == ControlType.BHP:
            well_state.bhp[w] = ctrl.target
        elif ctrl.type == ControlType.THP:
            table = ctrl.vfp_table
            weights = flo_weights(table.flo_type, self.props.phase_usage.phase_used)
            flo = table.flo(np.dot(weights, well_state.well_rates[w]))
            well_state.bhp[w] = table.bhp(flo, ctrl.target)[0] - self._vfp_correction(
                w, table.datum_depth
            )
        elif ctrl.type == ControlType.SURFACE_RATE:
            distr = self.wells.distr(w, ctrl)
            mask = distr > 0
            well_state.well_rates[w, mask] = ctrl.target * distr[mask]

    def _update_thp(self, well_state: WellState) -> None:
        """Tubing head pressures of the wells with a THP control."""
        pu = self.props.phase_usage
        for w, well in enumerate(self.wells):
            for ctrl in well.controls:
                if ctrl.type != ControlType.THP:
                    continue
                table = ctrl.vfp_table
                weights = flo_weights(table.flo_type, pu.phase_used)
                flo = table.flo(np.dot(weights, well_state.well_rates[w]))
                dp = self._vfp_correction(w, table.datum_depth)
                well_state.thp[w] = table.thp(flo, well_state.bhp[w] + dp)[0]
                break

    # ---- Newton update

    def update_well_state(
        self, dwells: np.ndarray, dbhp_max_rel: float, well_state: WellState
    ) -> None:
        """Apply a Newton increment ``[dqs, dbhp]`` to the well state.

        The bottom hole pressure change is limited to ``dbhp_max_rel`` times the
        current pressure.

        """
        if not self.wells_active:
            return
        nw = self.num_wells
        num_phases = self.num_phases
        dwells = np.asarray(dwells, dtype=float)
        if dwells.size != nw * (num_phases + 1):
            raise bo.ShapeError(
                f"Well increment has size {dwells.size}, expected "
                f"{nw * (num_phases + 1)}."
            )
        dqs = dwells[: num_phases * nw]
        dbhp = dwells[num_phases * nw :]

        well_state.well_rates = well_state.well_rates - dqs.reshape(num_phases, nw).T

        bhp_old = well_state.bhp
        dbhp_limited = np.sign(dbhp) * np.minimum(
            np.abs(dbhp), np.abs(bhp_old) * dbhp_max_rel
        )
        well_state.bhp = bhp_old - dbhp_limited
        self._update_thp(well_state)
