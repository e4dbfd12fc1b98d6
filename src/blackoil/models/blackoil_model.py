"""Fully implicit black-oil model: residual assembly, convergence checks and state
updates.

The model assembles, for each active phase ``p``, the mass balance

    R_p = pv / dt * (A_p^{n+1} - A_p^n) + div(F_p) - q_p,

with the accumulation ``A_p = phi(p) b_p S_p``, the upwinded phase flux

    F_p = (b_p lambda_p)_up * T * dh_p,    dh_p = ngrad(p_p) - g * caver(rho_p) * ngrad(z),

and the perforation rates ``q_p`` of the wells. With both oil and gas active, the gas
equation contains the gas dissolved in oil, and the oil equation the oil vaporised in
gas, in both the accumulation and the flux terms.

The primary variables are the pressure, the water saturation and a third variable whose
meaning varies per cell (see :mod:`~blackoil.models.primary_variables`), followed by
the well rates and the bottom hole pressures.

"""

from __future__ import annotations

import logging
import time
from typing import Any, Optional

import numpy as np
import scipy.sparse.linalg as spla

import blackoil as bo
from blackoil.ad.forward_mode import AutoDiffBlock
from blackoil.ad.functions import make_constant
from blackoil.ad.utils import subset, vertcat_collapse_jacs
from blackoil.discretization.operators import (
    DiscreteOperators,
    UpwindSelector,
    multiphase_upwind,
)
from blackoil.grids.grid import Grid
from blackoil.models.primary_variables import HydroCarbonState, PrimaryVariables
from blackoil.models.report import IterationReport
from blackoil.models.state import (
    FluidInPlace,
    LinearisedBlackoilResidual,
    ReservoirState,
    SolutionState,
)
from blackoil.params.geology import DerivedGeology
from blackoil.params.parameters import default_parameters, merge_parameters
from blackoil.parallel.communicator import Communicator, SerialCommunicator
from blackoil.props.fluid import BlackoilProperties
from blackoil.wells.well_model import StandardWells
from blackoil.wells.well_state import WellState
from blackoil.wells.wells import ControlType, Wells

__all__ = ["BlackoilModel"]

logger = logging.getLogger(__name__)

module_sections = ["assembly"]


class _PhaseQuantities:
    """Intermediate quantities of one phase, kept between the assembly steps."""

    def __init__(self) -> None:
        self.accum: list = [None, None]
        """Accumulation at the start (0) and the end (1) of the step."""
        self.b: Optional[AutoDiffBlock] = None
        """Reciprocal formation volume factor."""
        self.mu: Optional[AutoDiffBlock] = None
        self.rho: Optional[AutoDiffBlock] = None
        self.mob: Optional[AutoDiffBlock] = None
        """Mobility, including the transmissibility multiplier."""
        self.dh: Optional[AutoDiffBlock] = None
        """Potential difference on each connection."""
        self.mflux: Optional[AutoDiffBlock] = None
        """Surface volume flux on each connection."""
        self.upwind: Optional[UpwindSelector] = None


class BlackoilModel:
    """Residual assembler and state updater of the black-oil equations.

    Parameters:
        grid: The grid.
        geology: Pore volumes, transmissibilities and gravity.
        props: Fluid and rock properties.
        wells: ``default=None``

            The wells.
        params: ``default=None``

            Run-time parameters, see :func:`~blackoil.params.parameters.default_parameters`.
        linear_solver: ``default=None``

            Object with a method ``compute_newton_increment(residual)`` returning the
            Newton increment and the number of linear iterations. Defaults to
            :class:`~blackoil.linalg.newton_iteration.NewtonIterationBlackoilInterleaved`.
        threshold_pressures: ``default=None``

            Threshold pressure per face of the grid. Used if the parameter
            ``use_threshold_pressure`` is set.
        communicator: ``default=None``

            Global reductions. Defaults to a serial communicator.

    Raises:
        ValueError: If threshold pressures are requested but not given, or have the
            wrong size, or if the upwind scheme is unknown.

    """

    def __init__(
        self,
        grid: Grid,
        geology: DerivedGeology,
        props: BlackoilProperties,
        wells: Optional[Wells] = None,
        params: Optional[dict[str, Any]] = None,
        linear_solver=None,
        threshold_pressures: Optional[np.ndarray] = None,
        communicator: Optional[Communicator] = None,
    ) -> None:
        self.params: dict[str, Any] = merge_parameters(default_parameters(), params)
        """Run-time parameters."""
        self.grid = grid
        """The grid."""
        self.geology = geology
        """Derived geological quantities."""
        self.props = props
        """Fluid and rock properties."""
        self.phase_usage = props.phase_usage
        """Active phases."""
        self.communicator: Communicator = (
            SerialCommunicator() if communicator is None else communicator
        )
        """Global reductions."""

        if linear_solver is None:
            from blackoil.linalg.newton_iteration import (
                NewtonIterationBlackoilInterleaved,
            )

            linear_solver = NewtonIterationBlackoilInterleaved(
                self.params, communicator=self.communicator
            )
        self.linear_solver = linear_solver
        """Linear solver for the Newton increments."""

        nc = grid.num_cells
        pu = self.phase_usage
        self.ops = DiscreteOperators(grid, geology.nnc)
        """Discrete operators on the connections."""
        self.well_model = StandardWells(wells, props, gravity=geology.gravity[2])
        """Well equations."""
        self.primary_variables = PrimaryVariables(
            nc, pu, props.has_disgas, props.has_vapoil
        )
        """Choice of the third primary variable per cell."""

        self.trans_all: np.ndarray = geology.connection_transmissibilities(
            self.ops.internal_faces
        )
        """Transmissibility of each connection."""
        self.dz: np.ndarray = self.ops.ngrad @ geology.z
        """Depth difference of each connection."""
        self._cells = np.arange(nc)
        self._surface_density = {
            phase: props.surface_density(phase, self._cells)
            for phase in pu.active_phases()
        }

        self.upwind_scheme: str = self.params["upwind_scheme"]
        """``phase_potential`` or ``multiphase``."""
        if self.upwind_scheme not in ("phase_potential", "multiphase"):
            raise ValueError(f"Unknown upwind scheme {self.upwind_scheme}.")

        self.use_threshold_pressure: bool = bool(self.params["use_threshold_pressure"])
        """Whether flow is gated by threshold pressures."""
        self.threshold_pressures_by_connection: np.ndarray = np.zeros(
            self.ops.num_connections
        )
        """Threshold pressure per connection, zero on non-neighbouring connections."""
        if threshold_pressures is not None:
            self.set_threshold_pressures(threshold_pressures)
        elif self.use_threshold_pressure:
            raise ValueError("Threshold pressures are activated, but not given.")

        scale = np.asarray(self.params["matbal_scale"], dtype=float)
        if scale.size != bo.MAX_NUM_PHASES:
            raise ValueError("matbal_scale must have one value per canonical phase.")
        self.residual = LinearisedBlackoilResidual(
            material_balance_eq=[],
            well_flux_eq=AutoDiffBlock.constant(np.zeros(0)),
            well_eq=AutoDiffBlock.constant(np.zeros(0)),
            matbal_scale=scale[pu.phase_used].copy(),
        )
        """The residual of the last assembly."""

        self.rq: list[_PhaseQuantities] = [
            _PhaseQuantities() for _ in range(pu.num_phases)
        ]
        """Intermediate quantities per active phase."""
        self.pvdt: np.ndarray = np.zeros(nc)
        """Pore volume divided by the time step."""
        self.residual_norms_history: list[list[float]] = []
        """Residual norms of the nonlinear iterations of the current step."""
        self.current_relaxation: float = 1.0
        """Relaxation factor of the Newton updates."""
        self.dx_old: np.ndarray = np.zeros(0)
        """Previous Newton increment, for SOR relaxation."""
        self.linear_iterations_last_solve: int = 0
        """Iterations spent by the last linear solve."""
        self.global_nc: float = self.communicator.sum(float(nc))
        """Number of cells of the global domain."""

        pos = pu.phase_pos
        self._has_sw = pu.active(bo.WATER) and pu.num_phases > 1
        self._has_x = pu.active(bo.OIL) and pu.active(bo.GAS)
        block = 1
        self._sw_block = block if self._has_sw else -1
        block += int(self._has_sw)
        self._x_block = block if self._has_x else -1
        block += int(self._has_x)
        self._qs_block = block
        self._bhp_block = block + 1
        self._pos = pos

    # ---- Basic attributes

    @property
    def num_phases(self) -> int:
        return self.phase_usage.num_phases

    @property
    def num_cells(self) -> int:
        return self.grid.num_cells

    @property
    def wells_active(self) -> bool:
        return self.well_model.wells_active

    @property
    def has_disgas(self) -> bool:
        return self.props.has_disgas

    @property
    def has_vapoil(self) -> bool:
        return self.props.has_vapoil

    def size_non_linear(self) -> int:
        """Number of unknowns of the nonlinear system."""
        nw = self.well_model.num_wells
        return self.num_phases * self.num_cells + nw * (self.num_phases + 1)

    def set_threshold_pressures(self, threshold_pressures_by_face: np.ndarray) -> None:
        """Threshold pressures per face of the grid, mapped to the connections."""
        thr = np.asarray(threshold_pressures_by_face, dtype=float)
        if thr.size != self.grid.num_faces:
            raise ValueError(
                f"Threshold pressures given for {thr.size} faces, the grid has "
                f"{self.grid.num_faces}."
            )
        if np.any(thr < 0):
            raise ValueError("Threshold pressures must be non-negative.")
        num_internal = self.ops.internal_faces.size
        by_connection = np.zeros(self.ops.num_connections)
        by_connection[:num_internal] = thr[self.ops.internal_faces]
        self.threshold_pressures_by_connection = by_connection

    # ---- Step preparation

    def prepare_step(
        self, dt: float, state: ReservoirState, well_state: WellState
    ) -> None:
        """Once-per-step setup: scaled pore volumes and the hydrocarbon states."""
        if dt <= 0:
            raise ValueError(f"Time step must be positive, got {dt}.")
        self.pvdt = self.geology.pore_volume / dt
        if self._has_x:
            state.hydrocarbon_state = self.primary_variables.classify(
                state.saturation
            ).copy()
        else:
            self.primary_variables.set_state(state.hydrocarbon_state)

    # ---- Primary variables

    def variable_state_initials(
        self, state: ReservoirState, well_state: WellState
    ) -> list[np.ndarray]:
        """Values of the primary variables, ``[p, sw?, x?, qs, bhp]``."""
        pos = self._pos
        pv = self.primary_variables
        vars0 = [state.pressure.copy()]
        if self._has_sw:
            vars0.append(state.saturation[:, pos[bo.WATER]].copy())
        if self._has_x:
            sg = state.saturation[:, pos[bo.GAS]]
            xvar = pv.is_sg * sg
            if self.has_disgas:
                xvar = xvar + pv.is_rs * state.rs
            if self.has_vapoil:
                xvar = xvar + pv.is_rv * state.rv
            vars0.append(xvar)
        if self.wells_active:
            vars0 += self.well_model.variable_well_state_initials(well_state)
        else:
            vars0 += [np.zeros(0), np.zeros(0)]
        return vars0

    @bo.time_logger(sections=module_sections)
    def variable_state(
        self, state: ReservoirState, well_state: WellState
    ) -> SolutionState:
        """Primary variables as independent AD variables, and the quantities derived
        from them."""
        vars0 = self.variable_state_initials(state, well_state)
        variables = AutoDiffBlock.variables(vars0)
        return self.variable_state_extract(variables, state)

    def variable_state_extract(
        self, variables: list[AutoDiffBlock], state: ReservoirState
    ) -> SolutionState:
        """Saturations, phase pressures and dissolution ratios from the primary
        variables."""
        pu = self.phase_usage
        nc = self.num_cells
        pv = self.primary_variables
        pressure = variables[0]
        pattern = pressure.block_pattern
        ones = AutoDiffBlock.constant(np.ones(nc), pattern)

        saturation: list = [None] * bo.MAX_NUM_PHASES
        sw = None
        if self._has_sw:
            sw = variables[self._sw_block]
        elif pu.active(bo.WATER):
            sw = ones
        if sw is not None:
            saturation[bo.WATER] = sw

        remaining = ones - sw if sw is not None and self._has_sw else ones
        xvar = None
        if self._has_x:
            xvar = variables[self._x_block]
            so = remaining
            sg = pv.is_sg * xvar + pv.is_rv * so
            so = so - sg
            saturation[bo.OIL] = so
            saturation[bo.GAS] = sg
        elif pu.active(bo.OIL):
            saturation[bo.OIL] = remaining
        elif pu.active(bo.GAS):
            saturation[bo.GAS] = remaining

        pressures = self.compute_pressures(
            pressure, saturation[bo.WATER], saturation[bo.OIL], saturation[bo.GAS]
        )

        rs = None
        if self.has_disgas:
            rs_sat = self.props.rs_sat(pressure, cells=self._cells)
            rs = (1.0 - pv.is_rs) * rs_sat + pv.is_rs * xvar
        rv = None
        if self.has_vapoil:
            rv_sat = self.props.rv_sat(pressures[bo.GAS], cells=self._cells)
            rv = (1.0 - pv.is_rv) * rv_sat + pv.is_rv * xvar

        return SolutionState(
            pressure=pressure,
            temperature=AutoDiffBlock.constant(state.temperature, pattern),
            saturation=saturation,
            rs=rs,
            rv=rv,
            qs=variables[self._qs_block],
            bhp=variables[self._bhp_block],
            canonical_phase_pressures=pressures,
        )

    def make_constant_state(self, sol: SolutionState) -> SolutionState:
        """Copy of a solution state with all derivatives set to zero."""

        def _const(x):
            return None if x is None else make_constant(x)

        return SolutionState(
            pressure=make_constant(sol.pressure),
            temperature=make_constant(sol.temperature),
            saturation=[_const(s) for s in sol.saturation],
            rs=_const(sol.rs),
            rv=_const(sol.rv),
            qs=_const(sol.qs),
            bhp=_const(sol.bhp),
            canonical_phase_pressures=[
                _const(p) for p in sol.canonical_phase_pressures
            ],
        )

    def compute_pressures(self, po, sw, so, sg) -> list:
        """Pressure of each canonical phase from the oil pressure and the capillary
        pressures, None for inactive phases."""
        pc = self.props.cap_press(sw, so, sg, self._cells)
        pressures: list = [None] * bo.MAX_NUM_PHASES
        for phase in self.phase_usage.active_phases():
            pressures[phase] = po + pc[self._pos[phase]]
        return pressures

    # ---- Fluid properties

    def _fluid_b(self, phase: int, p, rs, rv, cond):
        if phase == bo.WATER:
            return self.props.b_wat(p)
        if phase == bo.OIL:
            return self.props.b_oil(p, rs=rs, cond=cond)
        return self.props.b_gas(p, rv=rv, cond=cond)

    def _fluid_mu(self, phase: int, p, rs, rv, cond):
        if phase == bo.WATER:
            return self.props.mu_wat(p)
        if phase == bo.OIL:
            return self.props.mu_oil(p, rs=rs, cond=cond)
        return self.props.mu_gas(p, rv=rv, cond=cond)

    def _fluid_density(self, phase: int, b, rs, rv):
        rho = b * self._surface_density[phase]
        if phase == bo.OIL and rs is not None and self.phase_usage.active(bo.GAS):
            rho = rho + b * rs * self._surface_density[bo.GAS]
        if phase == bo.GAS and rv is not None and self.phase_usage.active(bo.OIL):
            rho = rho + b * rv * self._surface_density[bo.OIL]
        return rho

    # ---- Accumulation and fluxes

    @bo.time_logger(sections=module_sections)
    def compute_accum(self, sol: SolutionState, aix: int) -> None:
        """Accumulation of each phase at the start (``aix=0``) or end (``aix=1``) of
        the step. The reciprocal formation volume factors are stored as well."""
        pu = self.phase_usage
        pos = self._pos
        cond = self.primary_variables.phase_condition()
        pv_mult = self.props.poro_mult(sol.pressure)

        for phase in pu.active_phases():
            i = pos[phase]
            b = self._fluid_b(
                phase, sol.canonical_phase_pressures[phase], sol.rs, sol.rv, cond
            )
            self.rq[i].b = b
            self.rq[i].accum[aix] = pv_mult * b * sol.saturation[phase]

        if pu.active(bo.OIL) and pu.active(bo.GAS):
            io, ig = pos[bo.OIL], pos[bo.GAS]
            accum_gas = self.rq[ig].accum[aix]
            if sol.rs is not None:
                self.rq[ig].accum[aix] = accum_gas + sol.rs * self.rq[io].accum[aix]
            if sol.rv is not None:
                self.rq[io].accum[aix] = self.rq[io].accum[aix] + sol.rv * accum_gas

    def compute_rel_perm(self, sol: SolutionState) -> list:
        """Relative permeability per canonical phase, None for inactive phases."""
        s = sol.saturation
        kr = self.props.relperm(s[bo.WATER], s[bo.OIL], s[bo.GAS], self._cells)
        out: list = [None] * bo.MAX_NUM_PHASES
        for phase in self.phase_usage.active_phases():
            out[phase] = kr[self._pos[phase]]
        return out

    def compute_phase_potentials(
        self, actph: int, kr, phase_pressure, sol: SolutionState
    ) -> None:
        """Mobility, density and potential difference of an active phase."""
        phase = self.phase_usage.active_phases()[actph]
        cond = self.primary_variables.phase_condition()
        rq = self.rq[actph]
        tr_mult = self.props.trans_mult(sol.pressure)
        rq.mu = self._fluid_mu(phase, phase_pressure, sol.rs, sol.rv, cond)
        rq.mob = tr_mult * kr / rq.mu
        rq.rho = self._fluid_density(phase, rq.b, sol.rs, sol.rv)
        rho_avg = self.ops.caver @ rq.rho
        dh = self.ops.ngrad @ phase_pressure - self.geology.gravity[2] * (
            rho_avg * self.dz
        )
        if self.use_threshold_pressure:
            dh = self.apply_threshold_pressures(dh)
        rq.dh = dh

    def compute_mass_flux(
        self, actph: int, upwind: Optional[UpwindSelector] = None
    ) -> AutoDiffBlock:
        """Upwinded surface volume flux of an active phase.

        Parameters:
            actph: Index of the active phase.
            upwind: ``default=None``

                Upwind selector. Defaults to upwinding by the phase potential.

        """
        rq = self.rq[actph]
        if upwind is None:
            upwind = UpwindSelector(self.ops, rq.dh)
        rq.upwind = upwind
        rq.mflux = upwind.select(rq.b * rq.mob) * (self.trans_all * rq.dh)
        return rq.mflux

    def apply_threshold_pressures(self, dh: AutoDiffBlock) -> AutoDiffBlock:
        """Move potential differences towards zero by the threshold pressure.

        Potential differences below the threshold are set to zero, together with
        their derivatives. The modification is reversible and symmetric in the
        direction of flow.

        """
        thr = self.threshold_pressures_by_connection
        keep = (np.abs(dh.val) >= thr).astype(float)
        modification = np.sign(dh.val) * thr
        return keep * (dh - modification)

    @bo.time_logger(sections=module_sections)
    def assemble_mass_balance_eq(self, sol: SolutionState) -> None:
        pu = self.phase_usage
        pos = self._pos
        self.compute_accum(sol, 1)
        kr = self.compute_rel_perm(sol)
        phases = pu.active_phases()

        for i, phase in enumerate(phases):
            self.compute_phase_potentials(
                i, kr[phase], sol.canonical_phase_pressures[phase], sol
            )

        if self.upwind_scheme == "multiphase" and len(phases) > 1:
            head_diffs = [rq.dh for rq in self.rq]
            mobilities = [rq.mob for rq in self.rq]
            total_flux = np.zeros(self.ops.num_connections)
            for rq in self.rq:
                up = UpwindSelector(self.ops, rq.dh)
                total_flux += up.select(rq.mob.val) * self.trans_all * rq.dh.val
            upwinds = multiphase_upwind(
                self.ops, head_diffs, mobilities, self.trans_all, total_flux
            )
        else:
            upwinds = [None] * len(phases)

        mb = []
        for i in range(len(phases)):
            mflux = self.compute_mass_flux(i, upwinds[i])
            rq = self.rq[i]
            mb.append(self.pvdt * (rq.accum[1] - rq.accum[0]) + self.ops.div @ mflux)

        if pu.active(bo.OIL) and pu.active(bo.GAS):
            io, ig = pos[bo.OIL], pos[bo.GAS]
            if sol.rs is not None:
                rs_face = self.rq[io].upwind.select(sol.rs)
                mb[ig] = mb[ig] + self.ops.div @ (rs_face * self.rq[io].mflux)
            if sol.rv is not None:
                rv_face = self.rq[ig].upwind.select(sol.rv)
                mb[io] = mb[io] + self.ops.div @ (rv_face * self.rq[ig].mflux)

        self.residual.material_balance_eq = mb
        if self.params["update_equations_scaling"]:
            self.update_equations_scaling()

    def update_equations_scaling(self) -> None:
        """Scale the mass balance of each phase by the average of ``1 / b``."""
        for i, rq in enumerate(self.rq):
            B = 1.0 / rq.b.val
            owned = self.communicator.owner_mask(B.size)
            self.residual.matbal_scale[i] = (
                self.communicator.sum(float(B[owned].sum())) / self.global_nc
            )

    # ---- Assembly

    def _well_connection_pressures(
        self, sol: SolutionState, well_state: WellState
    ) -> None:
        cond = self.primary_variables.phase_condition()
        self.well_model.compute_well_connection_pressures(
            sol.pressure.val,
            None if sol.rs is None else sol.rs.val,
            None if sol.rv is None else sol.rv.val,
            cond,
            well_state,
        )

    def _thp_controls_present(self) -> bool:
        if not self.wells_active:
            return False
        return any(
            ctrl.type == ControlType.THP
            for well in self.well_model.wells
            for ctrl in well.controls
        )

    @bo.time_logger(sections=module_sections)
    def assemble(
        self,
        state: ReservoirState,
        well_state: WellState,
        initial_assembly: bool,
    ) -> int:
        """Assemble the residual and Jacobian of all equations.

        Parameters:
            state: Reservoir state at the current iterate.
            well_state: Well state at the current iterate. Controls may be switched.
            initial_assembly: Whether this is the first assembly of the step, in which
                case the accumulation at the start of the step is computed from
                ``state``.

        Returns:
            Number of iterations of the well-only solve.

        """
        if self._thp_controls_present():
            sol = self.make_constant_state(self.variable_state(state, well_state))
            self._well_connection_pressures(sol, well_state)

        self.well_model.update_well_controls(well_state)

        sol = self.variable_state(state, well_state)

        if initial_assembly:
            sol0 = self.make_constant_state(sol)
            self.compute_accum(sol0, 0)
            self._well_connection_pressures(sol0, well_state)

        self.assemble_mass_balance_eq(sol)

        pattern = sol.pressure.block_pattern
        if not self.wells_active:
            self.residual.well_flux_eq = AutoDiffBlock.constant(np.zeros(0), pattern)
            self.residual.well_eq = AutoDiffBlock.constant(np.zeros(0), pattern)
            return 0

        cells = self.well_model.well_cells
        mob_perfcells = [subset(rq.mob, cells) for rq in self.rq]
        b_perfcells = [subset(rq.b, cells) for rq in self.rq]

        well_iterations = 0
        if self.params["solve_welleq_initially"] and initial_assembly:
            well_iterations = self.solve_well_eq(
                mob_perfcells, b_perfcells, sol, well_state
            )

        cq_s, alive = self._compute_well_flux(sol, mob_perfcells, b_perfcells)
        self.well_model.update_perf_phase_rates_and_pressures(
            cq_s, sol.bhp.val, well_state
        )
        self.residual.well_flux_eq = self.well_model.add_well_flux_eq(cq_s, sol.qs)
        self.residual.material_balance_eq = self.well_model.add_well_contributions(
            cq_s, self.residual.material_balance_eq, self.num_cells
        )
        self.residual.well_eq = self.well_model.add_well_control_eq(
            sol.qs, sol.bhp, well_state, alive
        )
        return well_iterations

    def _compute_well_flux(self, sol: SolutionState, mob_perfcells, b_perfcells):
        cells = self.well_model.well_cells
        rs_perf = None if sol.rs is None else subset(sol.rs, cells)
        rv_perf = None if sol.rv is None else subset(sol.rv, cells)
        return self.well_model.compute_well_flux(
            subset(sol.pressure, cells),
            mob_perfcells,
            b_perfcells,
            rs_perf,
            rv_perf,
            sol.qs,
            sol.bhp,
        )

    @bo.time_logger(sections=module_sections)
    def solve_well_eq(
        self,
        mob_perfcells: list[AutoDiffBlock],
        b_perfcells: list[AutoDiffBlock],
        sol: SolutionState,
        well_state: WellState,
    ) -> int:
        """Newton iterations on the well equations alone, with the reservoir frozen.

        On convergence the well unknowns of ``sol`` take the new values, keeping their
        derivatives, and the connection pressures are recomputed. Otherwise the well
        state is restored.

        Returns:
            Number of well iterations.

        """
        wm = self.well_model
        cells = wm.well_cells
        mob_const = [AutoDiffBlock.constant(m.val) for m in mob_perfcells]
        b_const = [AutoDiffBlock.constant(b.val) for b in b_perfcells]
        p_perf = sol.pressure.val[cells]
        rs_perf = None if sol.rs is None else sol.rs.val[cells]
        rv_perf = None if sol.rv is None else sol.rv.val[cells]
        backup = well_state.copy()
        max_iter = int(self.params["max_welleq_iter"])

        it = 0
        while True:
            qs, bhp = AutoDiffBlock.variables(wm.variable_well_state_initials(well_state))
            cq_s, alive = wm.compute_well_flux(
                p_perf, mob_const, b_const, rs_perf, rv_perf, qs, bhp
            )
            wm.update_perf_phase_rates_and_pressures(cq_s, bhp.val, well_state)
            self.residual.well_flux_eq = wm.add_well_flux_eq(cq_s, qs)
            self.residual.well_eq = wm.add_well_control_eq(qs, bhp, well_state, alive)
            converged = self.get_well_convergence(it)
            if converged or it >= max_iter:
                break
            it += 1

            total = vertcat_collapse_jacs(
                [self.residual.well_flux_eq, self.residual.well_eq]
            )
            jac = total.jac[0].to_sparse().tocsc()
            try:
                dx = spla.splu(jac).solve(total.val)
            except RuntimeError as err:
                raise bo.NumericalProblem(
                    f"Singular well equations in well iteration {it}."
                ) from err
            wm.update_well_state(dx, self.params["dbhp_max_rel"], well_state)
            wm.update_well_controls(well_state)

        if converged:
            logger.debug(f"Well equations converged in {it} iterations")
            sol.bhp = AutoDiffBlock(well_state.bhp.copy(), sol.bhp.jac)
            sol.qs = AutoDiffBlock(well_state.rates_phase_major(), sol.qs.jac)
            self._well_connection_pressures(sol, well_state)
        else:
            logger.debug(f"Well equations did not converge in {it} iterations")
            well_state.assign(backup)
        return it

    # ---- Convergence

    def compute_residual_norms(self) -> list[float]:
        """Maximum norm of the mass balance of each phase, the well flux equations and
        the control equations.

        Raises:
            NumericalProblem: If a norm is not finite.

        """
        comm = self.communicator
        norms = []
        for eq in self.residual.material_balance_eq:
            owned = comm.owner_mask(eq.size)
            local = float(np.max(np.abs(eq.val[owned]))) if np.any(owned) else 0.0
            norms.append(comm.max(local))
        for eq in (self.residual.well_flux_eq, self.residual.well_eq):
            local = float(np.max(np.abs(eq.val))) if eq.size > 0 else 0.0
            norms.append(comm.max(local))
        if not np.all(np.isfinite(norms)):
            raise bo.NumericalProblem("Encountered a non-finite residual.")
        return norms

    def _convergence_reduction(self):
        """Global averages of ``1 / b``, maxima of the pore volume scaled residuals,
        residual sums and well flux norms per phase, and the total pore volume."""
        comm = self.communicator
        pv = self.geology.pore_volume
        owned = comm.owner_mask(pv.size)
        nw = self.well_model.num_wells
        well_flux = self.residual.well_flux_eq.val

        B_avg, max_coeff, R_sum, max_norm_well = [], [], [], []
        for i, rq in enumerate(self.rq):
            B = 1.0 / rq.b.val[owned]
            R = self.residual.material_balance_eq[i].val[owned]
            tempV = np.abs(R) / pv[owned]
            B_avg.append(comm.sum(float(B.sum())) / self.global_nc)
            max_coeff.append(comm.max(float(tempV.max()) if tempV.size else 0.0))
            R_sum.append(comm.sum(float(R.sum())))
            rows = well_flux[i * nw : (i + 1) * nw]
            max_norm_well.append(
                comm.max(float(np.max(np.abs(rows))) if rows.size else 0.0)
            )
        pv_sum = comm.sum(float(pv[owned].sum()))
        return (
            np.array(B_avg),
            np.array(max_coeff),
            np.array(R_sum),
            np.array(max_norm_well),
            pv_sum,
        )

    def _well_control_norm(self) -> float:
        eq = self.residual.well_eq
        local = float(np.max(np.abs(eq.val))) if eq.size > 0 else 0.0
        return self.communicator.max(local)

    @bo.time_logger(sections=module_sections)
    def get_convergence(self, dt: float, iteration: int) -> bool:
        """Check the convergence of the last assembled residual.

        Per phase, the mass balance error ``|B_avg * sum(R)| * dt / sum(pv)``, the
        maximum normalised residual ``B_avg * dt * max(|R| / pv)`` and the well flux
        residual ``B_avg * max|R_w|`` are compared with their tolerances, and the
        control equations with ``tolerance_well_control``.

        Raises:
            NumericalProblem: If a residual is NaN or exceeds ``max_residual_allowed``.

        """
        prm = self.params
        B_avg, max_coeff, R_sum, max_norm_well, pv_sum = self._convergence_reduction()

        cnv = B_avg * dt * max_coeff
        mass_balance = np.abs(B_avg * R_sum) * dt / pv_sum
        well_flux = B_avg * max_norm_well
        residual_well = self._well_control_norm()

        converged_mb = bool(np.all(mass_balance < prm["tolerance_mb"]))
        converged_cnv = bool(np.all(cnv < prm["tolerance_cnv"]))
        converged_well = bool(np.all(well_flux < prm["tolerance_wells"])) and (
            residual_well < prm["tolerance_well_control"]
        )

        self._check_residuals(mass_balance, cnv, well_flux, residual_well)

        names = [bo.PHASE_NAMES[p] for p in self.phase_usage.active_phases()]
        if iteration == 0:
            header = "Iter"
            header += "".join(f"   MB({n[:3]}) " for n in names)
            header += "".join(f"    CNV({n[0]}) " for n in names)
            header += "".join(f"  W-FLUX({n[0]})" for n in names)
            logger.info(header)
        line = f"{iteration:4d}"
        for values in (mass_balance, cnv, well_flux):
            line += "".join(f"{v:11.3e}" for v in values)
        logger.info(line)

        return converged_mb and converged_cnv and converged_well

    def _check_residuals(self, mass_balance, cnv, well_flux, residual_well) -> None:
        max_allowed = self.params["max_residual_allowed"]
        for i, phase in enumerate(self.phase_usage.active_phases()):
            name = bo.PHASE_NAMES[phase]
            values = [mass_balance[i], cnv[i], well_flux[i]]
            if any(np.isnan(v) for v in values):
                raise bo.NumericalProblem(f"NaN residual for phase {name}.")
            if any(v > max_allowed for v in values):
                raise bo.NumericalProblem(f"Too large residual for phase {name}.")
        # Control equations of pressure controlled wells are in Pascal.
        if np.isnan(residual_well) or residual_well > 1000.0 * max_allowed:
            raise bo.NumericalProblem(
                "NaN or too large residual for well control equation."
            )

    def get_well_convergence(self, iteration: int) -> bool:
        """Convergence check of the well equations alone."""
        prm = self.params
        B_avg, _, _, max_norm_well, _ = self._convergence_reduction()
        well_flux = B_avg * max_norm_well
        residual_well = self._well_control_norm()
        max_allowed = prm["max_residual_allowed"]
        for i, phase in enumerate(self.phase_usage.active_phases()):
            name = bo.PHASE_NAMES[phase]
            if np.isnan(well_flux[i]):
                raise bo.NumericalProblem(f"NaN well residual for phase {name}.")
            if well_flux[i] > max_allowed:
                raise bo.NumericalProblem(f"Too large well residual for phase {name}.")
        logger.debug(
            f"Well iteration {iteration}: flux residuals {well_flux}, control "
            f"residual {residual_well:.3e}"
        )
        return bool(np.all(well_flux < prm["tolerance_wells"])) and (
            residual_well < prm["tolerance_well_control"]
        )

    # ---- Linear solve and update

    @bo.time_logger(sections=module_sections)
    def solve_jacobian_system(self) -> np.ndarray:
        """Newton increment of the last assembled system."""
        dx, iterations = self.linear_solver.compute_newton_increment(self.residual)
        self.linear_iterations_last_solve = int(iterations)
        return dx

    def _gas_pressure(self, p: np.ndarray, saturation: np.ndarray) -> np.ndarray:
        pu = self.phase_usage
        sats = [
            saturation[:, self._pos[phase]] if pu.active(phase) else None
            for phase in range(bo.MAX_NUM_PHASES)
        ]
        pc = self.props.cap_press(*sats, self._cells)
        return p + pc[self._pos[bo.GAS]]

    @bo.time_logger(sections=module_sections)
    def update_state(
        self, dx: np.ndarray, state: ReservoirState, well_state: WellState
    ) -> None:
        """Apply a Newton increment to the reservoir and well state.

        The pressure change is limited to ``dp_max_rel`` times the pressure, and the
        pressure kept non-negative. The saturation changes are scaled so that no
        saturation changes by more than ``ds_max``; negative saturations are then
        chopped (Appleyard). Changes of the dissolution ratios are limited to
        ``dr_max_rel`` times their value. Finally the hydrocarbon states are updated.

        Raises:
            ShapeError: If the increment has the wrong size.

        """
        pu = self.phase_usage
        pos = self._pos
        nc = self.num_cells
        dx = np.asarray(dx, dtype=float)
        if dx.size != self.size_non_linear():
            raise bo.ShapeError(
                f"Newton increment has size {dx.size}, expected "
                f"{self.size_non_linear()}."
            )
        pv = self.primary_variables
        zero = np.zeros(nc)

        start = 0
        dp = dx[start : start + nc]
        start += nc
        dsw = zero
        if self._has_sw:
            dsw = dx[start : start + nc]
            start += nc
        dxvar = zero
        if self._has_x:
            dxvar = dx[start : start + nc]
            start += nc
        dwells = dx[start:]

        # Pressure
        p_old = state.pressure.copy()
        dp_limited = np.sign(dp) * np.minimum(
            np.abs(dp), self.params["dp_max_rel"] * np.abs(p_old)
        )
        p = np.maximum(p_old - dp_limited, 0.0)

        # Saturations
        s_old = state.saturation.copy()

        def _column(phase):
            return s_old[:, pos[phase]] if pu.active(phase) else zero

        if self._has_x:
            dsg = pv.is_sg * dxvar - pv.is_rv * dsw
        elif pu.active(bo.GAS) and self._has_sw:
            dsg = -dsw
        else:
            dsg = zero
        dso = -dsw - dsg if pu.active(bo.OIL) else zero

        max_val = np.maximum(np.maximum(np.abs(dsw), np.abs(dsg)), np.abs(dso))
        step = np.ones(nc)
        moving = max_val > 0
        step[moving] = np.minimum(self.params["ds_max"] / max_val[moving], 1.0)

        sw = _column(bo.WATER) - step * dsw
        sg = _column(bo.GAS) - step * dsg
        so = _column(bo.OIL) - step * dso

        # Appleyard chop
        neg = sg < 0
        sw[neg] = sw[neg] / (1.0 - sg[neg])
        so[neg] = so[neg] / (1.0 - sg[neg])
        sg[neg] = 0.0
        neg = so < 0
        sw[neg] = sw[neg] / (1.0 - so[neg])
        sg[neg] = sg[neg] / (1.0 - so[neg])
        so[neg] = 0.0
        neg = sw < 0
        so[neg] = so[neg] / (1.0 - sw[neg])
        sg[neg] = sg[neg] / (1.0 - sw[neg])
        sw[neg] = 0.0

        saturation = s_old.copy()
        for phase, s in zip((bo.WATER, bo.OIL, bo.GAS), (sw, so, sg)):
            if pu.active(phase):
                saturation[:, pos[phase]] = s

        # Dissolution ratios
        drmaxrel = self.params["dr_max_rel"]
        rs_old = state.rs.copy()
        rv_old = state.rv.copy()
        rs = rs_old.copy()
        rv = rv_old.copy()
        if self.has_disgas:
            drs = pv.is_rs * dxvar
            rs = rs_old - np.sign(drs) * np.minimum(np.abs(drs), np.abs(rs_old) * drmaxrel)
        if self.has_vapoil:
            drv = pv.is_rv * dxvar
            rv = rv_old - np.sign(drv) * np.minimum(np.abs(drv), np.abs(rv_old) * drmaxrel)

        if self._has_x:
            rs_sat = rs_sat_old = rv_sat = rv_sat_old = zero
            if self.has_disgas:
                rs_sat_old = self.props.rs_sat(p_old, cells=self._cells)
                rs_sat = self.props.rs_sat(p, cells=self._cells)
            if self.has_vapoil:
                rv_sat_old = self.props.rv_sat(
                    self._gas_pressure(p_old, s_old), cells=self._cells
                )
                rv_sat = self.props.rv_sat(
                    self._gas_pressure(p, saturation), cells=self._cells
                )
            saturation, rs, rv = pv.switch(
                saturation, rs, rv, rs_old, rv_old, rs_sat, rs_sat_old, rv_sat, rv_sat_old
            )
        else:
            saturation = np.maximum(saturation, 0.0)
            total = saturation.sum(axis=1)
            saturation /= np.where(total > 0, total, 1.0)[:, None]

        state.pressure = p
        state.saturation = saturation
        state.rs = rs
        state.rv = rv
        state.hydrocarbon_state = pv.hydrocarbon_state.copy()

        self.well_model.update_well_state(
            dwells, self.params["dbhp_max_rel"], well_state
        )

    def relative_change(
        self, previous: ReservoirState, current: ReservoirState
    ) -> float:
        """Squared norm of the change of pressure and saturations, relative to the
        squared norm of the current values. Zero if the current values vanish."""
        comm = self.communicator
        owned = comm.owner_mask(current.num_cells)
        dp = (previous.pressure - current.pressure)[owned]
        ds = (previous.saturation - current.saturation)[owned]
        state_old = comm.sum(float(np.sum(dp**2) + np.sum(ds**2)))
        state_new = comm.sum(
            float(
                np.sum(current.pressure[owned] ** 2)
                + np.sum(current.saturation[owned] ** 2)
            )
        )
        if state_new > 0.0:
            return state_old / state_new
        return 0.0

    # ---- Nonlinear iteration

    def nonlinear_iteration(
        self,
        iteration: int,
        dt: float,
        nonlinear_solver,
        state: ReservoirState,
        well_state: WellState,
    ) -> IterationReport:
        """One Newton iteration: assemble, check convergence, and update the state
        unless converged.

        Parameters:
            iteration: Index of the iteration within the step. Iteration zero resets
                the residual history and the relaxation.
            dt: Time step.
            nonlinear_solver: The calling solver, providing the iteration limits and
                the relaxation.
            state: Reservoir state, updated in place.
            well_state: Well state, updated in place.

        """
        report = IterationReport()
        if iteration == 0:
            self.residual_norms_history = []
            self.current_relaxation = 1.0
            self.dx_old = np.zeros(self.size_non_linear())

        tic = time.perf_counter()
        report.well_iterations = self.assemble(state, well_state, iteration == 0)
        self.residual_norms_history.append(self.compute_residual_norms())
        converged = self.get_convergence(dt, iteration)
        report.assemble_time = time.perf_counter() - tic
        report.converged = converged

        must_solve = iteration < nonlinear_solver.min_iter or not converged
        if must_solve:
            tic = time.perf_counter()
            dx = self.solve_jacobian_system()
            report.linear_solve_time = time.perf_counter() - tic
            report.linear_iterations = self.linear_iterations_last_solve

            tic = time.perf_counter()
            oscillate, _ = nonlinear_solver.detect_oscillations(
                self.residual_norms_history, iteration
            )
            if oscillate:
                self.current_relaxation = max(
                    self.current_relaxation - nonlinear_solver.relax_increment,
                    nonlinear_solver.relax_max,
                )
                logger.info(
                    "Oscillating behavior detected: Relaxation set to "
                    f"{self.current_relaxation}"
                )
            dx, self.dx_old = nonlinear_solver.stabilize_nonlinear_update(
                dx, self.dx_old, self.current_relaxation
            )
            self.update_state(dx, state, well_state)
            report.update_time = time.perf_counter() - tic
        return report

    def after_step(
        self, dt: float, state: ReservoirState, well_state: WellState
    ) -> None:
        """Hook called after a converged step."""
        state.hydrocarbon_state = self.primary_variables.hydrocarbon_state.copy()

    # ---- Fluid in place

    def compute_fluid_in_place(
        self, state: ReservoirState, regions: Optional[np.ndarray] = None
    ) -> dict[int, FluidInPlace]:
        """Surface volumes of water, oil and gas in place per region.

        Parameters:
            state: Reservoir state.
            regions: ``default=None``

                Non-negative region index per cell. All cells form region zero if not
                given.

        Returns:
            Fluid in place per region index.

        """
        pu = self.phase_usage
        pos = self._pos
        nc = self.num_cells
        regions = (
            np.zeros(nc, dtype=int) if regions is None else np.asarray(regions, int)
        )
        if regions.size != nc or np.any(regions < 0):
            raise ValueError("Regions must be given as non-negative index per cell.")

        pv = PrimaryVariables(nc, pu, self.has_disgas, self.has_vapoil)
        pv.set_state(state.hydrocarbon_state)
        cond = pv.phase_condition()
        p = state.pressure
        sats = [
            state.saturation[:, pos[ph]] if pu.active(ph) else None
            for ph in range(bo.MAX_NUM_PHASES)
        ]
        pc = self.props.cap_press(*sats, self._cells)
        rs = state.rs if self.has_disgas else None
        rv = state.rv if self.has_vapoil else None

        pore_volume = self.geology.pore_volume * self.props.poro_mult(p)
        surface = np.zeros((nc, bo.MAX_NUM_PHASES))
        for phase in pu.active_phases():
            b = self._fluid_b(phase, p + pc[pos[phase]], rs, rv, cond)
            surface[:, phase] = pore_volume * b * sats[phase]
        oil_free = surface[:, bo.OIL].copy()
        gas_free = surface[:, bo.GAS].copy()
        if rs is not None:
            surface[:, bo.GAS] += rs * oil_free
        if rv is not None:
            surface[:, bo.OIL] += rv * gas_free

        hc = np.zeros(nc)
        for phase in (bo.OIL, bo.GAS):
            if pu.active(phase):
                hc += sats[phase]
        hcpv = pore_volume * hc

        fip = {}
        for region in np.unique(regions):
            cells = regions == region
            weight = hcpv[cells] if hcpv[cells].sum() > 0 else pore_volume[cells]
            pressure = (
                float(np.sum(weight * p[cells]) / weight.sum())
                if weight.sum() > 0
                else 0.0
            )
            fip[int(region)] = FluidInPlace(
                water=float(surface[cells, bo.WATER].sum()),
                oil=float(surface[cells, bo.OIL].sum()),
                gas=float(surface[cells, bo.GAS].sum()),
                pore_volume=float(pore_volume[cells].sum()),
                pressure=pressure,
            )
        return fip

    def __repr__(self) -> str:
        return (
            f"BlackoilModel with {self.num_cells} cells, {self.num_phases} phases "
            f"and {self.well_model.num_wells} wells"
        )
