"""Tests of the residual assembly, convergence checks and state updates of the
black-oil model.

Most tests use a water-oil fluid with constant formation volume factors and linear
relative permeabilities on a horizontal 1D grid, so that fluxes can be written down
directly. The Jacobians are checked against finite differences of the residual.
"""
from __future__ import annotations

import numpy as np
import pytest

import blackoil as bo
from blackoil.params.geology import DerivedGeology
from blackoil.params.rock import RockProperties
from blackoil.props.pvt import (
    PvdTable,
    PvtConstantCompressibilityWater,
    PvtDeadOil,
    PvtDryGas,
    PvtLiveOil,
    PvtoTable,
    WaterPvtRecord,
)

PU2 = bo.PhaseUsage(gas=False)
PU3 = bo.PhaseUsage()
NC = 5
DT = bo.DAY
SWOF = bo.SwofTable([0.0, 1.0], [0.0, 1.0], [1.0, 0.0], [0.0, 0.0])
SGOF = bo.SgofTable([0.0, 1.0], [0.0, 1.0], [1.0, 0.0], [0.0, 0.0])


def two_phase_props(compressibility=0.0):
    water = PvtConstantCompressibilityWater(
        WaterPvtRecord(1e5, 1.0, compressibility, 1e-3)
    )
    oil = PvtDeadOil(PvdTable([1e5, 1e8], [1.0, 1.0], [1e-3, 1e-3]))
    return bo.BlackoilProperties(
        PU2,
        {bo.WATER: water, bo.OIL: oil},
        bo.SaturationFunctions(PU2, swof=SWOF),
        [1000.0, 800.0, 1.0],
    )


def three_phase_props():
    water = PvtConstantCompressibilityWater(WaterPvtRecord(1e5, 1.0, 1e-9, 1e-3))
    oil = PvtLiveOil(PvtoTable([0.0, 100.0], [1e5, 1e7], [1.0, 1.2], [2e-3, 1e-3]))
    gas = PvtDryGas(PvdTable([1e5, 1e7], [0.1, 0.01], [1e-5, 2e-5]))
    return bo.BlackoilProperties(
        PU3,
        {bo.WATER: water, bo.OIL: oil, bo.GAS: gas},
        bo.SaturationFunctions(PU3, swof=SWOF, sgof=SGOF),
        [1000.0, 800.0, 1.0],
    )


def geology(vertical=False):
    if vertical:
        g = bo.CartGrid([1, 1, NC], physdims=[1.0, 1.0, 100.0])
    else:
        g = bo.CartGrid([NC], physdims=[100.0])
    rock = RockProperties(0.2 * np.ones(NC), 1e-13 * np.ones(NC))
    return g, DerivedGeology(g, rock)


def make_model(props=None, wells=None, params=None, vertical=False, **kwargs):
    props = two_phase_props() if props is None else props
    g, geo = geology(vertical)
    if callable(wells):
        wells = wells(props.phase_usage, geo.z)
    return bo.BlackoilModel(g, geo, props, wells=wells, params=params, **kwargs)


def two_phase_state(pressure=1e7, sw=0.5):
    p = np.broadcast_to(np.asarray(pressure, dtype=float), (NC,)).copy()
    sw = np.broadcast_to(np.asarray(sw, dtype=float), (NC,))
    return bo.ReservoirState.init(p, np.column_stack((sw, 1.0 - sw)))


def linear_pressure():
    return np.linspace(2e7, 1e7, NC)


def injector_and_producer(pu, z):
    inj = bo.Well(
        "INJ",
        bo.WellType.INJECTOR,
        [0],
        [1e-12],
        [bo.WellControl(bo.ControlType.SURFACE_RATE, 1e-4, distr=[1.0, 0.0])],
        comp_frac=[1.0, 0.0, 0.0],
    )
    prod = bo.Well(
        "PROD",
        bo.WellType.PRODUCER,
        [NC - 1],
        [1e-12],
        [bo.WellControl(bo.ControlType.BHP, 8e6)],
    )
    return bo.Wells([inj, prod], pu, cell_depths=z)


def assemble(model, state, well_state=None):
    if well_state is None:
        well_state = bo.WellState.init(model.well_model.wells, state.pressure)
    model.prepare_step(DT, state, well_state)
    model.assemble(state, well_state, True)
    return well_state


def jacobian(model):
    return np.vstack(
        [eq.full_jacobian().toarray() for eq in model.residual.material_balance_eq]
    )


def residual_values(model):
    return np.concatenate([eq.val for eq in model.residual.material_balance_eq])


def finite_difference_jacobian(model, state, well_state, perturb, num_vars, eps):
    """Columns of the cell Jacobian by forward differences, perturbing one primary
    variable of one cell at a time."""
    base = residual_values(model)
    columns = []
    for var in range(num_vars):
        for c in range(NC):
            perturbed = state.copy()
            perturb(perturbed, var, c, eps[var])
            model.assemble(perturbed, well_state.copy(), False)
            columns.append((residual_values(model) - base) / eps[var])
    model.assemble(state, well_state.copy(), False)
    return np.column_stack(columns)


class TestConstruction:
    def test_sizes(self):
        model = make_model()
        assert model.num_phases == 2
        assert model.num_cells == NC
        assert not model.wells_active
        assert model.size_non_linear() == 2 * NC
        assert "5 cells" in repr(model)

        model = make_model(wells=injector_and_producer)
        assert model.wells_active
        assert model.size_non_linear() == 2 * NC + 2 * 3

    def test_invalid_parameters(self):
        with pytest.raises(ValueError):
            make_model(params={"upwind_scheme": "central"})
        with pytest.raises(ValueError):
            make_model(params={"use_threshold_pressure": True})
        with pytest.raises(ValueError):
            make_model(params={"matbal_scale": [1.0, 1.0]})

    def test_threshold_pressure_validation(self):
        model = make_model()
        num_faces = model.grid.num_faces
        with pytest.raises(ValueError):
            model.set_threshold_pressures(np.zeros(num_faces + 1))
        with pytest.raises(ValueError):
            model.set_threshold_pressures(-np.ones(num_faces))

    def test_prepare_step(self):
        model = make_model()
        state = two_phase_state()
        well_state = bo.WellState.init(None, state.pressure)
        with pytest.raises(ValueError):
            model.prepare_step(0.0, state, well_state)
        model.prepare_step(2.0, state, well_state)
        np.testing.assert_allclose(model.pvdt, model.geology.pore_volume / 2.0)


class TestAssembly:
    def test_primary_variables(self):
        model = make_model(wells=injector_and_producer)
        state = two_phase_state(linear_pressure(), np.linspace(0.1, 0.5, NC))
        well_state = bo.WellState.init(model.well_model.wells, state.pressure)
        p, sw, qs, bhp = model.variable_state_initials(state, well_state)
        np.testing.assert_allclose(p, state.pressure)
        np.testing.assert_allclose(sw, state.saturation[:, 0])
        assert qs.size == 4 and bhp.size == 2

    def test_equilibrium_has_zero_residual(self):
        model = make_model()
        assemble(model, two_phase_state())
        for eq in model.residual.material_balance_eq:
            assert eq.size == NC
            np.testing.assert_allclose(eq.val, 0.0, atol=1e-20)
        assert model.residual.well_flux_eq.size == 0
        assert model.residual.well_eq.size == 0
        assert model.compute_residual_norms() == [0.0, 0.0, 0.0, 0.0]
        assert model.get_convergence(DT, 0)

    def test_fluxes_of_linear_pressure(self):
        model = make_model()
        assemble(model, two_phase_state(linear_pressure()))
        trans = model.trans_all
        np.testing.assert_allclose(trans, trans[0])
        # Mobility 0.5 / 1e-3 and unit b for both phases.
        flux = 500.0 * trans[0] * 2.5e6
        for eq in model.residual.material_balance_eq:
            expected = np.zeros(NC)
            expected[0], expected[-1] = flux, -flux
            np.testing.assert_allclose(eq.val, expected, rtol=1e-10, atol=1e-12 * flux)
        assert not model.get_convergence(DT, 0)

    def test_multiphase_upwind_agrees_for_cocurrent_flow(self):
        reference = make_model()
        assemble(reference, two_phase_state(linear_pressure()))
        model = make_model(params={"upwind_scheme": "multiphase"})
        assemble(model, two_phase_state(linear_pressure()))
        np.testing.assert_allclose(residual_values(model), residual_values(reference))

    def test_threshold_pressure_blocks_flow(self):
        g, _ = geology()
        thr = np.full(g.num_faces, 5e6)
        model = make_model(
            params={"use_threshold_pressure": True}, threshold_pressures=thr
        )
        assemble(model, two_phase_state(linear_pressure()))
        np.testing.assert_allclose(residual_values(model), 0.0, atol=1e-20)

        # Below the potential difference, the flux is reduced by the threshold.
        model.set_threshold_pressures(np.full(g.num_faces, 1e6))
        assemble(model, two_phase_state(linear_pressure()))
        flux = 500.0 * model.trans_all[0] * 1.5e6
        np.testing.assert_allclose(
            model.residual.material_balance_eq[0].val[0], flux, rtol=1e-10
        )

    def test_residual_too_large(self):
        model = make_model(params={"max_residual_allowed": 1e-30})
        assemble(model, two_phase_state(linear_pressure()))
        with pytest.raises(bo.NumericalProblem):
            model.get_convergence(DT, 0)

    def test_non_finite_residual(self):
        model = make_model()
        assemble(model, two_phase_state(linear_pressure()))
        model.residual.material_balance_eq[0].val[2] = np.nan
        with pytest.raises(bo.NumericalProblem):
            model.compute_residual_norms()

    @pytest.mark.parametrize("vertical", [False, True])
    def test_two_phase_jacobian(self, vertical):
        model = make_model(two_phase_props(compressibility=1e-9), vertical=vertical)
        state = two_phase_state(linear_pressure(), np.linspace(0.2, 0.6, NC))
        well_state = assemble(model, state)

        def perturb(s, var, c, eps):
            if var == 0:
                s.pressure[c] += eps
            else:
                s.saturation[c, 0] += eps
                s.saturation[c, 1] -= eps

        fd = finite_difference_jacobian(model, state, well_state, perturb, 2, [1e2, 1e-7])
        J = jacobian(model)
        assert J.shape == (2 * NC, 2 * NC)
        np.testing.assert_allclose(J, fd, rtol=1e-4, atol=1e-6 * np.abs(J).max())

    def test_three_phase_jacobian(self):
        model = make_model(three_phase_props(), vertical=True)
        p = np.linspace(6e6, 4e6, NC)
        sw = np.full(NC, 0.25)
        sg = np.linspace(0.1, 0.3, NC)
        state = bo.ReservoirState.init(
            p, np.column_stack((sw, 1.0 - sw - sg, sg)), rs=model.props.rs_sat(p)
        )
        well_state = assemble(model, state)
        np.testing.assert_array_equal(
            state.hydrocarbon_state, bo.HydroCarbonState.GasAndOil
        )

        def perturb(s, var, c, eps):
            if var == 0:
                s.pressure[c] += eps
            else:
                column = 0 if var == 1 else 2
                s.saturation[c, column] += eps
                s.saturation[c, 1] -= eps

        fd = finite_difference_jacobian(
            model, state, well_state, perturb, 3, [1e2, 1e-7, 1e-7]
        )
        J = jacobian(model)
        assert J.shape == (3 * NC, 3 * NC)
        np.testing.assert_allclose(J, fd, rtol=1e-4, atol=1e-6 * np.abs(J).max())

    def test_three_phase_switching_variable(self):
        model = make_model(three_phase_props())
        p = np.full(NC, 5.05e6)
        sat = np.tile([0.2, 0.5, 0.3], (NC, 1))
        sat[0] = [0.2, 0.8, 0.0]
        rs = np.full(NC, 50.0)
        rs[0] = 30.0
        state = bo.ReservoirState.init(p, sat, rs=rs)
        well_state = assemble(model, state)
        assert state.hydrocarbon_state[0] == bo.HydroCarbonState.OilOnly
        assert np.all(state.hydrocarbon_state[1:] == bo.HydroCarbonState.GasAndOil)
        xvar = model.variable_state_initials(state, well_state)[2]
        np.testing.assert_allclose(xvar, [30.0, 0.3, 0.3, 0.3, 0.3])
        # Uniform pressure in a horizontal grid: no flow.
        assert np.all(np.isfinite(residual_values(model)))
        np.testing.assert_allclose(residual_values(model), 0.0, atol=1e-14)

    def test_well_equations_solved_initially(self):
        model = make_model(wells=injector_and_producer)
        state = two_phase_state()
        well_state = bo.WellState.init(model.well_model.wells, state.pressure)
        model.prepare_step(DT, state, well_state)
        iterations = model.assemble(state, well_state, True)
        assert iterations >= 1
        assert model.residual.well_flux_eq.size == 4
        assert model.residual.well_eq.size == 2
        assert model.get_well_convergence(iterations)
        # The producer draws water and oil from the last cell.
        assert well_state.bhp[1] == pytest.approx(8e6)
        assert np.all(well_state.well_rates[1] < 0)
        assert well_state.well_rates[0, 0] == pytest.approx(1e-4)

    def test_equations_scaling(self):
        model = make_model(params={"update_equations_scaling": True})
        assemble(model, two_phase_state())
        np.testing.assert_allclose(model.residual.matbal_scale, [1.0, 1.0])


class TestUpdate:
    def _model_and_states(self, params=None):
        model = make_model(params=params)
        state = two_phase_state(1e7, 0.5)
        well_state = bo.WellState.init(None, state.pressure)
        model.prepare_step(DT, state, well_state)
        return model, state, well_state

    def test_saturation_change_limited(self):
        model, state, well_state = self._model_and_states()
        dx = np.zeros(2 * NC)
        dx[NC] = -0.5
        dx[NC + 1] = 0.1
        model.update_state(dx, state, well_state)
        np.testing.assert_allclose(state.saturation[0], [0.7, 0.3])
        np.testing.assert_allclose(state.saturation[1], [0.4, 0.6])
        np.testing.assert_allclose(state.saturation.sum(axis=1), 1.0)

    def test_pressure_change_limited(self):
        model, state, well_state = self._model_and_states({"dp_max_rel": 0.5})
        dx = np.zeros(2 * NC)
        dx[0] = -1e7
        dx[1] = 1e6
        model.update_state(dx, state, well_state)
        assert state.pressure[0] == pytest.approx(1.5e7)
        assert state.pressure[1] == pytest.approx(9e6)
        np.testing.assert_allclose(state.pressure[2:], 1e7)

    def test_pressure_non_negative(self):
        model, state, well_state = self._model_and_states()
        dx = np.zeros(2 * NC)
        dx[0] = 2e7
        model.update_state(dx, state, well_state)
        assert state.pressure[0] == 0.0

    def test_appleyard_chop(self):
        model = make_model(params={"ds_max": 1.0})
        state = two_phase_state(1e7, 0.1)
        well_state = bo.WellState.init(None, state.pressure)
        model.prepare_step(DT, state, well_state)
        dx = np.zeros(2 * NC)
        dx[NC] = 0.3
        model.update_state(dx, state, well_state)
        np.testing.assert_allclose(state.saturation[0], [0.0, 1.0])
        assert np.all(state.saturation >= 0)

    def test_wrong_size(self):
        model, state, well_state = self._model_and_states()
        with pytest.raises(bo.ShapeError):
            model.update_state(np.zeros(2 * NC + 1), state, well_state)

    def test_relative_change(self):
        model, state, _ = self._model_and_states()
        assert model.relative_change(state, state.copy()) == 0.0
        current = state.copy()
        current.pressure *= 2.0
        expected = np.sum(state.pressure**2) / (
            np.sum(current.pressure**2) + np.sum(current.saturation**2)
        )
        assert model.relative_change(state, current) == pytest.approx(expected)
        empty = bo.ReservoirState(NC, 2)
        assert model.relative_change(state, empty) == 0.0

    def test_relative_change_of_owned_cells(self):
        class FirstCellOwned(bo.SerialCommunicator):
            def owner_mask(self, n):
                mask = np.zeros(n, dtype=bool)
                mask[0] = True
                return mask

        g, geo = geology()
        model = bo.BlackoilModel(
            g, geo, two_phase_props(), communicator=FirstCellOwned()
        )
        state = two_phase_state(1e7, 0.5)
        current = state.copy()
        # Changes in cells owned by other processes are not counted.
        current.pressure[1:] = 0.0
        assert model.relative_change(state, current) == 0.0


class TestFluidInPlace:
    def test_single_region(self):
        model = make_model()
        state = two_phase_state(1e7, 0.25)
        fip = model.compute_fluid_in_place(state)
        assert list(fip) == [0]
        pv = model.geology.pore_volume.sum()
        assert fip[0].pore_volume == pytest.approx(pv)
        assert fip[0].water == pytest.approx(0.25 * pv)
        assert fip[0].oil == pytest.approx(0.75 * pv)
        assert fip[0].gas == 0.0
        assert fip[0].pressure == pytest.approx(1e7)

    def test_regions(self):
        model = make_model()
        state = two_phase_state(linear_pressure(), 0.5)
        fip = model.compute_fluid_in_place(state, np.array([0, 0, 2, 2, 2]))
        assert sorted(fip) == [0, 2]
        pv = model.geology.pore_volume
        assert fip[0].pore_volume == pytest.approx(pv[:2].sum())
        assert fip[2].pressure == pytest.approx(linear_pressure()[2:].mean())
        with pytest.raises(ValueError):
            model.compute_fluid_in_place(state, np.array([0, 0, -1, 1, 1]))
        with pytest.raises(ValueError):
            model.compute_fluid_in_place(state, np.zeros(NC + 1, dtype=int))

    def test_dissolved_gas(self):
        model = make_model(three_phase_props())
        p = np.full(NC, 5.05e6)
        sat = np.tile([0.2, 0.8, 0.0], (NC, 1))
        rs = np.full(NC, 40.0)
        state = bo.ReservoirState.init(p, sat, rs=rs)
        state.hydrocarbon_state[:] = bo.HydroCarbonState.OilOnly
        fip = model.compute_fluid_in_place(state)[0]
        assert fip.oil > 0
        assert fip.gas == pytest.approx(40.0 * fip.oil)
