"""Depletion of a saturated oil below its bubble point.

The oil starts without free gas, with the dissolved gas-oil ratio at saturation. A
producer lowers the pressure, gas comes out of solution and the cells switch from
oil only to gas and oil.
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
    PvtDryGas,
    PvtLiveOil,
    PvtoTable,
    WaterPvtRecord,
)

NX = 4
PU = bo.PhaseUsage()


@pytest.fixture
def case():
    water = PvtConstantCompressibilityWater(WaterPvtRecord(1e5, 1.0, 1e-9, 1e-3))
    oil = PvtLiveOil(PvtoTable([0.0, 100.0], [1e5, 1e7], [1.0, 1.2], [2e-3, 1e-3]))
    gas = PvtDryGas(PvdTable([1e5, 1e7], [0.1, 0.01], [1e-5, 2e-5]))
    swof = bo.SwofTable([0.0, 1.0], [0.0, 1.0], [1.0, 0.0], [0.0, 0.0])
    sgof = bo.SgofTable([0.0, 1.0], [0.0, 1.0], [1.0, 0.0], [0.0, 0.0])
    props = bo.BlackoilProperties(
        PU,
        {bo.WATER: water, bo.OIL: oil, bo.GAS: gas},
        bo.SaturationFunctions(PU, swof=swof, sgof=sgof),
        [1000.0, 800.0, 1.0],
    )
    g = bo.CartGrid([NX, 1, 1], physdims=[40.0, 10.0, 10.0])
    rock = RockProperties(0.2 * np.ones(NX), 1e-13 * np.ones(NX))
    geology = DerivedGeology(g, rock, gravity=[0.0, 0.0, 0.0])
    wells = bo.Wells(
        [
            bo.Well(
                "PROD",
                bo.WellType.PRODUCER,
                [NX - 1],
                [1e-13],
                [bo.WellControl(bo.ControlType.BHP, 3e6)],
            )
        ],
        PU,
        cell_depths=geology.z,
    )
    model = bo.BlackoilModel(g, geology, props, wells=wells)

    p = np.full(NX, 8e6)
    saturation = np.tile([0.2, 0.8, 0.0], (NX, 1))
    state = bo.ReservoirState.init(p, saturation, rs=props.rs_sat(p))
    well_state = bo.WellState.init(wells, p)
    return model, state, well_state


def surface_volumes(model, state):
    fip = model.compute_fluid_in_place(state)[0]
    return np.array([fip.water, fip.oil, fip.gas]), fip.pore_volume


def test_conservation_through_phase_change(case):
    model, state, well_state = case
    solver = bo.NonlinearSolver(model)
    for dt in [0.01 * bo.DAY, 0.1 * bo.DAY, 0.5 * bo.DAY]:
        before, pore_volume = surface_volumes(model, state)
        report = solver.step(dt, state, well_state)
        assert report.converged
        after, _ = surface_volumes(model, state)
        produced = dt * well_state.perf_phase_rates.sum(axis=0)
        np.testing.assert_allclose(after - before, produced, atol=1e-6 * pore_volume)
    assert np.all(well_state.perf_phase_rates[:, 1:] < 0)


def test_gas_comes_out_of_solution(case):
    model, state, well_state = case
    assert state.rs[0] == pytest.approx(100.0 * 7.9 / 9.9)
    sim = bo.Simulator(
        model,
        bo.NonlinearSolver(model),
        schedule=bo.DAY * np.array([0.0, 5.0, 20.0]),
    )
    snapshots = sim.run(state, well_state)

    sg = state.saturation[:, 2]
    assert np.all(sg > 0)
    np.testing.assert_array_equal(
        state.hydrocarbon_state, bo.HydroCarbonState.GasAndOil
    )
    assert np.all(state.saturation >= 0)
    np.testing.assert_allclose(state.saturation.sum(axis=1), 1.0)
    assert np.all(state.rs <= model.props.rs_sat(state.pressure) + 1e-8)
    assert np.all((state.pressure > 3e6) & (state.pressure < 8e6))

    oil = [s.fip[0].oil for s in snapshots]
    gas = [s.fip[0].gas for s in snapshots]
    assert oil[1] < oil[0] and gas[1] < gas[0]
