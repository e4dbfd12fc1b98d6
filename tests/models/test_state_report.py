"""Tests of the state containers, the linearised residual and the reports."""
from __future__ import annotations

import numpy as np
import pytest

import blackoil as bo
from blackoil.ad.forward_mode import AutoDiffBlock


class TestReservoirState:
    def test_init(self):
        state = bo.ReservoirState.init(
            [1e7, 2e7], [[0.2, 0.8], [0.5, 0.5]], rs=10.0, temperature=350.0
        )
        assert state.num_cells == 2 and state.num_phases == 2
        np.testing.assert_allclose(state.rs, [10.0, 10.0])
        np.testing.assert_allclose(state.rv, [0.0, 0.0])
        np.testing.assert_allclose(state.temperature, [350.0, 350.0])
        np.testing.assert_array_equal(state.hydrocarbon_state, 0)

    def test_single_phase_saturation(self):
        state = bo.ReservoirState.init(np.full(3, 1e7), np.ones(3))
        assert state.saturation.shape == (3, 1)

    @pytest.mark.parametrize(
        "saturation",
        [
            [[0.2, 0.8]],
            [[0.2, 0.8], [-0.1, 1.1]],
            [[0.2, 0.7], [0.5, 0.5]],
        ],
    )
    def test_invalid(self, saturation):
        with pytest.raises(ValueError):
            bo.ReservoirState.init([1e7, 2e7], saturation)

    def test_copy_is_deep(self):
        state = bo.ReservoirState.init([1e7], [[0.3, 0.7]])
        other = state.copy()
        other.pressure[0] = 0.0
        other.saturation[0, 0] = 1.0
        assert state.pressure[0] == 1e7
        assert state.saturation[0, 0] == 0.3

        state.assign(other)
        assert state.pressure[0] == 0.0
        assert state.saturation is not other.saturation


class TestResidual:
    def _residual(self, num_wells=0):
        mb = [AutoDiffBlock.constant(np.ones(3)), AutoDiffBlock.constant(np.zeros(3))]
        return bo.LinearisedBlackoilResidual(
            material_balance_eq=mb,
            well_flux_eq=AutoDiffBlock.constant(np.zeros(2 * num_wells)),
            well_eq=AutoDiffBlock.constant(np.zeros(num_wells)),
            matbal_scale=np.ones(2),
        )

    def test_size(self):
        res = self._residual()
        assert res.num_phases == 2
        assert not res.has_wells
        assert res.size() == 6
        assert len(res.equations()) == 4

        res = self._residual(num_wells=2)
        assert res.has_wells
        assert res.size() == 12

    def test_is_finite(self):
        res = self._residual()
        assert res.is_finite()
        res.material_balance_eq[1] = AutoDiffBlock.constant(np.array([0.0, np.nan, 0.0]))
        assert not res.is_finite()


def test_simulation_report_accumulation():
    total = bo.SimulationReport()
    total += bo.SimulationReport(
        assemble_time=1.0, newton_iterations=3, linear_iterations=10, converged=True
    )
    total += bo.SimulationReport(
        assemble_time=0.5, newton_iterations=2, well_iterations=4, failed=True
    )
    assert total.newton_iterations == 5
    assert total.linear_iterations == 10
    assert total.well_iterations == 4
    assert total.assemble_time == pytest.approx(1.5)
    assert not total.converged
    assert total.failed
    assert "Newton iterations: 5" in total.summary()


def test_snapshot():
    state = bo.ReservoirState.init([1e7, 2e7], [[0.2, 0.8], [0.5, 0.5]])
    well_state = bo.WellState.init(None, state.pressure)
    fip = {0: bo.FluidInPlace(water=1.0, oil=2.0, gas=0.0, pore_volume=4.0, pressure=1e7)}
    snap = bo.StateSnapshot.from_state(3, 10 * bo.DAY, state, well_state, fip)
    state.pressure[0] = 0.0
    assert snap.pressure[0] == 1e7

    data = snap.to_dict()
    assert int(data["report_step"]) == 3
    assert float(data["time"]) == pytest.approx(10 * bo.DAY)
    np.testing.assert_allclose(data["fip_0"], [1.0, 2.0, 0.0, 4.0, 1e7])
    assert data["bhp"].size == 0
    assert "10 days" in repr(snap)
