"""Tests of the static well description, the well state and the VFP tables."""
from __future__ import annotations

import numpy as np
import pytest

import blackoil as bo
from blackoil.ad.forward_mode import initAdArrays
from blackoil.wells.vfp import FloType, VFPInjTable, VFPProdTable, flo_weights

PU = bo.PhaseUsage(gas=False)


def _wells():
    inj = bo.Well(
        "INJ",
        bo.WellType.INJECTOR,
        [0],
        [1e-12],
        [bo.WellControl(bo.ControlType.SURFACE_RATE, 1e-3, distr=[1.0, 0.0])],
        comp_frac=[1.0, 0.0, 0.0],
    )
    prod = bo.Well(
        "PROD",
        bo.WellType.PRODUCER,
        [3, 4],
        [1e-12, 2e-12],
        [bo.WellControl(bo.ControlType.BHP, 1e7)],
    )
    return bo.Wells([inj, prod], PU, cell_depths=np.arange(5, dtype=float))


class TestWells:
    def test_perforation_maps(self):
        wells = _wells()
        assert wells.num_wells == 2 and len(wells) == 2
        assert wells.num_perforations == 3
        np.testing.assert_array_equal(wells.well_connpos, [0, 1, 3])
        np.testing.assert_array_equal(wells.well_cells, [0, 3, 4])
        np.testing.assert_array_equal(wells.perf_well, [0, 1, 1])
        np.testing.assert_allclose(wells.p2w @ np.array([1.0, 2.0, 3.0]), [1.0, 5.0])
        np.testing.assert_allclose(wells.w2p @ np.array([1.0, 2.0]), [1.0, 2.0, 2.0])
        np.testing.assert_allclose(wells.ref_depth, [0.0, 3.0])
        np.testing.assert_allclose(wells.perf_depth, [0.0, 3.0, 4.0])
        np.testing.assert_array_equal(wells.is_injector, [True, False])
        assert wells.index("PROD") == 1
        with pytest.raises(KeyError):
            wells.index("OBS")

    def test_composition(self):
        wells = _wells()
        np.testing.assert_allclose(wells.comp_frac, [[1.0, 0.0], [0.5, 0.5]])

    def test_distr(self):
        wells = _wells()
        np.testing.assert_allclose(wells.distr(1, wells[1].controls[0]), [1.0, 1.0])
        ctrl = bo.WellControl(bo.ControlType.SURFACE_RATE, 1.0, distr=[1.0, 0.0, 0.0])
        with pytest.raises(bo.WellControlInfeasible):
            wells.distr(0, ctrl)

    def test_invalid_input(self):
        with pytest.raises(ValueError):
            bo.Well("W", bo.WellType.PRODUCER, [], [])
        with pytest.raises(ValueError):
            bo.Well("W", bo.WellType.PRODUCER, [0, 1], [1.0])
        with pytest.raises(ValueError):
            bo.Well("W", bo.WellType.PRODUCER, [0], [-1.0])
        well = bo.Well("W", bo.WellType.PRODUCER, [7], [1.0])
        with pytest.raises(ValueError):
            bo.Wells([well], PU, np.zeros(5))
        ok = bo.Well("W", bo.WellType.PRODUCER, [0], [1.0])
        with pytest.raises(ValueError):
            bo.Wells([ok, ok], PU, np.zeros(5))
        gas_only = bo.Well("G", bo.WellType.INJECTOR, [0], [1.0], comp_frac=[0, 0, 1])
        with pytest.raises(ValueError):
            bo.Wells([gas_only], PU, np.zeros(5))


class TestWellState:
    def test_init_from_controls(self):
        wells = _wells()
        pressure = np.full(5, 2e7)
        ws = bo.WellState.init(wells, pressure)
        # Injector on rate control starts above the cell pressure at its target.
        np.testing.assert_allclose(ws.bhp, [1.01 * 2e7, 1e7])
        np.testing.assert_allclose(ws.well_rates[0], [1e-3, 0.0])
        assert np.all(ws.well_rates[1] < 0)
        np.testing.assert_allclose(ws.perf_press, [2e7, 2e7, 2e7])
        np.testing.assert_array_equal(ws.current_controls, [0, 0])
        np.testing.assert_allclose(
            ws.rates_phase_major(), [1e-3, ws.well_rates[1, 0], 0.0, ws.well_rates[1, 1]]
        )

    def test_previous_state_is_kept(self):
        wells = _wells()
        ws = bo.WellState.init(wells, np.full(5, 2e7))
        ws.bhp[1] = 5e6
        ws.current_controls[0] = 0
        again = bo.WellState.init(wells, np.full(5, 1e7), previous=ws)
        assert again.bhp[1] == 5e6
        assert again.bhp is not ws.bhp

    def test_copy_and_empty(self):
        ws = bo.WellState.init(_wells(), np.full(5, 2e7))
        other = ws.copy()
        other.bhp[0] = 0.0
        assert ws.bhp[0] != 0.0
        assert bo.WellState.init(None, np.zeros(5)).num_wells == 0


class TestVFP:
    def _table(self, cls=VFPProdTable):
        return cls(
            1,
            0.0,
            FloType.OIL,
            np.array([0.0, 1e-2]),
            np.array([1e6, 2e6]),
            np.array([[2e6, 3e6], [4e6, 5e6]]),
        )

    def test_bhp_and_inverse(self):
        table = self._table()
        flo = table.flo(np.array([-5e-3]))
        np.testing.assert_allclose(flo, [5e-3])
        np.testing.assert_allclose(table.bhp(flo, 1.5e6), [3.5e6])
        np.testing.assert_allclose(table.thp(flo, 3.5e6), [1.5e6])
        inj = self._table(VFPInjTable)
        np.testing.assert_allclose(inj.flo(np.array([5e-3])), [5e-3])

    def test_bhp_derivative(self):
        table = self._table()
        (q,) = initAdArrays([np.array([-5e-3])])
        bhp = table.bhp(table.flo(q), 1.5e6)
        np.testing.assert_allclose(bhp.val, [3.5e6])
        # d bhp / d flo = 2e8, and flo = -q
        np.testing.assert_allclose(bhp.jac[0].diagonal(), [-2e8])

    def test_table_checks(self):
        with pytest.raises(ValueError):
            VFPProdTable(1, 0.0, FloType.OIL, [0.0, 1.0], [1.0, 2.0], np.zeros((3, 2)))
        table = VFPProdTable(
            2, 0.0, FloType.OIL, [0.0, 1.0], [1.0, 2.0], np.array([[2.0, 1.0], [2.0, 1.0]])
        )
        with pytest.raises(bo.NumericalProblem):
            table.thp(np.array([0.5]), 1.5)

    def test_flo_weights(self):
        np.testing.assert_allclose(flo_weights(FloType.LIQ, [True, True, False]), [1, 1])
        np.testing.assert_allclose(flo_weights(FloType.GAS, [True, True, True]), [0, 0, 1])
        np.testing.assert_allclose(flo_weights(FloType.TOTAL, [False, True, True]), [1, 1])
