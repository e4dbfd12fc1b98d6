"""Tests of the hydrocarbon state classification and the phase transitions."""
from __future__ import annotations

import numpy as np
import pytest

import blackoil as bo
from blackoil.models.primary_variables import HydroCarbonState


def _pv(num_cells, **kwargs):
    return bo.PrimaryVariables(num_cells, bo.PhaseUsage(), **kwargs)


class TestClassify:
    def test_dissolved_gas(self):
        pv = _pv(3, has_disgas=True)
        s = np.array([[1.0, 0.0, 0.0], [0.2, 0.8, 0.0], [0.2, 0.5, 0.3]])
        state = pv.classify(s)
        np.testing.assert_array_equal(
            state,
            [HydroCarbonState.GasAndOil, HydroCarbonState.OilOnly, HydroCarbonState.GasAndOil],
        )
        np.testing.assert_allclose(pv.is_rs, [0.0, 1.0, 0.0])
        np.testing.assert_allclose(pv.is_sg + pv.is_rs + pv.is_rv, 1.0)

    def test_vaporised_oil(self):
        pv = _pv(2, has_disgas=True, has_vapoil=True)
        state = pv.classify(np.array([[0.2, 0.0, 0.8], [0.2, 0.8, 0.0]]))
        np.testing.assert_array_equal(
            state, [HydroCarbonState.GasOnly, HydroCarbonState.OilOnly]
        )

    def test_without_dissolution(self):
        pv = _pv(1)
        state = pv.classify(np.array([[0.2, 0.8, 0.0]]))
        np.testing.assert_array_equal(state, [HydroCarbonState.GasAndOil])

    def test_without_gas(self):
        pv = bo.PrimaryVariables(2, bo.PhaseUsage(gas=False))
        assert not pv.oil_and_gas
        np.testing.assert_array_equal(pv.classify(np.array([[0.5, 0.5], [1.0, 0.0]])), 0)
        cond = pv.phase_condition()
        assert np.all(cond.free_oil) and not np.any(cond.free_gas)
        assert np.all(cond.free_water)


def test_phase_condition():
    pv = _pv(3, has_disgas=True, has_vapoil=True)
    pv.set_state(np.array([0, 1, 2]))
    cond = pv.phase_condition()
    np.testing.assert_array_equal(cond.free_oil, [True, True, False])
    np.testing.assert_array_equal(cond.free_gas, [True, False, True])
    with pytest.raises(bo.ShapeError):
        pv.set_state(np.zeros(2))


def test_switch_with_dissolved_gas():
    pv = _pv(5, has_disgas=True)
    pv.set_state(np.array([0, 1, 1, 0, 0]))
    s = np.array(
        [
            # Gas disappeared
            [0.2, 0.8, 0.0],
            # Undersaturated cell pushed above the saturated ratio
            [0.2, 0.8, 0.0],
            # Undersaturated cell staying undersaturated
            [0.2, 0.8, 0.0],
            # Water filled
            [1.0, 0.0, 0.0],
            # Free gas remains
            [0.2, 0.5, 0.3],
        ]
    )
    rs = np.array([50.0, 120.0, 80.0, 30.0, 90.0])
    rs_old = np.array([100.0, 100.0, 80.0, 30.0, 90.0])
    rs_sat = np.full(5, 100.0)
    zero = np.zeros(5)

    sat, rs_new, rv_new = pv.switch(s, rs, zero, rs_old, zero, rs_sat, rs_sat, zero, zero)
    np.testing.assert_array_equal(
        pv.hydrocarbon_state,
        [
            HydroCarbonState.OilOnly,
            HydroCarbonState.GasAndOil,
            HydroCarbonState.OilOnly,
            HydroCarbonState.GasAndOil,
            HydroCarbonState.GasAndOil,
        ],
    )
    np.testing.assert_allclose(rs_new, [100.0, 100.0, 80.0, 0.0, 100.0])
    np.testing.assert_allclose(rv_new, 0.0)
    np.testing.assert_allclose(sat.sum(axis=1), 1.0)
    np.testing.assert_allclose(sat[3], [1.0, 0.0, 0.0])
    np.testing.assert_allclose(sat[4], [0.2, 0.5, 0.3])
    # Inputs are not modified.
    np.testing.assert_allclose(rs, [50.0, 120.0, 80.0, 30.0, 90.0])


def test_switch_with_vaporised_oil():
    pv = _pv(2, has_vapoil=True)
    pv.set_state(np.array([0, 2]))
    s = np.array([[0.2, 0.0, 0.8], [0.2, 0.1, 0.7]])
    rv = np.array([1e-5, 1e-5])
    rv_sat = np.full(2, 1e-4)
    zero = np.zeros(2)
    # The second cell was gas only, and its oil saturation is dropped.
    sat, _, rv_new = pv.switch(s, zero, rv, zero, rv, zero, zero, rv_sat, rv_sat)
    np.testing.assert_array_equal(
        pv.hydrocarbon_state, [HydroCarbonState.GasOnly, HydroCarbonState.GasOnly]
    )
    np.testing.assert_allclose(rv_new, [1e-4, 1e-5])
    np.testing.assert_allclose(sat[1], [0.2 / 0.9, 0.0, 0.7 / 0.9])


def test_switch_without_oil_and_gas():
    pv = bo.PrimaryVariables(2, bo.PhaseUsage(gas=False))
    s = np.array([[0.3, 0.7], [0.6, 0.4]])
    rs = np.array([1.0, 2.0])
    sat, rs_new, _ = pv.switch(s, rs, rs, rs, rs, rs, rs, rs, rs)
    np.testing.assert_allclose(sat, s)
    np.testing.assert_allclose(rs_new, rs)
