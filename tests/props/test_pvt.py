"""Tests of the phase PVT models."""
from __future__ import annotations

import numpy as np
import pytest

import blackoil as bo
from blackoil.props.pvt import (
    PvdTable,
    PvtConstantCompressibilityWater,
    PvtDeadOil,
    PvtgTable,
    PvtLiveOil,
    PvtoTable,
    PvtWetGas,
    WaterPvtRecord,
)

P_REF = 1e5


def _presence(n, free_oil=True, free_gas=True):
    cond = bo.PhasePresence(n)
    cond.free_oil[:] = free_oil
    cond.free_gas[:] = free_gas
    return cond


class TestWater:
    def test_reference_values(self):
        pvt = PvtConstantCompressibilityWater(
            WaterPvtRecord(P_REF, 1.02, 4e-10, 5e-4, 0.0)
        )
        b, dbdp, dbdr = pvt.b(np.array([P_REF]), None, None, np.zeros(1))
        np.testing.assert_allclose(b, [1.0 / 1.02])
        np.testing.assert_allclose(dbdp, [4e-10 / 1.02])
        np.testing.assert_allclose(dbdr, [0.0])
        mu, dmudp, _ = pvt.mu(np.array([P_REF + 1e7]), None, None, np.zeros(1))
        np.testing.assert_allclose(mu, [5e-4])
        np.testing.assert_allclose(dmudp, [0.0])

    def test_quadratic_expansion(self):
        c = 1e-9
        pvt = PvtConstantCompressibilityWater([WaterPvtRecord(P_REF, 1.0, c, 1e-3)])
        b, dbdp, _ = pvt.b(np.array([P_REF + 1e7]), None, None, 0)
        x = c * 1e7
        np.testing.assert_allclose(b, [1.0 + x + 0.5 * x**2])
        np.testing.assert_allclose(dbdp, [c * (1.0 + x)])

    def test_regions(self):
        pvt = PvtConstantCompressibilityWater(
            [WaterPvtRecord(P_REF, 1.0, 0.0, 1e-3), WaterPvtRecord(P_REF, 2.0, 0.0, 1e-3)]
        )
        b, _, _ = pvt.b(np.full(3, P_REF), None, None, np.array([0, 1, 0]))
        np.testing.assert_allclose(b, [1.0, 0.5, 1.0])
        with pytest.raises(ValueError):
            pvt.b(np.full(2, P_REF), None, None, np.array([0, 2]))

    def test_invalid_record(self):
        with pytest.raises(ValueError):
            PvtConstantCompressibilityWater(WaterPvtRecord(P_REF, 0.0, 0.0, 1e-3))


def test_dead_oil_interpolates_inverse_fvf():
    table = PvdTable([1e5, 2e7], [1.2, 1.1], [1e-3, 1.2e-3])
    pvt = PvtDeadOil(table)
    p = np.array([0.5 * (1e5 + 2e7)])
    b, dbdp, _ = pvt.b(p, None, None, 0)
    np.testing.assert_allclose(b, [0.5 * (1 / 1.2 + 1 / 1.1)])
    np.testing.assert_allclose(dbdp, [(1 / 1.1 - 1 / 1.2) / (2e7 - 1e5)])
    mu, _, _ = pvt.mu(p, None, None, 0)
    np.testing.assert_allclose(mu, [1.1e-3])
    assert not pvt.has_dissolution
    rs, drs = pvt.r_sat(p, 0)
    np.testing.assert_allclose(rs, [0.0])

    with pytest.raises(ValueError):
        PvdTable([1e5, 2e7], [1.2], [1e-3, 1e-3])
    with pytest.raises(ValueError):
        PvdTable([1e5, 2e7], [1.2, -1.0], [1e-3, 1e-3])


class TestLiveOil:
    @pytest.fixture
    def pvt(self):
        table = PvtoTable(
            rs=[0.0, 100.0],
            bubble_pressure=[1e5, 1e7],
            formation_volume_factor=[1.0, 1.2],
            viscosity=[2e-3, 1e-3],
            compressibility=1e-9,
            viscosibility=2e-9,
        )
        return PvtLiveOil(table)

    def test_saturated_ratio(self, pvt):
        pb = 0.5 * (1e5 + 1e7)
        rs, drs = pvt.r_sat(np.array([pb, 0.0]), 0)
        np.testing.assert_allclose(rs, [50.0, 0.0])
        np.testing.assert_allclose(drs, [100.0 / (1e7 - 1e5), 0.0])
        assert pvt.has_dissolution

    def test_saturated_branch(self, pvt):
        pb = 0.5 * (1e5 + 1e7)
        b, _, dbdr = pvt.b(np.array([pb]), np.array([50.0]), _presence(1), 0)
        np.testing.assert_allclose(b, [0.5 * (1.0 + 1.0 / 1.2)])
        np.testing.assert_allclose(dbdr, [0.0])

    def test_undersaturated_branch(self, pvt):
        pb = 0.5 * (1e5 + 1e7)
        b_sat = 0.5 * (1.0 + 1.0 / 1.2)
        cond = _presence(1, free_gas=False)
        b, dbdp, dbdr = pvt.b(np.array([pb + 1e6]), np.array([50.0]), cond, 0)
        np.testing.assert_allclose(b, [b_sat * (1.0 + 1e-9 * 1e6)])
        np.testing.assert_allclose(dbdp, [b_sat * 1e-9])
        # Compare the rs derivative with a difference quotient.
        eps = 1e-3
        b2, _, _ = pvt.b(np.array([pb + 1e6]), np.array([50.0 + eps]), cond, 0)
        np.testing.assert_allclose(dbdr, (b2 - b) / eps, rtol=1e-5)

        mu, dmudp, _ = pvt.mu(np.array([pb + 1e6]), np.array([50.0]), cond, 0)
        np.testing.assert_allclose(mu, [1.5e-3 * (1.0 + 2e-9 * 1e6)])
        np.testing.assert_allclose(dmudp, [1.5e-3 * 2e-9])

    def test_table_checks(self):
        with pytest.raises(ValueError):
            PvtoTable([0.0, 100.0], [1e5], [1.0, 1.2], [1e-3, 1e-3])
        with pytest.raises(ValueError):
            PvtoTable([100.0, 0.0], [1e5, 1e7], [1.0, 1.2], [1e-3, 1e-3])


class TestWetGas:
    @pytest.fixture
    def pvt(self):
        table = PvtgTable(
            pressure=[1e5, 1e7],
            rv=[0.0, 1e-4],
            formation_volume_factor=[0.1, 0.01],
            viscosity=[1e-5, 2e-5],
            dry_formation_volume_factor=[0.11, 0.011],
        )
        return PvtWetGas(table)

    def test_saturated(self, pvt):
        b, _, dbdr = pvt.b(np.array([1e7]), np.array([1e-4]), _presence(1), 0)
        np.testing.assert_allclose(b, [100.0])
        np.testing.assert_allclose(dbdr, [0.0])
        rv, _ = pvt.r_sat(np.array([1e7]), 0)
        np.testing.assert_allclose(rv, [1e-4])

    def test_undersaturated_interpolates_between_dry_and_saturated(self, pvt):
        cond = _presence(1, free_oil=False)
        b, _, dbdr = pvt.b(np.array([1e7]), np.array([5e-5]), cond, 0)
        dry = 1.0 / 0.011
        np.testing.assert_allclose(b, [dry + 0.5 * (100.0 - dry)])
        np.testing.assert_allclose(dbdr, [(100.0 - dry) / 1e-4])
        # Viscosity without a dry column is the saturated one.
        mu, _, dmudr = pvt.mu(np.array([1e7]), np.array([5e-5]), cond, 0)
        np.testing.assert_allclose(mu, [2e-5])
        np.testing.assert_allclose(dmudr, [0.0])

    def test_column_lengths(self):
        with pytest.raises(ValueError):
            PvtgTable([1e5, 1e7], [0.0], [0.1, 0.01], [1e-5, 2e-5])
