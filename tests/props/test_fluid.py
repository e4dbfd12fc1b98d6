"""Tests of the property evaluation on AD expressions."""
from __future__ import annotations

import numpy as np
import pytest

import blackoil as bo
from blackoil.ad.forward_mode import AutoDiffBlock
from blackoil.props.pvt import (
    PvdTable,
    PvtConstantCompressibilityWater,
    PvtDeadOil,
    PvtDryGas,
    PvtLiveOil,
    PvtoTable,
    WaterPvtRecord,
)

SWOF = bo.SwofTable([0.0, 1.0], [0.0, 1.0], [1.0, 0.0], [0.0, 0.0])
SGOF = bo.SgofTable([0.0, 1.0], [0.0, 1.0], [1.0, 0.0], [0.0, 0.0])
WATER = PvtConstantCompressibilityWater(WaterPvtRecord(1e5, 1.0, 1e-9, 1e-3))


def _two_phase():
    pu = bo.PhaseUsage(gas=False)
    oil = PvtDeadOil(PvdTable([1e5, 2e7], [1.2, 1.1], [1e-3, 1.2e-3]))
    return bo.BlackoilProperties(
        pu,
        {bo.WATER: WATER, bo.OIL: oil},
        bo.SaturationFunctions(pu, swof=SWOF),
        [1000.0, 800.0, 1.0],
    )


def _three_phase(**kwargs):
    pu = bo.PhaseUsage()
    oil = PvtLiveOil(PvtoTable([0.0, 100.0], [1e5, 1e7], [1.0, 1.2], [2e-3, 1e-3]))
    gas = PvtDryGas(PvdTable([1e5, 1e7], [0.1, 0.01], [1e-5, 2e-5]))
    return bo.BlackoilProperties(
        pu,
        {bo.WATER: WATER, bo.OIL: oil, bo.GAS: gas},
        bo.SaturationFunctions(pu, swof=SWOF, sgof=SGOF),
        [1000.0, 800.0, 1.0],
        **kwargs,
    )


def test_chain_rule_through_pressure():
    props = _two_phase()
    p, sw = AutoDiffBlock.variables([np.array([1e5, 1.1e7]), np.array([0.2, 0.4])])
    b = props.b_wat(p)
    assert isinstance(b, AutoDiffBlock)
    _, dbdp, _ = WATER.b(p.val, None, None, 0)
    np.testing.assert_allclose(b.jac[0].diagonal(), dbdp)
    assert b.jac[1].nnz == 0

    # Plain arrays give plain arrays.
    b_arr = props.b_oil(np.array([1e5]))
    assert isinstance(b_arr, np.ndarray)
    np.testing.assert_allclose(b_arr, [1.0 / 1.2])


def test_inactive_phase():
    props = _two_phase()
    with pytest.raises(bo.PhaseNotPresent):
        props.b_gas(np.array([1e5]))
    with pytest.raises(bo.PhaseNotPresent):
        props.surface_density(bo.GAS)
    assert not props.has_disgas
    assert not props.has_vapoil


def test_missing_pvt_model():
    pu = bo.PhaseUsage(gas=False)
    with pytest.raises(ValueError):
        bo.BlackoilProperties(
            pu, {bo.WATER: WATER}, bo.SaturationFunctions(pu, swof=SWOF), [1, 1, 1]
        )


def test_relperm_chains_through_all_saturations():
    props = _two_phase()
    sw, so = AutoDiffBlock.variables([np.array([0.25]), np.array([0.75])])
    krw, kro = props.relperm(sw=sw, so=so)
    np.testing.assert_allclose(krw.val, [0.25])
    np.testing.assert_allclose(kro.val, [0.75])
    np.testing.assert_allclose(kro.full_jacobian().toarray(), [[-1.0, 0.0]])
    with pytest.raises(ValueError):
        props.relperm(sw=sw)


def test_dissolution_and_presence():
    props = _three_phase()
    assert props.has_disgas and not props.has_vapoil
    (po,) = AutoDiffBlock.variables([np.array([5.05e6])])
    rs = props.rs_sat(po)
    np.testing.assert_allclose(rs.val, [50.0])
    np.testing.assert_allclose(rs.jac[0].diagonal(), [100.0 / (1e7 - 1e5)])
    np.testing.assert_allclose(props.rv_sat(np.array([5.05e6])), [0.0])

    # Presence given on all cells is restricted to the evaluated cells.
    cond = bo.PhasePresence(3)
    cond.free_gas[:] = [True, False, True]
    b = props.b_oil(np.array([6.05e6]), rs=np.array([50.0]), cond=cond, cells=np.array([1]))
    b_sat = 0.5 * (1.0 + 1.0 / 1.2)
    np.testing.assert_allclose(b, [b_sat])


def test_saturated_ratio_of_evaluated_cells():
    oil = PvtLiveOil(
        [
            PvtoTable([0.0, 100.0], [1e5, 1e7], [1.0, 1.2], [2e-3, 1e-3]),
            PvtoTable([0.0, 200.0], [1e5, 1e7], [1.0, 1.3], [2e-3, 1e-3]),
        ]
    )
    gas = PvtDryGas(PvdTable([1e5, 1e7], [0.1, 0.01], [1e-5, 2e-5]))
    pu = bo.PhaseUsage(water=False)
    props = bo.BlackoilProperties(
        pu,
        {bo.OIL: oil, bo.GAS: gas},
        bo.SaturationFunctions(pu, sgof=SGOF),
        [1000.0, 800.0, 1.0],
        pvt_region=np.array([0, 1, 1]),
    )
    p = np.array([5.05e6])
    # The second positional argument selects the cells.
    np.testing.assert_allclose(props.rs_sat(p, np.array([0])), [50.0])
    np.testing.assert_allclose(props.rs_sat(p, cells=np.array([2])), [100.0])
    np.testing.assert_allclose(props.rv_sat(p, np.array([0])), [0.0])


def test_surface_density_and_regions():
    props = _three_phase(pvt_region=np.array([0, 0, 0]))
    np.testing.assert_allclose(props.surface_density(bo.OIL), [800.0] * 3)
    np.testing.assert_allclose(props.surface_density(bo.GAS, cells=[1]), [1.0])
    np.testing.assert_allclose(_two_phase().surface_density(bo.WATER, cells=[0, 1]), [1e3] * 2)


def test_rock_compressibility():
    props = _three_phase(rock_compressibility=bo.RockCompressibility(1e5, 1e-9))
    (p,) = AutoDiffBlock.variables([np.array([1e5 + 1e7])])
    mult = props.poro_mult(p)
    x = 1e-9 * 1e7
    np.testing.assert_allclose(mult.val, [1 + x + 0.5 * x**2])
    np.testing.assert_allclose(mult.jac[0].diagonal(), [1e-9 * (1 + x)])
    np.testing.assert_allclose(props.trans_mult(p).val, [1.0])
    np.testing.assert_allclose(_two_phase().poro_mult(p), [1.0])
