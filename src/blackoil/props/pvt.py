"""PVT models of the water, oil and gas phases.

Every model evaluates viscosity ``mu`` and reciprocal formation volume factor ``b``
cell-wise, given pressure, the dissolution ratio of the phase (``rs`` for oil, ``rv``
for gas; ignored by models without dissolution), the phase presence and the PVT
region. The result is a tuple ``(value, d/dp, d/dr)``.

Available models:

* :class:`PvtConstantCompressibilityWater`: water with constant compressibility and
  viscosibility around a reference pressure.
* :class:`PvtDeadOil`: oil without dissolved gas, tabulated in pressure.
* :class:`PvtLiveOil`: oil with dissolved gas. Saturated properties are tabulated in
  pressure; undersaturated oil uses a constant compressibility and viscosibility
  relative to the bubble point of its dissolved gas.
* :class:`PvtDryGas`: gas without vaporised oil, tabulated in pressure.
* :class:`PvtWetGas`: gas with vaporised oil. Saturated and dry properties are
  tabulated in pressure; undersaturated gas interpolates linearly in ``rv`` between
  them.

Tables are given per PVT region as lists, region ``r`` being ``tables[r]``.

"""

from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from blackoil.props.phase_usage import PhasePresence
from blackoil.utils.interpolation import check_table_axis, linear_interpolation

__all__ = [
    "PvtInterface",
    "PvtConstantCompressibilityWater",
    "PvtDeadOil",
    "PvtLiveOil",
    "PvtDryGas",
    "PvtWetGas",
    "PvdTable",
    "PvtoTable",
    "PvtgTable",
    "WaterPvtRecord",
]

PvtResult = tuple[np.ndarray, np.ndarray, np.ndarray]


def _region_loop(region: np.ndarray, num_regions: int, n: int, evaluate) -> PvtResult:
    """Evaluate ``evaluate(r, mask)`` on each region and assemble the results."""
    val, dp, dr = np.zeros(n), np.zeros(n), np.zeros(n)
    region = np.broadcast_to(np.asarray(region, dtype=int), (n,))
    if np.any(region < 0) or np.any(region >= num_regions):
        raise ValueError(f"PVT region index outside [0, {num_regions}).")
    for r in np.unique(region):
        mask = region == r
        v, d1, d2 = evaluate(int(r), mask)
        val[mask], dp[mask], dr[mask] = v, d1, d2
    return val, dp, dr


class PvtInterface(abc.ABC):
    """Common interface of the phase PVT models."""

    num_regions: int

    @abc.abstractmethod
    def mu(
        self,
        pressure: np.ndarray,
        r: np.ndarray,
        cond: Optional[PhasePresence],
        region: np.ndarray,
    ) -> PvtResult:
        """Viscosity with derivatives with respect to pressure and ``r``."""

    @abc.abstractmethod
    def b(
        self,
        pressure: np.ndarray,
        r: np.ndarray,
        cond: Optional[PhasePresence],
        region: np.ndarray,
    ) -> PvtResult:
        """Reciprocal formation volume factor with derivatives."""

    def r_sat(self, pressure: np.ndarray, region: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """Saturated dissolution ratio and its pressure derivative.

        Zero for models without dissolution.

        """
        n = np.asarray(pressure).size
        return np.zeros(n), np.zeros(n)

    @property
    def has_dissolution(self) -> bool:
        return False


@dataclass
class WaterPvtRecord:
    """PVTW record of one region."""

    reference_pressure: float
    """Reference pressure."""
    formation_volume_factor: float
    """Formation volume factor at the reference pressure."""
    compressibility: float
    """Compressibility [1/Pa]."""
    viscosity: float
    """Viscosity at the reference pressure."""
    viscosibility: float = 0.0
    """Relative change of viscosity with pressure [1/Pa]."""


class PvtConstantCompressibilityWater(PvtInterface):
    """Water with constant compressibility.

    With ``x = c (p - p_ref)``, the reciprocal formation volume factor is
    ``b = (1 + x + x^2/2) / B_ref``. With ``y = -c_v (p - p_ref)`` the viscosity is
    ``mu = mu_ref / (1 + y + y^2/2)``.

    Parameters:
        records: One record per PVT region.

    """

    def __init__(self, records: Sequence[WaterPvtRecord]) -> None:
        if isinstance(records, WaterPvtRecord):
            records = [records]
        self.records = list(records)
        self.num_regions = len(self.records)
        for rec in self.records:
            if rec.formation_volume_factor <= 0 or rec.viscosity <= 0:
                raise ValueError(
                    "Water formation volume factor and viscosity must be positive."
                )

    def mu(self, pressure, r, cond, region) -> PvtResult:
        p = np.atleast_1d(np.asarray(pressure, dtype=float))

        def evaluate(reg, mask):
            rec = self.records[reg]
            y = -rec.viscosibility * (p[mask] - rec.reference_pressure)
            d = 1.0 + y + 0.5 * y**2
            val = rec.viscosity / d
            dp = rec.viscosity * rec.viscosibility * (1.0 + y) / d**2
            return val, dp, 0.0

        return _region_loop(region, self.num_regions, p.size, evaluate)

    def b(self, pressure, r, cond, region) -> PvtResult:
        p = np.atleast_1d(np.asarray(pressure, dtype=float))

        def evaluate(reg, mask):
            rec = self.records[reg]
            c = rec.compressibility
            x = c * (p[mask] - rec.reference_pressure)
            val = (1.0 + x + 0.5 * x**2) / rec.formation_volume_factor
            dp = (c + x * c) / rec.formation_volume_factor
            return val, dp, 0.0

        return _region_loop(region, self.num_regions, p.size, evaluate)


@dataclass
class PvdTable:
    """Pressure table of a phase without dissolution (PVDO or PVDG)."""

    pressure: np.ndarray
    """Strictly increasing pressures."""
    formation_volume_factor: np.ndarray
    """Formation volume factors."""
    viscosity: np.ndarray
    """Viscosities."""

    def __post_init__(self) -> None:
        self.pressure = check_table_axis(self.pressure, "PVD table")
        self.formation_volume_factor = np.asarray(self.formation_volume_factor, float)
        self.viscosity = np.asarray(self.viscosity, dtype=float)
        if (
            self.formation_volume_factor.size != self.pressure.size
            or self.viscosity.size != self.pressure.size
        ):
            raise ValueError("PVD table columns must have equal length.")
        if np.any(self.formation_volume_factor <= 0) or np.any(self.viscosity <= 0):
            raise ValueError("PVD table values must be positive.")
        self.inverse_fvf: np.ndarray = 1.0 / self.formation_volume_factor
        """Reciprocal formation volume factors, which are interpolated linearly."""


class _PvtDeadPhase(PvtInterface):
    """Phase tabulated in pressure only."""

    def __init__(self, tables: Sequence[PvdTable]) -> None:
        if isinstance(tables, PvdTable):
            tables = [tables]
        self.tables = list(tables)
        self.num_regions = len(self.tables)

    def mu(self, pressure, r, cond, region) -> PvtResult:
        p = np.atleast_1d(np.asarray(pressure, dtype=float))

        def evaluate(reg, mask):
            t = self.tables[reg]
            val, dp = linear_interpolation(t.pressure, t.viscosity, p[mask])
            return val, dp, 0.0

        return _region_loop(region, self.num_regions, p.size, evaluate)

    def b(self, pressure, r, cond, region) -> PvtResult:
        p = np.atleast_1d(np.asarray(pressure, dtype=float))

        def evaluate(reg, mask):
            t = self.tables[reg]
            val, dp = linear_interpolation(t.pressure, t.inverse_fvf, p[mask])
            return val, dp, 0.0

        return _region_loop(region, self.num_regions, p.size, evaluate)


class PvtDeadOil(_PvtDeadPhase):
    """Oil without dissolved gas (PVDO)."""


class PvtDryGas(_PvtDeadPhase):
    """Gas without vaporised oil (PVDG)."""


@dataclass
class PvtoTable:
    """Saturated live oil table with undersaturated extension."""

    rs: np.ndarray
    """Strictly increasing dissolved gas-oil ratios."""
    bubble_pressure: np.ndarray
    """Bubble point pressure of each ``rs``, strictly increasing."""
    formation_volume_factor: np.ndarray
    """Saturated formation volume factors."""
    viscosity: np.ndarray
    """Saturated viscosities."""
    compressibility: float = 0.0
    """Compressibility of undersaturated oil [1/Pa]."""
    viscosibility: float = 0.0
    """Relative viscosity change of undersaturated oil [1/Pa]."""

    def __post_init__(self) -> None:
        self.rs = np.asarray(self.rs, dtype=float)
        self.bubble_pressure = check_table_axis(self.bubble_pressure, "PVTO table")
        self.formation_volume_factor = np.asarray(self.formation_volume_factor, float)
        self.viscosity = np.asarray(self.viscosity, dtype=float)
        n = self.bubble_pressure.size
        if not (
            self.rs.size == n
            and self.formation_volume_factor.size == n
            and self.viscosity.size == n
        ):
            raise ValueError("PVTO table columns must have equal length.")
        if n > 1 and np.any(np.diff(self.rs) <= 0):
            raise ValueError("Dissolved gas-oil ratio of PVTO must be increasing.")
        self.inverse_fvf: np.ndarray = 1.0 / self.formation_volume_factor
        """Saturated reciprocal formation volume factors."""


class PvtLiveOil(PvtInterface):
    """Oil with dissolved gas (PVTO).

    In cells with free gas, the oil is saturated and all properties are functions of
    pressure along the saturated table. Otherwise the bubble point ``p_b(rs)`` is found
    from the table and

        b = b_sat(p_b) (1 + c_o (p - p_b)),   mu = mu_sat(p_b) (1 + c_mu (p - p_b)).

    Parameters:
        tables: One table per PVT region.

    """

    def __init__(self, tables: Sequence[PvtoTable]) -> None:
        if isinstance(tables, PvtoTable):
            tables = [tables]
        self.tables = list(tables)
        self.num_regions = len(self.tables)

    @property
    def has_dissolution(self) -> bool:
        return True

    def r_sat(self, pressure, region):
        p = np.atleast_1d(np.asarray(pressure, dtype=float))

        def evaluate(reg, mask):
            t = self.tables[reg]
            val, dp = linear_interpolation(t.bubble_pressure, t.rs, p[mask])
            # Negative ratios from extrapolation below the table are cut
            neg = val < 0
            val[neg] = 0.0
            dp[neg] = 0.0
            return val, dp, 0.0

        val, dp, _ = _region_loop(region, self.num_regions, p.size, evaluate)
        return val, dp

    def _evaluate(self, column: str, under_coeff: str, pressure, rs, cond, region):
        p = np.atleast_1d(np.asarray(pressure, dtype=float))
        rs = np.broadcast_to(np.asarray(rs, dtype=float), p.shape)
        saturated = (
            np.ones(p.size, dtype=bool) if cond is None else np.asarray(cond.free_gas)
        )

        def evaluate(reg, mask):
            t = self.tables[reg]
            table = getattr(t, column)
            c = getattr(t, under_coeff)
            pm, rm, sat = p[mask], rs[mask], saturated[mask]
            val, dp, dr = np.zeros(pm.size), np.zeros(pm.size), np.zeros(pm.size)

            v, d = linear_interpolation(t.bubble_pressure, table, pm[sat])
            val[sat], dp[sat] = v, d

            us = ~sat
            if np.any(us):
                pb, dpb_drs = linear_interpolation(t.rs, t.bubble_pressure, rm[us])
                v_sat, dv_sat = linear_interpolation(t.bubble_pressure, table, pb)
                factor = 1.0 + c * (pm[us] - pb)
                val[us] = v_sat * factor
                dp[us] = v_sat * c
                dr[us] = (dv_sat * factor - v_sat * c) * dpb_drs
            return val, dp, dr

        return _region_loop(region, self.num_regions, p.size, evaluate)

    def mu(self, pressure, r, cond, region) -> PvtResult:
        return self._evaluate("viscosity", "viscosibility", pressure, r, cond, region)

    def b(self, pressure, r, cond, region) -> PvtResult:
        return self._evaluate(
            "inverse_fvf", "compressibility", pressure, r, cond, region
        )


@dataclass
class PvtgTable:
    """Wet gas table: saturated and dry properties as functions of pressure."""

    pressure: np.ndarray
    """Strictly increasing pressures."""
    rv: np.ndarray
    """Saturated vaporised oil-gas ratios."""
    formation_volume_factor: np.ndarray
    """Saturated formation volume factors."""
    viscosity: np.ndarray
    """Saturated viscosities."""
    dry_formation_volume_factor: Optional[np.ndarray] = None
    """Formation volume factors without vaporised oil. Defaults to saturated."""
    dry_viscosity: Optional[np.ndarray] = None
    """Viscosities without vaporised oil. Defaults to saturated."""

    def __post_init__(self) -> None:
        self.pressure = check_table_axis(self.pressure, "PVTG table")
        n = self.pressure.size
        self.rv = np.asarray(self.rv, dtype=float)
        self.formation_volume_factor = np.asarray(self.formation_volume_factor, float)
        self.viscosity = np.asarray(self.viscosity, dtype=float)
        if self.dry_formation_volume_factor is None:
            self.dry_formation_volume_factor = self.formation_volume_factor.copy()
        if self.dry_viscosity is None:
            self.dry_viscosity = self.viscosity.copy()
        self.dry_formation_volume_factor = np.asarray(
            self.dry_formation_volume_factor, dtype=float
        )
        self.dry_viscosity = np.asarray(self.dry_viscosity, dtype=float)
        for arr in (
            self.rv,
            self.formation_volume_factor,
            self.viscosity,
            self.dry_formation_volume_factor,
            self.dry_viscosity,
        ):
            if arr.size != n:
                raise ValueError("PVTG table columns must have equal length.")
        self.inverse_fvf: np.ndarray = 1.0 / self.formation_volume_factor
        """Saturated reciprocal formation volume factors."""
        self.dry_inverse_fvf: np.ndarray = 1.0 / self.dry_formation_volume_factor
        """Reciprocal formation volume factors of dry gas."""


class PvtWetGas(PvtInterface):
    """Gas with vaporised oil (PVTG).

    In cells with free oil, the gas is saturated. Otherwise, with
    ``t = rv / rv_sat(p)``, properties are ``f = f_dry(p) + t (f_sat(p) - f_dry(p))``.

    Parameters:
        tables: One table per PVT region.

    """

    def __init__(self, tables: Sequence[PvtgTable]) -> None:
        if isinstance(tables, PvtgTable):
            tables = [tables]
        self.tables = list(tables)
        self.num_regions = len(self.tables)

    @property
    def has_dissolution(self) -> bool:
        return True

    def r_sat(self, pressure, region):
        p = np.atleast_1d(np.asarray(pressure, dtype=float))

        def evaluate(reg, mask):
            t = self.tables[reg]
            val, dp = linear_interpolation(t.pressure, t.rv, p[mask])
            neg = val < 0
            val[neg] = 0.0
            dp[neg] = 0.0
            return val, dp, 0.0

        val, dp, _ = _region_loop(region, self.num_regions, p.size, evaluate)
        return val, dp

    def _evaluate(self, sat_column: str, dry_column: str, pressure, rv, cond, region):
        p = np.atleast_1d(np.asarray(pressure, dtype=float))
        rv = np.broadcast_to(np.asarray(rv, dtype=float), p.shape)
        saturated = (
            np.ones(p.size, dtype=bool) if cond is None else np.asarray(cond.free_oil)
        )

        def evaluate(reg, mask):
            t = self.tables[reg]
            pm, rm, sat = p[mask], rv[mask], saturated[mask]
            f_sat, df_sat = linear_interpolation(t.pressure, getattr(t, sat_column), pm)
            f_dry, df_dry = linear_interpolation(t.pressure, getattr(t, dry_column), pm)
            rv_sat, drv_sat = linear_interpolation(t.pressure, t.rv, pm)

            val, dp, dr = f_sat.copy(), df_sat.copy(), np.zeros(pm.size)
            us = (~sat) & (rv_sat > 0)
            if np.any(us):
                frac = rm[us] / rv_sat[us]
                diff = f_sat[us] - f_dry[us]
                val[us] = f_dry[us] + frac * diff
                dp[us] = (
                    df_dry[us]
                    + frac * (df_sat[us] - df_dry[us])
                    - diff * frac * drv_sat[us] / rv_sat[us]
                )
                dr[us] = diff / rv_sat[us]
            return val, dp, dr

        return _region_loop(region, self.num_regions, p.size, evaluate)

    def mu(self, pressure, r, cond, region) -> PvtResult:
        return self._evaluate("viscosity", "dry_viscosity", pressure, r, cond, region)

    def b(self, pressure, r, cond, region) -> PvtResult:
        return self._evaluate(
            "inverse_fvf", "dry_inverse_fvf", pressure, r, cond, region
        )
