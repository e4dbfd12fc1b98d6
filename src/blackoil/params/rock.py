"""Cell-wise rock data and the pressure dependence of pore volume and
transmissibility.

:class:`RockProperties` collects the static per-cell input (porosity, permeability,
net-to-gross, pore volume multipliers, region numbers and transmissibility
multipliers). :class:`RockCompressibility` evaluates the pressure dependent pore volume
and transmissibility multipliers, either from a single compressibility (quadratic
expansion around a reference pressure) or from a table.

"""

from __future__ import annotations

from typing import Optional, Union

import numpy as np

from blackoil.params.tensor import SecondOrderTensor
from blackoil.utils.interpolation import check_table_axis, linear_interpolation

__all__ = ["RockProperties", "RockCompressibility"]

_MULT_KEYS = ("x", "y", "z", "x-", "y-", "z-")


class RockProperties:
    """Static rock data per cell.

    Parameters:
        porosity: Porosity, ``shape=(num_cells,)``.
        permeability: Either a :class:`SecondOrderTensor`, or an array that
            :meth:`SecondOrderTensor.from_array` understands.
        ntg: ``default=None``

            Net-to-gross ratio. Defaults to one.
        multpv: ``default=None``

            Pore volume multipliers. Defaults to one.
        pvt_region: ``default=None``

            PVT region index of each cell, starting at zero. Defaults to zero.
        sat_region: ``default=None``

            Saturation function region index of each cell. Defaults to zero.
        multipliers: ``default=None``

            Transmissibility multipliers per cell. Key ``"x"`` applies to the face of
            a cell in positive x-direction, ``"x-"`` to the face in negative
            x-direction, and correspondingly for y and z.

    Raises:
        ValueError: If array sizes differ, or if porosity or net-to-gross are outside
            ``[0, 1]``.

    """

    def __init__(
        self,
        porosity: np.ndarray,
        permeability: Union[SecondOrderTensor, np.ndarray],
        ntg: Optional[np.ndarray] = None,
        multpv: Optional[np.ndarray] = None,
        pvt_region: Optional[np.ndarray] = None,
        sat_region: Optional[np.ndarray] = None,
        multipliers: Optional[dict[str, np.ndarray]] = None,
    ) -> None:
        self.porosity: np.ndarray = np.atleast_1d(np.asarray(porosity, dtype=float))
        """Porosity per cell."""
        nc = self.porosity.size

        if not isinstance(permeability, SecondOrderTensor):
            permeability = SecondOrderTensor.from_array(permeability)
        self.permeability: SecondOrderTensor = permeability
        """Permeability tensor."""

        def _cell_array(value, default, dtype=float):
            if value is None:
                return np.full(nc, default, dtype=dtype)
            arr = np.asarray(value, dtype=dtype)
            if arr.size == 1:
                return np.full(nc, arr.ravel()[0], dtype=dtype)
            if arr.size != nc:
                raise ValueError("Rock properties must have one value per cell.")
            return arr.ravel()

        self.ntg: np.ndarray = _cell_array(ntg, 1.0)
        """Net-to-gross ratio per cell."""
        self.multpv: np.ndarray = _cell_array(multpv, 1.0)
        """Pore volume multipliers per cell."""
        self.pvt_region: np.ndarray = _cell_array(pvt_region, 0, dtype=int)
        """PVT region of each cell."""
        self.sat_region: np.ndarray = _cell_array(sat_region, 0, dtype=int)
        """Saturation function region of each cell."""

        multipliers = {} if multipliers is None else multipliers
        for key in multipliers:
            if key not in _MULT_KEYS:
                raise ValueError(
                    f"Unknown transmissibility multiplier {key}, use one of {_MULT_KEYS}."
                )
        self.multipliers: dict[str, np.ndarray] = {
            key: _cell_array(multipliers.get(key), 1.0) for key in _MULT_KEYS
        }
        """Transmissibility multipliers per cell and face direction."""

        if self.permeability.num_cells != nc:
            raise ValueError("Permeability must have one value per cell.")
        if np.any(self.porosity < 0) or np.any(self.porosity > 1):
            raise ValueError("Porosity must be within [0, 1].")
        if np.any(self.ntg < 0) or np.any(self.ntg > 1):
            raise ValueError("Net-to-gross must be within [0, 1].")

    @property
    def num_cells(self) -> int:
        return self.porosity.size


class RockCompressibility:
    """Pressure dependent pore volume and transmissibility multipliers.

    Two alternatives are supported:

    1. A constant rock compressibility ``c`` with reference pressure ``p_ref``. The
       pore volume multiplier is the second order expansion of ``exp(x)`` with
       ``x = c (p - p_ref)``, i.e. ``1 + x + x^2/2``; the transmissibility is
       unaffected.
    2. A table of pressures with pore volume and transmissibility multipliers,
       interpolated linearly.

    Parameters:
        reference_pressure: ``default=0``

            Reference pressure of the constant compressibility.
        compressibility: ``default=0``

            Rock compressibility [1/Pa].
        table: ``default=None``

            Tuple ``(pressure, poro_mult, trans_mult)`` of arrays. Overrides the
            constant compressibility if given.

    """

    def __init__(
        self,
        reference_pressure: float = 0.0,
        compressibility: float = 0.0,
        table: Optional[tuple[np.ndarray, np.ndarray, np.ndarray]] = None,
    ) -> None:
        self.reference_pressure = float(reference_pressure)
        """Reference pressure of the constant compressibility."""
        self.compressibility = float(compressibility)
        """Rock compressibility."""
        self._table = None
        if table is not None:
            p, poro_mult, trans_mult = table
            p = check_table_axis(p, "rock compaction table")
            poro_mult = np.asarray(poro_mult, dtype=float)
            trans_mult = np.asarray(trans_mult, dtype=float)
            if poro_mult.size != p.size or trans_mult.size != p.size:
                raise ValueError("Rock compaction table columns differ in length.")
            self._table = (p, poro_mult, trans_mult)

    def is_active(self) -> bool:
        """Whether the multipliers differ from unity."""
        return self._table is not None or self.compressibility != 0.0

    def poro_mult(self, pressure: np.ndarray) -> np.ndarray:
        return self._poro_mult(pressure)[0]

    def poro_mult_deriv(self, pressure: np.ndarray) -> np.ndarray:
        return self._poro_mult(pressure)[1]

    def trans_mult(self, pressure: np.ndarray) -> np.ndarray:
        return self._trans_mult(pressure)[0]

    def trans_mult_deriv(self, pressure: np.ndarray) -> np.ndarray:
        return self._trans_mult(pressure)[1]

    def _poro_mult(self, pressure: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        pressure = np.atleast_1d(np.asarray(pressure, dtype=float))
        if self._table is not None:
            p, poro_mult, _ = self._table
            return linear_interpolation(p, poro_mult, pressure)
        c = self.compressibility
        x = c * (pressure - self.reference_pressure)
        return 1.0 + x + 0.5 * x**2, c + x * c

    def _trans_mult(self, pressure: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        pressure = np.atleast_1d(np.asarray(pressure, dtype=float))
        if self._table is not None:
            p, _, trans_mult = self._table
            return linear_interpolation(p, trans_mult, pressure)
        return np.ones(pressure.size), np.zeros(pressure.size)
