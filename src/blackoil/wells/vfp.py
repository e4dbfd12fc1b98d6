"""Vertical flow performance tables.

A table gives the bottom hole pressure at the table datum depth as a bilinear
function of the flow rate and the tubing head pressure. Production tables use the
produced rate as a positive flow rate; injection tables the injected rate.

"""

from __future__ import annotations

from enum import Enum
from typing import Union

import numpy as np

import blackoil as bo
from blackoil.ad.forward_mode import AutoDiffBlock
from blackoil.utils.interpolation import (
    bilinear_interpolation,
    check_table_axis,
    linear_interpolation,
)

__all__ = ["FloType", "VFPProdTable", "VFPInjTable", "flo_weights"]


class FloType(Enum):
    """The flow rate a table is tabulated against."""

    OIL = "oil"
    LIQ = "liq"
    GAS = "gas"
    WAT = "wat"
    TOTAL = "total"


def flo_weights(flo_type: FloType, phase_used: np.ndarray) -> np.ndarray:
    """Weights of the active phase rates forming the flow rate of a table."""
    canonical = {
        FloType.OIL: (0.0, 1.0, 0.0),
        FloType.LIQ: (1.0, 1.0, 0.0),
        FloType.GAS: (0.0, 0.0, 1.0),
        FloType.WAT: (1.0, 0.0, 0.0),
        FloType.TOTAL: (1.0, 1.0, 1.0),
    }[flo_type]
    return np.asarray(canonical)[np.asarray(phase_used, dtype=bool)]


class _VFPTable:
    """Common parts of production and injection tables.

    Parameters:
        table_num: Table number.
        datum_depth: Depth the bottom hole pressures refer to.
        flo_type: Flow rate definition.
        flo_axis: Strictly increasing flow rates.
        thp_axis: Strictly increasing tubing head pressures.
        bhp_table: Bottom hole pressures, ``shape=(flo_axis.size, thp_axis.size)``.

    """

    sign: float = 1.0

    def __init__(
        self,
        table_num: int,
        datum_depth: float,
        flo_type: FloType,
        flo_axis: np.ndarray,
        thp_axis: np.ndarray,
        bhp_table: np.ndarray,
    ) -> None:
        self.table_num = table_num
        """Table number."""
        self.datum_depth = float(datum_depth)
        """Depth of the tabulated bottom hole pressures."""
        self.flo_type = flo_type
        """Flow rate definition."""
        self.flo_axis = check_table_axis(flo_axis, f"VFP table {table_num}")
        """Flow rate axis."""
        self.thp_axis = check_table_axis(thp_axis, f"VFP table {table_num}")
        """Tubing head pressure axis."""
        self.bhp_table = np.asarray(bhp_table, dtype=float)
        """Tabulated bottom hole pressures."""
        if self.bhp_table.shape != (self.flo_axis.size, self.thp_axis.size):
            raise ValueError(
                f"VFP table {table_num} has shape {self.bhp_table.shape}, expected "
                f"{(self.flo_axis.size, self.thp_axis.size)}."
            )

    def flo(self, rates: Union[AutoDiffBlock, np.ndarray]):
        """Table flow rate from the signed well rate of the table phases."""
        return self.sign * rates

    def bhp(self, flo, thp: Union[float, np.ndarray]):
        """Bottom hole pressure at the datum depth.

        Parameters:
            flo: Flow rates, as AD expression or array.
            thp: Tubing head pressures.

        Returns:
            Bottom hole pressures, with derivatives with respect to the flow rate if
            ``flo`` is an AD expression.

        """
        flo_val = flo.val if isinstance(flo, AutoDiffBlock) else np.atleast_1d(flo)
        val, dflo, _ = bilinear_interpolation(
            self.flo_axis, self.thp_axis, self.bhp_table, flo_val, thp
        )
        if isinstance(flo, AutoDiffBlock):
            return AutoDiffBlock(val, flo.diagvec_mul_jac(dflo))
        return val

    def thp(self, flo: np.ndarray, bhp: np.ndarray) -> np.ndarray:
        """Tubing head pressure giving the bottom hole pressure ``bhp``.

        The bottom hole pressure is assumed to increase with the tubing head pressure
        for a fixed flow rate.

        """
        flo = np.atleast_1d(np.asarray(flo, dtype=float))
        bhp = np.broadcast_to(np.asarray(bhp, dtype=float), flo.shape)
        out = np.zeros(flo.size)
        for i in range(flo.size):
            column = np.array(
                [
                    bilinear_interpolation(
                        self.flo_axis, self.thp_axis, self.bhp_table, flo[i], t
                    )[0][0]
                    for t in self.thp_axis
                ]
            )
            if self.thp_axis.size == 1:
                out[i] = self.thp_axis[0]
                continue
            if np.any(np.diff(column) <= 0):
                raise bo.NumericalProblem(
                    f"VFP table {self.table_num} is not invertible at flow rate "
                    f"{flo[i]}."
                )
            out[i] = linear_interpolation(column, self.thp_axis, bhp[i])[0][0]
        return out


class VFPProdTable(_VFPTable):
    """Production table. The flow rate is the produced rate, i.e. minus the well
    rate."""

    sign = -1.0


class VFPInjTable(_VFPTable):
    """Injection table. The flow rate is the injected rate."""

    sign = 1.0
