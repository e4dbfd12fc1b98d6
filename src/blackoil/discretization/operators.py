"""Discrete gradient, divergence and averaging operators, and upwind selection.

The operators act on cell values and produce values on connections, i.e. on the
internal faces of the grid followed by the non-neighbouring connections. For a
connection ``f`` between the cells ``L(f)`` and ``R(f)``, the sign convention is

    (ngrad x)_f = x_L - x_R,

so that a positive flux ``T * ngrad p`` flows from ``L`` to ``R``, and ``div = ngrad^T``
gives the net outflow of each cell.

"""

from __future__ import annotations

import logging
from typing import Optional, Sequence, Union

import numba as nb
import numpy as np
import scipy.sparse as sps

import blackoil as bo
from blackoil._core import NUMBA_CACHE, NUMBA_FAST_MATH
from blackoil.ad.block_matrix import AutoDiffMatrix
from blackoil.ad.forward_mode import AutoDiffBlock
from blackoil.grids.grid import Grid
from blackoil.params.geology import NNC

__all__ = [
    "DiscreteOperators",
    "UpwindSelector",
    "connection_multiphase_upwind",
    "multiphase_upwind",
]

logger = logging.getLogger(__name__)

module_sections = ["discretization"]

_COMPILE_KWARGS = dict(fastmath=NUMBA_FAST_MATH, cache=NUMBA_CACHE)
"""Keyword arguments for compiling functions in this module."""


class DiscreteOperators:
    """Two point operators on the connections of a grid.

    Parameters:
        grid: The grid.
        nnc: ``default=None``

            Non-neighbouring connections, appended after the internal faces.

    """

    def __init__(self, grid: Grid, nnc: Optional[NNC] = None) -> None:
        nc = grid.num_cells

        self.internal_faces: np.ndarray = grid.get_internal_faces()
        """Indices of the faces with two neighbouring cells."""

        nbi = grid.face_cells[self.internal_faces]
        if nnc is not None and nnc.num_connections > 0:
            nbi = np.vstack((nbi, np.column_stack((nnc.cells1, nnc.cells2))))

        self.connection_cells: np.ndarray = nbi
        """Cells ``(L, R)`` of each connection, ``shape=(num_connections, 2)``."""

        self.num_cells: int = nc
        """Number of cells."""

        ni = nbi.shape[0]
        rows = np.hstack((np.arange(ni), np.arange(ni)))
        cols = np.hstack((nbi[:, 0], nbi[:, 1]))
        data = np.hstack((np.ones(ni), -np.ones(ni)))
        ngrad = sps.csr_matrix((data, (rows, cols)), shape=(ni, nc))
        caver = sps.csr_matrix((0.5 * np.abs(data), (rows, cols)), shape=(ni, nc))

        self.ngrad: AutoDiffMatrix = AutoDiffMatrix.from_sparse(ngrad)
        """Negative gradient, ``x_L - x_R`` per connection."""
        self.grad: AutoDiffMatrix = -self.ngrad
        """Gradient, ``x_R - x_L`` per connection."""
        self.caver: AutoDiffMatrix = AutoDiffMatrix.from_sparse(caver)
        """Arithmetic average of the two cells of each connection."""
        self.div: AutoDiffMatrix = self.ngrad.transpose()
        """Divergence, net outflow per cell of a connection flux."""

        # Operators on all faces, including the boundary. No NNCs.
        fc = grid.face_cells
        rows, cols, data = [], [], []
        faces = np.arange(grid.num_faces)
        for side, sgn in ((0, 1.0), (1, -1.0)):
            mask = fc[:, side] >= 0
            rows.append(faces[mask])
            cols.append(fc[mask, side])
            data.append(np.full(mask.sum(), sgn))
        fullngrad = sps.csr_matrix(
            (np.hstack(data), (np.hstack(rows), np.hstack(cols))),
            shape=(grid.num_faces, nc),
        )
        self.fullngrad: AutoDiffMatrix = AutoDiffMatrix.from_sparse(fullngrad)
        """Negative gradient on all faces; boundary rows have a single entry."""
        self.fulldiv: AutoDiffMatrix = self.fullngrad.transpose()
        """Divergence of a flux given on all faces."""

    @property
    def num_connections(self) -> int:
        return self.connection_cells.shape[0]


class UpwindSelector:
    """Pick the upstream cell value on each connection.

    Row ``f`` of the selector picks the cell ``L(f)`` if ``flux[f] >= 0``, and
    ``R(f)`` otherwise.

    Parameters:
        ops: The discrete operators.
        flux: Signed value per connection, typically the phase potential difference
            or a flux estimate. AD expressions are accepted; only the value is used.

    """

    def __init__(
        self, ops: DiscreteOperators, flux: Union[AutoDiffBlock, np.ndarray]
    ) -> None:
        if isinstance(flux, AutoDiffBlock):
            flux = flux.val
        flux = np.asarray(flux, dtype=float).ravel()
        if flux.size != ops.num_connections:
            raise bo.ShapeError(
                f"Upwind selection needs one value per connection, got {flux.size} "
                f"for {ops.num_connections} connections."
            )
        nbi = ops.connection_cells
        upwind_cells = np.where(flux >= 0, nbi[:, 0], nbi[:, 1])
        n = flux.size
        select = sps.csr_matrix(
            (np.ones(n), (np.arange(n), upwind_cells)), shape=(n, ops.num_cells)
        )

        self.upwind_cells: np.ndarray = upwind_cells
        """Upstream cell of each connection."""
        self.matrix: AutoDiffMatrix = AutoDiffMatrix.from_sparse(select)
        """The selector as a 0/1 matrix with one non-zero per row."""

    def select(self, x):
        """Upstream values of the cell quantity ``x`` (AD expression or array)."""
        if isinstance(x, AutoDiffBlock):
            return self.matrix @ x
        return np.asarray(x, dtype=float)[self.upwind_cells]


@nb.njit(**_COMPILE_KWARGS)
def _multiphase_upwind_kernel(
    head_diff: np.ndarray,
    mob1: np.ndarray,
    mob2: np.ndarray,
    trans: np.ndarray,
    flux: np.ndarray,
) -> np.ndarray:
    num_conn, num_phases = head_diff.shape
    flags = np.empty((num_conn, num_phases))
    for f in range(num_conn):
        # Phases in order of descending head difference
        order = np.argsort(-head_diff[f])
        for pos in range(num_phases):
            phase = order[pos]
            theta = flux[f]
            for j in range(num_phases):
                other = order[j]
                if j < pos:
                    theta += trans[f] * (head_diff[f, phase] - head_diff[f, other]) * (
                        mob2[f, other]
                    )
                elif j > pos:
                    theta += trans[f] * (head_diff[f, phase] - head_diff[f, other]) * (
                        mob1[f, other]
                    )
            flags[f, phase] = 1.0 if theta > 0.0 else -1.0
    return flags


def connection_multiphase_upwind(
    head_diff: np.ndarray,
    mob1: np.ndarray,
    mob2: np.ndarray,
    transmissibility: float,
    flux: float,
) -> np.ndarray:
    """Upwind direction of each phase on a single connection.

    Counter-current flow is accounted for by considering the phases in order of
    descending head difference. For the phase at position ``k`` in this order, the
    sign of

        q + sum_{j < k} T (dh_k - dh_j) mob2_j + sum_{j > k} T (dh_k - dh_j) mob1_j

    decides the direction.

    Parameters:
        head_diff: Head difference of each phase, ``shape=(num_phases,)``.
        mob1: Phase mobilities in the first cell.
        mob2: Phase mobilities in the second cell.
        transmissibility: Transmissibility of the connection.
        flux: Total flux over the connection.

    Returns:
        Array of ``+1`` (upwind is the first cell) or ``-1`` per phase.

    """
    flags = _multiphase_upwind_kernel(
        np.atleast_2d(np.asarray(head_diff, dtype=float)),
        np.atleast_2d(np.asarray(mob1, dtype=float)),
        np.atleast_2d(np.asarray(mob2, dtype=float)),
        np.atleast_1d(np.asarray(transmissibility, dtype=float)),
        np.atleast_1d(np.asarray(flux, dtype=float)),
    )
    return flags[0]


@bo.time_logger(sections=module_sections)
def multiphase_upwind(
    ops: DiscreteOperators,
    head_diffs: Sequence[Union[AutoDiffBlock, np.ndarray]],
    mobilities: Sequence[Union[AutoDiffBlock, np.ndarray]],
    transmissibility: np.ndarray,
    total_flux: Union[AutoDiffBlock, np.ndarray],
) -> list[UpwindSelector]:
    """Upwind selectors of all phases accounting for counter-current flow.

    Parameters:
        ops: The discrete operators.
        head_diffs: Per phase, head difference on each connection.
        mobilities: Per phase, mobility in each cell.
        transmissibility: Transmissibility of each connection.
        total_flux: Total flux on each connection.

    Returns:
        One selector per phase.

    """

    def _val(x):
        return np.asarray(x.val if isinstance(x, AutoDiffBlock) else x, dtype=float)

    nbi = ops.connection_cells
    hd = np.column_stack([_val(h) for h in head_diffs])
    mob = np.column_stack([_val(m) for m in mobilities])
    flags = _multiphase_upwind_kernel(
        np.ascontiguousarray(hd),
        np.ascontiguousarray(mob[nbi[:, 0]]),
        np.ascontiguousarray(mob[nbi[:, 1]]),
        np.ascontiguousarray(transmissibility, dtype=float),
        np.ascontiguousarray(_val(total_flux)),
    )
    num_flipped = np.sum(flags != np.where(hd >= 0, 1.0, -1.0))
    if num_flipped > 0:
        logger.debug(f"Multiphase upwinding changed {num_flipped} phase directions")
    return [UpwindSelector(ops, flags[:, p]) for p in range(flags.shape[1])]
