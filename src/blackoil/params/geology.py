"""Derived geological quantities: pore volumes, transmissibilities, gravity potentials
and non-neighbouring connections.

The transmissibility of a face is computed by the two point flux approximation: a half
transmissibility per cell and face, combined harmonically across the face. Cells with a
pore volume below a threshold are handled in one of two ways, selected by the flag
``opmfil``:

* ``opmfil=True``: The net-to-gross ratio of the first cell below a stack of such
  cells is replaced by the volume weighted average over the stack and the cell itself.
* ``opmfil=False`` with ``pinch=True``: Vertical flow through the stack is cut, and a
  non-neighbouring connection is added between the cells above and below it.

"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

import numpy as np

import blackoil as bo
from blackoil.grids.grid import FaceTag, Grid
from blackoil.params.rock import RockProperties

__all__ = ["NNC", "DerivedGeology"]

logger = logging.getLogger(__name__)

module_sections = ["geometry"]


class NNC:
    """Non-neighbouring connections, i.e. synthetic faces between arbitrary cells.

    Parameters:
        cells1: First cell of each connection.
        cells2: Second cell of each connection. Flow from the first to the second
            cell is positive.
        trans: Transmissibility of each connection.

    """

    def __init__(
        self,
        cells1: Optional[Sequence[int]] = None,
        cells2: Optional[Sequence[int]] = None,
        trans: Optional[Sequence[float]] = None,
    ) -> None:
        self.cells1 = np.asarray([] if cells1 is None else cells1, dtype=int)
        self.cells2 = np.asarray([] if cells2 is None else cells2, dtype=int)
        self.trans = np.asarray([] if trans is None else trans, dtype=float)
        if not (self.cells1.size == self.cells2.size == self.trans.size):
            raise ValueError("NNC arrays must have equal length.")
        if np.any(self.trans < 0):
            raise ValueError("NNC transmissibilities must be non-negative.")

    def append(self, cell1: int, cell2: int, trans: float) -> None:
        if trans < 0:
            raise ValueError("NNC transmissibilities must be non-negative.")
        self.cells1 = np.append(self.cells1, int(cell1))
        self.cells2 = np.append(self.cells2, int(cell2))
        self.trans = np.append(self.trans, float(trans))

    @property
    def num_connections(self) -> int:
        return self.trans.size

    def __len__(self) -> int:
        return self.num_connections

    def __repr__(self) -> str:
        return f"NNC with {self.num_connections} connections"


class DerivedGeology:
    """Pore volumes, transmissibilities and gravity terms of a grid.

    Parameters:
        grid: The grid.
        rock: Static rock data.
        gravity: ``default=(0, 0, GRAVITY_ACCELERATION)``

            Gravity vector. The third coordinate is depth, so gravity acts in positive
            z-direction.
        use_local_perm: ``default=True``

            If True, the half transmissibility of a face uses the diagonal
            permeability component of the face direction. If False, the full tensor is
            projected on the face normal.
        nnc: ``default=None``

            Non-neighbouring connections given by the user.
        min_pore_volume: ``default=0``

            Cells with pore volume below this value are treated as collapsed.
        opmfil: ``default=True``

            Handling of collapsed cells, see the module documentation.
        pinch: ``default=False``

            Activates the pinch-out processing when ``opmfil`` is False.

    """

    def __init__(
        self,
        grid: Grid,
        rock: RockProperties,
        gravity: Optional[Sequence[float]] = None,
        use_local_perm: bool = True,
        nnc: Optional[NNC] = None,
        min_pore_volume: float = 0.0,
        opmfil: bool = True,
        pinch: bool = False,
    ) -> None:
        if rock.num_cells != grid.num_cells:
            raise ValueError("Rock properties and grid have different cell counts.")
        self.grid = grid
        """The grid."""
        self.use_local_perm = use_local_perm
        """Whether half transmissibilities use the direction-local permeability."""
        self.opmfil = opmfil
        """Collapsed cell treatment, see module documentation."""
        self.pinch = pinch
        """Whether pinch-out processing is active when ``opmfil`` is False."""
        self.min_pore_volume = float(min_pore_volume)
        """Pore volume threshold for collapsed cells."""

        if gravity is None:
            gravity = (0.0, 0.0, bo.GRAVITY_ACCELERATION)
        self.gravity: np.ndarray = np.asarray(gravity, dtype=float)
        """Gravity vector."""

        self.nnc: NNC = NNC() if nnc is None else NNC(nnc.cells1, nnc.cells2, nnc.trans)
        """Non-neighbouring connections, user given followed by generated ones."""

        ntg = rock.ntg.copy()
        if self.min_pore_volume > 0 and self.opmfil:
            ntg = self._min_pv_fill_ntg(rock, ntg)
        self.ntg: np.ndarray = ntg
        """Net-to-gross ratio after collapsed cell processing."""

        self.pore_volume: np.ndarray = (
            rock.porosity * rock.multpv * ntg * grid.cell_volumes
        )
        """Pore volume per cell."""

        self.half_transmissibility: np.ndarray = self._half_transmissibilities(
            rock, ntg
        )
        """Half transmissibility per half face, ordered as the half faces of the
        grid."""

        self.transmissibility: np.ndarray = self._face_transmissibilities(rock)
        """Transmissibility per face. Boundary faces keep the half transmissibility
        of their single cell."""

        if self.min_pore_volume > 0 and not self.opmfil and self.pinch:
            self._process_pinch()

        self.z: np.ndarray = grid.cell_centers[2].copy()
        """Depth of the cell centers."""

        self.gravity_potential: np.ndarray = self.gravity @ (
            grid.face_centers[:, grid.half_face_faces]
            - grid.cell_centers[:, grid.half_face_cells]
        )
        """Gravity potential ``g . (x_f - x_c)`` per half face."""

    # ---- Pore volumes

    def _columns(self) -> dict[tuple[int, int], list[tuple[int, int]]]:
        """Cells grouped by logical column, sorted from top to bottom."""
        nx, ny = self.grid.cart_dims[0], self.grid.cart_dims[1]
        columns: dict[tuple[int, int], list[tuple[int, int]]] = {}
        for c, g in enumerate(self.grid.global_cell):
            i, j, k = g % nx, (g // nx) % ny, g // (nx * ny)
            columns.setdefault((int(i), int(j)), []).append((int(k), c))
        for col in columns.values():
            col.sort()
        return columns

    def _min_pv_fill_ntg(self, rock: RockProperties, ntg: np.ndarray) -> np.ndarray:
        """Volume weighted net-to-gross of stacks of collapsed cells."""
        vol = self.grid.cell_volumes
        pv = rock.porosity * rock.multpv * ntg * vol
        new_ntg = ntg.copy()
        num_collapsed = 0
        for column in self._columns().values():
            acc_vol = 0.0
            acc_ntg_vol = 0.0
            for _, c in column:
                if pv[c] < self.min_pore_volume:
                    acc_vol += vol[c]
                    acc_ntg_vol += ntg[c] * vol[c]
                    num_collapsed += 1
                elif acc_vol > 0:
                    new_ntg[c] = (acc_ntg_vol + ntg[c] * vol[c]) / (acc_vol + vol[c])
                    acc_vol = 0.0
                    acc_ntg_vol = 0.0
                else:
                    acc_vol = 0.0
                    acc_ntg_vol = 0.0
        logger.debug(f"Volume weighted NTG over {num_collapsed} collapsed cells")
        return new_ntg

    # ---- Transmissibilities

    @bo.time_logger(sections=module_sections)
    def _half_transmissibilities(
        self, rock: RockProperties, ntg: np.ndarray
    ) -> np.ndarray:
        g = self.grid
        cells = g.half_face_cells
        faces = g.half_face_faces
        cf = g.face_centers[:, faces] - g.cell_centers[:, cells]
        normals = g.face_normals[:, faces] * g.half_face_signs
        dist = np.sum(cf * cf, axis=0)

        K = rock.permeability.values[:, :, cells]
        if self.use_local_perm:
            direction = g.half_face_tags // 2
            perm_d = K[direction, direction, np.arange(cells.size)]
            cn = np.sum(cf * normals, axis=0)
            htrans = perm_d * cn / dist
        else:
            Kn = np.einsum("ijk,jk->ik", K, normals)
            htrans = np.sum(cf * Kn, axis=0) / dist

        if np.any(htrans < 0):
            logger.warning(
                f"Negative half transmissibility on {np.sum(htrans < 0)} half faces, "
                "using the absolute value"
            )
            htrans = np.abs(htrans)

        # Net-to-gross applies to the horizontal directions
        horizontal = g.half_face_tags < FaceTag.Z_MINUS
        htrans[horizontal] *= ntg[cells[horizontal]]
        return htrans

    def _face_multipliers(self, rock: RockProperties) -> np.ndarray:
        g = self.grid
        mult = np.ones(g.num_faces)
        keys = ("x-", "x", "y-", "y", "z-", "z")
        for tag in FaceTag:
            hf = np.flatnonzero(g.half_face_tags == tag)
            values = rock.multipliers[keys[int(tag)]][g.half_face_cells[hf]]
            np.multiply.at(mult, g.half_face_faces[hf], values)
        return mult

    def _face_transmissibilities(self, rock: RockProperties) -> np.ndarray:
        g = self.grid
        with np.errstate(divide="ignore"):
            inv = 1.0 / self.half_transmissibility
        inv_sum = np.bincount(g.half_face_faces, weights=inv, minlength=g.num_faces)
        with np.errstate(divide="ignore"):
            trans = np.where(np.isinf(inv_sum), 0.0, 1.0 / inv_sum)
        return trans * self._face_multipliers(rock)

    def _process_pinch(self) -> None:
        """Cut vertical flow through collapsed cells and connect across them."""
        g = self.grid
        collapsed = self.pore_volume < self.min_pore_volume
        vertical: dict[tuple[int, int], int] = {}
        for f in np.flatnonzero(g.face_directions == 2):
            c1, c2 = g.face_cells[f]
            if c1 >= 0 and c2 >= 0:
                vertical[(int(c1), int(c2))] = int(f)

        def half_trans(cell: int, face: int) -> float:
            hf = np.flatnonzero(
                (g.half_face_cells == cell) & (g.half_face_faces == face)
            )
            return float(self.half_transmissibility[hf[0]])

        num_pinched = 0
        for column in self._columns().values():
            cells = [c for _, c in column]
            pos = 0
            while pos < len(cells):
                if not collapsed[cells[pos]]:
                    pos += 1
                    continue
                start = pos
                while pos < len(cells) and collapsed[cells[pos]]:
                    pos += 1
                # Cut all vertical faces touching the stack
                stack = cells[max(start - 1, 0) : min(pos + 1, len(cells))]
                for c1, c2 in zip(stack[:-1], stack[1:]):
                    if (c1, c2) in vertical:
                        self.transmissibility[vertical[(c1, c2)]] = 0.0
                if start == 0 or pos == len(cells):
                    continue
                above, below = cells[start - 1], cells[pos]
                f_above = vertical.get((above, cells[start]))
                f_below = vertical.get((cells[pos - 1], below))
                if f_above is None or f_below is None:
                    continue
                t1 = half_trans(above, f_above)
                t2 = half_trans(below, f_below)
                if t1 > 0 and t2 > 0:
                    self.nnc.append(above, below, 1.0 / (1.0 / t1 + 1.0 / t2))
                    num_pinched += 1
        logger.debug(f"Pinch processing added {num_pinched} connections")

    # ---- Access

    def connection_transmissibilities(self, internal_faces: np.ndarray) -> np.ndarray:
        """Transmissibilities of the internal faces followed by the NNCs."""
        return np.hstack((self.transmissibility[internal_faces], self.nnc.trans))
