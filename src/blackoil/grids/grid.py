"""Module containing the grid class consumed by the discretization and the geology.

See documentation of class :class:`Grid` for further details.

"""

from __future__ import annotations

from enum import IntEnum
from itertools import count
from typing import Optional

import numpy as np
import scipy.sparse as sps

__all__ = ["FaceTag", "Grid"]


class FaceTag(IntEnum):
    """Logical direction of a half face, as seen from the cell it belongs to.

    The direction ``X`` and the side ``+`` combine to ``X_PLUS`` for a face whose
    outward normal points in positive x-direction. The tags select the permeability
    component and the transmissibility multipliers of a half face.

    """

    X_MINUS = 0
    X_PLUS = 1
    Y_MINUS = 2
    Y_PLUS = 3
    Z_MINUS = 4
    Z_PLUS = 5

    @property
    def direction(self) -> int:
        """Coordinate direction, 0, 1 or 2."""
        return int(self) // 2

    @property
    def is_plus(self) -> bool:
        return int(self) % 2 == 1


class Grid:
    """Cell centred grid described by its connectivity and geometry.

    Only the information needed by a finite volume discretization is stored: the two
    cells next to each face, and geometric measures of cells and faces. The third
    coordinate is depth, positive downwards.

    Parameters:
        face_cells: ``shape=(num_faces, 2)``

            Cells next to each face. The value -1 marks the outside of the domain.
            Face normals point from the first to the second cell.
        cell_centers: ``shape=(3, num_cells)``

            Cell centroids.
        cell_volumes: ``shape=(num_cells,)``

            Cell volumes.
        face_centers: ``shape=(3, num_faces)``

            Face centroids.
        face_normals: ``shape=(3, num_faces)``

            Area weighted face normals.
        face_directions: ``default=None``

            Coordinate direction (0, 1 or 2) of each face. If not given, the dominant
            component of the face normal is used.
        cart_dims: ``default=None``

            Logical Cartesian dimensions for grids with an underlying ijk structure.
        global_cell: ``default=None``

            Index of each cell in the logical Cartesian box.
        name: ``default="Grid"``

            Name of the grid.

    Raises:
        ValueError: If array dimensions are inconsistent, or if a face has no cell.

    """

    _counter = count(0)
    """Counter of instantiated grids."""

    def __init__(
        self,
        face_cells: np.ndarray,
        cell_centers: np.ndarray,
        cell_volumes: np.ndarray,
        face_centers: np.ndarray,
        face_normals: np.ndarray,
        face_directions: Optional[np.ndarray] = None,
        cart_dims: Optional[np.ndarray] = None,
        global_cell: Optional[np.ndarray] = None,
        name: str = "Grid",
    ) -> None:
        face_cells = np.asarray(face_cells, dtype=int)
        if face_cells.ndim != 2 or face_cells.shape[1] != 2:
            raise ValueError("face_cells must have shape (num_faces, 2).")
        if np.any(np.all(face_cells < 0, axis=1)):
            raise ValueError("Every face must have at least one neighboring cell.")

        self.id: int = next(Grid._counter)
        """Unique identifier of the grid."""

        self.name: str = name
        """Name of the grid."""

        self.face_cells: np.ndarray = face_cells
        """Array with ``shape=(num_faces, 2)`` of the cells next to each face, -1 on
        the boundary. The normal of a face points from the first to the second cell.
        """

        self.num_faces: int = face_cells.shape[0]
        """Number of faces."""

        self.cell_centers: np.ndarray = np.asarray(cell_centers, dtype=float)
        """Cell centroids, ``shape=(3, num_cells)``. Third coordinate is depth."""

        self.num_cells: int = self.cell_centers.shape[1]
        """Number of cells."""

        self.cell_volumes: np.ndarray = np.asarray(cell_volumes, dtype=float)
        """Cell volumes, ``shape=(num_cells,)``."""

        self.face_centers: np.ndarray = np.asarray(face_centers, dtype=float)
        """Face centroids, ``shape=(3, num_faces)``."""

        self.face_normals: np.ndarray = np.asarray(face_normals, dtype=float)
        """Area weighted face normals, ``shape=(3, num_faces)``."""

        self.face_areas: np.ndarray = np.sqrt(np.sum(self.face_normals**2, axis=0))
        """Face areas, ``shape=(num_faces,)``."""

        if face_cells.max(initial=-1) >= self.num_cells:
            raise ValueError("face_cells refers to a cell outside the grid.")
        if self.cell_volumes.size != self.num_cells:
            raise ValueError("cell_volumes must have one entry per cell.")
        if self.face_centers.shape != (3, self.num_faces) or (
            self.face_normals.shape != (3, self.num_faces)
        ):
            raise ValueError("Face geometry must have shape (3, num_faces).")

        if face_directions is None:
            face_directions = np.argmax(np.abs(self.face_normals), axis=0)
        self.face_directions: np.ndarray = np.asarray(face_directions, dtype=int)
        """Coordinate direction of each face, ``shape=(num_faces,)``."""

        self.cart_dims: np.ndarray = (
            np.asarray(cart_dims, dtype=int)
            if cart_dims is not None
            else np.array([self.num_cells, 1, 1])
        )
        """Logical Cartesian dimensions ``(nx, ny, nz)``."""

        self.global_cell: np.ndarray = (
            np.asarray(global_cell, dtype=int)
            if global_cell is not None
            else np.arange(self.num_cells)
        )
        """Index of each cell in the logical Cartesian box."""

        self.cell_faces: sps.csc_matrix = self._compute_cell_faces()
        """An array with ``shape=(num_faces, num_cells)`` representing the map from
        cells to faces bordering respective cell.

        Matrix elements have value +-1, where + corresponds to the face normal vector
        being outwards.

        """

        self._compute_half_faces()

    def _compute_cell_faces(self) -> sps.csc_matrix:
        faces = np.arange(self.num_faces)
        rows, cols, data = [], [], []
        for side, sgn in ((0, 1), (1, -1)):
            c = self.face_cells[:, side]
            mask = c >= 0
            rows.append(faces[mask])
            cols.append(c[mask])
            data.append(np.full(mask.sum(), sgn, dtype=int))
        cell_faces = sps.csc_matrix(
            (np.hstack(data), (np.hstack(rows), np.hstack(cols))),
            shape=(self.num_faces, self.num_cells),
        )
        cell_faces.sort_indices()
        return cell_faces

    def _compute_half_faces(self) -> None:
        """Half face arrays, ordered cell by cell."""
        cf = self.cell_faces
        num_per_cell = np.diff(cf.indptr)

        self.half_face_cells: np.ndarray = np.repeat(
            np.arange(self.num_cells), num_per_cell
        )
        """Cell of each half face."""

        self.half_face_faces: np.ndarray = cf.indices.copy()
        """Face of each half face."""

        self.half_face_signs: np.ndarray = cf.data.astype(int)
        """+1 if the face normal points out of the cell of the half face."""

        self.half_face_tags: np.ndarray = 2 * self.face_directions[
            self.half_face_faces
        ] + (self.half_face_signs > 0).astype(int)
        """:class:`FaceTag` values of each half face."""

        self.cell_facepos: np.ndarray = cf.indptr.copy()
        """Half faces of cell ``c`` are ``cell_facepos[c]:cell_facepos[c + 1]``."""

    @property
    def num_half_faces(self) -> int:
        return self.half_face_faces.size

    def cell_to_faces(self, cell: int) -> np.ndarray:
        """Faces bordering a cell."""
        return self.half_face_faces[self.cell_facepos[cell] : self.cell_facepos[cell + 1]]

    def face_tag(self, cell: int, face: int) -> FaceTag:
        """Direction tag of ``face`` as seen from ``cell``.

        Raises:
            ValueError: If the face does not border the cell.

        """
        if self.face_cells[face, 0] == cell:
            sgn = 1
        elif self.face_cells[face, 1] == cell:
            sgn = 0
        else:
            raise ValueError(f"Face {face} is not a face of cell {cell}.")
        return FaceTag(2 * int(self.face_directions[face]) + sgn)

    def get_internal_faces(self) -> np.ndarray:
        """Indices of faces with two neighboring cells."""
        return np.flatnonzero(np.all(self.face_cells >= 0, axis=1))

    def get_boundary_faces(self) -> np.ndarray:
        return np.flatnonzero(np.any(self.face_cells < 0, axis=1))

    def cell_face_as_dense(self) -> np.ndarray:
        """The cell-face relation as ``shape=(2, num_faces)``, -1 on the boundary.

        The normal vector of the face points from the first to the second row.

        """
        return self.face_cells.T.copy()

    def cell_connection_map(self) -> sps.csr_matrix:
        """Boolean ``(num_cells, num_cells)`` matrix of cells sharing a face."""
        cell_faces = self.cell_faces.copy()
        cell_faces.data = np.abs(cell_faces.data)
        c2c = (cell_faces.T @ cell_faces).tocsr()
        c2c.data = np.clip(c2c.data, 0, 1).astype(bool)
        return c2c

    def __repr__(self) -> str:
        s = f"{self.name} with id {self.id}\n"
        s += f"Number of cells {self.num_cells}\n"
        s += f"Number of faces {self.num_faces}\n"
        s += f"Logical dimensions {self.cart_dims}"
        return s

    def __str__(self) -> str:
        return self.__repr__()
