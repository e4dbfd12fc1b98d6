""" Module containing classes for structured grids.

Faces are numbered direction by direction: first all faces with normal in
x-direction, then y, then z. Within a direction, and for cells, the numbering is
Fortran ordered, i.e. the x-index runs fastest. The z-axis points downwards, so the
third cell center coordinate is depth.

"""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np

from blackoil.grids.grid import Grid

__all__ = ["TensorGrid", "CartGrid"]


class TensorGrid(Grid):
    """Representation of grid formed by a tensor product of line point
    distributions.

    For information on attributes and methods, see the documentation of the
    parent Grid class.

    Parameters:
        x: Node coordinates in x-direction.
        y: ``default=None``

            Node coordinates in y-direction. Defaults to a single layer of unit
            thickness.
        z: ``default=None``

            Node coordinates in z-direction (downwards), relative to ``depth``.
            Defaults to a single layer of unit thickness.
        depth: ``default=0``

            Depth of the top of the grid.
        name: ``default="TensorGrid"``

            Name of the grid.

    """

    def __init__(
        self,
        x: np.ndarray,
        y: Optional[np.ndarray] = None,
        z: Optional[np.ndarray] = None,
        depth: float = 0.0,
        name: Optional[str] = None,
    ) -> None:
        if name is None:
            name = "TensorGrid"
        x = np.asarray(x, dtype=float)
        y = np.array([0.0, 1.0]) if y is None else np.asarray(y, dtype=float)
        z = np.array([0.0, 1.0]) if z is None else np.asarray(z, dtype=float)
        for nodes, d in zip((x, y, z), "xyz"):
            if nodes.size < 2 or np.any(np.diff(nodes) <= 0):
                raise ValueError(
                    f"Node coordinates in {d}-direction must be strictly increasing "
                    "and define at least one cell."
                )

        self.nodes_x = x
        """Node coordinates in x-direction."""
        self.nodes_y = y
        """Node coordinates in y-direction."""
        self.nodes_z = z + depth
        """Node depths."""

        geometry = self._create_3d_grid(self.nodes_x, self.nodes_y, self.nodes_z)
        num_x, num_y, num_z = x.size - 1, y.size - 1, z.size - 1
        super().__init__(
            *geometry,
            cart_dims=np.array([num_x, num_y, num_z]),
            name=name,
        )

    @staticmethod
    def _create_3d_grid(nodes_x, nodes_y, nodes_z):
        """Connectivity and geometry of a 3d tensor grid.

        This is really a part of the constructor, but put it here to improve
        readability.

        """
        num_x = nodes_x.size - 1
        num_y = nodes_y.size - 1
        num_z = nodes_z.size - 1

        dx, dy, dz = np.diff(nodes_x), np.diff(nodes_y), np.diff(nodes_z)
        xc = 0.5 * (nodes_x[1:] + nodes_x[:-1])
        yc = 0.5 * (nodes_y[1:] + nodes_y[:-1])
        zc = 0.5 * (nodes_z[1:] + nodes_z[:-1])

        cell_index = np.arange(num_x * num_y * num_z).reshape(
            num_x, num_y, num_z, order="F"
        )
        # Pad with -1 on all sides, so that neighbors across the boundary are -1.
        padded = -np.ones((num_x + 2, num_y + 2, num_z + 2), dtype=int)
        padded[1:-1, 1:-1, 1:-1] = cell_index

        # Cell geometry
        X, Y, Z = np.meshgrid(xc, yc, zc, indexing="ij")
        cell_centers = np.vstack(
            (X.ravel(order="F"), Y.ravel(order="F"), Z.ravel(order="F"))
        )
        DX, DY, DZ = np.meshgrid(dx, dy, dz, indexing="ij")
        cell_volumes = (DX * DY * DZ).ravel(order="F")

        face_cells, face_centers, face_normals, directions = [], [], [], []

        # Faces with normal in x-direction
        left = padded[:-1, 1:-1, 1:-1]
        right = padded[1:, 1:-1, 1:-1]
        FX, FY, FZ = np.meshgrid(nodes_x, yc, zc, indexing="ij")
        _, AY, AZ = np.meshgrid(nodes_x, dy, dz, indexing="ij")
        area = (AY * AZ).ravel(order="F")
        face_cells.append(np.vstack((left.ravel(order="F"), right.ravel(order="F"))))
        face_centers.append(
            np.vstack((FX.ravel(order="F"), FY.ravel(order="F"), FZ.ravel(order="F")))
        )
        face_normals.append(np.vstack((area, 0 * area, 0 * area)))
        directions.append(np.zeros(area.size, dtype=int))

        # Faces with normal in y-direction
        left = padded[1:-1, :-1, 1:-1]
        right = padded[1:-1, 1:, 1:-1]
        FX, FY, FZ = np.meshgrid(xc, nodes_y, zc, indexing="ij")
        AX, _, AZ = np.meshgrid(dx, nodes_y, dz, indexing="ij")
        area = (AX * AZ).ravel(order="F")
        face_cells.append(np.vstack((left.ravel(order="F"), right.ravel(order="F"))))
        face_centers.append(
            np.vstack((FX.ravel(order="F"), FY.ravel(order="F"), FZ.ravel(order="F")))
        )
        face_normals.append(np.vstack((0 * area, area, 0 * area)))
        directions.append(np.ones(area.size, dtype=int))

        # Faces with normal in z-direction
        left = padded[1:-1, 1:-1, :-1]
        right = padded[1:-1, 1:-1, 1:]
        FX, FY, FZ = np.meshgrid(xc, yc, nodes_z, indexing="ij")
        AX, AY, _ = np.meshgrid(dx, dy, nodes_z, indexing="ij")
        area = (AX * AY).ravel(order="F")
        face_cells.append(np.vstack((left.ravel(order="F"), right.ravel(order="F"))))
        face_centers.append(
            np.vstack((FX.ravel(order="F"), FY.ravel(order="F"), FZ.ravel(order="F")))
        )
        face_normals.append(np.vstack((0 * area, 0 * area, area)))
        directions.append(2 * np.ones(area.size, dtype=int))

        return (
            np.hstack(face_cells).T,
            cell_centers,
            cell_volumes,
            np.hstack(face_centers),
            np.hstack(face_normals),
            np.hstack(directions),
        )

    def cell_index(self, i: int, j: int = 0, k: int = 0) -> int:
        """Linear index of the cell with logical index ``(i, j, k)``."""
        nx, ny, _ = self.cart_dims
        return int(i + nx * (j + ny * k))


class CartGrid(TensorGrid):
    """Representation of a 1D, 2D or 3D Cartesian grid.

    Lower-dimensional grids get a single layer of cells of unit thickness in the
    missing directions.

    For information on attributes and methods, see the documentation of the
    parent Grid class.

    Parameters:
        nx: Number of cells in each direction.
        physdims: ``default=None``

            Physical dimensions in each direction. Defaults to same as nx, that is,
            cells of unit size.
        depth: ``default=0``

            Depth of the top of the grid.

    """

    def __init__(
        self,
        nx: Sequence[int],
        physdims: Optional[Sequence[float]] = None,
        depth: float = 0.0,
    ) -> None:
        nx = np.atleast_1d(np.asarray(nx, dtype=int))
        if physdims is None:
            physdims = nx
        physdims = np.atleast_1d(np.asarray(physdims, dtype=float))
        if nx.shape != physdims.shape or nx.size > 3:
            raise ValueError(
                "Cartesian grid needs matching cell counts and physical dimensions, "
                "for up to three dimensions."
            )
        if np.any(nx < 1) or np.any(physdims <= 0):
            raise ValueError("Cell counts and physical dimensions must be positive.")

        # Create point distribution, and then leave construction to
        # TensorGrid constructor
        nodes = [np.linspace(0, physdims[d], nx[d] + 1) for d in range(nx.size)]
        while len(nodes) < 3:
            nodes.append(None)
        super().__init__(*nodes, depth=depth, name="CartGrid")
