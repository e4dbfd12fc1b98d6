"""Communicator based on MPI, through mpi4py.

Requires the optional dependency ``mpi4py`` (``pip install blackoil[mpi]``). The
partitioning of the grid is done outside the simulator core: each process assembles
its own cells plus a layer of overlap cells, and tells the communicator which cells it
owns and which values it exchanges with its neighbours.

"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np
from mpi4py import MPI

from blackoil.parallel.communicator import Communicator, Reducible

__all__ = ["MPICommunicator"]

logger = logging.getLogger(__name__)


class MPICommunicator(Communicator):
    """Reductions and overlap exchange on an MPI communicator.

    Parameters:
        comm: ``default=MPI.COMM_WORLD``

            The MPI communicator.
        owner_mask: ``default=None``

            Boolean mask of the local cells owned by this process. All cells are owned
            if not given.
        neighbours: ``default=None``

            Per neighbouring rank, the local indices of the owned cells whose values
            are sent, and the local indices of the overlap cells receiving values.

    """

    def __init__(
        self,
        comm=None,
        owner_mask: Optional[np.ndarray] = None,
        neighbours: Optional[dict[int, tuple[np.ndarray, np.ndarray]]] = None,
    ) -> None:
        self.comm = MPI.COMM_WORLD if comm is None else comm
        """The MPI communicator."""
        self._owner_mask = (
            None if owner_mask is None else np.asarray(owner_mask, dtype=bool)
        )
        self.neighbours: dict[int, tuple[np.ndarray, np.ndarray]] = {
            int(rank): (np.asarray(send, dtype=int), np.asarray(recv, dtype=int))
            for rank, (send, recv) in (neighbours or {}).items()
        }
        """Send and receive indices per neighbouring rank."""

    @property
    def rank(self) -> int:
        return self.comm.Get_rank()

    @property
    def size(self) -> int:
        return self.comm.Get_size()

    def _allreduce(self, value: Reducible, op) -> Reducible:
        if np.isscalar(value) or np.ndim(value) == 0:
            return self.comm.allreduce(float(value), op=op)
        local = np.ascontiguousarray(value, dtype=float)
        result = np.empty_like(local)
        self.comm.Allreduce(local, result, op=op)
        return result

    def sum(self, value: Reducible) -> Reducible:
        return self._allreduce(value, MPI.SUM)

    def max(self, value: Reducible) -> Reducible:
        return self._allreduce(value, MPI.MAX)

    def owner_mask(self, num_cells: int) -> np.ndarray:
        if self._owner_mask is None:
            return np.ones(num_cells, dtype=bool)
        if self._owner_mask.size != num_cells:
            raise ValueError(
                f"Owner mask of size {self._owner_mask.size} used for {num_cells} cells."
            )
        return self._owner_mask

    def exchange(self, values: np.ndarray) -> np.ndarray:
        values = np.array(values, dtype=float)
        for rank in sorted(self.neighbours):
            send_idx, recv_idx = self.neighbours[rank]
            send = np.ascontiguousarray(values[send_idx])
            recv = np.empty((recv_idx.size,) + values.shape[1:])
            self.comm.Sendrecv(send, dest=rank, recvbuf=recv, source=rank)
            values[recv_idx] = recv
        return values
