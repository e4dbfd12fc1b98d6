"""Global reductions and halo exchange of cell data.

The assembly and the convergence checks only ever need global sums and maxima of
locally computed values, and the knowledge of which cells are owned by the local
process. Overlap (ghost) cells take part in the assembly but are excluded from all
reductions by the owner mask, so that every cell is counted exactly once.

"""

from __future__ import annotations

import abc
from typing import Union

import numpy as np
from typing_extensions import TypeAlias

__all__ = ["Communicator", "SerialCommunicator"]

Reducible: TypeAlias = Union[float, int, np.ndarray]


class Communicator(abc.ABC):
    """Interface of the reductions used by the simulator core."""

    @property
    @abc.abstractmethod
    def rank(self) -> int:
        """Index of the local process."""

    @property
    @abc.abstractmethod
    def size(self) -> int:
        """Number of processes."""

    @abc.abstractmethod
    def sum(self, value: Reducible) -> Reducible:
        """Sum over all processes, element-wise for arrays."""

    @abc.abstractmethod
    def max(self, value: Reducible) -> Reducible:
        """Maximum over all processes, element-wise for arrays."""

    def owner_mask(self, num_cells: int) -> np.ndarray:
        """Boolean mask of the local cells owned by this process.

        The default owns all cells.

        """
        return np.ones(num_cells, dtype=bool)

    def exchange(self, values: np.ndarray) -> np.ndarray:
        """Update the values of the overlap cells from their owners.

        The default has no overlap, and returns the values unchanged.

        """
        return values

    def is_root(self) -> bool:
        return self.rank == 0

    def __repr__(self) -> str:
        return f"{type(self).__name__} of rank {self.rank} out of {self.size}"


class SerialCommunicator(Communicator):
    """Communicator of a single process."""

    @property
    def rank(self) -> int:
        return 0

    @property
    def size(self) -> int:
        return 1

    def sum(self, value: Reducible) -> Reducible:
        return value

    def max(self, value: Reducible) -> Reducible:
        return value
