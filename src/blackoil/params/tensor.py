"""
The tensor module contains the cell-wise permeability tensor.
"""

from __future__ import annotations

from typing import Optional

import numpy as np

__all__ = ["SecondOrderTensor"]


class SecondOrderTensor:
    """Cell-wise permeability represented as a symmetric 3x3 tensor per cell.

    Parameters:
        kxx: Nc array, with cell-wise values of kxx permeability.
        kyy: Nc array of kyy. Default equal to kxx.
        kzz: Nc array of kzz. Default equal to kxx.
        kxy: Nc array of kxy. Defaults to zero.
        kxz: Nc array of kxz. Defaults to zero.
        kyz: Nc array of kyz. Defaults to zero.

    Raises:
        ValueError if the permeability is not positive semi-definite.

    """

    def __init__(
        self,
        kxx: np.ndarray,
        kyy: Optional[np.ndarray] = None,
        kzz: Optional[np.ndarray] = None,
        kxy: Optional[np.ndarray] = None,
        kxz: Optional[np.ndarray] = None,
        kyz: Optional[np.ndarray] = None,
    ) -> None:
        kxx = np.atleast_1d(np.asarray(kxx, dtype=float))
        Nc = kxx.size
        kyy = kxx if kyy is None else np.asarray(kyy, dtype=float)
        kzz = kxx if kzz is None else np.asarray(kzz, dtype=float)
        kxy = np.zeros(Nc) if kxy is None else np.asarray(kxy, dtype=float)
        kxz = np.zeros(Nc) if kxz is None else np.asarray(kxz, dtype=float)
        kyz = np.zeros(Nc) if kyz is None else np.asarray(kyz, dtype=float)

        # Onsager's principle - tensor should be positive definite
        if np.any(kxx < 0):
            raise ValueError(
                "Tensor is not positive definite because of components in x-direction"
            )
        if np.any((kxx * kyy - kxy * kxy) < 0):
            raise ValueError(
                "Tensor is not positive definite because of components in y-direction"
            )
        det = (
            kxx * (kyy * kzz - kyz * kyz)
            - kxy * (kxy * kzz - kxz * kyz)
            + kxz * (kxy * kyz - kxz * kyy)
        )
        if np.any(det < 0):
            raise ValueError(
                "Tensor is not positive definite because of components in z-direction"
            )

        perm = np.zeros((3, 3, Nc))
        perm[0, 0] = kxx
        perm[1, 1] = kyy
        perm[2, 2] = kzz
        perm[0, 1] = perm[1, 0] = kxy
        perm[0, 2] = perm[2, 0] = kxz
        perm[1, 2] = perm[2, 1] = kyz

        self.values: np.ndarray = perm
        """Tensor components, ``shape=(3, 3, num_cells)``."""

    @classmethod
    def from_array(cls, perm: np.ndarray) -> SecondOrderTensor:
        """Tensor from isotropic ``(nc,)``, diagonal ``(nc, 3)`` or full
        ``(nc, 3, 3)`` cell values."""
        perm = np.asarray(perm, dtype=float)
        if perm.ndim == 1:
            return cls(perm)
        elif perm.ndim == 2 and perm.shape[1] == 3:
            return cls(perm[:, 0], kyy=perm[:, 1], kzz=perm[:, 2])
        elif perm.ndim == 3 and perm.shape[1:] == (3, 3):
            return cls(
                perm[:, 0, 0],
                kyy=perm[:, 1, 1],
                kzz=perm[:, 2, 2],
                kxy=perm[:, 0, 1],
                kxz=perm[:, 0, 2],
                kyz=perm[:, 1, 2],
            )
        raise ValueError(f"Cannot interpret permeability of shape {perm.shape}.")

    @property
    def num_cells(self) -> int:
        return self.values.shape[2]

    def diagonal(self) -> np.ndarray:
        """Diagonal components, ``shape=(num_cells, 3)``."""
        return np.vstack([self.values[d, d] for d in range(3)]).T

    def copy(self) -> SecondOrderTensor:
        """Define a deep copy of the tensor."""
        v = self.values
        return SecondOrderTensor(
            v[0, 0].copy(),
            kyy=v[1, 1].copy(),
            kzz=v[2, 2].copy(),
            kxy=v[0, 1].copy(),
            kxz=v[0, 2].copy(),
            kyz=v[1, 2].copy(),
        )

    def __str__(self) -> str:
        return f"Second order tensor defined on {self.num_cells} cells"

    def __repr__(self) -> str:
        return self.__str__()
