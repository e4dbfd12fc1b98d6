"""This private module contains flags shared by all numba-compiled kernels of the
package.

Changes here should be done with much care.

"""

from __future__ import annotations

__all__ = ["NUMBA_CACHE", "NUMBA_FAST_MATH"]


NUMBA_CACHE: bool = True
"""Flag to instruct the numba compiler to cache (!and use cached!) functions.

Numba does not recognize changes in nested compiled functions and hence does not
trigger re-compilation of the callers. Switch off while developing kernels.

See Also:
    https://numba.readthedocs.io/en/stable/user/jit.html#cache

"""

NUMBA_FAST_MATH: bool = False
"""Flag to instruct the numba compiler to use it's ``fastmath`` functions.

Kept off: the linear solver is required to be bit-reproducible for identical input.

See Also:
    https://numba.readthedocs.io/en/stable/reference/jit-compilation.html#numba.jit

"""
