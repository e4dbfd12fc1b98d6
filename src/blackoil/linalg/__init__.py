"""Linear solvers for the Newton systems of the black-oil model.

The well unknowns are eliminated by Schur complements, the cell equations are combined
into a block system with a pressure equation first, and the block system is solved by
a Krylov method with a CPR preconditioner (AMG on pressure, block ILU(0) on the full
system).

"""
