"""Forward mode automatic differentiation.

Values are carried together with a list of Jacobian blocks, one block per group of
primary variables. The blocks are stored in the cheapest structure that represents
them exactly (zero, identity, diagonal or general sparse), see
:mod:`~blackoil.ad.block_matrix`.

"""
