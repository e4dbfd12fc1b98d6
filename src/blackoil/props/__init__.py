"""Fluid properties: phase usage, PVT models, saturation functions, and the
evaluation of all of them with derivatives in :mod:`~blackoil.props.fluid`.

"""
