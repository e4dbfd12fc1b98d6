"""Parameters of a simulation: the parameter dictionary with its defaults, rock
data, permeability tensors and the geology derived from them.

"""
