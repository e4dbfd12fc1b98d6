"""Wells: their description and controls, their state, VFP tables and the well
equations of the residual.

"""
