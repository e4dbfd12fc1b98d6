"""Discrete operators on the internal connections of a grid."""
