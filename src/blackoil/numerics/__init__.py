"""Nonlinear solver and adaptive time stepping."""
