"""The black-oil model and its run.

Modules:
    blackoil_model: Residual assembly, convergence check and state update of the
        fully implicit black-oil equations.
    primary_variables: Choice of the primary variables per cell and phase transitions.
    state: Reservoir state, solution state, residual, fluid in place and snapshots.
    report: Reports of the work of iterations, steps and runs.
    simulator: Loop over the report steps of a schedule.
"""
