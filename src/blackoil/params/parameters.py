"""Default values of the run-time parameters recognised by the simulator core.

Parameters are passed around as plain dictionaries. Components take the defaults of
this module, and update them with whatever the user provides::

    params = bo.merge_parameters(bo.default_parameters(), {"max_iter": 20})

Keys containing a dot (``"timestep.control"``) belong to the time-step control and
the adaptive driver; they are named as in the parameter files of established
simulators, so that parameter sets can be transferred without renaming.

"""

from __future__ import annotations

import warnings
from typing import Any, Optional

import numpy as np

__all__ = ["default_parameters", "merge_parameters"]


def default_parameters() -> dict[str, Any]:
    """Dictionary with the default value of every recognised parameter.

    A new dictionary is returned on every call, so that the caller may modify it.

    """
    return {
        # Convergence of the nonlinear iterations
        "tolerance_mb": 1e-7,
        "tolerance_cnv": 1e-3,
        "tolerance_wells": 1e-4,
        "tolerance_well_control": 1e-7,
        "max_residual_allowed": 1e7,
        # Limits on the update of the primary variables
        "dp_max_rel": 1.0,
        "ds_max": 0.2,
        "dr_max_rel": 1e9,
        "dbhp_max_rel": 1.0,
        # Assembly
        "solve_welleq_initially": True,
        "update_equations_scaling": False,
        # Scaling of the water, oil and gas equations when the scaling is not
        # recomputed from the current state.
        "matbal_scale": (1.1169, 1.0031, 0.0031),
        "use_threshold_pressure": False,
        "upwind_scheme": "phase_potential",
        "max_welleq_iter": 15,
        # Newton iterations
        "max_iter": 10,
        "min_iter": 1,
        "relax_type": "dampen",
        "relax_max": 0.5,
        "relax_increment": 0.1,
        "relax_rel_tol": 0.2,
        # Time-step control
        "timestep.adaptive": True,
        "timestep.control": "pid",
        "timestep.control.tol": 1e-3,
        "timestep.control.targetiteration": 25,
        "timestep.control.kp": 0.075,
        "timestep.control.ki": 0.175,
        "timestep.control.kd": 0.01,
        "timestep.control.iteration_range": (4, 10),
        "timestep.control.iteration_factors": (0.7, 1.3),
        "solver.initialfraction": 0.25,
        "solver.restartfactor": 0.1,
        "solver.growthfactor": 1.25,
        "solver.restart": 3,
        "solver.maxtimestep": np.inf,
        "solver.mintimestep": 0.0,
        # Linear solver
        "linear_solver_reduction": 1e-2,
        "linear_solver_maxiter": 150,
        "linear_solver_restart": 40,
        "linear_solver_verbosity": 0,
        "newton_use_gmres": False,
        "linear_solver_use_amg": True,
        "cpr_amg_theta": 0.25,
        "cpr_amg_max_levels": 10,
        "cpr_amg_coarse_size": 50,
    }


def merge_parameters(
    defaults: dict[str, Any], params: Optional[dict[str, Any]] = None
) -> dict[str, Any]:
    """Update a copy of the default parameters with user given values.

    Parameters:
        defaults: Default values. Not modified.
        params: ``default=None``

            User given values. Keys not found among the defaults are kept, but a
            warning is issued, since they are most likely misspelled.

    Returns:
        The merged dictionary.

    """
    merged = dict(defaults)
    if params is None:
        return merged
    unknown = [key for key in params if key not in defaults]
    if len(unknown) > 0:
        warnings.warn(f"Unrecognised parameters {unknown} will have no effect.")
    merged.update(params)
    return merged
