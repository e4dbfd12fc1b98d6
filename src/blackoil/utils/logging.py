""" Logging functionality for the black-oil core.

Timing logs are controlled by the configuration file blackoil.cfg, which should be
placed in the current working directory (where the python script is initiated).
All logging-related information is located in a section in the cfg-file with heading
logging; see sample file below.

By default, timing logs are switched off. They can be turned on by setting the keyword
'active' to True.

Timing can be expensive if applied to functions called many times, e.g. AD arithmetic
inside the assembly. To log only parts of the code, functions are classified as
relevant for the following (overlapping) categories

    all: Used to log all methods.
    ad: Automatic differentiation substrate.
    discretization: Discrete operators and upwinding.
    properties: PVT, saturation functions and rock compressibility.
    wells: Well model.
    assembly: Residual and Jacobian assembly.
    linear_solver: Elimination, preconditioning and Krylov solves.
    nonlinear: Newton iterations.
    timestepping: Sub-step control.
    geometry: Grids and derived geology.
    utils: Minor utility functions.

Example logging section of blackoil.cfg:

    [logging]
    # Activate logging. Without this, the rest of the section has no effect
    active: True
    # To only log specific sections, use e.g.
    sections: assembly
    # multiple sections are separated by commas:
    sections: assembly, linear_solver

Ordinary progress messages are not affected by this file; they go through the standard
``logging`` module with one logger per module.

"""
import functools
import inspect
import logging
import os
import time
from typing import Dict

import blackoil as bo

__all__ = ["time_logger"]


# Try to access configuration information, as activated by the import of blackoil
try:
    config: Dict = bo.config["logging"]  # type: ignore
    raw_sections = config.get("sections", "all")
    active_sections = [s.strip().lower() for s in raw_sections.split(",")]
    logger_is_active = config["active"].strip().lower() == "true"
    always_log = "all" in active_sections

except KeyError:
    config = {}
    active_sections = ["all"]
    logger_is_active = False
    always_log = True

t_logger = logging.getLogger("Timer")
t_logger.setLevel(logging.INFO)


if logger_is_active and not t_logger.hasHandlers():
    # Add handler to write to file.
    time_handler = logging.FileHandler(config.get("file", "BlackoilTimings.log"))
    time_handler.setLevel(logging.INFO)
    time_formatter = logging.Formatter("%(message)s")
    time_handler.setFormatter(time_formatter)
    t_logger.addHandler(time_handler)

# Find where in the file path the directory 'blackoil' is located.
# We will use this below to strip away the common parts of file names.
separator = os.sep
path_length = __file__.split(separator).index("blackoil")


def time_logger(sections):
    """A decorator that measures elapsed time for a function.

    Parameters:
        sections: Categories the decorated function belongs to. The function is timed
            if any of them is active in blackoil.cfg.

    """

    def inner_func(func):
        @functools.wraps(func)
        def log_time(*args, **kwargs):
            if not logger_is_active:
                # Shortcut if logging is not activated.
                return func(*args, **kwargs)
            elif always_log or any([s in active_sections for s in sections]):
                # Get the name of the file, but strip away the part above
                # '/src/blackoil'
                fn = separator.join(
                    inspect.getfile(func).split(separator)[path_length + 1 :]
                )
                name = f"{func.__qualname__} in file {fn}."

                t_logger.log(level=logging.INFO, msg=f"Calling {name}")

                start_time = time.perf_counter()
                value = func(*args, **kwargs)
                run_time = time.perf_counter() - start_time

                t_logger.log(
                    level=logging.INFO,
                    msg=f"Finished {name} Elapsed time: {run_time:.8f} s",
                )
                return value
            else:
                return func(*args, **kwargs)

        return log_time

    return inner_func
