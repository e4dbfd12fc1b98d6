"""   blackoil.

Root directory for the blackoil package, the core of a fully implicit three-phase
black-oil reservoir simulator. Contains the following sub-packages:

ad: Forward mode automatic differentiation with block structured Jacobians.

grids: Grid class and structured grid constructors.

params: Parameters, rock data and derived geology (pore volumes, transmissibilities).

discretization: Discrete divergence, gradient and upwind operators.

props: Phase usage, PVT and saturation functions, fluid property evaluation.

wells: Well description, well state, VFP tables and well equations.

models: The black-oil model (residual assembly, primary variable switching, state
    update), states, reports and the report-step simulator.

linalg: Elimination of the well unknowns, CPR preconditioning and Krylov solvers.

numerics: Nonlinear solver and adaptive time stepping.

parallel: Communicators for global reductions.

io: Output of state snapshots.

utils: Constants, errors, timing logger and table interpolation.


isort:skip_file

"""

import os
from pathlib import Path
import configparser


__version__ = "0.1.0"

# Try to read the config file from the directory where python process was launched
try:
    cwd = Path(os.getcwd())
    pth = cwd / Path("blackoil.cfg")
    cfg = configparser.ConfigParser()
    cfg.read(pth)
    config = dict(cfg)
except configparser.Error:
    # the assumption is that no configurations are given
    config = {}

# ------------------------------------
# Simplified namespaces. The rule of thumb is that classes and modules that a
# user can be exposed to should have a shortcut here.

from blackoil.utils.common_constants import *
from blackoil.utils.errors import *
from blackoil.utils.logging import time_logger

from blackoil.params.parameters import default_parameters, merge_parameters

# Automatic differentiation
from blackoil.ad.block_matrix import AutoDiffMatrix, MatrixKind
from blackoil.ad.forward_mode import AutoDiffBlock
from blackoil.ad import functions as ad_functions
from blackoil.ad import utils as ad_utils

# Grids and geology
from blackoil.grids.grid import Grid
from blackoil.grids.structured import CartGrid, TensorGrid
from blackoil.params.tensor import SecondOrderTensor
from blackoil.params.rock import RockProperties, RockCompressibility
from blackoil.params.geology import DerivedGeology, NNC
from blackoil.discretization.operators import DiscreteOperators, UpwindSelector

# Fluid properties
from blackoil.props.phase_usage import Phase, PhaseUsage, PhasePresence
from blackoil.props.saturation import SaturationFunctions, SwofTable, SgofTable
from blackoil.props.fluid import BlackoilProperties

# Wells
from blackoil.wells.wells import Well, Wells, WellControl, WellType, ControlType
from blackoil.wells.well_state import WellState
from blackoil.wells.well_model import StandardWells

# States and reports
from blackoil.models.state import (
    ReservoirState,
    LinearisedBlackoilResidual,
    FluidInPlace,
    StateSnapshot,
)
from blackoil.models.report import SimulationReport, IterationReport
from blackoil.models.primary_variables import HydroCarbonState, PrimaryVariables

# Parallel reductions
from blackoil.parallel.communicator import Communicator, SerialCommunicator

# Linear and nonlinear solvers
from blackoil.linalg.newton_iteration import NewtonIterationBlackoilInterleaved
from blackoil.numerics.nonlinear_solver import NonlinearSolver, RelaxType
from blackoil.numerics.time_step_control import (
    PIDTimeStepControl,
    PIDAndIterationCountTimeStepControl,
    IterationCountTimeStepControl,
    create_time_step_control,
)
from blackoil.numerics.adaptive_simulator_timer import AdaptiveSimulatorTimer
from blackoil.numerics.adaptive_time_stepping import AdaptiveTimeStepping

# Model and simulator
from blackoil.models.blackoil_model import BlackoilModel
from blackoil.models.simulator import Simulator

# Output
from blackoil.io.output_writer import OutputWriter, NpzOutputWriter, AsyncOutputWriter
