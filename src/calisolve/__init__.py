# calisolve - parallel finite-difference Levenberg-Marquardt solver

__version__ = "0.1.0"

# Core types
from calisolve.types import (
    TermCriteria,
    SolverConfig,
    JacobianConfig,
    OptimConfig,
    JacobianSlice,
    TrialRecord,
    SolveTrace,
    SolveStatus,
    SolveResult,
    CameraIntrinsics,
    CameraExtrinsics,
    CalibratedCamera,
    rms,
)

# Vectorisation
from calisolve.vectorisable import (
    Vectorisable,
    ParameterVector,
)

# Problems and Jacobians
from calisolve.jacobian import (
    hardware_concurrency,
    make_jacobian_slices,
    compute_jacobian,
)
from calisolve.problem import (
    LeastSquaresProblem,
    FunctionProblem,
)

# Solver
from calisolve.solver import (
    LevenbergMarquardt,
    solve,
)

# Configuration
from calisolve.config import (
    load_optim_config,
    save_optim_config,
    create_default_optim_config,
)

__all__ = [
    # Types
    "TermCriteria",
    "SolverConfig",
    "JacobianConfig",
    "OptimConfig",
    "JacobianSlice",
    "TrialRecord",
    "SolveTrace",
    "SolveStatus",
    "SolveResult",
    "CameraIntrinsics",
    "CameraExtrinsics",
    "CalibratedCamera",
    "rms",
    # Vectorisation
    "Vectorisable",
    "ParameterVector",
    # Jacobian
    "hardware_concurrency",
    "make_jacobian_slices",
    "compute_jacobian",
    # Problems
    "LeastSquaresProblem",
    "FunctionProblem",
    # Solver
    "LevenbergMarquardt",
    "solve",
    # Configuration
    "load_optim_config",
    "save_optim_config",
    "create_default_optim_config",
]
