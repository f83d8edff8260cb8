"""
Core data structures for calisolve.

Configuration types are frozen dataclasses with slots; bookkeeping that the
solver appends to during a run (the trace) is a plain mutable dataclass.
Logic is in separate modules - these are data containers only.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

import numpy as np


# ============================================================================
# Solver Configuration
# ============================================================================


@dataclass(frozen=True, slots=True)
class TermCriteria:
    """
    Stopping policy for a solve.

    max_count bounds both the accepted updates and the trials per iteration.
    epsilon is shared by the error-ratio and the step-ratio checks.
    """

    max_count: int = 100
    epsilon: float = 1e-6

    def __post_init__(self):
        if self.max_count < 1:
            raise ValueError(f"max_count must be positive, got {self.max_count}")
        if not self.epsilon >= 0:
            raise ValueError(f"epsilon must be non-negative, got {self.epsilon}")


@dataclass(frozen=True, slots=True)
class SolverConfig:
    """
    Levenberg-Marquardt settings.

    initial_lambda=None means "auto": lambda is initialised from the mean of
    the Hessian diagonal on the first iteration.
    """

    term: TermCriteria = field(default_factory=TermCriteria)
    initial_lambda: float | None = None
    eta: float = 10.0  # Damping growth factor, must be > 1
    verbose: bool = False

    def __post_init__(self):
        if not self.eta > 1.0:
            raise ValueError(f"eta must be greater than 1, got {self.eta}")
        if self.initial_lambda is not None and not self.initial_lambda >= 0:
            raise ValueError(
                f"initial_lambda must be non-negative or None, got {self.initial_lambda}"
            )


@dataclass(frozen=True, slots=True)
class JacobianConfig:
    """
    Numerical differentiation settings.
    threads=None (or 0) uses the host's hardware concurrency.
    """

    diff_step: float = 1e-3
    threads: int | None = None

    def __post_init__(self):
        if not self.diff_step > 0:
            raise ValueError(f"diff_step must be positive, got {self.diff_step}")
        if self.threads is not None and self.threads < 0:
            raise ValueError(f"threads must be non-negative, got {self.threads}")


@dataclass(frozen=True, slots=True)
class OptimConfig:
    """
    Complete optimisation configuration.
    Loaded from TOML ([solver] and [jacobian] sections).
    """

    solver: SolverConfig
    jacobian: JacobianConfig


# ============================================================================
# Jacobian Work Partitioning
# ============================================================================


@dataclass(frozen=True, slots=True)
class JacobianSlice:
    """
    One column of work for a differentiation thread.
    """

    col: int  # Column of J to write
    var: int  # Index into the full parameter vector to perturb
    mask: np.ndarray | None = None  # (conds,) bool, False rows forced to zero


# ============================================================================
# Solve Bookkeeping
# ============================================================================


class SolveStatus(Enum):
    CONVERGED = "converged"
    ILL_POSED = "ill_posed"
    EVALUATION_ERROR = "evaluation_error"
    SERIALIZATION_ERROR = "serialization_error"
    SOLUTION_REJECTED = "solution_rejected"


@dataclass(frozen=True, slots=True)
class TrialRecord:
    """
    A single inner-loop trial and the damping decision taken on it.
    """

    update: int  # Accepted updates before this trial
    lambda_: float  # Damping used to compute the step
    error: float  # RMS at the trial point
    accepted: bool
    lambda_after: float


@dataclass(slots=True)
class SolveTrace:
    """
    Per-solve history. Append-only while the solver runs.

    errors[0] is the RMS at the initial guess, errors[k] the RMS after the
    k-th accepted update.
    """

    errors: list[float] = field(default_factory=list)
    improvements: list[float] = field(default_factory=list)
    trials: list[TrialRecord] = field(default_factory=list)
    updates: int = 0
    t_sum: float = 0.0  # Seconds, whole solve
    t_diff: float = 0.0  # Seconds spent computing Jacobians
    t_solve: float = 0.0  # Seconds spent solving normal equations


@dataclass(frozen=True, slots=True)
class SolveResult:
    """
    Outcome of a solve. x is the best vector reached (None if none was).
    """

    status: SolveStatus
    x: np.ndarray | None
    trace: SolveTrace

    @property
    def success(self) -> bool:
        return self.status is SolveStatus.CONVERGED


# ============================================================================
# Camera Data
# ============================================================================


@dataclass(frozen=True, slots=True)
class CameraIntrinsics:
    """
    Intrinsic parameters for a camera. Held fixed by bundle adjustment.
    """

    matrix: np.ndarray  # 3x3 camera matrix
    distortion: np.ndarray  # Distortion coefficients (5,)


@dataclass(frozen=True, slots=True)
class CameraExtrinsics:
    """
    Extrinsic parameters for a camera relative to world origin.
    """

    rotation: np.ndarray  # 3x3 rotation matrix
    translation: np.ndarray  # (3,) translation vector


@dataclass(frozen=True, slots=True)
class CalibratedCamera:
    """
    Complete calibration for a camera (intrinsics + extrinsics).
    """

    port: int
    intrinsics: CameraIntrinsics
    extrinsics: CameraExtrinsics


# ============================================================================
# Pure functions
# ============================================================================


def rms(y: np.ndarray) -> float:
    """Root-mean-square of a residual vector."""
    y = np.asarray(y, dtype=np.float64)
    if y.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(y**2)))


def extrinsics_to_vector(extrinsics: CameraExtrinsics) -> np.ndarray:
    """
    Convert extrinsics to 6-element vector.
    [rodrigues_x, rodrigues_y, rodrigues_z, tx, ty, tz]
    """
    import cv2

    rodrigues = cv2.Rodrigues(np.asarray(extrinsics.rotation, dtype=np.float64))[0][:, 0]
    return np.hstack([rodrigues, extrinsics.translation]).astype(np.float64)


def extrinsics_from_vector(vector: np.ndarray) -> CameraExtrinsics:
    """
    Create extrinsics from 6-element vector.
    """
    import cv2

    vector = np.asarray(vector, dtype=np.float64)
    rotation = cv2.Rodrigues(vector[0:3].copy())[0]
    translation = vector[3:6].copy()
    return CameraExtrinsics(rotation=rotation, translation=translation)
