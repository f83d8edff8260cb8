"""
Calibration problems for calisolve.

Each problem is a LeastSquaresProblem whose state implements Vectorisable.
"""

from .bundle import (
    BundleAdjustmentProblem,
    BundleState,
    PointEstimates,
    get_sparsity_pattern,
    reprojection_rmse,
    run_bundle_adjustment,
    xy_reprojection_error,
)

__all__ = [
    "BundleAdjustmentProblem",
    "BundleState",
    "PointEstimates",
    "get_sparsity_pattern",
    "reprojection_rmse",
    "run_bundle_adjustment",
    "xy_reprojection_error",
]
