"""
Bundle adjustment as a least-squares problem.

Refines camera extrinsics and 3D point estimates against 2D observations,
with camera intrinsics held fixed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import cv2
import numpy as np
from scipy.sparse import lil_matrix

from ..problem import LeastSquaresProblem
from ..solver import LevenbergMarquardt
from ..types import (
    CalibratedCamera,
    JacobianConfig,
    SolveResult,
    SolverConfig,
    extrinsics_from_vector,
    extrinsics_to_vector,
)

logger = logging.getLogger(__name__)

CAMERA_PARAM_COUNT = 6
POINT_PARAM_COUNT = 3


# ============================================================================
# Data Structures for Bundle Adjustment
# ============================================================================


@dataclass
class PointEstimates:
    """
    Holds 2D image observations and their corresponding 3D point estimates.
    """

    camera_indices: np.ndarray  # (n,) camera port for each 2D observation
    img_points: np.ndarray  # (n, 2) 2D image coordinates
    obj_indices: np.ndarray  # (n,) index into obj_points for each observation
    obj_points: np.ndarray  # (m, 3) 3D point estimates

    @property
    def n_obj_points(self) -> int:
        return self.obj_points.shape[0]

    @property
    def n_img_points(self) -> int:
        return self.img_points.shape[0]


class BundleState:
    """
    Cameras and 3D points as one flat vector.

    Layout: [cam_0 (rodrigues, t), ..., cam_k, point_0 (xyz), ..., point_m]
    with cameras in ascending port order.
    """

    def __init__(
        self,
        cameras: dict[int, CalibratedCamera],
        point_estimates: PointEstimates,
    ):
        self.cameras = dict(cameras)
        self.point_estimates = point_estimates
        self.ports = sorted(self.cameras.keys())
        self.port_to_idx = {port: idx for idx, port in enumerate(self.ports)}

    @property
    def n_vars(self) -> int:
        return (
            len(self.ports) * CAMERA_PARAM_COUNT
            + self.point_estimates.n_obj_points * POINT_PARAM_COUNT
        )

    def store(self) -> np.ndarray | None:
        if not self.ports:
            return None

        camera_params = np.zeros((len(self.ports), CAMERA_PARAM_COUNT), dtype=np.float64)
        for port, cam in self.cameras.items():
            camera_params[self.port_to_idx[port]] = extrinsics_to_vector(cam.extrinsics)

        return np.hstack([
            camera_params.ravel(),
            np.asarray(self.point_estimates.obj_points, dtype=np.float64).ravel(),
        ])

    def restore(self, vector: np.ndarray) -> bool:
        vector = np.asarray(vector, dtype=np.float64)
        if vector.ndim != 1 or vector.size != self.n_vars:
            return False

        camera_params, points = _unpack(vector, len(self.ports))

        self.cameras = {
            port: CalibratedCamera(
                port=port,
                intrinsics=cam.intrinsics,
                extrinsics=extrinsics_from_vector(camera_params[self.port_to_idx[port]]),
            )
            for port, cam in self.cameras.items()
        }

        pe = self.point_estimates
        self.point_estimates = PointEstimates(
            camera_indices=pe.camera_indices,
            img_points=pe.img_points,
            obj_indices=pe.obj_indices,
            obj_points=points.copy(),
        )
        return True


# ============================================================================
# Problem
# ============================================================================


class BundleAdjustmentProblem(LeastSquaresProblem):
    """
    Reprojection error of every observation, two residuals (x, y) each.

    Args:
        state: Cameras and points to refine; receives the solution
        fix_first_camera: If True, the lowest-port camera stays where it is
        jacobian: Differentiation settings
    """

    def __init__(
        self,
        state: BundleState,
        fix_first_camera: bool = True,
        jacobian: JacobianConfig | None = None,
    ):
        pattern = get_sparsity_pattern(state.point_estimates, state.port_to_idx)

        super().__init__(
            n_conds=state.point_estimates.n_img_points * 2,
            n_vars=state.n_vars,
            jacobian=jacobian,
            pattern=pattern.toarray().astype(bool),
        )
        self.state = state

        if fix_first_camera:
            self.set_active_vars(range(CAMERA_PARAM_COUNT, self.n_vars))

    def evaluate(self, x: np.ndarray) -> np.ndarray:
        return xy_reprojection_error(
            x, self.state.point_estimates, self.state.cameras, self.state.port_to_idx
        )

    def set_solution(self, x: np.ndarray) -> bool:
        return self.state.restore(x)

    def initial_guess(self) -> np.ndarray | None:
        return self.state.store()


# ============================================================================
# Pure functions
# ============================================================================


def _unpack(params: np.ndarray, n_cameras: int) -> tuple[np.ndarray, np.ndarray]:
    offset = n_cameras * CAMERA_PARAM_COUNT
    camera_params = params[:offset].reshape(n_cameras, CAMERA_PARAM_COUNT)
    points_3d = params[offset:].reshape(-1, POINT_PARAM_COUNT)
    return camera_params, points_3d


def get_sparsity_pattern(
    point_estimates: PointEstimates,
    port_to_idx: dict[int, int],
) -> lil_matrix:
    """
    Build the structural Jacobian pattern (residuals x parameters).
    """
    n_cameras = len(port_to_idx)

    m = point_estimates.n_img_points * 2  # 2 residuals per observation (x, y)
    n = n_cameras * CAMERA_PARAM_COUNT + point_estimates.n_obj_points * POINT_PARAM_COUNT

    A = lil_matrix((m, n), dtype=int)

    i = np.arange(point_estimates.n_img_points)
    cam_idx = np.array(
        [port_to_idx[int(port)] for port in point_estimates.camera_indices], dtype=np.int64
    )

    # Camera parameters affect their observations
    for s in range(CAMERA_PARAM_COUNT):
        A[2 * i, cam_idx * CAMERA_PARAM_COUNT + s] = 1
        A[2 * i + 1, cam_idx * CAMERA_PARAM_COUNT + s] = 1

    # 3D point parameters affect their observations
    offset = n_cameras * CAMERA_PARAM_COUNT
    for s in range(POINT_PARAM_COUNT):
        A[2 * i, offset + point_estimates.obj_indices * POINT_PARAM_COUNT + s] = 1
        A[2 * i + 1, offset + point_estimates.obj_indices * POINT_PARAM_COUNT + s] = 1

    return A


def xy_reprojection_error(
    params: np.ndarray,
    point_estimates: PointEstimates,
    cameras: dict[int, CalibratedCamera],
    port_to_idx: dict[int, int],
) -> np.ndarray:
    """
    Compute reprojection error (projected - observed), flattened to (2n,).
    """
    camera_params, points_3d = _unpack(np.asarray(params, dtype=np.float64), len(port_to_idx))

    projected = np.zeros((point_estimates.n_img_points, 2), dtype=np.float64)

    for port, cam in cameras.items():
        mask = point_estimates.camera_indices == port

        if not np.any(mask):
            continue

        obj_pts = points_3d[point_estimates.obj_indices[mask]]
        port_idx = port_to_idx[port]

        proj, _ = cv2.projectPoints(
            obj_pts,
            camera_params[port_idx, 0:3].copy(),
            camera_params[port_idx, 3:6].copy(),
            cam.intrinsics.matrix,
            cam.intrinsics.distortion,
        )

        projected[mask] = proj[:, 0, :]

    return (projected - point_estimates.img_points).ravel()


def reprojection_rmse(state: BundleState) -> dict[str, float]:
    """
    Compute RMSE of reprojection error.

    Returns:
        Dict with 'overall' RMSE and per-camera RMSE keyed by port string
    """
    params = state.store()
    pe = state.point_estimates

    error = xy_reprojection_error(params, pe, state.cameras, state.port_to_idx)
    euclidean = np.sqrt(np.sum(error.reshape(-1, 2) ** 2, axis=1))

    rmse = {"overall": float(np.sqrt(np.mean(euclidean**2)))}

    for port in state.ports:
        mask = pe.camera_indices == port
        if np.any(mask):
            rmse[str(port)] = float(np.sqrt(np.mean(euclidean[mask] ** 2)))

    return rmse


def run_bundle_adjustment(
    cameras: dict[int, CalibratedCamera],
    point_estimates: PointEstimates,
    fix_first_camera: bool = True,
    solver: SolverConfig | None = None,
    jacobian: JacobianConfig | None = None,
) -> tuple[dict[int, CalibratedCamera], PointEstimates, SolveResult]:
    """
    Run bundle adjustment to refine camera extrinsics and 3D point estimates.

    Args:
        cameras: Dict of port -> CalibratedCamera
        point_estimates: Initial point estimates
        fix_first_camera: If True, first camera stays at its pose
        solver: Levenberg-Marquardt settings
        jacobian: Differentiation settings

    Returns:
        (refined_cameras, refined_point_estimates, solve_result); on failure
        the inputs are returned unchanged alongside the failed result
    """
    state = BundleState(cameras, point_estimates)
    problem = BundleAdjustmentProblem(state, fix_first_camera, jacobian)

    result = LevenbergMarquardt(solver).solve(problem)

    if not result.success:
        logger.warning("bundle adjustment failed: %s", result.status.value)
        return cameras, point_estimates, result

    logger.info(
        "bundle adjustment: rmse %.4g -> %.4g after %d updates",
        result.trace.errors[0],
        result.trace.errors[-1],
        result.trace.updates,
    )
    return state.cameras, state.point_estimates, result
