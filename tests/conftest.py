"""
Pytest configuration and shared fixtures.
"""

import tempfile
from pathlib import Path

import numpy as np
import pytest


@pytest.fixture
def temp_dir():
    """Provide a temporary directory that's cleaned up after test."""
    with tempfile.TemporaryDirectory() as td:
        yield Path(td)


@pytest.fixture
def linear_model():
    """Linear residual y = A x + b with a known Jacobian A."""
    rng = np.random.default_rng(42)
    A = rng.normal(size=(6, 4))
    b = rng.normal(size=6)
    return A, b


@pytest.fixture
def nonlinear_func():
    """Smooth residual with every variable affecting every condition."""
    def func(x):
        return np.array([
            np.sin(x[0]) + x[1] ** 2,
            x[0] * x[2] - np.cos(x[3]),
            np.exp(0.1 * x[1]) + x[3] * x[0],
            x[2] ** 3 - x[1],
        ])
    return func


@pytest.fixture
def quadratic_func():
    """f(x) = (x0 - 3)^2, minimised at x0 = 3."""
    def func(x):
        return np.array([(x[0] - 3.0) ** 2])
    return func


@pytest.fixture
def rosenbrock_func():
    """Rosenbrock residuals, minimised at (1, 1)."""
    def func(x):
        return np.array([10.0 * (x[1] - x[0] ** 2), 1.0 - x[0]])
    return func


@pytest.fixture
def sample_intrinsics():
    """Typical camera intrinsics with zero distortion."""
    from calisolve.types import CameraIntrinsics
    return CameraIntrinsics(
        matrix=np.array([
            [800.0, 0.0, 640.0],
            [0.0, 800.0, 360.0],
            [0.0, 0.0, 1.0],
        ], dtype=np.float64),
        distortion=np.zeros(5, dtype=np.float64),
    )


@pytest.fixture
def stereo_scene(sample_intrinsics):
    """
    Two cameras 0.5m apart looking along Z at a grid of points 3-4m away.

    Returns (cameras, true_points, point_estimates) where point_estimates
    holds exact observations of true_points.
    """
    import cv2

    from calisolve.calibration import PointEstimates
    from calisolve.types import CalibratedCamera, CameraExtrinsics

    cameras = {
        0: CalibratedCamera(
            port=0,
            intrinsics=sample_intrinsics,
            extrinsics=CameraExtrinsics(
                rotation=np.eye(3),
                translation=np.zeros(3),
            ),
        ),
        1: CalibratedCamera(
            port=1,
            intrinsics=sample_intrinsics,
            extrinsics=CameraExtrinsics(
                rotation=np.eye(3),
                translation=np.array([-0.5, 0.0, 0.0]),
            ),
        ),
    }

    xs, ys = np.meshgrid([-0.4, 0.0, 0.4], [-0.3, 0.3])
    true_points = np.column_stack([
        xs.ravel(),
        ys.ravel(),
        3.0 + 0.2 * np.arange(xs.size),
    ]).astype(np.float64)

    camera_indices = []
    obj_indices = []
    img_points = []

    for port, cam in cameras.items():
        rvec = cv2.Rodrigues(cam.extrinsics.rotation)[0]
        proj, _ = cv2.projectPoints(
            true_points,
            rvec,
            cam.extrinsics.translation,
            cam.intrinsics.matrix,
            cam.intrinsics.distortion,
        )
        camera_indices.extend([port] * len(true_points))
        obj_indices.extend(range(len(true_points)))
        img_points.extend(proj[:, 0, :].tolist())

    point_estimates = PointEstimates(
        camera_indices=np.array(camera_indices, dtype=np.int32),
        img_points=np.array(img_points, dtype=np.float64),
        obj_indices=np.array(obj_indices, dtype=np.int32),
        obj_points=true_points.copy(),
    )
    return cameras, true_points, point_estimates
