"""
Forward-difference Jacobian estimation.

Active variables are dealt round-robin to a fixed number of worker slots.
Each call spawns its own thread pool and joins it before returning, so no
buffers outlive the call. Workers perturb private copies of x and write only
their own columns of J.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor

import numpy as np

from .types import JacobianSlice

logger = logging.getLogger(__name__)


def hardware_concurrency() -> int:
    """Number of hardware threads on this host (at least 1)."""
    return os.cpu_count() or 1


def make_jacobian_slices(
    active_vars: Sequence[int],
    n_threads: int,
    pattern: np.ndarray | None = None,
) -> list[list[JacobianSlice]]:
    """
    Partition the active variables into n_threads work lists.

    Column i (the i-th active variable) goes to slot i % n_threads, so the
    assignment depends only on the active set and the thread count. Slots
    may be empty when there are fewer variables than threads.

    Args:
        active_vars: Active variable indices in column order
        n_threads: Number of worker slots (>= 1)
        pattern: Optional (conds, vars) bool sparsity pattern

    Returns:
        List of n_threads lists of JacobianSlice
    """
    if n_threads < 1:
        raise ValueError(f"n_threads must be positive, got {n_threads}")

    slices: list[list[JacobianSlice]] = [[] for _ in range(n_threads)]

    for col, var in enumerate(active_vars):
        mask = pattern[:, var] if pattern is not None else None
        slices[col % n_threads].append(JacobianSlice(col=col, var=int(var), mask=mask))

    return slices


def _diff_slices(
    evaluate: Callable[[np.ndarray], np.ndarray],
    x: np.ndarray,
    y: np.ndarray,
    diff_step: float,
    slices: list[JacobianSlice],
    J: np.ndarray,
) -> None:
    """
    Worker body: Jk = (f(x + dx) - f(x)) / dx for every assigned column.
    """
    for s in slices:
        x_k = x.copy()
        y_k = y.copy()
        x_k[s.var] += diff_step

        y_pert = np.asarray(evaluate(x_k), dtype=np.float64)
        if y_pert.shape != y_k.shape:
            raise ValueError(
                f"residual at perturbed variable {s.var} has shape {y_pert.shape}, "
                f"expected {y_k.shape}"
            )

        col = (y_pert - y_k) / diff_step

        if s.mask is not None:
            col = np.where(s.mask, col, 0.0)

        J[:, s.col] = col


def compute_jacobian(
    evaluate: Callable[[np.ndarray], np.ndarray],
    x: np.ndarray,
    y: np.ndarray,
    active_vars: Sequence[int],
    diff_step: float,
    n_threads: int,
    pattern: np.ndarray | None = None,
) -> np.ndarray:
    """
    Compute the (conds, len(active_vars)) Jacobian at x.

    y must be the residual at x. It is the shared baseline of every column,
    never re-evaluated per column.

    Args:
        evaluate: Thread-safe residual function
        x: Full parameter vector
        y: Residual at x
        active_vars: Active variable indices in column order
        diff_step: Forward difference step
        n_threads: Number of worker slots
        pattern: Optional (conds, vars) bool sparsity pattern

    Returns:
        Dense Jacobian matrix
    """
    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)

    J = np.zeros((y.size, len(active_vars)), dtype=np.float64)
    work = [s for s in make_jacobian_slices(active_vars, n_threads, pattern) if s]

    if not work:
        return J

    with ThreadPoolExecutor(max_workers=len(work)) as executor:
        futures = [
            executor.submit(_diff_slices, evaluate, x, y, diff_step, slices, J)
            for slices in work
        ]
        # Join all and re-raise the first worker failure
        for future in futures:
            future.result()

    logger.debug("Jacobian %s computed on %d threads", J.shape, len(work))
    return J
