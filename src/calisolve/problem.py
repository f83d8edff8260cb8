"""
Least-squares problem abstraction.

A problem owns the residual function, the active-variable set, the
differentiation settings and an optional Jacobian sparsity pattern. None of
these change while a solve is running.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence

import numpy as np

from .jacobian import compute_jacobian, hardware_concurrency
from .types import JacobianConfig
from .vectorisable import Vectorisable

logger = logging.getLogger(__name__)


class LeastSquaresProblem(ABC):
    """
    Base class for problems solved by the Levenberg-Marquardt solver.

    Subclasses implement evaluate(), which must be safe to call concurrently
    with different x, and set_solution().
    """

    def __init__(
        self,
        n_conds: int,
        n_vars: int,
        jacobian: JacobianConfig | None = None,
        pattern: np.ndarray | None = None,
    ):
        jacobian = jacobian or JacobianConfig()

        if pattern is not None:
            pattern = np.asarray(pattern, dtype=bool)
            if pattern.shape != (n_conds, n_vars):
                raise ValueError(
                    f"Jacobian pattern shape {pattern.shape} != ({n_conds}, {n_vars})"
                )

        self.n_conds = n_conds
        self.n_vars = n_vars
        self.diff_step = jacobian.diff_step
        self.diff_threads = jacobian.threads or hardware_concurrency()
        self.jacobian_pattern = pattern
        self._active_vars: tuple[int, ...] = tuple(range(n_vars))

    # ------------------------------------------------------------------
    # To be implemented by concrete problems
    # ------------------------------------------------------------------

    @abstractmethod
    def evaluate(self, x: np.ndarray) -> np.ndarray:
        """Residual vector (n_conds,) at the full parameter vector x."""

    @abstractmethod
    def set_solution(self, x: np.ndarray) -> bool:
        """Commit x into the model's own state. False if it cannot be written."""

    def initial_guess(self) -> np.ndarray | None:
        """Vectorised current state, used when solve() is given no x0."""
        return None

    # ------------------------------------------------------------------

    def __call__(self, x: np.ndarray) -> np.ndarray:
        return self.evaluate(x)

    def evaluate_model(self, model: Vectorisable) -> np.ndarray:
        """Evaluate a vectorisable model directly."""
        x = model.store()

        if x is None:
            logger.error("vectorisation failed")
            return np.empty(0, dtype=np.float64)

        return self.evaluate(x)

    @property
    def active_vars(self) -> tuple[int, ...]:
        return self._active_vars

    def set_active_vars(self, indices: Sequence[int]) -> bool:
        """
        Restrict optimisation to a subset of variables, in the given order.
        Returns False, leaving the current set in place, on a bad index.
        """
        indices = tuple(int(i) for i in indices)

        if len(set(indices)) != len(indices):
            return False
        if any(i < 0 or i >= self.n_vars for i in indices):
            return False

        self._active_vars = indices
        return True

    def compute_jacobian(self, x: np.ndarray, y: np.ndarray | None = None) -> np.ndarray:
        """
        Forward-difference Jacobian (n_conds, len(active_vars)) at x.

        y is the residual at x; it is evaluated once here if not given.
        """
        x = np.asarray(x, dtype=np.float64)
        y = self.evaluate(x) if y is None else y
        y = np.asarray(y, dtype=np.float64)

        if y.size != self.n_conds:
            raise ValueError(f"residual has {y.size} conditions, expected {self.n_conds}")

        return compute_jacobian(
            self.evaluate,
            x,
            y,
            self._active_vars,
            self.diff_step,
            self.diff_threads,
            self.jacobian_pattern,
        )

    def apply_update(self, x0: np.ndarray, delta: np.ndarray) -> np.ndarray:
        """
        Add delta (in active-variable order) to a copy of x0.
        Inactive coordinates are left unchanged.
        """
        x0 = np.asarray(x0, dtype=np.float64)
        delta = np.asarray(delta, dtype=np.float64).ravel()
        assert delta.size <= x0.size

        x = x0.copy()
        for i, var in enumerate(self._active_vars):
            x[var] += delta[i]

        return x


class FunctionProblem(LeastSquaresProblem):
    """
    Wraps a pure function x -> residual.

    The accepted solution is kept in self.solution.
    """

    def __init__(
        self,
        func: Callable[[np.ndarray], np.ndarray],
        n_vars: int,
        n_conds: int,
        jacobian: JacobianConfig | None = None,
        pattern: np.ndarray | None = None,
        x0: np.ndarray | None = None,
    ):
        super().__init__(n_conds, n_vars, jacobian, pattern)
        self.func = func
        self.solution = None if x0 is None else np.array(x0, dtype=np.float64)

    def evaluate(self, x: np.ndarray) -> np.ndarray:
        return np.asarray(self.func(x), dtype=np.float64).ravel()

    def set_solution(self, x: np.ndarray) -> bool:
        x = np.asarray(x, dtype=np.float64)
        if x.ndim != 1 or x.size != self.n_vars:
            return False

        self.solution = x.copy()
        return True

    def initial_guess(self) -> np.ndarray | None:
        return None if self.solution is None else self.solution.copy()
