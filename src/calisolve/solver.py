"""
Levenberg-Marquardt solver.

The outer loop recomputes the Jacobian at the best point; the inner loop
tries damped Gauss-Newton steps, dividing lambda by eta on improvement and
multiplying it by eta on rejection. All algorithm state (lambda, best point,
trace) is local to a single solve() call.
"""

from __future__ import annotations

import logging
import time

import numpy as np
from scipy import linalg

from .problem import LeastSquaresProblem
from .types import (
    SolveResult,
    SolveStatus,
    SolveTrace,
    SolverConfig,
    TrialRecord,
    rms,
)

logger = logging.getLogger(__name__)

_RULE = "=" * 80


class LevenbergMarquardt:
    """
    Levenberg-Marquardt least-squares solver.

    Example:
        >>> from calisolve import FunctionProblem
        >>> problem = FunctionProblem(lambda x: x - 1.0, n_vars=2, n_conds=2)
        >>> result = LevenbergMarquardt(SolverConfig()).solve(problem, np.zeros(2))
        >>> result.success
        True
    """

    def __init__(self, config: SolverConfig | None = None):
        self.config = config or SolverConfig()

    def solve(
        self,
        problem: LeastSquaresProblem,
        x0: np.ndarray | None = None,
    ) -> SolveResult:
        """
        Minimise the RMS of problem's residual starting from x0.

        On success the best vector has been committed via
        problem.set_solution(). Failures are reported through the result
        status; nothing is committed.

        Args:
            problem: Problem to solve
            x0: Initial full parameter vector (default: problem.initial_guess())

        Returns:
            SolveResult with status, best vector and trace
        """
        trace = SolveTrace()
        t_start = time.perf_counter()

        if x0 is None:
            x0 = problem.initial_guess()
            if x0 is None:
                logger.error("vectorisation of the initial guess failed")
                return self._finish(SolveStatus.SERIALIZATION_ERROR, None, trace, t_start)

        x_best = np.array(x0, dtype=np.float64).ravel()

        if not problem.active_vars:
            logger.warning("no active variables, nothing to optimise")
        else:
            try:
                status, x_best = self._iterate(problem, x_best, trace)
            except Exception:
                logger.exception("exception caught in optimisation loop")
                return self._finish(SolveStatus.EVALUATION_ERROR, x_best, trace, t_start)

            if status is not SolveStatus.CONVERGED:
                return self._finish(status, x_best, trace, t_start)

        if not problem.set_solution(x_best):
            logger.error("error setting solution, x_best = %s", np.array2string(x_best))
            return self._finish(SolveStatus.SOLUTION_REJECTED, x_best, trace, t_start)

        return self._finish(SolveStatus.CONVERGED, x_best, trace, t_start)

    # ------------------------------------------------------------------

    def _iterate(
        self,
        problem: LeastSquaresProblem,
        x_best: np.ndarray,
        trace: SolveTrace,
    ) -> tuple[SolveStatus, np.ndarray]:
        term = self.config.term
        eta = self.config.eta
        verbose = self.config.verbose

        lambda_ = self.config.initial_lambda
        converged = False

        y_best = problem.evaluate(x_best)
        e_best = rms(y_best)
        trace.errors.append(e_best)

        if verbose:
            logger.info(_RULE)
            logger.info(
                "%6s%12s%16s%16s%16s",
                "Update", "RMSE", "lambda", "Rel. Step Size", "Rel. Error Drop",
            )
            logger.info(_RULE)
            logger.info("%6d%12.6g%16s", 0, e_best, _fmt(lambda_))

        while not converged:
            t = time.perf_counter()
            J = problem.compute_jacobian(x_best, y_best)
            trace.t_diff += time.perf_counter() - t

            H = J.T @ J  # Gauss-Newton Hessian
            D = J.T @ y_best  # Error gradient

            if lambda_ is None:
                lambda_ = float(np.mean(np.diag(H)))

            better = False
            stalled = False
            trials = 0
            derr_ratio = step_ratio = 1.0

            while not better and not converged:
                A = H + lambda_ * np.diag(np.diag(H))

                t = time.perf_counter()
                x_delta = _solve_normal_equations(A, -D)
                trace.t_solve += time.perf_counter() - t

                if _ill_posed(H, x_delta, problem.active_vars):
                    logger.error("problem ill-posed")
                    return SolveStatus.ILL_POSED, x_best

                x_try = problem.apply_update(x_best, x_delta)
                y_try = problem.evaluate(x_try)
                e_try = rms(y_try)
                de = e_best - e_try

                better = de > 0
                trials += 1
                lambda_used = lambda_

                if better:
                    lambda_ /= eta

                    x_best = x_try
                    y_best = np.asarray(y_try, dtype=np.float64)
                    e_best = e_try

                    trace.improvements.append(de)
                    trace.errors.append(e_best)
                    trace.updates += 1
                elif _damping_overflows(H, lambda_ * eta):
                    stalled = True
                else:
                    lambda_ *= eta

                trace.trials.append(
                    TrialRecord(
                        update=trace.updates - int(better),
                        lambda_=lambda_used,
                        error=e_try,
                        accepted=better,
                        lambda_after=lambda_,
                    )
                )

                derr = trace.improvements
                derr_ratio = derr[-1] / derr[-2] if len(derr) > 1 else 1.0
                step_ratio = _step_ratio(x_delta, x_best)
                updates = trace.updates

                converged |= updates >= term.max_count
                converged |= updates > 1 and derr_ratio < term.epsilon
                converged |= updates > 1 and step_ratio < term.epsilon
                converged |= not better and (lambda_ == 0 or stalled or trials >= term.max_count)

            if verbose:
                logger.info(
                    "%6d%12.6g%16.6g%16.6g%16.6g",
                    trace.updates, e_best, lambda_, step_ratio, derr_ratio,
                )

        return SolveStatus.CONVERGED, x_best

    @staticmethod
    def _finish(
        status: SolveStatus,
        x: np.ndarray | None,
        trace: SolveTrace,
        t_start: float,
    ) -> SolveResult:
        trace.t_sum = time.perf_counter() - t_start
        return SolveResult(status=status, x=x, trace=trace)


def solve(
    problem: LeastSquaresProblem,
    x0: np.ndarray | None = None,
    config: SolverConfig | None = None,
) -> SolveResult:
    """Solve problem with a one-off LevenbergMarquardt solver."""
    return LevenbergMarquardt(config).solve(problem, x0)


# ============================================================================
# Helpers
# ============================================================================


def _solve_normal_equations(A: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Solve A x = b; a singular or non-finite system gives a NaN step."""
    if not np.all(np.isfinite(A)) or not np.all(np.isfinite(b)):
        return np.full(b.shape, np.nan)

    try:
        return linalg.solve(A, b, assume_a="sym")
    except linalg.LinAlgError:
        return np.full(b.shape, np.nan)


def _ill_posed(H: np.ndarray, x_delta: np.ndarray, active_vars) -> bool:
    ill = False

    for d, h in enumerate(np.diag(H)):
        if h == 0:
            logger.warning("change of parameter %d not responsive", active_vars[d])
            ill = True

    return ill or not np.isfinite(np.linalg.norm(x_delta))


def _damping_overflows(H: np.ndarray, lambda_: float) -> bool:
    """True if lambda, or the augmented system built from it, is not finite."""
    with np.errstate(over="ignore", invalid="ignore"):
        return not (np.isfinite(lambda_) and np.all(np.isfinite(lambda_ * np.diag(H))))


def _step_ratio(x_delta: np.ndarray, x: np.ndarray) -> float:
    x_norm = np.linalg.norm(x)
    if x_norm == 0:
        return np.inf
    return float(np.linalg.norm(x_delta) / x_norm)


def _fmt(lambda_: float | None) -> str:
    return "auto" if lambda_ is None else f"{lambda_:.6g}"
