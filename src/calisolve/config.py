"""
Configuration loading/saving.

Pure functions operating on dataclasses.
- TOML for optimisation settings ([solver] and [jacobian] sections)
"""

from __future__ import annotations

from pathlib import Path

import rtoml

from .types import JacobianConfig, OptimConfig, SolverConfig, TermCriteria


AUTO_LAMBDA = "auto"


# ============================================================================
# TOML Optimisation Configuration
# ============================================================================


def load_optim_config(path: Path) -> OptimConfig:
    """
    Load optimisation configuration from TOML file.

    Missing keys fall back to the dataclass defaults. Invalid values
    (e.g. eta <= 1) raise ValueError.

    Args:
        path: Path to TOML file

    Returns:
        OptimConfig dataclass
    """
    data = rtoml.load(Path(path))

    solver_data = data.get("solver", {})
    jacobian_data = data.get("jacobian", {})

    defaults = create_default_optim_config()

    term = TermCriteria(
        max_count=int(solver_data.get("max_iterations", defaults.solver.term.max_count)),
        epsilon=float(solver_data.get("epsilon", defaults.solver.term.epsilon)),
    )

    lambda_value = solver_data.get("lambda", AUTO_LAMBDA)
    if isinstance(lambda_value, str):
        if lambda_value.lower() != AUTO_LAMBDA:
            raise ValueError(f"lambda must be a number or '{AUTO_LAMBDA}', got {lambda_value!r}")
        initial_lambda = None
    else:
        initial_lambda = float(lambda_value)

    solver = SolverConfig(
        term=term,
        initial_lambda=initial_lambda,
        eta=float(solver_data.get("eta", defaults.solver.eta)),
        verbose=bool(solver_data.get("verbose", defaults.solver.verbose)),
    )

    threads = int(jacobian_data.get("threads", 0))
    jacobian = JacobianConfig(
        diff_step=float(jacobian_data.get("diff_step", defaults.jacobian.diff_step)),
        threads=threads or None,  # 0 means hardware concurrency
    )

    return OptimConfig(solver=solver, jacobian=jacobian)


def save_optim_config(config: OptimConfig, path: Path) -> None:
    """
    Save optimisation configuration to TOML file.

    Args:
        config: OptimConfig dataclass
        path: Path to save TOML file
    """
    solver = config.solver

    data = {
        "solver": {
            "max_iterations": solver.term.max_count,
            "epsilon": solver.term.epsilon,
            "lambda": AUTO_LAMBDA if solver.initial_lambda is None else solver.initial_lambda,
            "eta": solver.eta,
            "verbose": solver.verbose,
        },
        "jacobian": {
            "diff_step": config.jacobian.diff_step,
            "threads": config.jacobian.threads or 0,
        },
    }

    # Ensure parent directory exists
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w") as f:
        rtoml.dump(data, f)


def create_default_optim_config() -> OptimConfig:
    """
    Create a default optimisation configuration.

    Returns:
        OptimConfig with auto lambda and hardware-concurrency threads
    """
    return OptimConfig(solver=SolverConfig(), jacobian=JacobianConfig())
