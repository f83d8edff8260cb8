"""
Tests for calisolve.problem and calisolve.vectorisable.
"""

import logging

import numpy as np
import pytest

from calisolve.problem import FunctionProblem, LeastSquaresProblem
from calisolve.types import JacobianConfig
from calisolve.vectorisable import ParameterVector, Vectorisable


class TestParameterVector:
    def test_store_returns_copy(self):
        model = ParameterVector([1.0, 2.0, 3.0])
        v = model.store()
        v[0] = 100.0

        np.testing.assert_array_equal(model.store(), [1.0, 2.0, 3.0])

    def test_unset_fails_to_store(self):
        model = ParameterVector(size=3)
        assert model.store() is None

    def test_restore_roundtrip_exact(self):
        values = np.array([0.1, 1e-300, -7.25e12])
        model = ParameterVector(size=3)

        assert model.restore(values)
        np.testing.assert_array_equal(model.store(), values)

    def test_restore_wrong_length(self):
        model = ParameterVector([1.0, 2.0])
        assert not model.restore(np.zeros(3))
        np.testing.assert_array_equal(model.store(), [1.0, 2.0])

    def test_requires_values_or_size(self):
        with pytest.raises(ValueError):
            ParameterVector()

    def test_size_mismatch(self):
        with pytest.raises(ValueError):
            ParameterVector([1.0, 2.0], size=3)

    def test_is_vectorisable(self):
        assert isinstance(ParameterVector(size=1), Vectorisable)


class TestFunctionProblem:
    def test_abstract_base(self):
        with pytest.raises(TypeError):
            LeastSquaresProblem(1, 1)

    def test_evaluate_and_call(self):
        problem = FunctionProblem(lambda x: 2 * x, n_vars=2, n_conds=2)
        np.testing.assert_array_equal(problem.evaluate(np.array([1.0, 2.0])), [2.0, 4.0])
        np.testing.assert_array_equal(problem(np.array([1.0, 2.0])), [2.0, 4.0])

    def test_evaluate_model(self):
        problem = FunctionProblem(lambda x: x + 1, n_vars=2, n_conds=2)
        y = problem.evaluate_model(ParameterVector([1.0, 2.0]))
        np.testing.assert_array_equal(y, [2.0, 3.0])

    def test_evaluate_model_store_failure(self, caplog):
        problem = FunctionProblem(lambda x: x, n_vars=2, n_conds=2)

        with caplog.at_level(logging.ERROR):
            y = problem.evaluate_model(ParameterVector(size=2))

        assert y.size == 0
        assert "vectorisation failed" in caplog.text

    def test_set_solution(self):
        problem = FunctionProblem(lambda x: x, n_vars=2, n_conds=2)
        assert problem.set_solution(np.array([1.0, 2.0]))
        np.testing.assert_array_equal(problem.solution, [1.0, 2.0])

    def test_set_solution_wrong_length(self):
        problem = FunctionProblem(lambda x: x, n_vars=2, n_conds=2, x0=np.zeros(2))
        assert not problem.set_solution(np.zeros(3))
        np.testing.assert_array_equal(problem.solution, [0.0, 0.0])

    def test_initial_guess(self):
        problem = FunctionProblem(lambda x: x, n_vars=2, n_conds=2)
        assert problem.initial_guess() is None

        problem = FunctionProblem(lambda x: x, n_vars=2, n_conds=2, x0=[1.0, 2.0])
        np.testing.assert_array_equal(problem.initial_guess(), [1.0, 2.0])

    def test_explicit_thread_count(self):
        problem = FunctionProblem(
            lambda x: x, n_vars=2, n_conds=2, jacobian=JacobianConfig(threads=3)
        )
        assert problem.diff_threads == 3

    def test_pattern_shape_checked(self):
        with pytest.raises(ValueError):
            FunctionProblem(lambda x: x, n_vars=2, n_conds=2, pattern=np.ones((3, 2)))


class TestActiveVars:
    def test_default_all(self):
        problem = FunctionProblem(lambda x: x, n_vars=4, n_conds=4)
        assert problem.active_vars == (0, 1, 2, 3)

    def test_subset(self):
        problem = FunctionProblem(lambda x: x, n_vars=4, n_conds=4)
        assert problem.set_active_vars([3, 1])
        assert problem.active_vars == (3, 1)

    @pytest.mark.parametrize("indices", [[0, 4], [-1], [1, 1]])
    def test_invalid_leaves_state(self, indices):
        problem = FunctionProblem(lambda x: x, n_vars=4, n_conds=4)
        problem.set_active_vars([0, 2])

        assert not problem.set_active_vars(indices)
        assert problem.active_vars == (0, 2)


class TestApplyUpdate:
    def test_only_active_coordinates_change(self):
        problem = FunctionProblem(lambda x: x, n_vars=5, n_conds=5)
        problem.set_active_vars([1, 3])
        x0 = np.arange(5, dtype=np.float64)

        x1 = problem.apply_update(x0, np.array([10.0, 20.0]))

        np.testing.assert_array_equal(x1, [0.0, 11.0, 2.0, 23.0, 4.0])
        np.testing.assert_array_equal(x0, np.arange(5))

    def test_follows_active_order(self):
        problem = FunctionProblem(lambda x: x, n_vars=3, n_conds=3)
        problem.set_active_vars([2, 0])

        x1 = problem.apply_update(np.zeros(3), np.array([1.0, 2.0]))

        np.testing.assert_array_equal(x1, [2.0, 0.0, 1.0])

    def test_random_deltas_preserve_inactive(self):
        rng = np.random.default_rng(0)
        problem = FunctionProblem(lambda x: x, n_vars=8, n_conds=8)
        active = [6, 1, 4]
        inactive = [0, 2, 3, 5, 7]
        problem.set_active_vars(active)

        for _ in range(20):
            x0 = rng.normal(size=8)
            x1 = problem.apply_update(x0, rng.normal(size=3))
            np.testing.assert_array_equal(x1[inactive], x0[inactive])

    def test_delta_longer_than_x0(self):
        problem = FunctionProblem(lambda x: x, n_vars=2, n_conds=2)
        with pytest.raises(AssertionError):
            problem.apply_update(np.zeros(2), np.zeros(3))
