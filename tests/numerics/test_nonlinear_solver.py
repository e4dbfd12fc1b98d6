"""Tests of the Newton loop, the oscillation detection and the relaxation, driven by a
scripted model."""
from __future__ import annotations

import numpy as np
import pytest

import blackoil as bo
from blackoil.models.report import IterationReport


class ScriptedModel:
    """Model converging in a given iteration, recording the calls."""

    num_phases = 2

    def __init__(self, converge_at=None, fail_at=None):
        self.converge_at = converge_at
        self.fail_at = fail_at
        self.iterations = []
        self.prepared = 0
        self.finished = 0

    def prepare_step(self, dt, state, well_state):
        self.prepared += 1

    def nonlinear_iteration(self, iteration, dt, solver, state, well_state):
        self.iterations.append(iteration)
        report = IterationReport(linear_iterations=5, well_iterations=1)
        report.converged = self.converge_at is not None and iteration >= self.converge_at
        report.failed = self.fail_at is not None and iteration >= self.fail_at
        return report

    def after_step(self, dt, state, well_state):
        self.finished += 1


class TestStep:
    def test_converged(self):
        model = ScriptedModel(converge_at=2)
        solver = bo.NonlinearSolver(model)
        report = solver.step(1.0, None, None)
        assert report.converged and not report.failed
        assert model.iterations == [0, 1, 2]
        assert report.newton_iterations == 2
        assert report.linear_iterations == 15
        assert model.finished == 1
        assert solver.newton_iterations == 2

    def test_minimum_number_of_updates(self):
        # Converged from the start, but one update is required.
        model = ScriptedModel(converge_at=0)
        report = bo.NonlinearSolver(model, {"min_iter": 1}).step(1.0, None, None)
        assert model.iterations == [0, 1]
        assert report.newton_iterations == 1

    def test_not_converged(self):
        model = ScriptedModel()
        solver = bo.NonlinearSolver(model, {"max_iter": 3})
        report = solver.step(1.0, None, None)
        assert not report.converged and report.failed
        assert model.iterations == [0, 1, 2, 3]
        assert model.finished == 0
        assert solver.newton_iterations == 0
        assert solver.newton_iterations_last_step == 3

    def test_failed_iteration(self):
        model = ScriptedModel(converge_at=5, fail_at=1)
        report = bo.NonlinearSolver(model).step(1.0, None, None)
        assert model.iterations == [0, 1]
        assert not report.converged


class TestRelaxation:
    def test_oscillation(self):
        solver = bo.NonlinearSolver(ScriptedModel())
        history = [[1.0, 1.0, 0.0, 0.0], [0.5, 0.5, 0.0, 0.0], [1.0, 1.0, 0.0, 0.0]]
        assert solver.detect_oscillations(history, 2) == (True, False)
        # Only one phase oscillating is not enough.
        history[-2][1] = 1.0
        assert solver.detect_oscillations(history, 2) == (False, False)
        assert solver.detect_oscillations(history, 1) == (False, False)

    def test_stagnation(self):
        solver = bo.NonlinearSolver(ScriptedModel())
        history = [[1.0, 2.0]] * 3
        assert solver.detect_oscillations(history, 5) == (False, True)

    def test_dampen(self):
        solver = bo.NonlinearSolver(ScriptedModel())
        dx = np.array([1.0, -2.0])
        relaxed, old = solver.stabilize_nonlinear_update(dx, np.zeros(2), 1.0)
        np.testing.assert_allclose(relaxed, dx)
        relaxed, old = solver.stabilize_nonlinear_update(dx, np.zeros(2), 0.5)
        np.testing.assert_allclose(relaxed, [0.5, -1.0])
        np.testing.assert_allclose(old, dx)

    def test_sor(self):
        solver = bo.NonlinearSolver(ScriptedModel(), {"relax_type": "SOR"})
        assert solver.relax_type == bo.RelaxType.SOR
        relaxed, _ = solver.stabilize_nonlinear_update(
            np.array([1.0]), np.array([3.0]), 0.5
        )
        np.testing.assert_allclose(relaxed, [2.0])

    @pytest.mark.parametrize(
        "params", [{"relax_type": "linesearch"}, {"relax_max": 0.0}, {"max_iter": 0}]
    )
    def test_invalid_parameters(self, params):
        with pytest.raises(ValueError):
            bo.NonlinearSolver(ScriptedModel(), params)
