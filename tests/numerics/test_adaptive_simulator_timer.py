"""Tests of the sub-step timer of a report step."""
from __future__ import annotations

import pytest

import blackoil as bo


def test_steps_are_aligned_with_report_time():
    timer = bo.AdaptiveSimulatorTimer(0.0, 10.0, 1.0)
    assert timer.current_step_length == 1.0
    timer.advance()
    # Growth is limited to a factor three.
    timer.provide_time_step_estimate(5.0)
    assert timer.current_step_length == 3.0
    timer.advance()
    # Six remaining: one step of five would leave a short tail, take two halves.
    timer.provide_time_step_estimate(5.0)
    assert timer.current_step_length == 3.0
    timer.advance()
    # Nearly reaching the end: take the remainder.
    timer.provide_time_step_estimate(2.9)
    assert timer.current_step_length == pytest.approx(3.0)
    timer.advance()

    assert timer.done()
    assert timer.simulation_time_elapsed == 10.0
    assert timer.current_step_num == 4
    assert timer.steps == [1.0, 3.0, 3.0, 3.0]
    assert timer.average_time_step() == pytest.approx(2.5)
    assert timer.suggested_max() == 5.0
    assert timer.suggested_average() == pytest.approx(12.9 / 3)


def test_bounds():
    timer = bo.AdaptiveSimulatorTimer(
        0.0, 100.0, 1.0, max_time_step=2.0, min_time_step=0.5
    )
    timer.provide_time_step_estimate(10.0)
    assert timer.current_step_length == 2.0
    timer.provide_time_step_estimate(0.1)
    assert timer.current_step_length == 0.5


def test_first_step_is_limited_by_report_step():
    timer = bo.AdaptiveSimulatorTimer(0.0, 1.0, 5.0)
    assert timer.current_step_length == 1.0
    assert timer.suggested_average() == 1.0
    assert timer.total_time == 1.0


@pytest.mark.parametrize(
    "args", [(1.0, 1.0, 0.1), (0.0, 1.0, 0.0), (0.0, 1.0, 0.1, 1.0, 2.0)]
)
def test_invalid(args):
    with pytest.raises(ValueError):
        bo.AdaptiveSimulatorTimer(*args)


def test_invalid_estimate():
    timer = bo.AdaptiveSimulatorTimer(0.0, 1.0, 0.1)
    with pytest.raises(ValueError):
        timer.provide_time_step_estimate(0.0)
