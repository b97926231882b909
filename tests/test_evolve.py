"""Tests for the evolution driver."""

import logging

import numpy as np
import pytest

from grainchem import (
    EvolutionState,
    EvolutionStatus,
    StepResult,
    StiffSolver,
    evolve,
)

GOLDEN = (np.sqrt(5.0) - 1.0) / 2.0


class FailingSolver(StiffSolver):
    name = "failing"

    def __init__(self):
        self.calls = 0

    def __call__(self, model, densities, rates, trial_step, tolerance, scale):
        self.calls += 1
        return StepResult(False, message="always fails")


class IonizeEverythingSolver(StiffSolver):
    """Returns a state no makeup can repair: all of X ionised five times over."""

    name = "broken"

    def __call__(self, model, densities, rates, trial_step, tolerance, scale):
        return StepResult(True, np.array([0.0, 0.0, 5.0]), trial_step, trial_step)


@pytest.fixture
def ion_state(ion_network):
    return EvolutionState(
        network=ion_network,
        rate_constants=[1.0, 1.0],
        densities=[1e-4, 1.0 - 1e-4, 1e-4],
        density_scale=1e-8,
    )


@pytest.mark.parametrize("solver", ["bader_deuflhard", "kaps_rentrop", "kvaerno5"])
def test_ionization_equilibrium(ion_state, solver):
    result = evolve(ion_state, 50.0, 1e-3, 1e-6, solver=solver, verbose=False)

    assert result.status == EvolutionStatus.SUCCESS
    assert result.success
    assert ion_state.time == pytest.approx(50.0)
    assert result.elapsed == 50.0
    n_e, n_x, n_xp = ion_state.densities
    # x^2 = 1 - x at equilibrium
    assert n_e == pytest.approx(GOLDEN, rel=1e-4)
    assert n_x + n_xp == pytest.approx(1.0, rel=1e-12)
    assert n_e == pytest.approx(n_xp, rel=1e-12)


def test_fallback_takes_over(ion_state):
    primary = FailingSolver()
    result = evolve(
        ion_state, 1.0, 1e-3, 1e-6, solver=primary, fallback="kaps_rentrop", verbose=False
    )

    assert result.status == EvolutionStatus.SUCCESS
    assert result.fallbacks == result.steps > 0
    assert primary.calls == result.steps
    assert ion_state.time == pytest.approx(1.0)


def test_both_solvers_failing_is_hard_failure(ion_state):
    before = ion_state.densities.copy()
    result = evolve(
        ion_state, 1.0, 1e-3, 1e-6, solver=FailingSolver(), fallback=FailingSolver()
    )

    assert result.status == EvolutionStatus.HARD_FAILURE
    assert not result.success
    assert result.steps == 0
    assert result.fallbacks == 1
    assert result.message == "always fails"
    assert ion_state.time == 0.0
    np.testing.assert_array_equal(ion_state.densities, before)


def test_unrepairable_step_keeps_last_good_state(ion_state):
    before = ion_state.densities.copy()
    result = evolve(ion_state, 1.0, 1e-3, 1e-6, solver=IonizeEverythingSolver())

    assert result.status == EvolutionStatus.SOFT_FAILURE
    assert "ELEMENT_UNMATCHED" in result.message
    assert result.steps == 0
    assert ion_state.time == 0.0
    np.testing.assert_array_equal(ion_state.densities, before)


def test_wall_clock_budget(ion_state, caplog):
    with caplog.at_level(logging.WARNING, logger="grainchem.evolve"):
        result = evolve(ion_state, 50.0, 1e-3, 1e-6, max_wall_time=-1.0)

    assert result.status == EvolutionStatus.SOFT_FAILURE
    assert result.steps == 1
    assert 0.0 < ion_state.time < 50.0
    assert "wall-clock" in caplog.text


def test_step_budget(ion_state):
    result = evolve(ion_state, 50.0, 1e-3, 1e-6, max_steps=3, verbose=False)

    assert result.status == EvolutionStatus.SOFT_FAILURE
    assert result.steps == 3
    assert result.message == "step budget exceeded"
    assert result.time == ion_state.time
    assert result.next_step > 0.0


def test_history_to_dataframe(ion_state, ion_network):
    result = evolve(ion_state, 10.0, 1e-3, 1e-6, record_history=True, verbose=False)

    assert len(result.history) == result.steps + 1
    df = result.to_dataframe(ion_network.species_names)
    assert list(df.columns) == ["e-", "X", "X+"]
    assert df.index.name == "time"
    assert df.index[0] == 0.0
    assert df.index[-1] == pytest.approx(10.0)
    assert df.index.is_monotonic_increasing
    np.testing.assert_allclose(df["X"] + df["X+"], 1.0, rtol=1e-12)


def test_last_step_clipped_to_end(ion_state):
    result = evolve(ion_state, 2e-3, 1.5e-3, 1e-6, verbose=False)
    assert result.success
    assert ion_state.time == pytest.approx(2e-3)


def test_state_validation(ion_network):
    with pytest.raises(ValueError, match="densities"):
        EvolutionState(ion_network, [1.0, 1.0], [0.0, 1.0], 1e-8)
    with pytest.raises(ValueError, match="rate constants"):
        EvolutionState(ion_network, [1.0], [0.0, 1.0, 0.0], 1e-8)
    with pytest.raises(ValueError, match="density_scale"):
        EvolutionState(ion_network, [1.0, 1.0], [0.0, 1.0, 0.0], 0.0)
