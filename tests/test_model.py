"""
End-to-end scenarios and model construction checks.
"""

import numpy as np
import pytest

from tests.fixtures.models import make_two_location_model
from denim import (
    CompartmentalModel,
    ContactMatrix,
    DimensionMismatch,
    InvalidDistribution,
    MalformedTransition,
    exponential,
    gamma,
    nonparametric,
    simulate,
)


def _is_unimodal(values, tol=1e-9):
    """Rises (weakly) and then falls (weakly), with at most one turn."""
    diffs = np.diff(values)
    falling = False
    for d in diffs:
        if d < -tol:
            falling = True
        elif d > tol and falling:
            return False
    return True


class TestSingleStratumSIR:
    """S=999, I=1, R=0; S -> I by force of infection, I -> R exponential."""

    @pytest.fixture(scope="class")
    def trajectory(self, sir_model):
        return sir_model.run(days_follow_up=500, time_step=0.01)

    def test_conservation(self, trajectory):
        np.testing.assert_allclose(trajectory.population(), 1000.0, rtol=1e-10)

    def test_susceptible_decreases(self, trajectory):
        assert np.all(np.diff(trajectory.series("S")) <= 1e-12)
        assert trajectory.series("S")[-1] < 999

    def test_recovered_increases(self, trajectory):
        assert np.all(np.diff(trajectory.series("R")) >= -1e-12)
        assert trajectory.series("R")[-1] > 1

    def test_infectious_single_peaked(self, trajectory):
        assert _is_unimodal(trajectory.series("I"))

    def test_epidemic_burns_out(self, trajectory):
        final = trajectory.totals[-1, 0]
        assert trajectory.series("I")[-1] < 0.01
        assert final[0] + final[2] == pytest.approx(1000.0, abs=0.01)

    @pytest.mark.integration
    def test_long_follow_up(self, sir_model):
        long_run = sir_model.run(days_follow_up=5000, time_step=0.01)
        np.testing.assert_allclose(long_run.population(), 1000.0, rtol=1e-9)
        assert long_run.series("I")[-1] < 1e-6
        assert np.all(np.diff(long_run.series("S")) <= 1e-12)


class TestTwoLocations:

    @staticmethod
    def _peak_in_unseeded(off_diagonal):
        model = make_two_location_model(off_diagonal=off_diagonal)
        trajectory = model.run(days_follow_up=300, time_step=0.5)
        return trajectory.series("I", "B").max()

    def test_more_contact_raises_peak_in_unseeded_location(self):
        peaks = [self._peak_in_unseeded(w) for w in (0.0, 0.1, 0.3)]
        assert peaks[0] == 0.0
        assert peaks[0] < peaks[1] < peaks[2]

    def test_strata_are_labelled(self, two_location_model):
        trajectory = two_location_model.run(days_follow_up=10, time_step=1.0)
        assert trajectory.strata == ("A", "B")
        assert list(trajectory.to_wide().columns) == [
            "A.S", "A.I", "A.R", "B.S", "B.I", "B.R"]

    def test_per_stratum_distributions(self):
        location = ContactMatrix("location", ("A", "B"), np.eye(2))
        model = CompartmentalModel(
            transitions=["X -> Y"],
            initial_values={"A": {"X": 100, "Y": 0}, "B": {"X": 100, "Y": 0}},
            distributions={"A": {"X -> Y": exponential(1.0)},
                           "B": {"X -> Y": nonparametric([1.0])}},
            contacts=[location],
        )
        trajectory = model.run(days_follow_up=1, time_step=1.0)
        assert trajectory.series("X", "B")[-1] == pytest.approx(0.0)
        assert trajectory.series("X", "A")[-1] == pytest.approx(100 * np.exp(-1))


class TestConstructionErrors:

    def test_flat_initial_values_with_contacts(self):
        location = ContactMatrix("location", ("A", "B"), np.eye(2))
        with pytest.raises(DimensionMismatch):
            CompartmentalModel(["S -> I"], {"S": 1, "I": 0},
                               distributions={"S -> I": exponential(1.0)},
                               contacts=[location])

    def test_unknown_group_key(self):
        location = ContactMatrix("location", ("A", "B"), np.eye(2))
        with pytest.raises(DimensionMismatch):
            CompartmentalModel(
                ["S -> I"],
                {"A": {"S": 1, "I": 0}, "C": {"S": 1, "I": 0}},
                distributions={"S -> I": exponential(1.0)},
                contacts=[location])

    def test_grouped_values_need_contacts(self):
        with pytest.raises(DimensionMismatch):
            CompartmentalModel(["S -> I"], {"A": {"S": 1, "I": 0}},
                               distributions={"S -> I": exponential(1.0)})

    def test_strata_with_different_compartments(self):
        location = ContactMatrix("location", ("A", "B"), np.eye(2))
        with pytest.raises(DimensionMismatch):
            CompartmentalModel(
                ["S -> I"],
                {"A": {"S": 1, "I": 0}, "B": {"S": 1, "I": 0, "R": 0}},
                distributions={"S -> I": exponential(1.0)},
                contacts=[location])

    def test_missing_initial_value(self):
        with pytest.raises(MalformedTransition):
            CompartmentalModel(["S -> I", "I -> R"], {"S": 1, "I": 0},
                               distributions={"I -> R": exponential(1.0)},
                               transmission_rate=1.0,
                               infectious_compartments=["I"])

    def test_force_of_infection_needs_rate_and_compartments(self):
        with pytest.raises(MalformedTransition):
            CompartmentalModel(["S -> I"], {"S": 1, "I": 0},
                               transmission_rate=1.0)
        with pytest.raises(MalformedTransition):
            CompartmentalModel(["S -> I"], {"S": 1, "I": 0},
                               transmission_rate=1.0,
                               infectious_compartments=["X"])
        with pytest.raises(MalformedTransition):
            CompartmentalModel(["S -> I"], {"S": 1, "I": 0})

    def test_bad_distribution_is_fatal(self):
        with pytest.raises(InvalidDistribution):
            CompartmentalModel(["S -> I"], {"S": 1, "I": 0},
                               distributions={"S -> I": gamma(scale=0, shape=1)})


class TestSimulateFunction:

    def test_single_resolution(self):
        trajectory = simulate(
            transitions=["A -> B"],
            initial_values={"A": 100, "B": 0},
            distributions={"A -> B": exponential(0.2)},
            days_follow_up=5,
            time_step=0.5,
        )
        assert trajectory.totals.shape == (11, 1, 2)
        assert trajectory.series("A")[-1] == pytest.approx(100 * np.exp(-1))

    def test_with_error_tolerance(self):
        trajectory = simulate(
            transitions=["S -> I", "I -> R"],
            initial_values={"S": 990, "I": 10, "R": 0},
            distributions={"I -> R": gamma(scale=1.0, shape=2.0)},
            transmission_rate=1.0,
            infectious_compartments=["I"],
            days_follow_up=20,
            time_step=1.0,
            error_tolerance=10.0,
            max_refinements=8,
        )
        assert trajectory.time_step < 1.0
        np.testing.assert_allclose(trajectory.population(), 1000.0)
