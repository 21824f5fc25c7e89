"""
Shared test fixtures.

Models used by several test modules are built once per session; engines and
trajectories are cheap to recreate and are built per test.
"""

import os
import sys

import pytest

# Add src (and the repository root, for tests.fixtures) to path for imports
ROOT = os.path.join(os.path.dirname(__file__), '..')
sys.path.insert(0, os.path.join(ROOT, 'src'))
sys.path.insert(0, ROOT)

from denim import CompartmentalModel, exponential  # noqa: E402
from tests.fixtures.models import make_two_location_model  # noqa: E402


@pytest.fixture(scope="session")
def sir_model():
    """Single-stratum SIR model with beta = gamma = 1.5."""
    return CompartmentalModel(
        transitions=["S -> I", "I -> R"],
        initial_values={"S": 999, "I": 1, "R": 0},
        distributions={"I -> R": exponential(rate=1.5)},
        transmission_rate=1.5,
        infectious_compartments=["I"],
    )


@pytest.fixture(scope="session")
def epidemic_model():
    """Single-stratum SIR model with R0 = 2."""
    return CompartmentalModel(
        transitions=["S -> I", "I -> R"],
        initial_values={"S": 990, "I": 10, "R": 0},
        distributions={"I -> R": exponential(rate=0.5)},
        transmission_rate=1.0,
        infectious_compartments=["I"],
    )


@pytest.fixture(scope="session")
def two_location_model():
    """Two-location model with the reference contact matrix."""
    return make_two_location_model()


@pytest.fixture(scope="session")
def decay_model():
    """A -> B with an exponential dwell time in A."""
    return CompartmentalModel(
        transitions=["A -> B"],
        initial_values={"A": 1000, "B": 0},
        distributions={"A -> B": exponential(rate=0.5)},
    )
