"""Discrete-time compartmental epidemic models with arbitrary dwell times."""

from typing import List

from .contacts import DEFAULT_STRATUM, ContactMatrix, ContactStructure
from .core import SimulationEngine, SimulationState, Trajectory
from .distributions import (
    Distribution,
    DistributionKind,
    exponential,
    gamma,
    weibull,
    lognormal,
    nonparametric
)
from .error_control import ErrorController, RefinementResult, trajectory_error
from .errors import (
    DenimError,
    InvalidDistribution,
    MalformedTransition,
    DimensionMismatch,
    ConvergenceFailure,
    NegativeOccupancy,
    TopologyWarning
)
from .model import CompartmentalModel, simulate
from .transitions import (
    Edge,
    ForceOfInfection,
    Transition,
    TransitionGraph,
    parse_transition
)

__all__: List[str] = [
    # Distributions
    "Distribution",
    "DistributionKind",
    "exponential",
    "gamma",
    "weibull",
    "lognormal",
    "nonparametric",
    # Topology
    "Edge",
    "ForceOfInfection",
    "Transition",
    "TransitionGraph",
    "parse_transition",
    # Contact structure
    "DEFAULT_STRATUM",
    "ContactMatrix",
    "ContactStructure",
    # Engine and refinement
    "SimulationEngine",
    "SimulationState",
    "Trajectory",
    "ErrorController",
    "RefinementResult",
    "trajectory_error",
    # Model
    "CompartmentalModel",
    "simulate",
    # Errors
    "DenimError",
    "InvalidDistribution",
    "MalformedTransition",
    "DimensionMismatch",
    "ConvergenceFailure",
    "NegativeOccupancy",
    "TopologyWarning",
]
__version__ = "0.1.0"
