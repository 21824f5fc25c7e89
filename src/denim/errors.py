"""
Error and warning taxonomy for the denim simulation engine.

Construction problems (bad distributions, malformed topology, stratum keys
that do not match the contact dimensions) are fatal and raised immediately.
Numerical clamping during a run is recovered locally and reported as a
warning. A refinement campaign that never meets its tolerance raises
``ConvergenceFailure`` carrying the best trajectory it produced.
"""

from typing import Any, List, Optional, Tuple


class DenimError(Exception):
    """Base class for all errors raised by denim."""


class InvalidDistribution(DenimError, ValueError):
    """Bad distribution parameters or an unusable waiting-time table."""


class MalformedTransition(DenimError, ValueError):
    """Topology or reference errors in the transition graph."""


class DimensionMismatch(DenimError, ValueError):
    """Stratum keys that do not match the declared contact dimensions."""


class ConvergenceFailure(DenimError, RuntimeError):
    """
    Error tolerance not met after the maximum number of refinements.

    Attributes
    ----------
    trajectory : Trajectory
        Trajectory of the finest resolution that was computed
    error : float
        Inter-resolution error achieved by the last comparison
    time_step : float
        Time step of ``trajectory``
    history : list of (float, float)
        ``(coarse_time_step, error)`` for every comparison made
    """

    def __init__(
        self,
        message: str,
        trajectory: Any = None,
        error: float = float("nan"),
        time_step: Optional[float] = None,
        history: Optional[List[Tuple[float, float]]] = None
    ):
        super().__init__(message)
        self.trajectory = trajectory
        self.error = error
        self.time_step = time_step
        self.history = list(history or [])


class NegativeOccupancy(RuntimeWarning):
    """A cohort bin fell below zero through round-off and was clamped."""


class TopologyWarning(UserWarning):
    """Suspicious but runnable transition topology (e.g. no root)."""
