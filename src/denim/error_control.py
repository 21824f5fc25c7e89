"""
Adaptive choice of the time-step resolution.

The controller runs the engine at a candidate step and at half of it,
compares the two trajectories on the coarse grid and keeps halving until
the difference falls within the tolerance.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple
import logging

import numpy as np

from .core.data_structures import Trajectory
from .core.temporal_engine import SimulationEngine, steps_for
from .errors import ConvergenceFailure
from .utils.logging import log_call

logger = logging.getLogger(__name__)

METRICS = ("absolute", "relative")


@dataclass
class RefinementResult:
    """
    Accepted trajectory of a refinement campaign.

    Attributes
    ----------
    trajectory : Trajectory
        Trajectory at the accepted (finer) time step
    time_step : float
        Time step of ``trajectory``
    error : float
        Difference between the accepted run and the run at twice its step
    history : list of (float, float)
        ``(coarse_time_step, error)`` for every comparison made
    """

    trajectory: Trajectory
    time_step: float
    error: float
    history: List[Tuple[float, float]] = field(default_factory=list)


@log_call
def trajectory_error(
    coarse: Trajectory,
    fine: Trajectory,
    metric: str = "absolute"
) -> float:
    """
    Largest difference between two runs on the coarse time grid.

    ``fine`` must have been run with an integer fraction of the coarse time
    step; its states are sampled at the coarse time points.

    Parameters
    ----------
    coarse, fine : Trajectory
        Runs of the same model at two resolutions
    metric : {"absolute", "relative"}, default="absolute"
        ``"relative"`` divides each difference by the stratum population

    Returns
    -------
    error : float
        Maximum over time points, strata and compartments
    """
    if metric not in METRICS:
        raise ValueError(f"metric must be one of {METRICS}, got {metric!r}")
    ratio = coarse.time_step / fine.time_step
    every = int(round(ratio))
    if every < 1 or abs(ratio - every) > 1e-9 * ratio:
        raise ValueError(
            f"Fine time step {fine.time_step} does not divide coarse time "
            f"step {coarse.time_step}")

    aligned = fine.totals[::every]
    n = min(aligned.shape[0], coarse.totals.shape[0])
    diff = np.abs(coarse.totals[:n] - aligned[:n])

    if metric == "relative":
        population = coarse.totals[0].sum(axis=1)
        scale = np.where(population > 0, population, 1.0)
        diff = diff / scale[np.newaxis, :, np.newaxis]
    return float(diff.max()) if diff.size else 0.0


class ErrorController:
    """
    Successive halving of the time step until runs agree.

    Parameters
    ----------
    build_engine : callable
        Returns a fresh :class:`SimulationEngine` for a given time step
    error_tolerance : float
        Largest accepted inter-resolution difference
    max_refinements : int, default=5
        Maximum number of comparisons before giving up
    metric : {"absolute", "relative"}, default="absolute"
        See :func:`trajectory_error`
    parallel : bool, default=False
        Run the first pair of resolutions in two threads

    Examples
    --------
    >>> controller = ErrorController(model.engine, error_tolerance=0.5)
    >>> result = controller.run(days_follow_up=100, time_step=1.0)
    >>> print(f"Accepted time step: {result.time_step}")
    """

    def __init__(
        self,
        build_engine: Callable[[float], SimulationEngine],
        error_tolerance: float,
        max_refinements: int = 5,
        metric: str = "absolute",
        parallel: bool = False
    ):
        if not error_tolerance > 0:
            raise ValueError(
                f"error_tolerance must be positive, got {error_tolerance}")
        if max_refinements < 1:
            raise ValueError(
                f"max_refinements must be >= 1, got {max_refinements}")
        if metric not in METRICS:
            raise ValueError(f"metric must be one of {METRICS}, got {metric!r}")
        self.build_engine = build_engine
        self.error_tolerance = error_tolerance
        self.max_refinements = max_refinements
        self.metric = metric
        self.parallel = parallel

    def _trial(self, days_follow_up: float, time_step: float) -> Trajectory:
        return self.build_engine(time_step).run(days_follow_up)

    def _first_pair(
        self, days_follow_up: float, time_step: float
    ) -> Tuple[Trajectory, Trajectory]:
        if not self.parallel:
            return (self._trial(days_follow_up, time_step),
                    self._trial(days_follow_up, time_step / 2))
        with ThreadPoolExecutor(max_workers=2) as pool:
            coarse = pool.submit(self._trial, days_follow_up, time_step)
            fine = pool.submit(self._trial, days_follow_up, time_step / 2)
            return coarse.result(), fine.result()

    @log_call
    def run(self, days_follow_up: float, time_step: float) -> RefinementResult:
        """
        Refine ``time_step`` until two successive resolutions agree.

        Raises
        ------
        ValueError
            If the follow-up is not a whole number of time steps
        ConvergenceFailure
            If the tolerance is still not met after ``max_refinements``
            comparisons; carries the finest trajectory and its error
        """
        steps_for(days_follow_up, time_step)

        history: List[Tuple[float, float]] = []
        coarse, fine = self._first_pair(days_follow_up, time_step)
        dt = time_step
        error = float("nan")

        for refinement in range(self.max_refinements):
            if refinement > 0:
                coarse = fine
                fine = self._trial(days_follow_up, dt / 2)

            error = trajectory_error(coarse, fine, self.metric)
            history.append((dt, error))
            logger.info("time_step=%g vs %g: error=%.6g (tolerance %.6g)",
                        dt, dt / 2, error, self.error_tolerance)

            if error <= self.error_tolerance:
                return RefinementResult(fine, dt / 2, error, history)
            dt /= 2

        raise ConvergenceFailure(
            f"Error {error:.6g} still above tolerance {self.error_tolerance:.6g} "
            f"after {self.max_refinements} refinements "
            f"(finest time_step={fine.time_step:g})",
            trajectory=fine,
            error=error,
            time_step=fine.time_step,
            history=history,
        )
