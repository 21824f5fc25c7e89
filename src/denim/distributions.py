"""
Waiting-time distributions and their discrete transition hazards.

A compartment's dwell time is described by one of a closed set of
distribution kinds. Each kind exposes the conditional probability of leaving
the compartment during the next time step, given that an individual has
already stayed ``k`` steps:

    hazard(k) = 1 - S((k + 1) * dt) / S(k * dt)

where ``S`` is the survival function of the waiting time. Only the
exponential distribution gives a hazard that does not depend on ``k``; the
others need age-structured cohort bookkeeping in the engine.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence, Tuple, Union
import math

import numpy as np
from scipy import stats  # type: ignore

from .errors import InvalidDistribution
from .utils.logging import log_call

# Hazards this far outside [0, 1] are round-off and get clamped
HAZARD_EPSILON = 1e-9

# Parametric tables stop where survival drops below this value
DEFAULT_SURVIVAL_CUTOFF = 1e-10

MAX_TABLE_LENGTH = 5_000_000


class DistributionKind(str, Enum):
    """Closed set of supported waiting-time distribution kinds."""

    EXPONENTIAL = "exponential"
    GAMMA = "gamma"
    WEIBULL = "weibull"
    LOGNORMAL = "lognormal"
    NONPARAMETRIC = "nonparametric"


# Parameters each kind accepts; the rest must keep their defaults
_PARAMETERS = {
    DistributionKind.EXPONENTIAL: ("rate",),
    DistributionKind.GAMMA: ("scale", "shape"),
    DistributionKind.WEIBULL: ("scale", "shape"),
    DistributionKind.LOGNORMAL: ("meanlog", "sdlog"),
    DistributionKind.NONPARAMETRIC: ("waiting_time", "bin_width"),
}
_DEFAULTS = {"rate": None, "scale": None, "shape": None, "meanlog": None,
             "sdlog": None, "waiting_time": (), "bin_width": 1.0}


@dataclass(frozen=True)
class Distribution:
    """
    Immutable waiting-time distribution, tagged by ``kind``.

    Only the parameters relevant to ``kind`` are set; use the module level
    constructors (:func:`exponential`, :func:`gamma`, :func:`weibull`,
    :func:`lognormal`, :func:`nonparametric`) rather than building instances
    by hand.

    Parameters
    ----------
    kind : DistributionKind
        Variant tag
    rate : float, optional
        Exponential rate (per time unit)
    scale : float, optional
        Gamma/Weibull scale
    shape : float, optional
        Gamma/Weibull shape
    meanlog : float, optional
        Mean of the logarithm (log-normal)
    sdlog : float, optional
        Standard deviation of the logarithm (log-normal)
    waiting_time : tuple of float
        Nonparametric waiting-time pmf, normalised to sum to one
    bin_width : float, default=1.0
        Width of each nonparametric bin in time units
    """

    kind: DistributionKind
    rate: Optional[float] = None
    scale: Optional[float] = None
    shape: Optional[float] = None
    meanlog: Optional[float] = None
    sdlog: Optional[float] = None
    waiting_time: Tuple[float, ...] = ()
    bin_width: float = 1.0

    def __post_init__(self) -> None:
        try:
            kind = DistributionKind(self.kind)
        except ValueError as exc:
            raise InvalidDistribution(
                f"Unknown distribution kind {self.kind!r}") from exc
        object.__setattr__(self, "kind", kind)
        unused = sorted(
            name for name, default in _DEFAULTS.items()
            if name not in _PARAMETERS[kind]
            and _differs(getattr(self, name), default)
        )
        if unused:
            raise InvalidDistribution(
                f"{kind.value} distribution does not take {unused}")

        if kind is DistributionKind.EXPONENTIAL:
            _require_positive("rate", self.rate)
        elif kind in (DistributionKind.GAMMA, DistributionKind.WEIBULL):
            _require_positive("scale", self.scale)
            _require_positive("shape", self.shape)
        elif kind is DistributionKind.LOGNORMAL:
            if self.meanlog is None or not math.isfinite(self.meanlog):
                raise InvalidDistribution(
                    f"meanlog must be a finite number, got {self.meanlog}")
            _require_positive("sdlog", self.sdlog)
        elif kind is DistributionKind.NONPARAMETRIC:
            _require_positive("bin_width", self.bin_width)
            object.__setattr__(
                self, "waiting_time", _normalize_waiting_time(self.waiting_time))

    @property
    @log_call
    def memoryless(self) -> bool:
        """True when the hazard does not depend on elapsed time."""
        return self.kind is DistributionKind.EXPONENTIAL

    @log_call
    def survival(self, t: Union[float, np.ndarray]) -> Union[float, np.ndarray]:
        """
        Survival function S(t) = P(waiting time > t).

        Parameters
        ----------
        t : float or np.ndarray
            Elapsed time (same unit as the distribution parameters)

        Returns
        -------
        survival : float or np.ndarray
            Probability of still being in the compartment at ``t``
        """
        t_arr = np.asarray(t, dtype=float)
        values = np.clip(_survival(self, t_arr), 0.0, 1.0)
        if np.ndim(t) == 0:
            return float(values)
        return values

    @log_call
    def hazard(self, k: int, time_step: float = 1.0) -> float:
        """
        Probability of leaving during step ``k`` given survival to step ``k``.

        Parameters
        ----------
        k : int
            Number of whole time steps already spent in the compartment
        time_step : float, default=1.0
            Step length. For a nonparametric table with ``time_step`` equal
            to ``bin_width`` this is ``wt[k] / (1 - sum(wt[:k]))``.

        Returns
        -------
        hazard : float
            Value in [0, 1]; 1 once the survival function has reached zero.

        Examples
        --------
        >>> d = nonparametric([0.25, 0.25, 0.5])
        >>> d.hazard(1)
        0.3333333333333333
        """
        if k < 0:
            raise ValueError(f"k must be non-negative, got {k}")
        _require_time_step(time_step)

        if self.kind is DistributionKind.EXPONENTIAL:
            return float(-np.expm1(-self.rate * time_step))

        surv = self.survival(np.array([k, k + 1], dtype=float) * time_step)
        return float(_hazards_from_survival(surv)[0])

    @log_call
    def hazard_table(
        self,
        time_step: float,
        survival_cutoff: float = DEFAULT_SURVIVAL_CUTOFF
    ) -> Tuple[np.ndarray, float]:
        """
        Compile the hazard for every elapsed step at a given resolution.

        Parameters
        ----------
        time_step : float
            Step length
        survival_cutoff : float, default=1e-10
            Parametric tables end where survival falls below this value

        Returns
        -------
        table : np.ndarray
            ``table[k]`` is the hazard after ``k`` elapsed steps
        tail : float
            Hazard for every ``k >= len(table)``
        """
        _require_time_step(time_step)

        if self.memoryless:
            return np.zeros(0), float(-np.expm1(-self.rate * time_step))

        if self.kind is DistributionKind.NONPARAMETRIC:
            support = len(self.waiting_time) * self.bin_width
        else:
            if not 0.0 < survival_cutoff < 1.0:
                raise ValueError(
                    f"survival_cutoff must be in (0, 1), got {survival_cutoff}")
            support = float(_frozen(self).isf(survival_cutoff))

        n_steps = max(1, int(math.ceil(support / time_step - 1e-9)))
        if n_steps > MAX_TABLE_LENGTH:
            raise InvalidDistribution(
                f"{self.kind.value} waiting time needs {n_steps} steps at "
                f"time_step={time_step}; use a larger time step"
            )

        surv = self.survival(time_step * np.arange(n_steps + 1, dtype=float))
        return _hazards_from_survival(surv), 1.0


@log_call
def exponential(rate: float) -> Distribution:
    """Exponential waiting time with the given rate."""
    return Distribution(DistributionKind.EXPONENTIAL, rate=rate)


@log_call
def gamma(scale: float, shape: float) -> Distribution:
    """Gamma waiting time; ``shape`` integer gives an Erlang distribution."""
    return Distribution(DistributionKind.GAMMA, scale=scale, shape=shape)


@log_call
def weibull(scale: float, shape: float) -> Distribution:
    """Weibull waiting time."""
    return Distribution(DistributionKind.WEIBULL, scale=scale, shape=shape)


@log_call
def lognormal(meanlog: float, sdlog: float) -> Distribution:
    """Log-normal waiting time, parameterised on the log scale."""
    return Distribution(DistributionKind.LOGNORMAL, meanlog=meanlog, sdlog=sdlog)


@log_call
def nonparametric(
    waiting_time: Sequence[float],
    bin_width: float = 1.0
) -> Distribution:
    """
    Empirical waiting-time distribution.

    Parameters
    ----------
    waiting_time : sequence of float
        Relative frequency of leaving in each bin. Rescaled to sum to one.
    bin_width : float, default=1.0
        Width of each bin in time units

    Raises
    ------
    InvalidDistribution
        If the table is empty, has negative or non-finite entries, or sums
        to zero
    """
    return Distribution(
        DistributionKind.NONPARAMETRIC,
        waiting_time=tuple(float(w) for w in waiting_time),
        bin_width=bin_width,
    )


def _require_positive(name: str, value: Optional[float]) -> None:
    if value is None or not math.isfinite(value) or value <= 0:
        raise InvalidDistribution(f"{name} must be a positive number, got {value}")


def _require_time_step(time_step: float) -> None:
    if not time_step > 0:
        raise ValueError(f"time_step must be positive, got {time_step}")


def _normalize_waiting_time(waiting_time: Sequence[float]) -> Tuple[float, ...]:
    wt = np.asarray(waiting_time, dtype=float)
    if wt.ndim != 1 or wt.size == 0:
        raise InvalidDistribution("waiting_time must be a non-empty 1D sequence")
    if not np.all(np.isfinite(wt)):
        raise InvalidDistribution("waiting_time contains non-finite values")
    if np.any(wt < 0):
        raise InvalidDistribution("waiting_time contains negative values")
    total = wt.sum()
    if total <= 0:
        raise InvalidDistribution("waiting_time must have a positive sum")
    if total != 1:
        wt = wt / total
    return tuple(float(w) for w in wt)


def _frozen(dist: Distribution):
    """scipy frozen distribution for the parametric kinds."""
    if dist.kind is DistributionKind.GAMMA:
        return stats.gamma(a=dist.shape, scale=dist.scale)
    if dist.kind is DistributionKind.WEIBULL:
        return stats.weibull_min(c=dist.shape, scale=dist.scale)
    if dist.kind is DistributionKind.LOGNORMAL:
        return stats.lognorm(s=dist.sdlog, scale=math.exp(dist.meanlog))
    raise InvalidDistribution(f"{dist.kind.value} has no scipy counterpart")


def _survival(dist: Distribution, t: np.ndarray) -> np.ndarray:
    if dist.kind is DistributionKind.EXPONENTIAL:
        return np.exp(-dist.rate * t)
    if dist.kind is DistributionKind.NONPARAMETRIC:
        wt = np.asarray(dist.waiting_time)
        edges = dist.bin_width * np.arange(wt.size + 1, dtype=float)
        remaining = np.concatenate(([1.0], 1.0 - np.cumsum(wt)))
        remaining[-1] = 0.0
        remaining = np.clip(remaining, 0.0, 1.0)
        return np.interp(t, edges, remaining, left=1.0, right=0.0)
    return _frozen(dist).sf(t)


def _hazards_from_survival(surv: np.ndarray) -> np.ndarray:
    """Discrete hazards from survival on consecutive grid points (0/0 -> 1)."""
    before = surv[:-1]
    after = surv[1:]
    hazards = np.ones_like(before)
    alive = before > 0
    hazards[alive] = (before[alive] - after[alive]) / before[alive]

    if np.any(hazards < -HAZARD_EPSILON) or np.any(hazards > 1 + HAZARD_EPSILON):
        raise InvalidDistribution(
            f"hazard outside [0, 1]: min={hazards.min()}, max={hazards.max()}")
    return np.clip(hazards, 0.0, 1.0)


def _differs(value, default) -> bool:
    if default is None:
        return value is not None
    if isinstance(default, tuple):
        return len(value or ()) > 0
    return value != default
