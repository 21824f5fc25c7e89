"""
Discrete-time transition engine.

The engine advances age-structured cohorts one step at a time. Within a step
every outflow is computed from the pre-step snapshot only, arrivals are
accumulated per destination and committed at the end, so a step is a pure
function of the previous state.
"""

from dataclasses import dataclass
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Tuple
import logging
import math
import warnings

import numpy as np

from denim.contacts import ContactStructure
from denim.distributions import DEFAULT_SURVIVAL_CUTOFF, Distribution
from denim.errors import MalformedTransition, NegativeOccupancy
from denim.transitions import ForceOfInfection, Transition
from denim.utils.logging import log_call

from .data_structures import CohortKey, SimulationState, Trajectory

logger = logging.getLogger(__name__)

_SINK = "sink"
_TABLE = "table"
_FOI = "foi"


@dataclass(frozen=True)
class _Plan:
    """How one (stratum, compartment) loses individuals each step."""

    kind: str
    capacity: int
    hazards: Optional[np.ndarray] = None
    force_of_infection: Optional[ForceOfInfection] = None
    targets: Tuple[Tuple[int, float], ...] = ()


@log_call
def steps_for(days_follow_up: float, time_step: float) -> int:
    """
    Number of steps covering the follow-up period.

    Raises
    ------
    ValueError
        If either value is not positive or the follow-up is not a whole
        number of time steps
    """
    if not time_step > 0:
        raise ValueError(f"time_step must be positive, got {time_step}")
    if not days_follow_up > 0:
        raise ValueError(f"days_follow_up must be positive, got {days_follow_up}")
    ratio = days_follow_up / time_step
    n_steps = int(round(ratio))
    if n_steps < 1 or abs(ratio - n_steps) > 1e-6 * max(1.0, ratio):
        raise ValueError(
            f"days_follow_up={days_follow_up} is not a whole number of "
            f"time steps of {time_step}")
    return n_steps


class SimulationEngine:
    """
    Step function over age-structured cohorts for a fixed configuration.

    Parameters
    ----------
    transitions : mapping
        Stratum key to the transitions bound in that stratum
    contacts : ContactStructure
        Strata and pairwise contact weights
    initial_values : mapping
        Stratum key to ``{compartment: initial occupancy}``
    compartments : sequence of str
        Compartment order used for totals
    time_step : float
        Step length in time units
    survival_cutoff : float, default=1e-10
        Passed to :meth:`Distribution.hazard_table`

    Notes
    -----
    Force of infection in stratum ``s`` is

        FOI_s = sum_s' w(s, s') * I(s') / N(s')

    with ``I`` the occupancy of the infectious compartments and ``N`` the
    (constant) stratum population. The per-step hazard is
    ``1 - exp(-beta * dt * FOI_s)``.
    """

    def __init__(
        self,
        transitions: Mapping[str, Sequence[Transition]],
        contacts: ContactStructure,
        initial_values: Mapping[str, Mapping[str, float]],
        compartments: Sequence[str],
        time_step: float,
        survival_cutoff: float = DEFAULT_SURVIVAL_CUTOFF
    ):
        if not time_step > 0:
            raise ValueError(f"time_step must be positive, got {time_step}")
        self.time_step = float(time_step)
        self.contacts = contacts
        self.strata: Tuple[str, ...] = contacts.strata()
        self.compartments: Tuple[str, ...] = tuple(compartments)
        self._comp_index = {c: i for i, c in enumerate(self.compartments)}
        self._weights = contacts.weight_matrix()

        self._initial = self._initial_matrix(initial_values)
        self.populations = self._initial.sum(axis=1)

        tables: Dict[Distribution, Tuple[np.ndarray, int]] = {}
        self._plans: List[List[_Plan]] = [
            [self._plan(transitions.get(s, ()), c, tables, survival_cutoff)
             for c in self.compartments]
            for s in self.strata
        ]

    def _initial_matrix(
        self, initial_values: Mapping[str, Mapping[str, float]]
    ) -> np.ndarray:
        values = np.zeros((len(self.strata), len(self.compartments)))
        for si, stratum in enumerate(self.strata):
            given = initial_values.get(stratum, {})
            for ci, comp in enumerate(self.compartments):
                value = float(given.get(comp, 0.0))
                if not math.isfinite(value) or value < 0:
                    raise ValueError(
                        f"Initial value of {comp!r} in stratum {stratum!r} "
                        f"must be finite and non-negative, got {value}")
                values[si, ci] = value
        return values

    def _plan(
        self,
        transitions: Sequence[Transition],
        compartment: str,
        tables: Dict[Distribution, Tuple[np.ndarray, int]],
        survival_cutoff: float
    ) -> _Plan:
        outgoing = [t for t in transitions if t.source == compartment]
        if not outgoing:
            return _Plan(_SINK, capacity=1)

        try:
            targets = tuple(
                (self._comp_index[t.target], t.fraction) for t in outgoing)
        except KeyError as exc:
            raise MalformedTransition(
                f"Transition target {exc} has no initial value") from None

        rule = outgoing[0].rule
        if isinstance(rule, ForceOfInfection):
            unknown = [c for c in rule.infectious_compartments
                       if c not in self._comp_index]
            if unknown:
                raise MalformedTransition(
                    f"Infectious compartments {unknown} are not compartments")
            return _Plan(_FOI, capacity=1, force_of_infection=rule,
                         targets=targets)

        if rule not in tables:
            table, tail = rule.hazard_table(self.time_step, survival_cutoff)
            hazards = np.append(table, tail)
            hazards.flags.writeable = False
            tables[rule] = (hazards, hazards.size)
        hazards, capacity = tables[rule]
        return _Plan(_TABLE, capacity=capacity, hazards=hazards, targets=targets)

    @log_call
    def initial_state(self) -> SimulationState:
        """State at t = 0: every initial occupant has just entered."""
        cohorts = {
            (s, c): np.array([self._initial[si, ci]])
            for si, s in enumerate(self.strata)
            for ci, c in enumerate(self.compartments)
        }
        return SimulationState(time_index=0, cohorts=cohorts)

    @log_call
    def force_of_infection(
        self,
        state: SimulationState,
        infectious_compartments: Sequence[str]
    ) -> np.ndarray:
        """Force of infection acting on every stratum in ``state``."""
        return self._force_of_infection(state.cohorts, tuple(infectious_compartments))

    def _force_of_infection(
        self,
        cohorts: Mapping[CohortKey, np.ndarray],
        infectious: Tuple[str, ...]
    ) -> np.ndarray:
        infected = np.array([
            sum(cohorts[(s, c)].sum() for c in infectious) for s in self.strata
        ])
        prevalence = np.divide(infected, self.populations,
                               out=np.zeros_like(infected),
                               where=self.populations > 0)
        return self._weights @ prevalence

    @log_call
    def step(self, state: SimulationState) -> SimulationState:
        """
        Advance one time step.

        Outflow at age ``a`` is ``n[a] * hazard(a)``; survivors move to age
        ``a + 1`` and the summed outflow enters each target at age 0.
        """
        cohorts = state.cohorts
        dt = self.time_step
        foi_cache: Dict[Tuple[str, ...], np.ndarray] = {}
        arrivals = np.zeros((len(self.strata), len(self.compartments)))
        advanced: Dict[CohortKey, np.ndarray] = {}

        for si, stratum in enumerate(self.strata):
            for ci, comp in enumerate(self.compartments):
                key = (stratum, comp)
                occupants = cohorts[key]
                plan = self._plans[si][ci]

                if plan.kind == _SINK:
                    advanced[key] = _age(occupants, plan.capacity)
                    continue

                if plan.kind == _FOI:
                    rule = plan.force_of_infection
                    infectious = rule.infectious_compartments
                    if infectious not in foi_cache:
                        foi_cache[infectious] = self._force_of_infection(
                            cohorts, infectious)
                    hazard = -math.expm1(
                        -rule.transmission_rate * dt * foi_cache[infectious][si])
                    outflow = hazard * float(occupants.sum())
                else:
                    hazard = plan.hazards[:occupants.size]
                    outflow = float(np.dot(occupants, hazard))

                for target, fraction in plan.targets:
                    arrivals[si, target] += outflow * fraction
                advanced[key] = _age(occupants * (1.0 - hazard), plan.capacity)

        for si, stratum in enumerate(self.strata):
            for ci, comp in enumerate(self.compartments):
                bins = advanced[(stratum, comp)]
                bins[0] += arrivals[si, ci]
                if bins.min() < 0:
                    self._clamp(bins, stratum, comp, state.time_index + 1)

        return SimulationState(time_index=state.time_index + 1, cohorts=advanced)

    def _clamp(self, bins: np.ndarray, stratum: str, comp: str, t: int) -> None:
        deficit = float(bins[bins < 0].sum())
        logger.warning("Clamped negative occupancy %.3g in %s/%s at step %d",
                       deficit, stratum, comp, t)
        warnings.warn(
            f"Negative occupancy {deficit:.3g} in {stratum}/{comp} at step {t} "
            f"clamped to zero",
            NegativeOccupancy
        )
        np.clip(bins, 0.0, None, out=bins)

    @log_call
    def iter_states(self, n_steps: int) -> Iterator[SimulationState]:
        """Yield the initial state and the next ``n_steps`` states."""
        state = self.initial_state()
        yield state
        for _ in range(n_steps):
            state = self.step(state)
            yield state

    @log_call
    def run(self, days_follow_up: float) -> Trajectory:
        """Simulate the follow-up period and return totals at every step."""
        n_steps = steps_for(days_follow_up, self.time_step)
        totals = np.empty((n_steps + 1, len(self.strata), len(self.compartments)))
        for t, state in enumerate(self.iter_states(n_steps)):
            totals[t] = state.totals(self.strata, self.compartments)
        logger.info("Simulated %d steps of %g over %d strata",
                    n_steps, self.time_step, len(self.strata))
        return Trajectory(self.time_step, self.strata, self.compartments, totals)


def _age(survivors: np.ndarray, capacity: int) -> np.ndarray:
    """Shift survivors one bin older; the last bin absorbs the overflow."""
    n = survivors.size
    if n < capacity:
        aged = np.empty(n + 1)
        aged[0] = 0.0
        aged[1:] = survivors
    else:
        aged = np.empty(n)
        aged[0] = 0.0
        aged[1:] = survivors[:-1]
        aged[-1] += survivors[-1]
    return aged
