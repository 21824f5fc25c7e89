"""
Model assembly: validates every input once and builds engines on demand.
"""

from typing import Any, Dict, Mapping, Optional, Sequence, Union
import logging
import math

from .contacts import (
    STRATUM_DELIMITER, CombineStrategy, ContactMatrix, ContactStructure
)
from .core.data_structures import Trajectory
from .core.temporal_engine import SimulationEngine
from .distributions import DEFAULT_SURVIVAL_CUTOFF
from .error_control import ErrorController, RefinementResult
from .errors import DimensionMismatch, MalformedTransition
from .transitions import EdgeKey, ForceOfInfection, TransitionGraph
from .utils.logging import log_call

logger = logging.getLogger(__name__)


class CompartmentalModel:
    """
    Discrete-time compartmental model with arbitrary dwell-time distributions.

    Parameters
    ----------
    transitions : sequence of str or TransitionGraph
        Topology, e.g. ``["S -> I", "I -> R"]``
    initial_values : mapping
        ``{compartment: value}`` for a single stratum, or
        ``{stratum_key: {compartment: value}}`` when contact matrices are given
    distributions : mapping, optional
        ``{"I -> R": Distribution}`` applied to every stratum, or
        ``{stratum_key: {"I -> R": Distribution}}``. Sources without a
        distribution are governed by the force of infection.
    contacts : sequence of ContactMatrix or ContactStructure, optional
        One matrix per stratification dimension
    transmission_rate : float, optional
        Beta of the force-of-infection edges
    infectious_compartments : sequence of str, optional
        Compartments contributing to the force of infection
    splits : mapping, optional
        Outflow fractions for sources with several targets
    combine : str or callable, default="product"
        How per-dimension contact weights combine
    survival_cutoff : float, default=1e-10
        Truncation of parametric hazard tables

    Raises
    ------
    InvalidDistribution, MalformedTransition, DimensionMismatch
        On any construction problem; no partial model is returned

    Examples
    --------
    >>> model = CompartmentalModel(
    ...     transitions=["S -> I", "I -> R"],
    ...     initial_values={"S": 999, "I": 1, "R": 0},
    ...     distributions={"I -> R": exponential(rate=1.5)},
    ...     transmission_rate=1.5,
    ...     infectious_compartments=["I"],
    ... )
    >>> trajectory = model.run(days_follow_up=100, time_step=0.01)
    """

    def __init__(
        self,
        transitions: Union[Sequence[EdgeKey], TransitionGraph],
        initial_values: Mapping[str, Any],
        distributions: Optional[Mapping[str, Any]] = None,
        contacts: Union[Sequence[ContactMatrix], ContactStructure] = (),
        transmission_rate: Optional[float] = None,
        infectious_compartments: Sequence[str] = (),
        splits: Optional[Mapping[EdgeKey, float]] = None,
        combine: CombineStrategy = "product",
        survival_cutoff: float = DEFAULT_SURVIVAL_CUTOFF
    ):
        if isinstance(contacts, ContactStructure):
            self.contacts = contacts
        else:
            self.contacts = ContactStructure(contacts, combine=combine,
                                             delimiter=STRATUM_DELIMITER)
        self.strata = self.contacts.strata()
        self.survival_cutoff = survival_cutoff

        if isinstance(transitions, TransitionGraph):
            self.graph = transitions
        else:
            self.graph = TransitionGraph(list(transitions), splits=splits)

        self.initial_values = self._group(initial_values, "initial values",
                                          broadcast=False)
        self.compartments = self._compartments()
        self.graph.validate(self.compartments)

        self.force_of_infection = self._force_of_infection_rule(
            transmission_rate, infectious_compartments)
        self.distributions = self._group(distributions or {}, "distributions",
                                         broadcast=True)
        self.transitions = self.graph.compile(
            self.strata, self.distributions, self.force_of_infection)
        logger.info("Built model with %d compartments in %d strata",
                    len(self.compartments), len(self.strata))

    def _group(
        self,
        values: Mapping[str, Any],
        what: str,
        broadcast: bool
    ) -> Dict[str, Dict[Any, Any]]:
        nested = [isinstance(v, Mapping) for v in values.values()]
        if any(nested) and not all(nested):
            raise DimensionMismatch(f"{what} mix grouped and ungrouped entries")

        if values and all(nested):
            self.contacts.validate_keys(values.keys(), what)
            return {s: dict(values[s]) for s in self.strata}

        if self.contacts.matrices and not broadcast:
            raise DimensionMismatch(
                f"{what} must be grouped by stratum "
                f"({self.contacts.delimiter!r}-joined levels of "
                f"{list(self.contacts.dimensions)})")
        return {s: dict(values) for s in self.strata}

    def _compartments(self):
        first = self.strata[0]
        compartments = tuple(self.initial_values[first])
        for stratum in self.strata[1:]:
            if set(self.initial_values[stratum]) != set(compartments):
                raise DimensionMismatch(
                    f"Strata {first!r} and {stratum!r} define different "
                    f"compartments")
        if not compartments:
            raise MalformedTransition("No initial values were given")
        for stratum, values in self.initial_values.items():
            for comp, value in values.items():
                if not math.isfinite(float(value)) or float(value) < 0:
                    raise ValueError(
                        f"Initial value of {comp!r} in stratum {stratum!r} "
                        f"must be finite and non-negative, got {value}")
        return compartments

    def _force_of_infection_rule(
        self,
        transmission_rate: Optional[float],
        infectious_compartments: Sequence[str]
    ) -> Optional[ForceOfInfection]:
        infectious = tuple(infectious_compartments)
        if transmission_rate is None and not infectious:
            return None
        if transmission_rate is None or not infectious:
            raise MalformedTransition(
                "transmission_rate and infectious_compartments must be given "
                "together")
        if not math.isfinite(transmission_rate) or transmission_rate < 0:
            raise MalformedTransition(
                f"transmission_rate must be finite and non-negative, got "
                f"{transmission_rate}")
        unknown = [c for c in infectious if c not in self.compartments]
        if unknown:
            raise MalformedTransition(
                f"Infectious compartments {unknown} have no initial value")
        return ForceOfInfection(float(transmission_rate), infectious)

    @log_call
    def engine(self, time_step: float) -> SimulationEngine:
        """Fresh engine (and state) at the given resolution."""
        return SimulationEngine(
            self.transitions, self.contacts, self.initial_values,
            self.compartments, time_step, survival_cutoff=self.survival_cutoff)

    @log_call
    def run(self, days_follow_up: float, time_step: float) -> Trajectory:
        """Simulate at a single, fixed resolution."""
        return self.engine(time_step).run(days_follow_up)

    @log_call
    def refine(
        self,
        days_follow_up: float,
        time_step: float,
        error_tolerance: float,
        max_refinements: int = 5,
        metric: str = "absolute",
        parallel: bool = False
    ) -> RefinementResult:
        """Halve ``time_step`` until successive resolutions agree."""
        controller = ErrorController(
            self.engine, error_tolerance, max_refinements=max_refinements,
            metric=metric, parallel=parallel)
        return controller.run(days_follow_up, time_step)

    @log_call
    def simulate(
        self,
        days_follow_up: float,
        time_step: float,
        error_tolerance: Optional[float] = None,
        max_refinements: int = 5,
        metric: str = "absolute",
        parallel: bool = False
    ) -> Trajectory:
        """
        Run the model, refining the time step when a tolerance is given.

        Raises
        ------
        ConvergenceFailure
            If ``error_tolerance`` is not met after ``max_refinements``
        """
        if error_tolerance is None:
            return self.run(days_follow_up, time_step)
        return self.refine(days_follow_up, time_step, error_tolerance,
                           max_refinements=max_refinements, metric=metric,
                           parallel=parallel).trajectory


@log_call
def simulate(
    transitions: Sequence[EdgeKey],
    initial_values: Mapping[str, Any],
    days_follow_up: float,
    time_step: float = 1.0,
    distributions: Optional[Mapping[str, Any]] = None,
    contacts: Sequence[ContactMatrix] = (),
    transmission_rate: Optional[float] = None,
    infectious_compartments: Sequence[str] = (),
    error_tolerance: Optional[float] = None,
    **kwargs: Any
) -> Trajectory:
    """
    Build a :class:`CompartmentalModel` and run it.

    Extra keyword arguments go to the model constructor (``splits``,
    ``combine``, ``survival_cutoff``) or to :meth:`CompartmentalModel.simulate`
    (``max_refinements``, ``metric``, ``parallel``).
    """
    run_options = {k: kwargs.pop(k) for k in ("max_refinements", "metric",
                                               "parallel") if k in kwargs}
    model = CompartmentalModel(
        transitions, initial_values, distributions=distributions,
        contacts=contacts, transmission_rate=transmission_rate,
        infectious_compartments=infectious_compartments, **kwargs)
    return model.simulate(days_follow_up, time_step,
                          error_tolerance=error_tolerance, **run_options)

