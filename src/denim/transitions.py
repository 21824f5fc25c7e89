"""
Transition topology between compartments.

Transitions are written ``"S -> I"``. Each source compartment is governed
either by a waiting-time :class:`~denim.distributions.Distribution` bound to
one of its edges, or, when no distribution is supplied, by a force of
infection recomputed at every time step.
"""

from dataclasses import dataclass
from typing import (
    Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union
)
import logging
import math
import warnings

from .distributions import Distribution
from .errors import MalformedTransition, TopologyWarning
from .utils.logging import log_call

logger = logging.getLogger(__name__)

ARROW = "->"


@dataclass(frozen=True)
class Edge:
    """Directed edge between two compartments."""

    source: str
    target: str

    def __str__(self) -> str:
        return f"{self.source} {ARROW} {self.target}"


EdgeKey = Union[str, Edge, Tuple[str, str]]


@dataclass(frozen=True)
class ForceOfInfection:
    """
    Rule for edges whose hazard is driven by infectious contacts.

    Parameters
    ----------
    transmission_rate : float
        Transmission rate per unit time (beta)
    infectious_compartments : tuple of str
        Compartments whose occupants are infectious
    """

    transmission_rate: float
    infectious_compartments: Tuple[str, ...]


Rule = Union[Distribution, ForceOfInfection]


@dataclass(frozen=True)
class Transition:
    """An edge bound to its governing rule within one stratum."""

    source: str
    target: str
    stratum: str
    rule: Rule
    fraction: float = 1.0

    @property
    @log_call
    def is_force_of_infection(self) -> bool:
        """True when the hazard is recomputed from the force of infection."""
        return isinstance(self.rule, ForceOfInfection)


@log_call
def parse_transition(text: str) -> Edge:
    """
    Parse a transition string.

    Examples
    --------
    >>> parse_transition(" S ->I")
    Edge(source='S', target='I')
    """
    if not isinstance(text, str) or text.count(ARROW) != 1:
        raise MalformedTransition(
            f"Transition must look like 'A {ARROW} B', got {text!r}")
    source, target = (part.strip() for part in text.split(ARROW))
    if not source or not target:
        raise MalformedTransition(f"Empty compartment name in {text!r}")
    if source == target:
        raise MalformedTransition(f"Self transition {text!r} is not allowed")
    return Edge(source, target)


def _as_edge(key: EdgeKey) -> Edge:
    if isinstance(key, Edge):
        return key
    if isinstance(key, tuple) and len(key) == 2:
        return parse_transition(f"{key[0]} {ARROW} {key[1]}")
    return parse_transition(key)


class TransitionGraph:
    """
    Parsed, validated transition topology.

    Parameters
    ----------
    edges : sequence of Edge or str
        Directed edges, either parsed or as ``"A -> B"`` strings
    splits : mapping, optional
        Fraction of a source's outflow sent along each edge. Required for
        every edge of a source with more than one target; fractions are
        normalised per source.

    Raises
    ------
    MalformedTransition
        On duplicate edges, multi-target sources without splits, or splits
        on unknown edges
    """

    def __init__(
        self,
        edges: Sequence[EdgeKey],
        splits: Optional[Mapping[EdgeKey, float]] = None
    ):
        self.edges: Tuple[Edge, ...] = tuple(_as_edge(e) for e in edges)
        if not self.edges:
            raise MalformedTransition("At least one transition is required")
        if len(set(self.edges)) != len(self.edges):
            raise MalformedTransition(
                f"Duplicate transitions in {[str(e) for e in self.edges]}")

        self._targets: Dict[str, List[str]] = {}
        for edge in self.edges:
            self._targets.setdefault(edge.source, []).append(edge.target)

        self._fractions = self._resolve_splits(splits or {})

    @classmethod
    @log_call
    def from_strings(
        cls,
        transitions: Iterable[str],
        splits: Optional[Mapping[EdgeKey, float]] = None
    ) -> "TransitionGraph":
        """Build a graph from ``"A -> B"`` strings."""
        return cls([parse_transition(t) for t in transitions], splits=splits)

    def _resolve_splits(
        self, splits: Mapping[EdgeKey, float]
    ) -> Dict[Edge, float]:
        given = {_as_edge(k): float(v) for k, v in splits.items()}
        unknown = [str(e) for e in given if e not in set(self.edges)]
        if unknown:
            raise MalformedTransition(f"Splits reference unknown transitions {unknown}")

        fractions: Dict[Edge, float] = {}
        for source, targets in self._targets.items():
            edges = [Edge(source, t) for t in targets]
            if len(edges) == 1:
                fractions[edges[0]] = 1.0
                continue
            missing = [str(e) for e in edges if e not in given]
            if missing:
                raise MalformedTransition(
                    f"Compartment {source!r} has several targets; split "
                    f"fractions are required for {missing}")
            values = [given[e] for e in edges]
            if any(not math.isfinite(v) or v <= 0 for v in values):
                raise MalformedTransition(
                    f"Split fractions for {source!r} must be positive: {values}")
            total = sum(values)
            for edge, value in zip(edges, values):
                fractions[edge] = value / total
        return fractions

    @property
    @log_call
    def compartments(self) -> Tuple[str, ...]:
        """Every compartment named by an edge, in order of appearance."""
        seen: Dict[str, None] = {}
        for edge in self.edges:
            seen.setdefault(edge.source)
            seen.setdefault(edge.target)
        return tuple(seen)

    @log_call
    def sources(self) -> Tuple[str, ...]:
        """Compartments with at least one outgoing edge."""
        return tuple(self._targets)

    @log_call
    def targets_of(self, source: str) -> Tuple[Tuple[str, float], ...]:
        """``(target, fraction)`` pairs for a source compartment."""
        return tuple(
            (t, self._fractions[Edge(source, t)])
            for t in self._targets.get(source, [])
        )

    @log_call
    def roots(self) -> Tuple[str, ...]:
        """Sources that no edge points into."""
        targets = {e.target for e in self.edges}
        return tuple(s for s in self.sources() if s not in targets)

    @log_call
    def validate(self, compartments: Iterable[str]) -> None:
        """
        Check the topology against the compartments given initial values.

        Raises
        ------
        MalformedTransition
            If an edge names a compartment without an initial value

        Warns
        -----
        TopologyWarning
            If no compartment is a root (every source has an incoming edge)
        """
        known = set(compartments)
        unknown = [c for c in self.compartments if c not in known]
        if unknown:
            raise MalformedTransition(
                f"Compartments {unknown} appear in transitions but have no "
                f"initial value")
        if not self.roots():
            warnings.warn(
                "Transition graph has no root compartment (every source has "
                "an incoming edge)",
                TopologyWarning
            )

    @log_call
    def bind(
        self,
        stratum: str,
        distributions: Mapping[EdgeKey, Distribution],
        force_of_infection: Optional[ForceOfInfection] = None
    ) -> Tuple[Transition, ...]:
        """
        Bind every edge to its governing rule for one stratum.

        A source with a distribution on any of its edges uses that
        distribution for all of them; a source without one is governed by
        ``force_of_infection``.

        Raises
        ------
        MalformedTransition
            If a distribution references an unknown edge or compartment, a
            source has conflicting distributions, or a source has neither a
            distribution nor a force-of-infection rule
        """
        by_source = self._distributions_by_source(stratum, distributions)

        bound: List[Transition] = []
        for source in self.sources():
            rule: Optional[Rule] = by_source.get(source, force_of_infection)
            if rule is None:
                raise MalformedTransition(
                    f"Stratum {stratum!r}: {source!r} has no distribution and "
                    f"no transmission rate/infectious compartments were given")
            for target, fraction in self.targets_of(source):
                bound.append(Transition(source, target, stratum, rule, fraction))
        return tuple(bound)

    def _distributions_by_source(
        self,
        stratum: str,
        distributions: Mapping[EdgeKey, Distribution]
    ) -> Dict[str, Distribution]:
        known_compartments = set(self.compartments)
        by_source: Dict[str, Distribution] = {}
        for key, dist in distributions.items():
            edge = _as_edge(key)
            if edge not in set(self.edges):
                missing = {edge.source, edge.target} - known_compartments
                detail = (f"unknown compartments {sorted(missing)}"
                          if missing else "a transition not in the topology")
                raise MalformedTransition(
                    f"Stratum {stratum!r}: distribution for {edge} references "
                    f"{detail}")
            if not isinstance(dist, Distribution):
                raise MalformedTransition(
                    f"Stratum {stratum!r}: rule for {edge} is not a Distribution")
            previous = by_source.get(edge.source)
            if previous is not None and previous != dist:
                raise MalformedTransition(
                    f"Stratum {stratum!r}: edges leaving {edge.source!r} have "
                    f"different distributions")
            by_source[edge.source] = dist
        return by_source

    @log_call
    def compile(
        self,
        strata: Sequence[str],
        distributions: Mapping[str, Mapping[EdgeKey, Distribution]],
        force_of_infection: Optional[ForceOfInfection] = None
    ) -> Dict[str, Tuple[Transition, ...]]:
        """
        Bind the graph in every stratum and check cross-strata consistency.

        Every stratum must use the same choice (distribution or force of
        infection) for each source; parameters may differ.
        """
        compiled = {
            s: self.bind(s, distributions.get(s, {}), force_of_infection)
            for s in strata
        }
        reference = None
        for stratum, transitions in compiled.items():
            signature = tuple(
                (t.source, t.target, t.is_force_of_infection) for t in transitions
            )
            if reference is None:
                reference = (stratum, signature)
            elif signature != reference[1]:
                raise MalformedTransition(
                    f"Strata {reference[0]!r} and {stratum!r} disagree on which "
                    f"transitions are driven by the force of infection")
        logger.debug("Compiled %d transitions in %d strata",
                     len(self.edges), len(compiled))
        return compiled
