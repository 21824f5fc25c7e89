from collections.abc import Mapping
from typing import Any, List, Optional, Tuple

from omegaconf import DictConfig

from denim.distributions import DistributionKind
from denim.utils.logging import log_call

_KINDS = {kind.value for kind in DistributionKind}


@log_call
def validate_config(cfg: DictConfig) -> None:
    """Simple validation for simulation configs."""

    sim = cfg.simulation
    if sim.days_follow_up <= 0:
        raise ValueError("days_follow_up must be positive")
    if sim.time_step <= 0:
        raise ValueError("time_step must be positive")
    if sim.error_tolerance is not None and sim.error_tolerance <= 0:
        raise ValueError("error_tolerance must be positive when given")
    if sim.max_refinements < 1:
        raise ValueError("max_refinements must be at least 1")

    model = cfg.model
    if not model.transitions:
        raise ValueError("at least one transition is required")
    if not model.initial_values:
        raise ValueError("initial_values must not be empty")

    for _, group in distribution_groups(model.get("distributions") or {}):
        for edge, dist in group.items():
            if dist["type"] not in _KINDS:
                raise ValueError(
                    f"distribution for {edge!r} has unknown type "
                    f"{dist['type']!r}; expected one of {sorted(_KINDS)}")


@log_call
def distribution_groups(
    distributions: Mapping
) -> List[Tuple[Optional[str], Mapping]]:
    """
    Split a distributions block into ``(stratum, {edge: distribution})`` pairs.

    The block is grouped by stratum only when every value is a mapping of
    mappings without a ``type`` key; a flat block yields a single pair with
    stratum ``None``.

    Raises
    ------
    ValueError
        If any distribution entry is not a mapping with a ``type``
    """
    if distributions and all(_is_group(v) for v in distributions.values()):
        groups = [(str(k), v) for k, v in distributions.items()]
    else:
        groups = [(None, distributions)]

    for stratum, group in groups:
        for edge, dist in group.items():
            if not isinstance(dist, Mapping) or "type" not in dist:
                where = f" in stratum {stratum!r}" if stratum else ""
                raise ValueError(f"distribution for {edge!r}{where} has no type")
    return groups


def _is_group(value: Any) -> bool:
    return (
        isinstance(value, Mapping)
        and "type" not in value
        and all(isinstance(v, Mapping) for v in value.values())
    )
