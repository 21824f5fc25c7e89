from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from hydra import compose, initialize_config_dir
from omegaconf import DictConfig, OmegaConf

from denim.contacts import ContactMatrix
from denim.distributions import Distribution
from denim.model import CompartmentalModel
from denim.utils.logging import log_call
from denim.utils.validation import distribution_groups, validate_config

from .schemas import (
    ContactMatrixConfig, DistributionConfig, ModelConfig, SimulationConfig
)

CONFIG_DIR = Path(__file__).resolve().parents[3] / "configs"


@log_call
def load_config(
    overrides: Optional[List[str]] = None,
    config_dir: Optional[Union[str, Path]] = None
) -> DictConfig:
    """Load and validate a configuration using Hydra."""

    overrides = overrides or []
    config_dir = Path(config_dir) if config_dir is not None else CONFIG_DIR
    with initialize_config_dir(
        config_dir.resolve().as_posix(), version_base=None
    ):
        cfg = compose(config_name="config", overrides=overrides)
    validate_config(cfg)
    return cfg


@log_call
def distribution_from_config(cfg: Mapping[str, Any]) -> Distribution:
    """Build a Distribution from ``{type: ..., <parameters>}``."""
    spec = DistributionConfig(**_plain(cfg))
    waiting_time = tuple(spec.waiting_time or ())
    return Distribution(
        spec.type,
        rate=spec.rate,
        scale=spec.scale,
        shape=spec.shape,
        meanlog=spec.meanlog,
        sdlog=spec.sdlog,
        waiting_time=waiting_time,
        bin_width=spec.bin_width,
    )


@log_call
def contact_matrix_from_config(cfg: Mapping[str, Any]) -> ContactMatrix:
    """Build a ContactMatrix from ``{name, levels, weights}``."""
    spec = ContactMatrixConfig(**_plain(cfg))
    return ContactMatrix(spec.name, tuple(spec.levels), spec.weights)


@log_call
def simulation_settings(cfg: DictConfig) -> SimulationConfig:
    """Typed view of the ``simulation`` group."""
    return SimulationConfig(**_plain(cfg.simulation))


@log_call
def build_model(cfg: DictConfig) -> CompartmentalModel:
    """Assemble a CompartmentalModel from a composed configuration."""
    spec = ModelConfig(**_plain(cfg.model))

    distributions: Dict[str, Any] = {}
    for stratum, group in distribution_groups(spec.distributions):
        converted = {edge: distribution_from_config(dist)
                     for edge, dist in group.items()}
        if stratum is None:
            distributions.update(converted)
        else:
            distributions[stratum] = converted

    return CompartmentalModel(
        transitions=spec.transitions,
        initial_values=spec.initial_values,
        distributions=distributions,
        contacts=[contact_matrix_from_config(c) for c in spec.contacts],
        transmission_rate=spec.transmission_rate,
        infectious_compartments=spec.infectious_compartments,
        splits=spec.splits or None,
        combine=spec.combine,
    )


def _plain(cfg: Any) -> Dict[str, Any]:
    if isinstance(cfg, DictConfig):
        return OmegaConf.to_container(cfg, resolve=True)  # type: ignore[return-value]
    return dict(cfg)
