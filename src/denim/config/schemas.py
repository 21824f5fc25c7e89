from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class DistributionConfig:
    type: str
    rate: Optional[float] = None
    scale: Optional[float] = None
    shape: Optional[float] = None
    meanlog: Optional[float] = None
    sdlog: Optional[float] = None
    waiting_time: Optional[List[float]] = None
    bin_width: float = 1.0


@dataclass
class ContactMatrixConfig:
    name: str
    levels: List[str]
    weights: List[List[float]]


@dataclass
class ModelConfig:
    name: str
    transitions: List[str]
    initial_values: Dict[str, Any]
    distributions: Dict[str, Any] = field(default_factory=dict)
    transmission_rate: Optional[float] = None
    infectious_compartments: List[str] = field(default_factory=list)
    contacts: List[Dict[str, Any]] = field(default_factory=list)
    splits: Dict[str, float] = field(default_factory=dict)
    combine: str = "product"


@dataclass
class SimulationConfig:
    days_follow_up: float
    time_step: float
    error_tolerance: Optional[float] = None
    max_refinements: int = 5
    metric: str = "absolute"
    parallel: bool = False
