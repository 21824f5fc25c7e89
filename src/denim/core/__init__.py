"""Core simulation modules."""

from .data_structures import SimulationState, Trajectory
from .temporal_engine import SimulationEngine

__all__ = ["SimulationState", "Trajectory", "SimulationEngine"]
