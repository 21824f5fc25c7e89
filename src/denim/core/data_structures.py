from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

import numpy as np
import pandas as pd

from denim.utils.logging import log_call

CohortKey = Tuple[str, str]


@dataclass(frozen=True)
class SimulationState:
    """
    Snapshot of every cohort at one time index.

    ``cohorts[(stratum, compartment)][a]`` is the number of individuals who
    entered ``compartment`` ``a`` steps ago; the last bin of a compartment
    whose hazard has a constant tail also holds everyone older.
    """

    time_index: int
    cohorts: Mapping[CohortKey, np.ndarray]

    @log_call
    def occupancy(self, stratum: str, compartment: str) -> float:
        """Total number of individuals in a compartment of one stratum."""
        return float(self.cohorts[(stratum, compartment)].sum())

    @log_call
    def totals(
        self,
        strata: Tuple[str, ...],
        compartments: Tuple[str, ...]
    ) -> np.ndarray:
        """``(n_strata, n_compartments)`` occupancy matrix."""
        return np.array([
            [self.cohorts[(s, c)].sum() for c in compartments] for s in strata
        ])


@dataclass(frozen=True)
class Trajectory:
    """
    Compartment totals at every time step of one run.

    Parameters
    ----------
    time_step : float
        Spacing between consecutive rows of ``totals``
    strata : tuple of str
        Stratum keys, second axis of ``totals``
    compartments : tuple of str
        Compartment names, third axis of ``totals``
    totals : np.ndarray
        Shape ``(n_times, n_strata, n_compartments)``
    """

    time_step: float
    strata: Tuple[str, ...]
    compartments: Tuple[str, ...]
    totals: np.ndarray

    @property
    @log_call
    def times(self) -> np.ndarray:
        """Time of every row of ``totals``."""
        return self.time_step * np.arange(self.totals.shape[0])

    def _stratum_index(self, stratum: Optional[str]) -> int:
        if stratum is None:
            if len(self.strata) != 1:
                raise ValueError(
                    f"stratum is required when there are several strata: "
                    f"{list(self.strata)}")
            return 0
        return self.strata.index(stratum)

    @log_call
    def series(self, compartment: str, stratum: Optional[str] = None) -> np.ndarray:
        """Occupancy of one compartment over time."""
        return self.totals[:, self._stratum_index(stratum),
                           self.compartments.index(compartment)]

    @log_call
    def population(self, stratum: Optional[str] = None) -> np.ndarray:
        """Total population of one stratum over time."""
        return self.totals[:, self._stratum_index(stratum), :].sum(axis=1)

    @log_call
    def sample(self, every: int) -> "Trajectory":
        """Keep every ``every``-th time point, starting at time 0."""
        if every < 1:
            raise ValueError(f"every must be >= 1, got {every}")
        return Trajectory(self.time_step * every, self.strata,
                          self.compartments, self.totals[::every])

    @log_call
    def to_frame(self) -> pd.DataFrame:
        """Long table with columns time, stratum, compartment, population."""
        n_times, n_strata, n_comps = self.totals.shape
        return pd.DataFrame({
            "time": np.repeat(self.times, n_strata * n_comps),
            "stratum": np.tile(np.repeat(self.strata, n_comps), n_times),
            "compartment": np.tile(self.compartments, n_times * n_strata),
            "population": self.totals.reshape(-1),
        })

    @log_call
    def to_wide(self, delimiter: str = ".") -> pd.DataFrame:
        """
        One column per stratum and compartment, indexed by time.

        Columns are ``"<stratum><delimiter><compartment>"``, or just the
        compartment name when there is a single stratum.
        """
        if len(self.strata) == 1:
            columns = list(self.compartments)
        else:
            columns = [f"{s}{delimiter}{c}"
                       for s in self.strata for c in self.compartments]
        frame = pd.DataFrame(self.totals.reshape(self.totals.shape[0], -1),
                             columns=columns)
        frame.index = pd.Index(self.times, name="time")
        return frame
