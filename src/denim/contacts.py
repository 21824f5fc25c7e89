"""
Contact structure across population strata.

Each contact dimension (location, age group, gender, ...) is described by a
square matrix of non-negative weights between its levels. The population is
cross-stratified by the Cartesian product of every dimension's levels, and the
contact weight between two strata combines the per-dimension entries.
"""

from dataclasses import dataclass
from itertools import product
from typing import Callable, Dict, Iterable, List, Sequence, Tuple, Union
import logging

import numpy as np
import pandas as pd

from .errors import DimensionMismatch
from .utils.logging import log_call

logger = logging.getLogger(__name__)

# Key of the single stratum used when no contact matrix is supplied
DEFAULT_STRATUM = "all"
STRATUM_DELIMITER = "."

CombineStrategy = Union[str, Callable[[Sequence[float]], float]]

_COMBINERS: Dict[str, Callable[[Sequence[float]], float]] = {
    "product": lambda weights: float(np.prod(weights)),
    "mean": lambda weights: float(np.mean(weights)),
}


@dataclass(frozen=True, eq=False)
class ContactMatrix:
    """
    Named square contact matrix for one stratification dimension.

    Parameters
    ----------
    name : str
        Dimension name, e.g. ``"location"``
    levels : sequence of str
        Row and column names, in order
    weights : array-like
        Non-negative ``(n_levels, n_levels)`` weights; ``weights[i, j]`` is
        the contact weight of level ``i`` with level ``j``
    """

    name: str
    levels: Tuple[str, ...]
    weights: np.ndarray

    def __post_init__(self) -> None:
        levels = tuple(str(level) for level in self.levels)
        weights = np.array(self.weights, dtype=float)

        if weights.ndim != 2 or weights.shape[0] != weights.shape[1]:
            raise DimensionMismatch(
                f"Contact matrix {self.name!r} must be square, "
                f"got shape {weights.shape}")
        if weights.shape[0] != len(levels):
            raise DimensionMismatch(
                f"Contact matrix {self.name!r} has {weights.shape[0]} rows "
                f"but {len(levels)} level names")
        if len(set(levels)) != len(levels):
            raise DimensionMismatch(
                f"Contact matrix {self.name!r} has duplicate level names")
        if not np.all(np.isfinite(weights)) or np.any(weights < 0):
            raise DimensionMismatch(
                f"Contact matrix {self.name!r} must contain finite, "
                f"non-negative weights")

        weights.flags.writeable = False
        object.__setattr__(self, "levels", levels)
        object.__setattr__(self, "weights", weights)

    @classmethod
    @log_call
    def from_frame(cls, name: str, frame: pd.DataFrame) -> "ContactMatrix":
        """
        Build a contact matrix from a labelled DataFrame.

        Row and column labels must name the same levels; columns are
        reordered to match the rows.
        """
        rows = [str(r) for r in frame.index]
        cols = [str(c) for c in frame.columns]
        if sorted(rows) != sorted(cols):
            raise DimensionMismatch(
                f"Contact matrix {name!r}: row names {rows} do not match "
                f"column names {cols}")
        frame = frame.copy()
        frame.index = rows
        frame.columns = cols
        return cls(name=name, levels=tuple(rows),
                   weights=frame.loc[rows, rows].to_numpy(dtype=float))

    @log_call
    def weight(self, level_a: str, level_b: str) -> float:
        """Contact weight between two levels of this dimension."""
        try:
            i = self.levels.index(level_a)
            j = self.levels.index(level_b)
        except ValueError as exc:
            raise DimensionMismatch(
                f"Unknown level for dimension {self.name!r}: {exc}") from exc
        return float(self.weights[i, j])

    @log_call
    def to_frame(self) -> pd.DataFrame:
        """Labelled copy of the matrix."""
        return pd.DataFrame(np.array(self.weights), index=list(self.levels),
                            columns=list(self.levels))


class ContactStructure:
    """
    Cross-product strata and pairwise contact weights between them.

    With no matrix there is one implicit stratum (``"all"``) and every weight
    is 1. With one matrix the strata are its levels. With several matrices
    the strata are the Cartesian product of their levels joined by
    ``delimiter`` in the order the matrices were given, and the weight
    between two strata combines the per-dimension entries (product by
    default).

    Parameters
    ----------
    matrices : sequence of ContactMatrix, optional
        One matrix per stratification dimension
    combine : str or callable, default="product"
        ``"product"``, ``"mean"``, or a callable receiving the list of
        per-dimension weights and returning one scalar
    delimiter : str, default="."
        Separator used in composite stratum keys
    """

    def __init__(
        self,
        matrices: Sequence[ContactMatrix] = (),
        combine: CombineStrategy = "product",
        delimiter: str = STRATUM_DELIMITER
    ):
        self.matrices: Tuple[ContactMatrix, ...] = tuple(matrices)
        self.delimiter = delimiter
        self._combine = _resolve_combiner(combine)

        names = [m.name for m in self.matrices]
        if len(set(names)) != len(names):
            raise DimensionMismatch(f"Duplicate contact dimensions: {names}")
        for matrix in self.matrices:
            bad = [lv for lv in matrix.levels if delimiter in lv or not lv]
            if bad:
                raise DimensionMismatch(
                    f"Levels of {matrix.name!r} must be non-empty and must not "
                    f"contain {delimiter!r}: {bad}")

        if self.matrices:
            level_indices = list(product(
                *(range(len(m.levels)) for m in self.matrices)))
            self._strata = tuple(
                delimiter.join(m.levels[i] for m, i in zip(self.matrices, idx))
                for idx in level_indices
            )
        else:
            level_indices = [()]
            self._strata = (DEFAULT_STRATUM,)
        self._index = {key: i for i, key in enumerate(self._strata)}
        self._weights = self._build_weights(level_indices)
        logger.debug("Built %d strata from %d contact dimensions",
                     len(self._strata), len(self.matrices))

    def _build_weights(self, level_indices: List[Tuple[int, ...]]) -> np.ndarray:
        n = len(level_indices)
        weights = np.ones((n, n))
        if not self.matrices:
            weights.flags.writeable = False
            return weights
        for a, idx_a in enumerate(level_indices):
            for b, idx_b in enumerate(level_indices):
                per_dimension = [
                    m.weights[i, j]
                    for m, i, j in zip(self.matrices, idx_a, idx_b)
                ]
                weights[a, b] = self._combine(per_dimension)
        if not np.all(np.isfinite(weights)) or np.any(weights < 0):
            raise DimensionMismatch(
                "Combined contact weights must be finite and non-negative")
        weights.flags.writeable = False
        return weights

    @property
    @log_call
    def dimensions(self) -> Tuple[str, ...]:
        """Names of the contact dimensions, in key order."""
        return tuple(m.name for m in self.matrices)

    @log_call
    def strata(self) -> Tuple[str, ...]:
        """All cross-product strata keys, in a fixed order."""
        return self._strata

    @log_call
    def index(self, stratum: str) -> int:
        """Position of a stratum in :meth:`strata`."""
        try:
            return self._index[stratum]
        except KeyError:
            raise DimensionMismatch(
                f"Unknown stratum {stratum!r}; expected one of "
                f"{list(self._strata)}") from None

    @log_call
    def weight(self, stratum_a: str, stratum_b: str) -> float:
        """Contact weight between two strata."""
        return float(self._weights[self.index(stratum_a), self.index(stratum_b)])

    @log_call
    def weight_matrix(self) -> np.ndarray:
        """Read-only ``(n_strata, n_strata)`` matrix of pairwise weights."""
        return self._weights

    @log_call
    def split_key(self, stratum: str) -> Tuple[str, ...]:
        """Per-dimension levels of a composite stratum key."""
        self.index(stratum)
        if not self.matrices:
            return ()
        return tuple(stratum.split(self.delimiter))

    @log_call
    def validate_keys(self, keys: Iterable[str], what: str = "values") -> None:
        """
        Check that grouped inputs are keyed by exactly the declared strata.

        Raises
        ------
        DimensionMismatch
            If any key is not a stratum, or any stratum has no entry
        """
        keys = list(keys)
        unknown = [k for k in keys if k not in self._index]
        missing = [s for s in self._strata if s not in set(keys)]
        if unknown or missing:
            raise DimensionMismatch(
                f"Group keys of {what} do not match the contact dimensions "
                f"{list(self.dimensions)}: unknown={unknown}, missing={missing}")


def _resolve_combiner(
    combine: CombineStrategy
) -> Callable[[Sequence[float]], float]:
    if callable(combine):
        return combine
    try:
        return _COMBINERS[combine]
    except KeyError:
        raise ValueError(
            f"Unknown combine strategy {combine!r}; use one of "
            f"{sorted(_COMBINERS)} or a callable") from None
