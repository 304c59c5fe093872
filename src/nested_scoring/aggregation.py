"""
Reduction of per-occurrence weights to one document score.

The default, MAX, lets the single best-matching occurrence drive the parent
document: appending duplicate or alias occurrences cannot raise the maximum.
The other modes mirror the nested query `score_mode` options of the index
engine. SUM is the only mode under which alias duplication inflates scores.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from enum import Enum

import numpy as np

Aggregator = Callable[[Sequence[float]], float]


class ScoreMode(str, Enum):
    MAX = "max"
    AVG = "avg"
    SUM = "sum"
    MIN = "min"
    NONE = "none"


def _reduce(func: Callable[[np.ndarray], float]) -> Aggregator:
    def aggregator(weights: Sequence[float]) -> float:
        if len(weights) == 0:
            return 0.0
        return float(func(np.asarray(weights, dtype=np.float64)))

    return aggregator


AGGREGATORS: dict[ScoreMode, Aggregator] = {
    ScoreMode.MAX: _reduce(np.max),
    ScoreMode.AVG: _reduce(np.mean),
    ScoreMode.SUM: _reduce(np.sum),
    ScoreMode.MIN: _reduce(np.min),
    ScoreMode.NONE: lambda weights: 0.0,
}


def resolve_aggregator(mode: ScoreMode | str | Aggregator) -> tuple[str, Aggregator]:
    """Return (name, reduction) for a score mode, its string value, or a custom callable."""
    if callable(mode) and not isinstance(mode, (ScoreMode, str)):
        return getattr(mode, "__name__", "custom"), mode
    score_mode = ScoreMode(mode)
    return score_mode.value, AGGREGATORS[score_mode]


def aggregate(weights: Sequence[float], mode: ScoreMode | str | Aggregator = ScoreMode.MAX) -> float:
    """
    Reduce per-occurrence weights to a document score.

    Args:
        weights: Weights of the matching occurrences, in occurrence order.
        mode: Score mode or a custom reduction.

    Returns:
        The document score; 0.0 when no occurrence matched.
    """
    _, reduction = resolve_aggregator(mode)
    return reduction(weights)


__all__ = [
    "AGGREGATORS",
    "Aggregator",
    "ScoreMode",
    "aggregate",
    "resolve_aggregator",
]
