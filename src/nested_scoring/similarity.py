"""
Similarity functions for one term in one field occurrence.

Three variants, all pure functions of (TermStatistics, config, boost):

    BM25               idf = log(1 + (N - df + 0.5) / (df + 0.5))
                       tf  = ((k1 + 1) * freq) / (k1 * (1 - b + b * L / avgL) + freq)
    scripted:default   idf = log((N + 1) / (df + 1)) + 1
                       tf  = sqrt(freq),  norm = 1 / sqrt(L)
    scripted:custom    idf = log((N + 1) / (df + 1)) + 1
                       tf  = 1 if freq > 0 else 0,  norm = 1 / log(1 + L)

Variants are selected through SIMILARITY_FUNCTIONS, keyed by the config's
`name`. There is no class hierarchy: each formula is importable and testable
on its own.

Usage:
    from nested_scoring.similarity import compute_weight

    weight = compute_weight(stats, BM25Similarity(k1=1.0, b=0.75))
    weight.value, weight.idf, weight.tf, weight.norm
"""

from __future__ import annotations

import math
from collections.abc import Callable
from typing import NamedTuple

from nested_scoring.config import BM25Similarity, ScriptedSimilarity, ScriptVariant
from nested_scoring.statistics import TermStatistics


class TermWeight(NamedTuple):
    """Weight of one term in one occurrence plus its intermediate values."""

    value: float
    idf: float
    tf: float
    norm: float


ZERO_WEIGHT = TermWeight(0.0, 0.0, 0.0, 0.0)

# Minimum field length; an empty occurrence normalizes like a single token
MIN_FIELD_LENGTH = 1


# =============================================================================
# Primitives
# =============================================================================


def idf_bm25(doc_freq: float, document_count: int) -> float:
    """Lucene BM25 IDF (non-negative): log(1 + (N - df + 0.5) / (df + 0.5))"""
    return math.log(1.0 + (document_count - doc_freq + 0.5) / (doc_freq + 0.5))


def idf_smooth(doc_freq: float, document_count: int) -> float:
    """Classic smoothed IDF: log((N + 1) / (df + 1)) + 1"""
    return math.log((document_count + 1.0) / (doc_freq + 1.0)) + 1.0


def effective_length(stats: TermStatistics, discount_overlaps: bool) -> int:
    """Field length used for normalization, floored at MIN_FIELD_LENGTH."""
    length = stats.field_length
    if discount_overlaps:
        length -= stats.overlap_count
    return max(length, MIN_FIELD_LENGTH)


def length_norm_bm25(length: float, avg_length: float, b: float) -> float:
    """BM25 length normalization: 1 - b + b * (L / avgL)."""
    if avg_length <= 0:
        # no collection average yet; the occurrence is its own average
        return 1.0
    return 1.0 - b + b * (length / avg_length)


def saturate_bm25(term_freq: float, k1: float, norm: float) -> float:
    """BM25 saturation: ((k1 + 1) * tf) / (k1 * norm + tf)."""
    denominator = k1 * norm + term_freq
    if denominator <= 0:
        return 0.0
    return ((k1 + 1.0) * term_freq) / denominator


def tf_sqrt(term_freq: float) -> float:
    return math.sqrt(term_freq)


def tf_boolean(term_freq: float) -> float:
    """Boolean TF: 1 if present, 0 otherwise."""
    return 1.0 if term_freq > 0 else 0.0


def norm_sqrt(length: float) -> float:
    return 1.0 / math.sqrt(length)


def norm_log(length: float) -> float:
    """Logarithmic length norm 1 / log(1 + L); flatter than 1 / sqrt(L) for long fields."""
    return 1.0 / math.log1p(length)


# =============================================================================
# Variants
# =============================================================================


def bm25_weight(stats: TermStatistics, config: BM25Similarity, boost: float = 1.0) -> TermWeight:
    if stats.term_freq <= 0 or stats.document_count <= 0:
        return ZERO_WEIGHT
    idf = idf_bm25(stats.doc_freq, stats.document_count)
    length = effective_length(stats, config.discount_overlaps)
    norm = length_norm_bm25(length, stats.average_field_length, config.b)
    tf = saturate_bm25(stats.term_freq, config.k1, norm)
    return TermWeight(boost * idf * tf, idf, tf, norm)


def _scripted_weight(
    stats: TermStatistics,
    config: ScriptedSimilarity,
    boost: float,
    tf_func: Callable[[float], float],
    norm_func: Callable[[float], float],
) -> TermWeight:
    if stats.term_freq <= 0 or stats.document_count <= 0:
        return ZERO_WEIGHT
    idf = idf_smooth(stats.doc_freq, stats.document_count)
    tf = tf_func(stats.term_freq)
    norm = norm_func(effective_length(stats, config.discount_overlaps))
    return TermWeight(boost * idf * tf * norm, idf, tf, norm)


def scripted_default_weight(stats: TermStatistics, config: ScriptedSimilarity, boost: float = 1.0) -> TermWeight:
    return _scripted_weight(stats, config, boost, tf_sqrt, norm_sqrt)


def scripted_custom_weight(stats: TermStatistics, config: ScriptedSimilarity, boost: float = 1.0) -> TermWeight:
    return _scripted_weight(stats, config, boost, tf_boolean, norm_log)


SimilarityFunction = Callable[..., TermWeight]

SIMILARITY_FUNCTIONS: dict[str, SimilarityFunction] = {
    "BM25": bm25_weight,
    f"scripted:{ScriptVariant.DEFAULT.value}": scripted_default_weight,
    f"scripted:{ScriptVariant.CUSTOM.value}": scripted_custom_weight,
}


def similarity_function(config: BM25Similarity | ScriptedSimilarity) -> SimilarityFunction:
    return SIMILARITY_FUNCTIONS[config.name]


def compute_weight(
    stats: TermStatistics,
    config: BM25Similarity | ScriptedSimilarity,
    boost: float = 1.0,
) -> TermWeight:
    """Weight of one term occurrence under the configured similarity."""
    return similarity_function(config)(stats, config, boost)


__all__ = [
    "MIN_FIELD_LENGTH",
    "SIMILARITY_FUNCTIONS",
    "TermWeight",
    "ZERO_WEIGHT",
    "bm25_weight",
    "compute_weight",
    "effective_length",
    "idf_bm25",
    "idf_smooth",
    "length_norm_bm25",
    "norm_log",
    "norm_sqrt",
    "saturate_bm25",
    "scripted_custom_weight",
    "scripted_default_weight",
    "similarity_function",
    "tf_boolean",
    "tf_sqrt",
]
