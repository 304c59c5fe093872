import math

import numpy as np
import pytest

from nested_scoring.config import BM25Similarity, ScriptedSimilarity
from nested_scoring.similarity import (
    SIMILARITY_FUNCTIONS,
    ZERO_WEIGHT,
    bm25_weight,
    compute_weight,
    idf_bm25,
    idf_smooth,
    scripted_custom_weight,
    scripted_default_weight,
)
from nested_scoring.statistics import TermStatistics

ALL_SIMILARITIES = [
    BM25Similarity(),
    BM25Similarity(k1=1.2, b=0.3),
    BM25Similarity(b=0.0),
    ScriptedSimilarity(variant="default"),
    ScriptedSimilarity(variant="custom"),
]


def stats(term_freq=1, field_length=1, doc_freq=1, document_count=3, overlap_count=0, average_field_length=2.0):
    return TermStatistics(
        document_count=document_count,
        doc_freq=doc_freq,
        term_freq=term_freq,
        field_length=field_length,
        overlap_count=overlap_count,
        average_field_length=average_field_length,
    )


def test_dispatch_table_covers_every_variant():
    assert set(SIMILARITY_FUNCTIONS) == {"BM25", "scripted:default", "scripted:custom"}
    assert SIMILARITY_FUNCTIONS[BM25Similarity().name] is bm25_weight
    assert SIMILARITY_FUNCTIONS[ScriptedSimilarity(variant="custom").name] is scripted_custom_weight


def test_idf_formulas():
    assert np.isclose(idf_bm25(1, 3), math.log(1 + 2.5 / 1.5))
    assert np.isclose(idf_smooth(3, 10), math.log(11 / 4) + 1)
    # every document holds the term: still non-negative
    assert idf_bm25(5, 5) > 0
    assert np.isclose(idf_smooth(5, 5), 1.0)


def test_bm25_weight_values():
    weight = bm25_weight(stats(term_freq=1, field_length=2, average_field_length=2.0), BM25Similarity())
    assert np.isclose(weight.norm, 1.0)
    assert np.isclose(weight.tf, 1.0)
    assert np.isclose(weight.value, math.log(1 + 2.5 / 1.5))

    weight = bm25_weight(stats(term_freq=2, field_length=4, average_field_length=2.0), BM25Similarity(k1=1.2, b=0.75))
    norm = 1 - 0.75 + 0.75 * 2.0
    assert np.isclose(weight.norm, norm)
    assert np.isclose(weight.tf, (2.2 * 2) / (1.2 * norm + 2))


def test_bm25_query_boost_scales_weight():
    base = bm25_weight(stats(), BM25Similarity())
    boosted = bm25_weight(stats(), BM25Similarity(), boost=2.5)
    assert np.isclose(boosted.value, 2.5 * base.value)
    assert boosted.idf == base.idf


def test_bm25_b_zero_disables_length_normalization():
    config = BM25Similarity(b=0.0)
    short = bm25_weight(stats(field_length=1), config)
    long = bm25_weight(stats(field_length=50), config)
    assert short.value == long.value


def test_bm25_higher_k1_keeps_rewarding_frequency():
    low, high = BM25Similarity(k1=0.5), BM25Similarity(k1=3.0)
    low_gain = bm25_weight(stats(term_freq=5), low).tf / bm25_weight(stats(term_freq=1), low).tf
    high_gain = bm25_weight(stats(term_freq=5), high).tf / bm25_weight(stats(term_freq=1), high).tf
    assert high_gain > low_gain


def test_bm25_discount_overlaps_ignores_synonym_tokens():
    # "apple" plus a stacked synonym: 2 tokens, 1 overlap
    with_overlap = stats(field_length=2, overlap_count=1)
    discounted = bm25_weight(with_overlap, BM25Similarity(discount_overlaps=True))
    counted = bm25_weight(with_overlap, BM25Similarity(discount_overlaps=False))
    plain = bm25_weight(stats(field_length=1), BM25Similarity(discount_overlaps=True))

    assert discounted.value == plain.value
    assert discounted.value > counted.value


def test_scripted_default_weight_values():
    weight = scripted_default_weight(
        stats(term_freq=4, field_length=16, doc_freq=3, document_count=10), ScriptedSimilarity()
    )
    idf = math.log(11 / 4) + 1
    assert np.isclose(weight.idf, idf)
    assert np.isclose(weight.tf, 2.0)
    assert np.isclose(weight.norm, 0.25)
    assert np.isclose(weight.value, idf * 0.5)


def test_scripted_custom_weight_values():
    weight = scripted_custom_weight(
        stats(term_freq=4, field_length=3, doc_freq=3, document_count=10),
        ScriptedSimilarity(variant="custom"),
    )
    idf = math.log(11 / 4) + 1
    assert weight.tf == 1.0
    assert np.isclose(weight.norm, 1 / math.log(4))
    assert np.isclose(weight.value, idf / math.log(4))


def test_scripted_custom_ignores_repeated_terms():
    config = ScriptedSimilarity(variant="custom")
    once = scripted_custom_weight(stats(term_freq=1, field_length=4), config)
    thrice = scripted_custom_weight(stats(term_freq=3, field_length=4), config)
    assert once == thrice


def test_custom_norm_penalizes_long_fields_less_than_default():
    short, long = stats(field_length=2), stats(field_length=32)
    default, custom = ScriptedSimilarity(), ScriptedSimilarity(variant="custom")
    default_ratio = compute_weight(long, default).norm / compute_weight(short, default).norm
    custom_ratio = compute_weight(long, custom).norm / compute_weight(short, custom).norm
    assert custom_ratio > default_ratio


@pytest.mark.parametrize("config", ALL_SIMILARITIES, ids=lambda c: f"{c.name}")
def test_shorter_occurrence_never_scores_lower(config):
    lengths = [1, 2, 3, 5, 8, 13, 40]
    weights = [compute_weight(stats(term_freq=1, field_length=n), config).value for n in lengths]
    assert all(a >= b for a, b in zip(weights, weights[1:]))


@pytest.mark.parametrize("config", ALL_SIMILARITIES, ids=lambda c: f"{c.name}")
def test_zero_field_length_is_floored(config):
    empty = compute_weight(stats(term_freq=1, field_length=0), config)
    single = compute_weight(stats(term_freq=1, field_length=1), config)
    assert math.isfinite(empty.value)
    assert empty == single


@pytest.mark.parametrize("config", ALL_SIMILARITIES, ids=lambda c: f"{c.name}")
@pytest.mark.parametrize(
    "term_stats",
    [
        stats(term_freq=0),
        stats(term_freq=0, field_length=0),
        stats(term_freq=0, doc_freq=0),
        stats(document_count=0, doc_freq=0),
    ],
)
def test_degenerate_statistics_give_zero_weight(config, term_stats):
    assert compute_weight(term_stats, config) == ZERO_WEIGHT


@pytest.mark.parametrize("config", ALL_SIMILARITIES, ids=lambda c: f"{c.name}")
def test_weights_are_deterministic(config):
    term_stats = stats(term_freq=3, field_length=7, doc_freq=2, document_count=9)
    first = compute_weight(term_stats, config, boost=1.3)
    assert all(compute_weight(term_stats, config, boost=1.3) == first for _ in range(20))


def test_bm25_without_collection_average_uses_unit_norm():
    weight = bm25_weight(stats(field_length=5, average_field_length=0.0), BM25Similarity())
    assert weight.norm == 1.0
