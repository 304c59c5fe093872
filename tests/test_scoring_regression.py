import numpy as np

from nested_scoring.documents import Document
from nested_scoring.scorer import NestedQuery, Scorer
from nested_scoring.statistics import InMemoryIndex


def test_nested_bm25_ordering_regression() -> None:
    """
    Regression check to guard nested BM25 behavior:
    - Occurrences with repeated query terms should score higher than those with fewer matches.
    - Alias siblings should neither add to nor subtract from the best occurrence.
    - Non-matching documents should not be returned.
    """
    documents = [
        Document.from_texts("0", "names", ["foo foo foo bar"]),  # heavy tf on foo
        Document.from_texts("1", "names", ["foo bar baz", "qux"]),  # single foo/bar plus an alias
        Document.from_texts("2", "names", ["baz qux"]),  # no query terms
    ]
    index = InMemoryIndex(documents)
    scorer = Scorer({"type": "BM25", "k1": 1.5, "b": 0.75}, index, path="names")

    result = scorer.search(NestedQuery("names", ("foo", "bar")), documents)

    assert result.document_ids == ["0", "1"]
    scores = np.array([hit.score for hit in result.hits])
    # Ensure score gaps are meaningful (avoid degenerate normalization).
    assert scores[0] > scores[1]
    assert scores[0] - scores[1] > 0.05

    alias_free = InMemoryIndex(documents[:1] + [Document.from_texts("1", "names", ["foo bar baz"])] + documents[2:])
    without_alias = Scorer({"type": "BM25", "k1": 1.5, "b": 0.75}, alias_free, path="names")
    rescored = without_alias.score(NestedQuery("names", ("foo", "bar")), alias_free.get("1"))
    # the alias only shifts the collection average; idf and tf are unchanged
    assert rescored.explanation.occurrences[0].terms[0].idf == result.hits[1].explanation.occurrences[0].terms[0].idf
