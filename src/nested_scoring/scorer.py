"""
Scorer entry point.

For each occurrence of a document's nested field the scorer fetches term
statistics, weighs every query term with the configured similarity, sums the
term weights within the occurrence, and reduces across occurrences with the
configured aggregator (MAX by default). Occurrences that do not contain any
query term take no part in the reduction; a document with no matching
occurrence is excluded from search results rather than scored 0.

Usage:
    from nested_scoring.scorer import NestedQuery, Scorer

    scorer = Scorer({"type": "BM25", "k1": 1.0, "b": 0.75}, index, path="test")
    result = scorer.search(NestedQuery.match("test", "apple"), documents)
    for hit in result.hits:
        print(hit.document_id, hit.score)
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Mapping, Sequence
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any

from nested_scoring.aggregation import Aggregator, ScoreMode, resolve_aggregator
from nested_scoring.config import BM25Similarity, IndexSettings, ScriptedSimilarity, parse_similarity
from nested_scoring.documents import Document, tokenize
from nested_scoring.errors import (
    InvalidConfiguration,
    InvalidQuery,
    MalformedOccurrence,
    NestedScoringError,
    ScoringCancelled,
    StatsUnavailable,
)
from nested_scoring.explain import OccurrenceExplanation, ScoreExplanation, TermExplanation
from nested_scoring.similarity import similarity_function
from nested_scoring.statistics import CancelSignal, TermStatisticsProvider, check_cancelled

logger = logging.getLogger(__name__)

# Default number of workers for parallel document scoring
DEFAULT_NUM_WORKERS = 8

# Minimum documents before enabling parallelism
MIN_DOCUMENTS_FOR_PARALLEL = 10


@dataclass(frozen=True)
class NestedQuery:
    """
    Pre-analyzed terms matched against the text field of a nested path.

    Multiple terms form a disjunction: an occurrence matches when it holds any
    of them, and its weight is the sum of the term weights.
    """

    path: str
    terms: tuple[str, ...]
    boost: float = 1.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "terms", tuple(self.terms))
        if not self.terms:
            raise InvalidQuery("query has no terms")
        if self.boost < 0:
            raise InvalidQuery(f"query boost must be non-negative, got {self.boost}")

    @classmethod
    def match(cls, path: str, text: str, boost: float = 1.0) -> NestedQuery:
        return cls(path, tuple(tokenize(text)), boost)


@dataclass(frozen=True)
class ScoredDocument:
    document_id: str
    score: float
    matched: bool
    explanation: ScoreExplanation


@dataclass(frozen=True)
class DocumentError:
    document_id: str
    error: NestedScoringError


@dataclass
class SearchResult:
    """Ordered hits plus the documents that failed to score."""

    hits: list[ScoredDocument] = field(default_factory=list)
    errors: list[DocumentError] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.hits)

    @property
    def document_ids(self) -> list[str]:
        return [hit.document_id for hit in self.hits]


class CancelScope:
    """
    Cancellation signal for one batch, also set when the caller's signal is.

    Lets a batch timeout cancel outstanding documents without touching the
    caller's own event.
    """

    def __init__(self, parent: CancelSignal | None = None):
        self._parent = parent
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set() or (self._parent is not None and self._parent.is_set())


def _default_tiebreak(document_id: str) -> Any:
    return document_id


def rank_documents(
    scored: Iterable[ScoredDocument],
    tiebreak: Callable[[str], Any] | None = None,
) -> list[ScoredDocument]:
    """Sort by score descending, ties by `tiebreak(document_id)` ascending."""
    key = tiebreak or _default_tiebreak
    return sorted(scored, key=lambda hit: (-hit.score, key(hit.document_id)))


class Scorer:
    """
    Scores documents of one nested path under one immutable similarity.

    Args:
        similarity: Similarity config model or mapping (validated here).
        provider: Term statistics source.
        path: Nested path this scorer serves.
        score_mode: ScoreMode, its string value, or a custom reduction.

    Raises:
        InvalidConfiguration: invalid similarity or unknown score mode.
    """

    def __init__(
        self,
        similarity: BM25Similarity | ScriptedSimilarity | Mapping[str, Any],
        provider: TermStatisticsProvider,
        *,
        path: str,
        score_mode: ScoreMode | str | Aggregator = ScoreMode.MAX,
    ):
        self.similarity = parse_similarity(similarity)
        self.provider = provider
        self.path = path
        try:
            self.score_mode, self._aggregate = resolve_aggregator(score_mode)
        except ValueError as e:
            raise InvalidConfiguration(f"unknown score mode {score_mode!r}") from e
        self._weigh = similarity_function(self.similarity)

    @classmethod
    def from_settings(
        cls,
        settings: IndexSettings,
        provider: TermStatisticsProvider,
        path: str,
        *,
        score_mode: ScoreMode | str | Aggregator = ScoreMode.MAX,
    ) -> Scorer:
        return cls(settings.similarity_for(path), provider, path=path, score_mode=score_mode)

    def _empty(self, document_id: str, reason: str | None = None, occurrences=()) -> ScoredDocument:
        explanation = ScoreExplanation(
            score=0.0,
            similarity=self.similarity.name,
            score_mode=self.score_mode,
            matched=False,
            occurrences=tuple(occurrences),
            reason=reason,
        )
        return ScoredDocument(document_id, 0.0, False, explanation)

    def score(
        self,
        query: NestedQuery,
        document: Document,
        *,
        cancel: CancelSignal | None = None,
    ) -> ScoredDocument:
        """
        Score one document.

        Raises:
            InvalidQuery: query targets a different nested path.
            StatsUnavailable: the provider cannot reach its index.
            DocumentNotFound: the document is not in the provider's index.
            ScoringCancelled: `cancel` was set before scoring finished.
        """
        if query.path != self.path:
            raise InvalidQuery(f"scorer for {self.path!r} cannot evaluate a query on {query.path!r}")
        check_cancelled(cancel)

        collection = self.provider.collection_statistics(query.terms[0], path=self.path, cancel=cancel)
        if collection.document_count <= 0:
            return self._empty(document.id, reason="empty collection")

        weights: list[float] = []
        occurrences: list[OccurrenceExplanation] = []
        for index, _ in document.iter_occurrences(self.path):
            check_cancelled(cancel)
            try:
                term_stats = [
                    (term, self.provider.stats(term, document.id, index, path=self.path, cancel=cancel))
                    for term in query.terms
                ]
            except MalformedOccurrence as e:
                logger.warning("Skipping malformed occurrence: %s", e)
                occurrences.append(
                    OccurrenceExplanation(index=index, weight=0.0, matched=False, skipped=True, reason=str(e))
                )
                continue

            occurrence_weight = 0.0
            matched = False
            terms: list[TermExplanation] = []
            for term, stats in term_stats:
                weight = self._weigh(stats, self.similarity, query.boost)
                if stats.term_freq > 0:
                    matched = True
                    occurrence_weight += weight.value
                terms.append(
                    TermExplanation(
                        term=term,
                        weight=weight.value,
                        idf=weight.idf,
                        tf=weight.tf,
                        norm=weight.norm,
                        term_freq=stats.term_freq,
                        field_length=stats.field_length,
                        doc_freq=stats.doc_freq,
                        document_count=stats.document_count,
                        boost=query.boost,
                    )
                )
            if matched:
                weights.append(occurrence_weight)
            occurrences.append(
                OccurrenceExplanation(
                    index=index,
                    weight=occurrence_weight,
                    matched=matched,
                    field_length=term_stats[0][1].field_length,
                    terms=tuple(terms),
                )
            )

        if not weights:
            return self._empty(document.id, occurrences=occurrences)

        score = self._aggregate(weights)
        logger.debug("Scored document %r: %.6g from %d matching occurrences", document.id, score, len(weights))
        explanation = ScoreExplanation(
            score=score,
            similarity=self.similarity.name,
            score_mode=self.score_mode,
            matched=True,
            occurrences=tuple(occurrences),
        )
        return ScoredDocument(document.id, score, True, explanation)

    def _score_or_error(
        self, query: NestedQuery, document: Document, cancel: CancelSignal
    ) -> ScoredDocument | DocumentError:
        try:
            return self.score(query, document, cancel=cancel)
        except InvalidQuery:
            raise
        except NestedScoringError as e:
            logger.warning("Failed to score document %r: %s", document.id, e)
            return DocumentError(document.id, e)
        except Exception as e:
            # provider raised outside the error taxonomy; the index is treated as unreachable
            logger.warning("Provider failed for document %r: %r", document.id, e)
            error = StatsUnavailable(f"{type(e).__name__}: {e}")
            error.__cause__ = e
            return DocumentError(document.id, error)

    def search(
        self,
        query: NestedQuery,
        documents: Iterable[Document],
        *,
        tiebreak: Callable[[str], Any] | None = None,
        cancel: CancelSignal | None = None,
        timeout: float | None = None,
        top_k: int | None = None,
        num_workers: int = DEFAULT_NUM_WORKERS,
        min_documents_for_parallel: int = MIN_DOCUMENTS_FOR_PARALLEL,
    ) -> SearchResult:
        """
        Score a batch of documents and order the matches.

        A failure scoring one document is reported in `errors` and never
        discards the rest of the batch. Documents still running when
        `timeout` seconds elapse are cancelled and reported as
        ScoringCancelled errors; the call returns at the deadline even if a
        provider call ignores cancellation and keeps running in the background.
        Exceptions from the provider outside this package's error types are
        reported as StatsUnavailable, chained to the original.

        Providers do not receive `cancel` itself but a CancelScope wrapping it:
        the scope is set whenever `cancel` is, and also when the batch times
        out, so the caller's own signal is never set by this method.

        Args:
            query: The nested query.
            documents: Documents to score.
            tiebreak: Key on document id for equal scores (default: the id).
            cancel: Caller's cancellation signal, observed through the scope.
            timeout: Batch deadline in seconds.
            top_k: Number of hits to keep (None for all).
            num_workers: Thread pool size for large batches.
            min_documents_for_parallel: Batches smaller than this run sequentially.
        """
        if query.path != self.path:
            raise InvalidQuery(f"scorer for {self.path!r} cannot evaluate a query on {query.path!r}")
        documents = list(documents)
        scope = CancelScope(cancel)

        if timeout is None and len(documents) < min_documents_for_parallel:
            outcomes = [self._score_or_error(query, document, scope) for document in documents]
        else:
            outcomes = self._search_parallel(query, documents, scope, timeout, num_workers)

        result = SearchResult()
        scored: list[ScoredDocument] = []
        for outcome in outcomes:
            if isinstance(outcome, DocumentError):
                result.errors.append(outcome)
            elif outcome.matched:
                scored.append(outcome)

        result.hits = rank_documents(scored, tiebreak)
        if top_k is not None:
            result.hits = result.hits[:top_k]
        return result

    def _search_parallel(
        self,
        query: NestedQuery,
        documents: Sequence[Document],
        scope: CancelScope,
        timeout: float | None,
        num_workers: int,
    ) -> list[ScoredDocument | DocumentError]:
        executor = ThreadPoolExecutor(max_workers=max(1, num_workers))
        try:
            futures: list[Future] = [
                executor.submit(self._score_or_error, query, document, scope) for document in documents
            ]
            _, not_done = wait(futures, timeout=timeout)
            if not_done:
                logger.warning("Timed out after %ss with %d documents outstanding", timeout, len(not_done))
                scope.cancel()
        finally:
            # never wait on provider calls that ignore the cancel signal
            executor.shutdown(wait=False, cancel_futures=True)

        outcomes: list[ScoredDocument | DocumentError] = []
        for document, future in zip(documents, futures):
            if future in not_done:
                outcomes.append(DocumentError(document.id, ScoringCancelled(f"timed out after {timeout}s")))
            else:
                outcomes.append(future.result())
        return outcomes


__all__ = [
    "CancelScope",
    "DEFAULT_NUM_WORKERS",
    "DocumentError",
    "MIN_DOCUMENTS_FOR_PARALLEL",
    "NestedQuery",
    "ScoredDocument",
    "Scorer",
    "SearchResult",
    "rank_documents",
]
