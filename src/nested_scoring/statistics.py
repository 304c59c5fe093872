"""
Term statistics for nested fields.

The scorer consumes statistics through the TermStatisticsProvider protocol:
collection-wide numbers (document count, document frequency, average field
length) plus per-occurrence numbers (term frequency, field length). Document
frequency counts documents, never occurrences: a document holding a term in
five sibling occurrences contributes 1.

InMemoryIndex is the reference provider. It keeps documents in a dict and
derives statistics from an immutable snapshot:

    tf_matrix           (num_occurrences, vocab_size)  term frequencies
    incidence_matrix    (num_documents, num_occurrences)  ownership
    doc_freq            nonzeros per column of incidence @ presence(tf)

Any mutation drops the snapshot; the next read rebuilds it.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import numpy as np
from scipy import sparse

from nested_scoring.documents import Document
from nested_scoring.errors import DocumentNotFound, MalformedOccurrence, ScoringCancelled

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)


class CancelSignal(Protocol):
    """Anything exposing `is_set()`, e.g. threading.Event."""

    def is_set(self) -> bool: ...


@dataclass(frozen=True)
class CollectionStatistics:
    """Occurrence-independent statistics for a (path, term) pair."""

    document_count: int
    doc_freq: int
    average_field_length: float


@dataclass(frozen=True)
class TermStatistics:
    """
    Inputs a similarity function needs for one term in one field occurrence.

    Attributes:
        document_count: Documents in the collection.
        doc_freq: Documents containing the term at least once.
        term_freq: Occurrences of the term within this field occurrence.
        field_length: Token count of this field occurrence.
        overlap_count: Overlap tokens (position increment 0) in field_length.
        average_field_length: Mean token count over all occurrences of the path.
    """

    document_count: int
    doc_freq: int
    term_freq: int
    field_length: int
    overlap_count: int = 0
    average_field_length: float = 0.0


class TermStatisticsProvider(Protocol):
    """Read-only statistics capability of an index."""

    def collection_statistics(
        self, term: str, *, path: str, cancel: CancelSignal | None = None
    ) -> CollectionStatistics: ...

    def stats(
        self,
        term: str,
        document_id: str,
        occurrence_index: int,
        *,
        path: str,
        cancel: CancelSignal | None = None,
    ) -> TermStatistics: ...


def check_cancelled(cancel: CancelSignal | None) -> None:
    if cancel is not None and cancel.is_set():
        raise ScoringCancelled("scoring cancelled")


class _PathSnapshot:
    """Immutable statistics for one nested path."""

    def __init__(self, documents: list[Document], path: str):
        vocabulary: dict[str, int] = {}
        rows: list[int] = []
        cols: list[int] = []
        values: list[int] = []
        lengths: list[int] = []
        overlaps: list[int] = []
        owners: list[int] = []
        offsets: dict[str, tuple[int, int]] = {}

        occurrence_idx = 0
        for doc_idx, document in enumerate(documents):
            occurrences = document.occurrences(path)
            offsets[document.id] = (occurrence_idx, len(occurrences))
            for occurrence in occurrences:
                if not occurrence.is_malformed:
                    for term, count in occurrence.frequencies.items():
                        term_id = vocabulary.setdefault(term, len(vocabulary))
                        rows.append(occurrence_idx)
                        cols.append(term_id)
                        values.append(count)
                    lengths.append(occurrence.field_length)
                else:
                    # counted as an occurrence but contributes no length
                    lengths.append(-1)
                overlaps.append(occurrence.overlap_count)
                owners.append(doc_idx)
                occurrence_idx += 1

        num_occurrences = occurrence_idx
        self.vocabulary = vocabulary
        self.offsets = offsets
        self.overlap_counts: NDArray[np.int64] = np.array(overlaps, dtype=np.int64)
        self.document_count = len(documents)
        self.tf_matrix = sparse.csr_matrix(
            (np.array(values, dtype=np.int64), (np.array(rows, dtype=np.int64), np.array(cols, dtype=np.int64))),
            shape=(num_occurrences, len(vocabulary)),
        )
        self.incidence_matrix = sparse.csr_matrix(
            (
                np.ones(num_occurrences, dtype=np.int64),
                (np.array(owners, dtype=np.int64), np.arange(num_occurrences, dtype=np.int64)),
            ),
            shape=(len(documents), num_occurrences),
        )
        self.field_lengths: NDArray[np.int64] = np.array(lengths, dtype=np.int64)

        # documents x terms, nonzero where any owned occurrence has the term
        presence = self.tf_matrix.copy()
        presence.data = np.ones_like(presence.data)
        per_document = (self.incidence_matrix @ presence).tocsc()
        per_document.eliminate_zeros()
        self.doc_freq: NDArray[np.int64] = np.diff(per_document.indptr).astype(np.int64)

        valid = self.field_lengths[self.field_lengths >= 0]
        self.average_field_length = float(np.mean(valid)) if valid.size else 0.0

    def doc_freq_of(self, term: str) -> int:
        term_id = self.vocabulary.get(term)
        return 0 if term_id is None else int(self.doc_freq[term_id])


class InMemoryIndex:
    """
    Reference TermStatisticsProvider backed by a dict of documents.

    Usage:
        index = InMemoryIndex()
        index.add_all(documents)
        index.stats("apple", "1", 0, path="test")
    """

    def __init__(self, documents: Iterable[Document] = ()):
        self._documents: dict[str, Document] = {}
        self._snapshots: dict[str, _PathSnapshot] = {}
        self._lock = threading.Lock()
        self.add_all(documents)

    def __len__(self) -> int:
        return len(self._documents)

    def __contains__(self, document_id: object) -> bool:
        return document_id in self._documents

    def __iter__(self) -> Iterator[Document]:
        return iter(list(self._documents.values()))

    def add(self, document: Document) -> None:
        """Index a document, replacing any previous version with the same id."""
        with self._lock:
            self._documents[document.id] = document
            self._snapshots.clear()

    def add_all(self, documents: Iterable[Document]) -> None:
        for document in documents:
            self.add(document)

    def remove(self, document_id: str) -> None:
        with self._lock:
            if document_id not in self._documents:
                raise DocumentNotFound(document_id)
            del self._documents[document_id]
            self._snapshots.clear()

    def get(self, document_id: str) -> Document:
        try:
            return self._documents[document_id]
        except KeyError:
            raise DocumentNotFound(document_id) from None

    def _snapshot(self, path: str) -> _PathSnapshot:
        with self._lock:
            snapshot = self._snapshots.get(path)
            if snapshot is None:
                snapshot = _PathSnapshot(list(self._documents.values()), path)
                self._snapshots[path] = snapshot
                logger.debug(
                    "Built statistics snapshot for %r: %d documents, %d terms",
                    path,
                    snapshot.document_count,
                    len(snapshot.vocabulary),
                )
            return snapshot

    def doc_freq(self, term: str, *, path: str) -> int:
        return self._snapshot(path).doc_freq_of(term)

    def collection_statistics(
        self, term: str, *, path: str, cancel: CancelSignal | None = None
    ) -> CollectionStatistics:
        check_cancelled(cancel)
        snapshot = self._snapshot(path)
        return CollectionStatistics(
            document_count=snapshot.document_count,
            doc_freq=snapshot.doc_freq_of(term),
            average_field_length=snapshot.average_field_length,
        )

    def stats(
        self,
        term: str,
        document_id: str,
        occurrence_index: int,
        *,
        path: str,
        cancel: CancelSignal | None = None,
    ) -> TermStatistics:
        """
        Statistics for `term` in one occurrence of a document's nested field.

        Raises:
            DocumentNotFound: unknown document or occurrence index.
            MalformedOccurrence: the occurrence carries no token data.
            ScoringCancelled: `cancel` is already set.
        """
        check_cancelled(cancel)
        snapshot = self._snapshot(path)
        if document_id not in snapshot.offsets:
            raise DocumentNotFound(document_id)
        offset, count = snapshot.offsets[document_id]
        if not 0 <= occurrence_index < count:
            raise DocumentNotFound(document_id, occurrence_index)

        row = offset + occurrence_index
        field_length = int(snapshot.field_lengths[row])
        if field_length < 0:
            raise MalformedOccurrence(document_id, occurrence_index, path)

        term_id = snapshot.vocabulary.get(term)
        term_freq = 0 if term_id is None else int(snapshot.tf_matrix[row, term_id])
        return TermStatistics(
            document_count=snapshot.document_count,
            doc_freq=snapshot.doc_freq_of(term),
            term_freq=term_freq,
            field_length=field_length,
            overlap_count=int(snapshot.overlap_counts[row]),
            average_field_length=snapshot.average_field_length,
        )


__all__ = [
    "CancelSignal",
    "CollectionStatistics",
    "InMemoryIndex",
    "TermStatistics",
    "TermStatisticsProvider",
    "check_cancelled",
]
