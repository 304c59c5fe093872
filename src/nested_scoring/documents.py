"""
Document model for nested multi-value fields.

A Document owns, per nested path, an ordered array of FieldOccurrences. Each
occurrence is an independent sub-document with its own token sequence and
therefore its own field length. Alias values for one entity live in sibling
occurrences, never in a shared token stream.

Usage:
    from nested_scoring.documents import Document, FieldOccurrence

    doc = Document.from_texts("2", "test", ["apple", "banana", "coconut"])
    doc.occurrences("test")[0].term_frequency("apple")  # 1
"""

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from functools import cached_property

_TOKEN_PATTERN = re.compile(r"\w+")


def tokenize(text: str) -> list[str]:
    """Tokenizes the input text into a list of lowercase terms."""
    return _TOKEN_PATTERN.findall(text.lower())


@dataclass(frozen=True)
class Token:
    """
    An analyzed token.

    Attributes:
        term: The analyzed term, compared by exact value.
        position_increment: 0 marks an overlap token stacked on the previous
            position (e.g. a synonym expansion).
    """

    term: str
    position_increment: int = 1

    @property
    def is_overlap(self) -> bool:
        return self.position_increment == 0


@dataclass(frozen=True)
class FieldOccurrence:
    """
    One element of a nested array.

    `tokens=None` models an occurrence whose source lacked the field, so no
    length or frequency data exists for it.
    """

    tokens: tuple[Token, ...] | None

    @classmethod
    def from_terms(
        cls,
        terms: Iterable[str],
        synonyms: Mapping[str, Iterable[str]] | None = None,
    ) -> FieldOccurrence:
        """Build an occurrence from pre-analyzed terms, stacking synonyms as overlap tokens."""
        tokens: list[Token] = []
        for term in terms:
            tokens.append(Token(term))
            if synonyms:
                tokens.extend(Token(alias, 0) for alias in synonyms.get(term, ()))
        return cls(tuple(tokens))

    @classmethod
    def from_text(cls, text: str) -> FieldOccurrence:
        return cls.from_terms(tokenize(text))

    @classmethod
    def malformed(cls) -> FieldOccurrence:
        return cls(None)

    @property
    def is_malformed(self) -> bool:
        return self.tokens is None

    @cached_property
    def frequencies(self) -> Counter[str]:
        return Counter(token.term for token in self.tokens or ())

    @property
    def field_length(self) -> int:
        """Token count, overlap tokens included."""
        return len(self.tokens or ())

    @property
    def overlap_count(self) -> int:
        return sum(1 for token in self.tokens or () if token.is_overlap)

    @property
    def terms(self) -> list[str]:
        return [token.term for token in self.tokens or ()]

    def term_frequency(self, term: str) -> int:
        return self.frequencies.get(term, 0)

    def __contains__(self, term: object) -> bool:
        return term in self.frequencies


@dataclass(frozen=True)
class Document:
    """
    A document identifier plus its nested multi-value fields.

    Args:
        id: Document identifier, unique within an index.
        nested: Mapping of nested path to its ordered occurrences.
    """

    id: str
    nested: Mapping[str, tuple[FieldOccurrence, ...]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # freeze the occurrence arrays so they cannot be shared or mutated
        object.__setattr__(
            self,
            "nested",
            {path: tuple(occurrences) for path, occurrences in self.nested.items()},
        )

    @classmethod
    def from_texts(cls, id: str, path: str, texts: Iterable[str]) -> Document:
        return cls(id, {path: tuple(FieldOccurrence.from_text(text) for text in texts)})

    def occurrences(self, path: str) -> tuple[FieldOccurrence, ...]:
        """Occurrences under `path`; empty when the document lacks the field."""
        return self.nested.get(path, ())

    def iter_occurrences(self, path: str) -> Iterator[tuple[int, FieldOccurrence]]:
        return enumerate(self.occurrences(path))


__all__ = [
    "Document",
    "FieldOccurrence",
    "Token",
    "tokenize",
]
