"""Structured explanation of how a document score was produced."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass(frozen=True)
class TermExplanation:
    term: str
    weight: float
    idf: float
    tf: float
    norm: float
    term_freq: int
    field_length: int
    doc_freq: int
    document_count: int
    boost: float = 1.0


@dataclass(frozen=True)
class OccurrenceExplanation:
    """
    One nested occurrence. Skipped occurrences carry a reason and no terms;
    non-matching ones have weight 0.0 and matched=False.
    """

    index: int
    weight: float
    matched: bool
    field_length: int | None = None
    skipped: bool = False
    reason: str | None = None
    terms: tuple[TermExplanation, ...] = ()


@dataclass(frozen=True)
class ScoreExplanation:
    score: float
    similarity: str
    score_mode: str
    matched: bool
    occurrences: tuple[OccurrenceExplanation, ...] = field(default_factory=tuple)
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """JSON-serializable form for presentation layers."""
        return asdict(self)

    @property
    def best_occurrence(self) -> OccurrenceExplanation | None:
        matched = [occurrence for occurrence in self.occurrences if occurrence.matched]
        if not matched:
            return None
        # first occurrence wins ties so explanations are stable
        return max(matched, key=lambda occurrence: (occurrence.weight, -occurrence.index))

    def describe(self) -> str:
        """Render an indented text tree, one line per node."""
        header = f"{self.score:.6g} = {self.score_mode} of nested occurrences, similarity [{self.similarity}]"
        if self.reason:
            header += f" ({self.reason})"
        lines = [header]
        for occurrence in self.occurrences:
            if occurrence.skipped:
                lines.append(f"  occurrence[{occurrence.index}] skipped: {occurrence.reason}")
                continue
            if not occurrence.matched:
                lines.append(f"  occurrence[{occurrence.index}] no match")
                continue
            lines.append(
                f"  {occurrence.weight:.6g} = occurrence[{occurrence.index}], fieldLength={occurrence.field_length}"
            )
            for term in occurrence.terms:
                if term.term_freq == 0:
                    continue
                lines.append(
                    f"    {term.weight:.6g} = weight({term.term}) "
                    f"boost={term.boost:g} idf={term.idf:.6g} tf={term.tf:.6g} norm={term.norm:.6g} "
                    f"[termFreq={term.term_freq}, docFreq={term.doc_freq}, docCount={term.document_count}]"
                )
        return "\n".join(lines)


__all__ = [
    "OccurrenceExplanation",
    "ScoreExplanation",
    "TermExplanation",
]
