"""Exceptions raised by the nested scoring core."""


class NestedScoringError(Exception):
    """Base class for every error raised by this package."""


class InvalidConfiguration(NestedScoringError, ValueError):
    """Similarity or mapping configuration rejected at setup time."""


class InvalidQuery(NestedScoringError, ValueError):
    """Query cannot be evaluated by the scorer it was handed to."""


class StatsUnavailable(NestedScoringError):
    """The index backing a statistics provider could not be reached.

    Never retried here; retry policy belongs to the index client.
    """


class DocumentNotFound(NestedScoringError, KeyError):
    """Unknown document id, or occurrence index outside the nested array."""

    def __init__(self, document_id: str, occurrence_index: int | None = None):
        self.document_id = document_id
        self.occurrence_index = occurrence_index
        if occurrence_index is None:
            message = f"document {document_id!r} not found"
        else:
            message = f"occurrence {occurrence_index} of document {document_id!r} not found"
        super().__init__(message)

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message
        return str(self.args[0])


class MalformedOccurrence(NestedScoringError):
    """A field occurrence is missing its token data."""

    def __init__(self, document_id: str, occurrence_index: int, path: str):
        self.document_id = document_id
        self.occurrence_index = occurrence_index
        self.path = path
        super().__init__(
            f"occurrence {occurrence_index} of {path!r} in document {document_id!r} has no token data"
        )


class ScoringCancelled(NestedScoringError):
    """Scoring of a document was aborted by a cancellation signal."""


__all__ = [
    "NestedScoringError",
    "InvalidConfiguration",
    "InvalidQuery",
    "StatsUnavailable",
    "DocumentNotFound",
    "MalformedOccurrence",
    "ScoringCancelled",
]
