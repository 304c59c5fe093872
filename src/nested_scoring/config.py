"""
Similarity and mapping configuration.

Configuration is validated once, at index-creation time, and is immutable
afterwards. Every model is a frozen pydantic model; validation failures are
re-raised as InvalidConfiguration so callers handle one exception type.

Recognized similarity shapes:
    {"type": "BM25", "discount_overlaps": true, "k1": 1.0, "b": 0.75}
    {"type": "scripted", "variant": "default" | "custom"}
    {"type": "scripted", "weight_script": {"source": ...}, "script": {"source": ...}}
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, model_validator

from nested_scoring.errors import InvalidConfiguration


class ScriptVariant(str, Enum):
    DEFAULT = "default"
    CUSTOM = "custom"


class BM25Similarity(BaseModel):
    """
    BM25 parameters.

    k1 controls term-frequency saturation; b controls how strongly longer
    fields are penalized (b=0 disables length normalization).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["BM25"] = "BM25"
    k1: float = Field(default=1.0, ge=0.0)
    b: float = Field(default=0.75, ge=0.0, le=1.0)
    discount_overlaps: bool = True

    @property
    def name(self) -> str:
        return "BM25"


def _normalize_script(source: str) -> str:
    return "".join(source.split())


def _script_source(script: Any) -> str:
    if not isinstance(script, Mapping) or not isinstance(script.get("source"), str):
        raise ValueError("script must be an object with a string source")
    return _normalize_script(script["source"])


# painless sources the engine-style schema uses for the scripted variants
WEIGHT_SCRIPT = "double idf = Math.log((field.docCount+1.0)/(term.docFreq+1.0)) + 1.0; return query.boost * idf;"
SCRIPTS: dict[ScriptVariant, str] = {
    ScriptVariant.DEFAULT: (
        "double tf = Math.sqrt(doc.freq); double norm = 1/Math.sqrt(doc.length); return weight * tf * norm;"
    ),
    ScriptVariant.CUSTOM: (
        "double tf = doc.freq>0?1:0; double norm = 1/Math.log1p(doc.length); return weight * tf * norm;"
    ),
}


class ScriptedSimilarity(BaseModel):
    """
    TF-IDF style similarity with a default or custom length normalization.

    Also accepts the engine schema shape `{"type": "scripted", "weight_script":
    {"source": ...}, "script": {"source": ...}}` when the sources are the
    known scripts (whitespace-insensitive); any other script is rejected.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["scripted"] = "scripted"
    variant: ScriptVariant = ScriptVariant.DEFAULT
    discount_overlaps: bool = True

    @model_validator(mode="before")
    @classmethod
    def _variant_from_scripts(cls, data: Any) -> Any:
        if not isinstance(data, Mapping) or ("script" not in data and "weight_script" not in data):
            return data
        data = dict(data)
        weight_script = data.pop("weight_script", None)
        script = data.pop("script", None)
        if weight_script is not None and _script_source(weight_script) != _normalize_script(WEIGHT_SCRIPT):
            raise ValueError("unsupported weight_script source")
        if script is None:
            raise ValueError("weight_script requires a script")
        source = _script_source(script)
        for variant, known in SCRIPTS.items():
            if source == _normalize_script(known):
                if "variant" in data and ScriptVariant(data["variant"]) is not variant:
                    raise ValueError("variant does not match script source")
                data["variant"] = variant
                return data
        raise ValueError("unsupported script source")

    @property
    def name(self) -> str:
        return f"scripted:{self.variant.value}"


SimilarityConfig = Annotated[Union[BM25Similarity, ScriptedSimilarity], Field(discriminator="type")]

_similarity_adapter: TypeAdapter[BM25Similarity | ScriptedSimilarity] = TypeAdapter(SimilarityConfig)


def _format_errors(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "<root>"
        parts.append(f"{location}: {item['msg']}")
    return "; ".join(parts)


def parse_similarity(config: Mapping[str, Any] | BM25Similarity | ScriptedSimilarity) -> BM25Similarity | ScriptedSimilarity:
    """
    Validate a similarity configuration.

    Raises:
        InvalidConfiguration: unknown type or out-of-range parameter.
    """
    if isinstance(config, (BM25Similarity, ScriptedSimilarity)):
        return config
    try:
        return _similarity_adapter.validate_python(dict(config))
    except ValidationError as e:
        raise InvalidConfiguration(f"invalid similarity configuration: {_format_errors(e)}") from e
    except (TypeError, ValueError) as e:
        raise InvalidConfiguration(f"invalid similarity configuration: {e}") from e


class NestedFieldMapping(BaseModel):
    """
    A nested path holding one analyzed text field per occurrence.

    Only the similarity name matters to the scorer; the analyzer is recorded
    for completeness since tokens arrive pre-analyzed.
    """

    model_config = ConfigDict(frozen=True)

    path: str
    field: str = "token"
    analyzer: str = "standard"
    similarity: str = "default"


class IndexSettings(BaseModel):
    """Similarities by name plus the nested field mappings that reference them."""

    model_config = ConfigDict(frozen=True)

    similarities: dict[str, SimilarityConfig] = Field(default_factory=dict)
    mappings: dict[str, NestedFieldMapping] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_references(self) -> IndexSettings:
        for path, mapping in self.mappings.items():
            if mapping.similarity != "default" and mapping.similarity not in self.similarities:
                raise ValueError(f"mapping {path!r} references undefined similarity {mapping.similarity!r}")
        return self

    @classmethod
    def from_schema(cls, schema: Mapping[str, Any]) -> IndexSettings:
        """
        Build settings from an engine-style index schema.

        Expected shape:
            {"settings": {"index": {"similarity": {name: config}}},
             "mappings": {"properties": {path: {"type": "nested",
                 "properties": {field: {"type": "text", "similarity": name}}}}}}

        Raises:
            InvalidConfiguration: non-nested paths, paths with other than one
                text field, or any invalid similarity.
        """
        index = schema.get("settings", {}).get("index", {})
        similarities = {name: parse_similarity(config) for name, config in index.get("similarity", {}).items()}

        mappings: dict[str, NestedFieldMapping] = {}
        for path, prop in schema.get("mappings", {}).get("properties", {}).items():
            if prop.get("type") != "nested":
                raise InvalidConfiguration(f"property {path!r} is not a nested field")
            fields = prop.get("properties", {})
            if len(fields) != 1:
                raise InvalidConfiguration(f"nested field {path!r} must declare exactly one text field")
            (field_name, field_def), = fields.items()
            if field_def.get("type", "text") != "text":
                raise InvalidConfiguration(f"field {path}.{field_name} must be of type text")
            mappings[path] = NestedFieldMapping(
                path=path,
                field=field_name,
                analyzer=field_def.get("analyzer", "standard"),
                similarity=field_def.get("similarity", "default"),
            )

        try:
            return cls(similarities=similarities, mappings=mappings)
        except ValidationError as e:
            raise InvalidConfiguration(f"invalid index settings: {_format_errors(e)}") from e

    def similarity_for(self, path: str) -> BM25Similarity | ScriptedSimilarity:
        """
        Resolve the similarity configured for a nested path.

        The name "default", unless explicitly defined, resolves to BM25 with
        default parameters, the engine's built-in similarity.

        Raises:
            InvalidConfiguration: the path has no nested mapping.
        """
        mapping = self.mappings.get(path)
        if mapping is None:
            raise InvalidConfiguration(f"no nested mapping for path {path!r}")
        if mapping.similarity == "default" and "default" not in self.similarities:
            return BM25Similarity()
        return self.similarities[mapping.similarity]


__all__ = [
    "BM25Similarity",
    "IndexSettings",
    "NestedFieldMapping",
    "ScriptVariant",
    "ScriptedSimilarity",
    "SimilarityConfig",
    "parse_similarity",
]
