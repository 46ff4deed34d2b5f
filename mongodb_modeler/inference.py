"""
Structural schema inference over a bounded sample of documents.

The inferencer keeps one accumulator per property path. Every observation
bumps the property's document count, records the value as a sample (bounded
and de-duplicated) and overwrites the type tag with the type of the value just
seen, so the reported type is the one of the last document holding the
property. Nested objects get their own accumulators; arrays are summarised by
their first element.
"""
from collections.abc import Mapping
from typing import Any, Dict, Iterable, List, Literal, Optional, Sequence

from pydantic import BaseModel, Field

from .bson_types import BsonType, NumericMode, bson_type_of, numeric_mode
from .codec import to_annotated
from .exceptions import SchemaError
from .logging_config import get_logger
from .utils import contains_sample, percentage

logger = get_logger(__name__)

DEFAULT_MAX_SAMPLES = 20
JSON_SCHEMA_URI = "http://json-schema.org/schema#"

FieldOrder = Literal["field", "alphabetical"]


class PropertySchema(BaseModel):
    type_tag: BsonType
    mode: Optional[NumericMode] = None
    doc_count: int
    doc_percentage: int
    samples: List[Any] = Field(default_factory=list)
    items: Optional["PropertySchema"] = None
    properties: Optional[Dict[str, "PropertySchema"]] = None

    def to_json_schema(self, field_order: FieldOrder = "field") -> Dict[str, Any]:
        schema: Dict[str, Any] = {"type": self.type_tag.value}
        if self.mode is not None:
            schema["mode"] = self.mode.value
        schema["#docs"] = self.doc_count
        schema["%docs"] = self.doc_percentage
        schema["samples"] = [to_annotated(sample) for sample in self.samples]
        if self.properties is not None:
            schema["properties"] = _properties_to_json_schema(self.properties, field_order)
        if self.items is not None:
            schema["items"] = self.items.to_json_schema(field_order)
        return schema


class StructuralSchema(BaseModel):
    total_docs: int = 0
    properties: Dict[str, PropertySchema] = Field(default_factory=dict)

    def to_json_schema(self, field_order: FieldOrder = "field") -> Dict[str, Any]:
        """Serialises the tree with the ``#docs``/``%docs`` vocabulary the modeling tool reads."""
        return {
            "#docs": self.total_docs,
            "$schema": JSON_SCHEMA_URI,
            "properties": _properties_to_json_schema(self.properties, field_order),
        }


def _properties_to_json_schema(properties: Dict[str, PropertySchema], field_order: FieldOrder) -> Dict[str, Any]:
    names = sorted(properties) if field_order == "alphabetical" else list(properties)
    return {name: properties[name].to_json_schema(field_order) for name in names}


class _PropertyAccumulator:
    def __init__(self, max_samples: int):
        self.max_samples = max_samples
        self.count = 0
        self.array_count = 0
        self.samples: List[Any] = []
        self.type_tag: Optional[BsonType] = None
        self.mode: Optional[NumericMode] = None
        self.children: Optional[_ObjectAccumulator] = None
        self.items: Optional[_PropertyAccumulator] = None

    def add(self, value: Any) -> None:
        self.count += 1
        if len(self.samples) < self.max_samples and not contains_sample(self.samples, value):
            self.samples.append(value)
        try:
            # Last value wins, the tag is not a majority vote
            self.type_tag = bson_type_of(value)
        except TypeError as e:
            raise SchemaError(str(e)) from e
        self.mode = numeric_mode(value)

        if self.type_tag is BsonType.OBJECT:
            if self.children is None:
                self.children = _ObjectAccumulator(self.max_samples)
            self.children.add(value)
        elif self.type_tag is BsonType.ARRAY:
            self.array_count += 1
            if len(value):
                if self.items is None:
                    self.items = _PropertyAccumulator(self.max_samples)
                self.items.add(value[0])

    def build(self, total: int) -> PropertySchema:
        schema = PropertySchema(
            type_tag=self.type_tag,
            mode=self.mode,
            doc_count=self.count,
            doc_percentage=percentage(self.count, total),
            samples=list(self.samples),
        )
        if self.type_tag is BsonType.OBJECT and self.children is not None:
            schema.properties = self.children.build()
        elif self.type_tag is BsonType.ARRAY and self.items is not None:
            schema.items = self.items.build(self.array_count)
        return schema


class _ObjectAccumulator:
    def __init__(self, max_samples: int):
        self.max_samples = max_samples
        self.total = 0
        self.properties: Dict[str, _PropertyAccumulator] = {}

    def add(self, document: Mapping) -> None:
        self.total += 1
        for key, value in document.items():
            accumulator = self.properties.get(key)
            if accumulator is None:
                accumulator = self.properties[key] = _PropertyAccumulator(self.max_samples)
            accumulator.add(value)

    def build(self) -> Dict[str, PropertySchema]:
        return {key: accumulator.build(self.total) for key, accumulator in self.properties.items()}


def infer(documents: Iterable[Mapping], max_samples: int = DEFAULT_MAX_SAMPLES) -> StructuralSchema:
    """
    Infers the structural schema of a sample of documents.

    Args:
        documents: Sample documents. They are read, never modified.
        max_samples: Maximum number of distinct sample values kept per property.

    Returns:
        StructuralSchema: ``total_docs`` equals the number of documents; each
        property carries its document count and ``round(count / total * 100)``.
    """
    accumulator = _ObjectAccumulator(max_samples)
    for document in documents:
        accumulator.add(document)
    logger.debug(f"Inferred {len(accumulator.properties)} properties from {accumulator.total} documents")
    return StructuralSchema(total_docs=accumulator.total, properties=accumulator.build())


def document_json_schema(document: Any) -> Optional[Dict[str, Any]]:
    """
    Builds the validation JSON schema of one document.

    Only types that plain JSON cannot express are kept; branches that end up
    empty are dropped. Returns None when nothing is left.
    """
    bson_type = bson_type_of(document)

    if bson_type is BsonType.ARRAY:
        if not len(document):
            return None
        items = document_json_schema(document[0])
        return {"items": items} if items else None
    if bson_type in (BsonType.REGEX, BsonType.OBJECT_ID, BsonType.MIN_KEY, BsonType.MAX_KEY,
                     BsonType.BINARY, BsonType.DATE):
        return {"type": bson_type.value}
    if bson_type in (BsonType.CODE, BsonType.CODE_WITH_SCOPE):
        return {"type": BsonType.CODE.value}
    if bson_type is BsonType.NUMERIC:
        mode = numeric_mode(document)
        if mode in (NumericMode.INT64, NumericMode.DECIMAL128):
            return {"type": BsonType.NUMERIC.value, "mode": mode.value}
        return None
    if bson_type is BsonType.OBJECT:
        properties = {}
        for key, value in document.items():
            schema = document_json_schema(value)
            if schema:
                properties[key] = schema
        return {"properties": properties} if properties else None
    return None


class DocumentKindSuggestion(BaseModel):
    document_list: List[str] = Field(default_factory=list, description="Properties present often enough to discriminate document kinds.")
    document_kind: str = Field("", description="Suggested discriminator property, empty if none.")
    other_doc_kinds: List[str] = Field(default_factory=list)


def _is_scalar(value: Any) -> bool:
    return isinstance(value, (str, int, float)) and bson_type_of(value) in (
        BsonType.STRING, BsonType.NUMERIC, BsonType.BOOLEAN)


def suggest_document_kind(
    schema: StructuralSchema,
    exclude: Sequence[str] = (),
    probability: int = 90,
) -> DocumentKindSuggestion:
    """
    Picks the property most likely to hold a document-kind discriminator.

    Candidates are scalar properties present in at least ``probability`` %docs;
    the one with the fewest distinct samples wins, and a tie never displaces a
    property named ``type``.
    """
    suggestion = DocumentKindSuggestion()
    best_probability = 0
    min_count = float("inf")

    for key, prop in schema.properties.items():
        if prop.samples and not _is_scalar(prop.samples[0]):
            continue
        if prop.doc_percentage >= probability and prop.samples:
            suggestion.document_list.append(key)
            if key in exclude:
                continue
            if prop.doc_percentage == best_probability and suggestion.document_kind == "type":
                continue
            if prop.doc_percentage >= best_probability and len(prop.samples) < min_count:
                min_count = len(prop.samples)
                best_probability = prop.doc_percentage
                suggestion.document_kind = key
        else:
            suggestion.other_doc_kinds.append(key)

    return suggestion
