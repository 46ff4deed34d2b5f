import base64
import datetime
from collections.abc import Mapping
from typing import Any, Dict, Iterable, List, Optional

from bson import Binary, Code, DBRef, Decimal128, Int64, MaxKey, MinKey, ObjectId

from .bson_types import INT32_LIMIT, REGEX_TYPES, BsonType, bson_type_of, is_array
from .codec import format_date, regex_flags
from .models import SamplingConfig
from .utils import is_system_collection, round_half_up

BATCH_SIZE = 1000


def sample_size(total_count: int, config: SamplingConfig) -> int:
    """
    Number of documents to sample from a collection of ``total_count`` documents.

    Absolute mode asks for a fixed count but never more than the collection
    holds; relative mode takes a rounded percentage. Either way the result is
    capped at ``config.max_cap``.
    """
    total_count = max(total_count, 0)
    if config.mode == "absolute":
        size = min(total_count, config.absolute_count)
    else:
        size = round_half_up(total_count / 100 * config.relative_percent)
    return max(0, min(size, config.max_cap))


def batch_limits(size: int, batch: int = BATCH_SIZE) -> List[int]:
    """Splits a sample into fetch batches of at most ``batch`` documents."""
    if size <= 0:
        return []
    limits = [batch] * (size // batch)
    if size % batch:
        limits.append(size % batch)
    return limits


def _prune_references(value: Any) -> Optional[Any]:
    bson_type = bson_type_of(value)
    if bson_type is BsonType.OBJECT_ID:
        return value
    if bson_type is BsonType.OBJECT:
        pruned = {}
        for key, item in value.items():
            kept = _prune_references(item)
            if kept is not None:
                pruned[key] = kept
        return pruned or None
    if bson_type is BsonType.ARRAY:
        pruned_items = [kept for kept in map(_prune_references, value) if kept is not None]
        return pruned_items or None
    # DBRef and every other leaf is not a relationship candidate
    return None


def extract_foreign_key_candidates(documents: Iterable[Mapping]) -> List[Dict[str, Any]]:
    """
    Keeps only the sub-paths of each document that end in an ObjectId.

    Other leaves are dropped, and so is any branch left empty by the pruning.
    DBRefs are dropped too: cross-collection references are not modelled as
    relationships. Documents with no candidate produce an empty mapping.
    """
    candidates = []
    for document in documents:
        candidates.append(_prune_references(document) or {})
    return candidates


def filter_documents(documents: Iterable[Mapping]) -> List[Dict[str, Any]]:
    """Copies of the documents without top-level fields starting with an underscore."""
    return [
        {key: value for key, value in document.items() if not (key and key[0] == "_")}
        for document in documents
    ]


def filter_system_collections(names: Iterable[str]) -> List[str]:
    return [name for name in names if not is_system_collection(name)]


def adjust_value(value: Any) -> Any:
    """Replaces one value the model cannot show as-is with its display form, recursing into containers."""
    if isinstance(value, REGEX_TYPES):
        return f"/{value.pattern}/{regex_flags(value.flags)}"
    if isinstance(value, datetime.datetime):
        return format_date(value)
    if isinstance(value, ObjectId):
        return f'ObjectId("{value}")'
    if isinstance(value, (MinKey, MaxKey)):
        return ""
    if isinstance(value, Code):
        return str(value)
    if isinstance(value, Decimal128):
        return 1.0
    if isinstance(value, Int64):
        return 1
    if isinstance(value, (Binary, bytes)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, DBRef):
        return adjust_value(dict(value.as_doc()))
    if bson_type_of(value) is BsonType.NUMERIC and not isinstance(value, bool) and abs(value) > INT32_LIMIT:
        return abs(value) % INT32_LIMIT
    if isinstance(value, Mapping):
        return {key: adjust_value(item) for key, item in value.items()}
    if is_array(value):
        return [adjust_value(item) for item in value]
    return value


def adjust_documents(documents: Iterable[Mapping]) -> List[Any]:
    return [adjust_value(document) for document in documents]


def sampling_info(config: SamplingConfig, field_order: str = "field") -> Dict[str, str]:
    """Human-readable summary of the sampling parameters, for the log."""
    if config.mode == "relative":
        record_sampling = f"relative {config.relative_percent:g}%"
    else:
        record_sampling = f"absolute {config.absolute_count} records max"
    return {
        "recordSampling": record_sampling,
        "fieldInference": "keep field order" if field_order == "field" else "alphabetical order",
    }
