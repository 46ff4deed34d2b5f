"""
Translation between server index descriptions and the model's index section.

Reverse: ``from_native`` turns ``list_indexes`` output into IndexDescriptors
and ``split_native_indexes`` sorts them into unique keys, the TTL index and
secondary indexes. Forward: ``to_statements`` renders ``createIndex`` calls.
"""
import json
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from pydantic import BaseModel, Field

from .logging_config import get_logger
from .models import INDEX_KEY_DIRECTIONS, IndexDescriptor, IndexKey, UniqueKey

logger = get_logger(__name__)

PRIMARY_KEY_INDEX = "_id_"
DOCUMENTDB_DEFAULT_INDEX_KEY = "DocumentDBDefaultIndex"
WILDCARD_SUFFIX = ".$**"
TTL_FIELD = "_ts"
TTL_INDEX_NAME = "ttl"
TTL_NO_DEFAULT = "On (no default)"


def _key_type(direction: Any) -> str:
    if direction == -1:
        return "descending"
    if direction == "2dsphere":
        return "2dsphere"
    return "ascending"


def _key_name(name: str) -> str:
    if name.endswith(WILDCARD_SUFFIX):
        return name[:-len(WILDCARD_SUFFIX)]
    return name


def _index_type(key: Mapping[str, Any]) -> str:
    if len(key) > 1:
        return "Compound"
    if any(name.endswith("$**") for name in key):
        return "Wildcard"
    return "Single Field"


def descriptor_from_native(native: Mapping[str, Any]) -> IndexDescriptor:
    key = native.get("key") or {}
    return IndexDescriptor(
        name=native.get("name"),
        keys=[IndexKey(name=_key_name(name), type=_key_type(direction)) for name, direction in key.items()],
        unique=bool(native.get("unique", False)),
        sparse=bool(native.get("sparse", False)),
        background=bool(native.get("background", False)),
        expire_after_seconds=native.get("expireAfterSeconds"),
        geo_version=native.get("2dsphereIndexVersion"),
        index_type=_index_type(key),
    )


def from_native(native_indexes: Iterable[Mapping[str, Any]]) -> List[IndexDescriptor]:
    """Translates the server's index list into descriptors, without the implicit ``_id_`` index."""
    return [
        descriptor_from_native(native)
        for native in native_indexes
        if native.get("name") != PRIMARY_KEY_INDEX
    ]


class NativeIndexSplit(BaseModel):
    unique_keys: List[UniqueKey] = Field(default_factory=list)
    ttl_index: Optional[IndexDescriptor] = None
    indexes: List[IndexDescriptor] = Field(default_factory=list)


def split_native_indexes(native_indexes: Iterable[Mapping[str, Any]], shard_key: Optional[str] = None) -> NativeIndexSplit:
    """
    Sorts a collection's indexes the way the model stores them.

    Unique indexes become unique-key groups (the shard key is implied, so it
    is removed from the group), the first index with ``expireAfterSeconds``
    becomes the TTL index and every other index is a secondary index.
    """
    split = NativeIndexSplit()
    for native in native_indexes:
        if native.get("name") == PRIMARY_KEY_INDEX:
            continue
        key = native.get("key") or {}
        if native.get("unique"):
            split.unique_keys.append(UniqueKey(attribute_path=[name for name in key if name != shard_key]))
        elif native.get("expireAfterSeconds") is not None:
            if split.ttl_index is None:
                split.ttl_index = descriptor_from_native(native)
        elif DOCUMENTDB_DEFAULT_INDEX_KEY not in key:
            split.indexes.append(descriptor_from_native(native))
    return split


def ttl_settings(ttl_index: Optional[IndexDescriptor]) -> Dict[str, Any]:
    """Container TTL settings implied by the collection's TTL index."""
    if ttl_index is None:
        return {"TTL": "Off"}
    seconds = ttl_index.expire_after_seconds
    return {
        "TTL": TTL_NO_DEFAULT if seconds == -1 else "On",
        "TTLseconds": seconds,
    }


def _stringify(data: Mapping[str, Any]) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False)


def create_index_statement(*args: Mapping[str, Any]) -> str:
    """``createIndex(<keys>, <options>);`` with unset options and empty arguments left out."""
    arguments = []
    for arg in args:
        filtered = {key: value for key, value in arg.items() if value is not None}
        if filtered:
            arguments.append(_stringify(filtered))
    return "createIndex(" + ", ".join(arguments) + ");"


def index_keys(descriptor: IndexDescriptor) -> Dict[str, Union[int, str]]:
    return {key.name: INDEX_KEY_DIRECTIONS.get(key.type, 1) for key in descriptor.keys if key.name}


def index_options(descriptor: IndexDescriptor) -> Dict[str, Any]:
    options: Dict[str, Any] = {"name": descriptor.name}
    if descriptor.unique:
        options["unique"] = True
    if descriptor.sparse:
        options["sparse"] = True
    if descriptor.background:
        options["background"] = True
    options["expireAfterSeconds"] = descriptor.expire_after_seconds
    options["2dsphereIndexVersion"] = descriptor.geo_version
    return options


def create_index(descriptor: IndexDescriptor) -> Optional[str]:
    keys = index_keys(descriptor)
    if not keys:
        logger.debug(f"Skipping index '{descriptor.name}': no usable key fields")
        return None
    return create_index_statement(keys, index_options(descriptor))


def create_unique_index(unique_key: UniqueKey, shard_key: Optional[str] = None) -> Optional[str]:
    names = [name for name in unique_key.attribute_path if name]
    if not names:
        return None
    keys: Dict[str, int] = {shard_key: 1} if shard_key else {}
    for name in names:
        keys[name] = 1
    return create_index_statement(keys, {"unique": True})


def create_ttl_index(ttl: Optional[str], ttl_seconds: Optional[int] = None) -> Optional[str]:
    if not ttl or ttl == "Off":
        return None
    return create_index_statement(
        {TTL_FIELD: 1},
        {
            "name": TTL_INDEX_NAME,
            "expireAfterSeconds": -1 if ttl == TTL_NO_DEFAULT else ttl_seconds,
        },
    )


def collection_handle(name: str) -> str:
    return f"db.getCollection({json.dumps(name, ensure_ascii=False)})"


def to_statements(
    collection_name: str,
    descriptors: Iterable[IndexDescriptor],
    unique_keys: Iterable[UniqueKey] = (),
    shard_key: Optional[str] = None,
    ttl: Optional[str] = None,
    ttl_seconds: Optional[int] = None,
) -> List[str]:
    """
    Index creation statements for one collection, in a fixed order.

    Unique-key groups come first (the shard key leads each compound key),
    then activated secondary indexes (inactive ones are left out), then the
    TTL index if the TTL setting is on. Indexes without a usable key field
    produce nothing.
    """
    statements: List[Optional[str]] = []
    statements.extend(create_unique_index(unique_key, shard_key) for unique_key in unique_keys)
    statements.extend(create_index(descriptor) for descriptor in descriptors if descriptor.is_activated)
    statements.append(create_ttl_index(ttl, ttl_seconds))

    handle = collection_handle(collection_name)
    return [f"{handle}.{statement}" for statement in statements if statement]
