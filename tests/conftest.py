"""
pytest configuration for mongodb-modeler tests.

Provides an in-memory document source so that reverse-engineering and apply
tests run without a MongoDB server.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional

import pytest

from mongodb_modeler.config import Settings, clear_settings_cache
from mongodb_modeler.exceptions import IdempotentConflict, PermissionDeniedError
from mongodb_modeler.logging_config import DRIVER_LOGGERS
from mongodb_modeler.source import CollectionHandle, DocumentSource


class FakeCollection(CollectionHandle):
    def __init__(self, source: "FakeDocumentSource", db_name: str, collection_name: str):
        self.source = source
        self.db_name = db_name
        self.collection_name = collection_name

    def create_index(self, keys: Mapping[str, Any], options: Optional[Mapping[str, Any]] = None) -> Any:
        self.source.calls.append(("create_index", self.db_name, self.collection_name, dict(keys), dict(options or {})))
        indexes = self.source.created_indexes.setdefault((self.db_name, self.collection_name), [])
        name = (options or {}).get("name") or "_".join(f"{key}_{value}" for key, value in keys.items())
        if name in self.source.fail_indexes:
            raise RuntimeError(f"cannot create index {name}")
        if any(index["name"] == name for index in indexes):
            raise IdempotentConflict(f"Index already exists: {name}")
        indexes.append({"name": name, "key": dict(keys), **dict(options or {})})
        return name

    def insert_one(self, document: Mapping[str, Any]) -> Any:
        self.source.calls.append(("insert_one", self.db_name, self.collection_name, dict(document)))
        if self.source.fail_inserts:
            raise RuntimeError("E11000 duplicate key error")
        self.source.data.setdefault(self.db_name, {}).setdefault(self.collection_name, []).append(dict(document))


class FakeDocumentSource(DocumentSource):
    """DocumentSource backed by dictionaries; records every write call in ``calls``."""

    def __init__(
        self,
        data: Optional[Dict[str, Dict[str, List[Dict[str, Any]]]]] = None,
        indexes: Optional[Dict[tuple, List[Dict[str, Any]]]] = None,
        shard_keys: Optional[Dict[tuple, str]] = None,
        denied: Optional[set] = None,
    ):
        self.data = data if data is not None else {}
        self.indexes = indexes or {}
        self.shard_keys = shard_keys or {}
        self.denied = denied or set()
        self.created_indexes: Dict[tuple, List[Dict[str, Any]]] = {}
        self.calls: List[tuple] = []
        self.sample_calls: List[dict] = []
        self.commands: List[tuple] = []
        self.fail_inserts = False
        self.fail_indexes: set = set()
        self.command_conflict = False
        self.closed = False

    def list_databases(self) -> List[str]:
        return list(self.data)

    def list_collections(self, db_name: str) -> List[str]:
        return list(self.data.get(db_name, {}))

    def count(self, db_name: str, collection_name: str) -> int:
        return len(self.data.get(db_name, {}).get(collection_name, []))

    def sample_random(self, db_name, collection_name, limit, query=None, sort=None, max_time_ms=None):
        self.sample_calls.append({"collection": collection_name, "limit": limit, "max_time_ms": max_time_ms})
        return [dict(document) for document in self.data.get(db_name, {}).get(collection_name, [])[:limit]]

    def find_one(self, db_name, collection_name, query=None):
        if (db_name, collection_name) in self.denied:
            raise PermissionDeniedError(f"not authorized on {db_name}.{collection_name}")
        documents = self.data.get(db_name, {}).get(collection_name, [])
        return dict(documents[0]) if documents else None

    def list_indexes(self, db_name, collection_name):
        return list(self.indexes.get((db_name, collection_name), [{"name": "_id_", "key": {"_id": 1}}]))

    def create_collection(self, db_name, collection_name):
        self.calls.append(("create_collection", db_name, collection_name))
        collections = self.data.setdefault(db_name, {})
        if collection_name in collections:
            raise IdempotentConflict(f"Collection '{collection_name}' already exists")
        collections[collection_name] = []

    def get_collection(self, db_name, collection_name):
        return FakeCollection(self, db_name, collection_name)

    def run_command(self, db_name, command):
        self.commands.append((db_name, dict(command)))
        if self.command_conflict:
            raise IdempotentConflict("sharding already enabled")
        return {"ok": 1}

    def build_info(self):
        return {"version": "6.0.0"}

    def shard_key(self, db_name, collection_name):
        return self.shard_keys.get((db_name, collection_name), "")

    def close(self):
        self.closed = True


@pytest.fixture
def fake_source():
    return FakeDocumentSource()


@pytest.fixture
def make_source():
    """Builds a FakeDocumentSource preloaded with data, indexes and shard keys."""
    return FakeDocumentSource


@pytest.fixture
def settings():
    """Settings with a single worker so thread-pool ordering is deterministic in assertions."""
    return Settings(max_workers=1)


@pytest.fixture(autouse=True)
def _reset_settings_cache(monkeypatch):
    """Keep environment-driven settings from leaking between tests."""
    for name in ("URI", "MAX_CAP", "MAX_TIME_MS", "MAX_WORKERS", "SAMPLES_PER_PROPERTY"):
        monkeypatch.delenv(f"MONGO_MODELER_{name}", raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture(autouse=True)
def _restore_root_logger():
    """setup_logging replaces the root handlers and driver levels; put the previous ones back after each test."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    driver_levels = {name: logging.getLogger(name).level for name in DRIVER_LOGGERS}
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
    for name, driver_level in driver_levels.items():
        logging.getLogger(name).setLevel(driver_level)
