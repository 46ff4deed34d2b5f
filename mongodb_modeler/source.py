"""
Document sources: the only way the modeler talks to a database.

``DocumentSource`` is the abstract collaborator the reverse-engineering and
apply code depend on. ``MongoDocumentSource`` implements it with pymongo and
``ConnectionSession`` scopes one connection (connect on enter, always close on
exit).
"""
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Mapping, Optional

from pymongo import MongoClient
from pymongo.errors import (
    CollectionInvalid,
    ConfigurationError as PyMongoConfigurationError,
    ConnectionFailure,
    ExecutionTimeout,
    OperationFailure,
)

from .config import ConnectionSettings, get_settings
from .exceptions import (
    AUTHENTICATION_FAILED_CODE,
    AUTHENTICATION_FAILED_MESSAGE,
    DatabaseConnectionError,
    IdempotentConflict,
    PermissionDeniedError,
    SamplingInterruptedError,
    SamplingTimeoutError,
)
from .logging_config import get_logger

logger = get_logger(__name__)

UNAUTHORIZED_CODE = 13
NAMESPACE_EXISTS_CODE = 48
SHARDING_EXISTS_CODES = {9, NAMESPACE_EXISTS_CODE}
INDEX_EXISTS_CODES = {68, 85, 86}
MAX_TIME_EXPIRED_CODE = 50
INTERRUPTED_CODE = 11601
RANDOM_SAMPLING_CODE = 28799

TIMEOUT_HINT = "Please, try to increase query timeout (Options -> Reverse-Engineering) and try again."


class CollectionHandle(ABC):
    """Write access to one collection."""

    @abstractmethod
    def create_index(self, keys: Mapping[str, Any], options: Optional[Mapping[str, Any]] = None) -> Any:
        ...

    @abstractmethod
    def insert_one(self, document: Mapping[str, Any]) -> Any:
        ...


class DocumentSource(ABC):
    """Database operations the modeler needs, independent of any driver."""

    @abstractmethod
    def list_databases(self) -> List[str]:
        ...

    @abstractmethod
    def list_collections(self, db_name: str) -> List[str]:
        ...

    @abstractmethod
    def count(self, db_name: str, collection_name: str) -> int:
        ...

    @abstractmethod
    def sample_random(
        self,
        db_name: str,
        collection_name: str,
        limit: int,
        query: Optional[Mapping[str, Any]] = None,
        sort: Optional[Mapping[str, Any]] = None,
        max_time_ms: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    def find_one(self, db_name: str, collection_name: str, query: Optional[Mapping[str, Any]] = None) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    def list_indexes(self, db_name: str, collection_name: str) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    def create_collection(self, db_name: str, collection_name: str) -> None:
        """Creates a collection. Raises IdempotentConflict when it already exists."""

    @abstractmethod
    def get_collection(self, db_name: str, collection_name: str) -> CollectionHandle:
        ...

    @abstractmethod
    def run_command(self, db_name: str, command: Mapping[str, Any]) -> Any:
        ...

    def has_permission(self, db_name: str, collection_name: str) -> bool:
        try:
            self.find_one(db_name, collection_name)
        except PermissionDeniedError:
            return False
        return True

    def build_info(self) -> Dict[str, Any]:
        return {}

    def shard_key(self, db_name: str, collection_name: str) -> str:
        return ""

    def close(self) -> None:
        pass


def _error_code(error: OperationFailure) -> Optional[int]:
    return getattr(error, "code", None)


def _code_name(error: OperationFailure) -> str:
    details = getattr(error, "details", None) or {}
    return details.get("codeName", "")


class MongoCollectionHandle(CollectionHandle):
    def __init__(self, collection):
        self._collection = collection

    def create_index(self, keys: Mapping[str, Any], options: Optional[Mapping[str, Any]] = None) -> Any:
        try:
            return self._collection.create_index(list(keys.items()), **dict(options or {}))
        except OperationFailure as e:
            if _error_code(e) in INDEX_EXISTS_CODES:
                raise IdempotentConflict(f"Index already exists on '{self._collection.name}': {e}") from e
            raise

    def insert_one(self, document: Mapping[str, Any]) -> Any:
        return self._collection.insert_one(dict(document))


class MongoDocumentSource(DocumentSource):
    """pymongo-backed document source. Works with MongoDB, Cosmos DB (Mongo API) and DocumentDB."""

    def __init__(self, settings: ConnectionSettings, server_selection_timeout_ms: Optional[int] = None):
        self.settings = settings
        self.server_selection_timeout_ms = server_selection_timeout_ms or get_settings().server_selection_timeout_ms
        self._client: Optional[MongoClient] = None

    def connect(self) -> "MongoDocumentSource":
        """Establishes the connection and checks it with a ping."""
        uri, options = self.settings.connection_params()
        logger.info(f"Connecting to MongoDB at {self.settings.host}:{self.settings.port}" if not self.settings.uri else "Connecting to MongoDB")
        try:
            self._client = MongoClient(uri, serverSelectionTimeoutMS=self.server_selection_timeout_ms, **options)
            self._client.admin.command("ping")
        except PyMongoConfigurationError as e:
            self._client = None
            raise DatabaseConnectionError(f"Invalid MongoDB URI configuration: {e}") from e
        except OperationFailure as e:
            self._client = None
            if _error_code(e) == AUTHENTICATION_FAILED_CODE:
                raise DatabaseConnectionError(AUTHENTICATION_FAILED_MESSAGE) from e
            raise DatabaseConnectionError(f"Could not connect to MongoDB: {e}") from e
        except ConnectionFailure as e:
            self._client = None
            raise DatabaseConnectionError(f"Could not connect to MongoDB: {e}") from e
        logger.info("MongoDB connection successful.")
        return self

    @property
    def client(self) -> MongoClient:
        if self._client is None:
            raise DatabaseConnectionError("Not connected to MongoDB")
        return self._client

    def close(self) -> None:
        if self._client is not None:
            logger.info("Closing MongoDB connection.")
            self._client.close()
            self._client = None

    def _collection(self, db_name: str, collection_name: str):
        return self.client[db_name][collection_name]

    def list_databases(self) -> List[str]:
        return self.client.list_database_names()

    def list_collections(self, db_name: str) -> List[str]:
        return self.client[db_name].list_collection_names()

    def count(self, db_name: str, collection_name: str) -> int:
        return self._collection(db_name, collection_name).estimated_document_count()

    def sample_random(
        self,
        db_name: str,
        collection_name: str,
        limit: int,
        query: Optional[Mapping[str, Any]] = None,
        sort: Optional[Mapping[str, Any]] = None,
        max_time_ms: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        collection = self._collection(db_name, collection_name)
        max_time_ms = max_time_ms or get_settings().max_time_ms
        try:
            if sort:
                cursor = collection.find(dict(query or {}), sort=list(sort.items()), limit=int(limit), max_time_ms=max_time_ms)
            else:
                pipeline: List[Dict[str, Any]] = []
                if query:
                    pipeline.append({"$match": dict(query)})
                pipeline.append({"$sample": {"size": int(limit)}})
                cursor = collection.aggregate(pipeline, maxTimeMS=max_time_ms, allowDiskUse=True)
            return list(cursor)
        except ExecutionTimeout as e:
            raise SamplingTimeoutError(f"MongoDB Error: {e}. {TIMEOUT_HINT}") from e
        except OperationFailure as e:
            code = _error_code(e)
            if code == UNAUTHORIZED_CODE:
                raise PermissionDeniedError(f"Not authorized to read '{db_name}.{collection_name}': {e}") from e
            if code == MAX_TIME_EXPIRED_CODE:
                raise SamplingTimeoutError(f"MongoDB Error: {e}. {TIMEOUT_HINT}") from e
            if code == INTERRUPTED_CODE:
                raise SamplingInterruptedError(f"MongoDB Error: {e}. {TIMEOUT_HINT}") from e
            if code == RANDOM_SAMPLING_CODE:
                raise SamplingInterruptedError(
                    "MongoDB Error: $sample stage could not find a non-duplicate document after 100 "
                    "while using a random cursor. Please try again."
                ) from e
            raise

    def find_one(self, db_name: str, collection_name: str, query: Optional[Mapping[str, Any]] = None) -> Optional[Dict[str, Any]]:
        try:
            return self._collection(db_name, collection_name).find_one(dict(query or {}))
        except OperationFailure as e:
            if _error_code(e) == UNAUTHORIZED_CODE:
                raise PermissionDeniedError(f"Not authorized to read '{db_name}.{collection_name}': {e}") from e
            raise

    def list_indexes(self, db_name: str, collection_name: str) -> List[Dict[str, Any]]:
        indexes = []
        for index in self._collection(db_name, collection_name).list_indexes():
            native = dict(index)
            native["key"] = dict(native.get("key") or {})
            indexes.append(native)
        return indexes

    def create_collection(self, db_name: str, collection_name: str) -> None:
        try:
            self.client[db_name].create_collection(collection_name)
        except CollectionInvalid as e:
            raise IdempotentConflict(f"Collection '{collection_name}' already exists: {e}") from e
        except OperationFailure as e:
            if _error_code(e) == NAMESPACE_EXISTS_CODE:
                raise IdempotentConflict(f"Collection '{collection_name}' already exists: {e}") from e
            raise

    def get_collection(self, db_name: str, collection_name: str) -> CollectionHandle:
        return MongoCollectionHandle(self._collection(db_name, collection_name))

    def run_command(self, db_name: str, command: Mapping[str, Any]) -> Any:
        try:
            return self.client[db_name].command(dict(command))
        except OperationFailure as e:
            if _error_code(e) in SHARDING_EXISTS_CODES or _code_name(e) == "NamespaceExists":
                raise IdempotentConflict(f"Command already applied: {e}") from e
            raise

    def build_info(self) -> Dict[str, Any]:
        return self.client.admin.command("buildInfo")

    def shard_key(self, db_name: str, collection_name: str) -> str:
        """Shard key of a collection; only Cosmos DB answers the ``GetCollection`` custom action."""
        try:
            result = self.client[db_name].command({"customAction": "GetCollection", "collection": collection_name})
        except OperationFailure as e:
            logger.debug(f"Shard key lookup not supported for '{db_name}.{collection_name}': {e}")
            return ""
        definition = result.get("shardKeyDefinition") or {}
        return next(iter(definition), "")


SourceFactory = Callable[[ConnectionSettings], DocumentSource]


def _connect_mongo(settings: ConnectionSettings) -> DocumentSource:
    return MongoDocumentSource(settings).connect()


class ConnectionSession:
    """
    Owns one connection to a document source.

    Use as a context manager; the source is opened on enter and closed on
    exit, whether or not the body raised.
    """

    def __init__(self, settings: Optional[ConnectionSettings] = None, source_factory: Optional[SourceFactory] = None):
        self.settings = settings or ConnectionSettings(uri=get_settings().mongo_uri)
        self._source_factory = source_factory or _connect_mongo
        self._source: Optional[DocumentSource] = None

    @property
    def source(self) -> DocumentSource:
        if self._source is None:
            raise DatabaseConnectionError("Connection session is not open")
        return self._source

    def open(self) -> DocumentSource:
        if self._source is None:
            self._source = self._source_factory(self.settings)
        return self._source

    def close(self) -> None:
        if self._source is not None:
            source, self._source = self._source, None
            source.close()

    def __enter__(self) -> DocumentSource:
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
