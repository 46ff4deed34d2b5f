"""
Reverse-engineering: samples a live database and builds one model package per
collection (or per document kind when a collection mixes several).

Collections are processed concurrently on a bounded thread pool; a failure in
one collection is logged and reported without stopping the others. Losing the
connection stops the whole run.
"""
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from .codec import to_annotated
from .config import Settings, get_settings
from .exceptions import DatabaseConnectionError, PermissionDeniedError, normalize_error
from .indexes import split_native_indexes, ttl_settings
from .inference import DocumentKindSuggestion, document_json_schema, infer, suggest_document_kind
from .logging_config import get_logger
from .models import ReverseEngineerInput, SamplingConfig
from .sampling import (
    adjust_documents,
    batch_limits,
    extract_foreign_key_candidates,
    filter_documents,
    filter_system_collections,
    sample_size,
    sampling_info,
)
from .source import DocumentSource

logger = get_logger(__name__)

ProgressCallback = Callable[[str], None]

ALL_DOCUMENTS = "*"
DOCUMENT_KIND_PROBABILITY = 90
API_EXPERIENCE = "Mongo API"


class CollectionKinds(BaseModel):
    """Distinct document-kind values found in a collection."""
    model_config = ConfigDict(populate_by_name=True)

    db_name: str = Field(..., alias="dbName", description="Collection name.")
    db_collections: List[Any] = Field(default_factory=list, alias="dbCollections")
    is_empty: bool = Field(False, alias="isEmpty")


class CollectionPackage(BaseModel):
    """Everything the modeling tool needs to create one entity."""
    model_config = ConfigDict(populate_by_name=True)

    db_name: str = Field(..., alias="dbName", description="Collection the documents come from.")
    collection_name: Optional[str] = Field(None, alias="collectionName", description="Entity name: the collection, or the document kind value.")
    documents: List[Any] = Field(default_factory=list, description="Sample documents in display form.")
    indexes: List[Dict[str, Any]] = Field(default_factory=list)
    validation: Optional[Dict[str, Any]] = None
    doc_type: Optional[str] = Field(None, alias="docType")
    bucket_info: Dict[str, Any] = Field(default_factory=dict, alias="bucketInfo")
    document_template: Optional[Dict[str, Any]] = Field(None, alias="documentTemplate")
    empty_bucket: bool = Field(False, alias="emptyBucket")
    relationship_candidates: List[Dict[str, Any]] = Field(default_factory=list, alias="relationshipCandidates")
    inferred_schema: Optional[Dict[str, Any]] = Field(None, alias="inferredSchema")


class ReverseEngineerResult(BaseModel):
    packages: List[CollectionPackage] = Field(default_factory=list)
    model_info: Dict[str, Any] = Field(default_factory=dict, alias="modelInfo")
    errors: List[Dict[str, Any]] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)


class ReverseEngineer:
    """
    Drives reverse-engineering against a document source.

    Args:
        source: An open document source.
        settings: Runtime settings; defaults to ``get_settings()``.
        progress: Optional callable receiving progress messages.
    """

    def __init__(self, source: DocumentSource, settings: Optional[Settings] = None, progress: Optional[ProgressCallback] = None):
        self.source = source
        self.settings = settings or get_settings()
        self.progress = progress

    def _report(self, message: str, db_name: str = "", collection_name: str = "") -> None:
        entity = ".".join(part for part in (db_name, collection_name) if part)
        text = f"[{entity}] {message}" if entity else message
        logger.info(text)
        if self.progress:
            self.progress(text)

    def get_databases(self) -> List[str]:
        databases = self.source.list_databases()
        logger.info(f"All databases list: {databases}")
        return databases

    def get_collection_names(self, db_name: str, include_system: bool = False) -> List[str]:
        names = self.source.list_collections(db_name)
        if not include_system:
            names = filter_system_collections(names)
        logger.info(f"Collection list for database '{db_name}': {names}")
        return names

    def fetch_documents(self, db_name: str, collection_name: str, sampling: SamplingConfig) -> List[Dict[str, Any]]:
        """Random sample of a collection, fetched in batches of at most 1000 documents."""
        count = self.source.count(db_name, collection_name)
        size = sample_size(count, sampling)
        documents: List[Dict[str, Any]] = []
        for limit in batch_limits(size):
            documents.extend(
                self.source.sample_random(db_name, collection_name, limit, max_time_ms=self.settings.max_time_ms)
            )
        logger.debug(f"Sampled {len(documents)} of {count} documents from '{db_name}.{collection_name}'")
        return documents

    def _map_collections(self, names: Sequence[str], work: Callable[[str], Any]) -> Dict[str, Any]:
        """Runs ``work`` for each collection on the thread pool; failed collections map to their exception."""
        results: Dict[str, Any] = {}
        with ThreadPoolExecutor(max_workers=max(1, self.settings.max_workers)) as executor:
            futures = {name: executor.submit(work, name) for name in names}
            for name, future in futures.items():
                try:
                    results[name] = future.result()
                except DatabaseConnectionError:
                    raise
                except Exception as e:
                    logger.error(f"Collection '{name}' failed: {e}")
                    results[name] = e
        return results

    def get_document_kinds(
        self,
        db_name: str,
        sampling: Optional[SamplingConfig] = None,
        exclude: Sequence[str] = (),
        collection_names: Optional[Sequence[str]] = None,
    ) -> Dict[str, DocumentKindSuggestion]:
        """Suggests a document-kind discriminator field for each collection."""
        sampling = sampling or SamplingConfig()
        names = list(collection_names) if collection_names is not None else self.get_collection_names(db_name)

        def suggest(name: str) -> DocumentKindSuggestion:
            documents = filter_documents(self.fetch_documents(db_name, name, sampling))
            schema = infer(documents, max_samples=self.settings.samples_per_property)
            return suggest_document_kind(schema, exclude=exclude, probability=DOCUMENT_KIND_PROBABILITY)

        suggestions = {}
        for name, result in self._map_collections(names, suggest).items():
            if not isinstance(result, Exception):
                suggestions[name] = result
        return suggestions

    def get_collection_kinds(
        self,
        db_name: str,
        document_kinds: Mapping[str, str],
        sampling: Optional[SamplingConfig] = None,
        collection_names: Optional[Sequence[str]] = None,
    ) -> List[CollectionKinds]:
        """Distinct values of each collection's document-kind field (none for collections without one)."""
        sampling = sampling or SamplingConfig()
        names = list(collection_names) if collection_names is not None else self.get_collection_names(db_name)

        def kinds(name: str) -> CollectionKinds:
            documents = filter_documents(self.fetch_documents(db_name, name, sampling))
            kind_field = document_kinds.get(name) or ALL_DOCUMENTS
            values: List[Any] = []
            if kind_field != ALL_DOCUMENTS:
                for document in documents:
                    value = document.get(kind_field)
                    if value and value not in values:
                        values.append(value)
            return CollectionKinds(db_name=name, db_collections=values, is_empty=not documents)

        results = self._map_collections(names, kinds)
        return [result for result in results.values() if not isinstance(result, Exception)]

    def model_info(self) -> Dict[str, Any]:
        info: Dict[str, Any] = {"apiExperience": API_EXPERIENCE}
        try:
            info["version"] = self.source.build_info().get("version")
        except DatabaseConnectionError:
            raise
        except Exception as e:
            logger.error(f"Error while getting version: {e}")
            self._report(f"Error while getting version: {e}")
        return info

    def bucket_info(self, db_name: str, collection_name: str) -> Dict[str, Any]:
        """Collection-level settings: shard key, unique keys, secondary indexes and TTL."""
        info: Dict[str, Any] = {}
        try:
            shard_key = self.source.shard_key(db_name, collection_name)
            info["shardKey"] = shard_key
            split = split_native_indexes(self.source.list_indexes(db_name, collection_name), shard_key)
            info["uniqueKey"] = [unique_key.model_dump(by_alias=True) for unique_key in split.unique_keys]
            info["indexes"] = [
                index.model_dump(by_alias=True, exclude_none=True) for index in split.indexes
            ]
            info.update(ttl_settings(split.ttl_index))
        except DatabaseConnectionError:
            raise
        except Exception as e:
            logger.error(f"Error of getting collection data for '{db_name}.{collection_name}': {e}")
            self._report(f"Error of getting collection data. {e}", db_name, collection_name)
        info["dbId"] = db_name
        return info

    def _package(
        self,
        collection_name: str,
        entity_name: str,
        documents: List[Dict[str, Any]],
        request: ReverseEngineerInput,
        bucket_info: Dict[str, Any],
        doc_type: str,
    ) -> CollectionPackage:
        first = documents[0] if documents else None
        json_schema = document_json_schema(first) if first is not None else None
        package = CollectionPackage(
            db_name=collection_name,
            collection_name=entity_name,
            documents=adjust_documents(documents),
            indexes=bucket_info.get("indexes", []),
            validation={"jsonSchema": json_schema},
            doc_type=doc_type,
            bucket_info=bucket_info,
            relationship_candidates=[to_annotated(candidate) for candidate in extract_foreign_key_candidates(documents)],
            inferred_schema=infer(documents, max_samples=self.settings.samples_per_property).to_json_schema(request.field_order),
        )
        if request.field_order == "field" and first is not None:
            package.document_template = to_annotated(first)
        return package

    def collection_packages(
        self,
        collection_name: str,
        request: ReverseEngineerInput,
        document_kind: str = ALL_DOCUMENTS,
        kind_values: Optional[Sequence[Any]] = None,
    ) -> List[CollectionPackage]:
        db_name = request.database
        if not self.source.has_permission(db_name, collection_name):
            raise PermissionDeniedError(f"Not authorized to read '{db_name}.{collection_name}'")

        self._report("Collection data loading ...", db_name, collection_name)
        bucket_info = self.bucket_info(db_name, collection_name)
        self._report("Collection data has loaded", db_name, collection_name)

        self._report("Loading documents...", db_name, collection_name)
        documents = filter_documents(self.fetch_documents(db_name, collection_name, request.sampling))
        self._report("Documents have loaded", db_name, collection_name)

        packages: List[CollectionPackage] = []
        if document_kind == ALL_DOCUMENTS:
            package = self._package(collection_name, collection_name, documents, request, bucket_info, collection_name)
            if package.documents or request.include_empty_collections:
                packages.append(package)
        elif not kind_values:
            if request.include_empty_collections:
                packages.append(CollectionPackage(db_name=collection_name, empty_bucket=True, validation=None, bucket_info=bucket_info))
        else:
            for value in kind_values:
                kind_documents = [document for document in documents if document.get(document_kind) == value]
                package = self._package(collection_name, str(value), kind_documents, request, bucket_info, document_kind)
                if package.documents or request.include_empty_collections:
                    packages.append(package)
        return packages

    def get_collections_data(
        self,
        request: ReverseEngineerInput,
        document_kinds: Optional[Mapping[str, str]] = None,
        kind_values: Optional[Mapping[str, Sequence[Any]]] = None,
    ) -> ReverseEngineerResult:
        """
        Builds the model packages for the requested collections.

        Args:
            request: Database, collections, sampling and field-order settings.
            document_kinds: Collection name -> document-kind field; ``"*"`` or a
                missing entry keeps the collection as a single entity.
            kind_values: Collection name -> kind values to split the collection on.

        Returns:
            ReverseEngineerResult: Packages in collection order, the model info
            and one normalized error per failed collection.
        """
        document_kinds = document_kinds or {}
        kind_values = kind_values or {}
        logger.info(f"Reverse-Engineering sampling params: {sampling_info(request.sampling, request.field_order)}")

        names = request.collection_names if request.collection_names is not None else self.get_collection_names(request.database)
        logger.info(f"Selected collection list: {names}")

        result = ReverseEngineerResult(model_info=self.model_info())

        def build(name: str) -> List[CollectionPackage]:
            return self.collection_packages(
                name,
                request,
                document_kind=document_kinds.get(name) or ALL_DOCUMENTS,
                kind_values=kind_values.get(name),
            )

        for name, outcome in self._map_collections(names, build).items():
            if isinstance(outcome, Exception):
                self._report(f"Error of loading documents. {outcome}", request.database, name)
                error = normalize_error(outcome)
                error["collection"] = name
                result.errors.append(error)
            else:
                result.packages.extend(outcome)
        return result
