from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from langchain_core.tools import StructuredTool

from .apply import ApplyResult, apply_to_instance
from .config import ConnectionSettings, Settings, get_settings
from .exceptions import ConfigurationError, DatabaseConnectionError
from .logging_config import get_logger
from .models import (
    ApplyScriptInput,
    ContainerModel,
    EntityModel,
    GenerateScriptInput,
    ReverseEngineerInput,
    ReverseEngineerToolInput,
    SamplingConfig,
    ScriptBlock,
    ScriptOptions,
)
from .reverse import ReverseEngineer, ReverseEngineerResult
from .script import generate_script
from .source import ConnectionSession, SourceFactory

logger = get_logger(__name__)


class ModelingToolkit:
    """
    Schema-modeling operations for one MongoDB-compatible database, plus
    LangChain tools wrapping them.

    Instantiate with a connection URI (or ``ConnectionSettings``) and the
    database name, then call the operations directly or hand ``get_tools()``
    to an agent. Every operation opens its own connection session and closes
    it before returning.
    """

    def __init__(
        self,
        mongo_uri: Optional[str] = None,
        db_name: Optional[str] = None,
        connection: Optional[ConnectionSettings] = None,
        settings: Optional[Settings] = None,
        source_factory: Optional[SourceFactory] = None,
        progress: Optional[Callable[[str], None]] = None,
    ):
        """
        Initializes the toolkit with connection details.

        Args:
            mongo_uri (str): The MongoDB connection URI. Falls back to MONGO_MODELER_URI.
            db_name (str): The name of the target database.
            connection (ConnectionSettings): Host/credential fields, used instead of a URI.
            settings (Settings): Runtime settings; defaults to the environment.
            source_factory: Builds an open DocumentSource from connection settings.
            progress: Optional callable receiving progress messages.
        """
        self.settings = settings or get_settings()
        if connection is None:
            mongo_uri = mongo_uri or self.settings.mongo_uri
            if not mongo_uri:
                raise ConfigurationError("mongo_uri cannot be empty.")
            connection = ConnectionSettings(uri=mongo_uri)
        if not db_name:
            raise ConfigurationError("db_name cannot be empty.")

        self.connection = connection
        self.db_name = db_name
        self.source_factory = source_factory
        self.progress = progress
        logger.info(f"ModelingToolkit initialized for database '{self.db_name}'. Connection will be established on first use.")

    def session(self) -> ConnectionSession:
        return ConnectionSession(self.connection, source_factory=self.source_factory)

    def test_connection(self) -> bool:
        """Returns True if the database can be reached with the configured settings."""
        try:
            with self.session():
                return True
        except DatabaseConnectionError as e:
            logger.error(f"Connection test failed: {e}")
            return False

    def reverse_engineer(
        self,
        collection_names: Optional[Sequence[str]] = None,
        sampling: Optional[SamplingConfig] = None,
        field_order: str = "field",
        include_empty_collections: bool = False,
        document_kinds: Optional[Dict[str, str]] = None,
        kind_values: Optional[Dict[str, List[Any]]] = None,
    ) -> ReverseEngineerResult:
        """
        Samples the database and builds a model package per collection.
        """
        request = ReverseEngineerInput(
            database=self.db_name,
            collection_names=list(collection_names) if collection_names is not None else None,
            sampling=sampling or SamplingConfig(max_cap=self.settings.max_cap),
            field_order=field_order,
            include_empty_collections=include_empty_collections,
        )
        logger.info(f"Reverse-engineering database: '{self.db_name}'")
        with self.session() as source:
            engineer = ReverseEngineer(source, settings=self.settings, progress=self.progress)
            return engineer.get_collections_data(request, document_kinds, kind_values)

    def generate_script(
        self,
        container: ContainerModel,
        entities: List[EntityModel],
        options: Optional[ScriptOptions] = None,
    ) -> Union[str, List[ScriptBlock]]:
        """Generates the script for the given model. Needs no connection."""
        return generate_script(container, entities, options)

    def apply_script(self, script: str) -> ApplyResult:
        """Applies a generated script to the database, statement by statement."""
        return apply_to_instance(self.session(), script, self.db_name, progress=self.progress)

    def _reverse_engineer_wrapper(self, **kwargs):
        """Internal wrapper to unpack args for reverse_engineer from Pydantic."""
        try:
            validated_args = ReverseEngineerToolInput(**kwargs)
        except Exception as e:
            raise ConfigurationError(f"Invalid input arguments for reverse_engineer: {e}") from e

        result = self.reverse_engineer(
            collection_names=validated_args.collection_names,
            sampling=validated_args.sampling,
            field_order=validated_args.field_order,
            include_empty_collections=validated_args.include_empty_collections,
        )
        return result.model_dump(by_alias=True)

    def _generate_script_wrapper(self, **kwargs):
        """Internal wrapper to unpack args for generate_script from Pydantic."""
        try:
            validated_args = GenerateScriptInput(**kwargs)
        except Exception as e:
            raise ConfigurationError(f"Invalid input arguments for generate_script: {e}") from e

        script = self.generate_script(validated_args.container, validated_args.entities, validated_args.options)
        if isinstance(script, str):
            return script
        return [block.model_dump() for block in script]

    def _apply_script_wrapper(self, **kwargs):
        """Internal wrapper to unpack args for apply_script from Pydantic."""
        try:
            validated_args = ApplyScriptInput(**kwargs)
        except Exception as e:
            raise ConfigurationError(f"Invalid input arguments for apply_script: {e}") from e

        return self.apply_script(validated_args.script).model_dump()

    @lru_cache(maxsize=1)
    def get_tools(self) -> List[StructuredTool]:
        """
        Returns a list of configured LangChain tools bound to this toolkit instance.
        """
        logger.info("Generating LangChain tools for ModelingToolkit...")

        reverse_tool = StructuredTool.from_function(
            name="reverse_engineer_mongodb_database",
            description=(
                f"Use this tool to sample the collections of the '{self.db_name}' database and infer their structure. "
                "Returns one package per collection with sample documents, indexes, TTL and shard key settings, "
                "the inferred JSON schema and ObjectId relationship candidates. "
                "ARGUMENTS: "
                "- collection_names (Optional[List[str]]): Collections to include. OMIT to use all non-system collections. "
                "- sampling: 'absolute' count or 'relative' percentage of documents to sample. "
                "- field_order: 'field' keeps document field order, 'alphabetical' sorts properties."
            ),
            func=self._reverse_engineer_wrapper,
            args_schema=ReverseEngineerToolInput,
        )

        generate_tool = StructuredTool.from_function(
            name="generate_mongodb_script",
            description=(
                "Use this tool to turn a database model (database settings plus collections with indexes and "
                "sample documents) into a MongoDB script with use, createCollection, createIndex, shardCollection "
                "and insert statements. Does not touch the database."
            ),
            func=self._generate_script_wrapper,
            args_schema=GenerateScriptInput,
        )

        apply_tool = StructuredTool.from_function(
            name="apply_mongodb_script",
            description=(
                f"Use this tool to run a script produced by 'generate_mongodb_script' against the '{self.db_name}' database. "
                "Statements run in order; existing collections and indexes are reported as warnings. "
                "Returns the number of statements run, the number of inserted samples and the warnings."
            ),
            func=self._apply_script_wrapper,
            args_schema=ApplyScriptInput,
        )

        return [reverse_tool, generate_tool, apply_tool]
