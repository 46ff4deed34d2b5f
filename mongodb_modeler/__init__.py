from .toolkit import ModelingToolkit
from .codec import decode, encode
from .inference import infer
from .script import generate_script
from .apply import ScriptApplier, apply_to_instance
from .reverse import ReverseEngineer
from .source import ConnectionSession, DocumentSource, MongoDocumentSource
from .exceptions import (
    MongoModelerError,
    ConfigurationError,
    DatabaseConnectionError,
    PermissionDeniedError,
    IdempotentConflict,
    SamplingTimeoutError,
    SamplingInterruptedError,
    FileReadError,
    SchemaError,
    ScriptParseError,
    StatementExecutionError,
)

__version__ = "0.1.0"

__all__ = [
    "ModelingToolkit",
    "encode",
    "decode",
    "infer",
    "generate_script",
    "ScriptApplier",
    "apply_to_instance",
    "ReverseEngineer",
    "ConnectionSession",
    "DocumentSource",
    "MongoDocumentSource",
    "MongoModelerError",
    "ConfigurationError",
    "DatabaseConnectionError",
    "PermissionDeniedError",
    "IdempotentConflict",
    "SamplingTimeoutError",
    "SamplingInterruptedError",
    "FileReadError",
    "SchemaError",
    "ScriptParseError",
    "StatementExecutionError",
]
