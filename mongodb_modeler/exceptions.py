import traceback
from typing import Any, Dict, Optional


class MongoModelerError(Exception):
    """Base exception for the MongoDB modeler."""
    pass

class ConfigurationError(MongoModelerError):
    """Exception raised for errors in configuration."""
    pass

class DatabaseConnectionError(MongoModelerError):
    """Exception raised when the document source cannot be reached. Fatal to the operation."""
    pass

class PermissionDeniedError(MongoModelerError):
    """Exception raised when a collection cannot be read. The collection is skipped."""
    pass

class IdempotentConflict(MongoModelerError):
    """Exception raised when an index or collection already exists."""
    pass

class SamplingTimeoutError(MongoModelerError):
    """Exception raised when a sampling call exceeds its time limit."""
    pass

class SamplingInterruptedError(MongoModelerError):
    """Exception raised when the server interrupts a sampling call."""
    pass

class FileReadError(MongoModelerError):
    """Exception raised while reading a bulk sample file."""
    kind = "file"

class SchemaError(MongoModelerError):
    """Exception raised during schema inference."""
    pass

class ScriptParseError(MongoModelerError):
    """Exception raised when a script statement cannot be parsed."""
    pass

class StatementExecutionError(MongoModelerError):
    """Exception raised when a script statement fails against the document source."""

    def __init__(self, message: str, statement: Optional[Any] = None):
        super().__init__(message)
        self.statement = statement


AUTHENTICATION_FAILED_CODE = 18
AUTHENTICATION_FAILED_MESSAGE = "Authentication failed. Please, check connection settings and try again"


def error_message(error: Any) -> str:
    """Extracts a readable message from exceptions, driver error documents and plain strings."""
    if isinstance(error, BaseException):
        details = getattr(error, "details", None)
        if isinstance(details, dict) and details.get("errmsg"):
            return str(details["errmsg"])
        return str(error)
    if isinstance(error, dict):
        for key in ("message", "msg", "errmsg"):
            if error.get(key):
                return str(error[key])
    return str(error)


def normalize_error(error: Any) -> Dict[str, Any]:
    """Normalizes any error reaching a boundary to ``{message, stack}`` for the host logger."""
    stack = ""
    if isinstance(error, BaseException):
        stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))
    normalized = {"message": error_message(error), "stack": stack}
    code = getattr(error, "code", None)
    if code is not None:
        normalized["code"] = code
    return normalized
