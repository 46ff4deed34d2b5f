"""
Applies a generated script to a live database.

The script is parsed into a list of statements (``use``,
``db.createCollection``, ``createIndex``, ``insert`` and ``db.runCommand``),
which are then executed one after another against a DocumentSource. Later
statements depend on earlier ones, so nothing runs concurrently and the first
real failure stops the run. Conflicts with objects that already exist are
reported as warnings.
"""
import json
import re
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .codec import REGEX, encode, from_annotated
from .exceptions import (
    ConfigurationError,
    IdempotentConflict,
    ScriptParseError,
    StatementExecutionError,
    error_message,
)
from .logging_config import get_logger
from .source import ConnectionSession, DocumentSource

logger = get_logger(__name__)

ProgressCallback = Callable[[str], None]

PROGRESS_STEP = 5
DATABASE_REQUIRED_MESSAGE = "Database Id is required. Please, set it on the collection properties pane."

# Characters after which a '/' starts a regex literal rather than a division
_REGEX_PRECEDERS = set(":,([=!&|?{}")

_USE_PATTERN = re.compile(r"use\s+(?P<database>[^\s;]+)", re.IGNORECASE)
_CREATE_COLLECTION_PATTERN = re.compile(r"db\.createCollection\((?P<args>.*)\)", re.DOTALL)
_COLLECTION_CALL_PATTERN = re.compile(
    r'db\.getCollection\(\s*(?P<name>"(?:[^"\\]|\\.)*")\s*\)\s*\.\s*(?P<method>createIndex|insertOne|insert)\((?P<args>.*)\)',
    re.DOTALL,
)
_RUN_COMMAND_PATTERN = re.compile(r"db\.runCommand\((?P<args>.*)\)", re.DOTALL)


class Statement(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    text: str = Field(..., description="Statement source, without the trailing semicolon.")


class UseDb(Statement):
    database: str


class CreateCollection(Statement):
    collection: str


class CreateIndex(Statement):
    collection: str
    keys: Dict[str, Any]
    options: Dict[str, Any] = Field(default_factory=dict)

    @property
    def index_name(self) -> str:
        return "unique" if self.options.get("unique") else self.options.get("name", "")


class Insert(Statement):
    collection: str
    document: Dict[str, Any]


class RunCommand(Statement):
    command: Dict[str, Any]


AnyStatement = Union[UseDb, CreateCollection, CreateIndex, Insert, RunCommand]


def _skip_string(text: str, start: int) -> int:
    quote = text[start]
    i = start + 1
    while i < len(text):
        if text[i] == "\\":
            i += 2
            continue
        if text[i] == quote:
            return i + 1
        i += 1
    raise ScriptParseError(f"Unterminated string literal at position {start}")


def _skip_regex(text: str, start: int) -> int:
    i = start + 1
    in_class = False
    while i < len(text):
        char = text[i]
        if char == "\\":
            i += 2
            continue
        if char == "\n":
            break
        if char == "[":
            in_class = True
        elif char == "]":
            in_class = False
        elif char == "/" and not in_class:
            i += 1
            while i < len(text) and text[i].isalpha():
                i += 1
            return i
        i += 1
    raise ScriptParseError(f"Unterminated regular expression literal at position {start}")


def split_statements(script: str) -> List[str]:
    """
    Splits a script into statement texts.

    Comments (``//`` and ``/* */``) are dropped, so commented-out blocks
    produce no statements. Statements end at a ``;`` outside of strings,
    regex literals and brackets; a trailing statement without ``;`` is kept.
    """
    statements: List[str] = []
    current: List[str] = []
    depth = 0
    last_significant = ""
    i = 0
    while i < len(script):
        char = script[i]
        following = script[i + 1] if i + 1 < len(script) else ""
        if char == "/" and following == "*":
            end = script.find("*/", i + 2)
            if end == -1:
                raise ScriptParseError(f"Unterminated comment at position {i}")
            i = end + 2
            continue
        if char == "/" and following == "/":
            end = script.find("\n", i)
            i = len(script) if end == -1 else end
            continue
        if char in "\"'":
            end = _skip_string(script, i)
            current.append(script[i:end])
            last_significant = char
            i = end
            continue
        if char == "/" and last_significant in _REGEX_PRECEDERS:
            end = _skip_regex(script, i)
            current.append(script[i:end])
            last_significant = "/"
            i = end
            continue
        if char in "([{":
            depth += 1
        elif char in ")]}":
            depth -= 1
            if depth < 0:
                raise ScriptParseError(f"Unbalanced '{char}' at position {i}")
        if char == ";" and depth == 0:
            statement = "".join(current).strip()
            if statement:
                statements.append(statement)
            current = []
            last_significant = ""
            i += 1
            continue
        current.append(char)
        if not char.isspace():
            last_significant = char
        i += 1

    if depth != 0:
        raise ScriptParseError("Unbalanced brackets at the end of the script")
    statement = "".join(current).strip()
    if statement:
        statements.append(statement)
    return statements


def tag_regex_literals(text: str) -> str:
    """Replaces every regex literal outside of strings with a ``$__rgxp_`` tagged string."""
    parts: List[str] = []
    last_significant = ""
    start = 0
    i = 0
    while i < len(text):
        char = text[i]
        if char in "\"'":
            i = _skip_string(text, i)
            last_significant = char
            continue
        if char == "/" and last_significant in _REGEX_PRECEDERS:
            end = _skip_regex(text, i)
            parts.append(text[start:i])
            parts.append(json.dumps(REGEX + text[i:end], ensure_ascii=False))
            last_significant = '"'
            start = i = end
            continue
        if not char.isspace():
            last_significant = char
        i += 1
    parts.append(text[start:])
    return "".join(parts)


def parse_arguments(text: str) -> List[Any]:
    """Parses a call's argument list (script literals allowed) into BSON values."""
    if not text.strip():
        return []
    try:
        arguments = json.loads(encode(tag_regex_literals(f"[{text}]")))
    except ValueError as e:
        raise ScriptParseError(f"Invalid arguments '{text.strip()[:100]}': {e}") from e
    return [from_annotated(argument) for argument in arguments]


def _document_argument(arguments: List[Any], position: int, statement: str) -> Dict[str, Any]:
    if len(arguments) <= position:
        return {}
    argument = arguments[position]
    if not isinstance(argument, dict):
        raise ScriptParseError(f"Expected a document as argument {position + 1} of: {statement[:100]}")
    return argument


def parse_statement(text: str) -> AnyStatement:
    match = _USE_PATTERN.fullmatch(text)
    if match:
        return UseDb(text=text, database=match.group("database"))

    match = _COLLECTION_CALL_PATTERN.fullmatch(text)
    if match:
        collection = json.loads(match.group("name"))
        arguments = parse_arguments(match.group("args"))
        if match.group("method") == "createIndex":
            return CreateIndex(
                text=text,
                collection=collection,
                keys=_document_argument(arguments, 0, text),
                options=_document_argument(arguments, 1, text),
            )
        return Insert(text=text, collection=collection, document=_document_argument(arguments, 0, text))

    match = _CREATE_COLLECTION_PATTERN.fullmatch(text)
    if match:
        arguments = parse_arguments(match.group("args"))
        if not arguments or not isinstance(arguments[0], str):
            raise ScriptParseError(f"createCollection expects a collection name: {text[:100]}")
        return CreateCollection(text=text, collection=arguments[0])

    match = _RUN_COMMAND_PATTERN.fullmatch(text)
    if match:
        arguments = parse_arguments(match.group("args"))
        return RunCommand(text=text, command=_document_argument(arguments, 0, text))

    raise ScriptParseError(f"Unsupported statement: {text[:100]}")


def parse_script(script: str) -> List[AnyStatement]:
    return [parse_statement(text) for text in split_statements(script)]


class ApplyResult(BaseModel):
    statements: int = 0
    inserted: int = 0
    warnings: List[str] = Field(default_factory=list)


class ScriptApplier:
    """
    Runs parsed statements in order against a document source.

    Args:
        source: Where statements are executed.
        progress: Optional callable receiving progress messages.
        database: Database used until the script switches with ``use``.
    """

    def __init__(self, source: DocumentSource, progress: Optional[ProgressCallback] = None, database: Optional[str] = None):
        self.source = source
        self.progress = progress
        self.database = database

    def _info(self, message: str) -> None:
        logger.info(message)
        if self.progress:
            self.progress(message)

    def _warning(self, message: str, result: ApplyResult) -> None:
        logger.warning(message)
        result.warnings.append(message)
        if self.progress:
            self.progress(f"warning: {message}")

    def _fail(self, message: str, statement: Statement, error: Exception) -> StatementExecutionError:
        logger.error(f"{message}: {error_message(error)}")
        if self.progress:
            self.progress(f"failed: {message}")
        return StatementExecutionError(message, statement=statement)

    def _require_database(self, statement: Statement) -> str:
        if not self.database:
            raise StatementExecutionError("No database selected. Add a 'use <database>;' statement first.", statement=statement)
        return self.database

    def apply(self, script: str) -> ApplyResult:
        statements = parse_script(script)
        total_inserts = sum(1 for statement in statements if isinstance(statement, Insert))
        result = ApplyResult()
        last_reported = 0

        self._info("Start applying instance ...")
        for statement in statements:
            self.execute(statement, result)
            result.statements += 1
            if isinstance(statement, Insert):
                result.inserted += 1
                # Report each time progress advances by PROGRESS_STEP points
                if (result.inserted - last_reported) * 100 >= PROGRESS_STEP * total_inserts:
                    last_reported = result.inserted
                    percent = result.inserted * 100 // total_inserts
                    self._info(f"Inserted {result.inserted} / {total_inserts} samples ({percent}%)")
        self._info(f"Script applied: {result.statements} statement(s), {len(result.warnings)} warning(s)")
        return result

    def execute(self, statement: AnyStatement, result: ApplyResult) -> None:
        if isinstance(statement, UseDb):
            self.database = statement.database
            return

        database = self._require_database(statement)
        if isinstance(statement, CreateCollection):
            try:
                self.source.create_collection(database, statement.collection)
            except IdempotentConflict as e:
                self._warning(f"collection {statement.collection} is not created: {e}", result)
                return
            except Exception as e:
                raise self._fail(f"collection {statement.collection} not created", statement, e) from e
            self._info(f"collection {statement.collection} created")

        elif isinstance(statement, CreateIndex):
            name = statement.index_name
            try:
                self.source.get_collection(database, statement.collection).create_index(statement.keys, statement.options)
            except IdempotentConflict as e:
                self._warning(f"index {name} is not created: {e}", result)
                return
            except Exception as e:
                raise self._fail(f"index {name} not created", statement, e) from e
            self._info(f"index {name} created")

        elif isinstance(statement, Insert):
            try:
                self.source.get_collection(database, statement.collection).insert_one(statement.document)
            except Exception as e:
                raise self._fail(f"sample is not inserted: {error_message(e)}", statement, e) from e
            logger.debug(f"sample inserted into {statement.collection}")

        elif isinstance(statement, RunCommand):
            try:
                self.source.run_command(database, statement.command)
            except IdempotentConflict as e:
                self._warning(f"shard key is not created: {e}", result)
                return
            except Exception as e:
                raise self._fail(f"error of creation sharding: {error_message(e)}", statement, e) from e
            self._info("Create sharding")


def apply_to_instance(
    session: ConnectionSession,
    script: str,
    database: Optional[str],
    progress: Optional[ProgressCallback] = None,
) -> ApplyResult:
    """
    Applies a script through a connection session.

    The database id is mandatory; the session is always closed afterwards.

    Raises:
        ConfigurationError: If no database id is given.
        DatabaseConnectionError: If the connection cannot be opened.
        ScriptParseError: If the script contains an unsupported statement.
        StatementExecutionError: On the first statement that fails.
    """
    if not database:
        raise ConfigurationError(DATABASE_REQUIRED_MESSAGE)
    with session as source:
        return ScriptApplier(source, progress=progress, database=database).apply(script)
