"""
Forward engineering: renders a container model and its entities as a script.

Statement order is fixed: shard-key commands against ``admin``, the ``use``
statement for the working database, then per collection its
``createCollection`` and index statements, and finally the sample inserts.
Statements are separated by blank lines and every one of them is a complete
program fragment, since the apply engine runs the whole script at once.
"""
import json
from collections.abc import Mapping
from typing import Any, List, Optional, Sequence, Union

from .codec import decode, encode, to_annotated
from .exceptions import ScriptParseError
from .indexes import collection_handle, to_statements
from .logging_config import get_logger
from .models import ContainerModel, EntityModel, ScriptBlock, ScriptOptions

logger = get_logger(__name__)

SCRIPT_TITLE = "MongoDB script"
SAMPLES_TITLE = "Sample data"
STATEMENT_SEPARATOR = "\n\n"


def comment_out(block: str) -> str:
    """Line comments on every line, so a ``*/`` inside a sample cannot end the block."""
    return "\n".join(f"// {line}" if line else "//" for line in block.split("\n"))


def _join(parts: Sequence[str]) -> str:
    return STATEMENT_SEPARATOR.join(part for part in parts if part)


def use_db_statement(container: ContainerModel) -> str:
    return f"use {container.name};" if container.name else ""


def shard_key_statement(container: ContainerModel, entities: Sequence[EntityModel]) -> str:
    """``shardCollection`` commands, run from ``admin``; empty without a shard key."""
    if not container.shard_key or not entities:
        return ""
    commands = []
    for entity in entities:
        command = {
            "shardCollection": f"{container.name}.{entity.collection_name}",
            "key": {container.shard_key: "hashed"},
        }
        commands.append(f"db.runCommand({json.dumps(command, ensure_ascii=False)});")
    return "use admin;\n" + "\n".join(commands)


def entity_script(container: ContainerModel, entity: EntityModel) -> str:
    """Collection creation plus index statements; commented out when the entity is not activated."""
    name = entity.collection_name
    statements = [f"db.createCollection({json.dumps(name, ensure_ascii=False)});"]
    statements.extend(
        to_statements(
            name,
            entity.indexes,
            unique_keys=entity.unique_keys,
            shard_key=container.shard_key,
            ttl=container.ttl,
            ttl_seconds=container.ttl_seconds,
        )
    )
    script = _join(statements)
    return script if entity.is_activated else comment_out(script)


def _sample_to_annotated(sample: Any, entity: EntityModel) -> Any:
    if isinstance(sample, str):
        try:
            return json.loads(encode(sample))
        except ValueError as e:
            raise ScriptParseError(f"Sample for collection '{entity.collection_name}' is not a valid document: {e}") from e
    return to_annotated(sample)


def sample_literal(sample: Any, container: ContainerModel, entity: EntityModel) -> str:
    """
    Renders one sample document as a script literal.

    The sample goes through the codec's encoded form (injecting the document
    kind field when the container defines one) and back through ``decode``.
    """
    data = _sample_to_annotated(sample, entity)
    if container.doc_type_name and isinstance(data, Mapping):
        data = {**data, container.doc_type_name: entity.collection_name}
    return decode(json.dumps(data, indent=2, ensure_ascii=False))


def insert_statements(container: ContainerModel, entity: EntityModel) -> str:
    handle = collection_handle(entity.collection_name)
    inserts = _join([
        f"{handle}.insert({sample_literal(sample, container, entity)});"
        for sample in entity.samples
    ])
    if inserts and not entity.is_activated:
        return comment_out(inserts)
    return inserts


def samples_script(container: ContainerModel, entities: Sequence[EntityModel]) -> str:
    inserts = _join([insert_statements(container, entity) for entity in entities])
    if not inserts:
        return ""
    return _join([use_db_statement(container), inserts])


def generate_script(
    container: ContainerModel,
    entities: Sequence[EntityModel],
    options: Optional[ScriptOptions] = None,
) -> Union[str, List[ScriptBlock]]:
    """
    Generates the script for a database and its collections.

    Args:
        container: Database-level settings.
        entities: Collections, emitted in the given order.
        options: Caller context. Outside the interactive UI the sample inserts
            are appended to the script; in the UI they are returned as a
            separate ``Sample data`` block when ``include_samples`` is set and
            left out otherwise.

    Returns:
        Union[str, List[ScriptBlock]]: The script, or the script and sample blocks.
    """
    options = options or ScriptOptions()
    logger.info(f"Generating script for database '{container.name}' with {len(entities)} collection(s)")

    script = _join(
        [shard_key_statement(container, entities), use_db_statement(container)]
        + [entity_script(container, entity) for entity in entities]
    )
    samples = samples_script(container, entities)

    with_samples = options.origin != "ui"
    if with_samples:
        return _join([script, samples])
    if not options.include_samples:
        return script
    return [
        ScriptBlock(title=SCRIPT_TITLE, script=script),
        ScriptBlock(title=SAMPLES_TITLE, script=samples),
    ]


def generate_entity_script(container: ContainerModel, entity: EntityModel) -> str:
    """Script for a single collection followed by its sample inserts."""
    return _join([
        shard_key_statement(container, [entity]),
        use_db_statement(container),
        entity_script(container, entity),
        insert_statements(container, entity),
    ])
