"""Command-line interface for mongodb-modeler."""

import json
import sys
from pathlib import Path

import click

from . import __version__
from .apply import apply_to_instance
from .codec import to_annotated
from .config import ConnectionSettings, get_settings
from .exceptions import MongoModelerError
from .inference import infer
from .logging_config import get_logger, setup_logging
from .models import GenerateScriptInput, ReverseEngineerInput, SamplingConfig
from .ndjson import load_documents
from .reverse import ReverseEngineer
from .script import generate_script
from .source import ConnectionSession

logger = get_logger(__name__)


def _fail(message: str) -> None:
    logger.error(message)
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def _write(text: str, output: str | None) -> None:
    if output:
        output_path = Path(output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(text, encoding="utf-8")
        click.echo(f"Saved to {output_path}", err=True)
    else:
        click.echo(text)


def _session(uri: str | None) -> ConnectionSession:
    uri = uri or get_settings().mongo_uri
    if not uri:
        _fail("A connection URI is required (--uri or MONGO_MODELER_URI).")
    return ConnectionSession(ConnectionSettings(uri=uri))


@click.group()
@click.version_option(__version__)
@click.option(
    "--log-level",
    default="WARNING",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Set logging level",
)
@click.option("--log-file", default=None, help="Also write the log to this file")
def main(log_level: str, log_file: str | None) -> None:
    """MongoDB Modeler: reverse- and forward-engineer MongoDB schemas."""
    setup_logging(level=log_level.upper(), log_file=log_file, enable_file_logging=bool(log_file))


@main.command(name="infer")
@click.argument("ndjson_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--samples", default=None, type=int, help="Distinct sample values kept per property")
@click.option(
    "--field-order",
    default="field",
    type=click.Choice(["field", "alphabetical"]),
    help="Keep document field order or sort properties",
)
@click.option("--output", "-o", help="Output file path (JSON)")
def infer_command(ndjson_file: str, samples: int | None, field_order: str, output: str | None) -> None:
    """Infer the structural schema of a newline-delimited document file."""
    try:
        schema = infer(load_documents(ndjson_file), max_samples=samples or get_settings().samples_per_property)
    except MongoModelerError as e:
        _fail(str(e))
    _write(json.dumps(schema.to_json_schema(field_order), indent=2, ensure_ascii=False), output)


@main.command(name="generate")
@click.argument("model_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--origin", default="", help="Caller context; 'ui' returns samples as a separate block")
@click.option("--include-samples", is_flag=True, help="With --origin ui, also return the sample inserts")
@click.option("--output", "-o", help="Output file path")
def generate_command(model_file: str, origin: str, include_samples: bool, output: str | None) -> None:
    """Generate a MongoDB script from a model file.

    The model file is JSON with "container", "entities" and optional "options".
    """
    try:
        data = json.loads(Path(model_file).read_text(encoding="utf-8"))
        request = GenerateScriptInput.model_validate(data)
        options = request.options
        if origin:
            options = options.model_copy(update={"origin": origin})
        if include_samples:
            options = options.model_copy(update={"include_samples": True})
        script = generate_script(request.container, request.entities, options)
    except (ValueError, MongoModelerError) as e:
        _fail(f"Cannot generate script from '{model_file}': {e}")

    if isinstance(script, str):
        _write(script, output)
    else:
        _write(json.dumps([block.model_dump() for block in script], indent=2, ensure_ascii=False), output)


@main.command(name="apply")
@click.argument("script_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--uri", help="MongoDB connection URI (defaults to MONGO_MODELER_URI)")
@click.option("--database", required=True, help="Database the script is applied to")
def apply_command(script_file: str, uri: str | None, database: str) -> None:
    """Apply a generated script to a live database."""
    script = Path(script_file).read_text(encoding="utf-8")
    try:
        result = apply_to_instance(_session(uri), script, database, progress=lambda message: click.echo(message, err=True))
    except MongoModelerError as e:
        _fail(str(e))
    click.echo(json.dumps(result.model_dump(), indent=2))


@main.command(name="reverse")
@click.option("--uri", help="MongoDB connection URI (defaults to MONGO_MODELER_URI)")
@click.option("--database", required=True, help="Database to reverse-engineer")
@click.option("--collection", "collections", multiple=True, help="Collection to include (repeatable)")
@click.option("--sample-size", default=1000, type=int, help="Documents sampled per collection")
@click.option("--relative", default=None, type=float, help="Sample this percentage of each collection instead")
@click.option(
    "--field-order",
    default="field",
    type=click.Choice(["field", "alphabetical"]),
    help="Keep document field order or sort properties",
)
@click.option("--include-empty", is_flag=True, help="Emit packages for empty collections")
@click.option("--output", "-o", help="Output file path (JSON)")
def reverse_command(
    uri: str | None,
    database: str,
    collections: tuple[str, ...],
    sample_size: int,
    relative: float | None,
    field_order: str,
    include_empty: bool,
    output: str | None,
) -> None:
    """Reverse-engineer a live database into model packages."""
    settings = get_settings()
    if relative is not None:
        sampling = SamplingConfig(mode="relative", relative_percent=relative, max_cap=settings.max_cap)
    else:
        sampling = SamplingConfig(mode="absolute", absolute_count=sample_size, max_cap=settings.max_cap)
    request = ReverseEngineerInput(
        database=database,
        collection_names=list(collections) or None,
        sampling=sampling,
        field_order=field_order,
        include_empty_collections=include_empty,
    )
    try:
        with _session(uri) as source:
            engineer = ReverseEngineer(source, settings=settings, progress=lambda message: click.echo(message, err=True))
            result = engineer.get_collections_data(request)
    except MongoModelerError as e:
        _fail(str(e))

    _write(json.dumps(to_annotated(result.model_dump(by_alias=True)), indent=2, ensure_ascii=False), output)


if __name__ == "__main__":
    main()
