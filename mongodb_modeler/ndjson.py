"""
Streaming reader for newline-delimited sample files.

Each non-empty line holds one document in the script literal syntax
(``ObjectId("..")``, ``ISODate("..")`` and friends are allowed). Progress is
reported every 100 lines up to line 1000 and every 1000 lines after that.
"""
import json
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

from .codec import encode, from_annotated
from .exceptions import FileReadError
from .logging_config import get_logger

logger = get_logger(__name__)

ProgressCallback = Callable[[str], None]
PathLike = Union[str, Path]


def should_log_step(line: int) -> bool:
    if line < 1000:
        return line % 100 == 0
    return line % 1000 == 0


def _progress_message(line: int, total: int) -> str:
    ratio = line / total if total else 1
    return f"NDJSON_READ_LINES - lines: {line} / {total}, progress: {ratio}"


def count_lines(path: PathLike) -> int:
    try:
        with open(path, encoding="utf-8") as f:
            return sum(1 for _ in f)
    except (OSError, UnicodeDecodeError) as e:
        raise FileReadError(f"Cannot read sample file '{path}': {e}") from e


def iter_lines(path: PathLike, progress: Optional[ProgressCallback] = None) -> Iterator[str]:
    """Yields the non-empty lines of a file, logging read progress against the total line count."""
    total = count_lines(path)
    line = 0

    def report(message: str) -> None:
        logger.info(message)
        if progress:
            progress(message)

    try:
        with open(path, encoding="utf-8") as f:
            for raw in f:
                line += 1
                if should_log_step(line):
                    report(_progress_message(line, total))
                data = raw.rstrip("\r\n")
                if data:
                    yield data
    except (OSError, UnicodeDecodeError) as e:
        raise FileReadError(f"Cannot read sample file '{path}': {e}") from e
    report(_progress_message(line, total))


def read_ndjson(path: PathLike, progress: Optional[ProgressCallback] = None) -> List[str]:
    """Reads every non-empty line of the file as raw document text."""
    return list(iter_lines(path, progress))


def parse_document(text: str) -> Dict[str, Any]:
    try:
        return from_annotated(json.loads(encode(text)))
    except ValueError as e:
        raise FileReadError(f"Invalid document in sample file: {e}") from e


def load_documents(path: PathLike, progress: Optional[ProgressCallback] = None) -> Iterator[Dict[str, Any]]:
    """Parses each line into a document with BSON values."""
    for text in iter_lines(path, progress):
        yield parse_document(text)
