"""
Lossless text transform between script literals and tagged JSON strings.

Script text uses literals that JSON cannot hold (``ObjectId("...")``,
``ISODate("...")``, ``/regex/i`` ...). ``encode`` rewrites every such literal
into a JSON string carrying a ``$__<tag>_`` prefix so the text survives
``json.loads``/``json.dumps``; ``decode`` turns the tagged strings back into
script literals. The two are inverses for the supported literal forms.

``to_annotated`` and ``from_annotated`` do the same job at the value level,
between live BSON objects and the tagged JSON form.
"""
import base64
import datetime
import json
import re
from collections.abc import Mapping
from typing import Any, Optional, Tuple

from bson import Binary, Code, DBRef, Decimal128, Int64, MaxKey, MinKey, ObjectId, Regex, Timestamp

from .bson_types import REGEX_TYPES, is_array

OID = "$__oid_"
DATE = "$__date_"
TIMESTAMP = "$__tmstmp_"
CURRENT_TIMESTAMP = "CURRENT_$__tmstmp_"
REGEX = "$__rgxp_"
BINDATA = "$__bindata_"
MAX_KEY = "$__maxKey_"
MIN_KEY = "$__minKey_"
CODE_WITH_SCOPE = "$__jswscope_"
CODE = "$__js_"

_STRING = r'"(?:[^"\\]|\\.)*"'

_ENCODE_PATTERN = re.compile(
    rf"""
      (?P<string>{_STRING})
    | (?<=")(?P<rx_sep>\s*:\s*)/(?P<rx_body>(?:[^/\\\n]|\\.)*)/(?P<rx_flags>[^,\s\]\}}]*)
    | (?:new\s+)?ObjectId\(\s*(?P<oid>{_STRING})\s*\)
    | \{{\s*"\$oid"\s*:\s*(?P<ext_oid>{_STRING})\s*\}}
    | (?:new\s+)?ISODate\(\s*(?P<date>{_STRING})\s*\)
    | \{{\s*"\$date"\s*:\s*(?P<ext_date>{_STRING})\s*\}}
    | (?:new\s+)?Timestamp\((?P<ts>\s*\d+\s*,\s*\d+\s*)\)
    | \{{\s*"\$timestamp"\s*:\s*\{{\s*"t"\s*:\s*(?P<ext_ts_t>\d+)\s*,\s*"i"\s*:\s*(?P<ext_ts_i>\d+)\s*\}}\s*\}}
    | BinData\(\s*(?P<bin_sub>\d*)\s*,\s*(?P<bin_data>{_STRING})\s*\)
    | (?:new\s+)?MinKey\(\s*(?P<min_key>\d*)\s*\)
    | \{{\s*"\$minKey"\s*:\s*(?P<ext_min_key>\d*)\s*\}}
    | (?:new\s+)?MaxKey\(\s*(?P<max_key>\d*)\s*\)
    | \{{\s*"\$maxKey"\s*:\s*(?P<ext_max_key>\d*)\s*\}}
    | (?:new\s+)?Code\(\s*(?P<code>{_STRING})\s*
    | \{{\s*"\$code"\s*:\s*(?P<ext_code>{_STRING})\s*
    """,
    re.VERBOSE,
)

_STRING_PATTERN = re.compile(_STRING)
_SCOPE_KEY_PATTERN = re.compile(r',\s*"\$scope"\s*:\s*')
_CLOSE_PAREN_PATTERN = re.compile(r"\s*\)")
_CLOSE_BRACE_PATTERN = re.compile(r"\s*\}")
_ARGUMENT_SEPARATOR_PATTERN = re.compile(r",\s*")
_BINDATA_TAG_PATTERN = re.compile(r"(\d*)_(.*)", re.DOTALL)

_REGEX_FLAGS = (
    (re.IGNORECASE, "i"),
    (re.LOCALE, "l"),
    (re.MULTILINE, "m"),
    (re.DOTALL, "s"),
    (re.VERBOSE, "x"),
)


def _tag(prefix: str, payload: str) -> str:
    return json.dumps(prefix + payload, ensure_ascii=False)


def _scan_object(text: str, start: int) -> int:
    """Returns the index just past the balanced ``{...}`` starting at ``start``, or -1."""
    depth = 0
    pos = start
    while pos < len(text):
        char = text[pos]
        if char == '"':
            string_match = _STRING_PATTERN.match(text, pos)
            if not string_match:
                return -1
            pos = string_match.end()
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return pos + 1
        pos += 1
    return -1


def _encode_code(text: str, match: re.Match, source_group: str) -> Optional[Tuple[str, int]]:
    """Handles ``Code("src")``/``Code("src", {scope})`` and the ``$code``/``$scope`` document form."""
    source = match.group(source_group)
    pos = match.end()
    is_document = source_group == "ext_code"
    closing = _CLOSE_BRACE_PATTERN if is_document else _CLOSE_PAREN_PATTERN

    end = closing.match(text, pos)
    if end:
        return _tag(CODE, json.loads(source)), end.end()

    separator = (_SCOPE_KEY_PATTERN if is_document else _ARGUMENT_SEPARATOR_PATTERN).match(text, pos)
    if not separator or not text.startswith("{", separator.end()):
        return None
    scope_end = _scan_object(text, separator.end())
    if scope_end < 0:
        return None
    end = closing.match(text, scope_end)
    if not end:
        return None
    scope = text[separator.end():scope_end]
    return _tag(CODE_WITH_SCOPE, f"{source}, {scope}"), end.end()


def _encode_match(text: str, match: re.Match) -> Optional[Tuple[str, int]]:
    """Returns the replacement for one literal and the position where scanning resumes."""
    group = match.lastgroup
    if group == "string":
        return None
    if group in ("rx_flags", "rx_body", "rx_sep"):
        payload = f"/{match.group('rx_body')}/{match.group('rx_flags')}"
        return match.group("rx_sep") + _tag(REGEX, payload), match.end()
    if group in ("oid", "ext_oid"):
        return _tag(OID, json.loads(match.group(group))), match.end()
    if group in ("date", "ext_date"):
        return _tag(DATE, json.loads(match.group(group))), match.end()
    if group == "ts":
        return _tag(TIMESTAMP, match.group("ts")), match.end()
    if group in ("ext_ts_t", "ext_ts_i"):
        return _tag(TIMESTAMP, f"{match.group('ext_ts_t')}, {match.group('ext_ts_i')}"), match.end()
    if group in ("bin_sub", "bin_data"):
        data = json.loads(match.group("bin_data"))
        return _tag(BINDATA, f"{match.group('bin_sub')}_{data}"), match.end()
    if group in ("min_key", "ext_min_key"):
        return _tag(MIN_KEY, match.group(group)), match.end()
    if group in ("max_key", "ext_max_key"):
        return _tag(MAX_KEY, match.group(group)), match.end()
    if group in ("code", "ext_code"):
        return _encode_code(text, match, group)
    return None


def encode(text: str) -> str:
    """
    Rewrites script literals into tagged JSON strings.

    JSON string literals are skipped as a whole, so text that only contains
    plain JSON comes back unchanged.
    """
    parts = []
    pos = 0
    while True:
        match = _ENCODE_PATTERN.search(text, pos)
        if match is None:
            break
        replacement = _encode_match(text, match)
        if replacement is None:
            # Not a literal (or an unbalanced one): keep the text and move on
            end = match.end() if match.lastgroup == "string" else match.start() + 1
            parts.append(text[pos:end])
            pos = end
            continue
        value, end = replacement
        parts.append(text[pos:match.start()])
        parts.append(value)
        pos = end
    parts.append(text[pos:])
    return "".join(parts)


def _decode_tag(value: str) -> Optional[str]:
    if value.startswith(OID):
        return f"ObjectId({json.dumps(value[len(OID):], ensure_ascii=False)})"
    if value.startswith(DATE):
        return f"ISODate({json.dumps(value[len(DATE):], ensure_ascii=False)})"
    if value.startswith(TIMESTAMP):
        return f"Timestamp({value[len(TIMESTAMP):]})"
    if value.startswith(CURRENT_TIMESTAMP):
        return f"Timestamp({value[len(CURRENT_TIMESTAMP):]})"
    if value.startswith(REGEX):
        return value[len(REGEX):]
    if value.startswith(BINDATA):
        bin_match = _BINDATA_TAG_PATTERN.fullmatch(value[len(BINDATA):])
        if bin_match:
            return f'BinData({bin_match.group(1)},{json.dumps(bin_match.group(2))})'
        return None
    if value.startswith(MAX_KEY):
        return f"MaxKey({value[len(MAX_KEY):]})"
    if value.startswith(MIN_KEY):
        return f"MinKey({value[len(MIN_KEY):]})"
    if value.startswith(CODE_WITH_SCOPE):
        return f"Code({value[len(CODE_WITH_SCOPE):]})"
    if value.startswith(CODE):
        return f"Code({json.dumps(value[len(CODE):], ensure_ascii=False)})"
    return None


def _decode_string(match: re.Match) -> str:
    literal = match.group(0)
    if not literal.startswith(('"$__', '"CURRENT_$__')):
        return literal
    decoded = _decode_tag(json.loads(literal))
    return literal if decoded is None else decoded


def decode(text: str) -> str:
    """Turns tagged JSON strings back into the script literals the apply engine understands."""
    return _STRING_PATTERN.sub(_decode_string, text)


def regex_flags(flags: Any) -> str:
    if isinstance(flags, str):
        return flags
    return "".join(letter for flag, letter in _REGEX_FLAGS if flags & flag)


def format_date(value: datetime.datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(datetime.timezone.utc).replace(tzinfo=None)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def to_annotated(value: Any) -> Any:
    """Converts a BSON value tree into plain JSON values with extended types as tagged strings."""
    if isinstance(value, ObjectId):
        return OID + str(value)
    if isinstance(value, datetime.datetime):
        return DATE + format_date(value)
    if isinstance(value, Timestamp):
        return f"{TIMESTAMP}{value.time}, {value.inc}"
    if isinstance(value, REGEX_TYPES):
        return f"{REGEX}/{value.pattern}/{regex_flags(value.flags)}"
    if isinstance(value, Binary):
        return f"{BINDATA}{value.subtype}_{base64.b64encode(bytes(value)).decode('ascii')}"
    if isinstance(value, bytes):
        return f"{BINDATA}0_{base64.b64encode(value).decode('ascii')}"
    if isinstance(value, MinKey):
        return MIN_KEY + "1"
    if isinstance(value, MaxKey):
        return MAX_KEY + "1"
    if isinstance(value, Code):
        if value.scope is not None:
            scope = json.dumps(to_annotated(dict(value.scope)), ensure_ascii=False)
            return f"{CODE_WITH_SCOPE}{json.dumps(str(value), ensure_ascii=False)}, {scope}"
        return CODE + str(value)
    if isinstance(value, Int64):
        return int(value)
    if isinstance(value, Decimal128):
        return float(value.to_decimal())
    if isinstance(value, DBRef):
        return to_annotated(value.as_doc())
    if isinstance(value, Mapping):
        return {key: to_annotated(item) for key, item in value.items()}
    if is_array(value):
        return [to_annotated(item) for item in value]
    return value


def _from_tag(value: str) -> Any:
    if value.startswith(OID):
        return ObjectId(value[len(OID):])
    if value.startswith(DATE):
        return datetime.datetime.fromisoformat(value[len(DATE):].replace("Z", "+00:00"))
    if value.startswith((TIMESTAMP, CURRENT_TIMESTAMP)):
        prefix = TIMESTAMP if value.startswith(TIMESTAMP) else CURRENT_TIMESTAMP
        time, inc = value[len(prefix):].split(",")
        return Timestamp(int(time), int(inc))
    if value.startswith(REGEX):
        pattern, _, flags = value[len(REGEX) + 1:].rpartition("/")
        return Regex(pattern, flags)
    if value.startswith(BINDATA):
        bin_match = _BINDATA_TAG_PATTERN.fullmatch(value[len(BINDATA):])
        if bin_match:
            return Binary(base64.b64decode(bin_match.group(2)), int(bin_match.group(1) or 0))
        return value
    if value.startswith(MIN_KEY):
        return MinKey()
    if value.startswith(MAX_KEY):
        return MaxKey()
    if value.startswith(CODE_WITH_SCOPE):
        source, scope = json.loads(f"[{value[len(CODE_WITH_SCOPE):]}]")
        return Code(source, from_annotated(scope))
    if value.startswith(CODE):
        return Code(value[len(CODE):])
    return value


def from_annotated(value: Any) -> Any:
    """Inverse of ``to_annotated``: rebuilds BSON objects from tagged strings."""
    if isinstance(value, str):
        return _from_tag(value)
    if isinstance(value, Mapping):
        return {key: from_annotated(item) for key, item in value.items()}
    if isinstance(value, list):
        return [from_annotated(item) for item in value]
    return value


def dumps_annotated(document: Any, indent: Optional[int] = 2) -> str:
    return json.dumps(to_annotated(document), indent=indent, ensure_ascii=False)


def to_script_literal(document: Any) -> str:
    """Renders a document (BSON values or already-tagged JSON) as a script literal."""
    return decode(dumps_annotated(document))
