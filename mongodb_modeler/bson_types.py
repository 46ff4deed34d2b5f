import datetime
import re
from collections.abc import Mapping, Sequence
from enum import Enum
from typing import Any, Optional

from bson import Binary, Code, DBRef, Decimal128, Int64, MaxKey, MinKey, ObjectId, Regex, Timestamp

# Magnitude above which a plain number is treated as a 64-bit integer
INT32_LIMIT = 2 ** 32


class BsonType(str, Enum):
    """Closed set of value types a sample document may hold, named as the model expects them."""
    NULL = "null"
    BOOLEAN = "boolean"
    NUMERIC = "numeric"
    STRING = "string"
    DATE = "date"
    BINARY = "binary"
    REGEX = "regex"
    OBJECT_ID = "objectId"
    DB_REF = "dbRef"
    MIN_KEY = "minKey"
    MAX_KEY = "maxKey"
    CODE = "JavaScript"
    CODE_WITH_SCOPE = "JavaScript(w/scope)"
    TIMESTAMP = "timestamp"
    ARRAY = "array"
    OBJECT = "object"


class NumericMode(str, Enum):
    INT32 = "int32"
    INT64 = "integer64"
    DOUBLE = "double"
    DECIMAL128 = "decimal128"


REGEX_TYPES = (re.Pattern, Regex)


def is_array(value: Any) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray))


def bson_type_of(value: Any) -> BsonType:
    """Maps a runtime value to its BsonType. Order matters: bool is an int, DBRef is not a mapping."""
    if value is None: return BsonType.NULL
    if isinstance(value, bool): return BsonType.BOOLEAN
    if isinstance(value, (Int64, int, float, Decimal128)): return BsonType.NUMERIC
    # Code subclasses str
    if isinstance(value, Code):
        return BsonType.CODE_WITH_SCOPE if value.scope is not None else BsonType.CODE
    if isinstance(value, str): return BsonType.STRING
    if isinstance(value, datetime.datetime): return BsonType.DATE
    if isinstance(value, (bytes, Binary)): return BsonType.BINARY
    if isinstance(value, REGEX_TYPES): return BsonType.REGEX
    if isinstance(value, ObjectId): return BsonType.OBJECT_ID
    if isinstance(value, DBRef): return BsonType.DB_REF
    if isinstance(value, MinKey): return BsonType.MIN_KEY
    if isinstance(value, MaxKey): return BsonType.MAX_KEY
    if isinstance(value, Timestamp): return BsonType.TIMESTAMP
    if is_array(value): return BsonType.ARRAY
    if isinstance(value, Mapping): return BsonType.OBJECT
    raise TypeError(f"Unsupported document value type: {type(value).__name__}")


def numeric_mode(value: Any) -> Optional[NumericMode]:
    """
    Disambiguates numbers the way the model does.

    A wrapped long is 64-bit, a number with a fractional part is a double,
    anything whose magnitude is below 2**32 is a 32-bit integer and the rest
    is 64-bit. Returns None for non-numeric values.
    """
    if bson_type_of(value) is not BsonType.NUMERIC:
        return None
    if isinstance(value, Int64):
        return NumericMode.INT64
    if isinstance(value, Decimal128):
        return NumericMode.DECIMAL128
    if isinstance(value, float) and not value.is_integer():
        return NumericMode.DOUBLE
    if abs(value) < INT32_LIMIT:
        return NumericMode.INT32
    return NumericMode.INT64
