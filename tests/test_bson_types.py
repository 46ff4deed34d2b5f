"""Tests for runtime BSON type dispatch."""

import datetime
import re

import pytest
from bson import Binary, Code, DBRef, Decimal128, Int64, MaxKey, MinKey, ObjectId, Regex, Timestamp

from mongodb_modeler.bson_types import BsonType, NumericMode, bson_type_of, numeric_mode


class TestBsonTypeOf:
    @pytest.mark.parametrize(
        "value, expected",
        [
            (None, BsonType.NULL),
            (True, BsonType.BOOLEAN),
            (1, BsonType.NUMERIC),
            (1.5, BsonType.NUMERIC),
            (Int64(1), BsonType.NUMERIC),
            (Decimal128("1.1"), BsonType.NUMERIC),
            ("x", BsonType.STRING),
            (datetime.datetime(2020, 1, 1), BsonType.DATE),
            (b"\x00", BsonType.BINARY),
            (Binary(b"\x00", 4), BsonType.BINARY),
            (re.compile("a"), BsonType.REGEX),
            (Regex("a", "i"), BsonType.REGEX),
            (ObjectId(), BsonType.OBJECT_ID),
            (DBRef("users", ObjectId()), BsonType.DB_REF),
            (MinKey(), BsonType.MIN_KEY),
            (MaxKey(), BsonType.MAX_KEY),
            (Code("f()"), BsonType.CODE),
            (Code("f()", {"a": 1}), BsonType.CODE_WITH_SCOPE),
            (Timestamp(1, 1), BsonType.TIMESTAMP),
            ([1, 2], BsonType.ARRAY),
            ({"a": 1}, BsonType.OBJECT),
        ],
    )
    def test_dispatch(self, value, expected):
        assert bson_type_of(value) is expected

    def test_unknown_type_raises(self):
        with pytest.raises(TypeError):
            bson_type_of(object())


class TestNumericMode:
    @pytest.mark.parametrize(
        "value, expected",
        [
            (1, NumericMode.INT32),
            (-5, NumericMode.INT32),
            (2.0, NumericMode.INT32),
            (1.5, NumericMode.DOUBLE),
            (2 ** 40, NumericMode.INT64),
            (Int64(3), NumericMode.INT64),
            (Decimal128("1.1"), NumericMode.DECIMAL128),
        ],
    )
    def test_modes(self, value, expected):
        assert numeric_mode(value) is expected

    def test_non_numeric(self):
        assert numeric_mode("1") is None
        assert numeric_mode(True) is None
