"""Tests for index descriptor translation."""

import pytest

from mongodb_modeler.indexes import (
    create_index,
    from_native,
    split_native_indexes,
    to_statements,
    ttl_settings,
)
from mongodb_modeler.models import IndexDescriptor, IndexKey, UniqueKey


NATIVE_INDEXES = [
    {"v": 2, "key": {"_id": 1}, "name": "_id_"},
    {"v": 2, "key": {"a": 1, "b": -1}, "name": "a_1_b_-1", "sparse": True},
    {"v": 2, "key": {"loc": "2dsphere"}, "name": "loc_2dsphere", "2dsphereIndexVersion": 3},
    {"v": 2, "key": {"meta.$**": 1}, "name": "meta_wildcard"},
]


class TestFromNative:
    def test_primary_key_index_is_dropped(self):
        names = [descriptor.name for descriptor in from_native(NATIVE_INDEXES)]
        assert names == ["a_1_b_-1", "loc_2dsphere", "meta_wildcard"]

    def test_key_directions(self):
        compound, geo, wildcard = from_native(NATIVE_INDEXES)
        assert compound.keys == (IndexKey(name="a", type="ascending"), IndexKey(name="b", type="descending"))
        assert compound.sparse is True
        assert compound.index_type == "Compound"
        assert geo.keys == (IndexKey(name="loc", type="2dsphere"),)
        assert geo.geo_version == 3
        assert wildcard.keys == (IndexKey(name="meta", type="ascending"),)
        assert wildcard.index_type == "Wildcard"

    def test_ttl_and_unique_flags(self):
        (descriptor,) = from_native([{"key": {"_ts": 1}, "name": "ttl", "expireAfterSeconds": 60, "unique": True}])
        assert descriptor.expire_after_seconds == 60
        assert descriptor.unique is True

    def test_descriptors_are_immutable(self):
        (descriptor,) = from_native(NATIVE_INDEXES[1:2])
        with pytest.raises(Exception):
            descriptor.name = "other"


class TestSplitNativeIndexes:
    def test_split(self):
        native = NATIVE_INDEXES + [
            {"key": {"tenant": 1, "email": 1}, "name": "uniq", "unique": True},
            {"key": {"_ts": 1}, "name": "ttl", "expireAfterSeconds": -1},
            {"key": {"DocumentDBDefaultIndex": 1}, "name": "DocumentDBDefaultIndex"},
        ]
        split = split_native_indexes(native, shard_key="tenant")

        assert [unique_key.attribute_path for unique_key in split.unique_keys] == [["email"]]
        assert split.ttl_index.name == "ttl"
        assert [index.name for index in split.indexes] == ["a_1_b_-1", "loc_2dsphere", "meta_wildcard"]

    def test_ttl_settings(self):
        assert ttl_settings(None) == {"TTL": "Off"}
        on = IndexDescriptor(name="ttl", keys=[IndexKey(name="_ts")], expire_after_seconds=3600)
        assert ttl_settings(on) == {"TTL": "On", "TTLseconds": 3600}
        no_default = IndexDescriptor(name="ttl", keys=[IndexKey(name="_ts")], expire_after_seconds=-1)
        assert ttl_settings(no_default) == {"TTL": "On (no default)", "TTLseconds": -1}


class TestToStatements:
    def test_statement_order_and_format(self):
        statements = to_statements(
            "users",
            [
                IndexDescriptor(name="a_1", keys=[IndexKey(name="a")]),
                IndexDescriptor(name="skipped", keys=[IndexKey(name="b")], is_activated=False),
            ],
            unique_keys=[UniqueKey(attribute_path=["email"])],
            shard_key="tenant",
            ttl="On",
            ttl_seconds=3600,
        )

        assert statements == [
            'db.getCollection("users").createIndex({\n  "tenant": 1,\n  "email": 1\n}, {\n  "unique": true\n});',
            'db.getCollection("users").createIndex({\n  "a": 1\n}, {\n  "name": "a_1"\n});',
            'db.getCollection("users").createIndex({\n  "_ts": 1\n}, {\n  "name": "ttl",\n  "expireAfterSeconds": 3600\n});',
        ]

    def test_ttl_without_default(self):
        (statement,) = to_statements("c", [], ttl="On (no default)")
        assert '"expireAfterSeconds": -1' in statement

    def test_ttl_off(self):
        assert to_statements("c", [], ttl="Off", ttl_seconds=10) == []

    def test_index_without_keys_is_skipped(self):
        assert to_statements("c", [IndexDescriptor(name="empty")]) == []

    def test_descending_and_geo_options(self):
        statement = create_index(
            IndexDescriptor(
                name="geo",
                keys=[IndexKey(name="loc", type="2dsphere"), IndexKey(name="at", type="descending")],
                sparse=True,
                geo_version=3,
            )
        )
        assert statement == (
            'createIndex({\n  "loc": "2dsphere",\n  "at": -1\n}, '
            '{\n  "name": "geo",\n  "sparse": true,\n  "2dsphereIndexVersion": 3\n});'
        )

    def test_unique_key_without_shard_key(self):
        (statement,) = to_statements("c", [], unique_keys=[UniqueKey(attribute_path=[{"name": "sku"}])])
        assert statement == 'db.getCollection("c").createIndex({\n  "sku": 1\n}, {\n  "unique": true\n});'

    def test_model_aliases(self):
        descriptor = IndexDescriptor.model_validate(
            {"name": "x", "indexKey": [{"name": "a", "type": "descending"}], "isActivated": True}
        )
        (statement,) = to_statements("c", [descriptor])
        assert '"a": -1' in statement
