"""Tests for reverse-engineering against an in-memory document source."""

import datetime

import pytest
from bson import Int64, ObjectId

from mongodb_modeler.exceptions import DatabaseConnectionError
from mongodb_modeler.models import ReverseEngineerInput, SamplingConfig
from mongodb_modeler.reverse import CollectionKinds, ReverseEngineer

OWNER = ObjectId("5f1b2c3d4e5f6a7b8c9d0e1f")
AT = datetime.datetime(2020, 1, 1)


@pytest.fixture
def shop_source(make_source):
    return make_source(
        data={
            "shop": {
                "orders": [
                    {"_id": ObjectId(), "type": "a", "owner": OWNER, "at": AT},
                    {"_id": ObjectId(), "type": "b", "qty": Int64(5)},
                ],
                "system.views": [{"viewOn": "orders"}],
                "empty": [],
            }
        },
        indexes={
            ("shop", "orders"): [
                {"name": "_id_", "key": {"_id": 1}},
                {"name": "type_1", "key": {"type": 1}},
                {"name": "ttl", "key": {"_ts": 1}, "expireAfterSeconds": 100},
                {"name": "tenant_sku", "key": {"tenant": 1, "sku": 1}, "unique": True},
            ]
        },
        shard_keys={("shop", "orders"): "tenant"},
    )


@pytest.fixture
def engineer(shop_source, settings):
    return ReverseEngineer(shop_source, settings=settings)


class TestCollections:
    def test_system_collections_are_hidden(self, engineer):
        assert engineer.get_collection_names("shop") == ["orders", "empty"]
        assert engineer.get_collection_names("shop", include_system=True) == ["orders", "system.views", "empty"]

    def test_databases(self, engineer):
        assert engineer.get_databases() == ["shop"]

    def test_fetch_documents_uses_sample_size_and_timeout(self, engineer, shop_source):
        documents = engineer.fetch_documents("shop", "orders", SamplingConfig(absolute_count=1))
        assert len(documents) == 1
        assert shop_source.sample_calls == [{"collection": "orders", "limit": 1, "max_time_ms": 120000}]

    def test_empty_collection_is_not_sampled(self, engineer, shop_source):
        assert engineer.fetch_documents("shop", "empty", SamplingConfig()) == []
        assert shop_source.sample_calls == []


class TestBucketInfo:
    def test_indexes_are_split(self, engineer):
        info = engineer.bucket_info("shop", "orders")

        assert info["shardKey"] == "tenant"
        assert info["uniqueKey"] == [{"attributePath": ["sku"]}]
        assert [index["name"] for index in info["indexes"]] == ["type_1"]
        assert info["TTL"] == "On"
        assert info["TTLseconds"] == 100
        assert info["dbId"] == "shop"

    def test_lookup_failure_keeps_database_id(self, engineer, shop_source, monkeypatch):
        def broken(db_name, collection_name):
            raise RuntimeError("listIndexes failed")

        monkeypatch.setattr(shop_source, "list_indexes", broken)
        messages = []
        engineer.progress = messages.append

        info = engineer.bucket_info("shop", "orders")
        assert info == {"shardKey": "tenant", "dbId": "shop"}
        assert messages == ["[shop.orders] Error of getting collection data. listIndexes failed"]


class TestGetCollectionsData:
    def test_single_entity_per_collection(self, engineer):
        result = engineer.get_collections_data(ReverseEngineerInput(database="shop"))

        assert result.errors == []
        assert result.model_info == {"apiExperience": "Mongo API", "version": "6.0.0"}
        (package,) = result.packages
        assert package.db_name == "orders"
        assert package.collection_name == "orders"
        assert package.doc_type == "orders"
        assert package.documents == [
            {"type": "a", "owner": f'ObjectId("{OWNER}")', "at": "2020-01-01T00:00:00.000Z"},
            {"type": "b", "qty": 1},
        ]
        assert package.validation == {
            "jsonSchema": {"properties": {"owner": {"type": "objectId"}, "at": {"type": "date"}}}
        }
        assert package.document_template == {
            "type": "a",
            "owner": f"$__oid_{OWNER}",
            "at": "$__date_2020-01-01T00:00:00.000Z",
        }
        assert package.relationship_candidates == [{"owner": f"$__oid_{OWNER}"}, {}]
        assert package.inferred_schema["#docs"] == 2
        assert package.inferred_schema["properties"]["type"]["samples"] == ["a", "b"]

    def test_alphabetical_order_has_no_template(self, engineer):
        request = ReverseEngineerInput(database="shop", collection_names=["orders"], field_order="alphabetical")
        (package,) = engineer.get_collections_data(request).packages
        assert package.document_template is None
        assert list(package.inferred_schema["properties"]) == ["at", "owner", "qty", "type"]

    def test_empty_collections_on_request(self, engineer):
        request = ReverseEngineerInput(database="shop", include_empty_collections=True)
        packages = engineer.get_collections_data(request).packages
        assert [package.db_name for package in packages] == ["orders", "empty"]
        assert packages[1].documents == []

    def test_split_by_document_kind(self, engineer):
        request = ReverseEngineerInput(database="shop", collection_names=["orders"])
        result = engineer.get_collections_data(
            request,
            document_kinds={"orders": "type"},
            kind_values={"orders": ["a", "b", "c"]},
        )
        assert [package.collection_name for package in result.packages] == ["a", "b"]
        assert all(package.doc_type == "type" for package in result.packages)
        assert result.packages[1].documents == [{"type": "b", "qty": 1}]

    def test_kind_field_without_values(self, engineer):
        request = ReverseEngineerInput(database="shop", collection_names=["orders"], include_empty_collections=True)
        (package,) = engineer.get_collections_data(request, document_kinds={"orders": "type"}).packages
        assert package.empty_bucket is True
        assert package.validation is None
        assert package.bucket_info["dbId"] == "shop"

    def test_permission_denied_is_isolated(self, shop_source, settings):
        shop_source.denied = {("shop", "orders")}
        shop_source.data["shop"]["other"] = [{"x": 1}]
        result = ReverseEngineer(shop_source, settings=settings).get_collections_data(ReverseEngineerInput(database="shop"))

        assert [package.db_name for package in result.packages] == ["other"]
        (error,) = result.errors
        assert error["collection"] == "orders"
        assert "Not authorized" in error["message"]
        assert "PermissionDeniedError" in error["stack"]

    def test_lost_connection_stops_the_run(self, engineer, shop_source, monkeypatch):
        def disconnected(db_name, collection_name):
            raise DatabaseConnectionError("connection closed")

        monkeypatch.setattr(shop_source, "count", disconnected)
        with pytest.raises(DatabaseConnectionError):
            engineer.get_collections_data(ReverseEngineerInput(database="shop"))

    def test_progress_messages(self, shop_source, settings):
        messages = []
        engineer = ReverseEngineer(shop_source, settings=settings, progress=messages.append)
        engineer.get_collections_data(ReverseEngineerInput(database="shop", collection_names=["orders"]))
        assert messages == [
            "[shop.orders] Collection data loading ...",
            "[shop.orders] Collection data has loaded",
            "[shop.orders] Loading documents...",
            "[shop.orders] Documents have loaded",
        ]


class TestDocumentKinds:
    def test_suggestion(self, engineer):
        suggestions = engineer.get_document_kinds("shop")
        assert suggestions["orders"].document_kind == "type"
        assert suggestions["empty"].document_kind == ""

    def test_collection_kinds(self, engineer):
        kinds = engineer.get_collection_kinds("shop", {"orders": "type"})
        assert kinds == [
            CollectionKinds(db_name="orders", db_collections=["a", "b"], is_empty=False),
            CollectionKinds(db_name="empty", db_collections=[], is_empty=True),
        ]
