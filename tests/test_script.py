"""Tests for script generation."""

import pytest
from bson import ObjectId

from mongodb_modeler.exceptions import ScriptParseError
from mongodb_modeler.models import (
    ContainerModel,
    EntityModel,
    IndexDescriptor,
    IndexKey,
    ScriptBlock,
    ScriptOptions,
)
from mongodb_modeler.script import comment_out, generate_entity_script, generate_script, sample_literal

OID = "5f1b2c3d4e5f6a7b8c9d0e1f"


@pytest.fixture
def container():
    return ContainerModel(name="shop")


@pytest.fixture
def orders():
    return EntityModel(
        name="orders",
        indexes=[IndexDescriptor(name="qty_1", keys=[IndexKey(name="qty")])],
        samples=[{"_id": ObjectId(OID), "qty": 1}],
    )


EXPECTED_ORDERS_SCRIPT = (
    'use shop;\n\n'
    'db.createCollection("orders");\n\n'
    'db.getCollection("orders").createIndex({\n  "qty": 1\n}, {\n  "name": "qty_1"\n});'
)

EXPECTED_ORDERS_SAMPLES = (
    'use shop;\n\n'
    f'db.getCollection("orders").insert({{\n  "_id": ObjectId("{OID}"),\n  "qty": 1\n}});'
)


class TestGenerateScript:
    def test_bundles_samples_outside_ui(self, container, orders):
        script = generate_script(container, [orders])
        assert script == EXPECTED_ORDERS_SCRIPT + "\n\n" + EXPECTED_ORDERS_SAMPLES

    def test_ui_without_samples(self, container, orders):
        script = generate_script(container, [orders], ScriptOptions(origin="ui"))
        assert script == EXPECTED_ORDERS_SCRIPT

    def test_ui_with_samples_returns_two_blocks(self, container, orders):
        blocks = generate_script(container, [orders], ScriptOptions(origin="ui", include_samples=True))
        assert blocks == [
            ScriptBlock(title="MongoDB script", script=EXPECTED_ORDERS_SCRIPT),
            ScriptBlock(title="Sample data", script=EXPECTED_ORDERS_SAMPLES),
        ]

    def test_shard_key_commands_come_first(self, orders):
        container = ContainerModel(name="shop", shard_key="tenantId")
        script = generate_script(container, [orders, EntityModel(name="users")], ScriptOptions(origin="ui"))
        assert script.startswith(
            'use admin;\n'
            'db.runCommand({"shardCollection": "shop.orders", "key": {"tenantId": "hashed"}});\n'
            'db.runCommand({"shardCollection": "shop.users", "key": {"tenantId": "hashed"}});\n\n'
            'use shop;'
        )

    def test_shard_key_from_model_record(self):
        container = ContainerModel.model_validate({"dbId": "shop", "shardKey": [{"name": "region"}]})
        assert container.shard_key == "region"

    def test_inactive_entity_is_commented_out(self, container, orders):
        inactive = orders.model_copy(update={"is_activated": False})
        script = generate_script(container, [inactive], ScriptOptions(origin="ui"))
        body = EXPECTED_ORDERS_SCRIPT[len("use shop;\n\n"):]
        commented = script[len("use shop;\n\n"):].split("\n")
        assert all(line == "//" or line.startswith("// ") for line in commented)
        assert "\n".join(line[3:] for line in commented) == body

    def test_inactive_entity_samples_are_commented_out(self, container, orders):
        inactive = orders.model_copy(update={"is_activated": False})
        script = generate_script(container, [inactive])
        assert script.endswith(
            f'// db.getCollection("orders").insert({{\n//   "_id": ObjectId("{OID}"),\n//   "qty": 1\n// }});'
        )

    def test_comment_out(self):
        assert comment_out('db.createCollection("a");\n\nuse b;') == '// db.createCollection("a");\n//\n// use b;'

    def test_no_samples(self, container):
        script = generate_script(container, [EntityModel(name="empty")])
        assert script == 'use shop;\n\ndb.createCollection("empty");'

    def test_entity_code_is_the_collection_name(self, container):
        script = generate_script(container, [EntityModel(name="Orders", code="orders_v2")], ScriptOptions(origin="ui"))
        assert 'db.createCollection("orders_v2");' in script

    def test_ttl_index(self, orders):
        container = ContainerModel.model_validate({"dbId": "shop", "TTL": "On", "TTLseconds": 60})
        script = generate_script(container, [orders], ScriptOptions(origin="ui"))
        assert script.endswith(
            'db.getCollection("orders").createIndex({\n  "_ts": 1\n}, {\n  "name": "ttl",\n  "expireAfterSeconds": 60\n});'
        )

    def test_entity_script(self, container, orders):
        assert generate_entity_script(container, orders) == (
            EXPECTED_ORDERS_SCRIPT + "\n\n" + EXPECTED_ORDERS_SAMPLES[len("use shop;\n\n"):]
        )


class TestSampleLiteral:
    def test_document_kind_field_is_injected(self, orders):
        container = ContainerModel(name="shop", doc_type_name="kind")
        literal = sample_literal({"qty": 2}, container, orders)
        assert literal == '{\n  "qty": 2,\n  "kind": "orders"\n}'

    def test_text_sample(self, container, orders):
        literal = sample_literal('{"at": ISODate("2020-01-01T00:00:00.000Z"), "r": /a/i}', container, orders)
        assert literal == '{\n  "at": ISODate("2020-01-01T00:00:00.000Z"),\n  "r": /a/i\n}'

    def test_invalid_text_sample(self, container, orders):
        with pytest.raises(ScriptParseError):
            sample_literal("{not json", container, orders)
