"""Tests for dataclass <-> dict conversion used by persistence."""

import json

from conftest import make_attempt, make_context, make_error

from mistake_learning.models.knowledge import PreventionRule
from mistake_learning.models.memory import MappingExample, MappingMemory, SchemaDefinition, FieldMapping
from mistake_learning.models.records import Environment, MistakeRecord, MistakeType, Severity
from mistake_learning.models.serialization import from_dict, to_dict
from mistake_learning.services.mistake_ledger_service import MistakeLedgerService


class TestToDict:
    def test_enums_and_datetimes_become_primitives(self):
        record = MistakeLedgerService().build_record(make_context(), make_error(), make_attempt())
        data = to_dict(record)
        assert data["type"] == "mapping_error"
        assert data["error_details"]["severity"] == "medium"
        assert isinstance(data["timestamp"], str)
        # Must be JSON serializable as-is
        json.dumps(data)


class TestFromDict:
    def test_record_survives_json(self):
        record = MistakeLedgerService().build_record(
            make_context(environment="production"), make_error(severity="high"), make_attempt()
        )
        restored = from_dict(MistakeRecord, json.loads(json.dumps(to_dict(record))))

        assert restored.id == record.id
        assert restored.timestamp == record.timestamp
        assert restored.type == MistakeType.MAPPING_ERROR
        assert restored.context.environment == Environment.PRODUCTION
        assert restored.error_details.severity == Severity.HIGH
        assert restored.prevention_rule.trigger.conditions[0].value == "map_user_api"
        assert isinstance(restored.prevention_rule, PreventionRule)
        assert restored.dedup_key == record.dedup_key

    def test_nested_lists_of_dataclasses(self):
        memory = MappingMemory(
            id="a_to_b",
            source_schema=SchemaDefinition(name="a"),
            target_schema=SchemaDefinition(name="b"),
            correct_mappings=[
                FieldMapping(
                    source_field="x",
                    target_field="y",
                    examples=[MappingExample(source_value=1, target_value="1")],
                )
            ],
        )
        restored = from_dict(MappingMemory, to_dict(memory))
        assert restored.correct_mappings[0].examples[0].target_value == "1"
        assert restored.correct_mappings[0].examples[0].timestamp == (
            memory.correct_mappings[0].examples[0].timestamp
        )

    def test_unknown_keys_ignored_and_missing_keys_defaulted(self):
        data = {
            "id": "a_to_b",
            "source_schema": {"name": "a"},
            "target_schema": {"name": "b", "legacy": True},
            "obsolete_field": 1,
        }
        memory = from_dict(MappingMemory, data)
        assert memory.target_schema.name == "b"
        assert memory.success_rate == 100
        assert memory.correct_mappings == []


class TestToDictFallbacks:
    def test_sets_become_sorted_lists(self):
        assert to_dict({"tags": {"b", "a"}, "ids": frozenset([3, 1])}) == {
            "tags": ["a", "b"],
            "ids": [1, 3],
        }

    def test_mixed_set_keeps_items(self):
        assert sorted(to_dict({1, "a"}), key=str) == [1, "a"]

    def test_bytes_and_objects(self):
        class Widget:
            def __repr__(self):
                return "<Widget 7>"

        data = to_dict({"raw": b"hi", "widget": Widget(), "n": None, "ok": True})
        assert data == {"raw": "hi", "widget": "<Widget 7>", "n": None, "ok": True}
        json.dumps(data)

    def test_record_with_unencodable_input_data(self):
        record = MistakeLedgerService().build_record(
            make_context(input_data={"tags": {"b", "a"}, "at": object()}),
            make_error(),
            make_attempt(),
        )
        data = json.loads(json.dumps(to_dict(record)))
        assert data["context"]["input_data"]["tags"] == ["a", "b"]
        assert data["context"]["input_data"]["at"].startswith("<object object")
