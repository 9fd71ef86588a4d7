"""Tests for the starter knowledge base."""

from mistake_learning.services.knowledge_base import (
    COMMON_STRUCTURES,
    common_rules,
    seed_knowledge_base,
)
from mistake_learning.services.mapping_memory_service import MappingMemoryService
from mistake_learning.services.prevention_rule_service import PreventionRuleService
from mistake_learning.services.structure_memory_service import StructureMemoryService


def seed():
    rules = PreventionRuleService()
    mappings = MappingMemoryService()
    structures = StructureMemoryService()
    seed_knowledge_base(rules, mappings, structures)
    return rules, mappings, structures


def test_common_rules():
    rules = common_rules()
    assert [r.id for r in rules] == [
        "common_incorrect_api_field_mapping",
        "common_missing_required_fields_in_form_validation",
        "common_database_column_name_mismatch",
    ]
    assert all(r.priority == 80 and r.success_rate == 85 for r in rules)
    assert all(r.trigger.conditions == [] for r in rules)


def test_seeded_mappings():
    _, mappings, _ = seed()
    memory = mappings.get("user_api", "user_form")
    assert memory.usage_count == 50
    assert memory.success_rate == 90
    first_name = memory.find_mapping("firstName")
    assert first_name.target_field == "first_name"
    assert first_name.confidence == 95
    assert first_name.usage_count == 10
    assert mappings.get("database_user", "api_response").find_mapping("id").target_field == "userId"


def test_seeded_structures():
    _, _, structures = seed()
    memory = structures.get("react_component")
    assert memory.reliability == 90
    assert memory.correct_structure.naming.style == "PascalCase"
    assert structures.get("api_endpoint").correct_structure.required_elements == ["try", "catch"]


def test_seeding_does_not_share_structures():
    _, _, structures = seed()
    structures.get("react_component").correct_structure.required_elements.append("hooks")
    assert COMMON_STRUCTURES[0].required_elements == ["import React", "export default"]


def test_seeding_twice_keeps_learned_state():
    rules, mappings, structures = seed()
    mappings.record_correct_mapping("user_api", "user_form", "firstName", "first_name")
    usage = mappings.get("user_api", "user_form").find_mapping("firstName").usage_count
    seed_knowledge_base(rules, mappings, structures)
    assert mappings.get("user_api", "user_form").find_mapping("firstName").usage_count == usage
    assert len(rules.rules) == 3
