"""
Built-in starter knowledge.

Seeds common warn rules, field mappings and code structures so a fresh
engine has something to say before any mistake has been recorded. Seeded
rules carry no trigger conditions and therefore never fire until refined.
"""

import copy
from typing import List

from mistake_learning.models.knowledge import (
    PreventionRule,
    RuleAction,
    RuleActionType,
    RuleTrigger,
)
from mistake_learning.models.memory import CodeStructure, NamingConvention
from mistake_learning.services.mapping_memory_service import MappingMemoryService
from mistake_learning.services.mistake_ledger_service import slugify
from mistake_learning.services.prevention_rule_service import PreventionRuleService
from mistake_learning.services.structure_memory_service import StructureMemoryService
from mistake_learning.utils.logger import setup_logger

logger = setup_logger(__name__)

COMMON_MISTAKES = [
    {
        "pattern": "Incorrect API field mapping",
        "prevention": "Always verify field names match API documentation",
        "alternatives": ["Check API docs", "Use schema validation", "Test with sample data"],
    },
    {
        "pattern": "Missing required fields in form validation",
        "prevention": "Cross-reference form fields with backend requirements",
        "alternatives": ["Generate validation from schema", "Use TypeScript interfaces"],
    },
    {
        "pattern": "Database column name mismatch",
        "prevention": "Use ORM field mappings or verify column names",
        "alternatives": ["Use migrations", "Check database schema", "Use descriptive names"],
    },
]

COMMON_MAPPINGS = [
    {
        "source": "user_api",
        "target": "user_form",
        "mappings": [
            ("firstName", "first_name", 95),
            ("lastName", "last_name", 95),
            ("emailAddress", "email", 90),
            ("phoneNumber", "phone", 85),
        ],
    },
    {
        "source": "database_user",
        "target": "api_response",
        "mappings": [
            ("id", "userId", 100),
            ("email", "emailAddress", 95),
            ("created_at", "createdDate", 90),
        ],
    },
]

REACT_COMPONENT_TEMPLATE = """import React from 'react';

interface {ComponentName}Props {
  // Props interface
}

const {ComponentName}: React.FC<{ComponentName}Props> = ({ /* props */ }) => {
  // Component logic

  return (
    // JSX
  );
};

export default {ComponentName};"""

API_ENDPOINT_TEMPLATE = """export async function handle{Method}{Resource}(req: Request, res: Response) {
  try {
    // Validation

    // Business logic

    // Response
    res.json({ success: true, data: result });
  } catch (error) {
    res.status(500).json({ error: error.message });
  }
}"""

COMMON_STRUCTURES = [
    CodeStructure(
        name="react_component",
        type="component",
        template=REACT_COMPONENT_TEMPLATE,
        required_elements=["import React", "export default"],
        optional_elements=["hooks", "helpers"],
        ordering=["imports", "interface", "component", "export"],
        naming=NamingConvention(style="PascalCase"),
    ),
    CodeStructure(
        name="api_endpoint",
        type="function",
        template=API_ENDPOINT_TEMPLATE,
        required_elements=["try", "catch"],
        ordering=["validation", "business logic", "response"],
        naming=NamingConvention(style="camelCase"),
    ),
]

SEEDED_MAPPING_USAGE = 10
SEEDED_MEMORY_USAGE = 50
SEEDED_MEMORY_SUCCESS_RATE = 90.0
SEEDED_STRUCTURE_RELIABILITY = 90.0


def common_rules() -> List[PreventionRule]:
    rules = []
    for item in COMMON_MISTAKES:
        rules.append(
            PreventionRule(
                id=f"common_{slugify(item['pattern'])}",
                name=item["pattern"],
                description=item["prevention"],
                trigger=RuleTrigger(conditions=[], logic_operator="OR", minimum_confidence=70),
                action=RuleAction(
                    type=RuleActionType.WARN,
                    message=item["prevention"],
                    alternatives=list(item["alternatives"]),
                    confidence=80,
                ),
                priority=80,
                enabled=True,
                success_rate=85,
                false_positive_rate=15,
            )
        )
    return rules


def seed_knowledge_base(
    rules: PreventionRuleService,
    mappings: MappingMemoryService,
    structures: StructureMemoryService,
) -> None:
    """Load starter rules and memories. Existing entries are not overwritten."""
    for rule in common_rules():
        if rules.get(rule.id) is None:
            rules.add(rule)

    for item in COMMON_MAPPINGS:
        if mappings.get(item["source"], item["target"]) is not None:
            continue
        for source_field, target_field, confidence in item["mappings"]:
            mapping = mappings.record_correct_mapping(
                item["source"],
                item["target"],
                source_field,
                target_field,
                confidence=confidence,
                usage_count=SEEDED_MAPPING_USAGE,
            )
            mapping.success_rate = float(confidence)
        memory = mappings.get(item["source"], item["target"])
        memory.usage_count = SEEDED_MEMORY_USAGE
        memory.success_rate = SEEDED_MEMORY_SUCCESS_RATE

    for structure in COMMON_STRUCTURES:
        if structures.get(structure.name) is not None:
            continue
        structures.register_structure(
            structure.name,
            copy.deepcopy(structure),
            reliability=SEEDED_STRUCTURE_RELIABILITY,
        )

    logger.info("Knowledge base loaded with common patterns")
