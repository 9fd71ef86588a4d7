"""
Data models for mapping and structure memory.

A mapping memory accumulates correct and incorrect field mappings for one
source/target schema pair. A structure memory holds the known-good shape of
one code structure plus every incorrect attempt seen so far.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional

from mistake_learning.utils.scoring import clamp


@dataclass
class FieldDefinition:
    name: str
    type: str = "string"
    required: bool = False
    format: Optional[str] = None
    validation: Optional[str] = None
    description: str = ""
    aliases: List[str] = field(default_factory=list)
    common_mistakes: List[str] = field(default_factory=list)


@dataclass
class SchemaDefinition:
    name: str
    type: str = "object"  # "database" | "api" | "object" | "form" | "component"
    version: str = "1.0"
    fields: List[FieldDefinition] = field(default_factory=list)


@dataclass
class MappingExample:
    source_value: Any
    target_value: Any
    context: str = ""
    timestamp: datetime = field(default_factory=datetime.now)
    success: bool = True


@dataclass
class FieldMapping:
    """A source field known to map onto a target field."""

    source_field: str
    target_field: str
    aliases: List[str] = field(default_factory=list)
    transformation: Optional[str] = None
    validation: str = ""
    confidence: float = 70.0
    usage_count: int = 0
    success_rate: float = 100.0
    examples: List[MappingExample] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.confidence = clamp(self.confidence)
        self.success_rate = clamp(self.success_rate)

    def matches(self, source_field: str) -> bool:
        """True if the field is this mapping's source or one of its aliases."""
        return source_field == self.source_field or source_field in self.aliases


@dataclass
class IncorrectMapping:
    """A source -> target mapping that was tried and failed."""

    attempted_source_field: str
    attempted_target_field: str
    reason: str = ""
    error_message: str = ""
    frequency: int = 1
    last_attempted: datetime = field(default_factory=datetime.now)
    consequences: List[str] = field(default_factory=list)


@dataclass
class ContextualRule:
    condition: str
    mapping_adjustment: str
    reasoning: str = ""
    examples: List[str] = field(default_factory=list)
    confidence: float = 50.0


@dataclass
class ValidationRule:
    field_name: str
    rule: str
    error_message: str = ""
    severity: str = "warning"  # "warning" | "error" | "critical"
    auto_fix: Optional[str] = None


@dataclass
class MappingMemory:
    """Mapping knowledge for one `source_to_target` schema pair."""

    id: str
    source_schema: SchemaDefinition
    target_schema: SchemaDefinition
    correct_mappings: List[FieldMapping] = field(default_factory=list)
    incorrect_mappings: List[IncorrectMapping] = field(default_factory=list)
    contextual_rules: List[ContextualRule] = field(default_factory=list)
    validation_rules: List[ValidationRule] = field(default_factory=list)
    last_updated: datetime = field(default_factory=datetime.now)
    success_rate: float = 100.0
    usage_count: int = 0

    def __post_init__(self) -> None:
        self.success_rate = clamp(self.success_rate)

    def find_mapping(self, source_field: str) -> Optional[FieldMapping]:
        for mapping in self.correct_mappings:
            if mapping.matches(source_field):
                return mapping
        return None

    def touch(self, when: Optional[datetime] = None) -> None:
        """Advance last_updated; it never moves backwards."""
        when = when or datetime.now()
        if when > self.last_updated:
            self.last_updated = when

    def recalculate_success_rate(self) -> None:
        """Aggregate reliability from all correct and incorrect evidence."""
        successes = sum(
            m.usage_count * m.success_rate / 100.0 for m in self.correct_mappings
        )
        attempts = sum(m.usage_count for m in self.correct_mappings) + sum(
            m.frequency for m in self.incorrect_mappings
        )
        if attempts == 0:
            return
        self.success_rate = clamp(100.0 * successes / attempts)


@dataclass
class NamingRule:
    context: str
    rule: str
    examples: List[str] = field(default_factory=list)
    reasoning: str = ""


@dataclass
class NamingConvention:
    style: str = "camelCase"  # camelCase | PascalCase | snake_case | kebab-case | UPPER_CASE
    prefix: Optional[str] = None
    suffix: Optional[str] = None
    forbidden_words: List[str] = field(default_factory=list)
    preferred_words: List[str] = field(default_factory=list)
    contextual_rules: List[NamingRule] = field(default_factory=list)


@dataclass
class CodeStructure:
    """Named template for a correct code structure."""

    name: str = ""
    type: str = "function"  # component | function | class | module | config | schema
    template: str = ""
    required_elements: List[str] = field(default_factory=list)
    optional_elements: List[str] = field(default_factory=list)
    ordering: List[str] = field(default_factory=list)
    naming: NamingConvention = field(default_factory=NamingConvention)
    dependencies: List[str] = field(default_factory=list)
    test_pattern: str = ""
    usage_count: int = 0

    @property
    def is_known(self) -> bool:
        """Whether a correct template has actually been registered."""
        return bool(self.template or self.required_elements)


@dataclass
class IncorrectStructure:
    attempted_structure: str
    problems: List[str] = field(default_factory=list)
    corrections: List[str] = field(default_factory=list)
    frequency: int = 1
    impact: str = ""
    last_attempted: datetime = field(default_factory=datetime.now)


@dataclass
class BestPractice:
    practice: str
    reasoning: str = ""
    examples: List[str] = field(default_factory=list)
    benefits: List[str] = field(default_factory=list)
    applicability: List[str] = field(default_factory=list)
    confidence: float = 70.0


@dataclass
class AntiPattern:
    pattern: str
    problems: List[str] = field(default_factory=list)
    alternatives: List[str] = field(default_factory=list)
    detection: List[str] = field(default_factory=list)
    prevention: List[str] = field(default_factory=list)
    severity: float = 50.0


@dataclass
class ContextualGuidance:
    situation: str
    guidance: str
    examples: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    confidence: float = 50.0


@dataclass
class StructureMemory:
    """Structure knowledge for one `{structure_type}_{context}` pattern."""

    id: str
    pattern: str
    correct_structure: CodeStructure = field(default_factory=CodeStructure)
    incorrect_attempts: List[IncorrectStructure] = field(default_factory=list)
    best_practices: List[BestPractice] = field(default_factory=list)
    anti_patterns: List[AntiPattern] = field(default_factory=list)
    contextual_guidance: List[ContextualGuidance] = field(default_factory=list)
    last_updated: datetime = field(default_factory=datetime.now)
    reliability: float = 0.0

    def __post_init__(self) -> None:
        self.reliability = clamp(self.reliability)

    def touch(self, when: Optional[datetime] = None) -> None:
        """Advance last_updated; it never moves backwards."""
        when = when or datetime.now()
        if when > self.last_updated:
            self.last_updated = when

    def recalculate_reliability(self) -> None:
        """Share of observed uses that followed the correct structure."""
        successes = self.correct_structure.usage_count
        failures = sum(a.frequency for a in self.incorrect_attempts)
        if successes + failures == 0:
            return
        self.reliability = clamp(100.0 * successes / (successes + failures))

    @property
    def problems(self) -> List[str]:
        """Flattened problems from every incorrect attempt."""
        return [p for attempt in self.incorrect_attempts for p in attempt.problems]
