"""Result shapes returned by the engine's query operations."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from mistake_learning.models.knowledge import PreventionRule
from mistake_learning.models.memory import (
    AntiPattern,
    BestPractice,
    CodeStructure,
    MappingExample,
    NamingConvention,
)
from mistake_learning.utils.scoring import clamp


@dataclass
class PreventionResult:
    """Verdict of a pre-execution check."""

    should_prevent: bool
    confidence: float
    reasoning: str
    rule: Optional[PreventionRule] = None
    alternatives: List[str] = field(default_factory=list)
    historical_evidence: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    auto_fix_code: Optional[str] = None

    def __post_init__(self) -> None:
        self.confidence = clamp(self.confidence)


@dataclass
class CorrectionSuggestion:
    suggestion: str
    confidence: float
    reasoning: str
    steps: List[str] = field(default_factory=list)
    code_example: Optional[str] = None
    avoidance: Optional[str] = None
    related_issues: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.confidence = clamp(self.confidence)


@dataclass
class MappingGuidance:
    suggested_mapping: Optional[str]
    confidence: float
    reasoning: str
    alternatives: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    transformation: Optional[str] = None
    validation: Optional[str] = None
    examples: List[MappingExample] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.confidence = clamp(self.confidence)


@dataclass
class StructureGuidance:
    suggested_structure: Optional[CodeStructure]
    confidence: float
    reasoning: str
    template: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    best_practices: List[BestPractice] = field(default_factory=list)
    anti_patterns: List[AntiPattern] = field(default_factory=list)
    naming_guidance: Optional[NamingConvention] = None

    def __post_init__(self) -> None:
        self.confidence = clamp(self.confidence)


@dataclass
class EffectivenessMetrics:
    total_mistakes_recorded: int
    recurring_mistakes: int
    prevention_effectiveness: float
    rules_generated: int
    mapping_accuracy: float
    structure_reliability: float
    learning_insights: int


@dataclass
class HealthReport:
    status: str
    metrics: EffectivenessMetrics
    mistakes_prevented: int
    average_confidence: float
    validated_patterns: int
    last_updated: datetime = field(default_factory=datetime.now)
