"""
Data models for learned knowledge.

Learning patterns abstract a mistake into something reusable, prevention
rules turn patterns into trigger/action pairs, and insights capture
cross-record observations from the background learning loop.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from mistake_learning.utils.scoring import clamp


class RuleActionType(Enum):
    """What a matching prevention rule asks the caller to do."""

    PREVENT = "prevent"
    WARN = "warn"
    SUGGEST_ALTERNATIVE = "suggest_alternative"
    REQUEST_CONFIRMATION = "request_confirmation"
    AUTO_FIX = "auto_fix"


class InsightType(Enum):
    PATTERN_DISCOVERY = "pattern_discovery"
    CORRELATION_FOUND = "correlation_found"
    RULE_REFINEMENT = "rule_refinement"
    EXCEPTION_IDENTIFIED = "exception_identified"


class ValidationMethod(Enum):
    STATISTICAL = "statistical"
    EXPERIMENTAL = "experimental"
    PEER_REVIEW = "peer_review"
    DOMAIN_EXPERT = "domain_expert"


class ValidationResult(Enum):
    CONFIRMED = "confirmed"
    REFUTED = "refuted"
    INCONCLUSIVE = "inconclusive"
    PENDING = "pending"


@dataclass
class PatternCondition:
    """A weighted condition under which a learning pattern applies."""

    condition: str
    operator: str  # "equals" | "contains" | "matches" | "greater_than" | "less_than"
    value: Any
    weight: float = 50.0  # 0-100

    def __post_init__(self) -> None:
        self.weight = clamp(self.weight)


@dataclass
class LearningPattern:
    """Abstracted, reusable description of a mistake."""

    id: str
    pattern: str
    abstraction: str = ""
    applicability: List[str] = field(default_factory=list)
    conditions: List[PatternCondition] = field(default_factory=list)
    warning_signals: List[str] = field(default_factory=list)
    prevention_techniques: List[str] = field(default_factory=list)
    related_patterns: List[str] = field(default_factory=list)
    confidence: float = 75.0
    evidence_count: int = 0
    successful_outcomes: int = 0
    validated: bool = False

    def __post_init__(self) -> None:
        self.confidence = clamp(self.confidence)

    @property
    def success_rate(self) -> float:
        """Fraction of evidence whose outcome was successful."""
        if self.evidence_count == 0:
            return 0.0
        return self.successful_outcomes / self.evidence_count

    def add_evidence(self, success: bool) -> None:
        """Record one observed outcome for this pattern."""
        self.evidence_count += 1
        if success:
            self.successful_outcomes += 1


@dataclass
class TriggerCondition:
    """One weighted predicate of a rule trigger."""

    field: str
    operator: str
    value: Any
    weight: float = 50.0


@dataclass
class RuleTrigger:
    """Conditions combined by a logic operator, gated by confidence."""

    conditions: List[TriggerCondition] = field(default_factory=list)
    logic_operator: str = "AND"  # "AND" | "OR" | "NOT"
    minimum_confidence: float = 70.0


@dataclass
class RuleAction:
    """What to tell the caller when a rule fires."""

    type: RuleActionType
    message: str
    alternatives: List[str] = field(default_factory=list)
    auto_fix_code: Optional[str] = None
    documentation: Optional[str] = None
    confidence: float = 80.0

    def __post_init__(self) -> None:
        if not isinstance(self.type, RuleActionType):
            self.type = RuleActionType(self.type)
        self.confidence = clamp(self.confidence)


@dataclass
class PreventionRule:
    """A trigger/action pair derived from one or more mistakes."""

    id: str
    name: str
    description: str
    trigger: RuleTrigger
    action: RuleAction
    priority: float = 70.0
    enabled: bool = True
    success_rate: float = 0.0
    false_positive_rate: float = 0.0
    evidence_count: int = 0
    successful_outcomes: int = 0
    false_positives: int = 0
    validated: bool = False
    source_pattern: str = ""

    def __post_init__(self) -> None:
        self.priority = clamp(self.priority)
        self.success_rate = clamp(self.success_rate)
        self.false_positive_rate = clamp(self.false_positive_rate)

    @property
    def outcome_success_rate(self) -> float:
        """Fraction of reported outcomes where the rule helped."""
        if self.evidence_count == 0:
            return 0.0
        return self.successful_outcomes / self.evidence_count

    def add_outcome(self, helpful: bool, false_positive: bool = False) -> None:
        """Record feedback about one firing of this rule."""
        self.evidence_count += 1
        if helpful:
            self.successful_outcomes += 1
        if false_positive:
            self.false_positives += 1
        self.success_rate = clamp(100.0 * self.successful_outcomes / self.evidence_count)
        self.false_positive_rate = clamp(
            100.0 * self.false_positives / self.evidence_count
        )


@dataclass
class InsightValidation:
    method: ValidationMethod = ValidationMethod.STATISTICAL
    result: ValidationResult = ValidationResult.PENDING
    confidence: float = 70.0
    evidence: List[str] = field(default_factory=list)


@dataclass
class LearningInsight:
    """An observation derived from one or many ledger records."""

    id: str
    type: InsightType
    description: str
    evidence: List[str] = field(default_factory=list)
    confidence: float = 70.0
    actionable: bool = True
    impact: float = 0.0  # 0-100
    timestamp: datetime = field(default_factory=datetime.now)
    validation: InsightValidation = field(default_factory=InsightValidation)

    def __post_init__(self) -> None:
        self.confidence = clamp(self.confidence)
        self.impact = clamp(self.impact)
