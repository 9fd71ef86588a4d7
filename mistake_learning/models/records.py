"""
Data models for recorded mistakes.

Describes where a mistake happened, what went wrong, what was tried,
what eventually worked, and the derived impact of the failure.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from mistake_learning.models.knowledge import LearningPattern, PreventionRule
from mistake_learning.utils.scoring import clamp


class Environment(Enum):
    """Deployment stage in which the mistake surfaced."""

    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"


class Severity(Enum):
    """How bad the mistake was."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def multiplier(self) -> int:
        """Impact multiplier: low=1, medium=2, high=4, critical=8."""
        return {"low": 1, "medium": 2, "high": 4, "critical": 8}[self.value]


class Reproducibility(Enum):
    ALWAYS = "always"
    SOMETIMES = "sometimes"
    RARE = "rare"
    ONCE = "once"


class MistakeType(Enum):
    """Classified kind of mistake."""

    MAPPING_ERROR = "mapping_error"
    FIELD_NAME_ERROR = "field_name_error"
    STRUCTURE_ERROR = "structure_error"
    LOGIC_ERROR = "logic_error"
    PERFORMANCE_ERROR = "performance_error"
    SECURITY_ERROR = "security_error"
    INTEGRATION_ERROR = "integration_error"
    VALIDATION_ERROR = "validation_error"


class MistakeCategory(Enum):
    """Area of development work the mistake belongs to."""

    CODE_GENERATION = "code_generation"
    FIELD_MAPPING = "field_mapping"
    API_INTEGRATION = "api_integration"
    DATABASE_SCHEMA = "database_schema"
    UI_COMPONENTS = "ui_components"
    BUSINESS_LOGIC = "business_logic"
    CONFIGURATION = "configuration"
    DEPLOYMENT = "deployment"


class UserImpact(Enum):
    NONE = "none"
    MINOR = "minor"
    MODERATE = "moderate"
    MAJOR = "major"
    CRITICAL = "critical"


class ChangeType(Enum):
    ADDITION = "addition"
    MODIFICATION = "modification"
    DELETION = "deletion"
    REFACTOR = "refactor"


@dataclass
class CodeContext:
    """Source location of a mistake."""

    file_name: str = ""
    function_name: Optional[str] = None
    line_number: Optional[int] = None
    code_snippet: str = ""
    related_files: List[str] = field(default_factory=list)
    dependencies: List[str] = field(default_factory=list)
    framework_version: str = ""
    language: str = ""


@dataclass
class BusinessContext:
    """Business domain the failing work belonged to."""

    domain: str = ""
    feature: str = ""
    user_story: Optional[str] = None
    requirements: List[str] = field(default_factory=list)
    constraints: List[str] = field(default_factory=list)
    stakeholders: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class MistakeContext:
    """Where a mistake occurred. Immutable once created."""

    project_id: str
    component: str
    operation: str
    session_id: str = ""
    input_data: Dict[str, Any] = field(default_factory=dict)
    expected_output: Any = None
    actual_output: Any = None
    environment: Environment = Environment.DEVELOPMENT
    user_id: Optional[str] = None
    code_context: CodeContext = field(default_factory=CodeContext)
    business_context: BusinessContext = field(default_factory=BusinessContext)

    def __post_init__(self) -> None:
        """Accept plain strings for the environment."""
        if not isinstance(self.environment, Environment):
            object.__setattr__(self, "environment", Environment(self.environment))


@dataclass
class ErrorDetails:
    """What went wrong."""

    original_error: str
    error_type: str
    stack_trace: Optional[str] = None
    symptoms: List[str] = field(default_factory=list)
    triggers: List[str] = field(default_factory=list)
    frequency: int = 1
    severity: Severity = Severity.MEDIUM
    reproducibility: Reproducibility = Reproducibility.SOMETIMES

    def __post_init__(self) -> None:
        """Accept plain strings for the enum fields."""
        if not isinstance(self.severity, Severity):
            self.severity = Severity(self.severity)
        if not isinstance(self.reproducibility, Reproducibility):
            self.reproducibility = Reproducibility(self.reproducibility)


@dataclass
class CodeChange:
    file: str
    before: str
    after: str
    change_type: ChangeType = ChangeType.MODIFICATION
    reasoning: str = ""


@dataclass
class ConfigChange:
    config_file: str
    setting: str
    old_value: Any = None
    new_value: Any = None
    reasoning: str = ""


@dataclass
class AttemptedSolution:
    """The approach that was tried and did not work."""

    approach: str = ""
    reasoning: str = ""
    code_changes: List[CodeChange] = field(default_factory=list)
    config_changes: List[ConfigChange] = field(default_factory=list)
    assumptions: List[str] = field(default_factory=list)
    failure_reason: str = ""
    time_spent: float = 0.0  # minutes
    iterations: int = 1


@dataclass
class CorrectSolution:
    """The working approach, filled in once verified."""

    approach: str
    reasoning: str = ""
    final_code: str = ""
    key_insights: List[str] = field(default_factory=list)
    critical_factors: List[str] = field(default_factory=list)
    verification_steps: List[str] = field(default_factory=list)
    tests_covering: List[str] = field(default_factory=list)
    documentation: str = ""
    time_to_solution: float = 0.0  # minutes


@dataclass
class ImpactAssessment:
    """Derived cost of a mistake."""

    development_time: float = 0.0  # hours lost
    deployment_delay: float = 0.0  # hours
    user_impact: UserImpact = UserImpact.NONE
    business_cost: float = 0.0
    technical_debt: float = 0.0  # 0-100
    team_morale: float = 0.0  # -100 to 100
    learning: float = 0.0  # 0-100

    def __post_init__(self) -> None:
        """Keep bounded scores in range."""
        self.technical_debt = clamp(self.technical_debt)
        self.team_morale = clamp(self.team_morale, -100.0, 100.0)
        self.learning = clamp(self.learning)

    @classmethod
    def from_severity(
        cls, severity: Severity, environment: Environment
    ) -> "ImpactAssessment":
        """Compute the impact deterministically from severity.

        base = multiplier * 0.5, so a critical mistake costs 4 hours and
        an estimated 400 in business cost.
        """
        multiplier = severity.multiplier
        base = multiplier * 0.5
        return cls(
            development_time=base,
            deployment_delay=base * 2 if severity == Severity.CRITICAL else 0.0,
            user_impact=UserImpact.MAJOR
            if environment == Environment.PRODUCTION
            else UserImpact.MINOR,
            business_cost=base * 100,
            technical_debt=multiplier * 10,
            team_morale=-multiplier * 5,
            learning=multiplier * 15,
        )


@dataclass
class MistakeRecord:
    """Root aggregate: one recorded (and possibly recurring) mistake."""

    id: str
    timestamp: datetime
    type: MistakeType
    category: MistakeCategory
    context: MistakeContext
    error_details: ErrorDetails
    attempted_solution: AttemptedSolution
    impact: ImpactAssessment
    learning_pattern: LearningPattern
    prevention_rule: PreventionRule
    correct_solution: Optional[CorrectSolution] = None
    confidence: float = 85.0
    verified: bool = False
    recurrence_count: int = 1

    def __post_init__(self) -> None:
        """Validate confidence is in valid range."""
        self.confidence = clamp(self.confidence)

    @property
    def dedup_key(self) -> tuple:
        """Records sharing this key are the same mistake recurring."""
        return (self.type, self.context.operation, self.error_details.error_type)

    @property
    def is_recurring(self) -> bool:
        return self.recurrence_count > 1
