"""
Mistake ledger service: the append-only store of recorded mistakes.

Classifies incoming mistakes, derives their impact, learning pattern and
candidate prevention rule, deduplicates recurrences, and answers history
and correction queries. Records are mutated in place by recurrence merges
and confidence recalculation but never deleted.
"""

import copy
import re
import uuid
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from mistake_learning.models.knowledge import (
    InsightType,
    LearningInsight,
    LearningPattern,
    PatternCondition,
    PreventionRule,
    RuleAction,
    RuleActionType,
    RuleTrigger,
    TriggerCondition,
)
from mistake_learning.models.records import (
    AttemptedSolution,
    CorrectSolution,
    ErrorDetails,
    ImpactAssessment,
    MistakeCategory,
    MistakeContext,
    MistakeRecord,
    MistakeType,
)
from mistake_learning.models.results import CorrectionSuggestion
from mistake_learning.services.classifier import (
    Classifier,
    KeywordTypeClassifier,
    OperationCategoryClassifier,
    classify_category,
    classify_type,
)
from mistake_learning.utils.logger import setup_logger

logger = setup_logger(__name__)

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def slugify(text: str) -> str:
    return _SLUG_RE.sub("_", (text or "").lower()).strip("_") or "unknown"


def type_features(context: MistakeContext, error_details: ErrorDetails) -> dict:
    """Feature dict handed to the type classifier."""
    return {
        "original_error": error_details.original_error,
        "error_type": error_details.error_type,
        "operation": context.operation,
        "component": context.component,
    }


def category_features(context: MistakeContext) -> dict:
    """Feature dict handed to the category classifier."""
    return {"operation": context.operation, "component": context.component}


class MistakeLedgerService:
    """Owns the mistake records and learning insights of one engine instance."""

    def __init__(
        self,
        records: Optional[Dict[str, MistakeRecord]] = None,
        insights: Optional[Dict[str, LearningInsight]] = None,
        type_classifier: Optional[Classifier] = None,
        category_classifier: Optional[Classifier] = None,
        initial_confidence: float = 85.0,
        rule_minimum_confidence: float = 70.0,
    ) -> None:
        self.records: Dict[str, MistakeRecord] = records if records is not None else {}
        self.insights: Dict[str, LearningInsight] = insights if insights is not None else {}
        self.type_classifier = type_classifier or KeywordTypeClassifier()
        self.category_classifier = category_classifier or OperationCategoryClassifier()
        self.initial_confidence = initial_confidence
        self.rule_minimum_confidence = rule_minimum_confidence

    # ── Derivation ───────────────────────────────────────────────────

    def classify(
        self, context: MistakeContext, error_details: ErrorDetails
    ) -> Tuple[MistakeType, MistakeCategory]:
        """Classify type and category, falling back to the most general ones."""
        mistake_type = classify_type(
            self.type_classifier, type_features(context, error_details)
        )
        category = classify_category(self.category_classifier, category_features(context))
        return mistake_type, category

    @staticmethod
    def extract_learning_pattern(
        context: MistakeContext,
        error_details: ErrorDetails,
        attempted_solution: AttemptedSolution,
    ) -> LearningPattern:
        """Abstract a mistake into a reusable pattern."""
        domain = context.business_context.domain
        return LearningPattern(
            id=f"pattern_{slugify(error_details.error_type)}_{slugify(context.operation)}",
            pattern=f"{error_details.error_type} in {context.operation}",
            abstraction=f"General pattern: {error_details.error_type}",
            applicability=[domain] if domain else [],
            conditions=[
                PatternCondition(
                    condition="operation",
                    operator="equals",
                    value=context.operation,
                    weight=80,
                )
            ],
            warning_signals=list(error_details.symptoms),
            prevention_techniques=[attempted_solution.failure_reason]
            if attempted_solution.failure_reason
            else [],
            confidence=75,
        )

    def generate_prevention_rule(
        self, context: MistakeContext, error_details: ErrorDetails, pattern_id: str = ""
    ) -> PreventionRule:
        """Candidate rule warning about the same operation in future.

        The id is derived from operation and error type so that recurrences
        reinforce one rule instead of spawning duplicates.
        """
        return PreventionRule(
            id=f"rule_{slugify(context.operation)}_{slugify(error_details.error_type)}",
            name=f"Prevent {error_details.error_type}",
            description=(
                f"Prevents recurring {error_details.error_type} in {context.operation}"
            ),
            trigger=RuleTrigger(
                conditions=[
                    TriggerCondition(
                        field="operation",
                        operator="equals",
                        value=context.operation,
                        weight=90,
                    )
                ],
                logic_operator="AND",
                minimum_confidence=self.rule_minimum_confidence,
            ),
            action=RuleAction(
                type=RuleActionType.WARN,
                message=(
                    f"Warning: This operation previously caused {error_details.error_type}"
                ),
                alternatives=list(error_details.triggers),
                confidence=80,
            ),
            priority=70,
            enabled=True,
            success_rate=0,
            false_positive_rate=0,
            source_pattern=pattern_id,
        )

    def build_record(
        self,
        context: MistakeContext,
        error_details: ErrorDetails,
        attempted_solution: AttemptedSolution,
        when: Optional[datetime] = None,
    ) -> MistakeRecord:
        """Build the candidate record for an incoming mistake.

        Inputs are deep-copied so later changes by the caller cannot rewrite
        the stored history.
        """
        context = copy.deepcopy(context)
        error_details = copy.deepcopy(error_details)
        attempted_solution = copy.deepcopy(attempted_solution)
        mistake_type, category = self.classify(context, error_details)
        pattern = self.extract_learning_pattern(context, error_details, attempted_solution)
        return MistakeRecord(
            id=f"mistake_{uuid.uuid4().hex[:12]}",
            timestamp=when or datetime.now(),
            type=mistake_type,
            category=category,
            context=context,
            error_details=error_details,
            attempted_solution=attempted_solution,
            impact=ImpactAssessment.from_severity(
                error_details.severity, context.environment
            ),
            learning_pattern=pattern,
            prevention_rule=self.generate_prevention_rule(
                context, error_details, pattern.id
            ),
            confidence=self.initial_confidence,
            verified=False,
            recurrence_count=1,
        )

    # ── Mutation ─────────────────────────────────────────────────────

    def find_similar_mistake(self, candidate: MistakeRecord) -> Optional[MistakeRecord]:
        """Existing record with the same (type, operation, error type)."""
        for existing in self.records.values():
            if existing.dedup_key == candidate.dedup_key:
                return existing
        return None

    def merge_or_insert(self, candidate: MistakeRecord) -> Tuple[MistakeRecord, bool]:
        """Store a candidate, folding it into an existing record if it recurs.

        Returns:
            (stored record, True if the candidate was inserted as new).
        """
        existing = self.find_similar_mistake(candidate)
        if existing is not None:
            existing.recurrence_count += 1
            existing.impact.development_time += candidate.impact.development_time
            for symptom in candidate.error_details.symptoms:
                if symptom not in existing.learning_pattern.warning_signals:
                    existing.learning_pattern.warning_signals.append(symptom)
            logger.warning(
                f"Recurring mistake detected: {existing.learning_pattern.pattern} "
                f"(x{existing.recurrence_count})"
            )
            return existing, False

        self.records[candidate.id] = candidate
        return candidate, True

    def add_insight(self, insight: LearningInsight) -> None:
        self.insights[insight.id] = insight

    @staticmethod
    def extract_insight(record: MistakeRecord) -> LearningInsight:
        return LearningInsight(
            id=f"insight_{record.learning_pattern.id}",
            type=InsightType.PATTERN_DISCOVERY,
            description=f"New pattern discovered: {record.learning_pattern.pattern}",
            evidence=[record.error_details.original_error],
            confidence=record.confidence,
            actionable=True,
            impact=record.impact.learning,
            timestamp=record.timestamp,
        )

    def record_correct_solution(self, mistake_id: str, solution: CorrectSolution) -> bool:
        """Attach the verified working solution to a record."""
        record = self.records.get(mistake_id)
        if record is None:
            return False
        record.correct_solution = solution
        record.verified = True
        logger.info(f"Verified solution recorded for {mistake_id}")
        return True

    def record_outcome(self, mistake_id: str, success: bool) -> bool:
        """Add one outcome observation to a record's learning pattern."""
        record = self.records.get(mistake_id)
        if record is None:
            return False
        record.learning_pattern.add_evidence(success)
        return True

    # ── Queries ──────────────────────────────────────────────────────

    def get(self, mistake_id: str) -> Optional[MistakeRecord]:
        return self.records.get(mistake_id)

    def history(
        self, project_id: Optional[str] = None, category: Optional[str] = None
    ) -> List[MistakeRecord]:
        """Records filtered by project and category, newest first."""
        records = list(self.records.values())
        if project_id:
            records = [r for r in records if r.context.project_id == project_id]
        if category:
            value = category.value if isinstance(category, MistakeCategory) else category
            records = [r for r in records if r.category.value == value]
        return sorted(records, key=lambda r: r.timestamp, reverse=True)

    def records_for_rule(self, rule_id: str) -> List[MistakeRecord]:
        return [r for r in self.records.values() if r.prevention_rule.id == rule_id]

    def evidence_for_rule(self, rule_id: str) -> List[str]:
        """Human-readable history behind a rule's originating pattern."""
        return [
            f"{r.learning_pattern.pattern}: seen {r.recurrence_count} time(s), "
            f"severity {r.error_details.severity.value}, "
            f"{r.impact.development_time:g}h development time lost"
            for r in self.records_for_rule(rule_id)
        ]

    def find_similar_by_context(
        self, context: MistakeContext, error_type: str
    ) -> List[MistakeRecord]:
        """Records with the same error type and a related context.

        Related means same category, same business domain, or same
        operation. Highest confidence first.
        """
        category = classify_category(self.category_classifier, category_features(context))
        domain = context.business_context.domain
        similar = []
        for record in self.records.values():
            if error_type not in (record.error_details.error_type, record.type.value):
                continue
            same_domain = bool(domain) and (
                domain == record.context.business_context.domain
                or domain in record.learning_pattern.applicability
            )
            if (
                record.category == category
                or same_domain
                or record.context.operation == context.operation
            ):
                similar.append(record)
        return sorted(similar, key=lambda r: r.confidence, reverse=True)

    def suggest_correction(
        self, context: MistakeContext, error_type: str
    ) -> CorrectionSuggestion:
        """Best verified fix from similar past mistakes."""
        similar = self.find_similar_by_context(context, error_type)
        if not similar:
            return CorrectionSuggestion(
                suggestion=(
                    "No similar mistakes found in knowledge base. "
                    "Proceed with standard debugging."
                ),
                confidence=30,
                reasoning="Insufficient historical data",
                steps=["Analyze error details", "Check documentation", "Test incrementally"],
            )

        solved = [r for r in similar if r.verified and r.correct_solution is not None]
        if not solved:
            return CorrectionSuggestion(
                suggestion="Similar issues found but no verified solutions. Proceed with caution.",
                confidence=60,
                reasoning="Historical data available but solutions not yet verified",
                steps=["Review similar cases", "Apply learned patterns", "Validate thoroughly"],
                related_issues=[r.learning_pattern.pattern for r in similar],
            )

        best = solved[0]
        solution = best.correct_solution
        return CorrectionSuggestion(
            suggestion=solution.approach,
            confidence=min(95, best.confidence + len(solved) * 5),
            reasoning=solution.reasoning,
            steps=list(solution.verification_steps),
            code_example=solution.final_code or None,
            avoidance=best.attempted_solution.failure_reason or None,
            related_issues=[r.learning_pattern.pattern for r in similar],
        )

    def recurring_count(self) -> int:
        return sum(1 for r in self.records.values() if r.is_recurring)

    def average_confidence(self) -> float:
        if not self.records:
            return 0.0
        return round(sum(r.confidence for r in self.records.values()) / len(self.records))

    def actionable_insights(self) -> List[LearningInsight]:
        return sorted(
            (i for i in self.insights.values() if i.actionable),
            key=lambda i: i.impact,
            reverse=True,
        )
