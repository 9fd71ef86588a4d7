"""
Prevention rule store and trigger evaluation.

Rules are evaluated against a mistake context and a proposed solution in
priority order. Malformed triggers never match: they are logged and
skipped so a broken rule can neither block nor wave through an action.
"""

import re
from dataclasses import dataclass, is_dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from mistake_learning.exceptions import RuleDefinitionError
from mistake_learning.models.knowledge import PreventionRule, RuleTrigger, TriggerCondition
from mistake_learning.models.records import MistakeContext
from mistake_learning.utils.logger import setup_logger
from mistake_learning.utils.scoring import clamp

logger = setup_logger(__name__)

_PROPOSED_PREFIX = "proposed"
_MISSING = object()


@dataclass
class TriggerMatch:
    """Outcome of evaluating one rule trigger."""

    matched: bool
    confidence: float = 0.0


class TriggerEvaluator:
    """Evaluates RuleTriggers against a context and a proposed solution.

    Condition fields are dotted paths into the context (`operation`,
    `code_context.language`, `input_data.sourceField`) or, with a
    `proposed.` prefix, into the proposed solution.
    """

    def evaluate(
        self, trigger: RuleTrigger, context: MistakeContext, proposed: Any = None
    ) -> TriggerMatch:
        """Combine condition results through the trigger's logic operator.

        AND: every condition must match; confidence is the mean weight.
        OR: any condition may match; confidence is the best matched weight.
        NOT: no condition may match; confidence is the mean weight.

        Raises:
            RuleDefinitionError: If the trigger is empty or malformed.
        """
        if trigger is None or not trigger.conditions:
            raise RuleDefinitionError("trigger has no conditions")

        logic = str(trigger.logic_operator or "").upper()
        if logic not in ("AND", "OR", "NOT"):
            raise RuleDefinitionError(f"unknown logic operator: {trigger.logic_operator!r}")

        results = []
        for condition in trigger.conditions:
            try:
                weight = clamp(float(condition.weight))
            except (TypeError, ValueError) as e:
                raise RuleDefinitionError(f"invalid weight: {condition.weight!r}") from e
            results.append((weight, self._check(condition, context, proposed)))
        weights = [w for w, _ in results]
        if sum(weights) <= 0:
            raise RuleDefinitionError("trigger conditions carry no weight")
        mean_weight = sum(weights) / len(weights)

        if logic == "AND":
            matched = all(ok for _, ok in results)
            return TriggerMatch(matched, mean_weight if matched else 0.0)
        if logic == "OR":
            matched_weights = [w for w, ok in results if ok]
            if not matched_weights:
                return TriggerMatch(False)
            return TriggerMatch(True, max(matched_weights))
        matched = not any(ok for _, ok in results)
        return TriggerMatch(matched, mean_weight if matched else 0.0)

    def _check(
        self, condition: TriggerCondition, context: MistakeContext, proposed: Any
    ) -> bool:
        if not condition.field or not condition.operator:
            raise RuleDefinitionError("condition is missing field or operator")

        actual = self._resolve(condition.field, context, proposed)
        if actual is _MISSING:
            raise RuleDefinitionError(f"cannot resolve field {condition.field!r}")
        if isinstance(actual, Enum):
            actual = actual.value
        expected = condition.value
        operator = condition.operator

        try:
            if operator == "equals":
                return actual == expected
            if operator == "not_equals":
                return actual != expected
            if operator == "contains":
                if isinstance(actual, (list, tuple, set, dict)):
                    return expected in actual
                return str(expected).lower() in str(actual).lower()
            if operator == "matches":
                return re.search(str(expected), str(actual)) is not None
            if operator == "greater_than":
                return float(actual) > float(expected)
            if operator == "less_than":
                return float(actual) < float(expected)
            if operator == "in":
                return actual in expected
        except (re.error, TypeError, ValueError) as e:
            raise RuleDefinitionError(
                f"condition {condition.field} {operator} {expected!r} failed: {e}"
            ) from e
        raise RuleDefinitionError(f"unknown operator: {operator!r}")

    @staticmethod
    def _resolve(path: str, context: MistakeContext, proposed: Any) -> Any:
        parts = path.split(".")
        if parts[0] == _PROPOSED_PREFIX:
            current, parts = proposed, parts[1:]
        else:
            current = context

        for part in parts:
            if isinstance(current, dict):
                current = current.get(part, _MISSING)
            elif is_dataclass(current) and hasattr(current, part):
                current = getattr(current, part)
            else:
                return _MISSING
            if current is _MISSING:
                return _MISSING
        return current


class PreventionRuleService:
    """Owns the prevention rules of one engine instance."""

    def __init__(
        self,
        rules: Optional[Dict[str, PreventionRule]] = None,
        evaluator: Optional[TriggerEvaluator] = None,
    ) -> None:
        self.rules: Dict[str, PreventionRule] = rules if rules is not None else {}
        self.evaluator = evaluator or TriggerEvaluator()

    def get(self, rule_id: str) -> Optional[PreventionRule]:
        return self.rules.get(rule_id)

    def add(self, rule: PreventionRule) -> None:
        self.rules[rule.id] = rule

    def upsert(
        self, rule: PreventionRule, record_confidence: float, priority_bump: int = 5
    ) -> PreventionRule:
        """Insert a candidate rule or reinforce the existing one with its id.

        Reinforcing averages the stored success rate with the record's
        confidence and raises priority (capped at 100).
        """
        existing = self.rules.get(rule.id)
        if existing is None:
            self.rules[rule.id] = rule
            logger.info(f"Added prevention rule: {rule.id}")
            return rule

        existing.success_rate = clamp((existing.success_rate + record_confidence) / 2)
        existing.priority = clamp(existing.priority + priority_bump)
        logger.debug(
            f"Reinforced prevention rule {rule.id}: priority={existing.priority:.0f}, "
            f"success_rate={existing.success_rate:.1f}"
        )
        return existing

    def list_enabled(self) -> List[PreventionRule]:
        """Enabled rules, highest priority first."""
        return sorted(
            (r for r in self.rules.values() if r.enabled),
            key=lambda r: r.priority,
            reverse=True,
        )

    def find_actionable(
        self, context: MistakeContext, proposed: Any = None
    ) -> Optional[tuple]:
        """Return (rule, confidence) for the first actionable rule, if any.

        A rule is actionable when its trigger matches with confidence at or
        above the trigger's minimum confidence. Rules are not combined.
        """
        for rule in self.list_enabled():
            try:
                match = self.evaluator.evaluate(rule.trigger, context, proposed)
            except RuleDefinitionError as e:
                logger.warning(f"Skipping malformed rule {rule.id}: {e}")
                continue
            if match.matched and match.confidence >= float(rule.trigger.minimum_confidence):
                return rule, match.confidence
        return None

    def record_outcome(
        self, rule_id: str, helpful: bool, false_positive: bool = False
    ) -> bool:
        """Feed back whether a firing of the rule was useful."""
        rule = self.rules.get(rule_id)
        if rule is None:
            return False
        rule.add_outcome(helpful, false_positive)
        return True

    def set_enabled(self, rule_id: str, enabled: bool) -> bool:
        rule = self.rules.get(rule_id)
        if rule is None:
            return False
        rule.enabled = enabled
        return True
