"""
Background learning loop.

Periodically mines the mistake ledger for cross-record insights, links
related learning patterns, retrains a trainable classifier, and then
recalculates confidence and validation for every knowledge item that has
outcome evidence. Tasks are scheduled with croniter and run off the event
loop thread so the engine stays responsive.

Each task reads a snapshot of engine state, computes its changes, and
commits them under the engine lock in one step. A task that fails leaves
state exactly as it was.
"""

import asyncio
import copy
from collections import defaultdict
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Tuple

from croniter import croniter

from mistake_learning.models.knowledge import InsightType, LearningInsight
from mistake_learning.models.records import MistakeRecord, MistakeType
from mistake_learning.services.mistake_ledger_service import slugify, type_features
from mistake_learning.settings import EngineSettings, ScheduleSettings
from mistake_learning.utils.logger import setup_logger
from mistake_learning.utils.scoring import meets_validation, recalculate_confidence

if TYPE_CHECKING:
    from mistake_learning.engine import MistakeLearningEngine

logger = setup_logger(__name__)

TEMPORAL_CLUSTER_SIZE = 3
BEHAVIORAL_MIN_ERROR_TYPES = 2

# (items produced, commit step to run under the engine lock)
Plan = Tuple[int, Callable[[], None]]


def _nothing() -> None:
    pass


class LearningLoop:
    """Runs deep learning, pattern analysis and retraining for one engine."""

    TASKS = ("deep_learning", "pattern_analysis", "retrain")

    def __init__(
        self,
        engine: "MistakeLearningEngine",
        schedule: Optional[ScheduleSettings] = None,
        engine_settings: Optional[EngineSettings] = None,
    ) -> None:
        self.engine = engine
        self.schedule = schedule or ScheduleSettings()
        self.engine_settings = engine_settings or engine.settings.engine
        self._shutdown_event: Optional[asyncio.Event] = None
        self._handlers: Dict[str, Callable[[], Plan]] = {
            "deep_learning": self._plan_deep_learning,
            "pattern_analysis": self._plan_pattern_analysis,
            "retrain": self._plan_retrain,
        }

    # ── Tasks ────────────────────────────────────────────────────────

    def run_task(self, name: str) -> int:
        """Run one task followed by confidence recalculation.

        The task's changes and the recalculated confidences are computed
        first and committed together, so a failure in either leaves engine
        state untouched.

        Returns:
            The number of items the task produced or touched.

        Raises:
            KeyError: If the task name is unknown.
        """
        planner = self._handlers[name]
        produced, commit_task = planner()
        with self.engine.lock:
            _, commit_confidence = self._plan_confidence()
            commit_task()
            commit_confidence()
        self.engine.flush()
        logger.info(f"Learning task '{name}' finished ({produced} item(s))")
        return produced

    def _apply(self, plan: Plan) -> int:
        produced, commit = plan
        with self.engine.lock:
            commit()
        return produced

    def _snapshot(self) -> List[MistakeRecord]:
        with self.engine.lock:
            return copy.deepcopy(list(self.engine.ledger.records.values()))

    def _add_insights(self, insights: List[LearningInsight]) -> Callable[[], None]:
        def commit() -> None:
            for insight in insights:
                self.engine.ledger.add_insight(insight)

        return commit

    def deep_learning(self) -> int:
        """Mine the ledger for temporal, behavioral and performance insights."""
        return self._apply(self._plan_deep_learning())

    def _plan_deep_learning(self) -> Plan:
        records = self._snapshot()
        if not records:
            logger.debug("Deep learning skipped: ledger is empty")
            return 0, _nothing

        insights = (
            self._temporal_clusters(records)
            + self._behavioral_correlations(records)
            + self._performance_correlations(records)
        )
        return len(insights), self._add_insights(insights)

    @staticmethod
    def _temporal_clusters(records: List[MistakeRecord]) -> List[LearningInsight]:
        by_hour: Dict[str, List[MistakeRecord]] = defaultdict(list)
        for record in records:
            by_hour[record.timestamp.strftime("%Y-%m-%dT%H")].append(record)

        insights = []
        for hour, group in sorted(by_hour.items()):
            if len(group) < TEMPORAL_CLUSTER_SIZE:
                continue
            insights.append(
                LearningInsight(
                    id=f"insight_temporal_{slugify(hour)}",
                    type=InsightType.CORRELATION_FOUND,
                    description=(
                        f"{len(group)} mistakes clustered in the hour starting {hour}:00"
                    ),
                    evidence=[r.learning_pattern.pattern for r in group],
                    confidence=min(95, 50 + 10 * len(group)),
                    actionable=False,
                    impact=min(100, 10 * len(group)),
                )
            )
        return insights

    @staticmethod
    def _behavioral_correlations(records: List[MistakeRecord]) -> List[LearningInsight]:
        error_types: Dict[str, set] = defaultdict(set)
        for record in records:
            error_types[record.context.component].add(record.error_details.error_type)

        insights = []
        for component, types in sorted(error_types.items()):
            if len(types) < BEHAVIORAL_MIN_ERROR_TYPES:
                continue
            insights.append(
                LearningInsight(
                    id=f"insight_behavior_{slugify(component)}",
                    type=InsightType.CORRELATION_FOUND,
                    description=(
                        f"Component '{component}' produces {len(types)} different error types"
                    ),
                    evidence=sorted(types),
                    confidence=min(95, 60 + 10 * len(types)),
                    actionable=True,
                    impact=min(100, 20 * len(types)),
                )
            )
        return insights

    @staticmethod
    def _performance_correlations(records: List[MistakeRecord]) -> List[LearningInsight]:
        hours: Dict[str, float] = defaultdict(float)
        slow: Dict[str, int] = defaultdict(int)
        for record in records:
            component = record.context.component
            hours[component] += record.impact.development_time
            if record.type == MistakeType.PERFORMANCE_ERROR:
                slow[component] += 1

        insights = []
        for component in sorted(hours):
            if not slow[component] and hours[component] < 8:
                continue
            evidence = [f"{hours[component]:g}h development time lost"]
            if slow[component]:
                evidence.append(f"{slow[component]} performance error(s)")
            insights.append(
                LearningInsight(
                    id=f"insight_performance_{slugify(component)}",
                    type=InsightType.CORRELATION_FOUND,
                    description=f"Component '{component}' is a costly source of mistakes",
                    evidence=evidence,
                    confidence=75,
                    actionable=True,
                    impact=min(100, hours[component] * 5),
                )
            )
        return insights

    def pattern_analysis(self) -> int:
        """Link patterns sharing an error type and report cross-operation spread."""
        return self._apply(self._plan_pattern_analysis())

    def _plan_pattern_analysis(self) -> Plan:
        records = self._snapshot()
        by_error: Dict[str, List[MistakeRecord]] = defaultdict(list)
        for record in records:
            by_error[record.error_details.error_type].append(record)

        related: Dict[str, List[str]] = {}
        insights = []
        for error_type, group in sorted(by_error.items()):
            pattern_ids = sorted({r.learning_pattern.id for r in group})
            for pattern_id in pattern_ids:
                related[pattern_id] = [p for p in pattern_ids if p != pattern_id]

            operations = sorted({r.context.operation for r in group})
            if len(operations) < 2:
                continue
            occurrences = sum(r.recurrence_count for r in group)
            insights.append(
                LearningInsight(
                    id=f"insight_spread_{slugify(error_type)}",
                    type=InsightType.RULE_REFINEMENT,
                    description=(
                        f"{error_type} occurs across {len(operations)} operations; "
                        "consider a broader prevention rule"
                    ),
                    evidence=operations,
                    confidence=min(95, 60 + 5 * occurrences),
                    actionable=True,
                    impact=min(100, 15 * len(operations)),
                )
            )

        add_insights = self._add_insights(insights)

        def commit() -> None:
            for record in self.engine.ledger.records.values():
                links = related.get(record.learning_pattern.id)
                if links is not None:
                    record.learning_pattern.related_patterns = list(links)
            add_insights()

        return len(insights), commit

    def retrain(self) -> int:
        """Feed recorded (features -> type) pairs to a trainable type classifier."""
        return self._apply(self._plan_retrain())

    def _plan_retrain(self) -> Plan:
        # The classifier lives outside engine state, so there is nothing to commit
        classifier = self.engine.ledger.type_classifier
        if not classifier.trainable:
            logger.debug("Retrain skipped: type classifier is not trainable")
            return 0, _nothing
        records = self._snapshot()
        samples = [(type_features(r.context, r.error_details), r.type.value) for r in records]
        return classifier.train(samples), _nothing

    # ── Confidence ───────────────────────────────────────────────────

    def _score(
        self, confidence: float, success_rate: float, evidence: int, validated: bool
    ) -> Tuple[float, bool]:
        new_confidence = recalculate_confidence(confidence, success_rate, evidence)
        settings = self.engine_settings
        now_valid = meets_validation(
            evidence,
            success_rate,
            new_confidence,
            min_evidence=settings.validation_min_evidence,
            min_success_rate=settings.validation_min_success_rate,
            min_confidence=settings.validation_min_confidence,
        )
        return new_confidence, validated or now_valid

    def recalculate_confidence(self) -> int:
        """Recompute confidence and validation for items with evidence.

        Returns:
            The number of items updated.
        """
        with self.engine.lock:
            return self._apply(self._plan_confidence())

    def _plan_confidence(self) -> Plan:
        """Compute confidence updates from live state.

        Must be called with the engine lock held and committed before the
        lock is released.
        """
        records = list(self.engine.ledger.records.values())
        rules = list(self.engine.rules.rules.values())

        pattern_updates = {}
        record_updates = {}
        for record in records:
            pattern = record.learning_pattern
            if pattern.evidence_count == 0:
                continue
            pattern_updates[record.id] = self._score(
                pattern.confidence,
                pattern.success_rate,
                pattern.evidence_count,
                pattern.validated,
            )
            record_updates[record.id] = recalculate_confidence(
                record.confidence, pattern.success_rate, pattern.evidence_count
            )

        rule_updates = {}
        for rule in rules:
            if rule.evidence_count == 0:
                continue
            rule_updates[rule.id] = self._score(
                rule.action.confidence,
                rule.outcome_success_rate,
                rule.evidence_count,
                rule.validated,
            )

        def commit() -> None:
            for record in records:
                if record.id in pattern_updates:
                    confidence, validated = pattern_updates[record.id]
                    record.learning_pattern.confidence = confidence
                    record.learning_pattern.validated = validated
                    record.confidence = record_updates[record.id]
            for rule in rules:
                if rule.id in rule_updates:
                    confidence, validated = rule_updates[rule.id]
                    rule.action.confidence = confidence
                    rule.validated = validated

        return len(pattern_updates) + len(rule_updates), commit

    # ── Scheduling ───────────────────────────────────────────────────

    async def run(self) -> None:
        """Run the scheduler until `stop()` is called."""
        self._shutdown_event = asyncio.Event()
        logger.info("Learning loop started")
        try:
            await self._scheduler_loop()
        finally:
            logger.info("Learning loop stopped")

    def stop(self) -> None:
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    async def _scheduler_loop(self) -> None:
        now = datetime.now(timezone.utc)
        next_fire: Dict[str, Tuple[datetime, croniter]] = {}
        for name in self.TASKS:
            expression = getattr(self.schedule, name, "")
            if not expression:
                continue
            try:
                cron = croniter(expression, now)
            except (ValueError, KeyError) as e:
                logger.error(f"Invalid cron for learning task '{name}': {e}")
                continue
            next_fire[name] = (cron.get_next(datetime), cron)
            logger.info(
                f"Scheduled learning task '{name}' with cron '{expression}' "
                f"(next: {next_fire[name][0]})"
            )

        if not next_fire:
            logger.info("No learning tasks scheduled, loop idle")
            await self._shutdown_event.wait()
            return

        try:
            while not self._shutdown_event.is_set():
                name = min(next_fire, key=lambda n: next_fire[n][0])
                fire_at, cron = next_fire[name]
                sleep_seconds = max(
                    0, (fire_at - datetime.now(timezone.utc)).total_seconds()
                )
                logger.debug(f"Next learning task '{name}' in {sleep_seconds:.0f} seconds")

                try:
                    await asyncio.wait_for(
                        self._shutdown_event.wait(), timeout=sleep_seconds
                    )
                    break
                except asyncio.TimeoutError:
                    pass

                await self._execute(name)
                next_fire[name] = (cron.get_next(datetime), cron)
        except asyncio.CancelledError:
            pass

    async def _execute(self, name: str) -> None:
        try:
            await asyncio.to_thread(self.run_task, name)
        except Exception:
            logger.exception(f"Learning task failed: {name}")
