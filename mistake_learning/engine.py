"""
Mistake learning engine.

Records development mistakes, remembers correct and incorrect field mappings
and code structures, derives prevention rules, and checks proposed actions
against everything learned so far. Each engine instance owns its own state;
several engines (e.g. one per project) can live side by side.
"""

import copy
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, Generator, Iterable, List, Optional

from mistake_learning.exceptions import InvalidContextError, PersistenceError
from mistake_learning.models.knowledge import LearningInsight, PreventionRule
from mistake_learning.models.memory import (
    CodeStructure,
    FieldMapping,
    MappingExample,
    MappingMemory,
    StructureMemory,
)
from mistake_learning.models.records import (
    AttemptedSolution,
    CorrectSolution,
    ErrorDetails,
    MistakeContext,
    MistakeRecord,
    MistakeType,
)
from mistake_learning.models.results import (
    CorrectionSuggestion,
    EffectivenessMetrics,
    HealthReport,
    MappingGuidance,
    PreventionResult,
    StructureGuidance,
)
from mistake_learning.models.serialization import from_dict, to_dict
from mistake_learning.services.classifier import Classifier
from mistake_learning.services.knowledge_base import seed_knowledge_base
from mistake_learning.services.mapping_memory_service import (
    MappingMemoryService,
    extract_mapping_attempt,
)
from mistake_learning.services.mistake_ledger_service import MistakeLedgerService
from mistake_learning.services.persistence_service import KeyValueStore, create_store
from mistake_learning.services.prevention_rule_service import PreventionRuleService
from mistake_learning.services.structure_memory_service import (
    DEFAULT_STRUCTURE_CONTEXT,
    StructureMemoryService,
    extract_structure_target,
)
from mistake_learning.settings import LearningSettings, get_settings
from mistake_learning.utils.logger import setup_logger

logger = setup_logger(__name__)

MAPPING_MISTAKES = (MistakeType.MAPPING_ERROR, MistakeType.FIELD_NAME_ERROR)
MAPPING_OPERATION_HINTS = ("mapping", "field")
STRUCTURE_OPERATION_HINTS = ("structure", "create")

# Persistence namespaces
NS_RECORDS = "records"
NS_RULES = "rules"
NS_MAPPINGS = "mapping_memories"
NS_STRUCTURES = "structure_memories"
NS_INSIGHTS = "insights"

MistakeListener = Callable[[MistakeRecord, bool], None]
Touched = Dict[str, Iterable[str]]


class MistakeLearningEngine:
    """Facade over the ledger, memories and rule store of one knowledge base."""

    def __init__(
        self,
        settings: Optional[LearningSettings] = None,
        store: Optional[KeyValueStore] = None,
        type_classifier: Optional[Classifier] = None,
        category_classifier: Optional[Classifier] = None,
    ) -> None:
        self.settings = settings or get_settings()
        engine_settings = self.settings.engine
        self.store = store if store is not None else create_store(self.settings.persistence)

        self.lock = threading.RLock()
        self._key_locks: Dict[tuple, threading.Lock] = {}
        self._key_locks_guard = threading.Lock()
        self._listeners: List[MistakeListener] = []

        self.ledger = MistakeLedgerService(
            type_classifier=type_classifier,
            category_classifier=category_classifier,
            initial_confidence=engine_settings.initial_confidence,
            rule_minimum_confidence=engine_settings.rule_minimum_confidence,
        )
        self.rules = PreventionRuleService()
        self.mappings = MappingMemoryService(
            max_examples=engine_settings.max_mapping_examples,
            similarity_threshold=engine_settings.mapping_similarity_threshold,
        )
        self.structures = StructureMemoryService()

        self.hydrate()
        if engine_settings.seed_knowledge_base:
            self.load_knowledge_base()

    # ── Recording ────────────────────────────────────────────────────

    @contextmanager
    def _key_lock(self, key: tuple) -> Generator[None, None, None]:
        with self._key_locks_guard:
            lock = self._key_locks.setdefault(key, threading.Lock())
        with lock:
            yield

    def record_mistake(
        self,
        context: MistakeContext,
        error_details: ErrorDetails,
        attempted_solution: Optional[AttemptedSolution] = None,
    ) -> str:
        """Record a mistake and learn from it.

        A mistake with the same type, operation and error type as an
        existing record is folded into that record as a recurrence.

        Args:
            context: Where and while doing what the mistake happened.
            error_details: What went wrong.
            attempted_solution: The approach that failed, if known.

        Returns:
            Id of the stored record (the existing one on recurrence).

        Raises:
            InvalidContextError: If context or error_details is missing or
                of the wrong type.
        """
        if not isinstance(context, MistakeContext):
            raise InvalidContextError("context must be a MistakeContext")
        if not isinstance(error_details, ErrorDetails):
            raise InvalidContextError("error_details must be ErrorDetails")
        if attempted_solution is None:
            attempted_solution = AttemptedSolution()
        elif not isinstance(attempted_solution, AttemptedSolution):
            raise InvalidContextError("attempted_solution must be an AttemptedSolution")

        candidate = self.ledger.build_record(context, error_details, attempted_solution)

        touched: Dict[str, List[str]] = {}
        with self._key_lock(candidate.dedup_key), self.lock:
            record, is_new = self.ledger.merge_or_insert(candidate)
            touched[NS_RECORDS] = [record.id]

            if record.type in MAPPING_MISTAKES:
                touched[NS_MAPPINGS] = [
                    self._learn_incorrect_mapping(
                        candidate.context, error_details, attempted_solution
                    )
                ]
            elif record.type == MistakeType.STRUCTURE_ERROR:
                touched[NS_STRUCTURES] = [
                    self._learn_incorrect_structure(
                        candidate.context, error_details, attempted_solution
                    )
                ]

            rule = self.rules.upsert(
                copy.deepcopy(candidate.prevention_rule),
                record.confidence,
                priority_bump=self.settings.engine.priority_bump,
            )
            touched[NS_RULES] = [rule.id]
            if is_new:
                insight = self.ledger.extract_insight(record)
                self.ledger.add_insight(insight)
                touched[NS_INSIGHTS] = [insight.id]

        if is_new:
            logger.info(
                f"Recorded mistake {record.id}: {record.learning_pattern.pattern} "
                f"({record.type.value}/{record.category.value})"
            )
        self._notify(record, is_new)
        self._autosave(touched)
        return record.id

    def _learn_incorrect_mapping(
        self,
        context: MistakeContext,
        error_details: ErrorDetails,
        attempted_solution: AttemptedSolution,
    ) -> str:
        source_schema, target_schema, source_field, target_field = extract_mapping_attempt(
            context
        )
        self.mappings.record_incorrect_mapping(
            source_schema,
            target_schema,
            source_field,
            target_field,
            reason=attempted_solution.failure_reason or error_details.original_error,
            consequences=list(error_details.symptoms),
        )
        return MappingMemoryService.memory_key(source_schema, target_schema)

    def _learn_incorrect_structure(
        self,
        context: MistakeContext,
        error_details: ErrorDetails,
        attempted_solution: AttemptedSolution,
    ) -> str:
        structure_type, structure_context, code = extract_structure_target(context)
        self.structures.record_incorrect_structure(
            structure_type,
            structure_context,
            code,
            problems=list(error_details.symptoms) or [error_details.original_error],
            corrections=[attempted_solution.failure_reason],
            impact=error_details.severity.value,
        )
        return StructureMemoryService.memory_key(structure_type, structure_context)

    def record_correct_solution(self, mistake_id: str, solution: CorrectSolution) -> bool:
        """Attach a verified fix to a recorded mistake."""
        with self.lock:
            updated = self.ledger.record_correct_solution(mistake_id, solution)
        if updated:
            self._autosave({NS_RECORDS: [mistake_id]})
        return updated

    def record_mistake_outcome(self, mistake_id: str, success: bool) -> bool:
        """Report whether applying a mistake's learning worked out."""
        with self.lock:
            updated = self.ledger.record_outcome(mistake_id, success)
        if updated:
            self._autosave({NS_RECORDS: [mistake_id]})
        return updated

    def record_rule_outcome(
        self, rule_id: str, helpful: bool, false_positive: bool = False
    ) -> bool:
        """Report whether a rule firing helped or was a false positive."""
        with self.lock:
            updated = self.rules.record_outcome(rule_id, helpful, false_positive)
        if updated:
            self._autosave({NS_RULES: [rule_id]})
        return updated

    def record_correct_mapping(
        self,
        source_schema: str,
        target_schema: str,
        source_field: str,
        target_field: str,
        confidence: float = 70.0,
        aliases: Optional[List[str]] = None,
        transformation: Optional[str] = None,
        example: Optional[MappingExample] = None,
        success: bool = True,
    ) -> FieldMapping:
        """Teach or reinforce a correct field mapping."""
        with self.lock:
            mapping = self.mappings.record_correct_mapping(
                source_schema,
                target_schema,
                source_field,
                target_field,
                confidence=confidence,
                aliases=aliases,
                transformation=transformation,
                example=example,
                success=success,
            )
        self._autosave(
            {NS_MAPPINGS: [MappingMemoryService.memory_key(source_schema, target_schema)]}
        )
        return mapping

    def register_structure(
        self,
        structure_type: str,
        structure: CodeStructure,
        context: str = DEFAULT_STRUCTURE_CONTEXT,
    ) -> StructureMemory:
        """Teach the correct shape of a code structure."""
        with self.lock:
            memory = self.structures.register_structure(structure_type, structure, context)
        self._autosave(
            {NS_STRUCTURES: [StructureMemoryService.memory_key(structure_type, context)]}
        )
        return memory

    # ── Queries ──────────────────────────────────────────────────────

    def check_for_potential_mistake(
        self,
        context: MistakeContext,
        proposed_solution: Any = None,
        allow_auto_fix: bool = False,
    ) -> PreventionResult:
        """Check a proposed action against learned rules and memories.

        The first actionable rule wins. Without one, mapping memory is
        consulted for mapping/field operations and structure memory for
        structure/create operations. With no match at all the check passes.
        """
        if not isinstance(context, MistakeContext):
            raise InvalidContextError("context must be a MistakeContext")

        prevent_confidence = self.settings.engine.validation_min_confidence
        with self.lock:
            hit = self.rules.find_actionable(context, proposed_solution)
            if hit is not None:
                rule, confidence = hit
                return PreventionResult(
                    should_prevent=True,
                    confidence=confidence,
                    reasoning=rule.action.message,
                    rule=copy.deepcopy(rule),
                    alternatives=list(rule.action.alternatives),
                    historical_evidence=self.ledger.evidence_for_rule(rule.id),
                    auto_fix_code=rule.action.auto_fix_code if allow_auto_fix else None,
                )

            operation = context.operation.lower()
            if any(hint in operation for hint in MAPPING_OPERATION_HINTS):
                result = self.mappings.predict_mapping_issue(
                    context, proposed_solution, prevent_confidence
                )
                if result is not None:
                    return result
            if any(hint in operation for hint in STRUCTURE_OPERATION_HINTS):
                result = self.structures.predict_structure_issue(
                    context, proposed_solution, prevent_confidence
                )
                if result is not None:
                    return result

        return PreventionResult(
            should_prevent=False,
            confidence=95,
            reasoning="No potential issues detected based on historical learning",
        )

    def get_suggested_correction(
        self, context: MistakeContext, error_type: str
    ) -> CorrectionSuggestion:
        if not isinstance(context, MistakeContext):
            raise InvalidContextError("context must be a MistakeContext")
        with self.lock:
            return copy.deepcopy(self.ledger.suggest_correction(context, error_type))

    def get_field_mapping_guidance(
        self, source_schema: str, target_schema: str, source_field: str
    ) -> MappingGuidance:
        with self.lock:
            return copy.deepcopy(
                self.mappings.get_field_mapping_guidance(
                    source_schema, target_schema, source_field
                )
            )

    def get_structure_guidance(
        self, structure_type: str, context: str = DEFAULT_STRUCTURE_CONTEXT
    ) -> StructureGuidance:
        with self.lock:
            return copy.deepcopy(
                self.structures.get_structure_guidance(structure_type, context)
            )

    def get_mistake_history(
        self, project_id: Optional[str] = None, category: Optional[str] = None
    ) -> List[MistakeRecord]:
        """Recorded mistakes, newest first."""
        with self.lock:
            return copy.deepcopy(self.ledger.history(project_id, category))

    def get_prevention_rules(self) -> List[PreventionRule]:
        """Enabled rules, highest priority first."""
        with self.lock:
            return copy.deepcopy(self.rules.list_enabled())

    def get_mapping_memories(self) -> List[MappingMemory]:
        with self.lock:
            return copy.deepcopy(self.mappings.list_memories())

    def get_structure_memories(self) -> List[StructureMemory]:
        with self.lock:
            return copy.deepcopy(self.structures.list_memories())

    def get_learning_insights(self) -> List[LearningInsight]:
        """Actionable insights, highest impact first."""
        with self.lock:
            return copy.deepcopy(self.ledger.actionable_insights())

    def get_effectiveness_metrics(self) -> EffectivenessMetrics:
        with self.lock:
            total = len(self.ledger.records)
            recurring = self.ledger.recurring_count()
            effectiveness = (total - recurring) / total * 100 if total else 100.0
            return EffectivenessMetrics(
                total_mistakes_recorded=total,
                recurring_mistakes=recurring,
                prevention_effectiveness=effectiveness,
                rules_generated=len(self.rules.rules),
                mapping_accuracy=self.mappings.average_accuracy(),
                structure_reliability=self.structures.average_reliability(),
                learning_insights=len(self.ledger.insights),
            )

    def get_health_report(self) -> HealthReport:
        """Summary of how well the knowledge base is doing."""
        metrics = self.get_effectiveness_metrics()
        with self.lock:
            validated = sum(
                1 for r in self.ledger.records.values() if r.learning_pattern.validated
            ) + sum(1 for r in self.rules.rules.values() if r.validated)
            prevented = sum(r.successful_outcomes for r in self.rules.rules.values())
            average_confidence = self.ledger.average_confidence()

        if metrics.prevention_effectiveness >= 80:
            status = "healthy"
        elif metrics.prevention_effectiveness >= 50:
            status = "degraded"
        else:
            status = "unhealthy"
        return HealthReport(
            status=status,
            metrics=metrics,
            mistakes_prevented=prevented,
            average_confidence=average_confidence,
            validated_patterns=validated,
            last_updated=datetime.now(),
        )

    # ── Observers ────────────────────────────────────────────────────

    def subscribe(self, listener: MistakeListener) -> None:
        """Call `listener(record, is_new)` after every recorded mistake."""
        self._listeners.append(listener)

    def _notify(self, record: MistakeRecord, is_new: bool) -> None:
        for listener in list(self._listeners):
            try:
                listener(record, is_new)
            except Exception:
                logger.exception(f"Mistake listener failed for {record.id}")

    # ── Knowledge base & persistence ─────────────────────────────────

    def load_knowledge_base(self) -> None:
        """Seed common rules, mappings and structures."""
        with self.lock:
            seed_knowledge_base(self.rules, self.mappings, self.structures)
        self._autosave(None)

    def hydrate(self) -> None:
        """Load state from the persistence store, replacing in-memory maps."""
        with self.lock:
            self.ledger.records = {
                k: from_dict(MistakeRecord, v) for k, v in self.store.load(NS_RECORDS).items()
            }
            self.ledger.insights = {
                k: from_dict(LearningInsight, v)
                for k, v in self.store.load(NS_INSIGHTS).items()
            }
            self.rules.rules = {
                k: from_dict(PreventionRule, v) for k, v in self.store.load(NS_RULES).items()
            }
            self.mappings.memories = {
                k: from_dict(MappingMemory, v) for k, v in self.store.load(NS_MAPPINGS).items()
            }
            self.structures.memories = {
                k: from_dict(StructureMemory, v)
                for k, v in self.store.load(NS_STRUCTURES).items()
            }
            loaded = len(self.ledger.records) + len(self.rules.rules)
        if loaded:
            logger.info(f"Hydrated {loaded} record(s) and rule(s) from store")

    def _namespaces(self) -> Dict[str, Dict[str, Any]]:
        return {
            NS_RECORDS: self.ledger.records,
            NS_INSIGHTS: self.ledger.insights,
            NS_RULES: self.rules.rules,
            NS_MAPPINGS: self.mappings.memories,
            NS_STRUCTURES: self.structures.memories,
        }

    def flush(self, touched: Optional[Touched] = None) -> None:
        """Write in-memory state to the persistence store.

        Args:
            touched: Namespace -> keys to write. Everything is written when
                omitted.

        Raises:
            PersistenceError: If the store cannot be written.
        """
        with self.lock:
            namespaces = self._namespaces()
            if touched is None:
                snapshot = {
                    ns: {k: to_dict(v) for k, v in items.items()}
                    for ns, items in namespaces.items()
                }
            else:
                snapshot = {
                    ns: {k: to_dict(namespaces[ns][k]) for k in keys if k in namespaces[ns]}
                    for ns, keys in touched.items()
                }
        for namespace, documents in snapshot.items():
            self.store.save(namespace, documents)

    def _autosave(self, touched: Optional[Touched]) -> None:
        """Persist what an operation changed, if autosave is on."""
        if not self.settings.persistence.autosave:
            return
        try:
            self.flush(touched)
        except PersistenceError as e:
            logger.error(f"Autosave failed, state kept in memory: {e}")
