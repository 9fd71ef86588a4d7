"""
Mapping memory service for field-level mapping knowledge.

Keeps one MappingMemory per source/target schema pair, records correct and
incorrect field mappings, and answers guidance queries. Guidance never
reports more confidence than the recorded FieldMapping it is based on.
"""

import re
from datetime import datetime
from difflib import SequenceMatcher
from typing import Any, Dict, List, Optional, Tuple

from mistake_learning.models.memory import (
    FieldMapping,
    IncorrectMapping,
    MappingExample,
    MappingMemory,
    SchemaDefinition,
)
from mistake_learning.models.records import MistakeContext
from mistake_learning.models.results import MappingGuidance, PreventionResult
from mistake_learning.utils.logger import setup_logger
from mistake_learning.utils.scoring import clamp

logger = setup_logger(__name__)

_CAMEL_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")

_KEY_ALIASES = {
    "source_schema": ("source_schema", "sourceSchema"),
    "target_schema": ("target_schema", "targetSchema"),
    "source_field": ("source_field", "sourceField"),
    "target_field": ("target_field", "targetField"),
}


def normalize_field_name(name: str) -> str:
    """firstName, first-name and FIRST_NAME all normalize to first_name."""
    snake = _CAMEL_RE.sub("_", name or "").lower()
    return _NON_ALNUM_RE.sub("_", snake).strip("_")


def field_similarity(name1: str, name2: str) -> float:
    """Similarity in [0, 1] between two field names."""
    n1 = normalize_field_name(name1)
    n2 = normalize_field_name(name2)

    if not n1 or not n2:
        return 0.0
    if n1 == n2:
        return 1.0

    seq_score = SequenceMatcher(None, n1, n2).ratio()

    tokens1 = set(n1.split("_"))
    tokens2 = set(n2.split("_"))
    total = len(tokens1 | tokens2)
    token_score = len(tokens1 & tokens2) / total if total else 0.0

    return max(seq_score, token_score)


def extract_mapping_attempt(
    context: MistakeContext, proposed: Any = None
) -> Tuple[str, str, str, str]:
    """Find (source_schema, target_schema, source_field, target_field).

    Values in the proposed solution win over the context's input data.
    Schemas default to the context's component and operation.
    """
    sources = [proposed if isinstance(proposed, dict) else {}, context.input_data or {}]

    def lookup(name: str) -> str:
        for source in sources:
            for key in _KEY_ALIASES[name]:
                if source.get(key):
                    return str(source[key])
        return ""

    return (
        lookup("source_schema") or context.component,
        lookup("target_schema") or context.operation,
        lookup("source_field"),
        lookup("target_field"),
    )


class MappingMemoryService:
    """Owns the mapping memories of one engine instance."""

    def __init__(
        self,
        memories: Optional[Dict[str, MappingMemory]] = None,
        max_examples: int = 10,
        similarity_threshold: float = 0.6,
    ) -> None:
        self.memories: Dict[str, MappingMemory] = memories if memories is not None else {}
        self.max_examples = max_examples
        self.similarity_threshold = similarity_threshold

    @staticmethod
    def memory_key(source_schema: str, target_schema: str) -> str:
        return f"{source_schema}_to_{target_schema}"

    def get(self, source_schema: str, target_schema: str) -> Optional[MappingMemory]:
        return self.memories.get(self.memory_key(source_schema, target_schema))

    def get_or_create(self, source_schema: str, target_schema: str) -> MappingMemory:
        """Return the memory for a schema pair, creating it on first use."""
        key = self.memory_key(source_schema, target_schema)
        memory = self.memories.get(key)
        if memory is None:
            memory = MappingMemory(
                id=key,
                source_schema=SchemaDefinition(name=source_schema),
                target_schema=SchemaDefinition(name=target_schema),
            )
            self.memories[key] = memory
            logger.info(f"Created mapping memory: {key}")
        return memory

    def record_incorrect_mapping(
        self,
        source_schema: str,
        target_schema: str,
        source_field: str,
        target_field: str,
        reason: str = "",
        consequences: Optional[List[str]] = None,
        when: Optional[datetime] = None,
    ) -> IncorrectMapping:
        """Remember a failed source -> target attempt.

        A repeat of the same attempt bumps its frequency instead of adding
        a second entry.
        """
        when = when or datetime.now()
        memory = self.get_or_create(source_schema, target_schema)

        for existing in memory.incorrect_mappings:
            if (
                existing.attempted_source_field == source_field
                and existing.attempted_target_field == target_field
            ):
                existing.frequency += 1
                existing.last_attempted = max(existing.last_attempted, when)
                for consequence in consequences or []:
                    if consequence not in existing.consequences:
                        existing.consequences.append(consequence)
                incorrect = existing
                break
        else:
            incorrect = IncorrectMapping(
                attempted_source_field=source_field,
                attempted_target_field=target_field,
                reason=reason,
                error_message=reason,
                last_attempted=when,
                consequences=list(consequences or []),
            )
            memory.incorrect_mappings.append(incorrect)

        memory.recalculate_success_rate()
        memory.touch(when)
        logger.debug(
            f"Incorrect mapping {source_field!r} -> {target_field!r} in {memory.id} "
            f"(frequency={incorrect.frequency})"
        )
        return incorrect

    def record_correct_mapping(
        self,
        source_schema: str,
        target_schema: str,
        source_field: str,
        target_field: str,
        confidence: float = 70.0,
        aliases: Optional[List[str]] = None,
        transformation: Optional[str] = None,
        validation: str = "",
        example: Optional[MappingExample] = None,
        success: bool = True,
        usage_count: int = 1,
    ) -> FieldMapping:
        """Add or reinforce a known-good field mapping.

        Args:
            source_schema: Source schema name.
            target_schema: Target schema name.
            source_field: Field in the source schema.
            target_field: Field it maps onto in the target schema.
            confidence: Starting confidence for a brand new mapping.
            aliases: Alternate source field names.
            transformation: Optional transformation description.
            validation: Optional validation rule.
            example: Concrete example to add to the bounded history.
            success: Whether this use of the mapping worked.
            usage_count: Uses to credit for a brand new mapping (seeding).

        Returns:
            The created or updated FieldMapping.
        """
        memory = self.get_or_create(source_schema, target_schema)
        mapping = next(
            (
                m
                for m in memory.correct_mappings
                if m.matches(source_field) and m.target_field == target_field
            ),
            None,
        )

        if mapping is None:
            mapping = FieldMapping(
                source_field=source_field,
                target_field=target_field,
                aliases=list(aliases or []),
                transformation=transformation,
                validation=validation,
                confidence=confidence,
                usage_count=max(usage_count, 1),
                success_rate=100.0 if success else 0.0,
            )
            memory.correct_mappings.append(mapping)
        else:
            previous = mapping.usage_count
            mapping.usage_count += 1
            outcome = 100.0 if success else 0.0
            mapping.success_rate = clamp(
                (mapping.success_rate * previous + outcome) / mapping.usage_count
            )
            mapping.confidence = clamp(mapping.confidence + (2 if success else -10))
            for alias in aliases or []:
                if alias not in mapping.aliases:
                    mapping.aliases.append(alias)
            if transformation:
                mapping.transformation = transformation

        if example is not None:
            mapping.examples.append(example)
            del mapping.examples[: -self.max_examples]

        memory.usage_count += 1
        memory.recalculate_success_rate()
        memory.touch()
        return mapping

    def get_field_mapping_guidance(
        self, source_schema: str, target_schema: str, source_field: str
    ) -> MappingGuidance:
        """Suggest the target field for a source field."""
        memory = self.get(source_schema, target_schema)
        if memory is None:
            return MappingGuidance(
                suggested_mapping=None,
                confidence=0,
                reasoning="No mapping history found",
            )

        exact = memory.find_mapping(source_field)
        if exact is not None:
            recent = sorted(exact.examples, key=lambda e: e.timestamp, reverse=True)
            return MappingGuidance(
                suggested_mapping=exact.target_field,
                confidence=exact.confidence,
                reasoning=(
                    f"Based on {exact.usage_count} successful mappings with "
                    f"{exact.success_rate:.0f}% success rate"
                ),
                alternatives=self.find_alternative_mappings(
                    memory, source_field, exclude=exact.target_field
                ),
                warnings=self.get_field_mapping_warnings(memory, source_field),
                transformation=exact.transformation,
                validation=exact.validation,
                examples=recent[:3],
            )

        return self.predict_best_mapping(memory, source_field)

    def _score_candidates(
        self, memory: MappingMemory, source_field: str
    ) -> List[Tuple[float, FieldMapping]]:
        """(similarity, mapping) pairs, most similar first."""
        scored = []
        for mapping in memory.correct_mappings:
            names = [mapping.source_field] + mapping.aliases
            similarity = max(field_similarity(source_field, n) for n in names)
            scored.append((similarity, mapping))
        scored.sort(key=lambda pair: pair[0], reverse=True)
        return scored

    def predict_best_mapping(
        self, memory: MappingMemory, source_field: str
    ) -> MappingGuidance:
        """Similarity-based guess for a field with no exact mapping.

        Each candidate is scored by name similarity weighted by its own
        success rate; the reported confidence is that score applied to the
        candidate's confidence, so it can never exceed it.
        """
        best: Optional[FieldMapping] = None
        best_score = 0.0
        best_similarity = 0.0
        for similarity, mapping in self._score_candidates(memory, source_field):
            if similarity < self.similarity_threshold:
                continue
            score = similarity * mapping.success_rate / 100.0
            if score > best_score:
                best, best_score, best_similarity = mapping, score, similarity

        warnings = self.get_field_mapping_warnings(memory, source_field)
        if best is None:
            return MappingGuidance(
                suggested_mapping=None,
                confidence=0,
                reasoning=f"No similar field mapping found for '{source_field}'",
                alternatives=self.find_alternative_mappings(memory, source_field),
                warnings=warnings,
            )

        return MappingGuidance(
            suggested_mapping=best.target_field,
            confidence=min(best.confidence, round(best_score * best.confidence)),
            reasoning=(
                f"'{source_field}' resembles '{best.source_field}' "
                f"({best_similarity:.0%} similar), which maps to '{best.target_field}' "
                f"with {best.success_rate:.0f}% success rate"
            ),
            alternatives=self.find_alternative_mappings(
                memory, source_field, exclude=best.target_field
            ),
            warnings=warnings,
            transformation=best.transformation,
            validation=best.validation,
        )

    def find_alternative_mappings(
        self,
        memory: MappingMemory,
        source_field: str,
        exclude: Optional[str] = None,
        limit: int = 3,
    ) -> List[str]:
        """Other plausible target fields, most similar source first."""
        alternatives: List[str] = []
        for similarity, mapping in self._score_candidates(memory, source_field):
            if similarity < 0.4 or mapping.target_field == exclude:
                continue
            if mapping.target_field not in alternatives:
                alternatives.append(mapping.target_field)
            if len(alternatives) >= limit:
                break
        return alternatives

    @staticmethod
    def get_field_mapping_warnings(memory: MappingMemory, source_field: str) -> List[str]:
        """Warnings for failed mappings previously attempted from this field."""
        return [
            f"'{m.attempted_source_field}' -> '{m.attempted_target_field}' failed "
            f"{m.frequency} time(s): {m.reason}"
            for m in memory.incorrect_mappings
            if m.attempted_source_field == source_field
        ]

    def predict_mapping_issue(
        self,
        context: MistakeContext,
        proposed: Any,
        prevent_confidence: float = 80.0,
    ) -> Optional[PreventionResult]:
        """Flag a proposed mapping that memory says is wrong."""
        source_schema, target_schema, source_field, target_field = extract_mapping_attempt(
            context, proposed
        )
        if not source_field or not target_field:
            return None

        memory = self.get(source_schema, target_schema)
        if memory is None:
            return None

        correct = memory.find_mapping(source_field)
        alternatives = (
            [correct.target_field]
            if correct is not None and correct.target_field != target_field
            else []
        )

        for incorrect in memory.incorrect_mappings:
            if (
                incorrect.attempted_source_field == source_field
                and incorrect.attempted_target_field == target_field
            ):
                return PreventionResult(
                    should_prevent=True,
                    confidence=min(100, 60 + 10 * incorrect.frequency),
                    reasoning=(
                        f"Mapping '{source_field}' -> '{target_field}' failed "
                        f"{incorrect.frequency} time(s) before: {incorrect.reason}"
                    ),
                    alternatives=alternatives,
                    historical_evidence=list(incorrect.consequences),
                )

        if alternatives and correct.confidence >= prevent_confidence:
            return PreventionResult(
                should_prevent=True,
                confidence=correct.confidence,
                reasoning=(
                    f"'{source_field}' maps to '{correct.target_field}' in "
                    f"{correct.usage_count} recorded uses, not '{target_field}'"
                ),
                alternatives=alternatives,
            )
        return None

    def list_memories(self) -> List[MappingMemory]:
        return sorted(self.memories.values(), key=lambda m: m.success_rate, reverse=True)

    def average_accuracy(self) -> float:
        """Mean success rate across memories; 100 when nothing is known."""
        if not self.memories:
            return 100.0
        return sum(m.success_rate for m in self.memories.values()) / len(self.memories)
