"""
Structure memory service for code-structure knowledge.

Keeps one StructureMemory per `{structure_type}_{context}` key. Each memory
holds the registered correct structure, incorrect attempts, best practices
and anti-patterns, and answers structure guidance queries.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from mistake_learning.models.memory import (
    AntiPattern,
    BestPractice,
    CodeStructure,
    IncorrectStructure,
    StructureMemory,
)
from mistake_learning.models.records import MistakeContext
from mistake_learning.models.results import PreventionResult, StructureGuidance
from mistake_learning.utils.logger import setup_logger
from mistake_learning.utils.scoring import clamp

logger = setup_logger(__name__)

DEFAULT_STRUCTURE_CONTEXT = "default"


def extract_structure_target(
    context: MistakeContext, proposed: Any = None
) -> Tuple[str, str, str]:
    """Find (structure_type, structure_context, code) for a context.

    The proposed solution may be the code itself or a dict carrying
    `structure_type`, `structure_context` and `code`.
    """
    proposed_dict = proposed if isinstance(proposed, dict) else {}
    sources = [proposed_dict, context.input_data or {}]

    def lookup(*keys: str) -> str:
        for source in sources:
            for key in keys:
                if source.get(key):
                    return str(source[key])
        return ""

    structure_type = (
        lookup("structure_type", "structureType")
        or context.code_context.function_name
        or context.operation
    )
    structure_context = (
        lookup("structure_context", "structureContext") or DEFAULT_STRUCTURE_CONTEXT
    )
    if isinstance(proposed, str):
        code = proposed
    else:
        code = lookup("code", "template") or context.code_context.code_snippet
    return structure_type, structure_context, code


class StructureMemoryService:
    """Owns the structure memories of one engine instance."""

    def __init__(self, memories: Optional[Dict[str, StructureMemory]] = None) -> None:
        self.memories: Dict[str, StructureMemory] = memories if memories is not None else {}

    @staticmethod
    def memory_key(structure_type: str, context: str = DEFAULT_STRUCTURE_CONTEXT) -> str:
        return f"{structure_type}_{context}"

    def get(
        self, structure_type: str, context: str = DEFAULT_STRUCTURE_CONTEXT
    ) -> Optional[StructureMemory]:
        return self.memories.get(self.memory_key(structure_type, context))

    def get_or_create(
        self, structure_type: str, context: str = DEFAULT_STRUCTURE_CONTEXT
    ) -> StructureMemory:
        """Return the memory for a structure, creating it on first use."""
        key = self.memory_key(structure_type, context)
        memory = self.memories.get(key)
        if memory is None:
            memory = StructureMemory(
                id=key,
                pattern=structure_type,
                correct_structure=CodeStructure(name=structure_type),
            )
            self.memories[key] = memory
            logger.info(f"Created structure memory: {key}")
        return memory

    def record_incorrect_structure(
        self,
        structure_type: str,
        context: str,
        attempted_structure: str,
        problems: Optional[List[str]] = None,
        corrections: Optional[List[str]] = None,
        impact: str = "",
        when: Optional[datetime] = None,
    ) -> IncorrectStructure:
        """Remember a structure attempt that turned out wrong.

        The same attempted code seen again bumps its frequency.
        """
        when = when or datetime.now()
        memory = self.get_or_create(structure_type, context)

        attempt = None
        if attempted_structure:
            for existing in memory.incorrect_attempts:
                if existing.attempted_structure.strip() == attempted_structure.strip():
                    attempt = existing
                    break

        if attempt is not None:
            attempt.frequency += 1
            attempt.last_attempted = max(attempt.last_attempted, when)
            for problem in problems or []:
                if problem not in attempt.problems:
                    attempt.problems.append(problem)
            for correction in corrections or []:
                if correction and correction not in attempt.corrections:
                    attempt.corrections.append(correction)
        else:
            attempt = IncorrectStructure(
                attempted_structure=attempted_structure,
                problems=list(problems or []),
                corrections=[c for c in corrections or [] if c],
                impact=impact,
                last_attempted=when,
            )
            memory.incorrect_attempts.append(attempt)

        memory.recalculate_reliability()
        memory.touch(when)
        return attempt

    def register_structure(
        self,
        structure_type: str,
        structure: CodeStructure,
        context: str = DEFAULT_STRUCTURE_CONTEXT,
        reliability: Optional[float] = None,
    ) -> StructureMemory:
        """Record the known-good structure for a pattern.

        Registering the same structure name again counts as another
        successful use. An explicit reliability (used for seeding) replaces
        the evidence-derived value.
        """
        memory = self.get_or_create(structure_type, context)
        current = memory.correct_structure
        if current.is_known and current.name == structure.name:
            current.usage_count += max(structure.usage_count, 1)
        else:
            structure.usage_count = max(structure.usage_count, 1)
            memory.correct_structure = structure

        if reliability is not None:
            memory.reliability = clamp(reliability)
        else:
            memory.recalculate_reliability()
        memory.touch()
        return memory

    def add_best_practice(
        self, structure_type: str, practice: BestPractice, context: str = DEFAULT_STRUCTURE_CONTEXT
    ) -> None:
        memory = self.get_or_create(structure_type, context)
        memory.best_practices.append(practice)
        memory.touch()

    def add_anti_pattern(
        self, structure_type: str, anti_pattern: AntiPattern, context: str = DEFAULT_STRUCTURE_CONTEXT
    ) -> None:
        memory = self.get_or_create(structure_type, context)
        memory.anti_patterns.append(anti_pattern)
        memory.touch()

    def get_structure_guidance(
        self, structure_type: str, context: str = DEFAULT_STRUCTURE_CONTEXT
    ) -> StructureGuidance:
        """Return the stored structure, its reliability and known problems."""
        memory = self.get(structure_type, context)
        if memory is None:
            return StructureGuidance(
                suggested_structure=None,
                confidence=0,
                reasoning="No structure patterns found",
            )

        return StructureGuidance(
            suggested_structure=memory.correct_structure,
            confidence=memory.reliability,
            reasoning=f"Based on proven pattern with {memory.reliability:.0f}% success rate",
            template=memory.correct_structure.template or None,
            warnings=memory.problems,
            best_practices=list(memory.best_practices),
            anti_patterns=list(memory.anti_patterns),
            naming_guidance=memory.correct_structure.naming,
        )

    def predict_structure_issue(
        self,
        context: MistakeContext,
        proposed: Any,
        prevent_confidence: float = 80.0,
    ) -> Optional[PreventionResult]:
        """Flag proposed code that repeats a failure or misses required parts."""
        structure_type, structure_context, code = extract_structure_target(
            context, proposed
        )
        memory = self.get(structure_type, structure_context)
        if memory is None or not code:
            return None

        for attempt in memory.incorrect_attempts:
            if attempt.attempted_structure and attempt.attempted_structure.strip() == code.strip():
                return PreventionResult(
                    should_prevent=True,
                    confidence=min(100, 60 + 10 * attempt.frequency),
                    reasoning=(
                        f"This {structure_type} structure failed "
                        f"{attempt.frequency} time(s) before"
                    ),
                    alternatives=list(attempt.corrections),
                    historical_evidence=list(attempt.problems),
                )

        structure = memory.correct_structure
        if not structure.is_known or memory.reliability < prevent_confidence:
            return None

        lowered = code.lower()
        missing = [e for e in structure.required_elements if e.lower() not in lowered]
        if not missing:
            return None
        return PreventionResult(
            should_prevent=True,
            confidence=memory.reliability,
            reasoning=(
                f"Proposed {structure_type} is missing required elements: "
                f"{', '.join(missing)}"
            ),
            alternatives=[structure.template] if structure.template else [],
            warnings=memory.problems,
        )

    def list_memories(self) -> List[StructureMemory]:
        return sorted(self.memories.values(), key=lambda m: m.reliability, reverse=True)

    def average_reliability(self) -> float:
        """Mean reliability across memories; 100 when nothing is known."""
        if not self.memories:
            return 100.0
        return sum(m.reliability for m in self.memories.values()) / len(self.memories)
