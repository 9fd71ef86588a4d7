"""
Pluggable classification strategies for mistakes.

A classifier maps a feature dict to a ranked list of labels. The default
implementations are deterministic keyword rules; `TokenVoteClassifier` is a
trainable swap-in that learns from recorded (features -> label) pairs.
"""

import re
from abc import ABC, abstractmethod
from collections import Counter, defaultdict
from typing import Any, Dict, Iterable, List, Tuple

from mistake_learning.models.records import MistakeCategory, MistakeType
from mistake_learning.utils.logger import setup_logger

logger = setup_logger(__name__)

Features = Dict[str, Any]

# Keyword rules over error text (first match wins)
_TYPE_KEYWORDS: List[Tuple[Tuple[str, ...], MistakeType]] = [
    (("field", "property"), MistakeType.FIELD_NAME_ERROR),
    (("mapping", "transform"), MistakeType.MAPPING_ERROR),
    (("structure", "syntax"), MistakeType.STRUCTURE_ERROR),
    (("timeout", "timed out", "slow", "out of memory", "performance"), MistakeType.PERFORMANCE_ERROR),
    (("unauthorized", "forbidden", "injection", "xss", "csrf", "security"), MistakeType.SECURITY_ERROR),
    (("connection refused", "econnrefused", "network", "integration", "status code"), MistakeType.INTEGRATION_ERROR),
    (("validation", "invalid", "required"), MistakeType.VALIDATION_ERROR),
]

# Substring rules over the operation name (first match wins)
_CATEGORY_KEYWORDS: List[Tuple[Tuple[str, ...], MistakeCategory]] = [
    (("api",), MistakeCategory.API_INTEGRATION),
    (("database",), MistakeCategory.DATABASE_SCHEMA),
    (("ui", "component"), MistakeCategory.UI_COMPONENTS),
    (("mapping",), MistakeCategory.FIELD_MAPPING),
    (("config",), MistakeCategory.CONFIGURATION),
    (("deploy",), MistakeCategory.DEPLOYMENT),
]

_TOKEN_RE = re.compile(r"[a-z][a-z0-9]+")


class Classifier(ABC):
    """Strategy interface: features in, ranked labels out."""

    @abstractmethod
    def classify(self, features: Features) -> List[str]:
        """Return candidate labels, best first. Empty means no opinion."""

    @property
    def trainable(self) -> bool:
        return False

    def train(self, samples: Iterable[Tuple[Features, str]]) -> int:
        """Fit on (features, label) pairs. Returns the number of samples used."""
        return 0


class KeywordTypeClassifier(Classifier):
    """Classifies mistake type from error text keywords."""

    def classify(self, features: Features) -> List[str]:
        text = " ".join(
            str(features.get(k) or "") for k in ("original_error", "error_type")
        ).lower()
        for keywords, mistake_type in _TYPE_KEYWORDS:
            if any(k in text for k in keywords):
                return [mistake_type.value]
        return []


class OperationCategoryClassifier(Classifier):
    """Classifies mistake category from the operation name."""

    def classify(self, features: Features) -> List[str]:
        operation = str(features.get("operation") or "").lower()
        for keywords, category in _CATEGORY_KEYWORDS:
            if any(k in operation for k in keywords):
                return [category.value]
        return []


class TokenVoteClassifier(Classifier):
    """Learns token -> label votes from history, falling back to a base strategy.

    Each training sample contributes one vote per distinct token of its
    text features. Classification ranks labels by total votes.
    """

    def __init__(self, fallback: Classifier, min_votes: int = 2):
        self.fallback = fallback
        self.min_votes = min_votes
        self._votes: Dict[str, Counter] = defaultdict(Counter)
        self.samples_seen = 0

    @property
    def trainable(self) -> bool:
        return True

    @staticmethod
    def _tokens(features: Features) -> set:
        text = " ".join(str(v) for v in features.values() if isinstance(v, str))
        return set(_TOKEN_RE.findall(text.lower()))

    def train(self, samples: Iterable[Tuple[Features, str]]) -> int:
        votes: Dict[str, Counter] = defaultdict(Counter)
        count = 0
        for features, label in samples:
            for token in self._tokens(features):
                votes[token][label] += 1
            count += 1
        # Swap in the new table only once fully built
        self._votes = votes
        self.samples_seen = count
        logger.info(f"Trained token vote classifier on {count} samples")
        return count

    def classify(self, features: Features) -> List[str]:
        tally: Counter = Counter()
        for token in self._tokens(features):
            tally.update(self._votes.get(token, {}))
        ranked = [label for label, n in tally.most_common() if n >= self.min_votes]
        return ranked or self.fallback.classify(features)


def classify_type(classifier: Classifier, features: Features) -> MistakeType:
    """Resolve a type label, defaulting to logic_error when ambiguous."""
    for label in classifier.classify(features):
        try:
            return MistakeType(label)
        except ValueError:
            logger.debug(f"Ignoring unknown mistake type label: {label}")
    return MistakeType.LOGIC_ERROR


def classify_category(classifier: Classifier, features: Features) -> MistakeCategory:
    """Resolve a category label, defaulting to code_generation when ambiguous."""
    for label in classifier.classify(features):
        try:
            return MistakeCategory(label)
        except ValueError:
            logger.debug(f"Ignoring unknown category label: {label}")
    return MistakeCategory.CODE_GENERATION
