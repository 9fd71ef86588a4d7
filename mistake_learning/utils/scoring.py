"""Confidence arithmetic shared by models, memories and the learning loop."""


def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    """Clamp a score into [low, high]."""
    return max(low, min(high, value))


def recalculate_confidence(
    old_confidence: float, success_rate: float, evidence_count: int
) -> float:
    """Blend prior confidence with observed outcomes.

    new = min(100, old * success_rate + min(evidence * 2, 20))

    Args:
        old_confidence: Current 0-100 confidence.
        success_rate: Fraction (0..1) of evidence with a successful outcome.
        evidence_count: Number of outcome observations.

    Returns:
        The new confidence, clamped to [0, 100].
    """
    bonus = min(evidence_count * 2, 20)
    return clamp(min(100.0, old_confidence * success_rate + bonus))


def meets_validation(
    evidence_count: int,
    success_rate: float,
    confidence: float,
    min_evidence: int = 10,
    min_success_rate: float = 0.7,
    min_confidence: float = 80.0,
) -> bool:
    """Whether a knowledge item has earned the `validated` flag."""
    return (
        evidence_count >= min_evidence
        and success_rate >= min_success_rate
        and confidence >= min_confidence
    )
