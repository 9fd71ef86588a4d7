"""Exception hierarchy for the mistake learning engine."""


class MistakeLearningError(Exception):
    """Base class for all engine errors."""


class InvalidContextError(MistakeLearningError, ValueError):
    """A required argument was missing or of the wrong type."""


class RuleDefinitionError(MistakeLearningError):
    """A prevention rule trigger is malformed or incomplete."""


class PersistenceError(MistakeLearningError):
    """The key-value persistence adapter failed to load or save."""
