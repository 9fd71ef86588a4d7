"""Shared fixtures for mistake learning tests."""

from __future__ import annotations

import pytest

from mistake_learning.engine import MistakeLearningEngine
from mistake_learning.models.records import (
    AttemptedSolution,
    BusinessContext,
    ErrorDetails,
    MistakeContext,
)
from mistake_learning.services.persistence_service import InMemoryKeyValueStore
from mistake_learning.settings import LearningSettings


def make_context(
    operation: str = "map_user_api",
    component: str = "UserForm",
    project_id: str = "proj-1",
    domain: str = "users",
    input_data: dict | None = None,
    **kwargs,
) -> MistakeContext:
    return MistakeContext(
        project_id=project_id,
        component=component,
        operation=operation,
        session_id="sess-1",
        input_data=input_data or {},
        business_context=BusinessContext(domain=domain),
        **kwargs,
    )


def make_error(
    error_type: str = "MappingError",
    original_error: str = "mapping failed for firstName",
    severity: str = "medium",
    symptoms: list | None = None,
) -> ErrorDetails:
    return ErrorDetails(
        original_error=original_error,
        error_type=error_type,
        symptoms=symptoms if symptoms is not None else ["empty first name on form"],
        triggers=["Check the API schema"],
        severity=severity,
    )


def make_attempt(failure_reason: str = "assumed snake_case field names") -> AttemptedSolution:
    return AttemptedSolution(
        approach="copied fields verbatim",
        failure_reason=failure_reason,
        time_spent=15,
    )


@pytest.fixture
def settings() -> LearningSettings:
    return LearningSettings()


@pytest.fixture
def store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def engine(settings, store) -> MistakeLearningEngine:
    return MistakeLearningEngine(settings, store=store)


@pytest.fixture
def seeded_engine(settings, store) -> MistakeLearningEngine:
    engine = MistakeLearningEngine(settings, store=store)
    engine.load_knowledge_base()
    return engine

