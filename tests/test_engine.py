"""Tests for the MistakeLearningEngine facade."""

import logging
import threading

import pytest

from conftest import make_attempt, make_context, make_error

from mistake_learning.engine import MistakeLearningEngine
from mistake_learning.exceptions import InvalidContextError
from mistake_learning.models.knowledge import (
    PreventionRule,
    RuleAction,
    RuleActionType,
    RuleTrigger,
    TriggerCondition,
)
from mistake_learning.models.memory import CodeStructure
from mistake_learning.models.records import CorrectSolution, MistakeType
from mistake_learning.services.classifier import TokenVoteClassifier, KeywordTypeClassifier
from mistake_learning.services.persistence_service import InMemoryKeyValueStore
from mistake_learning.settings import LearningSettings


# ── Recording ────────────────────────────────────────────────────────


class TestRecordMistake:
    def test_returns_id_of_stored_record(self, engine):
        mistake_id = engine.record_mistake(make_context(), make_error(), make_attempt())
        history = engine.get_mistake_history()
        assert [r.id for r in history] == [mistake_id]

    def test_recurrence_is_deduplicated(self, engine):
        first = engine.record_mistake(make_context(), make_error(), make_attempt())
        second = engine.record_mistake(make_context(), make_error(), make_attempt())
        history = engine.get_mistake_history()
        assert first == second
        assert len(history) == 1
        assert history[0].recurrence_count == 2
        assert history[0].type == MistakeType.MAPPING_ERROR

    def test_attempted_solution_optional(self, engine):
        engine.record_mistake(make_context(), make_error())
        assert len(engine.get_mistake_history()) == 1

    def test_set_in_input_data_is_recorded(self, engine, store):
        mistake_id = engine.record_mistake(
            make_context(input_data={"tags": {"a", "b"}}), make_error()
        )
        assert [r.id for r in engine.get_mistake_history()] == [mistake_id]
        assert store.load("records")[mistake_id]["context"]["input_data"]["tags"] == ["a", "b"]

    def test_unencodable_input_data_is_recorded(self, engine, store):
        mistake_id = engine.record_mistake(
            make_context(input_data={"payload": b"\x00raw", "handle": object()}), make_error()
        )
        assert mistake_id in store.load("records")

    def test_caller_changes_do_not_rewrite_history(self, engine):
        data = {"sourceField": "firstName"}
        context = make_context(input_data=data)
        error = make_error()
        engine.record_mistake(context, error)

        data["sourceField"] = "HACKED"
        context.business_context.domain = "billing"
        error.symptoms.append("later symptom")

        record = engine.get_mistake_history()[0]
        assert record.context.input_data["sourceField"] == "firstName"
        assert record.context.business_context.domain == "users"
        assert record.error_details.symptoms == ["empty first name on form"]

    @pytest.mark.parametrize(
        "context, error",
        [
            (None, make_error()),
            (make_context(), None),
            ({"operation": "x"}, make_error()),
        ],
    )
    def test_invalid_arguments_raise(self, engine, context, error):
        with pytest.raises(InvalidContextError):
            engine.record_mistake(context, error)

    def test_invalid_context_is_value_error(self, engine):
        with pytest.raises(ValueError):
            engine.record_mistake(None, make_error())

    def test_rule_upserted_and_reinforced(self, engine):
        engine.record_mistake(make_context(), make_error(), make_attempt())
        rules = engine.get_prevention_rules()
        assert [r.id for r in rules] == ["rule_map_user_api_mappingerror"]
        assert rules[0].priority == 70

        engine.record_mistake(make_context(), make_error(), make_attempt())
        rule = engine.get_prevention_rules()[0]
        assert rule.priority == 75
        assert rule.success_rate == 42.5

    def test_mapping_mistake_updates_mapping_memory(self, engine):
        context = make_context(
            input_data={
                "sourceSchema": "user_api",
                "targetSchema": "user_form",
                "sourceField": "firstName",
                "targetField": "fname",
            }
        )
        engine.record_mistake(context, make_error(), make_attempt())
        engine.record_mistake(context, make_error(), make_attempt())
        memory = engine.mappings.get("user_api", "user_form")
        assert len(memory.incorrect_mappings) == 1
        assert memory.incorrect_mappings[0].frequency == 2
        assert memory.incorrect_mappings[0].reason == "assumed snake_case field names"

    def test_structure_mistake_updates_structure_memory(self, engine):
        context = make_context(
            operation="create_component",
            input_data={"structure_type": "react_component", "code": "class Foo {}"},
        )
        error = make_error(
            error_type="SyntaxError",
            original_error="Unexpected token",
            symptoms=["build fails"],
        )
        engine.record_mistake(context, error, make_attempt("used a class"))
        memory = engine.structures.get("react_component", "default")
        assert memory.incorrect_attempts[0].attempted_structure == "class Foo {}"
        assert memory.incorrect_attempts[0].problems == ["build fails"]
        assert memory.incorrect_attempts[0].corrections == ["used a class"]

    def test_logic_error_touches_no_memory(self, engine):
        engine.record_mistake(
            make_context(operation="calculate_total"),
            make_error(error_type="ArithmeticError", original_error="off by one"),
        )
        assert engine.get_mapping_memories() == []
        assert engine.get_structure_memories() == []

    def test_new_record_creates_insight(self, engine):
        engine.record_mistake(make_context(), make_error())
        engine.record_mistake(make_context(), make_error())
        insights = engine.get_learning_insights()
        assert len(insights) == 1
        assert insights[0].description == "New pattern discovered: MappingError in map_user_api"

    def test_concurrent_recurrences_not_lost(self, engine):
        def worker():
            for _ in range(10):
                engine.record_mistake(make_context(), make_error(), make_attempt())

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        history = engine.get_mistake_history()
        assert len(history) == 1
        assert history[0].recurrence_count == 40


# ── Prevention checks ────────────────────────────────────────────────


class TestCheckForPotentialMistake:
    def test_fail_open_on_empty_engine(self, engine):
        result = engine.check_for_potential_mistake(make_context(), {"anything": 1})
        assert result.should_prevent is False
        assert result.confidence == 95
        assert result.reasoning == "No potential issues detected based on historical learning"

    def test_learned_rule_fires(self, engine):
        engine.record_mistake(make_context(), make_error(), make_attempt())
        result = engine.check_for_potential_mistake(make_context(), None)
        assert result.should_prevent is True
        assert result.confidence == 90
        assert result.rule.id == "rule_map_user_api_mappingerror"
        assert result.reasoning == "Warning: This operation previously caused MappingError"
        assert result.alternatives == ["Check the API schema"]
        assert result.historical_evidence[0].startswith("MappingError in map_user_api")

    def test_rule_does_not_fire_for_other_operation(self, engine):
        engine.record_mistake(make_context(), make_error(), make_attempt())
        result = engine.check_for_potential_mistake(make_context(operation="map_order_api"))
        assert result.should_prevent is False

    def test_rule_below_configured_minimum(self):
        settings = LearningSettings()
        settings.engine.rule_minimum_confidence = 95
        engine = MistakeLearningEngine(settings, store=InMemoryKeyValueStore())
        engine.record_mistake(make_context(), make_error(), make_attempt())
        assert engine.check_for_potential_mistake(make_context()).should_prevent is False

    def test_auto_fix_only_on_opt_in(self, engine):
        engine.rules.add(
            PreventionRule(
                id="fix_names",
                name="fix names",
                description="",
                trigger=RuleTrigger(
                    conditions=[TriggerCondition("operation", "equals", "map_user_api", 90)]
                ),
                action=RuleAction(
                    type=RuleActionType.AUTO_FIX,
                    message="Use snake_case",
                    auto_fix_code="first_name = data['firstName']",
                ),
            )
        )
        assert engine.check_for_potential_mistake(make_context()).auto_fix_code is None
        result = engine.check_for_potential_mistake(make_context(), allow_auto_fix=True)
        assert result.auto_fix_code == "first_name = data['firstName']"

    def test_mapping_memory_consulted_for_mapping_operations(self, engine):
        engine.record_correct_mapping("user_api", "user_form", "firstName", "first_name", confidence=95)
        result = engine.check_for_potential_mistake(
            make_context(operation="field_mapping"),
            {
                "sourceSchema": "user_api",
                "targetSchema": "user_form",
                "sourceField": "firstName",
                "targetField": "fname",
            },
        )
        assert result.should_prevent is True
        assert result.alternatives == ["first_name"]

    def test_mapping_memory_ignored_for_other_operations(self, engine):
        engine.record_correct_mapping("user_api", "user_form", "firstName", "first_name", confidence=95)
        result = engine.check_for_potential_mistake(
            make_context(operation="render_page"),
            {
                "sourceSchema": "user_api",
                "targetSchema": "user_form",
                "sourceField": "firstName",
                "targetField": "fname",
            },
        )
        assert result.should_prevent is False

    def test_structure_memory_consulted_for_create_operations(self, seeded_engine):
        result = seeded_engine.check_for_potential_mistake(
            make_context(operation="create_component"),
            {"structure_type": "react_component", "code": "const Foo = () => null;"},
        )
        assert result.should_prevent is True
        assert result.confidence == 90

    def test_seeded_rules_never_fire(self, seeded_engine):
        result = seeded_engine.check_for_potential_mistake(make_context(operation="map_user_api"))
        assert result.should_prevent is False

    def test_none_context_raises(self, engine):
        with pytest.raises(InvalidContextError):
            engine.check_for_potential_mistake(None)


# ── Guidance and corrections ─────────────────────────────────────────


class TestGuidance:
    def test_seeded_mapping_guidance(self, seeded_engine):
        guidance = seeded_engine.get_field_mapping_guidance("user_api", "user_form", "firstName")
        assert guidance.suggested_mapping == "first_name"
        assert guidance.confidence == 95

    def test_unknown_mapping_guidance(self, engine):
        guidance = engine.get_field_mapping_guidance("x", "y", "z")
        assert guidance.confidence == 0
        assert guidance.reasoning == "No mapping history found"

    def test_structure_guidance(self, engine):
        engine.register_structure(
            "api_endpoint", CodeStructure(name="api_endpoint", template="try {} catch {}")
        )
        guidance = engine.get_structure_guidance("api_endpoint", "default")
        assert guidance.template == "try {} catch {}"
        assert guidance.confidence == 100

    def test_unknown_structure_guidance(self, engine):
        guidance = engine.get_structure_guidance("nothing", "default")
        assert guidance.confidence == 0
        assert guidance.reasoning == "No structure patterns found"

    def test_suggested_correction_after_verified_fix(self, engine):
        mistake_id = engine.record_mistake(make_context(), make_error(), make_attempt())
        assert engine.record_correct_solution(
            mistake_id, CorrectSolution(approach="Use the API field names")
        )
        suggestion = engine.get_suggested_correction(make_context(), "MappingError")
        assert suggestion.suggestion == "Use the API field names"
        assert engine.get_mistake_history()[0].verified is True

    def test_results_are_copies(self, engine):
        engine.record_mistake(make_context(), make_error())
        engine.get_prevention_rules()[0].priority = 1
        engine.get_mistake_history()[0].recurrence_count = 99
        assert engine.get_prevention_rules()[0].priority == 70
        assert engine.get_mistake_history()[0].recurrence_count == 1


# ── Metrics ──────────────────────────────────────────────────────────


class TestMetrics:
    def test_empty_engine(self, engine):
        metrics = engine.get_effectiveness_metrics()
        assert metrics.total_mistakes_recorded == 0
        assert metrics.recurring_mistakes == 0
        assert metrics.prevention_effectiveness == 100
        assert metrics.rules_generated == 0
        assert metrics.mapping_accuracy == 100
        assert metrics.structure_reliability == 100
        assert metrics.learning_insights == 0

    def test_after_recurrence(self, engine):
        engine.record_mistake(make_context(), make_error())
        engine.record_mistake(make_context(), make_error())
        engine.record_mistake(
            make_context(operation="calculate_total"),
            make_error(error_type="ArithmeticError", original_error="off by one"),
        )
        metrics = engine.get_effectiveness_metrics()
        assert metrics.total_mistakes_recorded == 2
        assert metrics.recurring_mistakes == 1
        assert metrics.prevention_effectiveness == 50
        assert metrics.rules_generated == 2
        assert metrics.learning_insights == 2

    def test_seeded_metrics(self, seeded_engine):
        metrics = seeded_engine.get_effectiveness_metrics()
        assert metrics.rules_generated == 3
        assert metrics.mapping_accuracy == 90
        assert metrics.structure_reliability == 90

    def test_health_report(self, engine):
        mistake_id = engine.record_mistake(make_context(), make_error())
        engine.record_rule_outcome("rule_map_user_api_mappingerror", helpful=True)
        report = engine.get_health_report()
        assert report.status == "healthy"
        assert report.mistakes_prevented == 1
        assert report.average_confidence == 85
        assert report.metrics.total_mistakes_recorded == 1
        assert engine.record_mistake_outcome(mistake_id, True) is True
        assert engine.record_mistake_outcome("missing", True) is False


# ── Observers ────────────────────────────────────────────────────────


class TestSubscribe:
    def test_listener_notified(self, engine):
        seen = []
        engine.subscribe(lambda record, is_new: seen.append((record.id, is_new)))
        first = engine.record_mistake(make_context(), make_error())
        engine.record_mistake(make_context(), make_error())
        assert seen == [(first, True), (first, False)]

    def test_failing_listener_does_not_break_recording(self, engine, caplog):
        def boom(record, is_new):
            raise RuntimeError("listener down")

        engine.subscribe(boom)
        with caplog.at_level(logging.ERROR):
            mistake_id = engine.record_mistake(make_context(), make_error())
        assert mistake_id
        assert "Mistake listener failed" in caplog.text


# ── Persistence ──────────────────────────────────────────────────────


class TestPersistence:
    def test_state_survives_new_engine(self, settings, store):
        engine = MistakeLearningEngine(settings, store=store)
        engine.record_mistake(make_context(), make_error(), make_attempt())
        engine.record_mistake(make_context(), make_error(), make_attempt())
        engine.record_correct_mapping("a", "b", "x", "y")

        restored = MistakeLearningEngine(settings, store=store)
        history = restored.get_mistake_history()
        assert len(history) == 1
        assert history[0].recurrence_count == 2
        assert [r.id for r in restored.get_prevention_rules()] == ["rule_map_user_api_mappingerror"]
        assert restored.get_field_mapping_guidance("a", "b", "x").suggested_mapping == "y"
        assert restored.check_for_potential_mistake(make_context()).should_prevent is True

    def test_autosave_off_requires_flush(self, store):
        settings = LearningSettings()
        settings.persistence.autosave = False
        engine = MistakeLearningEngine(settings, store=store)
        engine.record_mistake(make_context(), make_error())
        assert store.load("records") == {}
        engine.flush()
        assert len(store.load("records")) == 1

    def test_seed_setting_loads_knowledge_base(self, store):
        settings = LearningSettings()
        settings.engine.seed_knowledge_base = True
        engine = MistakeLearningEngine(settings, store=store)
        assert len(engine.get_mapping_memories()) == 2
        assert len(engine.get_structure_memories()) == 2

    def test_engines_are_isolated(self, settings):
        a = MistakeLearningEngine(settings, store=InMemoryKeyValueStore())
        b = MistakeLearningEngine(settings, store=InMemoryKeyValueStore())
        a.record_mistake(make_context(), make_error())
        assert b.get_mistake_history() == []


def test_custom_classifier_is_used(settings, store):
    classifier = TokenVoteClassifier(KeywordTypeClassifier(), min_votes=1)
    classifier.train([({"original_error": "quota exceeded"}, "integration_error")])
    engine = MistakeLearningEngine(settings, store=store, type_classifier=classifier)
    engine.record_mistake(
        make_context(operation="charge_card"),
        make_error(error_type="QuotaError", original_error="quota exceeded"),
    )
    assert engine.get_mistake_history()[0].type == MistakeType.INTEGRATION_ERROR
