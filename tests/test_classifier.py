"""Tests for the pluggable mistake classifiers."""

from mistake_learning.models.records import MistakeCategory, MistakeType
from mistake_learning.services.classifier import (
    Classifier,
    KeywordTypeClassifier,
    OperationCategoryClassifier,
    TokenVoteClassifier,
    classify_category,
    classify_type,
)


# ── Keyword type classification ──────────────────────────────────────


class TestKeywordTypeClassifier:
    def _type(self, original_error, error_type="Error"):
        return classify_type(
            KeywordTypeClassifier(),
            {"original_error": original_error, "error_type": error_type},
        )

    def test_field(self):
        assert self._type("Cannot read property 'name' of undefined") == MistakeType.FIELD_NAME_ERROR

    def test_mapping(self):
        assert self._type("bad transform", "MappingError") == MistakeType.MAPPING_ERROR

    def test_structure(self):
        assert self._type("Unexpected token", "SyntaxError") == MistakeType.STRUCTURE_ERROR

    def test_field_wins_over_mapping(self):
        assert self._type("field mapping broken") == MistakeType.FIELD_NAME_ERROR

    def test_performance(self):
        assert self._type("request timed out after 30s") == MistakeType.PERFORMANCE_ERROR

    def test_default_logic_error(self):
        assert self._type("off by one", "ArithmeticError") == MistakeType.LOGIC_ERROR

    def test_missing_features(self):
        assert classify_type(KeywordTypeClassifier(), {}) == MistakeType.LOGIC_ERROR


# ── Category classification ──────────────────────────────────────────


class TestOperationCategoryClassifier:
    def _category(self, operation):
        return classify_category(OperationCategoryClassifier(), {"operation": operation})

    def test_api(self):
        assert self._category("call_api_users") == MistakeCategory.API_INTEGRATION

    def test_database(self):
        assert self._category("database_migrate") == MistakeCategory.DATABASE_SCHEMA

    def test_ui(self):
        assert self._category("render_component") == MistakeCategory.UI_COMPONENTS

    def test_mapping(self):
        assert self._category("field_mapping") == MistakeCategory.FIELD_MAPPING

    def test_api_checked_before_mapping(self):
        assert self._category("map_user_api") == MistakeCategory.API_INTEGRATION

    def test_default_code_generation(self):
        assert self._category("generate_report") == MistakeCategory.CODE_GENERATION


# ── Strategy seam ────────────────────────────────────────────────────


class _Fixed(Classifier):
    def __init__(self, labels):
        self.labels = labels

    def classify(self, features):
        return self.labels


class TestClassifierStrategy:
    def test_unknown_labels_skipped(self):
        assert classify_type(_Fixed(["nonsense", "security_error"]), {}) == MistakeType.SECURITY_ERROR

    def test_only_unknown_labels_falls_back(self):
        assert classify_category(_Fixed(["nonsense"]), {}) == MistakeCategory.CODE_GENERATION

    def test_keyword_classifier_not_trainable(self):
        classifier = KeywordTypeClassifier()
        assert classifier.trainable is False
        assert classifier.train([({"original_error": "x"}, "logic_error")]) == 0


class TestTokenVoteClassifier:
    def test_falls_back_when_untrained(self):
        classifier = TokenVoteClassifier(KeywordTypeClassifier())
        assert classifier.trainable is True
        assert classifier.classify({"original_error": "syntax problem"}) == ["structure_error"]

    def test_learns_from_samples(self):
        classifier = TokenVoteClassifier(KeywordTypeClassifier(), min_votes=2)
        samples = [
            ({"original_error": "quota exceeded on billing"}, "integration_error"),
            ({"original_error": "billing quota reached"}, "integration_error"),
        ]
        assert classifier.train(samples) == 2
        assert classifier.samples_seen == 2
        assert classifier.classify({"original_error": "billing quota"})[0] == "integration_error"

    def test_below_min_votes_uses_fallback(self):
        classifier = TokenVoteClassifier(KeywordTypeClassifier(), min_votes=3)
        classifier.train([({"original_error": "billing"}, "integration_error")])
        assert classifier.classify({"original_error": "billing"}) == []

    def test_retrain_replaces_votes(self):
        classifier = TokenVoteClassifier(KeywordTypeClassifier(), min_votes=1)
        classifier.train([({"original_error": "billing"}, "integration_error")])
        classifier.train([({"original_error": "billing"}, "security_error")])
        assert classifier.classify({"original_error": "billing"}) == ["security_error"]
