"""Tests for the unified settings module."""

import os
from unittest.mock import patch

from mistake_learning.settings import (
    EngineSettings,
    PersistenceSettings,
    ScheduleSettings,
    get_settings,
    load_settings,
    load_yaml_config,
    reset_settings,
)

ENV_KEYS = [
    "MISTAKE_LEARNING_SEED_KNOWLEDGE_BASE",
    "MISTAKE_LEARNING_RULE_MINIMUM_CONFIDENCE",
    "MISTAKE_LEARNING_BACKEND",
    "MISTAKE_LEARNING_DB_PATH",
    "MISTAKE_LEARNING_AUTOSAVE",
    "MISTAKE_LEARNING_CRON_DEEP_LEARNING",
    "MISTAKE_LEARNING_CRON_PATTERN_ANALYSIS",
    "MISTAKE_LEARNING_CRON_RETRAIN",
]


def _clean_environ() -> dict:
    return {k: v for k, v in os.environ.items() if k not in ENV_KEYS}


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------


class TestEngineSettingsDefaults:
    def test_initial_confidence(self):
        assert EngineSettings().initial_confidence == 85.0

    def test_validation_thresholds(self):
        s = EngineSettings()
        assert s.validation_min_evidence == 10
        assert s.validation_min_success_rate == 0.7
        assert s.validation_min_confidence == 80.0

    def test_seeding_off_by_default(self):
        assert EngineSettings().seed_knowledge_base is False


class TestScheduleSettingsDefaults:
    def test_default_crons(self):
        s = ScheduleSettings()
        assert s.deep_learning == "*/30 * * * *"
        assert s.pattern_analysis == "0 * * * *"
        assert s.retrain == "0 3 * * *"


class TestPersistenceSettingsDefaults:
    def test_memory_backend(self):
        s = PersistenceSettings()
        assert s.backend == "memory"
        assert s.autosave is True


# ---------------------------------------------------------------------------
# load_yaml_config
# ---------------------------------------------------------------------------


class TestLoadYamlConfig:
    def test_returns_empty_dict_for_missing_file(self, tmp_path):
        assert load_yaml_config(tmp_path / "nonexistent.yml") == {}

    def test_loads_valid_yaml(self, tmp_path):
        config_file = tmp_path / "config.yml"
        config_file.write_text("engine:\n  priority_bump: 10\n")
        assert load_yaml_config(config_file)["engine"]["priority_bump"] == 10

    def test_returns_empty_dict_for_non_dict_yaml(self, tmp_path):
        config_file = tmp_path / "config.yml"
        config_file.write_text("just a string\n")
        assert load_yaml_config(config_file) == {}

    def test_returns_empty_dict_for_empty_file(self, tmp_path):
        config_file = tmp_path / "config.yml"
        config_file.write_text("")
        assert load_yaml_config(config_file) == {}


# ---------------------------------------------------------------------------
# load_settings precedence
# ---------------------------------------------------------------------------


class TestLoadSettings:
    def test_defaults_with_no_config(self, tmp_path):
        with patch.dict(os.environ, _clean_environ(), clear=True):
            settings = load_settings(
                user_config_path=tmp_path / "nope.yml",
                project_config_path=tmp_path / "nope2.yml",
            )
        assert settings.engine.rule_minimum_confidence == 70.0
        assert settings.persistence.backend == "memory"

    def test_user_config_overrides_defaults(self, tmp_path):
        user_cfg = tmp_path / "user.yml"
        user_cfg.write_text(
            "engine:\n  rule_minimum_confidence: 60\n  seed_knowledge_base: true\n"
        )
        with patch.dict(os.environ, _clean_environ(), clear=True):
            settings = load_settings(
                user_config_path=user_cfg,
                project_config_path=tmp_path / "nope.yml",
            )
        assert settings.engine.rule_minimum_confidence == 60.0
        assert settings.engine.seed_knowledge_base is True
        assert settings.engine.initial_confidence == 85.0

    def test_project_config_overrides_user_config(self, tmp_path):
        user_cfg = tmp_path / "user.yml"
        user_cfg.write_text("persistence:\n  backend: sqlite\n  path: /tmp/user.db\n")
        project_cfg = tmp_path / "project.yml"
        project_cfg.write_text("persistence:\n  path: /tmp/project.db\n")
        with patch.dict(os.environ, _clean_environ(), clear=True):
            settings = load_settings(
                user_config_path=user_cfg,
                project_config_path=project_cfg,
            )
        assert settings.persistence.backend == "sqlite"
        assert settings.persistence.path == "/tmp/project.db"

    def test_schedule_from_file(self, tmp_path):
        project_cfg = tmp_path / "project.yml"
        project_cfg.write_text("schedule:\n  retrain: '0 4 * * 0'\n")
        with patch.dict(os.environ, _clean_environ(), clear=True):
            settings = load_settings(
                user_config_path=tmp_path / "nope.yml",
                project_config_path=project_cfg,
            )
        assert settings.schedule.retrain == "0 4 * * 0"
        assert settings.schedule.deep_learning == "*/30 * * * *"

    def test_env_vars_override_all(self, tmp_path):
        project_cfg = tmp_path / "project.yml"
        project_cfg.write_text("persistence:\n  backend: memory\n  autosave: true\n")
        env = {
            **_clean_environ(),
            "MISTAKE_LEARNING_BACKEND": "sqlite",
            "MISTAKE_LEARNING_DB_PATH": "/tmp/env.db",
            "MISTAKE_LEARNING_AUTOSAVE": "false",
            "MISTAKE_LEARNING_CRON_DEEP_LEARNING": "*/5 * * * *",
        }
        with patch.dict(os.environ, env, clear=True):
            settings = load_settings(
                user_config_path=tmp_path / "nope.yml",
                project_config_path=project_cfg,
            )
        assert settings.persistence.backend == "sqlite"
        assert settings.persistence.path == "/tmp/env.db"
        assert settings.persistence.autosave is False
        assert settings.schedule.deep_learning == "*/5 * * * *"


class TestSettingsCache:
    def test_get_settings_is_cached(self):
        reset_settings()
        try:
            assert get_settings() is get_settings()
        finally:
            reset_settings()

    def test_reset_clears_cache(self):
        reset_settings()
        first = get_settings()
        reset_settings()
        try:
            assert get_settings() is not first
        finally:
            reset_settings()
