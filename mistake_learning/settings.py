"""Unified configuration for the mistake learning engine.

Loads settings from (in order of precedence, highest first):
1. Environment variables (MISTAKE_LEARNING_*)
2. Project-local config (.mistake_learning.yml in cwd)
3. User config (~/.mistake_learning/config.yml)
4. Built-in defaults
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from mistake_learning.config import Config


@dataclass
class EngineSettings:
    """Thresholds and tunables for recording and scoring mistakes."""

    initial_confidence: float = 85.0
    rule_minimum_confidence: float = 70.0
    priority_bump: int = 5
    validation_min_evidence: int = 10
    validation_min_success_rate: float = 0.7
    validation_min_confidence: float = 80.0
    max_mapping_examples: int = 10
    mapping_similarity_threshold: float = 0.6
    seed_knowledge_base: bool = False


@dataclass
class ScheduleSettings:
    """Cron expressions for the background learning tasks."""

    deep_learning: str = "*/30 * * * *"
    pattern_analysis: str = "0 * * * *"
    retrain: str = "0 3 * * *"


@dataclass
class PersistenceSettings:
    """Where the engine hydrates from and flushes to."""

    backend: str = "memory"  # "memory" | "sqlite"
    path: str = Config.DEFAULT_DB_PATH
    autosave: bool = True


@dataclass
class LearningSettings:
    """Root configuration container."""

    engine: EngineSettings = field(default_factory=EngineSettings)
    schedule: ScheduleSettings = field(default_factory=ScheduleSettings)
    persistence: PersistenceSettings = field(default_factory=PersistenceSettings)


def load_yaml_config(path: Path) -> dict:
    """Load a YAML config file, returning empty dict if not found.

    Args:
        path: Path to the YAML file.

    Returns:
        Parsed dict, or empty dict on any failure.
    """
    if not path.exists():
        return {}
    try:
        import yaml

        with open(path) as f:
            data = yaml.safe_load(f)
        return data if isinstance(data, dict) else {}
    except Exception:
        return {}


def _as_bool(val) -> bool:
    return val if isinstance(val, bool) else str(val).lower() == "true"


def _apply_dict_to_engine(settings: EngineSettings, data: dict) -> None:
    """Apply dict values to EngineSettings."""
    float_keys = (
        "initial_confidence",
        "rule_minimum_confidence",
        "validation_min_success_rate",
        "validation_min_confidence",
        "mapping_similarity_threshold",
    )
    int_keys = ("priority_bump", "validation_min_evidence", "max_mapping_examples")
    for key in float_keys:
        if key in data:
            setattr(settings, key, float(data[key]))
    for key in int_keys:
        if key in data:
            setattr(settings, key, int(data[key]))
    if "seed_knowledge_base" in data:
        settings.seed_knowledge_base = _as_bool(data["seed_knowledge_base"])


def _apply_dict_to_schedule(settings: ScheduleSettings, data: dict) -> None:
    """Apply dict values to ScheduleSettings."""
    for key in ("deep_learning", "pattern_analysis", "retrain"):
        if key in data:
            setattr(settings, key, str(data[key]))


def _apply_dict_to_persistence(settings: PersistenceSettings, data: dict) -> None:
    """Apply dict values to PersistenceSettings."""
    if "backend" in data:
        settings.backend = str(data["backend"])
    if "path" in data:
        settings.path = str(data["path"])
    if "autosave" in data:
        settings.autosave = _as_bool(data["autosave"])


def _apply_file_data(settings: LearningSettings, data: dict) -> None:
    if isinstance(data.get("engine"), dict):
        _apply_dict_to_engine(settings.engine, data["engine"])
    if isinstance(data.get("schedule"), dict):
        _apply_dict_to_schedule(settings.schedule, data["schedule"])
    if isinstance(data.get("persistence"), dict):
        _apply_dict_to_persistence(settings.persistence, data["persistence"])


def _apply_env_overrides(settings: LearningSettings) -> None:
    """Apply MISTAKE_LEARNING_* environment variable overrides."""
    seed = os.environ.get("MISTAKE_LEARNING_SEED_KNOWLEDGE_BASE")
    if seed:
        settings.engine.seed_knowledge_base = seed.lower() == "true"

    min_conf = os.environ.get("MISTAKE_LEARNING_RULE_MINIMUM_CONFIDENCE")
    if min_conf:
        settings.engine.rule_minimum_confidence = float(min_conf)

    backend = os.environ.get("MISTAKE_LEARNING_BACKEND")
    if backend:
        settings.persistence.backend = backend

    db_path = os.environ.get("MISTAKE_LEARNING_DB_PATH")
    if db_path:
        settings.persistence.path = db_path

    autosave = os.environ.get("MISTAKE_LEARNING_AUTOSAVE")
    if autosave:
        settings.persistence.autosave = autosave.lower() == "true"

    for task in ("deep_learning", "pattern_analysis", "retrain"):
        cron = os.environ.get(f"MISTAKE_LEARNING_CRON_{task.upper()}")
        if cron:
            setattr(settings.schedule, task, cron)


def load_settings(
    user_config_path: Optional[Path] = None,
    project_config_path: Optional[Path] = None,
) -> LearningSettings:
    """Load settings from config files and env vars.

    Args:
        user_config_path: Override path for user config (testing).
        project_config_path: Override path for project config (testing).

    Returns:
        Fully resolved LearningSettings.
    """
    settings = LearningSettings()

    user_path = user_config_path or (Path(Config.USER_CONFIG_DIR) / "config.yml")
    _apply_file_data(settings, load_yaml_config(user_path))

    project_path = project_config_path or (Path.cwd() / ".mistake_learning.yml")
    _apply_file_data(settings, load_yaml_config(project_path))

    _apply_env_overrides(settings)

    return settings


# Module-level cached instance
_settings: Optional[LearningSettings] = None


def get_settings() -> LearningSettings:
    """Get cached settings instance."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Reset cached settings (for testing)."""
    global _settings
    _settings = None
