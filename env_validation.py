"""Analysis configuration, environment defaults and config-file loading."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, FrozenSet, Mapping, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from schemas import DIFFICULTIES

logger = logging.getLogger(__name__)

DEFAULT_WEIGHTS: Dict[str, float] = {"상": 1.2, "중": 1.0, "하": 0.8}
DEFAULT_DIFFICULTY_RATIO: Dict[str, float] = {"상": 1.0, "중": 1.0, "하": 1.0}


class ConfigInvalidError(ValueError):
    """Raised when analysis settings fail validation at the caller boundary."""


class AnalysisConfig(BaseModel):
    """Validated settings for one pipeline run.

    ``weights`` drive mastery weighting and ``difficulty_ratio`` drives exam
    point allocation; the two mappings are independent. Partial mappings are
    completed from the defaults.
    """

    min_test_count: int = Field(default=1, ge=1, alias="minTestCount")
    recent_count: int = Field(default=5, ge=1, alias="recentCount")
    weights: Dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_WEIGHTS))
    difficulty_ratio: Dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_DIFFICULTY_RATIO), alias="difficultyRatio"
    )
    selected_sub_units: FrozenSet[str] = Field(default_factory=frozenset, alias="selectedSubUnits")
    generate_ai_report: bool = Field(
        default=False,
        alias="generateAiReport",
        description="Gates the external summariser; carried through untouched by the engine.",
    )

    model_config = {"frozen": True, "populate_by_name": True}

    @field_validator("weights", mode="before")
    @classmethod
    def _complete_weights(cls, value: Any) -> Any:
        return _complete_mapping(value, DEFAULT_WEIGHTS)

    @field_validator("difficulty_ratio", mode="before")
    @classmethod
    def _complete_ratio(cls, value: Any) -> Any:
        return _complete_mapping(value, DEFAULT_DIFFICULTY_RATIO)

    @field_validator("weights", "difficulty_ratio")
    @classmethod
    def _check_positive(cls, value: Dict[str, float]) -> Dict[str, float]:
        unknown = sorted(set(value) - set(DIFFICULTIES))
        if unknown:
            raise ValueError(f"unknown difficulty labels: {', '.join(unknown)}")
        for label, amount in value.items():
            if amount <= 0:
                raise ValueError(f"value for difficulty {label} must be positive, got {amount}")
        return value

    @field_validator("selected_sub_units", mode="before")
    @classmethod
    def _strip_paths(cls, value: Any) -> Any:
        if value is None:
            return frozenset()
        if isinstance(value, str):
            value = [value]
        return frozenset(str(path).strip() for path in value if str(path).strip())

    @model_validator(mode="after")
    def _warn_unreachable_gate(self) -> "AnalysisConfig":
        if self.min_test_count > self.recent_count:
            logger.warning(
                "min_test_count (%s) exceeds recent_count (%s); no mastery record can be emitted",
                self.min_test_count,
                self.recent_count,
            )
        return self

    # ------------------------------------------------------------------
    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]] = None) -> "AnalysisConfig":
        """Validate ``data`` over the environment defaults, raising :class:`ConfigInvalidError`."""

        merged = default_config_values()
        if data:
            merged.update(_canonical_keys(data))
        try:
            return cls.model_validate(merged)
        except ValidationError as exc:
            raise ConfigInvalidError(f"Invalid analysis configuration: {exc}") from exc

    def weight_for(self, difficulty: str) -> float:
        return self.weights[difficulty]

    def ratio_for(self, difficulty: str) -> float:
        return self.difficulty_ratio[difficulty]


def _complete_mapping(value: Any, defaults: Mapping[str, float]) -> Any:
    if value is None:
        return dict(defaults)
    if not isinstance(value, Mapping):
        return value
    completed = dict(defaults)
    completed.update({str(k).strip(): v for k, v in value.items()})
    return completed


_ALIASES = {
    field.alias: name for name, field in AnalysisConfig.model_fields.items() if field.alias
}


def _canonical_keys(data: Mapping[str, Any]) -> Dict[str, Any]:
    return {_ALIASES.get(key, key): value for key, value in data.items()}


def get_env_bool(name: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on", "enabled"}


def _get_env_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    try:
        return int(value)
    except ValueError as exc:
        raise ConfigInvalidError(f"Environment variable {name} must be an integer: {value}") from exc


def default_config_values() -> Dict[str, Any]:
    """Return config defaults with ``EXAM_*`` environment overrides applied."""

    values: Dict[str, Any] = {}
    min_tests = _get_env_int("EXAM_MIN_TEST_COUNT")
    if min_tests is not None:
        values["min_test_count"] = min_tests
    recent = _get_env_int("EXAM_RECENT_COUNT")
    if recent is not None:
        values["recent_count"] = recent
    values["generate_ai_report"] = get_env_bool("EXAM_GENERATE_AI_REPORT")
    return values


def validate_environment() -> None:
    """Validate the ``EXAM_*`` environment variables.

    Raises ConfigInvalidError if validation fails.
    """
    optional_vars = {
        "EXAM_MIN_TEST_COUNT": "Minimum attempts before a mastery record is emitted",
        "EXAM_RECENT_COUNT": "Number of most recent attempts used for mastery",
    }

    AnalysisConfig.from_mapping()

    for var, description in optional_vars.items():
        if not os.getenv(var):
            logger.info("Environment variable %s not set; using built-in default (%s)", var, description)


def load_config_file(path: str | Path) -> AnalysisConfig:
    """Load an :class:`AnalysisConfig` from a JSON or YAML file."""

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    text = path.read_text(encoding="utf-8")
    suffix = path.suffix.lower()
    if suffix in {".yml", ".yaml"}:
        raw = yaml.safe_load(text)
    elif suffix == ".json":
        raw = json.loads(text)
    else:
        raise ConfigInvalidError(f"Unsupported config format: {path}")
    if raw is None:
        raw = {}
    if not isinstance(raw, Mapping):
        raise ConfigInvalidError("Config file must contain a mapping")
    return AnalysisConfig.from_mapping(raw)
