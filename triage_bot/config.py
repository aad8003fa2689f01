"""Immutable engine configuration loaded once from YAML at startup."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from triage_bot.engine.classifier import DEFAULT_RULES, CategoryRule
from triage_bot.engine.tokenizer import DEFAULT_STOP_WORDS
from triage_bot.errors import ConfigurationError

logger = logging.getLogger(__name__)

WEIGHT_SUM_TOLERANCE = 1e-6


class CategoryConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(min_length=1)
    priority: int = Field(ge=0)
    keywords: tuple[str, ...] = Field(min_length=1)

    @field_validator("name")
    @classmethod
    def _normalize_name(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("keywords")
    @classmethod
    def _clean_keywords(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        cleaned = tuple(dict.fromkeys(k.strip().lower() for k in value if k.strip()))
        if not cleaned:
            raise ValueError("category needs at least one non-blank keyword")
        return cleaned

    def to_rule(self) -> CategoryRule:
        return CategoryRule(name=self.name, priority=self.priority, keywords=self.keywords)


class ComplexityWeights(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    lines: float = Field(default=0.3, ge=0.0, le=1.0)
    files: float = Field(default=0.2, ge=0.0, le=1.0)
    keywords: float = Field(default=0.5, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _check_sum(self) -> "ComplexityWeights":
        total = self.lines + self.files + self.keywords
        if abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
            raise ValueError(f"complexity weights must sum to 1.0, got {total:.4f}")
        return self

    def as_tuple(self) -> tuple[float, float, float]:
        return (self.lines, self.files, self.keywords)


def _default_categories() -> tuple[CategoryConfig, ...]:
    return tuple(
        CategoryConfig(name=rule.name, priority=rule.priority, keywords=rule.keywords)
        for rule in DEFAULT_RULES
    )


class TriageConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    categories: tuple[CategoryConfig, ...] = Field(default_factory=_default_categories)
    stop_words: frozenset[str] = DEFAULT_STOP_WORDS
    min_token_length: int = Field(default=3, ge=1)
    default_category: str = "question"
    default_confidence: float = Field(default=0.70, ge=0.0, le=1.0)
    apply_category_label: bool = True

    duplicate_threshold: float = Field(default=0.70, ge=0.0, le=1.0)
    duplicate_max_candidates: int = Field(default=20, ge=0, le=100)
    duplicate_prefix_folding: bool = True
    duplicate_prefix_min_length: int = Field(default=3, ge=1)
    duplicate_label: str = Field(default="duplicate", min_length=1)

    default_assignees: tuple[str, ...] = ()
    max_assignees: int = Field(default=3, ge=1)
    min_owner_score: int = Field(default=50, ge=0)
    modules: tuple[str, ...] = ()
    project_root: Path | None = None

    complexity_weights: ComplexityWeights = Field(default_factory=ComplexityWeights)
    history_blend: float = Field(default=0.3, ge=0.0, le=1.0)
    history_lookback_days: int = Field(default=180, ge=0)
    complexity_comment: bool = True
    post_comments: bool = True

    rate_limit_per_s: float = Field(default=5.0, gt=0.0)
    rate_limit_burst: int = Field(default=10, ge=1)
    retry_max_attempts: int = Field(default=3, ge=1, le=10)
    retry_base_delay_s: float = Field(default=1.0, ge=0.0)
    retry_max_delay_s: float = Field(default=30.0, ge=0.0)

    batch_workers: int = Field(default=4, ge=1, le=16)
    batch_timeout_s: float = Field(default=900.0, gt=0.0)

    @field_validator("stop_words", mode="before")
    @classmethod
    def _lower_stop_words(cls, value: Any) -> Any:
        if isinstance(value, (list, tuple, set, frozenset)):
            return frozenset(str(word).strip().lower() for word in value if str(word).strip())
        return value

    @field_validator("default_assignees", "modules")
    @classmethod
    def _strip_entries(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(dict.fromkeys(item.strip().lstrip("@").strip("/") for item in value if item.strip()))

    @model_validator(mode="after")
    def _check_categories(self) -> "TriageConfig":
        if not self.categories:
            raise ValueError("at least one category is required")
        names = [category.name for category in self.categories]
        if len(names) != len(set(names)):
            raise ValueError("category names must be unique")
        if self.default_category not in names:
            raise ValueError(f"default_category {self.default_category!r} is not a configured category")
        return self

    def rules(self) -> tuple[CategoryRule, ...]:
        return tuple(category.to_rule() for category in self.categories)

    def with_modules(self, modules: list[str] | tuple[str, ...]) -> "TriageConfig":
        return self.model_copy(update={"modules": tuple(modules)})


def build_config(data: dict[str, Any] | None) -> TriageConfig:
    try:
        return TriageConfig.model_validate(data or {})
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid triage configuration: {exc}") from exc


def load_config(path: Path | str | None) -> TriageConfig:
    """Load and validate configuration; ``None`` gives the built-in defaults."""
    if path is None:
        return build_config({})
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}", path=str(path))
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Config file is not valid YAML: {path}: {exc}", path=str(path)) from exc
    if data is not None and not isinstance(data, dict):
        raise ConfigurationError(f"Config file must contain a mapping: {path}", path=str(path))
    config = build_config(data)
    logger.info("Loaded triage configuration from %s", path)
    return config
