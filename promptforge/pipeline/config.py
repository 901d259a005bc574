"""
Comparison Run Configuration

Dataclasses for a complete comparison run and YAML loading. Credentials
omitted from the YAML are resolved from the environment here, so the rest of
the library only ever sees them on ModelConfig.api_key.

Example YAML:
    base_input: "A support assistant for a food delivery app"
    generator:
      provider: openai
      model: gpt-4o
    stages:
      variations: {provider: anthropic, model: claude-3-5-sonnet-latest, temperature: 0.9}
    judge: {provider: openai, model: gpt-4o-mini, temperature: 0.0}
    models:
      - {provider: openai, model: gpt-4o-mini}
      - {provider: groq, model: llama-3.1-8b-instant}
    criteria:
      - {id: clarity, weight: 1.0}
    variation_count: 3
    test_case_count: 2
    expected_tokens: 400
"""

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

import config
from utils.exceptions import ConfigError

from ..providers.base import ModelConfig
from ..scoring.criteria import DEFAULT_CRITERIA, EvaluationCriterion, TestCase

logger = logging.getLogger(__name__)

STAGE_NAMES = ("meta_prompt", "variations", "test_cases")


def resolve_credential(model_config: ModelConfig) -> ModelConfig:
    """Fill in api_key from the environment when the config has none."""
    if model_config.api_key:
        return model_config
    api_key = config.get_api_key(model_config.provider.key)
    return replace(model_config, api_key=api_key) if api_key else model_config


def _model_config(data: Any, where: str) -> ModelConfig:
    if not isinstance(data, dict):
        raise ConfigError(f"'{where}' must be a mapping with provider and model")
    if "provider" not in data:
        raise ConfigError(f"'{where}' is missing 'provider'")
    return resolve_credential(ModelConfig.from_dict(data))


def _criterion(data: Any, where: str) -> EvaluationCriterion:
    """Build a criterion; fields omitted for a default criterion id are inherited."""
    if not isinstance(data, dict):
        raise ConfigError(f"'{where}' must be a mapping")
    defaults = {c.id: c for c in DEFAULT_CRITERIA}
    base = defaults.get(str(data.get("id", "")))
    merged = dict(base.to_dict()) if base else {}
    merged.update(data)
    judge = merged.pop("judge_config", None)
    criterion = EvaluationCriterion.from_dict(merged)
    if judge:
        criterion = replace(criterion, judge_config=_model_config(judge, f"{where}.judge_config"))
    return criterion


def _test_case(data: Any, where: str) -> TestCase:
    if isinstance(data, str):
        return TestCase(input=data)
    if not isinstance(data, dict):
        raise ConfigError(f"'{where}' must be a string or a mapping with input and criteria")
    return TestCase.from_dict(data)


@dataclass(frozen=True)
class GeneratorSettings:
    """
    Model configs for the three generation stages.

    A stage without an override uses the default config.
    """

    default: ModelConfig
    meta_prompt: Optional[ModelConfig] = None
    variations: Optional[ModelConfig] = None
    test_cases: Optional[ModelConfig] = None

    def for_stage(self, stage: str) -> ModelConfig:
        if stage not in STAGE_NAMES:
            raise ConfigError(f"Unknown pipeline stage: {stage}")
        return getattr(self, stage) or self.default


@dataclass
class RunConfig:
    """Complete comparison run configuration, loaded from YAML."""

    base_input: str
    generators: GeneratorSettings
    models: List[ModelConfig]
    judge: Optional[ModelConfig] = None
    criteria: List[EvaluationCriterion] = field(default_factory=lambda: list(DEFAULT_CRITERIA))
    test_cases: List[TestCase] = field(default_factory=list)  # caller-supplied; skips generation
    variation_count: int = 3
    test_case_count: int = 3
    expected_tokens: int = 500
    verbose: bool = False

    @property
    def judge_config(self) -> ModelConfig:
        return self.judge or self.generators.default

    @classmethod
    def from_yaml(cls, path: Path) -> "RunConfig":
        """Load a run configuration from a YAML file.

        Raises:
            FileNotFoundError: If the file does not exist.
            ConfigError: On a malformed document or unknown provider.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path) as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RunConfig":
        base_input = str(data.get("base_input") or "").strip()
        if not base_input:
            raise ConfigError("'base_input' is required")

        # Generator defaults to the environment-configured provider/model
        generator = data.get("generator") or {
            "provider": config.DEFAULT_PROVIDER,
            "model": config.DEFAULT_MODEL,
        }
        stages = data.get("stages") or {}
        unknown = set(stages) - set(STAGE_NAMES)
        if unknown:
            raise ConfigError(f"Unknown stage override(s): {', '.join(sorted(unknown))}")
        generators = GeneratorSettings(
            default=_model_config(generator, "generator"),
            **{name: _model_config(stages[name], f"stages.{name}") for name in stages},
        )

        models = [_model_config(m, f"models[{i}]") for i, m in enumerate(data.get("models") or [])]
        if not models:
            raise ConfigError("At least one entry under 'models' is required")

        # Judge defaults to the environment-configured judge provider/model
        judge = data.get("judge") or {
            "provider": config.DEFAULT_JUDGE_PROVIDER,
            "model": config.DEFAULT_JUDGE_MODEL,
        }
        criteria_data = data.get("criteria")
        criteria = (
            [_criterion(c, f"criteria[{i}]") for i, c in enumerate(criteria_data)]
            if criteria_data
            else list(DEFAULT_CRITERIA)
        )

        expected_tokens = int(data.get("expected_tokens", 500))
        if expected_tokens <= 0:
            raise ConfigError(f"'expected_tokens' must be positive, got {expected_tokens}")

        return cls(
            base_input=base_input,
            generators=generators,
            models=models,
            judge=_model_config(judge, "judge"),
            criteria=criteria,
            test_cases=[
                _test_case(tc, f"test_cases[{i}]") for i, tc in enumerate(data.get("test_cases") or [])
            ],
            variation_count=int(data.get("variation_count", 3)),
            test_case_count=int(data.get("test_case_count", 3)),
            expected_tokens=expected_tokens,
            verbose=bool(data.get("verbose", False)),
        )
