"""
Evaluation Criteria and Test Cases

A criterion is a named, weighted quality dimension judged by a model. A test
case is an input scenario plus per-criterion weights that override the
criterion's own weight when the test case's results are scored.

Usage:
    from promptforge.scoring.criteria import DEFAULT_CRITERIA, TestCase

    case = TestCase(input="My order never arrived.", criteria={"empathy": 1.0})
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from utils.exceptions import ConfigError

from ..providers.base import ModelConfig

logger = logging.getLogger(__name__)


def _check_weight(weight: float, what: str) -> float:
    try:
        weight = float(weight)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Weight for {what} is not a number: {weight!r}") from e
    if not 0.0 <= weight <= 1.0:
        raise ConfigError(f"Weight for {what} must be in [0, 1], got {weight}")
    return weight


@dataclass(frozen=True)
class EvaluationCriterion:
    """A quality dimension scored in [0, 1] by a judge model."""

    id: str
    name: str
    description: str = ""
    system_prompt: str = ""
    weight: float = 1.0
    judge_config: Optional[ModelConfig] = None  # None: use the scorer's default judge

    def __post_init__(self) -> None:
        if not self.id:
            raise ConfigError("Criterion id is required")
        object.__setattr__(self, "weight", _check_weight(self.weight, f"criterion '{self.id}'"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "system_prompt": self.system_prompt,
            "weight": self.weight,
            "judge_config": self.judge_config.to_dict() if self.judge_config else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EvaluationCriterion":
        judge = data.get("judge_config")
        criterion_id = str(data.get("id") or "").strip()
        return cls(
            id=criterion_id,
            name=data.get("name") or criterion_id.capitalize(),
            description=data.get("description", ""),
            system_prompt=data.get("system_prompt", ""),
            weight=data.get("weight", 1.0),
            judge_config=ModelConfig.from_dict(judge) if judge else None,
        )


@dataclass(frozen=True)
class TestCase:
    """An input scenario plus criterion id -> weight overrides in [0, 1]."""

    __test__ = False  # not a pytest class

    input: str
    criteria: Dict[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.input or not self.input.strip():
            raise ConfigError("Test case input must not be empty")
        object.__setattr__(
            self,
            "criteria",
            {str(k): _check_weight(v, f"test case criterion '{k}'") for k, v in self.criteria.items()},
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"input": self.input, "criteria": dict(self.criteria)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TestCase":
        return cls(input=data.get("input", ""), criteria=dict(data.get("criteria") or {}))


DEFAULT_CRITERIA: List[EvaluationCriterion] = [
    EvaluationCriterion(
        id="clarity",
        name="Clarity",
        description="How clear and understandable is the response?",
        system_prompt=(
            "Rate the following response for clarity and understandability on a scale of 0 to 1. "
            "Consider whether the message is well-structured, easy to follow, and free of ambiguity."
        ),
    ),
    EvaluationCriterion(
        id="relevance",
        name="Relevance",
        description="How relevant is the response to the input?",
        system_prompt=(
            "Rate the following response for relevance on a scale of 0 to 1. "
            "Consider how well it addresses the specific query or concern raised in the input."
        ),
    ),
    EvaluationCriterion(
        id="empathy",
        name="Empathy",
        description="How empathetic is the response?",
        system_prompt=(
            "Rate the following response for empathy on a scale of 0 to 1. "
            "Consider how well it acknowledges and responds to the emotional content of the input."
        ),
    ),
    EvaluationCriterion(
        id="actionability",
        name="Actionability",
        description="How actionable is the advice or information provided?",
        system_prompt=(
            "Rate the following response for actionability on a scale of 0 to 1. "
            "Consider whether it provides practical, implementable suggestions or clear next steps."
        ),
    ),
    EvaluationCriterion(
        id="professionalism",
        name="Professionalism",
        description="How professional is the tone and content?",
        system_prompt=(
            "Rate the following response for professionalism on a scale of 0 to 1. "
            "Consider the appropriateness of tone, language choice, and overall presentation."
        ),
    ),
]
