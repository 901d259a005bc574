"""
Scoring Module

LLM-judged criterion scores and their reduction into comparable rankings.

Components:
- criteria: EvaluationCriterion, TestCase and the default criteria
- judge: EvaluationScorer (batched LLM-as-Judge requests)
- aggregate: weighted overall scores and variation/model rankings

Usage:
    from promptforge.scoring import (
        DEFAULT_CRITERIA,
        EvaluationScorer,
        rank_variations,
        weighted_score,
    )
"""

from .aggregate import (
    Ranking,
    average_scores,
    criterion_weights,
    effective_weights,
    rank_models,
    rank_variations,
    weighted_score,
)
from .criteria import DEFAULT_CRITERIA, EvaluationCriterion, TestCase
from .judge import EvaluationScorer, build_judge_prompt

__all__ = [
    # Criteria
    "DEFAULT_CRITERIA",
    "EvaluationCriterion",
    "TestCase",
    # Judge
    "EvaluationScorer",
    "build_judge_prompt",
    # Aggregation
    "Ranking",
    "average_scores",
    "criterion_weights",
    "effective_weights",
    "rank_models",
    "rank_variations",
    "weighted_score",
]
