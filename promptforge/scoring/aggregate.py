"""
Score Aggregation

Reduces per-criterion score maps to weighted overall scores, and ranks
variations and models across an evaluation run.

Averaging across several results is an arithmetic mean per criterion,
computed before weighting. A failed unit has no scores and counts as 0 on
every criterion rather than being dropped.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from .criteria import EvaluationCriterion, TestCase


def weighted_score(scores: Mapping[str, float], weights: Mapping[str, float]) -> float:
    """
    sum(score_i * weight_i) / sum(weight_i) over the weighted criteria.

    A criterion missing from `scores` counts as 0. Returns 0 when the total
    weight is 0.
    """
    total_weight = sum(weights.values())
    if total_weight <= 0:
        return 0.0
    weighted_sum = sum(scores.get(criterion_id, 0.0) * w for criterion_id, w in weights.items())
    return weighted_sum / total_weight


def criterion_weights(criteria: Sequence[EvaluationCriterion]) -> Dict[str, float]:
    return {c.id: c.weight for c in criteria}


def effective_weights(
    criteria: Sequence[EvaluationCriterion], test_case: Optional[TestCase] = None
) -> Dict[str, float]:
    """Criterion weights, overridden by the test case's weight where it names one."""
    overrides = test_case.criteria if test_case is not None else {}
    return {c.id: overrides.get(c.id, c.weight) for c in criteria}


def average_scores(
    score_maps: Iterable[Optional[Mapping[str, float]]], criterion_ids: Sequence[str]
) -> Dict[str, float]:
    """Per-criterion mean; a None map (failed unit) counts as all zeros."""
    rows = [
        [(scores or {}).get(criterion_id, 0.0) for criterion_id in criterion_ids]
        for scores in score_maps
    ]
    if not rows:
        return {criterion_id: 0.0 for criterion_id in criterion_ids}
    means = np.mean(np.array(rows, dtype=float), axis=0)
    return {criterion_id: float(m) for criterion_id, m in zip(criterion_ids, means)}


@dataclass
class Ranking:
    """One ranked entry: a variation or a model."""

    key: str
    label: str
    overall: float
    criterion_scores: Dict[str, float] = field(default_factory=dict)
    result_count: int = 0
    failed_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "label": self.label,
            "overall": round(self.overall, 4),
            "criterion_scores": {k: round(v, 4) for k, v in self.criterion_scores.items()},
            "result_count": self.result_count,
            "failed_count": self.failed_count,
        }


def _rank(
    groups: Dict[Tuple[Any, ...], Tuple[str, str, List[Any]]],
    criteria: Sequence[EvaluationCriterion],
) -> List[Ranking]:
    ids = [c.id for c in criteria]
    weights = criterion_weights(criteria)
    rankings = []
    for sort_key, (key, label, results) in groups.items():
        means = average_scores((r.scores if r.success else None for r in results), ids)
        rankings.append(
            (
                sort_key,
                Ranking(
                    key=key,
                    label=label,
                    overall=weighted_score(means, weights),
                    criterion_scores=means,
                    result_count=len(results),
                    failed_count=sum(1 for r in results if not r.success),
                ),
            )
        )
    rankings.sort(key=lambda item: (-item[1].overall, item[0]))
    return [ranking for _, ranking in rankings]


def rank_variations(
    results: Iterable[Any], criteria: Sequence[EvaluationCriterion]
) -> List[Ranking]:
    """
    Rank variations by the weighted mean of their per-criterion averages.

    Args:
        results: ComparisonResults of an evaluation run.
        criteria: Criteria whose own weights apply to the ranking.

    Returns:
        Rankings sorted by descending overall score, ties by variation index.
    """
    groups: Dict[Tuple[Any, ...], Tuple[str, str, List[Any]]] = {}
    for result in results:
        index = result.variation_index
        groups.setdefault((index,), (str(index), f"Variation {index + 1}", []))[2].append(result)
    return _rank(groups, criteria)


def rank_models(results: Iterable[Any], criteria: Sequence[EvaluationCriterion]) -> List[Ranking]:
    """Rank (provider, model) pairs the same way; ties broken by label."""
    groups: Dict[Tuple[Any, ...], Tuple[str, str, List[Any]]] = {}
    for result in results:
        label = result.model_config.label
        groups.setdefault((label,), (label, label, []))[2].append(result)
    return _rank(groups, criteria)
