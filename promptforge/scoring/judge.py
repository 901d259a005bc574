"""
LLM-as-Judge Evaluation Scorer

Scores a generated response against a list of criteria. All criteria that
share a judge model are batched into a single prompt, and the judge returns
one JSON object mapping criterion id to a score in [0, 1].

Usage:
    from promptforge.scoring import EvaluationScorer, DEFAULT_CRITERIA

    scorer = EvaluationScorer(judge_config)
    scores = await scorer.score(response, test_case, DEFAULT_CRITERIA, prompt=variation)
    overall = scorer.overall(scores, test_case, DEFAULT_CRITERIA)
"""

import asyncio
import logging
from typing import Dict, List, Optional, Sequence

from utils.exceptions import ConfigError

from ..providers.base import ModelConfig, ProviderPool
from ..structured import parse_score_map
from .aggregate import effective_weights, weighted_score
from .criteria import EvaluationCriterion, TestCase

logger = logging.getLogger(__name__)


JUDGE_PROMPT = """Evaluate the following response produced by an AI assistant against the test case, using the given criteria.

{prompt_section}Test case input:
{test_input}

Response to evaluate:
{response}

Criteria:
{criteria_section}

Rate each criterion from 0 to 1 and return as JSON: a single object mapping each criterion id to its score, for example {example}.
Return only the JSON object.
"""

CRITERION_LINE = "- {id} ({name}): {guidance}"


def build_judge_prompt(
    response: str,
    test_case: TestCase,
    criteria: Sequence[EvaluationCriterion],
    prompt: str = "",
) -> str:
    """Render the batched judging prompt for one response."""
    lines = [
        CRITERION_LINE.format(
            id=c.id,
            name=c.name,
            guidance=c.system_prompt or c.description or f"Rate the response for {c.name.lower()}.",
        )
        for c in criteria
    ]
    example = "{" + ", ".join(f'"{c.id}": 0.8' for c in criteria) + "}"
    prompt_section = f"Assistant instructions:\n{prompt}\n\n" if prompt else ""
    return JUDGE_PROMPT.format(
        prompt_section=prompt_section,
        test_input=test_case.input,
        response=response,
        criteria_section="\n".join(lines),
        example=example,
    )


class EvaluationScorer:
    """
    Scores responses with one batched judge request per distinct judge config.

    Criteria without their own judge_config use the scorer's default.
    """

    def __init__(self, default_judge_config: ModelConfig, pool: Optional[ProviderPool] = None):
        """
        Args:
            default_judge_config: Judge model for criteria without an override.
            pool: Provider instances to use (a factory-backed pool by default).
        """
        self.default_judge_config = default_judge_config
        self.pool = pool or ProviderPool()

    def _group_by_judge(
        self, criteria: Sequence[EvaluationCriterion]
    ) -> Dict[ModelConfig, List[EvaluationCriterion]]:
        groups: Dict[ModelConfig, List[EvaluationCriterion]] = {}
        for criterion in criteria:
            judge = criterion.judge_config or self.default_judge_config
            groups.setdefault(judge, []).append(criterion)
        return groups

    async def _judge(
        self,
        judge: ModelConfig,
        response: str,
        test_case: TestCase,
        criteria: List[EvaluationCriterion],
        prompt: str,
    ) -> Dict[str, float]:
        provider = self.pool.get(judge.provider)
        text = await provider.complete(
            build_judge_prompt(response, test_case, criteria, prompt),
            judge,
            json_response=True,
        )
        return parse_score_map(text, [c.id for c in criteria])

    async def score(
        self,
        response: str,
        test_case: TestCase,
        criteria: Sequence[EvaluationCriterion],
        prompt: str = "",
    ) -> Dict[str, float]:
        """
        Judge one response on every criterion.

        Args:
            response: The generated text to judge.
            test_case: The test case the response answers.
            criteria: Criteria to score.
            prompt: The variation that produced the response, shown to the judge.

        Returns:
            Criterion id -> score in [0, 1], in criteria order.

        Raises:
            ConfigError: If criteria is empty.
            AuthError, ProviderError: If a judge call fails.
            FormatError: If a judge reply is not a JSON object of scores.
        """
        if not criteria:
            raise ConfigError("At least one evaluation criterion is required")

        groups = self._group_by_judge(criteria)
        outcomes = await asyncio.gather(
            *(
                self._judge(judge, response, test_case, group, prompt)
                for judge, group in groups.items()
            ),
            return_exceptions=True,
        )

        merged: Dict[str, float] = {}
        for (judge, group), outcome in zip(groups.items(), outcomes):
            if isinstance(outcome, BaseException):
                logger.warning(
                    "Judge %s failed for %s: %s",
                    judge.label,
                    ", ".join(c.id for c in group),
                    outcome,
                )
                raise outcome
            merged.update(outcome)
        return {c.id: merged.get(c.id, 0.0) for c in criteria}

    @staticmethod
    def overall(
        scores: Dict[str, float],
        test_case: Optional[TestCase],
        criteria: Sequence[EvaluationCriterion],
    ) -> float:
        """Weighted overall score using the test case's weight overrides."""
        return weighted_score(scores, effective_weights(criteria, test_case))
