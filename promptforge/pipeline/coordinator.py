"""
Pipeline Coordinator

Sequences the four pipeline stages:

    Idle -> MetaPromptReady -> VariationsReady -> TestCasesReady -> EvaluationComplete

The three generation stages are single completion calls, each gated on its
predecessor's output. The evaluation stage streams every (variation, test
case) pair through the StreamingOrchestrator and judges each response with
the EvaluationScorer.

Any stage may be re-run. Re-running never moves the state backwards and
never clears later stages' data: discarding stale downstream results is up
to the caller.

Usage:
    from promptforge.pipeline import PromptPipeline

    pipeline = PromptPipeline(generator_config, judge_config=judge_config)
    await pipeline.generate_meta_prompt("A support assistant for a food delivery app")
    await pipeline.generate_variations(3)
    await pipeline.generate_test_cases(2)
    results = await pipeline.run_evaluation(model_configs, expected_tokens=400)
    for ranking in pipeline.rank_variations():
        print(ranking.label, ranking.overall)
"""

import asyncio
import logging
from dataclasses import replace
from enum import Enum, auto
from typing import Any, Dict, List, Optional, Sequence, Union

from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

from utils.exceptions import ConfigError, FormatError, PipelineStateError
from utils.state_machine import StateMachine

from ..orchestrator import (
    ComparisonResult,
    Sink,
    StreamingOrchestrator,
    StreamUpdate,
    deliver,
    serialized,
)
from ..providers.base import ModelConfig, ProviderPool
from ..scoring.aggregate import (
    Ranking,
    effective_weights,
    rank_models,
    rank_variations,
    weighted_score,
)
from ..scoring.criteria import DEFAULT_CRITERIA, EvaluationCriterion, TestCase
from ..scoring.judge import EvaluationScorer
from ..structured import parse_string_array, parse_test_cases
from .config import GeneratorSettings, RunConfig
from .prompts import MetaPromptRequest, render_meta_prompt, render_test_cases, render_variations

logger = logging.getLogger(__name__)
console = Console()


class PipelineStage(Enum):
    """Pipeline lifecycle states, in order."""

    IDLE = auto()
    META_PROMPT_READY = auto()
    VARIATIONS_READY = auto()
    TEST_CASES_READY = auto()
    EVALUATION_COMPLETE = auto()


FORWARD_TRANSITIONS: Dict[PipelineStage, List[PipelineStage]] = {
    PipelineStage.IDLE: [PipelineStage.META_PROMPT_READY],
    PipelineStage.META_PROMPT_READY: [PipelineStage.VARIATIONS_READY],
    PipelineStage.VARIATIONS_READY: [PipelineStage.TEST_CASES_READY],
    PipelineStage.TEST_CASES_READY: [PipelineStage.EVALUATION_COMPLETE],
    PipelineStage.EVALUATION_COMPLETE: [],
}


class PromptPipeline:
    """
    Meta-prompt -> variations -> test cases -> evaluation, for one run.

    All state is in memory on the instance; nothing is persisted. Use
    to_record() to obtain the comparison record for external storage.
    """

    def __init__(
        self,
        generators: Union[ModelConfig, GeneratorSettings],
        judge_config: Optional[ModelConfig] = None,
        pool: Optional[ProviderPool] = None,
        verbose: bool = False,
    ):
        """
        Args:
            generators: Model config for the generation stages, or per-stage settings.
            judge_config: Default judge model (the default generator if None).
            pool: Provider instances shared by every stage.
            verbose: Show a progress bar during evaluation.
        """
        if isinstance(generators, ModelConfig):
            generators = GeneratorSettings(default=generators)
        self.generators = generators
        self.pool = pool or ProviderPool()
        self.orchestrator = StreamingOrchestrator(self.pool)
        self.scorer = EvaluationScorer(judge_config or generators.default, self.pool)
        self.verbose = verbose

        self.base_input: str = ""
        self.meta_prompt: Optional[str] = None
        self.variations: List[str] = []
        self.test_cases: List[TestCase] = []
        self.criteria: List[EvaluationCriterion] = list(DEFAULT_CRITERIA)
        self.results: List[ComparisonResult] = []

        self._machine: StateMachine[PipelineStage] = StateMachine(
            initial_state=PipelineStage.IDLE,
            allowed_transitions=FORWARD_TRANSITIONS,
        )

    @classmethod
    def from_run_config(
        cls, run_config: RunConfig, pool: Optional[ProviderPool] = None
    ) -> "PromptPipeline":
        return cls(
            run_config.generators,
            judge_config=run_config.judge_config,
            pool=pool,
            verbose=run_config.verbose,
        )

    @property
    def stage(self) -> PipelineStage:
        return self._machine.state

    async def _advance(self, target: PipelineStage, reason: str) -> None:
        """Move forward to target if it is the next stage; re-runs leave the state alone."""
        if self._machine.can_transition(target):
            await self._machine.transition_to(target, reason=reason)

    async def _complete(self, stage: str, prompt: str, json_response: bool = False) -> str:
        config = self.generators.for_stage(stage)
        provider = self.pool.get(config.provider)
        logger.debug("Stage %s: requesting %s", stage, config.label)
        return await provider.complete(prompt, config, json_response=json_response)

    # -- Generation stages ------------------------------------------------------

    async def generate_meta_prompt(self, request: Union[str, MetaPromptRequest]) -> str:
        """
        Expand a short request into a structured assistant specification.

        Raises:
            ConfigError: If the request text is empty.
            FormatError: If the model returns an empty reply.
        """
        if isinstance(request, str):
            request = MetaPromptRequest(base_input=request)
        if not request.base_input.strip():
            raise ConfigError("Describe the assistant to build: base input is empty")

        text = (await self._complete("meta_prompt", render_meta_prompt(request))).strip()
        if not text:
            raise FormatError("Meta-prompt generation returned an empty reply")

        self.base_input = request.base_input.strip()
        self.meta_prompt = text
        await self._advance(PipelineStage.META_PROMPT_READY, "meta-prompt generated")
        return text

    async def generate_variations(self, count: int = 3) -> List[str]:
        """
        Generate exactly `count` rewrites of the meta-prompt.

        On failure the previous variations and the stage are left unchanged.

        Raises:
            PipelineStateError: If no meta-prompt exists yet.
            FormatError: If the reply is not an array of at least `count` strings.
        """
        if not self.meta_prompt:
            raise PipelineStateError("Generate a meta-prompt before variations")
        if count < 1:
            raise ConfigError(f"Variation count must be at least 1, got {count}")

        text = await self._complete(
            "variations", render_variations(self.meta_prompt, count), json_response=True
        )
        variations = parse_string_array(text, expected_count=count)

        self.variations = variations
        await self._advance(PipelineStage.VARIATIONS_READY, f"{count} variations generated")
        return list(variations)

    async def generate_test_cases(
        self,
        count: int = 3,
        criteria: Optional[Sequence[EvaluationCriterion]] = None,
    ) -> List[TestCase]:
        """
        Generate test inputs with per-criterion weights.

        Generated test cases replace any existing ones.

        Raises:
            PipelineStateError: If no variations exist yet.
            FormatError: If the reply is not an array of {input, criteria} objects.
        """
        if not self.variations:
            raise PipelineStateError("Generate variations before test cases")
        if count < 1:
            raise ConfigError(f"Test case count must be at least 1, got {count}")
        if criteria is not None:
            self.criteria = list(criteria)

        text = await self._complete(
            "test_cases",
            render_test_cases(
                self.base_input,
                self.meta_prompt or "",
                self.variations,
                [c.id for c in self.criteria],
                count,
            ),
            json_response=True,
        )
        parsed = parse_test_cases(text)
        if not parsed:
            raise FormatError("Test case generation returned no test cases", raw=text)
        if len(parsed) > count:
            logger.warning("Expected %d test cases, got %d; keeping the first %d", count, len(parsed), count)
            parsed = parsed[:count]

        self.test_cases = [TestCase.from_dict(item) for item in parsed]
        await self._advance(PipelineStage.TEST_CASES_READY, f"{len(self.test_cases)} test cases generated")
        return list(self.test_cases)

    async def add_test_case(
        self, test_case: Union[TestCase, str], criteria: Optional[Dict[str, float]] = None
    ) -> TestCase:
        """Add a caller-written test case; with variations present this completes the stage."""
        if isinstance(test_case, str):
            test_case = TestCase(input=test_case, criteria=dict(criteria or {}))
        self.test_cases.append(test_case)
        if self.variations:
            await self._advance(PipelineStage.TEST_CASES_READY, "test case added")
        return test_case

    def remove_test_case(self, index: int) -> TestCase:
        return self.test_cases.pop(index)

    # -- Evaluation -------------------------------------------------------------

    async def run_evaluation(
        self,
        model_configs: Sequence[ModelConfig],
        criteria: Optional[Sequence[EvaluationCriterion]] = None,
        *,
        expected_tokens: int,
        sink: Optional[Sink] = None,
    ) -> List[ComparisonResult]:
        """
        Run every (variation, test case) pair against every model and judge the responses.

        All units start together. A unit whose generation or judging fails
        keeps its error on its own result; the call itself only fails on
        invalid input.

        Args:
            model_configs: Models to compare (duplicates are independent runs).
            criteria: Criteria to judge (the pipeline's current criteria if None).
            expected_tokens: Expected response length for stream progress.
            sink: Receives every StreamUpdate, one at a time.

        Returns:
            Variations x test cases x models results, ordered by variation,
            test case, then model config.

        Raises:
            PipelineStateError: If variations or test cases are missing.
            ConfigError: On an empty model set, no criteria, non-positive
                         total criterion weight or non-positive expected_tokens.
        """
        if not self.variations:
            raise PipelineStateError("Generate variations before running an evaluation")
        if not self.test_cases:
            raise PipelineStateError("Generate or add test cases before running an evaluation")
        configs = list(model_configs)
        if not configs:
            raise ConfigError("At least one model config is required")
        if criteria is not None:
            self.criteria = list(criteria)
        if not self.criteria:
            raise ConfigError("At least one evaluation criterion is required")
        if sum(c.weight for c in self.criteria) <= 0:
            raise ConfigError("Total criterion weight must be positive")
        if expected_tokens <= 0:
            raise ConfigError(f"expected_tokens must be positive, got {expected_tokens}")

        pairs = [
            (v_index, t_index)
            for v_index in range(len(self.variations))
            for t_index in range(len(self.test_cases))
        ]
        total_units = len(pairs) * len(configs)
        logger.info(
            "Evaluating %d variations x %d test cases x %d models (%d units)",
            len(self.variations),
            len(self.test_cases),
            len(configs),
            total_units,
        )

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            console=console,
            disable=not self.verbose,
        ) as progress:
            task = progress.add_task("[cyan]Comparing models...", total=total_units)

            async def forward(update: StreamUpdate) -> None:
                await deliver(sink, update)
                if update.is_terminal:
                    progress.advance(task)

            shared_sink = serialized(forward)
            tasks = [
                asyncio.create_task(
                    self._evaluate_pair(v, t, configs, expected_tokens, shared_sink),
                    name=f"pair-{v}-{t}",
                )
                for v, t in pairs
            ]
            try:
                batches = await asyncio.gather(*tasks)
            finally:
                # A failed pair must not leave its siblings streaming
                for pair_task in tasks:
                    if not pair_task.done():
                        pair_task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)

        results = [result for batch in batches for result in batch]
        if len(results) != total_units:
            raise RuntimeError(f"Expected {total_units} results, got {len(results)}")

        self.results = results
        failed = sum(1 for r in results if not r.success)
        await self._advance(
            PipelineStage.EVALUATION_COMPLETE, f"{len(results)} results ({failed} failed)"
        )
        return list(results)

    async def _evaluate_pair(
        self,
        variation_index: int,
        test_case_index: int,
        configs: List[ModelConfig],
        expected_tokens: int,
        sink: Sink,
    ) -> List[ComparisonResult]:
        variation = self.variations[variation_index]
        test_case = self.test_cases[test_case_index]
        generated = await self.orchestrator.run(
            variation,
            test_case.input,
            configs,
            expected_tokens=expected_tokens,
            sink=sink,
            variation_index=variation_index,
            test_case_index=test_case_index,
        )
        return list(
            await asyncio.gather(
                *(self._score_result(result, variation, test_case) for result in generated)
            )
        )

    async def _score_result(
        self, result: ComparisonResult, variation: str, test_case: TestCase
    ) -> ComparisonResult:
        if not result.success:
            return result
        try:
            scores = await self.scorer.score(result.response, test_case, self.criteria, prompt=variation)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(
                "Judging failed for variation %d, test case %d, %s: %s",
                result.variation_index,
                result.test_case_index,
                result.model_config.label,
                e,
            )
            return replace(result, judge_error=f"{type(e).__name__}: {e}")
        return replace(result, scores=scores, weights=effective_weights(self.criteria, test_case))

    # -- Whole run --------------------------------------------------------------

    async def run_all(
        self,
        request: Union[str, MetaPromptRequest],
        model_configs: Sequence[ModelConfig],
        *,
        expected_tokens: int,
        variation_count: int = 3,
        test_case_count: int = 3,
        criteria: Optional[Sequence[EvaluationCriterion]] = None,
        test_cases: Optional[Sequence[TestCase]] = None,
        sink: Optional[Sink] = None,
    ) -> List[ComparisonResult]:
        """
        Drive all four stages in order.

        When test_cases is given they are used instead of generated ones.
        """
        await self.generate_meta_prompt(request)
        await self.generate_variations(variation_count)
        if test_cases:
            self.test_cases = []
            for test_case in test_cases:
                await self.add_test_case(test_case)
        else:
            await self.generate_test_cases(test_case_count, criteria)
        return await self.run_evaluation(
            model_configs, criteria, expected_tokens=expected_tokens, sink=sink
        )

    # -- Results ----------------------------------------------------------------

    def overall_score(self, result: ComparisonResult) -> float:
        """
        Weighted overall score for one result; 0 for a failed or unjudged unit.

        Uses the weights recorded when the result was judged, so editing
        the test case list afterwards does not change it.
        """
        if not result.success or not result.scores:
            return 0.0
        weights = result.weights if result.weights is not None else effective_weights(self.criteria)
        return weighted_score(result.scores, weights)

    def rank_variations(self) -> List[Ranking]:
        return rank_variations(self.results, self.criteria)

    def rank_models(self) -> List[Ranking]:
        return rank_models(self.results, self.criteria)

    def to_record(self) -> Dict[str, Any]:
        """
        The comparison record for external storage.

        A failed unit appears with its error message as response and zero
        scores, so nothing is silently dropped.
        """
        zero = {c.id: 0.0 for c in self.criteria}
        evaluation_results = []
        for result in self.results:
            evaluation_results.append(
                {
                    "variationIndex": result.variation_index,
                    "testCaseIndex": result.test_case_index,
                    "model": result.model_config.label,
                    "scores": dict(result.scores) if result.success and result.scores else dict(zero),
                    "response": result.display_text,
                }
            )
        return {
            "baseInput": self.base_input,
            "metaPrompt": self.meta_prompt or "",
            "variations": list(self.variations),
            "testCases": [tc.to_dict() for tc in self.test_cases],
            "evaluationResults": evaluation_results,
        }

    def status(self) -> Dict[str, Any]:
        status = self._machine.get_status()
        status.update(
            {
                "has_meta_prompt": self.meta_prompt is not None,
                "variations": len(self.variations),
                "test_cases": len(self.test_cases),
                "results": len(self.results),
                "failed": sum(1 for r in self.results if not r.success),
            }
        )
        return status

