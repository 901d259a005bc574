"""
Streaming Orchestrator

Fans one (prompt, test input) pair out to a set of ModelConfigs. Each config
runs as an independent asyncio task; progress from all of them is merged
into a single ordered stream of StreamUpdates. A unit that fails or stalls
never affects its siblings: its error is captured on its own result.

Usage:
    orchestrator = StreamingOrchestrator()

    # Pull-based: iterate updates as they arrive
    async for update in orchestrator.stream_updates(variation, test_input, configs,
                                                    expected_tokens=500):
        print(update.index, update.stream_progress)

    # Push-based: deliver updates to a sink, get the final results back
    results = await orchestrator.run(variation, test_input, configs,
                                     expected_tokens=500, sink=print)
"""

import asyncio
import inspect
import logging
from contextlib import aclosing
from dataclasses import dataclass, replace
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Sequence,
    Union,
)

from utils.exceptions import ConfigError, PromptForgeError, ProviderError

from .metrics import MetricsTracker, StreamMetrics, stream_progress
from .providers.base import ModelConfig, ProviderPool, StreamChunk, estimate_tokens

logger = logging.getLogger(__name__)

Sink = Callable[["StreamUpdate"], Union[None, Awaitable[None]]]


@dataclass(frozen=True)
class ComparisonResult:
    """
    Final outcome of one unit of work: one (variation, test case, model) tuple.

    Exactly one of response / error is meaningful: a successful result has a
    non-empty response, a failed one has error (and error_kind) set.
    """

    model_config: ModelConfig
    metrics: StreamMetrics
    response: str = ""
    error: Optional[str] = None
    error_kind: Optional[str] = None
    variation_index: int = 0
    test_case_index: int = 0
    scores: Optional[Dict[str, float]] = None
    judge_error: Optional[str] = None  # scoring failed; response stands
    weights: Optional[Dict[str, float]] = None  # effective criterion weights when judged

    @property
    def success(self) -> bool:
        """Whether the generation succeeded."""
        return self.error is None and len(self.response) > 0

    @property
    def display_text(self) -> str:
        """Response text, or the error message in its place."""
        if self.error is not None:
            return f"Error ({self.error_kind}): {self.error}"
        return self.response

    def to_dict(self) -> Dict[str, Any]:
        return {
            "variation_index": self.variation_index,
            "test_case_index": self.test_case_index,
            "model": self.model_config.to_dict(),
            "response": self.response,
            "error": self.error,
            "error_kind": self.error_kind,
            "scores": self.scores,
            "judge_error": self.judge_error,
            "weights": self.weights,
            "metrics": self.metrics.to_dict(),
        }


@dataclass(frozen=True)
class StreamUpdate:
    """One progress event for one unit, as delivered to the sink."""

    index: int
    model_config: ModelConfig
    metrics: StreamMetrics
    chunk: Optional[StreamChunk] = None
    response: str = ""  # cumulative text so far
    is_streaming: bool = True
    stream_progress: float = 0.0
    error: Optional[str] = None
    error_kind: Optional[str] = None
    variation_index: int = 0
    test_case_index: int = 0

    @property
    def is_terminal(self) -> bool:
        return not self.is_streaming

    def to_result(self) -> ComparisonResult:
        """Freeze a terminal update into its ComparisonResult."""
        return ComparisonResult(
            model_config=self.model_config,
            metrics=self.metrics,
            response=self.response,
            error=self.error,
            error_kind=self.error_kind,
            variation_index=self.variation_index,
            test_case_index=self.test_case_index,
        )


async def deliver(sink: Optional[Sink], update: StreamUpdate) -> None:
    """Call a sync or async sink."""
    if sink is None:
        return
    outcome = sink(update)
    if inspect.isawaitable(outcome):
        await outcome


def serialized(sink: Sink) -> Callable[[StreamUpdate], Awaitable[None]]:
    """Wrap a sink so concurrent producers write to it one update at a time."""
    lock = asyncio.Lock()

    async def write(update: StreamUpdate) -> None:
        async with lock:
            await deliver(sink, update)

    return write


class StreamingOrchestrator:
    """
    Runs one streaming unit per ModelConfig, concurrently.

    No retries and no timeouts are applied here: per-call timeouts are a
    provider option, and a caller may re-run a single config with run_single().
    """

    def __init__(self, pool: Optional[ProviderPool] = None):
        """
        Args:
            pool: Provider instances to use (a factory-backed pool by default).
        """
        self.pool = pool or ProviderPool()

    async def stream_updates(
        self,
        prompt: str,
        test_input: str,
        configs: Sequence[ModelConfig],
        *,
        expected_tokens: int,
        variation_index: int = 0,
        test_case_index: int = 0,
    ) -> AsyncIterator[StreamUpdate]:
        """
        Yield updates from all units until every unit is terminal.

        Updates for one unit arrive in chunk order; there is no ordering
        across units. Closing the iterator early cancels the in-flight units
        and their provider connections.

        Raises:
            ConfigError: If configs is empty or expected_tokens is not positive.
        """
        configs = list(configs)
        if not configs:
            raise ConfigError("At least one model config is required")
        if expected_tokens <= 0:
            raise ConfigError(f"expected_tokens must be positive, got {expected_tokens}")

        queue: "asyncio.Queue[StreamUpdate]" = asyncio.Queue()
        tasks = [
            asyncio.create_task(
                self._run_unit(
                    index=index,
                    config=config,
                    prompt=prompt,
                    test_input=test_input,
                    expected_tokens=expected_tokens,
                    queue=queue,
                    variation_index=variation_index,
                    test_case_index=test_case_index,
                ),
                name=f"unit-{variation_index}-{test_case_index}-{index}-{config.label}",
            )
            for index, config in enumerate(configs)
        ]

        remaining = len(tasks)
        try:
            while remaining:
                update = await queue.get()
                if update.is_terminal:
                    remaining -= 1
                yield update
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    async def run(
        self,
        prompt: str,
        test_input: str,
        configs: Sequence[ModelConfig],
        *,
        expected_tokens: int,
        sink: Optional[Sink] = None,
        variation_index: int = 0,
        test_case_index: int = 0,
    ) -> List[ComparisonResult]:
        """
        Run every config to a terminal state and return one result per config.

        Results are in config order. Per-unit failures are reported on the
        corresponding result, never raised.
        """
        results: Dict[int, ComparisonResult] = {}
        updates = self.stream_updates(
            prompt,
            test_input,
            configs,
            expected_tokens=expected_tokens,
            variation_index=variation_index,
            test_case_index=test_case_index,
        )
        async with aclosing(updates):
            async for update in updates:
                await deliver(sink, update)
                if update.is_terminal:
                    results[update.index] = update.to_result()

        return [results[index] for index in sorted(results)]

    async def run_single(
        self,
        prompt: str,
        test_input: str,
        config: ModelConfig,
        *,
        expected_tokens: int,
        sink: Optional[Sink] = None,
        variation_index: int = 0,
        test_case_index: int = 0,
    ) -> ComparisonResult:
        """Re-run one config on its own (e.g. after a failure)."""
        results = await self.run(
            prompt,
            test_input,
            [config],
            expected_tokens=expected_tokens,
            sink=sink,
            variation_index=variation_index,
            test_case_index=test_case_index,
        )
        return results[0]

    async def _run_unit(
        self,
        index: int,
        config: ModelConfig,
        prompt: str,
        test_input: str,
        expected_tokens: int,
        queue: "asyncio.Queue[StreamUpdate]",
        variation_index: int,
        test_case_index: int,
    ) -> None:
        """
        Stream one config; always ends by publishing exactly one terminal update.

        A failed unit's terminal update drops any partial text: the error
        takes the response's place. Partial updates already published stand.
        """
        tracker = MetricsTracker(
            config.model, prompt_tokens=estimate_tokens(prompt) + estimate_tokens(test_input)
        )
        base = StreamUpdate(
            index=index,
            model_config=config,
            metrics=tracker.metrics,
            variation_index=variation_index,
            test_case_index=test_case_index,
        )
        parts: List[str] = []
        last_chunk: Optional[StreamChunk] = None
        logger.debug("Unit %d started: %s", index, config.label)

        def failed(error: str, error_kind: str) -> StreamUpdate:
            return replace(
                base,
                chunk=last_chunk,
                metrics=tracker.finish(),
                is_streaming=False,
                stream_progress=100.0,
                error=error,
                error_kind=error_kind,
            )

        try:
            provider = self.pool.get(config.provider)
            chunks = provider.stream(test_input, config.with_system_prompt(prompt))
            async with aclosing(chunks):
                async for chunk in chunks:
                    last_chunk = chunk
                    metrics = tracker.update(chunk)
                    if chunk.text:
                        parts.append(chunk.text)
                    if chunk.is_final:
                        break
                    await queue.put(
                        replace(
                            base,
                            chunk=chunk,
                            metrics=metrics,
                            response="".join(parts),
                            stream_progress=stream_progress(metrics.token_count, expected_tokens),
                        )
                    )

            response = "".join(parts)
            if not response.strip():
                raise ProviderError(
                    f"{config.label} returned an empty response", provider=config.provider.key
                )
        except asyncio.CancelledError:
            # Raised by the provider itself or by the consumer going away;
            # either way the unit still ends with a terminal update.
            logger.debug("Unit %d (%s) cancelled", index, config.label)
            queue.put_nowait(failed("Stream was cancelled", "ProviderError"))
            raise
        except Exception as e:
            error_kind = type(e).__name__ if isinstance(e, PromptForgeError) else "ProviderError"
            logger.warning("Unit %d (%s) failed: %s: %s", index, config.label, error_kind, e)
            await queue.put(failed(str(e) or error_kind, error_kind))
            return

        metrics = tracker.finish()
        logger.debug(
            "Unit %d finished: %s (%d tokens, %.0fms)",
            index,
            config.label,
            metrics.token_count,
            metrics.elapsed_ms,
        )
        await queue.put(
            replace(
                base,
                chunk=last_chunk,
                metrics=metrics,
                response=response,
                is_streaming=False,
                stream_progress=100.0,
            )
        )
