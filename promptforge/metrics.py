"""
Stream Metrics Tracking

Per-request counters for one (provider, request) pairing: tokens, elapsed
time and estimated cost. The tracker owns the mutable state; callers only
ever see frozen StreamMetrics snapshots.

Usage:
    tracker = MetricsTracker(model="gpt-4o", prompt_tokens=120)
    for chunk in chunks:
        snapshot = tracker.update(chunk)
    print(snapshot.token_count, snapshot.estimated_cost)
"""

import logging
import time
from dataclasses import dataclass, replace
from typing import Dict, Optional, Tuple

from utils.exceptions import ConfigError

from .providers.base import StreamChunk

logger = logging.getLogger(__name__)

# USD per 1000 tokens: (input, output). Matched by exact name, then longest prefix.
MODEL_PRICING: Dict[str, Tuple[float, float]] = {
    # OpenAI
    "gpt-4o": (0.0025, 0.01),
    "gpt-4o-mini": (0.00015, 0.0006),
    "gpt-4-turbo": (0.01, 0.03),
    "gpt-4": (0.03, 0.06),
    "gpt-3.5-turbo": (0.0005, 0.0015),
    # Anthropic
    "claude-3-opus": (0.015, 0.075),
    "claude-3-sonnet": (0.003, 0.015),
    "claude-3-5-sonnet": (0.003, 0.015),
    "claude-3-5-haiku": (0.0008, 0.004),
    "claude-3-haiku": (0.00025, 0.00125),
    # Groq
    "llama-3.3-70b": (0.00059, 0.00079),
    "llama-3.1-8b-instant": (0.00005, 0.00008),
    "llama3-70b-8192": (0.00059, 0.00079),
    "llama3-8b-8192": (0.00005, 0.00008),
    "mixtral-8x7b-32768": (0.00024, 0.00024),
    "gemma2-9b-it": (0.0002, 0.0002),
    "deepseek-r1-distill-llama-70b": (0.00075, 0.00099),
    # Google
    "gemini-2.5-pro": (0.00125, 0.01),
    "gemini-2.5-flash": (0.0003, 0.0025),
    "gemini-2.0-flash": (0.0001, 0.0004),
}


def get_pricing(model: str) -> Tuple[float, float]:
    """(input, output) USD per 1000 tokens; (0, 0) for unknown or local models."""
    if model in MODEL_PRICING:
        return MODEL_PRICING[model]
    matches = [name for name in MODEL_PRICING if model.startswith(name)]
    if not matches:
        return 0.0, 0.0
    return MODEL_PRICING[max(matches, key=len)]


def estimate_cost(model: str, prompt_tokens: int, completion_tokens: int) -> float:
    """Estimated USD cost of a request."""
    input_rate, output_rate = get_pricing(model)
    return (prompt_tokens / 1000) * input_rate + (completion_tokens / 1000) * output_rate


@dataclass(frozen=True)
class StreamMetrics:
    """Immutable snapshot of one stream's metrics."""

    start_time: float  # epoch seconds
    end_time: Optional[float] = None  # unset while streaming
    token_count: int = 0
    prompt_tokens: int = 0
    estimated_cost: float = 0.0

    @property
    def is_finished(self) -> bool:
        return self.end_time is not None

    @property
    def elapsed_ms(self) -> float:
        """Wall time from start to end; 0 while still streaming."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time) * 1000

    @property
    def tokens_per_second(self) -> float:
        end = self.end_time if self.end_time is not None else time.time()
        duration = max(end - self.start_time, 0.001)
        return self.token_count / duration

    def to_dict(self) -> Dict[str, float]:
        return {
            "start_time": self.start_time,
            "end_time": self.end_time,
            "elapsed_ms": self.elapsed_ms,
            "token_count": self.token_count,
            "prompt_tokens": self.prompt_tokens,
            "estimated_cost": self.estimated_cost,
            "tokens_per_second": self.tokens_per_second,
        }


def stream_progress(token_count: int, expected_tokens: int, finished: bool = False) -> float:
    """
    Heuristic completion percentage from tokens seen vs. an expected length.

    Capped at 100 and forced to 100 once the stream is terminal.
    """
    if finished:
        return 100.0
    if expected_tokens <= 0:
        raise ConfigError(f"expected_tokens must be positive, got {expected_tokens}")
    return min(100.0, token_count / expected_tokens * 100)


class MetricsTracker:
    """
    Accumulates StreamMetrics for one stream.

    Invariants: token_count never decreases, start_time never changes and
    end_time is set at most once.
    """

    def __init__(self, model: str, prompt_tokens: int = 0, clock=time.time):
        self.model = model
        self._clock = clock
        self._metrics = StreamMetrics(
            start_time=clock(),
            prompt_tokens=prompt_tokens,
            estimated_cost=estimate_cost(model, prompt_tokens, 0),
        )

    @property
    def metrics(self) -> StreamMetrics:
        """Current snapshot."""
        return self._metrics

    def update(self, chunk: StreamChunk) -> StreamMetrics:
        """Apply one chunk and return the new snapshot. Finishes on a terminal chunk."""
        if self._metrics.is_finished:
            logger.debug("Ignoring chunk for finished stream (%s)", self.model)
            return self._metrics

        token_count = self._metrics.token_count + max(0, chunk.token_delta)
        if chunk.total_tokens is not None:
            # Vendor totals only ever raise the count
            token_count = max(token_count, chunk.total_tokens)
        prompt_tokens = self._metrics.prompt_tokens
        if chunk.prompt_tokens is not None:
            prompt_tokens = chunk.prompt_tokens

        self._metrics = replace(
            self._metrics,
            token_count=token_count,
            prompt_tokens=prompt_tokens,
            estimated_cost=estimate_cost(self.model, prompt_tokens, token_count),
        )
        if chunk.is_final:
            return self.finish()
        return self._metrics

    def finish(self) -> StreamMetrics:
        """Set end_time (once) and return the final snapshot."""
        if not self._metrics.is_finished:
            self._metrics = replace(self._metrics, end_time=self._clock())
        return self._metrics
