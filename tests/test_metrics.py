"""Tests for stream metrics tracking."""

import pytest

from promptforge.metrics import (
    MetricsTracker,
    StreamMetrics,
    estimate_cost,
    get_pricing,
    stream_progress,
)
from promptforge.providers.base import StreamChunk
from utils.exceptions import ConfigError


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestPricing:
    def test_exact_match(self) -> None:
        assert get_pricing("gpt-4o-mini") == (0.00015, 0.0006)

    def test_longest_prefix_wins(self) -> None:
        # "gpt-4o-2024-08-06" matches both "gpt-4" and "gpt-4o"
        assert get_pricing("gpt-4o-2024-08-06") == get_pricing("gpt-4o")

    def test_unknown_model_is_free(self) -> None:
        assert get_pricing("llama3.2:3b") == (0.0, 0.0)

    def test_estimate_cost(self) -> None:
        assert estimate_cost("gpt-4", 1000, 2000) == pytest.approx(0.03 + 0.12)


class TestStreamProgress:
    def test_proportional(self) -> None:
        assert stream_progress(50, 200) == pytest.approx(25.0)

    def test_capped_at_100(self) -> None:
        assert stream_progress(900, 200) == 100.0

    def test_terminal_forced_to_100(self) -> None:
        assert stream_progress(3, 200, finished=True) == 100.0

    def test_non_positive_expected_raises(self) -> None:
        with pytest.raises(ConfigError):
            stream_progress(10, 0)


class TestMetricsTracker:
    def test_accumulates_tokens_and_cost(self) -> None:
        clock = FakeClock()
        tracker = MetricsTracker("gpt-4", prompt_tokens=100, clock=clock)
        tracker.update(StreamChunk(text="Hello", token_delta=2))
        snapshot = tracker.update(StreamChunk(text=" world", token_delta=3))

        assert snapshot.token_count == 5
        assert snapshot.end_time is None
        assert snapshot.estimated_cost == pytest.approx(estimate_cost("gpt-4", 100, 5))

    def test_final_chunk_sets_end_time(self) -> None:
        clock = FakeClock()
        tracker = MetricsTracker("gpt-4o", clock=clock)
        tracker.update(StreamChunk(text="a", token_delta=1))
        clock.advance(1.5)
        final = tracker.update(StreamChunk(is_final=True))

        assert final.is_finished
        assert final.elapsed_ms == pytest.approx(1500.0)
        assert final.start_time == 1000.0

    def test_end_time_set_once(self) -> None:
        clock = FakeClock()
        tracker = MetricsTracker("gpt-4o", clock=clock)
        first = tracker.finish()
        clock.advance(5)
        assert tracker.finish().end_time == first.end_time
        # Chunks after the end are ignored
        assert tracker.update(StreamChunk(text="late", token_delta=9)) == first

    def test_vendor_total_only_raises_count(self) -> None:
        tracker = MetricsTracker("gpt-4o", clock=FakeClock())
        tracker.update(StreamChunk(text="abc", token_delta=10))
        lower = tracker.update(StreamChunk(is_final=True, total_tokens=4))
        assert lower.token_count == 10

        tracker = MetricsTracker("gpt-4o", clock=FakeClock())
        tracker.update(StreamChunk(text="abc", token_delta=1))
        higher = tracker.update(StreamChunk(is_final=True, total_tokens=12, prompt_tokens=30))
        assert higher.token_count == 12
        assert higher.prompt_tokens == 30

    def test_negative_delta_ignored(self) -> None:
        tracker = MetricsTracker("gpt-4o", clock=FakeClock())
        tracker.update(StreamChunk(text="a", token_delta=3))
        assert tracker.update(StreamChunk(text="b", token_delta=-2)).token_count == 3

    def test_token_count_monotonic(self) -> None:
        tracker = MetricsTracker("gpt-4o", clock=FakeClock())
        deltas = [1, 0, 4, 2, 0, 7]
        counts = [tracker.update(StreamChunk(text="x", token_delta=d)).token_count for d in deltas]
        assert counts == sorted(counts)

    def test_snapshots_are_immutable(self) -> None:
        tracker = MetricsTracker("gpt-4o", clock=FakeClock())
        snapshot = tracker.update(StreamChunk(text="a", token_delta=1))
        tracker.update(StreamChunk(text="b", token_delta=1))
        assert snapshot.token_count == 1
        with pytest.raises(AttributeError):
            snapshot.token_count = 5  # type: ignore[misc]


class TestStreamMetrics:
    def test_elapsed_zero_while_streaming(self) -> None:
        assert StreamMetrics(start_time=10.0).elapsed_ms == 0.0

    def test_tokens_per_second(self) -> None:
        metrics = StreamMetrics(start_time=10.0, end_time=12.0, token_count=100)
        assert metrics.tokens_per_second == pytest.approx(50.0)

    def test_to_dict(self) -> None:
        data = StreamMetrics(start_time=10.0, end_time=11.0, token_count=5).to_dict()
        assert data["elapsed_ms"] == pytest.approx(1000.0)
        assert data["token_count"] == 5
