"""Tests for the streaming orchestrator."""

import asyncio
from contextlib import aclosing
from dataclasses import replace
from typing import Dict, List

import pytest

from promptforge.orchestrator import StreamingOrchestrator, StreamUpdate, serialized
from promptforge.providers.base import ModelConfig, ProviderPool, ProviderType
from utils.exceptions import AuthError, ConfigError, ProviderError

from conftest import FakeProvider


def _orchestrator(provider) -> StreamingOrchestrator:
    return StreamingOrchestrator(ProviderPool(providers={t: provider for t in ProviderType}))


class TestRun:
    @pytest.mark.asyncio
    async def test_one_result_per_config(
        self, openai_config: ModelConfig, groq_config: ModelConfig
    ) -> None:
        provider = FakeProvider(
            streams={"gpt-4o-mini": ["Sorry ", "about that."], "llama-3.1-8b-instant": ["On it!"]}
        )
        results = await _orchestrator(provider).run(
            "You are a support agent.", "Where is my order?", [openai_config, groq_config],
            expected_tokens=100,
        )

        assert [r.model_config for r in results] == [openai_config, groq_config]
        assert results[0].response == "Sorry about that."
        assert results[1].response == "On it!"
        for result in results:
            assert result.success
            assert result.error is None
            assert result.metrics.end_time is not None

    @pytest.mark.asyncio
    async def test_variation_is_system_prompt_and_input_is_user_prompt(
        self, openai_config: ModelConfig
    ) -> None:
        provider = FakeProvider()
        await _orchestrator(provider).run(
            "You are a support agent.", "Where is my order?", [openai_config], expected_tokens=50
        )
        prompt, config = provider.stream_calls[0]
        assert prompt == "Where is my order?"
        assert config.system_prompt == "You are a support agent."

    @pytest.mark.asyncio
    async def test_duplicate_configs_run_independently(self, openai_config: ModelConfig) -> None:
        provider = FakeProvider()
        results = await _orchestrator(provider).run(
            "p", "input", [openai_config, openai_config, openai_config], expected_tokens=50
        )
        assert len(results) == 3
        assert len(provider.stream_calls) == 3

    @pytest.mark.asyncio
    async def test_empty_configs_raise(self) -> None:
        with pytest.raises(ConfigError):
            await _orchestrator(FakeProvider()).run("p", "input", [], expected_tokens=50)

    @pytest.mark.asyncio
    async def test_expected_tokens_required_positive(self, openai_config: ModelConfig) -> None:
        with pytest.raises(ConfigError):
            await _orchestrator(FakeProvider()).run("p", "input", [openai_config], expected_tokens=0)

    @pytest.mark.asyncio
    async def test_indices_carried_on_results(self, openai_config: ModelConfig) -> None:
        result = await _orchestrator(FakeProvider()).run_single(
            "p", "input", openai_config, expected_tokens=50, variation_index=2, test_case_index=1
        )
        assert (result.variation_index, result.test_case_index) == (2, 1)


class TestFailureIsolation:
    @pytest.mark.asyncio
    async def test_401_isolated_to_its_unit(
        self, openai_config: ModelConfig, groq_config: ModelConfig
    ) -> None:
        provider = FakeProvider(
            streams={"llama-3.1-8b-instant": AuthError("groq rejected the API key", provider="groq")}
        )
        results = await _orchestrator(provider).run(
            "p", "input", [openai_config, groq_config], expected_tokens=50
        )

        ok, failed = results
        assert ok.success
        assert not failed.success
        assert failed.error_kind == "AuthError"
        assert "rejected" in failed.error
        assert failed.response == ""
        assert failed.metrics.end_time is not None
        assert failed.display_text.startswith("Error (AuthError)")

    @pytest.mark.asyncio
    async def test_mid_stream_failure_drops_partial_text(self, openai_config: ModelConfig) -> None:
        class FailingProvider(FakeProvider):
            async def stream(self, prompt, config):
                async for chunk in super().stream(prompt, config):
                    yield chunk
                    raise ProviderError("connection reset", status_code=None)

        updates: List[StreamUpdate] = []
        results = await _orchestrator(FailingProvider()).run(
            "p", "input", [openai_config], expected_tokens=50, sink=updates.append
        )

        assert results[0].error_kind == "ProviderError"
        assert results[0].response == ""
        # The partial update published before the failure stands
        assert updates[0].is_streaming
        assert updates[0].response == "Hello"

    @pytest.mark.asyncio
    async def test_unknown_exception_labelled_provider_error(self, openai_config: ModelConfig) -> None:
        provider = FakeProvider(streams={"gpt-4o-mini": RuntimeError("boom")})
        results = await _orchestrator(provider).run("p", "input", [openai_config], expected_tokens=50)
        assert results[0].error_kind == "ProviderError"
        assert results[0].error == "boom"

    @pytest.mark.asyncio
    async def test_empty_response_is_an_error(self, openai_config: ModelConfig) -> None:
        provider = FakeProvider(streams={"gpt-4o-mini": []})
        results = await _orchestrator(provider).run("p", "input", [openai_config], expected_tokens=50)
        assert not results[0].success
        assert results[0].error_kind == "ProviderError"
        assert "empty response" in results[0].error

    @pytest.mark.asyncio
    async def test_every_result_has_response_or_error(
        self, openai_config: ModelConfig, groq_config: ModelConfig
    ) -> None:
        provider = FakeProvider(streams={"llama-3.1-8b-instant": ProviderError("HTTP 500")})
        configs = [openai_config, groq_config, replace(openai_config, model="gpt-4o")]
        results = await _orchestrator(provider).run("p", "input", configs, expected_tokens=50)
        for result in results:
            assert bool(result.response) != bool(result.error)


class TestUpdates:
    @pytest.mark.asyncio
    async def test_updates_in_chunk_order_with_monotonic_tokens(self, openai_config: ModelConfig) -> None:
        provider = FakeProvider(streams={"gpt-4o-mini": ["one ", "two ", "three ", "four"]})
        updates: List[StreamUpdate] = []
        await _orchestrator(provider).run(
            "p", "input", [openai_config], expected_tokens=4, sink=updates.append
        )

        assert [u.response for u in updates[:-1]] == ["one ", "one two ", "one two three ", "one two three four"]
        counts = [u.metrics.token_count for u in updates]
        assert counts == sorted(counts)
        assert all(u.stream_progress <= 100.0 for u in updates)
        assert updates[-1].is_terminal
        assert updates[-1].stream_progress == 100.0
        assert sum(1 for u in updates if u.is_terminal) == 1

    @pytest.mark.asyncio
    async def test_async_sink(self, openai_config: ModelConfig, groq_config: ModelConfig) -> None:
        seen: Dict[int, int] = {}

        async def sink(update: StreamUpdate) -> None:
            await asyncio.sleep(0)
            seen[update.index] = seen.get(update.index, 0) + 1

        await _orchestrator(FakeProvider()).run(
            "p", "input", [openai_config, groq_config], expected_tokens=50, sink=sink
        )
        # 3 fragments + 1 terminal update per unit
        assert seen == {0: 4, 1: 4}

    @pytest.mark.asyncio
    async def test_serialized_sink_one_writer_at_a_time(self) -> None:
        active = 0
        overlaps = 0

        async def slow_sink(update: StreamUpdate) -> None:
            nonlocal active, overlaps
            active += 1
            if active > 1:
                overlaps += 1
            await asyncio.sleep(0)
            active -= 1

        write = serialized(slow_sink)
        config = ModelConfig(provider=ProviderType.OPENAI, model="gpt-4o")
        update = StreamUpdate(index=0, model_config=config, metrics=None)  # type: ignore[arg-type]
        await asyncio.gather(*(write(update) for _ in range(10)))
        assert overlaps == 0


class TestCancellation:
    @pytest.mark.asyncio
    async def test_closing_stream_cancels_units(
        self, openai_config: ModelConfig, groq_config: ModelConfig
    ) -> None:
        provider = FakeProvider(hang_models={"llama-3.1-8b-instant"})
        orchestrator = _orchestrator(provider)
        terminal = []

        updates = orchestrator.stream_updates(
            "p", "input", [openai_config, groq_config], expected_tokens=50
        )
        async with aclosing(updates):
            async for update in updates:
                if update.is_terminal:
                    terminal.append(update)
                    break

        assert terminal[0].model_config == openai_config
        # The hanging stream was closed, not leaked
        assert "llama-3.1-8b-instant" in provider.closed

    @pytest.mark.asyncio
    async def test_provider_raised_cancellation_ends_unit(
        self, openai_config: ModelConfig, groq_config: ModelConfig
    ) -> None:
        provider = FakeProvider(streams={"gpt-4o-mini": asyncio.CancelledError()})
        results = await asyncio.wait_for(
            _orchestrator(provider).run(
                "p", "input", [openai_config, groq_config], expected_tokens=10
            ),
            timeout=1.0,
        )

        assert len(results) == 2
        assert not results[0].success
        assert results[0].error_kind == "ProviderError"
        assert results[0].metrics.end_time is not None
        assert results[1].success

    @pytest.mark.asyncio
    async def test_outer_timeout_cancels_everything(self, openai_config: ModelConfig) -> None:
        provider = FakeProvider(hang_models={"gpt-4o-mini"})
        updates: List[StreamUpdate] = []
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(
                _orchestrator(provider).run(
                    "p", "input", [openai_config], expected_tokens=50, sink=updates.append
                ),
                timeout=0.2,
            )
        assert "gpt-4o-mini" in provider.closed
        # Partial updates delivered before cancellation remain
        assert updates and all(u.is_streaming for u in updates)
