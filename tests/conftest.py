"""
Shared test fixtures for PromptForge.

Provides a scripted in-memory provider and sample model configs, criteria
and test cases. No test touches the network.
"""

import asyncio
import json
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple, Union

import pytest

from promptforge.providers.base import (
    BaseProvider,
    ModelConfig,
    ProviderPool,
    ProviderType,
    StreamChunk,
    estimate_tokens,
)
from promptforge.scoring.criteria import EvaluationCriterion, TestCase

JUDGE_PREFIX = "Evaluate the following response"


class FakeProvider(BaseProvider):
    """
    Scripted provider.

    - streams: model name -> text fragments to stream, or an exception to raise
    - replies: complete() replies consumed in order (exceptions are raised)
    - judge_scores: reply to every judging prompt (a JSON object of scores)
    - hang_models: models whose stream never finishes
    """

    requires_api_key = False

    def __init__(
        self,
        provider_type: ProviderType = ProviderType.OPENAI,
        streams: Optional[Dict[str, Union[Sequence[str], BaseException]]] = None,
        replies: Optional[List[Union[str, BaseException]]] = None,
        judge_scores: Optional[Union[Dict[str, Any], str, BaseException]] = None,
        hang_models: Optional[Set[str]] = None,
        report_total: bool = True,
    ):
        super().__init__()
        self._provider_type = provider_type
        self.streams = dict(streams or {})
        self.replies = list(replies or [])
        self.judge_scores = judge_scores if judge_scores is not None else {}
        self.hang_models = set(hang_models or ())
        self.report_total = report_total
        self.calls: List[Tuple[str, ModelConfig, bool]] = []
        self.stream_calls: List[Tuple[str, ModelConfig]] = []
        self.closed: List[str] = []
        self.judge_calls = 0

    @property
    def provider_type(self) -> ProviderType:
        return self._provider_type

    async def complete(self, prompt: str, config: ModelConfig, json_response: bool = False) -> str:
        self.calls.append((prompt, config, json_response))
        await asyncio.sleep(0)
        if prompt.startswith(JUDGE_PREFIX):
            self.judge_calls += 1
            if isinstance(self.judge_scores, BaseException):
                raise self.judge_scores
            if isinstance(self.judge_scores, str):
                return self.judge_scores
            return json.dumps(self.judge_scores)
        if not self.replies:
            raise AssertionError(f"Unexpected complete() call: {prompt[:60]!r}")
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return reply

    async def stream(self, prompt: str, config: ModelConfig):
        self.stream_calls.append((prompt, config))
        script = self.streams.get(config.model, ["Hello", " there", ", how can I help?"])
        try:
            if isinstance(script, BaseException):
                raise script
            total = 0
            for text in script:
                await asyncio.sleep(0)
                delta = estimate_tokens(text)
                total += delta
                yield StreamChunk(text=text, token_delta=delta)
            if config.model in self.hang_models:
                await asyncio.Event().wait()
            yield StreamChunk(is_final=True, total_tokens=total if self.report_total else None)
        finally:
            self.closed.append(config.model)


@pytest.fixture
def openai_config() -> ModelConfig:
    return ModelConfig(provider=ProviderType.OPENAI, model="gpt-4o-mini", api_key="sk-test")


@pytest.fixture
def groq_config() -> ModelConfig:
    return ModelConfig(provider=ProviderType.GROQ, model="llama-3.1-8b-instant", api_key="gsk-test")


@pytest.fixture
def judge_config() -> ModelConfig:
    return ModelConfig(
        provider=ProviderType.OPENAI, model="gpt-4o", temperature=0.0, api_key="sk-test"
    )


@pytest.fixture
def criteria() -> List[EvaluationCriterion]:
    return [
        EvaluationCriterion(id="clarity", name="Clarity", weight=1.0),
        EvaluationCriterion(id="empathy", name="Empathy", weight=0.5),
    ]


@pytest.fixture
def test_case() -> TestCase:
    return TestCase(input="My order is two hours late.", criteria={"empathy": 1.0})


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider(judge_scores={"clarity": 0.8, "empathy": 0.6})


@pytest.fixture
def pool(fake_provider: FakeProvider) -> ProviderPool:
    """Every provider type served by the same fake."""
    return ProviderPool(providers={provider_type: fake_provider for provider_type in ProviderType})

