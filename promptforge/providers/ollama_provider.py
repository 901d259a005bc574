"""
Ollama Provider Implementation

Local LLM inference via the Ollama API. No credential is required and
local models carry no token cost.

Usage:
    provider = OllamaProvider(host="http://localhost:11434")
    config = ModelConfig(provider=ProviderType.OLLAMA, model="qwen2.5:32b")
    async for chunk in provider.stream("Explain quantum computing", config):
        print(chunk.text, end="")
"""

import logging
from typing import Any, AsyncIterator, Dict, List, Optional

from ollama import AsyncClient, ResponseError

from utils.exceptions import ProviderError

from .base import (
    BaseProvider,
    ModelConfig,
    ProviderFactory,
    ProviderType,
    StreamChunk,
    build_messages,
    estimate_tokens,
)

logger = logging.getLogger(__name__)

DEFAULT_HOST = "http://localhost:11434"


class OllamaProvider(BaseProvider):
    """
    Ollama provider for local LLM inference.

    Connects to an Ollama server (default: http://localhost:11434).
    Supports all Ollama models: qwen2.5, llama3.2, deepseek, etc.
    """

    requires_api_key = False
    supports_json_mode = True

    def __init__(self, timeout: Optional[float] = None, host: str = DEFAULT_HOST):
        """
        Args:
            timeout: Request timeout in seconds (None for the client default).
            host: Ollama server URL.
        """
        super().__init__(timeout)
        self.host = host
        self._client = self._make_client()

    @property
    def provider_type(self) -> ProviderType:
        return ProviderType.OLLAMA

    def _make_client(self) -> AsyncClient:
        if self.timeout is not None:
            return AsyncClient(host=self.host, timeout=self.timeout)
        return AsyncClient(host=self.host)

    def _options(self, config: ModelConfig) -> Dict[str, Any]:
        options: Dict[str, Any] = {
            "temperature": config.temperature,
            "num_predict": config.max_tokens,
        }
        if config.top_p is not None:
            options["top_p"] = config.top_p
        if config.top_k is not None:
            options["top_k"] = config.top_k
        if config.frequency_penalty is not None:
            options["frequency_penalty"] = config.frequency_penalty
        if config.presence_penalty is not None:
            options["presence_penalty"] = config.presence_penalty
        if config.stop_sequences:
            options["stop"] = list(config.stop_sequences)
        if config.seed is not None:
            options["seed"] = config.seed
        return options

    def _messages(self, prompt: str, config: ModelConfig) -> List[Dict[str, str]]:
        return [{"role": m.role, "content": m.content} for m in build_messages(prompt, config)]

    def _translate_error(self, exc: Exception, config: ModelConfig) -> ProviderError:
        if isinstance(exc, ResponseError):
            return ProviderError(
                f"ollama returned HTTP {exc.status_code} for {config.model}: {exc.error}",
                provider="ollama",
                status_code=exc.status_code,
                payload=exc.error,
            )
        return ProviderError(
            f"ollama request failed for {config.model} at {self.host}: {exc}", provider="ollama"
        )

    async def complete(
        self,
        prompt: str,
        config: ModelConfig,
        json_response: bool = False,
    ) -> str:
        """Generate text from a single prompt."""
        try:
            response = await self._client.chat(
                model=config.model,
                messages=self._messages(prompt, config),
                options=self._options(config),
                format="json" if json_response else "",
                stream=False,
            )
        except (ResponseError, ConnectionError, OSError) as e:
            logger.error("ollama complete failed for %s: %s", config.model, e)
            raise self._translate_error(e, config) from e

        return response["message"]["content"] or ""

    async def stream(self, prompt: str, config: ModelConfig) -> AsyncIterator[StreamChunk]:
        """Stream a completion chunk by chunk."""
        completion_tokens: Optional[int] = None
        prompt_tokens: Optional[int] = None
        try:
            parts = await self._client.chat(
                model=config.model,
                messages=self._messages(prompt, config),
                options=self._options(config),
                stream=True,
            )
            async for part in parts:
                text = part["message"]["content"] or ""
                if text:
                    yield StreamChunk(text=text, token_delta=estimate_tokens(text))
                if part.get("done"):
                    completion_tokens = part.get("eval_count")
                    prompt_tokens = part.get("prompt_eval_count")
        except (ResponseError, ConnectionError, OSError) as e:
            logger.error("ollama stream failed for %s: %s", config.model, e)
            raise self._translate_error(e, config) from e

        yield StreamChunk(is_final=True, total_tokens=completion_tokens, prompt_tokens=prompt_tokens)


# Register with factory
ProviderFactory.register(ProviderType.OLLAMA, OllamaProvider)
