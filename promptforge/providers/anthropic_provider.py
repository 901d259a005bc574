"""
Anthropic Claude Provider Implementation

Cloud LLM inference through the Anthropic Messages API.

Usage:
    provider = AnthropicProvider()
    config = ModelConfig(
        provider=ProviderType.ANTHROPIC,
        model="claude-3-5-sonnet-20241022",
        api_key="sk-ant-...",
    )
    text = await provider.complete("Explain quantum computing", config)
"""

import logging
from typing import Any, AsyncIterator, Dict, Optional

import anthropic
from anthropic import AsyncAnthropic

from utils.exceptions import AuthError, ProviderError

from .base import (
    BaseProvider,
    ModelConfig,
    ProviderFactory,
    ProviderType,
    StreamChunk,
    estimate_tokens,
)

logger = logging.getLogger(__name__)

JSON_INSTRUCTION = "Respond with valid JSON only, without any surrounding prose."


class AnthropicProvider(BaseProvider):
    """
    Anthropic provider for Claude models.

    The Messages API has no JSON mode; JSON replies are requested through the
    system prompt instead.
    """

    @property
    def provider_type(self) -> ProviderType:
        return ProviderType.ANTHROPIC

    def _make_client(self, api_key: str) -> AsyncAnthropic:
        kwargs: Dict[str, Any] = {"api_key": api_key}
        if self.timeout is not None:
            kwargs["timeout"] = self.timeout
        return AsyncAnthropic(**kwargs)

    def _request_kwargs(
        self, prompt: str, config: ModelConfig, json_response: bool = False
    ) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {
            "model": config.model,
            "max_tokens": config.max_tokens,
            "temperature": config.temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        system = config.system_prompt or ""
        if json_response:
            system = f"{system}\n\n{JSON_INSTRUCTION}".strip()
        if system:
            kwargs["system"] = system
        if config.top_p is not None:
            kwargs["top_p"] = config.top_p
        if config.top_k is not None:
            kwargs["top_k"] = config.top_k
        if config.stop_sequences:
            kwargs["stop_sequences"] = list(config.stop_sequences)
        return kwargs

    def _translate_error(self, exc: Exception, config: ModelConfig) -> Exception:
        if isinstance(exc, (anthropic.AuthenticationError, anthropic.PermissionDeniedError)):
            return AuthError(f"anthropic rejected the API key: {exc}", provider="anthropic")
        if isinstance(exc, anthropic.APIStatusError):
            return ProviderError(
                f"anthropic returned HTTP {exc.status_code} for {config.model}: {exc.message}",
                provider="anthropic",
                status_code=exc.status_code,
                payload=exc.body,
            )
        return ProviderError(
            f"anthropic request failed for {config.model}: {exc}", provider="anthropic"
        )

    async def complete(
        self,
        prompt: str,
        config: ModelConfig,
        json_response: bool = False,
    ) -> str:
        """Generate text from a single prompt."""
        client = self._make_client(self._require_api_key(config))
        try:
            message = await client.messages.create(
                **self._request_kwargs(prompt, config, json_response)
            )
        except anthropic.AnthropicError as e:
            logger.error("anthropic complete failed for %s: %s", config.model, e)
            raise self._translate_error(e, config) from e
        finally:
            await client.close()

        return "".join(
            block.text for block in message.content if getattr(block, "type", "") == "text"
        )

    async def stream(self, prompt: str, config: ModelConfig) -> AsyncIterator[StreamChunk]:
        """Stream a completion chunk by chunk."""
        client = self._make_client(self._require_api_key(config))
        output_tokens: Optional[int] = None
        input_tokens: Optional[int] = None
        try:
            async with client.messages.stream(**self._request_kwargs(prompt, config)) as stream:
                async for text in stream.text_stream:
                    if text:
                        yield StreamChunk(text=text, token_delta=estimate_tokens(text))
                final = await stream.get_final_message()
                if final.usage is not None:
                    output_tokens = final.usage.output_tokens
                    input_tokens = final.usage.input_tokens
        except anthropic.AnthropicError as e:
            logger.error("anthropic stream failed for %s: %s", config.model, e)
            raise self._translate_error(e, config) from e
        finally:
            await client.close()

        yield StreamChunk(is_final=True, total_tokens=output_tokens, prompt_tokens=input_tokens)


# Register with factory
ProviderFactory.register(ProviderType.ANTHROPIC, AnthropicProvider)
