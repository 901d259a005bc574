"""
OpenAI and Groq Provider Implementations

Cloud LLM inference through the OpenAI Chat Completions API. Groq exposes
an OpenAI-compatible endpoint, so it reuses the same client with a different
base URL and parameter subset.

Usage:
    provider = OpenAIProvider()
    config = ModelConfig(provider=ProviderType.OPENAI, model="gpt-4o", api_key="sk-...")
    text = await provider.complete("Explain quantum computing", config)
"""

import logging
from typing import Any, AsyncIterator, Dict, FrozenSet, Optional, Tuple

import openai
from openai import AsyncOpenAI

from utils.exceptions import AuthError, ProviderError

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

GROQ_BASE_URL = "https://api.groq.com/openai/v1"


class OpenAIProvider(BaseProvider):
    """
    OpenAI provider for cloud LLM inference.

    Requires ModelConfig.api_key.
    """

    base_url: Optional[str] = None
    supports_json_mode = True
    supports_stream_usage = True
    SUPPORTED_PARAMS: FrozenSet[str] = frozenset(
        {"top_p", "frequency_penalty", "presence_penalty", "stop", "seed"}
    )

    @property
    def provider_type(self) -> ProviderType:
        return ProviderType.OPENAI

    def _make_client(self, api_key: str) -> AsyncOpenAI:
        kwargs: Dict[str, Any] = {"api_key": api_key}
        if self.base_url:
            kwargs["base_url"] = self.base_url
        if self.timeout is not None:
            kwargs["timeout"] = self.timeout
        return AsyncOpenAI(**kwargs)

    def _request_kwargs(self, prompt: str, config: ModelConfig) -> Dict[str, Any]:
        """Build the chat.completions.create arguments for this vendor."""
        optional = {
            "top_p": config.top_p,
            "frequency_penalty": config.frequency_penalty,
            "presence_penalty": config.presence_penalty,
            "stop": list(config.stop_sequences) or None,
            "seed": config.seed,
        }
        kwargs: Dict[str, Any] = {
            "model": config.model,
            "messages": [
                {"role": m.role, "content": m.content} for m in build_messages(prompt, config)
            ],
            "temperature": config.temperature,
            "max_tokens": config.max_tokens,
        }
        kwargs.update(
            {k: v for k, v in optional.items() if v is not None and k in self.SUPPORTED_PARAMS}
        )
        return kwargs

    def _translate_error(self, exc: Exception, config: ModelConfig) -> Exception:
        """Map SDK exceptions onto AuthError / ProviderError."""
        name = self.provider_type.key
        if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
            return AuthError(f"{name} rejected the API key: {exc}", provider=name)
        if isinstance(exc, openai.APIStatusError):
            return ProviderError(
                f"{name} returned HTTP {exc.status_code} for {config.model}: {exc.message}",
                provider=name,
                status_code=exc.status_code,
                payload=exc.body,
            )
        return ProviderError(f"{name} request failed for {config.model}: {exc}", provider=name)

    def _extract_usage(self, chunk: Any) -> Tuple[Optional[int], Optional[int]]:
        """(completion_tokens, prompt_tokens) from a streamed chunk, if present."""
        usage = getattr(chunk, "usage", None)
        if usage is None:
            return None, None
        return usage.completion_tokens, usage.prompt_tokens

    async def complete(
        self,
        prompt: str,
        config: ModelConfig,
        json_response: bool = False,
    ) -> str:
        """Generate text from a single prompt."""
        client = self._make_client(self._require_api_key(config))
        kwargs = self._request_kwargs(prompt, config)
        if json_response and self.supports_json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = await client.chat.completions.create(**kwargs)
        except openai.OpenAIError as e:
            logger.error("%s complete failed for %s: %s", self.provider_type.key, config.model, e)
            raise self._translate_error(e, config) from e
        finally:
            await client.close()

        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    async def stream(self, prompt: str, config: ModelConfig) -> AsyncIterator[StreamChunk]:
        """Stream a completion chunk by chunk."""
        client = self._make_client(self._require_api_key(config))
        kwargs = self._request_kwargs(prompt, config)
        if self.supports_stream_usage:
            kwargs["stream_options"] = {"include_usage": True}

        completion_tokens: Optional[int] = None
        prompt_tokens: Optional[int] = None
        try:
            response = await client.chat.completions.create(stream=True, **kwargs)
            async with response:
                async for chunk in response:
                    reported, reported_prompt = self._extract_usage(chunk)
                    if reported is not None:
                        completion_tokens, prompt_tokens = reported, reported_prompt
                    if not chunk.choices:
                        continue
                    text = chunk.choices[0].delta.content
                    if text:
                        yield StreamChunk(text=text, token_delta=estimate_tokens(text))
        except openai.OpenAIError as e:
            logger.error("%s stream failed for %s: %s", self.provider_type.key, config.model, e)
            raise self._translate_error(e, config) from e
        finally:
            await client.close()

        yield StreamChunk(is_final=True, total_tokens=completion_tokens, prompt_tokens=prompt_tokens)


class GroqProvider(OpenAIProvider):
    """Groq provider via its OpenAI-compatible endpoint."""

    base_url = GROQ_BASE_URL
    supports_stream_usage = False
    SUPPORTED_PARAMS = frozenset({"top_p", "stop", "seed"})

    @property
    def provider_type(self) -> ProviderType:
        return ProviderType.GROQ

    def _extract_usage(self, chunk: Any) -> Tuple[Optional[int], Optional[int]]:
        # Groq reports usage on the last chunk under the x_groq extension
        extension = getattr(chunk, "x_groq", None)
        usage = extension.get("usage") if isinstance(extension, dict) else None
        if not usage:
            return None, None
        return usage.get("completion_tokens"), usage.get("prompt_tokens")


# Register with factory
ProviderFactory.register(ProviderType.OPENAI, OpenAIProvider)
ProviderFactory.register(ProviderType.GROQ, GroqProvider)
