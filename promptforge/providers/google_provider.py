"""
Google Gemini Provider Implementation

Cloud LLM inference via the Google Generative AI SDK.
Supports Gemini 2.5 Pro, Gemini 2.5 Flash, and other Gemini models.

Usage:
    provider = GoogleProvider()
    config = ModelConfig(provider=ProviderType.GOOGLE, model="gemini-2.5-flash", api_key="...")
    text = await provider.complete("Explain quantum computing", config)
"""

import logging
from typing import Any, AsyncIterator, Dict, Optional

from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types

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


def _response_text(response: Any) -> str:
    """Extract text from a generate_content response or stream chunk."""
    if not response.candidates:
        return ""
    candidate = response.candidates[0]
    if not candidate.content or not candidate.content.parts:
        return ""
    return "".join(part.text or "" for part in candidate.content.parts)


class GoogleProvider(BaseProvider):
    """Google Gemini provider for cloud LLM inference."""

    supports_json_mode = True

    @property
    def provider_type(self) -> ProviderType:
        return ProviderType.GOOGLE

    def _make_client(self, api_key: str) -> genai.Client:
        http_options = None
        if self.timeout is not None:
            # google-genai expects milliseconds
            http_options = genai_types.HttpOptions(timeout=int(self.timeout * 1000))
        return genai.Client(api_key=api_key, http_options=http_options)

    def _generation_config(
        self, config: ModelConfig, json_response: bool = False
    ) -> genai_types.GenerateContentConfig:
        generation_config: Dict[str, Any] = {
            "temperature": config.temperature,
            "max_output_tokens": config.max_tokens,
        }
        if config.top_p is not None:
            generation_config["top_p"] = config.top_p
        if config.top_k is not None:
            generation_config["top_k"] = config.top_k
        if config.stop_sequences:
            generation_config["stop_sequences"] = list(config.stop_sequences)
        if config.frequency_penalty is not None:
            generation_config["frequency_penalty"] = config.frequency_penalty
        if config.presence_penalty is not None:
            generation_config["presence_penalty"] = config.presence_penalty
        if config.seed is not None:
            generation_config["seed"] = config.seed
        if config.system_prompt:
            generation_config["system_instruction"] = config.system_prompt
        if json_response:
            generation_config["response_mime_type"] = "application/json"
        return genai_types.GenerateContentConfig(**generation_config)

    def _translate_error(self, exc: Exception, config: ModelConfig) -> Exception:
        if isinstance(exc, genai_errors.APIError):
            if exc.code in (401, 403):
                return AuthError(f"google rejected the API key: {exc.message}", provider="google")
            return ProviderError(
                f"google returned HTTP {exc.code} for {config.model}: {exc.message}",
                provider="google",
                status_code=exc.code,
                payload=exc.details,
            )
        return ProviderError(f"google request failed for {config.model}: {exc}", provider="google")

    async def complete(
        self,
        prompt: str,
        config: ModelConfig,
        json_response: bool = False,
    ) -> str:
        """Generate text from a single prompt."""
        client = self._make_client(self._require_api_key(config))
        try:
            response = await client.aio.models.generate_content(
                model=config.model,
                contents=prompt,
                config=self._generation_config(config, json_response),
            )
        except (genai_errors.APIError, OSError) as e:
            logger.error("google complete failed for %s: %s", config.model, e)
            raise self._translate_error(e, config) from e
        finally:
            await client.aio.aclose()

        return _response_text(response)

    async def stream(self, prompt: str, config: ModelConfig) -> AsyncIterator[StreamChunk]:
        """Stream a completion chunk by chunk."""
        client = self._make_client(self._require_api_key(config))
        completion_tokens: Optional[int] = None
        prompt_tokens: Optional[int] = None
        try:
            response_stream = await client.aio.models.generate_content_stream(
                model=config.model,
                contents=prompt,
                config=self._generation_config(config),
            )
            async for chunk in response_stream:
                usage = getattr(chunk, "usage_metadata", None)
                if usage is not None and usage.candidates_token_count is not None:
                    completion_tokens = usage.candidates_token_count
                    prompt_tokens = usage.prompt_token_count
                text = _response_text(chunk)
                if text:
                    yield StreamChunk(text=text, token_delta=estimate_tokens(text))
        except (genai_errors.APIError, OSError) as e:
            logger.error("google stream failed for %s: %s", config.model, e)
            raise self._translate_error(e, config) from e
        finally:
            await client.aio.aclose()

        yield StreamChunk(is_final=True, total_tokens=completion_tokens, prompt_tokens=prompt_tokens)


# Register with factory
ProviderFactory.register(ProviderType.GOOGLE, GoogleProvider)
